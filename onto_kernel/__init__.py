"""
Ontology FSM Kernel

Template-driven finite-state-machine interpreter for ontology entities:
- Template inheritance with cycle and depth protection
- Sandboxed guard expressions (no eval)
- Optimistic compare-and-swap state commits
- Ordered, budgeted, best-effort action pipeline
"""

__version__ = "0.1.0"
