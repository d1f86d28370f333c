"""Utility modules for the ontology FSM kernel."""

from onto_kernel.utils.freezing import deep_freeze, freeze_mapping, thaw
from onto_kernel.utils.idempotency import generate_action_idempotency_key

__all__ = [
    "deep_freeze",
    "freeze_mapping",
    "thaw",
    "generate_action_idempotency_key",
]
