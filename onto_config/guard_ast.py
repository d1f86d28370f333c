"""
Build-time validation of guard expressions.

Guard expressions in templates must use the restricted grammar of
``onto_kernel.domain.guards``.  This module runs the same parser the engine
uses and reports problems as data, so a bad guard fails configuration
validation instead of silently failing closed at runtime.

Reported:
  - Tokenizer/parser errors (unknown characters, unbalanced parentheses,
    arithmetic, chained comparisons, excessive nesting)
  - Paths whose root is not a known snapshot field, ``props``,
    ``facets`` or ``actor`` (warning level; unknown roots read null)
  - ``actor.*`` paths other than ``actor.actor_id`` / ``actor.user_id``
"""

from dataclasses import dataclass

from onto_kernel.domain.guards import KNOWN_PATH_ROOTS, parse_guard, referenced_paths
from onto_kernel.exceptions import GuardParseError

ACTOR_FIELDS: frozenset[str] = frozenset({"actor_id", "user_id"})


@dataclass(frozen=True)
class GuardASTError:
    """A validation problem found in a guard expression."""

    expression: str
    message: str
    position: int = 0
    severity: str = "error"

    @property
    def is_error(self) -> bool:
        return self.severity == "error"


def validate_guard_expression(expression: str) -> list[GuardASTError]:
    """Validate a guard expression against the restricted grammar.

    Returns a list of problems.  An empty list (or warnings only) means the
    engine will evaluate the expression.
    """
    try:
        tree = parse_guard(expression)
    except GuardParseError as e:
        return [GuardASTError(expression=expression, message=e.message, position=e.position)]

    problems: list[GuardASTError] = []
    for path in referenced_paths(tree):
        root = path.parts[0]
        if root == "actor":
            if len(path.parts) != 2 or path.parts[1] not in ACTOR_FIELDS:
                problems.append(GuardASTError(
                    expression=expression,
                    message=(
                        f"Unknown actor field: {path.dotted}. "
                        f"Only actor.{', actor.'.join(sorted(ACTOR_FIELDS))} exist."
                    ),
                ))
        elif root not in KNOWN_PATH_ROOTS:
            problems.append(GuardASTError(
                expression=expression,
                message=f"Unknown path root '{root}' in {path.dotted}; it will read null",
                severity="warning",
            ))
    return problems
