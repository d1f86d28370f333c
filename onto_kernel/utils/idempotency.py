"""
Idempotency key derivation for transition side effects.

A request-level idempotency key fans out into one key per declared action,
so each side effect can be deduplicated on its own by the collaborator that
performs it (job queue, document store, entity store).
"""


def generate_action_idempotency_key(
    request_key: str,
    transition_id: str,
    index: int,
    action_name: str,
) -> str:
    """
    Derive the idempotency key for one action of a transition.

    Format: request_key:transition_id:index:action_name

    The index keeps two occurrences of the same action in one pipeline
    distinct.

    Example:
        >>> generate_action_idempotency_key("req-42", "draft:submit:review", 1, "notify")
        "req-42:draft:submit:review:1:notify"
    """
    return f"{request_key}:{transition_id}:{index}:{action_name}"

