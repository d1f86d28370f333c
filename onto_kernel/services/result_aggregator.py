"""Assembles the final ``TransitionResult`` for a transition call.

Kernel exceptions become failure results carrying their ``code``; anything
that is not an ``OntoKernelError`` is not a business outcome and is left to
propagate by the caller.
"""

from __future__ import annotations

from collections.abc import Sequence

from onto_kernel.domain.transition import ActionRecord, GuardFailure, TransitionResult
from onto_kernel.exceptions import GuardRejectedError, OntoKernelError


def error_code_for(exc: OntoKernelError) -> str:
    """Machine-readable code for a kernel exception."""
    return exc.code


def aggregate_failure(
    error: OntoKernelError | str,
    guard_failures: Sequence[GuardFailure] = (),
    *,
    dry_run: bool = False,
) -> TransitionResult:
    """Failure result from a kernel exception or a bare error code.

    A ``GuardRejectedError`` contributes its own failures when none are
    passed explicitly.
    """
    if isinstance(error, OntoKernelError):
        code = error_code_for(error)
        message = str(error)
        if not guard_failures and isinstance(error, GuardRejectedError):
            guard_failures = error.failures
    else:
        code = error
        message = ""
    return TransitionResult.failure(
        error=code,
        message=message,
        guard_failures=tuple(guard_failures),
        dry_run=dry_run,
    )


def aggregate_success(
    state_after: str,
    actions_run: Sequence[ActionRecord],
    *,
    dry_run: bool = False,
) -> TransitionResult:
    return TransitionResult.success(
        state_after=state_after,
        actions_run=tuple(actions_run),
        dry_run=dry_run,
    )
