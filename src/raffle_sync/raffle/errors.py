"""Error taxonomy for reads, validation and transaction execution."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple


class RaffleSyncError(Exception):
    """Base class for all raffle client errors."""


class ValidationError(RaffleSyncError):
    """Input rejected locally; no network contact was made."""


class ActionInProgressError(RaffleSyncError):
    """An action of the same kind is already in flight."""

    def __init__(self, kind) -> None:
        super().__init__(f"{kind.value} is already in progress")
        self.kind = kind


class SubmissionError(RaffleSyncError):
    """The transaction could not be submitted (rejected, malformed, refused)."""

    def __init__(self, message: str, *, step: Optional[str] = None) -> None:
        super().__init__(message)
        self.step = step


class ConfirmationError(RaffleSyncError):
    """A submitted transaction reverted or was not included in time."""

    def __init__(
        self,
        message: str,
        *,
        tx_hash: Optional[str] = None,
        step: Optional[str] = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash
        self.step = step
        self.timed_out = timed_out


class ReadError(RaffleSyncError):
    """A contract read failed; callers fall back to a default value."""

    def __init__(self, function_name: str, cause: BaseException) -> None:
        super().__init__(f"{function_name}() failed: {cause}")
        self.function_name = function_name
        self.cause = cause


def describe_failure(error: BaseException, completed_steps: Sequence[str] = ()) -> str:
    """Human readable failure detail keeping track of steps that already succeeded."""
    step = getattr(error, "step", None)
    parts: Tuple[str, ...] = tuple(f"{s} succeeded" for s in completed_steps)
    if step:
        parts += (f"{step} failed: {error}",)
    else:
        parts += (str(error),)
    return ", ".join(parts)
