from __future__ import annotations


class LoadTestError(Exception):
    """Base class for recoverable load test failures."""


class NodeTransportError(LoadTestError):
    """The node could not be reached or returned an unreadable response."""


class RemoteFailure(LoadTestError):
    """The node answered but explicitly rejected the request."""


class SigningError(RemoteFailure):
    """Raised when the node refuses to sign a transaction."""


class SubmissionError(RemoteFailure):
    """Raised when the node does not accept a signed transaction."""


class PreconditionError(LoadTestError):
    """Ledger state does not allow the requested phase to proceed."""


class IdentityMismatch(PreconditionError):
    """The node answering at an address is not the configured node."""


class StabilizationTimeout(PreconditionError):
    """Balances did not settle within the polling budget."""


class UnitFailed(LoadTestError):
    """One unit of a concurrent fan-out failed."""

    def __init__(self, key: str, error: BaseException) -> None:
        super().__init__(f"{key}: {error}")
        self.key = key
        self.error = error


class PhaseError(LoadTestError):
    """A run phase failed for one participant."""

    def __init__(self, phase: str, participant: str, error: BaseException) -> None:
        super().__init__(f"Phase '{phase}' failed on node {participant}: {error}")
        self.phase = phase
        self.participant = participant
        self.error = error


class InvariantViolation(RuntimeError):
    """A locally built transaction broke value conservation.

    Not a LoadTestError: handlers for ledger failures never catch it and it is
    never retried.
    """
