"""
Error taxonomy — every way a reconciliation can stop.

Each reconciliation failure carries the feature name, the host and the
phase it stopped in, so an operator can diagnose without re-running.

    RemoteConnectionError  → channel could not be opened (auth, network)
    FeatureNotFoundError   → the host does not know the feature at all
    InspectionError        → query output could not be classified
    ApplyError             → the converging command failed
    VerificationError      → the command succeeded but the host disagrees
    OperationCancelled     → the caller cancelled between phases
"""

from __future__ import annotations


class WindscError(Exception):
    """Base class for all windsc exceptions."""


class ReconcileError(WindscError):
    """A reconciliation operation failed.

    Attributes:
        feature_name: The feature being reconciled.
        host: The target host.
        phase: The state machine phase the failure happened in.
        cause: The underlying exception or remote error text, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        feature_name: str = "",
        host: str = "",
        phase: str = "",
        cause: BaseException | str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.feature_name = feature_name
        self.host = host
        self.phase = phase
        self.cause = cause
        self.phases: tuple[str, ...] = ()

    def __str__(self) -> str:
        where = []
        if self.feature_name:
            where.append(f"feature={self.feature_name}")
        if self.host:
            where.append(f"host={self.host}")
        if self.phase:
            where.append(f"phase={self.phase}")
        text = self.message
        if where:
            text = f"{text} [{' '.join(where)}]"
        if self.cause:
            text = f"{text}: {self.cause}"
        return text

    def to_dict(self) -> dict:
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "feature_name": self.feature_name,
            "host": self.host,
            "phase": self.phase,
            "cause": str(self.cause) if self.cause else None,
            "phases": list(self.phases),
        }


class RemoteConnectionError(ReconcileError):
    """Raised when the remote channel cannot be opened."""


class FeatureNotFoundError(ReconcileError):
    """Raised when the host does not know the named feature."""


class InspectionError(ReconcileError):
    """Raised when the state query fails or its output is ambiguous."""


class ApplyError(ReconcileError):
    """Raised when the converging configuration command fails."""


class VerificationError(ReconcileError):
    """Raised when the post-apply state does not match the desired state."""


class OperationCancelled(ReconcileError):
    """Raised when the caller cancels an operation between phases."""


class InvalidIdentifierError(WindscError, ValueError):
    """Raised when a feature or sub-feature name is not a safe identifier."""


class IdentityError(WindscError):
    """Raised when an external identity string is malformed or missing."""


class IdentityConflictError(IdentityError):
    """Raised when an identity is already bound to a different feature."""


class PayloadTooLargeError(WindscError, ValueError):
    """Raised when a compiled command would exceed the remote command line limit."""
