"""Domain errors for EndpointRemediator."""

from typing import Optional


class RemediationError(RuntimeError):
    """Raised when the remediation cannot continue safely."""


class ActionFailed(RemediationError):
    """Raised when an underlying OS call reports an error."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class CriticalActionFailed(ActionFailed):
    """Raised when a critical step failed and the sequence was aborted."""


class InsufficientResources(ActionFailed):
    """Raised when a resource such as backup disk space is not sufficient."""

    def __init__(self, message: str, code: str = "insufficient_space"):
        super().__init__(message, code=code)


class InsufficientPrivilege(RemediationError):
    """Raised before any step runs when administrative rights are missing."""
