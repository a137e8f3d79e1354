"""
Errors raised by stack and node group operations.
"""

from typing import Optional


class StackManagerError(Exception):
    """Base class for stack management errors."""


class StackNotFoundError(StackManagerError):
    """The requested stack or resource does not exist."""

    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(message or f"no CloudFormation stack found for {name}")


class NoChangesError(StackManagerError):
    """A change set was rejected because it would not modify the stack."""


class QuotaExceededError(StackManagerError):
    """A tag count exceeds a fixed service maximum."""


class ConfigurationConflictError(StackManagerError):
    """The requested operation conflicts with the cluster configuration."""


class MissingIdentityTagError(StackManagerError):
    """A stack carries none of the node group name tags."""


class VersionParseError(StackManagerError):
    """A version tag holds a value that is not a semantic version."""


class TemplateRenderError(StackManagerError):
    """A resource set could not be rendered into a template."""


class ExternalServiceError(StackManagerError):
    """A call to CloudFormation, EKS or Auto Scaling failed."""

    def __init__(self, operation: str, resource: str, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.operation = operation
        self.resource = resource
        self.cause = cause
        detail = message or (str(cause) if cause else "unknown error")
        super().__init__(f"{operation} {resource!r}: {detail}")


class StackOperationError(ExternalServiceError):
    """A stack reached a failed terminal state."""

    def __init__(self, operation: str, stack_name: str, status: str, reason: Optional[str] = None):
        self.status = status
        self.reason = reason
        message = f"stack reached status {status}"
        if reason:
            message += f" ({reason})"
        super().__init__(operation, stack_name, message=message)


class ChangeSetFailedError(ExternalServiceError):
    """A change set could not be created."""

    def __init__(self, stack_name: str, change_set_name: str, reason: Optional[str] = None):
        self.change_set_name = change_set_name
        self.reason = reason
        super().__init__(
            "creating change set",
            stack_name,
            message=f"change set {change_set_name} failed: {reason or 'no reason provided'}",
        )


class WaitTimeoutError(StackManagerError):
    """Polling gave up before a terminal state was reached."""


class WaitCancelledError(StackManagerError):
    """Polling was interrupted by a cancellation signal."""
