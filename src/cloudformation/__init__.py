"""
CloudFormation stack management for cluster node groups.
"""

from .errors import (
    ChangeSetFailedError,
    ConfigurationConflictError,
    ExternalServiceError,
    MissingIdentityTagError,
    NoChangesError,
    QuotaExceededError,
    StackManagerError,
    StackNotFoundError,
    StackOperationError,
    TemplateRenderError,
    VersionParseError,
    WaitCancelledError,
    WaitTimeoutError,
)
from .nodegroup import NodeGroupOrchestrator, NodeGroupStack, StackInfo
from .stack_manager import StackManager, UpdateStackOptions
from .tasks import ResultChannel

__all__ = [
    "StackManager",
    "UpdateStackOptions",
    "NodeGroupOrchestrator",
    "NodeGroupStack",
    "StackInfo",
    "ResultChannel",
    "StackManagerError",
    "StackNotFoundError",
    "NoChangesError",
    "QuotaExceededError",
    "ConfigurationConflictError",
    "MissingIdentityTagError",
    "VersionParseError",
    "TemplateRenderError",
    "ExternalServiceError",
    "StackOperationError",
    "ChangeSetFailedError",
    "WaitTimeoutError",
    "WaitCancelledError",
]
