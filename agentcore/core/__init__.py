"""Core types, errors, and cancellation primitives shared by every layer."""

from agentcore.core.cancel import CancellationToken, wait_cancellable
from agentcore.core.errors import (
    AgentCoreError,
    AgentNotInitializedError,
    BackendError,
    BackendResponseError,
    BackendUnreachableError,
    ConfigError,
    NotAvailableError,
    RotationError,
    ValidationError,
    WindowNotFoundError,
)
from agentcore.core.types import Message, Role

__all__ = [
    "AgentCoreError",
    "AgentNotInitializedError",
    "BackendError",
    "BackendResponseError",
    "BackendUnreachableError",
    "CancellationToken",
    "ConfigError",
    "Message",
    "NotAvailableError",
    "Role",
    "RotationError",
    "ValidationError",
    "WindowNotFoundError",
    "wait_cancellable",
]
