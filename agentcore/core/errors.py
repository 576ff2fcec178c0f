"""Typed exception hierarchy for agentcore."""

from __future__ import annotations


class AgentCoreError(Exception):
    """Base class for all agentcore errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(AgentCoreError):
    """Raised when a config file is missing, unreadable, or not valid JSON."""


class ValidationError(AgentCoreError):
    """Raised when configuration or input values are out of range.

    Always raised before any state is mutated.
    """


class WindowNotFoundError(AgentCoreError):
    """Raised when an operation needs a context window the agent doesn't have."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"No context window found for agent {agent_id}")


class RotationError(AgentCoreError):
    """Raised when a replacement window could not be built.

    The previous window is left untouched.
    """


class AgentNotInitializedError(AgentCoreError):
    """Raised when the executor is asked to run an agent it has never seen."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(
            f"Agent {agent_id} not initialized. Call initialize_agent first."
        )


class BackendError(AgentCoreError):
    """Base class for failures talking to the inference backend."""


class NotAvailableError(BackendError):
    """Raised when the requested model is not present in the backend."""

    def __init__(self, model_name: str, message: str | None = None) -> None:
        self.model_name = model_name
        super().__init__(
            message or f"Model {model_name} is not available. Pull it first."
        )


class BackendUnreachableError(BackendError):
    """Raised on connection failures and timeouts after all retries."""


class BackendResponseError(BackendError):
    """Raised when the backend answers with a non-2xx status or an error body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
