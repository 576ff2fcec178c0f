"""agentcore - context, model runtime, retrieval and learning for local-LLM agents."""

from agentcore.context import ContextWindowManager, TokenCounter, WindowStore
from agentcore.core import CancellationToken, Message, Role
from agentcore.executor import AgentExecutionConfig, AgentExecutor, ExecutionResult
from agentcore.learning import ContextLearning
from agentcore.retrieval import RetrievalStore
from agentcore.runtime import GenerationRequest, ModelRuntime

__version__ = "0.1.0"

__all__ = [
    "AgentExecutionConfig",
    "AgentExecutor",
    "CancellationToken",
    "ContextLearning",
    "ContextWindowManager",
    "ExecutionResult",
    "GenerationRequest",
    "Message",
    "ModelRuntime",
    "RetrievalStore",
    "Role",
    "TokenCounter",
    "WindowStore",
]
