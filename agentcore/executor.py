"""Agent turn execution with automatic context window management.

Each turn may rotate the agent's window, asks the model for a reply to the
user prompt and then appends prompt and reply together. A turn is
all-or-nothing: if generation fails, is cancelled, or a stream is abandoned,
nothing is appended and a rotation made for the turn is rolled back.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Protocol

from agentcore.config.schema import ContextWindowConfig
from agentcore.context.manager import ContextWindowManager
from agentcore.context.types import ContextWindowState, RotationResult, TokenUsageStats
from agentcore.core.cancel import CancellationToken
from agentcore.core.errors import AgentCoreError, AgentNotInitializedError, WindowNotFoundError
from agentcore.core.types import Message, Role
from agentcore.learning.service import ContextLearning
from agentcore.runtime.types import GenerationChunk, GenerationRequest, GenerationResponse

logger = logging.getLogger(__name__)


class GenerationService(Protocol):
    """What the executor needs from a model runtime."""

    async def generate(
        self,
        request: GenerationRequest,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationResponse:
        ...

    def generate_stream(
        self,
        request: GenerationRequest,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[GenerationChunk]:
        ...


@dataclass
class AgentExecutionConfig:
    """How an agent is set up.

    Attributes:
        agent_id: The agent's identifier.
        model: Model that serves the agent's turns.
        system_prompt: Initial system prompt ("" for none).
        context_config: Window settings; ``model_name`` is set from ``model``.
    """

    agent_id: str
    model: str
    system_prompt: str = ""
    context_config: Mapping[str, Any] | ContextWindowConfig | None = None


@dataclass
class ExecutionResult:
    """Outcome of a completed turn."""

    response: str
    token_usage: TokenUsageStats
    context_rotated: bool
    window_number: int
    rotation: RotationResult | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class ExecutionChunk:
    """One piece of a streamed turn. The final chunk carries the result."""

    content: str
    done: bool = False
    result: ExecutionResult | None = None


@dataclass
class _TurnRotation:
    rotation: RotationResult | None = None
    dropped: list[Message] = field(default_factory=list)
    window_number: int = 1
    before: ContextWindowState | None = None
    after: ContextWindowState | None = None


def _dropped_messages(
    before: ContextWindowState, after: ContextWindowState | None
) -> list[Message]:
    kept = {id(m) for m in after.messages} if after else set()
    return [m for m in before.messages if m.role != Role.SYSTEM and id(m) not in kept]


class AgentExecutor:
    """Runs agent turns against a generation service.

    Example:
        executor = AgentExecutor(ContextWindowManager(), runtime)
        await executor.initialize_agent(
            AgentExecutionConfig("agent-1", "llama3", "You are helpful.")
        )
        result = await executor.execute("agent-1", "Hello!")
    """

    def __init__(
        self,
        manager: ContextWindowManager,
        runtime: GenerationService | None = None,
        learning: ContextLearning | None = None,
        learn_on_rotate: bool = False,
    ) -> None:
        """Initialize the executor.

        Args:
            manager: Window manager holding the agents' context.
            runtime: Default generation service for turns.
            learning: Optional learning layer.
            learn_on_rotate: Feed messages dropped by rotation into learning.
        """
        self._manager = manager
        self._runtime = runtime
        self._learning = learning
        self._learn_on_rotate = learn_on_rotate
        self._configs: dict[str, AgentExecutionConfig] = {}

    @property
    def manager(self) -> ContextWindowManager:
        return self._manager

    async def initialize_agent(self, config: AgentExecutionConfig) -> ContextWindowState:
        """Create the agent's window and seed its system prompt.

        Re-initializing an agent replaces its window.

        Raises:
            ValidationError: If the context config is invalid. Nothing is changed.
        """
        if isinstance(config.context_config, ContextWindowConfig):
            context_values: dict[str, Any] = config.context_config.model_dump(exclude_unset=True)
        else:
            context_values = dict(config.context_config or {})
        context_values["model_name"] = config.model

        async with self._manager.lock(config.agent_id):
            self._manager.create_window_locked(config.agent_id, context_values)
            if config.system_prompt:
                self._manager.add_message_locked(
                    config.agent_id, Role.SYSTEM, config.system_prompt
                )

        self._configs[config.agent_id] = config
        logger.debug("Initialized agent %s with model %s", config.agent_id, config.model)
        return self._manager.get_window(config.agent_id)

    def get_agent_config(self, agent_id: str) -> AgentExecutionConfig | None:
        return self._configs.get(agent_id)

    def _require(self, agent_id: str) -> AgentExecutionConfig:
        config = self._configs.get(agent_id)
        if config is None:
            raise AgentNotInitializedError(agent_id)
        return config

    def _service(self, override: GenerationService | None) -> GenerationService:
        service = override or self._runtime
        if service is None:
            raise AgentCoreError("No generation service configured")
        return service

    async def _maybe_rotate(self, agent_id: str) -> _TurnRotation:
        """Rotate if the window is over threshold. Caller holds the agent lock."""
        before = self._manager.get_window(agent_id)
        turn = _TurnRotation(window_number=before.window_number if before else 1)
        if before is None or not self._manager.should_rotate(agent_id):
            return turn

        turn.rotation = await self._manager.rotate_window_locked(agent_id)
        turn.before = before
        turn.after = self._manager.get_window(agent_id)
        turn.dropped = _dropped_messages(before, turn.after)
        return turn

    def _undo_rotation(self, agent_id: str, turn: _TurnRotation) -> None:
        """Roll back this turn's rotation if nothing has changed since. Caller holds the lock."""
        if turn.rotation is None:
            return
        if self._manager.restore_window_locked(agent_id, turn.before, expected=turn.after):
            logger.debug("Rolled back rotation for agent %s after failed turn", agent_id)

    def _build_request(
        self, agent_id: str, config: AgentExecutionConfig, prompt: str
    ) -> GenerationRequest:
        return GenerationRequest(
            messages=[
                *self._manager.get_context_messages(agent_id),
                Message(role=Role.USER, content=prompt),
            ],
            model=config.model,
        )

    def _commit(self, agent_id: str, prompt: str, reply: str) -> None:
        """Append a finished exchange. Caller holds the agent lock."""
        if self._manager.get_window(agent_id) is None:
            raise WindowNotFoundError(agent_id)
        self._manager.add_message_locked(agent_id, Role.USER, prompt)
        self._manager.add_message_locked(agent_id, Role.ASSISTANT, reply)

    def _result(
        self,
        agent_id: str,
        response: str,
        turn: _TurnRotation,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
    ) -> ExecutionResult:
        window = self._manager.get_window(agent_id)
        return ExecutionResult(
            response=response,
            token_usage=self._manager.get_token_usage(agent_id),
            context_rotated=turn.rotation is not None,
            window_number=window.window_number if window else 1,
            rotation=turn.rotation,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )

    async def _learn_dropped(self, agent_id: str, turn: _TurnRotation) -> None:
        if not (self._learn_on_rotate and self._learning and turn.dropped):
            return
        try:
            await self._learning.learn_from_conversation(
                agent_id,
                turn.dropped,
                {"source": "rotation", "window_number": turn.window_number},
            )
        except Exception as e:
            logger.warning("Learning from rotated messages failed for %s: %s", agent_id, e)

    async def execute(
        self,
        agent_id: str,
        prompt: str,
        cancel_token: CancellationToken | None = None,
        runtime: GenerationService | None = None,
    ) -> ExecutionResult:
        """Run one turn and return the model's reply.

        The agent's lock is held for the whole turn, so turns and window
        mutations on the same agent run one after another.

        Args:
            agent_id: An initialized agent.
            prompt: The user's message.
            cancel_token: Aborts the in-flight generation.
            runtime: Generation service for this turn only.

        Raises:
            AgentNotInitializedError: If initialize_agent was never called.
            BackendError: If generation fails. The window is unchanged.
            asyncio.CancelledError: If cancelled. The window is unchanged.
        """
        config = self._require(agent_id)
        service = self._service(runtime)

        async with self._manager.lock(agent_id):
            turn = await self._maybe_rotate(agent_id)
            try:
                response = await service.generate(
                    self._build_request(agent_id, config, prompt), cancel_token=cancel_token
                )
                self._commit(agent_id, prompt, response.content)
            except BaseException:
                self._undo_rotation(agent_id, turn)
                raise

            result = self._result(
                agent_id,
                response.content,
                turn,
                prompt_tokens=response.prompt_tokens,
                completion_tokens=response.completion_tokens,
            )

        await self._learn_dropped(agent_id, turn)
        return result

    async def execute_stream(
        self,
        agent_id: str,
        prompt: str,
        cancel_token: CancellationToken | None = None,
        runtime: GenerationService | None = None,
    ) -> AsyncIterator[ExecutionChunk]:
        """Run one turn, yielding the reply as it is generated.

        The agent's lock is not held while chunks are handed to the caller.
        Prompt and reply are appended together once the stream completes,
        after anything committed on the agent in the meantime. If the
        consumer stops early, the token fires, or the backend fails, nothing
        is appended.

        Yields:
            Content chunks, then a final ``done`` chunk with the result.
        """
        config = self._require(agent_id)
        service = self._service(runtime)

        turn = _TurnRotation()
        completed = False
        try:
            async with self._manager.lock(agent_id):
                turn = await self._maybe_rotate(agent_id)
                request = self._build_request(agent_id, config, prompt)

            parts: list[str] = []
            prompt_tokens = completion_tokens = 0
            async with aclosing(
                service.generate_stream(request, cancel_token=cancel_token)
            ) as stream:
                async for chunk in stream:
                    if chunk.content:
                        parts.append(chunk.content)
                        yield ExecutionChunk(content=chunk.content)
                    if chunk.done:
                        prompt_tokens = chunk.prompt_eval_count or 0
                        completion_tokens = chunk.eval_count or 0
                        break

            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            reply = "".join(parts)
            async with self._manager.lock(agent_id):
                self._commit(agent_id, prompt, reply)
                result = self._result(
                    agent_id, reply, turn,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                )
            completed = True
        finally:
            if not completed and turn.rotation is not None:
                async with self._manager.lock(agent_id):
                    self._undo_rotation(agent_id, turn)

        await self._learn_dropped(agent_id, turn)
        yield ExecutionChunk(content="", done=True, result=result)

    # === Window passthroughs ===

    def get_token_usage(self, agent_id: str) -> TokenUsageStats:
        return self._manager.get_token_usage(agent_id)

    def needs_rotation(self, agent_id: str) -> bool:
        return self._manager.should_rotate(agent_id)

    async def rotate_context(self, agent_id: str) -> RotationResult:
        """Rotate the agent's window now, regardless of usage.

        Raises:
            WindowNotFoundError: If the agent has no window.
            RotationError: If rotation fails; the window is unchanged.
        """
        async with self._manager.lock(agent_id):
            before = self._manager.get_window(agent_id)
            rotation = await self._manager.rotate_window_locked(agent_id)
            after = self._manager.get_window(agent_id)

        if before is not None:
            turn = _TurnRotation(
                rotation=rotation,
                dropped=_dropped_messages(before, after),
                window_number=before.window_number,
            )
            await self._learn_dropped(agent_id, turn)
        return rotation

    async def clear_context(self, agent_id: str) -> None:
        await self._manager.clear_window(agent_id)

    async def remove_agent(self, agent_id: str) -> bool:
        """Forget an agent's config and window."""
        self._configs.pop(agent_id, None)
        return await self._manager.remove_window(agent_id)

    def get_debug_info(self, agent_id: str) -> dict[str, Any] | None:
        """Describe an agent's config, window and usage for diagnostics."""
        window = self._manager.get_window(agent_id)
        if window is None:
            return None

        config = self._configs.get(agent_id)
        return {
            "config": dataclasses.asdict(config) if config else None,
            "window": {
                "id": window.id,
                "window_number": window.window_number,
                "message_count": len(window.messages),
                "total_tokens": window.total_tokens,
                "has_summary": bool(window.previous_summary),
            },
            "token_usage": dataclasses.asdict(self._manager.get_token_usage(agent_id)),
        }
