"""Tests for agentcore.executor.AgentExecutor."""

import asyncio

import pytest

from agentcore.config.schema import ContextWindowConfig
from agentcore.context.manager import ContextWindowManager
from agentcore.core.cancel import CancellationToken
from agentcore.core.errors import (
    AgentCoreError,
    AgentNotInitializedError,
    BackendUnreachableError,
    WindowNotFoundError,
)
from agentcore.core.types import Role
from agentcore.executor import AgentExecutionConfig, AgentExecutor
from agentcore.learning.service import ContextLearning
from agentcore.runtime.types import GenerationChunk, GenerationResponse

# 64 characters: 20 tokens per message with role overhead
TWENTY_TOKEN_TEXT = "y" * 64


class ScriptedService:
    """Generation service double with canned replies."""

    def __init__(self, reply="Sure thing.", parts=("Sure", " thing."), fail=None, delay=0.0):
        self.reply = reply
        self.parts = list(parts)
        self.fail = fail
        self.delay = delay
        self.requests = []

    async def generate(self, request, cancel_token=None):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise self.fail
        last_user = [m for m in request.messages if m.role == Role.USER][-1]
        reply = self.reply.format(prompt=last_user.content)
        return GenerationResponse(
            content=reply, model=request.model, prompt_tokens=10, completion_tokens=3
        )

    async def generate_stream(self, request, cancel_token=None):
        self.requests.append(request)
        for part in self.parts:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            yield GenerationChunk(content=part)
        if self.fail:
            raise self.fail
        yield GenerationChunk(content="", done=True, prompt_eval_count=10, eval_count=3)


async def _executor(service=None, **kwargs) -> AgentExecutor:
    executor = AgentExecutor(ContextWindowManager(), service or ScriptedService(), **kwargs)
    await executor.initialize_agent(AgentExecutionConfig("a1", "llama3", "Be helpful."))
    return executor


def _contents(executor: AgentExecutor, agent_id: str = "a1") -> list[tuple[Role, str]]:
    window = executor.manager.get_window(agent_id)
    return [(m.role, m.content) for m in window.messages]


async def _fill_past_threshold(executor: AgentExecutor, agent_id: str = "a1") -> None:
    for i in range(3):
        role = Role.USER if i % 2 == 0 else Role.ASSISTANT
        await executor.manager.add_message(agent_id, role, TWENTY_TOKEN_TEXT)


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


class TestInitializeAgent:
    @pytest.mark.asyncio
    async def test_window_seeded(self):
        executor = AgentExecutor(ContextWindowManager())

        window = await executor.initialize_agent(
            AgentExecutionConfig("a1", "mistral", "Be helpful.", {"threshold_percent": 60})
        )

        assert window.config.model_name == "mistral"
        assert window.config.max_tokens == 32768
        assert window.config.threshold_percent == 60
        assert window.system_prompt == "Be helpful."
        assert [(m.role, m.content) for m in window.messages] == [(Role.SYSTEM, "Be helpful.")]
        assert executor.get_agent_config("a1").model == "mistral"

    @pytest.mark.asyncio
    async def test_pydantic_context_config(self):
        executor = AgentExecutor(ContextWindowManager())

        window = await executor.initialize_agent(
            AgentExecutionConfig("a1", "llama3", context_config=ContextWindowConfig(max_tokens=500))
        )

        assert window.config.max_tokens == 500
        assert window.messages == ()

    @pytest.mark.asyncio
    async def test_reinitialize_replaces_window(self):
        executor = await _executor()
        await executor.manager.add_message("a1", Role.USER, "hello")

        await executor.initialize_agent(AgentExecutionConfig("a1", "llama3", "New rules."))

        assert _contents(executor) == [(Role.SYSTEM, "New rules.")]


# ---------------------------------------------------------------------------
# Non-streaming turns
# ---------------------------------------------------------------------------


class TestExecute:
    @pytest.mark.asyncio
    async def test_turn_appends_prompt_and_reply(self):
        service = ScriptedService()
        executor = await _executor(service)

        result = await executor.execute("a1", "Hi there")

        assert result.response == "Sure thing."
        assert result.context_rotated is False
        assert result.window_number == 1
        assert result.prompt_tokens == 10
        assert result.completion_tokens == 3
        assert _contents(executor) == [
            (Role.SYSTEM, "Be helpful."),
            (Role.USER, "Hi there"),
            (Role.ASSISTANT, "Sure thing."),
        ]

        request = service.requests[0]
        assert request.model == "llama3"
        assert [(m.role, m.content) for m in request.messages] == [
            (Role.SYSTEM, "Be helpful."),
            (Role.USER, "Hi there"),
        ]

    @pytest.mark.asyncio
    async def test_token_usage_reported(self):
        executor = await _executor()

        result = await executor.execute("a1", "Hi there")

        assert result.token_usage == executor.get_token_usage("a1")
        assert result.token_usage.current == executor.manager.get_window("a1").total_tokens

    @pytest.mark.asyncio
    async def test_uninitialized_agent(self):
        executor = await _executor()

        with pytest.raises(AgentNotInitializedError):
            await executor.execute("nobody", "Hi")

    @pytest.mark.asyncio
    async def test_no_service(self):
        executor = AgentExecutor(ContextWindowManager())
        await executor.initialize_agent(AgentExecutionConfig("a1", "llama3"))

        with pytest.raises(AgentCoreError, match="No generation service"):
            await executor.execute("a1", "Hi")

    @pytest.mark.asyncio
    async def test_per_call_service(self):
        executor = await _executor()
        override = ScriptedService(reply="From override.")

        result = await executor.execute("a1", "Hi", runtime=override)

        assert result.response == "From override."
        assert len(override.requests) == 1

    @pytest.mark.asyncio
    async def test_failure_restores_window(self):
        """A failed generation leaves the window exactly as it was."""
        executor = await _executor(ScriptedService(fail=BackendUnreachableError("down")))
        before = executor.manager.get_window("a1")

        with pytest.raises(BackendUnreachableError):
            await executor.execute("a1", "Hi")

        assert executor.manager.get_window("a1") is before

    @pytest.mark.asyncio
    async def test_cancelled_turn_restores_window(self, runtime):
        executor = AgentExecutor(ContextWindowManager(), runtime)
        await executor.initialize_agent(AgentExecutionConfig("a1", "llama3", "Be helpful."))
        before = executor.manager.get_window("a1")
        token = CancellationToken()
        token.cancel()

        with pytest.raises(asyncio.CancelledError):
            await executor.execute("a1", "Hi", cancel_token=token)

        assert executor.manager.get_window("a1") is before

    @pytest.mark.asyncio
    async def test_with_model_runtime(self, runtime, ollama):
        executor = AgentExecutor(ContextWindowManager(), runtime)
        await executor.initialize_agent(AgentExecutionConfig("a1", "llama3", "Be helpful."))

        result = await executor.execute("a1", "Hi")

        assert result.response == "Hello from the model."
        assert ollama.bodies("/api/chat")[0]["messages"] == [
            {"role": "system", "content": "Be helpful."},
            {"role": "user", "content": "Hi"},
        ]

    @pytest.mark.asyncio
    async def test_concurrent_turns_serialized(self):
        """Turns on one agent never interleave their messages."""
        executor = await _executor(ScriptedService(reply="reply to {prompt}", delay=0.01))

        await asyncio.gather(executor.execute("a1", "one"), executor.execute("a1", "two"))

        assert _contents(executor)[1:] == [
            (Role.USER, "one"),
            (Role.ASSISTANT, "reply to one"),
            (Role.USER, "two"),
            (Role.ASSISTANT, "reply to two"),
        ]


class TestConcurrentWindowAccess:
    """Turns and direct window writes on one agent never lose each other's messages."""

    @pytest.mark.asyncio
    async def test_abandoned_stream_keeps_later_turn(self):
        executor = await _executor(ScriptedService(reply="reply"))

        stream = executor.execute_stream("a1", "abandoned")
        async for _ in stream:
            break
        await executor.execute("a1", "second")
        await stream.aclose()

        assert _contents(executor) == [
            (Role.SYSTEM, "Be helpful."),
            (Role.USER, "second"),
            (Role.ASSISTANT, "reply"),
        ]

    @pytest.mark.asyncio
    async def test_append_waits_for_failing_turn(self):
        executor = await _executor(
            ScriptedService(fail=BackendUnreachableError("down"), delay=0.01)
        )

        turn = asyncio.create_task(executor.execute("a1", "Hi"))
        await asyncio.sleep(0)
        note = asyncio.create_task(
            executor.manager.add_message("a1", Role.USER, "concurrent note")
        )
        await asyncio.sleep(0)
        assert not note.done()

        with pytest.raises(BackendUnreachableError):
            await turn
        await note

        assert _contents(executor) == [
            (Role.SYSTEM, "Be helpful."),
            (Role.USER, "concurrent note"),
        ]

    @pytest.mark.asyncio
    async def test_stream_commits_after_interleaved_turn(self):
        executor = await _executor(ScriptedService(reply="reply to {prompt}"))

        stream = executor.execute_stream("a1", "streamed")
        first = await anext(stream)
        await executor.execute("a1", "direct")
        rest = [c async for c in stream]

        assert first.content == "Sure"
        assert rest[-1].result.response == "Sure thing."
        assert _contents(executor)[1:] == [
            (Role.USER, "direct"),
            (Role.ASSISTANT, "reply to direct"),
            (Role.USER, "streamed"),
            (Role.ASSISTANT, "Sure thing."),
        ]

    @pytest.mark.asyncio
    async def test_lock_free_while_stream_suspended(self):
        executor = await _executor()

        stream = executor.execute_stream("a1", "Hi")
        await anext(stream)

        assert not executor.manager.store.is_locked("a1")
        await stream.aclose()


class TestRotationDuringTurn:
    async def _small_executor(self, **kwargs) -> AgentExecutor:
        executor = AgentExecutor(ContextWindowManager(), ScriptedService(), **kwargs)
        await executor.initialize_agent(
            AgentExecutionConfig(
                "a1", "llama3", "Be helpful.", {"max_tokens": 100, "threshold_percent": 50}
            )
        )
        await _fill_past_threshold(executor)
        return executor

    @pytest.mark.asyncio
    async def test_rotates_before_prompt(self):
        executor = await self._small_executor()
        assert executor.needs_rotation("a1")

        result = await executor.execute("a1", "Next question?")

        assert result.context_rotated is True
        assert result.window_number == 2
        assert result.rotation is not None
        window = executor.manager.get_window("a1")
        assert window.previous_summary
        assert [m.content for m in window.messages][-2:] == ["Next question?", "Sure thing."]

    @pytest.mark.asyncio
    async def test_learns_from_dropped_messages(self):
        learning = ContextLearning({"min_messages": 1})
        executor = await self._small_executor(learning=learning, learn_on_rotate=True)

        await executor.execute("a1", "Next question?")

        stats = await learning.get_stats("a1")
        exported = await learning.export_knowledge("a1")
        assert stats.conversation_count == 1
        assert exported[0].metadata["source"] == "rotation"
        assert exported[0].metadata["message_count"] == 1

    @pytest.mark.asyncio
    async def test_no_learning_by_default(self):
        learning = ContextLearning({"min_messages": 1})
        executor = await self._small_executor(learning=learning)

        await executor.execute("a1", "Next question?")

        assert (await learning.get_stats("a1")).conversation_count == 0

    @pytest.mark.asyncio
    async def test_failed_turn_rolls_back_rotation(self):
        executor = await self._small_executor()
        before = executor.manager.get_window("a1")

        with pytest.raises(BackendUnreachableError):
            await executor.execute(
                "a1", "Next question?", runtime=ScriptedService(fail=BackendUnreachableError("down"))
            )

        assert executor.manager.get_window("a1") is before

    @pytest.mark.asyncio
    async def test_abandoned_stream_rolls_back_rotation(self):
        executor = await self._small_executor()
        before = executor.manager.get_window("a1")

        stream = executor.execute_stream("a1", "Next question?")
        async for _ in stream:
            break
        await stream.aclose()

        assert executor.manager.get_window("a1") is before

    @pytest.mark.asyncio
    async def test_rotation_kept_once_window_moved_on(self):
        executor = await self._small_executor()
        before = executor.manager.get_window("a1")

        stream = executor.execute_stream("a1", "Next question?")
        await anext(stream)
        await executor.execute("a1", "direct")
        await stream.aclose()

        window = executor.manager.get_window("a1")
        assert window.window_number >= 2
        assert window.previous_summary
        assert [m.content for m in window.messages][-2:] == ["direct", "Sure thing."]
        assert window is not before


# ---------------------------------------------------------------------------
# Streaming turns
# ---------------------------------------------------------------------------


class TestExecuteStream:
    @pytest.mark.asyncio
    async def test_chunks_then_result(self):
        executor = await _executor()

        chunks = [c async for c in executor.execute_stream("a1", "Hi")]

        assert [c.content for c in chunks[:-1]] == ["Sure", " thing."]
        final = chunks[-1]
        assert final.done is True
        assert final.result.response == "Sure thing."
        assert final.result.completion_tokens == 3
        assert _contents(executor)[-1] == (Role.ASSISTANT, "Sure thing.")

    @pytest.mark.asyncio
    async def test_early_stop_appends_nothing(self):
        executor = await _executor()
        before = executor.manager.get_window("a1")

        stream = executor.execute_stream("a1", "Hi")
        async for _ in stream:
            break
        await stream.aclose()

        assert executor.manager.get_window("a1") is before

    @pytest.mark.asyncio
    async def test_failure_mid_stream_restores(self):
        executor = await _executor(ScriptedService(fail=BackendUnreachableError("lost")))
        before = executor.manager.get_window("a1")

        with pytest.raises(BackendUnreachableError):
            async for _ in executor.execute_stream("a1", "Hi"):
                pass

        assert executor.manager.get_window("a1") is before

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_restores(self):
        executor = await _executor()
        before = executor.manager.get_window("a1")
        token = CancellationToken()

        with pytest.raises(asyncio.CancelledError):
            async for _ in executor.execute_stream("a1", "Hi", cancel_token=token):
                token.cancel()

        assert executor.manager.get_window("a1") is before

    @pytest.mark.asyncio
    async def test_stream_with_model_runtime(self, runtime):
        executor = AgentExecutor(ContextWindowManager(), runtime)
        await executor.initialize_agent(AgentExecutionConfig("a1", "llama3"))

        chunks = [c async for c in executor.execute_stream("a1", "Hi")]

        assert chunks[-1].result.response == "Hello, world"
        assert _contents(executor) == [(Role.USER, "Hi"), (Role.ASSISTANT, "Hello, world")]

    @pytest.mark.asyncio
    async def test_stream_uninitialized(self):
        with pytest.raises(AgentNotInitializedError):
            async for _ in (await _executor()).execute_stream("nobody", "Hi"):
                pass


# ---------------------------------------------------------------------------
# Window passthroughs
# ---------------------------------------------------------------------------


class TestWindowOperations:
    @pytest.mark.asyncio
    async def test_manual_rotation(self):
        learning = ContextLearning({"min_messages": 1})
        executor = await _executor(learning=learning, learn_on_rotate=True)
        await _fill_past_threshold(executor)

        rotation = await executor.rotate_context("a1")

        assert executor.manager.get_window("a1").id == rotation.new_window_id
        assert (await learning.get_stats("a1")).conversation_count == 1

    @pytest.mark.asyncio
    async def test_manual_rotation_unknown_agent(self):
        with pytest.raises(WindowNotFoundError):
            await (await _executor()).rotate_context("nobody")

    @pytest.mark.asyncio
    async def test_clear_context(self):
        executor = await _executor()
        await executor.manager.add_message("a1", Role.USER, "hello")

        await executor.clear_context("a1")

        assert _contents(executor) == []
        assert executor.manager.get_window("a1").system_prompt == "Be helpful."

    @pytest.mark.asyncio
    async def test_remove_agent(self):
        executor = await _executor()

        assert await executor.remove_agent("a1") is True
        assert executor.get_agent_config("a1") is None
        assert executor.get_debug_info("a1") is None

    @pytest.mark.asyncio
    async def test_debug_info(self):
        info = (await _executor()).get_debug_info("a1")

        assert info["config"]["model"] == "llama3"
        assert info["window"]["window_number"] == 1
        assert info["window"]["message_count"] == 1
        assert info["token_usage"]["should_rotate"] is False
