"""The agentcore-models command: model lifecycle from the terminal."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from rich.console import Console

from agentcore.cli.arg_parser import build_parser
from agentcore.cli.output import console as default_console
from agentcore.cli.output import print_error, print_info, print_success, print_table
from agentcore.config.loader import load_config
from agentcore.core.errors import AgentCoreError
from agentcore.logging_setup import configure_logging
from agentcore.runtime.runtime import ModelRuntime
from agentcore.runtime.types import GenerationRequest, StartOptions

logger = logging.getLogger(__name__)


@dataclass
class CLIResult:
    """Outcome of one CLI command."""

    success: bool
    message: str
    data: Any = None


class ModelCLI:
    """Runs model commands against a ModelRuntime and renders the results.

    Example:
        cli = ModelCLI(runtime)
        result = await cli.execute(parse_args(["list", "running"]))
    """

    def __init__(self, runtime: ModelRuntime, console: Console | None = None) -> None:
        self._runtime = runtime
        self._console = console or default_console

    async def execute(self, args: argparse.Namespace) -> CLIResult:
        """Dispatch a parsed command."""
        match args.command:
            case "start":
                return await self.start(args.model, args.warm_up, args.keep_alive)
            case "stop":
                return await self.stop(args.model)
            case "list":
                return await self.list_models(args.which)
            case "pull":
                return await self.pull(args.model)
            case "info":
                return await self.info(args.model)
            case "switch":
                return await self.switch(args.from_model, args.to_model)
            case "generate" | "gen":
                return await self.generate(args.model, " ".join(args.prompt))
            case "chat":
                return await self.chat(args.model, " ".join(args.message))
            case _:
                return self.help()

    async def start(self, model: str, warm_up: bool = True, keep_alive: str = "5m") -> CLIResult:
        try:
            instance = await self._runtime.start(
                model, StartOptions(warm_up=warm_up, keep_alive=keep_alive)
            )
        except AgentCoreError as e:
            return CLIResult(False, f"Failed to start model: {e.message}")
        return CLIResult(
            True,
            f"Model {model} started",
            {"id": instance.id, "state": instance.state.value, "started_at": instance.started_at},
        )

    async def stop(self, model: str) -> CLIResult:
        try:
            await self._runtime.stop(model)
        except AgentCoreError as e:
            return CLIResult(False, f"Failed to stop model: {e.message}")
        return CLIResult(True, f"Model {model} stopped")

    async def list_models(self, which: str = "available") -> CLIResult:
        if which in ("running", "active"):
            running = await self._runtime.list_running()
            rows = [
                {
                    "name": m.model_name,
                    "state": m.state.value,
                    "started_at": m.started_at,
                    "memory": m.memory_usage,
                }
                for m in running
            ]
            return CLIResult(True, f"{len(rows)} running model(s)", rows)

        available = await self._runtime.list_models()
        return CLIResult(True, f"{len(available)} available model(s)", available)

    async def pull(self, model: str) -> CLIResult:
        last: tuple[str, int | None] | None = None
        try:
            async for progress in self._runtime.pull(model):
                current = (progress.status, progress.progress)
                if current == last:
                    continue
                last = current
                suffix = f" ({progress.progress}%)" if progress.progress is not None else ""
                print_info(f"{progress.status}{suffix}", self._console)
        except AgentCoreError as e:
            return CLIResult(False, f"Failed to pull model: {e.message}")
        return CLIResult(True, f"Model {model} pulled")

    async def info(self, model: str) -> CLIResult:
        try:
            details = await self._runtime.get_model_info(model)
        except AgentCoreError as e:
            return CLIResult(False, f"Failed to get model info: {e.message}")
        return CLIResult(True, f"Model info for {model}", details)

    async def switch(self, from_model: str, to_model: str) -> CLIResult:
        try:
            instance = await self._runtime.switch_model(from_model, to_model)
        except AgentCoreError as e:
            return CLIResult(False, f"Failed to switch models: {e.message}")
        return CLIResult(
            True,
            f"Switched from {from_model} to {to_model}",
            {"model": instance.model_name, "state": instance.state.value},
        )

    async def generate(self, model: str, prompt: str) -> CLIResult:
        self._runtime.set_current_model(model)
        try:
            response = await self._runtime.generate(GenerationRequest(prompt=prompt))
        except AgentCoreError as e:
            return CLIResult(False, f"Generation failed: {e.message}")
        return CLIResult(
            True,
            response.content,
            {
                "model": response.model,
                "tokens": response.total_tokens,
                "duration_ms": round(response.total_duration / 1_000_000),
            },
        )

    async def chat(self, model: str, message: str) -> CLIResult:
        self._runtime.set_current_model(model)
        parts: list[str] = []
        try:
            async for chunk in self._runtime.generate_stream(
                GenerationRequest(messages=[{"role": "user", "content": message}])
            ):
                self._console.print(chunk.content, end="", highlight=False, markup=False)
                parts.append(chunk.content)
        except AgentCoreError as e:
            self._console.print()
            return CLIResult(False, f"Chat failed: {e.message}")
        self._console.print()
        return CLIResult(True, "".join(parts))

    def help(self) -> CLIResult:
        return CLIResult(True, build_parser().format_help())

    def render(self, command: str | None, result: CLIResult) -> None:
        """Print a result in a form suited to the command."""
        out = self._console
        if not result.success:
            print_error(result.message, out)
            return

        if command == "chat":
            return
        if command in ("generate", "gen"):
            out.print(result.message, highlight=False, markup=False)
            if result.data:
                print_info(
                    f"{result.data['model']} | {result.data['tokens']} tokens | "
                    f"{result.data['duration_ms']} ms",
                    out,
                )
            return
        if command == "list" and isinstance(result.data, list):
            if result.data and isinstance(result.data[0], dict):
                print_table(
                    result.message,
                    ["Name", "State", "Started", "Memory"],
                    [
                        [r["name"], r["state"], r["started_at"], r["memory"]]
                        for r in result.data
                    ],
                    out,
                )
            else:
                print_table(result.message, ["Name"], [[n] for n in result.data], out)
            return
        if command == "info" and isinstance(result.data, dict):
            print_table(
                result.message,
                ["Field", "Value"],
                [[k, v] for k, v in result.data.items()],
                out,
            )
            return

        if command is None or command == "help":
            out.print(result.message, highlight=False, markup=False)
        else:
            print_success(result.message, out)


async def run(args: argparse.Namespace, console: Console | None = None) -> CLIResult:
    """Build a runtime from config and flags, run the command, render it."""
    overrides: dict[str, Any] = {}
    if args.endpoint:
        overrides["runtime"] = {"endpoint": args.endpoint}
    config = load_config(args.config, overrides=overrides)

    async with ModelRuntime(config.runtime) as runtime:
        cli = ModelCLI(runtime, console)
        result = await cli.execute(args)
        cli.render(args.command, result)
        return result


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``agentcore-models``. Returns the exit code."""
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        result = asyncio.run(run(args))
    except AgentCoreError as e:
        print_error(e.message)
        return 1
    except KeyboardInterrupt:
        print_info("Interrupted")
        return 1
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
