"""Argument parsing for the agentcore-models CLI."""

import argparse
from collections.abc import Sequence
from pathlib import Path


def add_model_arg(parser: argparse.ArgumentParser, help_text: str = "Model name") -> None:
    """Add the positional model argument to a parser."""
    parser.add_argument("model", help=help_text)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser."""
    parser = argparse.ArgumentParser(
        prog="agentcore-models",
        description="Manage models in the local inference backend",
    )
    parser.add_argument(
        "--endpoint",
        help="Backend URL (default: config, then OLLAMA_URL, then http://localhost:11434)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a JSON config file (default: ~/.agentcore/config.json)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    start_parser = subparsers.add_parser("start", help="Start a model")
    add_model_arg(start_parser)
    start_parser.add_argument(
        "--no-warmup",
        dest="warm_up",
        action="store_false",
        help="Skip the warm-up request",
    )
    start_parser.add_argument(
        "--keep-alive",
        dest="keep_alive",
        default="5m",
        help="How long to keep the model loaded (default: 5m)",
    )

    stop_parser = subparsers.add_parser("stop", help="Stop/unload a model")
    add_model_arg(stop_parser)

    list_parser = subparsers.add_parser("list", help="List available (or running) models")
    list_parser.add_argument(
        "which",
        nargs="?",
        choices=["available", "running", "active"],
        default="available",
        help="'running' lists models loaded in memory",
    )

    pull_parser = subparsers.add_parser("pull", help="Download a model")
    add_model_arg(pull_parser)

    info_parser = subparsers.add_parser("info", help="Show model information")
    add_model_arg(info_parser)

    switch_parser = subparsers.add_parser("switch", help="Hot-swap between models")
    switch_parser.add_argument("from_model", help="Model to stop")
    switch_parser.add_argument("to_model", help="Model to start")

    generate_parser = subparsers.add_parser(
        "generate", aliases=["gen"], help="Generate a completion"
    )
    add_model_arg(generate_parser)
    generate_parser.add_argument("prompt", nargs="+", help="Prompt text")

    chat_parser = subparsers.add_parser("chat", help="Chat with a model (streaming)")
    add_model_arg(chat_parser)
    chat_parser.add_argument("message", nargs="+", help="Message text")

    subparsers.add_parser("help", help="Show this help message")

    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    return build_parser().parse_args(argv)
