"""Command-line interface for model management."""

from agentcore.cli.models import CLIResult, ModelCLI, main

__all__ = ["CLIResult", "ModelCLI", "main"]
