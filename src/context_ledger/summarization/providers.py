"""Summarizer implementations.

``CommandSummarizer`` pipes the prompt to an external command (any local or
remote LLM wrapper) and reads the JSON it prints. ``StaticOutputSummarizer``
replays output produced ahead of time.
"""

import logging
import shlex
import shutil
import subprocess
from typing import TYPE_CHECKING

from context_ledger.constants import (
    DEFAULT_SUMMARIZER_TIMEOUT_SECONDS,
    SUMMARY_SOURCE_COMMAND,
    SUMMARY_SOURCE_MANUAL,
)
from context_ledger.exceptions import ConfigurationError, SummarizationError
from context_ledger.summarization.base import BaseSummarizer

if TYPE_CHECKING:
    from context_ledger.config import SummarizerConfig

logger = logging.getLogger(__name__)


class CommandSummarizer(BaseSummarizer):
    """Summarizer backed by an external command (prompt on stdin, JSON on stdout)."""

    name = SUMMARY_SOURCE_COMMAND

    def __init__(
        self,
        command: str,
        timeout: float = DEFAULT_SUMMARIZER_TIMEOUT_SECONDS,
        remote: bool = False,
    ):
        """Initialize the command summarizer.

        Args:
            command: Command line, split with shell quoting rules.
            timeout: Seconds to wait for the command to finish.
            remote: Whether the command forwards prompts off the machine.

        Raises:
            ConfigurationError: If the command has unbalanced quotes.
        """
        self.command = command
        try:
            self.argv = shlex.split(command)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid summarizer command: {e}", key="summarizer.command"
            ) from e
        self.timeout = timeout
        self.remote = remote

    def is_available(self) -> bool:
        return bool(self.argv) and shutil.which(self.argv[0]) is not None

    def complete(self, prompt: str) -> str:
        if not self.argv:
            raise SummarizationError("Summarizer command is empty")
        logger.debug(f"Running summarizer command: {self.argv[0]} ({len(prompt)} prompt chars)")
        try:
            completed = subprocess.run(  # noqa: S603
                self.argv,
                input=prompt,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise SummarizationError(
                "Summarizer command timed out", {"timeout": self.timeout}
            ) from e
        except OSError as e:
            raise SummarizationError(
                f"Failed to run summarizer command: {e}", {"command": self.argv[0]}
            ) from e

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            raise SummarizationError(
                "Summarizer command failed",
                {"exit_code": completed.returncode, "stderr": stderr[:300]},
            )
        return completed.stdout or ""


class StaticOutputSummarizer(BaseSummarizer):
    """Replays pre-produced model output."""

    name = SUMMARY_SOURCE_MANUAL

    def __init__(self, output: str):
        self.output = output

    def is_available(self) -> bool:
        return True

    def complete(self, prompt: str) -> str:
        return self.output


def create_summarizer(config: "SummarizerConfig | None") -> BaseSummarizer | None:
    """Create a summarizer from the persisted summarizer config.

    Returns:
        Configured summarizer, or None when none is configured.
    """
    if config is None or not config.command.strip():
        logger.debug("Summarizer not configured - skipping summarizer creation")
        return None
    return CommandSummarizer(
        command=config.command,
        timeout=config.timeout_seconds,
        remote=config.remote,
    )
