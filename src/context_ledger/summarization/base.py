"""Base summarization interface."""

from abc import ABC, abstractmethod


class BaseSummarizer(ABC):
    """Base class for session summarizers.

    A summarizer turns a prompt into raw model text that is expected to hold
    the structured summary JSON. Parsing and persistence happen elsewhere.
    """

    # Label recorded as the intent label source and in the label reason
    name: str = "summarizer"

    # True when prompts leave the machine (prompt samples are then withheld
    # unless the privacy config allows remote transfer)
    remote: bool = False

    @abstractmethod
    def complete(self, prompt: str) -> str:
        """Return the raw model output for a prompt.

        Args:
            prompt: Full summarization prompt.

        Returns:
            Raw text, ideally a JSON object.

        Raises:
            SummarizationError: If no output could be produced.
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the summarizer is available and configured."""
        pass
