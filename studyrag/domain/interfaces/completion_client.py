from abc import ABC, abstractmethod
from typing import Optional


class ICompletionClient(ABC):
    """Text-in, JSON-text-out LLM completion used by the structured extractor."""

    @abstractmethod
    async def complete_json(
        self,
        prompt: str,
        *,
        system_instruction: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Returns the raw response text. Raises ProviderError on transport or API failure."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass
