"""
SmartNotes Backend — Abstract LLM Service Interface
=====================================================

What:  Abstract base class defining the contract for the AI functions the app uses.
Why:   Callers (voice and search services) depend on this interface, not on Gemini,
       so the provider can be swapped or mocked without touching them.
How:   Concrete implementations inherit from LLMService and implement every method.

Contract:
    - Implementations handle their own retry logic and error translation
    - All provider-specific errors are wrapped in LLMServiceError
    - CircuitBreakerOpenError is raised untouched while the provider is shut off
    - Callers decide on fallbacks; implementations never return mock output
"""

from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple


class LLMService(ABC):
    """Abstract interface for transcription, text analysis and embeddings."""

    @abstractmethod
    async def transcribe_audio(self, audio_path: str) -> Tuple[str, float]:
        """
        Transcribe a stored recording.

        Args:
            audio_path: Absolute path to the audio file on disk.

        Returns:
            (text, confidence). confidence is in [0, 1]; implementations that
            cannot estimate it return 0.5.
        """
        ...

    @abstractmethod
    async def summarize(self, text: str) -> str:
        """Short summary of `text`. Empty string when there is nothing to summarize."""
        ...

    @abstractmethod
    async def extract_keywords(self, text: str) -> List[str]:
        ...

    @abstractmethod
    async def extract_action_items(self, text: str) -> List[str]:
        ...

    @abstractmethod
    async def suggest_queries(self, query: str, context: Sequence[str]) -> List[str]:
        """Search-box completions for a partial `query`, informed by note titles in `context`."""
        ...

    @abstractmethod
    async def embed(self, texts: Sequence[str], for_query: bool = False) -> List[List[float]]:
        """
        One embedding vector per input text, in input order.

        for_query selects the provider's query-side embedding task where it
        distinguishes between documents and queries.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight connectivity test. Returns True if reachable."""
        ...
