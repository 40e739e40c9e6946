"""Abstract base class for text-to-speech clients.

Speech providers hold one or more synthesizers and use the first available
one that supports the requested language. Synthesizers handle their own
health checking and graceful degradation internally.
"""

from abc import ABC, abstractmethod

from voxsurvey.survey.models import Language


class Synthesizer(ABC):
    """Turns text into raw PCM 16kHz int16 mono bytes.

    ``synthesize()`` returns None on failure and never raises; failures are
    logged internally.
    """

    @abstractmethod
    async def start(self) -> None:
        """Initialize the client (HTTP session, health check)."""

    @abstractmethod
    async def stop(self) -> None:
        """Shut down the client and release resources."""

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether the client is currently healthy."""

    @abstractmethod
    def supports(self, language: Language) -> bool:
        """Whether this client has a usable voice for *language*."""

    @abstractmethod
    async def synthesize(self, text: str, language: Language) -> bytes | None:
        """Synthesize *text* to PCM bytes, or None on any failure."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Human-readable name for health/status display."""
