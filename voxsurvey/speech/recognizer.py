"""Abstract base class for speech-to-text clients that take a finished recording."""

from abc import ABC, abstractmethod

import httpx

from voxsurvey.speech.types import NetworkError, PermissionDenied, UnsupportedFormat
from voxsurvey.survey.models import Language


class Recognizer(ABC):
    """Transcribes one PCM 16kHz int16 mono recording.

    Unlike :class:`Synthesizer`, ``transcribe()`` raises: the caller needs to
    tell "nothing was said" apart from "the service is down".
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
        """Whether this client can transcribe *language*."""

    @abstractmethod
    async def transcribe(self, pcm_bytes: bytes, language: Language) -> str:
        """Return the transcript.

        Raises NoSpeechDetected for an empty result, NetworkError when the
        service could not be reached and PermissionDenied/UnsupportedFormat
        when it refused the request.
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Human-readable name for health/status display."""


def check_response(response: httpx.Response, service: str) -> None:
    """Map an HTTP error status onto the speech error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    if status in (401, 403):
        raise PermissionDenied(f"{service} rejected credentials ({status})")
    if status in (400, 415):
        raise UnsupportedFormat(f"{service} rejected the audio ({status})")
    raise NetworkError(f"{service} returned status {status}")
