"""Abstract base class for speech I/O providers.

The interaction state machine drives speech only through this interface and
never learns which backend is active. Providers translate every backend
failure into the :mod:`voxsurvey.speech.types` taxonomy before it leaves
the provider.
"""

from abc import ABC, abstractmethod

from voxsurvey.speech.types import BackendKind
from voxsurvey.survey.models import Language


class SpeechProvider(ABC):
    """Speak text and listen for one transcript at a time.

    The audio output is a single shared resource: calling :meth:`speak`
    while a previous call is still pending stops the previous one, whose
    caller then sees ``CancellationInProgress``.
    """

    #: Backend this provider stands in for when the factory had to fall back.
    fallback_for: BackendKind | None = None

    @abstractmethod
    async def start(self) -> None:
        """Probe devices and backends."""

    @abstractmethod
    async def stop(self) -> None:
        """Abandon in-flight work and release resources."""

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether the provider can currently both speak and listen."""

    @property
    @abstractmethod
    def kind(self) -> BackendKind:
        """Which backend this is."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Human-readable backend name for health/status display."""

    @property
    @abstractmethod
    def is_busy(self) -> bool:
        """True while a speak or listen call is outstanding."""

    @abstractmethod
    async def speak(self, text: str, language: Language) -> None:
        """Speak *text*; returns when playback ends.

        Raises NetworkError/DeviceUnavailable when nothing could be played
        and CancellationInProgress when superseded or cancelled.
        """

    @abstractmethod
    async def listen(self, language: Language) -> str:
        """Capture one utterance and return its transcript.

        Resolves on explicit stop, the maximum listen duration, or trailing
        silence after the first speech. Raises NoSpeechDetected when nothing
        was captured.
        """

    @abstractmethod
    def stop_listening(self) -> None:
        """Finish the current listen early, keeping what was heard so far."""

    @abstractmethod
    async def cancel(self) -> None:
        """Abandon any in-flight speak or listen. Idempotent; safe when idle."""
