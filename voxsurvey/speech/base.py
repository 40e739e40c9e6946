"""Shared speak/listen/cancel plumbing for the concrete speech providers.

Every provider plays synthesized PCM through one :class:`AudioPlayer` and
runs each speak or listen as its own task so :meth:`cancel` can abandon it
from outside. Subclasses supply the recognition half via ``_listen_once``.
"""

import asyncio
import logging
from abc import abstractmethod

from voxsurvey.speech.audio_player import AudioPlayer
from voxsurvey.speech.microphone import MicrophoneCapture
from voxsurvey.speech.provider import SpeechProvider
from voxsurvey.speech.recognizer import Recognizer
from voxsurvey.speech.synthesizer import Synthesizer
from voxsurvey.speech.types import (
    CancellationInProgress,
    NetworkError,
    NoSpeechDetected,
    SpeechState,
)
from voxsurvey.survey.models import Language

logger = logging.getLogger(__name__)


class BaseSpeechProvider(SpeechProvider):
    """Speak through a synthesizer chain, listen through ``_listen_once``."""

    def __init__(
        self,
        synthesizers: list[Synthesizer],
        *,
        player: AudioPlayer | None = None,
    ) -> None:
        self._synthesizers = synthesizers
        self._player = player or AudioPlayer()
        self._speak_task: asyncio.Task | None = None
        self._listen_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        for synthesizer in self._synthesizers:
            await synthesizer.start()
        await self._player.start()
        logger.info("Speech provider %s started (state=%s)", self.provider_name, self.state.value)

    async def stop(self) -> None:
        await self.cancel()
        await self._player.stop()
        for synthesizer in reversed(self._synthesizers):
            await synthesizer.stop()
        logger.info("Speech provider %s stopped", self.provider_name)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def can_speak(self) -> bool:
        return self._player.is_available and any(s.is_available for s in self._synthesizers)

    @property
    @abstractmethod
    def can_listen(self) -> bool:
        """Whether the recognition half is usable."""

    @property
    def is_available(self) -> bool:
        return self.can_speak and self.can_listen

    @property
    def is_speaking(self) -> bool:
        return self._speak_task is not None and not self._speak_task.done()

    @property
    def is_listening(self) -> bool:
        return self._listen_task is not None and not self._listen_task.done()

    @property
    def is_busy(self) -> bool:
        return self.is_speaking or self.is_listening

    @property
    def state(self) -> SpeechState:
        if self.is_speaking:
            return SpeechState.SPEAKING
        if self.is_listening:
            return SpeechState.LISTENING
        if self.is_available:
            return SpeechState.ACTIVE
        if self.can_speak or self.can_listen:
            return SpeechState.DEGRADED
        return SpeechState.DISABLED

    # ------------------------------------------------------------------
    # Speak
    # ------------------------------------------------------------------

    async def speak(self, text: str, language: Language) -> None:
        previous = self._speak_task
        if previous is not None and not previous.done():
            self._player.interrupt()
            previous.cancel()

        task = asyncio.create_task(self._speak_once(text, language))
        self._speak_task = task
        try:
            await task
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                task.cancel()
                raise
            raise CancellationInProgress("speak superseded") from None
        finally:
            if self._speak_task is task:
                self._speak_task = None

    async def _speak_once(self, text: str, language: Language) -> None:
        pcm = await self._synthesize(text, language)
        if not await self._player.play(pcm):
            raise CancellationInProgress("playback interrupted")

    async def _synthesize(self, text: str, language: Language) -> bytes:
        """Try each synthesizer that supports *language* in order."""
        for synthesizer in self._synthesizers:
            if not synthesizer.supports(language):
                continue
            pcm = await synthesizer.synthesize(text, language)
            if pcm:
                logger.debug(
                    "Synthesized %d bytes via %s", len(pcm), synthesizer.provider_name
                )
                return pcm
        raise NetworkError(f"no synthesizer produced audio for {language.value}")

    # ------------------------------------------------------------------
    # Listen
    # ------------------------------------------------------------------

    async def listen(self, language: Language) -> str:
        if self.is_listening:
            raise CancellationInProgress("a listen is already in progress")

        task = asyncio.create_task(self._listen_once(language))
        self._listen_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                task.cancel()
                self._abort_listen()
                raise
            raise CancellationInProgress("listen cancelled") from None
        finally:
            if self._listen_task is task:
                self._listen_task = None

    @abstractmethod
    async def _listen_once(self, language: Language) -> str:
        """Capture and transcribe a single utterance."""

    @abstractmethod
    def _abort_listen(self) -> None:
        """Tell the capture side to drop whatever it is doing."""

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel(self) -> None:
        self._player.interrupt()
        self._abort_listen()
        pending = [
            task
            for task in (self._speak_task, self._listen_task)
            if task is not None and not task.done()
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._speak_task = None
        self._listen_task = None


class RecordingSpeechProvider(BaseSpeechProvider):
    """Records with the local microphone, then hands the clip to a recognizer."""

    def __init__(
        self,
        recognizer: Recognizer,
        synthesizers: list[Synthesizer],
        *,
        microphone: MicrophoneCapture | None = None,
        player: AudioPlayer | None = None,
    ) -> None:
        super().__init__(synthesizers, player=player)
        self._recognizer = recognizer
        self._microphone = microphone or MicrophoneCapture()

    async def start(self) -> None:
        await self._recognizer.start()
        await self._microphone.start()
        await super().start()

    async def stop(self) -> None:
        await super().stop()
        await self._microphone.stop()
        await self._recognizer.stop()

    @property
    def can_listen(self) -> bool:
        return self._microphone.is_available and self._recognizer.is_available

    def stop_listening(self) -> None:
        self._microphone.request_stop()

    def _abort_listen(self) -> None:
        self._microphone.cancel()

    async def _listen_once(self, language: Language) -> str:
        pcm = await self._microphone.capture_until_silence()
        if not pcm:
            raise NoSpeechDetected("no speech before the onset timeout")
        try:
            return await self._recognizer.transcribe(pcm, language)
        except NetworkError:
            logger.warning(
                "%s transcription failed — retrying once", self._recognizer.provider_name
            )
            return await self._recognizer.transcribe(pcm, language)
