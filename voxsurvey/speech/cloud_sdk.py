"""Cloud SDK backend: Azure Speech SDK continuous recognition.

The SDK delivers ``recognizing`` (interim) and ``recognized`` (final) events
on its own threads. They are marshalled onto the event loop and fed to a
:class:`TranscriptAggregator`, so callers still see one transcript per
``listen()``.

The SDK is an optional dependency (``pip install voxsurvey[sdk]``). Without
it the provider reports itself unavailable and the factory falls back to
the REST backend.
"""

import asyncio
import logging
from typing import Any

from voxsurvey.config import (
    AZURE_SPEECH_KEY,
    AZURE_SPEECH_REGION,
    LISTEN_ONSET_TIMEOUT,
    MAX_LISTEN_DURATION,
    TRAILING_SILENCE,
)
from voxsurvey.speech.aggregator import TranscriptAggregator
from voxsurvey.speech.audio_player import AudioPlayer
from voxsurvey.speech.azure_tts_client import AzureTTSClient
from voxsurvey.speech.base import BaseSpeechProvider
from voxsurvey.speech.synthesizer import Synthesizer
from voxsurvey.speech.types import (
    LOCALES,
    BackendKind,
    DeviceUnavailable,
    NetworkError,
    PermissionDenied,
    SpeechError,
    UnsupportedFormat,
)
from voxsurvey.survey.models import Language

logger = logging.getLogger(__name__)

_PERMISSION_CODES = frozenset({"AuthenticationFailure", "Forbidden"})
_FORMAT_CODES = frozenset({"BadRequest"})


def cancellation_error(reason: str, error_code: str, details: str = "") -> SpeechError | None:
    """Translate an SDK ``canceled`` event into the speech error taxonomy.

    *reason* and *error_code* are the SDK enum member names. Returns None for
    an ordinary end of stream.
    """
    if reason != "Error":
        return None
    message = f"{error_code}: {details}" if details else error_code
    if error_code in _PERMISSION_CODES:
        return PermissionDenied(message)
    if error_code in _FORMAT_CODES:
        return UnsupportedFormat(message)
    return NetworkError(message)


class CloudSdkSpeechProvider(BaseSpeechProvider):
    """Streams microphone audio to Azure and aggregates the partial results."""

    def __init__(
        self,
        *,
        api_key: str = AZURE_SPEECH_KEY,
        region: str = AZURE_SPEECH_REGION,
        synthesizers: list[Synthesizer] | None = None,
        player: AudioPlayer | None = None,
        max_duration: float = MAX_LISTEN_DURATION,
        trailing_silence: float = TRAILING_SILENCE,
        onset_timeout: float | None = LISTEN_ONSET_TIMEOUT,
    ) -> None:
        super().__init__(
            synthesizers if synthesizers is not None else [AzureTTSClient()],
            player=player,
        )
        self._api_key = api_key
        self._region = region
        self._max_duration = max_duration
        self._trailing_silence = trailing_silence
        self._onset_timeout = onset_timeout
        self._sdk: Any = None
        self._aggregator: TranscriptAggregator | None = None

    async def start(self) -> None:
        if not self._api_key:
            logger.info("No Azure Speech key — SDK recognition disabled")
        else:
            try:
                import azure.cognitiveservices.speech as speechsdk
            except ImportError:
                logger.warning(
                    "azure-cognitiveservices-speech not installed — SDK recognition disabled"
                )
            else:
                self._sdk = speechsdk
        await super().start()

    @property
    def kind(self) -> BackendKind:
        return BackendKind.CLOUD_SDK

    @property
    def provider_name(self) -> str:
        return "cloud-sdk"

    @property
    def can_listen(self) -> bool:
        return self._sdk is not None

    # ------------------------------------------------------------------
    # Listen
    # ------------------------------------------------------------------

    def stop_listening(self) -> None:
        if self._aggregator is not None:
            self._aggregator.stop()

    def _abort_listen(self) -> None:
        if self._aggregator is not None:
            self._aggregator.cancel()

    async def _listen_once(self, language: Language) -> str:
        if self._sdk is None:
            raise NetworkError("Azure Speech SDK unavailable")
        try:
            return await self._recognize(language)
        except NetworkError as exc:
            logger.warning("SDK recognition failed (%s) — retrying once", exc)
            return await self._recognize(language)

    async def _recognize(self, language: Language) -> str:
        """Run one continuous-recognition session until the aggregator settles."""
        try:
            recognizer = self._create_recognizer(language)
        except RuntimeError as exc:
            raise DeviceUnavailable(f"SDK recognizer could not open audio: {exc}") from exc

        loop = asyncio.get_running_loop()
        aggregator = TranscriptAggregator(
            max_duration=self._max_duration,
            trailing_silence=self._trailing_silence,
            onset_timeout=self._onset_timeout,
        )
        self._aggregator = aggregator

        def on_recognizing(evt: Any) -> None:
            loop.call_soon_threadsafe(aggregator.on_partial, evt.result.text)

        def on_recognized(evt: Any) -> None:
            if evt.result.reason.name == "RecognizedSpeech":
                loop.call_soon_threadsafe(aggregator.on_final, evt.result.text)

        def on_canceled(evt: Any) -> None:
            error = cancellation_error(
                evt.reason.name,
                evt.error_code.name,
                getattr(evt, "error_details", ""),
            )
            if error is None:
                loop.call_soon_threadsafe(aggregator.stop)
            else:
                loop.call_soon_threadsafe(aggregator.on_error, error)

        recognizer.recognizing.connect(on_recognizing)
        recognizer.recognized.connect(on_recognized)
        recognizer.canceled.connect(on_canceled)

        aggregator.start()
        try:
            await asyncio.to_thread(lambda: recognizer.start_continuous_recognition_async().get())
            return await aggregator.wait()
        finally:
            aggregator.cancel()
            if self._aggregator is aggregator:
                self._aggregator = None
            try:
                await asyncio.to_thread(
                    lambda: recognizer.stop_continuous_recognition_async().get()
                )
            except RuntimeError:
                logger.debug("SDK recognizer did not stop cleanly", exc_info=True)

    def _create_recognizer(self, language: Language) -> Any:
        """Build an SDK recognizer bound to the default microphone."""
        speech_config = self._sdk.SpeechConfig(subscription=self._api_key, region=self._region)
        speech_config.speech_recognition_language = LOCALES[language]
        audio_config = self._sdk.audio.AudioConfig(use_default_microphone=True)
        return self._sdk.SpeechRecognizer(
            speech_config=speech_config, audio_config=audio_config
        )
