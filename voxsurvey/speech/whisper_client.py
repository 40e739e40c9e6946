"""Whisper-compatible transcription HTTP client with health checking.

Talks to any server exposing the OpenAI ``/v1/audio/transcriptions`` route,
local whisper.cpp servers included. The API key is optional for local
servers.
"""

import io
import logging
import time
import wave

import httpx

from voxsurvey.config import (
    AUDIO_SAMPLE_RATE,
    HEALTH_CHECK_INTERVAL,
    WHISPER_API_KEY,
    WHISPER_BASE_URL,
    WHISPER_MODEL,
    WHISPER_TIMEOUT,
)
from voxsurvey.speech.recognizer import Recognizer, check_response
from voxsurvey.speech.types import NetworkError, NoSpeechDetected
from voxsurvey.survey.models import Language

logger = logging.getLogger(__name__)


class WhisperClient(Recognizer):
    """Whisper API HTTP client with health checking and graceful degradation."""

    def __init__(
        self,
        *,
        base_url: str = WHISPER_BASE_URL,
        api_key: str = WHISPER_API_KEY,
        model: str = WHISPER_MODEL,
    ) -> None:
        self._base_url = base_url
        self._api_key = api_key
        self._model = model
        self._available: bool = False
        self._last_health_check: float = 0.0
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize the HTTP client and run initial health check."""
        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=WHISPER_TIMEOUT,
            headers=headers,
        )
        await self._check_health()

    async def stop(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def is_available(self) -> bool:
        return self._available

    @property
    def provider_name(self) -> str:
        return "whisper"

    def supports(self, language: Language) -> bool:
        return True

    async def transcribe(self, pcm_bytes: bytes, language: Language) -> str:
        """Send PCM audio (wrapped as WAV) and return the transcript text."""
        await self._maybe_recheck_health()

        if not self._available or not self._client:
            raise NetworkError(f"Whisper API unavailable at {self._base_url}")

        try:
            response = await self._client.post(
                "/v1/audio/transcriptions",
                data={"model": self._model, "language": language.value},
                files={"file": ("audio.wav", self._wrap_wav(pcm_bytes), "audio/wav")},
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"Whisper request failed: {exc}") from exc

        check_response(response, "Whisper")
        transcript = response.json().get("text", "").strip()
        if not transcript:
            raise NoSpeechDetected("Whisper returned an empty transcript")
        logger.debug("Whisper transcript: %s", transcript)
        return transcript

    async def _check_health(self) -> None:
        """Probe GET /v1/models."""
        self._last_health_check = time.monotonic()
        if not self._client:
            self._available = False
            return
        try:
            resp = await self._client.get("/v1/models")
            if resp.status_code == 200:
                self._available = True
                logger.info(
                    "Whisper available at %s (model: %s)",
                    self._base_url,
                    self._model,
                )
            else:
                self._available = False
                logger.warning(
                    "Whisper API returned status %d — STT unavailable",
                    resp.status_code,
                )
        except (httpx.ConnectError, httpx.TimeoutException, OSError) as exc:
            self._available = False
            logger.warning(
                "Whisper API not available at %s — STT disabled: %s",
                self._base_url,
                exc,
            )

    async def _maybe_recheck_health(self) -> None:
        if not self._available:
            elapsed = time.monotonic() - self._last_health_check
            if elapsed >= HEALTH_CHECK_INTERVAL:
                await self._check_health()

    @staticmethod
    def _wrap_wav(pcm_bytes: bytes, sample_rate: int = AUDIO_SAMPLE_RATE) -> io.BytesIO:
        """Wrap raw PCM int16 bytes in a WAV header."""
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)  # 16-bit
            wf.setframerate(sample_rate)
            wf.writeframes(pcm_bytes)
        buf.seek(0)
        return buf
