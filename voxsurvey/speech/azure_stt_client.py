"""Azure short-audio speech recognition over REST.

One POST per recording (up to 60s of audio). Used for Khmer and for
platforms without a usable local recognizer.
"""

import io
import logging
import time
import wave

import httpx

from voxsurvey.config import (
    AUDIO_SAMPLE_RATE,
    AZURE_SPEECH_KEY,
    AZURE_SPEECH_REGION,
    AZURE_TIMEOUT,
    HEALTH_CHECK_INTERVAL,
)
from voxsurvey.speech.recognizer import Recognizer, check_response
from voxsurvey.speech.types import LOCALES, NetworkError, NoSpeechDetected
from voxsurvey.survey.models import Language

logger = logging.getLogger(__name__)

RECOGNITION_PATH = "/speech/recognition/conversation/cognitiveservices/v1"

# RecognitionStatus values meaning "nothing usable was said".
_NO_SPEECH_STATUSES = frozenset({"NoMatch", "InitialSilenceTimeout", "BabbleTimeout"})


class AzureSTTClient(Recognizer):
    """Azure Cognitive Services speech-to-text REST client."""

    def __init__(
        self,
        *,
        api_key: str = AZURE_SPEECH_KEY,
        region: str = AZURE_SPEECH_REGION,
    ) -> None:
        self._api_key = api_key
        self._region = region
        self._available: bool = False
        self._last_health_check: float = 0.0
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return f"https://{self._region}.stt.speech.microsoft.com"

    @property
    def token_url(self) -> str:
        return f"https://{self._region}.api.cognitive.microsoft.com/sts/v1.0/issueToken"

    async def start(self) -> None:
        """Initialize the HTTP client and run initial health check."""
        if not self._api_key:
            self._available = False
            logger.info("No Azure Speech key — Azure STT disabled")
            return

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=AZURE_TIMEOUT,
            headers={"Ocp-Apim-Subscription-Key": self._api_key},
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
        return "azure-stt"

    def supports(self, language: Language) -> bool:
        return language in LOCALES

    async def transcribe(self, pcm_bytes: bytes, language: Language) -> str:
        await self._maybe_recheck_health()

        if not self._available or not self._client:
            raise NetworkError("Azure STT unavailable")

        try:
            response = await self._client.post(
                RECOGNITION_PATH,
                params={"language": LOCALES[language], "format": "simple"},
                content=self._wrap_wav(pcm_bytes),
                headers={
                    "Content-Type": f"audio/wav; codecs=audio/pcm; samplerate={AUDIO_SAMPLE_RATE}",
                    "Accept": "application/json",
                },
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"Azure STT request failed: {exc}") from exc

        check_response(response, "Azure STT")
        result = response.json()
        status = result.get("RecognitionStatus", "")
        if status in _NO_SPEECH_STATUSES:
            raise NoSpeechDetected(f"Azure STT: {status}")
        if status != "Success":
            raise NetworkError(f"Azure STT recognition status {status or 'missing'}")

        transcript = result.get("DisplayText", "").strip()
        if not transcript:
            raise NoSpeechDetected("Azure STT returned an empty transcript")
        logger.debug("Azure transcript (%s): %s", language.value, transcript)
        return transcript

    async def _check_health(self) -> None:
        """Validate the key by requesting an access token."""
        self._last_health_check = time.monotonic()
        if not self._client:
            self._available = False
            return
        try:
            resp = await self._client.post(self.token_url)
            if resp.status_code == 200:
                self._available = True
                logger.info("Azure STT available (region: %s)", self._region)
            else:
                self._available = False
                logger.warning(
                    "Azure token endpoint returned status %d — STT unavailable",
                    resp.status_code,
                )
        except (httpx.ConnectError, httpx.TimeoutException, OSError) as exc:
            self._available = False
            logger.warning("Azure STT not reachable — STT disabled: %s", exc)

    async def _maybe_recheck_health(self) -> None:
        if not self._available:
            elapsed = time.monotonic() - self._last_health_check
            if elapsed >= HEALTH_CHECK_INTERVAL:
                await self._check_health()

    @staticmethod
    def _wrap_wav(pcm_bytes: bytes, sample_rate: int = AUDIO_SAMPLE_RATE) -> bytes:
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)
            wf.setframerate(sample_rate)
            wf.writeframes(pcm_bytes)
        return buf.getvalue()
