"""Azure neural TTS over the REST endpoint.

Covers both survey languages; the Khmer voice is the reason this client
exists. Requests SSML and receives raw 16kHz PCM so the output plugs straight
into :class:`AudioPlayer`.
"""

import logging
import time
from xml.sax.saxutils import escape

import httpx

from voxsurvey.config import (
    AZURE_SPEECH_KEY,
    AZURE_SPEECH_REGION,
    AZURE_TIMEOUT,
    AZURE_VOICE_EN,
    AZURE_VOICE_KM,
    HEALTH_CHECK_INTERVAL,
)
from voxsurvey.speech.synthesizer import Synthesizer
from voxsurvey.speech.types import LOCALES
from voxsurvey.survey.models import Language

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "raw-16khz-16bit-mono-pcm"

VOICES: dict[Language, str] = {
    Language.EN: AZURE_VOICE_EN,
    Language.KM: AZURE_VOICE_KM,
}


def build_ssml(text: str, language: Language) -> str:
    """Wrap *text* in a single-voice SSML document."""
    locale = LOCALES[language]
    return (
        f"<speak version='1.0' xml:lang='{locale}'>"
        f"<voice xml:lang='{locale}' name='{VOICES[language]}'>"
        f"{escape(text)}"
        "</voice></speak>"
    )


class AzureTTSClient(Synthesizer):
    """Azure Cognitive Services text-to-speech client."""

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
        return f"https://{self._region}.tts.speech.microsoft.com"

    async def start(self) -> None:
        """Initialize the HTTP client and run initial health check."""
        if not self._api_key:
            self._available = False
            logger.info("No Azure Speech key — Azure TTS disabled")
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
        return "azure-tts"

    def supports(self, language: Language) -> bool:
        return language in VOICES

    async def synthesize(self, text: str, language: Language) -> bytes | None:
        await self._maybe_recheck_health()

        if not self._available or not self._client or not self.supports(language):
            return None

        try:
            response = await self._client.post(
                "/cognitiveservices/v1",
                content=build_ssml(text, language).encode("utf-8"),
                headers={
                    "Content-Type": "application/ssml+xml",
                    "X-Microsoft-OutputFormat": OUTPUT_FORMAT,
                    "User-Agent": "voxsurvey",
                },
            )
            response.raise_for_status()
            return response.content
        except Exception:
            logger.warning("Azure synthesis failed (%s)", language.value, exc_info=True)
            return None

    async def _check_health(self) -> None:
        """Validate the key by listing voices."""
        self._last_health_check = time.monotonic()
        if not self._client:
            self._available = False
            return
        try:
            resp = await self._client.get("/cognitiveservices/voices/list")
            if resp.status_code == 200:
                self._available = True
                logger.info("Azure TTS available (region: %s)", self._region)
            else:
                self._available = False
                logger.warning(
                    "Azure TTS returned status %d — TTS unavailable",
                    resp.status_code,
                )
        except (httpx.ConnectError, httpx.TimeoutException, OSError) as exc:
            self._available = False
            logger.warning(
                "Azure TTS not available at %s — TTS disabled: %s",
                self.base_url,
                exc,
            )

    async def _maybe_recheck_health(self) -> None:
        if not self._available:
            elapsed = time.monotonic() - self._last_health_check
            if elapsed >= HEALTH_CHECK_INTERVAL:
                await self._check_health()
