"""ElevenLabs voice for English prompts on the on-device pipeline.

There is no Khmer voice, so Khmer prompts fall through to Azure. A rejected
key or an exhausted character quota takes the client out of the synthesizer
chain until the next health check.
"""

import logging
import time

import httpx

from voxsurvey.config import (
    ELEVENLABS_API_KEY,
    ELEVENLABS_BASE_URL,
    HEALTH_CHECK_INTERVAL,
    TTS_MODEL,
    TTS_TIMEOUT,
    TTS_VOICE_ID,
)
from voxsurvey.speech.synthesizer import Synthesizer
from voxsurvey.survey.models import Language

logger = logging.getLogger(__name__)

# Bad key, or quota/rate limit hit.
_SUSPEND_STATUSES = (401, 429)

# Survey prompts are read slowly and evenly.
VOICE_SETTINGS = {"stability": 0.6, "similarity_boost": 0.75}


class ElevenLabsClient(Synthesizer):
    """ElevenLabs TTS client (English only)."""

    def __init__(self, *, api_key: str | None = None, voice_id: str | None = None) -> None:
        self._api_key_override = api_key
        self._voice_id_override = voice_id
        self._available: bool = False
        self._last_health_check: float = 0.0
        self._remaining_characters: int | None = None
        self._client: httpx.AsyncClient | None = None

    @property
    def api_key(self) -> str:
        return self._api_key_override if self._api_key_override is not None else ELEVENLABS_API_KEY

    @property
    def voice_id(self) -> str:
        return self._voice_id_override or TTS_VOICE_ID

    @property
    def remaining_characters(self) -> int | None:
        """Characters left on the subscription at the last health check."""
        return self._remaining_characters

    async def start(self) -> None:
        if not self.api_key:
            self._available = False
            logger.info("No ElevenLabs API key — English prompts go to Azure")
            return

        self._client = httpx.AsyncClient(
            base_url=ELEVENLABS_BASE_URL,
            timeout=TTS_TIMEOUT,
            headers={"xi-api-key": self.api_key},
        )
        await self._check_health()

    async def stop(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def is_available(self) -> bool:
        return self._available

    @property
    def provider_name(self) -> str:
        return "elevenlabs"

    def supports(self, language: Language) -> bool:
        return language == Language.EN

    async def synthesize(self, text: str, language: Language) -> bytes | None:
        if not self.supports(language):
            return None
        await self._maybe_recheck_health()
        if not self._available or not self._client:
            return None

        try:
            response = await self._client.post(
                f"/v1/text-to-speech/{self.voice_id}",
                json={
                    "text": text,
                    "model_id": TTS_MODEL,
                    "voice_settings": VOICE_SETTINGS,
                },
                params={"output_format": "pcm_16000"},
            )
        except httpx.HTTPError as exc:
            logger.warning("ElevenLabs request failed: %s", exc)
            return None

        if response.status_code in _SUSPEND_STATUSES:
            self._suspend(f"status {response.status_code}")
            return None
        if response.status_code != 200:
            logger.warning(
                "ElevenLabs returned status %d for a %d-character prompt",
                response.status_code,
                len(text),
            )
            return None
        return response.content

    def _suspend(self, reason: str) -> None:
        self._available = False
        self._last_health_check = time.monotonic()
        logger.warning(
            "ElevenLabs suspended (%s) — retrying in %.0fs", reason, HEALTH_CHECK_INTERVAL
        )

    async def _check_health(self) -> None:
        """Read the subscription to validate the key and the remaining quota."""
        self._last_health_check = time.monotonic()
        if not self._client:
            self._available = False
            return
        try:
            resp = await self._client.get("/v1/user/subscription")
        except (httpx.ConnectError, httpx.TimeoutException, OSError) as exc:
            self._available = False
            logger.warning("ElevenLabs unreachable at %s: %s", ELEVENLABS_BASE_URL, exc)
            return

        if resp.status_code != 200:
            self._available = False
            logger.warning("ElevenLabs subscription check returned %d", resp.status_code)
            return

        try:
            usage = resp.json()
            self._remaining_characters = usage["character_limit"] - usage["character_count"]
        except (ValueError, KeyError, TypeError):
            self._remaining_characters = None

        if self._remaining_characters is not None and self._remaining_characters <= 0:
            self._available = False
            logger.warning("ElevenLabs character quota exhausted")
            return

        self._available = True
        logger.info(
            "ElevenLabs available (voice: %s, model: %s, remaining: %s)",
            self.voice_id,
            TTS_MODEL,
            self._remaining_characters,
        )

    async def _maybe_recheck_health(self) -> None:
        if self._available:
            return
        if time.monotonic() - self._last_health_check >= HEALTH_CHECK_INTERVAL:
            await self._check_health()
