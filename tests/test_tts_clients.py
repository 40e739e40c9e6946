"""Tests for the synthesizers: ElevenLabs (English) and Azure neural TTS."""

from unittest.mock import AsyncMock, patch

import httpx

from voxsurvey.speech.azure_tts_client import OUTPUT_FORMAT, AzureTTSClient, build_ssml
from voxsurvey.speech.elevenlabs_client import ElevenLabsClient
from voxsurvey.survey.models import Language


def _response(status_code: int = 200, content: bytes = b"") -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        content=content,
        request=httpx.Request("POST", "/"),
    )


def _json_response(payload: dict) -> httpx.Response:
    return httpx.Response(200, json=payload, request=httpx.Request("GET", "/"))


# ---------------------------------------------------------------------------
# ElevenLabs
# ---------------------------------------------------------------------------


class TestElevenLabsClient:

    async def test_no_api_key_disables(self, monkeypatch):
        monkeypatch.setattr("voxsurvey.speech.elevenlabs_client.ELEVENLABS_API_KEY", "")
        client = ElevenLabsClient()
        await client.start()
        assert client.is_available is False
        assert await client.synthesize("Hello", Language.EN) is None

    async def test_english_only(self):
        client = ElevenLabsClient(api_key="xi-key")
        assert client.supports(Language.EN) is True
        assert client.supports(Language.KM) is False

    async def test_synthesize_returns_pcm(self):
        with patch("voxsurvey.speech.elevenlabs_client.httpx.AsyncClient") as MockClient:
            instance = AsyncMock()
            instance.get = AsyncMock(
                return_value=_json_response({"character_count": 100, "character_limit": 10000})
            )
            instance.post = AsyncMock(return_value=_response(200, b"\x01\x02"))
            MockClient.return_value = instance
            client = ElevenLabsClient(api_key="xi-key", voice_id="voice-1")
            await client.start()

        assert client.is_available is True
        assert client.remaining_characters == 9900
        instance.get.assert_awaited_once_with("/v1/user/subscription")
        assert await client.synthesize("What is your name?", Language.EN) == b"\x01\x02"
        args, kwargs = instance.post.call_args
        assert args[0] == "/v1/text-to-speech/voice-1"
        assert kwargs["params"] == {"output_format": "pcm_16000"}
        assert kwargs["json"]["text"] == "What is your name?"

    async def test_exhausted_quota_disables(self):
        with patch("voxsurvey.speech.elevenlabs_client.httpx.AsyncClient") as MockClient:
            instance = AsyncMock()
            instance.get = AsyncMock(
                return_value=_json_response({"character_count": 500, "character_limit": 500})
            )
            MockClient.return_value = instance
            client = ElevenLabsClient(api_key="xi-key")
            await client.start()

        assert client.is_available is False
        assert await client.synthesize("Hello", Language.EN) is None
        instance.post.assert_not_awaited()

    async def test_khmer_request_skipped(self):
        with patch("voxsurvey.speech.elevenlabs_client.httpx.AsyncClient") as MockClient:
            instance = AsyncMock()
            instance.get = AsyncMock(return_value=_response(200))
            MockClient.return_value = instance
            client = ElevenLabsClient(api_key="xi-key")
            await client.start()

        assert await client.synthesize("សួស្តី", Language.KM) is None
        instance.post.assert_not_awaited()

    async def test_rate_limit_suspends(self):
        with patch("voxsurvey.speech.elevenlabs_client.httpx.AsyncClient") as MockClient:
            instance = AsyncMock()
            instance.get = AsyncMock(return_value=_response(200))
            instance.post = AsyncMock(return_value=_response(429))
            MockClient.return_value = instance
            client = ElevenLabsClient(api_key="xi-key")
            await client.start()

        assert await client.synthesize("Hello", Language.EN) is None
        assert client.is_available is False
        assert await client.synthesize("Hello again", Language.EN) is None
        assert instance.post.await_count == 1

    async def test_server_error_keeps_client(self):
        with patch("voxsurvey.speech.elevenlabs_client.httpx.AsyncClient") as MockClient:
            instance = AsyncMock()
            instance.get = AsyncMock(return_value=_response(200))
            instance.post = AsyncMock(return_value=_response(503))
            MockClient.return_value = instance
            client = ElevenLabsClient(api_key="xi-key")
            await client.start()

        assert await client.synthesize("Hello", Language.EN) is None
        assert client.is_available is True


# ---------------------------------------------------------------------------
# Azure TTS
# ---------------------------------------------------------------------------


class TestBuildSsml:

    def test_khmer_voice_and_locale(self):
        ssml = build_ssml("សួស្តី", Language.KM)
        assert "xml:lang='km-KH'" in ssml
        assert "km-KH" in ssml
        assert "សួស្តី" in ssml

    def test_escapes_markup(self):
        ssml = build_ssml('Say "yes" & <no>', Language.EN)
        assert "&amp;" in ssml
        assert "&lt;no&gt;" in ssml


class TestAzureTTSClient:

    async def test_no_key_disables(self):
        client = AzureTTSClient(api_key="", region="southeastasia")
        await client.start()
        assert client.is_available is False
        assert await client.synthesize("Hello", Language.EN) is None

    async def test_synthesize_khmer(self):
        with patch("voxsurvey.speech.azure_tts_client.httpx.AsyncClient") as MockClient:
            instance = AsyncMock()
            instance.get = AsyncMock(return_value=_response(200))
            instance.post = AsyncMock(return_value=_response(200, b"\x00\x01"))
            MockClient.return_value = instance
            client = AzureTTSClient(api_key="azure-key", region="southeastasia")
            await client.start()

        assert MockClient.call_args.kwargs["base_url"] == (
            "https://southeastasia.tts.speech.microsoft.com"
        )
        instance.get.assert_awaited_once_with("/cognitiveservices/voices/list")
        assert await client.synthesize("សួស្តី", Language.KM) == b"\x00\x01"
        args, kwargs = instance.post.call_args
        assert args[0] == "/cognitiveservices/v1"
        assert kwargs["headers"]["X-Microsoft-OutputFormat"] == OUTPUT_FORMAT
        assert "សួស្តី" in kwargs["content"].decode("utf-8")

    async def test_failure_returns_none(self):
        with patch("voxsurvey.speech.azure_tts_client.httpx.AsyncClient") as MockClient:
            instance = AsyncMock()
            instance.get = AsyncMock(return_value=_response(200))
            instance.post = AsyncMock(side_effect=httpx.ConnectError("offline"))
            MockClient.return_value = instance
            client = AzureTTSClient(api_key="azure-key")
            await client.start()

        assert await client.synthesize("Hello", Language.EN) is None

    async def test_unhealthy(self):
        with patch("voxsurvey.speech.azure_tts_client.httpx.AsyncClient") as MockClient:
            instance = AsyncMock()
            instance.get = AsyncMock(return_value=_response(401))
            MockClient.return_value = instance
            client = AzureTTSClient(api_key="bad")
            await client.start()

        assert client.is_available is False
        assert client.provider_name == "azure-tts"
