"""Tests for voxsurvey.server — FastAPI routes.

Uses httpx.AsyncClient with ASGITransport for async testing.
The app and async_client fixtures are defined in conftest.py.
"""

from unittest.mock import AsyncMock, patch

import httpx

from conftest import IPHONE_UA, FakeSpeechProvider
from voxsurvey import __version__
from voxsurvey.server.app import create_app
from voxsurvey.speech.types import BackendKind


async def _answer_required(client: httpx.AsyncClient) -> None:
    for question_id, value in [
        ("q1", "Dara"),
        ("q2", "Good"),
        ("q3", "8"),
        ("q4", ["Easy to Use"]),
        ("q5", "No"),
        ("q7", ["Friend Referral", "Other"]),
    ]:
        response = await client.post(
            "/session/answer", json={"question_id": question_id, "value": value}
        )
        assert response.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


class TestHealth:

    async def test_health_without_voice(self, async_client: httpx.AsyncClient):
        response = await async_client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["version"] == __version__
        assert body["session_active"] is True
        assert body["voice_enabled"] is False
        assert body["signal_subscribers"] == 0
        assert "speech_backend" not in body

    async def test_health_without_session(self, app, async_client: httpx.AsyncClient):
        app.state.controller = None
        body = (await async_client.get("/health")).json()
        assert body["session_active"] is False


# ---------------------------------------------------------------------------
# GET /session
# ---------------------------------------------------------------------------


class TestSnapshot:

    async def test_first_question(self, async_client: httpx.AsyncClient):
        body = (await async_client.get("/session")).json()
        assert body["status"] == "ok"
        assert body["index"] == 0
        assert body["total"] == 7
        assert body["language"] == "en"
        assert body["question"]["id"] == "q1"
        assert body["answer"] is None
        assert body["can_advance"] is False
        assert body["interaction"]["phase"] == "idle"

    async def test_no_session(self, app, async_client: httpx.AsyncClient):
        app.state.controller = None
        for path in ("/session/next", "/session/read", "/session/answer", "/session/submit"):
            body = (await async_client.post(path, json={})).json()
            assert body == {"status": "error", "reason": "no active session"}
        assert (await async_client.get("/session")).json()["status"] == "error"


# ---------------------------------------------------------------------------
# Answers and navigation
# ---------------------------------------------------------------------------


class TestAnswerAndNavigate:

    async def test_answer_then_next(self, async_client: httpx.AsyncClient, store):
        response = await async_client.post("/session/answer", json={"value": "Dara"})
        body = response.json()
        assert body == {"status": "ok", "question_id": "q1", "answer": "Dara", "can_advance": True}

        body = (await async_client.post("/session/next")).json()
        assert body["status"] == "ok"
        assert body["index"] == 1
        assert body["answers"] == {"q1": "Dara"}
        assert store.save_count == 1

    async def test_next_blocked(self, async_client: httpx.AsyncClient):
        body = (await async_client.post("/session/next")).json()
        assert body["status"] == "blocked"
        assert body["index"] == 0

    async def test_previous_blocked_on_first(self, async_client: httpx.AsyncClient):
        body = (await async_client.post("/session/previous")).json()
        assert body["status"] == "blocked"

    async def test_multi_choice_answer(self, async_client: httpx.AsyncClient):
        body = (
            await async_client.post(
                "/session/answer",
                json={"question_id": "q4", "value": ["Good Value", "Customer Support"]},
            )
        ).json()
        assert body["answer"] == "Customer Support,Good Value"

    async def test_missing_value(self, async_client: httpx.AsyncClient):
        body = (await async_client.post("/session/answer", json={})).json()
        assert body == {"status": "error", "reason": "value is required"}

    async def test_invalid_json(self, async_client: httpx.AsyncClient):
        response = await async_client.post(
            "/session/answer", content=b"not json", headers={"content-type": "application/json"}
        )
        assert response.json()["status"] == "error"

    async def test_unknown_question(self, async_client: httpx.AsyncClient):
        body = (
            await async_client.post("/session/answer", json={"question_id": "nope", "value": "x"})
        ).json()
        assert body["status"] == "error"
        assert "nope" in body["reason"]

    async def test_list_for_single_choice(self, async_client: httpx.AsyncClient):
        body = (
            await async_client.post(
                "/session/answer", json={"question_id": "q2", "value": ["Good", "Poor"]}
            )
        ).json()
        assert body["status"] == "error"


# ---------------------------------------------------------------------------
# Voice actions
# ---------------------------------------------------------------------------


class TestVoiceActions:

    async def test_ignored_without_provider(self, async_client: httpx.AsyncClient):
        for path in ("/session/read", "/session/listen", "/session/re-record", "/session/confirm"):
            body = (await async_client.post(path)).json()
            assert body == {"status": "ignored", "phase": "idle"}

    async def test_stop(self, async_client: httpx.AsyncClient):
        body = (await async_client.post("/session/stop")).json()
        assert body == {"status": "ok", "phase": "idle"}

    async def test_voice_toggle(self, async_client: httpx.AsyncClient):
        body = (await async_client.post("/session/voice", json={"enabled": False})).json()
        assert body == {"status": "ok", "voice_enabled": False}

    async def test_voice_requires_bool(self, async_client: httpx.AsyncClient):
        body = (await async_client.post("/session/voice", json={"enabled": "yes"})).json()
        assert body["status"] == "error"


# ---------------------------------------------------------------------------
# Language
# ---------------------------------------------------------------------------


class TestLanguage:

    async def test_switch_to_khmer(self, async_client: httpx.AsyncClient):
        await async_client.post("/session/answer", json={"question_id": "q2", "value": "Good"})
        body = (await async_client.post("/session/language", json={"language": "km"})).json()
        assert body["status"] == "ok"
        assert body["language"] == "km"
        assert body["answers"]["q2"] == "ល្អ"

    async def test_unsupported_language(self, async_client: httpx.AsyncClient):
        body = (await async_client.post("/session/language", json={"language": "fr"})).json()
        assert body == {"status": "error", "reason": "unsupported language"}


# ---------------------------------------------------------------------------
# Submit and restart
# ---------------------------------------------------------------------------


class TestSubmit:

    async def test_blocked_until_complete(self, async_client: httpx.AsyncClient):
        body = (await async_client.post("/session/submit")).json()
        assert body["status"] == "blocked"
        assert body["submitted"] is False

    async def test_submit_saves_completed_record(self, async_client: httpx.AsyncClient, store):
        await _answer_required(async_client)
        body = (await async_client.post("/session/submit")).json()
        assert body["status"] == "ok"
        assert body["submitted"] is True

        record = store.records[body["session_id"]]
        assert record["survey_status"] == "completed"
        assert record["q5"] == 0
        assert record["q7FriendReferral"] == 1
        assert record["q7Other"] == 1
        assert record["q7SocialMedia"] == 0

    async def test_restart(self, async_client: httpx.AsyncClient):
        first = (await async_client.get("/session")).json()["session_id"]
        await async_client.post("/session/answer", json={"value": "Dara"})
        body = (await async_client.post("/session/restart")).json()
        assert body["status"] == "ok"
        assert body["session_id"] != first
        assert body["answers"] == {}


# ---------------------------------------------------------------------------
# POST /session/start
# ---------------------------------------------------------------------------


class TestStartSession:

    async def test_opens_session_for_device(self, app, async_client: httpx.AsyncClient):
        provider = FakeSpeechProvider(kind=BackendKind.CLOUD_SDK)
        factory = AsyncMock(return_value=provider)
        with patch("voxsurvey.server.session_factory.create_speech_provider", factory):
            body = (
                await async_client.post(
                    "/session/start", json={"user_agent": IPHONE_UA, "language": "km"}
                )
            ).json()

        assert body["status"] == "ok"
        assert body["language"] == "km"
        assert body["index"] == 0
        platform, language = factory.call_args.args
        assert platform.is_ios is True
        assert language.value == "km"

        controller = app.state.controller
        assert controller.machine.provider is provider
        await controller.machine.join()
        assert provider.spoken[0][0].startswith(controller.current_question.prompt)

        health = (await async_client.get("/health")).json()
        assert health["speech_backend"] == "cloud_sdk"
        assert health["speech_provider"] == "fake-cloud_sdk"
        await controller.machine.cancel()

    async def test_reuses_matching_provider(self, app, async_client: httpx.AsyncClient):
        provider = FakeSpeechProvider(kind=BackendKind.CLOUD_REST)
        factory = AsyncMock(return_value=provider)
        with patch("voxsurvey.server.session_factory.create_speech_provider", factory):
            await async_client.post("/session/start", json={"user_agent": IPHONE_UA})
            await async_client.post("/session/start", json={"user_agent": IPHONE_UA})

        factory.assert_awaited_once()
        assert provider.stopped is False
        await app.state.controller.machine.cancel()

    async def test_reuses_rest_fallback(self, app, async_client: httpx.AsyncClient):
        provider = FakeSpeechProvider(kind=BackendKind.CLOUD_REST)
        provider.fallback_for = BackendKind.CLOUD_SDK
        factory = AsyncMock(return_value=provider)
        body = {"user_agent": IPHONE_UA, "language": "km"}
        with patch("voxsurvey.server.session_factory.create_speech_provider", factory):
            await async_client.post("/session/start", json=body)
            await async_client.post("/session/start", json=body)

        factory.assert_awaited_once()
        assert provider.stopped is False
        await app.state.controller.machine.cancel()

    async def test_unsupported_language(self, async_client: httpx.AsyncClient):
        body = (await async_client.post("/session/start", json={"language": "fr"})).json()
        assert body == {"status": "error", "reason": "unsupported language"}


# ---------------------------------------------------------------------------
# App factory and SSE route
# ---------------------------------------------------------------------------


class TestCreateApp:

    def test_routes_registered(self, bank):
        app = create_app(bank)
        paths = {route.path for route in app.routes}
        assert {"/health", "/session", "/session/start", "/signals"} <= paths
        assert app.state.controller is None
        assert app.state.bank is bank
