"""HTTP routes for the voxsurvey server.

Endpoints
---------
GET  /health               Server health, version, speech backend state.

GET  /session              Snapshot of the active session: question, answer,
                           interaction phase and counters.

POST /session/start        Open a new session. JSON: ``{"user_agent", "language"}``.
POST /session/read         Read the current question aloud.
POST /session/listen       Manual trigger: start capturing an answer.
POST /session/stop         Finish the current capture early.
POST /session/answer       Manual answer. JSON: ``{"value", "question_id"?}``.
POST /session/accept       Accept the resolved answer without voice confirmation.
POST /session/re-record    Drop the resolved answer and record again.
POST /session/confirm      Ask for a spoken yes/no again after an unclear one.
POST /session/next         Advance (blocked until the answer is valid).
POST /session/previous     Go back one question.
POST /session/submit       Save the completed survey.
POST /session/restart      Start a new attempt with a new session id.
POST /session/language     Switch language. JSON: ``{"language": "en" | "km"}``.
POST /session/voice        Toggle voice. JSON: ``{"enabled": bool}``.

GET  /signals              Streams interaction signals as Server-Sent Events.
"""

import asyncio
import logging

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from voxsurvey import __version__
from voxsurvey.interaction.signals import SignalBus
from voxsurvey.server.session_factory import open_session
from voxsurvey.session.controller import SurveySessionController
from voxsurvey.speech.types import PlatformDescriptor
from voxsurvey.survey.models import Language

logger = logging.getLogger(__name__)

router = APIRouter()

_NO_SESSION = {"status": "error", "reason": "no active session"}


def _get_controller(request: Request) -> SurveySessionController | None:
    """Retrieve the active session controller from application state."""
    return getattr(request.app.state, "controller", None)


def _get_signal_bus(request: Request) -> SignalBus:
    return request.app.state.signal_bus


async def _read_json(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Failed to decode JSON body")
        return None
    return body if isinstance(body, dict) else None


def _parse_language(raw: str | None) -> Language | None:
    try:
        return Language(raw)
    except ValueError:
        return None


def session_snapshot(controller: SurveySessionController) -> dict:
    """JSON-ready view of the active session."""
    question = controller.current_question
    answer = controller.answer_for(question.id)
    return {
        "session_id": controller.session_id,
        "language": controller.language.value,
        "index": controller.index,
        "total": len(controller.questions),
        "question": question.model_dump(mode="json"),
        "answer": answer.as_text() if answer is not None else None,
        "can_advance": controller.can_advance(),
        "submitted": controller.submitted,
        "interaction": controller.machine.state.model_dump(mode="json"),
        "answers": {qid: a.as_text() for qid, a in controller.answers.items()},
    }


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


@router.get("/health")
async def health(request: Request) -> dict:
    """Return server health information."""
    controller = _get_controller(request)
    signal_bus = _get_signal_bus(request)

    result = {
        "status": "ok",
        "version": __version__,
        "signal_subscribers": signal_bus.subscriber_count,
        "session_active": controller is not None,
    }

    if controller is not None:
        provider = controller.machine.provider
        result["voice_enabled"] = controller.machine.voice_enabled
        if provider is not None:
            result["speech_backend"] = provider.kind.value
            result["speech_provider"] = provider.provider_name
            result["speech_available"] = provider.is_available

    return result


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("/session")
async def get_session(request: Request) -> dict:
    controller = _get_controller(request)
    if controller is None:
        return _NO_SESSION
    return {"status": "ok", **session_snapshot(controller)}


@router.post("/session/start")
async def start_session(request: Request) -> dict:
    """Open a fresh session for the calling device."""
    body = await _read_json(request) or {}
    language = _parse_language(body.get("language", "en"))
    if language is None:
        return {"status": "error", "reason": "unsupported language"}

    user_agent = body.get("user_agent") or request.headers.get("user-agent", "")
    platform = PlatformDescriptor.from_user_agent(user_agent)
    controller = await open_session(request.app, platform, language)
    return {"status": "ok", **session_snapshot(controller)}


async def _voice_action(request: Request, action: str) -> dict:
    controller = _get_controller(request)
    if controller is None:
        return _NO_SESSION
    started = await getattr(controller.machine, action)()
    return {
        "status": "ok" if started else "ignored",
        "phase": controller.machine.phase.value,
    }


@router.post("/session/read")
async def read_question(request: Request) -> dict:
    return await _voice_action(request, "read_question")


@router.post("/session/listen")
async def start_listening(request: Request) -> dict:
    return await _voice_action(request, "start_listening")


@router.post("/session/accept")
async def accept_answer(request: Request) -> dict:
    return await _voice_action(request, "accept_pending")


@router.post("/session/re-record")
async def re_record(request: Request) -> dict:
    return await _voice_action(request, "re_record")


@router.post("/session/confirm")
async def retry_confirmation(request: Request) -> dict:
    return await _voice_action(request, "retry_confirmation")


@router.post("/session/stop")
async def stop_listening(request: Request) -> dict:
    controller = _get_controller(request)
    if controller is None:
        return _NO_SESSION
    controller.machine.stop_listening()
    return {"status": "ok", "phase": controller.machine.phase.value}


@router.post("/session/answer")
async def manual_answer(request: Request) -> dict:
    """Manual answer override — bypass speech entirely.

    Accepts JSON: ``{"value": "..." | [...], "question_id": "..."}``. The
    question defaults to the current one.
    """
    controller = _get_controller(request)
    if controller is None:
        return _NO_SESSION

    body = await _read_json(request)
    if body is None or "value" not in body:
        return {"status": "error", "reason": "value is required"}

    question_id = body.get("question_id") or controller.current_question.id
    try:
        answer = await controller.set_answer(question_id, body["value"])
    except KeyError:
        return {"status": "error", "reason": f"unknown question {question_id}"}
    except ValueError as exc:
        return {"status": "error", "reason": str(exc)}

    return {
        "status": "ok",
        "question_id": answer.question_id,
        "answer": answer.as_text(),
        "can_advance": controller.can_advance(),
    }


@router.post("/session/next")
async def next_question(request: Request) -> dict:
    controller = _get_controller(request)
    if controller is None:
        return _NO_SESSION
    moved = await controller.next()
    return {"status": "ok" if moved else "blocked", **session_snapshot(controller)}


@router.post("/session/previous")
async def previous_question(request: Request) -> dict:
    controller = _get_controller(request)
    if controller is None:
        return _NO_SESSION
    moved = await controller.previous()
    return {"status": "ok" if moved else "blocked", **session_snapshot(controller)}


@router.post("/session/submit")
async def submit(request: Request) -> dict:
    controller = _get_controller(request)
    if controller is None:
        return _NO_SESSION
    saved = await controller.submit()
    return {
        "status": "ok" if saved else "blocked",
        "session_id": controller.session_id,
        "submitted": controller.submitted,
    }


@router.post("/session/restart")
async def restart(request: Request) -> dict:
    controller = _get_controller(request)
    if controller is None:
        return _NO_SESSION
    await controller.restart()
    return {"status": "ok", **session_snapshot(controller)}


@router.post("/session/language")
async def set_language(request: Request) -> dict:
    controller = _get_controller(request)
    if controller is None:
        return _NO_SESSION

    body = await _read_json(request) or {}
    language = _parse_language(body.get("language"))
    if language is None:
        return {"status": "error", "reason": "unsupported language"}

    await controller.set_language(language)
    return {"status": "ok", **session_snapshot(controller)}


@router.post("/session/voice")
async def set_voice(request: Request) -> dict:
    controller = _get_controller(request)
    if controller is None:
        return _NO_SESSION

    body = await _read_json(request) or {}
    enabled = body.get("enabled")
    if not isinstance(enabled, bool):
        return {"status": "error", "reason": "enabled must be true or false"}

    await controller.set_voice_enabled(enabled)
    return {"status": "ok", "voice_enabled": controller.machine.voice_enabled}


# ---------------------------------------------------------------------------
# GET /signals  (Server-Sent Events)
# ---------------------------------------------------------------------------


@router.get("/signals")
async def signal_stream(request: Request) -> EventSourceResponse:
    """Stream interaction signals as Server-Sent Events.

    Each SSE message has:
    * ``event`` — the signal kind (e.g. ``voice_disabled``)
    * ``data``  — the full InteractionSignal serialised as JSON
    """
    signal_bus = _get_signal_bus(request)

    async def _generate():
        queue = await signal_bus.subscribe()
        try:
            while True:
                if await request.is_disconnected():
                    logger.debug("Signal SSE client disconnected")
                    break
                try:
                    signal = await asyncio.wait_for(queue.get(), timeout=15.0)
                except asyncio.TimeoutError:
                    yield {"comment": "ping"}
                    continue
                yield {
                    "event": signal.kind.value,
                    "data": signal.model_dump_json(),
                }
        except asyncio.CancelledError:
            logger.debug("Signal SSE stream cancelled")
        finally:
            await signal_bus.unsubscribe(queue)
            logger.debug("Signal SSE subscriber cleaned up")

    return EventSourceResponse(_generate())
