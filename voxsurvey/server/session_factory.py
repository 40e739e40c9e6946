"""Builds the speech provider, state machine and controller for a session."""

import logging

from fastapi import FastAPI

from voxsurvey.interaction.state_machine import InteractionStateMachine
from voxsurvey.session.controller import SurveySessionController
from voxsurvey.speech.provider_factory import create_speech_provider, provider_matches
from voxsurvey.speech.types import PlatformDescriptor
from voxsurvey.survey.models import Language

logger = logging.getLogger(__name__)


async def open_session(
    app: FastAPI,
    platform: PlatformDescriptor,
    language: Language,
) -> SurveySessionController:
    """Replace the active session with a fresh one for *platform*.

    Reuses the running speech provider when the same backend would be
    selected, otherwise stops it and starts the new one.
    """
    previous: SurveySessionController | None = getattr(app.state, "controller", None)
    provider = None
    if previous is not None:
        await previous.machine.cancel()
        provider = previous.machine.provider

    if not provider_matches(provider, platform, language):
        if provider is not None:
            await provider.stop()
        provider = await create_speech_provider(platform, language)

    machine = InteractionStateMachine(provider, platform, signals=app.state.signal_bus)
    controller = SurveySessionController(
        app.state.bank,
        machine,
        app.state.store,
        platform,
        language=language,
        provider_factory=create_speech_provider,
    )
    app.state.controller = controller
    await controller.start()
    logger.info(
        "Session %s opened (%s, %s on %s/%s)",
        controller.session_id,
        language.value,
        provider.provider_name,
        platform.os,
        platform.browser,
    )
    return controller


async def close_session(app: FastAPI) -> None:
    """Cancel the active session and stop its speech provider."""
    controller: SurveySessionController | None = getattr(app.state, "controller", None)
    if controller is None:
        return
    await controller.machine.cancel()
    if controller.machine.provider is not None:
        await controller.machine.provider.stop()
    app.state.controller = None
