"""FastAPI application factory for voxsurvey.

The server drives one survey session at a time on the machine it runs on
(the kiosk model): the microphone and speaker are local, while the client
that opened the session supplies its user agent so capability policies
(auto-record, voice confirmation) match the answering device.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from voxsurvey import __version__
from voxsurvey.interaction.signals import SignalBus
from voxsurvey.server.routes import router
from voxsurvey.server.session_factory import close_session, open_session
from voxsurvey.session.persistence import ResponseStore, ResponseStoreClient
from voxsurvey.speech.types import PlatformDescriptor
from voxsurvey.survey.models import Language
from voxsurvey.survey.question_bank import QuestionBank

logger = logging.getLogger(__name__)

# Module-level singletons shared across the process.
signal_bus = SignalBus()
response_store: ResponseStore = ResponseStoreClient()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the store and a host session; tear both down on shutdown."""
    logger.info("voxsurvey server starting up")
    await app.state.store.start()
    await open_session(app, PlatformDescriptor.host(), Language.EN)
    try:
        yield
    finally:
        logger.info("voxsurvey server shutting down")
        await close_session(app)
        await app.state.store.stop()
        logger.info("Response store closed")


def create_app(bank: QuestionBank | None = None) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    The returned app has:
    * ``app.state.bank`` — the loaded :class:`QuestionBank`
    * ``app.state.store`` — the response store client
    * ``app.state.signal_bus`` — the shared :class:`SignalBus`
    * ``app.state.controller`` — set by the lifespan and ``POST /session/start``
    """
    app = FastAPI(
        title="voxsurvey",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.bank = bank or QuestionBank.load()
    app.state.store = response_store
    app.state.signal_bus = signal_bus
    app.state.controller = None

    app.include_router(router)

    logger.info("FastAPI app created")
    return app
