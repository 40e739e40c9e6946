"""Shared fixtures for voxsurvey tests."""

import asyncio

import httpx
import pytest

from voxsurvey.interaction.signals import SignalBus
from voxsurvey.interaction.state_machine import InteractionStateMachine
from voxsurvey.session.controller import SurveySessionController
from voxsurvey.session.persistence import InMemoryResponseStore
from voxsurvey.speech.provider import SpeechProvider
from voxsurvey.speech.types import BackendKind, NoSpeechDetected, PlatformDescriptor
from voxsurvey.survey.models import Language, Option, Question, QuestionKind
from voxsurvey.survey.question_bank import QuestionBank

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
)
CHROME_DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class FakeSpeechProvider(SpeechProvider):
    """Scripted provider: ``replies`` feed listen(), ``speak_errors`` feed speak().

    A reply that is an exception instance is raised instead of returned.
    When the script runs out, listen() raises NoSpeechDetected. Setting
    ``listen_gate`` / ``speak_gate`` to an unset Event blocks the call until
    it is set (or the caller is cancelled).
    """

    def __init__(
        self,
        replies: list | None = None,
        *,
        speak_errors: list | None = None,
        kind: BackendKind = BackendKind.NATIVE,
        available: bool = True,
    ) -> None:
        self.replies = list(replies or [])
        self.speak_errors = list(speak_errors or [])
        self.spoken: list[tuple[str, Language]] = []
        self.listen_count = 0
        self.cancel_count = 0
        self.stop_listening_count = 0
        self.started = False
        self.stopped = False
        self.listen_gate: asyncio.Event | None = None
        self.speak_gate: asyncio.Event | None = None
        self._kind = kind
        self._available = available
        self._busy = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    @property
    def is_available(self) -> bool:
        return self._available

    @property
    def kind(self) -> BackendKind:
        return self._kind

    @property
    def provider_name(self) -> str:
        return f"fake-{self._kind.value}"

    @property
    def is_busy(self) -> bool:
        return self._busy

    async def speak(self, text: str, language: Language) -> None:
        self.spoken.append((text, language))
        self._busy = True
        try:
            if self.speak_gate is not None:
                await self.speak_gate.wait()
            if self.speak_errors:
                error = self.speak_errors.pop(0)
                if error is not None:
                    raise error
        finally:
            self._busy = False

    async def listen(self, language: Language) -> str:
        self.listen_count += 1
        self._busy = True
        try:
            if self.listen_gate is not None:
                await self.listen_gate.wait()
            if not self.replies:
                raise NoSpeechDetected("script exhausted")
            reply = self.replies.pop(0)
            if isinstance(reply, BaseException):
                raise reply
            return reply
        finally:
            self._busy = False

    def stop_listening(self) -> None:
        self.stop_listening_count += 1

    async def cancel(self) -> None:
        self.cancel_count += 1


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until *predicate()* is true."""

    async def _poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


def spoken_texts(provider: FakeSpeechProvider) -> list[str]:
    return [text for text, _language in provider.spoken]


# ---------------------------------------------------------------------------
# Questions and bank
# ---------------------------------------------------------------------------


@pytest.fixture
def bank() -> QuestionBank:
    """The bundled English/Khmer question bank."""
    return QuestionBank.load()


@pytest.fixture
def yes_no_question() -> Question:
    return Question(
        id="q5",
        kind=QuestionKind.SINGLE_CHOICE,
        prompt="Would you use our service again?",
        options=(Option(value=1, label="Yes"), Option(value=0, label="No")),
    )


@pytest.fixture
def experience_question() -> Question:
    return Question(
        id="q2",
        kind=QuestionKind.SINGLE_CHOICE,
        prompt="How would you rate your overall experience with our service?",
        options=tuple(
            Option(value=value, label=label)
            for value, label in enumerate(
                ["Excellent", "Good", "Average", "Poor", "Very Poor"], start=1
            )
        ),
    )


@pytest.fixture
def source_question() -> Question:
    return Question(
        id="q7",
        kind=QuestionKind.MULTI_CHOICE,
        prompt="How did you hear about us?",
        options=tuple(
            Option(value=value, label=label)
            for value, label in enumerate(
                ["Social Media", "Friend Referral", "Search Engine", "Advertisement", "Other"],
                start=1,
            )
        ),
    )


@pytest.fixture
def name_question() -> Question:
    return Question(id="q1", kind=QuestionKind.TEXT, prompt="What is your name?")


@pytest.fixture
def rating_question() -> Question:
    return Question(
        id="q3",
        kind=QuestionKind.RATING,
        prompt="On a scale of 1 to 10, how likely are you to recommend us to a friend?",
    )


# ---------------------------------------------------------------------------
# Platforms
# ---------------------------------------------------------------------------


@pytest.fixture
def desktop() -> PlatformDescriptor:
    """Chrome on Windows: native recognition, auto-record, voice confirmation."""
    return PlatformDescriptor.from_user_agent(CHROME_DESKTOP_UA)


@pytest.fixture
def iphone() -> PlatformDescriptor:
    """iOS Safari: no auto-record, no voice confirmation."""
    return PlatformDescriptor.from_user_agent(IPHONE_UA)


# ---------------------------------------------------------------------------
# Engine pieces
# ---------------------------------------------------------------------------


@pytest.fixture
def signal_bus() -> SignalBus:
    """Return a fresh SignalBus with a small queue for testing."""
    return SignalBus(maxsize=16)


@pytest.fixture
def store() -> InMemoryResponseStore:
    return InMemoryResponseStore()


@pytest.fixture
def provider() -> FakeSpeechProvider:
    return FakeSpeechProvider()


@pytest.fixture
def make_machine(signal_bus: SignalBus, desktop: PlatformDescriptor):
    """Factory for state machines with zero delays."""

    def _make(provider=None, platform=None, **kwargs) -> InteractionStateMachine:
        kwargs.setdefault("auto_record_delay", 0)
        kwargs.setdefault("settle_delay", 0)
        kwargs.setdefault("max_listen_retries", 2)
        kwargs.setdefault("max_re_records", 3)
        kwargs.setdefault("max_confirmation_retries", 1)
        return InteractionStateMachine(
            provider, platform or desktop, signals=signal_bus, **kwargs
        )

    return _make


@pytest.fixture
def controller(bank, store, signal_bus, make_machine, desktop) -> SurveySessionController:
    """A voice-less controller: every answer goes through set_answer()."""
    return SurveySessionController(bank, make_machine(None), store, desktop)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
async def app(bank, store, signal_bus, controller):
    """Return a FastAPI test app with a started, voice-less session."""
    from fastapi import FastAPI

    from voxsurvey.server.routes import router

    await controller.start()
    test_app = FastAPI()
    test_app.state.bank = bank
    test_app.state.store = store
    test_app.state.signal_bus = signal_bus
    test_app.state.controller = controller
    test_app.include_router(router)
    return test_app


@pytest.fixture
async def async_client(app):
    """Return an httpx AsyncClient configured with the test FastAPI app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport, base_url="http://testserver"
    ) as client:
        yield client
