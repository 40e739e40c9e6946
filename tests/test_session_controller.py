"""Tests for voxsurvey.session.controller — navigation, answers and saves."""

from unittest.mock import AsyncMock

import pytest

from conftest import FakeSpeechProvider
from voxsurvey.interaction.types import Phase, SignalKind
from voxsurvey.session.controller import SurveySessionController
from voxsurvey.session.persistence import PersistenceError, ResponseStore
from voxsurvey.speech.types import BackendKind
from voxsurvey.survey.models import Language


class FailingStore(ResponseStore):
    def __init__(self) -> None:
        self.attempts = 0

    async def save(self, payload: dict) -> dict:
        self.attempts += 1
        raise PersistenceError("store offline")


async def _answer_everything(controller: SurveySessionController) -> None:
    await controller.set_answer("q1", "Dara")
    await controller.set_answer("q2", "Good")
    await controller.set_answer("q3", "9")
    await controller.set_answer("q4", ["Easy to Use", "Good Value"])
    await controller.set_answer("q5", "Yes")
    await controller.set_answer("q7", "Search Engine")


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


class TestNavigation:

    async def test_starts_on_first_question(self, controller):
        await controller.start()
        assert controller.index == 0
        assert controller.current_question.id == "q1"
        assert controller.machine.question.id == "q1"

    async def test_next_blocked_without_required_answer(self, controller, store):
        await controller.start()
        assert await controller.next() is False
        assert controller.index == 0
        assert store.save_count == 0

    async def test_next_saves_progress(self, controller, store):
        await controller.start()
        await controller.set_answer("q1", "Dara")

        assert await controller.next() is True

        assert controller.index == 1
        assert controller.machine.question.id == "q2"
        record = store.records[controller.session_id]
        assert record["survey_status"] == "incomplete"
        assert record["q1"] == "Dara"

    async def test_optional_question_can_be_skipped(self, controller):
        await controller.start()
        await _answer_everything(controller)
        for _ in range(5):
            assert await controller.next() is True
        assert controller.current_question.id == "q6"
        assert await controller.next() is True
        assert controller.is_last is True
        assert await controller.next() is False

    async def test_previous(self, controller):
        await controller.start()
        assert await controller.previous() is False
        await controller.set_answer("q1", "Dara")
        await controller.next()
        assert await controller.previous() is True
        assert controller.index == 0
        assert controller.answer_for("q1").value == "Dara"


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------


class TestAnswers:

    async def test_multi_choice_from_comma_string(self, controller):
        await controller.start()
        answer = await controller.set_answer("q4", "Good Value, Fast Delivery")
        assert answer.value == frozenset({"Good Value", "Fast Delivery"})

    async def test_single_choice_rejects_list(self, controller):
        await controller.start()
        with pytest.raises(ValueError):
            await controller.set_answer("q2", ["Good", "Poor"])

    async def test_unknown_question(self, controller):
        await controller.start()
        with pytest.raises(KeyError):
            await controller.set_answer("q99", "x")

    async def test_manual_answer_replaces_previous(self, controller):
        await controller.start()
        await controller.set_answer("q2", "Good")
        await controller.set_answer("q2", "Poor")
        assert controller.answer_for("q2").value == "Poor"

    async def test_format_for_submission(self, controller):
        await controller.start()
        await _answer_everything(controller)
        fields = controller.format_for_submission()
        assert fields["q2"] == 2
        assert fields["q4EasyToUse"] == 1
        assert fields["q4CustomerSupport"] == 0
        assert fields["q7SearchEngine"] == 1
        assert fields["q6"] == ""


# ---------------------------------------------------------------------------
# Submit and restart
# ---------------------------------------------------------------------------


class TestSubmit:

    async def test_blocked_when_required_missing(self, controller, store):
        await controller.start()
        await controller.set_answer("q1", "Dara")
        assert await controller.submit() is False
        assert controller.submitted is False
        assert store.save_count == 0

    async def test_completed_record(self, controller, store):
        await controller.start()
        await _answer_everything(controller)

        assert await controller.submit() is True

        record = store.records[controller.session_id]
        assert controller.submitted is True
        assert record["survey_status"] == "completed"
        assert record["q5"] == 1
        assert record["q3"] == "9"
        assert record["language"] == "en"

    async def test_resubmit_is_idempotent(self, controller, store):
        await controller.start()
        await _answer_everything(controller)
        await controller.submit()
        await controller.submit()
        assert len(store.records) == 1

    async def test_restart_begins_new_attempt(self, controller, store):
        await controller.start()
        await _answer_everything(controller)
        await controller.submit()
        old_id = controller.session_id

        await controller.restart()

        assert controller.session_id != old_id
        assert controller.answers == {}
        assert controller.index == 0
        assert controller.submitted is False
        assert store.records[old_id]["survey_status"] == "completed"

    async def test_save_failure_signals(self, bank, make_machine, desktop, signal_bus):
        store = FailingStore()
        controller = SurveySessionController(bank, make_machine(None), store, desktop)
        await controller.start()
        await controller.set_answer("q1", "Dara")

        assert await controller.next() is True
        await _answer_everything(controller)
        assert await controller.submit() is False

        kinds = [signal.kind for signal in signal_bus.recent()]
        assert kinds == [SignalKind.SAVE_FAILED, SignalKind.SAVE_FAILED]
        assert store.attempts == 2
        assert controller.submitted is False


# ---------------------------------------------------------------------------
# Language
# ---------------------------------------------------------------------------


class TestLanguage:

    async def test_choice_answers_follow_option_value(self, controller, bank):
        await controller.start()
        await controller.set_answer("q1", "Dara")
        await controller.set_answer("q2", "Good")
        await controller.set_answer("q4", ["Good Value"])

        await controller.set_language(Language.KM)

        khmer_q2 = next(q for q in bank.for_language(Language.KM) if q.id == "q2")
        khmer_q4 = next(q for q in bank.for_language(Language.KM) if q.id == "q4")
        assert controller.language == Language.KM
        assert controller.answer_for("q1").value == "Dara"
        assert controller.answer_for("q2").value == khmer_q2.options[1].label
        assert controller.answer_for("q2").value == "ល្អ"
        assert controller.answer_for("q4").value == frozenset({khmer_q4.options[2].label})
        assert controller.machine.language == Language.KM

    async def test_round_trip_keeps_answers(self, controller):
        await controller.start()
        await controller.set_answer("q7", ["Social Media", "Other"])
        await controller.set_language(Language.KM)
        await controller.set_language(Language.EN)
        assert controller.answer_for("q7").value == frozenset({"Social Media", "Other"})

    async def test_same_language_is_noop(self, controller):
        await controller.start()
        await controller.set_answer("q1", "Dara")
        await controller.set_language(Language.EN)
        assert controller.answer_for("q1").value == "Dara"

    async def test_reselects_backend_on_ios(self, bank, store, make_machine, iphone):
        old = FakeSpeechProvider(kind=BackendKind.CLOUD_REST)
        new = FakeSpeechProvider(kind=BackendKind.CLOUD_SDK)
        factory = AsyncMock(return_value=new)
        controller = SurveySessionController(
            bank, make_machine(old, platform=iphone), store, iphone, provider_factory=factory
        )
        await controller.start()

        await controller.set_language(Language.KM)

        factory.assert_awaited_once_with(iphone, Language.KM)
        assert old.stopped is True
        assert controller.machine.provider is new

    async def test_rest_fallback_kept_on_ios(self, bank, store, make_machine, iphone):
        rest = FakeSpeechProvider(kind=BackendKind.CLOUD_REST)
        rest.fallback_for = BackendKind.CLOUD_SDK
        factory = AsyncMock()
        controller = SurveySessionController(
            bank, make_machine(rest, platform=iphone), store, iphone, provider_factory=factory
        )
        await controller.start()

        await controller.set_language(Language.KM)
        await controller.set_language(Language.EN)

        factory.assert_not_awaited()
        assert rest.stopped is False
        assert controller.machine.provider is rest

    async def test_keeps_backend_on_desktop(self, bank, store, make_machine, desktop):
        provider = FakeSpeechProvider(kind=BackendKind.NATIVE)
        factory = AsyncMock()
        controller = SurveySessionController(
            bank, make_machine(provider), store, desktop, provider_factory=factory
        )
        await controller.start()
        await controller.machine.join()

        await controller.set_language(Language.KM)
        await controller.machine.join()

        factory.assert_not_awaited()
        assert controller.machine.provider is provider
        assert provider.spoken[-1][1] == Language.KM


# ---------------------------------------------------------------------------
# Voice and manual input together
# ---------------------------------------------------------------------------


class TestVoiceFallback:

    async def test_failed_voice_then_manual_answer(self, bank, store, make_machine, desktop):
        provider = FakeSpeechProvider([])
        controller = SurveySessionController(bank, make_machine(provider), store, desktop)
        await controller.start()
        await controller.machine.join()
        await controller.machine.start_listening()
        await controller.machine.join()

        assert controller.machine.phase == Phase.FAILED
        assert controller.can_advance() is False

        await controller.set_answer("q1", "Dara")
        assert controller.can_advance() is True
        assert await controller.next() is True
        await controller.machine.cancel()

    async def test_voice_answer_lands_in_controller(self, bank, store, make_machine, desktop):
        provider = FakeSpeechProvider(["Sokha", "yes"])
        controller = SurveySessionController(bank, make_machine(provider), store, desktop)
        await controller.start()
        await controller.machine.join()

        assert controller.answer_for("q1").value == "Sokha"
        assert controller.can_advance() is True

    async def test_disabling_voice_stops_reading(self, bank, store, make_machine, desktop):
        provider = FakeSpeechProvider()
        controller = SurveySessionController(bank, make_machine(provider), store, desktop)
        await controller.set_voice_enabled(False)
        await controller.start()
        assert provider.spoken == []
