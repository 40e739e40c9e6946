"""Survey session controller — answers, navigation and saves for one attempt.

The controller owns the answer map and the current question index. It is
the only caller of :meth:`InteractionStateMachine.activate`, and every
navigation step cancels the machine before touching the index, so no audio
or timer from one question can outlive it.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone

from voxsurvey.interaction import prompts
from voxsurvey.interaction.state_machine import InteractionStateMachine
from voxsurvey.interaction.types import InteractionSignal, SignalKind
from voxsurvey.session.persistence import PersistenceError, ResponseStore
from voxsurvey.session.submission import build_payload, can_advance, format_for_submission
from voxsurvey.speech.provider import SpeechProvider
from voxsurvey.speech.provider_factory import provider_matches
from voxsurvey.speech.types import PlatformDescriptor
from voxsurvey.survey.models import Answer, Language, Question, QuestionKind
from voxsurvey.survey.question_bank import QuestionBank

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[PlatformDescriptor, Language], Awaitable[SpeechProvider]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SurveySessionController:
    """Drives one survey attempt across questions, languages and saves."""

    def __init__(
        self,
        bank: QuestionBank,
        machine: InteractionStateMachine,
        store: ResponseStore,
        platform: PlatformDescriptor,
        *,
        language: Language = Language.EN,
        provider_factory: ProviderFactory | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._bank = bank
        self._machine = machine
        self._store = store
        self._platform = platform
        self._language = language
        self._provider_factory = provider_factory
        self._clock = clock

        self._answers: dict[str, Answer] = {}
        self._index = 0
        self._session_id = uuid.uuid4().hex
        self._started_at = clock()
        self._submitted = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def language(self) -> Language:
        return self._language

    @property
    def index(self) -> int:
        return self._index

    @property
    def questions(self) -> tuple[Question, ...]:
        return self._bank.for_language(self._language)

    @property
    def current_question(self) -> Question:
        return self.questions[self._index]

    @property
    def is_last(self) -> bool:
        return self._index == len(self.questions) - 1

    @property
    def submitted(self) -> bool:
        return self._submitted

    @property
    def machine(self) -> InteractionStateMachine:
        return self._machine

    @property
    def answers(self) -> dict[str, Answer]:
        return dict(self._answers)

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def answer_for(self, question_id: str) -> Answer | None:
        return self._answers.get(question_id)

    def _store_answer(self, question_id: str, answer: Answer | None) -> None:
        """Answer sink handed to the state machine."""
        if answer is None:
            self._answers.pop(question_id, None)
        else:
            self._answers[question_id] = answer

    async def set_answer(self, question_id: str, value: str | Iterable[str]) -> Answer:
        """Record a manually entered answer, replacing any previous one.

        Cancels in-flight voice work on the current question first so a
        late transcript cannot overwrite the manual input.
        """
        question = self._question_by_id(question_id)
        if question.id == self.current_question.id:
            await self._machine.cancel()

        if question.kind == QuestionKind.MULTI_CHOICE:
            labels = [value] if isinstance(value, str) else list(value)
            labels = [part.strip() for label in labels for part in label.split(",")]
            answer = Answer(question_id=question.id, value=frozenset(label for label in labels if label))
        else:
            if not isinstance(value, str):
                raise ValueError(f"question {question.id} takes a single value")
            answer = Answer(question_id=question.id, value=value)
        self._answers[question.id] = answer
        logger.debug("Manual answer for %s: %s", question.id, answer.as_text())
        return answer

    def can_advance(self) -> bool:
        return can_advance(self.current_question, self.answer_for(self.current_question.id))

    def format_for_submission(self) -> dict[str, str | int]:
        naming = self._bank.for_language(Language.EN) if Language.EN in self._bank.languages else None
        return format_for_submission(self._answers, self.questions, naming)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Activate the current question."""
        await self._activate()

    async def next(self) -> bool:
        """Move to the next question. False when blocked or already last."""
        if not self.can_advance() or self.is_last:
            return False
        await self._machine.cancel()
        await self.save_progress(completed=False)
        self._index += 1
        await self._activate()
        return True

    async def previous(self) -> bool:
        if self._index == 0:
            return False
        await self._machine.cancel()
        self._index -= 1
        await self._activate()
        return True

    async def submit(self) -> bool:
        """Save the completed survey. False when a required answer is missing or the save failed."""
        missing = [q.id for q in self.questions if not can_advance(q, self.answer_for(q.id))]
        if missing:
            logger.info("Submission blocked — unanswered: %s", ", ".join(missing))
            return False

        await self._machine.cancel()
        if not await self.save_progress(completed=True):
            return False
        self._submitted = True
        logger.info("Survey %s submitted", self._session_id)
        return True

    async def restart(self) -> None:
        """Begin a new attempt: fresh session id, no answers, first question."""
        await self._machine.cancel()
        self._answers.clear()
        self._index = 0
        self._session_id = uuid.uuid4().hex
        self._started_at = self._clock()
        self._submitted = False
        await self._activate()

    async def save_progress(self, *, completed: bool) -> bool:
        """Send the current payload to the store; signal on failure."""
        payload = build_payload(
            session_id=self._session_id,
            started_at=self._started_at,
            ended_at=self._clock(),
            device=self._platform.user_agent or self._platform.os,
            completed=completed,
            language=self._language,
            fields=self.format_for_submission(),
        )
        try:
            await self._store.save(payload)
        except PersistenceError as exc:
            logger.warning("Saving survey %s failed: %s", self._session_id, exc)
            await self._machine.signals.emit(
                InteractionSignal(
                    kind=SignalKind.SAVE_FAILED,
                    message=prompts.message("save_failed", self._language),
                    question_id=self.current_question.id,
                )
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Language and voice
    # ------------------------------------------------------------------

    async def set_language(self, language: Language) -> None:
        """Switch language, carrying choice answers over by option value."""
        if language == self._language:
            return
        await self._machine.cancel()
        self._answers = self._translate_answers(self._language, language)
        self._language = language

        provider = self._machine.provider
        if self._provider_factory is not None and not provider_matches(
            provider, self._platform, language
        ):
            if provider is not None:
                await provider.stop()
            await self._machine.set_provider(await self._provider_factory(self._platform, language))
            logger.info("Speech backend re-selected for %s", language.value)

        await self._activate()

    async def set_voice_enabled(self, enabled: bool) -> None:
        await self._machine.set_voice_enabled(enabled)
        if enabled:
            await self._activate()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _activate(self) -> None:
        await self._machine.activate(self.current_question, self._language, self._store_answer)

    def _question_by_id(self, question_id: str) -> Question:
        for question in self.questions:
            if question.id == question_id:
                return question
        raise KeyError(question_id)

    def _translate_answers(self, old: Language, new: Language) -> dict[str, Answer]:
        old_questions = {q.id: q for q in self._bank.for_language(old)}
        translated: dict[str, Answer] = {}
        for question in self._bank.for_language(new):
            answer = self._answers.get(question.id)
            if answer is None:
                continue
            source = old_questions.get(question.id)
            if source is None or not question.is_choice:
                translated[question.id] = answer
                continue
            values = {
                option.value
                for label in answer.labels
                if (option := source.option_for(label)) is not None
            }
            labels = [option.label for option in question.options if option.value in values]
            if question.kind == QuestionKind.MULTI_CHOICE:
                translated[question.id] = Answer(question_id=question.id, value=frozenset(labels))
            elif labels:
                translated[question.id] = Answer(question_id=question.id, value=labels[0])
        return translated
