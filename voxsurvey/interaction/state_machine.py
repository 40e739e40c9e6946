"""Per-question voice interaction state machine.

Drives one question at a time through::

    IDLE -> SPEAKING_QUESTION -> WAITING_TO_RECORD -> LISTENING -> RESOLVING
         -> AWAITING_CONFIRMATION -> SPEAKING_CONFIRMATION
         -> LISTENING_FOR_CONFIRMATION -> CONFIRMED | IDLE (manual retry)

Every voice operation runs as an asyncio task owned by the machine and
tagged with the generation token that was current when it started.
:meth:`cancel` bumps the token, cancels the owned tasks and the provider,
and only then resets the state, so a stale task can never write into the
state of a newer question.

Backend errors never escape: each one resolves to a phase transition plus,
where the user needs to know, an :class:`InteractionSignal`.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from voxsurvey.config import (
    AUTO_RECORD_DELAY,
    MAX_CONFIRMATION_RETRIES,
    MAX_LISTEN_RETRIES,
    MAX_RE_RECORDS,
    SETTLE_DELAY,
)
from voxsurvey.interaction import prompts
from voxsurvey.interaction.signals import SignalBus
from voxsurvey.interaction.types import InteractionSignal, InteractionState, Phase, SignalKind
from voxsurvey.matching.option_resolver import (
    OptionResolver,
    Polarity,
    ResolvedAnswer,
    classify_confirmation,
)
from voxsurvey.speech.provider import SpeechProvider
from voxsurvey.speech.types import (
    CancellationInProgress,
    NetworkError,
    NoSpeechDetected,
    PlatformDescriptor,
    SpeechError,
    VoiceUnavailable,
)
from voxsurvey.survey.models import Answer, Language, Question, QuestionKind

logger = logging.getLogger(__name__)

AnswerSink = Callable[[str, Answer | None], None]


class InteractionStateMachine:
    """Coordinates speak, listen, resolve and confirm for the active question."""

    def __init__(
        self,
        provider: SpeechProvider | None,
        platform: PlatformDescriptor,
        *,
        signals: SignalBus | None = None,
        resolver: OptionResolver | None = None,
        auto_record_delay: float = AUTO_RECORD_DELAY,
        settle_delay: float = SETTLE_DELAY,
        max_listen_retries: int = MAX_LISTEN_RETRIES,
        max_re_records: int = MAX_RE_RECORDS,
        max_confirmation_retries: int = MAX_CONFIRMATION_RETRIES,
    ) -> None:
        self._provider = provider
        self._platform = platform
        self._signals = signals or SignalBus()
        self._resolver = resolver or OptionResolver()
        self._auto_record_delay = auto_record_delay
        self._settle_delay = settle_delay
        self._max_listen_retries = max_listen_retries
        self._max_re_records = max_re_records
        self._max_confirmation_retries = max_confirmation_retries

        self._state = InteractionState()
        self._question: Question | None = None
        self._sink: AnswerSink | None = None
        self._operation: asyncio.Task | None = None
        self._timer: asyncio.Task | None = None
        self._owned: dict[asyncio.Task, int] = {}
        self._voice_disabled_signalled = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> InteractionState:
        """A copy of the current interaction state."""
        return self._state.model_copy()

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def question(self) -> Question | None:
        return self._question

    @property
    def language(self) -> Language:
        return self._state.language_at_entry

    @property
    def provider(self) -> SpeechProvider | None:
        return self._provider

    @property
    def signals(self) -> SignalBus:
        return self._signals

    @property
    def voice_enabled(self) -> bool:
        return self._state.voice_enabled and self._provider is not None

    @property
    def is_busy(self) -> bool:
        """True while a speak, listen or confirmation round-trip is running."""
        return self._operation is not None and not self._operation.done()

    def pending_for(self, generation: int) -> int:
        """Number of unfinished tasks started under *generation*."""
        return sum(1 for task, gen in self._owned.items() if gen == generation and not task.done())

    @property
    def pending_operations(self) -> int:
        return sum(1 for task in self._owned if not task.done())

    # ------------------------------------------------------------------
    # Activation and cancellation
    # ------------------------------------------------------------------

    async def activate(
        self,
        question: Question,
        language: Language,
        answer_sink: AnswerSink,
        *,
        read: bool = True,
    ) -> None:
        """Make *question* the active one, cancelling everything before it.

        Reads the question aloud when voice is enabled and *read* is set.
        """
        await self.cancel()
        self._question = question
        self._sink = answer_sink
        self._state = InteractionState(
            question_id=question.id,
            language_at_entry=language,
            generation=self._state.generation,
            voice_enabled=self._state.voice_enabled,
        )
        logger.debug("Activated question %s (%s)", question.id, language.value)
        if read and self.voice_enabled:
            await self.read_question()

    async def cancel(self) -> None:
        """Abandon every timer and voice operation and return to IDLE.

        Idempotent. Retry counters reset; stored answers are never touched.
        """
        self._state.generation += 1
        current = asyncio.current_task()
        pending = [task for task in self._owned if not task.done() and task is not current]
        for task in pending:
            task.cancel()
        if self._provider is not None:
            try:
                await self._provider.cancel()
            except SpeechError:
                logger.debug("Provider cancel raised", exc_info=True)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._operation = None
        self._timer = None
        self._state.phase = Phase.IDLE
        self._state.retry_count = 0
        self._state.confirmation_retries = 0
        self._state.re_record_count = 0
        self._state.pending_value = None

    async def set_provider(self, provider: SpeechProvider | None) -> None:
        """Swap the speech backend. Cancels first; the old provider is not stopped."""
        await self.cancel()
        self._provider = provider

    async def set_voice_enabled(self, enabled: bool) -> None:
        """Turn voice on or off; turning it off cancels in-flight work."""
        if not enabled:
            await self.cancel()
        self._state.voice_enabled = enabled
        if enabled:
            self._voice_disabled_signalled = False

    async def join(self) -> None:
        """Wait until no owned task is running (tests and shutdown)."""
        while True:
            pending = [task for task in self._owned if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def read_question(self) -> bool:
        """Speak the active question. No-op (False) when busy or unavailable."""
        if not self._can_start_voice():
            return False
        self._cancel_timer()
        self._launch(self._read_flow)
        return True

    async def start_listening(self) -> bool:
        """Manual trigger: begin capturing an answer."""
        if not self._can_start_voice():
            return False
        self._cancel_timer()
        self._launch(self._listen_flow)
        return True

    def stop_listening(self) -> None:
        """Finish the current capture early, keeping what was heard."""
        if self._provider is not None and self._state.phase in (
            Phase.LISTENING,
            Phase.LISTENING_FOR_CONFIRMATION,
        ):
            self._provider.stop_listening()

    async def accept_pending(self) -> bool:
        """Manual accept of the resolved-but-unconfirmed answer."""
        if self._question is None or self._state.pending_value is None:
            return False
        await self._stop_operation()
        self._state.phase = Phase.CONFIRMED
        await self._notify(SignalKind.ANSWER_CONFIRMED, "confirmed")
        logger.info("Answer for %s accepted manually", self._question.id)
        return True

    async def re_record(self) -> bool:
        """Manual reject: drop the pending answer and listen again."""
        if self._question is None or self._state.phase == Phase.FAILED:
            return False
        if not self.voice_enabled:
            return False
        await self._stop_operation()
        self._clear_pending()
        self._launch(self._listen_flow)
        return True

    async def retry_confirmation(self) -> bool:
        """Ask for a spoken yes/no again after an unclear one.

        Bounded by ``max_confirmation_retries``; afterwards only manual
        accept or re-record remain.
        """
        if (
            self._state.phase != Phase.IDLE
            or self._state.pending_value is None
            or self._state.confirmation_retries > self._max_confirmation_retries
            or not self._can_start_voice()
        ):
            return False
        self._launch(self._confirm_flow, self._state.pending_value)
        return True

    # ------------------------------------------------------------------
    # Flows (each runs inside an owned task)
    # ------------------------------------------------------------------

    async def _read_flow(self, generation: int) -> None:
        question = self._require_question()
        self._enter(Phase.SPEAKING_QUESTION, generation)
        try:
            await self._provider.speak(prompts.question_text(question, self.language), self.language)
        except CancellationInProgress:
            return
        except VoiceUnavailable as exc:
            await self._disable_voice(exc, generation)
            return
        except NetworkError:
            logger.warning("Could not read question %s aloud", question.id, exc_info=True)

        if not self._is_current(generation):
            return
        self._enter(Phase.WAITING_TO_RECORD, generation)
        if self._platform.supports_auto_record:
            self._timer = self._spawn(self._auto_record(generation), generation)

    async def _auto_record(self, generation: int) -> None:
        await asyncio.sleep(self._auto_record_delay)
        if self._is_current(generation) and self._state.phase == Phase.WAITING_TO_RECORD:
            self._timer = None
            self._launch(self._listen_flow)

    async def _listen_flow(self, generation: int) -> None:
        question = self._require_question()
        self._enter(Phase.LISTENING, generation)
        try:
            transcript = await self._provider.listen(self.language)
        except CancellationInProgress:
            return
        except NoSpeechDetected:
            await self._on_no_speech(generation)
            return
        except NetworkError:
            await self._fall_back_to_manual(generation)
            return
        except VoiceUnavailable as exc:
            await self._disable_voice(exc, generation)
            return

        if not self._is_current(generation):
            return
        self._state.last_transcript = transcript
        self._enter(Phase.RESOLVING, generation)
        resolved = self._resolver.resolve(transcript, question, self.language)
        if not self._is_valid(resolved, question):
            logger.info("Transcript %r is not a valid answer for %s", transcript, question.id)
            self._enter(Phase.WAITING_TO_RECORD, generation)
            await self._notify(SignalKind.INVALID_ANSWER, prompts.message("invalid", self.language))
            return

        self._store(question, resolved)
        self._enter(Phase.AWAITING_CONFIRMATION, generation)
        if not self._platform.supports_voice_confirmation:
            await self._notify(
                SignalKind.AWAITING_MANUAL_CONFIRMATION,
                prompts.message("manual_confirm", self.language),
            )
            return

        await asyncio.sleep(self._settle_delay)
        if not self._is_current(generation):
            return
        await self._confirm_flow(generation, self._display(resolved))

    async def _confirm_flow(self, generation: int, answer_text: str) -> None:
        self._enter(Phase.SPEAKING_CONFIRMATION, generation)
        try:
            await self._provider.speak(
                prompts.confirmation_text(answer_text, self.language), self.language
            )
        except CancellationInProgress:
            return
        except VoiceUnavailable as exc:
            await self._disable_voice(exc, generation)
            return
        except NetworkError:
            await self._await_manual_confirmation(generation)
            return

        if not self._is_current(generation):
            return
        self._enter(Phase.LISTENING_FOR_CONFIRMATION, generation)
        try:
            reply = await self._provider.listen(self.language)
        except CancellationInProgress:
            return
        except NoSpeechDetected:
            reply = ""
        except NetworkError:
            await self._await_manual_confirmation(generation)
            return
        except VoiceUnavailable as exc:
            await self._disable_voice(exc, generation)
            return

        if not self._is_current(generation):
            return
        polarity = classify_confirmation(reply, self.language)
        logger.debug("Confirmation reply %r classified as %s", reply, polarity.value)
        if polarity == Polarity.AFFIRMATIVE:
            self._enter(Phase.CONFIRMED, generation)
            await self._notify(SignalKind.ANSWER_CONFIRMED, prompts.message("confirmed", self.language))
        elif polarity == Polarity.NEGATIVE:
            await self._reject(generation)
        else:
            self._state.confirmation_retries += 1
            self._enter(Phase.IDLE, generation)
            await self._notify(
                SignalKind.CONFIRMATION_RETRY_MANUAL,
                prompts.message("confirm_unclear", self.language),
            )

    async def _reject(self, generation: int) -> None:
        """Negative confirmation: clear, apologise and record again (bounded)."""
        self._clear_pending()
        self._state.re_record_count += 1
        if self._state.re_record_count > self._max_re_records:
            logger.info(
                "Re-record limit reached for %s after %d rejections",
                self._state.question_id,
                self._state.re_record_count - 1,
            )
            self._enter(Phase.WAITING_TO_RECORD, generation)
            await self._notify(
                SignalKind.RE_RECORD_LIMIT_REACHED,
                prompts.message("re_record_limit", self.language),
            )
            return

        try:
            await self._provider.speak(prompts.message("apology", self.language), self.language)
        except CancellationInProgress:
            return
        except VoiceUnavailable as exc:
            await self._disable_voice(exc, generation)
            return
        except NetworkError:
            logger.warning("Could not speak apology", exc_info=True)

        if self._is_current(generation):
            await self._listen_flow(generation)

    # ------------------------------------------------------------------
    # Failure outcomes
    # ------------------------------------------------------------------

    async def _on_no_speech(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        self._state.retry_count += 1
        if self._state.retry_count >= self._max_listen_retries:
            logger.info(
                "No speech %d times for %s — giving up on voice",
                self._state.retry_count,
                self._state.question_id,
            )
            self._enter(Phase.FAILED, generation)
            await self._notify(SignalKind.RETRY_LIMIT_REACHED, prompts.message("retry_limit", self.language))
            return
        self._enter(Phase.WAITING_TO_RECORD, generation)
        await self._notify(SignalKind.NO_SPEECH_RETRY, prompts.message("no_speech", self.language))

    async def _fall_back_to_manual(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        logger.warning("Speech service unreachable for %s — manual input", self._state.question_id)
        self._enter(Phase.WAITING_TO_RECORD, generation)
        await self._notify(SignalKind.NETWORK_FALLBACK, prompts.message("network", self.language))

    async def _await_manual_confirmation(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        self._enter(Phase.AWAITING_CONFIRMATION, generation)
        await self._notify(
            SignalKind.AWAITING_MANUAL_CONFIRMATION,
            prompts.message("manual_confirm", self.language),
        )

    async def _disable_voice(self, exc: VoiceUnavailable, generation: int) -> None:
        if not self._is_current(generation):
            return
        logger.warning("Voice disabled: %s (%s)", type(exc).__name__, exc)
        self._state.voice_enabled = False
        self._enter(Phase.IDLE, generation)
        if not self._voice_disabled_signalled:
            self._voice_disabled_signalled = True
            await self._notify(SignalKind.VOICE_DISABLED, prompts.message("voice_disabled", self.language))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _can_start_voice(self) -> bool:
        if self._question is None or not self.voice_enabled:
            return False
        if self._state.phase == Phase.FAILED:
            return False
        if self.is_busy or self._provider.is_busy:
            logger.debug("Voice entry point ignored — busy in %s", self._state.phase.value)
            return False
        return True

    def _launch(self, flow: Callable[..., Coroutine[Any, Any, None]], *args: Any) -> None:
        generation = self._state.generation
        self._operation = self._spawn(self._guard(flow, generation, *args), generation)

    def _spawn(self, coro: Coroutine[Any, Any, None], generation: int) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._owned[task] = generation
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._owned.pop(task, None)

    async def _guard(
        self, flow: Callable[..., Coroutine[Any, Any, None]], generation: int, *args: Any
    ) -> None:
        try:
            await flow(generation, *args)
        except SpeechError:
            logger.warning("Unhandled speech error in %s", flow.__name__, exc_info=True)
            if self._is_current(generation):
                self._enter(Phase.IDLE, generation)
        except Exception:
            logger.exception("Interaction flow %s crashed", flow.__name__)
            if self._is_current(generation):
                self._enter(Phase.FAILED, generation)

    async def _stop_operation(self) -> None:
        """Cancel the in-flight operation without invalidating the question."""
        self._cancel_timer()
        current = asyncio.current_task()
        pending = [task for task in self._owned if not task.done() and task is not current]
        for task in pending:
            task.cancel()
        if self._provider is not None:
            await self._provider.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._operation = None

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def _is_current(self, generation: int) -> bool:
        return generation == self._state.generation

    def _enter(self, phase: Phase, generation: int) -> None:
        if not self._is_current(generation):
            return
        logger.debug("%s: %s -> %s", self._state.question_id, self._state.phase.value, phase.value)
        self._state.phase = phase

    def _require_question(self) -> Question:
        if self._question is None or self._provider is None:
            raise CancellationInProgress("no active question")
        return self._question

    @staticmethod
    def _is_valid(resolved: ResolvedAnswer, question: Question) -> bool:
        if question.kind == QuestionKind.TEXT:
            return bool(resolved.value.strip()) or not question.required
        return resolved.matched

    def _store(self, question: Question, resolved: ResolvedAnswer) -> None:
        if question.kind == QuestionKind.MULTI_CHOICE:
            answer = Answer(question_id=question.id, value=frozenset(resolved.labels))
        else:
            answer = Answer(question_id=question.id, value=resolved.value)
        self._state.pending_value = answer.as_text()
        if self._sink is not None:
            self._sink(question.id, answer)

    def _clear_pending(self) -> None:
        self._state.pending_value = None
        if self._sink is not None and self._question is not None:
            self._sink(self._question.id, None)

    def _display(self, resolved: ResolvedAnswer) -> str:
        if resolved.labels:
            return prompts.join_labels(resolved.labels, self.language)
        return resolved.value

    async def _notify(self, kind: SignalKind, message: str) -> None:
        await self._signals.emit(
            InteractionSignal(
                kind=kind,
                message=message,
                question_id=self._state.question_id,
                phase=self._state.phase,
            )
        )
