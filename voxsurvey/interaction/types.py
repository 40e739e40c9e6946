"""Pydantic models and enums for the interaction engine."""

import time
from enum import Enum

from pydantic import BaseModel, Field

from voxsurvey.survey.models import Language


class Phase(str, Enum):
    """Where the active question is in the voice round-trip."""

    IDLE = "idle"
    SPEAKING_QUESTION = "speaking_question"
    WAITING_TO_RECORD = "waiting_to_record"
    LISTENING = "listening"
    RESOLVING = "resolving"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SPEAKING_CONFIRMATION = "speaking_confirmation"
    LISTENING_FOR_CONFIRMATION = "listening_for_confirmation"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class InteractionState(BaseModel):
    """Everything the state machine knows about the active question.

    Owned and mutated only by :class:`InteractionStateMachine`; callers get
    copies.
    """

    phase: Phase = Phase.IDLE
    question_id: str | None = None
    language_at_entry: Language = Language.EN
    retry_count: int = 0
    confirmation_retries: int = 0
    re_record_count: int = 0
    pending_value: str | None = None
    last_transcript: str | None = None
    generation: int = 0
    voice_enabled: bool = True


class SignalKind(str, Enum):
    """User-facing notifications raised by the interaction engine."""

    NO_SPEECH_RETRY = "no_speech_retry"
    RETRY_LIMIT_REACHED = "retry_limit_reached"
    INVALID_ANSWER = "invalid_answer"
    AWAITING_MANUAL_CONFIRMATION = "awaiting_manual_confirmation"
    CONFIRMATION_RETRY_MANUAL = "confirmation_retry_manual"
    RE_RECORD_LIMIT_REACHED = "re_record_limit_reached"
    ANSWER_CONFIRMED = "answer_confirmed"
    NETWORK_FALLBACK = "network_fallback"
    VOICE_DISABLED = "voice_disabled"
    SAVE_FAILED = "save_failed"


class InteractionSignal(BaseModel):
    """A single notification flowing through the signal bus."""

    kind: SignalKind
    message: str
    question_id: str | None = None
    phase: Phase | None = None
    timestamp: float = Field(default_factory=time.time)
