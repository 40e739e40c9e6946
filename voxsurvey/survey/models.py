"""Pydantic models for survey questions and answers."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from voxsurvey.matching.normalizer import normalize


class Language(str, Enum):
    """Supported survey languages."""

    EN = "en"
    KM = "km"


class QuestionKind(str, Enum):
    """The four answer shapes a question can take."""

    TEXT = "text"
    SINGLE_CHOICE = "single-choice"
    MULTI_CHOICE = "multi-choice"
    RATING = "rating"


class Option(BaseModel):
    """A selectable option. ``value`` is what gets stored on submission."""

    model_config = ConfigDict(frozen=True)

    value: int
    label: str


class Question(BaseModel):
    """A single survey question. Immutable once loaded from the bank."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: QuestionKind
    prompt: str
    options: tuple[Option, ...] = ()
    required: bool = True

    @model_validator(mode="after")
    def _check_options(self) -> "Question":
        if self.kind in (QuestionKind.TEXT, QuestionKind.RATING) and self.options:
            raise ValueError(f"question {self.id}: {self.kind.value} questions take no options")
        if self.kind in (QuestionKind.SINGLE_CHOICE, QuestionKind.MULTI_CHOICE) and not self.options:
            raise ValueError(f"question {self.id}: {self.kind.value} questions need options")
        seen: set[str] = set()
        for option in self.options:
            key = normalize(option.label)
            if key in seen:
                raise ValueError(
                    f"question {self.id}: duplicate option label {option.label!r}"
                )
            seen.add(key)
        return self

    @property
    def is_choice(self) -> bool:
        return self.kind in (QuestionKind.SINGLE_CHOICE, QuestionKind.MULTI_CHOICE)

    @property
    def labels(self) -> list[str]:
        return [option.label for option in self.options]

    def option_for(self, label: str) -> Option | None:
        """Return the option whose label equals *label* under normalization."""
        key = normalize(label)
        for option in self.options:
            if normalize(option.label) == key:
                return option
        return None


class Answer(BaseModel):
    """The stored answer for one question.

    ``value`` is a literal string for text, rating and single-choice
    questions, and a frozenset of option labels for multi-choice ones.
    """

    model_config = ConfigDict(frozen=True)

    question_id: str
    value: str | frozenset[str] = Field(default="")

    @property
    def labels(self) -> frozenset[str]:
        if isinstance(self.value, frozenset):
            return self.value
        return frozenset(part for part in self.value.split(",") if part)

    def as_text(self) -> str:
        """Boundary form: multi-choice labels comma-joined in sorted order."""
        if isinstance(self.value, frozenset):
            return ",".join(sorted(self.value))
        return self.value
