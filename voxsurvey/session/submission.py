"""Pure helpers that decide advancement and flatten answers for the store.

Field naming for the flat payload:

- text / rating: ``<id>`` -> literal string
- single-choice: ``<id>`` -> the chosen option's integer value
- multi-choice: ``<id><PascalCaseLabel>`` -> 1 or 0 for every option

Khmer labels have no ASCII letters, so multi-choice field names are taken
from a *naming* question list (normally the English bank) matched by
question id and option value. Options whose label still has no ASCII word
fall back to ``<id>_<value>``.
"""

import re
from collections.abc import Mapping, Sequence
from datetime import datetime

from voxsurvey.survey.models import Answer, Language, Question, QuestionKind

_WORD = re.compile(r"[0-9A-Za-z]+")

Payload = dict[str, str | int]


def can_advance(question: Question, answer: Answer | None) -> bool:
    """Whether *answer* satisfies *question* well enough to move on."""
    if not question.required:
        return True
    if answer is None:
        return False
    if question.kind in (QuestionKind.TEXT, QuestionKind.RATING):
        return bool(answer.as_text().strip())
    if question.kind == QuestionKind.SINGLE_CHOICE:
        return question.option_for(answer.as_text()) is not None
    return any(question.option_for(label) is not None for label in answer.labels)


def pascal_case(label: str) -> str:
    return "".join(word[:1].upper() + word[1:] for word in _WORD.findall(label))


def field_name(question: Question, value: int, naming: Question | None = None) -> str:
    """Payload key for one multi-choice option."""
    source = naming or question
    for option in source.options:
        if option.value == value:
            suffix = pascal_case(option.label)
            if suffix:
                return f"{question.id}{suffix}"
    return f"{question.id}_{value}"


def format_for_submission(
    answers: Mapping[str, Answer],
    questions: Sequence[Question],
    naming: Sequence[Question] | None = None,
) -> Payload:
    """Flatten *answers* into the store's field layout.

    Deterministic: depends only on its arguments. Unanswered questions
    produce empty strings (or all-zero flags for multi-choice).
    """
    names = {question.id: question for question in naming or ()}
    fields: Payload = {}
    for question in questions:
        answer = answers.get(question.id)
        if question.kind == QuestionKind.MULTI_CHOICE:
            selected = answer.labels if answer is not None else frozenset()
            chosen = {
                option.value
                for label in selected
                if (option := question.option_for(label)) is not None
            }
            for option in question.options:
                key = field_name(question, option.value, names.get(question.id))
                fields[key] = 1 if option.value in chosen else 0
        elif question.kind == QuestionKind.SINGLE_CHOICE:
            option = question.option_for(answer.as_text()) if answer is not None else None
            fields[question.id] = option.value if option is not None else ""
        else:
            fields[question.id] = answer.as_text() if answer is not None else ""
    return fields


def build_payload(
    *,
    session_id: str,
    started_at: datetime,
    ended_at: datetime,
    device: str,
    completed: bool,
    language: Language,
    fields: Payload,
) -> Payload:
    """Attach the session metadata the store keys and reports on."""
    payload: Payload = {
        "unique_id": session_id,
        "sys_start_time": started_at.isoformat(),
        "sys_end_time": ended_at.isoformat(),
        "sys_device": device,
        "survey_status": "completed" if completed else "incomplete",
        "elapsed_time_in_second": max(0, int((ended_at - started_at).total_seconds())),
        "language": language.value,
    }
    payload.update(fields)
    return payload
