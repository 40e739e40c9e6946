"""Loads the per-language question sequences.

The bank file holds language-neutral base questions (id, kind, option
values, required flag) plus one overlay per language carrying the prompt
and option labels. Overlays are merged onto the base by question id, the
same way the survey front end builds its localized question list.
"""

import json
import logging
from pathlib import Path

from voxsurvey.config import QUESTION_BANK_PATH
from voxsurvey.survey.models import Language, Option, Question

logger = logging.getLogger(__name__)


class QuestionBankError(ValueError):
    """The bank file is missing a translation or is malformed."""


class QuestionBank:
    """Ordered, immutable question sequences keyed by language."""

    def __init__(self, questions: dict[Language, list[Question]]) -> None:
        self._questions = {language: tuple(items) for language, items in questions.items()}

    @classmethod
    def from_dict(cls, raw: dict) -> "QuestionBank":
        base: list[dict] = raw.get("questions", [])
        overlays: dict[str, dict] = raw.get("translations", {})
        questions: dict[Language, list[Question]] = {}

        for code, overlay in overlays.items():
            language = Language(code)
            localized: list[Question] = []
            for item in base:
                text = overlay.get(item["id"])
                if text is None:
                    raise QuestionBankError(
                        f"missing {code} translation for question {item['id']}"
                    )
                labels: list[str] = text.get("options", [])
                values: list[int] = item.get("values", [])
                if len(labels) != len(values):
                    raise QuestionBankError(
                        f"question {item['id']} ({code}): {len(values)} option values "
                        f"but {len(labels)} labels"
                    )
                localized.append(
                    Question(
                        id=item["id"],
                        kind=item["kind"],
                        prompt=text["prompt"],
                        options=tuple(
                            Option(value=value, label=label)
                            for value, label in zip(values, labels)
                        ),
                        required=item.get("required", True),
                    )
                )
            questions[language] = localized

        return cls(questions)

    @classmethod
    def load(cls, path: Path | None = None) -> "QuestionBank":
        """Read the bank from *path* (defaults to ``QUESTION_BANK_PATH``)."""
        path = path or QUESTION_BANK_PATH
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
        bank = cls.from_dict(raw)
        logger.info(
            "Loaded question bank from %s (%s)",
            path,
            ", ".join(f"{lang.value}={len(items)}" for lang, items in bank._questions.items()),
        )
        return bank

    @property
    def languages(self) -> list[Language]:
        return list(self._questions)

    def for_language(self, language: Language) -> tuple[Question, ...]:
        try:
            return self._questions[language]
        except KeyError:
            raise QuestionBankError(f"no questions for language {language.value}") from None
