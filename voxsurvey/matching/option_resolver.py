"""Maps a spoken transcript to a canonical answer for one question.

Matching priority for choice questions (first match wins):
1. Exact: normalized transcript equals a normalized option label
2. Yes/No: affirmative/negative vocabulary for yes/no-shaped option sets
3. Similarity: best ``similarity_score`` under the language threshold
4. Verbatim: nothing matched, transcript returned unchanged

Resolution never raises. An unmatched transcript comes back unchanged with
``matched=False`` and the caller decides what to do with it.
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel

from voxsurvey.matching.distance import similarity_score, words_close
from voxsurvey.matching.normalizer import clean, normalize
from voxsurvey.matching.vocabulary import (
    AFFIRMATIVE,
    NEGATIVE,
    NUMBER_CONNECTORS,
    NUMBER_MULTIPLIERS,
    NUMBER_PATTERNS,
    NUMBER_WORDS,
    SEPARATORS,
    threshold_for,
)
from voxsurvey.survey.models import Language, Question, QuestionKind

logger = logging.getLogger(__name__)

_RATING_MIN = 1
_RATING_MAX = 10


class MatchMethod(str, Enum):
    """How a transcript was matched to an answer."""

    EXACT = "exact"
    YES_NO = "yes_no"
    FUZZY = "fuzzy"
    NUMBER = "number"
    VERBATIM = "verbatim"
    NONE = "none"


class Polarity(str, Enum):
    """Outcome of classifying a yes/no utterance."""

    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    UNKNOWN = "unknown"


class MatchResult(BaseModel):
    """Best candidate label for a transcript fragment. Lower score is better."""

    label: str | None
    score: float
    method: MatchMethod


class ResolvedAnswer(BaseModel):
    """Result of resolving a transcript against a question."""

    value: str
    matched: bool
    labels: list[str] = []
    method: MatchMethod


# ---------------------------------------------------------------------------
# Yes/No classification
# ---------------------------------------------------------------------------


def _normalized(words: frozenset[str]) -> list[str]:
    return sorted({normalize(word) for word in words}, key=len, reverse=True)


_YES = {language: _normalized(words) for language, words in AFFIRMATIVE.items()}
_NO = {language: _normalized(words) for language, words in NEGATIVE.items()}


def _strip_phrases(text: str, phrases: list[str], language: Language) -> tuple[str, bool]:
    """Remove every occurrence of the (multi-word or Khmer) *phrases* from *text*."""
    found = False
    for phrase in phrases:
        if language == Language.KM:
            if phrase in text:
                text = text.replace(phrase, " ")
                found = True
        elif " " in phrase:
            padded = f" {text} "
            if f" {phrase} " in padded:
                text = padded.replace(f" {phrase} ", " ").strip()
                found = True
    return text, found


def _has_word(words: list[str], vocabulary: list[str], others: list[str]) -> bool:
    """Whether any of *words* is close to a single-word *vocabulary* entry.

    Words that literally belong to *others* never count, so "correct" is not
    read as a typo of "incorrect".
    """
    singles = [entry for entry in vocabulary if " " not in entry]
    return any(
        word not in others and any(words_close(word, entry) for entry in singles)
        for word in words
    )


# ---------------------------------------------------------------------------
# Spoken numbers
# ---------------------------------------------------------------------------


def _number_value(tokens: list[tuple[int, bool]]) -> int | None:
    """Value of one spoken number, or None when the words do not compose.

    "ដប់ពីរ" is 10 + 2 and "one hundred" is 1 * 100, but "seven eight" is
    two numbers said back to back and has no single value.
    """
    total = 0
    current = 0
    for value, is_multiplier in tokens:
        if is_multiplier:
            current = max(current, 1) * value
            if value >= 1_000:
                total += current
                current = 0
            continue
        if current:
            step = 10 if value < 10 else 100
            if current % step or current <= value:
                return None
        current += value
    return total + current


def spoken_numbers(text: str, language: Language) -> list[int | None]:
    """Numbers in normalized *text*, left to right, one per run of number words.

    A run whose words do not compose into one number is reported as None.
    """
    pattern = NUMBER_PATTERNS.get(language, NUMBER_PATTERNS[Language.EN])
    words = NUMBER_WORDS.get(language, {})
    multipliers = NUMBER_MULTIPLIERS.get(language, {})
    connectors = NUMBER_CONNECTORS.get(language, frozenset())

    numbers: list[int | None] = []
    run: list[tuple[int, bool]] = []
    end = 0
    for match in pattern.finditer(text):
        gap = text[end:match.start()].strip()
        joined = not gap or (gap in connectors and run and run[-1][1])
        if run and not joined:
            numbers.append(_number_value(run))
            run = []
        token = match.group(1)
        if token in multipliers:
            run.append((multipliers[token], True))
        elif token in words:
            run.append((words[token], False))
        else:
            run.append((int(token), False))
        end = match.end()
    if run:
        numbers.append(_number_value(run))
    return numbers


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


def classify_confirmation(transcript: str, language: Language) -> Polarity:
    """Classify an utterance as affirmative, negative or unknown.

    Negative phrases are removed before looking for affirmative ones so that
    "មិនត្រូវ" (not correct) is not read as "ត្រូវ" (correct).
    """
    text = normalize(transcript)
    if not text:
        return Polarity.UNKNOWN

    yes_words = _YES.get(language, _YES[Language.EN])
    no_words = _NO.get(language, _NO[Language.EN])

    remainder, negative = _strip_phrases(text, no_words, language)
    remainder, affirmative = _strip_phrases(remainder, yes_words, language)
    if language != Language.KM:
        words = text.split()
        negative = negative or _has_word(words, no_words, yes_words)
        affirmative = affirmative or _has_word(remainder.split(), yes_words, no_words)

    if affirmative and not negative:
        return Polarity.AFFIRMATIVE
    if negative and not affirmative:
        return Polarity.NEGATIVE
    return Polarity.UNKNOWN


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class OptionResolver:
    """Maps one transcript to a canonical answer value for a question."""

    def resolve(
        self, transcript: str, question: Question, language: Language
    ) -> ResolvedAnswer:
        if question.kind == QuestionKind.TEXT:
            return ResolvedAnswer(
                value=clean(transcript),
                matched=bool(clean(transcript)),
                method=MatchMethod.VERBATIM,
            )
        if question.kind == QuestionKind.RATING:
            return self._resolve_rating(transcript, language)
        if question.kind == QuestionKind.MULTI_CHOICE:
            return self._resolve_multi(transcript, question, language)
        return self._resolve_single(transcript, question, language)

    # --------------------------------------------------------------------- #
    # Rating
    # --------------------------------------------------------------------- #

    def _resolve_rating(self, transcript: str, language: Language) -> ResolvedAnswer:
        text = normalize(transcript)
        numbers = spoken_numbers(text, language)
        if not numbers and language != Language.EN:
            # Recognizers sometimes answer in English digits or words regardless.
            numbers = spoken_numbers(text, Language.EN)

        # The first spoken number decides; a later one is not a second chance.
        if numbers and numbers[0] is not None and _RATING_MIN <= numbers[0] <= _RATING_MAX:
            return ResolvedAnswer(
                value=str(numbers[0]), matched=True, method=MatchMethod.NUMBER
            )

        logger.debug("No rating in range found in %r (numbers: %s)", transcript, numbers)
        return ResolvedAnswer(value=transcript, matched=False, method=MatchMethod.NONE)

    # --------------------------------------------------------------------- #
    # Single choice
    # --------------------------------------------------------------------- #

    def _resolve_single(
        self, transcript: str, question: Question, language: Language
    ) -> ResolvedAnswer:
        result = self.match_option(transcript, question, language)
        if result.label is None:
            return ResolvedAnswer(value=transcript, matched=False, method=MatchMethod.NONE)
        return ResolvedAnswer(
            value=result.label,
            matched=True,
            labels=[result.label],
            method=result.method,
        )

    def match_option(
        self, fragment: str, question: Question, language: Language
    ) -> MatchResult:
        """Find the best option label for one fragment of speech."""
        text = normalize(fragment)
        if not text:
            return MatchResult(label=None, score=1.0, method=MatchMethod.NONE)

        for option in question.options:
            if normalize(option.label) == text:
                return MatchResult(label=option.label, score=0.0, method=MatchMethod.EXACT)

        result = self._try_yes_no(text, question, language)
        if result is not None:
            return result

        best_label: str | None = None
        best_score = 1.0
        for option in question.options:
            score = similarity_score(text, option.label)
            if score < best_score:
                best_score = score
                best_label = option.label

        if best_label is not None and best_score <= threshold_for(language):
            return MatchResult(label=best_label, score=best_score, method=MatchMethod.FUZZY)

        return MatchResult(label=None, score=best_score, method=MatchMethod.NONE)

    def _try_yes_no(
        self, text: str, question: Question, language: Language
    ) -> MatchResult | None:
        yes_label, no_label = self._yes_no_labels(question, language)
        if yes_label is None or no_label is None:
            return None

        polarity = classify_confirmation(text, language)
        if polarity == Polarity.AFFIRMATIVE:
            return MatchResult(label=yes_label, score=0.1, method=MatchMethod.YES_NO)
        if polarity == Polarity.NEGATIVE:
            return MatchResult(label=no_label, score=0.1, method=MatchMethod.YES_NO)
        return None

    @staticmethod
    def _yes_no_labels(
        question: Question, language: Language
    ) -> tuple[str | None, str | None]:
        """Return the (affirmative, negative) labels of a yes/no-shaped option set."""
        yes_label = no_label = None
        for option in question.options:
            polarity = classify_confirmation(option.label, language)
            if polarity == Polarity.UNKNOWN and language != Language.EN:
                polarity = classify_confirmation(option.label, Language.EN)
            if polarity == Polarity.AFFIRMATIVE and yes_label is None:
                yes_label = option.label
            elif polarity == Polarity.NEGATIVE and no_label is None:
                no_label = option.label
        return yes_label, no_label

    # --------------------------------------------------------------------- #
    # Multi choice
    # --------------------------------------------------------------------- #

    def split_fragments(self, transcript: str, language: Language) -> list[str]:
        """Split a multi-choice utterance on commas and spoken separators."""
        separator = SEPARATORS.get(language, SEPARATORS[Language.EN])
        fragments: list[str] = []
        for chunk in transcript.split(","):
            text = normalize(chunk)
            if language != Language.EN:
                # Mixed-language answers still use English conjunctions.
                parts = [
                    piece
                    for part in separator.split(text)
                    for piece in SEPARATORS[Language.EN].split(part)
                ]
            else:
                parts = separator.split(text)
            fragments.extend(part.strip() for part in parts if part and part.strip())
        return fragments

    def _resolve_multi(
        self, transcript: str, question: Question, language: Language
    ) -> ResolvedAnswer:
        matched = self._match_whole(transcript, question, language)
        if matched is None:
            matched = []
            for fragment in self.split_fragments(transcript, language):
                result = self.match_option(fragment, question, language)
                if result.label is None:
                    logger.debug("Dropping unmatched fragment %r", fragment)
                    continue
                if result.label not in matched:
                    matched.append(result.label)

        if not matched:
            return ResolvedAnswer(value=transcript, matched=False, method=MatchMethod.NONE)

        labels = [label for label in question.labels if label in matched]
        return ResolvedAnswer(
            value=",".join(labels),
            matched=True,
            labels=labels,
            method=MatchMethod.FUZZY,
        )

    @staticmethod
    def _match_whole(
        transcript: str, question: Question, language: Language
    ) -> list[str] | None:
        """Exact match of the whole utterance, for labels containing a separator word."""
        text = normalize(transcript)
        for option in question.options:
            if normalize(option.label) == text:
                return [option.label]
        return None


_default_resolver = OptionResolver()


def resolve(transcript: str, question: Question, language: Language) -> ResolvedAnswer:
    """Module-level convenience wrapper around :class:`OptionResolver`."""
    return _default_resolver.resolve(transcript, question, language)
