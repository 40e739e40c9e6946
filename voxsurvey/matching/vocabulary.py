"""Per-language word lists used by the option resolver.

Khmer recognizers often return words without separating spaces, so Khmer
phrases are located by substring search while English phrases are matched
on word boundaries.
"""

import re

from voxsurvey.config import MATCH_THRESHOLD_EN, MATCH_THRESHOLD_KM
from voxsurvey.survey.models import Language

THRESHOLDS: dict[Language, float] = {
    Language.EN: MATCH_THRESHOLD_EN,
    Language.KM: MATCH_THRESHOLD_KM,
}

AFFIRMATIVE: dict[Language, frozenset[str]] = {
    Language.EN: frozenset({
        "yes", "yeah", "yep", "yup", "ya", "yea", "sure", "correct", "right",
        "ok", "okay", "affirmative", "absolutely", "definitely", "confirm",
        "of course", "that's right", "thats right", "that is right",
    }),
    Language.KM: frozenset({
        "បាទ", "ចាស", "ចាស៎", "ចា៎", "បាទចាស", "ត្រូវ", "ត្រឹមត្រូវ", "យល់ព្រម",
        "ព្រម", "អូខេ", "មែន", "ពិតជាមែន",
    }),
}

NEGATIVE: dict[Language, frozenset[str]] = {
    Language.EN: frozenset({
        "no", "nope", "nah", "not", "wrong", "incorrect", "negative", "never",
        "cancel", "not really", "no way",
    }),
    Language.KM: frozenset({
        "ទេ", "អត់", "អត់ទេ", "មិន", "មិនមែន", "មិនត្រូវ", "មិនមែនទេ", "ខុស", "បដិសេធ",
    }),
}

NUMBER_WORDS: dict[Language, dict[str, int]] = {
    Language.EN: {
        "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
        "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
        "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14,
        "fifteen": 15, "sixteen": 16, "seventeen": 17, "eighteen": 18,
        "nineteen": 19, "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
        "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
    },
    Language.KM: {
        "សូន្យ": 0, "មួយ": 1, "ពីរ": 2, "បី": 3, "បួន": 4, "ប្រាំ": 5,
        "ប្រាំមួយ": 6, "ប្រាំពីរ": 7, "ប្រាំបី": 8, "ប្រាំបួន": 9, "ដប់": 10,
        "ម្ភៃ": 20, "សាមសិប": 30, "សែសិប": 40, "ហាសិប": 50, "ហុកសិប": 60,
        "ចិតសិប": 70, "ប៉ែតសិប": 80, "កៅសិប": 90,
    },
}

# Scale words multiply the run before them: "one hundred", "មួយរយ".
NUMBER_MULTIPLIERS: dict[Language, dict[str, int]] = {
    Language.EN: {"hundred": 100, "thousand": 1_000, "million": 1_000_000},
    Language.KM: {
        "រយ": 100, "ពាន់": 1_000, "ម៉ឺន": 10_000, "សែន": 100_000, "លាន": 1_000_000,
    },
}

# Words allowed between two number words of one spoken number.
NUMBER_CONNECTORS: dict[Language, frozenset[str]] = {
    Language.EN: frozenset({"and"}),
    Language.KM: frozenset(),
}

# Multi-choice separators; comma is handled before punctuation is stripped.
SEPARATORS: dict[Language, re.Pattern[str]] = {
    Language.EN: re.compile(r"\s+(?:and|or|plus|also)\s+"),
    Language.KM: re.compile(r"\s*(?:និង|ហើយ|បូក|ព្រមទាំង)\s*|\s+ឬ\s+"),
}


def threshold_for(language: Language) -> float:
    return THRESHOLDS.get(language, MATCH_THRESHOLD_EN)


def _longest_first(words) -> str:
    return "|".join(re.escape(word) for word in sorted(words, key=len, reverse=True))


def _number_tokens(language: Language) -> str:
    return _longest_first({**NUMBER_WORDS[language], **NUMBER_MULTIPLIERS[language]})


NUMBER_PATTERNS: dict[Language, re.Pattern[str]] = {
    Language.EN: re.compile(rf"\b({_number_tokens(Language.EN)}|\d+)\b"),
    Language.KM: re.compile(rf"({_number_tokens(Language.KM)}|\d+)"),
}
