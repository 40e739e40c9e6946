"""Canonical form for transcript text and option labels."""

import re
import unicodedata

# ASCII punctuation stripped from transcripts before matching.
PUNCTUATION = ".,/#!$%^&*;:{}=-_`~()?\"'"

_PUNCT_TABLE = str.maketrans("", "", PUNCTUATION)
_WHITESPACE = re.compile(r"\s+")


def clean(text: str) -> str:
    """NFKC-normalize, strip punctuation and collapse whitespace, keeping case."""
    text = unicodedata.normalize("NFKC", text)
    text = text.translate(_PUNCT_TABLE)
    return _WHITESPACE.sub(" ", text).strip()


def normalize(text: str) -> str:
    """Lower-cased :func:`clean`. Idempotent: ``normalize(normalize(s)) == normalize(s)``."""
    # NFKC can surface new upper-case letters (e.g. U+210C) so iterate to a fixpoint.
    previous = None
    text = clean(text)
    while text != previous:
        previous = text
        text = clean(text.casefold())
    return text
