"""
Free-text matching of consent recipients and purposes.

Consent text is free-form at capture time, so matching is loose and
case-insensitive: either string contains the other, or the significant
words of one are all present in the other regardless of order.
"Care coordination" therefore covers "coordination of care".
"""
import re
from typing import Iterable

_WORD = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset({"a", "an", "and", "for", "in", "of", "on", "or", "the", "to", "with"})


def _words(text: str) -> frozenset[str]:
    return frozenset(w for w in _WORD.findall(text) if w not in _STOPWORDS)


def text_matches(consented: str | None, requested: str | None) -> bool:
    """Bidirectional match. Blank text on either side never matches."""
    if not consented or not consented.strip() or not requested or not requested.strip():
        return False
    a = consented.strip().lower()
    b = requested.strip().lower()
    if a in b or b in a:
        return True

    words_a, words_b = _words(a), _words(b)
    if not words_a or not words_b:
        return False
    return words_a <= words_b or words_b <= words_a


def recipient_authorized(authorized_recipients: Iterable[str] | None, recipient: str) -> bool:
    return any(text_matches(r, recipient) for r in authorized_recipients or [])


def purpose_matches(purpose_of_disclosure: str | None, purpose: str) -> bool:
    return text_matches(purpose_of_disclosure, purpose)
