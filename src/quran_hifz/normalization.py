"""
Arabic text normalization used before any recitation comparison.
"""

import re
from typing import List

# Tashkeel: fathatan .. sukun
_TASHKEEL_RE = re.compile(r'[\u064B-\u0652]')
# Quranic marks: maddah/hamza above and below, dagger alef, small high and low annotation signs
_QURANIC_MARKS_RE = re.compile(r'[\u0653-\u065F\u0670\u06D6-\u06ED]')
# Hamza-topped, hamza-under, madda and wasla alef
_ALEF_VARIANTS_RE = re.compile(r'[\u0623\u0625\u0622\u0671]')
_TATWEEL_RE = re.compile(r'\u0640')
_ANNOTATION_TOKEN_RE = re.compile(r'^[\u06D6-\u06ED]+$')

BARE_ALEF = '\u0627'


def normalize_arabic(text: str) -> str:
    """
    Normalize Arabic text for fuzzy matching.

    Removes vocalization marks, Quranic annotation signs and tatweel, then
    collapses alef variants (hamza above, hamza below, madda, wasla) to bare
    alef. The output contains nothing this function would change again, so
    normalizing twice is the same as normalizing once.
    """
    if not text:
        return ""
    text = _TASHKEEL_RE.sub('', text)
    text = _QURANIC_MARKS_RE.sub('', text)
    text = _ALEF_VARIANTS_RE.sub(BARE_ALEF, text)
    text = _TATWEEL_RE.sub('', text)
    return text


def tokenize(text: str) -> List[str]:
    """Split text into whitespace-separated tokens."""
    return text.split() if text else []


def is_annotation_token(token: str) -> bool:
    """True if the token is only a standalone stop mark."""
    return bool(_ANNOTATION_TOKEN_RE.match(token))
