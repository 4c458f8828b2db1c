"""
Text normalization for topic surface forms.
"""
import re
import unicodedata

# Language-specific letters folded to their base form
_DIACRITIC_FOLDS = str.maketrans({"ё": "е"})

_PUNCTUATION_RE = re.compile(r"[#.,!?:;\"'()\[\]{}«»“”„]+")
_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"[a-zа-яё0-9]+", re.IGNORECASE)


def normalize_surface(text: str | None) -> str:
    """
    Normalize a free-text tag so equivalent spellings share one key.

    - Unicode NFKC, then case-fold
    - Fold language-specific diacritics (ё -> е)
    - Strip punctuation, collapse whitespace, trim

    Returns an empty string for empty or punctuation-only input.
    """
    if not text:
        return ""
    s = unicodedata.normalize("NFKC", str(text)).casefold()
    s = s.translate(_DIACRITIC_FOLDS)
    s = _PUNCTUATION_RE.sub("", s)
    s = _WHITESPACE_RE.sub(" ", s)
    return s.strip()


def tokenize(text: str | None) -> list[str]:
    """Lowercase alphanumeric tokens (Latin and Cyrillic)."""
    if not text:
        return []
    return [t.lower() for t in _TOKEN_RE.findall(text)]


def truncate(text: str | None, max_length: int) -> str:
    if not text:
        return ""
    return text if len(text) <= max_length else text[:max_length]
