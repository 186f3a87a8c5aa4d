import re
import unicodedata

TRUNCATION_MARKER = "..."

# UTF-8 bytes of Turkish letters mis-decoded as cp1252 by upstream sources
MOJIBAKE_REPLACEMENTS = {
    "â€™": "'",
    "â€œ": '"',
    "â€\x9d": '"',
    "Ã§": "ç",
    "Ã‡": "Ç",
    "ÄŸ": "ğ",
    "Äž": "Ğ",
    "Ä±": "ı",
    "Ä°": "İ",
    "Ã¶": "ö",
    "Ã–": "Ö",
    "ÅŸ": "ş",
    "Åž": "Ş",
    "Ã¼": "ü",
    "Ãœ": "Ü",
}

_MOJIBAKE_PATTERN = re.compile(
    "|".join(re.escape(k) for k in sorted(MOJIBAKE_REPLACEMENTS, key=len, reverse=True))
)

# Letters NFKD cannot decompose to ASCII
_TURKISH_ASCII = str.maketrans({
    "ı": "i", "İ": "i",
    "ş": "s", "Ş": "s",
    "ğ": "g", "Ğ": "g",
    "ç": "c", "Ç": "c",
    "ö": "o", "Ö": "o",
    "ü": "u", "Ü": "u",
})


def preprocess_text(t: str, max_length: int) -> str:
    """
    Prepare text for submission to a classifier backend.

    Trims, collapses whitespace runs and, if the text exceeds ``max_length``
    characters, cuts it at the last whole word and appends a truncation marker.
    The back-off to a word boundary only happens when the boundary lies in the
    second half of the budget, so one very long token cannot empty the text.
    """
    t = re.sub(r'\s+', ' ', t)
    t = t.strip()

    if len(t) <= max_length:
        return t

    truncated = t[:max_length]
    last_space = truncated.rfind(' ')
    if last_space > max_length // 2:
        return truncated[:last_space] + TRUNCATION_MARKER
    return truncated + TRUNCATION_MARKER


def repair_mojibake(t: str) -> str:
    """Restore Turkish letters that were double-encoded upstream."""
    return _MOJIBAKE_PATTERN.sub(lambda m: MOJIBAKE_REPLACEMENTS[m.group(0)], t)


def fold_text(t: str) -> str:
    """Lower-case and fold to an ASCII-equivalent form for keyword matching."""
    t = repair_mojibake(t)
    t = t.translate(_TURKISH_ASCII).lower()
    decomposed = unicodedata.normalize("NFKD", t)
    return "".join(c for c in decomposed if not unicodedata.combining(c))
