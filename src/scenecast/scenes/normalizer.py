"""Text canonicalization applied before segmentation.

``normalize`` is pure and idempotent: normalizing already-normalized text
returns it unchanged.
"""

import re


# Quote and punctuation variants mapped to a canonical form
_PUNCTUATION_MAP = str.maketrans({
    "“": '"',   # left double quotation mark
    "”": '"',   # right double quotation mark
    "„": '"',
    "″": '"',
    "＂": '"',   # fullwidth quotation mark
    "‘": "'",
    "’": "'",
    "‚": "'",
    "′": "'",
    "＇": "'",
    "｡": "。",  # halfwidth ideographic full stop
    "､": "、",  # halfwidth ideographic comma
    "…": "...",
})

_HORIZONTAL_WHITESPACE = re.compile(r"[ \t\u00a0\u1680\u2000-\u200a\u202f\u205f\u3000\f\v]+")
_SPACE_AROUND_NEWLINE = re.compile(r" *\n *")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def _to_halfwidth_alphanumeric(char: str) -> str:
    code = ord(char)
    # FF10-FF19 digits, FF21-FF3A upper, FF41-FF5A lower
    if 0xFF10 <= code <= 0xFF19 or 0xFF21 <= code <= 0xFF3A or 0xFF41 <= code <= 0xFF5A:
        return chr(code - 0xFEE0)
    return char


def normalize(text: str) -> str:
    """Canonicalize width, punctuation and whitespace.

    - Line endings become ``\\n``
    - Curly quotes, primes and halfwidth CJK punctuation become canonical
    - Full-width letters and digits become half-width
    - Runs of horizontal whitespace collapse to a single space
    - Spaces around line breaks are dropped; 3+ line breaks collapse to 2
    - Leading and trailing whitespace is trimmed

    Returns an empty string for empty or ``None`` input.
    """
    if not text:
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.translate(_PUNCTUATION_MAP)
    text = "".join(_to_halfwidth_alphanumeric(char) for char in text)
    text = _HORIZONTAL_WHITESPACE.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    text = _EXCESS_BLANK_LINES.sub("\n\n", text)
    return text.strip()
