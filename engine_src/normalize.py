from __future__ import annotations

import re
from typing import List, Tuple

# Longest sequence first so the shorter one does not leave a stray prefix behind.
DEGREE_MISENCODINGS: List[str] = ["Ã‚Â°", "Â°", "Âº"]

DOUBLE_QUOTES = "“”„‟″«»"
SINGLE_QUOTES = "‘’‚‛′´`"

_QUOTE_TABLE = str.maketrans({**{ch: '"' for ch in DOUBLE_QUOTES}, **{ch: "'" for ch in SINGLE_QUOTES}})

_RULES: List[Tuple[re.Pattern, str]] = [
    # Tilde/underscore noise after a compass letter, e.g. 'N ~~' or 'W_'.
    (re.compile(r"([NSEW])[\s~_]*[~_]"), r"\1"),
    # '1o5' -> '105'
    (re.compile(r"(?<=\d)o(?=\d)"), "0"),
    # ' o ' -> ' 0 '
    (re.compile(r"(?<=\s)[oO](?=\s)"), "0"),
    (re.compile(r"[\r\n]+"), " "),
]


def fix_degree_symbol(text: str) -> str:
    # Repeat until stable: 'ÂÂ°' collapses to 'Â°' on the first sweep.
    while any(bad in text for bad in DEGREE_MISENCODINGS):
        for bad in DEGREE_MISENCODINGS:
            text = text.replace(bad, "°")
    return text


def straighten_quotes(text: str) -> str:
    return text.translate(_QUOTE_TABLE)


def normalize(raw: str) -> str:
    """Clean raw OCR output into a single trimmed line.

    Substitutions never lengthen the text, and applying normalize twice gives
    the same result as applying it once.
    """
    if not raw:
        return ""
    text = straighten_quotes(fix_degree_symbol(raw))
    for pattern, repl in _RULES:
        text = pattern.sub(repl, text)
    return text.strip()
