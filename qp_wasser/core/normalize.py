# qp_wasser/core/normalize.py
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP, localcontext
import math
import re
import unicodedata
import numpy as np
import pandas as pd

# leading numeric prefix, mirrors how lab exports are read by hand ("12,5 *" -> 12.5)
_NUM_PREFIX = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_DIGIT_RUN = re.compile(r"\d+")

# collation classes: whitespace < punctuation < symbols < digits < letters
_CLS_SPACE, _CLS_PUNCT, _CLS_SYMBOL, _CLS_DIGIT, _CLS_LETTER = range(5)
_EXPANSIONS = {"ß": "ss", "ẞ": "SS", "æ": "ae", "Æ": "AE", "œ": "oe", "Œ": "OE"}


def is_blank(value) -> bool:
    return value is None or str(value).strip() == ""


def parse_german_float(value) -> float:
    """Comma-decimal string -> float; blank or non-numeric -> NaN (never 0)."""
    if is_blank(value):
        return np.nan
    clean = str(value).replace(",", ".", 1).strip()
    m = _NUM_PREFIX.match(clean)
    if not m:
        return np.nan
    return float(m.group(0))


def round_half_up(value: float, places: int = 2) -> float:
    if value is None or math.isnan(value):
        return np.nan
    if math.isinf(value):
        return float(value)
    return float(_quantize(value, places))


def format_german_float(value: float, decimals: int = 2) -> str:
    if value is None or math.isnan(value) or math.isinf(value):
        return ""
    return format(_quantize(value, decimals), "f").replace(".", ",")


def _quantize(value: float, places: int) -> Decimal:
    # enough digits for any finite float (max ~1.8e308) plus the fraction
    with localcontext() as ctx:
        ctx.prec = 400
        return Decimal(repr(float(value))).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def to_float(s) -> pd.Series:
    if pd.api.types.is_numeric_dtype(s):
        return s.astype(float)
    return s.astype(str).map(parse_german_float).astype(float)


# ---------- sort keys ----------
def _char_weights(ch: str) -> list[tuple[int, int, int, int]]:
    """(class, primary, secondary, tertiary) weights for one character."""
    if ch in _EXPANSIONS:
        out = []
        for c in _EXPANSIONS[ch]:
            cls, prim, _, tert = _char_weights(c)[0]
            out.append((cls, prim, 1, tert))
        return out
    decomposed = unicodedata.normalize("NFD", ch)
    base = decomposed[0]
    accent = 1 if len(decomposed) > 1 else 0
    cat = unicodedata.category(base)
    if cat.startswith("L"):
        return [(_CLS_LETTER, ord(base.lower()), accent, 1 if base.isupper() else 0)]
    if cat.startswith("N"):
        return [(_CLS_DIGIT, unicodedata.digit(base, ord(base)), accent, 0)]
    if cat.startswith("Z") or base.isspace():
        return [(_CLS_SPACE, ord(base), 0, 0)]
    if cat.startswith("P"):
        return [(_CLS_PUNCT, ord(base), 0, 0)]
    if cat.startswith("M"):
        return []  # stray combining mark
    return [(_CLS_SYMBOL, ord(base), 0, 0)]


def german_collation_key(text: str) -> tuple:
    """
    Three-level sort key approximating German (de) collation:
    letters compare case- and accent-insensitively first (ä ~ a, ß ~ ss),
    then accents break ties, then case (lower before upper).
    """
    weights = [w for ch in text for w in _char_weights(ch)]
    primary = tuple((cls, prim) for cls, prim, _, _ in weights)
    secondary = tuple(sec for _, _, sec, _ in weights)
    tertiary = tuple(tert for _, _, _, tert in weights)
    return primary, secondary, tertiary


def natural_key(text: str) -> tuple:
    """Numeric-aware, case-insensitive key ("P2" < "P10")."""
    out: list[tuple[int, int]] = []
    pos = 0
    for m in _DIGIT_RUN.finditer(text):
        out.extend((cls, prim) for ch in text[pos:m.start()] for cls, prim, _, _ in _char_weights(ch))
        out.append((_CLS_DIGIT, int(m.group(0))))
        pos = m.end()
    out.extend((cls, prim) for ch in text[pos:] for cls, prim, _, _ in _char_weights(ch))
    return tuple(out)
