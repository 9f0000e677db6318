"""Hebrew alphabetic numeral codec for page numbers.

Pages are written with letter values summed from the largest letter down
(``קעו`` = 100 + 70 + 6 = 176).  Two spellings are customary exceptions:
15 is ``טו`` and 16 is ``טז``; the spellings ``יה`` and ``יו`` never occur.
Hundreds above 400 repeat ``ת`` (500 = ``תק``), so any page count encodes.

Parsing is strict: a numeral only parses if it is the canonical spelling of
its value, which rejects ascending sequences and the forbidden forms.
Geresh / gershayim and their ASCII stand-ins are ignored.
"""
from __future__ import annotations

ONES = ("", "א", "ב", "ג", "ד", "ה", "ו", "ז", "ח", "ט")
TENS = ("", "י", "כ", "ל", "מ", "נ", "ס", "ע", "פ", "צ")
HUNDREDS = ("", "ק", "ר", "ש")

GERESH = "׳"
GERSHAYIM = "״"

_FINAL_FORMS = {"ך": "כ", "ם": "מ", "ן": "נ", "ף": "פ", "ץ": "צ"}
_PUNCTUATION = frozenset({GERESH, GERSHAYIM, "'", '"', "’", "”", "`"})

LETTER_VALUES: dict[str, int] = {}
for _i, _letter in enumerate(ONES[1:], start=1):
    LETTER_VALUES[_letter] = _i
for _i, _letter in enumerate(TENS[1:], start=1):
    LETTER_VALUES[_letter] = _i * 10
for _i, _letter in enumerate(HUNDREDS[1:], start=1):
    LETTER_VALUES[_letter] = _i * 100
LETTER_VALUES["ת"] = 400

_SIDE_LABELS = {"a": "ע״א", "b": "ע״ב"}


def page_to_numeral(page: int) -> str:
    """Encode a positive page number as canonical Hebrew letters.

    Non-positive input has no letter form and is returned as its decimal
    string.
    """
    if page <= 0:
        return str(page)
    hundreds, rest = divmod(page, 100)
    out = "ת" * (hundreds // 4) + HUNDREDS[hundreds % 4]
    if rest == 15:
        out += "טו"
    elif rest == 16:
        out += "טז"
    else:
        out += TENS[rest // 10] + ONES[rest % 10]
    return out


def _clean(numeral: str) -> str:
    chars = []
    for ch in numeral.strip():
        if ch in _PUNCTUATION:
            continue
        chars.append(_FINAL_FORMS.get(ch, ch))
    return "".join(chars)


def numeral_to_page(numeral: str) -> int | None:
    """Decode a Hebrew numeral; ``None`` when it is not a canonical spelling."""
    letters = _clean(numeral)
    if not letters:
        return None
    total = 0
    for ch in letters:
        value = LETTER_VALUES.get(ch)
        if value is None:
            return None
        total += value
    if page_to_numeral(total) != letters:
        return None
    return total


def parse_page_token(token: str) -> int | None:
    """Parse a page written either in decimal digits or as a Hebrew numeral."""
    raw = token.strip()
    if not raw:
        return None
    if raw.isdigit():
        value = int(raw)
        return value if value > 0 else None
    return numeral_to_page(raw)


def format_numeral(page: int) -> str:
    """Display form: gershayim before the last letter, geresh after a lone one."""
    letters = page_to_numeral(page)
    if page <= 0:
        return letters
    if len(letters) == 1:
        return letters + GERESH
    return letters[:-1] + GERSHAYIM + letters[-1]


def format_page_side(page: int, side: str | None = None) -> str:
    """Render ``ב ע״א`` style labels; the side suffix is omitted when unknown."""
    label = page_to_numeral(page)
    suffix = _SIDE_LABELS.get(str(side)) if side is not None else None
    return f"{label} {suffix}" if suffix else label


def side_from_hebrew(letter: str) -> str | None:
    """``א`` -> ``"a"``, ``ב`` -> ``"b"``; anything else is not a side."""
    return {"א": "a", "ב": "b"}.get(_clean(letter or ""))
