"""Reusable text primitives for Hebrew citation matching.

Pure text operations with zero domain dependencies: diacritic folding with an
offset map back to the original string, Hebrew detection, whole-word keyword
counting and snippet windows.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

# Cantillation marks and vowel points (niqqud).
_MARK_START = 0x0591
_MARK_END = 0x05C7
_MAQAF = "־"

_QUOTE_FOLD = {
    "״": '"',
    "“": '"',
    "”": '"',
    "„": '"',
    "׳": "'",
    "‘": "'",
    "’": "'",
    "`": "'",
}

_HEBREW_LETTER_RE = re.compile(r"[א-ת]")
_NIQQUD_RE = re.compile(r"[֑-ֽֿ-ׇ]")


@dataclass(frozen=True, slots=True)
class PhraseHit:
    """A phrase match at a specific offset. Domain-neutral primitive."""

    phrase: str
    char_offset: int


@dataclass(frozen=True, slots=True)
class NormalizedText:
    """Folded text plus, for each folded char, its index in the original."""

    text: str
    offsets: tuple[int, ...]
    original: str

    def original_span(self, start: int, end: int) -> tuple[int, int]:
        """Map a ``[start, end)`` span of ``text`` onto the original string."""
        if not self.offsets or start >= len(self.offsets):
            return len(self.original), len(self.original)
        o_start = self.offsets[start]
        o_end = self.offsets[end - 1] + 1 if end > start else o_start
        return o_start, o_end

    def original_slice(self, start: int, end: int) -> str:
        o_start, o_end = self.original_span(start, end)
        return self.original[o_start:o_end]


def normalize_with_offsets(text: str) -> NormalizedText:
    """Fold diacritics, quote marks and case, keeping an offset map.

    Vowel points and cantillation are dropped, maqaf becomes a space and the
    Hebrew geresh/gershayim (and typographic quotes) become ASCII quotes.
    """
    out: list[str] = []
    offsets: list[int] = []
    for i, ch in enumerate(text):
        if ch == _MAQAF:
            out.append(" ")
            offsets.append(i)
            continue
        code = ord(ch)
        if _MARK_START <= code <= _MARK_END:
            continue
        # some characters lowercase to several (İ -> i + U+0307)
        for folded in _QUOTE_FOLD.get(ch, ch).lower():
            out.append(folded)
            offsets.append(i)
    return NormalizedText("".join(out), tuple(offsets), text)


def normalize(text: str) -> str:
    """Folded text without the offset map."""
    return normalize_with_offsets(text).text


def strip_niqqud(text: str) -> str:
    return _NIQQUD_RE.sub("", text)


def has_hebrew(text: str) -> bool:
    return bool(_HEBREW_LETTER_RE.search(text or ""))


def hebrew_ratio(text: str) -> float:
    """Share of non-space characters that are Hebrew letters."""
    chars = [c for c in text if not c.isspace()]
    if not chars:
        return 0.0
    return sum(1 for c in chars if _HEBREW_LETTER_RE.match(c)) / len(chars)


def word_count(text: str) -> int:
    return len(text.split())


def whole_word_pattern(phrase: str) -> re.Pattern[str]:
    """Compile a pattern matching *phrase* only between non-word characters."""
    body = r"\s+".join(re.escape(part) for part in phrase.split())
    return re.compile(rf"(?<!\w){body}(?!\w)")


def count_occurrences(text: str, phrase: str) -> int:
    """Whole-word occurrence count of *phrase* in *text*."""
    if not phrase.strip():
        return 0
    return len(whole_word_pattern(phrase).findall(text))


def keyword_hits(text: str, keywords: list[str]) -> list[PhraseHit]:
    """Every whole-word hit of every keyword, ordered by offset."""
    hits: list[PhraseHit] = []
    for kw in keywords:
        if not kw.strip():
            continue
        for m in whole_word_pattern(kw).finditer(text):
            hits.append(PhraseHit(kw, m.start()))
    hits.sort(key=lambda h: (h.char_offset, h.phrase))
    return hits


def snippet(text: str, start: int, end: int, *, radius: int = 40) -> str:
    """Return *text* around ``[start, end)`` widened by *radius* characters."""
    lo = max(0, start - radius)
    hi = min(len(text), end + radius)
    return " ".join(text[lo:hi].split())
