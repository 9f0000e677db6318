"""Citation extraction: free text -> page citations.

Matching runs over diacritic-folded text (``daflink.textmatch``) while
snippets and offsets refer to the original string.  Page rules are a single
ordered table; each rule is a pattern builder plus the detection method and
base confidence it emits:

=====  ===============  ==========  ==========================================
Order  Method           Confidence  Shape
=====  ===============  ==========  ==========================================
1      page_and_side    high        <volume> [דף] <page> <side marker|,> <א|ב>
2      page_only        medium      <volume> דף|ד' <page>
2b     page_only        medium      <volume> <page> closing the reference
3      co_occurrence    low         <volume> then a numeral-looking token
                                    within ``window`` tokens
=====  ===============  ==========  ==========================================

A match whose span overlaps a span claimed by an earlier rule is ignored.
Pages outside ``[2, max_page]`` or unparsable numerals on the explicit rules
become ``ParseIssue`` records and extraction continues.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache

from daflink.confidence import Confidence
from daflink.link_types import Citation, DetectedTopic, ParseIssue, WorkCitation
from daflink.numerals import parse_page_token
from daflink.textmatch import NormalizedText, has_hebrew, normalize_with_offsets
from daflink.volumes import Side, Volume, VolumeCatalog, side_from_token
from daflink.works import detect_topics, scan_works

log = logging.getLogger(__name__)

DEFAULT_WINDOW = 3

# Hebrew prefix letters that may be glued to a volume name (בבבא בתרא).
_PREFIX_LETTERS = "בוהלמשכד"
_BOUNDARY = (
    rf"(?:(?<!\w)|(?<=(?<!\w)[{_PREFIX_LETTERS}])|(?<=(?<!\w)[{_PREFIX_LETTERS}]{{2}}))"
)
_TRACTATE_PREFIX = r"(?:(?:מסכת|מס'|גמרא|תלמוד)\s*)?"
_PAGE_WORD = r"(?:דף|ד')"
_PAGE = r"(?P<page>\d{1,3}|[א-ת]{1,4}(?:\"[א-ת])?'?)(?!\w)"
_SIDE = r"(?:\s*,?\s*(?:עמוד|עמ'|ע\"|ע')\s*|\s*,\s*)(?P<side>[אב])(?!\w)"
_SEP = r"\s*,?\s*"
_NUMERAL_LIKE = r"(?P<page>\d{1,3}|[א-ת]{1,3}\"[א-ת]|[א-ת]{1,3}')(?!\w)"
# Without geresh or gershayim a bare numeral must end the reference
# (end of text, line or clause).
_BARE_PAGE = (
    r"(?P<page>[א-ת]{1,3}\"[א-ת]|[א-ת]{1,3}'"
    r"|(?:\d{1,3}|[א-ת]{1,3})(?=\s*(?:[.,;:!?)\]\n]|$)))(?!\w)"
)


@dataclass(frozen=True, slots=True)
class PageRule:
    """One entry of the page rule table."""

    detection_method: str
    confidence: Confidence
    build: Callable[[str, int], str]
    reports_issues: bool = True


def _page_and_side(volumes: str, window: int) -> str:
    return rf"{_BOUNDARY}{_TRACTATE_PREFIX}(?P<vol>{volumes})(?!\w){_SEP}(?:{_PAGE_WORD}\s*)?{_PAGE}{_SIDE}"


def _page_only(volumes: str, window: int) -> str:
    return rf"{_BOUNDARY}{_TRACTATE_PREFIX}(?P<vol>{volumes})(?!\w){_SEP}{_PAGE_WORD}\s*{_PAGE}"


def _bare_page(volumes: str, window: int) -> str:
    return rf"{_BOUNDARY}{_TRACTATE_PREFIX}(?P<vol>{volumes})(?!\w)\s+{_BARE_PAGE}"


def _co_occurrence(volumes: str, window: int) -> str:
    gap = max(0, window - 1)
    return rf"{_BOUNDARY}{_TRACTATE_PREFIX}(?P<vol>{volumes})(?!\w)(?:\s+\S+){{0,{gap}}}?\s+{_NUMERAL_LIKE}"


PAGE_RULES: tuple[PageRule, ...] = (
    PageRule("page_and_side", Confidence.HIGH, _page_and_side),
    PageRule("page_only", Confidence.MEDIUM, _page_only),
    PageRule("page_only", Confidence.MEDIUM, _bare_page, reports_issues=False),
    PageRule("co_occurrence", Confidence.LOW, _co_occurrence, reports_issues=False),
)


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Everything found in one text."""

    citations: list[Citation] = field(default_factory=list)
    work_citations: list[WorkCitation] = field(default_factory=list)
    topics: list[DetectedTopic] = field(default_factory=list)
    issues: list[ParseIssue] = field(default_factory=list)


def _alias_key(alias: str) -> str:
    return " ".join(alias.replace("_", " ").replace("״", '"').lower().split())


def volume_aliases(catalog: VolumeCatalog) -> dict[str, Volume]:
    """Every surface form of every volume, folded the way matching folds text."""
    aliases: dict[str, Volume] = {}
    for vol in catalog:
        for form in (vol.hebrew_name, vol.english_name, vol.canonical_name):
            if form:
                aliases.setdefault(_alias_key(form), vol)
    for abbr, vol in catalog.abbreviations.items():
        aliases.setdefault(_alias_key(abbr), vol)
    return aliases


class CitationExtractor:
    """Compiled rule table for one volume catalog."""

    def __init__(self, catalog: VolumeCatalog, *, window: int = DEFAULT_WINDOW) -> None:
        if window < 1:
            raise ValueError(f"co-occurrence window must be >= 1, got {window}")
        self.catalog = catalog
        self.window = window
        self._aliases = volume_aliases(catalog)
        ordered = sorted(self._aliases, key=len, reverse=True)
        volumes = "|".join(r"\s+".join(re.escape(p) for p in a.split()) for a in ordered)
        self._compiled: list[tuple[PageRule, re.Pattern[str]]] = [
            (rule, re.compile(rule.build(volumes, window))) for rule in PAGE_RULES
        ]

    def _resolve_volume(self, matched: str) -> Volume | None:
        return self._aliases.get(_alias_key(matched))

    def extract(self, norm: NormalizedText) -> tuple[list[Citation], list[ParseIssue]]:
        claimed: list[tuple[int, int]] = []
        found: list[Citation] = []
        issues: list[ParseIssue] = []

        def overlaps(start: int, end: int) -> bool:
            return any(start < c_end and c_start < end for c_start, c_end in claimed)

        for rule, pattern in self._compiled:
            for m in pattern.finditer(norm.text):
                start, end = m.start(), m.end()
                if overlaps(start, end):
                    continue
                vol = self._resolve_volume(m.group("vol"))
                if vol is None:
                    continue
                o_start, o_end = norm.original_span(start, end)
                raw = norm.original[o_start:o_end]
                page = parse_page_token(m.group("page"))
                if page is None or not vol.contains(page):
                    if rule.reports_issues:
                        claimed.append((start, end))
                        reason = (
                            f"unparsable page {m.group('page')!r}"
                            if page is None
                            else f"page {page} outside {vol.canonical_name} range 2..{vol.max_page}"
                        )
                        issues.append(ParseIssue(reason, raw, o_start))
                        log.debug("skipped citation %r: %s", raw, reason)
                    continue
                side: Side | None = None
                if "side" in pattern.groupindex:
                    side = side_from_token(m.group("side"))
                claimed.append((start, end))
                found.append(
                    Citation(
                        volume=vol,
                        page=page,
                        side=side,
                        confidence=rule.confidence,
                        raw_snippet=raw,
                        detection_method=rule.detection_method,
                        start=o_start,
                        end=o_end,
                    )
                )

        found.sort(key=lambda c: c.start)
        deduped: list[Citation] = []
        seen: set[tuple[str, int | None, str | None]] = set()
        for citation in found:
            if citation.key in seen:
                continue
            seen.add(citation.key)
            deduped.append(citation)
        issues.sort(key=lambda i: i.start)
        return deduped, issues

    def scan(self, text: str) -> ScanResult:
        if not text or not has_hebrew(text):
            return ScanResult()
        norm = normalize_with_offsets(text)
        citations, issues = self.extract(norm)
        return ScanResult(
            citations=citations,
            work_citations=scan_works(norm),
            topics=detect_topics(norm.text),
            issues=issues,
        )


_EXTRACTOR_CACHE_SIZE = 8


@lru_cache(maxsize=_EXTRACTOR_CACHE_SIZE)
def get_extractor(catalog: VolumeCatalog, *, window: int = DEFAULT_WINDOW) -> CitationExtractor:
    """Cached extractor per (catalog, window); compiling the table is not free.

    Catalogs hash by identity.  The cache is bounded so short-lived catalogs
    are released once enough newer ones have been used.
    """
    return CitationExtractor(catalog, window=window)


def scan_text(text: str, catalog: VolumeCatalog, *, window: int = DEFAULT_WINDOW) -> ScanResult:
    """Page citations, work citations, topics and parse issues for *text*."""
    return get_extractor(catalog, window=window).scan(text)


def extract_citations(
    text: str, catalog: VolumeCatalog, *, window: int = DEFAULT_WINDOW,
) -> list[Citation]:
    """Page citations in order of first appearance, one per (volume, page, side)."""
    return scan_text(text, catalog, window=window).citations
