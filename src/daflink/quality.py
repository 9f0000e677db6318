"""Data quality checks and the export report.

Ruling-level checks flag empty, short, non-Hebrew, OCR-damaged or repetitive
text and missing metadata; each issue carries a severity and the ruling gets
a 0–100 score (error -30, warning -15, info -5).  Duplicate rulings are
grouped by content hash first and by normalised title second.

``build_export_report`` assembles the serialisable export structure::

    {"timestamp": ..., "stats": {...},
     "duplicates_summary": {...}, "issues_summary": {...}}
"""
from __future__ import annotations

import re
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from daflink.io_utils import save_json
from daflink.link_types import Ruling
from daflink.textmatch import hebrew_ratio, strip_niqqud, word_count

if TYPE_CHECKING:
    from daflink.analysis import RulingAnalysis
    from daflink.merge import MergeResult

MIN_WORDS_ERROR = 20
MIN_WORDS_WARNING = 50
MIN_HEBREW_RATIO = 0.3
MIN_TITLE_LENGTH = 3
MIN_DUPLICATE_TITLE_LENGTH = 5
EARLIEST_YEAR = 1900
MAX_REPORTED_ITEMS = 200

_OCR_RE = re.compile(r"(.)\1{8,}")
_SUSPICIOUS = (
    (re.compile(r"\?{3,}"), "repeated question marks"),
    (re.compile(r"\.{5,}"), "repeated dots"),
    (re.compile(r"_{5,}"), "repeated underscores"),
    (re.compile(r"[#$%&*]{3,}"), "repeated special characters"),
)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]")


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def penalty(self) -> int:
        match self:
            case Severity.ERROR:
                return 30
            case Severity.WARNING:
                return 15
            case Severity.INFO:
                return 5


@dataclass(frozen=True, slots=True)
class QualityIssue:
    issue_type: str
    severity: Severity
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.issue_type, "severity": self.severity.value, "message": self.message}


@dataclass(frozen=True, slots=True)
class RulingQuality:
    ruling_id: str
    title: str
    issues: tuple[QualityIssue, ...]

    @property
    def score(self) -> int:
        return quality_score(self.issues)

    @property
    def is_healthy(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruling_id": self.ruling_id,
            "title": self.title,
            "score": self.score,
            "issues": [i.to_dict() for i in self.issues],
        }


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    kind: str  # "hash" | "title"
    key: str
    similarity: int
    ruling_ids: tuple[str, ...]  # original first

    @property
    def original_id(self) -> str:
        return self.ruling_ids[0]

    @property
    def duplicate_ids(self) -> tuple[str, ...]:
        return self.ruling_ids[1:]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "key": self.key,
            "similarity": self.similarity,
            "original_id": self.original_id,
            "duplicate_ids": list(self.duplicate_ids),
        }


# ---------------------------------------------------------------------------
# Ruling checks
# ---------------------------------------------------------------------------

def quality_score(issues: Iterable[QualityIssue]) -> int:
    score = 100 - sum(i.severity.penalty for i in issues)
    return max(0, min(100, score))


def _has_repetition(text: str) -> bool:
    counts: Counter[str] = Counter(
        s.strip().lower() for s in _SENTENCE_SPLIT_RE.split(text) if len(s.strip()) > 20
    )
    return any(n > 2 for n in counts.values())


def check_ruling(ruling: Ruling, *, current_year: int | None = None) -> RulingQuality:
    """Run every content and metadata check over one ruling."""
    year_limit = (current_year or datetime.now(UTC).year) + 1
    text = ruling.full_text or ruling.summary or ""
    issues: list[QualityIssue] = []

    if not text.strip():
        issues.append(QualityIssue("empty", Severity.ERROR, "no text content"))
    else:
        words = word_count(text)
        if words < MIN_WORDS_ERROR:
            issues.append(QualityIssue("short", Severity.ERROR, f"very short text ({words} words)"))
        elif words < MIN_WORDS_WARNING:
            issues.append(QualityIssue("short", Severity.WARNING, f"short text ({words} words)"))

        chars = len("".join(text.split()))
        ratio = hebrew_ratio(text)
        if chars > 20 and ratio < MIN_HEBREW_RATIO:
            issues.append(QualityIssue(
                "low_hebrew", Severity.WARNING, f"little Hebrew content ({round(ratio * 100)}%)",
            ))
        if _OCR_RE.search(text):
            issues.append(QualityIssue("ocr_error", Severity.WARNING, "long runs of one character"))
        for pattern, name in _SUSPICIOUS:
            if pattern.search(text):
                issues.append(QualityIssue("suspicious_chars", Severity.INFO, name))
                break
        if _has_repetition(text):
            issues.append(QualityIssue("repetitive", Severity.WARNING, "sentences repeat"))

    if len(ruling.title.strip()) < MIN_TITLE_LENGTH:
        issues.append(QualityIssue("missing_metadata", Severity.WARNING, "title missing or too short"))
    if not ruling.court.strip():
        issues.append(QualityIssue("missing_metadata", Severity.INFO, "court not recorded"))
    if ruling.year is None or not EARLIEST_YEAR <= ruling.year <= year_limit:
        issues.append(QualityIssue("missing_metadata", Severity.WARNING, "year missing or invalid"))

    return RulingQuality(ruling.id, ruling.title, tuple(issues))


def _normalized_title(title: str) -> str:
    return " ".join(strip_niqqud(title).lower().split())


def _by_creation(rulings: list[Ruling]) -> tuple[str, ...]:
    ordered = sorted(rulings, key=lambda r: (r.created_at or "", r.id))
    return tuple(r.id for r in ordered)


def find_duplicate_rulings(rulings: Iterable[Ruling]) -> list[DuplicateGroup]:
    """Group rulings sharing a content hash, then rulings sharing a title.

    A title group is skipped when any of its rulings is already in a hash
    group.  Within a group the earliest-created ruling is the original.
    """
    items = list(rulings)
    by_hash: dict[str, list[Ruling]] = defaultdict(list)
    by_title: dict[str, list[Ruling]] = defaultdict(list)
    for r in items:
        if r.content_hash:
            by_hash[r.content_hash].append(r)
        title = _normalized_title(r.title)
        if len(title) > MIN_DUPLICATE_TITLE_LENGTH:
            by_title[title].append(r)

    groups: list[DuplicateGroup] = []
    in_hash_group: set[str] = set()
    for key in sorted(by_hash):
        members = by_hash[key]
        if len(members) > 1:
            groups.append(DuplicateGroup("hash", key, 100, _by_creation(members)))
            in_hash_group.update(r.id for r in members)
    for key in sorted(by_title):
        members = by_title[key]
        if len(members) > 1 and not any(r.id in in_hash_group for r in members):
            groups.append(DuplicateGroup("title", key, 95, _by_creation(members)))
    return groups


# ---------------------------------------------------------------------------
# Statistics and export
# ---------------------------------------------------------------------------

def corpus_statistics(rulings: Iterable[Ruling], *, top_n: int = 10) -> dict[str, Any]:
    """Top tags, top courts and the year range of a ruling set."""
    items = list(rulings)
    tags: Counter[str] = Counter(t for r in items for t in r.tags)
    courts: Counter[str] = Counter(r.court for r in items if r.court)
    years = [r.year for r in items if r.year is not None]

    def ranked(counter: Counter[str]) -> list[dict[str, Any]]:
        rows = sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))[:top_n]
        return [{"name": name, "count": n} for name, n in rows]

    return {
        "total_rulings": len(items),
        "with_full_text": sum(1 for r in items if r.has_full_text),
        "top_tags": ranked(tags),
        "top_courts": ranked(courts),
        "year_range": {"min": min(years), "max": max(years)} if years else None,
    }


def build_export_report(
    merge_result: MergeResult,
    rulings: Iterable[Ruling],
    *,
    analyses: Mapping[str, RulingAnalysis] | None = None,
    current_year: int | None = None,
    timestamp: str | None = None,
) -> dict[str, Any]:
    """Serialisable export of link statistics, duplicates and quality issues."""
    items = list(rulings)
    checks = [check_ruling(r, current_year=current_year) for r in items]
    flagged = [c for c in checks if not c.is_healthy]
    ruling_dupes = find_duplicate_rulings(items)

    by_type: Counter[str] = Counter(i.issue_type for c in checks for i in c.issues)
    by_severity: Counter[str] = Counter(i.severity.value for c in checks for i in c.issues)
    parse_issues = sum(len(a.issues) for a in (analyses or {}).values())
    average = round(sum(c.score for c in checks) / len(checks), 1) if checks else 100.0
    flagged.sort(key=lambda c: (c.score, c.ruling_id))

    return {
        "timestamp": timestamp or datetime.now(UTC).isoformat(),
        "stats": {
            "links": merge_result.stats(),
            "corpus": corpus_statistics(items),
            "quality": {
                "total": len(checks),
                "healthy": sum(1 for c in checks if c.is_healthy),
                "with_issues": len(flagged),
                "duplicates": sum(len(g.duplicate_ids) for g in ruling_dupes),
                "average_quality_score": average,
            },
        },
        "duplicates_summary": {
            "link_duplicates": {
                "count": len(merge_result.duplicates),
                "by_source_pair": merge_result.stats()["duplicates_by_source_pair"],
                "records": [d.to_dict() for d in merge_result.duplicates[:MAX_REPORTED_ITEMS]],
            },
            "ruling_duplicates": [g.to_dict() for g in ruling_dupes],
        },
        "issues_summary": {
            "by_type": dict(sorted(by_type.items())),
            "by_severity": dict(sorted(by_severity.items())),
            "parse_issues": parse_issues,
            "source_warnings": list(merge_result.warnings),
            "rulings": [c.to_dict() for c in flagged[:MAX_REPORTED_ITEMS]],
        },
    }


def write_export_report(report: dict[str, Any], path: Path) -> Path:
    save_json(report, path, pretty=True)
    return path
