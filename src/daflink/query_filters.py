"""Filtering and sorting of ruling views for index presentation.

A ``RulingView`` is a ruling joined with its merged links and extracted
topics/works.  ``QueryCriteria`` fields combine with AND; empty fields do not
constrain.  ``SortOrder`` orders are stable and always place entries that
lack the sort key (no page, no date, no confidence) last, in either
direction.

Functions:

* ``build_views``       — join rulings, links and analyses.
* ``filter_views`` / ``sort_views`` / ``query_views`` — the query layer.
* ``filter_links``      — the same constraints applied to bare links.
* ``validate_criteria`` — guardrails for externally supplied criteria.
* ``escape_like``       — escape ``%`` and ``_`` for ILIKE literals.
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from daflink.confidence import Confidence, parse_confidence
from daflink.link_types import DetectedTopic, EvidenceSource, Link, Ruling
from daflink.textmatch import normalize

if TYPE_CHECKING:
    from daflink.analysis import RulingAnalysis


def escape_like(value: str) -> str:
    """Escape SQL LIKE/ILIKE wildcards so ``%`` and ``_`` match literally.

    Uses backslash as escape character (pair with ``ESCAPE '\\\\'`` in SQL).
    """
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ---------------------------------------------------------------------------
# View and criteria types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RulingView:
    """A ruling with everything the index knows about it."""

    ruling: Ruling
    links: tuple[Link, ...] = ()
    topics: tuple[DetectedTopic, ...] = ()
    works: tuple[str, ...] = ()

    @property
    def ruling_id(self) -> str:
        return self.ruling.id

    @property
    def link_count(self) -> int:
        return len(self.links)

    @property
    def categories(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for t in self.topics:
            seen.setdefault(t.category, None)
        return tuple(seen)

    @property
    def volume_keys(self) -> frozenset[str]:
        return frozenset(link.location.volume.key for link in self.links)

    @property
    def first_page(self) -> int | None:
        """Lowest linked page, or ``None`` when the ruling has no links."""
        if not self.links:
            return None
        return min(link.location.page for link in self.links)

    @property
    def best_confidence(self) -> Confidence | None:
        if not self.links:
            return None
        return min((link.confidence for link in self.links), key=lambda c: c.rank)

    @property
    def date_key(self) -> str | None:
        if self.ruling.created_at:
            return self.ruling.created_at
        if self.ruling.year is not None:
            return f"{self.ruling.year:04d}"
        return None

    def to_dict(self) -> dict[str, Any]:
        r = self.ruling
        best = self.best_confidence
        return {
            "ruling_id": r.id,
            "title": r.title,
            "court": r.court,
            "year": r.year,
            "tags": list(r.tags),
            "has_full_text": r.has_full_text,
            "link_count": self.link_count,
            "first_page": self.first_page,
            "best_confidence": best.value if best else None,
            "categories": list(self.categories),
            "topics": [t.to_dict() for t in self.topics],
            "works": list(self.works),
            "links": [link.to_dict() for link in self.links],
        }


@dataclass(frozen=True, slots=True)
class QueryCriteria:
    """AND-combined filter values; ``None`` / empty means unconstrained."""

    text: str | None = None
    category: str | None = None
    volume: str | None = None
    work: str | None = None
    confidence: Confidence | None = None
    has_full_text: bool | None = None
    tag: str | None = None

    @property
    def is_empty(self) -> bool:
        return all(
            v in (None, "")
            for v in (
                self.text, self.category, self.volume, self.work,
                self.confidence, self.has_full_text, self.tag,
            )
        )


class SortOrder(StrEnum):
    NONE = "none"
    PAGE_ASC = "page_asc"
    PAGE_DESC = "page_desc"
    LINKS_ASC = "links_asc"
    LINKS_DESC = "links_desc"
    CONFIDENCE = "confidence"
    DATE_ASC = "date_asc"
    DATE_DESC = "date_desc"


@dataclass(frozen=True, slots=True)
class CriteriaValidationError:
    """Structured error from criteria validation."""

    code: str  # "unknown_confidence" | "unknown_category" | "unknown_volume" | "unknown_sort"
    message: str
    field_name: str = ""


@dataclass(frozen=True, slots=True)
class QueryResult:
    views: list[RulingView] = field(default_factory=list)
    total: int = 0


# ---------------------------------------------------------------------------
# Building views
# ---------------------------------------------------------------------------

def build_views(
    rulings: Iterable[Ruling],
    links: Iterable[Link],
    analyses: Mapping[str, RulingAnalysis] | None = None,
) -> list[RulingView]:
    """Join rulings with their links and analysis output, in ruling order."""
    by_ruling: dict[str, list[Link]] = defaultdict(list)
    for link in links:
        by_ruling[link.ruling_id].append(link)
    analyses = analyses or {}
    views: list[RulingView] = []
    for ruling in rulings:
        analysis = analyses.get(ruling.id)
        ruling_links = sorted(by_ruling.get(ruling.id, []), key=lambda lk: lk.key)
        views.append(
            RulingView(
                ruling=ruling,
                links=tuple(ruling_links),
                topics=analysis.topics if analysis else (),
                works=analysis.works if analysis else (),
            )
        )
    return views


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def _volume_matches(view: RulingView, wanted: str) -> bool:
    w = normalize(wanted).replace(" ", "_")
    for link in view.links:
        vol = link.location.volume
        if w in (vol.key, normalize(vol.hebrew_name).replace(" ", "_")):
            return True
    return False


def _text_matches(view: RulingView, needle: str) -> bool:
    if needle in normalize(view.ruling.title):
        return True
    if any(needle in normalize(t.topic) for t in view.topics):
        return True
    for link in view.links:
        vol = link.location.volume
        if needle in normalize(vol.hebrew_name) or needle in normalize(vol.canonical_name):
            return True
    return False


def view_matches(view: RulingView, criteria: QueryCriteria) -> bool:
    """True when *view* satisfies every populated criterion."""
    if criteria.text and criteria.text.strip():
        if not _text_matches(view, normalize(criteria.text.strip())):
            return False
    if criteria.category and criteria.category not in view.categories:
        return False
    if criteria.volume and not _volume_matches(view, criteria.volume):
        return False
    if criteria.work and criteria.work not in view.works:
        return False
    if criteria.confidence is not None:
        if not any(link.confidence == criteria.confidence for link in view.links):
            return False
    if criteria.has_full_text is not None:
        if view.ruling.has_full_text != criteria.has_full_text:
            return False
    if criteria.tag and criteria.tag not in view.ruling.tags:
        return False
    return True


def filter_views(views: Iterable[RulingView], criteria: QueryCriteria) -> list[RulingView]:
    if criteria.is_empty:
        return list(views)
    return [v for v in views if view_matches(v, criteria)]


def filter_links(
    links: Iterable[Link],
    *,
    volume: str | None = None,
    confidence: Confidence | None = None,
    evidence_source: EvidenceSource | None = None,
    ruling_id: str | None = None,
) -> list[Link]:
    out: list[Link] = []
    wanted_volume = volume.strip().replace(" ", "_").lower() if volume else None
    for link in links:
        vol = link.location.volume
        if wanted_volume and wanted_volume not in (vol.key, vol.hebrew_name.replace(" ", "_")):
            continue
        if confidence is not None and link.confidence != confidence:
            continue
        if evidence_source is not None and link.evidence_source != evidence_source:
            continue
        if ruling_id is not None and link.ruling_id != ruling_id:
            continue
        out.append(link)
    return out


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

def _sort_key_for(order: SortOrder) -> tuple[Callable[[RulingView], Any] | None, bool]:
    match order:
        case SortOrder.NONE:
            return None, False
        case SortOrder.PAGE_ASC:
            return (lambda v: v.first_page), False
        case SortOrder.PAGE_DESC:
            return (lambda v: v.first_page), True
        case SortOrder.LINKS_ASC:
            return (lambda v: v.link_count), False
        case SortOrder.LINKS_DESC:
            return (lambda v: v.link_count), True
        case SortOrder.CONFIDENCE:
            return (lambda v: v.best_confidence.rank if v.best_confidence else None), False
        case SortOrder.DATE_ASC:
            return (lambda v: v.date_key), False
        case SortOrder.DATE_DESC:
            return (lambda v: v.date_key), True


def sort_views(views: Iterable[RulingView], order: SortOrder = SortOrder.NONE) -> list[RulingView]:
    """Stable sort; entries without the sort key always go last."""
    items = list(views)
    key, descending = _sort_key_for(order)
    if key is None:
        return items
    keyed = [v for v in items if key(v) is not None]
    missing = [v for v in items if key(v) is None]
    keyed.sort(key=key, reverse=descending)
    return keyed + missing


def query_views(
    views: Iterable[RulingView],
    criteria: QueryCriteria | None = None,
    order: SortOrder = SortOrder.NONE,
    *,
    offset: int = 0,
    limit: int | None = None,
) -> QueryResult:
    """Filter, sort and page *views*; ``total`` counts matches before paging."""
    matched = sort_views(filter_views(views, criteria or QueryCriteria()), order)
    end = None if limit is None else offset + limit
    return QueryResult(views=matched[offset:end], total=len(matched))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def parse_criteria(params: Mapping[str, Any]) -> tuple[QueryCriteria, list[CriteriaValidationError]]:
    """Build criteria from loosely typed parameters, collecting errors."""
    errors: list[CriteriaValidationError] = []
    confidence: Confidence | None = None
    raw_conf = params.get("confidence")
    if raw_conf not in (None, ""):
        confidence = parse_confidence(raw_conf)
        if confidence is None:
            errors.append(CriteriaValidationError(
                "unknown_confidence", f"unknown confidence {raw_conf!r}", "confidence",
            ))

    def text(name: str) -> str | None:
        value = params.get(name)
        if value is None:
            return None
        return str(value).strip() or None

    has_full_text = params.get("has_full_text")
    if isinstance(has_full_text, str):
        lowered = has_full_text.strip().lower()
        has_full_text = {"true": True, "1": True, "false": False, "0": False}.get(lowered)

    criteria = QueryCriteria(
        text=text("text"),
        category=text("category"),
        volume=text("volume"),
        work=text("work"),
        confidence=confidence,
        has_full_text=has_full_text,
        tag=text("tag"),
    )
    return criteria, errors


def validate_criteria(
    criteria: QueryCriteria,
    *,
    categories: Iterable[str],
    volume_exists: Callable[[str], bool] | None = None,
) -> list[CriteriaValidationError]:
    errors: list[CriteriaValidationError] = []
    known = set(categories)
    if criteria.category and criteria.category not in known:
        errors.append(CriteriaValidationError(
            "unknown_category", f"unknown category {criteria.category!r}", "category",
        ))
    if criteria.volume and volume_exists is not None and not volume_exists(criteria.volume):
        errors.append(CriteriaValidationError(
            "unknown_volume", f"unknown volume {criteria.volume!r}", "volume",
        ))
    return errors


def parse_sort_order(value: str | None) -> SortOrder | None:
    """``None`` when *value* names no sort order."""
    raw = (value or SortOrder.NONE.value).strip().lower()
    try:
        return SortOrder(raw)
    except ValueError:
        return None
