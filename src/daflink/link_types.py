"""Core record types shared by the extractor, merge engine and index builder.

``Ruling`` is read-only input.  ``Citation`` and ``WorkCitation`` are the
transient extractor output.  ``LinkCandidate`` is one piece of evidence from
one source; ``Link`` is the merged, authoritative record with at most one
instance per (ruling, canonical location).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from daflink.confidence import Confidence, bucket_for_score
from daflink.io_utils import loads
from daflink.volumes import CanonicalLocation, Side, Volume


class EvidenceSource(StrEnum):
    STATIC_SNAPSHOT = "static_snapshot"
    PATTERN_MATCH = "pattern_match"
    AI_ANALYSIS = "ai_analysis"

    @property
    def precedence(self) -> int:
        """Lower value wins when two sources assert the same link."""
        match self:
            case EvidenceSource.STATIC_SNAPSHOT:
                return 0
            case EvidenceSource.PATTERN_MATCH:
                return 1
            case EvidenceSource.AI_ANALYSIS:
                return 2


EVIDENCE_PRECEDENCE: tuple[EvidenceSource, ...] = tuple(
    sorted(EvidenceSource, key=lambda s: s.precedence)
)


class CitationKind(StrEnum):
    CANONICAL_PAGE = "canonical_page"
    OTHER_SOURCE = "other_source"


def _decode_tags(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value if str(v))
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return ()
        try:
            decoded = loads(raw)
        except ValueError:
            return tuple(part.strip() for part in raw.split(",") if part.strip())
        if isinstance(decoded, list):
            return tuple(str(v) for v in decoded if str(v))
    return ()


@dataclass(frozen=True, slots=True)
class Ruling:
    """A court decision as held by the ruling store."""

    id: str
    title: str = ""
    court: str = ""
    year: int | None = None
    summary: str = ""
    full_text: str | None = None
    tags: tuple[str, ...] = ()
    legacy_numeric_id: int | None = None
    created_at: str | None = None
    content_hash: str | None = None

    @property
    def has_full_text(self) -> bool:
        return bool(self.full_text) and len(self.full_text or "") > 100

    @property
    def analysis_text(self) -> str:
        """Title, summary and full text joined for extraction."""
        parts = [self.title, self.summary, self.full_text or ""]
        return "\n".join(p for p in parts if p)

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> Ruling:
        """Build a Ruling from a column-name → value dict."""
        year = d.get("year")
        legacy = d.get("legacy_numeric_id")
        created = d.get("created_at")
        return cls(
            id=str(d.get("ruling_id") or d.get("id") or ""),
            title=str(d.get("title") or ""),
            court=str(d.get("court") or ""),
            year=int(year) if year not in (None, "") else None,
            summary=str(d.get("summary") or ""),
            full_text=str(d["full_text"]) if d.get("full_text") else None,
            tags=_decode_tags(d.get("tags")),
            legacy_numeric_id=int(legacy) if legacy not in (None, "") else None,
            created_at=str(created) if created else None,
            content_hash=str(d["content_hash"]) if d.get("content_hash") else None,
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "ruling_id": self.id,
            "title": self.title,
            "court": self.court,
            "year": self.year,
            "summary": self.summary,
            "full_text": self.full_text,
            "tags": list(self.tags),
            "legacy_numeric_id": self.legacy_numeric_id,
            "created_at": self.created_at,
            "content_hash": self.content_hash,
        }


@dataclass(frozen=True, slots=True)
class Citation:
    """A page citation found in free text.

    ``page`` is ``None`` only for issues reported alongside citations; emitted
    citations always resolve to a page within the volume.
    """

    volume: Volume
    page: int | None
    side: Side | None
    confidence: Confidence
    raw_snippet: str
    detection_method: str
    start: int = 0
    end: int = 0

    @property
    def kind(self) -> CitationKind:
        return CitationKind.CANONICAL_PAGE

    @property
    def key(self) -> tuple[str, int | None, str | None]:
        return (self.volume.key, self.page, self.side.value if self.side else None)

    @property
    def location(self) -> CanonicalLocation | None:
        if self.page is None or not self.volume.contains(self.page):
            return None
        return CanonicalLocation(self.volume, self.page, self.side or Side.A)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "volume": self.volume.canonical_name,
            "page": self.page,
            "side": self.side.value if self.side else None,
            "confidence": self.confidence.value,
            "raw_snippet": self.raw_snippet,
            "detection_method": self.detection_method,
            "start": self.start,
            "end": self.end,
        }


@dataclass(frozen=True, slots=True)
class WorkCitation:
    """A citation to a named codified-law work, outside the page index."""

    work: str
    section: str | None
    reference: str | None
    raw_snippet: str
    confidence: Confidence
    start: int = 0

    @property
    def kind(self) -> CitationKind:
        return CitationKind.OTHER_SOURCE

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "work": self.work,
            "section": self.section,
            "reference": self.reference,
            "raw_snippet": self.raw_snippet,
            "confidence": self.confidence.value,
            "start": self.start,
        }


@dataclass(frozen=True, slots=True)
class DetectedTopic:
    topic: str
    category: str
    occurrences: int

    def to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "category": self.category, "occurrences": self.occurrences}


@dataclass(frozen=True, slots=True)
class ParseIssue:
    """A citation-shaped fragment that could not be resolved."""

    message: str
    raw_snippet: str
    start: int

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "raw_snippet": self.raw_snippet, "start": self.start}


LinkKey = tuple[str, str]


@dataclass(frozen=True, slots=True)
class LinkCandidate:
    """One source's assertion that a ruling discusses a location."""

    ruling_id: str
    location: CanonicalLocation
    explanation: str
    relevance_score: float
    evidence_source: EvidenceSource
    side_known: bool = True
    notes: tuple[str, ...] = ()
    corroborating_sources: tuple[EvidenceSource, ...] = ()

    @property
    def canonical_location_id(self) -> str:
        return self.location.location_id

    @property
    def key(self) -> LinkKey:
        return (self.ruling_id, self.location.location_id)


@dataclass(frozen=True, slots=True)
class Link:
    """Merged cross-reference between a ruling and a canonical location."""

    ruling_id: str
    location: CanonicalLocation
    explanation: str
    relevance_score: float
    evidence_source: EvidenceSource
    side_known: bool = True
    notes: tuple[str, ...] = ()
    corroborating_sources: tuple[EvidenceSource, ...] = field(default=())

    @property
    def canonical_location_id(self) -> str:
        return self.location.location_id

    @property
    def key(self) -> LinkKey:
        return (self.ruling_id, self.location.location_id)

    @property
    def confidence(self) -> Confidence:
        return bucket_for_score(self.relevance_score)

    @property
    def combined_note(self) -> str:
        """Winning explanation followed by the discarded duplicates' notes."""
        return " | ".join(n for n in (self.explanation, *self.notes) if n)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruling_id": self.ruling_id,
            "canonical_location_id": self.canonical_location_id,
            "volume": self.location.volume.canonical_name,
            "page": self.location.page,
            "side": self.location.side.value,
            "side_known": self.side_known,
            "explanation": self.explanation,
            "notes": list(self.notes),
            "relevance_score": self.relevance_score,
            "confidence": self.confidence.value,
            "evidence_source": self.evidence_source.value,
            "corroborating_sources": [s.value for s in self.corroborating_sources],
        }


@dataclass(frozen=True, slots=True)
class DuplicateRecord:
    """A candidate discarded during merge because a stronger one won its key."""

    ruling_id: str
    canonical_location_id: str
    kept_source: EvidenceSource
    discarded_source: EvidenceSource
    discarded_explanation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruling_id": self.ruling_id,
            "canonical_location_id": self.canonical_location_id,
            "kept_source": self.kept_source.value,
            "discarded_source": self.discarded_source.value,
            "discarded_explanation": self.discarded_explanation,
        }
