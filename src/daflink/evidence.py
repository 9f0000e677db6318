"""Evidence sources for the merge engine.

Three sources assert (ruling, location) pairs:

* **static_snapshot** — a curated JSON export, joined to rulings through
  ``Ruling.legacy_numeric_id``;
* **pattern_match** — rows derived by the batch pipeline from extraction;
* **ai_analysis** — rows written by an external AI service, addressed by
  location id.

Each source is converted into ``LinkCandidate`` values.  ``gather_evidence``
snapshots all three into one immutable ``EvidenceSet``; a source that cannot
be read contributes nothing and leaves a warning, while a malformed snapshot
is a configuration error.

Snapshot format::

    {"version": ..., "exported_at": ..., "stats": {...},
     "connections": [{"psak_id": 17, "psak_title": "...", "masechet": "בבא בתרא",
                      "daf": "ב", "amud": "א", "detection_method": "...",
                      "source": "...", "confidence": 0.9}, ...]}
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from daflink.confidence import (
    Confidence,
    coerce_score,
    parse_confidence,
    score_for_bucket,
    score_from_fraction,
)
from daflink.errors import ConfigurationError, ParseError, SourceUnavailable
from daflink.io_utils import load_json
from daflink.link_types import EvidenceSource, Link, LinkCandidate, Ruling
from daflink.numerals import parse_page_token
from daflink.volumes import (
    CanonicalLocation,
    Side,
    VolumeCatalog,
    parse_location_id,
    side_from_token,
)

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Static snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SnapshotConnection:
    """One row of the snapshot's ``connections`` list."""

    legacy_id: int
    title: str
    volume_name: str
    page: str
    side: str | None
    detection_method: str
    source: str
    confidence: float

    @property
    def explanation(self) -> str:
        parts = [self.volume_name, "דף", self.page]
        if self.side:
            parts += ["עמוד", self.side]
        return f"{' '.join(parts)} ({self.source})"


@dataclass(frozen=True, slots=True)
class StaticSnapshot:
    version: str
    exported_at: str | None
    stats: dict[str, Any]
    connections: tuple[SnapshotConnection, ...]


def _parse_connection(row: Any, index: int, path: Path) -> SnapshotConnection:
    if not isinstance(row, dict):
        raise ConfigurationError(f"{path}: connection #{index} is not an object")
    try:
        legacy_id = int(row["psak_id"])
        volume_name = str(row["masechet"]).strip()
        page = str(row["daf"]).strip()
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"{path}: connection #{index} is malformed: {exc}") from exc
    amud = row.get("amud")
    try:
        confidence = float(row.get("confidence", 1.0))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"{path}: connection #{index} has non-numeric confidence"
        ) from exc
    return SnapshotConnection(
        legacy_id=legacy_id,
        title=str(row.get("psak_title") or ""),
        volume_name=volume_name,
        page=page,
        side=str(amud).strip() if amud not in (None, "") else None,
        detection_method=str(row.get("detection_method") or ""),
        source=str(row.get("source") or ""),
        confidence=confidence,
    )


def load_static_snapshot(path: Path) -> StaticSnapshot:
    """Read and validate the snapshot file.

    Raises ``SourceUnavailable`` when the file is missing and
    ``ConfigurationError`` when it is present but malformed.
    """
    if not path.exists():
        raise SourceUnavailable("static snapshot", f"{path} does not exist")
    try:
        payload = load_json(path)
    except ValueError as exc:
        raise ConfigurationError(f"static snapshot {path} is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise SourceUnavailable("static snapshot", str(exc)) from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("connections"), list):
        raise ConfigurationError(f"static snapshot {path} has no 'connections' list")
    stats = payload.get("stats")
    connections = tuple(
        _parse_connection(row, i, path) for i, row in enumerate(payload["connections"])
    )
    return StaticSnapshot(
        version=str(payload.get("version", "")),
        exported_at=str(payload["exported_at"]) if payload.get("exported_at") else None,
        stats=stats if isinstance(stats, dict) else {},
        connections=connections,
    )


def snapshot_candidates(
    snapshot: StaticSnapshot,
    rulings_by_legacy_id: Mapping[int, Ruling],
    catalog: VolumeCatalog,
) -> tuple[list[LinkCandidate], list[str]]:
    """Resolve snapshot connections into candidates.

    Connections whose ruling, volume or page cannot be resolved are skipped
    and reported in the returned warnings.
    """
    candidates: list[LinkCandidate] = []
    warnings: list[str] = []
    for conn in snapshot.connections:
        ruling = rulings_by_legacy_id.get(conn.legacy_id)
        if ruling is None:
            warnings.append(f"snapshot: no ruling with legacy id {conn.legacy_id}")
            continue
        vol = catalog.get(conn.volume_name)
        page = parse_page_token(conn.page)
        side = side_from_token(conn.side)
        if vol is None or page is None or not vol.contains(page):
            warnings.append(
                f"snapshot: unresolvable location {conn.volume_name!r} {conn.page!r} "
                f"for legacy id {conn.legacy_id}"
            )
            continue
        candidates.append(
            LinkCandidate(
                ruling_id=ruling.id,
                location=CanonicalLocation(vol, page, side or Side.A),
                explanation=conn.explanation,
                relevance_score=score_from_fraction(conn.confidence),
                evidence_source=EvidenceSource.STATIC_SNAPSHOT,
                side_known=side is not None,
            )
        )
    return candidates, warnings


# ---------------------------------------------------------------------------
# Pattern and AI rows
# ---------------------------------------------------------------------------

def pattern_candidates(
    rows: Iterable[Mapping[str, Any]],
    catalog: VolumeCatalog,
) -> tuple[list[LinkCandidate], list[str]]:
    """Candidates from stored pattern-link rows.

    Row keys: ``ruling_id``, ``volume``, ``page``, ``side`` (may be null),
    ``confidence`` (bucket), ``detection_method``, ``raw_snippet``.
    """
    candidates: list[LinkCandidate] = []
    warnings: list[str] = []
    for row in rows:
        ruling_id = str(row.get("ruling_id") or "")
        vol = catalog.get(str(row.get("volume") or ""))
        try:
            page = int(row.get("page"))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            page = None
        if not ruling_id or vol is None or page is None or not vol.contains(page):
            warnings.append(f"pattern: unresolvable row {dict(row)!r}")
            continue
        side = side_from_token(row.get("side"))
        bucket = parse_confidence(row.get("confidence")) or Confidence.LOW
        method = str(row.get("detection_method") or "pattern")
        snippet = str(row.get("raw_snippet") or "").strip()
        candidates.append(
            LinkCandidate(
                ruling_id=ruling_id,
                location=CanonicalLocation(vol, page, side or Side.A),
                explanation=f"{method}: {snippet}" if snippet else method,
                relevance_score=score_for_bucket(bucket),
                evidence_source=EvidenceSource.PATTERN_MATCH,
                side_known=side is not None,
            )
        )
    return candidates, warnings


def ai_candidates(
    rows: Iterable[Mapping[str, Any]],
    catalog: VolumeCatalog,
) -> tuple[list[LinkCandidate], list[str]]:
    """Candidates from AI rows keyed by location id (side defaults to a)."""
    candidates: list[LinkCandidate] = []
    warnings: list[str] = []
    for row in rows:
        ruling_id = str(row.get("ruling_id") or "")
        location_id = str(row.get("location_id") or "")
        try:
            location = parse_location_id(location_id, catalog)
        except ParseError as exc:
            warnings.append(f"ai: {exc}")
            continue
        if not ruling_id:
            warnings.append(f"ai: row for {location_id!r} has no ruling id")
            continue
        candidates.append(
            LinkCandidate(
                ruling_id=ruling_id,
                location=location,
                explanation=str(row.get("explanation") or ""),
                relevance_score=coerce_score(row.get("relevance_score")),
                evidence_source=EvidenceSource.AI_ANALYSIS,
                side_known=location_id.strip().lower()[-1:] in ("a", "b"),
            )
        )
    return candidates, warnings


# ---------------------------------------------------------------------------
# EvidenceSet
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class EvidenceSet:
    """Immutable snapshot of all three sources taken before a merge."""

    static: tuple[LinkCandidate, ...] = ()
    pattern: tuple[LinkCandidate, ...] = ()
    ai: tuple[LinkCandidate, ...] = ()
    warnings: tuple[str, ...] = field(default=())

    def candidates_for(self, source: EvidenceSource) -> tuple[LinkCandidate, ...]:
        match source:
            case EvidenceSource.STATIC_SNAPSHOT:
                return self.static
            case EvidenceSource.PATTERN_MATCH:
                return self.pattern
            case EvidenceSource.AI_ANALYSIS:
                return self.ai

    @property
    def total(self) -> int:
        return len(self.static) + len(self.pattern) + len(self.ai)

    def counts(self) -> dict[str, int]:
        return {s.value: len(self.candidates_for(s)) for s in EvidenceSource}

    @classmethod
    def from_links(cls, links: Iterable[Link]) -> EvidenceSet:
        """Re-express merged links as single-source evidence."""
        buckets: dict[EvidenceSource, list[LinkCandidate]] = {s: [] for s in EvidenceSource}
        for link in links:
            buckets[link.evidence_source].append(
                LinkCandidate(
                    ruling_id=link.ruling_id,
                    location=link.location,
                    explanation=link.explanation,
                    relevance_score=link.relevance_score,
                    evidence_source=link.evidence_source,
                    side_known=link.side_known,
                    notes=link.notes,
                    corroborating_sources=link.corroborating_sources,
                )
            )
        return cls(
            static=tuple(buckets[EvidenceSource.STATIC_SNAPSHOT]),
            pattern=tuple(buckets[EvidenceSource.PATTERN_MATCH]),
            ai=tuple(buckets[EvidenceSource.AI_ANALYSIS]),
        )


RowLoader = Callable[[], Iterable[Mapping[str, Any]]]


def gather_evidence(
    catalog: VolumeCatalog,
    *,
    snapshot_path: Path | None = None,
    rulings_by_legacy_id: Mapping[int, Ruling] | None = None,
    pattern_rows: RowLoader | None = None,
    ai_rows: RowLoader | None = None,
) -> EvidenceSet:
    """Read every configured source once and freeze the result.

    An unavailable source degrades to empty input with a logged warning.
    ``ConfigurationError`` (malformed snapshot) propagates.
    """
    warnings: list[str] = []

    static: list[LinkCandidate] = []
    if snapshot_path is not None:
        try:
            snapshot = load_static_snapshot(snapshot_path)
        except SourceUnavailable as exc:
            log.warning("%s; continuing without it", exc)
            warnings.append(str(exc))
        else:
            static, notes = snapshot_candidates(snapshot, rulings_by_legacy_id or {}, catalog)
            warnings.extend(notes)

    def read_rows(loader: RowLoader | None) -> list[Mapping[str, Any]]:
        if loader is None:
            return []
        try:
            return list(loader())
        except SourceUnavailable as exc:
            log.warning("%s; continuing without it", exc)
            warnings.append(str(exc))
            return []

    pattern, notes = pattern_candidates(read_rows(pattern_rows), catalog)
    warnings.extend(notes)
    ai, notes = ai_candidates(read_rows(ai_rows), catalog)
    warnings.extend(notes)

    for note in warnings:
        log.debug("evidence: %s", note)
    evidence = EvidenceSet(
        static=tuple(static), pattern=tuple(pattern), ai=tuple(ai), warnings=tuple(warnings),
    )
    log.info(
        "gathered evidence: %d static, %d pattern, %d ai (%d warnings)",
        len(evidence.static), len(evidence.pattern), len(evidence.ai), len(warnings),
    )
    return evidence
