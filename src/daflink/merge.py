"""Merge engine: one authoritative link per (ruling, canonical location).

Sources are visited in precedence order (static_snapshot, pattern_match,
ai_analysis).  Inside a source, candidates are stably ordered by key so input
order only decides which of two same-source duplicates wins.  The first
candidate seen for a key becomes the link; every later candidate for the same
key appends its explanation to the link's notes, adds its source to
``corroborating_sources`` and is recorded as a ``DuplicateRecord``.

Merging is pure and deterministic: the same ``EvidenceSet`` always produces
the same result, and ``merge_evidence(EvidenceSet.from_links(r.links))``
reproduces ``r.links``.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any

from daflink.evidence import EvidenceSet
from daflink.link_types import (
    EVIDENCE_PRECEDENCE,
    DuplicateRecord,
    EvidenceSource,
    Link,
    LinkCandidate,
    LinkKey,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MergeResult:
    links: tuple[Link, ...]
    duplicates: tuple[DuplicateRecord, ...] = ()
    warnings: tuple[str, ...] = field(default=())

    def stats(self) -> dict[str, Any]:
        """Counts by evidence source, volume and confidence bucket."""
        by_source = Counter(link.evidence_source.value for link in self.links)
        by_volume = Counter(link.location.volume.canonical_name for link in self.links)
        by_confidence = Counter(link.confidence.value for link in self.links)
        duplicate_pairs = Counter(
            f"{d.kept_source.value}>{d.discarded_source.value}" for d in self.duplicates
        )
        return {
            "total_links": len(self.links),
            "unique_rulings": len({link.ruling_id for link in self.links}),
            "unique_locations": len({link.canonical_location_id for link in self.links}),
            "by_evidence_source": dict(sorted(by_source.items())),
            "by_volume": dict(sorted(by_volume.items())),
            "by_confidence": dict(sorted(by_confidence.items())),
            "duplicates_discarded": len(self.duplicates),
            "duplicates_by_source_pair": dict(sorted(duplicate_pairs.items())),
        }


def _to_link(candidate: LinkCandidate) -> Link:
    return Link(
        ruling_id=candidate.ruling_id,
        location=candidate.location,
        explanation=candidate.explanation,
        relevance_score=candidate.relevance_score,
        evidence_source=candidate.evidence_source,
        side_known=candidate.side_known,
        notes=candidate.notes,
        corroborating_sources=candidate.corroborating_sources,
    )


def _absorb(link: Link, candidate: LinkCandidate) -> Link:
    notes = link.notes
    if candidate.explanation:
        notes = (*notes, candidate.explanation)
    notes = (*notes, *candidate.notes)
    sources = link.corroborating_sources
    for source in (candidate.evidence_source, *candidate.corroborating_sources):
        if source != link.evidence_source and source not in sources:
            sources = (*sources, source)
    return replace(link, notes=notes, corroborating_sources=sources)


def merge_evidence(evidence: EvidenceSet) -> MergeResult:
    """Collapse all candidates into at most one link per key."""
    merged: dict[LinkKey, Link] = {}
    duplicates: list[DuplicateRecord] = []
    for source in EVIDENCE_PRECEDENCE:
        candidates = sorted(evidence.candidates_for(source), key=lambda c: c.key)
        for candidate in candidates:
            existing = merged.get(candidate.key)
            if existing is None:
                merged[candidate.key] = _to_link(candidate)
                continue
            merged[candidate.key] = _absorb(existing, candidate)
            duplicates.append(
                DuplicateRecord(
                    ruling_id=candidate.ruling_id,
                    canonical_location_id=candidate.canonical_location_id,
                    kept_source=existing.evidence_source,
                    discarded_source=candidate.evidence_source,
                    discarded_explanation=candidate.explanation,
                )
            )
    links = tuple(merged[key] for key in sorted(merged))
    log.info(
        "merged %d candidates into %d links (%d duplicates)",
        evidence.total, len(links), len(duplicates),
    )
    return MergeResult(links=links, duplicates=tuple(duplicates), warnings=evidence.warnings)


def links_by_source(links: tuple[Link, ...] | list[Link]) -> dict[EvidenceSource, int]:
    counts = Counter(link.evidence_source for link in links)
    return {source: counts.get(source, 0) for source in EVIDENCE_PRECEDENCE}
