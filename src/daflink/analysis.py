"""Per-ruling analysis records and corpus-level summaries.

``analyze_ruling`` runs the extractor over a ruling's title, summary and full
text.  The resulting ``RulingAnalysis`` is what the pipeline persists in
``extraction_results`` (one row per ruling) and what the pattern-link pass
and the query layer read back.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from daflink.confidence import Confidence, parse_confidence
from daflink.extractor import DEFAULT_WINDOW, scan_text
from daflink.io_utils import dumps, loads
from daflink.link_types import Citation, DetectedTopic, ParseIssue, Ruling, WorkCitation
from daflink.textmatch import word_count
from daflink.volumes import VolumeCatalog, side_from_token
from daflink.works import topic_categories, works_mentioned

log = logging.getLogger(__name__)

TOP_N = 10


@dataclass(frozen=True, slots=True)
class RulingAnalysis:
    """Extraction output for one ruling."""

    ruling_id: str
    citations: tuple[Citation, ...]
    work_citations: tuple[WorkCitation, ...]
    topics: tuple[DetectedTopic, ...]
    issues: tuple[ParseIssue, ...]
    word_count: int
    has_full_text: bool
    analyzed_at: str

    @property
    def volumes(self) -> tuple[str, ...]:
        """Canonical names of cited volumes, first-seen order."""
        seen: dict[str, None] = {}
        for c in self.citations:
            seen.setdefault(c.volume.canonical_name, None)
        return tuple(seen)

    @property
    def works(self) -> tuple[str, ...]:
        return tuple(works_mentioned(list(self.work_citations)))

    @property
    def categories(self) -> tuple[str, ...]:
        return tuple(topic_categories(list(self.topics)))

    @property
    def has_sources(self) -> bool:
        return bool(self.citations or self.work_citations)

    def to_row(self) -> dict[str, Any]:
        return {
            "ruling_id": self.ruling_id,
            "citations": dumps([c.to_dict() for c in self.citations]),
            "work_citations": dumps([w.to_dict() for w in self.work_citations]),
            "topics": dumps([t.to_dict() for t in self.topics]),
            "issues": dumps([i.to_dict() for i in self.issues]),
            "volumes": dumps(list(self.volumes)),
            "works": dumps(list(self.works)),
            "citation_count": len(self.citations),
            "word_count": self.word_count,
            "has_full_text": self.has_full_text,
            "analyzed_at": self.analyzed_at,
        }

    @classmethod
    def from_row(cls, d: dict[str, Any], catalog: VolumeCatalog) -> RulingAnalysis:
        """Rebuild from a stored row; citations to unknown volumes are dropped."""
        ruling_id = str(d.get("ruling_id", ""))
        citations: list[Citation] = []
        for raw in _load_list(d.get("citations")):
            vol = catalog.get(str(raw.get("volume", "")))
            if vol is None:
                log.warning(
                    "ruling %s: stored citation names unknown volume %r",
                    ruling_id, raw.get("volume"),
                )
                continue
            page = raw.get("page")
            citations.append(
                Citation(
                    volume=vol,
                    page=int(page) if page is not None else None,
                    side=side_from_token(raw.get("side")),
                    confidence=parse_confidence(raw.get("confidence")) or Confidence.LOW,
                    raw_snippet=str(raw.get("raw_snippet", "")),
                    detection_method=str(raw.get("detection_method", "")),
                    start=int(raw.get("start", 0) or 0),
                    end=int(raw.get("end", 0) or 0),
                )
            )
        works = [
            WorkCitation(
                work=str(raw.get("work", "")),
                section=raw.get("section"),
                reference=raw.get("reference"),
                raw_snippet=str(raw.get("raw_snippet", "")),
                confidence=parse_confidence(raw.get("confidence")) or Confidence.LOW,
                start=int(raw.get("start", 0) or 0),
            )
            for raw in _load_list(d.get("work_citations"))
        ]
        topics = [
            DetectedTopic(
                topic=str(raw.get("topic", "")),
                category=str(raw.get("category", "")),
                occurrences=int(raw.get("occurrences", 0) or 0),
            )
            for raw in _load_list(d.get("topics"))
        ]
        issues = [
            ParseIssue(
                message=str(raw.get("message", "")),
                raw_snippet=str(raw.get("raw_snippet", "")),
                start=int(raw.get("start", 0) or 0),
            )
            for raw in _load_list(d.get("issues"))
        ]
        return cls(
            ruling_id=ruling_id,
            citations=tuple(citations),
            work_citations=tuple(works),
            topics=tuple(topics),
            issues=tuple(issues),
            word_count=int(d.get("word_count", 0) or 0),
            has_full_text=bool(d.get("has_full_text", False)),
            analyzed_at=str(d.get("analyzed_at") or ""),
        )


def _load_list(value: Any) -> list[dict[str, Any]]:
    if value is None:
        return []
    if isinstance(value, str):
        value = loads(value) if value.strip() else []
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def analyze_ruling(
    ruling: Ruling,
    catalog: VolumeCatalog,
    *,
    window: int = DEFAULT_WINDOW,
) -> RulingAnalysis:
    """Run citation, work and topic extraction over one ruling."""
    text = ruling.analysis_text
    result = scan_text(text, catalog, window=window)
    return RulingAnalysis(
        ruling_id=ruling.id,
        citations=tuple(result.citations),
        work_citations=tuple(result.work_citations),
        topics=tuple(result.topics),
        issues=tuple(result.issues),
        word_count=word_count(text),
        has_full_text=ruling.has_full_text,
        analyzed_at=datetime.now(UTC).isoformat(),
    )


def summarize_analyses(analyses: list[RulingAnalysis], *, top_n: int = TOP_N) -> dict[str, Any]:
    """Corpus-level counts over a set of analyses.

    Returns
    -------
    dict
        ``total_analyzed``, ``with_sources``, ``with_page_links``,
        ``with_topics``, ``total_page_links``, ``total_issues`` and ranked
        ``top_volumes`` / ``top_works`` / ``top_categories`` lists of
        ``{"name", "count"}``.
    """
    volumes: Counter[str] = Counter()
    works: Counter[str] = Counter()
    categories: Counter[str] = Counter()
    with_sources = with_links = with_topics = 0
    total_links = total_issues = 0
    for a in analyses:
        if a.has_sources:
            with_sources += 1
        if a.citations:
            with_links += 1
        if a.topics:
            with_topics += 1
        total_links += len(a.citations)
        total_issues += len(a.issues)
        volumes.update(c.volume.canonical_name for c in a.citations)
        works.update(a.works)
        for t in a.topics:
            categories[t.category] += t.occurrences

    def ranked(counter: Counter[str], limit: int | None) -> list[dict[str, Any]]:
        rows = sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))
        if limit is not None:
            rows = rows[:limit]
        return [{"name": name, "count": count} for name, count in rows]

    return {
        "total_analyzed": len(analyses),
        "with_sources": with_sources,
        "with_page_links": with_links,
        "with_topics": with_topics,
        "total_page_links": total_links,
        "total_issues": total_issues,
        "top_volumes": ranked(volumes, top_n),
        "top_works": ranked(works, top_n),
        "top_categories": ranked(categories, None),
    }
