"""Cross-reference service: the one object hosts talk to.

Wires the ruling source, the derived-link store, the static snapshot and the
volume catalog together.  ``rebuild_links`` gathers evidence, merges it and
persists the merged set; the read side (index, page drill-down, ruling
views, export report) works from the last merge or, when none ran in this
process, from the links stored in ``links.duckdb``.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from daflink.analysis import RulingAnalysis
from daflink.corpus import RulingCorpus, RulingLookup
from daflink.evidence import EvidenceSet, gather_evidence
from daflink.index_tree import LinkIndex, build_index, page_links
from daflink.link_store import LinkStore
from daflink.link_types import Link, Ruling
from daflink.merge import MergeResult, merge_evidence
from daflink.pipeline import AnalysisPipeline
from daflink.quality import build_export_report
from daflink.query_filters import (
    QueryCriteria,
    QueryResult,
    RulingView,
    SortOrder,
    build_views,
    query_views,
)
from daflink.settings import EngineSettings
from daflink.volumes import CanonicalLocation, Side, VolumeCatalog, parse_location_id

log = logging.getLogger(__name__)


class CrossReferenceService:
    """Facade over evidence gathering, merging, indexing and querying."""

    def __init__(
        self,
        catalog: VolumeCatalog,
        source: RulingLookup,
        *,
        store: LinkStore | None = None,
        snapshot_path: Path | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self.catalog = catalog
        self.source = source
        self.store = store
        self.snapshot_path = snapshot_path
        self.settings = settings or EngineSettings()
        self._merge_result: MergeResult | None = None
        self._owned: list[Any] = []

    @classmethod
    def from_settings(
        cls, settings: EngineSettings, *, read_only: bool = False,
    ) -> CrossReferenceService:
        """Open the corpus read-only and the link store.

        With *read_only* the link store is opened read-only and never created;
        a missing ``links.duckdb`` leaves the service without a store.
        """
        catalog = settings.catalog()
        corpus = RulingCorpus(settings.corpus_db)
        store: LinkStore | None = None
        try:
            if not read_only:
                store = LinkStore(settings.links_db, create_if_missing=True)
            elif Path(settings.links_db).exists():
                store = LinkStore(settings.links_db, read_only=True)
        except Exception:
            corpus.close()
            raise
        service = cls(
            catalog,
            corpus,
            store=store,
            snapshot_path=settings.snapshot_path,
            settings=settings,
        )
        service._owned = [corpus] if store is None else [corpus, store]
        return service

    def close(self) -> None:
        for resource in self._owned:
            resource.close()
        self._owned = []

    def __enter__(self) -> CrossReferenceService:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    # ─── Analysis ────────────────────────────────────────────────────

    def analysis_pipeline(self, **overrides: Any) -> AnalysisPipeline:
        if self.store is None:
            raise ValueError("analysis needs a link store")
        options: dict[str, Any] = {
            "chunk_size": self.settings.chunk_size,
            "write_retries": self.settings.write_retries,
            "window": self.settings.cooccurrence_window,
        }
        options.update(overrides)
        return AnalysisPipeline(self.source, self.store, self.catalog, **options)

    def analyses(self) -> dict[str, RulingAnalysis]:
        if self.store is None:
            return {}
        rows = self.store.extraction_rows()
        return {
            str(row["ruling_id"]): RulingAnalysis.from_row(row, self.catalog) for row in rows
        }

    # ─── Evidence and merge ──────────────────────────────────────────

    def gather(self) -> EvidenceSet:
        legacy: dict[int, Ruling] = {}
        if self.snapshot_path is not None:
            legacy = self.source.by_legacy_ids()
        return gather_evidence(
            self.catalog,
            snapshot_path=self.snapshot_path,
            rulings_by_legacy_id=legacy,
            pattern_rows=self.store.pattern_link_rows if self.store else None,
            ai_rows=self.store.ai_link_rows if self.store else None,
        )

    def rebuild_links(self, *, persist: bool = True) -> MergeResult:
        """Gather, merge and (optionally) replace the stored link set."""
        result = merge_evidence(self.gather())
        if persist and self.store is not None:
            written = self.store.replace_links(result.links)
            log.info("persisted %d merged links", written)
        self._merge_result = result
        return result

    def merge_result(self) -> MergeResult:
        if self._merge_result is None:
            return self.rebuild_links(persist=False)
        return self._merge_result

    def links(self) -> list[Link]:
        if self._merge_result is not None:
            return list(self._merge_result.links)
        if self.store is not None:
            return self.store.load_links(self.catalog)
        return []

    # ─── Read side ───────────────────────────────────────────────────

    def index(self) -> LinkIndex:
        return build_index(self.links(), self.catalog)

    def page(
        self, volume: str, page: int, *, side: Side | None = None,
    ) -> list[tuple[Link, Ruling | None]]:
        """Links on one page with their rulings; ``ParseError`` for unknown volumes."""
        vol = self.catalog.require(volume)
        selected = [
            lk for lk in self.links()
            if lk.location.volume.key == vol.key and lk.location.page == page
        ]
        rulings = self.source.get_rulings(lk.ruling_id for lk in selected)
        return page_links(selected, vol, page, rulings, side=side)

    def location(self, location_id: str) -> tuple[CanonicalLocation, list[tuple[Link, Ruling | None]]]:
        """Resolve a location id (``bava_batra_2a``) and its linked rulings."""
        loc = parse_location_id(location_id, self.catalog)
        side = loc.side if location_id.strip().lower()[-1:] in ("a", "b") else None
        return loc, self.page(loc.volume.canonical_name, loc.page, side=side)

    def views(self) -> list[RulingView]:
        rulings = list(self.source.iter_all())
        return build_views(rulings, self.links(), self.analyses())

    def query(
        self,
        criteria: QueryCriteria | None = None,
        order: SortOrder = SortOrder.NONE,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> QueryResult:
        return query_views(self.views(), criteria, order, offset=offset, limit=limit)

    def export_report(self) -> dict[str, Any]:
        return build_export_report(
            self.merge_result(),
            self.source.iter_all(),
            analyses=self.analyses(),
        )
