"""Resumable batch analysis over the ruling corpus.

The corpus is processed in sequential chunks of at most ``chunk_size``
rulings.  For each chunk the pipeline reads the rulings at the current
offset, analyses each one (a failing ruling is logged with its id and left
out), upserts the chunk's rows in one transaction, records the run cursor and
then yields a ``ChunkProgress``.  The yield is the cooperative scheduling
point: a host may stop iterating (cancel) between chunks, and ``arun``
awaits the event loop there.

Because rows are upserted by ruling id, re-running over a corpus is
idempotent, and an interrupted run resumes from its last recorded cursor.

A second pass, ``derive_pattern_links``, rebuilds the ``pattern_links`` table
from every stored extraction row (full replace).
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from daflink.analysis import RulingAnalysis, analyze_ruling
from daflink.errors import CorpusExhausted, PersistenceFailed
from daflink.extractor import DEFAULT_WINDOW
from daflink.link_store import LinkStore
from daflink.link_types import Ruling
from daflink.run_manifest import generate_run_id
from daflink.volumes import VolumeCatalog

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 50
DEFAULT_WRITE_RETRIES = 2

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True, slots=True)
class ChunkProgress:
    """Outcome of one chunk; ``processed`` is the cursor after it."""

    offset: int
    processed: int
    total: int
    succeeded: int
    failed_ids: tuple[str, ...] = ()

    @property
    def progress(self) -> tuple[int, int]:
        return (self.processed, self.total)

    @property
    def failed(self) -> int:
        return len(self.failed_ids)


@dataclass(frozen=True, slots=True)
class PipelineResult:
    run_id: str
    status: str  # "completed" | "cancelled"
    start_offset: int
    processed: int
    total: int
    succeeded: int
    failed_ids: tuple[str, ...]
    chunks: int
    elapsed_sec: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "start_offset": self.start_offset,
            "processed": self.processed,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": len(self.failed_ids),
            "failed_ids": list(self.failed_ids),
            "chunks": self.chunks,
            "elapsed_sec": round(self.elapsed_sec, 3),
        }


@dataclass(slots=True)
class _Tally:
    start_offset: int
    started: float = field(default_factory=time.perf_counter)
    processed: int = 0
    total: int = 0
    succeeded: int = 0
    failed_ids: list[str] = field(default_factory=list)
    chunks: int = 0

    def add(self, progress: ChunkProgress) -> None:
        self.processed = progress.processed
        self.total = progress.total
        self.succeeded += progress.succeeded
        self.failed_ids.extend(progress.failed_ids)
        self.chunks += 1

    def result(self, run_id: str, status: str) -> PipelineResult:
        return PipelineResult(
            run_id=run_id,
            status=status,
            start_offset=self.start_offset,
            processed=self.processed or self.start_offset,
            total=self.total,
            succeeded=self.succeeded,
            failed_ids=tuple(self.failed_ids),
            chunks=self.chunks,
            elapsed_sec=time.perf_counter() - self.started,
        )


class AnalysisPipeline:
    """Chunked extraction over a ``RulingSource`` into a ``LinkStore``."""

    def __init__(
        self,
        source: Any,
        store: LinkStore,
        catalog: VolumeCatalog,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        write_retries: int = DEFAULT_WRITE_RETRIES,
        retry_delay_sec: float = 0.0,
        window: int = DEFAULT_WINDOW,
        analyzer: Callable[[Ruling], RulingAnalysis] | None = None,
        run_id: str | None = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self._source = source
        self._store = store
        self._catalog = catalog
        self.chunk_size = chunk_size
        self.write_retries = max(0, write_retries)
        self.retry_delay_sec = retry_delay_sec
        self._analyzer = analyzer or (lambda r: analyze_ruling(r, catalog, window=window))
        self.run_id = run_id or generate_run_id("analysis")

    # ─── Single chunk ────────────────────────────────────────────────

    def _persist(self, rows: list[dict[str, Any]]) -> None:
        for attempt in range(self.write_retries + 1):
            try:
                self._store.upsert_extraction_results(rows, run_id=self.run_id)
                return
            except Exception as exc:
                if attempt >= self.write_retries:
                    raise PersistenceFailed("chunk write", attempt + 1, str(exc)) from exc
                log.warning(
                    "chunk write failed (attempt %d of %d): %s",
                    attempt + 1, self.write_retries + 1, exc,
                )
                if self.retry_delay_sec:
                    time.sleep(self.retry_delay_sec)

    def run_chunk(self, offset: int, *, total: int | None = None) -> ChunkProgress:
        """Analyse and persist the chunk starting at *offset*.

        Raises ``CorpusExhausted`` when *offset* is at or past the end.
        """
        total = self._source.count() if total is None else total
        if offset >= total:
            raise CorpusExhausted(offset, total)
        rulings: list[Ruling] = self._source.fetch_page(offset, self.chunk_size)
        if not rulings:
            raise CorpusExhausted(offset, total)

        rows: list[dict[str, Any]] = []
        failed_ids: list[str] = []
        for ruling in rulings:
            try:
                analysis = self._analyzer(ruling)
            except Exception as exc:
                log.warning("analysis failed for ruling %s: %s", ruling.id, exc)
                failed_ids.append(ruling.id)
                continue
            rows.append(analysis.to_row())

        self._persist(rows)
        processed = min(offset + len(rulings), total)
        return ChunkProgress(
            offset=offset,
            processed=processed,
            total=total,
            succeeded=len(rows),
            failed_ids=tuple(failed_ids),
        )

    # ─── Iteration ───────────────────────────────────────────────────

    def iter_chunks(self, start_offset: int = 0) -> Iterator[ChunkProgress]:
        """Yield after every persisted chunk until the corpus is exhausted."""
        total = self._source.count()
        self._store.start_run(
            self.run_id, total=total, chunk_size=self.chunk_size, next_offset=start_offset,
        )
        log.info(
            "analysis run %s: %d rulings, chunk size %d, starting at %d",
            self.run_id, total, self.chunk_size, start_offset,
        )
        offset = start_offset
        succeeded = 0
        failed_ids: list[str] = []
        while True:
            try:
                progress = self.run_chunk(offset, total=total)
            except CorpusExhausted:
                break
            except Exception as exc:
                log.error("analysis run %s stopped at offset %d: %s", self.run_id, offset, exc)
                self._store.fail_run(self.run_id, str(exc))
                raise
            succeeded += progress.succeeded
            failed_ids.extend(progress.failed_ids)
            self._store.update_run_progress(
                self.run_id,
                next_offset=progress.processed,
                succeeded=succeeded,
                failed=len(failed_ids),
                failed_ids=failed_ids,
            )
            log.debug("chunk done: %d/%d", progress.processed, progress.total)
            yield progress
            offset = progress.processed
        self._store.complete_run(self.run_id)
        log.info(
            "analysis run %s complete: %d analysed, %d failed",
            self.run_id, succeeded, len(failed_ids),
        )

    def run(
        self,
        start_offset: int = 0,
        *,
        on_progress: ProgressCallback | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> PipelineResult:
        """Drive every chunk synchronously; cancellation is checked between chunks."""
        tally = _Tally(start_offset)
        chunks = self.iter_chunks(start_offset)
        try:
            for progress in chunks:
                tally.add(progress)
                if on_progress is not None:
                    on_progress(progress.processed, progress.total)
                if self._cancel_requested(progress, should_cancel):
                    return tally.result(self.run_id, "cancelled")
        finally:
            chunks.close()
        return tally.result(self.run_id, "completed")

    async def arun(
        self,
        start_offset: int = 0,
        *,
        on_progress: ProgressCallback | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> PipelineResult:
        """Like ``run`` but hands control back to the event loop after each chunk."""
        tally = _Tally(start_offset)
        chunks = self.iter_chunks(start_offset)
        try:
            for progress in chunks:
                tally.add(progress)
                if on_progress is not None:
                    on_progress(progress.processed, progress.total)
                await asyncio.sleep(0)
                if self._cancel_requested(progress, should_cancel):
                    return tally.result(self.run_id, "cancelled")
        finally:
            chunks.close()
        return tally.result(self.run_id, "completed")

    def _cancel_requested(
        self, progress: ChunkProgress, should_cancel: Callable[[], bool] | None,
    ) -> bool:
        if should_cancel is None or progress.processed >= progress.total:
            return False
        if not should_cancel():
            return False
        log.info("analysis run %s cancelled at %d/%d", self.run_id, *progress.progress)
        self._store.cancel_run(self.run_id)
        return True

    # ─── Resume / follow-up passes ───────────────────────────────────

    def resume_offset(self) -> int:
        """Cursor of the latest unfinished run, or 0."""
        run = self._store.latest_resumable_run()
        if run is None:
            return 0
        return int(run.get("next_offset", 0) or 0)

    def unanalyzed_ruling_ids(self) -> list[str]:
        """Rulings in the source with no stored extraction row."""
        analyzed = self._store.analyzed_ruling_ids()
        missing: list[str] = []
        offset = 0
        total = self._source.count()
        while offset < total:
            page = self._source.fetch_page(offset, self.chunk_size)
            if not page:
                break
            missing.extend(r.id for r in page if r.id not in analyzed)
            offset += len(page)
        return missing

    def derive_pattern_links(self) -> int:
        return derive_pattern_links(self._store, self._catalog)


def pattern_link_rows(analyses: list[RulingAnalysis]) -> list[dict[str, Any]]:
    """One pattern row per citation that resolves to a canonical location."""
    rows: list[dict[str, Any]] = []
    for analysis in analyses:
        for citation in analysis.citations:
            if citation.location is None:
                continue
            rows.append({
                "ruling_id": analysis.ruling_id,
                "volume": citation.volume.canonical_name,
                "page": citation.page,
                "side": citation.side.value if citation.side else None,
                "confidence": citation.confidence.value,
                "detection_method": citation.detection_method,
                "raw_snippet": citation.raw_snippet,
            })
    return rows


def derive_pattern_links(store: LinkStore, catalog: VolumeCatalog) -> int:
    """Rebuild ``pattern_links`` from all extraction rows; returns rows written."""
    analyses = [RulingAnalysis.from_row(row, catalog) for row in store.extraction_rows()]
    rows = pattern_link_rows(analyses)
    written = store.replace_pattern_links(rows)
    log.info("derived %d pattern links from %d analysed rulings", written, len(analyses))
    return written
