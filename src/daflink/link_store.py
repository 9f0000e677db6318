"""DuckDB read/write store for derived linkage data.

Manages ``links.duckdb``, a writable database kept apart from the read-only
ruling corpus.  Tables:

* ``extraction_results`` — one analysis row per ruling (upsert, last write wins)
* ``pattern_links``      — citations promoted to pattern evidence (full replace)
* ``ai_links``           — rows written by the AI service (consumed only)
* ``links``              — merged authoritative links (full replace)
* ``analysis_runs``      — pipeline run progress and resume offset
* ``_schema_version``    — schema version tracking

Write discipline: the pipeline and the link rebuild are the only writers;
the dashboard opens the store read-only.
"""
from __future__ import annotations

import contextlib
import importlib
import logging
import uuid
from collections.abc import Iterable, Iterator, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from daflink.confidence import coerce_score
from daflink.errors import PersistenceConflict, SourceUnavailable
from daflink.io_utils import dumps, loads
from daflink.link_types import EvidenceSource, Link
from daflink.volumes import CanonicalLocation, Side, VolumeCatalog

log = logging.getLogger(__name__)

# Dynamic DuckDB import for pyright compatibility
_duckdb_mod = importlib.import_module("duckdb")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _to_dict(cols: list[str], row: tuple[Any, ...]) -> dict[str, Any]:
    """Zip column names with a row tuple into a dict (strict length check)."""
    return dict(zip(cols, row, strict=True))


SCHEMA_VERSION = "1.0.0"

_RESUMABLE_STATUSES = frozenset({"running", "failed", "cancelled"})

_EXTRACTION_COLUMNS = (
    "ruling_id", "citations", "work_citations", "topics", "issues", "volumes",
    "works", "citation_count", "word_count", "has_full_text", "analyzed_at", "run_id",
)


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_DDL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS _schema_version (
    table_name VARCHAR PRIMARY KEY,
    version VARCHAR NOT NULL
);

-- ─── EXTRACTION RESULTS ──────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS extraction_results (
    ruling_id VARCHAR PRIMARY KEY,
    citations VARCHAR NOT NULL DEFAULT '[]',
    work_citations VARCHAR NOT NULL DEFAULT '[]',
    topics VARCHAR NOT NULL DEFAULT '[]',
    issues VARCHAR NOT NULL DEFAULT '[]',
    volumes VARCHAR NOT NULL DEFAULT '[]',
    works VARCHAR NOT NULL DEFAULT '[]',
    citation_count INTEGER NOT NULL DEFAULT 0,
    word_count INTEGER NOT NULL DEFAULT 0,
    has_full_text BOOLEAN NOT NULL DEFAULT false,
    analyzed_at VARCHAR,
    run_id VARCHAR
);

-- ─── PATTERN LINKS ───────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS pattern_links (
    pattern_link_id VARCHAR PRIMARY KEY,
    ruling_id VARCHAR NOT NULL,
    volume VARCHAR NOT NULL,
    page INTEGER NOT NULL,
    side VARCHAR,
    confidence VARCHAR NOT NULL,
    detection_method VARCHAR NOT NULL DEFAULT '',
    raw_snippet VARCHAR NOT NULL DEFAULT '',
    created_at VARCHAR
);

-- ─── AI LINKS ────────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS ai_links (
    ruling_id VARCHAR NOT NULL,
    location_id VARCHAR NOT NULL,
    explanation VARCHAR NOT NULL DEFAULT '',
    relevance_score DOUBLE,
    created_at VARCHAR,
    PRIMARY KEY (ruling_id, location_id)
);

-- ─── MERGED LINKS ────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS links (
    ruling_id VARCHAR NOT NULL,
    canonical_location_id VARCHAR NOT NULL,
    volume VARCHAR NOT NULL,
    page INTEGER NOT NULL,
    side VARCHAR NOT NULL,
    side_known BOOLEAN NOT NULL DEFAULT true,
    explanation VARCHAR NOT NULL DEFAULT '',
    notes VARCHAR NOT NULL DEFAULT '[]',
    relevance_score DOUBLE NOT NULL,
    confidence VARCHAR NOT NULL,
    evidence_source VARCHAR NOT NULL,
    corroborating_sources VARCHAR NOT NULL DEFAULT '[]',
    merged_at VARCHAR,
    PRIMARY KEY (ruling_id, canonical_location_id)
);

-- ─── ANALYSIS RUNS ───────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS analysis_runs (
    run_id VARCHAR PRIMARY KEY,
    status VARCHAR NOT NULL DEFAULT 'running',
    total INTEGER NOT NULL DEFAULT 0,
    next_offset INTEGER NOT NULL DEFAULT 0,
    chunk_size INTEGER NOT NULL DEFAULT 0,
    succeeded INTEGER NOT NULL DEFAULT 0,
    failed INTEGER NOT NULL DEFAULT 0,
    failed_ids VARCHAR NOT NULL DEFAULT '[]',
    error_message VARCHAR,
    started_at VARCHAR,
    updated_at VARCHAR,
    completed_at VARCHAR
)
"""


# ---------------------------------------------------------------------------
# LinkStore class
# ---------------------------------------------------------------------------

class LinkStore:
    """Read/write interface to ``links.duckdb``."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        create_if_missing: bool = False,
        read_only: bool = False,
    ) -> None:
        self._db_path = Path(db_path)
        if not self._db_path.exists() and not create_if_missing:
            raise FileNotFoundError(f"Links database not found: {self._db_path}")

        self._read_only = read_only and self._db_path.exists()
        try:
            self._conn: Any = _duckdb_mod.connect(str(self._db_path), read_only=self._read_only)
        except _duckdb_mod.Error as exc:
            raise SourceUnavailable("link store", str(exc)) from exc
        if not self._read_only:
            self._create_schema()

    def _create_schema(self) -> None:
        """Create all tables if they don't exist."""
        for stmt in _SCHEMA_DDL.split(";"):
            stmt = stmt.strip()
            if stmt:
                self._conn.execute(stmt)
        self._conn.execute(
            "INSERT OR REPLACE INTO _schema_version (table_name, version) VALUES (?, ?)",
            ["links", SCHEMA_VERSION],
        )

    @property
    def read_only(self) -> bool:
        return self._read_only

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> LinkStore:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[None]:
        self._conn.execute("BEGIN TRANSACTION")
        try:
            yield
            self._conn.execute("COMMIT")
        except Exception:
            with contextlib.suppress(Exception):
                self._conn.execute("ROLLBACK")
            raise

    def _fetch_dicts(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        rows = self._conn.execute(sql, params or []).fetchall()
        cols = [d[0] for d in self._conn.description]
        return [_to_dict(cols, r) for r in rows]

    def table_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for table in ("extraction_results", "pattern_links", "ai_links", "links", "analysis_runs"):
            row = self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            counts[table] = int(row[0]) if row else 0
        return counts

    # ─── Extraction results ──────────────────────────────────────────

    def _write_extraction_rows(
        self,
        rows: Mapping[str, Mapping[str, Any]],
        run_id: str | None,
        *,
        delete_first: bool,
    ) -> None:
        placeholders = ", ".join("?" for _ in _EXTRACTION_COLUMNS)
        verb = "INSERT" if delete_first else "INSERT OR REPLACE"
        sql = (
            f"{verb} INTO extraction_results ({', '.join(_EXTRACTION_COLUMNS)}) "
            f"VALUES ({placeholders})"
        )
        with self._transaction():
            if delete_first:
                ids = list(rows)
                marks = ", ".join("?" for _ in ids)
                self._conn.execute(
                    f"DELETE FROM extraction_results WHERE ruling_id IN ({marks})", ids,
                )
            for ruling_id, row in rows.items():
                values = {**row, "ruling_id": ruling_id, "run_id": run_id}
                self._conn.execute(sql, [values.get(c) for c in _EXTRACTION_COLUMNS])

    def upsert_extraction_results(
        self,
        rows: Iterable[Mapping[str, Any]],
        *,
        run_id: str | None = None,
    ) -> int:
        """Insert-or-replace rows keyed by ``ruling_id`` in one transaction.

        Duplicate ids inside *rows* resolve last-write-wins.  A key conflict
        reported by the database is retried once as delete-then-insert.
        """
        latest: dict[str, Mapping[str, Any]] = {}
        for row in rows:
            latest[str(row["ruling_id"])] = row
        if not latest:
            return 0
        try:
            self._write_extraction_rows(latest, run_id, delete_first=False)
        except _duckdb_mod.ConstraintException as exc:
            log.warning("extraction upsert conflict (%s); retrying as delete+insert", exc)
            try:
                self._write_extraction_rows(latest, run_id, delete_first=True)
            except _duckdb_mod.ConstraintException as retry_exc:
                raise PersistenceConflict(
                    f"could not upsert {len(latest)} extraction rows: {retry_exc}"
                ) from retry_exc
        return len(latest)

    def extraction_rows(self, ruling_ids: Iterable[str] | None = None) -> list[dict[str, Any]]:
        if ruling_ids is None:
            return self._fetch_dicts("SELECT * FROM extraction_results ORDER BY ruling_id")
        ids = sorted({str(r) for r in ruling_ids})
        if not ids:
            return []
        marks = ", ".join("?" for _ in ids)
        return self._fetch_dicts(
            f"SELECT * FROM extraction_results WHERE ruling_id IN ({marks}) ORDER BY ruling_id",
            ids,
        )

    def extraction_count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) FROM extraction_results").fetchone()
        return int(row[0]) if row else 0

    def analyzed_ruling_ids(self) -> set[str]:
        rows = self._conn.execute("SELECT ruling_id FROM extraction_results").fetchall()
        return {str(r[0]) for r in rows}

    # ─── Pattern links ───────────────────────────────────────────────

    def replace_pattern_links(self, rows: Iterable[Mapping[str, Any]]) -> int:
        """Delete every pattern link and insert *rows*, atomically."""
        now = _now()
        written = 0
        with self._transaction():
            self._conn.execute("DELETE FROM pattern_links")
            for row in rows:
                self._conn.execute(
                    """
                    INSERT INTO pattern_links
                    (pattern_link_id, ruling_id, volume, page, side, confidence,
                     detection_method, raw_snippet, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        _uuid(),
                        str(row["ruling_id"]),
                        str(row["volume"]),
                        int(row["page"]),
                        row.get("side"),
                        str(row["confidence"]),
                        str(row.get("detection_method") or ""),
                        str(row.get("raw_snippet") or ""),
                        now,
                    ],
                )
                written += 1
        return written

    def pattern_link_rows(self) -> list[dict[str, Any]]:
        try:
            return self._fetch_dicts(
                "SELECT * FROM pattern_links ORDER BY ruling_id, volume, page, side NULLS FIRST"
            )
        except _duckdb_mod.Error as exc:
            raise SourceUnavailable("pattern links", str(exc)) from exc

    # ─── AI links ────────────────────────────────────────────────────

    def upsert_ai_links(self, rows: Iterable[Mapping[str, Any]]) -> int:
        """Load AI-service rows (used by imports and fixtures)."""
        now = _now()
        written = 0
        with self._transaction():
            for row in rows:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO ai_links
                    (ruling_id, location_id, explanation, relevance_score, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        str(row["ruling_id"]),
                        str(row["location_id"]),
                        str(row.get("explanation") or ""),
                        row.get("relevance_score"),
                        row.get("created_at") or now,
                    ],
                )
                written += 1
        return written

    def ai_link_rows(self) -> list[dict[str, Any]]:
        try:
            return self._fetch_dicts("SELECT * FROM ai_links ORDER BY ruling_id, location_id")
        except _duckdb_mod.Error as exc:
            raise SourceUnavailable("ai links", str(exc)) from exc

    # ─── Merged links ────────────────────────────────────────────────

    def replace_links(self, links: Iterable[Link]) -> int:
        """Replace the merged link set wholesale."""
        now = _now()
        written = 0
        with self._transaction():
            self._conn.execute("DELETE FROM links")
            for link in links:
                loc = link.location
                self._conn.execute(
                    """
                    INSERT INTO links
                    (ruling_id, canonical_location_id, volume, page, side, side_known,
                     explanation, notes, relevance_score, confidence, evidence_source,
                     corroborating_sources, merged_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        link.ruling_id,
                        link.canonical_location_id,
                        loc.volume.canonical_name,
                        loc.page,
                        loc.side.value,
                        link.side_known,
                        link.explanation,
                        dumps(list(link.notes)),
                        link.relevance_score,
                        link.confidence.value,
                        link.evidence_source.value,
                        dumps([s.value for s in link.corroborating_sources]),
                        now,
                    ],
                )
                written += 1
        return written

    def link_rows(self) -> list[dict[str, Any]]:
        return self._fetch_dicts("SELECT * FROM links ORDER BY ruling_id, canonical_location_id")

    def load_links(self, catalog: VolumeCatalog) -> list[Link]:
        """Rebuild ``Link`` values; rows naming unknown volumes are skipped."""
        out: list[Link] = []
        for row in self.link_rows():
            vol = catalog.get(str(row["volume"]))
            if vol is None or not vol.contains(int(row["page"])):
                log.warning(
                    "stored link %s/%s does not resolve against the catalog",
                    row["ruling_id"], row["canonical_location_id"],
                )
                continue
            out.append(
                Link(
                    ruling_id=str(row["ruling_id"]),
                    location=CanonicalLocation(vol, int(row["page"]), Side(str(row["side"]))),
                    explanation=str(row["explanation"] or ""),
                    relevance_score=coerce_score(row["relevance_score"]),
                    evidence_source=EvidenceSource(str(row["evidence_source"])),
                    side_known=bool(row["side_known"]),
                    notes=tuple(str(n) for n in loads(row["notes"] or "[]")),
                    corroborating_sources=tuple(
                        EvidenceSource(str(s)) for s in loads(row["corroborating_sources"] or "[]")
                    ),
                )
            )
        return out

    # ─── Analysis runs ───────────────────────────────────────────────

    def start_run(self, run_id: str, *, total: int, chunk_size: int, next_offset: int = 0) -> None:
        now = _now()
        self._conn.execute(
            """
            INSERT OR REPLACE INTO analysis_runs
            (run_id, status, total, next_offset, chunk_size, succeeded, failed, failed_ids,
             started_at, updated_at)
            VALUES (?, 'running', ?, ?, ?, 0, 0, '[]', ?, ?)
            """,
            [run_id, int(total), int(next_offset), int(chunk_size), now, now],
        )

    def update_run_progress(
        self,
        run_id: str,
        *,
        next_offset: int,
        succeeded: int,
        failed: int,
        failed_ids: Iterable[str] = (),
    ) -> None:
        self._conn.execute(
            "UPDATE analysis_runs SET next_offset = ?, succeeded = ?, failed = ?, "
            "failed_ids = ?, updated_at = ?, status = 'running' WHERE run_id = ?",
            [int(next_offset), int(succeeded), int(failed), dumps(list(failed_ids)), _now(), run_id],
        )

    def complete_run(self, run_id: str) -> None:
        self._conn.execute(
            "UPDATE analysis_runs SET status = 'completed', completed_at = ?, updated_at = ? "
            "WHERE run_id = ?",
            [_now(), _now(), run_id],
        )

    def fail_run(self, run_id: str, error: str) -> None:
        self._conn.execute(
            "UPDATE analysis_runs SET status = 'failed', error_message = ?, updated_at = ? "
            "WHERE run_id = ?",
            [error, _now(), run_id],
        )

    def cancel_run(self, run_id: str) -> None:
        self._conn.execute(
            "UPDATE analysis_runs SET status = 'cancelled', updated_at = ? WHERE run_id = ?",
            [_now(), run_id],
        )

    def get_run(self, run_id: str) -> dict[str, Any] | None:
        rows = self._fetch_dicts("SELECT * FROM analysis_runs WHERE run_id = ?", [run_id])
        if not rows:
            return None
        row = rows[0]
        row["failed_ids"] = loads(row.get("failed_ids") or "[]")
        return row

    def latest_resumable_run(self) -> dict[str, Any] | None:
        """The most recent run, if it stopped before reaching its total."""
        rows = self._fetch_dicts(
            "SELECT run_id, status, next_offset, total FROM analysis_runs "
            "ORDER BY updated_at DESC, run_id DESC LIMIT 1"
        )
        if not rows:
            return None
        latest = rows[0]
        if latest["status"] not in _RESUMABLE_STATUSES or latest["next_offset"] >= latest["total"]:
            return None
        return self.get_run(str(latest["run_id"]))
