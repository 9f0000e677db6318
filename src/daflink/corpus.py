"""Ruling store adapters.

``RulingCorpus`` gives read-only access to ``corpus.duckdb`` (built by
``scripts/import_rulings.py``); ``InMemoryRulingSource`` serves a fixed list,
which is what tests and small imports use.  Both satisfy ``RulingSource``,
the only interface the pipeline needs: a total count and stable, ordered
pages.

Tables:
    rulings         — one row per ruling (read-only to the engine)
    _schema_version — schema version tracking
"""
from __future__ import annotations

import contextlib
import importlib
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any, Protocol

from daflink.errors import ConfigurationError, SourceUnavailable
from daflink.io_utils import dumps
from daflink.link_types import Ruling
from daflink.query_filters import escape_like

# Dynamic DuckDB import for pyright compatibility
_duckdb_mod = importlib.import_module("duckdb")


SCHEMA_VERSION = "1.0.0"

_RULING_COLUMNS = (
    "ruling_id", "title", "court", "year", "summary", "full_text", "tags",
    "legacy_numeric_id", "created_at", "content_hash",
)

_SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS _schema_version (
    table_name VARCHAR PRIMARY KEY,
    version VARCHAR NOT NULL
);

CREATE TABLE IF NOT EXISTS rulings (
    ruling_id VARCHAR PRIMARY KEY,
    title VARCHAR NOT NULL DEFAULT '',
    court VARCHAR NOT NULL DEFAULT '',
    year INTEGER,
    summary VARCHAR NOT NULL DEFAULT '',
    full_text VARCHAR,
    tags VARCHAR NOT NULL DEFAULT '[]',
    legacy_numeric_id BIGINT,
    created_at VARCHAR,
    content_hash VARCHAR
)
"""


class SchemaVersionError(ConfigurationError):
    """Raised when a corpus DB schema version does not match expected."""


class RulingSource(Protocol):
    """Minimal read interface of a ruling store."""

    def count(self) -> int: ...

    def fetch_page(self, offset: int, limit: int) -> list[Ruling]: ...


class RulingLookup(RulingSource, Protocol):
    """A ruling source that can also be read by id and in full."""

    def get_rulings(self, ruling_ids: Iterable[str]) -> dict[str, Ruling]: ...

    def by_legacy_ids(self) -> dict[int, Ruling]: ...

    def iter_all(self, *, batch_size: int = 500) -> Iterator[Ruling]: ...


def _read_schema_version(conn: Any) -> str:
    try:
        result = conn.execute(
            "SELECT version FROM _schema_version WHERE table_name = 'corpus'"
        ).fetchone()
        return str(result[0]) if result else "unknown"
    except Exception:
        return "unknown"


def ensure_schema_version(
    conn: Any,
    *,
    db_path: Path | None = None,
    expected: str = SCHEMA_VERSION,
) -> str:
    """Validate schema version; raises SchemaVersionError on mismatch."""
    actual = _read_schema_version(conn)
    if actual != expected:
        where = f" in {db_path}" if db_path is not None else ""
        raise SchemaVersionError(
            f"Schema version mismatch{where}: expected {expected}, got {actual}"
        )
    return actual


def _ruling_params(ruling: Ruling) -> list[Any]:
    row = ruling.to_row()
    row["tags"] = dumps(row["tags"])
    return [row[c] for c in _RULING_COLUMNS]


def write_ruling_corpus(
    db_path: Path,
    rulings: Iterable[Ruling],
    *,
    replace: bool = False,
) -> int:
    """Create or extend ``corpus.duckdb`` with *rulings*; returns rows written.

    Existing rulings with the same id are overwritten.  ``replace`` drops every
    row first.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = _duckdb_mod.connect(str(db_path))
    try:
        for stmt in _SCHEMA_DDL.split(";"):
            stmt = stmt.strip()
            if stmt:
                conn.execute(stmt)
        conn.execute(
            "INSERT OR REPLACE INTO _schema_version (table_name, version) VALUES (?, ?)",
            ["corpus", SCHEMA_VERSION],
        )
        placeholders = ", ".join("?" for _ in _RULING_COLUMNS)
        written = 0
        conn.execute("BEGIN TRANSACTION")
        try:
            if replace:
                conn.execute("DELETE FROM rulings")
            for ruling in rulings:
                conn.execute(
                    f"INSERT OR REPLACE INTO rulings ({', '.join(_RULING_COLUMNS)}) "
                    f"VALUES ({placeholders})",
                    _ruling_params(ruling),
                )
                written += 1
            conn.execute("COMMIT")
        except Exception:
            with contextlib.suppress(Exception):
                conn.execute("ROLLBACK")
            raise
        return written
    finally:
        conn.close()


class RulingCorpus:
    """Read-only interface to the DuckDB ruling store."""

    def __init__(self, db_path: Path, *, enforce_schema: bool = True) -> None:
        self._db_path = Path(db_path)
        if not self._db_path.exists():
            raise SourceUnavailable("ruling store", f"{self._db_path} does not exist")
        try:
            self._conn: Any = _duckdb_mod.connect(str(self._db_path), read_only=True)
        except Exception as exc:
            raise SourceUnavailable("ruling store", str(exc)) from exc
        if enforce_schema:
            try:
                ensure_schema_version(self._conn, db_path=self._db_path)
            except Exception:
                self._conn.close()
                raise

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> RulingCorpus:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    @property
    def schema_version(self) -> str:
        return _read_schema_version(self._conn)

    def _rows(self, sql: str, params: list[Any] | None = None) -> list[Ruling]:
        rows = self._conn.execute(sql, params or []).fetchall()
        cols = [desc[0] for desc in self._conn.description]
        return [Ruling.from_row(dict(zip(cols, r, strict=True))) for r in rows]

    def count(self) -> int:
        result = self._conn.execute("SELECT COUNT(*) FROM rulings").fetchone()
        return int(result[0]) if result else 0

    def fetch_page(self, offset: int, limit: int) -> list[Ruling]:
        """Rulings ordered by id; stable across calls on an unchanged store."""
        return self._rows(
            "SELECT * FROM rulings ORDER BY ruling_id LIMIT ? OFFSET ?",
            [int(limit), int(offset)],
        )

    def ruling_ids(self) -> list[str]:
        rows = self._conn.execute("SELECT ruling_id FROM rulings ORDER BY ruling_id").fetchall()
        return [str(r[0]) for r in rows]

    def get_ruling(self, ruling_id: str) -> Ruling | None:
        found = self._rows("SELECT * FROM rulings WHERE ruling_id = ?", [ruling_id])
        return found[0] if found else None

    def get_rulings(self, ruling_ids: Iterable[str]) -> dict[str, Ruling]:
        ids = sorted({str(r) for r in ruling_ids})
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        found = self._rows(
            f"SELECT * FROM rulings WHERE ruling_id IN ({placeholders})", list(ids),
        )
        return {r.id: r for r in found}

    def by_legacy_ids(self) -> dict[int, Ruling]:
        """Rulings keyed by ``legacy_numeric_id`` (rows without one are skipped)."""
        found = self._rows(
            "SELECT * FROM rulings WHERE legacy_numeric_id IS NOT NULL ORDER BY ruling_id"
        )
        return {r.legacy_numeric_id: r for r in found if r.legacy_numeric_id is not None}

    def iter_all(self, *, batch_size: int = 500) -> Iterator[Ruling]:
        offset = 0
        while True:
            page = self.fetch_page(offset, batch_size)
            if not page:
                return
            yield from page
            offset += len(page)

    def search(self, query: str, *, limit: int = 50) -> list[Ruling]:
        """Case-insensitive substring search over title and summary."""
        needle = f"%{escape_like(query.strip())}%"
        return self._rows(
            "SELECT * FROM rulings "
            "WHERE title ILIKE ? ESCAPE '\\' OR summary ILIKE ? ESCAPE '\\' "
            "ORDER BY ruling_id LIMIT ?",
            [needle, needle, int(limit)],
        )


class InMemoryRulingSource:
    """``RulingSource`` over a fixed list, ordered by ruling id."""

    def __init__(self, rulings: Iterable[Ruling]) -> None:
        self._rulings = sorted(rulings, key=lambda r: r.id)
        self._by_id = {r.id: r for r in self._rulings}

    def count(self) -> int:
        return len(self._rulings)

    def fetch_page(self, offset: int, limit: int) -> list[Ruling]:
        return self._rulings[offset:offset + limit]

    def get_rulings(self, ruling_ids: Iterable[str]) -> dict[str, Ruling]:
        return {rid: self._by_id[rid] for rid in ruling_ids if rid in self._by_id}

    def by_legacy_ids(self) -> dict[int, Ruling]:
        return {
            r.legacy_numeric_id: r for r in self._rulings if r.legacy_numeric_id is not None
        }

    def iter_all(self, *, batch_size: int = 500) -> Iterator[Ruling]:
        yield from self._rulings
