"""Run manifests for analysis and link-rebuild runs.

A manifest is a JSON sidecar next to ``links.duckdb``: ``link_manifest.json``
always holds the latest run and ``link_manifest_<run_id>.json`` keeps each
run.  ``compare_manifests`` reports what changed between two rebuilds.
"""
from __future__ import annotations

import importlib
import subprocess
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from daflink.io_utils import load_json, save_json

_duckdb_mod = importlib.import_module("duckdb")

MANIFEST_VERSION = "1.0"
MANIFEST_FILENAME = "link_manifest.json"

LINK_TABLES: tuple[str, ...] = ("extraction_results", "pattern_links", "ai_links", "links")


def generate_run_id(prefix: str = "links") -> str:
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    return f"{prefix}_{stamp}_{uuid4().hex[:8]}"


def manifest_paths(db_path: Path, run_id: str) -> tuple[Path, Path]:
    """(latest, per-run) manifest paths beside *db_path*."""
    folder = Path(db_path).parent
    return folder / MANIFEST_FILENAME, folder / f"link_manifest_{run_id}.json"


def git_commit_hash(*, search_from: Path | None = None) -> str | None:
    """HEAD of the repository containing *search_from*, or ``None``."""
    where = Path(search_from) if search_from else Path.cwd()
    if where.is_file():
        where = where.parent
    try:
        proc = subprocess.run(
            ["git", "-C", str(where), "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return None
    commit = proc.stdout.strip()
    if proc.returncode != 0 or not commit:
        return None
    return commit


def table_row_counts(db_path: Path, *, tables: tuple[str, ...] = LINK_TABLES) -> dict[str, int]:
    """Row counts of *tables*; a table that does not exist counts as 0."""
    conn = _duckdb_mod.connect(str(db_path), read_only=True)
    try:
        present = {
            str(name)
            for (name,) in conn.execute(
                "SELECT table_name FROM information_schema.tables WHERE table_schema = 'main'"
            ).fetchall()
        }
        counts = dict.fromkeys(tables, 0)
        for table in tables:
            if table in present:
                (counts[table],) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        return {name: int(n) for name, n in counts.items()}
    finally:
        conn.close()


def links_schema_version(db_path: Path) -> str | None:
    conn = _duckdb_mod.connect(str(db_path), read_only=True)
    try:
        row = conn.execute(
            "SELECT version FROM _schema_version WHERE table_name = 'links'"
        ).fetchone()
    except _duckdb_mod.Error:
        return None
    finally:
        conn.close()
    return str(row[0]) if row else None


def build_manifest(
    *,
    run_id: str,
    db_path: Path,
    inputs: dict[str, Any],
    timings_sec: dict[str, float],
    errors_count: int,
    stats: dict[str, Any] | None = None,
    git_commit: str | None = None,
) -> dict[str, Any]:
    """Manifest payload for a run that wrote to *db_path*.

    Call after the run's store connection is closed; counts are read
    through a separate read-only connection.
    """
    return {
        "manifest_version": MANIFEST_VERSION,
        "created_at": datetime.now(UTC).isoformat(),
        "run_id": run_id,
        "db_path": str(db_path),
        "schema_version": links_schema_version(db_path),
        "git_commit": git_commit,
        "inputs": inputs,
        "table_row_counts": table_row_counts(db_path),
        "timings_sec": {stage: round(float(sec), 3) for stage, sec in timings_sec.items()},
        "errors_count": int(errors_count),
        "stats": stats or {},
    }


def write_manifest(db_path: Path, manifest: dict[str, Any]) -> tuple[Path, Path]:
    latest, per_run = manifest_paths(db_path, str(manifest["run_id"]))
    for path in (latest, per_run):
        save_json(manifest, path, pretty=True)
    return latest, per_run


def load_manifest(path: Path) -> dict[str, Any]:
    data = load_json(path)
    if not isinstance(data, dict) or "run_id" not in data:
        raise ValueError(f"{path} is not a run manifest")
    return data


def compare_manifests(current: dict[str, Any], previous: dict[str, Any]) -> dict[str, Any]:
    """Row-count and link-count deltas between two runs (current minus previous)."""

    def counts(manifest: dict[str, Any]) -> dict[str, int]:
        raw = manifest.get("table_row_counts")
        return {k: int(v or 0) for k, v in raw.items()} if isinstance(raw, dict) else {}

    now, before = counts(current), counts(previous)
    tables = sorted(now.keys() | before.keys())

    def by_source(manifest: dict[str, Any]) -> dict[str, int]:
        stats = manifest.get("stats")
        raw = stats.get("by_evidence_source") if isinstance(stats, dict) else None
        return {k: int(v or 0) for k, v in raw.items()} if isinstance(raw, dict) else {}

    src_now, src_before = by_source(current), by_source(previous)
    sources = sorted(src_now.keys() | src_before.keys())
    return {
        "current_run_id": current.get("run_id"),
        "previous_run_id": previous.get("run_id"),
        "table_row_count_delta": {t: now.get(t, 0) - before.get(t, 0) for t in tables},
        "links_by_source_delta": {s: src_now.get(s, 0) - src_before.get(s, 0) for s in sources},
        "errors_count_delta": int(current.get("errors_count", 0) or 0)
        - int(previous.get("errors_count", 0) or 0),
    }
