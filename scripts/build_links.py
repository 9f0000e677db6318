#!/usr/bin/env python3
"""Merge all link evidence into the authoritative links table.

Gathers the static snapshot, the pattern_links rows and the ai_links rows,
merges them (static > pattern > ai), replaces the links table and prints the
merge statistics.  Optionally writes the hierarchical index and the export
report as JSON files.

Usage:
    python3 scripts/build_links.py --corpus-db data/corpus.duckdb \
      --links-db data/links.duckdb --snapshot data/static_links.json \
      --index-out data/index.json --export-report data/export_report.json

Outputs merge statistics as JSON to stdout; progress goes to stderr.
"""
from __future__ import annotations

import argparse
import sys
import time
from datetime import UTC, datetime
from pathlib import Path

import orjson

from daflink.cross_reference import CrossReferenceService
from daflink.errors import DafLinkError
from daflink.io_utils import save_json
from daflink.quality import write_export_report
from daflink.run_manifest import (
    MANIFEST_FILENAME,
    build_manifest,
    compare_manifests,
    generate_run_id,
    git_commit_hash,
    load_manifest,
    write_manifest,
)
from daflink.settings import configure_logging, load_settings


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def _log(msg: str) -> None:
    """Write log message to stderr with timestamp."""
    ts = datetime.now(UTC).strftime("%H:%M:%S")
    print(f"[links {ts}] {msg}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Merge all link evidence into the authoritative links table."
    )
    parser.add_argument("--corpus-db", type=Path, default=None, help="Path to corpus.duckdb")
    parser.add_argument("--links-db", type=Path, default=None, help="Path to links.duckdb")
    parser.add_argument(
        "--snapshot", type=Path, default=None, help="Static snapshot JSON (optional)"
    )
    parser.add_argument(
        "--volumes", type=Path, default=None, help="Volume catalog JSON (optional)"
    )
    parser.add_argument(
        "--index-out", type=Path, default=None, help="Write the hierarchical index here"
    )
    parser.add_argument(
        "--export-report", type=Path, default=None, help="Write the export report here"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Merge and report without replacing the links table",
    )
    parser.add_argument(
        "--no-manifest", action="store_true", help="Do not write a run manifest"
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings().with_overrides(
            corpus_db=args.corpus_db,
            links_db=args.links_db,
            snapshot_path=args.snapshot,
            volumes_path=args.volumes,
            log_level=args.log_level,
        )
    except DafLinkError as exc:
        _log(f"Error: {exc}")
        return 1
    configure_logging(settings.log_level)

    run_id = generate_run_id("links")
    timings: dict[str, float] = {}
    try:
        with CrossReferenceService.from_settings(settings) as service:
            t0 = time.time()
            result = service.rebuild_links(persist=not args.dry_run)
            timings["merge"] = time.time() - t0
            stats = result.stats()
            _log(
                f"Merged {stats['total_links']} links "
                f"({stats['duplicates_discarded']} duplicates discarded)"
            )
            for warning in result.warnings:
                _log(f"  warning: {warning}")

            if args.index_out is not None:
                save_json(service.index().to_dict(), args.index_out, pretty=True)
                _log(f"Index written: {args.index_out}")
            if args.export_report is not None:
                t0 = time.time()
                write_export_report(service.export_report(), args.export_report)
                timings["export"] = time.time() - t0
                _log(f"Export report written: {args.export_report}")
    except DafLinkError as exc:
        _log(f"Error: {exc}")
        return 1

    stats["warnings"] = list(result.warnings)
    if not args.no_manifest and not args.dry_run:
        manifest = build_manifest(
            run_id=run_id,
            db_path=settings.links_db,
            inputs={
                "corpus_db": str(settings.corpus_db),
                "snapshot": str(settings.snapshot_path) if settings.snapshot_path else None,
            },
            timings_sec=timings,
            errors_count=len(result.warnings),
            stats=stats,
            git_commit=git_commit_hash(search_from=Path(__file__)),
        )
        previous_path = settings.links_db.parent / MANIFEST_FILENAME
        if previous_path.exists():
            try:
                delta = compare_manifests(manifest, load_manifest(previous_path))
            except ValueError as exc:
                _log(f"  previous manifest unreadable: {exc}")
            else:
                stats["changes"] = delta
                _log(f"  change since {delta['previous_run_id']}: {delta['table_row_count_delta']}")
        canonical, _ = write_manifest(settings.links_db, manifest)
        _log(f"Manifest written: {canonical}")

    dump_json(stats)
    return 0


if __name__ == "__main__":
    sys.exit(main())
