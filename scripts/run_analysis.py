#!/usr/bin/env python3
"""Run the chunked citation analysis over the ruling corpus.

Reads rulings from corpus.duckdb in chunks, writes one extraction row per
ruling into links.duckdb, then rebuilds the pattern_links table.  SIGINT /
SIGTERM stop the run after the current chunk; ``--resume`` continues from
the last recorded offset.

Usage:
    python3 scripts/run_analysis.py --corpus-db data/corpus.duckdb \
      --links-db data/links.duckdb --chunk-size 50
    python3 scripts/run_analysis.py --resume

Outputs a JSON run summary to stdout; progress goes to stderr.
"""
from __future__ import annotations

import argparse
import signal
import sys
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import orjson

from daflink.corpus import RulingCorpus
from daflink.errors import DafLinkError
from daflink.link_store import LinkStore
from daflink.pipeline import AnalysisPipeline
from daflink.run_manifest import build_manifest, generate_run_id, git_commit_hash, write_manifest
from daflink.settings import configure_logging, load_settings


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def _log(msg: str) -> None:
    """Write log message to stderr with timestamp."""
    ts = datetime.now(UTC).strftime("%H:%M:%S")
    print(f"[analysis {ts}] {msg}", file=sys.stderr)


class _StopFlag:
    """Set by SIGINT/SIGTERM; polled between chunks."""

    def __init__(self) -> None:
        self.requested = False
        self._previous: dict[int, Any] = {}

    def install(self) -> None:
        for signum in (signal.SIGTERM, signal.SIGINT):
            self._previous[signum] = signal.signal(signum, self._handle_signal)

    def restore(self) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()

    def _handle_signal(self, signum: int, _frame: Any) -> None:
        sig_name = signal.Signals(signum).name
        _log(f"Received {sig_name}, stopping after current chunk...")
        self.requested = True

    def __call__(self) -> bool:
        return self.requested


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the chunked citation analysis over the ruling corpus."
    )
    parser.add_argument("--corpus-db", type=Path, default=None, help="Path to corpus.duckdb")
    parser.add_argument("--links-db", type=Path, default=None, help="Path to links.duckdb")
    parser.add_argument(
        "--chunk-size", type=int, default=None, help="Rulings per chunk (default: 50)"
    )
    parser.add_argument(
        "--write-retries",
        type=int,
        default=None,
        help="Retries of a failed chunk write (default: 2)",
    )
    parser.add_argument(
        "--window",
        type=int,
        default=None,
        help="Max tokens between volume name and page for co-occurrence (default: 3)",
    )
    start = parser.add_mutually_exclusive_group()
    start.add_argument(
        "--resume", action="store_true", help="Continue the latest unfinished run"
    )
    start.add_argument(
        "--start-offset", type=int, default=0, help="Corpus offset to start at (default: 0)"
    )
    parser.add_argument(
        "--skip-pattern-links",
        action="store_true",
        help="Do not rebuild pattern_links after the run",
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
            chunk_size=args.chunk_size,
            write_retries=args.write_retries,
            cooccurrence_window=args.window,
            log_level=args.log_level,
        )
        catalog = settings.catalog()
    except DafLinkError as exc:
        _log(f"Error: {exc}")
        return 1
    configure_logging(settings.log_level)

    run_id = generate_run_id("analysis")
    timings: dict[str, float] = {}
    stop = _StopFlag()
    stop.install()

    try:
        corpus = RulingCorpus(settings.corpus_db)
    except DafLinkError as exc:
        _log(f"Error: {exc}")
        stop.restore()
        return 1

    pattern_written: int | None = None
    try:
        with corpus, LinkStore(settings.links_db, create_if_missing=True) as store:
            pipeline = AnalysisPipeline(
                corpus,
                store,
                catalog,
                chunk_size=settings.chunk_size,
                write_retries=settings.write_retries,
                window=settings.cooccurrence_window,
                run_id=run_id,
            )
            start_offset = pipeline.resume_offset() if args.resume else args.start_offset
            _log(f"Run {run_id}: starting at offset {start_offset}")

            t0 = time.time()
            result = pipeline.run(
                start_offset,
                on_progress=lambda done, total: _log(f"  {done}/{total} rulings"),
                should_cancel=stop,
            )
            timings["analysis"] = time.time() - t0

            if result.status == "completed" and not args.skip_pattern_links:
                t0 = time.time()
                pattern_written = pipeline.derive_pattern_links()
                timings["pattern_links"] = time.time() - t0
                _log(f"Rebuilt pattern_links: {pattern_written} rows")
    except DafLinkError as exc:
        _log(f"Error: {exc}")
        return 1
    finally:
        stop.restore()

    summary = result.to_dict()
    summary["pattern_links"] = pattern_written

    if not args.no_manifest:
        manifest = build_manifest(
            run_id=run_id,
            db_path=settings.links_db,
            inputs={
                "corpus_db": str(settings.corpus_db),
                "chunk_size": settings.chunk_size,
                "start_offset": start_offset,
                "resume": bool(args.resume),
            },
            timings_sec=timings,
            errors_count=len(result.failed_ids),
            stats=summary,
            git_commit=git_commit_hash(search_from=Path(__file__)),
        )
        canonical, _ = write_manifest(settings.links_db, manifest)
        _log(f"Manifest written: {canonical}")

    dump_json(summary)
    return 0 if result.status == "completed" else 2


if __name__ == "__main__":
    sys.exit(main())
