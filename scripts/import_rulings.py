#!/usr/bin/env python3
"""Import rulings from JSON / JSONL into corpus.duckdb.

Each record needs an ``id`` (or ``ruling_id``); the other ruling fields are
optional.  Records without an id are skipped.  Missing ``content_hash``
values are filled from the ruling text so the quality report can detect
duplicates.

Usage:
    python3 scripts/import_rulings.py --input data/rulings.jsonl \
      --db data/corpus.duckdb --replace

Outputs a JSON summary to stdout; progress goes to stderr.
"""
from __future__ import annotations

import argparse
import hashlib
import sys
import time
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import orjson

from daflink.corpus import write_ruling_corpus
from daflink.errors import DafLinkError
from daflink.io_utils import load_json, load_jsonl
from daflink.link_types import Ruling
from daflink.settings import configure_logging, load_settings


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def _log(msg: str) -> None:
    ts = datetime.now(UTC).strftime("%H:%M:%S")
    print(f"[{ts}] {msg}", file=sys.stderr)


def content_hash(ruling: Ruling) -> str:
    text = " ".join((ruling.full_text or ruling.summary or "").split())
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def read_records(path: Path) -> list[dict[str, Any]]:
    if path.suffix == ".jsonl":
        return load_jsonl(path)
    data = load_json(path)
    if isinstance(data, dict):
        data = data.get("rulings", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of rulings")
    return [r for r in data if isinstance(r, dict)]


def to_rulings(records: list[dict[str, Any]]) -> tuple[list[Ruling], int]:
    """Rulings with a usable id, plus the number of skipped records."""
    rulings: list[Ruling] = []
    skipped = 0
    for record in records:
        ruling = Ruling.from_row(record)
        if not ruling.id:
            skipped += 1
            continue
        if not ruling.content_hash and (ruling.full_text or ruling.summary):
            ruling = replace(ruling, content_hash=content_hash(ruling))
        rulings.append(ruling)
    return rulings, skipped


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Import rulings from JSON / JSONL into corpus.duckdb."
    )
    parser.add_argument(
        "--input", required=True, type=Path, help="Rulings file (.json or .jsonl)"
    )
    parser.add_argument(
        "--db", type=Path, default=None, help="Output corpus DB (default: DAFLINK_CORPUS_DB)"
    )
    parser.add_argument(
        "--replace", action="store_true", help="Drop existing rulings before import"
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
        settings = settings.with_overrides(corpus_db=args.db, log_level=args.log_level)
    except DafLinkError as exc:
        _log(f"Error: {exc}")
        return 1
    configure_logging(settings.log_level)

    if not args.input.exists():
        _log(f"Error: input not found: {args.input}")
        return 1

    start = time.time()
    try:
        records = read_records(args.input)
    except ValueError as exc:
        _log(f"Error: could not read {args.input}: {exc}")
        return 1
    rulings, skipped = to_rulings(records)
    if skipped:
        _log(f"Skipped {skipped} records without an id")

    _log(f"Writing {len(rulings)} rulings to {settings.corpus_db}")
    try:
        written = write_ruling_corpus(settings.corpus_db, rulings, replace=args.replace)
    except DafLinkError as exc:
        _log(f"Error: {exc}")
        return 1

    dump_json({
        "db": str(settings.corpus_db),
        "records": len(records),
        "written": written,
        "skipped": skipped,
        "replaced": bool(args.replace),
        "elapsed_sec": round(time.time() - start, 3),
    })
    return 0


if __name__ == "__main__":
    sys.exit(main())
