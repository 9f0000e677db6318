"""Tests for daflink.link_store module."""
from pathlib import Path

import pytest

from daflink.errors import SourceUnavailable
from daflink.link_store import LinkStore
from daflink.link_types import EvidenceSource, Link
from daflink.volumes import VolumeCatalog, default_catalog


@pytest.fixture(scope="module")
def catalog() -> VolumeCatalog:
    return default_catalog()


@pytest.fixture()
def store(tmp_path: Path):
    s = LinkStore(tmp_path / "links.duckdb", create_if_missing=True)
    yield s
    s.close()


def _extraction_row(ruling_id: str, count: int = 0) -> dict:
    return {
        "ruling_id": ruling_id,
        "citations": "[]",
        "work_citations": "[]",
        "topics": "[]",
        "issues": "[]",
        "volumes": "[]",
        "works": "[]",
        "citation_count": count,
        "word_count": 10,
        "has_full_text": False,
        "analyzed_at": "2024-01-01T00:00:00+00:00",
    }


class TestOpen:
    def test_missing_db_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            LinkStore(tmp_path / "absent.duckdb")

    def test_create_and_reopen_read_only(self, tmp_path: Path) -> None:
        path = tmp_path / "links.duckdb"
        with LinkStore(path, create_if_missing=True) as store:
            store.upsert_extraction_results([_extraction_row("r1")])
        with LinkStore(path, read_only=True) as store:
            assert store.read_only
            assert store.extraction_count() == 1
            assert store.table_counts()["extraction_results"] == 1

    def test_unreadable_file_is_unavailable(self, tmp_path: Path) -> None:
        path = tmp_path / "links.duckdb"
        path.write_bytes(b"not a database" * 512)
        with pytest.raises(SourceUnavailable, match="link store"):
            LinkStore(path)


class TestExtractionResults:
    def test_upsert_last_write_wins(self, store: LinkStore) -> None:
        written = store.upsert_extraction_results(
            [_extraction_row("r1", 1), _extraction_row("r2"), _extraction_row("r1", 3)],
            run_id="run-1",
        )
        assert written == 2
        rows = store.extraction_rows()
        assert [r["ruling_id"] for r in rows] == ["r1", "r2"]
        assert rows[0]["citation_count"] == 3
        assert rows[0]["run_id"] == "run-1"

    def test_rewrite_replaces_row(self, store: LinkStore) -> None:
        store.upsert_extraction_results([_extraction_row("r1", 1)])
        store.upsert_extraction_results([_extraction_row("r1", 5)], run_id="run-2")
        assert store.extraction_count() == 1
        assert store.extraction_rows(["r1"])[0]["citation_count"] == 5

    def test_subset_lookup(self, store: LinkStore) -> None:
        store.upsert_extraction_results([_extraction_row("r1"), _extraction_row("r2")])
        assert [r["ruling_id"] for r in store.extraction_rows(["r2", "zz"])] == ["r2"]
        assert store.extraction_rows([]) == []
        assert store.analyzed_ruling_ids() == {"r1", "r2"}

    def test_empty_upsert(self, store: LinkStore) -> None:
        assert store.upsert_extraction_results([]) == 0


class TestPatternAndAiRows:
    def test_pattern_links_replaced(self, store: LinkStore) -> None:
        store.replace_pattern_links([
            {"ruling_id": "r1", "volume": "Shabbat", "page": 31, "side": "a", "confidence": "high"},
        ])
        written = store.replace_pattern_links([
            {"ruling_id": "r2", "volume": "Berakhot", "page": 2, "side": None,
             "confidence": "medium", "detection_method": "page_only"},
        ])
        assert written == 1
        rows = store.pattern_link_rows()
        assert len(rows) == 1
        assert rows[0]["ruling_id"] == "r2"
        assert rows[0]["side"] is None
        assert rows[0]["detection_method"] == "page_only"

    def test_ai_links_upserted(self, store: LinkStore) -> None:
        store.upsert_ai_links([
            {"ruling_id": "r1", "location_id": "shabbat_31a", "relevance_score": 5.0},
        ])
        store.upsert_ai_links([
            {"ruling_id": "r1", "location_id": "shabbat_31a", "relevance_score": 7.0,
             "explanation": "עדכון"},
        ])
        rows = store.ai_link_rows()
        assert len(rows) == 1
        assert rows[0]["relevance_score"] == 7.0


class TestMergedLinks:
    def test_replace_and_load(self, store: LinkStore, catalog: VolumeCatalog) -> None:
        links = [
            Link(
                ruling_id="r1",
                location=catalog.location("Bava_Batra", 2, "a"),
                explanation="snapshot",
                relevance_score=9.0,
                evidence_source=EvidenceSource.STATIC_SNAPSHOT,
                notes=("regex",),
                corroborating_sources=(EvidenceSource.PATTERN_MATCH,),
            ),
            Link(
                ruling_id="r2",
                location=catalog.location("Shabbat", 31, "b"),
                explanation="",
                relevance_score=4.0,
                evidence_source=EvidenceSource.AI_ANALYSIS,
                side_known=False,
            ),
        ]
        assert store.replace_links(links) == 2
        assert store.load_links(catalog) == links
        assert store.link_rows()[0]["confidence"] == "high"

        store.replace_links(links[1:])
        assert [lk.ruling_id for lk in store.load_links(catalog)] == ["r2"]

    def test_unknown_volume_skipped(self, store: LinkStore, catalog: VolumeCatalog) -> None:
        tiny = VolumeCatalog(
            [v for v in catalog if v.canonical_name != "Shabbat"],
        )
        store.replace_links([
            Link("r1", catalog.location("Shabbat", 2), "", 6.0, EvidenceSource.PATTERN_MATCH),
            Link("r1", catalog.location("Berakhot", 2), "", 6.0, EvidenceSource.PATTERN_MATCH),
        ])
        assert [lk.canonical_location_id for lk in store.load_links(tiny)] == ["berakhot_2a"]


class TestRuns:
    def test_run_lifecycle(self, store: LinkStore) -> None:
        store.start_run("run-1", total=137, chunk_size=50)
        store.update_run_progress("run-1", next_offset=50, succeeded=49, failed=1,
                                  failed_ids=["r7"])
        run = store.get_run("run-1")
        assert run is not None
        assert run["status"] == "running"
        assert run["next_offset"] == 50
        assert run["failed_ids"] == ["r7"]
        assert store.latest_resumable_run()["run_id"] == "run-1"

        store.update_run_progress("run-1", next_offset=137, succeeded=136, failed=1)
        store.complete_run("run-1")
        assert store.get_run("run-1")["status"] == "completed"
        assert store.latest_resumable_run() is None

    def test_cancelled_and_failed_are_resumable(self, store: LinkStore) -> None:
        store.start_run("run-a", total=100, chunk_size=10)
        store.update_run_progress("run-a", next_offset=30, succeeded=30, failed=0)
        store.cancel_run("run-a")
        assert store.latest_resumable_run()["status"] == "cancelled"

        store.fail_run("run-a", "disk full")
        run = store.latest_resumable_run()
        assert run["status"] == "failed"
        assert run["error_message"] == "disk full"

    def test_unknown_run(self, store: LinkStore) -> None:
        assert store.get_run("nope") is None
