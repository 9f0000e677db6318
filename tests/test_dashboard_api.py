"""Tests for the citation index dashboard endpoints."""
from __future__ import annotations

import asyncio
from pathlib import Path

import orjson
import pytest
from fastapi import HTTPException

from daflink.corpus import write_ruling_corpus
from daflink.cross_reference import CrossReferenceService
from daflink.link_store import LinkStore
from daflink.link_types import Ruling
from daflink.settings import EngineSettings
from dashboard.api import server as dashboard_server

RULINGS = [
    Ruling(id="r1", title="מכר דירה", court="בית הדין הרבני", year=2020,
           summary="נפסק בבבא בתרא דף ב עמוד א", legacy_numeric_id=17),
    Ruling(id="r2", title="הדלקת נרות", court="בית הדין הרבני", year=2018,
           summary='כמבואר בשבת לא ע"א'),
]


@pytest.fixture()
def service(monkeypatch, tmp_path: Path):
    corpus_db = tmp_path / "corpus.duckdb"
    write_ruling_corpus(corpus_db, RULINGS)
    snapshot = tmp_path / "static_links.json"
    snapshot.write_bytes(orjson.dumps({
        "connections": [{"psak_id": 17, "masechet": "בבא בתרא", "daf": "ב", "amud": "א"}],
    }))
    settings = EngineSettings(
        corpus_db=corpus_db, links_db=tmp_path / "links.duckdb", snapshot_path=snapshot,
    )
    svc = CrossReferenceService.from_settings(settings)
    pipeline = svc.analysis_pipeline()
    pipeline.run()
    pipeline.derive_pattern_links()
    svc.rebuild_links()
    monkeypatch.setattr(dashboard_server, "_service", svc)
    yield svc
    svc.close()


def _list(**overrides) -> dict:
    params = {
        "text": None, "category": None, "volume": None, "work": None, "confidence": None,
        "has_full_text": None, "tag": None, "sort": "none", "offset": 0, "limit": 50,
    }
    params.update(overrides)
    return asyncio.run(dashboard_server.list_rulings(**params))


# ───── Health ─────


def test_health_without_data(monkeypatch) -> None:
    monkeypatch.setattr(dashboard_server, "_service", None)
    payload = asyncio.run(dashboard_server.health())
    assert payload == {"status": "ok", "corpus_loaded": False, "ruling_count": 0, "link_count": 0}


def test_health_with_data(service: CrossReferenceService) -> None:
    payload = asyncio.run(dashboard_server.health())
    assert payload["corpus_loaded"] is True
    assert payload["ruling_count"] == 2
    assert payload["link_count"] == 2


def test_endpoints_unavailable_without_data(monkeypatch) -> None:
    monkeypatch.setattr(dashboard_server, "_service", None)
    with pytest.raises(HTTPException) as exc:
        asyncio.run(dashboard_server.export_report())
    assert exc.value.status_code == 503


# ───── Startup ─────


def _start(monkeypatch, tmp_path: Path) -> tuple[Path, dict]:
    corpus_db = tmp_path / "corpus.duckdb"
    write_ruling_corpus(corpus_db, RULINGS)
    links_db = tmp_path / "links.duckdb"
    monkeypatch.setenv("DAFLINK_CORPUS_DB", str(corpus_db))
    monkeypatch.setenv("DAFLINK_LINKS_DB", str(links_db))
    monkeypatch.delenv("DAFLINK_SNAPSHOT_PATH", raising=False)
    monkeypatch.delenv("DAFLINK_VOLUMES_PATH", raising=False)
    monkeypatch.setattr(dashboard_server, "_service", None)
    monkeypatch.setattr(dashboard_server, "_settings", None)
    return links_db, {}


async def _capture(seen: dict) -> None:
    async with dashboard_server.lifespan(dashboard_server.app):
        service = dashboard_server._service
        seen["store"] = service.store if service is not None else "missing"
        if service is not None and service.store is not None:
            seen["read_only"] = service.store.read_only
    seen["after"] = dashboard_server._service


def test_startup_does_not_create_links_db(monkeypatch, tmp_path: Path) -> None:
    links_db, seen = _start(monkeypatch, tmp_path)
    asyncio.run(_capture(seen))
    assert seen["store"] is None
    assert seen["after"] is None
    assert not links_db.exists()


def test_startup_opens_links_db_read_only(monkeypatch, tmp_path: Path) -> None:
    links_db, seen = _start(monkeypatch, tmp_path)
    LinkStore(links_db, create_if_missing=True).close()
    asyncio.run(_capture(seen))
    assert seen["read_only"] is True
    # the writer can reopen once the dashboard has shut down
    with LinkStore(links_db) as store:
        assert not store.read_only


# ───── Index ─────


class TestIndex:
    def test_orders(self, service: CrossReferenceService) -> None:
        by_links = asyncio.run(dashboard_server.get_index(order="links", include_pages=False))
        assert by_links["total_links"] == 2
        assert [v["volume"] for v in by_links["volumes"]] == ["Shabbat", "Bava_Batra"]
        assert "pages" not in by_links["volumes"][0]

        by_name = asyncio.run(dashboard_server.get_index(order="name", include_pages=True))
        assert [v["volume"] for v in by_name["volumes"]] == ["Shabbat", "Bava_Batra"]
        assert by_name["volumes"][0]["pages"][0]["page"] == 31

        by_coverage = asyncio.run(dashboard_server.get_index(order="coverage", include_pages=False))
        assert by_coverage["volume_count"] == 2

    def test_page(self, service: CrossReferenceService) -> None:
        payload = asyncio.run(dashboard_server.get_page("בבא בתרא", 2, side=None))
        assert payload["volume"] == "Bava_Batra"
        assert payload["count"] == 1
        link = payload["links"][0]
        assert link["ruling_id"] == "r1"
        assert link["evidence_source"] == "static_snapshot"
        assert link["corroborating_sources"] == ["pattern_match"]
        assert link["ruling"]["title"] == "מכר דירה"
        assert payload["node"]["count"] == 1

        other_side = asyncio.run(dashboard_server.get_page("Bava_Batra", 2, side="ב"))
        assert other_side["count"] == 0

    @pytest.mark.parametrize(
        "volume,page,side,status",
        [("Nowhere", 2, None, 404), ("Shabbat", 500, None, 404), ("Shabbat", 31, "c", 400)],
    )
    def test_page_errors(
        self, service: CrossReferenceService, volume: str, page: int, side: str | None, status: int,
    ) -> None:
        with pytest.raises(HTTPException) as exc:
            asyncio.run(dashboard_server.get_page(volume, page, side=side))
        assert exc.value.status_code == status

    def test_location(self, service: CrossReferenceService) -> None:
        payload = asyncio.run(dashboard_server.get_location("shabbat_31a"))
        assert payload["location"]["reference"] == "Shabbat.31a"
        assert [lk["ruling_id"] for lk in payload["links"]] == ["r2"]

        with pytest.raises(HTTPException) as exc:
            asyncio.run(dashboard_server.get_location("nowhere_2a"))
        assert exc.value.status_code == 404


# ───── Rulings ─────


class TestListRulings:
    def test_filter_by_volume(self, service: CrossReferenceService) -> None:
        payload = _list(volume="Shabbat")
        assert payload["total"] == 1
        assert payload["rulings"][0]["ruling_id"] == "r2"

    def test_paging(self, service: CrossReferenceService) -> None:
        payload = _list(sort="date_desc", offset=1, limit=1)
        assert payload["total"] == 2
        assert [r["ruling_id"] for r in payload["rulings"]] == ["r2"]

    def test_unknown_sort(self, service: CrossReferenceService) -> None:
        with pytest.raises(HTTPException) as exc:
            _list(sort="sideways")
        assert exc.value.status_code == 400

    def test_invalid_criteria(self, service: CrossReferenceService) -> None:
        with pytest.raises(HTTPException) as exc:
            _list(category="לא קיים", volume="Nowhere", confidence="certain")
        assert exc.value.status_code == 400
        codes = [e["code"] for e in exc.value.detail]
        assert codes == ["unknown_confidence", "unknown_category", "unknown_volume"]


def test_export(service: CrossReferenceService) -> None:
    report = asyncio.run(dashboard_server.export_report())
    assert report["stats"]["links"]["total_links"] == 2
    assert report["duplicates_summary"]["link_duplicates"]["count"] == 1
