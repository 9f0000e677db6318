"""Tests for daflink.analysis module."""
import pytest

from daflink.analysis import RulingAnalysis, analyze_ruling, summarize_analyses
from daflink.link_types import Ruling
from daflink.volumes import VolumeCatalog, default_catalog
from daflink.works import SHULCHAN_ARUCH


@pytest.fixture(scope="module")
def catalog() -> VolumeCatalog:
    return default_catalog()


def _ruling(ruling_id: str, summary: str, *, title: str = "", full_text: str | None = None) -> Ruling:
    return Ruling(id=ruling_id, title=title, summary=summary, full_text=full_text)


class TestAnalyzeRuling:
    def test_citations_works_and_topics(self, catalog: VolumeCatalog) -> None:
        ruling = _ruling(
            "r1",
            'ראה שו"ע חו"מ סימן קצט ובבא בתרא דף ב עמוד א',
            title="בעניין מכר דירה",
        )
        a = analyze_ruling(ruling, catalog)
        assert a.ruling_id == "r1"
        assert [c.location.location_id for c in a.citations if c.location] == ["bava_batra_2a"]
        assert a.volumes == ("Bava_Batra",)
        assert a.works == (SHULCHAN_ARUCH,)
        assert "ממון ומסחר" in a.categories
        assert a.has_sources
        assert not a.has_full_text
        assert a.word_count > 0
        assert a.analyzed_at

    def test_full_text_flag_follows_ruling(self, catalog: VolumeCatalog) -> None:
        ruling = _ruling("r2", "", full_text="מילה " * 40)
        assert analyze_ruling(ruling, catalog).has_full_text

    def test_no_sources(self, catalog: VolumeCatalog) -> None:
        a = analyze_ruling(_ruling("r3", "פסק דין ללא מקורות"), catalog)
        assert a.citations == ()
        assert a.work_citations == ()
        assert not a.has_sources


class TestStoredRows:
    def test_row_restores_citations(self, catalog: VolumeCatalog) -> None:
        a = analyze_ruling(
            _ruling("r1", 'ראה שו"ע חו"מ סימן קצט ובבא בתרא דף ב עמוד א'), catalog
        )
        row = a.to_row()
        assert isinstance(row["citations"], str)
        assert row["citation_count"] == 1

        restored = RulingAnalysis.from_row(row, catalog)
        assert restored.citations == a.citations
        assert restored.work_citations == a.work_citations
        assert restored.topics == a.topics
        assert restored.analyzed_at == a.analyzed_at

    def test_unknown_volume_dropped(self, catalog: VolumeCatalog) -> None:
        row = {
            "ruling_id": "r9",
            "citations": '[{"volume": "Nowhere", "page": 2, "side": "a", "confidence": "high"},'
                         ' {"volume": "Shabbat", "page": 31, "side": "a", "confidence": "high"}]',
        }
        restored = RulingAnalysis.from_row(row, catalog)
        assert [c.volume.canonical_name for c in restored.citations] == ["Shabbat"]

    def test_empty_and_null_columns(self, catalog: VolumeCatalog) -> None:
        restored = RulingAnalysis.from_row(
            {"ruling_id": "r9", "citations": None, "topics": "", "issues": "{}"}, catalog
        )
        assert restored.citations == ()
        assert restored.topics == ()
        assert restored.issues == ()
        assert restored.word_count == 0


def test_summarize_analyses(catalog: VolumeCatalog) -> None:
    analyses = [
        analyze_ruling(_ruling("r1", "נפסק בבבא בתרא דף ב עמוד א ובשבת לא ע\"א"), catalog),
        analyze_ruling(_ruling("r2", "ראה בבא בתרא דף ג עמוד ב"), catalog),
        analyze_ruling(_ruling("r3", "ללא מקורות"), catalog),
    ]
    summary = summarize_analyses(analyses)
    assert summary["total_analyzed"] == 3
    assert summary["with_page_links"] == 2
    assert summary["with_sources"] == 2
    assert summary["total_page_links"] == 3
    assert summary["top_volumes"][0] == {"name": "Bava_Batra", "count": 2}
    assert summary["top_volumes"][1] == {"name": "Shabbat", "count": 1}


def test_summarize_top_n_limit(catalog: VolumeCatalog) -> None:
    analyses = [
        analyze_ruling(_ruling("r1", "ראה בבא בתרא דף ב עמוד א ושבת דף ג עמוד א"), catalog),
    ]
    assert len(summarize_analyses(analyses, top_n=1)["top_volumes"]) == 1
