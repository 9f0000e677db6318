"""Tests for daflink.extractor module."""
import pytest

from daflink.confidence import Confidence
from daflink.extractor import (
    PAGE_RULES,
    CitationExtractor,
    extract_citations,
    get_extractor,
    scan_text,
    volume_aliases,
)
from daflink.link_types import CitationKind
from daflink.volumes import Side, VolumeCatalog, default_catalog


@pytest.fixture(scope="module")
def catalog() -> VolumeCatalog:
    return default_catalog()


# ───── Rule table ─────


def test_rule_table_order() -> None:
    assert [r.detection_method for r in PAGE_RULES] == [
        "page_and_side", "page_only", "page_only", "co_occurrence",
    ]
    assert [r.confidence for r in PAGE_RULES] == [
        Confidence.HIGH, Confidence.MEDIUM, Confidence.MEDIUM, Confidence.LOW,
    ]


def test_aliases_cover_every_name_form(catalog: VolumeCatalog) -> None:
    aliases = volume_aliases(catalog)
    target = catalog.require("Bava_Batra")
    assert aliases["בבא בתרא"] is target
    assert aliases["bava batra"] is target
    assert aliases['ב"ב'] is target


def test_window_must_be_positive(catalog: VolumeCatalog) -> None:
    with pytest.raises(ValueError):
        CitationExtractor(catalog, window=0)


def test_extractor_cached_per_catalog(catalog: VolumeCatalog) -> None:
    assert get_extractor(catalog) is get_extractor(catalog)
    assert get_extractor(catalog, window=2) is not get_extractor(catalog)


def test_extractor_cache_is_bounded() -> None:
    get_extractor.cache_clear()
    for _ in range(20):
        get_extractor(default_catalog())
    info = get_extractor.cache_info()
    assert info.maxsize is not None
    assert info.currsize <= info.maxsize


# ───── Page citations ─────


class TestPageAndSide:
    def test_prefixed_volume_name(self, catalog: VolumeCatalog) -> None:
        text = "נפסק בבבא בתרא דף ב עמוד א"
        citations = extract_citations(text, catalog)
        assert len(citations) == 1
        c = citations[0]
        assert c.volume.canonical_name == "Bava_Batra"
        assert c.page == 2
        assert c.side == Side.A
        assert c.confidence == Confidence.HIGH
        assert c.detection_method == "page_and_side"
        assert c.kind == CitationKind.CANONICAL_PAGE
        assert c.location is not None
        assert c.location.location_id == "bava_batra_2a"
        assert c.raw_snippet == "בבא בתרא דף ב עמוד א"

    def test_abbreviated_side_marker(self, catalog: VolumeCatalog) -> None:
        citations = extract_citations('כמבואר בשבת לא ע"א', catalog)
        assert [(c.volume.canonical_name, c.page, c.side) for c in citations] == [
            ("Shabbat", 31, Side.A),
        ]

    def test_gershayim_page_and_side_b(self, catalog: VolumeCatalog) -> None:
        citations = extract_citations("עיין שבת דף קי״ח עמוד ב", catalog)
        assert len(citations) == 1
        assert citations[0].page == 118
        assert citations[0].side == Side.B

    def test_volume_abbreviation(self, catalog: VolumeCatalog) -> None:
        citations = extract_citations('ראה ב"מ דף נט עמוד ב', catalog)
        assert len(citations) == 1
        assert citations[0].location is not None
        assert citations[0].location.location_id == "bava_metzia_59b"

    def test_diacritics_ignored_and_snippet_keeps_original(self, catalog: VolumeCatalog) -> None:
        text = "בְּרָכוֹת דַּף ה עמוד א"
        citations = extract_citations(text, catalog)
        assert len(citations) == 1
        assert citations[0].page == 5
        assert citations[0].raw_snippet == text

    def test_comma_separated_side(self, catalog: VolumeCatalog) -> None:
        citations = extract_citations("ראה ברכות ב, א", catalog)
        assert len(citations) == 1
        c = citations[0]
        assert (c.volume.canonical_name, c.page, c.side) == ("Berakhot", 2, Side.A)
        assert c.confidence == Confidence.HIGH

    def test_text_before_hebrew_with_multi_char_lowercase(self, catalog: VolumeCatalog) -> None:
        citations = extract_citations("İ בבא בתרא דף ב עמוד א", catalog)
        assert len(citations) == 1
        assert citations[0].location is not None
        assert citations[0].location.location_id == "bava_batra_2a"
        assert citations[0].raw_snippet == "בבא בתרא דף ב עמוד א"


class TestPageOnly:
    def test_medium_without_side(self, catalog: VolumeCatalog) -> None:
        citations = extract_citations("ראה ברכות דף יב לעניין זה", catalog)
        assert len(citations) == 1
        c = citations[0]
        assert c.page == 12
        assert c.side is None
        assert c.confidence == Confidence.MEDIUM
        assert c.detection_method == "page_only"
        assert c.location is not None
        assert c.location.side == Side.A

    def test_digits_page(self, catalog: VolumeCatalog) -> None:
        citations = extract_citations("מסכת מגילה דף 7", catalog)
        assert [(c.page, c.confidence) for c in citations] == [(7, Confidence.MEDIUM)]

    def test_bare_page_after_abbreviation(self, catalog: VolumeCatalog) -> None:
        citations = extract_citations('כמבואר בב"מ כג', catalog)
        assert len(citations) == 1
        c = citations[0]
        assert (c.volume.canonical_name, c.page, c.side) == ("Bava_Metzia", 23, None)
        assert c.confidence == Confidence.MEDIUM
        assert c.detection_method == "page_only"

    @pytest.mark.parametrize(
        ("text", "canonical", "page"),
        [
            ("עיין שבת קנז", "Shabbat", 157),
            ("עיין כתובות יט.", "Ketubot", 19),
            ("ראה ברכות 12, ושם", "Berakhot", 12),
            ("עיין כתובות י\"ט לעניין זה", "Ketubot", 19),
        ],
    )
    def test_bare_page_closing_reference(
        self, catalog: VolumeCatalog, text: str, canonical: str, page: int
    ) -> None:
        citations = extract_citations(text, catalog)
        assert [(c.volume.canonical_name, c.page) for c in citations] == [(canonical, page)]
        assert citations[0].confidence == Confidence.MEDIUM

    def test_bare_word_after_volume_is_not_a_page(self, catalog: VolumeCatalog) -> None:
        assert extract_citations("ראה כתובות יט לעניין זה", catalog) == []

    def test_bare_page_out_of_range_skipped(self, catalog: VolumeCatalog) -> None:
        result = scan_text("עיין ברכות קע", catalog)
        assert result.citations == []
        assert result.issues == []


class TestCoOccurrence:
    def test_numeral_within_window(self, catalog: VolumeCatalog) -> None:
        citations = extract_citations("במסכת מגילה בסוגיא ז' נאמר", catalog)
        assert len(citations) == 1
        c = citations[0]
        assert c.page == 7
        assert c.confidence == Confidence.LOW
        assert c.detection_method == "co_occurrence"

    def test_numeral_outside_window(self, catalog: VolumeCatalog) -> None:
        assert extract_citations("במסכת מגילה בסוגיא ז' נאמר", catalog, window=1) == []

    def test_plain_words_are_not_numerals(self, catalog: VolumeCatalog) -> None:
        assert extract_citations("בשבת לא הלכו לבית הכנסת", catalog) == []


class TestMultipleCitations:
    def test_order_of_appearance_and_dedup(self, catalog: VolumeCatalog) -> None:
        text = (
            "ראה שבת דף קיח עמוד ב, וכן ברכות דף ה עמוד א, "
            "ושוב שבת דף קיח עמוד ב"
        )
        citations = extract_citations(text, catalog)
        assert [(c.volume.canonical_name, c.page) for c in citations] == [
            ("Shabbat", 118),
            ("Berakhot", 5),
        ]
        assert citations[0].start < citations[1].start

    def test_different_sides_are_distinct(self, catalog: VolumeCatalog) -> None:
        text = "ברכות דף ה עמוד א וברכות דף ה עמוד ב"
        citations = extract_citations(text, catalog)
        assert [c.side for c in citations] == [Side.A, Side.B]


# ───── Issues and empty input ─────


class TestIssues:
    def test_page_out_of_range_reported(self, catalog: VolumeCatalog) -> None:
        result = scan_text("ראה ברכות דף קע", catalog)
        assert result.citations == []
        assert len(result.issues) == 1
        assert "outside" in result.issues[0].message
        assert result.issues[0].raw_snippet == "ברכות דף קע"

    def test_unparsable_numeral_reported(self, catalog: VolumeCatalog) -> None:
        result = scan_text("ראה ברכות דף בא", catalog)
        assert result.citations == []
        assert len(result.issues) == 1
        assert "unparsable" in result.issues[0].message

    def test_extraction_continues_after_issue(self, catalog: VolumeCatalog) -> None:
        result = scan_text("ברכות דף קע, ושבת דף ב עמוד א", catalog)
        assert [(c.volume.canonical_name, c.page) for c in result.citations] == [("Shabbat", 2)]
        assert len(result.issues) == 1


class TestNonHebrew:
    def test_english_text_yields_nothing(self, catalog: VolumeCatalog) -> None:
        assert extract_citations("See Berakhot 2a for details", catalog) == []

    def test_empty_text(self, catalog: VolumeCatalog) -> None:
        result = scan_text("", catalog)
        assert result.citations == []
        assert result.work_citations == []
        assert result.topics == []
        assert result.issues == []


def test_scan_collects_works_and_topics(catalog: VolumeCatalog) -> None:
    text = 'בעניין מכר דירה, ראה שו"ע חו"מ סימן קצט ובבא בתרא דף ב עמוד א'
    result = scan_text(text, catalog)
    assert [c.location.location_id for c in result.citations if c.location] == ["bava_batra_2a"]
    assert result.work_citations[0].section == "חושן משפט"
    assert {t.topic for t in result.topics} >= {"מכר", "דירה"}
