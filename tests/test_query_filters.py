"""Tests for daflink.query_filters module."""
import pytest

from daflink.confidence import Confidence
from daflink.link_types import DetectedTopic, EvidenceSource, Link, Ruling
from daflink.query_filters import (
    QueryCriteria,
    RulingView,
    SortOrder,
    build_views,
    escape_like,
    filter_links,
    filter_views,
    parse_criteria,
    parse_sort_order,
    query_views,
    sort_views,
    validate_criteria,
)
from daflink.volumes import default_catalog
from daflink.works import TOPIC_CATEGORIES

CATALOG = default_catalog()


def _link(ruling_id: str, volume: str, page: int, *, score: float = 8.0,
          source: EvidenceSource = EvidenceSource.PATTERN_MATCH) -> Link:
    return Link(
        ruling_id=ruling_id,
        location=CATALOG.location(volume, page, "a"),
        explanation="",
        relevance_score=score,
        evidence_source=source,
    )


def _view(
    ruling_id: str,
    *,
    title: str = "",
    links: tuple[Link, ...] = (),
    topics: tuple[DetectedTopic, ...] = (),
    works: tuple[str, ...] = (),
    year: int | None = None,
    created_at: str | None = None,
    full_text: str | None = None,
    tags: tuple[str, ...] = (),
) -> RulingView:
    ruling = Ruling(
        id=ruling_id, title=title, year=year, created_at=created_at,
        full_text=full_text, tags=tags,
    )
    return RulingView(ruling=ruling, links=links, topics=topics, works=works)


@pytest.fixture()
def views() -> list[RulingView]:
    return [
        _view(
            "r1",
            title="מכר דירה",
            links=(_link("r1", "Bava_Batra", 2, score=9.0),),
            topics=(DetectedTopic("מכר", "ממון ומסחר", 2),),
            works=('שולחן ערוך',),
            year=2020,
            full_text="א" * 200,
            tags=("מקרקעין",),
        ),
        _view(
            "r2",
            title="שמירת שבת",
            links=(_link("r2", "Shabbat", 31, score=6.0), _link("r2", "Shabbat", 73, score=4.0)),
            topics=(DetectedTopic("שבת", "שבת ומועדים", 5),),
            created_at="2021-03-04T10:00:00",
        ),
        _view("r3", title="ללא קישורים", year=2019),
        _view("r4", title="נזק", links=(_link("r4", "Bava_Kamma", 20, score=4.0),)),
    ]


# ───── Filtering ─────


class TestFilter:
    def test_empty_criteria_keeps_all(self, views: list[RulingView]) -> None:
        assert len(filter_views(views, QueryCriteria())) == 4
        assert QueryCriteria().is_empty

    def test_text_matches_title(self, views: list[RulingView]) -> None:
        out = filter_views(views, QueryCriteria(text="דירה"))
        assert [v.ruling_id for v in out] == ["r1"]

    def test_text_matches_volume_name(self, views: list[RulingView]) -> None:
        out = filter_views(views, QueryCriteria(text="bava"))
        assert [v.ruling_id for v in out] == ["r1", "r4"]

    def test_text_matches_topic(self, views: list[RulingView]) -> None:
        assert [v.ruling_id for v in filter_views(views, QueryCriteria(text="שבת"))] == ["r2"]

    def test_category(self, views: list[RulingView]) -> None:
        out = filter_views(views, QueryCriteria(category="שבת ומועדים"))
        assert [v.ruling_id for v in out] == ["r2"]

    def test_volume_by_hebrew_or_canonical(self, views: list[RulingView]) -> None:
        assert [v.ruling_id for v in filter_views(views, QueryCriteria(volume="בבא בתרא"))] == ["r1"]
        assert [v.ruling_id for v in filter_views(views, QueryCriteria(volume="Bava Batra"))] == ["r1"]

    def test_work(self, views: list[RulingView]) -> None:
        assert [v.ruling_id for v in filter_views(views, QueryCriteria(work="שולחן ערוך"))] == ["r1"]

    def test_confidence_any_link(self, views: list[RulingView]) -> None:
        out = filter_views(views, QueryCriteria(confidence=Confidence.LOW))
        assert [v.ruling_id for v in out] == ["r2", "r4"]

    def test_full_text_and_tag(self, views: list[RulingView]) -> None:
        assert [v.ruling_id for v in filter_views(views, QueryCriteria(has_full_text=True))] == ["r1"]
        assert len(filter_views(views, QueryCriteria(has_full_text=False))) == 3
        assert [v.ruling_id for v in filter_views(views, QueryCriteria(tag="מקרקעין"))] == ["r1"]

    def test_criteria_combine_with_and(self, views: list[RulingView]) -> None:
        out = filter_views(views, QueryCriteria(volume="Shabbat", confidence=Confidence.HIGH))
        assert out == []


# ───── Sorting ─────


class TestSort:
    def test_none_keeps_input_order(self, views: list[RulingView]) -> None:
        assert [v.ruling_id for v in sort_views(views)] == ["r1", "r2", "r3", "r4"]

    def test_page_ascending_missing_last(self, views: list[RulingView]) -> None:
        out = sort_views(views, SortOrder.PAGE_ASC)
        assert [v.ruling_id for v in out] == ["r1", "r4", "r2", "r3"]

    def test_page_descending_missing_last(self, views: list[RulingView]) -> None:
        out = sort_views(views, SortOrder.PAGE_DESC)
        assert [v.ruling_id for v in out] == ["r2", "r4", "r1", "r3"]

    def test_links_descending_is_stable(self, views: list[RulingView]) -> None:
        out = sort_views(views, SortOrder.LINKS_DESC)
        assert [v.ruling_id for v in out] == ["r2", "r1", "r4", "r3"]

    def test_confidence(self, views: list[RulingView]) -> None:
        out = sort_views(views, SortOrder.CONFIDENCE)
        assert [v.ruling_id for v in out] == ["r1", "r2", "r4", "r3"]

    def test_date_orders(self, views: list[RulingView]) -> None:
        assert [v.ruling_id for v in sort_views(views, SortOrder.DATE_ASC)] == ["r3", "r1", "r2", "r4"]
        assert [v.ruling_id for v in sort_views(views, SortOrder.DATE_DESC)] == ["r2", "r1", "r3", "r4"]


# ───── Query ─────


def test_query_pages_after_filtering(views: list[RulingView]) -> None:
    result = query_views(views, QueryCriteria(), SortOrder.LINKS_DESC, offset=1, limit=2)
    assert result.total == 4
    assert [v.ruling_id for v in result.views] == ["r1", "r4"]


def test_query_offset_past_end(views: list[RulingView]) -> None:
    result = query_views(views, QueryCriteria(text="דירה"), offset=5, limit=10)
    assert result.total == 1
    assert result.views == []


def test_build_views_joins_links_and_analyses() -> None:
    rulings = [Ruling(id="r1"), Ruling(id="r2")]
    links = [_link("r1", "Shabbat", 31), _link("r1", "Berakhot", 2), _link("r9", "Shabbat", 2)]
    views = build_views(rulings, links)
    assert [v.ruling_id for v in views] == ["r1", "r2"]
    assert [lk.canonical_location_id for lk in views[0].links] == ["berakhot_2a", "shabbat_31a"]
    assert views[1].links == ()
    assert views[0].first_page == 2


def test_view_to_dict(views: list[RulingView]) -> None:
    d = views[0].to_dict()
    assert d["link_count"] == 1
    assert d["best_confidence"] == "high"
    assert d["categories"] == ["ממון ומסחר"]
    assert d["links"][0]["canonical_location_id"] == "bava_batra_2a"
    assert views[2].to_dict()["best_confidence"] is None


def test_filter_links() -> None:
    links = [
        _link("r1", "Shabbat", 31, score=9.0),
        _link("r2", "Shabbat", 32, score=4.0, source=EvidenceSource.AI_ANALYSIS),
        _link("r1", "Berakhot", 2),
    ]
    assert len(filter_links(links, volume="shabbat")) == 2
    assert len(filter_links(links, volume="שבת")) == 2
    assert [lk.ruling_id for lk in filter_links(links, confidence=Confidence.LOW)] == ["r2"]
    assert len(filter_links(links, evidence_source=EvidenceSource.PATTERN_MATCH)) == 2
    assert len(filter_links(links, ruling_id="r1")) == 2


# ───── Parsing and validation ─────


class TestParsing:
    def test_parse_criteria(self) -> None:
        criteria, errors = parse_criteria({
            "text": "  דירה ", "confidence": "HIGH", "has_full_text": "true", "tag": "",
        })
        assert errors == []
        assert criteria.text == "דירה"
        assert criteria.confidence == Confidence.HIGH
        assert criteria.has_full_text is True
        assert criteria.tag is None

    def test_unknown_confidence(self) -> None:
        _, errors = parse_criteria({"confidence": "certain"})
        assert [e.code for e in errors] == ["unknown_confidence"]
        assert errors[0].field_name == "confidence"

    def test_validate_category_and_volume(self) -> None:
        criteria = QueryCriteria(category="אין כזו", volume="Nowhere")
        errors = validate_criteria(
            criteria,
            categories=TOPIC_CATEGORIES,
            volume_exists=lambda name: CATALOG.get(name) is not None,
        )
        assert [e.code for e in errors] == ["unknown_category", "unknown_volume"]

    def test_valid_criteria(self) -> None:
        criteria = QueryCriteria(category="נזיקין", volume="בבא קמא")
        assert validate_criteria(
            criteria,
            categories=TOPIC_CATEGORIES,
            volume_exists=lambda name: CATALOG.get(name) is not None,
        ) == []

    @pytest.mark.parametrize(
        "raw,order",
        [(None, SortOrder.NONE), ("", SortOrder.NONE), ("PAGE_ASC", SortOrder.PAGE_ASC),
         ("date_desc", SortOrder.DATE_DESC), ("sideways", None)],
    )
    def test_parse_sort_order(self, raw: str | None, order: SortOrder | None) -> None:
        assert parse_sort_order(raw) == order


def test_escape_like() -> None:
    assert escape_like("100%_a\\b") == "100\\%\\_a\\\\b"
