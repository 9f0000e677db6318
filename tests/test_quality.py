"""Tests for daflink.quality module."""
from pathlib import Path

import orjson

from daflink.evidence import EvidenceSet
from daflink.link_types import EvidenceSource, LinkCandidate, Ruling
from daflink.merge import merge_evidence
from daflink.quality import (
    QualityIssue,
    Severity,
    build_export_report,
    check_ruling,
    corpus_statistics,
    find_duplicate_rulings,
    quality_score,
    write_export_report,
)
from daflink.volumes import default_catalog

CATALOG = default_catalog()
HEALTHY_TEXT = " ".join(f"מילה{i}" for i in range(60))


def _ruling(**overrides) -> Ruling:
    fields = {
        "id": "r1",
        "title": "מכר דירה בירושלים",
        "court": "בית הדין הרבני",
        "year": 2020,
        "full_text": HEALTHY_TEXT,
    }
    fields.update(overrides)
    return Ruling(**fields)


def _types(ruling: Ruling) -> list[tuple[str, Severity]]:
    return [(i.issue_type, i.severity) for i in check_ruling(ruling, current_year=2024).issues]


# ───── Ruling checks ─────


class TestCheckRuling:
    def test_healthy(self) -> None:
        q = check_ruling(_ruling(), current_year=2024)
        assert q.is_healthy
        assert q.score == 100

    def test_empty_text(self) -> None:
        assert _types(_ruling(full_text=None)) == [("empty", Severity.ERROR)]

    def test_summary_used_without_full_text(self) -> None:
        assert _types(_ruling(full_text=None, summary=HEALTHY_TEXT)) == []

    def test_short_text_levels(self) -> None:
        ten = " ".join(f"מילה{i}" for i in range(10))
        thirty = " ".join(f"מילה{i}" for i in range(30))
        assert _types(_ruling(full_text=ten)) == [("short", Severity.ERROR)]
        assert _types(_ruling(full_text=thirty)) == [("short", Severity.WARNING)]

    def test_low_hebrew(self) -> None:
        english = " ".join(f"word{i}" for i in range(60))
        assert _types(_ruling(full_text=english)) == [("low_hebrew", Severity.WARNING)]

    def test_ocr_run(self) -> None:
        text = HEALTHY_TEXT + " אאאאאאאאאא"
        assert ("ocr_error", Severity.WARNING) in _types(_ruling(full_text=text))

    def test_suspicious_chars(self) -> None:
        text = HEALTHY_TEXT + " ???"
        assert _types(_ruling(full_text=text)) == [("suspicious_chars", Severity.INFO)]

    def test_repetition(self) -> None:
        sentence = "זהו משפט ארוך מספיק כדי שייספר כחזרה"
        text = ". ".join([sentence] * 3) + ". " + HEALTHY_TEXT
        assert ("repetitive", Severity.WARNING) in _types(_ruling(full_text=text))

    def test_metadata(self) -> None:
        issues = _types(_ruling(title="פ", court="", year=None))
        assert issues == [
            ("missing_metadata", Severity.WARNING),
            ("missing_metadata", Severity.INFO),
            ("missing_metadata", Severity.WARNING),
        ]

    def test_year_bounds(self) -> None:
        assert _types(_ruling(year=1850)) == [("missing_metadata", Severity.WARNING)]
        assert _types(_ruling(year=2025)) == []
        assert _types(_ruling(year=2026)) == [("missing_metadata", Severity.WARNING)]


def test_quality_score_clamped() -> None:
    error = QualityIssue("empty", Severity.ERROR, "")
    assert quality_score([]) == 100
    assert quality_score([error, QualityIssue("x", Severity.INFO, "")]) == 65
    assert quality_score([error] * 5) == 0


# ───── Duplicates ─────


class TestDuplicates:
    def test_hash_group_original_is_earliest(self) -> None:
        rulings = [
            _ruling(id="r2", content_hash="h1", created_at="2024-02-01"),
            _ruling(id="r1", content_hash="h1", created_at="2024-01-01", title="כותרת אחרת"),
            _ruling(id="r3", content_hash="h2"),
        ]
        groups = find_duplicate_rulings(rulings)
        assert len(groups) == 1
        g = groups[0]
        assert (g.kind, g.similarity) == ("hash", 100)
        assert g.original_id == "r1"
        assert g.duplicate_ids == ("r2",)

    def test_title_group(self) -> None:
        rulings = [
            _ruling(id="r4", title="פסק דין בעניין שכירות"),
            _ruling(id="r5", title="  פסק  דין בעניין שכירות "),
            _ruling(id="r6", title="קצר"),
            _ruling(id="r7", title="קצר"),
        ]
        groups = find_duplicate_rulings(rulings)
        assert [g.to_dict() for g in groups] == [{
            "type": "title",
            "key": "פסק דין בעניין שכירות",
            "similarity": 95,
            "original_id": "r4",
            "duplicate_ids": ["r5"],
        }]

    def test_title_group_skipped_when_hash_matched(self) -> None:
        rulings = [
            _ruling(id="r1", content_hash="h1"),
            _ruling(id="r2", content_hash="h1"),
            _ruling(id="r3"),
        ]
        groups = find_duplicate_rulings(rulings)
        assert [g.kind for g in groups] == ["hash"]


def test_corpus_statistics() -> None:
    stats = corpus_statistics([
        _ruling(id="r1", tags=("מכר", "דירה"), year=1998),
        _ruling(id="r2", tags=("מכר",), court="בית דין אחר", year=2021, full_text=None),
    ])
    assert stats["total_rulings"] == 2
    assert stats["with_full_text"] == 1
    assert stats["top_tags"][0] == {"name": "מכר", "count": 2}
    assert stats["year_range"] == {"min": 1998, "max": 2021}
    assert corpus_statistics([])["year_range"] is None


# ───── Export report ─────


def _merge_result():
    def cand(source: EvidenceSource, explanation: str) -> LinkCandidate:
        return LinkCandidate(
            ruling_id="r1",
            location=CATALOG.location("Bava_Batra", 2, "a"),
            explanation=explanation,
            relevance_score=8.0,
            evidence_source=source,
        )

    return merge_evidence(EvidenceSet(
        static=(cand(EvidenceSource.STATIC_SNAPSHOT, "snapshot"),),
        pattern=(cand(EvidenceSource.PATTERN_MATCH, "regex"),),
        warnings=("snapshot: no ruling with legacy id 99",),
    ))


def test_export_report_structure() -> None:
    rulings = [_ruling(), _ruling(id="r2", full_text=None, title="")]
    report = build_export_report(
        _merge_result(), rulings, current_year=2024, timestamp="2024-06-01T00:00:00+00:00",
    )
    assert set(report) == {"timestamp", "stats", "duplicates_summary", "issues_summary"}
    assert report["timestamp"] == "2024-06-01T00:00:00+00:00"
    assert report["stats"]["links"]["total_links"] == 1
    assert report["stats"]["quality"]["total"] == 2
    assert report["stats"]["quality"]["healthy"] == 1
    assert report["stats"]["quality"]["average_quality_score"] == 77.5

    link_dupes = report["duplicates_summary"]["link_duplicates"]
    assert link_dupes["count"] == 1
    assert link_dupes["by_source_pair"] == {"static_snapshot>pattern_match": 1}
    assert link_dupes["records"][0]["discarded_explanation"] == "regex"

    issues = report["issues_summary"]
    assert issues["by_type"] == {"empty": 1, "missing_metadata": 1}
    assert issues["source_warnings"] == ["snapshot: no ruling with legacy id 99"]
    assert [r["ruling_id"] for r in issues["rulings"]] == ["r2"]
    assert issues["parse_issues"] == 0


def test_write_export_report(tmp_path: Path) -> None:
    report = build_export_report(_merge_result(), [_ruling()], current_year=2024)
    path = write_export_report(report, tmp_path / "out" / "report.json")
    assert orjson.loads(path.read_bytes())["stats"]["quality"]["healthy"] == 1
