"""FastAPI server for the citation index dashboard.

Read-only JSON endpoints over the merged links: the volume/page index, page
and location drill-downs, the filtered ruling list and the export report.
Paths come from ``DAFLINK_*`` settings (see ``daflink.settings``).

Usage:
    cd dashboard
    PYTHONPATH=../src uvicorn api.server:app --reload --port 8000
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from daflink.cross_reference import CrossReferenceService
from daflink.errors import DafLinkError, ParseError
from daflink.link_types import Link, Ruling
from daflink.query_filters import parse_criteria, parse_sort_order, validate_criteria
from daflink.settings import EngineSettings, load_settings
from daflink.volumes import side_from_token
from daflink.works import TOPIC_CATEGORIES

# ---------------------------------------------------------------------------
# Globals
#
# DuckDB connections are NOT thread-safe. This server MUST run with a single
# uvicorn worker and all endpoints MUST remain async def so they execute on
# the single event loop thread.
# ---------------------------------------------------------------------------
_service: CrossReferenceService | None = None
_settings: EngineSettings | None = None


def _get_service() -> CrossReferenceService:
    """Get the cross-reference service, raising 503 if not available."""
    if _service is None:
        raise HTTPException(
            status_code=503,
            detail="Link data not available. Run import_rulings.py and build_links.py first.",
        )
    return _service


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    global _service, _settings  # noqa: PLW0603
    try:
        _settings = load_settings()
    except DafLinkError as e:
        print(f"[dashboard] Warning: invalid settings: {e}")
        _settings = EngineSettings()

    if _settings.corpus_db.exists():
        try:
            _service = CrossReferenceService.from_settings(_settings, read_only=True)
            print(f"[dashboard] Corpus loaded: {_service.source.count()} rulings")
        except DafLinkError as e:
            print(f"[dashboard] Warning: could not open link data: {e}")
            _service = None
    else:
        print(f"[dashboard] No corpus at {_settings.corpus_db}; running without data")
        _service = None

    yield
    if _service is not None:
        _service.close()
        _service = None


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Citation Index API",
    version="0.1.0",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
class HealthResponse(BaseModel):
    status: str
    corpus_loaded: bool
    ruling_count: int = 0
    link_count: int = 0


class RulingSummary(BaseModel):
    ruling_id: str
    title: str = ""
    court: str = ""
    year: int | None = None
    summary: str = ""


class LinkedRuling(BaseModel):
    ruling_id: str
    location_id: str
    reference: str
    side: str | None = None
    explanation: str
    notes: list[str] = Field(default_factory=list)
    relevance_score: float
    confidence: str
    evidence_source: str
    corroborating_sources: list[str] = Field(default_factory=list)
    ruling: RulingSummary | None = None


def _linked_ruling(link: Link, ruling: Ruling | None) -> dict[str, Any]:
    summary = None
    if ruling is not None:
        summary = RulingSummary(
            ruling_id=ruling.id,
            title=ruling.title,
            court=ruling.court,
            year=ruling.year,
            summary=ruling.summary,
        )
    return LinkedRuling(
        ruling_id=link.ruling_id,
        location_id=link.canonical_location_id,
        reference=link.location.reference,
        side=link.location.side.value if link.side_known else None,
        explanation=link.explanation,
        notes=list(link.notes),
        relevance_score=link.relevance_score,
        confidence=link.confidence.value,
        evidence_source=link.evidence_source.value,
        corroborating_sources=[s.value for s in link.corroborating_sources],
        ruling=summary,
    ).model_dump()


# ---------------------------------------------------------------------------
# Routes: Health
# ---------------------------------------------------------------------------
@app.get("/api/health")
async def health():
    if _service is None:
        return HealthResponse(status="ok", corpus_loaded=False).model_dump()
    return HealthResponse(
        status="ok",
        corpus_loaded=True,
        ruling_count=_service.source.count(),
        link_count=len(_service.links()),
    ).model_dump()


# ---------------------------------------------------------------------------
# Routes: Index
# ---------------------------------------------------------------------------
@app.get("/api/index")
async def get_index(
    order: str = Query("links", pattern="^(links|name|coverage)$"),
    include_pages: bool = Query(False),
):
    """Volumes with links, ordered by link count, catalog order or coverage."""
    service = _get_service()
    index = service.index()
    if order == "name":
        volumes = index.by_name(service.catalog)
    elif order == "coverage":
        volumes = index.by_coverage()
    else:
        volumes = list(index.volumes)
    return {
        "total_links": index.total_links,
        "volume_count": len(volumes),
        "volumes": [v.to_dict(include_pages=include_pages) for v in volumes],
    }


@app.get("/api/index/{volume}/{page}")
async def get_page(volume: str, page: int, side: str | None = Query(None)):
    """One page of one volume with every linked ruling."""
    service = _get_service()
    vol = service.catalog.get(volume)
    if vol is None:
        raise HTTPException(status_code=404, detail=f"Unknown volume: {volume}")
    if not vol.contains(page):
        raise HTTPException(
            status_code=404,
            detail=f"Page {page} outside {vol.canonical_name} (2..{vol.max_page})",
        )
    side_value = side_from_token(side) if side else None
    if side and side_value is None:
        raise HTTPException(status_code=400, detail=f"Invalid side: {side}")

    node = service.index().find_page(vol.canonical_name, page, service.catalog)
    linked = service.page(vol.canonical_name, page, side=side_value)
    return {
        "volume": vol.canonical_name,
        "hebrew_name": vol.hebrew_name,
        "page": page,
        "node": node.to_dict() if node else None,
        "count": len(linked),
        "links": [_linked_ruling(link, ruling) for link, ruling in linked],
    }


@app.get("/api/locations/{location_id}")
async def get_location(location_id: str):
    """Deep-link target: resolve ``bava_batra_2a`` style ids."""
    service = _get_service()
    try:
        loc, linked = service.location(location_id)
    except ParseError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return {
        "location": loc.to_dict(),
        "count": len(linked),
        "links": [_linked_ruling(link, ruling) for link, ruling in linked],
    }


# ---------------------------------------------------------------------------
# Routes: Rulings
# ---------------------------------------------------------------------------
@app.get("/api/rulings")
async def list_rulings(
    text: str | None = Query(None),
    category: str | None = Query(None),
    volume: str | None = Query(None),
    work: str | None = Query(None),
    confidence: str | None = Query(None),
    has_full_text: bool | None = Query(None),
    tag: str | None = Query(None),
    sort: str = Query("none"),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
):
    """Filtered, sorted, paginated ruling list."""
    service = _get_service()
    criteria, errors = parse_criteria({
        "text": text,
        "category": category,
        "volume": volume,
        "work": work,
        "confidence": confidence,
        "has_full_text": has_full_text,
        "tag": tag,
    })
    errors.extend(validate_criteria(
        criteria,
        categories=TOPIC_CATEGORIES,
        volume_exists=lambda name: service.catalog.get(name) is not None,
    ))
    order = parse_sort_order(sort)
    if order is None:
        raise HTTPException(status_code=400, detail=f"Unknown sort order: {sort}")
    if errors:
        raise HTTPException(
            status_code=400,
            detail=[{"code": e.code, "message": e.message, "field": e.field_name} for e in errors],
        )

    result = service.query(criteria, order, offset=offset, limit=limit)
    return {
        "total": result.total,
        "offset": offset,
        "limit": limit,
        "rulings": [v.to_dict() for v in result.views],
    }


# ---------------------------------------------------------------------------
# Routes: Export
# ---------------------------------------------------------------------------
@app.get("/api/export")
async def export_report():
    """Link statistics, duplicates and data-quality issues."""
    service = _get_service()
    return service.export_report()
