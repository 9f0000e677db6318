"""Hierarchical index: volume -> page -> side, built from merged links.

Only volumes with at least one link appear.  Heat levels classify a page by
its link count (hot >= 10, medium 3–9, light 1–2).  Coverage is the share of
the volume's pages (2..max_page) that carry any link, rounded half-up to a
whole percent.
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from typing import Any

from daflink.link_types import Link, Ruling
from daflink.numerals import format_numeral, page_to_numeral
from daflink.volumes import CanonicalLocation, Side, Volume, VolumeCatalog

HOT_THRESHOLD = 10
MEDIUM_THRESHOLD = 3


class Heat(StrEnum):
    HOT = "hot"
    MEDIUM = "medium"
    LIGHT = "light"
    NONE = "none"


def classify_heat(count: int) -> Heat:
    if count >= HOT_THRESHOLD:
        return Heat.HOT
    if count >= MEDIUM_THRESHOLD:
        return Heat.MEDIUM
    if count >= 1:
        return Heat.LIGHT
    return Heat.NONE


def coverage_percent(pages_with_links: int, max_page: int) -> int:
    """``round_half_up(pages_with_links / (max_page - 1) * 100)``."""
    span = max_page - 1
    if span <= 0:
        return 0
    ratio = Decimal(pages_with_links) / Decimal(span) * 100
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SideNode:
    side: Side
    count: int
    ruling_ids: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"side": self.side.value, "count": self.count, "ruling_ids": list(self.ruling_ids)}


@dataclass(frozen=True, slots=True)
class PageNode:
    volume: Volume
    page: int
    count: int
    ruling_ids: tuple[str, ...]
    sides: tuple[SideNode, ...]

    @property
    def numeral(self) -> str:
        return page_to_numeral(self.page)

    @property
    def label(self) -> str:
        return format_numeral(self.page)

    @property
    def location_id(self) -> str:
        return CanonicalLocation(self.volume, self.page, Side.A).location_id

    @property
    def heat(self) -> Heat:
        return classify_heat(self.count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "numeral": self.numeral,
            "label": self.label,
            "location_id": self.location_id,
            "count": self.count,
            "heat": self.heat.value,
            "ruling_ids": list(self.ruling_ids),
            "sides": [s.to_dict() for s in self.sides],
        }


@dataclass(frozen=True, slots=True)
class VolumeNode:
    volume: Volume
    pages: tuple[PageNode, ...]
    total_link_count: int
    total_ruling_count: int

    @property
    def pages_with_links(self) -> int:
        return len(self.pages)

    @property
    def coverage_percent(self) -> int:
        return coverage_percent(self.pages_with_links, self.volume.max_page)

    def find_page(self, page: int) -> PageNode | None:
        for node in self.pages:
            if node.page == page:
                return node
        return None

    def to_dict(self, *, include_pages: bool = True) -> dict[str, Any]:
        out: dict[str, Any] = {
            "volume": self.volume.canonical_name,
            "hebrew_name": self.volume.hebrew_name,
            "order_name": self.volume.order_name,
            "max_page": self.volume.max_page,
            "total_link_count": self.total_link_count,
            "total_ruling_count": self.total_ruling_count,
            "pages_with_links": self.pages_with_links,
            "coverage_percent": self.coverage_percent,
        }
        if include_pages:
            out["pages"] = [p.to_dict() for p in self.pages]
        return out


@dataclass(frozen=True, slots=True)
class LinkIndex:
    volumes: tuple[VolumeNode, ...]

    @property
    def total_links(self) -> int:
        return sum(v.total_link_count for v in self.volumes)

    def find_volume(self, name: str, catalog: VolumeCatalog) -> VolumeNode | None:
        vol = catalog.get(name)
        if vol is None:
            return None
        for node in self.volumes:
            if node.volume.key == vol.key:
                return node
        return None

    def find_page(self, name: str, page: int, catalog: VolumeCatalog) -> PageNode | None:
        node = self.find_volume(name, catalog)
        return node.find_page(page) if node else None

    def by_name(self, catalog: VolumeCatalog) -> list[VolumeNode]:
        """Volumes in catalog order."""
        return sorted(self.volumes, key=lambda v: catalog.order_of(v.volume))

    def by_coverage(self) -> list[VolumeNode]:
        return sorted(self.volumes, key=lambda v: -v.coverage_percent)

    def to_dict(self, *, include_pages: bool = True) -> dict[str, Any]:
        return {
            "total_links": self.total_links,
            "volume_count": len(self.volumes),
            "volumes": [v.to_dict(include_pages=include_pages) for v in self.volumes],
        }


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------

def _distinct(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(sorted(set(values)))


def build_index(links: Iterable[Link], catalog: VolumeCatalog) -> LinkIndex:
    """Group links by volume and page; volumes ordered by link count, descending.

    Ties keep catalog order.  Only sides recorded by a link appear as side
    nodes; a link without a known side counts for its page only.
    """
    grouped: dict[str, dict[int, list[Link]]] = defaultdict(lambda: defaultdict(list))
    volumes: dict[str, Volume] = {}
    for link in links:
        vol = link.location.volume
        volumes[vol.key] = vol
        grouped[vol.key][link.location.page].append(link)

    nodes: list[VolumeNode] = []
    for key, pages in grouped.items():
        page_nodes: list[PageNode] = []
        for page in sorted(pages):
            page_links = pages[page]
            sides: list[SideNode] = []
            for side in Side:
                on_side = [lk for lk in page_links if lk.side_known and lk.location.side == side]
                if on_side:
                    sides.append(
                        SideNode(side, len(on_side), _distinct(lk.ruling_id for lk in on_side))
                    )
            page_nodes.append(
                PageNode(
                    volume=volumes[key],
                    page=page,
                    count=len(page_links),
                    ruling_ids=_distinct(lk.ruling_id for lk in page_links),
                    sides=tuple(sides),
                )
            )
        all_links = [lk for page_links in pages.values() for lk in page_links]
        nodes.append(
            VolumeNode(
                volume=volumes[key],
                pages=tuple(page_nodes),
                total_link_count=len(all_links),
                total_ruling_count=len({lk.ruling_id for lk in all_links}),
            )
        )
    nodes.sort(key=lambda n: (-n.total_link_count, catalog.order_of(n.volume)))
    return LinkIndex(volumes=tuple(nodes))


def page_links(
    links: Iterable[Link],
    volume: Volume,
    page: int,
    rulings: Mapping[str, Ruling],
    *,
    side: Side | None = None,
) -> list[tuple[Link, Ruling | None]]:
    """Links on one page joined to their rulings (``None`` if not in the store).

    Ordered by relevance score, descending, then ruling id.
    """
    selected = [
        lk for lk in links
        if lk.location.volume.key == volume.key
        and lk.location.page == page
        and (side is None or (lk.side_known and lk.location.side == side))
    ]
    selected.sort(key=lambda lk: (-lk.relevance_score, lk.ruling_id, lk.location.side.value))
    return [(lk, rulings.get(lk.ruling_id)) for lk in selected]
