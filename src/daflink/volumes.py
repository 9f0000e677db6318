"""Volume reference data and canonical page locations.

A ``Volume`` is one tractate with its Hebrew display name, the canonical
(transliterated) identifier and the inclusive maximum page.  Pages begin at 2.
``CanonicalLocation`` is the (volume, page, side) triple every link points at;
its ``location_id`` (``bava_batra_2a``) is the stable identifier used across
stores, snapshots and the AI rows.

The default catalog lists the 37 tractates of the Babylonian Talmud.  A JSON
file with the same fields can replace it via ``load_volume_catalog``.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from daflink.errors import ConfigurationError, ParseError
from daflink.io_utils import load_json
from daflink.numerals import format_page_side, page_to_numeral

FIRST_PAGE = 2


class Side(StrEnum):
    A = "a"
    B = "b"


_SIDE_ALIASES = {
    "a": Side.A,
    "b": Side.B,
    "א": Side.A,
    "ב": Side.B,
}


def side_from_token(token: str | None) -> Side | None:
    """Map ``a``/``b`` or the Hebrew letters ``א``/``ב`` to a ``Side``."""
    if token is None:
        return None
    return _SIDE_ALIASES.get(token.strip().lower())


@dataclass(frozen=True, slots=True)
class Volume:
    """One tractate in the catalog."""

    hebrew_name: str
    canonical_name: str
    max_page: int
    english_name: str = ""
    order_name: str = ""

    @property
    def key(self) -> str:
        return self.canonical_name.lower()

    @property
    def page_count(self) -> int:
        """Number of pages the volume spans (pages start at 2)."""
        return self.max_page - FIRST_PAGE + 1

    def contains(self, page: int) -> bool:
        return FIRST_PAGE <= page <= self.max_page


@dataclass(frozen=True, slots=True)
class CanonicalLocation:
    """A validated (volume, page, side) triple."""

    volume: Volume
    page: int
    side: Side = Side.A

    def __post_init__(self) -> None:
        if not self.volume.contains(self.page):
            raise ParseError(
                f"page {self.page} outside {self.volume.canonical_name} "
                f"range {FIRST_PAGE}..{self.volume.max_page}"
            )

    @property
    def location_id(self) -> str:
        return f"{self.volume.key}_{self.page}{self.side.value}"

    @property
    def reference(self) -> str:
        """Deep-link reference such as ``Bava_Batra.2a``."""
        return f"{self.volume.canonical_name}.{self.page}{self.side.value}"

    @property
    def label(self) -> str:
        """Hebrew display label, e.g. ``בבא בתרא ב ע״א``."""
        return f"{self.volume.hebrew_name} {format_page_side(self.page, self.side)}"

    @property
    def numeral(self) -> str:
        return page_to_numeral(self.page)

    def sort_key(self) -> tuple[str, int, str]:
        return (self.volume.key, self.page, self.side.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "location_id": self.location_id,
            "volume": self.volume.canonical_name,
            "hebrew_name": self.volume.hebrew_name,
            "page": self.page,
            "numeral": self.numeral,
            "side": self.side.value,
            "reference": self.reference,
            "label": self.label,
        }


# ---------------------------------------------------------------------------
# Default catalog
# ---------------------------------------------------------------------------

# (hebrew, canonical, max_page, english, order)
_DEFAULT_VOLUMES: tuple[tuple[str, str, int, str, str], ...] = (
    ("ברכות", "Berakhot", 64, "Berakhot", "זרעים"),
    ("שבת", "Shabbat", 157, "Shabbat", "מועד"),
    ("עירובין", "Eruvin", 105, "Eruvin", "מועד"),
    ("פסחים", "Pesachim", 121, "Pesachim", "מועד"),
    ("שקלים", "Shekalim", 22, "Shekalim", "מועד"),
    ("יומא", "Yoma", 88, "Yoma", "מועד"),
    ("סוכה", "Sukkah", 56, "Sukkah", "מועד"),
    ("ביצה", "Beitzah", 40, "Beitzah", "מועד"),
    ("ראש השנה", "Rosh_Hashanah", 35, "Rosh Hashanah", "מועד"),
    ("תענית", "Taanit", 31, "Taanit", "מועד"),
    ("מגילה", "Megillah", 32, "Megillah", "מועד"),
    ("מועד קטן", "Moed_Katan", 29, "Moed Katan", "מועד"),
    ("חגיגה", "Chagigah", 27, "Chagigah", "מועד"),
    ("יבמות", "Yevamot", 122, "Yevamot", "נשים"),
    ("כתובות", "Ketubot", 112, "Ketubot", "נשים"),
    ("נדרים", "Nedarim", 91, "Nedarim", "נשים"),
    ("נזיר", "Nazir", 66, "Nazir", "נשים"),
    ("סוטה", "Sotah", 49, "Sotah", "נשים"),
    ("גיטין", "Gittin", 90, "Gittin", "נשים"),
    ("קידושין", "Kiddushin", 82, "Kiddushin", "נשים"),
    ("בבא קמא", "Bava_Kamma", 119, "Bava Kamma", "נזיקין"),
    ("בבא מציעא", "Bava_Metzia", 119, "Bava Metzia", "נזיקין"),
    ("בבא בתרא", "Bava_Batra", 176, "Bava Batra", "נזיקין"),
    ("סנהדרין", "Sanhedrin", 113, "Sanhedrin", "נזיקין"),
    ("מכות", "Makkot", 24, "Makkot", "נזיקין"),
    ("שבועות", "Shevuot", 49, "Shevuot", "נזיקין"),
    ("עבודה זרה", "Avodah_Zarah", 76, "Avodah Zarah", "נזיקין"),
    ("הוריות", "Horayot", 14, "Horayot", "נזיקין"),
    ("זבחים", "Zevachim", 120, "Zevachim", "קדשים"),
    ("מנחות", "Menachot", 110, "Menachot", "קדשים"),
    ("חולין", "Chullin", 142, "Chullin", "קדשים"),
    ("בכורות", "Bekhorot", 61, "Bekhorot", "קדשים"),
    ("ערכין", "Arakhin", 34, "Arakhin", "קדשים"),
    ("תמורה", "Temurah", 34, "Temurah", "קדשים"),
    ("כריתות", "Keritot", 28, "Keritot", "קדשים"),
    ("מעילה", "Meilah", 22, "Meilah", "קדשים"),
    ("נידה", "Niddah", 73, "Niddah", "טהרות"),
)

# Common abbreviations that stand for a full volume name.
DEFAULT_ABBREVIATIONS: dict[str, str] = {
    'ב"ק': "Bava_Kamma",
    'ב"מ': "Bava_Metzia",
    'ב"ב': "Bava_Batra",
    'ע"ז': "Avodah_Zarah",
    'ר"ה': "Rosh_Hashanah",
    'מו"ק': "Moed_Katan",
}


class VolumeCatalog:
    """Immutable, ordered collection of volumes with name lookups."""

    def __init__(
        self,
        volumes: Iterable[Volume],
        *,
        abbreviations: dict[str, str] | None = None,
    ) -> None:
        self._volumes: tuple[Volume, ...] = tuple(volumes)
        if not self._volumes:
            raise ConfigurationError("volume catalog is empty")
        self._by_key: dict[str, Volume] = {}
        self._by_hebrew: dict[str, Volume] = {}
        self._by_english: dict[str, Volume] = {}
        for vol in self._volumes:
            if vol.key in self._by_key:
                raise ConfigurationError(f"duplicate volume {vol.canonical_name!r}")
            if vol.max_page < FIRST_PAGE:
                raise ConfigurationError(
                    f"volume {vol.canonical_name!r} has max_page {vol.max_page}"
                )
            self._by_key[vol.key] = vol
            self._by_hebrew[vol.hebrew_name] = vol
            if vol.english_name:
                self._by_english[vol.english_name.lower()] = vol
        self._order = {vol.key: i for i, vol in enumerate(self._volumes)}
        self._abbreviations: dict[str, Volume] = {}
        for abbr, name in (abbreviations or {}).items():
            target = self._by_key.get(name.lower())
            if target is not None:
                self._abbreviations[abbr] = target

    def __iter__(self) -> Iterator[Volume]:
        return iter(self._volumes)

    def __len__(self) -> int:
        return len(self._volumes)

    @property
    def volumes(self) -> tuple[Volume, ...]:
        return self._volumes

    @property
    def abbreviations(self) -> dict[str, Volume]:
        return dict(self._abbreviations)

    def order_of(self, volume: Volume) -> int:
        return self._order.get(volume.key, len(self._volumes))

    def get(self, name: str) -> Volume | None:
        """Resolve a canonical, Hebrew, English or abbreviated volume name."""
        raw = str(name or "").strip()
        if not raw:
            return None
        key = re.sub(r"[\s_]+", "_", raw).lower()
        vol = self._by_key.get(key)
        if vol is not None:
            return vol
        vol = self._by_hebrew.get(raw)
        if vol is None and raw.startswith("מסכת "):
            vol = self._by_hebrew.get(raw[len("מסכת "):].strip())
        if vol is None:
            vol = self._by_english.get(re.sub(r"[\s_]+", " ", raw).lower())
        if vol is None:
            vol = self._abbreviations.get(raw.replace("״", '"'))
        return vol

    def require(self, name: str) -> Volume:
        vol = self.get(name)
        if vol is None:
            raise ParseError(f"unknown volume {name!r}")
        return vol

    def location(self, name: str, page: int, side: Side | str | None = None) -> CanonicalLocation:
        """Build a validated location; raises ``ParseError`` when out of range."""
        vol = self.require(name)
        resolved = side_from_token(side) if isinstance(side, str) else side
        return CanonicalLocation(vol, page, resolved or Side.A)


_LOCATION_ID_RE = re.compile(r"^(?P<volume>[a-z_]+?)_(?P<page>\d+)(?P<side>[ab])?$")


def parse_location_id(location_id: str, catalog: VolumeCatalog) -> CanonicalLocation:
    """Invert ``CanonicalLocation.location_id``; a missing side means side a."""
    raw = str(location_id or "").strip().lower()
    m = _LOCATION_ID_RE.match(raw)
    if m is None:
        raise ParseError(f"malformed location id {location_id!r}")
    vol = catalog.get(m.group("volume"))
    if vol is None:
        raise ParseError(f"unknown volume in location id {location_id!r}")
    side = Side(m.group("side")) if m.group("side") else Side.A
    return CanonicalLocation(vol, int(m.group("page")), side)


def default_catalog() -> VolumeCatalog:
    """Catalog of the 37 Babylonian Talmud tractates."""
    return VolumeCatalog(
        (
            Volume(hebrew, canonical, max_page, english, order)
            for hebrew, canonical, max_page, english, order in _DEFAULT_VOLUMES
        ),
        abbreviations=DEFAULT_ABBREVIATIONS,
    )


def load_volume_catalog(path: Path) -> VolumeCatalog:
    """Load a catalog from JSON.

    Accepted payloads are a list of volume objects or an object with a
    ``volumes`` list and optional ``abbreviations`` map.  Each volume needs
    ``hebrew_name``, ``canonical_name`` and ``max_page``.
    """
    if not path.exists():
        raise ConfigurationError(f"volume catalog not found: {path}")
    try:
        payload = load_json(path)
    except ValueError as exc:
        raise ConfigurationError(f"volume catalog {path} is not valid JSON: {exc}") from exc

    abbreviations: dict[str, str] = {}
    if isinstance(payload, dict):
        rows = payload.get("volumes", [])
        raw_abbr = payload.get("abbreviations", {})
        if isinstance(raw_abbr, dict):
            abbreviations = {str(k): str(v) for k, v in raw_abbr.items()}
    else:
        rows = payload
    if not isinstance(rows, list):
        raise ConfigurationError(f"volume catalog {path} has no volume list")

    volumes: list[Volume] = []
    for row in rows:
        if not isinstance(row, dict):
            raise ConfigurationError(f"volume entry is not an object: {row!r}")
        try:
            volumes.append(
                Volume(
                    hebrew_name=str(row["hebrew_name"]),
                    canonical_name=str(row["canonical_name"]),
                    max_page=int(row["max_page"]),
                    english_name=str(row.get("english_name", "")),
                    order_name=str(row.get("order_name", "")),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid volume entry {row!r}: {exc}") from exc
    return VolumeCatalog(volumes, abbreviations=abbreviations)
