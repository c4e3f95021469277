"""HTML extraction utilities for comparison pages.

A comparison page lays devices out as columns. Every field is described by
a FieldQuery (CSS selector + cell parser) in FIELD_QUERIES; the selector
returns one element per page column in DOM order and the parser turns that
element into a value. Cameras and category scores are not one-cell-per-column
and have their own extractors.
"""

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from devicescrape.models import CameraRecord
from devicescrape.parsers import (
    get_cpu_cores,
    normalize_image_url,
    parse_antutu,
    parse_battery_capacity,
    parse_bluetooth,
    parse_display_size,
    parse_dxomark,
    parse_fingerprint_position,
    parse_ppi,
    parse_release_date,
    parse_resolution,
    parse_sim_count,
    parse_skus,
    parse_software,
    parse_usb,
    parse_weight,
    parse_yes_no,
    score_title_to_key,
    split_brand,
)

__all__ = [
    "FieldQuery",
    "FIELD_QUERIES",
    "extract_column_values",
    "extract_column_hrefs",
    "match_columns",
    "extract_cameras",
    "extract_scores",
    "build_camera",
    "transpose_cameras",
    "value_at",
]

MISSING = "--"
RESOLUTION_MP_RE = re.compile(r"\b(\d+\.?\d*)\b")


@dataclass(frozen=True)
class FieldQuery:
    """Where a field lives on the page and how to read one column of it."""

    selector: str
    parse: Callable[[Tag], Any]


# =============================================================================
# Cell readers
# =============================================================================

def cell_text(el: Tag) -> str:
    return el.get_text().strip()


def cell_lines(el: Tag) -> List[str]:
    return [line for line in el.get_text("\n", strip=True).split("\n") if line]


def list_items(el: Tag) -> List[str]:
    """Texts of the <li> children of a list cell, empties dropped."""
    items = [li.get_text().strip() for li in el.select("li")]
    return [item for item in items if item]


def split_csv(text: str) -> List[str]:
    return [part.strip() for part in re.sub(r"\s+", " ", text).split(",") if part.strip()]


def optional_text(text: str) -> Optional[str]:
    return text or None


def section_row(section: str, label: str) -> str:
    """Selector for the cells of a labelled row inside a titled section."""
    return (
        f'.device-comparison-table-wrap:has(h4:-soup-contains("{section}")) '
        f'tr:has(th:-soup-contains("{label}")) td'
    )


def row(label: str) -> str:
    return f'tr:has(th:-soup-contains("{label}")) td'


def _dimensions(el: Tag) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    """Read (width, height, thickness) from the three mm units of a size cell."""
    values: List[Optional[float]] = []
    for unit in el.select('.kiui-units[data-unit="mm"]'):
        try:
            values.append(float(unit.get("data-value") or 0) or None)
        except ValueError:
            values.append(None)
    values += [None] * (3 - len(values))
    return values[0], values[1], values[2]


def _cpu_model(el: Tag) -> Tuple[Optional[str], Optional[str]]:
    """Split a CPU model cell into (manufacturer, model)."""
    text = cell_text(el)
    if not text:
        return None, None
    manufacturer, _, model = text.partition(" ")
    return manufacturer.strip() or None, model.strip() or None


def _ip_rating(el: Tag) -> Optional[str]:
    lines = cell_lines(el)
    return lines[-1] if lines else None


def _os_cell(el: Tag) -> Tuple[Optional[str], Optional[str]]:
    li = el.select_one("li")
    if li is None:
        return None, None
    # Only the leading text node; nested tags hold version notes
    first = next(iter(li.contents), None)
    text = first.get_text() if isinstance(first, Tag) else str(first or "")
    return parse_software(text.strip())


def _colors(el: Tag) -> List[str]:
    return [c.get_text().strip() for c in el.select(".color-sep") if c.get_text().strip()]


def _image(el: Tag) -> Optional[str]:
    src = el.get("src")
    return normalize_image_url(src if isinstance(src, str) else None)


def _skus(el: Tag) -> Any:
    data = el.get("data-versions")
    return parse_skus(data if isinstance(data, str) else None)


def _fast_charge(el: Tag) -> Tuple[Optional[bool], str]:
    text = cell_text(el)
    return parse_yes_no(text), text


# =============================================================================
# Field table
# =============================================================================

def intro(child: str, parse: Callable[[Tag], Any]) -> Callable[[Tag], Any]:
    """Read one child of an intro column; a column without it yields None."""

    def read(column: Tag) -> Any:
        el = column.select_one(child)
        return parse(el) if el is not None else None

    return read


# Every selector matches one element per page column, even when its content is empty
INTRO_COLUMN = ".device-intro-images :has(> .k-h3)"

FIELD_QUERIES: Dict[str, FieldQuery] = {
    "image_url": FieldQuery(INTRO_COLUMN, intro(".main-photo", _image)),
    "full_name": FieldQuery(INTRO_COLUMN, intro(".k-h3", lambda el: split_brand(cell_text(el)))),
    "skus": FieldQuery(INTRO_COLUMN, intro("[data-versions]", _skus)),
    "aliases": FieldQuery(row("Aliases"), lambda el: split_csv(cell_text(el))),
    "release_date": FieldQuery(row("Release date"), lambda el: parse_release_date(cell_text(el))),
    "size": FieldQuery(row("Size"), _dimensions),
    "weight_g": FieldQuery(row("Weight"), lambda el: parse_weight(cell_text(el))),
    "materials": FieldQuery(row("Materials"), lambda el: split_csv(cell_text(el))),
    "ip_rating": FieldQuery(row("Resistance"), _ip_rating),
    "colors": FieldQuery(row("Colors"), _colors),
    "aspect_ratio": FieldQuery(row("Aspect Ratio"), lambda el: optional_text(cell_text(el))),
    "size_in": FieldQuery(row("Diagonal"), lambda el: parse_display_size(cell_text(el))),
    "display_type": FieldQuery(
        'table:has(h4:-soup-contains("Screen")) tr:has(th:-soup-contains("Type")) td',
        lambda el: optional_text(cell_text(el)),
    ),
    "resolution": FieldQuery(row("Resolution"), lambda el: parse_resolution(cell_text(el))),
    "ppi": FieldQuery(row("Density"), lambda el: parse_ppi(cell_text(el))),
    "display_features": FieldQuery(
        '.device-comparison-table-wrap:has(h4:-soup-contains("Screen")) '
        '+ .device-comparison-table-wrap:has(h4:-soup-contains("Others")) '
        '.f-tr:has(.f-th:-soup-contains("Others")) :is(td, .f-td):not(.f-th)',
        list_items,
    ),
    "cpu_model": FieldQuery(section_row("Processor", "Model"), _cpu_model),
    "cpu_cores": FieldQuery(section_row("Processor", "CPU"), lambda el: get_cpu_cores(cell_text(el))),
    "gpu": FieldQuery(row("GPU"), lambda el: optional_text(cell_text(el))),
    "sd_slot": FieldQuery(row("SD Slot"), lambda el: parse_yes_no(cell_text(el))),
    "fingerprint_position": FieldQuery(
        row("Fingerprint"), lambda el: parse_fingerprint_position(cell_text(el))
    ),
    "antutu": FieldQuery(
        'tr:has(.f-th:-soup-contains("AnTuTu")) td:not(:first-child)',
        lambda el: parse_antutu("\n".join(cell_lines(el))),
    ),
    "dxomark": FieldQuery(row("DxOMark"), lambda el: parse_dxomark(cell_text(el))),
    "bluetooth": FieldQuery(
        section_row("Bluetooth", "Version"), lambda el: parse_bluetooth(cell_text(el))
    ),
    "usb": FieldQuery(section_row("USB", "USB"), lambda el: parse_usb(list_items(el))),
    "sim_count": FieldQuery(
        section_row("SIM card", "Dual SIM"), lambda el: parse_sim_count(cell_text(el))
    ),
    "sim": FieldQuery(section_row("SIM card", "Type"), list_items),
    "battery_capacity_mah": FieldQuery(
        'tr:has(.f-th:-soup-contains("Battery")) td:not(:first-child)',
        lambda el: parse_battery_capacity(cell_text(el)),
    ),
    "fast_charge": FieldQuery(section_row("Battery", "Fast charge"), _fast_charge),
    "software": FieldQuery(row("Operating System"), _os_cell),
    "others": FieldQuery(section_row("Others", "Others"), list_items),
    "camera_features": FieldQuery(
        '.big-wrapper:has(> h2:-soup-contains("Camera")) '
        '.device-comparison-table-wrap:has(h4:-soup-contains("Features")) '
        'tr:has(th:-soup-contains("Others")) td',
        list_items,
    ),
}


def extract_column_values(soup: BeautifulSoup, query: FieldQuery) -> List[Any]:
    """Run one field query; returns one parsed value per page column.

    Extraction fails soft: a cell the parser cannot read yields None.
    """
    values: List[Any] = []
    for el in soup.select(query.selector):
        try:
            values.append(query.parse(el))
        except (ValueError, TypeError, AttributeError, KeyError):
            values.append(None)
    return values


def value_at(values: Sequence[Any], index: int) -> Any:
    """values[index], or None when the column has no entry."""
    return values[index] if 0 <= index < len(values) else None


# =============================================================================
# Column identification
# =============================================================================

def _decode_kdecode(value: str) -> str:
    try:
        return base64.b64decode(value).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def extract_column_hrefs(soup: BeautifulSoup) -> List[str]:
    """Link targets of each column's 'more info' link, in column order.

    The link carries either a plain href or a base64 data-kdecode attribute.
    """
    hrefs: List[str] = []
    for el in soup.select(".device-intro-images .more"):
        href = el.get("href")
        if not isinstance(href, str) or not href:
            encoded = el.get("data-kdecode")
            href = _decode_kdecode(encoded) if isinstance(encoded, str) else ""
        if href:
            hrefs.append(href)
    return hrefs


def match_columns(slugs: Sequence[str], hrefs: Sequence[str]) -> List[Tuple[int, str]]:
    """Attribute page columns to requested slugs.

    Slugs are tried longest first so that 'galaxy-s24' cannot claim the column
    of 'galaxy-s24-ultra'. Each slug consumes the first unconsumed href that
    contains it. Returns (column index, slug) pairs in column order; slugs
    without a column are left out.
    """
    unconsumed = list(range(len(hrefs)))
    matched: List[Tuple[int, str]] = []

    for slug in sorted(slugs, key=len, reverse=True):
        for position, column in enumerate(unconsumed):
            if slug in hrefs[column]:
                matched.append((column, slug))
                del unconsumed[position]
                break

    return sorted(matched)


# =============================================================================
# Cameras and scores
# =============================================================================

def build_camera(data: Dict[str, str]) -> Optional[CameraRecord]:
    """Build a camera from one accumulator; None without a resolution."""
    match = RESOLUTION_MP_RE.search(data.get("Resolution", ""))
    if not match:
        return None

    aperture: Optional[str] = data.get("Aperture", "").replace("ƒ/", "").strip() or None
    if aperture == "Unknown":
        aperture = None

    sensor: Optional[str] = data.get("Sensor")
    if sensor == MISSING:
        sensor = None

    return CameraRecord(
        resolution_mp=float(match.group(1)),
        aperture_fstop=aperture,
        sensor=sensor,
        type=data.get("Camera type", ""),
    )


def _read_camera_table(table: Tag) -> List[Optional[CameraRecord]]:
    """One camera table holds the n-th camera of every device.

    Rows are attributes and columns are devices. Returns one slot per column.
    """
    slots: List[Optional[Dict[str, str]]] = []

    # Tables use either tr/th/td or .f-tr/.f-th/.f-td markup
    for tr in table.select("tr:not(.k-sep), .f-tr"):
        header_el = tr.select_one("th, .f-th")
        if header_el is None:
            continue
        header = re.sub(r"\d+", "", header_el.get_text()).strip()
        if not header:
            continue

        values = [cell_text(td) for td in tr.select("td, .f-td")]
        if "SELF" in header:
            values = ["Selfie"] * len(values)
        key = header.replace("SELF", "").strip()

        for column, value in enumerate(values):
            if column >= len(slots):
                if key == "Camera type" and value == MISSING:
                    slots.append(None)
                    continue
                slots.append({})
            slot = slots[column]
            if slot is not None:
                slot[key] = value

    return [build_camera(slot) if slot is not None else None for slot in slots]


def transpose_cameras(tables: List[List[Optional[CameraRecord]]]) -> List[List[CameraRecord]]:
    """Turn per-table camera slots into per-device camera lists.

    Empty slots are dropped; slot order is kept.
    """
    columns = max((len(slots) for slots in tables), default=0)
    return [
        [slots[column] for slots in tables if column < len(slots) and slots[column] is not None]
        for column in range(columns)
    ]


def extract_cameras(soup: BeautifulSoup) -> List[List[CameraRecord]]:
    """Per-column camera lists: rear cameras first, then front cameras."""
    rear: List[List[Optional[CameraRecord]]] = []
    front: List[List[Optional[CameraRecord]]] = []

    wraps = soup.select(
        '.big-wrapper:has(> h2:-soup-contains("Camera")) '
        '.device-comparison-table-wrap:-soup-contains("Camera type")'
    )
    for wrap in wraps:
        slots = _read_camera_table(wrap)
        if "SELF" in wrap.get_text():
            for camera in slots:
                if camera is not None:
                    camera.type = "Selfie"
            front.append(slots)
        else:
            rear.append(slots)

    rear_by_device = transpose_cameras(rear)
    front_by_device = transpose_cameras(front)
    columns = max(len(rear_by_device), len(front_by_device))
    return [
        (value_at(rear_by_device, column) or []) + (value_at(front_by_device, column) or [])
        for column in range(columns)
    ]


def extract_scores(soup: BeautifulSoup) -> List[Dict[str, str]]:
    """Per-column category scores keyed by ki/design/performance/..."""
    scores: List[Dict[str, str]] = []
    for tr in soup.select(".ki-score-rows tbody tr"):
        th = tr.select_one("th")
        key = score_title_to_key(th.get_text() if th else "")
        if not key:
            continue
        for column, score in enumerate(tr.select(".score")):
            while len(scores) <= column:
                scores.append({})
            scores[column][key] = score.get_text().strip()
    return scores
