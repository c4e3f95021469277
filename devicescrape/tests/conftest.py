"""Shared fixtures: comparison page builder, stub model, fake site and scraper."""

import html
import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest
from pydantic import ValidationError

from devicescrape import db
from devicescrape.catalogue import SqliteCatalogue
from devicescrape.config import AUTOCOMPLETE_URL
from devicescrape.errors import ScrapeError
from devicescrape.job_manager import JobManager
from devicescrape.llm import CompletionError
from devicescrape.models import RawDeviceRecord
from devicescrape.normalizer import DataNormalizer
from devicescrape.resolver import SlugResolver


# =============================================================================
# Comparison page HTML
# =============================================================================

def _cells(columns: Sequence[Dict[str, Any]], key: str, render: Callable[[Any], str]) -> str:
    return "".join(f"<td>{render(col.get(key))}</td>" for col in columns)


def _list(items: Optional[List[str]]) -> str:
    if items is None:
        return "--"
    return "<ul>" + "".join(f"<li>{item}</li>" for item in items or []) + "</ul>"


def _camera_table(columns: Sequence[Dict[str, Any]], index: int, selfie: bool = False) -> str:
    """The index-th camera of every column; missing cameras render as '--'."""
    key = "selfies" if selfie else "cameras"
    rows: Dict[str, List[str]] = {"Camera type": [], "Resolution": [], "Aperture": [], "Sensor": []}
    for col in columns:
        cams = col.get(key) or []
        cam = cams[index] if index < len(cams) else None
        if cam is None:
            for values in rows.values():
                values.append("--")
            continue
        rows["Camera type"].append(cam[0])
        rows["Resolution"].append(cam[1])
        rows["Aperture"].append(cam[2])
        rows["Sensor"].append(cam[3])

    body = ""
    for label, values in rows.items():
        header = f"{label} <span>SELF</span>" if selfie and label == "Camera type" else label
        body += f"<tr><th>{header}</th>" + "".join(f"<td>{v}</td>" for v in values) + "</tr>"
    return f'<div class="device-comparison-table-wrap"><table>{body}</table></div>'


def build_comparison_html(columns: Sequence[Dict[str, Any]]) -> str:
    """Render a minimal comparison page with one column per dict.

    Keys: href, full_name, image, versions, release, size (w, h, t), weight,
    cpu_model, cpu, others, fast_charge, cameras and selfies as
    (type, resolution, aperture, sensor) tuples, scores ({title: value}).
    """
    intro = ""
    for col in columns:
        link = f'<a class="more" href="{col["href"]}">More</a>' if col.get("href") else ""
        # A None image or versions leaves the element out of that column
        image = col.get("image", "")
        photo = f'<img class="main-photo" src="{image}">' if image is not None else ""
        versions = col.get("versions", {})
        skus = ""
        if versions is not None:
            skus = f'<div class="versions" data-versions="{html.escape(json.dumps(versions), quote=True)}"></div>'
        intro += (
            '<div class="column">'
            f"{photo}"
            f'<div class="k-h3">{col.get("full_name", "")}</div>'
            f"{skus}{link}</div>"
        )

    def size(value: Any) -> str:
        w, h, t = value or (0, 0, 0)
        return " x ".join(
            f'<span class="kiui-units" data-unit="mm" data-value="{v}">{v}</span>' for v in (w, h, t)
        )

    design = (
        '<div class="big-wrapper"><h2>Design</h2>'
        '<div class="device-comparison-table-wrap"><table>'
        "<tr><th><h4>Design</h4></th></tr>"
        "<tr><th>Release date</th>" + _cells(columns, "release", lambda v: v or "") + "</tr>"
        "<tr><th>Size</th>" + _cells(columns, "size", size) + "</tr>"
        "<tr><th>Weight</th>" + _cells(columns, "weight", lambda v: v or "") + "</tr>"
        "</table></div></div>"
    )

    hardware = (
        '<div class="big-wrapper"><h2>Hardware</h2>'
        '<div class="device-comparison-table-wrap"><table>'
        "<tr><th><h4>Processor</h4></th></tr>"
        "<tr><th>Model</th>" + _cells(columns, "cpu_model", lambda v: v or "") + "</tr>"
        "<tr><th>CPU</th>" + _cells(columns, "cpu", lambda v: v or "") + "</tr>"
        "</table></div>"
        '<div class="device-comparison-table-wrap"><table>'
        "<tr><th><h4>Battery</h4></th></tr>"
        "<tr><th>Fast charge</th>" + _cells(columns, "fast_charge", lambda v: v or "") + "</tr>"
        "</table></div>"
        '<div class="device-comparison-table-wrap"><table>'
        "<tr><th><h4>Others</h4></th></tr>"
        "<tr><th>Others</th>" + _cells(columns, "others", _list) + "</tr>"
        "</table></div></div>"
    )

    rear_count = max((len(col.get("cameras") or []) for col in columns), default=0)
    selfie_count = max((len(col.get("selfies") or []) for col in columns), default=0)
    camera = (
        '<div class="big-wrapper"><h2>Camera</h2>'
        + "".join(_camera_table(columns, i) for i in range(rear_count))
        + "".join(_camera_table(columns, i, selfie=True) for i in range(selfie_count))
        + "</div>"
    )

    titles: List[str] = []
    for col in columns:
        for title in col.get("scores") or {}:
            if title not in titles:
                titles.append(title)
    score_rows = "".join(
        f"<tr><th>{title}</th>"
        + "".join(
            f'<td><span class="score">{(col.get("scores") or {}).get(title, "")}</span></td>'
            for col in columns
        )
        + "</tr>"
        for title in titles
    )
    scores = f'<table class="ki-score-rows"><tbody>{score_rows}</tbody></table>'

    return (
        "<html><body>"
        f'<div class="device-intro-images">{intro}</div>'
        f"{scores}{design}{hardware}{camera}"
        "</body></html>"
    )


@pytest.fixture
def comparison_html() -> Callable[[Sequence[Dict[str, Any]]], str]:
    return build_comparison_html


@pytest.fixture
def galaxy_column() -> Dict[str, Any]:
    return {
        "href": "/en/where-to-buy-samsung-galaxy-s24-ultra",
        "full_name": "Samsung Galaxy S24 Ultra",
        "image": "//cdn.kimovil.com/phones/s24u/small.jpg",
        "versions": {
            "eu": {"mkid": "EU", "devices": {"a": {"ram": 12288, "rom": 262144}}},
            "us": {"mkid": "US", "devices": {"b": {"ram": 12288, "rom": 262144},
                                             "c": {"ram": 12288, "rom": 524288}}},
        },
        "release": "January 2024, 17",
        "size": (79, 162.3, 8.6),
        "weight": "233 g",
        "cpu_model": "Qualcomm Snapdragon 8 Gen 3 (SM8650-AB)",
        "cpu": "1x 3.39 GHz Cortex-X4, 3x 3.1 GHz Cortex-A720",
        "others": ["NFC", "Headphone Jack", "FM Radio", "NFC"],
        "fast_charge": "Yes, 45W",
        "cameras": [("Standard", "200 MP", "ƒ/1.7", "ISOCELL HP2"),
                    ("Telephoto", "50 MP", "ƒ/3.4", "--")],
        "selfies": [("Standard", "12 MP", "ƒ/2.2", "--")],
        "scores": {"Ki Cost": "8.1", "Design": "9.0"},
    }


@pytest.fixture
def pixel_column() -> Dict[str, Any]:
    return {
        "href": "/en/where-to-buy-google-pixel-8",
        "full_name": "Google Pixel 8",
        "image": "//cdn.kimovil.com/phones/p8/small.jpg",
        "versions": {"eu": {"mkid": "EU", "devices": {"a": {"ram": 8192, "rom": 131072}}}},
        "release": "October 2023",
        "size": (70.8, 150.5, 8.9),
        "weight": "187 g",
        "cpu_model": "Google Tensor G3",
        "cpu": "1x 2.91 GHz, 4x 2.37 GHz, 4x 1700 MHz",
        "others": ["FM Radio"],
        "fast_charge": "No",
        "cameras": [("Standard", "50 MP", "Unknown", "Samsung GN2")],
        "selfies": [("Standard", "10.5 MP", "ƒ/2.2", "--")],
        "scores": {"Ki Cost": "7.4"},
    }


# =============================================================================
# Completion stub
# =============================================================================

class StubCompletionClient:
    """CompletionClient returning queued replies; an Exception reply is raised."""

    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [])
        self.prompts: List[str] = []

    def _next(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise CompletionError("Completion returned no output")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def complete(self, prompt, *, system=None, temperature=0.0, max_tokens=None) -> str:
        return self._next(prompt).strip()

    def generate(self, prompt, schema, *, system=None, temperature=0.0, max_tokens=None):
        raw = self._next(prompt)
        try:
            return schema.model_validate_json(raw)
        except ValidationError as e:
            raise CompletionError(f"Completion failed schema validation: {e}") from e


def canonical_json(slug: str, name: str, **fields: Any) -> str:
    """A normalization reply for the given identity plus extra fields."""
    return json.dumps({"slug": slug, "name": name, **fields}, ensure_ascii=False)


@pytest.fixture
def llm() -> StubCompletionClient:
    return StubCompletionClient()


# =============================================================================
# Fake comparison site
# =============================================================================

class FakeSite:
    """Stands in for fetch_html: answers autocomplete requests by search name."""

    def __init__(self) -> None:
        self.autocomplete: Dict[str, List[Tuple[str, str]]] = {}
        self.listing: Dict[str, str] = {}
        self.requests: List[Tuple[str, Optional[Dict[str, str]]]] = []
        self.error: Optional[ScrapeError] = None

    def fetch(self, url: str, session=None, params: Optional[Dict[str, str]] = None) -> str:
        self.requests.append((url, params))
        if self.error is not None:
            raise self.error
        if url == AUTOCOMPLETE_URL:
            results = [
                {"full_name": name, "url": slug}
                for name, slug in self.autocomplete.get((params or {}).get("name", ""), [])
            ]
            return json.dumps({"results": results})
        for name, content in self.listing.items():
            if name in url:
                return json.dumps({"content": content})
        return json.dumps({"content": ""})


class FakeScraper:
    """Stands in for scrape_comparison: returns the configured records."""

    def __init__(self) -> None:
        self.records: Dict[str, RawDeviceRecord] = {}
        self.calls: List[List[str]] = []
        self.error: Optional[BaseException] = None

    def add(self, slug: str, name: str, **fields: Any) -> RawDeviceRecord:
        record = RawDeviceRecord(slug=slug, name=name, raw_html=f"<html>{slug}</html>", **fields)
        self.records[slug] = record
        return record

    def __call__(self, slugs: Sequence[str]) -> List[RawDeviceRecord]:
        self.calls.append(list(slugs))
        if self.error is not None:
            raise self.error
        return [self.records[slug] for slug in slugs if slug in self.records]


# =============================================================================
# Storage and manager
# =============================================================================

@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "devices.db")
    db.init_db(path)
    return path


@pytest.fixture
def catalogue(db_path) -> SqliteCatalogue:
    return SqliteCatalogue(db_path)


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def scraper() -> FakeScraper:
    return FakeScraper()


@pytest.fixture
def manager(db_path, catalogue, site, scraper, llm) -> JobManager:
    """Inline job manager wired to the fake site, fake scraper and stub model."""
    return JobManager(
        catalogue=catalogue,
        resolver=SlugResolver(catalogue, fetch=site.fetch),
        normalizer=DataNormalizer(llm),
        scrape=scraper,
        db_path=db_path,
        auto_pick=False,
    )


@pytest.fixture
def existing_device(db_path) -> str:
    """A catalogue device that already owns the samsung-galaxy-s24 slug."""
    return db.upsert_device(
        db_path,
        "existing-1",
        name="Galaxy S24",
        slug="samsung-galaxy-s24",
        brand="Samsung",
        device_type="smartphone",
        data={"slug": "samsung-galaxy-s24", "name": "Galaxy S24", "weight_g": 167.0},
    )


@pytest.fixture
def stub_client() -> Callable[..., StubCompletionClient]:
    """Factory for completion stubs with queued replies."""
    return StubCompletionClient


@pytest.fixture
def reply() -> Callable[..., str]:
    """Factory for normalization replies."""
    return canonical_json
