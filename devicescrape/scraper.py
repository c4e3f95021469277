"""Comparison page scraping.

One page load returns data for up to four devices. Columns on the page are
not guaranteed to follow the order of the requested slugs, and a slug the
site does not know simply has no column, so columns are attributed through
their "more info" links before any field is read.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests  # type: ignore[import-untyped]
from bs4 import BeautifulSoup

__all__ = [
    "create_session",
    "fetch_html",
    "comparison_url",
    "parse_comparison_page",
    "scrape_comparison",
]

from devicescrape.config import COMPARE_URL, HEADERS, MAX_COMPARE_SLUGS, get_request_timeout
from devicescrape.errors import ScrapeError
from devicescrape.html_utils import (
    FIELD_QUERIES,
    extract_cameras,
    extract_column_hrefs,
    extract_column_values,
    extract_scores,
    match_columns,
    value_at,
)
from devicescrape.logging_config import get_logger, log_scrape_event
from devicescrape.models import Benchmark, RawDeviceRecord
from devicescrape.parsers import parse_wattage, split_others
from devicescrape.shutdown import raise_if_shutdown_requested

# Get logger for this module
logger = get_logger("scraper")


# Module-level session for connection reuse
_session: Optional[requests.Session] = None


def create_session() -> requests.Session:
    """Create a requests Session with the browser-like default headers."""
    session = requests.Session()
    session.headers.update(HEADERS)
    session.headers.setdefault("Accept-Encoding", "gzip, deflate")
    return session


def _get_session() -> requests.Session:
    """Get or create the module-level session."""
    global _session
    if _session is None:
        _session = create_session()
    return _session


def fetch_html(
    url: str,
    session: Optional[requests.Session] = None,
    params: Optional[Dict[str, str]] = None,
) -> str:
    """Single-attempt HTTP GET.

    Retries are driven by the user through the job commands, so a failure
    here is final for the current step.

    Args:
        url: URL to fetch
        session: Optional requests.Session for connection reuse
        params: Optional query parameters

    Returns:
        Response body as string

    Raises:
        ScrapeError: On timeout, connection failure or an HTTP error status
        KeyboardInterrupt: If a graceful shutdown was requested
    """
    raise_if_shutdown_requested()

    sess = session or _get_session()
    try:
        resp = sess.get(url, params=params, timeout=get_request_timeout())
        resp.raise_for_status()
        return str(resp.text)

    except requests.exceptions.HTTPError as e:
        status_code = e.response.status_code if e.response is not None else "unknown"
        logger.error(f"HTTP error fetching {url}: {e}")
        raise ScrapeError(f"HTTP Error {status_code} while fetching {url}") from e

    except requests.exceptions.Timeout as e:
        logger.error(f"Timeout fetching {url}: {e}")
        raise ScrapeError(f"Timed out fetching {url}") from e

    except requests.exceptions.RequestException as e:
        logger.error(f"Request error fetching {url}: {e}")
        raise ScrapeError(f"Failed to fetch {url}: {e}") from e


def comparison_url(slugs: Sequence[str]) -> str:
    return COMPARE_URL.format(slugs=",".join(slugs))


def _build_record(slug: str, column: int, fields: Dict[str, List[Any]],
                  cameras: List[List[Any]], scores: List[Dict[str, str]]) -> RawDeviceRecord:
    """Populate one device from the per-field column values."""

    def at(name: str) -> Any:
        return value_at(fields.get(name, []), column)

    brand, name = at("full_name") or (None, "")
    width, height, thickness = at("size") or (None, None, None)
    cpu_manufacturer, cpu = at("cpu_model") or (None, None)
    fast_charging, fast_charge_text = at("fast_charge") or (None, "")
    os_name, os_skin = at("software") or (None, None)
    others_cell = at("others")
    nfc: Optional[bool] = None
    headphone_jack: Optional[bool] = None
    others: List[str] = []
    if others_cell is not None:
        nfc, headphone_jack, others = split_others(others_cell)

    benchmarks: List[Benchmark] = [b for b in (at("antutu"), at("dxomark")) if b is not None]

    return RawDeviceRecord(
        slug=slug,
        name=name,
        brand=brand,
        aliases=at("aliases") or [],
        release_date=at("release_date"),
        image_url=at("image_url"),
        height_mm=height,
        width_mm=width,
        thickness_mm=thickness,
        weight_g=at("weight_g"),
        materials=at("materials") or [],
        ip_rating=at("ip_rating"),
        colors=at("colors") or [],
        size_in=at("size_in"),
        display_type=at("display_type"),
        resolution=at("resolution"),
        aspect_ratio=at("aspect_ratio"),
        ppi=at("ppi"),
        display_features=at("display_features") or [],
        cpu=cpu,
        cpu_manufacturer=cpu_manufacturer,
        cpu_cores=at("cpu_cores") or [],
        gpu=at("gpu"),
        sd_slot=at("sd_slot"),
        skus=at("skus") or [],
        fingerprint_position=at("fingerprint_position"),
        benchmarks=benchmarks,
        nfc=nfc,
        bluetooth=at("bluetooth"),
        sim=at("sim") or [],
        sim_count=at("sim_count"),
        usb=at("usb"),
        headphone_jack=headphone_jack,
        battery_capacity_mah=at("battery_capacity_mah"),
        battery_fast_charging=fast_charging,
        battery_wattage=parse_wattage(fast_charge_text),
        cameras=value_at(cameras, column) or [],
        camera_features=at("camera_features") or [],
        os=os_name,
        os_skin=os_skin,
        scores=value_at(scores, column) or {},
        others=others,
    )


def parse_comparison_page(html: str, slugs: Sequence[str]) -> List[RawDeviceRecord]:
    """Parse a loaded comparison page into records for the matched slugs.

    Records come back in page column order. Slugs without a column are
    reported in a warning event and left out.
    """
    soup = BeautifulSoup(html, "html.parser")

    hrefs = extract_column_hrefs(soup)
    matched = match_columns(slugs, hrefs)

    matched_slugs = {slug for _, slug in matched}
    missing = [slug for slug in slugs if slug not in matched_slugs]
    if missing:
        log_scrape_event(
            "unmatched_slugs",
            {
                "message": f"No comparison column for: {', '.join(missing)}",
                "missing": missing,
                "requested": list(slugs),
                "hrefs": hrefs,
            },
            level=logging.WARNING,
        )

    fields = {name: extract_column_values(soup, query) for name, query in FIELD_QUERIES.items()}
    cameras = extract_cameras(soup)
    scores = extract_scores(soup)

    records = []
    for column, slug in matched:
        record = _build_record(slug, column, fields, cameras, scores)
        record.raw_html = html
        records.append(record)
    return records


def scrape_comparison(
    slugs: Sequence[str],
    session: Optional[requests.Session] = None,
) -> List[RawDeviceRecord]:
    """Scrape up to four devices from one comparison page.

    Results are not guaranteed to be ordered like the input or to cover every
    requested slug; a partial result is not an error.

    Raises:
        ScrapeError: If the page cannot be loaded
    """
    requested = list(dict.fromkeys(slugs))
    if len(requested) > MAX_COMPARE_SLUGS:
        logger.warning(
            f"Comparison holds at most {MAX_COMPARE_SLUGS} devices, "
            f"dropping: {', '.join(requested[MAX_COMPARE_SLUGS:])}"
        )
        requested = requested[:MAX_COMPARE_SLUGS]
    if not requested:
        return []

    url = comparison_url(requested)
    html = fetch_html(url, session=session)
    log_scrape_event("comparison_loaded", {"message": f"Loaded {url}", "url": url, "slugs": requested})

    records = parse_comparison_page(html, requested)
    logger.info(f"Extracted {len(records)}/{len(requested)} device(s) from {url}")
    return records
