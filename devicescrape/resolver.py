"""Slug resolution: free-text device name to comparison-site identifiers.

Resolution runs cheapest first. The catalogue is asked for devices that
already exist (no network), then the site's autocomplete endpoint is queried.
Autocomplete caps its result list, so a saturated answer is replaced by the
filtered device listing.
"""

import base64
import binascii
import json
import logging
from typing import Callable, List, Optional, Sequence
from urllib.parse import quote

import requests  # type: ignore[import-untyped]
from bs4 import BeautifulSoup

from devicescrape.config import (
    AUTOCOMPLETE_SATURATION,
    AUTOCOMPLETE_URL,
    LISTING_URL,
    SLUG_PICK_MAX_TOKENS,
    SLUG_PICK_TEMPERATURE,
)
from devicescrape.errors import AmbiguousMatchError, ResolutionError
from devicescrape.llm import CompletionClient, CompletionError
from devicescrape.logging_config import get_logger, log_scrape_event
from devicescrape.models import AutocompleteOption, DeviceSummary, Resolution
from devicescrape.scraper import fetch_html

__all__ = [
    "SlugResolver",
    "parse_autocomplete",
    "parse_listing",
    "slug_from_href",
    "auto_select",
    "pick_slug",
]

logger = get_logger("resolver")

SLUG_PICK_SYSTEM_PROMPT = (
    "You are a helpful assistant that picks the best matching device name from a list."
)


def _json_body(text: str) -> Optional[dict]:
    """Parse the JSON object inside a response that may carry a wrapper."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or start >= end:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_autocomplete(text: str) -> List[AutocompleteOption]:
    data = _json_body(text)
    if not data:
        return []
    options = []
    for result in data.get("results") or []:
        name = result.get("full_name")
        slug = result.get("url")
        if name and slug:
            options.append(AutocompleteOption(name=name, slug=slug))
    return options


def slug_from_href(href: str) -> str:
    """Last path segment of a device link, without 'where-to-buy-' or anchor."""
    if not href:
        return ""
    segment = href.rstrip("/").split("/")[-1]
    return segment.replace("where-to-buy-", "").split("#")[0]


def parse_listing(text: str) -> List[AutocompleteOption]:
    """Read device entries from a listing XHR response, de-duplicated by slug."""
    data = _json_body(text)
    content = (data or {}).get("content") or ""
    if "<" not in content:
        return []

    soup = BeautifulSoup(content, "html.parser")
    options: List[AutocompleteOption] = []
    seen = set()
    for item in soup.select(".item.smartphone"):
        title = item.select_one(".device-name .title")
        name = title.get_text().strip() if title else ""

        encoded_el = item.select_one("[data-kdecode]")
        encoded = encoded_el.get("data-kdecode") if encoded_el else None
        href = ""
        if isinstance(encoded, str) and encoded:
            try:
                href = base64.b64decode(encoded).decode("utf-8", errors="replace")
            except (binascii.Error, ValueError):
                href = ""

        slug = slug_from_href(href)
        if not name or not slug or slug in seen:
            continue
        seen.add(slug)
        options.append(AutocompleteOption(name=name, slug=slug))
    return options


def auto_select(options: Sequence[AutocompleteOption]) -> Optional[str]:
    """The only option's slug, or None when a choice is needed."""
    if len(options) == 1:
        return options[0].slug
    return None


def pick_slug(name: str, options: Sequence[AutocompleteOption], client: CompletionClient) -> str:
    """Ask the model to choose one slug from the options.

    Raises:
        ResolutionError: If there are no options or the completion fails
        AmbiguousMatchError: If the reply is not one of the offered slugs
    """
    if not options:
        raise ResolutionError(f"No candidates found for '{name}'")
    if len(options) == 1:
        return options[0].slug

    option_list = "\n".join(
        f"Option {i}: Name=`{opt.name}`, Slug=`{opt.slug}`" for i, opt in enumerate(options, 1)
    )
    prompt = (
        f"Given the input name: `{name}` and the following options:\n"
        f"```\n{option_list}\n```\n"
        "Pick the single option that best matches the input name. "
        "Reply with just the slug of the chosen option."
    )

    try:
        reply = client.complete(
            prompt,
            system=SLUG_PICK_SYSTEM_PROMPT,
            temperature=SLUG_PICK_TEMPERATURE,
            max_tokens=SLUG_PICK_MAX_TOKENS,
        )
    except CompletionError as e:
        raise ResolutionError(f"Slug pick failed for '{name}': {e}") from e

    slug = reply.strip()
    allowed = {opt.slug for opt in options}
    if slug not in allowed:
        log_scrape_event(
            "slug_pick_rejected",
            {"message": f"Model reply '{reply}' is not an offered slug", "name": name, "reply": reply},
            level=logging.WARNING,
        )
        raise AmbiguousMatchError(f"Could not pick a unique match for '{name}'", reply=reply)

    log_scrape_event("slug_picked", {"name": name, "slug": slug, "options": len(options)})
    return slug


class SlugResolver:
    """Finds catalogue matches and comparison-site candidates for a name."""

    def __init__(
        self,
        catalogue,
        session: Optional[requests.Session] = None,
        fetch: Callable[..., str] = fetch_html,
    ):
        self.catalogue = catalogue
        self.session = session
        self._fetch = fetch

    def find_existing(self, name: str, device_type: Optional[str] = None) -> List[DeviceSummary]:
        """Catalogue devices matching the name; no external calls."""
        return self.catalogue.find_existing_matches(name, device_type)

    def autocomplete(self, name: str) -> List[AutocompleteOption]:
        text = self._fetch(
            AUTOCOMPLETE_URL,
            session=self.session,
            params={"device_type": "0", "name": name},
        )
        return parse_autocomplete(text)

    def search_listing(self, name: str) -> List[AutocompleteOption]:
        url = LISTING_URL.format(name=quote(name.strip()), page=1)
        text = self._fetch(url, session=self.session, params={"xhr": "1"})
        return parse_listing(text)

    def search_site(self, name: str) -> List[AutocompleteOption]:
        """Comparison-site candidates, using the listing when autocomplete saturates.

        Raises:
            ScrapeError: If the site cannot be reached
        """
        options = self.autocomplete(name)
        if len(options) >= AUTOCOMPLETE_SATURATION:
            logger.info(
                f"Autocomplete returned {len(options)} results for '{name}', using device listing"
            )
            listed = self.search_listing(name)
            if listed:
                options = listed

        log_scrape_event(
            "site_search",
            {"name": name, "options": [opt.slug for opt in options]},
        )
        return options

    def resolve(
        self,
        name: str,
        device_type: Optional[str] = None,
        include_site: bool = True,
        on_fast_matches: Optional[Callable[[List[DeviceSummary]], None]] = None,
    ) -> Resolution:
        """Fast catalogue lookup, then (optionally) the site search.

        Fast matches are handed to on_fast_matches before the site search
        starts so they can be shown while the slower search runs.
        """
        fast_matches = self.find_existing(name, device_type)
        if fast_matches and on_fast_matches is not None:
            on_fast_matches(fast_matches)

        options: List[AutocompleteOption] = []
        if include_site or not fast_matches:
            options = self.search_site(name)

        return Resolution(fast_matches=fast_matches, options=options)
