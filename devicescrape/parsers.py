"""Text parsers for values read from comparison pages.

Every parser takes the trimmed text of one table cell and returns a typed
value, or None when the text does not contain one.
"""

import json
import re
from typing import Dict, List, Optional, Tuple

from devicescrape.models import Benchmark, Sku

__all__ = [
    "parse_release_date",
    "get_cpu_cores",
    "parse_software",
    "score_title_to_key",
    "split_brand",
    "parse_weight",
    "parse_display_size",
    "parse_resolution",
    "parse_ppi",
    "parse_yes_no",
    "parse_fingerprint_position",
    "parse_bluetooth",
    "parse_usb",
    "parse_sim_count",
    "parse_battery_capacity",
    "parse_wattage",
    "parse_antutu",
    "parse_dxomark",
    "parse_skus",
    "split_others",
    "normalize_image_url",
]

MONTHS = {
    "january": 1, "february": 2, "march": 3, "april": 4,
    "may": 5, "june": 6, "july": 7, "august": 8,
    "september": 9, "october": 10, "november": 11, "december": 12,
}

# "8x 2.2 GHz", "1x3200MHz"
CPU_CORE_RE = re.compile(r"(?:(\d) ?x).*?(?:(\d{4,}) ?mhz|([\d.,]{3,}) ?ghz)", re.IGNORECASE)
RELEASE_DATE_RE = re.compile(r"([a-z]+)\s+(\d{4})", re.IGNORECASE)
SKIN_OS_RE = re.compile(r"(.+)\s*\((.+)\)")
OS_RE = re.compile(r"(?:iOS|Android)\s+\d+[.,]?\d*")
WEIGHT_RE = re.compile(r"([\d.]+)\s*g")
DISPLAY_SIZE_RE = re.compile(r'([\d.]+)"')
RESOLUTION_RE = re.compile(r"(\d+\s*x\s*\d+)", re.IGNORECASE)
PPI_RE = re.compile(r"(\d+)\s*Pixels per inch", re.IGNORECASE)
BLUETOOTH_RE = re.compile(r"Bluetooth\s([\d.]+)", re.IGNORECASE)
WATTAGE_RE = re.compile(r"(\d*(?:\.\d+)?)w", re.IGNORECASE)
LEADING_INT_RE = re.compile(r"^\s*(\d+)")


def _to_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_release_date(text: Optional[str]) -> Optional[str]:
    """Parse 'March 2024' (optionally followed by ', day') to '2024-03-01'."""
    if not text:
        return None
    match = RELEASE_DATE_RE.search(text.split(",")[0].strip().lower())
    if not match:
        return None
    month = MONTHS.get(match.group(1))
    if month is None:
        return None
    return f"{int(match.group(2)):04d}-{month:02d}-01"


def get_cpu_cores(text: Optional[str]) -> List[str]:
    """Parse a core cluster description into '<count>x<MHz>' strings.

    Example: '1x 3.2 GHz Cortex-X4, 3x 2.6 GHz' -> ['1x3200', '3x2600']
    """
    if not text:
        return []

    result: List[str] = []
    for part in re.split(r" ?[,+] ?", text):
        trimmed = part.replace(" ", "", 1).lower()
        if not trimmed:
            continue
        match = CPU_CORE_RE.search(trimmed)
        if not match:
            continue
        count = int(match.group(1) or "1")
        if match.group(2):
            frequency = float(match.group(2))
        else:
            frequency = float(match.group(3).replace(",", "."))
        if "ghz" in trimmed:
            frequency *= 1000
        result.append(f"{count}x{frequency:g}")
    return result


def parse_software(text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split an OS cell into (os, os_skin)."""
    if not text:
        return None, None

    # Parenthesised form means "skin (OS)"
    match = SKIN_OS_RE.search(text)
    if match:
        return match.group(2).strip(), match.group(1).strip()

    match = OS_RE.search(text)
    if match:
        return match.group(0), None

    return text.strip(), None


def score_title_to_key(title: str) -> str:
    clean = title.strip().lower()
    for prefix, key in (
        ("ki cost", "ki"),
        ("design", "design"),
        ("performance", "performance"),
        ("camera", "camera"),
        ("connectivity", "connectivity"),
        ("battery", "battery"),
    ):
        if clean.startswith(prefix):
            return key
    return ""


def split_brand(full_name: str) -> Tuple[Optional[str], str]:
    """The first word of a comparison column title is the brand."""
    parts = full_name.split()
    if not parts:
        return None, ""
    return parts[0], " ".join(parts[1:])


def parse_weight(text: str) -> Optional[float]:
    match = WEIGHT_RE.search(text or "")
    return _to_float(match.group(1)) if match else None


def parse_display_size(text: str) -> Optional[float]:
    match = DISPLAY_SIZE_RE.search(text or "")
    return _to_float(match.group(1)) if match else None


def parse_resolution(text: str) -> Optional[str]:
    match = RESOLUTION_RE.search(text or "")
    return match.group(1) if match else None


def parse_ppi(text: str) -> Optional[int]:
    match = PPI_RE.search(text or "")
    return int(match.group(1)) if match else None


def parse_yes_no(text: str) -> Optional[bool]:
    if not text:
        return None
    if "Yes" in text:
        return True
    if "No" in text:
        return False
    return None


def parse_fingerprint_position(text: str) -> Optional[str]:
    for position in ("screen", "side", "back"):
        if position in (text or ""):
            return position
    return None


def parse_bluetooth(text: str) -> Optional[str]:
    match = BLUETOOTH_RE.search(text or "")
    return f"Bluetooth {match.group(1)}" if match else None


def parse_usb(features: List[str]) -> Optional[str]:
    """Map the USB feature list of one column to a connector type."""
    joined = " ".join(features)
    if "Proprietary" in joined:
        return "Lightning"
    if "USB Type C" in joined:
        return "USB-C"
    return "USB-A"


def parse_sim_count(text: str) -> int:
    return 1 if "Single SIM" in (text or "") else 2


def parse_battery_capacity(text: str) -> Optional[int]:
    match = LEADING_INT_RE.match(text or "")
    return int(match.group(1)) if match else None


def parse_wattage(text: str) -> Optional[float]:
    # The pattern also matches an empty string before a bare "w"
    for match in WATTAGE_RE.finditer((text or "").lower()):
        value = _to_float(match.group(1))
        if value is not None:
            return value
    return None


def parse_antutu(text: str) -> Optional[Benchmark]:
    """Parse an AnTuTu cell: score line, then version line."""
    lines = [re.sub(r"[•.,]", "", line).strip() for line in (text or "").split("\n")]
    lines = [line for line in lines if line]
    if not lines:
        return None
    score = _to_float(lines[0])
    if score is None:
        return None
    version = lines[1] if len(lines) > 1 else ""
    return Benchmark(name=f"AnTuTu {version}".strip(), score=score)


def parse_dxomark(text: str) -> Optional[Benchmark]:
    if not text or text.strip() == "--":
        return None
    score = _to_float(text.strip())
    if score is None:
        return None
    return Benchmark(name="DxOMark", score=score)


def parse_skus(versions_json: Optional[str]) -> List[Sku]:
    """Group a data-versions payload by (ram, storage).

    The payload maps market keys to {"mkid": ..., "devices": {...}} where each
    device carries ram and rom in MB. Market ids of identical memory
    configurations are merged.
    """
    if not versions_json:
        return []
    try:
        markets = json.loads(versions_json)
    except json.JSONDecodeError:
        return []
    if isinstance(markets, dict):
        markets = list(markets.values())
    if not isinstance(markets, list):
        return []

    grouped: Dict[Tuple[float, float], Sku] = {}
    for market in markets:
        if not isinstance(market, dict):
            continue
        devices = market.get("devices") or {}
        if isinstance(devices, dict):
            devices = list(devices.values())
        mkid = market.get("mkid")
        for device in devices:
            try:
                ram_gb = float(device["ram"]) / 1024
                storage_gb = float(device["rom"]) / 1024
            except (KeyError, TypeError, ValueError):
                continue
            key = (ram_gb, storage_gb)
            sku = grouped.setdefault(key, Sku(ram_gb=ram_gb, storage_gb=storage_gb))
            if mkid and mkid not in sku.market_ids:
                sku.market_ids.append(mkid)
    return list(grouped.values())


def split_others(others: List[str]) -> Tuple[bool, bool, List[str]]:
    """Derive (nfc, headphone_jack, remaining) from an 'Others' feature list."""
    remaining = list(others)
    nfc = any("NFC" in item for item in remaining)
    jack = any("Jack" in item for item in remaining)
    # Only the first occurrence of each flag is consumed
    for needle in ("NFC", "Jack"):
        for index, item in enumerate(remaining):
            if needle in item:
                del remaining[index]
                break
    return nfc, jack, remaining


def normalize_image_url(src: Optional[str]) -> Optional[str]:
    if not src:
        return None
    return src.replace("//", "https://", 1).replace("small.jpg", "big.jpg")
