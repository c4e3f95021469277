"""Data models for scraped devices and resolution results."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

__all__ = [
    "CameraRecord",
    "Sku",
    "Benchmark",
    "RawDeviceRecord",
    "AutocompleteOption",
    "DeviceSummary",
    "Resolution",
]


@dataclass
class CameraRecord:
    """One camera module of a device, as read from a comparison table."""

    resolution_mp: float
    aperture_fstop: Optional[str] = None
    sensor: Optional[str] = None
    type: str = ""
    features: List[str] = field(default_factory=list)


@dataclass
class Sku:
    """A memory configuration and the market regions it is sold in."""

    ram_gb: float
    storage_gb: float
    market_ids: List[str] = field(default_factory=list)


@dataclass
class Benchmark:
    name: str
    score: float


@dataclass
class RawDeviceRecord:
    """Represents a single device scraped from a comparison page.

    Numeric fields are either a parsed number or None; the extractors never
    leave placeholder strings behind. String lists stay lists here and are
    only pipe-joined when written to storage.
    """

    # Required fields
    slug: str
    name: str

    brand: Optional[str] = None
    aliases: List[str] = field(default_factory=list)
    release_date: Optional[str] = None
    image_url: Optional[str] = None

    # Design
    height_mm: Optional[float] = None
    width_mm: Optional[float] = None
    thickness_mm: Optional[float] = None
    weight_g: Optional[float] = None
    materials: List[str] = field(default_factory=list)
    ip_rating: Optional[str] = None
    colors: List[str] = field(default_factory=list)

    # Display
    size_in: Optional[float] = None
    display_type: Optional[str] = None
    resolution: Optional[str] = None
    aspect_ratio: Optional[str] = None
    ppi: Optional[int] = None
    display_features: List[str] = field(default_factory=list)

    # Hardware
    cpu: Optional[str] = None
    cpu_manufacturer: Optional[str] = None
    cpu_cores: List[str] = field(default_factory=list)
    gpu: Optional[str] = None
    sd_slot: Optional[bool] = None
    skus: List[Sku] = field(default_factory=list)
    fingerprint_position: Optional[str] = None
    benchmarks: List[Benchmark] = field(default_factory=list)

    # Connectivity
    nfc: Optional[bool] = None
    bluetooth: Optional[str] = None
    sim: List[str] = field(default_factory=list)
    sim_count: Optional[int] = None
    usb: Optional[str] = None
    headphone_jack: Optional[bool] = None

    # Battery
    battery_capacity_mah: Optional[int] = None
    battery_fast_charging: Optional[bool] = None
    battery_wattage: Optional[float] = None

    # Cameras
    cameras: List[CameraRecord] = field(default_factory=list)
    camera_features: List[str] = field(default_factory=list)

    # Software and misc
    os: Optional[str] = None
    os_skin: Optional[str] = None
    scores: Dict[str, str] = field(default_factory=dict)
    others: List[str] = field(default_factory=list)

    # Source document, kept for audit only
    raw_html: str = ""

    def to_prompt_dict(self) -> Dict[str, Any]:
        """Return the record as plain data without the source document."""
        data = asdict(self)
        data.pop("raw_html", None)
        return data


@dataclass
class AutocompleteOption:
    name: str
    slug: str


@dataclass
class DeviceSummary:
    """A device already present in the catalogue."""

    id: str
    slug: Optional[str]
    name: str
    brand: Optional[str] = None
    device_type: Optional[str] = None


@dataclass
class Resolution:
    """Outcome of a slug search: catalogue matches plus site options."""

    fast_matches: List[DeviceSummary] = field(default_factory=list)
    options: List[AutocompleteOption] = field(default_factory=list)
