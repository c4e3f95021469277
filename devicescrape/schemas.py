"""Pydantic schema for the canonical device record.

The same model is sent to the completion endpoint as the output JSON schema
and used to validate the reply, so every rule that can be checked
mechanically lives in a validator here rather than only in the prompt.
"""

import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "CAMERA_TYPES",
    "CanonicalCamera",
    "CanonicalSku",
    "CanonicalBenchmark",
    "CanonicalDeviceRecord",
    "STRING_LIST_FIELDS",
]

CameraType = Literal["wide", "zoom", "main", "front", "lidar", "macro", "infrared"]
CameraFeature = Literal["macro", "monochrome"]

CAMERA_TYPES = ("wide", "zoom", "main", "front", "lidar", "macro", "infrared")
UNKNOWN_APERTURE = "-"

# Joined with "|" when written to storage
STRING_LIST_FIELDS = (
    "aliases",
    "materials",
    "colors",
    "display_features",
    "cpu_cores",
    "sim",
    "camera_features",
    "others",
)


def _split_pipes(value: Any) -> Any:
    """Accept 'a|b' as well as ['a', 'b'] for list fields."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split("|") if part.strip()]
    return value


class CanonicalCamera(BaseModel):
    model_config = ConfigDict(frozen=True)

    resolution_mp: float
    aperture_fstop: str = UNKNOWN_APERTURE
    sensor: Optional[str] = None
    type: CameraType
    features: List[CameraFeature] = Field(default_factory=list)

    @field_validator("aperture_fstop", mode="before")
    @classmethod
    def unknown_aperture(cls, value: Any) -> Any:
        if value is None or str(value).strip() in ("", "Unknown"):
            return UNKNOWN_APERTURE
        return value

    @field_validator("features", mode="before")
    @classmethod
    def features_list(cls, value: Any) -> Any:
        # An empty string is how "no features" sometimes comes back
        if value is None or value == "":
            return []
        return value


class CanonicalSku(BaseModel):
    model_config = ConfigDict(frozen=True)

    ram_gb: float
    storage_gb: float
    market_ids: List[str] = Field(default_factory=list)


class CanonicalBenchmark(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    score: float


class CanonicalDeviceRecord(BaseModel):
    """Validated, language-normalized device record ready for the catalogue."""

    model_config = ConfigDict(frozen=True)

    slug: str
    name: str
    brand: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    release_date: Optional[str] = None
    image_url: Optional[str] = None

    height_mm: Optional[float] = None
    width_mm: Optional[float] = None
    thickness_mm: Optional[float] = None
    weight_g: Optional[float] = None
    materials: List[str] = Field(default_factory=list)
    ip_rating: Optional[str] = None
    colors: List[str] = Field(default_factory=list)

    size_in: Optional[float] = None
    display_type: Optional[str] = None
    resolution: Optional[str] = None
    aspect_ratio: Optional[str] = None
    ppi: Optional[int] = None
    display_features: List[str] = Field(default_factory=list)

    cpu: Optional[str] = None
    cpu_manufacturer: Optional[str] = None
    cpu_cores: List[str] = Field(default_factory=list)
    gpu: Optional[str] = None
    sd_slot: Optional[bool] = None
    skus: List[CanonicalSku] = Field(default_factory=list)
    fingerprint_position: Optional[Literal["screen", "side", "back"]] = None
    benchmarks: List[CanonicalBenchmark] = Field(default_factory=list)

    nfc: Optional[bool] = None
    bluetooth: Optional[str] = None
    sim: List[str] = Field(default_factory=list)
    sim_count: Optional[int] = None
    usb: Optional[Literal["USB-A", "USB-C", "Lightning"]] = None
    headphone_jack: Optional[bool] = None

    battery_capacity_mah: Optional[int] = None
    battery_fast_charging: Optional[bool] = None
    battery_wattage: Optional[float] = None

    cameras: List[CanonicalCamera] = Field(default_factory=list)
    camera_features: List[str] = Field(default_factory=list)

    os: Optional[str] = None
    os_skin: Optional[str] = None
    scores: Dict[str, str] = Field(default_factory=dict)
    others: List[str] = Field(default_factory=list)

    @field_validator(*STRING_LIST_FIELDS, mode="before")
    @classmethod
    def pipe_strings(cls, value: Any) -> Any:
        return _split_pipes(value)

    @field_validator("cpu")
    @classmethod
    def strip_cpu_codes(cls, value: Optional[str]) -> Optional[str]:
        """'Snapdragon 7s Gen2 (SM-7435AB)' -> 'Snapdragon 7s Gen2'"""
        if value is None:
            return None
        cleaned = re.sub(r"\s*\([^)]*\)", "", value).strip()
        return cleaned or None

    @field_validator("skus")
    @classmethod
    def merge_skus(cls, skus: List[CanonicalSku]) -> List[CanonicalSku]:
        """One entry per (ram, storage); market regions are unioned."""
        merged: Dict[tuple, List[str]] = {}
        for sku in skus:
            markets = merged.setdefault((sku.ram_gb, sku.storage_gb), [])
            for market in sku.market_ids:
                if market not in markets:
                    markets.append(market)
        return [
            CanonicalSku(ram_gb=ram, storage_gb=storage, market_ids=markets)
            for (ram, storage), markets in merged.items()
        ]

    def to_storage_dict(self) -> Dict[str, Any]:
        """Plain dict for the catalogue; string lists become '|'-joined strings."""
        data = self.model_dump()
        for name in STRING_LIST_FIELDS:
            data[name] = "|".join(data[name])
        return data
