"""Data normalization: raw scraped record to canonical record via the LLM."""

import json
import logging
from typing import Any, Dict, Optional

from devicescrape.config import NORMALIZE_MAX_TOKENS, NORMALIZE_TEMPERATURE, TARGET_LANGUAGE
from devicescrape.errors import NormalizationError
from devicescrape.llm import CompletionClient, CompletionError
from devicescrape.logging_config import get_logger, log_scrape_event
from devicescrape.models import RawDeviceRecord
from devicescrape.schemas import CAMERA_TYPES, CanonicalDeviceRecord

__all__ = [
    "DataNormalizer",
    "build_normalize_prompt",
    "enforce_no_invented_fields",
]

logger = get_logger("normalizer")

SYSTEM_PROMPT = """You are a mobile device expert writing for a {language}-speaking audience \
of technically literate but non-professional readers.

Your task is to normalize smartphone specifications:
1. Translate into natural {language}, avoiding word-for-word calques from English
2. Remove redundant and self-evident characteristics
3. Keep only what helps a reader choose a phone
4. Use one consistent style, neither too formal nor too casual"""

USER_PROMPT_TEMPLATE = """Normalize the device specification below following these rules.
Reply with a single JSON object matching the provided schema.

## Rules

### General
- Write all non-name text in {language}. Device, brand and chip names stay as they are.
- Do not invent data: a field that is empty or null in the input stays empty or null.
- Keep terms that have no good translation verbatim: HDR, LTPO, OIS, AMOLED, PWM, eSIM, NFC.
- Keep numbers and units unchanged unless translating the unit name.

### display_features
- Keep only meaningful items: refresh rate, brightness, HDR, panel type (LTPO/AMOLED), PWM frequency
- Remove generic items every phone has: Capacitive, Multi-touch, Frameless, Scratch resistant, Hole-punch
- Remove protective glass brands (Gorilla Glass of any version)

### camera_features
- Keep at most 6-8 key features
- Remove standard ones: Autofocus, Face detection, Geotagging, Touch focus, Scene mode, Self-timer
- Merge similar items and drop duplicates ("Night Mode 2.0" and "Night Mode" -> one item)

### materials and colors
- Translate materials (Metal, Plastic, Glass, Ceramic) and color names
- Remove glass brand names

### cpu
- Remove technical model codes: "Snapdragon 7s Gen2 (SM-7435AB)" -> "Snapdragon 7s Gen2"

### skus
- One entry per (ram_gb, storage_gb) pair; merge the market_ids of duplicates

### cameras
- type must be one of: {camera_types}
- "Standard" or "Main" -> main; "Wide Angle" or "Ultrawide" -> wide; "Telephoto" -> zoom;
  "Selfie" or "Front" -> front; ToF/LiDAR -> lidar; IR -> infrared
- A combined "Wide Angle + Macro" camera is type wide with features ["macro"], unless macro is its main purpose
- features may only contain "macro" and "monochrome"
- Unknown aperture is written as "-"

## Data

{data}"""


def build_normalize_prompt(raw: RawDeviceRecord, language: str = TARGET_LANGUAGE) -> str:
    data = json.dumps(raw.to_prompt_dict(), ensure_ascii=False, indent=2)
    return USER_PROMPT_TEMPLATE.format(
        language=language,
        camera_types=", ".join(CAMERA_TYPES),
        data=data,
    )


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def enforce_no_invented_fields(
    raw: RawDeviceRecord, record: CanonicalDeviceRecord
) -> CanonicalDeviceRecord:
    """Blank out every field the raw record had no value for.

    Identity fields always come from the raw record.
    """
    raw_data = raw.to_prompt_dict()
    update: Dict[str, Any] = {"slug": raw.slug, "name": raw.name}

    for name, field_info in CanonicalDeviceRecord.model_fields.items():
        if name in update or name not in raw_data:
            continue
        if _is_empty(raw_data[name]) and not _is_empty(getattr(record, name)):
            default = field_info.get_default(call_default_factory=True)
            update[name] = default

    return record.model_copy(update=update)


class DataNormalizer:
    """Turns a RawDeviceRecord into a CanonicalDeviceRecord."""

    def __init__(
        self,
        client: CompletionClient,
        language: str = TARGET_LANGUAGE,
        temperature: float = NORMALIZE_TEMPERATURE,
        max_tokens: Optional[int] = NORMALIZE_MAX_TOKENS,
    ):
        self.client = client
        self.language = language
        self.temperature = temperature
        self.max_tokens = max_tokens

    def normalize(self, raw: RawDeviceRecord) -> CanonicalDeviceRecord:
        """Normalize one record.

        Raises:
            NormalizationError: If the completion is empty, not JSON or
                does not validate against the canonical schema
        """
        prompt = build_normalize_prompt(raw, self.language)
        try:
            record = self.client.generate(
                prompt,
                CanonicalDeviceRecord,
                system=SYSTEM_PROMPT.format(language=self.language),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except CompletionError as e:
            log_scrape_event(
                "normalization_failed",
                {"message": f"Normalization failed for {raw.slug}", "slug": raw.slug, "error": str(e)},
                level=logging.ERROR,
            )
            raise NormalizationError(f"Normalization failed for '{raw.slug}': {e}") from e

        record = enforce_no_invented_fields(raw, record)
        logger.info(f"Normalized {raw.slug} ({len(record.cameras)} camera(s), {len(record.skus)} SKU(s))")
        return record
