"""Catalogue collaborator: the narrow interface the pipeline writes through."""

from typing import List, Optional, Protocol, Union

from devicescrape import db
from devicescrape.config import DB_PATH, DEFAULT_DEVICE_TYPES
from devicescrape.errors import ResolutionError
from devicescrape.logging_config import get_logger
from devicescrape.models import DeviceSummary
from devicescrape.schemas import CanonicalDeviceRecord

__all__ = ["Catalogue", "SqliteCatalogue"]

logger = get_logger("catalogue")


class Catalogue(Protocol):
    def find_existing_matches(self, name: str, device_type: Optional[str] = None) -> List[DeviceSummary]:
        ...

    def get_device_by_slug(self, slug: str) -> Optional[DeviceSummary]:
        ...

    def create_or_import_device(
        self,
        device_id: str,
        record_or_slug: Union[CanonicalDeviceRecord, str],
        device_type: Optional[str] = None,
    ) -> str:
        ...

    def get_device_types(self) -> List[str]:
        ...


def _summary(row: dict) -> DeviceSummary:
    return DeviceSummary(
        id=row["id"],
        slug=row["slug"],
        name=row["name"],
        brand=row["brand"],
        device_type=row["device_type"],
    )


class SqliteCatalogue:
    """Catalogue backed by the local devices table."""

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        db.init_db(db_path)

    def find_existing_matches(self, name: str, device_type: Optional[str] = None) -> List[DeviceSummary]:
        if not name.strip():
            return []
        rows = db.search_devices(self.db_path, name, device_type)
        # Devices without data are placeholders waiting for their own job
        return [_summary(row) for row in rows if row["data"] is not None]

    def get_device_by_slug(self, slug: str) -> Optional[DeviceSummary]:
        rows = db.get_devices_by_slug(self.db_path, slug)
        return _summary(rows[0]) if rows else None

    def create_or_import_device(
        self,
        device_id: str,
        record_or_slug: Union[CanonicalDeviceRecord, str],
        device_type: Optional[str] = None,
    ) -> str:
        """Write a normalized record to device_id, or link it to an existing device.

        Given a slug, the device that owns it is reused: its data is copied
        onto device_id unless they are the same device.

        Returns:
            Catalogue id of the device the job resolved to

        Raises:
            ResolutionError: If a slug is given that no catalogue device owns
        """
        if isinstance(record_or_slug, CanonicalDeviceRecord):
            record = record_or_slug
            db.upsert_device(
                self.db_path,
                device_id,
                name=record.name,
                slug=record.slug,
                brand=record.brand,
                device_type=device_type,
                data=record.to_storage_dict(),
            )
            logger.info(f"Stored {record.slug} as device {device_id}")
            return device_id

        rows = db.get_devices_by_slug(self.db_path, record_or_slug)
        if not rows:
            raise ResolutionError(f"No catalogue device owns slug '{record_or_slug}'")
        existing = rows[0]
        if existing["id"] == device_id:
            return device_id

        db.upsert_device(
            self.db_path,
            device_id,
            name=existing["name"],
            slug=existing["slug"],
            brand=existing["brand"],
            device_type=device_type or existing["device_type"],
            data=existing["data"],
        )
        logger.info(f"Imported existing device {existing['id']} ({record_or_slug}) into {device_id}")
        return existing["id"]

    def get_device_types(self) -> List[str]:
        types = list(DEFAULT_DEVICE_TYPES)
        for device_type in db.get_stored_device_types(self.db_path):
            if device_type not in types:
                types.append(device_type)
        return types
