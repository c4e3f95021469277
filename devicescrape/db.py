"""SQLite schema and helpers: scrape jobs, catalogue devices, raw documents."""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from devicescrape.config import DB_PATH
from devicescrape.jobs import ScrapeJob, state_from_dict, state_to_dict, utcnow

__all__ = [
    "get_connection",
    "init_db",
    "save_job",
    "get_job",
    "list_jobs",
    "delete_job",
    "save_raw_document",
    "get_raw_documents",
    "upsert_device",
    "get_device",
    "get_devices_by_slug",
    "search_devices",
    "get_stored_device_types",
]


@contextmanager
def get_connection(db_path: str = DB_PATH) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database connections."""
    # Ensure directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = DB_PATH) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()

        # One job per catalogue device
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS scrape_jobs (
                device_id TEXT PRIMARY KEY,
                step TEXT NOT NULL,
                device_type TEXT,
                state_json TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_log TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Catalogue devices; a slug may be shared after an explicit "unique" resolution
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS devices (
                id TEXT PRIMARY KEY,
                slug TEXT,
                name TEXT NOT NULL,
                brand TEXT,
                device_type TEXT,
                data_json TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Source pages, kept for audit and never re-parsed
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS raw_documents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                slug TEXT NOT NULL,
                fetched_at TEXT NOT NULL,
                html TEXT NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_scrape_jobs_step ON scrape_jobs(step)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_devices_slug ON devices(slug)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_raw_documents_slug ON raw_documents(slug)")

        conn.commit()


# =============================================================================
# Jobs
# =============================================================================

def _row_to_job(row: sqlite3.Row) -> ScrapeJob:
    return ScrapeJob(
        device_id=row["device_id"],
        state=state_from_dict(json.loads(row["state_json"])),
        device_type=row["device_type"],
        attempts=row["attempts"],
        last_log=row["last_log"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def save_job(db_path: str, job: ScrapeJob) -> None:
    """Insert or replace a job record."""
    state_json = json.dumps(state_to_dict(job.state), ensure_ascii=False)
    with get_connection(db_path) as conn:
        conn.execute("""
            INSERT INTO scrape_jobs (device_id, step, device_type, state_json, attempts,
                                     last_log, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(device_id) DO UPDATE SET
                step = excluded.step,
                device_type = excluded.device_type,
                state_json = excluded.state_json,
                attempts = excluded.attempts,
                last_log = excluded.last_log,
                updated_at = excluded.updated_at
        """, (job.device_id, job.step.value, job.device_type, state_json, job.attempts,
              job.last_log, job.created_at, job.updated_at))
        conn.commit()


def get_job(db_path: str, device_id: str) -> Optional[ScrapeJob]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM scrape_jobs WHERE device_id = ?", (device_id,)
        ).fetchone()
    return _row_to_job(row) if row else None


def list_jobs(db_path: str, steps: Optional[List[str]] = None) -> List[ScrapeJob]:
    """All jobs, newest update first, optionally filtered by step."""
    query = "SELECT * FROM scrape_jobs"
    params: List[Any] = []
    if steps:
        query += f" WHERE step IN ({','.join('?' * len(steps))})"
        params.extend(steps)
    query += " ORDER BY updated_at DESC"

    with get_connection(db_path) as conn:
        rows = conn.execute(query, params).fetchall()
    return [_row_to_job(row) for row in rows]


def delete_job(db_path: str, device_id: str) -> bool:
    with get_connection(db_path) as conn:
        cursor = conn.execute("DELETE FROM scrape_jobs WHERE device_id = ?", (device_id,))
        conn.commit()
        return cursor.rowcount > 0


# =============================================================================
# Raw documents
# =============================================================================

def save_raw_document(db_path: str, slug: str, html: str) -> int:
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            "INSERT INTO raw_documents (slug, fetched_at, html) VALUES (?, ?, ?)",
            (slug, utcnow(), html),
        )
        conn.commit()
        return int(cursor.lastrowid)


def get_raw_documents(db_path: str, slug: str) -> List[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT id, slug, fetched_at, html FROM raw_documents WHERE slug = ? ORDER BY id",
            (slug,),
        ).fetchall()
    return [dict(row) for row in rows]


# =============================================================================
# Devices
# =============================================================================

def upsert_device(
    db_path: str,
    device_id: str,
    name: str,
    slug: Optional[str] = None,
    brand: Optional[str] = None,
    device_type: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> str:
    """Insert or update a catalogue device, returning its ID.

    A None device_type keeps the stored one.
    """
    data_json = json.dumps(data, ensure_ascii=False) if data is not None else None
    now = utcnow()

    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT id FROM devices WHERE id = ?", (device_id,))
        existing = cursor.fetchone()

        if existing:
            cursor.execute("""
                UPDATE devices SET
                    slug = ?,
                    name = ?,
                    brand = ?,
                    device_type = COALESCE(?, device_type),
                    data_json = ?,
                    updated_at = ?
                WHERE id = ?
            """, (slug, name, brand, device_type, data_json, now, device_id))
        else:
            cursor.execute("""
                INSERT INTO devices (id, slug, name, brand, device_type, data_json,
                                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (device_id, slug, name, brand, device_type, data_json, now, now))

        conn.commit()
    return device_id


def _row_to_device(row: sqlite3.Row) -> Dict[str, Any]:
    device = dict(row)
    data_json = device.pop("data_json", None)
    device["data"] = json.loads(data_json) if data_json else None
    return device


def get_device(db_path: str, device_id: str) -> Optional[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM devices WHERE id = ?", (device_id,)).fetchone()
    return _row_to_device(row) if row else None


def get_devices_by_slug(db_path: str, slug: str) -> List[Dict[str, Any]]:
    """Devices with the slug, oldest first (the original owner leads)."""
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM devices WHERE slug = ? ORDER BY created_at, id", (slug,)
        ).fetchall()
    return [_row_to_device(row) for row in rows]


def search_devices(
    db_path: str,
    term: str,
    device_type: Optional[str] = None,
    limit: int = 10,
) -> List[Dict[str, Any]]:
    """Case-insensitive substring match on name, brand + name, or slug."""
    pattern = f"%{term.strip().lower()}%"
    query = """
        SELECT * FROM devices
        WHERE (LOWER(name) LIKE ?
               OR LOWER(COALESCE(brand, '') || ' ' || name) LIKE ?
               OR LOWER(COALESCE(slug, '')) LIKE ?)
    """
    params: List[Any] = [pattern, pattern, pattern.replace(" ", "-")]
    if device_type:
        query += " AND device_type = ?"
        params.append(device_type)
    query += " ORDER BY name LIMIT ?"
    params.append(limit)

    with get_connection(db_path) as conn:
        rows = conn.execute(query, params).fetchall()
    return [_row_to_device(row) for row in rows]


def get_stored_device_types(db_path: str) -> List[str]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT DISTINCT device_type FROM devices WHERE device_type IS NOT NULL ORDER BY device_type"
        ).fetchall()
    return [row["device_type"] for row in rows]
