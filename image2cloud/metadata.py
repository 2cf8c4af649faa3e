"""Upload metadata stores.

The pipeline only needs two operations from the metadata store: counting
existing uploads of a filename and inserting a new record. Listing and
ownership checks back the list/download endpoints.

Two implementations are provided: :class:`InMemoryMetadataStore` for
tests and single-process use, and :class:`SqliteMetadataStore` which
persists records in a SQLite file.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Protocol

from .errors import MetadataStoreError
from .models import UploadRecord

logger = logging.getLogger(__name__)


class MetadataStore(Protocol):
    def count_versions(self, account: str, filename: str) -> int: ...

    def insert_upload_record(self, record: UploadRecord) -> None: ...

    def list_uploads(self, account: str) -> List[UploadRecord]: ...

    def has_object(self, account: str, versioned_name: str) -> bool: ...


class InMemoryMetadataStore:
    """Thread-safe, process-local metadata store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: List[UploadRecord] = []

    def count_versions(self, account: str, filename: str) -> int:
        with self._lock:
            return sum(
                1 for r in self._records if r.account == account and r.filename == filename
            )

    def insert_upload_record(self, record: UploadRecord) -> None:
        with self._lock:
            self._records.append(record)

    def list_uploads(self, account: str) -> List[UploadRecord]:
        with self._lock:
            return [r for r in self._records if r.account == account]

    def has_object(self, account: str, versioned_name: str) -> bool:
        with self._lock:
            return any(
                r.account == account and r.versioned_name == versioned_name
                for r in self._records
            )


_SCHEMA = """
CREATE TABLE IF NOT EXISTS uploads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account TEXT NOT NULL,
    filename TEXT NOT NULL,
    size TEXT NOT NULL,
    size_unit TEXT NOT NULL,
    versioned_name TEXT NOT NULL,
    version INTEGER NOT NULL,
    created TEXT NOT NULL,
    UNIQUE (account, filename, version)
)
"""


class SqliteMetadataStore:
    """Upload records kept in a SQLite database file."""

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            with conn:
                conn.execute(_SCHEMA)
        except sqlite3.Error as exc:
            raise MetadataStoreError(f"could not create schema: {exc}") from exc
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as exc:
            raise MetadataStoreError(f"could not open {self.db_path}: {exc}") from exc

    def count_versions(self, account: str, filename: str) -> int:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT COUNT(*) FROM uploads WHERE account = ? AND filename = ?",
                    (account, filename),
                ).fetchone()
            except sqlite3.Error as exc:
                raise MetadataStoreError(f"count query failed: {exc}") from exc
            finally:
                conn.close()
        return int(row[0])

    def insert_upload_record(self, record: UploadRecord) -> None:
        with self._lock:
            conn = self._connect()
            try:
                with conn:
                    conn.execute(
                        """
                        INSERT INTO uploads (
                            account, filename, size, size_unit,
                            versioned_name, version, created
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            record.account,
                            record.filename,
                            record.size,
                            record.size_unit,
                            record.versioned_name,
                            record.version,
                            record.created.isoformat(),
                        ),
                    )
            except sqlite3.Error as exc:
                raise MetadataStoreError(
                    f"could not record {record.versioned_name}: {exc}"
                ) from exc
            finally:
                conn.close()
        logger.debug("Recorded %s for %s", record.versioned_name, record.account)

    def list_uploads(self, account: str) -> List[UploadRecord]:
        with self._lock:
            conn = self._connect()
            conn.row_factory = sqlite3.Row
            try:
                rows = conn.execute(
                    """
                    SELECT account, filename, size, size_unit, versioned_name, version, created
                    FROM uploads WHERE account = ? ORDER BY created DESC, id DESC
                    """,
                    (account,),
                ).fetchall()
            except sqlite3.Error as exc:
                raise MetadataStoreError(f"list query failed: {exc}") from exc
            finally:
                conn.close()
        return [
            UploadRecord(
                account=row["account"],
                filename=row["filename"],
                size=row["size"],
                size_unit=row["size_unit"],
                versioned_name=row["versioned_name"],
                version=row["version"],
                created=datetime.fromisoformat(row["created"]),
            )
            for row in rows
        ]

    def has_object(self, account: str, versioned_name: str) -> bool:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT 1 FROM uploads WHERE account = ? AND versioned_name = ? LIMIT 1",
                    (account, versioned_name),
                ).fetchone()
            except sqlite3.Error as exc:
                raise MetadataStoreError(f"lookup failed: {exc}") from exc
            finally:
                conn.close()
        return row is not None
