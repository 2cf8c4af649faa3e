"""Pydantic models and data schemas for the ingestion service.

These models are shared by the pipeline, the metadata stores and the
FastAPI endpoints in ``main.py``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Tuple

from pydantic import BaseModel, Field

_MIB = 1024.0 * 1024.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def human_size(num_bytes: int) -> Tuple[str, str]:
    """Express a byte count as a two-decimal string plus unit.

    Sizes below one MiB are reported in KB, everything else in MB.

    >>> human_size(2048)
    ('2.00', 'KB')
    """
    size = num_bytes / _MIB
    if size < 1.0:
        return f"{size * 1024.0:.2f}", "KB"
    return f"{size:.2f}", "MB"


class UploadRecord(BaseModel):
    """Metadata persisted for every successful upload.

    Attributes:
        account: Owner of the upload.
        filename: Name the file was uploaded under.
        size: Stored artifact size, two decimals, in ``size_unit``.
        size_unit: ``KB`` or ``MB``.
        versioned_name: Externally visible object name, e.g. ``pic_v1.png``.
        version: 1-based version of ``filename`` for this account.
        created: Creation time (UTC).
    """

    account: str
    filename: str
    size: str
    size_unit: str
    versioned_name: str
    version: int
    created: datetime = Field(default_factory=_utcnow)


class IngestResult(BaseModel):
    """Returned after an image has been stored."""

    account: str
    filename: str
    versioned_name: str
    version: int
    key: str
    width: int
    height: int
    format: str
    size: str
    size_unit: str


class UploadList(BaseModel):
    uploads: List[UploadRecord]
