"""Durable object storage backends.

This module provides a simple interface for storing binary objects under
a key of the form ``<account>/<versioned name>`` and reading them back.
In development, objects are written to the local filesystem under a
configurable base directory. In production, Google Cloud Storage is used
by setting ``STORAGE_BACKEND=gcs`` and providing a ``GCS_BUCKET``. The
GCS client is created once and shared by every request.
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Protocol

import requests
from google.api_core import exceptions as gcs_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage as gcs

from .errors import ObjectStoreError
from .settings import Settings
from .staging import ensure_dir

logger = logging.getLogger(__name__)

# Transport and credential failures surface outside GoogleAPIError.
_GCS_ERRORS = (
    gcs_exceptions.GoogleAPIError,
    auth_exceptions.GoogleAuthError,
    requests.exceptions.RequestException,
)


def object_key(account: str, versioned_name: str) -> str:
    return f"{account}/{versioned_name}"


class ObjectStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> None: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...


class LocalObjectStore:
    """Objects stored as plain files below ``base_dir``."""

    def __init__(self, base_dir: str) -> None:
        self.base_dir = os.path.abspath(base_dir)

    def _path(self, key: str) -> str:
        dest_path = os.path.normpath(os.path.join(self.base_dir, key))
        if not dest_path.startswith(self.base_dir + os.sep):
            raise ObjectStoreError(f"key '{key}' escapes the storage directory")
        return dest_path

    def put(self, key: str, data: bytes, content_type: str) -> None:
        dest_path = self._path(key)
        try:
            ensure_dir(os.path.dirname(dest_path))
            with open(dest_path, "wb") as f:
                f.write(data)
        except Exception as exc:
            raise ObjectStoreError(f"could not store {key}: {exc}") from exc
        logger.info("Stored %s (%s, %d bytes) locally", key, content_type, len(data))

    def get(self, key: str) -> bytes:
        try:
            with open(self._path(key), "rb") as f:
                return f.read()
        except OSError as exc:
            raise ObjectStoreError(f"could not read {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except OSError as exc:
            raise ObjectStoreError(f"could not delete {key}: {exc}") from exc


class GCSObjectStore:
    """Objects stored as blobs in a Google Cloud Storage bucket."""

    def __init__(self, bucket_name: str, client: Optional[gcs.Client] = None) -> None:
        if not bucket_name:
            raise ObjectStoreError("GCS_BUCKET must be set for the gcs backend")
        try:
            self.client = client or gcs.Client()
        except _GCS_ERRORS as exc:
            raise ObjectStoreError(f"could not create GCS client: {exc}") from exc
        self.bucket = self.client.bucket(bucket_name)

    def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.bucket.blob(key).upload_from_string(data, content_type=content_type)
        except _GCS_ERRORS as exc:
            raise ObjectStoreError(f"upload of {key} failed: {exc}") from exc
        logger.info("Uploaded %s to gs://%s", key, self.bucket.name)

    def get(self, key: str) -> bytes:
        try:
            return self.bucket.blob(key).download_as_bytes()
        except _GCS_ERRORS as exc:
            raise ObjectStoreError(f"download of {key} failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.bucket.blob(key).delete()
        except _GCS_ERRORS as exc:
            raise ObjectStoreError(f"delete of {key} failed: {exc}") from exc


def build_object_store(settings: Settings, gcs_client: Optional[gcs.Client] = None) -> ObjectStore:
    """Create the object store selected by ``settings.storage_backend``."""
    if settings.storage_backend == "gcs":
        return GCSObjectStore(settings.gcs_bucket, client=gcs_client)
    return LocalObjectStore(settings.image_library_dir)
