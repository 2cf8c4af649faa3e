"""Version numbers and versioned object names."""

from __future__ import annotations

from typing import Tuple

from .errors import InvalidFilename, MetadataStoreError
from .metadata import MetadataStore
from .staging import check_component


def split_filename(filename: str) -> Tuple[str, str]:
    """Split ``filename`` into stem and extension at the last dot."""
    check_component(filename)
    stem, sep, ext = filename.rpartition(".")
    if not sep or not stem or not ext:
        raise InvalidFilename(f"'{filename}' has no usable extension")
    return stem, ext


def versioned_name(filename: str, version: int) -> str:
    """Return the object name for ``version`` of ``filename``.

    >>> versioned_name("pic.png", 1)
    'pic_v1.png'
    """
    if version < 1:
        raise ValueError("versions start at 1")
    stem, ext = split_filename(filename)
    return f"{stem}_v{version}.{ext}"


class VersionAllocator:
    """Hands out the next version of a filename for an account.

    The count comes from the metadata store, so a version is never
    reused even if its object was later deleted from storage. Callers must
    serialize allocation and the matching insert per (account, filename).
    """

    def __init__(self, store: MetadataStore) -> None:
        self.store = store

    def next_version(self, account: str, filename: str) -> int:
        try:
            count = self.store.count_versions(account, filename)
        except MetadataStoreError:
            raise
        except Exception as exc:
            raise MetadataStoreError(f"could not count versions of {filename}: {exc}") from exc
        return count + 1
