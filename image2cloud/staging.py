"""Staging directory management.

Uploaded bytes are materialized under ``<root>/<account>/incoming/<filename>``
and published under ``<root>/<account>/<versioned name>`` while they are
resized and handed off. Keeping the two apart means an upload named
``pic_v1.png`` can never land on the published copy of ``pic.png``.
Files in the staging area never outlive a single upload.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .errors import InvalidFilename, StageMoveError, StagingError

logger = logging.getLogger(__name__)

DIR_MODE = 0o755
INCOMING = "incoming"
# Names end up in paths, object keys and Content-Disposition headers.
_FORBIDDEN_CHARS = ("/", "\\", '"')


@dataclass(frozen=True)
class StagedFile:
    """A file sitting in the staging directory."""

    filename: str
    path: str
    size: int


def ensure_dir(path: str) -> None:
    """Create ``path`` (and its parents) if it does not exist yet.

    A directory created concurrently by another caller counts as success.
    """
    try:
        os.makedirs(path, mode=DIR_MODE, exist_ok=True)
    except FileExistsError as exc:
        raise StagingError(f"{path} exists and is not a directory") from exc
    except OSError as exc:
        raise StagingError(f"could not create staging directory {path}: {exc}") from exc


def check_component(value: str, what: str = "filename") -> str:
    """Reject values that are not a single, plain path component."""
    if (
        not value
        or value in (".", "..")
        or any(ch in value for ch in _FORBIDDEN_CHARS)
        or any(ord(ch) < 0x20 or ord(ch) == 0x7f for ch in value)
    ):
        raise InvalidFilename(f"invalid {what} '{value}'")
    return value


class StagingArea:
    """Per-account working directory for files mid-pipeline."""

    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(root)

    def account_dir(self, account: str) -> str:
        return os.path.join(self.root, check_component(account, "account"))

    def path_for(self, account: str, name: str) -> str:
        return os.path.join(self.account_dir(account), check_component(name))

    def incoming_path(self, account: str, filename: str) -> str:
        return os.path.join(self.account_dir(account), INCOMING, check_component(filename))

    def ensure(self, account: str) -> str:
        path = self.account_dir(account)
        ensure_dir(os.path.join(path, INCOMING))
        return path

    def materialize(self, account: str, filename: str, data: bytes) -> StagedFile:
        """Write uploaded ``data`` into the incoming area under ``filename``."""
        path = self.incoming_path(account, filename)
        self.ensure(account)
        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as exc:
            raise StagingError(f"could not write staged file {path}: {exc}") from exc
        logger.debug("Staged %s (%d bytes)", path, len(data))
        return StagedFile(filename=filename, path=path, size=len(data))

    def discard(self, path: str) -> bool:
        """Delete a staged file. Returns False if it was already gone."""
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StageMoveError(f"could not remove {path}: {exc}") from exc
        return True
