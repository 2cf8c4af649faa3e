"""Compress-and-replace protocol for published files.

:class:`AtomicReplacer` turns the file at a published path into its
half-resolution version without ever leaving a partially written file at
that path:

1. rename ``P`` to the staging alias ``P'`` (``.orig_`` + base name);
2. read and sniff ``P'``;
3. produce the resized artifact;
4. make sure the staging directory exists;
5. write the artifact to a temporary sibling and move it onto ``P``;
6. delete ``P'``.

If any of steps 2-5 fails, ``P'`` is renamed back to ``P`` before the
error is re-raised. The guarantee holds within a single process; a crash
between steps can still leave ``P'`` behind.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from .errors import EncodeError, StageMoveError
from .image_ops import ImageArtifact, halve_image, sniff_format
from .staging import ensure_dir

logger = logging.getLogger(__name__)

STAGE_PREFIX = ".orig_"
PARTIAL_SUFFIX = ".part"


def staged_alias(path: str) -> str:
    """Return the path an existing file is moved to while it is replaced."""
    head, tail = os.path.split(path)
    return os.path.join(head, STAGE_PREFIX + tail)


def _load(path: str) -> ImageArtifact:
    with open(path, "rb") as f:
        fmt = sniff_format(f)
        data = f.read()
    return halve_image(data, fmt)


def _write_atomic(path: str, data: bytes) -> None:
    """Write ``data`` to ``path`` via a temporary sibling file."""
    partial = path + PARTIAL_SUFFIX
    try:
        with open(partial, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(partial, path)
    except OSError as exc:
        _remove_quietly(partial)
        raise EncodeError(f"could not write {path}: {exc}") from exc


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Could not remove leftover %s", path, exc_info=True)


def compress_file(src: str, dest: str, staging_dir: Optional[str] = None) -> ImageArtifact:
    """Write the halved version of ``src`` to ``dest`` directly.

    Used when nothing is published at ``dest`` yet, so no staging alias is
    needed. ``src`` is left untouched.
    """
    artifact = _load(src)
    if staging_dir:
        ensure_dir(staging_dir)
    _write_atomic(dest, artifact.data)
    return artifact


class AtomicReplacer:
    """Replace a published image with its half-resolution version in place."""

    def __init__(self, staging_dir: str) -> None:
        self.staging_dir = staging_dir

    def replace(self, path: str) -> ImageArtifact:
        alias = staged_alias(path)
        try:
            os.rename(path, alias)
        except OSError as exc:
            raise StageMoveError(f"could not stage {path} aside: {exc}") from exc

        try:
            artifact = _load(alias)
            ensure_dir(self.staging_dir)
            _write_atomic(path, artifact.data)
        except BaseException as exc:
            self._rollback(path, alias, exc)
            raise

        try:
            os.remove(alias)
        except OSError as exc:
            raise StageMoveError(f"could not remove staged original {alias}: {exc}") from exc

        logger.info(
            "Replaced %s with %dx%d %s", path, artifact.width, artifact.height, artifact.format
        )
        return artifact

    def _rollback(self, path: str, alias: str, cause: BaseException) -> None:
        logger.warning("Restoring %s after failed replace: %s", path, cause)
        try:
            os.replace(alias, path)
        except OSError as exc:
            logger.error("Rollback of %s failed; original left at %s", path, alias)
            raise StageMoveError(f"could not restore {path} from {alias}: {exc}") from cause
