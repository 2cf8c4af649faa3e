"""Image ingestion pipeline.

:class:`IngestPipeline` is the single entry point the HTTP layer calls
for an upload. For one (account, filename) it:

1. stages the uploaded bytes;
2. allocates the next version from the metadata store;
3. composes the versioned name (``pic.png`` -> ``pic_v3.png``);
4. halves the image onto its published staging path;
5. hands the result to the object store under ``<account>/<name>``;
6. records the upload and clears the staging files.

Steps 1-6 run under a per-key lock so concurrent uploads of the same
name get distinct, dense versions and never share staging files. On any
failure every staging file the call created is removed and the error is
re-raised; an upload record is only written after the object was stored.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional

from .errors import IngestError, MetadataStoreError, ObjectStoreError, StageMoveError
from .image_ops import ImageArtifact, sniff_format
from .locks import KeyedLock
from .metadata import MetadataStore
from .models import IngestResult, UploadRecord, human_size
from .replace import PARTIAL_SUFFIX, AtomicReplacer, compress_file, staged_alias
from .staging import StagingArea, check_component
from .storage import ObjectStore, object_key
from .versioning import VersionAllocator, split_filename, versioned_name

logger = logging.getLogger(__name__)


class IngestPipeline:
    def __init__(
        self,
        staging: StagingArea,
        metadata: MetadataStore,
        objects: ObjectStore,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self.staging = staging
        self.metadata = metadata
        self.objects = objects
        self.allocator = VersionAllocator(metadata)
        self.replacer = AtomicReplacer(staging.root)
        self.locks = locks or KeyedLock()

    def ingest(self, account: str, filename: str, data: bytes) -> IngestResult:
        """Store a new version of ``filename`` for ``account``.

        Raises:
            IngestError: Any subclass; the upload left nothing behind in
                staging and no upload record was written.
        """
        check_component(account, "account")
        split_filename(filename)
        with self.locks.hold((account, filename)):
            try:
                return self._ingest_locked(account, filename, data)
            except IngestError as exc:
                logger.error(
                    "Upload of %s for %s failed: %s", filename, account, exc, exc_info=True
                )
                raise

    def _ingest_locked(self, account: str, filename: str, data: bytes) -> IngestResult:
        created: List[str] = []
        try:
            staged = self.staging.materialize(account, filename, data)
            created.append(staged.path)

            version = self.allocator.next_version(account, filename)
            name = versioned_name(filename, version)

            with open(staged.path, "rb") as f:
                sniff_format(f)

            published = self.staging.path_for(account, name)
            created.extend([published, staged_alias(published), published + PARTIAL_SUFFIX])
            artifact = self._publish(staged.path, published)

            key = object_key(account, name)
            self.objects.put(key, artifact.data, artifact.content_type)

            size, unit = human_size(len(artifact.data))
            record = UploadRecord(
                account=account,
                filename=filename,
                size=size,
                size_unit=unit,
                versioned_name=name,
                version=version,
            )
            self._record(record, key)
        finally:
            self._cleanup(created)

        logger.info(
            "Stored %s for %s as %s (%dx%d, %s %s)",
            filename, account, key, artifact.width, artifact.height, size, unit,
        )
        return IngestResult(
            account=account,
            filename=filename,
            versioned_name=name,
            version=version,
            key=key,
            width=artifact.width,
            height=artifact.height,
            format=artifact.format,
            size=size,
            size_unit=unit,
        )

    def _publish(self, incoming: str, published: str) -> ImageArtifact:
        """Write the halved upload to ``published``.

        A fresh versioned name is compressed to directly. A file already
        sitting there (left by an interrupted earlier attempt) is replaced
        through the staging alias instead.
        """
        if not os.path.lexists(published):
            return compress_file(incoming, published, self.staging.root)
        logger.warning("Replacing leftover staging file %s", published)
        try:
            os.replace(incoming, published)
        except OSError as exc:
            raise StageMoveError(f"could not publish {incoming}: {exc}") from exc
        return self.replacer.replace(published)

    def _record(self, record: UploadRecord, key: str) -> None:
        try:
            self.metadata.insert_upload_record(record)
        except Exception as exc:
            # The object is useless without its record; take it back out.
            try:
                self.objects.delete(key)
            except ObjectStoreError:
                logger.exception("Could not withdraw %s after failed insert", key)
            if isinstance(exc, MetadataStoreError):
                raise
            raise MetadataStoreError(f"could not record {record.versioned_name}: {exc}") from exc

    def _cleanup(self, paths: List[str]) -> None:
        for path in paths:
            try:
                if self.staging.discard(path):
                    logger.debug("Removed staging file %s", path)
            except StageMoveError:
                logger.warning("Staging file %s could not be removed", path, exc_info=True)
