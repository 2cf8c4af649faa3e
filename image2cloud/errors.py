"""Exceptions raised by the ingestion pipeline.

Every failure surfaces to the caller of
:meth:`image2cloud.pipeline.IngestPipeline.ingest` as one of these. The
underlying cause, when there is one, is kept on ``__cause__``.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for every pipeline failure."""


class UnsupportedFormat(IngestError):
    """The bytes are not a PNG or JPEG image."""


class DecodeError(IngestError):
    """The source bytes could not be decoded as the declared format."""


class EncodeError(IngestError):
    """The resized image could not be serialized or written."""


class DegenerateResize(IngestError):
    """Halving the image would produce a zero-sized dimension."""


class StageMoveError(IngestError):
    """A rename or delete inside the staging directory failed."""


class StagingError(IngestError):
    """The staging directory could not be created or written."""


class InvalidFilename(IngestError):
    """The filename cannot be turned into a versioned object name."""


class MetadataStoreError(IngestError):
    """The metadata store rejected a query or insert."""


class ObjectStoreError(IngestError):
    """The durable object store rejected a put, get or delete."""
