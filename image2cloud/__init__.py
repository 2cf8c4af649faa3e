"""Image ingestion package.

This package contains the modules that take an uploaded image, produce a
half-resolution re-encoded copy, assign it a per-name version and hand it
to durable object storage. The HTTP layer in ``main.py`` is a thin wrapper
around :class:`image2cloud.pipeline.IngestPipeline`.
"""
