"""End-to-end tests for the ingestion pipeline."""

import io
import os
from concurrent.futures import ThreadPoolExecutor

import pytest
from PIL import Image

from image2cloud.errors import (
    InvalidFilename,
    MetadataStoreError,
    ObjectStoreError,
    UnsupportedFormat,
)
from image2cloud.locks import KeyedLock
from image2cloud.metadata import InMemoryMetadataStore
from image2cloud.pipeline import IngestPipeline
from image2cloud.staging import StagingArea
from image2cloud.storage import LocalObjectStore


def test_palette_png_end_to_end(pipeline, metadata, objects, staging_dir, make_image, leftover_files):
    result = pipeline.ingest("acct1", "pic.png", make_image(100, 100, "PNG", mode="P"))

    assert result.versioned_name == "pic_v1.png"
    assert result.version == 1
    assert result.key == "acct1/pic_v1.png"
    assert (result.width, result.height) == (50, 50)

    with Image.open(io.BytesIO(objects.get("acct1/pic_v1.png"))) as stored:
        assert stored.size == (50, 50)
        assert stored.format == "PNG"

    records = metadata.list_uploads("acct1")
    assert len(records) == 1
    assert records[0].version == 1
    assert records[0].versioned_name == "pic_v1.png"
    assert records[0].size_unit == "KB"
    assert leftover_files(staging_dir) == []


def test_versions_increase_per_name(pipeline, make_image):
    data = make_image(8, 8, "JPEG")
    assert pipeline.ingest("acct1", "a.jpg", data).versioned_name == "a_v1.jpg"
    assert pipeline.ingest("acct1", "a.jpg", data).versioned_name == "a_v2.jpg"
    assert pipeline.ingest("acct1", "b.jpg", data).version == 1
    assert pipeline.ingest("acct2", "a.jpg", data).version == 1


def test_name_that_looks_versioned(pipeline, make_image):
    data = make_image(8, 8)
    pipeline.ingest("acct1", "pic.png", data)
    result = pipeline.ingest("acct1", "pic_v1.png", data)
    assert result.versioned_name == "pic_v1_v1.png"


def test_unsupported_upload_leaves_nothing(pipeline, metadata, library_dir, staging_dir, leftover_files):
    with pytest.raises(UnsupportedFormat):
        pipeline.ingest("acct1", "notes.png", b"plain text, not an image")
    assert metadata.list_uploads("acct1") == []
    assert leftover_files(staging_dir) == []
    assert leftover_files(library_dir) == []


def test_invalid_filename(pipeline, make_image):
    with pytest.raises(InvalidFilename):
        pipeline.ingest("acct1", "noextension", make_image(4, 4))


def test_object_store_failure_writes_no_record(staging_dir, metadata, make_image, leftover_files):
    class DownStore:
        def put(self, key, data, content_type):
            raise ObjectStoreError("bucket unavailable")

        def get(self, key):
            raise AssertionError("not reached")

        def delete(self, key):
            raise AssertionError("not reached")

    pipeline = IngestPipeline(StagingArea(staging_dir), metadata, DownStore())
    with pytest.raises(ObjectStoreError):
        pipeline.ingest("acct1", "pic.png", make_image(10, 10))
    assert metadata.count_versions("acct1", "pic.png") == 0
    assert leftover_files(staging_dir) == []


def test_record_failure_withdraws_object(staging_dir, objects, library_dir, make_image, leftover_files):
    class FullStore(InMemoryMetadataStore):
        def insert_upload_record(self, record):
            raise MetadataStoreError("disk quota exceeded")

    pipeline = IngestPipeline(StagingArea(staging_dir), FullStore(), objects)
    with pytest.raises(MetadataStoreError):
        pipeline.ingest("acct1", "pic.png", make_image(10, 10))
    assert leftover_files(library_dir) == []
    assert leftover_files(staging_dir) == []


def test_concurrent_uploads_get_distinct_versions(staging_dir, library_dir, make_image):
    metadata = InMemoryMetadataStore()
    locks = KeyedLock()
    pipeline = IngestPipeline(
        StagingArea(staging_dir), metadata, LocalObjectStore(library_dir), locks=locks
    )
    data = make_image(32, 32)

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(lambda _: pipeline.ingest("a", "x.png", data), range(10)))

    assert sorted(r.version for r in results) == list(range(1, 11))
    assert len({r.versioned_name for r in results}) == 10
    assert sorted(r.version for r in metadata.list_uploads("a")) == list(range(1, 11))
    assert sorted(os.listdir(os.path.join(library_dir, "a"))) == sorted(
        f"x_v{n}.png" for n in range(1, 11)
    )
    assert len(locks) == 0


def test_fresh_name_is_compressed_directly(pipeline, monkeypatch, make_image):
    def no_replace(path):
        raise AssertionError("nothing was published at this name yet")

    monkeypatch.setattr(pipeline.replacer, "replace", no_replace)
    result = pipeline.ingest("acct1", "pic.png", make_image(30, 20))
    assert (result.width, result.height) == (15, 10)


def test_leftover_published_file_is_replaced(pipeline, objects, staging_dir, make_image, leftover_files):
    # A file left at the published path by an interrupted attempt.
    pipeline.staging.ensure("acct1")
    stale = pipeline.staging.path_for("acct1", "pic_v1.png")
    with open(stale, "wb") as f:
        f.write(make_image(8, 8))

    result = pipeline.ingest("acct1", "pic.png", make_image(40, 30))

    assert result.versioned_name == "pic_v1.png"
    with Image.open(io.BytesIO(objects.get("acct1/pic_v1.png"))) as stored:
        assert stored.size == (20, 15)
    assert leftover_files(staging_dir) == []


def test_quote_in_filename_is_rejected(pipeline, make_image):
    with pytest.raises(InvalidFilename):
        pipeline.ingest("acct1", 'pic".png', make_image(4, 4))
