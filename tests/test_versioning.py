"""Tests for version allocation and the metadata stores."""

import pytest

from image2cloud.errors import InvalidFilename, MetadataStoreError
from image2cloud.metadata import InMemoryMetadataStore, SqliteMetadataStore
from image2cloud.models import UploadRecord, human_size
from image2cloud.versioning import VersionAllocator, split_filename, versioned_name


def _record(account="a", filename="x.png", version=1):
    stem, ext = split_filename(filename)
    return UploadRecord(
        account=account,
        filename=filename,
        size="1.00",
        size_unit="KB",
        versioned_name=f"{stem}_v{version}.{ext}",
        version=version,
    )


def test_first_version_is_one():
    assert VersionAllocator(InMemoryMetadataStore()).next_version("a", "x.png") == 1


def test_version_follows_prior_records():
    store = InMemoryMetadataStore()
    for version in (1, 2, 3):
        store.insert_upload_record(_record(version=version))
    # Other names and other accounts do not count.
    store.insert_upload_record(_record(account="b"))
    store.insert_upload_record(_record(filename="y.png"))
    assert VersionAllocator(store).next_version("a", "x.png") == 4


def test_store_failure_is_metadata_error():
    class BrokenStore(InMemoryMetadataStore):
        def count_versions(self, account, filename):
            raise RuntimeError("connection reset")

    with pytest.raises(MetadataStoreError):
        VersionAllocator(BrokenStore()).next_version("a", "x.png")


@pytest.mark.parametrize(
    "filename,version,expected",
    [
        ("pic.png", 1, "pic_v1.png"),
        ("photo.jpeg", 12, "photo_v12.jpeg"),
        ("archive.tar.gz", 2, "archive.tar_v2.gz"),
    ],
)
def test_versioned_name(filename, version, expected):
    assert versioned_name(filename, version) == expected


@pytest.mark.parametrize("filename", ["noext", ".png", "pic.", "", "dir/pic.png"])
def test_versioned_name_rejects_bad_filenames(filename):
    with pytest.raises(InvalidFilename):
        versioned_name(filename, 1)


def test_human_size():
    assert human_size(2048) == ("2.00", "KB")
    assert human_size(3 * 1024 * 1024) == ("3.00", "MB")


def test_sqlite_store_roundtrip(tmp_path):
    store = SqliteMetadataStore(str(tmp_path / "db" / "uploads.db"))
    assert store.count_versions("a", "x.png") == 0
    store.insert_upload_record(_record(version=1))
    store.insert_upload_record(_record(version=2))
    assert store.count_versions("a", "x.png") == 2
    assert store.has_object("a", "x_v2.png")
    assert not store.has_object("b", "x_v2.png")
    listed = store.list_uploads("a")
    assert sorted(r.version for r in listed) == [1, 2]
    assert all(r.account == "a" for r in listed)


def test_sqlite_store_rejects_duplicate_version(tmp_path):
    store = SqliteMetadataStore(str(tmp_path / "uploads.db"))
    store.insert_upload_record(_record(version=1))
    with pytest.raises(MetadataStoreError):
        store.insert_upload_record(_record(version=1))
    assert store.count_versions("a", "x.png") == 1
