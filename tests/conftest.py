"""Shared fixtures for the ingestion tests.

Sample images are generated in memory with Pillow, and every test gets its
own staging directory and local object store under ``tmp_path``.
"""

import io
import os

import pytest
from PIL import Image

from image2cloud.metadata import InMemoryMetadataStore
from image2cloud.pipeline import IngestPipeline
from image2cloud.staging import StagingArea
from image2cloud.storage import LocalObjectStore


def _encode(width, height, fmt="PNG", mode="RGB"):
    if mode == "P":
        img = Image.new("RGB", (width, height), color=(0, 120, 200)).convert(
            "P", palette=Image.Palette.ADAPTIVE
        )
    else:
        img = Image.new(mode, (width, height), color=(0, 120, 200) if mode == "RGB" else 128)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_image():
    """Factory returning encoded image bytes: ``make_image(w, h, fmt, mode)``."""
    return _encode


@pytest.fixture
def staging_dir(tmp_path):
    return str(tmp_path / ".tmp")


@pytest.fixture
def library_dir(tmp_path):
    return str(tmp_path / "image_library")


@pytest.fixture
def metadata():
    return InMemoryMetadataStore()


@pytest.fixture
def objects(library_dir):
    return LocalObjectStore(library_dir)


@pytest.fixture
def pipeline(staging_dir, metadata, objects):
    return IngestPipeline(StagingArea(staging_dir), metadata, objects)


def staged_files(root):
    """Return every file left below ``root``."""
    found = []
    for dirpath, _, filenames in os.walk(root):
        found.extend(os.path.join(dirpath, name) for name in filenames)
    return found


@pytest.fixture
def leftover_files():
    return staged_files
