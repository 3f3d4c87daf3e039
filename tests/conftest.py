"""
Pytest configuration and fixtures for E-Paper Backend tests.
"""

import os
import shutil
import subprocess
import tempfile
from io import BytesIO
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="epaper_test_uploads_")
os.environ["DATABASE_PATH"] = str(Path(tempfile.mkdtemp(prefix="epaper_test_db_")) / "editions.db")

from epaper_backend.configuration import load_settings
from epaper_backend.database import EditionDatabase
from epaper_backend.ingestion import EditionForm, EditionService, IncomingPdf
from epaper_backend.main import app, get_edition_service
from epaper_backend.rasterizer import ImageMagickConverter
from epaper_backend.storage import StorageLayout
from epaper_backend.thumbnails import ThumbnailGenerator

MANAGER_HEADERS = {"X-User-Id": "7", "X-User-Role": "Admin"}

# Minimal PDF that is technically valid
SAMPLE_PDF = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
trailer
<< /Size 4 /Root 1 0 R >>
startxref
196
%%EOF"""


class MagickStub:
    """
    Stand-in for ``subprocess.run`` that imitates ImageMagick ``convert``.

    A command whose output argument contains ``%03d`` is a page render and
    writes ``pages`` numbered JPEGs; anything else is a thumbnail and writes
    its output file unless that filename is listed in ``failing_outputs``.
    """

    def __init__(self, pages=3):
        self.pages = pages
        self.render_returncode = 0
        self.produce_pages = True
        self.failing_outputs = set()
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append(list(command))
        target = command[-1]
        if "%03d" in target:
            if self.render_returncode:
                return subprocess.CompletedProcess(command, self.render_returncode, "", "convert: no images defined")
            if self.produce_pages:
                for number in range(1, self.pages + 1):
                    Path(target % number).write_bytes(b"\xff\xd8\xff page %d" % number)
            return subprocess.CompletedProcess(command, 0, "", "")

        if Path(target).name in self.failing_outputs:
            return subprocess.CompletedProcess(command, 1, "", "convert: unable to open image")
        Path(target).write_bytes(b"\xff\xd8\xff thumb")
        return subprocess.CompletedProcess(command, 0, "", "")


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the directories used by the module-level app."""
    upload_dir = os.environ["UPLOAD_DIR"]
    db_dir = str(Path(os.environ["DATABASE_PATH"]).parent)

    yield {"upload": upload_dir, "database": db_dir}

    shutil.rmtree(upload_dir, ignore_errors=True)
    shutil.rmtree(db_dir, ignore_errors=True)


@pytest.fixture
def magick():
    return MagickStub()


@pytest.fixture
def settings(tmp_path):
    return load_settings(
        {
            "storage": {"upload_root": str(tmp_path / "uploads")},
            "database": {"path": str(tmp_path / "data" / "editions.db")},
        }
    )


@pytest.fixture
def database(settings):
    return EditionDatabase(Path(settings.database.path))


@pytest.fixture
def category_id(database):
    return database.add_category("City Edition")


@pytest.fixture
def layout(settings):
    return StorageLayout.from_settings(settings)


@pytest.fixture
def service(settings, database, layout, magick):
    return EditionService(
        database=database,
        layout=layout,
        converter=ImageMagickConverter(density=250, quality=85, runner=magick),
        thumbnails=ThumbnailGenerator.from_settings(settings, runner=magick),
        max_upload_bytes=int(settings.upload.max_bytes),
        allowed_content_types=list(settings.upload.allowed_content_types),
    )


@pytest.fixture
def client(service):
    """Create a test client whose endpoints use the per-test service."""
    app.dependency_overrides[get_edition_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_pdf():
    def _make(content=SAMPLE_PDF, content_type="application/pdf", size=None, filename="edition.pdf"):
        return IncomingPdf(
            filename=filename,
            content_type=content_type,
            size=len(content) if size is None else size,
            stream=BytesIO(content),
        )

    return _make


@pytest.fixture
def make_form(category_id):
    def _make(**fields):
        values = {
            "title": "Morning Edition",
            "publication_date": "2024-03-01",
            "category_id": str(category_id),
        }
        values.update(fields)
        return EditionForm(**values)

    return _make


@pytest.fixture
def manager_headers():
    return dict(MANAGER_HEADERS)


@pytest.fixture
def edition_dirs(layout):
    """Callable listing the edition directories currently on disk."""

    def _list():
        root = layout.editions_root
        if not root.exists():
            return []
        return sorted(path.resolve() for path in root.glob("*/*/*/*") if path.is_dir())

    return _list
