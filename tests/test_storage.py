"""
Tests for the date-partitioned edition layout and the filesystem helpers.
"""

import os
from datetime import date, datetime
from pathlib import Path

import pytest

from epaper_backend.exceptions import StorageError
from epaper_backend.storage import StorageLayout, pdf_filename_for
from epaper_backend.utils import prune_empty_parents, remove_tree, unique_token


def fixed_clock():
    return datetime(2024, 3, 1, 14, 30, 5)


@pytest.fixture
def fixed_layout(tmp_path):
    return StorageLayout(tmp_path / "uploads", clock=fixed_clock)


class TestAllocate:
    """Tests for StorageLayout.allocate."""

    def test_allocate_creates_dated_directory_with_images(self, fixed_layout):
        """Allocation should create YYYY/MM/DD/<date>_<time>_<token>/images."""
        location = fixed_layout.allocate(date(2024, 3, 1))

        assert location.directory.is_dir()
        assert location.images_dir.is_dir()
        assert location.directory.parent == fixed_layout.editions_root / "2024" / "03" / "01"
        assert location.directory.name.startswith("2024-03-01_143005_")
        assert len(location.directory.name.rsplit("_", 1)[1]) == 13

    def test_allocate_returns_web_paths(self, fixed_layout):
        location = fixed_layout.allocate(date(2024, 3, 1))

        assert location.pdf_filename == "edition-01-03-2024.pdf"
        assert location.web_pdf_path == (
            f"/uploads/editions/2024/03/01/{location.directory.name}/edition-01-03-2024.pdf"
        )
        assert location.web_image_path("page-1.jpg") == (
            f"/uploads/editions/2024/03/01/{location.directory.name}/images/page-1.jpg"
        )
        assert location.pdf_path == location.directory / "edition-01-03-2024.pdf"

    def test_allocate_same_second_gives_distinct_directories(self, fixed_layout):
        """Two uploads for the same date in the same second never share a directory."""
        first = fixed_layout.allocate(date(2024, 3, 1))
        second = fixed_layout.allocate(date(2024, 3, 1))

        assert first.directory != second.directory
        assert first.directory.is_dir()
        assert second.directory.is_dir()

    def test_allocate_directory_permissions(self, fixed_layout):
        previous = os.umask(0o022)
        try:
            location = fixed_layout.allocate(date(2024, 3, 1))
        finally:
            os.umask(previous)
        assert location.directory.stat().st_mode & 0o777 == 0o755

    def test_allocate_failure_raises_storage_error(self, tmp_path):
        """An upload root that is a regular file cannot hold editions."""
        blocker = tmp_path / "uploads"
        blocker.write_text("not a directory")
        layout = StorageLayout(blocker)

        with pytest.raises(StorageError) as excinfo:
            layout.allocate(date(2024, 3, 1))

        assert excinfo.value.message == "Failed to create directory for edition."
        assert excinfo.value.stage == "storage"

    def test_custom_web_prefix_is_normalised(self, tmp_path):
        layout = StorageLayout(tmp_path, web_prefix="media/")
        location = layout.allocate(date(2023, 12, 31))

        assert location.web_pdf_path.startswith("/media/editions/2023/12/31/")
        assert location.pdf_filename == "edition-31-12-2023.pdf"


class TestLocate:
    """Tests for mapping stored web paths back to edition directories."""

    def test_locate_round_trips_allocated_directory(self, fixed_layout):
        location = fixed_layout.allocate(date(2024, 3, 1))

        assert fixed_layout.locate(location.web_pdf_path) == location.directory.resolve()

    @pytest.mark.parametrize(
        "web_path",
        [
            None,
            "",
            "/elsewhere/editions/2024/03/01/x/edition.pdf",
            "/uploads/editions/../../etc/passwd",
            "/uploads/editions/2024/03/01/edition.pdf",
            "/uploads/editions/2024/03/01/folder/images/page-1.jpg",
            "/uploads/other/2024/03/01/folder/edition.pdf",
        ],
    )
    def test_locate_rejects_paths_outside_edition_directories(self, fixed_layout, web_path):
        """Anything not shaped like an edition PDF path resolves to None."""
        assert fixed_layout.locate(web_path) is None


class TestDiscard:
    """Tests for StorageLayout.discard."""

    def test_discard_removes_directory_and_empty_date_parents(self, fixed_layout):
        location = fixed_layout.allocate(date(2024, 3, 1))
        location.pdf_path.write_bytes(b"%PDF-1.4")
        (location.images_dir / "page-1.jpg").write_bytes(b"jpg")

        warnings = fixed_layout.discard(location.directory)

        assert warnings == []
        assert not location.directory.exists()
        assert not (fixed_layout.editions_root / "2024").exists()
        assert fixed_layout.editions_root.is_dir()

    def test_discard_keeps_sibling_editions(self, fixed_layout):
        """Removing one edition leaves another edition on the same date intact."""
        first = fixed_layout.allocate(date(2024, 3, 1))
        second = fixed_layout.allocate(date(2024, 3, 1))
        (second.images_dir / "page-1.jpg").write_bytes(b"jpg")

        fixed_layout.discard(first.directory)

        assert not first.directory.exists()
        assert (second.images_dir / "page-1.jpg").is_file()

    def test_discard_is_idempotent(self, fixed_layout):
        location = fixed_layout.allocate(date(2024, 3, 1))

        assert fixed_layout.discard(location.directory) == []
        assert fixed_layout.discard(location.directory) == []
        assert fixed_layout.discard(None) == []


class TestFilesystemHelpers:
    """Tests for the helpers in utils."""

    def test_unique_token_shape(self):
        token = unique_token()
        assert len(token) == 13
        int(token, 16)
        assert unique_token() != token

    def test_pdf_filename_for(self):
        assert pdf_filename_for(date(2024, 1, 9)) == "edition-09-01-2024.pdf"

    def test_remove_tree_does_not_follow_symlinks(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "keep.txt").write_text("keep")
        tree = tmp_path / "tree"
        tree.mkdir()
        (tree / "link").symlink_to(outside, target_is_directory=True)

        assert remove_tree(tree) == []
        assert not tree.exists()
        assert (outside / "keep.txt").is_file()

    def test_remove_tree_missing_path(self, tmp_path):
        assert remove_tree(tmp_path / "missing") == []

    def test_prune_stops_at_non_empty_directory(self, tmp_path):
        stop = tmp_path / "root"
        nested = stop / "a" / "b" / "c"
        nested.mkdir(parents=True)
        (stop / "a" / "other.txt").write_text("x")

        assert prune_empty_parents(nested, stop) == []
        assert not (stop / "a" / "b").exists()
        assert (stop / "a").is_dir()

    def test_prune_never_removes_stop(self, tmp_path):
        stop = tmp_path / "root"
        nested = stop / "a"
        nested.mkdir(parents=True)

        prune_empty_parents(nested, stop)

        assert stop.is_dir()
        assert not nested.exists()

    def test_prune_ignores_paths_outside_stop(self, tmp_path):
        stop = tmp_path / "root"
        stop.mkdir()
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()

        prune_empty_parents(elsewhere, stop)

        assert Path(elsewhere).is_dir()
