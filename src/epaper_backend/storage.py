"""
Date-partitioned directory layout for edition files.

Each edition gets its own directory:

    <upload_root>/editions/<YYYY>/<MM>/<DD>/<YYYY-MM-DD>_<HHMMSS>_<token>/
        edition-<DD-MM-YYYY>.pdf
        images/
            page-1.jpg ... page-N.jpg
            og-thumb.jpg
            list-thumb.jpg

The same tree is served as static files under the web prefix (``/uploads``
by default), so every absolute path has a matching web-relative path that
gets stored on the edition row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional

from omegaconf import DictConfig

from .exceptions import StorageError
from .utils import DIR_MODE, prune_empty_parents, remove_tree, unique_token

logger = logging.getLogger(__name__)

IMAGES_DIRNAME = "images"
# YYYY/MM/DD/<folder> below the editions root
_EDITION_DEPTH = 4


@dataclass(frozen=True)
class EditionLocation:
    """
    A freshly allocated edition directory.

    Attributes:
        directory: Absolute edition directory
        web_directory: Web-relative form of ``directory`` (no trailing slash)
        pdf_filename: Canonical PDF filename, e.g. ``edition-01-03-2024.pdf``
    """

    directory: Path
    web_directory: str
    pdf_filename: str

    @property
    def images_dir(self) -> Path:
        return self.directory / IMAGES_DIRNAME

    @property
    def pdf_path(self) -> Path:
        return self.directory / self.pdf_filename

    @property
    def web_pdf_path(self) -> str:
        return f"{self.web_directory}/{self.pdf_filename}"

    def web_image_path(self, filename: str) -> str:
        return f"{self.web_directory}/{IMAGES_DIRNAME}/{filename}"


def pdf_filename_for(publication_date: date) -> str:
    return f"edition-{publication_date.strftime('%d-%m-%Y')}.pdf"


class StorageLayout:
    """
    Allocates, resolves and discards edition directories under one upload root.

    Concurrent uploads never share a directory: the folder name combines the
    wall-clock time with a random token, and the final directory is created
    with ``exist_ok=False`` so a collision fails loudly instead of mixing files.
    """

    def __init__(
        self,
        upload_root: Path,
        web_prefix: str = "/uploads",
        editions_dirname: str = "editions",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.upload_root = Path(upload_root)
        self.web_prefix = "/" + web_prefix.strip("/")
        self.editions_dirname = editions_dirname
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: DictConfig) -> "StorageLayout":
        return cls(
            upload_root=Path(settings.storage.upload_root),
            web_prefix=settings.storage.web_prefix,
            editions_dirname=settings.storage.editions_dirname,
        )

    @property
    def editions_root(self) -> Path:
        return self.upload_root / self.editions_dirname

    def allocate(self, publication_date: date) -> EditionLocation:
        """
        Create a new, empty edition directory with its ``images/`` subdirectory.

        Args:
            publication_date: Already validated publication date

        Returns:
            The allocated EditionLocation

        Raises:
            StorageError: If any level of the tree cannot be created
        """
        folder = f"{publication_date.isoformat()}_{self._clock().strftime('%H%M%S')}_{unique_token()}"
        date_parts = (
            publication_date.strftime("%Y"),
            publication_date.strftime("%m"),
            publication_date.strftime("%d"),
        )
        directory = self.editions_root.joinpath(*date_parts, folder)

        try:
            directory.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            directory.mkdir(mode=DIR_MODE, exist_ok=False)
            (directory / IMAGES_DIRNAME).mkdir(mode=DIR_MODE, exist_ok=False)
        except OSError as exc:
            raise StorageError("Failed to create directory for edition.", detail=f"{directory}: {exc}") from exc

        web_directory = "/".join([self.web_prefix, self.editions_dirname, *date_parts, folder])
        logger.info(f"Allocated edition directory {directory}")
        return EditionLocation(
            directory=directory,
            web_directory=web_directory,
            pdf_filename=pdf_filename_for(publication_date),
        )

    def locate(self, web_pdf_path: Optional[str]) -> Optional[Path]:
        """
        Map a stored web-relative PDF path back to its edition directory.

        Returns None for empty paths, paths outside the editions root and paths
        not shaped ``YYYY/MM/DD/<folder>/<file>``; callers must then leave the
        file system alone rather than guess.
        """
        if not web_pdf_path:
            return None

        posix = PurePosixPath(web_pdf_path)
        prefix = PurePosixPath(self.web_prefix)
        try:
            relative = posix.relative_to(prefix)
        except ValueError:
            logger.warning(f"Stored path {web_pdf_path!r} is not under {self.web_prefix}")
            return None

        editions_root = self.editions_root.resolve()
        candidate = (self.upload_root / Path(*relative.parts)).resolve()
        try:
            inside = candidate.relative_to(editions_root)
        except ValueError:
            logger.warning(f"Stored path {web_pdf_path!r} resolves outside the editions root")
            return None

        if len(inside.parts) != _EDITION_DEPTH + 1:
            logger.warning(f"Stored path {web_pdf_path!r} does not point into an edition directory")
            return None
        return candidate.parent

    def discard(self, directory: Optional[Path]) -> List[str]:
        """
        Remove an edition directory and any date directories it leaves empty.

        Never raises; every failure comes back as a warning string and is
        logged here.
        """
        if directory is None:
            return []
        warnings = remove_tree(directory)
        warnings.extend(prune_empty_parents(directory.parent, self.editions_root))
        for warning in warnings:
            logger.warning(f"Cleanup: {warning}")
        if not warnings:
            logger.info(f"Removed edition directory {directory}")
        return warnings
