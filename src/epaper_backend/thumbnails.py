"""
Thumbnail derivation from the first rendered page.

Two fixed-policy images are produced next to the page images:

- ``og-thumb.jpg``: resized to a fixed width, then cropped to width x height
  anchored at the top (mastheads sit at the top of page one)
- ``list-thumb.jpg``: resized to a fixed height with proportional width

Unlike page rasterization, a thumbnail failure is never fatal. The failed
output is reported as missing and the edition is stored without it.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from omegaconf import DictConfig

from .exceptions import ThumbnailError
from .rasterizer import Runner, run_tool, tool_output
from .utils import FILE_MODE

logger = logging.getLogger(__name__)

OG_THUMB_FILENAME = "og-thumb.jpg"
LIST_THUMB_FILENAME = "list-thumb.jpg"


@dataclass
class ThumbnailResult:
    og_path: Optional[Path] = None
    list_path: Optional[Path] = None
    errors: List[ThumbnailError] = field(default_factory=list)


class ThumbnailGenerator:
    def __init__(
        self,
        executable: str = "convert",
        og_width: int = 1200,
        og_height: int = 600,
        list_height: int = 1200,
        quality: int = 85,
        timeout: float = 120,
        runner: Runner = subprocess.run,
    ) -> None:
        self.executable = executable
        self.og_width = og_width
        self.og_height = og_height
        self.list_height = list_height
        self.quality = quality
        self.timeout = timeout
        self._runner = runner

    @classmethod
    def from_settings(cls, settings: DictConfig, runner: Runner = subprocess.run) -> "ThumbnailGenerator":
        thumbs = settings.thumbnails
        return cls(
            executable=settings.raster.magick_binary,
            og_width=int(thumbs.og_width),
            og_height=int(thumbs.og_height),
            list_height=int(thumbs.list_height),
            quality=int(thumbs.quality),
            timeout=float(thumbs.timeout_seconds),
            runner=runner,
        )

    def og_command(self, source: Path, destination: Path) -> List[str]:
        return [
            self.executable,
            str(source),
            "-resize", f"{self.og_width}x",
            "-gravity", "North",
            "-crop", f"{self.og_width}x{self.og_height}+0+0",
            "+repage",
            "-quality", str(self.quality),
            str(destination),
        ]

    def list_command(self, source: Path, destination: Path) -> List[str]:
        return [
            self.executable,
            str(source),
            "-resize", f"x{self.list_height}",
            "-quality", str(self.quality),
            str(destination),
        ]

    def generate(self, first_page: Path, output_dir: Path) -> ThumbnailResult:
        """
        Derive both thumbnails from ``first_page``.

        Each derivation is attempted independently; failures are logged and
        collected in ``ThumbnailResult.errors`` rather than raised.
        """
        result = ThumbnailResult()

        og_destination = output_dir / OG_THUMB_FILENAME
        try:
            result.og_path = self._derive("OG thumbnail", self.og_command(first_page, og_destination), og_destination)
        except ThumbnailError as exc:
            result.errors.append(exc)

        list_destination = output_dir / LIST_THUMB_FILENAME
        try:
            result.list_path = self._derive(
                "List thumbnail", self.list_command(first_page, list_destination), list_destination
            )
        except ThumbnailError as exc:
            result.errors.append(exc)

        return result

    def _derive(self, label: str, command: List[str], destination: Path) -> Path:
        try:
            completed = run_tool(self._runner, command, self.timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            self._discard_partial(destination)
            raise self._failure(label, str(exc)) from exc

        if completed.returncode != 0:
            self._discard_partial(destination)
            raise self._failure(label, f"exit status {completed.returncode}: {tool_output(completed)}")
        if not destination.is_file():
            raise self._failure(label, "tool exited cleanly but wrote no file")

        try:
            destination.chmod(FILE_MODE)
        except OSError as exc:
            logger.warning(f"Failed to set permissions for {destination}: {exc}")
        return destination

    def _failure(self, label: str, detail: str) -> ThumbnailError:
        logger.warning(f"{label} generation failed: {detail}")
        return ThumbnailError(f"{label} generation failed.", detail=detail)

    @staticmethod
    def _discard_partial(destination: Path) -> None:
        try:
            destination.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning(f"Could not remove partial thumbnail {destination}: {exc}")
