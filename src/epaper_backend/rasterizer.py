"""
PDF to page image conversion.

Rasterization is delegated to an external command line tool. The adapters in
this module build the command, interpret its exit status and output files,
and normalise whatever numbering the tool used into the canonical
``page-1.jpg .. page-N.jpg`` scheme.

Two backends are provided:
    - ImageMagickConverter: ``convert`` (Ghostscript delegate), 1-indexed
      ``temp_raw_001.jpg`` names via ``-scene 1``
    - PdftoppmConverter: poppler's ``pdftoppm``, zero-padded
      ``temp_raw-01.jpg`` names whose width depends on the page count
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Protocol, Sequence

from omegaconf import DictConfig

from .exceptions import ConversionError
from .utils import FILE_MODE

logger = logging.getLogger(__name__)

Runner = Callable[..., "subprocess.CompletedProcess[Any]"]

RAW_STEM = "temp_raw"
PAGE_FILENAME = "page-{number}.jpg"


@dataclass(frozen=True)
class RasterResult:
    page_count: int
    first_page: Path
    pages: List[Path] = field(default_factory=list)


class RasterConverter(Protocol):
    """Anything that can turn a PDF into numbered page images."""

    def render(self, pdf_path: Path, output_dir: Path) -> RasterResult:
        ...


def run_tool(runner: Runner, command: Sequence[str], timeout: float) -> "subprocess.CompletedProcess[Any]":
    """
    Run an external image tool and capture its output.

    Raises:
        OSError: If the executable cannot be started
        subprocess.TimeoutExpired: If the tool exceeds ``timeout`` seconds
    """
    logger.info(f"Running: {' '.join(str(part) for part in command)}")
    return runner(
        [str(part) for part in command],
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )


def tool_output(completed: "subprocess.CompletedProcess[Any]") -> str:
    return "\n".join(part.strip() for part in (completed.stdout, completed.stderr) if part and part.strip())


def collect_raw_pages(output_dir: Path, prefix: str) -> List[Path]:
    """
    Find the tool's raw page files and order them by page number.

    Sorting is numeric, so ``temp_raw_1000.jpg`` comes after
    ``temp_raw_999.jpg`` whatever the zero padding.
    """
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)\.jpe?g$")
    numbered = []
    for candidate in output_dir.iterdir():
        match = pattern.match(candidate.name)
        if match and candidate.is_file():
            numbered.append((int(match.group(1)), candidate))
    return [path for _, path in sorted(numbered)]


def normalise_pages(raw_pages: Sequence[Path], output_dir: Path) -> List[Path]:
    """
    Rename raw page files to ``page-1.jpg`` onward, in order, with 0644 permissions.

    Raises:
        ConversionError: If a page cannot be renamed
    """
    pages: List[Path] = []
    for number, raw in enumerate(raw_pages, start=1):
        final = output_dir / PAGE_FILENAME.format(number=number)
        try:
            raw.rename(final)
        except OSError as exc:
            raise ConversionError(
                "Failed to finalize page images.",
                detail=f"rename {raw} -> {final}: {exc}",
            ) from exc
        try:
            final.chmod(FILE_MODE)
        except OSError as exc:
            logger.warning(f"Failed to set permissions for {final}: {exc}")
        pages.append(final)
    return pages


class _CommandLineConverter:
    """Shared run-collect-renumber logic for tool-backed converters."""

    raw_prefix = RAW_STEM

    def __init__(
        self,
        executable: str,
        density: int = 250,
        quality: int = 85,
        timeout: float = 300,
        runner: Runner = subprocess.run,
    ) -> None:
        self.executable = executable
        self.density = density
        self.quality = quality
        self.timeout = timeout
        self._runner = runner

    def build_command(self, pdf_path: Path, output_dir: Path) -> List[str]:
        raise NotImplementedError

    def render(self, pdf_path: Path, output_dir: Path) -> RasterResult:
        """
        Convert every page of ``pdf_path`` into ``output_dir/page-<n>.jpg``.

        Args:
            pdf_path: Readable PDF file
            output_dir: Existing directory that receives the page images

        Returns:
            RasterResult with the page count and the first page's path

        Raises:
            ConversionError: If the tool fails, times out, is missing, or exits
                cleanly without producing any page image
        """
        command = self.build_command(pdf_path, output_dir)
        try:
            completed = run_tool(self._runner, command, self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise ConversionError("PDF conversion timed out.", detail=str(exc)) from exc
        except OSError as exc:
            raise ConversionError("PDF conversion failed.", detail=f"{self.executable}: {exc}") from exc

        if completed.returncode != 0:
            raise ConversionError(
                "PDF conversion failed.",
                detail=f"exit status {completed.returncode}: {tool_output(completed)}",
            )

        raw_pages = collect_raw_pages(output_dir, self.raw_prefix)
        if not raw_pages:
            raise ConversionError(
                "PDF conversion completed but produced no page images.",
                detail=tool_output(completed) or None,
            )

        pages = normalise_pages(raw_pages, output_dir)
        logger.info(f"Rendered {len(pages)} page(s) from {pdf_path.name}")
        return RasterResult(page_count=len(pages), first_page=pages[0], pages=pages)


class ImageMagickConverter(_CommandLineConverter):
    raw_prefix = f"{RAW_STEM}_"

    def __init__(self, executable: str = "convert", **kwargs: Any) -> None:
        super().__init__(executable, **kwargs)

    def build_command(self, pdf_path: Path, output_dir: Path) -> List[str]:
        pattern = output_dir / f"{self.raw_prefix}%03d.jpg"
        return [
            self.executable,
            "-density", str(self.density),
            str(pdf_path),
            "-quality", str(self.quality),
            "-scene", "1",
            str(pattern),
        ]


class PdftoppmConverter(_CommandLineConverter):
    raw_prefix = f"{RAW_STEM}-"

    def __init__(self, executable: str = "pdftoppm", **kwargs: Any) -> None:
        super().__init__(executable, **kwargs)

    def build_command(self, pdf_path: Path, output_dir: Path) -> List[str]:
        return [
            self.executable,
            "-r", str(self.density),
            "-jpeg",
            "-jpegopt", f"quality={self.quality}",
            str(pdf_path),
            str(output_dir / RAW_STEM),
        ]


def build_converter(settings: DictConfig, runner: Runner = subprocess.run) -> RasterConverter:
    """
    Create the converter named by ``raster.backend``.

    Raises:
        ValueError: For an unknown backend name
    """
    raster = settings.raster
    common = {
        "density": int(raster.density),
        "quality": int(raster.quality),
        "timeout": float(raster.timeout_seconds),
        "runner": runner,
    }
    backend = str(raster.backend).lower()
    if backend == "imagemagick":
        return ImageMagickConverter(raster.magick_binary, **common)
    if backend == "pdftoppm":
        return PdftoppmConverter(raster.pdftoppm_binary, **common)
    raise ValueError(f"Unknown raster backend: {raster.backend!r}")
