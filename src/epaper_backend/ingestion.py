"""
Edition ingestion orchestration.

This module implements the transactional use cases behind the admin panel:
- Creating an edition from an uploaded PDF
- Editing an edition, optionally replacing its PDF
- Deleting an edition together with its files

The EditionService validates input before touching anything, then drives
storage allocation, rasterization, thumbnailing and the database write in a
strict sequence inside one transaction. If any fatal step fails, the
transaction is rolled back and the directory created for the attempt is
removed on a best-effort basis.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Union

from omegaconf import DictConfig

from .auth import ActorContext
from .database import EditionDatabase
from .exceptions import (
    EditionNotFoundError,
    IngestionError,
    PersistenceError,
    StorageError,
    ValidationError,
)
from .models import EditionRecord, EditionStatus
from .rasterizer import RasterConverter, build_converter
from .repository import EditionRepository, EditionValues
from .storage import EditionLocation, StorageLayout
from .thumbnails import ThumbnailGenerator
from .utils import FILE_MODE

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
COPY_CHUNK_SIZE = 8 * 1024 * 1024

# Client-facing notices; the detailed cleanup failures are logged by the layout
PREVIOUS_FILES_WARNING = "Some files of the previous PDF could not be removed."
LEFTOVER_FILES_WARNING = "Some edition files could not be removed."


@dataclass
class IncomingPdf:
    """
    An uploaded PDF that has not been placed anywhere yet.

    Attributes:
        filename: Client-side filename, informational only
        content_type: MIME type declared by the client
        size: Declared size in bytes
        stream: Readable binary stream positioned at the start of the file
    """

    filename: str
    content_type: Optional[str]
    size: int
    stream: BinaryIO


@dataclass
class EditionForm:
    """Raw form fields as submitted; nothing here is trusted yet."""

    title: str = ""
    publication_date: str = ""
    category_id: Union[str, int, None] = None
    description: Optional[str] = None
    status: Optional[str] = None
    status_reason: Optional[str] = None


@dataclass
class ValidatedEdition:
    title: str
    publication_date: date
    category_id: int
    description: Optional[str]
    status: EditionStatus
    status_reason: Optional[str]


@dataclass
class IngestedFiles:
    pdf_path: str
    og_image_path: Optional[str]
    list_thumb_path: Optional[str]
    page_count: int
    file_size_bytes: int


@dataclass
class IngestionOutcome:
    edition_id: int
    message: str
    warnings: List[str] = field(default_factory=list)


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_status(value: Optional[str]) -> EditionStatus:
    """Normalise a submitted status; anything unrecognised becomes private."""
    cleaned = (value or "").strip().lower()
    try:
        return EditionStatus(cleaned)
    except ValueError:
        if cleaned:
            logger.warning(f"Unknown edition status {value!r}, defaulting to private")
        return EditionStatus.PRIVATE


class EditionService:
    """
    Coordinator for the edition create, edit and delete pipelines.

    Every collaborator is injected: the raster converter and thumbnail
    generator wrap external tools, so tests and alternative deployments swap
    them without touching the pipeline.

    Attributes:
        database: Edition database providing transactions
        layout: Storage layout for edition directories
        converter: PDF to page image converter
        thumbnails: Thumbnail generator for the first page
        max_upload_bytes: Inclusive upper bound on the declared upload size
        allowed_content_types: Accepted declared MIME types
    """

    def __init__(
        self,
        database: EditionDatabase,
        layout: StorageLayout,
        converter: RasterConverter,
        thumbnails: ThumbnailGenerator,
        max_upload_bytes: int = 50 * 1024 * 1024,
        allowed_content_types: Iterable[str] = ("application/pdf",),
    ) -> None:
        self.database = database
        self.layout = layout
        self.converter = converter
        self.thumbnails = thumbnails
        self.max_upload_bytes = max_upload_bytes
        self.allowed_content_types = frozenset(allowed_content_types)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, form: EditionForm, pdf: Optional[IncomingPdf], require_pdf: bool) -> ValidatedEdition:
        """
        Check every field and the optional file without any side effect.

        Args:
            form: Submitted form fields
            pdf: Uploaded file, or None when no file was sent
            require_pdf: Whether a file is mandatory (create) or optional (edit)

        Returns:
            Normalised field values

        Raises:
            ValidationError: On the first invalid field, with a message fit
                for display
        """
        title = (form.title or "").strip()
        if not title:
            raise ValidationError("Edition title is required.")

        raw_date = (form.publication_date or "").strip()
        if not DATE_PATTERN.match(raw_date):
            raise ValidationError("Publication date is required and must be in YYYY-MM-DD format.")
        try:
            publication_date = date.fromisoformat(raw_date)
        except ValueError as exc:
            raise ValidationError("Publication date is not a valid calendar date.") from exc

        category_id = self._parse_category_id(form.category_id)

        if pdf is None:
            if require_pdf:
                raise ValidationError("PDF file upload failed or no file was selected.")
        else:
            self._validate_pdf(pdf)

        with self.database.connection() as conn:
            if not EditionRepository(conn).category_exists(category_id):
                raise ValidationError("Selected category does not exist.")

        return ValidatedEdition(
            title=title,
            publication_date=publication_date,
            category_id=category_id,
            description=_clean_optional(form.description),
            status=parse_status(form.status),
            status_reason=_clean_optional(form.status_reason),
        )

    @staticmethod
    def _parse_category_id(value: Union[str, int, None]) -> int:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError("Category is required.")
        try:
            category_id = int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Category is invalid.") from exc
        if category_id <= 0:
            raise ValidationError("Category is invalid.")
        return category_id

    def _validate_pdf(self, pdf: IncomingPdf) -> None:
        if (pdf.content_type or "").lower() not in self.allowed_content_types:
            raise ValidationError("Invalid file type. Only PDF files are allowed.")
        if pdf.size > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes // (1024 * 1024)
            raise ValidationError(f"File size exceeds {limit_mb}MB limit.")

    # ------------------------------------------------------------------
    # Use cases
    # ------------------------------------------------------------------

    def create_edition(self, form: EditionForm, pdf: Optional[IncomingPdf], actor: ActorContext) -> IngestionOutcome:
        """
        Store, rasterize and register a new edition.

        Args:
            form: Submitted form fields
            pdf: The uploaded PDF (required)
            actor: The authenticated uploader

        Returns:
            IngestionOutcome with the new edition id

        Raises:
            IngestionError: A subclass naming the failed stage; nothing is left
                in the database and the new directory has been cleaned up
        """
        validated = self.validate(form, pdf, require_pdf=True)
        assert pdf is not None

        location: Optional[EditionLocation] = None
        warnings: List[str] = []
        try:
            with self.database.transaction() as conn:
                location = self.layout.allocate(validated.publication_date)
                files = self._ingest_pdf(pdf, location, warnings)
                edition_id = EditionRepository(conn).insert(
                    self._values(validated, files, uploader_user_id=actor.user_id)
                )
        except IngestionError as exc:
            self._clean_up_failure("Edition upload", exc, location)
            raise
        except Exception as exc:
            self._clean_up_failure("Edition upload", exc, location)
            raise IngestionError("An unexpected error occurred while uploading the edition.", detail=str(exc)) from exc

        logger.info(f"Edition {edition_id} created by user {actor.user_id} ({files.page_count} pages)")
        return IngestionOutcome(edition_id=edition_id, message="Edition uploaded successfully!", warnings=warnings)

    def update_edition(
        self,
        edition_id: int,
        form: EditionForm,
        pdf: Optional[IncomingPdf],
        actor: ActorContext,
        current_pdf_path: Optional[str] = None,
    ) -> IngestionOutcome:
        """
        Update an edition's fields and, when a new file is supplied, replace its PDF.

        With a new file the previous directory tree is removed first, then the
        create pipeline runs against the (possibly new) publication date. Without
        one, PDF path, thumbnails, page count and size are carried forward.

        Args:
            edition_id: Edition to update
            form: Submitted form fields
            pdf: Replacement PDF, or None to keep the current files
            actor: The authenticated editor
            current_pdf_path: PDF path the client last saw; the stored row wins
                if they differ

        Raises:
            EditionNotFoundError: If the edition does not exist
            IngestionError: A subclass naming the failed stage
        """
        validated = self.validate(form, pdf, require_pdf=False)
        existing = self.get_edition(edition_id)
        if existing is None:
            raise EditionNotFoundError("Edition not found.")
        if current_pdf_path and current_pdf_path != existing.pdf_path:
            logger.warning(
                f"Edition {edition_id}: submitted current_pdf_path {current_pdf_path!r} "
                f"differs from stored {existing.pdf_path!r}; using stored path"
            )

        location: Optional[EditionLocation] = None
        warnings: List[str] = []
        try:
            with self.database.transaction() as conn:
                if pdf is not None:
                    if self.layout.discard(self.layout.locate(existing.pdf_path)):
                        warnings.append(PREVIOUS_FILES_WARNING)
                    location = self.layout.allocate(validated.publication_date)
                    files = self._ingest_pdf(pdf, location, warnings)
                else:
                    files = IngestedFiles(
                        pdf_path=existing.pdf_path,
                        og_image_path=existing.og_image_path,
                        list_thumb_path=existing.list_thumb_path,
                        page_count=existing.page_count,
                        file_size_bytes=existing.file_size_bytes,
                    )
                updated = EditionRepository(conn).update(
                    edition_id, self._values(validated, files, uploader_user_id=existing.uploader_user_id)
                )
                if not updated:
                    raise EditionNotFoundError("Edition not found.")
        except IngestionError as exc:
            self._clean_up_failure("Edition update", exc, location)
            raise
        except Exception as exc:
            self._clean_up_failure("Edition update", exc, location)
            raise IngestionError("An unexpected error occurred while updating the edition.", detail=str(exc)) from exc

        logger.info(f"Edition {edition_id} updated by user {actor.user_id} (new file: {pdf is not None})")
        return IngestionOutcome(edition_id=edition_id, message="Edition updated successfully!", warnings=warnings)

    def delete_edition(self, edition_id: int, actor: ActorContext) -> IngestionOutcome:
        """
        Delete an edition's files and then its row.

        Files go first: the PDF, the page images and thumbnails, the images
        directory, the edition directory and any date directories left empty.
        File failures are logged and reported as a warning. If the row delete
        then fails, the files are already gone; that window is logged.

        Raises:
            EditionNotFoundError: If the edition does not exist (including a
                second delete of the same id)
            PersistenceError: If the row cannot be deleted
        """
        warnings: List[str] = []
        with self.database.transaction() as conn:
            repository = EditionRepository(conn)
            record = repository.get(edition_id)
            if record is None:
                raise EditionNotFoundError("Edition not found.")

            directory = self.layout.locate(record.pdf_path)
            if directory is None:
                logger.warning(f"Edition {edition_id} has no removable directory; deleting record only")
            elif self.layout.discard(directory):
                warnings.append(LEFTOVER_FILES_WARNING)

            try:
                deleted = repository.delete(edition_id)
            except PersistenceError as exc:
                logger.error(
                    f"Edition {edition_id}: files were removed but the record could not be deleted: {exc.detail}"
                )
                raise
            if not deleted:
                raise EditionNotFoundError("Edition not found.")

        logger.info(f"Edition {edition_id} deleted by user {actor.user_id}")
        return IngestionOutcome(edition_id=edition_id, message="Edition deleted successfully!", warnings=warnings)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_edition(self, edition_id: int) -> Optional[EditionRecord]:
        with self.database.connection() as conn:
            return EditionRepository(conn).get(edition_id)

    def list_editions(
        self,
        published_only: bool = True,
        publication_date: Optional[date] = None,
        category_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[EditionRecord]:
        with self.database.connection() as conn:
            return EditionRepository(conn).list_editions(
                published_only=published_only,
                publication_date=publication_date,
                category_id=category_id,
                limit=limit,
                offset=offset,
            )

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _ingest_pdf(self, pdf: IncomingPdf, location: EditionLocation, warnings: List[str]) -> IngestedFiles:
        """Place the PDF, rasterize it and derive thumbnails."""
        file_size = self._store_pdf(pdf, location.pdf_path)
        raster = self.converter.render(location.pdf_path, location.images_dir)
        thumbs = self.thumbnails.generate(raster.first_page, location.images_dir)
        warnings.extend(error.message for error in thumbs.errors)

        return IngestedFiles(
            pdf_path=location.web_pdf_path,
            og_image_path=location.web_image_path(thumbs.og_path.name) if thumbs.og_path else None,
            list_thumb_path=location.web_image_path(thumbs.list_path.name) if thumbs.list_path else None,
            page_count=raster.page_count,
            file_size_bytes=file_size,
        )

    @staticmethod
    def _store_pdf(pdf: IncomingPdf, destination: Path) -> int:
        """
        Copy the upload stream to its canonical location.

        Returns:
            Number of bytes written

        Raises:
            StorageError: If the file cannot be written
        """
        try:
            with destination.open("xb") as buffer:
                while chunk := pdf.stream.read(COPY_CHUNK_SIZE):
                    buffer.write(chunk)
            destination.chmod(FILE_MODE)
            return destination.stat().st_size
        except OSError as exc:
            raise StorageError("Failed to move uploaded PDF file.", detail=f"{destination}: {exc}") from exc

    @staticmethod
    def _values(validated: ValidatedEdition, files: IngestedFiles, uploader_user_id: Optional[int]) -> EditionValues:
        return EditionValues(
            title=validated.title,
            publication_date=validated.publication_date,
            category_id=validated.category_id,
            description=validated.description,
            status=validated.status,
            status_reason=validated.status_reason,
            pdf_path=files.pdf_path,
            og_image_path=files.og_image_path,
            list_thumb_path=files.list_thumb_path,
            page_count=files.page_count,
            file_size_bytes=files.file_size_bytes,
            uploader_user_id=uploader_user_id,
        )

    def _clean_up_failure(self, action: str, exc: Exception, location: Optional[EditionLocation]) -> None:
        """
        Log a failed pipeline and remove the directory allocated for it.

        The transaction has already been rolled back by the time this runs.
        Cleanup problems are logged by the layout and never replace ``exc``.
        """
        if isinstance(exc, IngestionError):
            logger.error(f"{action} failed at {exc.stage}: {exc.message} ({exc.detail or 'no detail'})")
        else:
            logger.exception(f"{action} failed unexpectedly")

        if location is not None:
            logger.info(f"Cleaning up {location.directory} after failed {action.lower()}")
            self.layout.discard(location.directory)


def build_edition_service(settings: DictConfig, database: EditionDatabase) -> EditionService:
    return EditionService(
        database=database,
        layout=StorageLayout.from_settings(settings),
        converter=build_converter(settings),
        thumbnails=ThumbnailGenerator.from_settings(settings),
        max_upload_bytes=int(settings.upload.max_bytes),
        allowed_content_types=list(settings.upload.allowed_content_types),
    )
