"""
Failure taxonomy for the edition ingestion pipeline.

Every fatal failure carries the pipeline ``stage`` it happened in and a
client-safe ``message``. Anything that could leak filesystem paths or tool
output goes into ``detail``, which is logged server-side and never returned
to the caller.
"""

from __future__ import annotations

from typing import Optional


class IngestionError(Exception):
    """Base class for edition pipeline failures."""

    stage = "ingestion"
    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(IngestionError):
    """Bad or missing form field, or an unacceptable file. Raised before any side effect."""

    stage = "validation"
    status_code = 400


class EditionNotFoundError(IngestionError):
    stage = "lookup"
    status_code = 404


class StorageError(IngestionError):
    """Directory allocation or file placement failed."""

    stage = "storage"


class ConversionError(IngestionError):
    """The raster tool failed or produced no page images."""

    stage = "conversion"


class ThumbnailError(IngestionError):
    """
    A thumbnail derivation failed.

    Never fatal: the generator records it and the affected path is stored
    as null.
    """

    stage = "thumbnail"


class PersistenceError(IngestionError):
    """Database insert, update or delete failed."""

    stage = "persistence"
