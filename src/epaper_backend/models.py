from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class EditionStatus(str, Enum):
    PUBLISHED = "published"
    PRIVATE = "private"


class EditionRecord(BaseModel):
    id: int
    title: str
    publication_date: date
    category_id: int
    description: Optional[str] = None
    status: EditionStatus
    status_reason: Optional[str] = None
    pdf_path: str
    og_image_path: Optional[str] = None
    list_thumb_path: Optional[str] = None
    page_count: int
    file_size_bytes: int
    uploader_user_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class IngestionResponse(BaseModel):
    success: bool
    message: str
    edition_id: Optional[int] = None
    stage: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class UploadLimits(BaseModel):
    max_upload_bytes: int
    allowed_content_types: List[str]
    raster_density: int
    raster_quality: int
    og_thumb_width: int
    og_thumb_height: int
    list_thumb_height: int
