from __future__ import annotations

import logging
import os
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .auth import ActorContext, get_actor, require_edition_manager
from .configuration import build_upload_limits, load_settings
from .database import EditionDatabase
from .exceptions import IngestionError
from .ingestion import EditionForm, EditionService, IncomingPdf, build_edition_service
from .models import EditionRecord, EditionStatus, IngestionResponse, UploadLimits
from .utils import ensure_directory

settings = load_settings()
logging.getLogger("epaper_backend").setLevel(str(settings.logging.level).upper())

app = FastAPI(title="E-Paper Edition API", version="0.1.0")

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database = EditionDatabase(Path(settings.database.path))
edition_service = build_edition_service(settings, database)
ensure_directory(edition_service.layout.upload_root)

app.mount(settings.storage.web_prefix, StaticFiles(directory=edition_service.layout.upload_root), name="uploads")


def get_edition_service() -> EditionService:
    return edition_service


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    body = IngestionResponse(success=False, message=exc.message, stage=exc.stage)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def _incoming_pdf(upload: Optional[UploadFile]) -> Optional[IncomingPdf]:
    """Wrap an UploadFile without reading it; an empty file part counts as no file."""
    if upload is None or not upload.filename:
        return None
    size = upload.size
    if size is None:
        upload.file.seek(0, os.SEEK_END)
        size = upload.file.tell()
        upload.file.seek(0)
    return IncomingPdf(
        filename=upload.filename,
        content_type=upload.content_type,
        size=size,
        stream=upload.file,
    )


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/config/limits", response_model=UploadLimits)
def get_upload_limits() -> UploadLimits:
    return build_upload_limits(settings)


@app.get("/editions", response_model=List[EditionRecord])
def list_editions(
    publication_date: Optional[date] = Query(None),
    category_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: EditionService = Depends(get_edition_service),
) -> List[EditionRecord]:
    return service.list_editions(
        published_only=True,
        publication_date=publication_date,
        category_id=category_id,
        limit=limit,
        offset=offset,
    )


@app.get("/editions/{edition_id}", response_model=EditionRecord)
def get_edition(
    edition_id: int,
    actor: Optional[ActorContext] = Depends(get_actor),
    service: EditionService = Depends(get_edition_service),
) -> EditionRecord:
    edition = service.get_edition(edition_id)
    if edition is None or (edition.status != EditionStatus.PUBLISHED and actor is None):
        raise HTTPException(status_code=404, detail="Edition not found")
    return edition


@app.post("/editions", response_model=IngestionResponse)
def create_edition(
    title: str = Form(""),
    publication_date: str = Form(""),
    category_id: str = Form(""),
    description: str = Form(""),
    status: str = Form("private"),
    status_reason: str = Form(""),
    pdf_file: Optional[UploadFile] = File(None),
    actor: ActorContext = Depends(require_edition_manager),
    service: EditionService = Depends(get_edition_service),
) -> IngestionResponse:
    form = EditionForm(
        title=title,
        publication_date=publication_date,
        category_id=category_id,
        description=description,
        status=status,
        status_reason=status_reason,
    )
    outcome = service.create_edition(form, _incoming_pdf(pdf_file), actor)
    return IngestionResponse(
        success=True,
        message=outcome.message,
        edition_id=outcome.edition_id,
        warnings=outcome.warnings,
    )


@app.put("/editions/{edition_id}", response_model=IngestionResponse)
def update_edition(
    edition_id: int,
    title: str = Form(""),
    publication_date: str = Form(""),
    category_id: str = Form(""),
    description: str = Form(""),
    status: str = Form("private"),
    status_reason: str = Form(""),
    current_pdf_path: str = Form(""),
    pdf_file: Optional[UploadFile] = File(None),
    actor: ActorContext = Depends(require_edition_manager),
    service: EditionService = Depends(get_edition_service),
) -> IngestionResponse:
    form = EditionForm(
        title=title,
        publication_date=publication_date,
        category_id=category_id,
        description=description,
        status=status,
        status_reason=status_reason,
    )
    outcome = service.update_edition(
        edition_id,
        form,
        _incoming_pdf(pdf_file),
        actor,
        current_pdf_path=current_pdf_path or None,
    )
    return IngestionResponse(
        success=True,
        message=outcome.message,
        edition_id=outcome.edition_id,
        warnings=outcome.warnings,
    )


@app.delete("/editions/{edition_id}", response_model=IngestionResponse)
def delete_edition(
    edition_id: int,
    actor: ActorContext = Depends(require_edition_manager),
    service: EditionService = Depends(get_edition_service),
) -> IngestionResponse:
    outcome = service.delete_edition(edition_id, actor)
    return IngestionResponse(
        success=True,
        message=outcome.message,
        edition_id=outcome.edition_id,
        warnings=outcome.warnings,
    )
