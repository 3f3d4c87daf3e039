"""
E-Paper Backend - REST API for newspaper edition publishing

This package provides a FastAPI-based web service that ingests PDF editions
of a newspaper and publishes them as browsable page images. It enables:

- PDF edition uploads and validation
- Synchronous rasterization of every page into JPEG images
- Open Graph and listing thumbnails derived from the first page
- Transactional edition records with compensating file cleanup
- Public browsing of published editions by date and category

The backend treats the raster tool as an external collaborator: conversion is
delegated to ImageMagick or poppler, and the API only lays out directories,
interprets the tool's results and keeps database rows and files in step.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - ingestion: Edition create/replace/delete orchestration
    - storage: Date-partitioned edition directory layout
    - rasterizer: PDF to page image conversion adapters
    - thumbnails: OG and list thumbnail derivation
    - repository: Edition row persistence inside a transaction
    - database: SQLite connection and schema management
    - configuration: Settings loading and merging logic
    - models: Pydantic models for request/response payloads

Usage:
    Run the API server with:
        uvicorn epaper_backend.main:app --reload --host 0.0.0.0 --port 8000

Architecture Principles:
    - A row and its directory tree live and die together
    - Thumbnails are optional, pages are not
    - Cleanup is best-effort and never hides the primary outcome
    - Identity arrives as an explicit ActorContext, never ambient state
"""
from __future__ import annotations

__version__ = "0.1.0"
