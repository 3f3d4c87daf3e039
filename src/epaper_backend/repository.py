"""
Edition row persistence.

An EditionRepository wraps a connection handed to it by the caller, normally
one opened with ``EditionDatabase.transaction()``, so inserts, updates and
deletes commit or roll back together with the rest of the ingestion.
"""

from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import List, Optional

from .database import utc_now
from .exceptions import PersistenceError
from .models import EditionRecord, EditionStatus


@dataclass
class EditionValues:
    """Column values written on insert and update."""

    title: str
    publication_date: date
    category_id: int
    description: Optional[str]
    status: EditionStatus
    status_reason: Optional[str]
    pdf_path: str
    og_image_path: Optional[str]
    list_thumb_path: Optional[str]
    page_count: int
    file_size_bytes: int
    uploader_user_id: Optional[int]

    def as_params(self) -> dict:
        params = asdict(self)
        params["publication_date"] = self.publication_date.isoformat()
        params["status"] = EditionStatus(self.status).value
        return params


def _row_to_record(row: sqlite3.Row) -> EditionRecord:
    return EditionRecord(
        id=row["edition_id"],
        title=row["title"],
        publication_date=date.fromisoformat(row["publication_date"]),
        category_id=row["category_id"],
        description=row["description"],
        status=EditionStatus(row["status"]),
        status_reason=row["status_reason"],
        pdf_path=row["pdf_path"],
        og_image_path=row["og_image_path"],
        list_thumb_path=row["list_thumb_path"],
        page_count=row["page_count"],
        file_size_bytes=row["file_size_bytes"],
        uploader_user_id=row["uploader_user_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class EditionRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def insert(self, values: EditionValues) -> int:
        """
        Insert an edition row.

        Returns:
            The new edition id

        Raises:
            PersistenceError: If the insert fails
        """
        params = values.as_params()
        now = utc_now()
        params.update(created_at=now, updated_at=now)
        try:
            cursor = self.conn.execute("""
                INSERT INTO editions (
                    title, publication_date, category_id, description,
                    status, status_reason, pdf_path, og_image_path,
                    list_thumb_path, page_count, file_size_bytes,
                    uploader_user_id, created_at, updated_at
                ) VALUES (
                    :title, :publication_date, :category_id, :description,
                    :status, :status_reason, :pdf_path, :og_image_path,
                    :list_thumb_path, :page_count, :file_size_bytes,
                    :uploader_user_id, :created_at, :updated_at
                )
            """, params)
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to save edition.", detail=str(exc)) from exc
        return int(cursor.lastrowid)

    def update(self, edition_id: int, values: EditionValues) -> bool:
        """
        Overwrite an edition row. ``uploader_user_id`` keeps its original value.

        Returns:
            True if a row was updated, False if it no longer exists

        Raises:
            PersistenceError: If the update fails
        """
        params = values.as_params()
        params.update(edition_id=edition_id, updated_at=utc_now())
        try:
            cursor = self.conn.execute("""
                UPDATE editions SET
                    title = :title,
                    publication_date = :publication_date,
                    category_id = :category_id,
                    description = :description,
                    status = :status,
                    status_reason = :status_reason,
                    pdf_path = :pdf_path,
                    og_image_path = :og_image_path,
                    list_thumb_path = :list_thumb_path,
                    page_count = :page_count,
                    file_size_bytes = :file_size_bytes,
                    updated_at = :updated_at
                WHERE edition_id = :edition_id
            """, params)
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to update edition.", detail=str(exc)) from exc
        return cursor.rowcount > 0

    def delete(self, edition_id: int) -> bool:
        """
        Delete an edition row.

        Returns:
            True if deleted, False if not found
        """
        try:
            cursor = self.conn.execute("DELETE FROM editions WHERE edition_id = ?", (edition_id,))
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to delete edition.", detail=str(exc)) from exc
        return cursor.rowcount > 0

    def get(self, edition_id: int) -> Optional[EditionRecord]:
        try:
            row = self.conn.execute(
                "SELECT * FROM editions WHERE edition_id = ?", (edition_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to load edition.", detail=str(exc)) from exc
        return _row_to_record(row) if row else None

    def list_editions(
        self,
        published_only: bool = True,
        publication_date: Optional[date] = None,
        category_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[EditionRecord]:
        """
        List editions, newest publication date first, then by title.

        Args:
            published_only: Hide private editions (public browsing)
            publication_date: Only editions published on this date
            category_id: Only editions in this category
            limit: Maximum number of rows
            offset: Rows to skip
        """
        clauses = ["1=1"]
        params: list = []
        if published_only:
            clauses.append("status = ?")
            params.append(EditionStatus.PUBLISHED.value)
        if publication_date is not None:
            clauses.append("publication_date = ?")
            params.append(publication_date.isoformat())
        if category_id is not None:
            clauses.append("category_id = ?")
            params.append(category_id)
        params.extend([limit, offset])

        try:
            rows = self.conn.execute(
                f"SELECT * FROM editions WHERE {' AND '.join(clauses)} "
                "ORDER BY publication_date DESC, title ASC, edition_id DESC LIMIT ? OFFSET ?",
                params,
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to list editions.", detail=str(exc)) from exc
        return [_row_to_record(row) for row in rows]

    def category_exists(self, category_id: int) -> bool:
        try:
            row = self.conn.execute(
                "SELECT 1 FROM categories WHERE category_id = ?", (category_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to look up category.", detail=str(exc)) from exc
        return row is not None
