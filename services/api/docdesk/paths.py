from __future__ import annotations

import logging
import os
import re
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .models import Folder

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.\- ]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_name(name: str) -> str:
    """Drop characters outside [A-Za-z0-9_.- ] and turn whitespace runs into underscores."""
    cleaned = _UNSAFE_CHARS.sub("", name or "").strip()
    return _WHITESPACE.sub("_", cleaned)


def checklist_base_name(checklist_name: str) -> str:
    # bulk-issued checklists are named "<template> - <FY>"; the folder uses the template part
    return checklist_name.split(" - ")[0]


def file_extension(filename: str, default: str = ".pdf") -> str:
    return os.path.splitext(filename or "")[1] or default


def build_object_key(
    client_code: str,
    financial_year: str,
    checklist_name: str,
    item_label: str,
    extension: str,
) -> str:
    return (
        f"clients/{client_code}/{financial_year}/"
        f"{sanitize_name(checklist_base_name(checklist_name))}/{sanitize_name(item_label)}{extension}"
    )


def _slug(value: str) -> str:
    return _WHITESPACE.sub("-", value.strip().lower())


class StoragePathResolver:
    """Folder index for client uploads: root -> year -> checklist folder.

    Nodes are created lazily. A unique-constraint violation while creating a
    node means a concurrent caller got there first, so the existing row is used.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def object_key(self, client_code: str, financial_year: str, checklist_name: str, item_label: str, filename: str) -> str:
        return build_object_key(client_code, financial_year, checklist_name, item_label, file_extension(filename))

    def ensure_checklist_folder(
        self,
        client_id: str,
        client_code: str,
        financial_year: str,
        checklist_name: str,
    ) -> Folder:
        folder_name = sanitize_name(checklist_base_name(checklist_name))
        root = self._ensure_folder(
            client_id=client_id,
            parent_id=None,
            name=client_code,
            slug=client_code.lower(),
            folder_type="root",
            s3_prefix=f"clients/{client_code}/",
        )
        year = self._ensure_folder(
            client_id=client_id,
            parent_id=root.id,
            name=financial_year,
            slug=_slug(financial_year),
            folder_type="year",
            s3_prefix=f"clients/{client_code}/{financial_year}/",
        )
        return self._ensure_folder(
            client_id=client_id,
            parent_id=year.id,
            name=folder_name,
            slug=_slug(folder_name),
            folder_type="documents",
            s3_prefix=f"clients/{client_code}/{financial_year}/{folder_name}/",
        )

    def _find(self, db, client_id: str, s3_prefix: str) -> Optional[Folder]:
        return db.scalar(select(Folder).where(Folder.client_id == client_id, Folder.s3_prefix == s3_prefix))

    def _ensure_folder(
        self,
        *,
        client_id: str,
        parent_id: Optional[str],
        name: str,
        slug: str,
        folder_type: str,
        s3_prefix: str,
    ) -> Folder:
        with self.session_factory() as db:
            existing = self._find(db, client_id, s3_prefix)
            if existing:
                return existing
            folder = Folder(
                id=uuid.uuid4().hex,
                name=name,
                slug=slug,
                type=folder_type,
                client_id=client_id,
                parent_id=parent_id,
                s3_prefix=s3_prefix,
            )
            db.add(folder)
            try:
                db.commit()
                logger.info("[paths] created %s folder %s", folder_type, s3_prefix)
                return folder
            except IntegrityError:
                db.rollback()
                logger.info("[paths] folder %s already created concurrently", s3_prefix)
                existing = self._find(db, client_id, s3_prefix)
                if existing is None:
                    raise
                return existing
