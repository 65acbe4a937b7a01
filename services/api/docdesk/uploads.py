from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload, sessionmaker

from .checklists import apply_aggregates, apply_item_status, find_item, get_live_checklist
from .config import Settings
from .errors import BadRequestError, DocDeskError, ForbiddenError, NotFoundError, StorageError
from .models import (
    Checklist,
    ChecklistStatus,
    Client,
    ItemStatus,
    StoredFile,
    UploadChannel,
    UploadToken,
    log_activity,
)
from .paths import StoragePathResolver
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/csv",
    "application/zip",
}


@dataclass
class UploadedFile:
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


def validate_file(file: UploadedFile, max_bytes: int) -> None:
    if not file.content:
        raise BadRequestError("File is empty")
    if file.content_type not in ALLOWED_MIME_TYPES:
        raise BadRequestError(f"File type {file.content_type or 'unknown'} is not allowed")
    if file.size > max_bytes:
        raise BadRequestError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB")


def token_is_live(tok: UploadToken, now: datetime) -> bool:
    return not tok.is_used and now < tok.expires_at and tok.upload_count < tok.max_uploads


class UploadTokenService:
    """Upload links for clients plus the admin and WhatsApp upload hooks.

    All three channels share one storage path: validate the file, write the
    object, then record the file and move the item to ``uploaded`` in a single
    commit. Upload links claim their quota slot before the write and commit it
    with the file. A storage failure leaves the checklist and the token untouched.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        storage: ObjectStorage,
        resolver: StoragePathResolver,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.resolver = resolver
        self.settings = settings
        self.clock = clock

    # ---------- Tokens ----------

    def issue(self, checklist_id: str, issuer_id: str, ip: Optional[str] = None) -> Dict[str, Any]:
        now = self.clock()
        with self.session_factory() as db:
            chk = get_live_checklist(db, checklist_id)
            token = secrets.token_hex(32)
            expires_at = now + timedelta(days=self.settings.upload_token_ttl_days)
            db.add(
                UploadToken(
                    id=uuid.uuid4().hex,
                    token=token,
                    checklist_id=chk.id,
                    client_id=chk.client_id,
                    expires_at=expires_at,
                    is_used=False,
                    max_uploads=chk.total_items or self.settings.default_max_uploads,
                    upload_count=0,
                )
            )
            log_activity(
                db,
                "UPLOAD_LINK_GENERATED",
                f'Generated upload link for checklist "{chk.name}"',
                user_id=issuer_id,
                entity_id=chk.id,
                ip=ip,
            )
            db.commit()
            logger.info("[uploads] issued token %s... for checklist %s", token[:8], chk.id)
        return {
            "token": token,
            "url": f"{self.settings.frontend_url}/upload/{token}",
            "expires_at": expires_at,
        }

    def _get_token(self, db: Session, token: str) -> UploadToken:
        tok = db.scalar(select(UploadToken).where(UploadToken.token == token))
        if not tok:
            raise NotFoundError("Invalid upload link")
        return tok

    def validate(self, token: str) -> Dict[str, Any]:
        """Read-only check used to render the upload page."""
        now = self.clock()
        with self.session_factory() as db:
            tok = self._get_token(db, token)
            chk = get_live_checklist(db, tok.checklist_id, with_client=True)
            return {
                "checklist": chk,
                "client": chk.client,
                "items": list(chk.items or []),
                "expired": now > tok.expires_at or tok.is_used,
                "can_upload": token_is_live(tok, now),
                "uploads_remaining": max(tok.max_uploads - tok.upload_count, 0),
            }

    def consume(self, token: str, item_id: str, file: UploadedFile) -> Dict[str, Any]:
        now = self.clock()
        with self.session_factory() as db:
            tok = self._get_token(db, token)
            if now > tok.expires_at:
                raise ForbiddenError("Upload link has expired")
            if tok.is_used:
                raise ForbiddenError("Upload link has already been used")
            if tok.upload_count >= tok.max_uploads:
                raise BadRequestError("Maximum upload limit reached")
            validate_file(file, self.settings.max_file_size_bytes)

            chk = get_live_checklist(db, tok.checklist_id, with_client=True)
            if find_item(chk.items or [], item_id) is None:
                raise BadRequestError("Checklist item not found")

            seen_count = tok.upload_count
            try:
                item = self._store_checklist_file(
                    db,
                    chk,
                    item_id,
                    file,
                    channel=UploadChannel.UPLOAD_LINK,
                    uploaded_by=tok.client_id,
                    now=now,
                    before_write=lambda: self._claim_upload(db, tok.id, seen_count),
                )
            except StorageError:
                db.rollback()
                raise
            db.commit()
            logger.info("[uploads] token %s... upload %s/%s", token[:8], seen_count + 1, tok.max_uploads)
            return {"item": item, "checklist": chk}

    def _claim_upload(self, db: Session, token_id: str, seen_count: int) -> None:
        """Increment ``upload_count`` only if no other consumer moved it first."""
        for _ in range(2):
            result = db.execute(
                update(UploadToken)
                .where(UploadToken.id == token_id, UploadToken.upload_count == seen_count)
                .values(upload_count=seen_count + 1, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return
            current = db.execute(
                select(UploadToken.upload_count, UploadToken.max_uploads).where(UploadToken.id == token_id)
            ).one()
            if current.upload_count >= current.max_uploads:
                break
            seen_count = current.upload_count
        db.rollback()
        raise BadRequestError("Maximum upload limit reached")

    # ---------- Admin and WhatsApp ----------

    def upload_via_admin(
        self,
        checklist_id: str,
        item_id: str,
        file: UploadedFile,
        user_id: str,
        ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        validate_file(file, self.settings.max_file_size_bytes)
        now = self.clock()
        with self.session_factory() as db:
            chk = get_live_checklist(db, checklist_id, with_client=True)
            if find_item(chk.items or [], item_id) is None:
                raise NotFoundError("Checklist item not found")
            item = self._store_checklist_file(
                db, chk, item_id, file, channel=UploadChannel.ADMIN, uploaded_by=user_id, now=now
            )
            log_activity(
                db,
                "CHECKLIST_FILE_UPLOADED",
                f'Uploaded "{file.filename}" for "{item["label"]}" in checklist "{chk.name}"',
                user_id=user_id,
                entity_id=chk.id,
                ip=ip,
            )
            db.commit()
            return {"item": item, "checklist": chk}

    def upload_via_whatsapp(
        self,
        client_id: str,
        checklist_id: str,
        file: UploadedFile,
        item_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Attach a document received over WhatsApp.

        Without ``item_id`` the first pending item is used. Returns None when
        nothing could be attached so the bot can answer the client itself.
        """
        now = self.clock()
        try:
            validate_file(file, self.settings.max_whatsapp_file_size_bytes)
            with self.session_factory() as db:
                chk = db.scalar(
                    select(Checklist).where(
                        Checklist.id == checklist_id,
                        Checklist.client_id == client_id,
                        Checklist.status == ChecklistStatus.ACTIVE,
                        Checklist.deleted_at.is_(None),
                    )
                    .options(selectinload(Checklist.client))
                )
                if not chk:
                    logger.warning("[uploads] no active checklist %s for client %s", checklist_id, client_id)
                    return None
                items = chk.items or []
                target = find_item(items, item_id) if item_id else next(
                    (i for i in items if i["status"] == ItemStatus.PENDING.value), None
                )
                if target is None:
                    logger.info("[uploads] no target item on checklist %s for WhatsApp upload", checklist_id)
                    return None
                item = self._store_checklist_file(
                    db, chk, target["id"], file, channel=UploadChannel.WHATSAPP, uploaded_by=client_id, now=now
                )
                db.commit()
                return {"item": item, "checklist": chk}
        except DocDeskError as exc:
            logger.error("[uploads] WhatsApp upload for checklist %s failed: %s", checklist_id, exc.message)
            return None

    def download_item_file(
        self,
        checklist_id: str,
        item_id: str,
        user_id: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        with self.session_factory() as db:
            chk = get_live_checklist(db, checklist_id)
            item = find_item(chk.items or [], item_id)
            if item is None:
                raise NotFoundError("Checklist item not found")
            if not item.get("s3_path"):
                raise NotFoundError("File not uploaded yet")
            url = self.storage.signed_url(item["s3_path"])
            log_activity(
                db,
                "CHECKLIST_FILE_DOWNLOADED",
                f'Downloaded "{item.get("file_name")}" for "{item["label"]}" in checklist "{chk.name}"',
                user_id=user_id,
                entity_id=chk.id,
                ip=ip,
            )
            db.commit()
            logger.info("[uploads] signed download for %s/%s by %s", checklist_id, item_id, user_id)
            return {"url": url, "file_name": item.get("file_name"), "expires_in": self.settings.signed_url_ttl_seconds}

    # ---------- Shared ----------

    def _store_checklist_file(
        self,
        db: Session,
        chk: Checklist,
        item_id: str,
        file: UploadedFile,
        *,
        channel: UploadChannel,
        uploaded_by: Optional[str],
        now: datetime,
        before_write: Optional[Callable[[], None]] = None,
    ) -> Dict[str, Any]:
        """Write the object, then stage the file row and the item update on ``db``.

        ``before_write`` runs on ``db`` ahead of the storage write, so a quota
        claim that loses a race never touches the stored object. Nothing is
        committed here.
        """
        client: Client = chk.client
        items = list(chk.items or [])
        target = find_item(items, item_id)
        key = self.resolver.object_key(client.code, chk.financial_year, chk.name, target["label"], file.filename)
        # folder rows commit in their own sessions, so resolve them before staging anything on db
        folder = self.resolver.ensure_checklist_folder(client.id, client.code, chk.financial_year, chk.name)
        if before_write is not None:
            before_write()

        self.storage.put(
            key,
            file.content,
            content_type=file.content_type,
            metadata={
                "client-code": client.code,
                "checklist-id": chk.id,
                "item-id": item_id,
                "uploaded-via": channel.value,
            },
        )

        stored = StoredFile(
            id=uuid.uuid4().hex,
            file_name=key.rsplit("/", 1)[-1],
            original_name=file.filename,
            s3_path=key,
            mime_type=file.content_type,
            size_bytes=file.size,
            folder_id=folder.id,
            uploaded_by=uploaded_by,
        )
        db.add(stored)

        updated = apply_item_status(
            target,
            ItemStatus.UPLOADED,
            now,
            file_id=stored.id,
            file_name=file.filename,
            s3_path=key,
            uploaded_via=channel.value,
        )
        apply_aggregates(chk, [updated if i["id"] == item_id else i for i in items], now)
        logger.info("[uploads] %s stored %s for checklist %s", channel.value, key, chk.id)
        return updated
