from __future__ import annotations

import logging
import math
import uuid
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from .errors import BadRequestError, ConflictError, NotFoundError
from .models import (
    Checklist,
    ChecklistStatus,
    ChecklistTemplate,
    Client,
    ItemStatus,
    ServiceType,
    log_activity,
)

logger = logging.getLogger(__name__)

# uploaded and verified are the review path's names for a received document
RECEIVED_EQUIVALENT = {ItemStatus.UPLOADED, ItemStatus.RECEIVED, ItemStatus.VERIFIED}
SATISFIED = RECEIVED_EQUIVALENT | {ItemStatus.NOT_APPLICABLE}
REVIEW_STATUSES = {ItemStatus.VERIFIED, ItemStatus.REJECTED, ItemStatus.PENDING}


def calculate_progress(items: List[Dict[str, Any]]) -> Tuple[int, int, float]:
    """Return (total_items, received_items, progress) for an item array.

    progress is a percentage rounded half-up to two decimals, 0 when empty.
    """
    total = len(items)
    received = sum(1 for i in items if ItemStatus(i["status"]) in SATISFIED)
    if total == 0:
        return 0, 0, 0.0
    progress = math.floor(received * 10000 / total + 0.5) / 100
    return total, received, progress


def is_complete(items: List[Dict[str, Any]], progress: float) -> bool:
    required_done = all(ItemStatus(i["status"]) in SATISFIED for i in items if i.get("required"))
    return required_done and progress == 100


def new_item(
    label: str,
    description: Optional[str] = None,
    category: Optional[str] = None,
    required: bool = False,
) -> Dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "label": label,
        "description": description,
        "category": category,
        "required": bool(required),
        "status": ItemStatus.PENDING.value,
        "received_date": None,
        "file_id": None,
        "file_name": None,
        "s3_path": None,
        "rejection_reason": None,
        "notes": None,
        "uploaded_via": None,
    }


def clone_template_items(template_items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        new_item(t["label"], t.get("description"), t.get("category"), t.get("required", False))
        for t in template_items
    ]


def apply_item_status(
    item: Dict[str, Any],
    status: ItemStatus | str,
    now: datetime,
    *,
    file_id: Optional[str] = None,
    file_name: Optional[str] = None,
    s3_path: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    notes: Optional[str] = None,
    uploaded_via: Optional[str] = None,
) -> Dict[str, Any]:
    """Return a new item dict with ``status`` and the payload merged in."""
    status = ItemStatus(status)
    previous = ItemStatus(item["status"])
    updated = dict(item)
    updated["status"] = status.value

    entering_received = status in (ItemStatus.RECEIVED, ItemStatus.UPLOADED) and previous not in (
        ItemStatus.RECEIVED,
        ItemStatus.UPLOADED,
    )
    if entering_received or (file_id and file_id != item.get("file_id")):
        updated["received_date"] = now.isoformat()

    if file_id:
        updated["file_id"] = file_id
    if file_name:
        updated["file_name"] = file_name
    if s3_path:
        updated["s3_path"] = s3_path
    if uploaded_via:
        updated["uploaded_via"] = uploaded_via
    if status == ItemStatus.REJECTED:
        if rejection_reason:
            updated["rejection_reason"] = rejection_reason
    else:
        updated["rejection_reason"] = None
    if notes is not None:
        updated["notes"] = notes
    return updated


def apply_aggregates(checklist: Checklist, items: List[Dict[str, Any]], now: datetime) -> None:
    """Store ``items`` on the checklist and recompute every derived field."""
    total, received, progress = calculate_progress(items)
    checklist.items = items
    flag_modified(checklist, "items")
    checklist.total_items = total
    checklist.received_items = received
    checklist.progress = progress

    if checklist.status == ChecklistStatus.ARCHIVED:
        return
    if is_complete(items, progress):
        if checklist.status != ChecklistStatus.COMPLETED:
            checklist.status = ChecklistStatus.COMPLETED
            checklist.completed_at = now
            logger.info("[checklists] checklist %s completed", checklist.id)
    elif checklist.status == ChecklistStatus.COMPLETED:
        checklist.status = ChecklistStatus.ACTIVE
        checklist.completed_at = None


def get_live_checklist(db: Session, checklist_id: str, *, with_client: bool = False) -> Checklist:
    stmt = select(Checklist).where(Checklist.id == checklist_id, Checklist.deleted_at.is_(None))
    if with_client:
        stmt = stmt.options(selectinload(Checklist.client))
    chk = db.scalar(stmt)
    if not chk:
        raise NotFoundError("Checklist not found")
    return chk


def find_existing_client_ids(
    db: Session,
    client_ids: List[str],
    financial_year: str,
    service_type: ServiceType,
) -> Set[str]:
    """Clients among ``client_ids`` that already hold a live checklist for the year and service."""
    if not client_ids:
        return set()
    rows = db.scalars(
        select(Checklist.client_id).where(
            Checklist.client_id.in_(client_ids),
            Checklist.financial_year == financial_year,
            Checklist.service_type == service_type,
            Checklist.deleted_at.is_(None),
        )
    ).all()
    return set(rows)


def find_item(items: List[Dict[str, Any]], item_id: str) -> Optional[Dict[str, Any]]:
    return next((i for i in items if i["id"] == item_id), None)


class ChecklistService:
    """Owns checklist aggregates: item array, progress and status transitions.

    Every mutation is a read-modify-write of the whole item array committed
    in one transaction. Two writers on the same checklist are last-writer-wins.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = datetime.utcnow):
        self.session_factory = session_factory
        self.clock = clock

    # ---------- Checklists ----------

    def create_checklist(
        self,
        *,
        client_id: str,
        name: str,
        financial_year: str,
        service_type: ServiceType | str,
        created_by: str,
        template_id: Optional[str] = None,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> Checklist:
        service_type = ServiceType(service_type)
        with self.session_factory() as db:
            client = db.get(Client, client_id)
            if not client:
                raise NotFoundError("Client not found")

            items: List[Dict[str, Any]] = []
            if template_id:
                tpl = db.get(ChecklistTemplate, template_id)
                if not tpl:
                    raise NotFoundError("Template not found")
                items = clone_template_items(tpl.items)

            if find_existing_client_ids(db, [client_id], financial_year, service_type):
                raise ConflictError(
                    f"Client {client.code} already has a {service_type.value} checklist for FY {financial_year}"
                )

            chk = Checklist(
                id=uuid.uuid4().hex,
                client_id=client_id,
                template_id=template_id,
                name=name,
                financial_year=financial_year,
                service_type=service_type,
                status=ChecklistStatus.ACTIVE,
                due_date=due_date,
                notes=notes,
                created_by=created_by,
            )
            chk.client = client
            apply_aggregates(chk, items, self.clock())
            db.add(chk)
            log_activity(
                db,
                "CHECKLIST_CREATED",
                f'Created checklist "{name}" for client {client.code}',
                user_id=created_by,
                entity_id=chk.id,
                ip=ip,
            )
            db.commit()
            logger.info("[checklists] created %s for client %s (%s items)", chk.id, client.code, len(items))
            return chk

    def get_checklist(self, checklist_id: str) -> Checklist:
        with self.session_factory() as db:
            return get_live_checklist(db, checklist_id, with_client=True)

    def list_checklists(
        self,
        *,
        client_id: Optional[str] = None,
        financial_year: Optional[str] = None,
        service_type: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Checklist], int]:
        conditions = [Checklist.deleted_at.is_(None)]
        if client_id:
            conditions.append(Checklist.client_id == client_id)
        if financial_year:
            conditions.append(Checklist.financial_year == financial_year)
        if service_type:
            conditions.append(Checklist.service_type == ServiceType(service_type))
        if status:
            conditions.append(Checklist.status == ChecklistStatus(status))
        if search:
            conditions.append(Checklist.name.ilike(f"%{search}%"))

        page = max(page, 1)
        with self.session_factory() as db:
            total = db.scalar(select(func.count(Checklist.id)).where(*conditions)) or 0
            rows = db.scalars(
                select(Checklist)
                .where(*conditions)
                .options(selectinload(Checklist.client))
                .order_by(Checklist.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            return list(rows), int(total)

    def update_checklist(self, checklist_id: str, changes: Dict[str, Any], user_id: str) -> Checklist:
        with self.session_factory() as db:
            chk = get_live_checklist(db, checklist_id, with_client=True)
            if changes.get("name"):
                chk.name = changes["name"]
            if "due_date" in changes:
                chk.due_date = changes["due_date"]
            if "notes" in changes:
                chk.notes = changes["notes"]
            if changes.get("status"):
                new_status = ChecklistStatus(changes["status"])
                if new_status == ChecklistStatus.COMPLETED and chk.status != ChecklistStatus.COMPLETED:
                    chk.completed_at = self.clock()
                elif new_status != ChecklistStatus.COMPLETED:
                    chk.completed_at = None
                chk.status = new_status
            db.commit()
            logger.info("[checklists] %s updated by %s", checklist_id, user_id)
            return chk

    def delete_checklist(self, checklist_id: str, user_id: str, ip: Optional[str] = None) -> None:
        with self.session_factory() as db:
            chk = get_live_checklist(db, checklist_id)
            chk.deleted_at = self.clock()
            log_activity(
                db,
                "CHECKLIST_DELETED",
                f'Deleted checklist "{chk.name}"',
                user_id=user_id,
                entity_id=checklist_id,
                ip=ip,
            )
            db.commit()

    # ---------- Items ----------

    def _mutate_items(
        self,
        checklist_id: str,
        mutate: Callable[[Checklist, List[Dict[str, Any]]], List[Dict[str, Any]]],
    ) -> Checklist:
        with self.session_factory() as db:
            chk = get_live_checklist(db, checklist_id, with_client=True)
            items = mutate(chk, list(chk.items or []))
            apply_aggregates(chk, items, self.clock())
            db.commit()
            return chk

    def add_item(
        self,
        checklist_id: str,
        *,
        label: str,
        description: Optional[str] = None,
        category: Optional[str] = None,
        required: bool = False,
    ) -> Checklist:
        if not label or not label.strip():
            raise BadRequestError("Item label is required")

        def mutate(chk, items):
            return items + [new_item(label.strip(), description, category, required)]

        return self._mutate_items(checklist_id, mutate)

    def remove_item(self, checklist_id: str, item_id: str) -> Checklist:
        def mutate(chk, items):
            remaining = [i for i in items if i["id"] != item_id]
            if len(remaining) == len(items):
                raise NotFoundError("Item not found")
            return remaining

        return self._mutate_items(checklist_id, mutate)

    def update_item_status(
        self,
        checklist_id: str,
        item_id: str,
        status: ItemStatus | str,
        *,
        file_id: Optional[str] = None,
        file_name: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> Checklist:
        status = ItemStatus(status)
        now = self.clock()
        with self.session_factory() as db:
            chk = get_live_checklist(db, checklist_id, with_client=True)
            items = list(chk.items or [])
            target = find_item(items, item_id)
            if target is None:
                raise NotFoundError("Checklist item not found")
            updated = apply_item_status(
                target,
                status,
                now,
                file_id=file_id,
                file_name=file_name,
                rejection_reason=rejection_reason,
                notes=notes,
            )
            items = [updated if i["id"] == item_id else i for i in items]
            apply_aggregates(chk, items, now)
            log_activity(
                db,
                "CHECKLIST_ITEM_UPDATED",
                f'Marked "{updated["label"]}" as {status.value} in checklist "{chk.name}"',
                user_id=user_id,
                entity_id=checklist_id,
                ip=ip,
            )
            db.commit()
            return chk

    def bulk_update_item_status(
        self,
        checklist_id: str,
        updates: List[Dict[str, Any]],
        user_id: Optional[str] = None,
    ) -> Checklist:
        """Apply many status changes with a single recompute.

        Unknown item ids are ignored.
        """
        wanted = {u["item_id"]: ItemStatus(u["status"]) for u in updates}
        now = self.clock()

        def mutate(chk, items):
            return [apply_item_status(i, wanted[i["id"]], now) if i["id"] in wanted else i for i in items]

        chk = self._mutate_items(checklist_id, mutate)
        logger.info("[checklists] bulk status update on %s by %s (%s updates)", checklist_id, user_id, len(wanted))
        return chk

    def review_item(
        self,
        checklist_id: str,
        item_id: str,
        status: ItemStatus | str,
        *,
        rejection_reason: Optional[str] = None,
        user_id: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> Checklist:
        """Admin review: verify, reject or reset an uploaded document."""
        status = ItemStatus(status)
        if status not in REVIEW_STATUSES:
            raise BadRequestError(f"Review status must be one of: {', '.join(sorted(s.value for s in REVIEW_STATUSES))}")
        now = self.clock()
        with self.session_factory() as db:
            chk = get_live_checklist(db, checklist_id, with_client=True)
            items = list(chk.items or [])
            target = find_item(items, item_id)
            if target is None:
                raise NotFoundError("Checklist item not found")
            if status == ItemStatus.VERIFIED and ItemStatus(target["status"]) not in RECEIVED_EQUIVALENT:
                raise BadRequestError("Only received documents can be verified")

            updated = apply_item_status(target, status, now, rejection_reason=rejection_reason or "Please re-upload")
            items = [updated if i["id"] == item_id else i for i in items]
            apply_aggregates(chk, items, now)
            log_activity(
                db,
                f"CHECKLIST_ITEM_{status.value.upper()}",
                f'{status.value} item "{updated["label"]}" in checklist "{chk.name}"',
                user_id=user_id,
                entity_id=checklist_id,
                ip=ip,
            )
            db.commit()
            return chk

    # ---------- Stats ----------

    def get_stats(self, client_id: Optional[str] = None) -> Dict[str, Any]:
        conditions = [Checklist.deleted_at.is_(None)]
        if client_id:
            conditions.append(Checklist.client_id == client_id)
        active = Checklist.status == ChecklistStatus.ACTIVE
        today = self.clock().date()
        with self.session_factory() as db:

            def count(*extra):
                return int(db.scalar(select(func.count(Checklist.id)).where(*conditions, *extra)) or 0)

            avg = db.scalar(select(func.avg(Checklist.progress)).where(*conditions, active))
            return {
                "total": count(),
                "active": count(active),
                "completed": count(Checklist.status == ChecklistStatus.COMPLETED),
                "overdue": count(active, Checklist.due_date.is_not(None), Checklist.due_date < today),
                "avg_progress": round(float(avg or 0), 2),
            }

    def pending_documents_summary(self, client_id: Optional[str] = None) -> List[Dict[str, Any]]:
        conditions = [Checklist.deleted_at.is_(None), Checklist.status == ChecklistStatus.ACTIVE]
        if client_id:
            conditions.append(Checklist.client_id == client_id)
        with self.session_factory() as db:
            rows = db.scalars(
                select(Checklist).where(*conditions).options(selectinload(Checklist.client))
            ).all()
            summary = []
            for chk in rows:
                pending = [
                    i for i in chk.items or []
                    if i.get("required") and i["status"] == ItemStatus.PENDING.value
                ]
                if not pending:
                    continue
                summary.append(
                    {
                        "checklist_id": chk.id,
                        "checklist_name": chk.name,
                        "client_id": chk.client_id,
                        "client_name": chk.client.name if chk.client else None,
                        "client_code": chk.client.code if chk.client else None,
                        "financial_year": chk.financial_year,
                        "pending_count": len(pending),
                        "pending_items": [
                            {"id": p["id"], "label": p["label"], "category": p.get("category")} for p in pending
                        ],
                    }
                )
            return summary
