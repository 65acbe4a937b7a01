from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, List, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .checklists import apply_aggregates, clone_template_items, find_existing_client_ids
from .errors import BadRequestError, NotFoundError
from .models import Checklist, ChecklistStatus, ChecklistTemplate, Client, log_activity
from .notifications import NotificationOutbox, OutboundMessage

logger = logging.getLogger(__name__)

ALL_CLIENTS = "all"


@dataclass
class BulkIssueResult:
    created: int
    skipped: int
    total: int
    whatsapp_sent: Optional[int] = None
    whatsapp_queued: Optional[int] = None


def format_due_date(value: date) -> str:
    return f"{value.day} {value:%b %Y}"


def build_issuance_notice(
    template_name: str,
    client_name: str,
    financial_year: str,
    labels: Sequence[str],
    due_date: Optional[date] = None,
) -> str:
    lines = [
        f"*Document Checklist - {template_name}*",
        "",
        f"Dear *{client_name}*,",
        "",
        f"We need the following documents for *FY {financial_year}*:",
        "",
    ]
    lines += [f"{idx}. {label}" for idx, label in enumerate(labels, start=1)]
    if due_date:
        lines += ["", f"*Due Date:* {format_due_date(due_date)}"]
    lines += ["", "Please send these documents at your earliest convenience.", "", "Thank you!"]
    return "\n".join(lines)


def chunked(seq: Sequence, size: int):
    size = max(size, 1)
    for start in range(0, len(seq), size):
        yield seq[start:start + size]


class BulkIssuanceService:
    """Fans one template out to many clients, one checklist per client per year and service."""

    def __init__(
        self,
        session_factory: sessionmaker,
        outbox: NotificationOutbox,
        *,
        batch_size: int = 50,
        notify_batch_size: int = 10,
        notify_batch_delay: float = 1.0,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.outbox = outbox
        self.batch_size = batch_size
        self.notify_batch_size = notify_batch_size
        self.notify_batch_delay = notify_batch_delay
        self.clock = clock

    def bulk_create(
        self,
        *,
        template_id: str,
        client_ids: Union[List[str], str],
        financial_year: str,
        created_by: str,
        due_date: Optional[date] = None,
        notify: bool = False,
        ip: Optional[str] = None,
    ) -> BulkIssueResult:
        with self.session_factory() as db:
            template = db.get(ChecklistTemplate, template_id)
            if not template:
                raise NotFoundError("Template not found")

            if client_ids == ALL_CLIENTS:
                targets = list(db.scalars(select(Client.id).order_by(Client.code.asc())).all())
            else:
                targets = list(dict.fromkeys(client_ids))
                known = set(db.scalars(select(Client.id).where(Client.id.in_(targets))).all())
                unknown = [cid for cid in targets if cid not in known]
                if unknown:
                    raise NotFoundError(f"Unknown client ids: {', '.join(unknown)}")
            if not targets:
                raise BadRequestError("No clients found")

            # decided once, before anything is written
            existing = find_existing_client_ids(db, targets, financial_year, template.service_type)
            new_client_ids = [cid for cid in targets if cid not in existing]
            total = len(targets)
            if not new_client_ids:
                logger.info("[issuance] nothing to create for %s FY %s; %s skipped", template.name, financial_year, total)
                return BulkIssueResult(created=0, skipped=total, total=total)

            name = f"{template.name} - {financial_year}"
            now = self.clock()
            for batch in chunked(new_client_ids, self.batch_size):
                records = []
                for client_id in batch:
                    chk = Checklist(
                        id=uuid.uuid4().hex,
                        client_id=client_id,
                        template_id=template.id,
                        name=name,
                        financial_year=financial_year,
                        service_type=template.service_type,
                        status=ChecklistStatus.ACTIVE,
                        due_date=due_date,
                        created_by=created_by,
                    )
                    apply_aggregates(chk, clone_template_items(template.items), now)
                    records.append(chk)
                db.add_all(records)
                db.commit()

            log_activity(
                db,
                "CHECKLIST_BULK_CREATED",
                f'Bulk created "{template.name}" checklist for {len(new_client_ids)} clients '
                f"(FY {financial_year}). Skipped {len(existing)} existing.",
                user_id=created_by,
                ip=ip,
            )
            db.commit()
            logger.info(
                "[issuance] created %s checklists from %s, skipped %s",
                len(new_client_ids),
                template.name,
                len(existing),
            )

            result = BulkIssueResult(created=len(new_client_ids), skipped=len(existing), total=total)
            if not notify:
                return result

            labels = [item["label"] for item in template.items]
            clients = db.scalars(select(Client).where(Client.id.in_(new_client_ids))).all()
            messages = [
                OutboundMessage(
                    recipient=client.mobile,
                    text=build_issuance_notice(template.name, client.name or client.code, financial_year, labels, due_date),
                    ref=client.id,
                )
                for client in clients
                if client.mobile
            ]

        report = self.outbox.deliver(
            messages, batch_size=self.notify_batch_size, batch_delay=self.notify_batch_delay
        )
        if report.queued:
            result.whatsapp_queued = report.queued
        else:
            result.whatsapp_sent = report.sent
            logger.info("[issuance] WhatsApp notices sent to %s clients (%s failed)", report.sent, report.failed)
        return result
