from __future__ import annotations

import logging
import math
import time
from datetime import date, datetime, time as dtime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload, sessionmaker

from .checklists import get_live_checklist
from .errors import BadRequestError
from .issuance import format_due_date
from .models import Checklist, ChecklistStatus, Client, ItemStatus, log_activity
from .notifications import Notifier, OutboundMessage, dispatch_in_batches

logger = logging.getLogger(__name__)

PRE_DUE_DAYS = {7, 3, 0}
FIRST_OVERDUE_DAY = -3


def days_until_due(due_date: date, now: datetime) -> int:
    """Whole days from ``now`` to midnight of ``due_date``, rounded up."""
    delta = datetime.combine(due_date, dtime.min) - now
    return math.ceil(delta.total_seconds() / 86400)


def should_remind(days: int) -> bool:
    if days in PRE_DUE_DAYS or days == FIRST_OVERDUE_DAY:
        return True
    return days < FIRST_OVERDUE_DAY and days % 7 == 0


def pending_items(checklist: Checklist) -> List[Dict[str, Any]]:
    return [i for i in checklist.items or [] if i["status"] == ItemStatus.PENDING.value]


def _urgency_line(days: int) -> str:
    if days < 0:
        overdue = abs(days)
        return f"*Overdue by {overdue} day{'s' if overdue != 1 else ''}!*"
    if days == 0:
        return "*Due Today!*"
    if days <= 3:
        return f"*Urgent:* only {days} day{'s' if days != 1 else ''} left"
    return f"Friendly reminder: {days} days left"


def build_reminder_message(
    checklist: Checklist,
    client: Client,
    items: List[Dict[str, Any]],
    days: Optional[int],
) -> str:
    lines = [f"*Document Reminder - {checklist.name}*", "", f"Dear *{client.name or client.code}*,", ""]
    if days is not None:
        lines += [_urgency_line(days), ""]
    lines.append(f"We are still waiting for {len(items)} document{'s' if len(items) != 1 else ''}:")
    lines.append("")
    lines += [f"{idx}. {item['label']}" for idx, item in enumerate(items, start=1)]
    if checklist.due_date:
        lines += ["", f"*Due Date:* {format_due_date(checklist.due_date)}"]
    lines += ["", "Please share them at the earliest.", "", "Thank you!"]
    return "\n".join(lines)


class ReminderService:
    """Daily due-date reminders for active checklists.

    Which checklists are reminded is a pure function of the day's
    ``days_until_due``, so a second run on the same day picks the same set.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        notifier: Notifier,
        *,
        batch_size: int = 5,
        batch_delay: float = 2.0,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.clock = clock
        self.sleep = sleep

    def run_reminder_check(self) -> Dict[str, int]:
        now = self.clock()
        skipped = 0
        messages: List[OutboundMessage] = []
        with self.session_factory() as db:
            rows = db.scalars(
                select(Checklist)
                .where(Checklist.status == ChecklistStatus.ACTIVE, Checklist.deleted_at.is_(None))
                .options(selectinload(Checklist.client))
                .order_by(Checklist.due_date.asc())
            ).all()
            for chk in rows:
                items = pending_items(chk)
                if chk.due_date is None or not items:
                    skipped += 1
                    continue
                days = days_until_due(chk.due_date, now)
                if not should_remind(days):
                    skipped += 1
                    continue
                if not chk.client or not chk.client.mobile:
                    logger.warning("[reminders] client of checklist %s has no mobile number", chk.id)
                    skipped += 1
                    continue
                messages.append(
                    OutboundMessage(
                        recipient=chk.client.mobile,
                        text=build_reminder_message(chk, chk.client, items, days),
                        ref=chk.id,
                    )
                )

        logger.info("[reminders] %s of %s active checklists due a reminder", len(messages), len(rows))
        report = dispatch_in_batches(
            messages, self.notifier, batch_size=self.batch_size, batch_delay=self.batch_delay, sleep=self.sleep
        )
        result = {"sent": report.sent, "errors": report.failed, "skipped": skipped}
        logger.info("[reminders] run complete: %s", result)
        return result

    def send_manual_reminder(self, checklist_id: str, user_id: Optional[str] = None, ip: Optional[str] = None) -> Dict[str, Any]:
        """Remind one client right away, ignoring the cadence policy.

        Notifier failures propagate to the caller.
        """
        now = self.clock()
        with self.session_factory() as db:
            chk = get_live_checklist(db, checklist_id, with_client=True)
            items = pending_items(chk)
            if not items:
                raise BadRequestError("No pending documents to remind about")
            if not chk.client or not chk.client.mobile:
                raise BadRequestError("Client has no mobile number")
            days = days_until_due(chk.due_date, now) if chk.due_date else None
            text = build_reminder_message(chk, chk.client, items, days)
            self.notifier.send(chk.client.mobile, text)
            log_activity(
                db,
                "CHECKLIST_REMINDER_SENT",
                f'Sent reminder for checklist "{chk.name}" ({len(items)} pending)',
                user_id=user_id,
                entity_id=chk.id,
                ip=ip,
            )
            db.commit()
            logger.info("[reminders] manual reminder for %s sent by %s", chk.id, user_id)
            return {"sent": True, "pending_count": len(items)}
