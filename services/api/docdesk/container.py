from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .checklists import ChecklistService
from .config import Settings
from .db import build_engine, build_session_factory
from .issuance import BulkIssuanceService
from .notifications import NotificationOutbox, Notifier, WhatsAppNotifier
from .paths import StoragePathResolver
from .reminders import ReminderService
from .storage import ObjectStorage
from .templates import TemplateCatalog
from .uploads import UploadTokenService


@dataclass
class Services:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    templates: TemplateCatalog
    checklists: ChecklistService
    issuance: BulkIssuanceService
    uploads: UploadTokenService
    reminders: ReminderService
    resolver: StoragePathResolver
    storage: ObjectStorage
    notifier: Notifier


def _queue_enqueue():
    # the broker is only touched when queue dispatch is switched on
    from .queue import broker_available, enqueue_notifications

    return enqueue_notifications if broker_available() else None


def build_services(
    settings: Settings,
    engine: Optional[Engine] = None,
    *,
    storage: Optional[ObjectStorage] = None,
    notifier: Optional[Notifier] = None,
    clock: Callable[[], datetime] = datetime.utcnow,
    sleep: Callable[[float], None] = time.sleep,
) -> Services:
    """Wire every service once; callers share the returned instances."""
    engine = engine or build_engine(settings.database_url)
    session_factory = build_session_factory(engine)
    storage = storage or ObjectStorage(settings)
    notifier = notifier or WhatsAppNotifier(settings)

    enqueue = _queue_enqueue() if settings.notify_dispatch == "queue" else None
    outbox = NotificationOutbox(notifier, mode=settings.notify_dispatch, enqueue=enqueue, sleep=sleep)
    resolver = StoragePathResolver(session_factory)

    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        templates=TemplateCatalog(session_factory),
        checklists=ChecklistService(session_factory, clock=clock),
        issuance=BulkIssuanceService(
            session_factory,
            outbox,
            batch_size=settings.issuance_batch_size,
            notify_batch_size=settings.notify_batch_size,
            notify_batch_delay=settings.notify_batch_delay,
            clock=clock,
        ),
        uploads=UploadTokenService(session_factory, storage, resolver, settings, clock=clock),
        reminders=ReminderService(
            session_factory,
            notifier,
            batch_size=settings.reminder_batch_size,
            batch_delay=settings.reminder_batch_delay,
            clock=clock,
            sleep=sleep,
        ),
        resolver=resolver,
        storage=storage,
        notifier=notifier,
    )
