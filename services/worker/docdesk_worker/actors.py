from __future__ import annotations
import logging
from typing import Any, Dict, List

import dramatiq
import httpx

from docdesk.config import get_settings as get_api_settings
from docdesk.notifications import OutboundMessage, WhatsAppNotifier, dispatch_in_batches

from .broker import _broker  # noqa: F401 ensures broker is configured
from .api_client import ApiClient

logger = logging.getLogger(__name__)


# No retries: a retry would resend every message that already went out.
@dramatiq.actor(max_retries=0, time_limit=30 * 60 * 1000)
def dispatch_notifications(messages: List[Dict[str, Any]], batch_size: int = 10, batch_delay: float = 1.0):
    """Deliver an outbox handed over by the API."""
    notifier = WhatsAppNotifier(get_api_settings())
    try:
        report = dispatch_in_batches(
            [OutboundMessage(**m) for m in messages],
            notifier,
            batch_size=batch_size,
            batch_delay=batch_delay,
        )
    finally:
        notifier.close()
    logger.info(
        "[worker] dispatched %s notifications: %s sent, %s failed", len(messages), report.sent, report.failed
    )
    if report.failed_refs:
        logger.warning("[worker] failed notification refs: %s", report.failed_refs)


@dramatiq.actor(max_retries=3, time_limit=30 * 60 * 1000)
def run_reminder_check():
    api_client = ApiClient()
    try:
        result = api_client.run_reminders()
        if result is None:
            logger.warning("[worker] API_BASE or WORKER_INGEST_TOKEN not set; reminder run skipped")
            return
        logger.info(
            "[worker] reminder run: %s sent, %s errors, %s skipped",
            result.get("sent"),
            result.get("errors"),
            result.get("skipped"),
        )
    except httpx.HTTPError as exc:
        logger.exception("[worker] reminder run failed: %s", exc)
        raise
    finally:
        api_client.close()
