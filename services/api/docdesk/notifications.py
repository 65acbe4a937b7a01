from __future__ import annotations

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import httpx

from .config import Settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, recipient: str, text: str) -> None: ...


class WhatsAppNotifier:
    """Sends plain text messages through the WhatsApp Cloud API.

    Without credentials the message is logged instead of sent.
    """

    def __init__(self, settings: Settings, client: httpx.Client | None = None):
        self.phone_number_id = settings.whatsapp_phone_number_id
        self.token = settings.whatsapp_access_token
        self.api_version = settings.whatsapp_api_version
        self.client = client or httpx.Client(timeout=30.0)

    @property
    def configured(self) -> bool:
        return bool(self.phone_number_id and self.token)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def send(self, recipient: str, text: str) -> None:
        if not self.configured:
            logger.warning("[notify] WhatsApp not configured, message to %s not sent", recipient)
            logger.debug("[notify] message body: %s", text)
            return
        url = f"https://graph.facebook.com/{self.api_version}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": re.sub(r"\D", "", recipient),
            "type": "text",
            "text": {"body": text[:4096]},
        }
        resp = self.client.post(url, headers=self._headers(), json=payload)
        resp.raise_for_status()

    def close(self):
        self.client.close()


@dataclass
class OutboundMessage:
    recipient: str
    text: str
    ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DispatchReport:
    sent: int = 0
    failed: int = 0
    queued: int = 0
    failed_refs: List[Optional[str]] = field(default_factory=list)


def dispatch_in_batches(
    messages: Sequence[OutboundMessage],
    notifier: Notifier,
    *,
    batch_size: int,
    batch_delay: float,
    sleep: Callable[[float], None] = time.sleep,
) -> DispatchReport:
    """Send ``messages`` with at most ``batch_size`` in flight, pausing between batches.

    A failed send is logged and counted; it never stops the remaining batches.
    """
    report = DispatchReport()
    batch_size = max(batch_size, 1)

    def _send(msg: OutboundMessage) -> bool:
        try:
            notifier.send(msg.recipient, msg.text)
            return True
        except Exception as exc:
            logger.warning("[notify] failed to send to %s (ref=%s): %s", msg.recipient, msg.ref, exc)
            return False

    with ThreadPoolExecutor(max_workers=batch_size) as executor:
        for start in range(0, len(messages), batch_size):
            batch = messages[start:start + batch_size]
            results = list(executor.map(_send, batch))
            for msg, ok in zip(batch, results):
                if ok:
                    report.sent += 1
                else:
                    report.failed += 1
                    report.failed_refs.append(msg.ref)
            if start + batch_size < len(messages):
                sleep(batch_delay)
    return report


class NotificationOutbox:
    """Delivery stage that runs after the workflow has committed its own state.

    ``inline`` sends in the calling process; ``queue`` hands the messages to
    the worker through ``enqueue`` and reports them as queued.
    """

    def __init__(
        self,
        notifier: Notifier,
        *,
        mode: str = "inline",
        enqueue: Optional[Callable[[List[Dict[str, Any]], int, float], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.notifier = notifier
        self.mode = mode
        self.enqueue = enqueue
        self.sleep = sleep

    def deliver(self, messages: Sequence[OutboundMessage], *, batch_size: int, batch_delay: float) -> DispatchReport:
        if not messages:
            return DispatchReport()
        if self.mode == "queue" and self.enqueue is not None:
            try:
                self.enqueue([m.to_dict() for m in messages], batch_size, batch_delay)
                logger.info("[notify] queued %s messages for the worker", len(messages))
                return DispatchReport(queued=len(messages))
            except Exception as exc:
                logger.error("[notify] enqueue failed, sending inline instead: %s", exc)
        return dispatch_in_batches(
            messages, self.notifier, batch_size=batch_size, batch_delay=batch_delay, sleep=self.sleep
        )
