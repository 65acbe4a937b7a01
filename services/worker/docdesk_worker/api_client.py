from __future__ import annotations
from typing import Any, Dict, Optional
import httpx
from .config import Settings, get_settings


class ApiClient:
    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.Client] = None):
        s = settings or get_settings()
        self.base = s.api_base.rstrip("/") if s.api_base else None
        self.token = s.ingest_token
        if client is None and self.base and self.token:
            # a reminder run sends its batches before answering
            client = httpx.Client(timeout=s.api_timeout_seconds)
        self.client = client

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def run_reminders(self) -> Optional[Dict[str, Any]]:
        if not self.client or not self.base or not self.token:
            return None
        url = f"{self.base}/api/internal/reminders/run"
        resp = self.client.post(url, headers=self._headers())
        resp.raise_for_status()
        return resp.json()

    def close(self):
        if self.client:
            self.client.close()
