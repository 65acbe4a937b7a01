import unittest
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select

from docdesk.checklists import ChecklistService
from docdesk.config import Settings
from docdesk.db import Base, build_engine, build_session_factory
from docdesk.errors import StorageError
from docdesk.models import Checklist, ChecklistTemplate, Client, ServiceType

NOW = datetime(2025, 3, 1, 10, 0, 0)


def make_settings(**overrides) -> Settings:
    settings = Settings(
        database_url="sqlite://",
        redis_url=None,
        frontend_url="https://docs.example.in",
        s3_bucket="docdesk-test",
        aws_key=None,
        aws_secret=None,
        aws_region="ap-south-1",
        s3_endpoint=None,
        mock_storage=False,
        signed_url_ttl_seconds=3600,
        whatsapp_phone_number_id=None,
        whatsapp_access_token=None,
        whatsapp_api_version="v18.0",
        upload_token_ttl_days=7,
        default_max_uploads=20,
        max_file_size_bytes=50 * 1024 * 1024,
        max_whatsapp_file_size_bytes=25 * 1024 * 1024,
        issuance_batch_size=50,
        notify_batch_size=10,
        notify_batch_delay=1.0,
        reminder_batch_size=5,
        reminder_batch_delay=2.0,
        notify_dispatch="inline",
        worker_ingest_token="worker-secret",
        log_level="INFO",
    )
    return replace(settings, **overrides)


class FrozenClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def no_sleep(seconds: float) -> None:
    pass


class FakeStorage:
    mock = False

    def __init__(self):
        self.objects = {}
        self.fail = False

    def put(self, key, data, content_type=None, metadata=None):
        if self.fail:
            raise StorageError(f"Failed to store {key}")
        self.objects[key] = (data, content_type, metadata)
        return key

    def signed_url(self, key, ttl=None):
        return f"https://signed.example/{key}"

    def delete(self, key):
        self.objects.pop(key, None)

    def list(self, prefix):
        return [k for k in self.objects if k.startswith(prefix)]


class FakeNotifier:
    def __init__(self, fail_for: Iterable[str] = ()):
        self.sent: List[Tuple[str, str]] = []
        self.fail_for = set(fail_for)

    def send(self, recipient: str, text: str) -> None:
        if recipient in self.fail_for:
            raise RuntimeError(f"WhatsApp rejected {recipient}")
        self.sent.append((recipient, text))


class DbTestCase(unittest.TestCase):
    """Fresh in-memory database per test."""

    def setUp(self):
        self.engine = build_engine("sqlite://")
        Base.metadata.create_all(bind=self.engine)
        self.session_factory = build_session_factory(self.engine)
        self.clock = FrozenClock()
        self.checklists = ChecklistService(self.session_factory, clock=self.clock)

    def tearDown(self):
        self.engine.dispose()

    def add_client(self, code: str, name: Optional[str] = None, mobile: Optional[str] = "+91 98765 43210") -> str:
        client_id = uuid.uuid4().hex
        with self.session_factory() as db:
            db.add(Client(id=client_id, code=code, name=name or f"Client {code}", mobile=mobile))
            db.commit()
        return client_id

    def add_template(
        self,
        name: str = "ITR Basic",
        service_type: ServiceType = ServiceType.ITR,
        labels: Iterable[str] = ("Form 16", "Bank Statement", "PAN Card"),
        required: bool = True,
        is_default: bool = False,
    ) -> str:
        template_id = uuid.uuid4().hex
        with self.session_factory() as db:
            db.add(
                ChecklistTemplate(
                    id=template_id,
                    name=name,
                    service_type=service_type,
                    items=[
                        {"label": label, "description": None, "category": "General", "required": required}
                        for label in labels
                    ],
                    is_default=is_default,
                )
            )
            db.commit()
        return template_id

    def issue_checklist(self, client_id: str, template_id: str, financial_year: str = "2024-25", **kwargs) -> Checklist:
        return self.checklists.create_checklist(
            client_id=client_id,
            name=kwargs.pop("name", f"ITR Basic - {financial_year}"),
            financial_year=financial_year,
            service_type=kwargs.pop("service_type", ServiceType.ITR),
            template_id=template_id,
            created_by="admin-1",
            **kwargs,
        )

    def load_checklist(self, checklist_id: str) -> Checklist:
        with self.session_factory() as db:
            return db.scalar(select(Checklist).where(Checklist.id == checklist_id))
