import logging
import math
import mimetypes
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .container import Services, build_services
from .db import Base
from .errors import DocDeskError
from .models import Checklist, ChecklistTemplate
from .schemas import (
    BulkCreateIn,
    BulkCreateOut,
    BulkItemStatusIn,
    ChecklistCreate,
    ChecklistItemOut,
    ChecklistOut,
    ChecklistPage,
    ChecklistStatusLiteral,
    ChecklistUpdate,
    ClientRef,
    DownloadOut,
    FileUploadIn,
    ItemIn,
    ItemStatusIn,
    PendingSummaryOut,
    ReminderRunOut,
    ReviewIn,
    ServiceTypeLiteral,
    StatsOut,
    TemplateIn,
    TemplateItemIn,
    TemplateOut,
    TemplateUpdate,
    UploadLinkOut,
    UploadPageOut,
    UploadResultOut,
)
from .storage import parse_base64_data
from .uploads import UploadedFile

load_dotenv()
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    services = _init_services()
    # Tables are created on boot; there are no migrations yet.
    Base.metadata.create_all(bind=services.engine)
    seeded = services.templates.seed_default_templates()
    if seeded:
        logger.info("[startup] seeded %s default templates", seeded)
    yield


app = FastAPI(title="DocDesk Checklist API", version="0.1.0", lifespan=lifespan)

# Build allowed origins from env, keeping localhost defaults.
_env_origins = os.getenv("ALLOWED_ORIGINS", "")
_allowed_origins = [
    "http://localhost:4200",
    "http://127.0.0.1:4200",
]
if _env_origins.strip():
    _allowed_origins.extend([o.strip() for o in _env_origins.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _init_services() -> Services:
    services = getattr(app.state, "services", None)
    if services is None:
        services = build_services(get_settings())
        app.state.services = services
    return services


@app.exception_handler(DocDeskError)
def _docdesk_error_handler(request: Request, exc: DocDeskError):
    if exc.status_code >= 500:
        logger.error("[api] %s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def get_services() -> Services:
    return _init_services()


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    return x_user_id or "system"


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _verify_worker_token(header: str | None, expected: str | None):
    if not expected:
        raise HTTPException(status_code=503, detail="Worker ingest token not configured")
    if not header or not header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing worker authorization")
    provided = header.split(" ", 1)[1].strip()
    if provided != expected:
        raise HTTPException(status_code=403, detail="Invalid worker authorization")


def _template_to_out(tpl: ChecklistTemplate) -> TemplateOut:
    return TemplateOut(
        id=tpl.id,
        name=tpl.name,
        service_type=tpl.service_type.value,
        description=tpl.description,
        items=[TemplateItemIn(**i) for i in tpl.items or []],
        is_default=bool(tpl.is_default),
        created_at=tpl.created_at,
        updated_at=tpl.updated_at,
    )


def _checklist_to_out(chk: Checklist) -> ChecklistOut:
    return ChecklistOut(
        id=chk.id,
        client_id=chk.client_id,
        client=ClientRef(id=chk.client.id, code=chk.client.code, name=chk.client.name) if chk.client else None,
        template_id=chk.template_id,
        name=chk.name,
        financial_year=chk.financial_year,
        service_type=chk.service_type.value,
        items=[ChecklistItemOut(**i) for i in chk.items or []],
        progress=chk.progress,
        total_items=chk.total_items,
        received_items=chk.received_items,
        status=chk.status.value,
        due_date=chk.due_date,
        completed_at=chk.completed_at,
        notes=chk.notes,
        created_by=chk.created_by,
        created_at=chk.created_at,
        updated_at=chk.updated_at,
    )


def _upload_result(result) -> UploadResultOut:
    chk = result["checklist"]
    return UploadResultOut(
        item=ChecklistItemOut(**result["item"]),
        progress=chk.progress,
        status=chk.status.value,
    )


def _decode_upload(body: FileUploadIn) -> UploadedFile:
    content_type = body.content_type or mimetypes.guess_type(body.filename)[0] or "application/octet-stream"
    return UploadedFile(filename=body.filename, content=parse_base64_data(body.base64), content_type=content_type)


@app.get("/health")
def health():
    return {"ok": True}


# ---------- Template Endpoints ----------


@app.get("/api/checklist-templates", response_model=List[TemplateOut])
def list_templates(services: Services = Depends(get_services)):
    return [_template_to_out(t) for t in services.templates.list_templates()]


@app.post("/api/checklist-templates", response_model=TemplateOut, status_code=201)
def create_template(
    payload: TemplateIn,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    tpl = services.templates.create_template(
        name=payload.name,
        service_type=payload.service_type,
        description=payload.description,
        items=[i.model_dump() for i in payload.items],
        created_by=user_id,
    )
    return _template_to_out(tpl)


@app.get("/api/checklist-templates/{template_id}", response_model=TemplateOut)
def get_template(template_id: str, services: Services = Depends(get_services)):
    return _template_to_out(services.templates.get_template(template_id))


@app.patch("/api/checklist-templates/{template_id}", response_model=TemplateOut)
def update_template(template_id: str, payload: TemplateUpdate, services: Services = Depends(get_services)):
    changes = payload.model_dump(exclude_unset=True)
    return _template_to_out(services.templates.update_template(template_id, changes))


@app.delete("/api/checklist-templates/{template_id}")
def delete_template(template_id: str, services: Services = Depends(get_services)):
    services.templates.delete_template(template_id)
    return {"success": True}


# ---------- Checklist Endpoints ----------


@app.post("/api/checklists", response_model=ChecklistOut, status_code=201)
def create_checklist(
    payload: ChecklistCreate,
    request: Request,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    chk = services.checklists.create_checklist(
        client_id=payload.client_id,
        name=payload.name,
        financial_year=payload.financial_year,
        service_type=payload.service_type,
        template_id=payload.template_id,
        due_date=payload.due_date,
        notes=payload.notes,
        created_by=user_id,
        ip=_client_ip(request),
    )
    return _checklist_to_out(chk)


@app.post("/api/checklists/bulk", response_model=BulkCreateOut)
def bulk_create_checklists(
    payload: BulkCreateIn,
    request: Request,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    result = services.issuance.bulk_create(
        template_id=payload.template_id,
        client_ids=payload.client_ids,
        financial_year=payload.financial_year,
        due_date=payload.due_date,
        notify=payload.send_whatsapp,
        created_by=user_id,
        ip=_client_ip(request),
    )
    return BulkCreateOut(
        created=result.created,
        skipped=result.skipped,
        total=result.total,
        whatsapp_sent=result.whatsapp_sent,
        whatsapp_queued=result.whatsapp_queued,
    )


@app.get("/api/checklists", response_model=ChecklistPage)
def list_checklists(
    client_id: Optional[str] = None,
    financial_year: Optional[str] = None,
    service_type: Optional[ServiceTypeLiteral] = None,
    status: Optional[ChecklistStatusLiteral] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    rows, total = services.checklists.list_checklists(
        client_id=client_id,
        financial_year=financial_year,
        service_type=service_type,
        status=status,
        search=search,
        page=page,
        limit=limit,
    )
    return ChecklistPage(
        checklists=[_checklist_to_out(c) for c in rows],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )


@app.get("/api/checklists/stats", response_model=StatsOut)
def checklist_stats(client_id: Optional[str] = None, services: Services = Depends(get_services)):
    return StatsOut(**services.checklists.get_stats(client_id))


@app.get("/api/checklists/pending-summary", response_model=List[PendingSummaryOut])
def pending_summary(client_id: Optional[str] = None, services: Services = Depends(get_services)):
    return [PendingSummaryOut(**row) for row in services.checklists.pending_documents_summary(client_id)]


@app.get("/api/checklists/{checklist_id}", response_model=ChecklistOut)
def get_checklist(checklist_id: str, services: Services = Depends(get_services)):
    return _checklist_to_out(services.checklists.get_checklist(checklist_id))


@app.patch("/api/checklists/{checklist_id}", response_model=ChecklistOut)
def update_checklist(
    checklist_id: str,
    payload: ChecklistUpdate,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    changes = payload.model_dump(exclude_unset=True)
    return _checklist_to_out(services.checklists.update_checklist(checklist_id, changes, user_id))


@app.delete("/api/checklists/{checklist_id}")
def delete_checklist(
    checklist_id: str,
    request: Request,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    services.checklists.delete_checklist(checklist_id, user_id, ip=_client_ip(request))
    return {"success": True}


# ---------- Item Endpoints ----------


@app.post("/api/checklists/{checklist_id}/items", response_model=ChecklistOut)
def add_item(checklist_id: str, payload: ItemIn, services: Services = Depends(get_services)):
    chk = services.checklists.add_item(
        checklist_id,
        label=payload.label,
        description=payload.description,
        category=payload.category,
        required=payload.required,
    )
    return _checklist_to_out(chk)


@app.delete("/api/checklists/{checklist_id}/items/{item_id}", response_model=ChecklistOut)
def remove_item(checklist_id: str, item_id: str, services: Services = Depends(get_services)):
    return _checklist_to_out(services.checklists.remove_item(checklist_id, item_id))


@app.patch("/api/checklists/{checklist_id}/items/bulk-status", response_model=ChecklistOut)
def bulk_update_item_status(
    checklist_id: str,
    payload: BulkItemStatusIn,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    updates = [u.model_dump() for u in payload.updates]
    return _checklist_to_out(services.checklists.bulk_update_item_status(checklist_id, updates, user_id))


@app.patch("/api/checklists/{checklist_id}/items/{item_id}/status", response_model=ChecklistOut)
def update_item_status(
    checklist_id: str,
    item_id: str,
    payload: ItemStatusIn,
    request: Request,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    chk = services.checklists.update_item_status(
        checklist_id,
        item_id,
        payload.status,
        file_id=payload.file_id,
        file_name=payload.file_name,
        rejection_reason=payload.rejection_reason,
        notes=payload.notes,
        user_id=user_id,
        ip=_client_ip(request),
    )
    return _checklist_to_out(chk)


@app.post("/api/checklists/{checklist_id}/items/{item_id}/review", response_model=ChecklistOut)
def review_item(
    checklist_id: str,
    item_id: str,
    payload: ReviewIn,
    request: Request,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    chk = services.checklists.review_item(
        checklist_id,
        item_id,
        payload.status,
        rejection_reason=payload.rejection_reason,
        user_id=user_id,
        ip=_client_ip(request),
    )
    return _checklist_to_out(chk)


@app.post("/api/checklists/{checklist_id}/items/{item_id}/upload", response_model=UploadResultOut)
def admin_upload(
    checklist_id: str,
    item_id: str,
    body: FileUploadIn,
    request: Request,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    result = services.uploads.upload_via_admin(
        checklist_id, item_id, _decode_upload(body), user_id, ip=_client_ip(request)
    )
    return _upload_result(result)


@app.get("/api/checklists/{checklist_id}/items/{item_id}/download", response_model=DownloadOut)
def download_item_file(
    checklist_id: str,
    item_id: str,
    request: Request,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    return DownloadOut(
        **services.uploads.download_item_file(checklist_id, item_id, user_id, ip=_client_ip(request))
    )


@app.post("/api/checklists/{checklist_id}/upload-link", response_model=UploadLinkOut)
def generate_upload_link(
    checklist_id: str,
    request: Request,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    return UploadLinkOut(**services.uploads.issue(checklist_id, user_id, ip=_client_ip(request)))


@app.post("/api/checklists/{checklist_id}/remind")
def send_reminder(
    checklist_id: str,
    request: Request,
    services: Services = Depends(get_services),
    user_id: str = Depends(current_user),
):
    return services.reminders.send_manual_reminder(checklist_id, user_id, ip=_client_ip(request))


# ---------- Public Upload Endpoints ----------


@app.get("/api/upload/{token}", response_model=UploadPageOut)
def upload_page(token: str, services: Services = Depends(get_services)):
    info = services.uploads.validate(token)
    chk = info["checklist"]
    client = info["client"]
    return UploadPageOut(
        checklist_id=chk.id,
        checklist_name=chk.name,
        financial_year=chk.financial_year,
        client_name=client.name,
        due_date=chk.due_date,
        items=[ChecklistItemOut(**i) for i in info["items"]],
        expired=info["expired"],
        uploads_remaining=info["uploads_remaining"],
    )


@app.post("/api/upload/{token}/items/{item_id}", response_model=UploadResultOut)
def upload_with_token(token: str, item_id: str, body: FileUploadIn, services: Services = Depends(get_services)):
    return _upload_result(services.uploads.consume(token, item_id, _decode_upload(body)))


# ---------- Internal (worker) Endpoints ----------


@app.post("/api/internal/reminders/run", response_model=ReminderRunOut)
def run_reminders(
    authorization: str | None = Header(default=None),
    services: Services = Depends(get_services),
):
    _verify_worker_token(authorization, services.settings.worker_ingest_token)
    return ReminderRunOut(**services.reminders.run_reminder_check())
