from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

ServiceTypeLiteral = Literal["itr", "gst", "audit", "roc", "tds", "custom"]
ItemStatusLiteral = Literal["pending", "uploaded", "received", "verified", "rejected", "not_applicable"]
ChecklistStatusLiteral = Literal["active", "completed", "archived"]


class TemplateItemIn(BaseModel):
    label: str
    description: Optional[str] = None
    category: Optional[str] = None
    required: bool = False


class TemplateIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    service_type: ServiceTypeLiteral
    description: Optional[str] = None
    items: List[TemplateItemIn] = Field(default_factory=list)


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    service_type: Optional[ServiceTypeLiteral] = None
    description: Optional[str] = None
    items: Optional[List[TemplateItemIn]] = None


class TemplateOut(BaseModel):
    id: str
    name: str
    service_type: str
    description: Optional[str] = None
    items: List[TemplateItemIn] = Field(default_factory=list)
    is_default: bool
    created_at: datetime
    updated_at: datetime


class ChecklistItemOut(BaseModel):
    id: str
    label: str
    description: Optional[str] = None
    category: Optional[str] = None
    required: bool = False
    status: str
    received_date: Optional[str] = None
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    s3_path: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    uploaded_via: Optional[str] = None


class ClientRef(BaseModel):
    id: str
    code: str
    name: str


class ChecklistCreate(BaseModel):
    client_id: str
    name: str = Field(min_length=1, max_length=200)
    financial_year: str
    service_type: ServiceTypeLiteral
    template_id: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class ChecklistUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    due_date: Optional[date] = None
    notes: Optional[str] = None
    status: Optional[ChecklistStatusLiteral] = None


class ChecklistOut(BaseModel):
    id: str
    client_id: str
    client: Optional[ClientRef] = None
    template_id: Optional[str] = None
    name: str
    financial_year: str
    service_type: str
    items: List[ChecklistItemOut] = Field(default_factory=list)
    progress: float
    total_items: int
    received_items: int
    status: str
    due_date: Optional[date] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: datetime


class ChecklistPage(BaseModel):
    checklists: List[ChecklistOut]
    total: int
    page: int
    limit: int
    total_pages: int


class BulkCreateIn(BaseModel):
    template_id: str
    client_ids: Union[List[str], Literal["all"]]
    financial_year: str
    due_date: Optional[date] = None
    send_whatsapp: bool = False


class BulkCreateOut(BaseModel):
    created: int
    skipped: int
    total: int
    whatsapp_sent: Optional[int] = None
    whatsapp_queued: Optional[int] = None


class ItemIn(BaseModel):
    label: str = Field(min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    required: bool = False


class ItemStatusIn(BaseModel):
    status: ItemStatusLiteral
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None


class ItemStatusUpdate(BaseModel):
    item_id: str
    status: ItemStatusLiteral


class BulkItemStatusIn(BaseModel):
    updates: List[ItemStatusUpdate] = Field(min_length=1)


class ReviewIn(BaseModel):
    status: Literal["verified", "rejected", "pending"]
    rejection_reason: Optional[str] = None


class FileUploadIn(BaseModel):
    filename: str
    base64: str
    content_type: Optional[str] = None


class UploadResultOut(BaseModel):
    item: ChecklistItemOut
    progress: float
    status: str


class UploadLinkOut(BaseModel):
    token: str
    url: str
    expires_at: datetime


class UploadPageOut(BaseModel):
    checklist_id: str
    checklist_name: str
    financial_year: str
    client_name: str
    due_date: Optional[date] = None
    items: List[ChecklistItemOut]
    expired: bool
    uploads_remaining: int


class DownloadOut(BaseModel):
    url: str
    file_name: Optional[str] = None
    expires_in: int


class StatsOut(BaseModel):
    total: int
    active: int
    completed: int
    overdue: int
    avg_progress: float


class PendingItemRef(BaseModel):
    id: str
    label: str
    category: Optional[str] = None


class PendingSummaryOut(BaseModel):
    checklist_id: str
    checklist_name: str
    client_id: str
    client_name: Optional[str] = None
    client_code: Optional[str] = None
    financial_year: str
    pending_count: int
    pending_items: List[PendingItemRef]


class ReminderRunOut(BaseModel):
    sent: int
    errors: int
    skipped: int
