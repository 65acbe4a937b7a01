from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .errors import BadRequestError, NotFoundError
from .models import ChecklistTemplate, ServiceType

logger = logging.getLogger(__name__)


def _item(label: str, description: str, category: str, required: bool) -> Dict[str, Any]:
    return {"label": label, "description": description, "category": category, "required": required}


# Seeded once per database; rows created from this list carry is_default=True.
DEFAULT_TEMPLATES: List[Dict[str, Any]] = [
    {
        "name": "ITR Filing - Individual (Salaried)",
        "service_type": ServiceType.ITR,
        "description": "Standard checklist for individual salaried ITR filing",
        "items": [
            _item("Form 16", "TDS certificate from employer", "Income", True),
            _item("Form 16A", "TDS certificate from other sources (FDs, etc.)", "Income", False),
            _item("Salary Slips (12 months)", "Monthly salary slips for the FY", "Income", False),
            _item("Bank Statements (All accounts)", "Savings/Current account statements", "Bank", True),
            _item("Form 26AS / AIS", "Annual Tax Statement from TRACES/Income Tax portal", "Tax", True),
            _item("Investment Proofs - 80C", "LIC, PPF, ELSS, etc.", "Deductions", True),
            _item("Health Insurance Premium - 80D", "Mediclaim receipts", "Deductions", False),
            _item("Home Loan Interest Certificate", "Interest certificate from bank (Sec 24)", "Deductions", False),
            _item("HRA Receipts", "Rent receipts and landlord PAN", "Deductions", False),
            _item("Capital Gains Statement", "Equity/MF/Property sale details", "Capital Gains", False),
            _item("PAN Card Copy", "PAN card of assessee", "Identity", True),
            _item("Aadhaar Card Copy", "Aadhaar card of assessee", "Identity", True),
        ],
    },
    {
        "name": "ITR Filing - Business/Professional",
        "service_type": ServiceType.ITR,
        "description": "Checklist for business or professional ITR filing",
        "items": [
            _item("Profit & Loss Statement", "P&L account for the FY", "Financials", True),
            _item("Balance Sheet", "Balance sheet as of 31st March", "Financials", True),
            _item("Bank Statements (All accounts)", "Business and personal accounts", "Bank", True),
            _item("Sales Register / Invoices", "Complete sales records", "Books", True),
            _item("Purchase Register / Bills", "Complete purchase records", "Books", True),
            _item("Expense Vouchers", "Office rent, salary, utilities etc.", "Books", True),
            _item("Form 26AS / AIS", "Annual Tax Statement", "Tax", True),
            _item("GST Returns (GSTR-3B, GSTR-1)", "All GST returns filed during FY", "GST", False),
            _item("Previous Year ITR", "Last year filed return", "Reference", False),
            _item("TDS Certificates", "Form 16A from all deductors", "Tax", False),
            _item("Fixed Asset Register", "List of fixed assets with depreciation", "Assets", False),
            _item("Loan Statements", "Business loan interest certificates", "Bank", False),
            _item("PAN Card Copy", "PAN card of business/proprietor", "Identity", True),
            _item("Aadhaar Card Copy", "Aadhaar of proprietor/partner", "Identity", True),
        ],
    },
    {
        "name": "GST Registration",
        "service_type": ServiceType.GST,
        "description": "Documents required for new GST registration",
        "items": [
            _item("PAN Card", "PAN of business/proprietor", "Identity", True),
            _item("Aadhaar Card", "Aadhaar of authorized signatory", "Identity", True),
            _item("Business Registration Certificate", "Partnership deed / MOA / AOA", "Business", True),
            _item("Address Proof of Business", "Electricity bill / rent agreement", "Address", True),
            _item("Bank Account Statement/Cancelled Cheque", "Business bank account proof", "Bank", True),
            _item("Photograph", "Passport size photo of proprietor/partners", "Identity", True),
            _item("Digital Signature Certificate", "DSC for companies/LLPs", "Compliance", False),
            _item("Letter of Authorization", "For authorized signatory", "Compliance", False),
        ],
    },
    {
        "name": "GST Monthly/Quarterly Return",
        "service_type": ServiceType.GST,
        "description": "Recurring documents for GST return filing",
        "items": [
            _item("Sales Invoices", "All B2B and B2C invoices for the period", "Sales", True),
            _item("Purchase Invoices", "All purchase bills with GSTIN", "Purchases", True),
            _item("Credit/Debit Notes", "Any CN/DN issued or received", "Adjustments", False),
            _item("Bank Statement", "For payment reconciliation", "Bank", False),
            _item("E-Way Bills", "E-way bills generated for goods movement", "Transport", False),
            _item("HSN-wise Summary", "HSN code wise sales summary", "Sales", True),
            _item("Previous Return Copy", "Last GSTR-3B and GSTR-1", "Reference", False),
        ],
    },
    {
        "name": "Tax Audit (44AB)",
        "service_type": ServiceType.AUDIT,
        "description": "Documents required for Tax Audit u/s 44AB",
        "items": [
            _item("Books of Accounts", "Cash book, journal, ledger", "Books", True),
            _item("Trial Balance", "Trial balance for the FY", "Financials", True),
            _item("Profit & Loss Account", "Detailed P&L statement", "Financials", True),
            _item("Balance Sheet", "Detailed balance sheet", "Financials", True),
            _item("Bank Statements (All accounts)", "Including FD statements", "Bank", True),
            _item("Bank Reconciliation Statement", "BRS for all bank accounts", "Bank", True),
            _item("Fixed Asset Register", "With depreciation schedule", "Assets", True),
            _item("Stock Statement", "Closing stock valuation", "Inventory", True),
            _item("Debtors/Creditors List", "Outstanding receivables and payables", "Financials", True),
            _item("TDS Compliance (26Q, 24Q)", "TDS returns and challans", "Tax", True),
            _item("GST Returns & Reconciliation", "GSTR-2A vs Books reconciliation", "GST", True),
            _item("Loans & Advances Details", "All loan agreements and schedules", "Bank", False),
            _item("Related Party Transactions", "Details of transactions with related parties", "Compliance", False),
            _item("Previous Year Audit Report", "Last year 3CA/3CB/3CD", "Reference", False),
        ],
    },
    {
        "name": "TDS Return Filing",
        "service_type": ServiceType.TDS,
        "description": "Documents required for quarterly TDS return",
        "items": [
            _item("Salary Register", "Employee wise salary details (for 24Q)", "Salary", False),
            _item("Form 12BB", "Employee investment declarations", "Salary", False),
            _item("Vendor Payment Details", "All payments to vendors with TDS deducted", "Payments", True),
            _item("Professional Fee Payments", "Sec 194J payments details", "Payments", False),
            _item("Rent Payments", "Sec 194I rent TDS details", "Payments", False),
            _item("TDS Challan Receipts", "All TDS deposit challans for the quarter", "Tax", True),
            _item("Previous Quarter TDS Return", "Last quarter 26Q/24Q for reference", "Reference", False),
        ],
    },
    {
        "name": "ROC Annual Filing",
        "service_type": ServiceType.ROC,
        "description": "Documents required for ROC annual compliance",
        "items": [
            _item("Audited Financial Statements", "P&L, Balance Sheet, Cash Flow", "Financials", True),
            _item("Director Report", "Board approved director report", "Compliance", True),
            _item("Auditor Report", "Independent auditor report", "Compliance", True),
            _item("Board Resolution / Minutes", "AGM and board meeting minutes", "Governance", True),
            _item("MGT-7 Data", "Annual return data (shareholding pattern, etc.)", "Compliance", True),
            _item("AOC-4 Data", "Financial statement filing data", "Compliance", True),
            _item("DSC of Directors", "Active digital signature certificates", "Identity", True),
            _item("DIR-12 (if any changes)", "Director appointment/resignation forms", "Changes", False),
        ],
    },
]


def _clean_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    cleaned = []
    for raw in items:
        label = str(raw.get("label") or "").strip()
        if not label:
            raise BadRequestError("Template item label is required")
        cleaned.append(
            {
                "label": label,
                "description": raw.get("description"),
                "category": raw.get("category"),
                "required": bool(raw.get("required", False)),
            }
        )
    return cleaned


class TemplateCatalog:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def seed_default_templates(self) -> int:
        """Insert the built-in templates unless some default already exists."""
        with self.session_factory() as db:
            has_defaults = db.scalar(
                select(ChecklistTemplate.id).where(ChecklistTemplate.is_default.is_(True)).limit(1)
            )
            if has_defaults:
                return 0
            logger.info("[templates] seeding %s default checklist templates", len(DEFAULT_TEMPLATES))
            for tpl in DEFAULT_TEMPLATES:
                db.add(
                    ChecklistTemplate(
                        id=uuid.uuid4().hex,
                        name=tpl["name"],
                        service_type=tpl["service_type"],
                        description=tpl["description"],
                        items=[dict(i) for i in tpl["items"]],
                        is_default=True,
                    )
                )
            db.commit()
            return len(DEFAULT_TEMPLATES)

    def list_templates(self) -> List[ChecklistTemplate]:
        with self.session_factory() as db:
            return list(
                db.scalars(
                    select(ChecklistTemplate).order_by(
                        ChecklistTemplate.is_default.desc(), ChecklistTemplate.name.asc()
                    )
                ).all()
            )

    def get_template(self, template_id: str) -> ChecklistTemplate:
        with self.session_factory() as db:
            tpl = db.get(ChecklistTemplate, template_id)
            if not tpl:
                raise NotFoundError("Template not found")
            return tpl

    def create_template(
        self,
        *,
        name: str,
        service_type: ServiceType,
        items: List[Dict[str, Any]],
        created_by: str,
        description: Optional[str] = None,
    ) -> ChecklistTemplate:
        tpl = ChecklistTemplate(
            id=uuid.uuid4().hex,
            name=name,
            service_type=ServiceType(service_type),
            description=description,
            items=_clean_items(items),
            is_default=False,
            created_by=created_by,
        )
        with self.session_factory() as db:
            db.add(tpl)
            db.commit()
        logger.info("[templates] created template %s (%s items)", tpl.id, len(tpl.items))
        return tpl

    def update_template(self, template_id: str, changes: Dict[str, Any]) -> ChecklistTemplate:
        with self.session_factory() as db:
            tpl = db.get(ChecklistTemplate, template_id)
            if not tpl:
                raise NotFoundError("Template not found")
            if tpl.is_default:
                raise BadRequestError("Cannot modify default templates")
            if changes.get("name") is not None:
                tpl.name = changes["name"]
            if changes.get("service_type") is not None:
                tpl.service_type = ServiceType(changes["service_type"])
            if "description" in changes:
                tpl.description = changes["description"]
            if changes.get("items") is not None:
                tpl.items = _clean_items(changes["items"])
            db.commit()
            return tpl

    def delete_template(self, template_id: str) -> None:
        with self.session_factory() as db:
            tpl = db.get(ChecklistTemplate, template_id)
            if not tpl:
                raise NotFoundError("Template not found")
            if tpl.is_default:
                raise BadRequestError("Cannot delete default templates")
            db.delete(tpl)
            db.commit()
