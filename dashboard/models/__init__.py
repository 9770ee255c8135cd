"""
Pydantic models for dashboard API requests.

Purchase order bodies use models.PurchaseOrderDraft directly.
"""
from pydantic import BaseModel
from typing import Optional


class ApprovalRequest(BaseModel):
    note: str = ""


class DecisionRequest(BaseModel):
    decision: str = ""   # Approved | Rejected
    note: str = ""


class ArchiveUpdate(BaseModel):
    archived: bool = True


class SupplierCreate(BaseModel):
    name: str
    address1: str = ""
    address2: str = ""
    city: str = ""
    postcode: str = ""
    contact_name: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    vat_number: str = ""
    terms_days: int = 30
    notes: str = ""


class SupplierUpdate(BaseModel):
    name: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    postcode: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    vat_number: Optional[str] = None
    terms_days: Optional[int] = None
    notes: Optional[str] = None


class JobCreate(BaseModel):
    job_code: str
    name: str
    site_address: str
    job_number: str = ""
    site_manager: str = ""
    site_phone: str = ""
    client: str = ""
    notes: str = ""
    active: bool = True


class JobUpdate(BaseModel):
    name: Optional[str] = None
    job_number: Optional[str] = None
    site_address: Optional[str] = None
    site_manager: Optional[str] = None
    site_phone: Optional[str] = None
    client: Optional[str] = None
    notes: Optional[str] = None
    active: Optional[bool] = None


class CertificateCreate(BaseModel):
    job_id: str
    supplier_id: str
    period_end: Optional[str] = None
    retention_rate: float = 0.05
    vat_rate: float = 0.2
    contra: float = 0.0
    lines: list[dict] = []


class CertificateUpdate(BaseModel):
    period_end: Optional[str] = None
    retention_rate: Optional[float] = None
    vat_rate: Optional[float] = None
    contra: Optional[float] = None
    lines: Optional[list[dict]] = None
