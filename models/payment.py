from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field


class CertificateStatus(str, Enum):
    DRAFT = "Draft"
    ISSUED = "Issued"


class PayableLine(BaseModel):
    """An order line from an Issued/Approved PO that can be certified for payment."""
    po_number: str
    po_status: str
    line_index: int
    description: str = ""
    unit: str = "nr"
    quantity: float = 0.0
    rate: float = 0.0
    po_line_value: float = 0.0
    cost_code: str = ""
    element: str = ""
    previously_certified: float = 0.0


class CertificateLine(BaseModel):
    po_number: str
    line_index: int
    description: str = ""
    cost_code: str = ""
    po_line_value: float = 0.0
    previously_certified: float = 0.0
    this_period: float = 0.0

    @property
    def to_date(self) -> float:
        return round(self.previously_certified + self.this_period, 2)


class CertificateTotals(BaseModel):
    this_period: float = 0.0
    retention: float = 0.0
    contra: float = 0.0
    net: float = 0.0
    vat: float = 0.0
    total_due: float = 0.0


class PaymentCertificate(BaseModel):
    """
    A sub-contractor payment certificate, numbered per (job, supplier).
    Editable only while Draft.
    """
    id: str
    job_id: str
    supplier_id: str
    cert_no: int
    period_end: Optional[str] = None
    status: CertificateStatus = CertificateStatus.DRAFT
    retention_rate: float = 0.05
    vat_rate: float = 0.2
    contra: float = 0.0
    lines: List[CertificateLine] = Field(default_factory=list)
    totals: CertificateTotals = Field(default_factory=CertificateTotals)
    created_at: str = ""
    updated_at: str = ""
    issued_at: Optional[str] = None
