from enum import Enum
from typing import Any, Optional, List

from pydantic import BaseModel, Field, computed_field, field_serializer, field_validator


class POType(str, Enum):
    """Order type.  Immutable once a PO exists; drives the number prefix."""
    MATERIALS = "Materials"
    SUBCONTRACT = "Subcontract"
    PLANT = "Plant"

    @property
    def prefix(self) -> str:
        return self.value[0]

    @property
    def label(self) -> str:
        """Heading printed on the order document."""
        return _TYPE_LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "POType":
        """Accept a full name ("Materials") or a prefix letter ("M"), any case."""
        if isinstance(value, POType):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if text in (member.value.lower(), member.prefix.lower()):
                return member
        raise ValueError(f"Invalid PO type {value!r}. Must be one of Materials, Subcontract, Plant")


_TYPE_LABELS = {
    POType.MATERIALS:   "Purchase Order",
    POType.SUBCONTRACT: "Sub-contract Order",
    POType.PLANT:       "Plant Order",
}


class ApprovalStatus(str, Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class POStatus(str, Enum):
    """
    Single lifecycle state for a PO.

    The approval status is derived from this value rather than stored next
    to it, so the two can never disagree.
    """
    DRAFT = "Draft"
    ISSUED = "Issued"
    APPROVED = "Approved"
    REJECTED = "Rejected"

    @property
    def approval_status(self) -> ApprovalStatus:
        return _APPROVAL_FOR_STATUS[self]

    @property
    def editable(self) -> bool:
        return self in (POStatus.DRAFT, POStatus.REJECTED)

    @classmethod
    def parse(cls, value: Any) -> "POStatus":
        text = str(value or "").strip().lower()
        if text in ("issued", "pending", "sent"):
            return cls.ISSUED
        for member in cls:
            if text == member.value.lower():
                return member
        raise ValueError(f"Invalid PO status {value!r}")


_APPROVAL_FOR_STATUS = {
    POStatus.DRAFT:    ApprovalStatus.DRAFT,
    POStatus.ISSUED:   ApprovalStatus.PENDING,
    POStatus.APPROVED: ApprovalStatus.APPROVED,
    POStatus.REJECTED: ApprovalStatus.REJECTED,
}

# History actions
ACTION_CREATED  = "CREATED"
ACTION_UPDATED  = "UPDATED"
ACTION_SENT     = "SENT"
ACTION_APPROVED = "APPROVED"
ACTION_REJECTED = "REJECTED"
ACTION_ARCHIVED = "ARCHIVED"
ACTION_UNARCHIVED = "UNARCHIVED"


class SupplierSnapshot(BaseModel):
    """Point-in-time copy of a supplier, embedded in the PO at save time."""
    id: str = ""
    name: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    postcode: str = ""
    contact_name: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    vat_number: str = ""


class JobSnapshot(BaseModel):
    """Point-in-time copy of a job / site."""
    id: str = ""
    name: str = ""
    job_code: str = ""
    job_number: str = ""
    site_address: str = ""
    site_manager: str = ""
    site_phone: str = ""


class OrderLine(BaseModel):
    """
    One priced row of a PO.

    amount is quantity * rate unless the caller supplied an explicit amount,
    in which case amount_overridden is set and the value is kept verbatim.
    """
    description: str = ""
    unit: str = "nr"                    # unit of measure, e.g. "nr", "m2", "hr"
    quantity: float = 0.0
    rate: float = 0.0
    amount: float = 0.0
    amount_overridden: bool = False
    cost_code: str = ""


class Totals(BaseModel):
    net: float = 0.0
    vat: float = 0.0
    gross: float = 0.0
    vat_rate: float = 0.0


class Approval(BaseModel):
    """Decision metadata.  The approval status itself is derived from PO status."""
    approver: str = ""
    note: str = ""
    decided_at: Optional[str] = None
    requested_by: str = ""
    requested_at: Optional[str] = None


class HistoryEntry(BaseModel):
    timestamp: str                      # ISO 8601 UTC
    actor: str = ""
    action: str                         # CREATED / UPDATED / SENT / APPROVED / REJECTED / (UN)ARCHIVED
    note: str = ""


class PurchaseOrder(BaseModel):
    """
    A purchase order as persisted.

    totals is always recomputed from lines and vat_rate; history is append-only.
    """
    po_number: str
    type: POType

    supplier_id: str = ""
    supplier_snapshot: SupplierSnapshot = Field(default_factory=SupplierSnapshot)

    job_id: Optional[str] = None
    job_snapshot: Optional[JobSnapshot] = None

    cost_code: str = ""
    element: str = ""

    title: str = ""
    notes: str = ""
    required_by: str = ""               # YYYY-MM-DD or free text from the form
    clauses: dict = Field(default_factory=dict)

    lines: List[OrderLine] = Field(default_factory=list)
    vat_rate: float = 0.2
    totals: Totals = Field(default_factory=Totals)

    status: POStatus = POStatus.DRAFT
    approval: Approval = Field(default_factory=Approval)
    history: List[HistoryEntry] = Field(default_factory=list)

    archived: bool = False

    created_at: str = ""
    updated_at: str = ""
    created_by: str = "system"
    created_by_email: str = ""
    updated_by: str = "system"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def approval_status(self) -> ApprovalStatus:
        return self.status.approval_status

    @field_serializer("approval")
    def _approval_with_status(self, approval: Approval) -> dict:
        # status is derived, never stored; it is ignored when a record is loaded back
        return {**approval.model_dump(), "status": self.approval_status.value}

    @property
    def supplier_name(self) -> str:
        return self.supplier_snapshot.name or self.supplier_id

    def append_history(self, timestamp: str, action: str, actor: str = "", note: str = "") -> None:
        self.history.append(HistoryEntry(timestamp=timestamp, actor=actor, action=action, note=note))


class LineInput(BaseModel):
    """
    A line as submitted by a caller.

    Numeric fields never fail validation: non-numeric or non-finite values
    coerce to 0.  amount stays None when not supplied.
    """
    description: str = ""
    unit: Optional[str] = None
    quantity: Any = None
    rate: Any = None
    amount: Any = None
    cost_code: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class PurchaseOrderDraft(BaseModel):
    """
    Create / update payload.  Every field is optional; on update only the
    fields actually supplied are merged over the stored record.
    """
    type: Optional[str] = None
    status: Optional[str] = None

    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_snapshot: Optional[SupplierSnapshot] = None

    job_id: Optional[str] = None
    job_snapshot: Optional[JobSnapshot] = None

    cost_code: Optional[str] = None
    element: Optional[str] = None

    title: Optional[str] = None
    notes: Optional[str] = None
    required_by: Optional[str] = None
    clauses: Optional[dict] = None

    lines: Optional[List[LineInput]] = None
    vat_rate: Optional[Any] = None
    totals: Optional[dict] = None       # client hint only, never trusted

    update_note: Optional[str] = None
