from .purchase_order import (
    POType, POStatus, ApprovalStatus,
    SupplierSnapshot, JobSnapshot, OrderLine, Totals, Approval, HistoryEntry,
    PurchaseOrder, LineInput, PurchaseOrderDraft,
)
from .supplier import Supplier
from .job import Job
from .cost_code import CostCode
from .payment import (
    CertificateStatus, PayableLine, CertificateLine, CertificateTotals, PaymentCertificate,
)

__all__ = [
    "POType", "POStatus", "ApprovalStatus",
    "SupplierSnapshot", "JobSnapshot", "OrderLine", "Totals", "Approval", "HistoryEntry",
    "PurchaseOrder", "LineInput", "PurchaseOrderDraft",
    "Supplier",
    "Job",
    "CostCode",
    "CertificateStatus", "PayableLine", "CertificateLine", "CertificateTotals", "PaymentCertificate",
]
