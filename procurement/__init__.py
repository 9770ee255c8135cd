from .errors import (
    ProcurementError, ValidationFailed, NotFound, Conflict, InvalidTransition,
    InvalidDecision, PermissionDenied, StorageFailure, RenderFailed, DeliveryFailed,
)
from .lifecycle import CallerContext, PurchaseOrderService, Role, SYSTEM, TransitionResult
from .directories import CostCodeDirectory, JobDirectory, SupplierDirectory
from .notifier import EmailNotifier
from .payments import PaymentService
from .query import POQuery, filter_orders
from .storage import open_store

__all__ = [
    "ProcurementError", "ValidationFailed", "NotFound", "Conflict", "InvalidTransition",
    "InvalidDecision", "PermissionDenied", "StorageFailure", "RenderFailed", "DeliveryFailed",
    "CallerContext", "PurchaseOrderService", "Role", "SYSTEM", "TransitionResult",
    "CostCodeDirectory", "JobDirectory", "SupplierDirectory", "EmailNotifier",
    "PaymentService", "POQuery", "filter_orders", "open_store",
]
