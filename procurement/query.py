"""
PO list filtering.

All criteria are optional and AND-combined.  Filtering never mutates the
records it is given.  Without a sort the input order is kept; with one,
ties keep their input order (sorted() is stable).
"""
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, field_validator

from models.purchase_order import POType, PurchaseOrder

from .numbering import sequence_of

SortField = Literal["created_at", "updated_at", "po_number"]


class POQuery(BaseModel):
    q: str = ""                 # free text across number, title, notes, status, codes, supplier, lines
    job: str = ""               # substring on job name / number / code / id
    type: str = ""              # exact type, by name or prefix letter
    supplier: str = ""          # substring on supplier id or snapshot name
    archived: bool = False      # False hides archived POs; True includes them
    sort: Optional[SortField] = None
    order: Literal["asc", "desc"] = "desc"

    @field_validator("q", "job", "type", "supplier", mode="before")
    @classmethod
    def _strip(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("sort", mode="before")
    @classmethod
    def _blank_sort(cls, v):
        return v or None


def _lower(*values) -> list[str]:
    return [str(v or "").lower() for v in values]


def _matches_text(po: PurchaseOrder, needle: str) -> bool:
    haystack = _lower(
        po.po_number, po.title, po.notes, po.status.value,
        po.cost_code, po.element, po.supplier_snapshot.name,
    ) + _lower(*(line.description for line in po.lines))
    return any(needle in h for h in haystack)


def _matches_job(po: PurchaseOrder, needle: str) -> bool:
    snap = po.job_snapshot
    values = [po.job_id]
    if snap is not None:
        values += [snap.id, snap.name, snap.job_number, snap.job_code]
    return any(needle in v for v in _lower(*values) if v)


def matches(po: PurchaseOrder, query: POQuery) -> bool:
    if po.archived and not query.archived:
        return False
    if query.type:
        try:
            wanted = POType.parse(query.type)
        except ValueError:
            return False
        if po.type != wanted:
            return False
    if query.supplier:
        needle = query.supplier.lower()
        if not any(needle in v for v in _lower(po.supplier_id, po.supplier_snapshot.name)):
            return False
    if query.job and not _matches_job(po, query.job.lower()):
        return False
    if query.q and not _matches_text(po, query.q.lower()):
        return False
    return True


def _sort_key(field: SortField):
    if field == "po_number":
        # M0002 before M0010 before M10000
        return lambda po: (po.type.prefix, sequence_of(po.po_number, po.type.prefix) or 0, po.po_number)
    return lambda po: getattr(po, field) or ""


def filter_orders(orders: Iterable[PurchaseOrder], query: Optional[POQuery] = None) -> list[PurchaseOrder]:
    query = query or POQuery()
    result = [po for po in orders if matches(po, query)]
    if query.sort:
        result = sorted(result, key=_sort_key(query.sort), reverse=query.order == "desc")
    return result
