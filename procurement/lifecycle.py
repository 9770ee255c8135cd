"""
Purchase order lifecycle.

    create ──► Draft ──request_approval──► Issued ──decide──► Approved
                 ▲                            │                  │
                 └──────── update ◄── Rejected ◄──────decide─────┘

Rules
-----
  * update only from Draft or Rejected; status is never changed by update
  * request_approval from anything but Approved
  * decide (Approved / Rejected) needs an approver or admin caller; it is
    accepted from any current status, including re-deciding
  * delete refused while Approved
  * archive is a flag independent of status

Every successful mutation appends exactly one history entry in the same
write as the change it records.  Rejected operations write nothing.

Each mutation is a single read-modify-write through the store's
update_record(), under a per-PO lock.  Number allocation is serialised per
(client, type) with a lock, and the store's unique key on po_number backs
that up across processes: a Conflict on insert re-reads and retries.

Notifications run after the write has committed.  Their failures are logged
and returned as warnings on TransitionResult.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ValidationError

from models.purchase_order import (
    ACTION_APPROVED, ACTION_ARCHIVED, ACTION_CREATED, ACTION_REJECTED,
    ACTION_SENT, ACTION_UNARCHIVED, ACTION_UPDATED,
    HistoryEntry, JobSnapshot, OrderLine, POStatus, POType,
    PurchaseOrder, PurchaseOrderDraft, SupplierSnapshot,
)

from .directories import JobDirectory, SupplierDirectory
from .errors import (
    Conflict, DeliveryFailed, InvalidDecision, InvalidTransition,
    NotFound, PermissionDenied, ValidationFailed,
)
from .numbering import next_number
from .query import POQuery, filter_orders
from .totals import build_line, compute_totals, to_number

logger = logging.getLogger(__name__)

COLLECTION = "purchase_orders"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Caller context
# ---------------------------------------------------------------------------

class Role(str, Enum):
    REQUESTER = "requester"
    APPROVER = "approver"
    ADMIN = "admin"


class CallerContext(BaseModel):
    """Who is performing an operation.  Passed explicitly to every mutation."""
    name: str = ""
    email: str = ""
    role: Role = Role.REQUESTER

    @property
    def display(self) -> str:
        return self.name or self.email or "system"

    @property
    def can_decide(self) -> bool:
        return self.role in (Role.APPROVER, Role.ADMIN)


SYSTEM = CallerContext(name="system", role=Role.ADMIN)


@dataclass
class TransitionResult:
    order: PurchaseOrder
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Locks
# ---------------------------------------------------------------------------

class KeyedLocks:
    """One lock per key, created on demand and dropped when nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Any, list] = {}      # key -> [lock, holders]

    @contextmanager
    def hold(self, key: Any):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class PurchaseOrderService:
    """
    Owns the PurchaseOrder aggregate for one client (tenant).

    store       record store (Database or JsonFileStore)
    notifier    EmailNotifier or anything with approval_requested(po, note)
                and decision_made(po); None disables e-mail
    """

    def __init__(
        self,
        store,
        client_id: str = "default",
        suppliers: Optional[SupplierDirectory] = None,
        jobs: Optional[JobDirectory] = None,
        notifier=None,
        default_vat_rate: float = 0.2,
        allow_credit_lines: bool = False,
        max_number_retries: int = 5,
    ) -> None:
        self.store = store
        self.client_id = client_id
        self.suppliers = suppliers or SupplierDirectory(store, client_id)
        self.jobs = jobs or JobDirectory(store, client_id)
        self.notifier = notifier
        self.default_vat_rate = default_vat_rate
        self.allow_credit_lines = allow_credit_lines
        self.max_number_retries = max_number_retries
        self._locks = KeyedLocks()

    @classmethod
    def from_config(cls, config: Any, store=None, notifier=None) -> "PurchaseOrderService":
        from .notifier import EmailNotifier
        from .storage import open_store

        store = store if store is not None else open_store(config)
        return cls(
            store,
            client_id=config.active_client,
            notifier=notifier if notifier is not None else EmailNotifier(config),
            default_vat_rate=config.default_vat_rate,
            allow_credit_lines=config.allow_credit_lines,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, po_number: str) -> PurchaseOrder:
        rec = self.store.get_record(COLLECTION, self.client_id, po_number)
        if rec is None:
            raise NotFound(f"PO {po_number} not found")
        return PurchaseOrder.model_validate(rec)

    def all(self) -> list[PurchaseOrder]:
        return [PurchaseOrder.model_validate(r) for r in self.store.list_records(COLLECTION, self.client_id)]

    def list(self, criteria: POQuery | dict | None = None) -> list[PurchaseOrder]:
        if isinstance(criteria, dict):
            criteria = POQuery.model_validate(criteria)
        return filter_orders(self.all(), criteria)

    def history(self, po_number: str) -> List[HistoryEntry]:
        return self.get(po_number).history

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, payload: PurchaseOrderDraft | dict, caller: CallerContext = SYSTEM) -> PurchaseOrder:
        draft = _as_draft(payload)
        problems: list[str] = []

        po_type = _parse_type(draft.type, problems)
        status = POStatus.DRAFT
        if draft.status:
            try:
                status = POStatus.parse(draft.status)
            except ValueError:
                problems.append(f"Invalid status '{draft.status}'")

        cost_code = (draft.cost_code or "").strip()
        lines = [build_line(line, cost_code) for line in draft.lines or []]
        vat_rate = self.default_vat_rate if draft.vat_rate is None else to_number(draft.vat_rate)
        has_supplier = any(
            (v or "").strip() for v in (draft.supplier_id, draft.supplier_name,
                                        draft.supplier_snapshot.name if draft.supplier_snapshot else "")
        )
        problems += self._check(has_supplier, cost_code, lines, vat_rate)
        if problems:
            raise ValidationFailed.from_problems(problems)

        supplier_id, supplier_snapshot = self._resolve_supplier(
            draft.supplier_id, draft.supplier_name, draft.supplier_snapshot,
        )
        job_id, job_snapshot = self._resolve_job(draft.job_id, draft.job_snapshot)

        now = _now()
        po = PurchaseOrder(
            po_number="",
            type=po_type,
            supplier_id=supplier_id,
            supplier_snapshot=supplier_snapshot,
            job_id=job_id,
            job_snapshot=job_snapshot,
            cost_code=cost_code,
            element=(draft.element or "").strip(),
            title=draft.title or "",
            notes=draft.notes or "",
            required_by=draft.required_by or "",
            clauses=draft.clauses or {},
            lines=lines,
            vat_rate=vat_rate,
            totals=compute_totals(lines, vat_rate),
            status=status,
            created_at=now,
            updated_at=now,
            created_by=caller.display,
            created_by_email=caller.email,
            updated_by=caller.display,
        )
        po.append_history(
            now, ACTION_CREATED, caller.display,
            "Draft created" if status is POStatus.DRAFT else f"Created with status {status.value}",
        )

        self._insert_with_number(po)
        logger.info("PO %s created (%s, %s) by %s", po.po_number, po.type.value, po.status.value, caller.display)
        return po

    def _insert_with_number(self, po: PurchaseOrder) -> None:
        with self._locks.hold(("seq", self.client_id, po.type.prefix)):
            for attempt in range(1, self.max_number_retries + 1):
                existing = self.store.list_records(COLLECTION, self.client_id)
                po.po_number = next_number(existing, po.type)
                try:
                    self.store.insert_record(COLLECTION, self.client_id, _dump(po))
                    return
                except Conflict:
                    logger.warning("PO number %s taken (attempt %d), retrying", po.po_number, attempt)
        raise Conflict(
            f"Could not allocate a {po.type.value} PO number after {self.max_number_retries} attempts"
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, po_number: str, payload: PurchaseOrderDraft | dict, caller: CallerContext = SYSTEM) -> PurchaseOrder:
        draft = _as_draft(payload)
        supplied = draft.model_fields_set

        current = self.get(po_number)
        _ensure_editable(current)

        if draft.type:
            problems: list[str] = []
            new_type = _parse_type(draft.type, problems)
            if problems:
                raise ValidationFailed.from_problems(problems)
            if new_type is not current.type:
                raise ValidationFailed(f"PO type cannot change ({current.type.value} -> {new_type.value})")

        supplier = None
        if supplied & {"supplier_id", "supplier_name", "supplier_snapshot"} and any(
            (draft.supplier_id, draft.supplier_name, draft.supplier_snapshot)
        ):
            supplier = self._resolve_supplier(draft.supplier_id, draft.supplier_name, draft.supplier_snapshot)
        job = None
        if supplied & {"job_id", "job_snapshot"}:
            job = self._resolve_job(draft.job_id, draft.job_snapshot)

        def mutate(payload: dict) -> dict:
            po = PurchaseOrder.model_validate(payload)
            _ensure_editable(po)

            if supplier is not None:
                po.supplier_id, po.supplier_snapshot = supplier
            if job is not None:
                po.job_id, po.job_snapshot = job
            for name in ("cost_code", "element"):
                value = getattr(draft, name)
                if value is not None:
                    setattr(po, name, value.strip())
            for name in ("title", "notes", "required_by", "clauses"):
                value = getattr(draft, name)
                if value is not None:
                    setattr(po, name, value)
            if draft.lines is not None:
                po.lines = [build_line(line, po.cost_code) for line in draft.lines]
            if draft.vat_rate is not None:
                po.vat_rate = to_number(draft.vat_rate)

            problems = self._check(bool(po.supplier_id or po.supplier_snapshot.name),
                                   po.cost_code, po.lines, po.vat_rate)
            if problems:
                raise ValidationFailed.from_problems(problems)

            now = _now()
            po.totals = compute_totals(po.lines, po.vat_rate)
            po.updated_at = now
            po.updated_by = caller.display
            po.append_history(now, ACTION_UPDATED, caller.display,
                              draft.update_note or "Draft/Rejected PO amended")
            return _dump(po)

        po = self._mutate(po_number, mutate)
        logger.info("PO %s updated by %s", po_number, caller.display)
        return po

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def request_approval(self, po_number: str, caller: CallerContext = SYSTEM, note: str = "") -> TransitionResult:
        def mutate(payload: dict) -> dict:
            po = PurchaseOrder.model_validate(payload)
            if po.status is POStatus.APPROVED:
                raise InvalidTransition("Cannot request approval for an Approved PO")
            now = _now()
            po.created_by_email = po.created_by_email or caller.email
            po.status = POStatus.ISSUED
            po.approval.requested_by = caller.email or caller.name or po.created_by_email or "unknown"
            po.approval.requested_at = now
            po.updated_at = now
            po.updated_by = caller.display
            po.append_history(now, ACTION_SENT, caller.display, note or "")
            return _dump(po)

        po = self._mutate(po_number, mutate)
        logger.info("PO %s sent for approval by %s", po_number, caller.display)
        warnings = self._notify(po, "approval_requested", lambda n: n.approval_requested(po, note))
        return TransitionResult(order=po, warnings=warnings)

    def decide(self, po_number: str, decision: str, caller: CallerContext, note: str = "") -> TransitionResult:
        normalised = str(decision or "").strip().lower()
        if normalised not in ("approved", "rejected"):
            raise InvalidDecision(f"Decision must be 'Approved' or 'Rejected', got '{decision}'")
        if not caller.can_decide:
            raise PermissionDenied(f"{caller.display} ({caller.role.value}) may not approve or reject POs")
        status = POStatus.APPROVED if normalised == "approved" else POStatus.REJECTED

        def mutate(payload: dict) -> dict:
            po = PurchaseOrder.model_validate(payload)
            now = _now()
            po.status = status
            po.approval.approver = caller.display
            po.approval.note = note or ""
            po.approval.decided_at = now
            po.updated_at = now
            po.updated_by = caller.display
            po.append_history(now, ACTION_APPROVED if status is POStatus.APPROVED else ACTION_REJECTED,
                              caller.display, note or "")
            return _dump(po)

        po = self._mutate(po_number, mutate)
        logger.info("PO %s %s by %s", po_number, status.value.lower(), caller.display)
        warnings = self._notify(po, "decision_made", lambda n: n.decision_made(po))
        return TransitionResult(order=po, warnings=warnings)

    # ------------------------------------------------------------------
    # Archive / delete
    # ------------------------------------------------------------------

    def archive(self, po_number: str, flag: bool = True, caller: CallerContext = SYSTEM) -> PurchaseOrder:
        def mutate(payload: dict) -> dict:
            po = PurchaseOrder.model_validate(payload)
            now = _now()
            po.archived = bool(flag)
            po.updated_at = now
            po.updated_by = caller.display
            po.append_history(now, ACTION_ARCHIVED if flag else ACTION_UNARCHIVED, caller.display)
            return _dump(po)

        po = self._mutate(po_number, mutate)
        logger.info("PO %s %s by %s", po_number, "archived" if flag else "unarchived", caller.display)
        return po

    def delete(self, po_number: str, caller: CallerContext = SYSTEM) -> None:
        def guard(payload: dict) -> None:
            if PurchaseOrder.model_validate(payload).status is POStatus.APPROVED:
                raise InvalidTransition("Cannot delete an Approved PO")

        with self._locks.hold((self.client_id, po_number)):
            self.store.delete_record(COLLECTION, self.client_id, po_number, guard=guard)
        logger.info("PO %s deleted by %s", po_number, caller.display)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mutate(self, po_number: str, mutate: Callable[[dict], dict]) -> PurchaseOrder:
        with self._locks.hold((self.client_id, po_number)):
            payload = self.store.update_record(COLLECTION, self.client_id, po_number, mutate)
        return PurchaseOrder.model_validate(payload)

    def _check(self, has_supplier: bool, cost_code: str, lines: List[OrderLine], vat_rate: float) -> List[str]:
        problems = []
        if not has_supplier:
            problems.append("Supplier is required (id or name)")
        if not (cost_code or "").strip():
            problems.append("Cost code is required")
        if not any(line.description or line.amount != 0 for line in lines):
            problems.append("At least one line with a description or an amount is required")
        if vat_rate < 0:
            problems.append("VAT rate cannot be negative")
        for i, line in enumerate(lines, start=1):
            if line.quantity < 0:
                problems.append(f"Line {i}: quantity cannot be negative")
            if line.rate < 0 and not self.allow_credit_lines:
                problems.append(f"Line {i}: rate cannot be negative")
        return problems

    def _resolve_supplier(
        self,
        supplier_id: Optional[str],
        supplier_name: Optional[str],
        snapshot: Optional[SupplierSnapshot],
    ) -> tuple[str, SupplierSnapshot]:
        """Directory record when the id (or name) resolves, else what the caller gave us."""
        supplier_id = (supplier_id or "").strip()
        supplier_name = (supplier_name or "").strip()
        found = self.suppliers.find_by_id(supplier_id) if supplier_id else None
        if found is None and not supplier_id:
            found = self.suppliers.find_by_name(supplier_name or (snapshot.name if snapshot else ""))
        if found is not None:
            return found.id, found.snapshot()
        if snapshot is not None:
            return supplier_id or snapshot.id, snapshot
        return supplier_id, SupplierSnapshot(id=supplier_id, name=supplier_name or supplier_id)

    def _resolve_job(
        self, job_id: Optional[str], snapshot: Optional[JobSnapshot],
    ) -> tuple[Optional[str], Optional[JobSnapshot]]:
        job_id = (job_id or "").strip()
        found = self.jobs.find_by_id(job_id) if job_id else None
        if found is not None:
            return found.id, found.snapshot()
        if snapshot is not None:
            return job_id or snapshot.id or None, snapshot
        return job_id or None, None

    def _notify(self, po: PurchaseOrder, event: str, send: Callable[[Any], Any]) -> List[str]:
        if self.notifier is None:
            return []
        try:
            send(self.notifier)
        except DeliveryFailed as exc:
            logger.error("PO %s: %s e-mail failed: %s", po.po_number, event, exc.message)
            return [f"Notification not sent: {exc.message}"]
        return []


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_draft(payload: PurchaseOrderDraft | dict) -> PurchaseOrderDraft:
    if isinstance(payload, PurchaseOrderDraft):
        return payload
    try:
        return PurchaseOrderDraft.model_validate(payload or {})
    except ValidationError as exc:
        raise ValidationFailed.from_problems(
            [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
        ) from exc


def _parse_type(value: Optional[str], problems: list[str]) -> Optional[POType]:
    if not (value or "").strip():
        problems.append("PO type is required (Materials, Subcontract or Plant)")
        return None
    try:
        return POType.parse(value)
    except ValueError as exc:
        problems.append(str(exc))
        return None


def _ensure_editable(po: PurchaseOrder) -> None:
    if not po.status.editable:
        raise InvalidTransition(
            f"Cannot edit a PO with status '{po.status.value}'. Only Draft or Rejected can be changed."
        )


def _dump(po: PurchaseOrder) -> dict:
    return po.model_dump(mode="json")
