"""
Purchase Order Back Office: FastAPI backend.

Every route works on the active client's records through the procurement
services.  Who is calling comes from the X-User-Name / X-User-Email /
X-User-Role headers set by the fronting proxy; a missing or unknown role is
treated as a requester.

Endpoints
---------
  GET    /api/health                          → liveness probe
  GET    /api/stats                           → PO counts by status
  GET    /api/po                              → list (?q= &job= &type= &supplier= &archived= &sort= &order=)
  POST   /api/po                              → create
  GET    /api/po/{n}                          → one PO
  PUT    /api/po/{n}                          → amend a Draft / Rejected PO
  DELETE /api/po/{n}                          → delete (not while Approved)
  POST   /api/po/{n}/request-approval         → Issued, e-mail approvers
  POST   /api/po/{n}/approve                  → Approved / Rejected, e-mail requester
  PATCH  /api/po/{n}/archive                  → set / clear the archived flag
  GET    /api/po/{n}/history                  → audit trail
  GET    /api/po/{n}/pdf                      → order document (?download=1 for attachment)
  GET|POST|PUT|DELETE /api/suppliers[/{id}]   → supplier directory (+ /similar?name=)
  GET|POST|PUT|DELETE /api/jobs[/{id}]        → job directory
  GET    /api/cost-codes                      → cost code list (?q=)
  POST   /api/cost-codes/import               → replace cost codes from JSON rows
  GET    /api/payments/po-lines               → payable PO lines for a job + supplier
  GET|POST|PUT /api/payments/certificates[/{id}], POST .../{id}/issue
"""
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from config import Config
from dashboard.models import (
    ApprovalRequest, ArchiveUpdate, CertificateCreate, CertificateUpdate,
    DecisionRequest, JobCreate, JobUpdate, SupplierCreate, SupplierUpdate,
)
from dashboard.services.pdf import PdfRenderer, invalidate_cache
from models.purchase_order import POStatus
from procurement.directories import CostCodeDirectory, JobDirectory, SupplierDirectory
from procurement.errors import (
    Conflict, InvalidDecision, InvalidTransition, NotFound, PermissionDenied,
    ProcurementError, RenderFailed, StorageFailure, ValidationFailed,
)
from procurement.lifecycle import CallerContext, PurchaseOrderService, Role, TransitionResult
from procurement.notifier import EmailNotifier
from procurement.payments import PaymentService
from procurement.query import POQuery
from procurement.storage import open_store

logger = logging.getLogger(__name__)

# Error kind -> HTTP status.  Anything else is a 500.
_STATUS_CODES: list[tuple[type, int]] = [
    (ValidationFailed, 400),
    (InvalidDecision, 400),
    (InvalidTransition, 400),
    (PermissionDenied, 403),
    (NotFound, 404),
    (Conflict, 409),
    (StorageFailure, 500),
    (RenderFailed, 502),
]


def status_for(exc: ProcurementError) -> int:
    for cls, code in _STATUS_CODES:
        if isinstance(exc, cls):
            return code
    return 500


# ---------------------------------------------------------------------------
# Services (lazy: built on the first request so importing the app never
# touches the data directory)
# ---------------------------------------------------------------------------

class Services:
    """Everything the routes need, wired for one client from one Config."""

    def __init__(self, config: Config) -> None:
        config.ensure_dirs()
        self.config = config
        self.store = open_store(config)
        client = config.active_client
        self.suppliers = SupplierDirectory(self.store, client)
        self.jobs = JobDirectory(self.store, client)
        self.cost_codes = CostCodeDirectory(self.store, client)
        self.orders = PurchaseOrderService(
            self.store,
            client_id=client,
            suppliers=self.suppliers,
            jobs=self.jobs,
            notifier=EmailNotifier(config),
            default_vat_rate=config.default_vat_rate,
            allow_credit_lines=config.allow_credit_lines,
        )
        self.payments = PaymentService(self.store, client)
        self.pdf = PdfRenderer(config.currency_symbol, config.pdf_cache_size)

        self._seed_cost_codes()

    def _seed_cost_codes(self) -> None:
        """Load the configured cost code file while the stored list is empty."""
        path = self.config.cost_codes_path
        if not path or self.cost_codes.list():
            return
        if not Path(path).exists():
            logger.info("No cost code file at %s; cost code list is empty", path)
            return
        try:
            self.cost_codes.import_file(Path(path))
        except ProcurementError as exc:
            logger.warning("Cost codes not loaded from %s: %s", path, exc.message)


_services: Optional[Services] = None


def configure(config: Optional[Config] = None) -> Services:
    """(Re)build the services, e.g. for a different data directory."""
    global _services
    _services = Services(config or Config())
    logger.info("Serving client '%s' from %s store", _services.config.active_client,
                _services.config.storage_backend)
    return _services


def get_services() -> Services:
    if _services is None:
        return configure()
    return _services


def caller_context(
    x_user_name: str = Header(default=""),
    x_user_email: str = Header(default=""),
    x_user_role: str = Header(default=""),
) -> CallerContext:
    try:
        role = Role((x_user_role or "").strip().lower())
    except ValueError:
        role = Role.REQUESTER
    return CallerContext(name=x_user_name.strip(), email=x_user_email.strip(), role=role)


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Purchase Order Back Office", docs_url=None, redoc_url=None)


@app.exception_handler(ProcurementError)
async def procurement_error_handler(request: Request, exc: ProcurementError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=code, content=exc.to_dict())


def _transition(result: TransitionResult) -> dict:
    return {"order": result.order, "warnings": result.warnings}


# ── Health ───────────────────────────────────────────────────────────────────

@app.get("/api/health")
def health(svc: Services = Depends(get_services)):
    return {
        "status":  "ok",
        "client":  svc.config.active_client,
        "backend": svc.config.storage_backend,
    }


@app.get("/api/stats")
def stats(svc: Services = Depends(get_services)):
    orders = svc.orders.list({"archived": True})
    counts = Counter(po.status.value for po in orders)
    return {
        "total": len(orders),
        "archived": sum(1 for po in orders if po.archived),
        "by_status": {s.value: counts.get(s.value, 0) for s in POStatus},
    }


# ── Purchase orders ──────────────────────────────────────────────────────────

@app.get("/api/po")
def list_orders(
    q: str = "",
    job: str = "",
    type: str = "",
    supplier: str = "",
    archived: bool = False,
    sort: Optional[str] = None,
    order: str = "desc",
    svc: Services = Depends(get_services),
):
    try:
        criteria = POQuery(q=q, job=job, type=type, supplier=supplier,
                           archived=archived, sort=sort, order=order)
    except ValidationError as exc:
        raise ValidationFailed.from_problems(
            [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        ) from exc
    return svc.orders.list(criteria)


@app.post("/api/po", status_code=201)
def create_order(
    payload: dict = Body(...),
    caller: CallerContext = Depends(caller_context),
    svc: Services = Depends(get_services),
):
    return svc.orders.create(payload, caller)


@app.get("/api/po/{po_number}")
def get_order(po_number: str, svc: Services = Depends(get_services)):
    return svc.orders.get(po_number)


@app.put("/api/po/{po_number}")
def update_order(
    po_number: str,
    payload: dict = Body(...),
    caller: CallerContext = Depends(caller_context),
    svc: Services = Depends(get_services),
):
    po = svc.orders.update(po_number, payload, caller)
    invalidate_cache(_pdf_key(svc, po_number))
    return po


@app.delete("/api/po/{po_number}")
def delete_order(
    po_number: str,
    caller: CallerContext = Depends(caller_context),
    svc: Services = Depends(get_services),
):
    svc.orders.delete(po_number, caller)
    invalidate_cache(_pdf_key(svc, po_number))
    return {"deleted": po_number}


@app.post("/api/po/{po_number}/request-approval")
def request_approval(
    po_number: str,
    body: Optional[ApprovalRequest] = None,
    caller: CallerContext = Depends(caller_context),
    svc: Services = Depends(get_services),
):
    note = body.note if body else ""
    return _transition(svc.orders.request_approval(po_number, caller, note))


@app.post("/api/po/{po_number}/approve")
def decide_order(
    po_number: str,
    body: DecisionRequest,
    caller: CallerContext = Depends(caller_context),
    svc: Services = Depends(get_services),
):
    return _transition(svc.orders.decide(po_number, body.decision, caller, body.note))


@app.patch("/api/po/{po_number}/archive")
def archive_order(
    po_number: str,
    body: ArchiveUpdate,
    caller: CallerContext = Depends(caller_context),
    svc: Services = Depends(get_services),
):
    return svc.orders.archive(po_number, body.archived, caller)


@app.get("/api/po/{po_number}/history")
def order_history(po_number: str, svc: Services = Depends(get_services)):
    return svc.orders.history(po_number)


def _pdf_key(svc: Services, po_number: str) -> str:
    return f"{svc.config.active_client}:{po_number}"


@app.get("/api/po/{po_number}/pdf")
def order_pdf(po_number: str, download: bool = False, svc: Services = Depends(get_services)):
    po = svc.orders.get(po_number)
    job = svc.jobs.find_by_id(po.job_id) if po.job_id and po.job_snapshot is None else None
    pdf = svc.pdf.render_order(po, svc.config.brand, job, cache_key=_pdf_key(svc, po_number))
    disposition = "attachment" if download else "inline"
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'{disposition}; filename="{po_number}.pdf"'},
    )


# ── Suppliers ────────────────────────────────────────────────────────────────

@app.get("/api/suppliers")
def list_suppliers(q: str = "", svc: Services = Depends(get_services)):
    return svc.suppliers.list(q)


@app.get("/api/suppliers/similar")
def similar_suppliers(name: str, limit: int = 5, svc: Services = Depends(get_services)):
    return [{"supplier": s, "score": round(score, 1)} for s, score in svc.suppliers.similar(name, limit)]


@app.get("/api/suppliers/{supplier_id}")
def get_supplier(supplier_id: str, svc: Services = Depends(get_services)):
    return svc.suppliers.get(supplier_id)


@app.post("/api/suppliers", status_code=201)
def create_supplier(body: SupplierCreate, svc: Services = Depends(get_services)):
    return svc.suppliers.create(body.model_dump())


@app.put("/api/suppliers/{supplier_id}")
def update_supplier(supplier_id: str, body: SupplierUpdate, svc: Services = Depends(get_services)):
    return svc.suppliers.update(supplier_id, body.model_dump(exclude_unset=True))


@app.delete("/api/suppliers/{supplier_id}")
def delete_supplier(supplier_id: str, svc: Services = Depends(get_services)):
    svc.suppliers.delete(supplier_id)
    return {"deleted": supplier_id}


# ── Jobs ─────────────────────────────────────────────────────────────────────

@app.get("/api/jobs")
def list_jobs(q: str = "", svc: Services = Depends(get_services)):
    return svc.jobs.list(q)


@app.get("/api/jobs/{job_id}")
def get_job(job_id: str, svc: Services = Depends(get_services)):
    return svc.jobs.get(job_id)


@app.post("/api/jobs", status_code=201)
def create_job(body: JobCreate, svc: Services = Depends(get_services)):
    return svc.jobs.create(body.model_dump())


@app.put("/api/jobs/{job_id}")
def update_job(job_id: str, body: JobUpdate, svc: Services = Depends(get_services)):
    return svc.jobs.update(job_id, body.model_dump(exclude_unset=True))


@app.delete("/api/jobs/{job_id}")
def delete_job(job_id: str, svc: Services = Depends(get_services)):
    svc.jobs.delete(job_id)
    return {"deleted": job_id}


# ── Cost codes ───────────────────────────────────────────────────────────────

@app.get("/api/cost-codes")
def list_cost_codes(q: str = "", svc: Services = Depends(get_services)):
    return svc.cost_codes.list(q)


@app.post("/api/cost-codes/import")
def import_cost_codes(rows: list[Any] = Body(...), svc: Services = Depends(get_services)):
    return {"imported": svc.cost_codes.import_rows(rows)}


# ── Payments ─────────────────────────────────────────────────────────────────

@app.get("/api/payments/po-lines")
def payable_lines(job_id: str, supplier_id: str, svc: Services = Depends(get_services)):
    return svc.payments.payable_lines(job_id, supplier_id)


@app.get("/api/payments/certificates")
def list_certificates(
    job_id: str = "",
    supplier_id: str = "",
    status: str = "",
    svc: Services = Depends(get_services),
):
    return svc.payments.list(job_id, supplier_id, status)


@app.get("/api/payments/certificates/{cert_id}")
def get_certificate(cert_id: str, svc: Services = Depends(get_services)):
    return svc.payments.get(cert_id)


@app.post("/api/payments/certificates", status_code=201)
def create_certificate(body: CertificateCreate, svc: Services = Depends(get_services)):
    return svc.payments.create(**body.model_dump())


@app.put("/api/payments/certificates/{cert_id}")
def update_certificate(cert_id: str, body: CertificateUpdate, svc: Services = Depends(get_services)):
    return svc.payments.update(cert_id, body.model_dump(exclude_unset=True))


@app.post("/api/payments/certificates/{cert_id}/issue")
def issue_certificate(cert_id: str, svc: Services = Depends(get_services)):
    return svc.payments.issue(cert_id)
