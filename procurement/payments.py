"""
Sub-contractor payment certificates.

A certificate values work done against the PO lines of one (job, supplier)
pair.  Only lines from Issued or Approved POs are payable.  Certificates are
numbered 1, 2, 3... per (job, supplier), can be edited while Draft, and are
frozen once issued.  Amounts on issued certificates count as "previously
certified" on the next one.

    this_period  = sum of line this_period values
    retention    = this_period * retention_rate
    net          = this_period - retention - contra
    vat          = net * vat_rate
    total_due    = net + vat
"""
import logging
import threading
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError

from models.payment import (
    CertificateLine, CertificateStatus, CertificateTotals, PayableLine, PaymentCertificate,
)
from models.purchase_order import POStatus, PurchaseOrder

from .errors import InvalidTransition, NotFound, ValidationFailed
from .totals import exact_sum, line_amount, round_money, to_number

logger = logging.getLogger(__name__)

COLLECTION = "payment_certificates"
PAYABLE_STATUSES = (POStatus.ISSUED, POStatus.APPROVED)
EDITABLE_FIELDS = ("period_end", "retention_rate", "vat_rate", "contra", "lines")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def compute_certificate_totals(
    lines: Iterable[CertificateLine],
    retention_rate: float,
    vat_rate: float,
    contra: float = 0.0,
) -> CertificateTotals:
    this_period = round_money(exact_sum(to_number(line.this_period) for line in lines))
    retention = round_money(this_period * to_number(retention_rate))
    contra = round_money(to_number(contra))
    net = round_money(this_period - retention - contra)
    vat = round_money(net * to_number(vat_rate))
    return CertificateTotals(
        this_period=this_period,
        retention=retention,
        contra=contra,
        net=net,
        vat=vat,
        total_due=round_money(net + vat),
    )


class PaymentService:
    def __init__(self, store, client_id: str = "default") -> None:
        self.store = store
        self.client_id = client_id
        self._number_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _certificates(self) -> list[PaymentCertificate]:
        return [PaymentCertificate.model_validate(r) for r in self.store.list_records(COLLECTION, self.client_id)]

    def list(self, job_id: str = "", supplier_id: str = "", status: str = "") -> list[PaymentCertificate]:
        """Certificates filtered by job / supplier / status, newest number first per pair."""
        certs = [
            c for c in self._certificates()
            if (not job_id or c.job_id == job_id)
            and (not supplier_id or c.supplier_id == supplier_id)
            and (not status or c.status.value.lower() == status.lower())
        ]
        certs.sort(key=lambda c: -c.cert_no)
        certs.sort(key=lambda c: (c.job_id, c.supplier_id))
        return certs

    def get(self, cert_id: str) -> PaymentCertificate:
        rec = self.store.get_record(COLLECTION, self.client_id, cert_id)
        if rec is None:
            raise NotFound(f"Certificate {cert_id} not found")
        return PaymentCertificate.model_validate(rec)

    def payable_lines(self, job_id: str, supplier_id: str) -> List[PayableLine]:
        """Lines from Issued/Approved POs for the pair, with amounts already certified."""
        _require_pair(job_id, supplier_id)
        certified: dict[tuple[str, int], float] = defaultdict(float)
        for cert in self._certificates():
            if (cert.job_id, cert.supplier_id, cert.status) == (job_id, supplier_id, CertificateStatus.ISSUED):
                for line in cert.lines:
                    certified[(line.po_number, line.line_index)] += line.this_period

        out: list[PayableLine] = []
        for rec in self.store.list_records("purchase_orders", self.client_id):
            po = PurchaseOrder.model_validate(rec)
            if po.job_id != job_id or po.supplier_id != supplier_id or po.status not in PAYABLE_STATUSES:
                continue
            for index, line in enumerate(po.lines):
                out.append(PayableLine(
                    po_number=po.po_number,
                    po_status=po.status.value,
                    line_index=index,
                    description=line.description,
                    unit=line.unit,
                    quantity=line.quantity,
                    rate=line.rate,
                    po_line_value=line_amount(line),
                    cost_code=line.cost_code or po.cost_code,
                    element=po.element,
                    previously_certified=round_money(certified[(po.po_number, index)]),
                ))
        return out

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _build_lines(self, job_id: str, supplier_id: str, raw_lines: Iterable[Any]) -> List[CertificateLine]:
        """Validate submitted lines and fill blanks from the matching payable PO line."""
        payable = {(p.po_number, p.line_index): p for p in self.payable_lines(job_id, supplier_id)}
        lines = []
        for raw in raw_lines:
            data = raw.model_dump() if isinstance(raw, CertificateLine) else dict(raw)
            source = payable.get((data.get("po_number"), data.get("line_index")))
            if source is not None:
                data.setdefault("description", source.description)
                data.setdefault("cost_code", source.cost_code)
                data.setdefault("po_line_value", source.po_line_value)
                data.setdefault("previously_certified", source.previously_certified)
            try:
                lines.append(CertificateLine.model_validate(data))
            except ValidationError as exc:
                raise ValidationFailed(f"Invalid certificate line: {exc.errors()[0]['msg']}") from exc
        return lines

    def create(
        self,
        job_id: str,
        supplier_id: str,
        period_end: Optional[str] = None,
        retention_rate: float = 0.05,
        vat_rate: float = 0.2,
        contra: float = 0.0,
        lines: Optional[Iterable[Any]] = None,
    ) -> PaymentCertificate:
        _require_pair(job_id, supplier_id)
        cert_lines = self._build_lines(job_id, supplier_id, lines or [])
        now = _now()
        with self._number_lock:
            cert_no = 1 + max(
                (c.cert_no for c in self._certificates()
                 if c.job_id == job_id and c.supplier_id == supplier_id),
                default=0,
            )
            cert = PaymentCertificate(
                id=f"cert-{uuid.uuid4().hex[:12]}",
                job_id=job_id,
                supplier_id=supplier_id,
                cert_no=cert_no,
                period_end=period_end,
                retention_rate=retention_rate,
                vat_rate=vat_rate,
                contra=contra,
                lines=cert_lines,
                totals=compute_certificate_totals(cert_lines, retention_rate, vat_rate, contra),
                created_at=now,
                updated_at=now,
            )
            self.store.insert_record(COLLECTION, self.client_id, cert.model_dump(mode="json"))
        logger.info("Certificate %s/%s #%d created (%s)", job_id, supplier_id, cert_no, cert.id)
        return cert

    def update(self, cert_id: str, changes: dict) -> PaymentCertificate:
        changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}

        def mutate(payload: dict) -> dict:
            cert = PaymentCertificate.model_validate(payload)
            if cert.status is not CertificateStatus.DRAFT:
                raise InvalidTransition("Only Draft certificates can be edited")
            if "lines" in changes:
                cert.lines = self._build_lines(cert.job_id, cert.supplier_id, changes["lines"])
            for name in ("period_end", "retention_rate", "vat_rate", "contra"):
                if name in changes:
                    setattr(cert, name, changes[name])
            cert.totals = compute_certificate_totals(cert.lines, cert.retention_rate, cert.vat_rate, cert.contra)
            cert.updated_at = _now()
            return cert.model_dump(mode="json")

        payload = self.store.update_record(COLLECTION, self.client_id, cert_id, mutate)
        logger.info("Certificate %s updated", cert_id)
        return PaymentCertificate.model_validate(payload)

    def issue(self, cert_id: str) -> PaymentCertificate:
        def mutate(payload: dict) -> dict:
            cert = PaymentCertificate.model_validate(payload)
            if cert.status is not CertificateStatus.DRAFT:
                raise InvalidTransition(f"Certificate {cert_id} is already {cert.status.value}")
            now = _now()
            cert.status = CertificateStatus.ISSUED
            cert.issued_at = now
            cert.updated_at = now
            return cert.model_dump(mode="json")

        payload = self.store.update_record(COLLECTION, self.client_id, cert_id, mutate)
        cert = PaymentCertificate.model_validate(payload)
        logger.info("Certificate %s/%s #%d issued: due %.2f",
                    cert.job_id, cert.supplier_id, cert.cert_no, cert.totals.total_due)
        return cert


def _require_pair(job_id: str, supplier_id: str) -> None:
    if not job_id or not supplier_id:
        raise ValidationFailed("job_id and supplier_id are required")
