"""
Unit tests for sub-contractor payment certificates.
"""
import pytest

from models.payment import CertificateLine, CertificateStatus
from procurement.errors import InvalidTransition, NotFound, ValidationFailed
from procurement.payments import PaymentService, compute_certificate_totals


@pytest.fixture
def payments(store) -> PaymentService:
    return PaymentService(store)


@pytest.fixture
def issued_order(service, sample_payload, requester):
    """A Subcontract PO for job-a / sup-1 that has been sent for approval."""
    po = service.create({
        **sample_payload,
        "type": "Subcontract",
        "supplier_id": "sup-1",
        "supplier_name": "Dig Deep Civils",
        "job_id": "job-a",
        "lines": [
            {"description": "Drainage runs", "unit": "m", "quantity": 100, "rate": 30},
            {"description": "Manholes", "quantity": 2, "rate": 500},
        ],
    }, requester)
    return service.request_approval(po.po_number, requester).order


@pytest.mark.unit
class TestCertificateTotals:
    def test_formula(self):
        lines = [CertificateLine(po_number="S0001", line_index=0, this_period=1000),
                 CertificateLine(po_number="S0001", line_index=1, this_period=500)]
        totals = compute_certificate_totals(lines, retention_rate=0.05, vat_rate=0.2, contra=25)
        assert totals.this_period == 1500.0
        assert totals.retention == 75.0
        assert totals.contra == 25.0
        assert totals.net == 1400.0
        assert totals.vat == 280.0
        assert totals.total_due == 1680.0

    def test_to_date(self):
        line = CertificateLine(po_number="S0001", line_index=0, previously_certified=100.1, this_period=50.2)
        assert line.to_date == 150.3


@pytest.mark.unit
class TestPaymentService:
    def test_payable_lines_only_from_issued_or_approved(self, service, payments, issued_order, sample_payload):
        service.create({**sample_payload, "supplier_id": "sup-1", "job_id": "job-a"})   # Draft: not payable
        lines = payments.payable_lines("job-a", "sup-1")
        assert [(p.po_number, p.line_index, p.po_line_value) for p in lines] == [
            (issued_order.po_number, 0, 3000.0),
            (issued_order.po_number, 1, 1000.0),
        ]
        assert lines[0].cost_code == "2.01"
        assert payments.payable_lines("job-b", "sup-1") == []

    def test_pair_required(self, payments):
        with pytest.raises(ValidationFailed):
            payments.payable_lines("", "sup-1")
        with pytest.raises(ValidationFailed):
            payments.create("job-a", "")

    def test_create_fills_from_po_lines(self, payments, issued_order):
        cert = payments.create("job-a", "sup-1", period_end="2026-03-31", lines=[
            {"po_number": issued_order.po_number, "line_index": 0, "this_period": 1200},
        ])
        assert cert.cert_no == 1
        assert cert.status is CertificateStatus.DRAFT
        assert cert.lines[0].description == "Drainage runs"
        assert cert.lines[0].po_line_value == 3000.0
        assert cert.totals.this_period == 1200.0
        assert cert.totals.total_due == 1368.0
        assert payments.get(cert.id) == cert

    def test_numbering_per_pair(self, payments, issued_order):
        assert payments.create("job-a", "sup-1").cert_no == 1
        assert payments.create("job-a", "sup-1").cert_no == 2
        assert payments.create("job-b", "sup-1").cert_no == 1

    def test_issued_amounts_count_as_previously_certified(self, payments, issued_order):
        first = payments.create("job-a", "sup-1", lines=[
            {"po_number": issued_order.po_number, "line_index": 0, "this_period": 1200},
        ])
        payments.create("job-a", "sup-1", lines=[
            {"po_number": issued_order.po_number, "line_index": 0, "this_period": 999},
        ])
        payments.issue(first.id)
        lines = payments.payable_lines("job-a", "sup-1")
        assert lines[0].previously_certified == 1200.0
        assert lines[1].previously_certified == 0.0

    def test_update_draft_only(self, payments, issued_order):
        cert = payments.create("job-a", "sup-1")
        updated = payments.update(cert.id, {"contra": 50, "retention_rate": 0, "status": "Issued"})
        assert updated.contra == 50
        assert updated.status is CertificateStatus.DRAFT
        assert updated.totals.net == -50.0

        issued = payments.issue(cert.id)
        assert issued.status is CertificateStatus.ISSUED
        assert issued.issued_at
        with pytest.raises(InvalidTransition):
            payments.update(cert.id, {"contra": 0})
        with pytest.raises(InvalidTransition):
            payments.issue(cert.id)

    def test_invalid_line(self, payments, issued_order):
        with pytest.raises(ValidationFailed):
            payments.create("job-a", "sup-1", lines=[{"line_index": 0}])

    def test_list_filters_and_order(self, payments, issued_order):
        a1 = payments.create("job-a", "sup-1")
        a2 = payments.create("job-a", "sup-1")
        b1 = payments.create("job-b", "sup-1")
        payments.issue(a1.id)
        assert [c.id for c in payments.list()] == [a2.id, a1.id, b1.id]
        assert [c.id for c in payments.list(job_id="job-b")] == [b1.id]
        assert [c.id for c in payments.list(status="issued")] == [a1.id]

    def test_get_unknown(self, payments):
        with pytest.raises(NotFound):
            payments.get("cert-missing")
