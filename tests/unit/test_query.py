"""
Unit tests for PO list filtering and sorting.
"""
import pytest

from models.purchase_order import JobSnapshot, OrderLine, PurchaseOrder, SupplierSnapshot
from procurement.query import POQuery, filter_orders, matches


def _po(number, po_type="Materials", **kwargs) -> PurchaseOrder:
    data = {
        "po_number": number,
        "type": po_type,
        "supplier_id": "sup-1",
        "supplier_snapshot": SupplierSnapshot(id="sup-1", name="Acme Aggregates Ltd"),
        "created_at": f"2026-01-{int(number[1:]) % 28 + 1:02d}T09:00:00+00:00",
        "updated_at": "2026-02-01T09:00:00+00:00",
    }
    data.update(kwargs)
    return PurchaseOrder(**data)


@pytest.fixture
def orders() -> list[PurchaseOrder]:
    return [
        _po("M0002", title="Sub-base", cost_code="2.01",
            lines=[OrderLine(description="Type 1 sub-base", quantity=10, rate=25, amount=250)],
            job_id="job-a", job_snapshot=JobSnapshot(id="job-a", name="Riverside", job_code="2041")),
        _po("S0001", po_type="Subcontract", title="Drainage gang",
            supplier_id="sup-2", supplier_snapshot=SupplierSnapshot(id="sup-2", name="Dig Deep Civils"),
            job_id="job-b", job_snapshot=JobSnapshot(id="job-b", name="Hilltop", job_number="HT-7")),
        _po("M0010", title="Bricks", notes="Facing bricks, red multi", archived=True),
        _po("P0003", po_type="Plant", title="Excavator hire", element="Hired plant"),
    ]


@pytest.mark.unit
class TestFilter:
    def test_no_criteria_hides_archived(self, orders):
        assert [po.po_number for po in filter_orders(orders)] == ["M0002", "S0001", "P0003"]

    def test_include_archived(self, orders):
        assert len(filter_orders(orders, POQuery(archived=True))) == 4

    def test_type_by_name_or_prefix(self, orders):
        assert [p.po_number for p in filter_orders(orders, POQuery(type="subcontract"))] == ["S0001"]
        assert [p.po_number for p in filter_orders(orders, POQuery(type="P"))] == ["P0003"]

    def test_unknown_type_matches_nothing(self, orders):
        assert filter_orders(orders, POQuery(type="Labour")) == []

    def test_supplier_substring(self, orders):
        assert [p.po_number for p in filter_orders(orders, POQuery(supplier="dig deep"))] == ["S0001"]
        assert [p.po_number for p in filter_orders(orders, POQuery(supplier="sup-2"))] == ["S0001"]

    def test_job_by_name_code_number_or_id(self, orders):
        for needle in ("riverside", "2041", "job-a"):
            assert [p.po_number for p in filter_orders(orders, POQuery(job=needle))] == ["M0002"]
        assert [p.po_number for p in filter_orders(orders, POQuery(job="ht-7"))] == ["S0001"]

    def test_free_text(self, orders):
        assert [p.po_number for p in filter_orders(orders, POQuery(q="type 1"))] == ["M0002"]
        assert [p.po_number for p in filter_orders(orders, POQuery(q="hired"))] == ["P0003"]
        assert [p.po_number for p in filter_orders(orders, POQuery(q="red multi", archived=True))] == ["M0010"]
        assert [p.po_number for p in filter_orders(orders, POQuery(q="draft"))] == ["M0002", "S0001", "P0003"]

    def test_criteria_combine(self, orders):
        query = POQuery(q="acme", type="M", archived=True)
        assert [p.po_number for p in filter_orders(orders, query)] == ["M0002", "M0010"]

    def test_input_not_mutated(self, orders):
        before = [po.model_copy(deep=True) for po in orders]
        filter_orders(orders, POQuery(sort="po_number", order="asc"))
        assert orders == before

    def test_matches_single(self, orders):
        assert matches(orders[0], POQuery(q="riverside")) is False
        assert matches(orders[0], POQuery(job="riverside")) is True


@pytest.mark.unit
class TestSort:
    def test_po_number_numeric_within_prefix(self):
        orders = [_po("M0010"), _po("M0002"), _po("M10000")]
        result = filter_orders(orders, POQuery(sort="po_number", order="asc"))
        assert [p.po_number for p in result] == ["M0002", "M0010", "M10000"]

    def test_descending_default(self, orders):
        result = filter_orders(orders, POQuery(sort="created_at"))
        created = [p.created_at for p in result]
        assert created == sorted(created, reverse=True)

    def test_ties_keep_input_order(self, orders):
        result = filter_orders(orders, POQuery(sort="updated_at", order="asc"))
        assert [p.po_number for p in result] == ["M0002", "S0001", "P0003"]

    def test_blank_sort_means_input_order(self, orders):
        assert [p.po_number for p in filter_orders(orders, POQuery(sort=""))] == ["M0002", "S0001", "P0003"]
