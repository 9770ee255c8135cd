"""
Unit tests for the supplier, job and cost code directories.
"""
import json

import pytest

from procurement.directories import (
    CostCodeDirectory, JobDirectory, SupplierDirectory,
    cost_code_label, load_cost_code_file, normalise_row, prepare_cost_codes,
)
from procurement.errors import Conflict, NotFound, ValidationFailed


@pytest.fixture
def suppliers(store) -> SupplierDirectory:
    return SupplierDirectory(store)


@pytest.fixture
def jobs(store) -> JobDirectory:
    return JobDirectory(store)


@pytest.mark.unit
class TestSupplierDirectory:
    def test_create_and_get(self, suppliers):
        created = suppliers.create({"name": "  Acme Aggregates Ltd ", "city": "Leeds"})
        assert created.id.startswith("sup-")
        assert created.name == "Acme Aggregates Ltd"
        assert suppliers.get(created.id) == created

    def test_name_required(self, suppliers):
        with pytest.raises(ValidationFailed):
            suppliers.create({"name": " "})

    def test_duplicate_name_case_insensitive(self, suppliers):
        suppliers.create({"name": "Acme Aggregates Ltd"})
        with pytest.raises(Conflict):
            suppliers.create({"name": "ACME AGGREGATES LTD"})

    def test_find_by_id_then_name(self, suppliers):
        created = suppliers.create({"name": "Dig Deep Civils"})
        assert suppliers.find(created.id) == created
        assert suppliers.find("dig deep civils") == created
        assert suppliers.find("nobody") is None

    def test_list_filter(self, suppliers):
        suppliers.create({"name": "Acme Aggregates Ltd", "city": "Leeds"})
        suppliers.create({"name": "Brick World", "postcode": "LS1 4AB"})
        suppliers.create({"name": "Plant Hire Co", "city": "York"})
        assert len(suppliers.list()) == 3
        assert [s.name for s in suppliers.list("leeds")] == ["Acme Aggregates Ltd"]
        assert [s.name for s in suppliers.list("ls1")] == ["Brick World"]

    def test_similar_names(self, suppliers):
        suppliers.create({"name": "Acme Supplies Ltd"})
        suppliers.create({"name": "Brick World"})
        similar = suppliers.similar("ACME Supplies Limited")
        assert [s.name for s, _ in similar] == ["Acme Supplies Ltd"]
        assert similar[0][1] >= 80
        assert suppliers.similar("") == []

    def test_update(self, suppliers):
        created = suppliers.create({"name": "Acme Aggregates Ltd"})
        updated = suppliers.update(created.id, {"contact_email": "sales@acme.test", "id": "hijack"})
        assert updated.id == created.id
        assert updated.contact_email == "sales@acme.test"
        assert updated.created_at == created.created_at

    def test_rename_clash(self, suppliers):
        a = suppliers.create({"name": "Acme"})
        suppliers.create({"name": "Brick World"})
        with pytest.raises(Conflict):
            suppliers.update(a.id, {"name": "brick world"})
        assert suppliers.update(a.id, {"name": "ACME"}).name == "ACME"

    def test_delete(self, suppliers):
        created = suppliers.create({"name": "Acme"})
        suppliers.delete(created.id)
        with pytest.raises(NotFound):
            suppliers.get(created.id)
        with pytest.raises(NotFound):
            suppliers.delete(created.id)


@pytest.mark.unit
class TestJobDirectory:
    def test_required_fields(self, jobs):
        with pytest.raises(ValidationFailed) as exc_info:
            jobs.create({"job_code": "2041"})
        assert len(exc_info.value.problems) == 2

    def test_create_and_lookups(self, jobs):
        job = jobs.create({"job_code": "2041", "name": "Riverside", "site_address": "1 Quay St\nLeeds"})
        assert job.id.startswith("job-")
        assert jobs.find_by_code("2041") == job
        assert jobs.find_by_name("riverside") == job
        assert jobs.get(job.id) == job
        assert [j.id for j in jobs.list("quay")] == [job.id]

    def test_duplicate_code_or_name(self, jobs):
        jobs.create({"job_code": "2041", "name": "Riverside", "site_address": "x"})
        with pytest.raises(Conflict):
            jobs.create({"job_code": "2041", "name": "Other", "site_address": "x"})
        with pytest.raises(Conflict):
            jobs.create({"job_code": "2042", "name": "RIVERSIDE", "site_address": "x"})

    def test_job_code_is_fixed(self, jobs):
        job = jobs.create({"job_code": "2041", "name": "Riverside", "site_address": "x"})
        updated = jobs.update(job.id, {"job_code": "9999", "site_manager": "Pat"})
        assert updated.job_code == "2041"
        assert updated.site_manager == "Pat"

    def test_snapshot(self, jobs):
        job = jobs.create({"job_code": "2041", "name": "Riverside", "site_address": "x", "job_number": "RS-1"})
        snap = job.snapshot()
        assert (snap.id, snap.job_code, snap.job_number) == (job.id, "2041", "RS-1")

    def test_get_unknown(self, jobs):
        with pytest.raises(NotFound):
            jobs.get("job-missing")


@pytest.mark.unit
class TestCostCodes:
    def test_label(self):
        assert cost_code_label("2.01", "Groundworks", "Excavation", "Sub") == "2.01 — Groundworks — Excavation"
        assert cost_code_label("2.01", "", "", "Substructure") == "2.01 — Substructure"

    def test_normalise_row_variants(self):
        assert normalise_row({"Cost Code": " 1.01 ", "Trade": "Prelims"}).code == "1.01"
        assert normalise_row({"code": "1.02"}).code == "1.02"
        assert normalise_row("1.03").code == "1.03"
        assert normalise_row({"Cost Code": "Cost Code", "Trade": "Trade"}) is None
        assert normalise_row({"Trade": "Orphan"}) is None
        assert normalise_row(42) is None

    def test_prepare_dedupes_and_sorts(self, sample_cost_codes_csv):
        codes = prepare_cost_codes(load_cost_code_file(sample_cost_codes_csv))
        assert [c.code for c in codes] == ["1.01", "2.9", "2.10", "3.01"]
        assert codes[1].element == "Kerbs"

    def test_load_json(self, temp_dir):
        path = temp_dir / "codes.json"
        path.write_text(json.dumps([{"code": "5.01", "trade": "Plant"}]), encoding="utf-8")
        assert load_cost_code_file(path) == [{"code": "5.01", "trade": "Plant"}]

    def test_load_errors(self, temp_dir):
        with pytest.raises(NotFound):
            load_cost_code_file(temp_dir / "missing.csv")
        bad = temp_dir / "codes.json"
        bad.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValidationFailed):
            load_cost_code_file(bad)
        obj = temp_dir / "object.json"
        obj.write_text('{"code": "1"}', encoding="utf-8")
        with pytest.raises(ValidationFailed):
            load_cost_code_file(obj)
        xlsx = temp_dir / "codes.xlsx"
        xlsx.write_bytes(b"PK")
        with pytest.raises(ValidationFailed):
            load_cost_code_file(xlsx)

    def test_directory_import_replaces(self, store, sample_cost_codes_csv):
        directory = CostCodeDirectory(store)
        assert directory.import_rows(["9.99"]) == 1
        assert directory.import_file(sample_cost_codes_csv) == 4
        assert directory.get("9.99") is None
        assert directory.get("2.10").trade == "Groundworks"
        assert [c.code for c in directory.list("drain")] == ["2.10"]
