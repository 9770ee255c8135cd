"""
Reference directories: suppliers, jobs and cost codes.

Suppliers and jobs are small keyed collections referenced from POs by id and
embedded into them by snapshot.  Names are not unique at the storage layer;
create() refuses a duplicate (case-insensitive) with Conflict.

Cost codes are read-only reference data imported from a JSON or CSV file and
replaced wholesale on each import.
"""
import csv
import json
import logging
import re
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional

from rapidfuzz import fuzz, process

from models.cost_code import CostCode
from models.job import Job
from models.supplier import Supplier

from .errors import Conflict, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

# Minimum rapidfuzz score (0-100) for a "similar supplier" suggestion
SIMILAR_NAME_THRESHOLD = 80


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _norm(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _contains(needle: str, *values: Any) -> bool:
    return any(needle in _norm(v).lower() for v in values)


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

class SupplierDirectory:
    collection = "suppliers"

    def __init__(self, store, client_id: str = "default") -> None:
        self.store = store
        self.client_id = client_id
        self._create_lock = threading.Lock()

    def list(self, q: str = "") -> list[Supplier]:
        suppliers = [Supplier.model_validate(r) for r in self.store.list_records(self.collection, self.client_id)]
        needle = _norm(q).lower()
        if not needle:
            return suppliers
        return [
            s for s in suppliers
            if _contains(needle, s.name, s.city, s.postcode, s.contact_name, s.contact_email)
        ]

    def find_by_id(self, supplier_id: str) -> Optional[Supplier]:
        if not _norm(supplier_id):
            return None
        rec = self.store.get_record(self.collection, self.client_id, _norm(supplier_id))
        return Supplier.model_validate(rec) if rec else None

    def find_by_name(self, name: str) -> Optional[Supplier]:
        """Case-insensitive exact match on name."""
        if not _norm(name):
            return None
        rec = self.store.find_by_name(self.collection, self.client_id, _norm(name))
        return Supplier.model_validate(rec) if rec else None

    def find(self, ref: str) -> Optional[Supplier]:
        """Look up by id first, then by name."""
        return self.find_by_id(ref) or self.find_by_name(ref)

    def get(self, supplier_id: str) -> Supplier:
        supplier = self.find_by_id(supplier_id)
        if supplier is None:
            raise NotFound(f"Supplier {supplier_id} not found")
        return supplier

    def similar(self, name: str, limit: int = 5) -> List[tuple[Supplier, float]]:
        """
        Suppliers whose names are close to *name*, best first.  Used to warn
        about near-duplicates ("Acme Ltd" vs "ACME Limited") before creating.
        """
        needle = _norm(name).lower()
        if not needle:
            return []
        suppliers = self.list()
        choices = {i: s.name.lower() for i, s in enumerate(suppliers)}
        matches = process.extract(
            needle, choices, scorer=fuzz.token_sort_ratio,
            score_cutoff=SIMILAR_NAME_THRESHOLD, limit=limit,
        )
        return [(suppliers[idx], float(score)) for _, score, idx in matches]

    def create(self, data: dict) -> Supplier:
        name = _norm(data.get("name"))
        if not name:
            raise ValidationFailed("Field 'name' is required")
        now = _now()
        supplier = Supplier.model_validate({
            **{k: v for k, v in data.items() if v is not None},
            "id": _norm(data.get("id")) or f"sup-{uuid.uuid4().hex[:12]}",
            "name": name,
            "created_at": now,
            "updated_at": now,
        })
        with self._create_lock:
            if self.find_by_name(name):
                raise Conflict(f"Supplier '{name}' already exists")
            self.store.insert_record(self.collection, self.client_id, supplier.model_dump(mode="json"))
        logger.info("Supplier created: %s (%s)", supplier.name, supplier.id)
        return supplier

    def update(self, supplier_id: str, changes: dict) -> Supplier:
        changes = {k: v for k, v in changes.items() if v is not None and k not in ("id", "created_at")}
        new_name = _norm(changes.get("name"))
        if "name" in changes and not new_name:
            raise ValidationFailed("Field 'name' cannot be blank")
        if new_name:
            clash = self.find_by_name(new_name)
            if clash and clash.id != supplier_id:
                raise Conflict(f"Supplier '{new_name}' already exists")
            changes["name"] = new_name

        def mutate(payload: dict) -> dict:
            merged = Supplier.model_validate({**payload, **changes, "updated_at": _now()})
            return merged.model_dump(mode="json")

        payload = self.store.update_record(self.collection, self.client_id, supplier_id, mutate)
        logger.info("Supplier updated: %s", supplier_id)
        return Supplier.model_validate(payload)

    def delete(self, supplier_id: str) -> None:
        self.store.delete_record(self.collection, self.client_id, supplier_id)
        logger.info("Supplier deleted: %s", supplier_id)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class JobDirectory:
    collection = "jobs"
    required_fields = ("job_code", "name", "site_address")

    def __init__(self, store, client_id: str = "default") -> None:
        self.store = store
        self.client_id = client_id
        self._create_lock = threading.Lock()

    def list(self, q: str = "") -> list[Job]:
        """All jobs, optionally filtered by substring on code, number, name or site address."""
        jobs = [Job.model_validate(r) for r in self.store.list_records(self.collection, self.client_id)]
        needle = _norm(q).lower()
        if not needle:
            return jobs
        return [j for j in jobs if _contains(needle, j.job_code, j.job_number, j.name, j.site_address)]

    def find_by_id(self, job_id: str) -> Optional[Job]:
        if not _norm(job_id):
            return None
        rec = self.store.get_record(self.collection, self.client_id, _norm(job_id))
        return Job.model_validate(rec) if rec else None

    def find_by_name(self, name: str) -> Optional[Job]:
        if not _norm(name):
            return None
        rec = self.store.find_by_name(self.collection, self.client_id, _norm(name))
        return Job.model_validate(rec) if rec else None

    def find_by_code(self, job_code: str) -> Optional[Job]:
        wanted = _norm(job_code).lower()
        if not wanted:
            return None
        return next((j for j in self.list() if j.job_code.lower() == wanted), None)

    def get(self, job_id: str) -> Job:
        job = self.find_by_id(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job

    def create(self, data: dict) -> Job:
        problems = [f"Field '{f}' is required" for f in self.required_fields if not _norm(data.get(f))]
        if problems:
            raise ValidationFailed.from_problems(problems)

        now = _now()
        job = Job.model_validate({
            **{k: v for k, v in data.items() if v is not None},
            "id": _norm(data.get("id")) or f"job-{uuid.uuid4().hex[:12]}",
            "job_code": _norm(data["job_code"]),
            "name": _norm(data["name"]),
            "site_address": _norm(data["site_address"]),
            "created_at": now,
            "updated_at": now,
        })
        with self._create_lock:
            if self.find_by_code(job.job_code):
                raise Conflict(f"Job {job.job_code} already exists")
            if self.find_by_name(job.name):
                raise Conflict(f"Job '{job.name}' already exists")
            self.store.insert_record(self.collection, self.client_id, job.model_dump(mode="json"))
        logger.info("Job created: %s %s (%s)", job.job_code, job.name, job.id)
        return job

    def update(self, job_id: str, changes: dict) -> Job:
        # job_code is the external reference printed on orders; keep it fixed
        changes = {
            k: v for k, v in changes.items()
            if v is not None and k not in ("id", "job_code", "created_at")
        }
        if "name" in changes:
            clash = self.find_by_name(changes["name"])
            if clash and clash.id != job_id:
                raise Conflict(f"Job '{changes['name']}' already exists")

        def mutate(payload: dict) -> dict:
            merged = Job.model_validate({**payload, **changes, "updated_at": _now()})
            return merged.model_dump(mode="json")

        payload = self.store.update_record(self.collection, self.client_id, job_id, mutate)
        logger.info("Job updated: %s", job_id)
        return Job.model_validate(payload)

    def delete(self, job_id: str) -> None:
        self.store.delete_record(self.collection, self.client_id, job_id)
        logger.info("Job deleted: %s", job_id)


# ---------------------------------------------------------------------------
# Cost codes
# ---------------------------------------------------------------------------

# Source column name -> field.  Exports from the estimating spreadsheet use
# the title-case headers; hand-written files tend to use the field names.
_COST_CODE_COLUMNS = {
    "code":        ("Cost Code", "cost code", "costCode", "Code", "code"),
    "trade":       ("Trade", "trade"),
    "element":     ("Element", "element"),
    "sub_heading": ("Sub-Heading", "SubHeading", "subHeading", "sub_heading"),
}


def _pick(row: dict, names: Iterable[str]) -> str:
    for name in names:
        if row.get(name) is not None:
            return _norm(row[name])
    return ""


def cost_code_label(code: str, trade: str, element: str, sub_heading: str) -> str:
    """Code, trade and element (or sub-heading) joined with " — ", blanks dropped."""
    return " — ".join(p for p in (code, trade, element or sub_heading) if p)


def _looks_like_header(cc: CostCode) -> bool:
    if cc.code.lower() in ("cost code", "code"):
        return True
    return (
        cc.trade.lower() == "trade"
        or cc.element.lower() == "element"
        or cc.sub_heading.lower() == "sub-heading"
    )


def normalise_row(row: Any) -> Optional[CostCode]:
    """
    Map one raw row (dict with legacy or field-name columns, or a bare code
    string) to a CostCode.  Blank rows, header rows repeated inside the data
    and rows without a code give None.
    """
    if isinstance(row, str):
        row = {"code": row}
    if not isinstance(row, dict):
        return None
    fields = {name: _pick(row, columns) for name, columns in _COST_CODE_COLUMNS.items()}
    if not fields["code"]:
        return None
    cc = CostCode(**fields, label=cost_code_label(**fields))
    return None if _looks_like_header(cc) else cc


def _natural_key(code: str) -> tuple:
    """Sort key treating digit runs as numbers, so "2.10" follows "2.9"."""
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part.lower())
        for part in re.split(r"(\d+)", code) if part
    )


def prepare_cost_codes(rows: Iterable[Any]) -> list[CostCode]:
    """Normalise, drop headers and blanks, dedupe by code (first wins) and sort."""
    seen: set[str] = set()
    out: list[CostCode] = []
    for row in rows:
        cc = normalise_row(row)
        if cc is None or cc.code in seen:
            continue
        seen.add(cc.code)
        out.append(cc)
    out.sort(key=lambda c: (_natural_key(c.code), c.label))
    return out


def load_cost_code_file(path: Path) -> list[Any]:
    """Read raw rows from a .json (array) or .csv cost code file."""
    path = Path(path)
    if not path.exists():
        raise NotFound(f"Cost code file not found: {path}")
    suffix = path.suffix.lower()
    try:
        if suffix == ".json":
            with open(path, encoding="utf-8-sig") as f:
                data = json.load(f)
            if not isinstance(data, list):
                raise ValidationFailed(f"{path.name}: expected a JSON array of cost codes")
            return data
        if suffix == ".csv":
            with open(path, newline="", encoding="utf-8-sig") as f:
                return list(csv.DictReader(f))
    except (json.JSONDecodeError, csv.Error, UnicodeDecodeError) as exc:
        raise ValidationFailed(f"Cannot parse {path.name}: {exc}") from exc
    raise ValidationFailed(f"Unsupported cost code file type '{suffix}' (use .json or .csv)")


class CostCodeDirectory:
    collection = "cost_codes"

    def __init__(self, store, client_id: str = "default") -> None:
        self.store = store
        self.client_id = client_id

    def list(self, q: str = "") -> list[CostCode]:
        codes = [CostCode.model_validate(r) for r in self.store.list_records(self.collection, self.client_id)]
        needle = _norm(q).lower()
        if needle:
            codes = [c for c in codes if _contains(needle, c.code, c.trade, c.element, c.sub_heading)]
        return codes

    def get(self, code: str) -> Optional[CostCode]:
        rec = self.store.get_record(self.collection, self.client_id, _norm(code))
        return CostCode.model_validate(rec) if rec else None

    def import_rows(self, rows: Iterable[Any]) -> int:
        codes = prepare_cost_codes(rows)
        return self.store.replace_records(
            self.collection, self.client_id, [c.model_dump() for c in codes]
        )

    def import_file(self, path: Path) -> int:
        count = self.import_rows(load_cost_code_file(path))
        logger.info("Imported %d cost codes from %s", count, Path(path).name)
        return count
