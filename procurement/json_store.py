"""
Flat JSON-file persistence.

One file per collection per client:  <data_dir>/<client_id>/<collection>.json,
each holding a JSON array of payloads in insertion order.  Writes go to a
temp file in the same directory and are moved into place with os.replace,
so a reader never sees a half-written file.

A process-wide lock serialises read-modify-write cycles; this backend is for
single-process deployments.
"""
import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional

from .errors import Conflict, NotFound, StorageFailure
from .storage import COLLECTIONS, record_key

logger = logging.getLogger(__name__)

_SAFE_CLIENT = re.compile(r"[^\w\-]")


class JsonFileStore:
    """Record store backed by one JSON file per (client, collection)."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path(self, collection: str, client_id: str) -> Path:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection {collection!r}")
        safe_client = _SAFE_CLIENT.sub("_", client_id) or "default"
        return self.data_dir / safe_client / f"{collection}.json"

    def _load(self, collection: str, client_id: str) -> list[dict]:
        path = self._path(collection, client_id)
        if not path.exists():
            return []
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Cannot read %s: %s", path, exc)
            raise StorageFailure(f"Cannot read {path.name}: {exc}") from exc
        return data if isinstance(data, list) else []

    def _dump(self, collection: str, client_id: str, records: list[dict]) -> None:
        path = self._path(collection, client_id)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error("Cannot write %s: %s", path, exc)
            raise StorageFailure(f"Cannot write {path.name}: {exc}") from exc

    @staticmethod
    def _index_of(collection: str, records: list[dict], key: str) -> Optional[int]:
        field_name = COLLECTIONS[collection]
        for i, rec in enumerate(records):
            if str(rec.get(field_name)) == key:
                return i
        return None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_records(self, collection: str, client_id: str) -> list[dict]:
        with self._lock:
            return self._load(collection, client_id)

    def get_record(self, collection: str, client_id: str, key: str) -> Optional[dict]:
        with self._lock:
            records = self._load(collection, client_id)
        idx = self._index_of(collection, records, key)
        return records[idx] if idx is not None else None

    def find_by_name(self, collection: str, client_id: str, name: str) -> Optional[dict]:
        wanted = name.strip().lower()
        for rec in self.list_records(collection, client_id):
            if str(rec.get("name") or "").strip().lower() == wanted:
                return rec
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_record(self, collection: str, client_id: str, payload: dict) -> None:
        key = record_key(collection, payload)
        with self._lock:
            records = self._load(collection, client_id)
            if self._index_of(collection, records, key) is not None:
                raise Conflict(f"Duplicate record: {collection} {key} already exists")
            records.append(payload)
            self._dump(collection, client_id, records)
        logger.debug("JSON inserted: %s/%s/%s", client_id, collection, key)

    def save_record(self, collection: str, client_id: str, payload: dict) -> None:
        key = record_key(collection, payload)
        with self._lock:
            records = self._load(collection, client_id)
            idx = self._index_of(collection, records, key)
            if idx is None:
                records.append(payload)
            else:
                records[idx] = payload
            self._dump(collection, client_id, records)

    def update_record(
        self,
        collection: str,
        client_id: str,
        key: str,
        mutate: Callable[[dict], dict],
    ) -> dict:
        with self._lock:
            records = self._load(collection, client_id)
            idx = self._index_of(collection, records, key)
            if idx is None:
                raise NotFound(f"{collection} record {key} not found")
            updated = mutate(records[idx])
            records[idx] = updated
            self._dump(collection, client_id, records)
        return updated

    def delete_record(
        self,
        collection: str,
        client_id: str,
        key: str,
        guard: Optional[Callable[[dict], None]] = None,
    ) -> dict:
        with self._lock:
            records = self._load(collection, client_id)
            idx = self._index_of(collection, records, key)
            if idx is None:
                raise NotFound(f"{collection} record {key} not found")
            if guard is not None:
                guard(records[idx])
            removed = records.pop(idx)
            self._dump(collection, client_id, records)
        return removed

    def replace_records(self, collection: str, client_id: str, payloads: list[dict]) -> int:
        with self._lock:
            self._dump(collection, client_id, list(payloads))
        logger.info("Replaced %s for client %s: %d rows", collection, client_id, len(payloads))
        return len(payloads)
