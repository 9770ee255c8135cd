"""
Storage backend selection.

Both backends expose the same record-level interface over JSON payloads:

  list_records(collection, client_id)                  -> list[dict]
  get_record(collection, client_id, key)               -> dict | None
  find_by_name(collection, client_id, name)            -> dict | None
  insert_record(collection, client_id, payload)        (Conflict on duplicate key)
  save_record(collection, client_id, payload)          (upsert)
  update_record(collection, client_id, key, mutate)    -> dict
  delete_record(collection, client_id, key, guard)     -> dict
  replace_records(collection, client_id, payloads)     -> int
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)

# collection name -> payload field holding the record key
COLLECTIONS = {
    "purchase_orders":      "po_number",
    "suppliers":            "id",
    "jobs":                 "id",
    "cost_codes":           "code",
    "payment_certificates": "id",
}

BACKEND_SQLITE = "sqlite"
BACKEND_JSON = "json"


def record_key(collection: str, payload: dict) -> str:
    field_name = COLLECTIONS[collection]
    key = payload.get(field_name)
    if not key:
        raise ValueError(f"{collection} payload has no {field_name!r}")
    return str(key)


def open_store(config: Any):
    """Open the backend selected by config.storage_backend."""
    backend = (config.storage_backend or BACKEND_SQLITE).strip().lower()
    if backend == BACKEND_JSON:
        from .json_store import JsonFileStore
        logger.info("Using JSON file store at %s", config.data_dir)
        return JsonFileStore(config.data_dir)
    if backend == BACKEND_SQLITE:
        from .database import Database
        logger.info("Using SQLite store at %s", config.db_path)
        return Database(config.db_path)
    raise ValueError(f"Unknown storage backend {backend!r} (expected 'sqlite' or 'json')")
