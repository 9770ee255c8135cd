"""
SQLite persistence for purchase orders and reference data.

Each collection is a table of JSON payloads keyed by (client_id, key), so
every record is scoped to a tenant.  A few fields are denormalised into
columns for fast filtering; the payload is always authoritative.

Tables
------
  purchase_orders       key = po_number  (unique per client: numbering relies on it)
  suppliers             key = id
  jobs                  key = id
  cost_codes            key = code       (read-only reference data, replaced wholesale)
  payment_certificates  key = id

Read-modify-write operations (update_record, delete_record) run inside a
single BEGIN IMMEDIATE transaction, so a mutation and its guard checks are
atomic with respect to other writers, including other processes.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .errors import Conflict, NotFound, StorageFailure
from .storage import COLLECTIONS, record_key

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS purchase_orders (
    client_id   TEXT NOT NULL,
    key         TEXT NOT NULL,        -- po_number
    name        TEXT,                 -- supplier name (denormalised)
    type        TEXT,
    status      TEXT,
    archived    INTEGER NOT NULL DEFAULT 0,
    payload     TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (client_id, key)
);

CREATE INDEX IF NOT EXISTS idx_po_status   ON purchase_orders (client_id, status);
CREATE INDEX IF NOT EXISTS idx_po_type     ON purchase_orders (client_id, type);

CREATE TABLE IF NOT EXISTS suppliers (
    client_id   TEXT NOT NULL,
    key         TEXT NOT NULL,        -- supplier id
    name        TEXT,
    payload     TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (client_id, key)
);

CREATE INDEX IF NOT EXISTS idx_suppliers_name ON suppliers (client_id, name COLLATE NOCASE);

CREATE TABLE IF NOT EXISTS jobs (
    client_id   TEXT NOT NULL,
    key         TEXT NOT NULL,        -- job id
    name        TEXT,
    payload     TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (client_id, key)
);

CREATE TABLE IF NOT EXISTS cost_codes (
    client_id   TEXT NOT NULL,
    key         TEXT NOT NULL,        -- code
    name        TEXT,                 -- label
    payload     TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (client_id, key)
);

CREATE TABLE IF NOT EXISTS payment_certificates (
    client_id   TEXT NOT NULL,
    key         TEXT NOT NULL,        -- certificate id
    name        TEXT,                 -- "<job_id>/<supplier_id>"
    status      TEXT,
    payload     TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (client_id, key)
);
"""


def _columns(collection: str, payload: dict) -> dict:
    """Denormalised column values for *payload*."""
    if collection == "purchase_orders":
        snapshot = payload.get("supplier_snapshot") or {}
        return {
            "name":     snapshot.get("name") or payload.get("supplier_id"),
            "type":     payload.get("type"),
            "status":   payload.get("status"),
            "archived": 1 if payload.get("archived") else 0,
        }
    if collection == "cost_codes":
        return {"name": payload.get("label")}
    if collection == "payment_certificates":
        return {
            "name":   f"{payload.get('job_id')}/{payload.get('supplier_id')}",
            "status": payload.get("status"),
        }
    return {"name": payload.get("name")}


class Database:
    """Thin wrapper around an SQLite database file holding JSON payloads."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def _conn(self, immediate: bool = False):
        """
        Yield a connection inside one transaction.

        sqlite3 errors surface as Conflict (constraint violations) or
        StorageFailure; anything raised by the caller rolls the transaction
        back and propagates unchanged.
        """
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30, isolation_level=None)
        except sqlite3.Error as exc:
            raise StorageFailure(f"Cannot open database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as exc:
            conn.execute("ROLLBACK")
            raise Conflict(f"Duplicate record: {exc}") from exc
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error("Database error on %s: %s", self.db_path, exc)
            raise StorageFailure(f"Database error: {exc}") from exc
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            for statement in _SCHEMA.split(";"):
                if statement.strip():
                    conn.execute(statement)
        logger.debug("Database schema ready: %s", self.db_path)

    @staticmethod
    def _table(collection: str) -> str:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection {collection!r}")
        return collection

    def _write(self, conn: sqlite3.Connection, collection: str, client_id: str,
               payload: dict, insert_only: bool) -> None:
        table = self._table(collection)
        row = {
            "client_id":  client_id,
            "key":        record_key(collection, payload),
            "payload":    json.dumps(payload),
            "updated_at": datetime.now(timezone.utc).isoformat(),
            **_columns(collection, payload),
        }
        names = ", ".join(row)
        params = ", ".join(f":{k}" for k in row)
        if insert_only:
            conn.execute(f"INSERT INTO {table} ({names}) VALUES ({params})", row)
            return
        updates = ", ".join(f"{k} = excluded.{k}" for k in row if k not in ("client_id", "key"))
        conn.execute(
            f"INSERT INTO {table} ({names}) VALUES ({params}) "
            f"ON CONFLICT(client_id, key) DO UPDATE SET {updates}",
            row,
        )

    @staticmethod
    def _fetch(conn: sqlite3.Connection, table: str, client_id: str, key: str) -> Optional[dict]:
        row = conn.execute(
            f"SELECT payload FROM {table} WHERE client_id = ? AND key = ?",
            (client_id, key),
        ).fetchone()
        return json.loads(row["payload"]) if row else None

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def list_records(self, collection: str, client_id: str) -> list[dict]:
        """All payloads in a collection, in insertion order."""
        table = self._table(collection)
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT payload FROM {table} WHERE client_id = ? ORDER BY rowid",
                (client_id,),
            ).fetchall()
        return [json.loads(r["payload"]) for r in rows]

    def get_record(self, collection: str, client_id: str, key: str) -> Optional[dict]:
        table = self._table(collection)
        with self._conn() as conn:
            return self._fetch(conn, table, client_id, key)

    def find_by_name(self, collection: str, client_id: str, name: str) -> Optional[dict]:
        """First record whose name matches *name* case-insensitively."""
        table = self._table(collection)
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT payload FROM {table} "
                f"WHERE client_id = ? AND lower(name) = lower(?) ORDER BY rowid LIMIT 1",
                (client_id, name.strip()),
            ).fetchone()
        return json.loads(row["payload"]) if row else None

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def insert_record(self, collection: str, client_id: str, payload: dict) -> None:
        """Insert a new record.  Raises Conflict if the key already exists."""
        with self._conn(immediate=True) as conn:
            self._write(conn, collection, client_id, payload, insert_only=True)
        logger.debug("DB inserted: %s/%s/%s", client_id, collection, record_key(collection, payload))

    def save_record(self, collection: str, client_id: str, payload: dict) -> None:
        """Insert or replace a record."""
        with self._conn(immediate=True) as conn:
            self._write(conn, collection, client_id, payload, insert_only=False)

    def update_record(
        self,
        collection: str,
        client_id: str,
        key: str,
        mutate: Callable[[dict], dict],
    ) -> dict:
        """
        Atomically read, mutate and write back one record.

        *mutate* receives the stored payload and returns the new one.  If it
        raises, nothing is written.  Raises NotFound for an unknown key.
        """
        table = self._table(collection)
        with self._conn(immediate=True) as conn:
            current = self._fetch(conn, table, client_id, key)
            if current is None:
                raise NotFound(f"{collection} record {key} not found")
            updated = mutate(current)
            self._write(conn, collection, client_id, updated, insert_only=False)
        return updated

    def delete_record(
        self,
        collection: str,
        client_id: str,
        key: str,
        guard: Optional[Callable[[dict], None]] = None,
    ) -> dict:
        """
        Delete one record and return its last payload.  *guard* may raise to
        veto the delete; the check and the delete happen in one transaction.
        """
        table = self._table(collection)
        with self._conn(immediate=True) as conn:
            current = self._fetch(conn, table, client_id, key)
            if current is None:
                raise NotFound(f"{collection} record {key} not found")
            if guard is not None:
                guard(current)
            conn.execute(f"DELETE FROM {table} WHERE client_id = ? AND key = ?", (client_id, key))
        return current

    def replace_records(self, collection: str, client_id: str, payloads: list[dict]) -> int:
        """Replace the whole collection for a client (used for cost code imports)."""
        table = self._table(collection)
        with self._conn(immediate=True) as conn:
            conn.execute(f"DELETE FROM {table} WHERE client_id = ?", (client_id,))
            for payload in payloads:
                self._write(conn, collection, client_id, payload, insert_only=False)
        logger.info("Replaced %s for client %s: %d rows", collection, client_id, len(payloads))
        return len(payloads)
