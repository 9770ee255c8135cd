"""
PO number allocation.

Numbers are <prefix><sequence>, the sequence zero-padded to at least four
digits (M0001, S0042, P10000).  The next number is one past the highest
sequence already used for that prefix.
"""
import re
from typing import Any, Iterable

from models.purchase_order import POType

SEQUENCE_WIDTH = 4


def _po_number_of(record: Any) -> Any:
    if isinstance(record, dict):
        return record.get("po_number")
    return getattr(record, "po_number", None)


def sequence_of(po_number: Any, prefix: str) -> int | None:
    """
    Return the numeric suffix of *po_number* if it carries *prefix*, else None.
    Legacy numbers with no digits after the prefix also give None.
    """
    if not isinstance(po_number, str):
        return None
    if not po_number.upper().startswith(prefix.upper()):
        return None
    digits = re.sub(r"\D+", "", po_number[len(prefix):])
    return int(digits) if digits else None


def next_number(existing: Iterable[Any], po_type: POType | str) -> str:
    """Next free number for *po_type*, given existing POs (models or dicts)."""
    prefix = POType.parse(po_type).prefix
    sequences = [
        seq for seq in (sequence_of(_po_number_of(r), prefix) for r in existing)
        if seq is not None
    ]
    return f"{prefix}{max(sequences, default=0) + 1:0{SEQUENCE_WIDTH}d}"
