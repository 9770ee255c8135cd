"""
Dashboard business logic services.
"""
from .pdf import (
    PdfRenderer,
    cache_pdf,
    format_date,
    format_qty,
    get_cached_pdf,
    invalidate_cache,
    map_po_to_context,
)

__all__ = [
    "PdfRenderer",
    "cache_pdf",
    "format_date",
    "format_qty",
    "get_cached_pdf",
    "invalidate_cache",
    "map_po_to_context",
]
