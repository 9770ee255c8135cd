"""
Order document rendering.

map_po_to_context() flattens a stored PO into everything the printed
document shows.  PdfRenderer turns that context into an A4 PDF with
reportlab.  Rendered bytes are cached per PO and invalidated by updated_at,
so re-opening an unchanged order does not re-render it.
"""
import io
import logging
import re
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Any, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from models.job import Job
from models.purchase_order import ApprovalStatus, PurchaseOrder
from procurement.errors import RenderFailed
from procurement.totals import compute_totals, format_money, round_money, to_number

logger = logging.getLogger(__name__)

BRAND_COLOR = colors.HexColor("#1e233a")

# In-memory rendered-PDF cache  {key: {"version": str, "pdf": bytes}}
_PDF_CACHE_MAX = 32
_PDF_CACHE: OrderedDict[str, dict] = OrderedDict()
_PDF_CACHE_LOCK = threading.Lock()


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_qty(value: Any) -> str:
    """2 -> "2", 2.5 -> "2.5", 1234.125 -> "1,234.13"."""
    text = f"{round_money(to_number(value)):,.2f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def format_date(value: Optional[str]) -> str:
    """ISO date or timestamp -> dd/mm/yyyy; anything else is returned as given."""
    if not value:
        return ""
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).strftime("%d/%m/%Y")
    except ValueError:
        return str(value)


# ---------------------------------------------------------------------------
# Context mapping
# ---------------------------------------------------------------------------

def _first(mapping: dict, *names: str) -> Any:
    """First truthy value among *names*; dotted names reach into nested dicts."""
    for name in names:
        value: Any = mapping
        for part in name.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if value:
            return value
    return None


def _clause_lines(raw: dict, company: str) -> list[str]:
    """Standard clause wording from the clause flags, plus any free-text extras."""
    lines = []
    if _first(raw, "tender_ref_enabled", "tenderRefEnabled", "tender_enabled", "tenderEnabled", "tender_ref.enabled", "tenderRef.enabled"):
        line = f"Refer to {company} tender enquiry"
        date = _first(raw, "tender_ref_date", "tenderRefDate", "tender_date", "tenderDate", "tender_ref.date", "tenderRef.date")
        if date:
            line += f" dated {date}"
        lines.append(line + ".")
    if _first(raw, "terms_enabled", "termsEnabled", "terms_ref.enabled", "termsRef.enabled"):
        line = f"Refer to {company} sub-contract terms and conditions"
        version = _first(raw, "terms_version", "termsVersion", "terms_ref.version", "termsRef.version")
        if version:
            line += f" version {version}"
        lines.append(line + ".")
    if _first(raw, "rams_required", "ramsRequired", "rams_enabled", "ramsEnabled", "rams.enabled"):
        lines.append("RAMS must be supplied and vetted prior to start on site.")

    extra = raw.get("extra")
    if isinstance(extra, list):
        lines.extend(str(x) for x in extra if x)
    elif isinstance(extra, str) and extra.strip():
        lines.append(extra.strip())
    return lines


def map_po_to_context(
    po: PurchaseOrder,
    brand: Optional[dict] = None,
    job: Optional[Job] = None,
    currency: str = "GBP",
) -> dict:
    """
    Everything the order document needs, as plain values.

    The job snapshot on the PO wins; *job* (a live directory record) is
    only used for orders saved without one.
    """
    brand = {"name": "", "address": "", "phone": "", "email": "", "vat_number": "", **(brand or {})}
    totals = compute_totals(po.lines, po.vat_rate)

    snap = po.supplier_snapshot
    supplier = {
        "name": snap.name or po.supplier_id,
        "address": {
            "line1": ", ".join(p for p in (snap.address1, snap.address2) if p),
            "town": snap.city,
            "postcode": snap.postcode,
        },
        "contact_name": snap.contact_name,
        "phone": snap.contact_phone,
        "email": snap.contact_email,
    }

    lines = [
        {
            "description": line.description,
            "qty": line.quantity,
            "unit": line.unit or "nr",
            "rate": line.rate,
            "total": line.amount,
            "cost_code": line.cost_code,
        }
        for line in po.lines
    ]

    job_view = po.job_snapshot or (job.snapshot() if job else None)
    if job_view:
        project_label = " - ".join(p for p in (job_view.job_number or job_view.job_code, job_view.name) if p)
        address_lines = [s.strip() for s in re.split(r"\r?\n|,", job_view.site_address) if s.strip()]
        project = {**job_view.model_dump(), "label": project_label, "address_lines": address_lines}
    else:
        project_label = po.job_id or ""
        project = {"id": po.job_id or "", "label": project_label, "address_lines": []}

    status = po.approval_status
    clauses = _clause_lines(po.clauses or {}, brand["name"] or "our")

    return {
        "brand": brand,
        "po": {
            "number": po.po_number,
            "date": po.created_at,
            "status": status.value,
            "currency": currency,
            "subtotal": totals.net,
            "vat": totals.vat,
            "vat_rate": totals.vat_rate,
            "total": totals.gross,
            "type_label": po.type.label,
            "title": po.title or (f"Order for {project_label}" if project_label else ""),
            "notes": po.notes,
            "required_by": po.required_by,
            "cost_code": po.cost_code,
            "element": po.element,
        },
        "project": project,
        "supplier": supplier,
        "lines": lines,
        "has_cost_code": any(line["cost_code"].strip() for line in lines),
        "approval": {
            "approver": po.approval.approver,
            "note": po.approval.note,
            "decided_at": po.approval.decided_at or "",
        },
        "flags": {
            "is_approved": status is ApprovalStatus.APPROVED,
            "is_rejected": status is ApprovalStatus.REJECTED,
            "is_pending": status is ApprovalStatus.PENDING,
        },
        "clauses": clauses,
        "has_clauses": bool(clauses),
    }


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _styles() -> dict:
    base = getSampleStyleSheet()
    return {
        "body":    ParagraphStyle("body", parent=base["Normal"], fontSize=9, leading=11.5),
        "small":   ParagraphStyle("small", parent=base["Normal"], fontSize=7.5, leading=9.5, textColor=colors.grey),
        "company": ParagraphStyle("company", parent=base["Normal"], fontName="Helvetica-Bold",
                                  fontSize=15, leading=18, textColor=BRAND_COLOR),
        "heading": ParagraphStyle("heading", parent=base["Normal"], fontName="Helvetica-Bold",
                                  fontSize=16, leading=20, alignment=TA_RIGHT, textColor=BRAND_COLOR),
        "right":   ParagraphStyle("right", parent=base["Normal"], fontSize=9, leading=11.5, alignment=TA_RIGHT),
        "label":   ParagraphStyle("label", parent=base["Normal"], fontName="Helvetica-Bold",
                                  fontSize=8, leading=10, textColor=BRAND_COLOR),
    }


def _para(text: Any, style: ParagraphStyle) -> Paragraph:
    return Paragraph(escape(str(text or "")).replace("\n", "<br/>"), style)


def _block(lines: list[Any], style: ParagraphStyle) -> Paragraph:
    return Paragraph("<br/>".join(escape(str(x)) for x in lines if x), style)


class PdfRenderer:
    """A4 order documents from map_po_to_context() output."""

    def __init__(self, currency_symbol: str = "£", cache_size: int = _PDF_CACHE_MAX) -> None:
        self.currency_symbol = currency_symbol
        self.styles = _styles()
        self.cache_size = cache_size

    def _money(self, value: Any) -> str:
        return format_money(value, self.currency_symbol)

    def _story(self, ctx: dict) -> list:
        s = self.styles
        po, brand, supplier, project = ctx["po"], ctx["brand"], ctx["supplier"], ctx["project"]
        story: list = []

        # Header: company on the left, document type and number on the right
        company = [_para(brand.get("name"), s["company"]), _block(
            [brand.get("address"), brand.get("phone"), brand.get("email")], s["small"])]
        heading = [
            _para(po["type_label"], s["heading"]),
            _block([f"No. {po['number']}", f"Date: {format_date(po['date'])}", f"Status: {po['status']}"], s["right"]),
        ]
        header = Table([[company, heading]], colWidths=[95 * mm, 79 * mm])
        header.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
        story += [header, Spacer(1, 6 * mm)]

        # Supplier / delivery blocks
        addr = supplier["address"]
        supplier_block = [_para("SUPPLIER", s["label"]), _block(
            [supplier["name"], addr["line1"], addr["town"], addr["postcode"],
             supplier["contact_name"], supplier["phone"], supplier["email"]], s["body"])]
        site_block = [_para("DELIVER TO / SITE", s["label"]), _block(
            [project.get("label")] + project.get("address_lines", [])
            + [f"Site manager: {project['site_manager']}" if project.get("site_manager") else "",
               f"Site phone: {project['site_phone']}" if project.get("site_phone") else ""], s["body"])]
        parties = Table([[supplier_block, site_block]], colWidths=[87 * mm, 87 * mm])
        parties.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("BOX", (0, 0), (0, 0), 0.5, colors.lightgrey),
            ("BOX", (1, 0), (1, 0), 0.5, colors.lightgrey),
            ("LEFTPADDING", (0, 0), (-1, -1), 6),
        ]))
        story += [parties, Spacer(1, 5 * mm)]

        summary = [po["title"]]
        if po.get("required_by"):
            summary.append(f"Required by: {format_date(po['required_by'])}")
        if po.get("cost_code"):
            summary.append(" / ".join(p for p in (po["cost_code"], po.get("element")) if p))
        story += [_para("ORDER SUMMARY", s["label"]), _block(summary, s["body"]), Spacer(1, 4 * mm)]

        # Lines
        show_code = ctx["has_cost_code"]
        head = ["Description"] + (["Cost code"] if show_code else []) + ["Qty", "Unit", "Rate", "Total"]
        rows = [[_para(h, s["label"]) for h in head]]
        for line in ctx["lines"]:
            rows.append(
                [_para(line["description"], s["body"])]
                + ([_para(line["cost_code"], s["body"])] if show_code else [])
                + [format_qty(line["qty"]), line["unit"], self._money(line["rate"]), self._money(line["total"])]
            )
        widths = [74 * mm] + ([22 * mm] if show_code else []) + [16 * mm, 14 * mm, 24 * mm, 24 * mm]
        if not show_code:
            widths[0] += 22 * mm
        table = Table(rows, colWidths=widths, repeatRows=1)
        table.setStyle(TableStyle([
            ("LINEBELOW", (0, 0), (-1, 0), 0.8, BRAND_COLOR),
            ("LINEBELOW", (0, 1), (-1, -1), 0.25, colors.lightgrey),
            ("ALIGN", (-4, 1), (-1, -1), "RIGHT"),
            ("ALIGN", (-3, 1), (-3, -1), "LEFT"),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("FONTSIZE", (0, 1), (-1, -1), 9),
        ]))
        story += [table, Spacer(1, 3 * mm)]

        vat_pct = format_qty(po["vat_rate"] * 100)
        totals = Table(
            [["Net", self._money(po["subtotal"])],
             [f"VAT ({vat_pct}%)", self._money(po["vat"])],
             [f"Total ({po['currency']})", self._money(po["total"])]],
            colWidths=[40 * mm, 30 * mm], hAlign="RIGHT",
        )
        totals.setStyle(TableStyle([
            ("ALIGN", (1, 0), (1, -1), "RIGHT"),
            ("FONTNAME", (0, 2), (-1, 2), "Helvetica-Bold"),
            ("LINEABOVE", (0, 2), (-1, 2), 0.8, BRAND_COLOR),
        ]))
        story += [totals, Spacer(1, 5 * mm)]

        if ctx["has_clauses"]:
            story += [_para("TERMS", s["label"]), _block(ctx["clauses"], s["body"]), Spacer(1, 4 * mm)]
        if po.get("notes"):
            story += [_para("NOTES", s["label"]), _para(po["notes"], s["body"]), Spacer(1, 4 * mm)]

        approval, flags = ctx["approval"], ctx["flags"]
        if flags["is_approved"] or flags["is_rejected"]:
            verdict = "Approved" if flags["is_approved"] else "Rejected"
            text = f"{verdict} by {approval['approver'] or '-'} on {format_date(approval['decided_at'])}"
            if approval.get("note"):
                text += f": {approval['note']}"
            story.append(_para(text, s["body"]))
        elif flags["is_pending"]:
            story.append(_para("Awaiting approval.", s["body"]))

        if brand.get("vat_number"):
            story += [Spacer(1, 6 * mm), _para(f"VAT registration no. {brand['vat_number']}", s["small"])]
        return story

    def render(self, context: dict) -> bytes:
        """Render a mapped context to PDF bytes.  Raises RenderFailed."""
        buf = io.BytesIO()
        number = context.get("po", {}).get("number", "")
        try:
            doc = SimpleDocTemplate(
                buf, pagesize=A4,
                leftMargin=18 * mm, rightMargin=18 * mm, topMargin=15 * mm, bottomMargin=15 * mm,
                title=f"{context['po']['type_label']} {number}",
                author=context.get("brand", {}).get("name", ""),
            )
            doc.build(self._story(context))
        except Exception as exc:
            logger.exception("PDF render failed for %s", number)
            raise RenderFailed(f"PDF failed for {number}: {exc}") from exc
        return buf.getvalue()

    def render_order(self, po: PurchaseOrder, brand: Optional[dict] = None,
                     job: Optional[Job] = None, cache_key: Optional[str] = None) -> bytes:
        """Map, render and cache.  A changed updated_at invalidates the cached copy."""
        key = cache_key or po.po_number
        cached = get_cached_pdf(key, po.updated_at)
        if cached is not None:
            return cached
        pdf = self.render(map_po_to_context(po, brand, job))
        cache_pdf(key, po.updated_at, pdf, self.cache_size)
        logger.info("Rendered %s (%d bytes)", po.po_number, len(pdf))
        return pdf


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

def get_cached_pdf(key: str, version: str) -> bytes | None:
    """Get a cached PDF if the PO has not changed since it was rendered."""
    with _PDF_CACHE_LOCK:
        cached = _PDF_CACHE.get(key)
        if cached and cached["version"] == version:
            _PDF_CACHE.move_to_end(key)
            return cached["pdf"]
    return None


def cache_pdf(key: str, version: str, pdf: bytes, max_size: int = _PDF_CACHE_MAX) -> None:
    """Cache rendered bytes with LRU eviction."""
    with _PDF_CACHE_LOCK:
        _PDF_CACHE[key] = {"version": version, "pdf": pdf}
        _PDF_CACHE.move_to_end(key)
        while len(_PDF_CACHE) > max(max_size, 1):
            _PDF_CACHE.popitem(last=False)


def invalidate_cache(key: str) -> None:
    with _PDF_CACHE_LOCK:
        _PDF_CACHE.pop(key, None)
