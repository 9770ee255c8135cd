"""
Approval e-mails over SMTP.

Sent after a transition has been committed: approvers are told when a PO
is sent for approval, and the requester is told the decision.  Bodies are
Jinja2 text templates looked up in the config directory first and then in
the shipped defaults/, so an operator can reword them without a release.

Failures raise DeliveryFailed.  The lifecycle engine catches it and reports
a warning; the PO change itself stands.
"""
import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape
from pathlib import Path
from typing import Any, Optional

from jinja2 import FileSystemLoader, StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from models.purchase_order import PurchaseOrder

from .errors import DeliveryFailed
from .totals import format_money

logger = logging.getLogger(__name__)

DEFAULTS_DIR = Path(__file__).parent.parent / "defaults"

APPROVAL_REQUESTED_TEMPLATE = "approval_requested.txt.j2"
DECISION_MADE_TEMPLATE = "decision_made.txt.j2"


@dataclass
class DeliveryReceipt:
    message_id: str
    recipients: list[str]
    subject: str
    sent_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def parse_recipients(value: Any) -> list[str]:
    """Comma/semicolon separated string or list -> clean address list."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.replace(";", ",").split(",")
    return [str(v).strip() for v in value if str(v).strip()]


class EmailNotifier:
    def __init__(self, config: Any) -> None:
        self.config = config
        search_path = [str(Path(config.config_dir)), str(DEFAULTS_DIR)]
        self.jinja_env = SandboxedEnvironment(
            loader=FileSystemLoader(search_path),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _connect(self) -> smtplib.SMTP:
        cfg = self.config
        timeout = cfg.smtp_timeout
        if cfg.smtp_port == 465:
            return smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, timeout=timeout,
                                    context=ssl.create_default_context())
        server = smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=timeout)
        if cfg.smtp_starttls:
            server.starttls(context=ssl.create_default_context())
        return server

    def notify(self, recipients: list[str], subject: str, body: str) -> DeliveryReceipt:
        """Send a plain-text message (with a <pre> HTML alternative)."""
        recipients = parse_recipients(recipients)
        if not recipients:
            raise DeliveryFailed('Missing "to"')
        if not self.config.smtp_host:
            raise DeliveryFailed("SMTP_HOST is not configured")

        sender = self.config.from_email or self.config.smtp_user
        msg = EmailMessage()
        msg["From"] = sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain=(sender or "localhost").rpartition("@")[2] or None)
        msg.set_content(body)
        msg.add_alternative(f"<pre>{escape(body)}</pre>", subtype="html")

        try:
            with self._connect() as server:
                if self.config.smtp_user:
                    server.login(self.config.smtp_user, self.config.smtp_pass)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Mail to %s failed: %s", ", ".join(recipients), exc)
            raise DeliveryFailed(f"Could not send '{subject}': {exc}") from exc

        logger.info("[MAIL] sent %s to %s", msg["Message-ID"], ", ".join(recipients))
        return DeliveryReceipt(message_id=msg["Message-ID"], recipients=recipients, subject=subject)

    # ------------------------------------------------------------------
    # Templated messages
    # ------------------------------------------------------------------

    def render(self, template_name: str, **context: Any) -> str:
        try:
            return self.jinja_env.get_template(template_name).render(**context)
        except TemplateError as exc:
            logger.error("E-mail template %s failed: %s", template_name, exc)
            raise DeliveryFailed(f"E-mail template '{template_name}' failed: {exc}") from exc

    def _base_context(self, po: PurchaseOrder) -> dict:
        symbol = self.config.currency_symbol
        return {
            "po":       po.model_dump(mode="json"),
            "supplier": po.supplier_name,
            "net":      format_money(po.totals.net, symbol),
            "gross":    format_money(po.totals.gross, symbol),
            "app_name": self.config.app_name,
        }

    def approval_requested(self, po: PurchaseOrder, note: str = "") -> Optional[DeliveryReceipt]:
        approvers = parse_recipients(self.config.approver_emails)
        if not approvers:
            logger.info("No APPROVER_EMAILS configured; approval e-mail for %s skipped", po.po_number)
            return None
        body = self.render(
            APPROVAL_REQUESTED_TEMPLATE,
            **self._base_context(po),
            requested_by=po.approval.requested_by or po.created_by_email or po.created_by or "Unknown",
            note=note,
        )
        subject = f"[{self.config.app_name}] Approval requested: {po.po_number}"
        return self.notify(approvers, subject, body)

    def decision_made(self, po: PurchaseOrder) -> Optional[DeliveryReceipt]:
        requester = po.created_by_email
        if not requester:
            logger.info("PO %s has no requester e-mail; decision e-mail skipped", po.po_number)
            return None
        decision = po.status.value
        body = self.render(
            DECISION_MADE_TEMPLATE,
            **self._base_context(po),
            decision=decision,
            approver=po.approval.approver,
            note=po.approval.note,
            decided_at=_display_time(po.approval.decided_at),
        )
        subject = f"[{self.config.app_name}] PO {po.po_number} {decision}"
        return self.notify([requester], subject, body)


def _display_time(iso: Optional[str]) -> str:
    if not iso:
        return "-"
    try:
        return datetime.fromisoformat(iso).strftime("%d/%m/%Y %H:%M UTC")
    except ValueError:
        return iso
