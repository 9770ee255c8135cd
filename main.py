#!/usr/bin/env python3
"""
Purchase Order Back Office: CLI entry point.

Usage examples:
  python main.py check                              # Verify setup (storage, e-mail, templates)
  python main.py list                               # Open POs, newest first
  python main.py list --type Plant --job 2041       # Filter by type and job
  python main.py show M0001                         # One PO with its history
  python main.py pdf M0001 -o M0001.pdf             # Write the order document
  python main.py import-cost-codes codes.csv        # Replace the cost code list
  python main.py backup                             # Zip database, data and config
  python main.py serve --port 8000                  # Run the API
"""
import json
import logging
import sys
from pathlib import Path

import click

from config import Config
from procurement.errors import ProcurementError


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _services(ctx: click.Context):
    from dashboard.app import configure
    return configure(ctx.obj["config"])


def _fail(exc: ProcurementError) -> None:
    click.echo(f"✗ {exc.message}", err=True)
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--client", default=None, help="Client (tenant) to work on (default: ACTIVE_CLIENT or 'default')")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, client: str | None) -> None:
    """Purchase Order Back Office: raise, approve and print purchase orders."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)
    config = Config()
    if client:
        config.active_client = client
    ctx.obj["config"] = config


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify that storage, e-mail settings and templates are ready."""
    config: Config = ctx.obj["config"]

    click.echo("\n=== Back Office Setup Check ===\n")
    location = config.db_path if config.storage_backend == "sqlite" else config.data_dir
    click.echo(f"  Storage:        {config.storage_backend}  ({location})")
    click.echo(f"  Client:         {config.active_client}")

    try:
        svc = _services(ctx)
        orders = svc.orders.list({"archived": True})
        click.echo(f"  Purchase orders:  {len(orders)}")
        click.echo(f"  Suppliers:        {len(svc.suppliers.list())}")
        click.echo(f"  Jobs:             {len(svc.jobs.list())}")
        click.echo(f"  Cost codes:       {len(svc.cost_codes.list())}")
    except ProcurementError as exc:
        click.echo(f"  Storage:        ✗ NOT readable ({exc.message})")

    click.echo()
    if config.smtp_host:
        click.echo(f"  SMTP:           ✓ {config.smtp_host}:{config.smtp_port}")
    else:
        click.echo("  SMTP:           ✗ not configured (approval e-mails will be skipped)")
        click.echo("  → Set SMTP_HOST / SMTP_PORT / FROM_EMAIL in your .env")
    approvers = ", ".join(config.approver_emails) or "(none)"
    click.echo(f"  Approvers:      {approvers}")

    from procurement.notifier import APPROVAL_REQUESTED_TEMPLATE, DECISION_MADE_TEMPLATE, DEFAULTS_DIR
    for name in (APPROVAL_REQUESTED_TEMPLATE, DECISION_MADE_TEMPLATE):
        source = "config" if (config.config_dir / name).exists() else (
            "defaults" if (DEFAULTS_DIR / name).exists() else None)
        tick = "✓" if source else "✗"
        click.echo(f"  {name:<28} {tick} {source or 'missing'}")

    from procurement.backup import BackupService
    last = BackupService(config).get_last_backup_time()
    click.echo(f"\n  Last backup:    {last:%Y-%m-%d %H:%M}" if last else "\n  Last backup:    never")
    click.echo()


# --------------------------------------------------------------------
# list / show commands
# --------------------------------------------------------------------

@cli.command("list")
@click.option("--q", "q", default="", help="Free-text search")
@click.option("--job", default="", help="Job id, name, number or code")
@click.option("--type", "po_type", default="", help="Materials, Subcontract or Plant (or M / S / P)")
@click.option("--supplier", default="", help="Supplier id or name")
@click.option("--archived", is_flag=True, help="Include archived POs")
@click.option("--sort", type=click.Choice(["created_at", "updated_at", "po_number"]), default=None)
@click.option("--asc", is_flag=True, help="Ascending order (default: descending)")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def list_orders(
    ctx: click.Context,
    q: str,
    job: str,
    po_type: str,
    supplier: str,
    archived: bool,
    sort: str | None,
    asc: bool,
    as_json: bool,
) -> None:
    """List purchase orders."""
    try:
        orders = _services(ctx).orders.list({
            "q": q, "job": job, "type": po_type, "supplier": supplier,
            "archived": archived, "sort": sort, "order": "asc" if asc else "desc",
        })
    except ProcurementError as exc:
        _fail(exc)
        return

    if as_json:
        click.echo(json.dumps([po.model_dump(mode="json") for po in orders], indent=2))
        return
    if not orders:
        click.echo("No purchase orders found.")
        return
    for po in orders:
        flag = " (archived)" if po.archived else ""
        click.echo(
            f"  {po.po_number:<8} {po.status.value:<9} {po.supplier_name[:28]:<28} "
            f"{po.totals.gross:>12,.2f}  {po.title[:40]}{flag}"
        )
    click.echo(f"\n{len(orders)} purchase order(s).")


@cli.command()
@click.argument("po_number")
@click.pass_context
def show(ctx: click.Context, po_number: str) -> None:
    """Show one purchase order and its history."""
    try:
        po = _services(ctx).orders.get(po_number)
    except ProcurementError as exc:
        _fail(exc)
        return

    click.echo()
    click.echo(f"  PO:          {po.po_number}  ({po.type.label})")
    click.echo(f"  Status:      {po.status.value}  [approval: {po.approval_status.value}]")
    click.echo(f"  Supplier:    {po.supplier_name or '(none)'}")
    job = po.job_snapshot
    click.echo(f"  Job:         {(job.job_code + ' ' + job.name) if job else (po.job_id or '(none)')}")
    click.echo(f"  Cost code:   {po.cost_code}  {po.element}")
    click.echo(f"  Title:       {po.title}")
    click.echo()
    for i, line in enumerate(po.lines, start=1):
        click.echo(f"    {i:>2}. {line.description[:40]:<40} {line.quantity:>8g} {line.unit:<4} "
                   f"@ {line.rate:>10,.2f} = {line.amount:>12,.2f}")
    click.echo()
    click.echo(f"  Net:   {po.totals.net:>12,.2f}")
    click.echo(f"  VAT:   {po.totals.vat:>12,.2f}  ({po.totals.vat_rate:.0%})")
    click.echo(f"  Gross: {po.totals.gross:>12,.2f}")
    click.echo()
    click.echo("  History:")
    for entry in po.history:
        note = f"  {entry.note}" if entry.note else ""
        click.echo(f"    {entry.timestamp[:19]}  {entry.action:<10} {entry.actor}{note}")
    click.echo()


# --------------------------------------------------------------------
# pdf command
# --------------------------------------------------------------------

@cli.command()
@click.argument("po_number")
@click.option("--output", "-o", default=None, type=click.Path(), help="Output file (default: <PO>.pdf)")
@click.pass_context
def pdf(ctx: click.Context, po_number: str, output: str | None) -> None:
    """Write the order document for PO_NUMBER."""
    try:
        svc = _services(ctx)
        po = svc.orders.get(po_number)
        job = svc.jobs.find_by_id(po.job_id) if po.job_id and po.job_snapshot is None else None
        content = svc.pdf.render_order(po, svc.config.brand, job)
    except ProcurementError as exc:
        _fail(exc)
        return

    out = Path(output or f"{po_number}.pdf")
    out.write_bytes(content)
    click.echo(f"✓ {out} ({len(content):,} bytes)")


# --------------------------------------------------------------------
# import-cost-codes command
# --------------------------------------------------------------------

@cli.command("import-cost-codes")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_cost_codes(ctx: click.Context, path: str) -> None:
    """Replace the cost code list from a .json or .csv file."""
    try:
        count = _services(ctx).cost_codes.import_file(Path(path))
    except ProcurementError as exc:
        _fail(exc)
        return
    click.echo(f"✓ Imported {count} cost codes from {Path(path).name}")


# --------------------------------------------------------------------
# backup command
# --------------------------------------------------------------------

@cli.command()
@click.argument("destination", type=click.Path(), required=False)
@click.pass_context
def backup(ctx: click.Context, destination: str | None) -> None:
    """
    Create a timestamped backup of the database, data files and config.
    """
    from procurement.backup import BackupService

    config: Config = ctx.obj["config"]
    service = BackupService(config, Path(destination) if destination else None)
    click.echo(f"Creating backup in: {service.backup_dir}")
    try:
        zip_path = service.create_backup()
    except ProcurementError as exc:
        _fail(exc)
        return
    click.echo(f"\n✓ Backup successful: {zip_path.name}")


# --------------------------------------------------------------------
# serve command
# --------------------------------------------------------------------

@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Run the HTTP API."""
    import uvicorn

    from bootstrap import ensure_config_files
    from dashboard.app import app

    config: Config = ctx.obj["config"]
    ensure_config_files(config.config_dir)
    _services(ctx)
    click.echo(f"\n  Serving client '{config.active_client}' on http://{host}:{port}\n")
    log_level = "debug" if ctx.obj["verbose"] else "info"
    uvicorn.run(app, host=host, port=port, log_level=log_level)


if __name__ == "__main__":
    cli()
