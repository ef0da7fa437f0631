"""CLI entry point for aumos-custody.

Invoked as::

    custody [OPTIONS] COMMAND [ARGS]...

or during development::

    python -m aumos_custody.cli.main

Commands
--------
- init           Write a starter custody.yaml
- serve          Start the custody REST API
- access check   Check whether an actor can access a document
- grants list    Show the grants of a document
- requests list  Show revocation requests
- audit show     Display recent audit entries
- version        Show version information
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
import yaml
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from aumos_custody.config.loader import DEFAULT_CONFIG_FILE, ConfigLoader, CustodyConfig
from aumos_custody.convenience import CustodyEngine
from aumos_custody.errors import CustodyError
from aumos_custody.identity.actor import Actor

console = Console()
err_console = Console(stderr=True)

_CONFIG_OPTION = click.option(
    "--config",
    "-c",
    "config_path",
    default=str(DEFAULT_CONFIG_FILE),
    show_default=True,
    type=click.Path(),
    help="Path to custody.yaml.",
)


def _load_config(config_path: str) -> CustodyConfig:
    loader = ConfigLoader()
    cfg_path = Path(config_path)
    config = loader.load(cfg_path) if cfg_path.exists() else loader.defaults()
    logging.basicConfig(
        level=getattr(logging, config.logging.level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def _load_engine(config_path: str) -> CustodyEngine:
    config = _load_config(config_path)
    if config.storage.backend == "memory":
        err_console.print(
            "[yellow]Warning:[/yellow] storage backend is 'memory'; "
            "state does not outlive this process."
        )
    return CustodyEngine.from_config(config)


# ---------------------------------------------------------------------------
# Root command group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="aumos-custody")
def cli() -> None:
    """Custody CLI: document authority, access grants and revocation."""


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from aumos_custody import __version__

    console.print(
        Panel(
            f"[bold]aumos-custody[/bold]  v[cyan]{__version__}[/cyan]\n"
            "Document authority, access-grant and revocation engine.",
            title="Version",
            border_style="blue",
        )
    )


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


@cli.command(name="init")
@click.option(
    "--backend",
    type=click.Choice(["memory", "sql"]),
    default="sql",
    show_default=True,
    help="Storage backend.",
)
@click.option("--db-url", default="sqlite:///custody.db", show_default=True, help="SQLAlchemy database URL.")
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default=str(DEFAULT_CONFIG_FILE),
    show_default=True,
    help="Output config file path.",
)
@click.option("--force", is_flag=True, help="Overwrite an existing config file.")
def init_command(backend: str, db_url: str, output: str, force: bool) -> None:
    """Write a starter custody.yaml."""
    output_path = Path(output)
    if output_path.exists() and not force:
        err_console.print(f"[red]Refusing to overwrite[/red] {output_path} (use --force).")
        sys.exit(1)

    config: dict[str, object] = {
        "version": "1",
        "storage": {"backend": backend, "url": db_url, "echo": False},
        "audit": {"enabled": True, "log_path": "./custody_audit.jsonl"},
        "api": {"host": "127.0.0.1", "port": 8080, "default_page_size": 20, "max_page_size": 100},
        "logging": {"level": "INFO"},
    }

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as fh:
        yaml.dump(config, fh, default_flow_style=False, sort_keys=False, allow_unicode=True)

    console.print(f"[green]Initialised[/green] custody config: [bold]{output_path}[/bold]")
    console.print(f"  Backend: [cyan]{backend}[/cyan]")


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command(name="serve")
@click.option("--port", "-p", default=None, type=int, help="Port to listen on (overrides config).")
@click.option("--host", "-h", "host", default=None, help="Bind address (overrides config).")
@_CONFIG_OPTION
def serve_command(port: int | None, host: str | None, config_path: str) -> None:
    """Start the custody REST API."""
    from aumos_custody.api.handlers import CustodyApi
    from aumos_custody.api.server import CustodyServer

    config = _load_config(config_path)
    engine = CustodyEngine.from_config(config)
    api = CustodyApi(
        engine,
        default_page_size=config.api.default_page_size,
        max_page_size=config.api.max_page_size,
    )
    bind_host = host or config.api.host
    bind_port = port or config.api.port
    server = CustodyServer(api=api, host=bind_host, port=bind_port)

    console.print(
        Panel(
            f"Starting custody API at [link=http://{bind_host}:{bind_port}/]http://{bind_host}:{bind_port}/[/link]\n"
            f"Storage: [cyan]{config.storage.backend}[/cyan]\n"
            "Press Ctrl-C to stop.",
            title="Custody API",
            border_style="green",
        )
    )
    server.start()


# ---------------------------------------------------------------------------
# access group
# ---------------------------------------------------------------------------


@cli.group(name="access")
def access_group() -> None:
    """Access check commands."""


@access_group.command(name="check")
@click.option("--document", "-d", "document_id", required=True, help="Document identifier.")
@click.option("--actor", "-a", "actor_text", required=True, help="Actor as kind:id, e.g. user:42.")
@_CONFIG_OPTION
def access_check_command(document_id: str, actor_text: str, config_path: str) -> None:
    """Check whether an actor currently has access to a document."""
    engine = _load_engine(config_path)
    try:
        actor = Actor.parse(actor_text)
        allowed = engine.grants.has_access(document_id, actor.kind, actor.id)
    except CustodyError as exc:
        err_console.print(f"[red]Error:[/red] {exc.message}")
        sys.exit(2)

    status_str = "[green]HAS ACCESS[/green]" if allowed else "[red]NO ACCESS[/red]"
    console.print(Panel(status_str, title=f"{actor} on {document_id}", border_style="blue"))
    sys.exit(0 if allowed else 1)


# ---------------------------------------------------------------------------
# grants group
# ---------------------------------------------------------------------------


@cli.group(name="grants")
def grants_group() -> None:
    """Access grant commands."""


@grants_group.command(name="list")
@click.option("--document", "-d", "document_id", required=True, help="Document identifier.")
@click.option("--all", "show_all", is_flag=True, help="Include revoked grants.")
@_CONFIG_OPTION
def grants_list_command(document_id: str, show_all: bool, config_path: str) -> None:
    """Show the grants of a document."""
    engine = _load_engine(config_path)
    grants = engine.grants.history(document_id) if show_all else engine.grants.active_grants(document_id)

    if not grants:
        console.print("[yellow]No grants found.[/yellow]")
        return

    table = Table(title=f"Grants on {document_id}", box=box.SIMPLE)
    table.add_column("ID", style="dim")
    table.add_column("Subject", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Granted by")
    table.add_column("Created", style="dim", no_wrap=True)
    table.add_column("Revoked", style="red", no_wrap=True)

    for grant in grants:
        table.add_row(
            str(grant.id),
            str(grant.subject),
            grant.grant_type.value,
            str(grant.granted_by),
            grant.created_at.isoformat()[:19].replace("T", " "),
            grant.revoked_at.isoformat()[:19].replace("T", " ") if grant.revoked_at else "",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# requests group
# ---------------------------------------------------------------------------


@cli.group(name="requests")
def requests_group() -> None:
    """Revocation request commands."""


@requests_group.command(name="list")
@click.option("--document", "-d", "document_id", default=None, help="Filter by document identifier.")
@click.option(
    "--status",
    "-s",
    type=click.Choice(["pending", "approved", "denied", "cancelled"]),
    default=None,
    help="Filter by status.",
)
@_CONFIG_OPTION
def requests_list_command(document_id: str | None, status: str | None, config_path: str) -> None:
    """Show revocation requests."""
    from aumos_custody.revocation.models import RequestStatus

    engine = _load_engine(config_path)
    with engine.store.transaction() as tx:
        requests = tx.list_requests(
            document_id=document_id,
            status=RequestStatus(status) if status else None,
        )

    if not requests:
        console.print("[yellow]No revocation requests found.[/yellow]")
        return

    table = Table(title="Revocation Requests", box=box.SIMPLE)
    table.add_column("ID", style="dim")
    table.add_column("Document", style="cyan")
    table.add_column("Type")
    table.add_column("Requester")
    table.add_column("Target")
    table.add_column("Status", style="magenta")
    table.add_column("Cascade")

    for request in requests:
        table.add_row(
            str(request.id),
            request.document_id,
            request.request_type.value,
            str(request.requester),
            str(request.target),
            request.status.value,
            "yes" if request.cascade_to_secondary_managers else "no",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# audit group
# ---------------------------------------------------------------------------


@cli.group(name="audit")
def audit_group() -> None:
    """Audit trail commands."""


@audit_group.command(name="show")
@click.option("--last", "-n", default=20, show_default=True, type=int, help="Number of recent entries to show.")
@click.option("--event", "-e", default=None, help="Only show this event name.")
@click.option("--document", "-d", "document_id", default=None, help="Only show entries for this document.")
@_CONFIG_OPTION
def audit_show_command(last: int, event: str | None, document_id: str | None, config_path: str) -> None:
    """Show recent audit log entries."""
    from aumos_custody.audit.logger import AuditLogger
    from aumos_custody.audit.search import AuditSearch

    config = _load_config(config_path)
    if config.audit.log_path is None:
        console.print("[yellow]Audit logging to a file is not configured.[/yellow]")
        return

    audit = AuditLogger(log_path=config.audit.log_path)
    records = AuditSearch(audit).multi_filter(event=event, document_id=document_id)
    records = records[-last:] if last < len(records) else records

    if not records:
        console.print("[yellow]No audit entries found.[/yellow]")
        return

    table = Table(title=f"Last {last} Audit Events", box=box.SIMPLE)
    table.add_column("Timestamp", style="dim", no_wrap=True)
    table.add_column("Event", style="cyan")
    table.add_column("Actor", style="magenta")
    table.add_column("OK")
    table.add_column("Document")

    for record in records:
        ts = str(record.get("timestamp", ""))[:19].replace("T", " ")
        metadata = record.get("metadata") or {}
        document = str(metadata.get("documentId", "")) if isinstance(metadata, dict) else ""
        table.add_row(
            ts,
            str(record.get("event", "")),
            f"{record.get('actor_type', '')}:{record.get('actor_id', '')}",
            "yes" if record.get("success", True) else "[red]no[/red]",
            document,
        )

    console.print(table)
    console.print(f"  Total audit records: [cyan]{audit.count()}[/cyan]")


if __name__ == "__main__":
    cli()
