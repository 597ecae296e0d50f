"""CLI for Contact Identity.

Commands:
    init-db                         - Create database tables
    identify --email E --phone P    - Resolve one email/phone pair
    show-contact <id>               - Show the cluster a contact belongs to
    serve                           - Run the HTTP API
"""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from contact_identity.config import configure_logging, settings
from contact_identity.db import create_engine, create_session_factory, init_db
from contact_identity.errors import IdentityError
from contact_identity.models import Contact
from contact_identity.resolution import (
    ContactView,
    IdentityResolver,
    ResolutionResult,
    project_cluster,
)
from contact_identity.store import (
    ContactStoreProvider,
    InMemoryContactStoreProvider,
    SqlContactStoreProvider,
)

app = typer.Typer(
    name="contact-identity",
    help="Contact Identity: resolve fragmented contact records into one customer identity",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def _format_ids(ids: list[int]) -> str:
    return ", ".join(str(i) for i in ids) or "-"


def _print_view(view: ContactView, title: str) -> None:
    panel_content = [
        f"[bold]Primary contact:[/bold] {view.primary_contact_id}",
        f"[bold]Emails:[/bold] {', '.join(view.emails) or '-'}",
        f"[bold]Phone numbers:[/bold] {', '.join(view.phone_numbers) or '-'}",
        f"[bold]Secondary contacts:[/bold] {_format_ids(view.secondary_contact_ids)}",
    ]
    console.print(Panel("\n".join(panel_content), title=title))


def _print_members(members: list[Contact]) -> None:
    table = Table(title="Cluster members")
    table.add_column("ID", justify="right")
    table.add_column("Email")
    table.add_column("Phone")
    table.add_column("Precedence")
    table.add_column("Linked ID", justify="right")
    table.add_column("Created")
    for contact in members:
        table.add_row(
            str(contact.id),
            contact.email or "-",
            contact.phone_number or "-",
            contact.link_precedence.value,
            str(contact.linked_id) if contact.linked_id is not None else "-",
            contact.created_at.isoformat(timespec="seconds"),
        )
    console.print(table)


@app.command("init-db")
def init_db_command() -> None:
    """Create the contacts table and its indexes."""

    async def _init():
        engine = create_engine(settings)
        try:
            await init_db(engine)
        finally:
            await engine.dispose()

    run_async(_init())
    console.print("[green]Database initialized.[/green]")


@app.command()
def identify(
    email: Annotated[str | None, typer.Option("--email", "-e", help="Email address")] = None,
    phone: Annotated[str | None, typer.Option("--phone", "-p", help="Phone number")] = None,
    memory: Annotated[
        bool, typer.Option("--memory", help="Resolve against an empty in-memory store")
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
) -> None:
    """Resolve an email and/or phone number to a consolidated contact."""
    configure_logging("DEBUG" if verbose else "WARNING")

    async def _identify() -> ResolutionResult:
        if memory:
            return await IdentityResolver(InMemoryContactStoreProvider()).resolve(email, phone)

        engine = create_engine(settings)
        try:
            provider: ContactStoreProvider = SqlContactStoreProvider(
                create_session_factory(engine),
                isolation_level=settings.store_isolation_level,
            )
            resolver = IdentityResolver(provider, max_attempts=settings.identify_max_attempts)
            return await resolver.resolve(email, phone)
        finally:
            await engine.dispose()

    try:
        result = run_async(_identify())
    except IdentityError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from None

    _print_view(result.contact, title="Identity")
    if result.changed:
        console.print(f"  Created: {_format_ids(result.created_ids)}")
        console.print(f"  Demoted: {_format_ids(result.demoted_ids)}")
        console.print(f"  Re-pointed: {_format_ids(result.repointed_ids)}")
    else:
        console.print("[dim]Already known; nothing changed.[/dim]")
    if result.attempts > 1:
        console.print(f"[yellow]Resolved after {result.attempts} attempts.[/yellow]")


@app.command("show-contact")
def show_contact(
    contact_id: Annotated[int, typer.Argument(help="Contact ID")],
) -> None:
    """Show the identity cluster a contact belongs to."""

    async def _show() -> tuple[ContactView, list[Contact]] | None:
        engine = create_engine(settings)
        try:
            provider = SqlContactStoreProvider(create_session_factory(engine))
            async with provider.transaction() as store:
                found = [
                    c for c in await store.find_by_id_or_linked_id({contact_id})
                    if c.id == contact_id
                ]
                if not found:
                    return None
                contact = found[0]
                primary_id = contact.linked_id if contact.linked_id is not None else contact.id
                members = await store.find_by_id_or_linked_id({primary_id})
                primary = next((c for c in members if c.id == primary_id), contact)
                return project_cluster(primary, members), members
        finally:
            await engine.dispose()

    shown = run_async(_show())
    if shown is None:
        console.print(f"[red]Error:[/red] Contact not found: {contact_id}")
        raise typer.Exit(1)

    view, members = shown
    _print_view(view, title=f"Contact {contact_id}")
    _print_members(members)


@app.command()
def serve(
    host: Annotated[str | None, typer.Option(help="Bind address")] = None,
    port: Annotated[int | None, typer.Option(help="Port")] = None,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes")] = False,
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "contact_identity.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    app()
