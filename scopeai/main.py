"""Command line entry point: an interactive chat against the agent core."""

from __future__ import annotations

import asyncio
from uuid import uuid4

import click

from scopeai.config import Settings, load_settings
from scopeai.errors import ConfirmationError
from scopeai.models import AgentContext, AgentResponse, PendingConfirmation
from scopeai.orchestrator.agent import Orchestrator, create_orchestrator
from scopeai.storage.sqlite import SqliteAuditRepository, SqliteConversationRepository
from scopeai.utils.logging import get_logger, setup_logging

log = get_logger(__name__)

_EXIT_WORDS = {"exit", "quit", "avsluta"}


def _print_response(response: AgentResponse) -> None:
    click.echo()
    click.secho(f"[{response.agent.value}]", fg="cyan", nl=False)
    click.echo(f" {response.message}")
    if response.navigation:
        click.secho(f"  -> {response.navigation.get('path', '')}", fg="blue")
    if response.error:
        click.secho(f"  ({response.error})", fg="red")
    click.echo()


def _print_confirmation(confirmation: PendingConfirmation) -> None:
    click.secho(f"Bekräftelse krävs: {confirmation.summary}", fg="yellow", bold=True)
    for warning in confirmation.warnings:
        click.secho(f"  ! {warning}", fg="yellow")


async def _confirm_pending(orchestrator: Orchestrator, response: AgentResponse, context: AgentContext) -> None:
    """Ask the human about every pending confirmation, including ones a resumed plan adds."""
    queue = list(response.confirmations)
    while queue:
        confirmation = queue.pop(0)
        _print_confirmation(confirmation)
        approve = await asyncio.to_thread(click.confirm, "Godkänn?", default=False)
        try:
            resolved = await orchestrator.resolve_confirmation(confirmation.confirmation_id, approve, context)
        except ConfirmationError as e:
            click.secho(str(e), fg="red")
            continue
        _print_response(resolved)
        queued = {c.confirmation_id for c in queue}
        queue.extend(c for c in resolved.confirmations if c.confirmation_id not in queued)


async def chat(settings: Settings, user_id: str, company_id: str, persist: bool) -> None:
    audit_repo: SqliteAuditRepository | None = None
    conversation_repo: SqliteConversationRepository | None = None
    if persist:
        db_path = settings.get_data_dir() / "scopeai.db"
        audit_repo = SqliteAuditRepository(db_path)
        conversation_repo = SqliteConversationRepository(db_path)
        await audit_repo.start()
        await conversation_repo.start()

    orchestrator = create_orchestrator(
        settings,
        audit_repository=audit_repo,
        conversations=conversation_repo,
    )
    context = AgentContext(
        user_id=user_id,
        company_id=company_id,
        conversation_id=uuid4().hex,
        abort=asyncio.Event(),
    )
    log.info("chat_started", conversation_id=context.conversation_id, persist=persist)
    click.secho("Scope AI. Skriv 'avsluta' för att avsluta.", fg="green")

    try:
        while True:
            try:
                text = await asyncio.to_thread(click.prompt, "Du", prompt_suffix=": ")
            except (click.Abort, EOFError):
                break
            if text.strip().lower() in _EXIT_WORDS:
                break
            if not text.strip():
                continue
            response = await orchestrator.handle(text, context)
            _print_response(response)
            await _confirm_pending(orchestrator, response, context)
    finally:
        await orchestrator.close()
        if conversation_repo is not None:
            await conversation_repo.stop()
        if audit_repo is not None:
            await audit_repo.stop()
        log.info("chat_stopped", conversation_id=context.conversation_id)


async def show_audit(settings: Settings, user_id: str | None, limit: int) -> None:
    repo = SqliteAuditRepository(settings.get_data_dir() / "scopeai.db")
    await repo.start()
    try:
        entries = await repo.list(user_id=user_id, limit=limit)
    finally:
        await repo.stop()
    for entry in entries:
        line = f"{entry.timestamp:%Y-%m-%d %H:%M:%S} {entry.status:<9} {entry.tool_name} ({entry.execution_time_ms} ms)"
        if entry.error_message:
            line += f" - {entry.error_message}"
        click.echo(line)


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """Scope AI accounting assistant."""
    settings = load_settings(config_path)
    if log_level:
        settings.log_level = log_level
    setup_logging(level=settings.log_level, json_output=settings.log_json)
    ctx.obj = settings


@cli.command("chat")
@click.option("--user", "user_id", default="local", help="User id for audit entries")
@click.option("--company", "company_id", default="demo", help="Company whose books the tools use")
@click.option("--persist/--no-persist", default=False, help="Store conversations and audit log in SQLite")
@click.pass_obj
def chat_command(settings: Settings, user_id: str, company_id: str, persist: bool) -> None:
    """Chat with the assistant in the terminal."""
    asyncio.run(chat(settings, user_id, company_id, persist))


@cli.command("audit")
@click.option("--user", "user_id", default=None, help="Only entries for this user")
@click.option("--limit", default=50, show_default=True, help="Number of entries")
@click.pass_obj
def audit_command(settings: Settings, user_id: str | None, limit: int) -> None:
    """Print the persisted audit log."""
    asyncio.run(show_audit(settings, user_id, limit))


if __name__ == "__main__":
    cli()
