"""
QueryChat CLI Entry Point

Terminal front-end for asking questions and browsing conversations.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from querychat.config import Settings, get_settings, load_settings
from querychat.utils.logger import setup_logging
from querychat_client.deps import create_chat_service
from querychat_client.domain.entities.message import Message
from querychat_client.domain.value_objects.failure import Failure
from querychat_client.services.chat_service import ChatService

app = typer.Typer(
    name="querychat",
    help="QueryChat - natural-language questions about your project data",
    add_completion=False,
)
console = Console()

EnvOption = typer.Option(None, "--env", "-e", help="Path to .env file")
ProjectOption = typer.Option(None, "--project", "-p", help="Project id")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")
JsonOption = typer.Option(False, "--json", help="Print JSON output")


def _prepare(env_file: Optional[Path], verbose: bool) -> Settings:
    settings = load_settings(env_file) if env_file else get_settings()
    if verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    setup_logging(level=settings.log_level, log_file=settings.log_file)
    return settings


def _fail(failure: Failure, as_json: bool = False) -> None:
    if as_json:
        console.print_json(data={"error": failure.to_dict()})
        raise typer.Exit(1)
    console.print(f"[red]Error ({failure.kind.value}): {failure.message}[/red]")
    raise typer.Exit(1)


def _format_time(value: Optional[datetime]) -> str:
    return f"{value:%Y-%m-%d %H:%M}" if value is not None else "-"


def _print_message(message: Message) -> None:
    speaker = "[bold cyan]You[/bold cyan]" if message.is_human else "[bold green]AI[/bold green]"
    if message.is_error:
        speaker = "[bold red]AI[/bold red]"
    marker = " [yellow]*[/yellow]" if message.is_important else ""
    console.print(f"{speaker}{marker} [dim]{_format_time(message.created_at)}[/dim]")
    console.print(message.content, markup=False)
    if message.generated_sql:
        console.print(f"[dim]SQL:[/dim] {message.generated_sql}")
    if message.visualization is not None:
        viz = message.visualization
        console.print(
            f"[magenta]Chart:[/magenta] {viz.title or viz.type or 'untitled'} "
            f"({viz.payload_length} chars)"
        )
    console.print()


async def _ask(
    service: ChatService, query: str, conversation_id: Optional[str], chart: bool
) -> Optional[Message]:
    try:
        if conversation_id:
            opened = await service.open_conversation(conversation_id, with_visualizations=False)
            if not opened.ok:
                _fail(opened.failure)
        result = await service.submit_query(query)
        if not result.ok:
            _fail(result.failure)
        if chart:
            charted = await service.generate_visualization(query)
            if charted.ok and charted.value is not None:
                return charted.value
            if charted.failure is not None:
                console.print(f"[yellow]No chart: {charted.failure.message}[/yellow]")
        return result.value
    finally:
        await service.close()


@app.command()
def ask(
    query: str = typer.Argument(..., help="Question to ask"),
    conversation_id: Optional[str] = typer.Option(
        None, "--conversation", "-c", help="Continue an existing conversation"
    ),
    project_id: Optional[str] = ProjectOption,
    chart: bool = typer.Option(False, "--chart", help="Also generate a visualization"),
    env_file: Optional[Path] = EnvOption,
    verbose: bool = VerboseOption,
):
    """
    Ask a question, optionally inside an existing conversation.
    """
    settings = _prepare(env_file, verbose)
    service = create_chat_service(settings, project_id=project_id)

    answer = asyncio.run(_ask(service, query, conversation_id, chart))
    if answer is not None:
        _print_message(answer)
    console.print(f"[dim]Conversation: {service.session.active_conversation_id}[/dim]")


async def _list_conversations(service: ChatService):
    try:
        return await service.refresh_conversations()
    finally:
        await service.close()


@app.command()
def conversations(
    project_id: Optional[str] = ProjectOption,
    as_json: bool = JsonOption,
    env_file: Optional[Path] = EnvOption,
    verbose: bool = VerboseOption,
):
    """
    List the conversations of a project, most recent first.
    """
    settings = _prepare(env_file, verbose)
    service = create_chat_service(settings, project_id=project_id)

    result = asyncio.run(_list_conversations(service))
    if not result.ok:
        _fail(result.failure, as_json)
    if as_json:
        console.print_json(data=[conversation.to_dict() for conversation in result.value])
        return

    table = Table(title="Conversations")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="green")
    table.add_column("Messages", justify="right")
    table.add_column("Last activity", style="yellow")
    for conversation in result.value:
        table.add_row(
            conversation.id,
            conversation.title or "",
            str(conversation.message_count),
            _format_time(conversation.updated_at or conversation.created_at),
        )
    console.print(table)


async def _history(service: ChatService, conversation_id: str):
    try:
        return await service.open_conversation(conversation_id)
    finally:
        await service.close()


@app.command()
def history(
    conversation_id: str = typer.Argument(..., help="Conversation id"),
    project_id: Optional[str] = ProjectOption,
    as_json: bool = JsonOption,
    env_file: Optional[Path] = EnvOption,
    verbose: bool = VerboseOption,
):
    """
    Show the transcript of a conversation.
    """
    settings = _prepare(env_file, verbose)
    service = create_chat_service(settings, project_id=project_id)

    result = asyncio.run(_history(service, conversation_id))
    if not result.ok:
        _fail(result.failure, as_json)
    if as_json:
        console.print_json(data=[message.to_dict() for message in result.value])
        return

    current = service.session.current_conversation
    title = current.title if current is not None else conversation_id
    console.print(f"\n[bold blue]{title}[/bold blue]")
    console.print("-" * 40)
    for message in result.value:
        _print_message(message)


async def _important(service: ChatService):
    try:
        return await service.refresh_important_messages()
    finally:
        await service.close()


@app.command()
def important(
    project_id: Optional[str] = ProjectOption,
    env_file: Optional[Path] = EnvOption,
    verbose: bool = VerboseOption,
):
    """
    List messages marked as important.
    """
    settings = _prepare(env_file, verbose)
    service = create_chat_service(settings, project_id=project_id)

    result = asyncio.run(_important(service))
    if not result.ok:
        _fail(result.failure)
    if not result.value:
        console.print("[yellow]No important messages[/yellow]")
        return
    for message in result.value:
        _print_message(message)


@app.command()
def config(
    env_file: Optional[Path] = EnvOption,
):
    """
    Show current configuration.
    """
    if env_file:
        settings = load_settings(env_file)
    else:
        settings = get_settings()

    console.print("\n[bold blue]QueryChat Configuration[/bold blue]")
    console.print("-" * 40)

    console.print("\n[cyan]Backend:[/cyan]")
    console.print(f"  API base: {settings.api_base}")
    console.print(f"  Token: {'set' if settings.api_token else '[yellow]not set[/yellow]'}")
    console.print(f"  Timeout: {settings.request_timeout}s")

    console.print("\n[cyan]Reconciliation:[/cyan]")
    console.print(f"  Recent conversation window: {settings.recent_conversation_window_seconds}s")
    console.print(f"  Placeholder chart threshold: {settings.visualization_min_payload_length}")
    console.print(f"  Title length: {settings.conversation_title_max_length}")

    console.print("\n[cyan]History fetch:[/cyan]")
    console.print(f"  Max retries: {settings.history_fetch_max_retries}")
    console.print(f"  Backoff: {settings.history_fetch_backoff_seconds}s")

    console.print("\n[cyan]Logging:[/cyan]")
    console.print(f"  Level: {settings.log_level}")
    console.print(f"  File: {settings.log_file or '-'}")


@app.command()
def version():
    """
    Show version information.
    """
    from querychat import __version__

    console.print(f"QueryChat version: [green]{__version__}[/green]")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
