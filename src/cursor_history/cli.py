"""CLI entry point for cursor-history."""

import logging
from pathlib import Path

import click
import uvicorn

from . import server
from .errors import CursorHistoryError
from .export import conversation_to_json, conversation_to_markdown, export_archive, safe_filename
from .history import CursorHistory


@click.group()
@click.option(
    "--workspace-path",
    type=click.Path(path_type=Path),
    envvar="CURSOR_HISTORY_PATH",
    help="Cursor workspaceStorage directory.",
)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity.",
)
@click.pass_context
def main(ctx: click.Context, workspace_path: Path | None, log_level: str):
    """Browse and export Cursor chat history."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = CursorHistory(workspace_path=workspace_path)


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.pass_obj
def serve(history: CursorHistory, port: int, host: str):
    """Start the JSON API."""
    server._history = history
    click.echo(f"Starting cursor-history on http://{host}:{port}")
    uvicorn.run(server.app, host=host, port=port, reload=False)


@main.command()
@click.pass_obj
def projects(history: CursorHistory):
    """List projects, most recently used first."""
    try:
        items = history.list_projects()
    except CursorHistoryError as e:
        raise click.ClickException(str(e))
    for project in items:
        click.echo(f"{project.id}  {project.conversation_count:>4}  {project.name}")


@main.command()
@click.option("--project", "project_id", default=None, help="Only show this project's conversations.")
@click.pass_obj
def conversations(history: CursorHistory, project_id: str | None):
    """List conversations, newest first."""
    try:
        items = history.list_conversations(project_id)
    except CursorHistoryError as e:
        raise click.ClickException(str(e))
    for conv in items:
        when = conv.timestamp.strftime("%Y-%m-%d %H:%M")
        click.echo(f"{conv.id}  {when}  {conv.title}")


@main.command()
@click.argument("conversation_id")
@click.pass_obj
def show(history: CursorHistory, conversation_id: str):
    """Print one conversation as Markdown."""
    try:
        conv = history.get_conversation(conversation_id)
    except CursorHistoryError as e:
        raise click.ClickException(str(e))
    click.echo(conversation_to_markdown(conv))


@main.command()
@click.argument("conversation_id")
@click.option("--format", "fmt", default="md", type=click.Choice(["md", "json"]), help="Export format.")
@click.option("--output", type=click.Path(path_type=Path), default=None, help="Output file.")
@click.pass_obj
def export(history: CursorHistory, conversation_id: str, fmt: str, output: Path | None):
    """Export one conversation to a file."""
    try:
        conv = history.get_conversation(conversation_id)
    except CursorHistoryError as e:
        raise click.ClickException(str(e))

    content = conversation_to_json(conv) if fmt == "json" else conversation_to_markdown(conv)
    output = output or Path(f"{safe_filename(conv.title, f'chat-{conv.id}')}.{fmt}")
    output.write_text(content, encoding="utf-8")
    click.echo(f"Wrote {output}")


@main.command("export-all")
@click.argument("output", type=click.Path(path_type=Path))
@click.option("--format", "fmt", default="md", type=click.Choice(["md", "json"]), help="Export format.")
@click.pass_obj
def export_all(history: CursorHistory, output: Path, fmt: str):
    """Export every conversation into a zip archive."""
    try:
        result = history.collect()
    except CursorHistoryError as e:
        raise click.ClickException(str(e))

    output.write_bytes(export_archive(result, fmt))
    click.echo(f"Wrote {len(result.conversations)} conversations to {output}")
