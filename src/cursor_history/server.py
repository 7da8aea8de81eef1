"""FastAPI web server for cursor-history."""

import logging

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response

from . import __version__
from .aggregate import project_name
from .core import Project, WorkspaceEntry
from .errors import NotFound, RootUnavailable
from .export import (
    conversation_to_dict,
    conversation_to_json,
    conversation_to_markdown,
    export_archive,
    safe_filename,
    turn_to_dict,
)
from .history import CursorHistory

logger = logging.getLogger(__name__)

app = FastAPI(title="cursor-history", version=__version__)

# Holds configured paths only; every request runs a fresh query.
_history: CursorHistory | None = None


def _get_history() -> CursorHistory:
    """Lazily create the history engine from the environment."""
    global _history
    if _history is None:
        _history = CursorHistory()
        logger.info("Reading Cursor storage from %s", _history.workspace_path)
    return _history


def _project_to_dict(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "path": project.path,
        "conversation_count": project.conversation_count,
        "last_modified": project.last_modified.isoformat(),
    }


def _workspace_to_dict(entry: WorkspaceEntry) -> dict:
    return {
        "id": entry.id,
        "folder": entry.folder,
        "path": str(entry.db_path),
        "last_modified": entry.last_modified.isoformat(),
    }


def _root_error(e: RootUnavailable) -> HTTPException:
    logger.error("%s", e)
    return HTTPException(status_code=500, detail=str(e))


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/workspaces")
def get_workspaces():
    """Return every workspace directory that holds a store."""
    try:
        entries = _get_history().list_workspace_entries()
    except RootUnavailable as e:
        raise _root_error(e)
    return [_workspace_to_dict(e) for e in entries]


@app.get("/api/projects")
def get_projects():
    """Return projects with their conversation counts, newest first."""
    try:
        projects = _get_history().list_projects()
    except RootUnavailable as e:
        raise _root_error(e)
    return [_project_to_dict(p) for p in projects]


@app.get("/api/conversations")
def get_conversations(
    project: str | None = Query(None, description="Filter by project id"),
    search: str | None = Query(None, description="Search in titles"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Return conversations, newest first."""
    try:
        conversations = _get_history().list_conversations(project)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RootUnavailable as e:
        raise _root_error(e)

    if search:
        search_lower = search.lower()
        conversations = [c for c in conversations if search_lower in c.title.lower()]

    total = len(conversations)
    conversations = conversations[offset: offset + limit]

    return {
        "total": total,
        "conversations": [conversation_to_dict(c) for c in conversations],
    }


@app.get("/api/conversations/{conversation_id}")
def get_conversation(conversation_id: str):
    """Return one conversation with its turns."""
    try:
        conversation = _get_history().get_conversation(conversation_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RootUnavailable as e:
        raise _root_error(e)

    return {
        **conversation_to_dict(conversation),
        "turns": [turn_to_dict(t) for t in conversation.turns],
    }


@app.get("/api/export")
def export_all(format: str = Query("md", pattern="^(md|json)$")):
    """Export every listed conversation as a zip archive."""
    try:
        result = _get_history().collect()
    except RootUnavailable as e:
        raise _root_error(e)

    return Response(
        content=export_archive(result, format),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="cursor-logs.{format}.zip"'},
    )


@app.get("/api/export/{conversation_id}")
def export_conversation(
    conversation_id: str,
    format: str = Query("md", description="Export format: md or json"),
):
    """Export a conversation as Markdown or JSON."""
    history = _get_history()
    try:
        conversation = history.get_conversation(conversation_id)
        entries = history.list_workspace_entries()
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RootUnavailable as e:
        raise _root_error(e)

    safe_title = safe_filename(conversation.title, f"chat-{conversation.id}")

    if format == "json":
        return Response(
            content=conversation_to_json(conversation),
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{safe_title}.json"'},
        )
    else:
        entry = next((e for e in entries if e.id == conversation.project_id), None)
        label = (entry.folder or project_name(entry)) if entry else None
        content = conversation_to_markdown(conversation, label)
        return Response(
            content=content,
            media_type="text/markdown",
            headers={"Content-Disposition": f'attachment; filename="{safe_title}.md"'},
        )
