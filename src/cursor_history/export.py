"""Export conversations to Markdown, JSON and zip archives."""

import io
import json
import zipfile

from .aggregate import Aggregate
from .core import Conversation, Turn

EXPORT_FORMATS = ("md", "json")


def conversation_to_markdown(conversation: Conversation, project_label: str | None = None) -> str:
    """Export a conversation and its turns as clean Markdown."""
    lines = [f"# {conversation.title}", ""]

    if project_label:
        lines.append(f"**Project:** {project_label}")
    lines.append(f"**Source:** {conversation.source}")
    if conversation.created:
        lines.append(f"**Created:** {conversation.created.isoformat()}")
    lines.append(f"**Updated:** {conversation.timestamp.isoformat()}")
    lines.append(f"**Messages:** {conversation.message_count}")
    lines.extend(["", "---", ""])

    for turn in conversation.turns:
        role_label = "User" if turn.role == "user" else "AI"
        ts = turn.timestamp.strftime("%Y-%m-%d %H:%M")
        lines.append(f"## {role_label} ({ts})")
        lines.append("")
        lines.append(turn.text)
        lines.extend(["", "---", ""])

    return "\n".join(lines)


def conversation_to_dict(conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "title": conversation.title,
        "timestamp": conversation.timestamp.isoformat(),
        "created": conversation.created.isoformat() if conversation.created else None,
        "project_id": conversation.project_id,
        "source": conversation.source,
        "workspace_id": conversation.workspace_id,
        "message_count": conversation.message_count,
    }


def turn_to_dict(turn: Turn) -> dict:
    return {
        "role": turn.role,
        "text": turn.text,
        "timestamp": turn.timestamp.isoformat(),
        "message_type": turn.message_type,
    }


def conversation_to_json(conversation: Conversation) -> str:
    """Export a conversation and its turns as structured JSON."""
    data = {
        "conversation": conversation_to_dict(conversation),
        "turns": [turn_to_dict(turn) for turn in conversation.turns],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def safe_filename(title: str, fallback: str) -> str:
    name = "".join(c if c.isalnum() or c in "-_ " else "" for c in title)[:50].strip()
    return name or fallback


def export_archive(result: Aggregate, format: str = "md") -> bytes:
    """Zip every listed conversation, one folder per project.

    Conversations without a project go under ``unattributed/``.
    """
    if format not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {format}")

    projects = {p.id: p for p in result.projects}
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        used: set[str] = set()
        for conv in result.conversations:
            project = projects.get(conv.project_id) if conv.project_id else None
            folder = project.id if project else "unattributed"
            stem = safe_filename(conv.title, f"chat-{conv.id}")
            arcname = f"{folder}/{stem}.{format}"
            if arcname in used:
                arcname = f"{folder}/{stem}-{conv.id[:8]}.{format}"
            used.add(arcname)

            if format == "json":
                content = conversation_to_json(conv)
            else:
                label = (project.path or project.name) if project else None
                content = conversation_to_markdown(conv, label)
            archive.writestr(arcname, content)

    return buffer.getvalue()
