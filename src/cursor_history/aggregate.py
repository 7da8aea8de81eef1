"""Group conversations by project and sort everything by recency."""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .core import Conversation, Project, WorkspaceEntry

logger = logging.getLogger(__name__)


@dataclass
class Aggregate:
    projects: list[Project]  # newest first, including empty ones
    conversations: list[Conversation]  # newest first, attributed or not
    by_project: dict[str, list[Conversation]] = field(default_factory=dict)
    unattributed: list[Conversation] = field(default_factory=list)


def project_name(entry: WorkspaceEntry) -> str:
    """Last segment of the workspace folder, else a shortened id."""
    if entry.folder:
        name = entry.folder.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
        if name:
            return name
    return entry.id[:8]


def is_listable(conversation: Conversation) -> bool:
    """Only conversations with at least one message turn are listed."""
    return any(turn.message_type == "text" for turn in conversation.turns)


def merge_sources(
    global_conversations: Sequence[Conversation],
    legacy_conversations: Sequence[Conversation],
) -> list[Conversation]:
    """Combine global and legacy conversations, preferring the global copy.

    A composer that was migrated to the global store can still have an
    entry in its workspace's ``composer.composerData``; the global record
    carries bubbles, diffs and context that the legacy one lacks.
    """
    seen = {conv.id for conv in global_conversations}
    merged = list(global_conversations)
    for conv in legacy_conversations:
        if conv.id in seen:
            logger.debug("Dropping legacy copy of conversation %s (workspace %s)", conv.id, conv.workspace_id)
            continue
        seen.add(conv.id)
        merged.append(conv)
    return merged


def aggregate(conversations: Iterable[Conversation], entries: Sequence[WorkspaceEntry]) -> Aggregate:
    by_project: dict[str, list[Conversation]] = {entry.id: [] for entry in entries}
    unattributed = []
    listed = []

    for conv in conversations:
        if not is_listable(conv):
            continue
        listed.append(conv)
        if conv.project_id in by_project:
            by_project[conv.project_id].append(conv)
        else:
            unattributed.append(conv)

    listed.sort(key=lambda c: c.timestamp, reverse=True)
    for convs in by_project.values():
        convs.sort(key=lambda c: c.timestamp, reverse=True)
    unattributed.sort(key=lambda c: c.timestamp, reverse=True)

    projects = [
        Project(
            id=entry.id,
            name=project_name(entry),
            last_modified=entry.last_modified,
            path=entry.folder,
            conversation_count=len(by_project[entry.id]),
        )
        for entry in entries
    ]
    projects.sort(key=lambda p: p.last_modified, reverse=True)

    return Aggregate(
        projects=projects,
        conversations=listed,
        by_project=by_project,
        unattributed=unattributed,
    )
