"""Core data models for cursor-history."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class WorkspaceEntry:
    """One workspaceStorage directory that holds a state.vscdb."""

    id: str  # directory name, an opaque hash
    db_path: Path
    last_modified: datetime
    folder: Optional[str] = None  # e.g. "/Users/farhaj/dev/travel-agency"


@dataclass
class Project:
    """A workspace as shown to the user, with its conversation count."""

    id: str  # == WorkspaceEntry.id
    name: str
    last_modified: datetime
    path: Optional[str] = None
    conversation_count: int = 0


@dataclass
class Turn:
    """A single displayed message within a conversation."""

    role: str  # "user" | "assistant"
    text: str
    timestamp: datetime
    message_type: str = "text"  # "text" | "tool_action"


@dataclass
class Conversation:
    """An assembled chat thread."""

    id: str
    title: str
    timestamp: datetime  # last updated, else created, else query time
    project_id: Optional[str] = None  # None when attribution failed
    turns: list[Turn] = field(default_factory=list)
    source: str = "global"  # "global" | "composer" | "chat"
    workspace_id: Optional[str] = None  # owning store for legacy records
    created: Optional[datetime] = None

    @property
    def message_count(self) -> int:
        return len(self.turns)
