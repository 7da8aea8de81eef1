"""Typed records decoded from Cursor's key-value stores.

Global records live in ``cursorDiskKV`` under composite keys::

    composerData:<conversationId>
    bubbleId:<conversationId>:<bubbleId>
    codeBlockDiff:<conversationId>:<diffId>
    messageRequestContext:<conversationId>:<contextId>

Keys are parsed into a RecordKey once, when rows leave the store. Every
optional payload field is explicit on the record, so the formatters never
probe raw dicts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

COMPOSER = "composerData"
BUBBLE = "bubbleId"
CODE_DIFF = "codeBlockDiff"
REQUEST_CONTEXT = "messageRequestContext"

# Kinds whose keys carry a second id after the conversation id.
_SUB_ID_KINDS = frozenset({BUBBLE, CODE_DIFF, REQUEST_CONTEXT})
KNOWN_KINDS = frozenset({COMPOSER}) | _SUB_ID_KINDS

# Legacy per-workspace ItemTable keys.
LEGACY_CHAT_KEY = "workbench.panel.aichat.view.aichat.chatdata"
LEGACY_COMPOSER_KEY = "composer.composerData"

USER = "user"
ASSISTANT = "assistant"


@dataclass(frozen=True)
class RecordKey:
    kind: str
    conversation_id: str
    sub_id: Optional[str] = None

    def __str__(self) -> str:
        if self.sub_id is None:
            return f"{self.kind}:{self.conversation_id}"
        return f"{self.kind}:{self.conversation_id}:{self.sub_id}"


def parse_key(key: str) -> RecordKey | None:
    """Parse a composite store key, or return None for kinds we don't read."""
    parts = key.split(":", 2)
    kind = parts[0]
    if kind not in KNOWN_KINDS or len(parts) < 2 or not parts[1]:
        return None
    if kind in _SUB_ID_KINDS:
        if len(parts) < 3 or not parts[2]:
            return None
        return RecordKey(kind, parts[1], parts[2])
    return RecordKey(kind, parts[1])


@dataclass(frozen=True)
class CodeBlock:
    content: str
    language: str = ""


@dataclass(frozen=True)
class MessageBubble:
    """One message fragment."""

    conversation_id: str
    bubble_id: str
    role: Optional[str] = None  # only set when the payload carries a type
    text: str = ""
    rich_text: Optional[dict] = None
    code_blocks: tuple[CodeBlock, ...] = ()
    relevant_files: tuple[str, ...] = ()
    attached_chunk_paths: tuple[str, ...] = ()
    file_selection_paths: tuple[str, ...] = ()
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ToolResult:
    output: Optional[str] = None
    contents: Optional[str] = None
    exit_code: Optional[object] = None
    has_exit_code: bool = False  # exitCodeV2 present, even as null
    files: tuple[tuple[str, str], ...] = ()  # (name or path, type)
    results: tuple[tuple[str, str], ...] = ()  # (file, content)


@dataclass(frozen=True)
class CodeDiffEvent:
    """A tool or diff action recorded against a conversation."""

    conversation_id: str
    diff_id: str
    code_changes: tuple[tuple[str, ...], ...] = ()
    file_path: Optional[str] = None
    command: Optional[str] = None
    search_results: Optional[str] = None
    web_results: Optional[str] = None
    tool_name: Optional[str] = None
    parameters: Optional[dict] = None
    result: Optional[ToolResult] = None
    actions_taken: tuple[str, ...] = ()
    files_modified: tuple[str, ...] = ()
    git_status: Optional[str] = None
    directory_listed: Optional[str] = None
    web_search_titles: tuple[str, ...] = ()


@dataclass(frozen=True)
class AttachedFolder:
    path: str
    files: tuple[tuple[str, str], ...] = ()  # (name, type)


@dataclass(frozen=True)
class RequestContext:
    """Request metadata recorded for one bubble."""

    conversation_id: str
    context_id: str
    bubble_id: Optional[str] = None
    project_layouts: tuple[str, ...] = ()  # candidate root paths
    git_status: Optional[str] = None
    terminal_files: tuple[str, ...] = ()
    attached_folders: tuple[AttachedFolder, ...] = ()
    cursor_rules: tuple[str, ...] = ()
    summarized_composers: tuple[str, ...] = ()


@dataclass(frozen=True)
class BubbleHeader:
    bubble_id: str
    type: Optional[int] = None

    @property
    def role(self) -> str:
        return USER if self.type == 1 else ASSISTANT


@dataclass(frozen=True)
class ComposerHeader:
    """Conversation header from the global ``composerData:<id>`` record."""

    conversation_id: str
    name: Optional[str] = None
    created_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None
    headers: tuple[BubbleHeader, ...] = ()
    newly_created_files: tuple[str, ...] = ()
    code_block_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class LegacyComposer:
    """An entry of ``composer.composerData.allComposers`` in a workspace store."""

    composer_id: str
    name: Optional[str] = None
    created_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None
    bubbles: tuple[MessageBubble, ...] = field(default=())


@dataclass(frozen=True)
class LegacyChatTab:
    """A tab of the old ``aichat.chatdata`` panel record."""

    tab_id: str
    title: Optional[str] = None
    last_send_time: Optional[datetime] = None
    bubbles: tuple[MessageBubble, ...] = field(default=())
