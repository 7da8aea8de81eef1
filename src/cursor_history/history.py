"""Query engine over Cursor's workspace and global stores.

Every public method is a self-contained query: it discovers workspaces,
opens the stores it needs read-only, builds its indices and closes every
handle before returning. Nothing is cached between calls.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .aggregate import Aggregate, aggregate, merge_sources
from .assembler import assemble, assemble_legacy_composer, assemble_legacy_tab
from .attribution import AttributionResolver, ProjectIndex
from .config import get_global_db_path, get_workspace_path
from .core import Conversation, Project, WorkspaceEntry
from .decoders import decode_legacy_chat_tabs, decode_legacy_composers, decode_rows
from .errors import ConversationNotFound, DecodeError, ProjectNotFound, StorageUnavailable
from .records import (
    BUBBLE,
    CODE_DIFF,
    COMPOSER,
    LEGACY_CHAT_KEY,
    LEGACY_COMPOSER_KEY,
    REQUEST_CONTEXT,
    CodeDiffEvent,
    ComposerHeader,
    MessageBubble,
    RecordKey,
    RequestContext,
)
from .store import DISK_KV_TABLE, ITEM_TABLE, SqliteStore, discover_workspaces

logger = logging.getLogger(__name__)

GLOBAL_PREFIXES = (f"{COMPOSER}:", f"{BUBBLE}:", f"{CODE_DIFF}:", f"{REQUEST_CONTEXT}:")


@dataclass(frozen=True)
class GlobalIndex:
    """Read-only lookup tables over decoded global-store records."""

    headers: Mapping[str, ComposerHeader] = field(default_factory=dict)
    bubbles: Mapping[str, Mapping[str, MessageBubble]] = field(default_factory=dict)
    diffs: Mapping[str, tuple[CodeDiffEvent, ...]] = field(default_factory=dict)
    contexts: Mapping[str, Mapping[str, tuple[RequestContext, ...]]] = field(default_factory=dict)
    layouts: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def build(cls, records: Iterable[tuple[RecordKey, Any]]) -> "GlobalIndex":
        headers: dict[str, ComposerHeader] = {}
        bubbles: dict[str, dict[str, MessageBubble]] = defaultdict(dict)
        diffs: dict[str, list[CodeDiffEvent]] = defaultdict(list)
        contexts: dict[str, dict[str, list[RequestContext]]] = defaultdict(lambda: defaultdict(list))
        layouts: dict[str, list[str]] = defaultdict(list)

        for key, record in records:
            cid = key.conversation_id
            if isinstance(record, ComposerHeader):
                headers[cid] = record
            elif isinstance(record, MessageBubble):
                bubbles[cid][record.bubble_id] = record
            elif isinstance(record, CodeDiffEvent):
                diffs[cid].append(record)
            elif isinstance(record, RequestContext):
                layouts[cid].extend(record.project_layouts)
                if record.bubble_id:
                    contexts[cid][record.bubble_id].append(record)

        return cls(
            headers=MappingProxyType(headers),
            bubbles=MappingProxyType({cid: MappingProxyType(b) for cid, b in bubbles.items()}),
            diffs=MappingProxyType({cid: tuple(d) for cid, d in diffs.items()}),
            contexts=MappingProxyType({
                cid: MappingProxyType({bid: tuple(c) for bid, c in by_bubble.items()})
                for cid, by_bubble in contexts.items()
            }),
            layouts=MappingProxyType({cid: tuple(paths) for cid, paths in layouts.items()}),
        )


class CursorHistory:
    """Browse Cursor conversations grouped by project."""

    def __init__(
        self,
        workspace_path: Path | None = None,
        global_db_path: Path | None = None,
        home: str | None = None,
    ):
        self.workspace_path = Path(workspace_path) if workspace_path else get_workspace_path()
        self.global_db_path = (
            Path(global_db_path) if global_db_path else get_global_db_path(self.workspace_path)
        )
        self.home = home

    def list_workspace_entries(self) -> list[WorkspaceEntry]:
        return discover_workspaces(self.workspace_path)

    def list_projects(self) -> list[Project]:
        return self.collect().projects

    def list_conversations(self, project_id: str | None = None) -> list[Conversation]:
        """Return listed conversations, newest first.

        Without ``project_id`` this includes unattributed conversations.
        Raises ProjectNotFound for an unknown project id.
        """
        result = self.collect()
        if project_id is None:
            return result.conversations
        if project_id not in result.by_project:
            raise ProjectNotFound(project_id)
        return result.by_project[project_id]

    def get_conversation(self, conversation_id: str) -> Conversation:
        """Return one conversation, even if it has no turns.

        Raises ConversationNotFound when no store has a record for the id.
        """
        entries = self.list_workspace_entries()
        now = datetime.now(timezone.utc)

        conv = self._load_global_conversation(conversation_id, entries, now)
        if conv is not None:
            return conv

        for entry in entries:
            for conv in self._read_legacy(entry, now):
                if conv.id == conversation_id:
                    return conv

        raise ConversationNotFound(conversation_id)

    def collect(self) -> Aggregate:
        """Run one full query and return every grouping at once."""
        entries = self.list_workspace_entries()
        now = datetime.now(timezone.utc)
        resolver = AttributionResolver(ProjectIndex(entries, self.home))

        index = self._load_global_index()
        global_convs = [
            self._assemble_global(header, index, resolver, now) for header in index.headers.values()
        ]

        legacy_convs = []
        for entry in entries:
            legacy_convs.extend(self._read_legacy(entry, now))

        logger.debug(
            "Assembled %d global and %d legacy conversations from %d workspaces",
            len(global_convs), len(legacy_convs), len(entries),
        )
        return aggregate(merge_sources(global_convs, legacy_convs), entries)

    # ── Private helpers ──────────────────────────────────────────────

    def _assemble_global(
        self,
        header: ComposerHeader,
        index: GlobalIndex,
        resolver: AttributionResolver,
        now: datetime,
    ) -> Conversation:
        cid = header.conversation_id
        bubbles = index.bubbles.get(cid, {})
        project_id = resolver.resolve(header, index.layouts.get(cid, ()), bubbles)
        return assemble(
            header,
            bubbles,
            index.diffs.get(cid, ()),
            index.contexts.get(cid, {}),
            project_id,
            now,
        )

    def _load_global_index(self) -> GlobalIndex:
        try:
            with SqliteStore(self.global_db_path, DISK_KV_TABLE) as store:
                rows = [row for prefix in GLOBAL_PREFIXES for row in store.scan_by_prefix(prefix)]
        except StorageUnavailable as e:
            logger.warning("Global store unavailable, listing workspace records only: %s", e)
            return GlobalIndex()
        return GlobalIndex.build(decode_rows(rows))

    def _load_global_conversation(
        self,
        conversation_id: str,
        entries: list[WorkspaceEntry],
        now: datetime,
    ) -> Conversation | None:
        try:
            with SqliteStore(self.global_db_path, DISK_KV_TABLE) as store:
                rows = store.get_by_keys([f"{COMPOSER}:{conversation_id}"])
                if not rows:
                    return None
                for kind in (BUBBLE, CODE_DIFF, REQUEST_CONTEXT):
                    rows.extend(store.scan_by_prefix(f"{kind}:{conversation_id}:"))
        except StorageUnavailable as e:
            logger.warning("Global store unavailable: %s", e)
            return None

        index = GlobalIndex.build(decode_rows(rows))
        header = index.headers.get(conversation_id)
        if header is None:
            return None
        resolver = AttributionResolver(ProjectIndex(entries, self.home))
        return self._assemble_global(header, index, resolver, now)

    def _read_legacy(self, entry: WorkspaceEntry, now: datetime) -> list[Conversation]:
        """Read the pre-global-store chat records of one workspace."""
        try:
            with SqliteStore(entry.db_path, ITEM_TABLE) as store:
                rows = dict(store.get_by_keys([LEGACY_CHAT_KEY, LEGACY_COMPOSER_KEY]))
        except StorageUnavailable as e:
            logger.warning("Skipping workspace %s: %s", entry.id, e)
            return []

        conversations = []
        if LEGACY_CHAT_KEY in rows:
            try:
                for tab in decode_legacy_chat_tabs(rows[LEGACY_CHAT_KEY]):
                    conversations.append(assemble_legacy_tab(tab, entry.id, now))
            except DecodeError as e:
                logger.debug("Skipping chat tabs in %s: %s", entry.id, e)
        if LEGACY_COMPOSER_KEY in rows:
            try:
                for composer in decode_legacy_composers(rows[LEGACY_COMPOSER_KEY]):
                    conversations.append(assemble_legacy_composer(composer, entry.id, now))
            except DecodeError as e:
                logger.debug("Skipping composers in %s: %s", entry.id, e)
        return conversations
