"""Assemble decoded records into ordered conversations."""

import logging
from datetime import datetime
from typing import Mapping, Optional, Sequence

from .core import Conversation, Turn
from .decoders import extract_text, format_context_sections, format_tool_action
from .records import (
    ASSISTANT,
    CodeDiffEvent,
    ComposerHeader,
    LegacyChatTab,
    LegacyComposer,
    MessageBubble,
    RequestContext,
)

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 100
TOOL_ACTION_LABEL = "**Tool Action:**"


def assemble(
    header: ComposerHeader,
    bubbles: Mapping[str, MessageBubble],
    diffs: Sequence[CodeDiffEvent],
    contexts: Mapping[str, Sequence[RequestContext]],
    project_id: Optional[str],
    now: datetime,
) -> Conversation:
    """Build one global-store conversation.

    ``bubbles`` and ``contexts`` are keyed by bubble id and hold only this
    conversation's records. Headers without a bubble are skipped. Turns whose
    text is blank after merging context sections are dropped. Diff events
    become assistant turns stamped with ``now`` and appended after the
    headers, so the stable sort leaves them last among equal timestamps.
    """
    turns: list[Turn] = []
    for bubble_header in header.headers:
        bubble = bubbles.get(bubble_header.bubble_id)
        if bubble is None:
            logger.debug(
                "Orphan header %s in conversation %s", bubble_header.bubble_id, header.conversation_id
            )
            continue

        text = extract_text(bubble)
        for context in contexts.get(bubble_header.bubble_id, ()):
            text += format_context_sections(context)

        if not text.strip():
            continue
        turns.append(Turn(
            role=bubble_header.role,
            text=text,
            timestamp=bubble.timestamp or now,
        ))

    for diff in diffs:
        diff_text = format_tool_action(diff)
        if not diff_text.strip():
            continue
        turns.append(Turn(
            role=ASSISTANT,
            text=TOOL_ACTION_LABEL + diff_text,
            timestamp=now,
            message_type="tool_action",
        ))

    # Title comes from the first message in header order, before sorting.
    title = resolve_title(header.name, turns, f"Conversation {header.conversation_id[:8]}")
    turns = sort_turns(turns)
    return Conversation(
        id=header.conversation_id,
        title=title,
        timestamp=header.last_updated_at or header.created_at or now,
        project_id=project_id,
        turns=turns,
        source="global",
        created=header.created_at,
    )


def assemble_legacy_composer(composer: LegacyComposer, workspace_id: str, now: datetime) -> Conversation:
    """Build a conversation from a per-workspace ``allComposers`` entry."""
    turns = _bubble_turns(composer.bubbles, now)
    title = resolve_title(composer.name, turns, f"Composer {composer.composer_id[:8]}")
    turns = sort_turns(turns)
    return Conversation(
        id=composer.composer_id,
        title=title,
        timestamp=composer.last_updated_at or composer.created_at or now,
        project_id=workspace_id,
        turns=turns,
        source="composer",
        workspace_id=workspace_id,
        created=composer.created_at,
    )


def assemble_legacy_tab(tab: LegacyChatTab, workspace_id: str, now: datetime) -> Conversation:
    """Build a conversation from an old ``aichat.chatdata`` tab."""
    turns = _bubble_turns(tab.bubbles, now)
    title = resolve_title(tab.title, turns, f"Chat {tab.tab_id[:8]}")
    turns = sort_turns(turns)
    return Conversation(
        id=tab.tab_id,
        title=title,
        timestamp=tab.last_send_time or now,
        project_id=workspace_id,
        turns=turns,
        source="chat",
        workspace_id=workspace_id,
    )


def _bubble_turns(bubbles: Sequence[MessageBubble], now: datetime) -> list[Turn]:
    turns = []
    for bubble in bubbles:
        text = extract_text(bubble)
        if not text.strip():
            continue
        turns.append(Turn(
            role=bubble.role or ASSISTANT,
            text=text,
            timestamp=bubble.timestamp or now,
        ))
    return turns


def sort_turns(turns: list[Turn]) -> list[Turn]:
    # sorted() is stable: equal timestamps keep insertion order.
    return sorted(turns, key=lambda t: t.timestamp)


def resolve_title(name: Optional[str], turns: Sequence[Turn], placeholder: str) -> str:
    """Explicit name, else the first message line, else ``placeholder``."""
    if name and name.strip():
        return name.strip()

    for turn in turns:
        if turn.message_type != "text":
            continue
        for line in turn.text.split("\n"):
            line = line.strip()
            if line:
                return _truncate(line, TITLE_MAX_LENGTH)
        break

    return placeholder


def _truncate(text: str, max_len: int) -> str:
    """Cut text to max_len characters, adding an ellipsis if anything was cut."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."
