"""Decode raw store values into typed records and render them as text.

A value that is not a JSON object raises DecodeError for that one record
and ``decode_rows`` drops it. Optional fields with an unexpected shape are
treated as absent.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from .errors import DecodeError
from .records import (
    ASSISTANT,
    BUBBLE,
    CODE_DIFF,
    COMPOSER,
    LEGACY_CHAT_KEY,
    LEGACY_COMPOSER_KEY,
    REQUEST_CONTEXT,
    USER,
    AttachedFolder,
    BubbleHeader,
    CodeBlock,
    CodeDiffEvent,
    ComposerHeader,
    LegacyChatTab,
    LegacyComposer,
    MessageBubble,
    RecordKey,
    RequestContext,
    ToolResult,
    parse_key,
)

logger = logging.getLogger(__name__)


# ── Decoding ─────────────────────────────────────────────────────


def decode(key: RecordKey, raw: str):
    """Decode one value according to its key kind."""
    payload = _load_object(str(key), raw)

    if key.kind == BUBBLE:
        return bubble_from_payload(key.conversation_id, key.sub_id, payload)
    if key.kind == CODE_DIFF:
        return _diff_from_payload(key, payload)
    if key.kind == REQUEST_CONTEXT:
        return _context_from_payload(key, payload)
    if key.kind == COMPOSER:
        return _composer_from_payload(key, payload)
    raise DecodeError(str(key), f"unknown record kind {key.kind!r}")


def decode_rows(rows: Iterable[tuple[str, str]]) -> list[tuple[RecordKey, Any]]:
    """Decode a batch of (key, value) rows, skipping anything unreadable."""
    decoded = []
    for raw_key, raw_value in rows:
        key = parse_key(raw_key)
        if key is None:
            continue
        try:
            decoded.append((key, decode(key, raw_value)))
        except DecodeError as e:
            logger.debug("Skipping record: %s", e)
    return decoded


def bubble_from_payload(conversation_id: str, bubble_id: str, payload: dict) -> MessageBubble:
    return MessageBubble(
        conversation_id=conversation_id,
        bubble_id=bubble_id,
        role=_role_from_type(payload.get("type")),
        text=_str_or_empty(payload.get("text")),
        rich_text=_load_rich_text(payload.get("richText")),
        code_blocks=tuple(
            CodeBlock(content=block["content"], language=_str_or_empty(block.get("language")))
            for block in _dicts(payload.get("codeBlocks"))
            if isinstance(block.get("content"), str) and block["content"]
        ),
        relevant_files=tuple(p for p in _list(payload.get("relevantFiles")) if isinstance(p, str) and p),
        attached_chunk_paths=tuple(
            _uri_path(uri) for uri in _dicts(payload.get("attachedFileCodeChunksUris")) if _uri_path(uri)
        ),
        file_selection_paths=tuple(
            _uri_path(sel.get("uri"))
            for sel in _dicts(_dict(payload.get("context")).get("fileSelections"))
            if _uri_path(sel.get("uri"))
        ),
        timestamp=ms_to_datetime(payload.get("timestamp")) or ms_to_datetime(payload.get("createdAt")),
    )


def _diff_from_payload(key: RecordKey, payload: dict) -> CodeDiffEvent:
    code_changes = []
    for diff in _dicts(payload.get("newModelDiffWrtV0")):
        lines = tuple(_stringify(line) for line in _list(diff.get("modified")))
        if lines:
            code_changes.append(lines)

    return CodeDiffEvent(
        conversation_id=key.conversation_id,
        diff_id=key.sub_id,
        code_changes=tuple(code_changes),
        file_path=_opt_text(payload.get("filePath")),
        command=_opt_text(payload.get("command")),
        search_results=_opt_text(payload.get("searchResults")),
        web_results=_opt_text(payload.get("webResults")),
        tool_name=_opt_text(payload.get("toolName")),
        parameters=_maybe_json_object(payload.get("parameters"), str(key), "parameters"),
        result=_tool_result(_maybe_json_object(payload.get("result"), str(key), "result")),
        actions_taken=tuple(_stringify(a) for a in _list(payload.get("actionsTaken"))),
        files_modified=tuple(_stringify(f) for f in _list(payload.get("filesModified"))),
        git_status=_opt_text(payload.get("gitStatus")),
        directory_listed=_opt_text(payload.get("directoryListed")),
        web_search_titles=tuple(
            _stringify(r["title"]) for r in _dicts(payload.get("webSearchResults")) if r.get("title")
        ),
    )


def _tool_result(data: dict | None) -> ToolResult | None:
    if data is None:
        return None
    return ToolResult(
        output=_opt_text(data.get("output")),
        contents=_opt_text(data.get("contents")),
        exit_code=data.get("exitCodeV2"),
        has_exit_code="exitCodeV2" in data,
        files=tuple(
            (_stringify(f.get("name") or f.get("path")), _stringify(f.get("type") or "file"))
            for f in _dicts(data.get("files"))
        ),
        results=tuple(
            (_stringify(r["file"]), _stringify(r["content"]))
            for r in _dicts(data.get("results"))
            if r.get("file") and r.get("content")
        ),
    )


def _context_from_payload(key: RecordKey, payload: dict) -> RequestContext:
    layouts = []
    for layout in _list(payload.get("projectLayouts")):
        if isinstance(layout, str):
            try:
                layout = json.loads(layout)
            except json.JSONDecodeError:
                continue
        root = _dict(layout).get("rootPath")
        if isinstance(root, str) and root:
            layouts.append(root)

    return RequestContext(
        conversation_id=key.conversation_id,
        context_id=key.sub_id,
        bubble_id=_opt_text(payload.get("bubbleId")),
        project_layouts=tuple(layouts),
        git_status=_opt_text(payload.get("gitStatusRaw")),
        terminal_files=tuple(_stringify(f.get("path")) for f in _dicts(payload.get("terminalFiles"))),
        attached_folders=tuple(
            AttachedFolder(
                path=_stringify(folder.get("path") or "Unknown"),
                files=tuple(
                    (_stringify(f.get("name")), _stringify(f.get("type")))
                    for f in _dicts(folder.get("files"))
                ),
            )
            for folder in _dicts(payload.get("attachedFoldersListDirResults"))
        ),
        cursor_rules=tuple(
            _stringify(rule.get("name") or rule.get("description") or "Rule")
            for rule in _dicts(payload.get("cursorRules"))
        ),
        summarized_composers=tuple(
            _stringify(c.get("name") or c.get("composerId") or "Conversation")
            for c in _dicts(payload.get("summarizedComposers"))
        ),
    )


def _composer_from_payload(key: RecordKey, payload: dict) -> ComposerHeader:
    return ComposerHeader(
        conversation_id=key.conversation_id,
        name=_opt_text(payload.get("name")),
        created_at=ms_to_datetime(payload.get("createdAt")),
        last_updated_at=ms_to_datetime(payload.get("lastUpdatedAt")),
        headers=tuple(
            BubbleHeader(bubble_id=h["bubbleId"], type=h.get("type"))
            for h in _dicts(payload.get("fullConversationHeadersOnly"))
            if isinstance(h.get("bubbleId"), str) and h["bubbleId"]
        ),
        newly_created_files=tuple(
            _uri_path(f.get("uri")) for f in _dicts(payload.get("newlyCreatedFiles")) if _uri_path(f.get("uri"))
        ),
        code_block_paths=tuple(_dict(payload.get("codeBlockData")).keys()),
    )


def decode_legacy_composers(raw: str) -> list[LegacyComposer]:
    """Decode the per-workspace ``composer.composerData`` value."""
    payload = _load_object(LEGACY_COMPOSER_KEY, raw)
    composers = []
    for comp in _dicts(payload.get("allComposers")):
        composer_id = comp.get("composerId")
        if not isinstance(composer_id, str) or not composer_id:
            continue
        bubbles = []
        for index, item in enumerate(_dicts(comp.get("conversation"))):
            bubble_id = _str_or_empty(item.get("bubbleId")) or str(index)
            bubbles.append(bubble_from_payload(composer_id, bubble_id, item))
        composers.append(LegacyComposer(
            composer_id=composer_id,
            name=_opt_text(comp.get("name")),
            created_at=ms_to_datetime(comp.get("createdAt")),
            last_updated_at=ms_to_datetime(comp.get("lastUpdatedAt")),
            bubbles=tuple(bubbles),
        ))
    return composers


def decode_legacy_chat_tabs(raw: str) -> list[LegacyChatTab]:
    """Decode the per-workspace ``aichat.chatdata`` value."""
    payload = _load_object(LEGACY_CHAT_KEY, raw)
    tabs = []
    for tab in _dicts(payload.get("tabs")):
        tab_id = tab.get("tabId") or tab.get("id")
        if not isinstance(tab_id, str) or not tab_id:
            continue
        bubbles = []
        for index, item in enumerate(_dicts(tab.get("bubbles"))):
            bubble_id = _str_or_empty(item.get("id")) or str(index)
            bubbles.append(bubble_from_payload(tab_id, bubble_id, item))
        tabs.append(LegacyChatTab(
            tab_id=tab_id,
            title=_opt_text(tab.get("chatTitle") or tab.get("title")),
            last_send_time=ms_to_datetime(tab.get("lastSendTime") or tab.get("timestamp")),
            bubbles=tuple(bubbles),
        ))
    return tabs


# ── Text rendering ───────────────────────────────────────────────


def extract_text(bubble: MessageBubble) -> str:
    """Return the display text of a bubble.

    The plain ``text`` field wins when it is not blank; otherwise the
    rich-text tree is flattened. Code blocks are always appended.
    """
    text = bubble.text if bubble.text.strip() else ""

    if not text and bubble.rich_text:
        children = _dict(bubble.rich_text.get("root")).get("children")
        if isinstance(children, list):
            text = flatten_rich_text(children)

    for block in bubble.code_blocks:
        text += f"\n\n```{block.language}\n{block.content}\n```"

    return text


def flatten_rich_text(children: list) -> str:
    """Concatenate text leaves depth-first, fencing ``code`` nodes."""
    text = ""
    for child in children:
        if not isinstance(child, dict):
            continue
        node_children = child.get("children")
        if child.get("type") == "text" and isinstance(child.get("text"), str) and child["text"]:
            text += child["text"]
        elif child.get("type") == "code" and isinstance(node_children, list):
            text += "\n```\n" + flatten_rich_text(node_children) + "\n```\n"
        elif isinstance(node_children, list):
            text += flatten_rich_text(node_children)
    return text


def format_tool_action(diff: CodeDiffEvent) -> str:
    """Render a diff/tool event as Markdown sections in a fixed order."""
    out = ""

    for lines in diff.code_changes:
        out += "\n\n**Code Changes:**\n```\n" + "\n".join(lines) + "\n```"

    if diff.file_path:
        out += f"\n\n**File:** {diff.file_path}"

    if diff.command:
        out += f"\n\n**Command:** `{diff.command}`"

    if diff.search_results:
        out += f"\n\n**Search Results:**\n{diff.search_results}"

    if diff.web_results:
        out += f"\n\n**Web Search:**\n{diff.web_results}"

    if diff.tool_name:
        out += f"\n\n**Tool Action:** {diff.tool_name}"
        out += _format_parameters(diff.parameters)
        out += _format_tool_result(diff.result)

    if diff.actions_taken:
        out += "\n\n**Actions Taken:** " + ", ".join(diff.actions_taken)

    if diff.files_modified:
        out += "\n\n**Files Modified:**"
        for path in diff.files_modified:
            out += f"\n- {path}"

    if diff.git_status:
        out += f"\n\n**Git Status:**\n```\n{diff.git_status}\n```"

    if diff.directory_listed:
        out += f"\n\n**Directory Listed:** {diff.directory_listed}"

    if diff.web_search_titles:
        out += "\n\n**Web Search Results:**"
        for title in diff.web_search_titles:
            out += f"\n- {title}"

    return out


def _format_parameters(params: dict | None) -> str:
    if not params:
        return ""
    out = ""
    if params.get("command"):
        out += f"\n**Command:** `{_stringify(params['command'])}`"
    if params.get("target_file"):
        out += f"\n**File:** {_stringify(params['target_file'])}"
    if params.get("query"):
        out += f"\n**Query:** {_stringify(params['query'])}"
    if params.get("instructions"):
        out += f"\n**Instructions:** {_stringify(params['instructions'])}"
    return out


def _format_tool_result(result: ToolResult | None) -> str:
    if result is None:
        return ""
    out = ""
    if result.output:
        out += f"\n\n**Output:**\n```\n{result.output}\n```"
    if result.contents:
        out += f"\n\n**File Contents:**\n```\n{result.contents}\n```"
    if result.has_exit_code:
        exit_code = "null" if result.exit_code is None else _stringify(result.exit_code)
        out += f"\n\n**Exit Code:** {exit_code}"
    if result.files:
        out += "\n\n**Files Found:**"
        for name, kind in result.files:
            out += f"\n- {name} ({kind})"
    if result.results:
        out += "\n\n**Results:**"
        for path, content in result.results:
            out += f"\n\n**File:** {path}\n```\n{content}\n```"
    return out


def format_context_sections(context: RequestContext) -> str:
    """Render request-context annotations for a bubble, in a fixed order."""
    out = ""

    if context.git_status:
        out += f"\n\n**Git Status:**\n```\n{context.git_status}\n```"

    if context.terminal_files:
        out += "\n\n**Terminal Files:**"
        for path in context.terminal_files:
            out += f"\n- {path}"

    if context.attached_folders:
        out += "\n\n**Attached Folders:**"
        for folder in context.attached_folders:
            if not folder.files:
                continue
            out += f"\n\n**Folder:** {folder.path}"
            for name, kind in folder.files:
                out += f"\n- {name} ({kind})"

    if context.cursor_rules:
        out += "\n\n**Cursor Rules:**"
        for rule in context.cursor_rules:
            out += f"\n- {rule}"

    if context.summarized_composers:
        out += "\n\n**Related Conversations:**"
        for name in context.summarized_composers:
            out += f"\n- {name}"

    return out


# ── Helpers ──────────────────────────────────────────────────────


def ms_to_datetime(value) -> datetime | None:
    """Convert an epoch-millisecond (or ISO 8601) timestamp to datetime, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            value = float(value)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (ValueError, OSError, OverflowError):
        return None


def _load_object(key: str, raw: str) -> dict:
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise DecodeError(key, str(e)) from e
    if not isinstance(payload, dict):
        raise DecodeError(key, f"expected a JSON object, got {type(payload).__name__}")
    return payload


def _load_rich_text(value) -> dict | None:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value:
        try:
            loaded = json.loads(value)
        except json.JSONDecodeError:
            logger.debug("Ignoring unparseable richText")
            return None
        return loaded if isinstance(loaded, dict) else None
    return None


def _maybe_json_object(value, key: str, field_name: str) -> dict | None:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.debug("Ignoring unparseable %s in %s", field_name, key)
            return None
    return value if isinstance(value, dict) else None


def _role_from_type(value) -> str | None:
    if value in (1, "user"):
        return USER
    if value in (2, "ai", "assistant"):
        return ASSISTANT
    return None


def _uri_path(uri) -> str:
    if isinstance(uri, dict) and isinstance(uri.get("path"), str):
        return uri["path"]
    return ""


def _stringify(value) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def _opt_text(value) -> str | None:
    if value is None or value == "" or value == [] or value == {}:
        return None
    return _stringify(value)


def _str_or_empty(value) -> str:
    return value if isinstance(value, str) else ""


def _dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _list(value) -> list:
    return value if isinstance(value, list) else []


def _dicts(value) -> list[dict]:
    return [item for item in _list(value) if isinstance(item, dict)]
