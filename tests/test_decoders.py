"""Tests for record decoding and text rendering."""

import json

import pytest

from cursor_history.decoders import (
    decode,
    decode_legacy_chat_tabs,
    decode_legacy_composers,
    decode_rows,
    extract_text,
    format_context_sections,
    format_tool_action,
    ms_to_datetime,
)
from cursor_history.errors import DecodeError
from cursor_history.records import (
    CodeDiffEvent,
    ComposerHeader,
    MessageBubble,
    RecordKey,
    RequestContext,
    parse_key,
)


def _bubble(**payload) -> MessageBubble:
    return decode(RecordKey("bubbleId", "c1", "b1"), json.dumps(payload))


def _diff(**payload) -> CodeDiffEvent:
    return decode(RecordKey("codeBlockDiff", "c1", "d1"), json.dumps(payload))


class TestParseKey:
    def test_two_part_kinds(self):
        assert parse_key("bubbleId:conv:bub") == RecordKey("bubbleId", "conv", "bub")
        assert parse_key("messageRequestContext:conv:ctx") == RecordKey("messageRequestContext", "conv", "ctx")

    def test_composer_key(self):
        assert parse_key("composerData:conv") == RecordKey("composerData", "conv")

    def test_sub_id_keeps_extra_colons(self):
        assert parse_key("codeBlockDiff:conv:a:b").sub_id == "a:b"

    @pytest.mark.parametrize("key", ["unknownKind:a:b", "bubbleId:conv", "bubbleId::b", "composerData:", "plain"])
    def test_unusable_keys(self, key):
        assert parse_key(key) is None


class TestDecodeRows:
    def test_malformed_record_is_skipped(self):
        rows = [
            ("bubbleId:c1:ok", json.dumps({"text": "fine"})),
            ("bubbleId:c1:bad", "{not json"),
            ("bubbleId:c1:list", "[1, 2]"),
            ("other:thing", "{}"),
        ]
        decoded = decode_rows(rows)
        assert len(decoded) == 1
        key, bubble = decoded[0]
        assert key.sub_id == "ok"
        assert bubble.text == "fine"

    def test_decode_raises_for_non_object(self):
        with pytest.raises(DecodeError):
            decode(RecordKey("bubbleId", "c1", "b1"), "null")


class TestBubbleDecoding:
    def test_file_reference_shapes(self):
        bubble = _bubble(
            relevantFiles=["/a.py", None, ""],
            attachedFileCodeChunksUris=[{"path": "/b.py"}, {"scheme": "file"}],
            context={"fileSelections": [{"uri": {"path": "/c.py"}}, {"uri": None}]},
        )
        assert bubble.relevant_files == ("/a.py",)
        assert bubble.attached_chunk_paths == ("/b.py",)
        assert bubble.file_selection_paths == ("/c.py",)

    def test_timestamp_fallbacks(self):
        assert _bubble(timestamp=1000).timestamp == ms_to_datetime(1000)
        assert _bubble(createdAt="2025-01-15T10:00:00Z").timestamp.hour == 10
        assert _bubble(text="x").timestamp is None

    def test_wrong_field_types_treated_as_absent(self):
        bubble = _bubble(text=42, richText=7, codeBlocks="nope", relevantFiles={"a": 1})
        assert bubble.text == ""
        assert bubble.rich_text is None
        assert bubble.code_blocks == ()
        assert bubble.relevant_files == ()


class TestExtractText:
    def test_absent_text_gives_empty_string(self):
        assert extract_text(_bubble()) == ""

    def test_text_field_wins(self):
        bubble = _bubble(text="plain", richText=json.dumps({"root": {"children": [{"type": "text", "text": "rich"}]}}))
        assert extract_text(bubble) == "plain"

    def test_blank_text_falls_back_to_rich_text(self):
        rich = {
            "root": {
                "children": [
                    {"type": "paragraph", "children": [{"type": "text", "text": "Look at "}, {"type": "text", "text": "this"}]},
                    {"type": "code", "children": [{"type": "text", "text": "x = 1"}]},
                ]
            }
        }
        bubble = _bubble(text="   ", richText=json.dumps(rich))
        assert extract_text(bubble) == "Look at this\n```\nx = 1\n```\n"

    def test_malformed_rich_text_is_ignored(self):
        assert extract_text(_bubble(richText="{broken")) == ""
        assert extract_text(_bubble(richText=json.dumps({"root": {"children": "nope"}}))) == ""

    def test_code_blocks_always_appended(self):
        bubble = _bubble(
            text="Here you go",
            codeBlocks=[{"language": "python", "content": "print(1)"}, {"content": ""}, {"content": "ls"}],
        )
        assert extract_text(bubble) == "Here you go\n\n```python\nprint(1)\n```\n\n```\nls\n```"

    def test_code_blocks_without_text(self):
        bubble = _bubble(codeBlocks=[{"language": "sh", "content": "make"}])
        assert extract_text(bubble) == "\n\n```sh\nmake\n```"


class TestFormatToolAction:
    def test_empty_diff_formats_to_nothing(self):
        assert format_tool_action(_diff()) == ""

    def test_sections_in_fixed_order(self):
        diff = _diff(
            webSearchResults=[{"title": "Docs"}, {"url": "no title"}],
            directoryListed="src/",
            gitStatus="M a.py",
            filesModified=["a.py", "b.py"],
            actionsTaken=["edit", "run"],
            webResults="web",
            searchResults="found",
            command="pytest",
            filePath="a.py",
            newModelDiffWrtV0=[{"modified": ["x = 1", "y = 2"]}, {"modified": []}],
        )
        assert format_tool_action(diff) == (
            "\n\n**Code Changes:**\n```\nx = 1\ny = 2\n```"
            "\n\n**File:** a.py"
            "\n\n**Command:** `pytest`"
            "\n\n**Search Results:**\nfound"
            "\n\n**Web Search:**\nweb"
            "\n\n**Actions Taken:** edit, run"
            "\n\n**Files Modified:**\n- a.py\n- b.py"
            "\n\n**Git Status:**\n```\nM a.py\n```"
            "\n\n**Directory Listed:** src/"
            "\n\n**Web Search Results:**\n- Docs"
        )

    def test_tool_parameters_and_result_from_json_strings(self):
        diff = _diff(
            toolName="run_terminal_cmd",
            parameters=json.dumps({"command": "ls", "target_file": "a.py", "query": "q", "instructions": "do it"}),
            result=json.dumps({
                "output": "a.py",
                "exitCodeV2": 0,
                "files": [{"name": "a.py"}, {"path": "src", "type": "directory"}],
                "results": [{"file": "a.py", "content": "x"}, {"file": "b.py"}],
            }),
        )
        assert format_tool_action(diff) == (
            "\n\n**Tool Action:** run_terminal_cmd"
            "\n**Command:** `ls`"
            "\n**File:** a.py"
            "\n**Query:** q"
            "\n**Instructions:** do it"
            "\n\n**Output:**\n```\na.py\n```"
            "\n\n**Exit Code:** 0"
            "\n\n**Files Found:**\n- a.py (file)\n- src (directory)"
            "\n\n**Results:**\n\n**File:** a.py\n```\nx\n```"
        )

    def test_null_exit_code_still_rendered(self):
        diff = _diff(toolName="run_terminal_cmd", result=json.dumps({"exitCodeV2": None}))
        assert format_tool_action(diff) == "\n\n**Tool Action:** run_terminal_cmd\n\n**Exit Code:** null"
        assert "Exit Code" not in format_tool_action(_diff(toolName="x", result=json.dumps({"output": "ok"})))

    def test_unparseable_parameters_skipped(self):
        diff = _diff(toolName="edit_file", parameters="{oops", result="also bad")
        assert format_tool_action(diff) == "\n\n**Tool Action:** edit_file"

    def test_output_is_independent_of_payload_key_order(self):
        payload = {"gitStatus": "clean", "command": "make", "filePath": "Makefile"}
        forward = format_tool_action(decode(RecordKey("codeBlockDiff", "c", "d"), json.dumps(payload)))
        reverse = dict(reversed(list(payload.items())))
        backward = format_tool_action(decode(RecordKey("codeBlockDiff", "c", "d"), json.dumps(reverse)))
        assert forward == backward


class TestContextSections:
    def test_sections_in_fixed_order(self):
        context = decode(
            RecordKey("messageRequestContext", "c1", "x1"),
            json.dumps({
                "bubbleId": "b1",
                "summarizedComposers": [{"name": "Earlier chat"}, {"composerId": "abc"}, {}],
                "cursorRules": [{"name": "style"}, {"description": "be terse"}, {}],
                "attachedFoldersListDirResults": [
                    {"path": "src", "files": [{"name": "a.py", "type": "file"}]},
                    {"path": "empty", "files": []},
                ],
                "terminalFiles": [{"path": "/tmp/term.log"}],
                "gitStatusRaw": "M a.py",
            }),
        )
        assert isinstance(context, RequestContext)
        assert context.bubble_id == "b1"
        assert format_context_sections(context) == (
            "\n\n**Git Status:**\n```\nM a.py\n```"
            "\n\n**Terminal Files:**\n- /tmp/term.log"
            "\n\n**Attached Folders:**\n\n**Folder:** src\n- a.py (file)"
            "\n\n**Cursor Rules:**\n- style\n- be terse\n- Rule"
            "\n\n**Related Conversations:**\n- Earlier chat\n- abc\n- Conversation"
        )

    def test_project_layouts_decoded_from_json_strings(self):
        context = decode(
            RecordKey("messageRequestContext", "c1", "x1"),
            json.dumps({"projectLayouts": [json.dumps({"rootPath": "/p/one"}), "{bad", {"rootPath": "/p/two"}, 3]}),
        )
        assert context.project_layouts == ("/p/one", "/p/two")
        assert format_context_sections(context) == ""


class TestComposerHeader:
    def test_headers_and_evidence(self):
        header = decode(
            RecordKey("composerData", "c1"),
            json.dumps({
                "name": "Refactor",
                "createdAt": 1000,
                "fullConversationHeadersOnly": [{"bubbleId": "b1", "type": 1}, {"type": 2}, {"bubbleId": "b2", "type": 2}],
                "newlyCreatedFiles": [{"uri": {"path": "/x/new.py"}}],
                "codeBlockData": {"file:///x/a.py": {}},
            }),
        )
        assert isinstance(header, ComposerHeader)
        assert [h.bubble_id for h in header.headers] == ["b1", "b2"]
        assert [h.role for h in header.headers] == ["user", "assistant"]
        assert header.newly_created_files == ("/x/new.py",)
        assert header.code_block_paths == ("file:///x/a.py",)
        assert header.last_updated_at is None


class TestLegacyDecoding:
    def test_chat_tabs(self):
        tabs = decode_legacy_chat_tabs(json.dumps({
            "tabs": [
                {"tabId": "t1", "chatTitle": "Hi", "bubbles": [{"type": "user", "text": "q"}, {"type": "ai", "text": "a"}]},
                {"bubbles": []},
            ]
        }))
        assert len(tabs) == 1
        assert tabs[0].title == "Hi"
        assert [b.role for b in tabs[0].bubbles] == ["user", "assistant"]

    def test_composers(self):
        composers = decode_legacy_composers(json.dumps({
            "allComposers": [
                {"composerId": "c1", "name": "N", "conversation": [{"type": 1, "bubbleId": "x", "text": "q"}]},
                {"name": "no id"},
            ]
        }))
        assert [c.composer_id for c in composers] == ["c1"]
        assert composers[0].bubbles[0].bubble_id == "x"

    def test_invalid_value_raises(self):
        with pytest.raises(DecodeError):
            decode_legacy_composers("not json")


class TestMsToDatetime:
    def test_conversions(self):
        assert ms_to_datetime(None) is None
        assert ms_to_datetime(True) is None
        assert ms_to_datetime("garbage") is None
        assert ms_to_datetime(0).year == 1970
        assert ms_to_datetime("1736935200000") == ms_to_datetime(1736935200000)
