"""Shared test fixtures for cursor-history."""

import json
import os
import sqlite3
from datetime import datetime, timezone

import pytest

from cursor_history.history import CursorHistory

HOME = "/Users/testuser"


def ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def _write_store(db_path, item_rows=None, kv_rows=None):
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    for key, value in (item_rows or {}).items():
        conn.execute("INSERT INTO ItemTable VALUES (?, ?)", (key, _encode(value)))
    for key, value in (kv_rows or {}).items():
        conn.execute("INSERT INTO cursorDiskKV VALUES (?, ?)", (key, _encode(value)))
    conn.commit()
    conn.close()
    return db_path


def _encode(value):
    return value if isinstance(value, (str, bytes)) else json.dumps(value)


def _set_mtime(path, *when):
    stamp = datetime(*when, tzinfo=timezone.utc).timestamp()
    os.utime(path, (stamp, stamp))


@pytest.fixture
def make_store():
    """Return a helper that writes a state.vscdb with the given rows."""
    return _write_store


@pytest.fixture
def cursor_storage(tmp_path):
    """Create a synthetic Cursor User directory.

    Workspaces:
    - ws-alpha: /Users/testuser/dev/alpha, no legacy records
    - ws-beta: /Users/testuser/dev/beta, one legacy chat tab and a stale
      legacy copy of conv-layout
    - ws-gamma: /Users/testuser/dev/gamma, nothing attributed to it
    - ws-corrupt: state.vscdb is not a SQLite file
    - ws-nostore: no state.vscdb at all (not a workspace)

    Global conversations:
    - conv-layout: layout hint -> alpha (a created file points at beta)
    - conv-files: newly created file -> beta
    - conv-bubble: bubble file selection -> beta
    - conv-unattributed: no evidence
    - conv-empty: its only header has no bubble
    """
    user = tmp_path / "User"
    ws_root = user / "workspaceStorage"

    workspaces = {
        "ws-alpha": ("alpha", (2025, 1, 10)),
        "ws-beta": ("beta", (2025, 1, 20)),
        "ws-gamma": ("gamma", (2025, 1, 5)),
    }
    for ws_id, (folder, _) in workspaces.items():
        ws_dir = ws_root / ws_id
        ws_dir.mkdir(parents=True)
        (ws_dir / "workspace.json").write_text(
            json.dumps({"folder": f"file://{HOME}/dev/{folder}"}), encoding="utf-8"
        )

    _write_store(ws_root / "ws-alpha" / "state.vscdb")
    _write_store(ws_root / "ws-gamma" / "state.vscdb")
    _write_store(
        ws_root / "ws-beta" / "state.vscdb",
        item_rows={
            "workbench.panel.aichat.view.aichat.chatdata": {
                "tabs": [
                    {
                        "tabId": "tab-legacy-1",
                        "chatTitle": "Old chat",
                        "lastSendTime": ms(2025, 1, 12),
                        "bubbles": [
                            {"type": "user", "text": "How do I sort a list?"},
                            {"type": "ai", "text": "Use sorted()."},
                        ],
                    }
                ]
            },
            "composer.composerData": {
                "allComposers": [
                    {
                        "composerId": "conv-layout",
                        "name": "stale legacy copy",
                        "lastUpdatedAt": ms(2025, 1, 1),
                        "conversation": [{"type": 1, "text": "legacy text"}],
                    }
                ]
            },
        },
    )
    for ws_id, (_, mtime) in workspaces.items():
        _set_mtime(ws_root / ws_id / "state.vscdb", *mtime)

    corrupt = ws_root / "ws-corrupt"
    corrupt.mkdir()
    (corrupt / "workspace.json").write_text(json.dumps({"folder": f"file://{HOME}/dev/delta"}))
    (corrupt / "state.vscdb").write_bytes(b"this is not a sqlite database" * 10)
    _set_mtime(corrupt / "state.vscdb", 2025, 1, 1)

    (ws_root / "ws-nostore").mkdir()

    layout_hint = json.dumps({"rootPath": f"{HOME}/dev/alpha"})
    kv_rows = {
        # conv-layout
        "composerData:conv-layout": {
            "composerId": "conv-layout",
            "createdAt": ms(2025, 1, 15, 9),
            "lastUpdatedAt": ms(2025, 1, 15, 10),
            "fullConversationHeadersOnly": [
                {"bubbleId": "b2", "type": 1},
                {"bubbleId": "b1", "type": 2},
            ],
            "newlyCreatedFiles": [{"uri": {"path": f"{HOME}/dev/beta/new.py"}}],
        },
        "bubbleId:conv-layout:b1": {"text": "hello from ai", "timestamp": 200},
        "bubbleId:conv-layout:b2": {"text": "Fix the bug\nmore text", "timestamp": 100},
        "messageRequestContext:conv-layout:ctx1": {
            "bubbleId": "b1",
            "projectLayouts": [layout_hint],
            "gitStatusRaw": "M app.py",
        },
        "codeBlockDiff:conv-layout:d1": {
            "filePath": f"{HOME}/dev/alpha/app.py",
            "command": "pytest",
        },
        # conv-files
        "composerData:conv-files": {
            "name": "Files chat",
            "lastUpdatedAt": ms(2025, 1, 16),
            "fullConversationHeadersOnly": [{"bubbleId": "fb1", "type": 1}],
            "newlyCreatedFiles": [{"uri": {"path": f"{HOME}/dev/beta/src/x.py"}}],
        },
        "bubbleId:conv-files:fb1": {"text": "create x.py"},
        "bubbleId:conv-files:broken": "{not json",
        # conv-bubble
        "composerData:conv-bubble": {
            "name": "Bubble evidence",
            "lastUpdatedAt": ms(2025, 1, 14),
            "fullConversationHeadersOnly": [{"bubbleId": "bb1", "type": 1}],
        },
        "bubbleId:conv-bubble:bb1": {
            "text": "what does the readme say",
            "context": {"fileSelections": [{"uri": {"path": f"{HOME}/dev/beta/README.md"}}]},
        },
        # conv-unattributed
        "composerData:conv-unattributed": {
            "name": "Nowhere",
            "lastUpdatedAt": ms(2025, 1, 13),
            "fullConversationHeadersOnly": [{"bubbleId": "ub1", "type": 1}],
        },
        "bubbleId:conv-unattributed:ub1": {"text": "where am I", "relevantFiles": ["/tmp/scratch.py"]},
        # conv-empty
        "composerData:conv-empty": {
            "name": "Empty",
            "lastUpdatedAt": ms(2025, 1, 18),
            "fullConversationHeadersOnly": [{"bubbleId": "missing", "type": 1}],
        },
        # ignored
        "someOtherKind:abc": {"text": "ignored"},
    }
    _write_store(user / "globalStorage" / "state.vscdb", kv_rows=kv_rows)

    return ws_root


@pytest.fixture
def history(cursor_storage):
    """A CursorHistory pointed at the synthetic storage."""
    return CursorHistory(workspace_path=cursor_storage, home=HOME)
