"""Platform-aware path resolution for Cursor's storage directories."""

import getpass
import os
import platform
import subprocess
import sys
from pathlib import Path


def _is_wsl() -> bool:
    release = platform.release().lower()
    return "microsoft" in release or "wsl" in release


def _is_remote() -> bool:
    return any(os.environ.get(var) for var in ("SSH_CONNECTION", "SSH_CLIENT", "SSH_TTY"))


def _windows_username() -> str:
    """Ask cmd.exe for the Windows user name when running under WSL."""
    try:
        output = subprocess.run(
            ["cmd.exe", "/c", "echo %USERNAME%"],
            capture_output=True,
            text=True,
            timeout=5,
            check=True,
        ).stdout.strip()
    except (OSError, subprocess.SubprocessError):
        output = ""
    return output or getpass.getuser()


def get_default_workspace_path() -> Path:
    """Return the default workspaceStorage directory for this machine."""
    if _is_wsl():
        user = _windows_username()
        return Path("/mnt/c/Users") / user / "AppData" / "Roaming" / "Cursor" / "User" / "workspaceStorage"

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Cursor" / "User" / "workspaceStorage"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "Cursor" / "User" / "workspaceStorage"
    elif _is_remote():
        return Path.home() / ".cursor-server" / "data" / "User" / "workspaceStorage"
    else:  # Linux
        return Path.home() / ".config" / "Cursor" / "User" / "workspaceStorage"


def get_workspace_path() -> Path:
    """Return the path to Cursor's workspaceStorage directory."""
    env = os.environ.get("CURSOR_HISTORY_PATH", "").strip()
    if env:
        return Path(env).expanduser()
    return get_default_workspace_path()


def get_global_db_path(workspace_path: Path | None = None) -> Path:
    """Return the path to globalStorage/state.vscdb.

    The global store always sits alongside workspaceStorage unless
    CURSOR_HISTORY_GLOBAL_PATH points somewhere else.
    """
    env = os.environ.get("CURSOR_HISTORY_GLOBAL_PATH", "").strip()
    if env:
        return Path(env).expanduser()

    base = workspace_path if workspace_path is not None else get_workspace_path()
    return base.parent / "globalStorage" / "state.vscdb"


def get_home_prefix() -> str:
    """Return the home directory stripped from file paths before matching."""
    env = os.environ.get("CURSOR_HISTORY_HOME", "").strip()
    home = Path(env).expanduser() if env else Path.home()
    return home.as_posix().rstrip("/")
