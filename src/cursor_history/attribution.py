"""Work out which workspace a global-store conversation belongs to.

The global store does not record the owning workspace, so it is inferred
from evidence. The tiers are tried in order and the first hit wins:

1. project layout hints (``rootPath`` from request contexts), matched by
   folder name;
2. files the conversation created;
3. paths in the conversation's code-block map;
4. file references on its bubbles, in header order: relevant files, then
   attached chunk URIs, then context file selections.

Paths from tiers 2-4 are normalized (``file://`` scheme and the user's home
directory removed) and matched against each workspace folder on path
boundaries.
"""

import logging
import urllib.parse
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

from .config import get_home_prefix
from .core import WorkspaceEntry
from .records import ComposerHeader, MessageBubble

logger = logging.getLogger(__name__)


def normalize_path(path: str, home: str) -> str:
    """Strip the file:// scheme and the home-directory prefix from a path."""
    if path.startswith("file://"):
        path = urllib.parse.unquote(path[7:])
    path = path.replace("\\", "/").rstrip("/")
    if home:
        if path == home:
            return ""
        if path.startswith(home + "/"):
            return path[len(home) + 1:]
    return path


def folder_name(path: str) -> str:
    """Return the last segment of a folder path."""
    return path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]


class ProjectIndex:
    """Lookup tables over the known workspaces, built once per query."""

    def __init__(self, entries: Iterable[WorkspaceEntry], home: str | None = None):
        self.home = (home if home is not None else get_home_prefix()).rstrip("/")

        by_name: dict[str, str] = {}
        folders: list[tuple[str, str]] = []
        for entry in entries:
            if not entry.folder:
                continue
            name = folder_name(normalize_path(entry.folder, ""))
            if name:
                # First workspace in id order keeps a shared folder name.
                by_name.setdefault(name, entry.id)
            normalized = normalize_path(entry.folder, self.home)
            if normalized:
                folders.append((normalized, entry.id))

        self.by_folder_name: Mapping[str, str] = MappingProxyType(by_name)
        self.folders: tuple[tuple[str, str], ...] = tuple(folders)

    def project_for_root_path(self, root_path: str) -> str | None:
        name = folder_name(normalize_path(root_path, ""))
        return self.by_folder_name.get(name) if name else None

    def project_for_file(self, file_path: str) -> str | None:
        normalized = normalize_path(file_path, self.home)
        if not normalized:
            return None
        for folder, project_id in self.folders:
            if normalized == folder or normalized.startswith(folder + "/"):
                return project_id
        return None


class AttributionResolver:
    """Resolves a conversation to a workspace id, or None."""

    def __init__(self, index: ProjectIndex):
        self.index = index

    def resolve(
        self,
        header: ComposerHeader,
        layouts: Sequence[str] = (),
        bubbles: Mapping[str, MessageBubble] | None = None,
    ) -> str | None:
        for root_path in layouts:
            project_id = self.index.project_for_root_path(root_path)
            if project_id:
                return project_id

        project_id = self._first_match(header.newly_created_files)
        if project_id:
            return project_id

        project_id = self._first_match(header.code_block_paths)
        if project_id:
            return project_id

        bubbles = bubbles or {}
        for bubble_header in header.headers:
            bubble = bubbles.get(bubble_header.bubble_id)
            if bubble is None:
                continue
            for paths in (bubble.relevant_files, bubble.attached_chunk_paths, bubble.file_selection_paths):
                project_id = self._first_match(paths)
                if project_id:
                    return project_id

        logger.debug("No project found for conversation %s", header.conversation_id)
        return None

    def _first_match(self, paths: Iterable[str]) -> str | None:
        for path in paths:
            project_id = self.index.project_for_file(path)
            if project_id:
                return project_id
        return None
