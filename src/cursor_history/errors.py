"""Exception taxonomy for cursor-history.

Only ``RootUnavailable`` and ``NotFound`` are meant to reach callers. The
other errors are caught at the smallest scope (one store, one record) so a
query still returns everything that could be read.
"""


class CursorHistoryError(Exception):
    """Base exception for all cursor-history errors."""

    pass


class RootUnavailable(CursorHistoryError):
    """Raised when the workspaceStorage root itself does not exist."""

    def __init__(self, root):
        self.root = root
        super().__init__(f"Cursor storage root not found: {root}")


class StorageUnavailable(CursorHistoryError):
    """Raised when a single state.vscdb is missing, locked or corrupt."""

    def __init__(self, db_path, reason: str = ""):
        self.db_path = db_path
        message = f"Cannot read store {db_path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class DecodeError(CursorHistoryError):
    """Raised when one record value is not valid JSON or has the wrong shape."""

    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__(f"Cannot decode {key}: {reason}")


class NotFound(CursorHistoryError):
    """Raised when a requested id has no matching record."""

    pass


class ConversationNotFound(NotFound):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class ProjectNotFound(NotFound):
    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")
