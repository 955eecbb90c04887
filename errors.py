"""Exception types for devassist-memory."""


class DevAssistError(Exception):
    """Base class for errors raised by the memory layer."""


class SearchError(DevAssistError):
    """A keyword or vector index query failed."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(message)
        self.table = table


class EmbeddingError(DevAssistError):
    """An embedding pipeline could not be built or could not embed text."""


class StoreError(DevAssistError):
    """A write to the structured store or the vector index failed."""
