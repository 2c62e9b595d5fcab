"""Exceptions raised by the ingestion pipeline."""


class IngestionError(Exception):
    """Base class for ingestion failures."""


class UploadFormatError(IngestionError):
    """The uploaded file is missing, empty, unreadable or of an unsupported type."""


class ChunkWriteError(IngestionError):
    """A batched insert failed; the rows of that chunk were not written."""

    def __init__(self, message: str, row_count: int):
        super().__init__(message)
        self.row_count = row_count


class InvalidPartitionError(IngestionError):
    """The target warehouse is missing or unknown."""
