"""Fatal import pipeline errors.

Row defects and key conflicts are never raised; they are folded into
counters and the audit trail. Only the errors below abort a run.
"""


class ImportPipelineError(Exception):
    """Base class for errors that abort an import run."""

    failure_reason = "internal_error"


class HeaderError(ImportPipelineError, ValueError):
    """The source header is missing or has fewer than two usable columns."""

    failure_reason = "stream_error"


class StreamReadError(ImportPipelineError):
    """Reading or decoding the source failed."""

    failure_reason = "stream_error"


class BatchWriteError(ImportPipelineError):
    """A batch could not be prechecked or written after retries."""

    failure_reason = "store_error"

    def __init__(self, batch_number: int, detail: str) -> None:
        self.batch_number = batch_number
        self.detail = detail
        super().__init__(f"Batch {batch_number} failed: {detail}")


class ImportCancelledError(ImportPipelineError):
    """Cancellation was requested between batches."""

    failure_reason = "cancelled"
