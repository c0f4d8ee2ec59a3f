"""Background task runner abstraction.

Provides a protocol for submitting and tracking background tasks, with an
in-process asyncio implementation.  Each submitted import also gets a
``CancelToken`` so a later request can stop it between batches.
"""

import asyncio
import enum
import uuid
from collections.abc import Coroutine
from typing import Any, Protocol

from loguru import logger


class JobStatus(enum.StrEnum):
    """Lifecycle status of an import job (and of its background task)."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class CancelToken:
    """Cooperative cancellation flag, polled between batches."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class BackgroundTaskRunner(Protocol):
    """Protocol for background task execution."""

    def submit_task(self, coro: Coroutine[Any, Any, Any], job_id: str | None = None) -> str:
        """Submit an async task for background execution.

        Args:
            coro: The coroutine to execute.
            job_id: ID to track the task under; generated when omitted.

        Returns:
            A job ID string for tracking.
        """
        ...

    def get_status(self, job_id: str) -> JobStatus:
        """Get the current status of a background job."""
        ...

    def cancel_token(self, job_id: str) -> CancelToken:
        """Return the cancellation token for a job, creating it if needed."""
        ...

    def request_cancel(self, job_id: str) -> bool:
        """Request cancellation; returns False if the job is not running here."""
        ...


class InProcessTaskRunner:
    """In-process background task runner using asyncio.

    Tasks run in the same process as the API server using
    ``asyncio.create_task()``.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, JobStatus] = {}
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._tokens: dict[str, CancelToken] = {}

    def submit_task(self, coro: Coroutine[Any, Any, Any], job_id: str | None = None) -> str:
        """Submit an async task for background execution.

        Args:
            coro: The coroutine to execute.
            job_id: ID to track the task under; generated when omitted.

        Returns:
            A job ID string for tracking.
        """
        job_id = job_id or str(uuid.uuid4())
        self._jobs[job_id] = JobStatus.PENDING

        async def _run() -> None:
            self._jobs[job_id] = JobStatus.PROCESSING
            try:
                await coro
                self._jobs[job_id] = JobStatus.COMPLETED
            except Exception:
                self._jobs[job_id] = JobStatus.FAILED
                logger.exception(f"Background task {job_id} failed")
                raise
            finally:
                self._tokens.pop(job_id, None)
                self._tasks.pop(job_id, None)

        task = asyncio.create_task(_run())
        self._tasks[job_id] = task
        return job_id

    def get_status(self, job_id: str) -> JobStatus:
        """Get the current status of a background job.

        Raises:
            KeyError: If the job ID is not found.
        """
        return self._jobs[job_id]

    def cancel_token(self, job_id: str) -> CancelToken:
        return self._tokens.setdefault(job_id, CancelToken())

    def request_cancel(self, job_id: str) -> bool:
        token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Cancellation requested for job {job_id}")
        return True


# Singleton instance for the application
task_runner = InProcessTaskRunner()
