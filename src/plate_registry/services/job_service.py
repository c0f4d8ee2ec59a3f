"""Import job service: session-level CRUD for ``ImportJob`` records."""

import uuid
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from plate_registry.models.import_job import ImportJob


async def create_import_job(
    session: AsyncSession,
    *,
    office_id: int,
    file_name: str | None = None,
    mode: str = "bounded",
    triggered_by: uuid.UUID | None = None,
) -> ImportJob:
    """Create a new PENDING import job record.

    Args:
        session: Database session.
        office_id: Branch office that owns the imported plates.
        file_name: Original filename, if known.
        mode: ``bounded`` or ``stream``.
        triggered_by: User ID who triggered the import.

    Returns:
        The created ImportJob.
    """
    job = ImportJob(
        office_id=office_id,
        file_name=file_name,
        mode=mode,
        status="PENDING",
        total_rows=-1,
        triggered_by=triggered_by,
    )
    session.add(job)
    await session.commit()
    await session.refresh(job)
    return job


async def update_import_job(session: AsyncSession, job_id: uuid.UUID, **fields: Any) -> None:
    """Apply a partial update to an import job and commit.

    Args:
        session: Database session.
        job_id: The import job ID.
        **fields: Column values to set.
    """
    if not fields:
        return
    await session.execute(update(ImportJob).where(ImportJob.id == job_id).values(**fields))
    await session.commit()


async def get_import_job(session: AsyncSession, job_id: uuid.UUID) -> ImportJob | None:
    """Get an import job by ID.

    Args:
        session: Database session.
        job_id: The import job ID.

    Returns:
        The ImportJob or None if not found.
    """
    result = await session.execute(select(ImportJob).where(ImportJob.id == job_id))
    return result.scalar_one_or_none()


async def list_import_jobs(
    session: AsyncSession,
    *,
    office_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[ImportJob], int]:
    """List import jobs with optional filters, newest first.

    Args:
        session: Database session.
        office_id: Filter by owning office.
        status: Filter by status.
        page: Page number.
        page_size: Items per page.

    Returns:
        Tuple of (jobs, total count).
    """
    query = select(ImportJob)
    count_query = select(func.count(ImportJob.id))

    if office_id is not None:
        query = query.where(ImportJob.office_id == office_id)
        count_query = count_query.where(ImportJob.office_id == office_id)
    if status:
        query = query.where(ImportJob.status == status)
        count_query = count_query.where(ImportJob.status == status)

    total = (await session.execute(count_query)).scalar_one()
    offset = (page - 1) * page_size
    query = query.order_by(ImportJob.created_at.desc()).offset(offset).limit(page_size)
    result = await session.execute(query)
    jobs = list(result.scalars().all())

    return jobs, total
