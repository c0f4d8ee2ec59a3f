"""Import API endpoints.

POST /imports/plates (multipart upload, background), POST /imports/plates/stream
(raw body streamed through the pipeline in-request), GET /imports (list jobs),
GET /imports/{job_id} (status), GET /imports/{job_id}/report (audit report),
POST /imports/{job_id}/cancel.
"""

import tempfile
import uuid
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import ClientDisconnect

from plate_registry.core.background import JobStatus, task_runner
from plate_registry.core.config import Settings, get_settings
from plate_registry.core.dependencies import get_async_session, get_record_store
from plate_registry.lib.importer.errors import StreamReadError
from plate_registry.lib.importer.types import ReasonCode
from plate_registry.schemas.common import PaginationMeta, PaginationParams
from plate_registry.schemas.imports import (
    CancelResponse,
    ImportJobResponse,
    ImportRunResponse,
    PaginatedImportJobResponse,
)
from plate_registry.services import job_service
from plate_registry.services.import_service import IngestionOrchestrator, RunConfig, iter_job_report
from plate_registry.services.store import SqlAlchemyRecordStore

router = APIRouter(prefix="/imports", tags=["imports"])

_NO_FILE_DETAIL = "No file provided"
_NOT_FOUND_DETAIL = "Import job not found"


@router.post("/plates", response_model=ImportJobResponse, status_code=202)
async def import_plates(
    file: UploadFile,
    office_id: int,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    store: Annotated[SqlAlchemyRecordStore, Depends(get_record_store)],
    settings: Annotated[Settings, Depends(get_settings)],
    initial_status: str | None = None,
    precheck: bool | None = None,
) -> ImportJobResponse:
    """Upload a plate CSV and import it in the background (bounded mode)."""
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_NO_FILE_DETAIL)

    content = await file.read()
    if len(content) > settings.import_max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds maximum size of {settings.import_max_upload_mb} MB",
        )
    with tempfile.NamedTemporaryFile(delete=False, suffix=".csv") as tmp:
        tmp.write(content)
        tmp_path = Path(tmp.name)

    # The background task unlinks the file once it is submitted
    submitted = False
    try:
        job = await job_service.create_import_job(session, office_id=office_id, file_name=file.filename, mode="bounded")
        config = RunConfig.from_settings(
            settings,
            office_id=office_id,
            initial_status=initial_status,
            precheck_enabled=precheck,
            file_name=file.filename,
        )
        cancel_token = task_runner.cancel_token(str(job.id))

        async def _run_import() -> None:
            try:
                orchestrator = IngestionOrchestrator(store, config, cancel_token=cancel_token)
                await orchestrator.run_bounded(tmp_path, job_id=job.id)
            finally:
                tmp_path.unlink(missing_ok=True)

        task_runner.submit_task(_run_import(), job_id=str(job.id))
        submitted = True
    finally:
        if not submitted:
            tmp_path.unlink(missing_ok=True)

    logger.info(f"Queued import job {job.id} for {file.filename} ({len(content)} bytes)")
    return ImportJobResponse.model_validate(job)


@router.post("/plates/stream", response_model=ImportRunResponse)
async def import_plates_stream(
    request: Request,
    x_office_id: Annotated[int, Header()],
    store: Annotated[SqlAlchemyRecordStore, Depends(get_record_store)],
    settings: Annotated[Settings, Depends(get_settings)],
    x_file_name: Annotated[str | None, Header()] = None,
    initial_status: str | None = None,
) -> ImportRunResponse | JSONResponse:
    """Stream a raw CSV request body through the import pipeline.

    Batches are written while the body is still arriving.  Responds 200
    when the import completed and 400 (same body) when it failed.
    """

    async def _chunks() -> AsyncIterator[bytes]:
        try:
            async for chunk in request.stream():
                yield chunk
        except ClientDisconnect as exc:
            msg = "Client disconnected during upload"
            raise StreamReadError(msg) from exc

    config = RunConfig.from_settings(
        settings,
        office_id=x_office_id,
        initial_status=initial_status,
        file_name=x_file_name,
    )
    result = await IngestionOrchestrator(store, config).run_stream(_chunks())

    job = await store.get_job(result.job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND_DETAIL)

    body = ImportRunResponse(
        job=ImportJobResponse.model_validate(job),
        error=result.error,
        duplicate_in_file=result.audit.count(ReasonCode.FILE_DUPLICATE_PRIMARY)
        + result.audit.count(ReasonCode.FILE_DUPLICATE_SECONDARY),
        duplicate_in_store=result.audit.count(ReasonCode.STORE_DUPLICATE),
        concurrent_conflict=result.audit.count(ReasonCode.CONCURRENT_CONFLICT),
    )
    if result.error is not None:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(mode="json"))
    return body


@router.get("", response_model=PaginatedImportJobResponse)
async def list_imports(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    pagination: Annotated[PaginationParams, Depends()],
    office_id: int | None = None,
    import_status: str | None = None,
) -> PaginatedImportJobResponse:
    """List import jobs with optional filters."""
    jobs, total = await job_service.list_import_jobs(
        session, office_id=office_id, status=import_status, page=pagination.page, page_size=pagination.page_size
    )
    return PaginatedImportJobResponse(
        items=[ImportJobResponse.model_validate(j) for j in jobs],
        pagination=PaginationMeta.for_page(total, pagination),
    )


@router.get("/{job_id}", response_model=ImportJobResponse)
async def get_import(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> ImportJobResponse:
    """Get import job status by ID."""
    job = await job_service.get_import_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND_DETAIL)
    return ImportJobResponse.model_validate(job)


@router.get("/{job_id}/report")
async def get_import_report(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> StreamingResponse:
    """Download the plain-text audit report of a finished import."""
    job = await job_service.get_import_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND_DETAIL)
    if not JobStatus(job.status).is_terminal:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Import job has not finished yet")

    return StreamingResponse(
        iter_job_report(job),
        media_type="text/plain",
        headers={"Content-Disposition": f'attachment; filename="import-{job.id}-report.txt"'},
    )


@router.post("/{job_id}/cancel", response_model=CancelResponse, status_code=202)
async def cancel_import(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> CancelResponse:
    """Request cancellation of a running background import.

    The import stops before its next batch; committed batches are kept.
    """
    job = await job_service.get_import_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND_DETAIL)
    if JobStatus(job.status).is_terminal:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Import job already {job.status}")
    if not task_runner.request_cancel(str(job_id)):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Import job is not running in this process",
        )
    return CancelResponse(job_id=job_id, cancel_requested=True, detail="Cancellation requested")
