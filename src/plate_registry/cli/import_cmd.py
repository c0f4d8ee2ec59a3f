"""Import CLI commands for plate CSV files and import job inspection."""

import asyncio
import uuid
from enum import StrEnum
from pathlib import Path

import typer

import_app = typer.Typer()


class ImportMode(StrEnum):
    BOUNDED = "bounded"
    STREAM = "stream"


@import_app.command("plates")
def import_plates(
    file: Path = typer.Argument(..., help="Path to plate CSV file", exists=True, dir_okay=False),  # noqa: B008
    office_id: int = typer.Option(..., "--office-id", help="Branch office that owns the plates"),
    mode: ImportMode = typer.Option(ImportMode.BOUNDED, "--mode", help="bounded (load whole file) or stream"),  # noqa: B008
    batch_size: int | None = typer.Option(None, "--batch-size", min=1, help="Rows per batch"),
    status: str | None = typer.Option(None, "--status", help="Status for new plates (default from settings)"),
    no_precheck: bool = typer.Option(False, "--no-precheck", help="Skip the existence precheck"),
    report_out: Path | None = typer.Option(None, "--report-out", help="Write the audit report to this file"),  # noqa: B008
) -> None:
    """Import plate records from a CSV file."""
    ok = asyncio.run(_import_plates(file, office_id, mode, batch_size, status, no_precheck, report_out))
    if not ok:
        raise typer.Exit(code=1)


async def _import_plates(
    file_path: Path,
    office_id: int,
    mode: ImportMode,
    batch_size: int | None,
    initial_status: str | None,
    no_precheck: bool,
    report_out: Path | None,
) -> bool:
    """Async implementation of plate import; returns True when the job completed."""
    from plate_registry.core.config import get_settings
    from plate_registry.core.database import dispose_engine, get_session_factory, init_engine
    from plate_registry.lib.importer import iter_file_chunks
    from plate_registry.services.import_service import IngestionOrchestrator, RunConfig
    from plate_registry.services.store import SqlAlchemyRecordStore

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        store = SqlAlchemyRecordStore(get_session_factory())
        config = RunConfig.from_settings(
            settings,
            office_id=office_id,
            batch_size=batch_size,
            initial_status=initial_status,
            precheck_enabled=False if no_precheck else None,
            file_name=file_path.name,
        )
        orchestrator = IngestionOrchestrator(store, config)
        typer.echo(f"Processing {file_path} ({mode} mode, batch size {config.batch_size})...")

        if mode is ImportMode.STREAM:
            result = await orchestrator.run_stream(iter_file_chunks(file_path, settings.import_stream_chunk_size))
        else:
            result = await orchestrator.run_bounded(file_path)

        job = result.job
        typer.echo(f"\nImport job {job.job_id} {job.status}:")
        typer.echo(f"  Total rows:     {job.total_rows}")
        typer.echo(f"  Processed:      {job.processed_rows}")
        typer.echo(f"  Inserted:       {job.inserted_rows}")
        typer.echo(f"  Rejected:       {job.rejected_rows}")
        typer.echo(f"  Skipped:        {job.skipped_rows}")
        typer.echo(f"  Batches:        {job.batches_committed}")
        if result.error:
            typer.echo(f"  Error:          {result.error}", err=True)

        if report_out is not None:
            report_out.write_text(result.report, encoding="utf-8")
            typer.echo(f"Audit report written to {report_out}")

        return result.succeeded
    finally:
        await dispose_engine()


@import_app.command("status")
def import_status(
    job_id: uuid.UUID = typer.Argument(..., help="Import job ID"),  # noqa: B008
) -> None:
    """Show the progress of an import job."""
    asyncio.run(_import_status(job_id))


async def _import_status(job_id: uuid.UUID) -> None:
    from plate_registry.core.config import get_settings
    from plate_registry.core.database import dispose_engine, get_session_factory, init_engine
    from plate_registry.services.job_service import get_import_job

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            job = await get_import_job(session, job_id)
        if job is None:
            typer.echo(f"Import job {job_id} not found", err=True)
            raise typer.Exit(code=1)

        total = "unknown" if job.total_rows < 0 else str(job.total_rows)
        typer.echo(f"Job:        {job.id}")
        typer.echo(f"Office:     {job.office_id}")
        typer.echo(f"File:       {job.file_name or '-'} ({job.mode})")
        typer.echo(f"Status:     {job.status}")
        typer.echo(f"Progress:   {job.processed_rows}/{total} rows, {job.batches_committed} batches")
        typer.echo(f"Inserted:   {job.inserted_rows}")
        typer.echo(f"Rejected:   {job.rejected_rows}")
        typer.echo(f"Skipped:    {job.skipped_rows}")
        if job.failure_reason:
            typer.echo(f"Failure:    {job.failure_reason}: {job.error_message}")
    finally:
        await dispose_engine()


@import_app.command("report")
def import_report(
    job_id: uuid.UUID = typer.Argument(..., help="Import job ID"),  # noqa: B008
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),  # noqa: B008
) -> None:
    """Print the audit report of a finished import job."""
    asyncio.run(_import_report(job_id, output))


async def _import_report(job_id: uuid.UUID, output: Path | None) -> None:
    from plate_registry.core.config import get_settings
    from plate_registry.core.database import dispose_engine, get_session_factory, init_engine
    from plate_registry.services.import_service import iter_job_report
    from plate_registry.services.job_service import get_import_job

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            job = await get_import_job(session, job_id)
        if job is None:
            typer.echo(f"Import job {job_id} not found", err=True)
            raise typer.Exit(code=1)

        if output is None:
            for line in iter_job_report(job):
                typer.echo(line, nl=False)
        else:
            with output.open("w", encoding="utf-8") as f:
                f.writelines(iter_job_report(job))
            typer.echo(f"Audit report written to {output}")
    finally:
        await dispose_engine()
