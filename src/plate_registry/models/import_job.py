"""ImportJob model: durable progress record for one plate CSV import."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from plate_registry.models.base import Base, UUIDMixin


class ImportJob(Base, UUIDMixin):
    """Tracks one import run so out-of-process observers can follow it."""

    __tablename__ = "import_jobs"

    office_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mode: Mapped[str] = mapped_column(String(10), nullable=False, default="bounded", server_default="bounded")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="PENDING", server_default="PENDING", index=True
    )

    # Row counts; total_rows stays -1 until the source is fully counted
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=-1, server_default="-1")
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    inserted_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    rejected_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    skipped_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    batches_committed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Failure tracking
    failure_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_log: Mapped[dict | None] = mapped_column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    # Metadata
    triggered_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
