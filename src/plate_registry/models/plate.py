"""Plate model: one physical licence plate record owned by a branch office."""

import uuid

from sqlalchemy import Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from plate_registry.models.base import Base, TimestampMixin, UUIDMixin


class Plate(Base, UUIDMixin, TimestampMixin):
    """Plate record; ``plate_number`` and ``mv_file`` are independently unique."""

    __tablename__ = "plates"

    plate_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    mv_file: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    dealer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    office_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="Available", server_default="Available")

    # Import that created the row (None for single-record edits)
    import_job_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
