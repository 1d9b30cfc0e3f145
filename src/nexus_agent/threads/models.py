"""SQLAlchemy models for agent threads."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class ThreadRecord(Base):
    """Persistent row for one thread.

    Messages and context are JSONB documents replaced wholesale on every
    write. The partial unique index guarantees at most one open thread per
    alert fingerprint even when several workers ingest the same alert.
    """

    __tablename__ = "threads"
    __table_args__ = (
        Index("idx_threads_status", "status"),
        Index("idx_threads_source", "source", "source_id"),
        Index("idx_threads_updated", "updated_at"),
        Index(
            "uq_threads_open_alert",
            "source",
            "source_id",
            unique=True,
            postgresql_where=text("source = 'alert' AND status IN ('active', 'sleeping')"),
        ),
        {"schema": "agent"},
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), default="active")
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(16))
    source_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    messages: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)
    context: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    wake_job_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    wake_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
    )
