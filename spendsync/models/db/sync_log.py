from __future__ import annotations
"""SQLAlchemy model for per (user, platform) sync state and lock."""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, Enum, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from spendsync.database import Base
from .enums import SyncStatus


class SyncLog(Base):
    __tablename__ = "sync_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[SyncStatus] = mapped_column(
        Enum(SyncStatus, values_callable=lambda e: [m.value for m in e]), nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    records_synced: Mapped[int] = mapped_column(Integer, default=0)

    # Retry bookkeeping for the orchestrator
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_sync_log_user_platform"),
    )
