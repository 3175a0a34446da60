from __future__ import annotations
"""SQLAlchemy model for durable import queue rows."""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, Enum, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from heartbeat_importer.database import Base
from .enums import QueueRowState

class QueueRow(Base):
    __tablename__ = "import_queue"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    queue_name: Mapped[str] = mapped_column(String(128), nullable=False)
    # Canonical JSON of the job fingerprint; compared verbatim for dedup/status.
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    state: Mapped[QueueRowState] = mapped_column(Enum(QueueRowState), nullable=False, default=QueueRowState.PENDING)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Issued per claim; settling a row requires the token of the current claim.
    lease_token: Mapped[str | None] = mapped_column(String(32), nullable=True)

    __table_args__ = (
        Index("ix_import_queue_claim", "queue_name", "state", "available_at"),
        Index("ix_import_queue_payload", "queue_name", "payload"),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<QueueRow id={self.id} state={self.state.value} retry_count={self.retry_count}>"
