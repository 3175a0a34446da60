from __future__ import annotations
"""SQLAlchemy model for stored heartbeats."""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, Enum, Boolean, Float, JSON, BigInteger, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from heartbeat_importer.database import Base
from .enums import EntityType

class Heartbeat(Base):
    __tablename__ = "heartbeats"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    sender: Mapped[str] = mapped_column(String, nullable=False, index=True)
    entity: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[EntityType] = mapped_column(Enum(EntityType), nullable=False)
    time_sent: Mapped[float] = mapped_column(Float, nullable=False, index=True)

    user_agent: Mapped[str] = mapped_column(Text, nullable=False)
    editor: Mapped[str | None] = mapped_column(String, nullable=True)
    plugin: Mapped[str | None] = mapped_column(String, nullable=True)
    platform: Mapped[str | None] = mapped_column(String, nullable=True)
    machine: Mapped[str | None] = mapped_column(String, nullable=True)

    branch: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    cursorpos: Mapped[str | None] = mapped_column(String, nullable=True)
    dependencies: Mapped[list | None] = mapped_column(JSON, nullable=True)
    file_lines: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_write: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    language: Mapped[str | None] = mapped_column(String, nullable=True)
    lineno: Mapped[str | None] = mapped_column(String, nullable=True)
    project: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    # Provenance tag, e.g. "wakatime-import"; NULL for heartbeats sent by editor plugins.
    source: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    # Natural key: re-importing the same day must not duplicate records.
    __table_args__ = (
        UniqueConstraint("sender", "entity", "entity_type", "time_sent", name="uq_heartbeat_natural_key"),
    )
