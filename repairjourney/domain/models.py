from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON elsewhere (local sqlite databases).
JsonType = JSON().with_variant(JSONB(), "postgresql")

SESSION_STATUSES = ("started", "diagnosing", "confirmed", "guided", "completed")


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String, unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class RepairSession(Base):
    __tablename__ = "repair_sessions"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        Index("ix_repair_sessions_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    device_type: Mapped[str | None] = mapped_column(String, nullable=True)
    device_brand: Mapped[str | None] = mapped_column(String, nullable=True)
    device_model: Mapped[str | None] = mapped_column(String, nullable=True)
    issue_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    symptoms: Mapped[list[str] | None] = mapped_column(JsonType, nullable=True)
    status: Mapped[str] = mapped_column(String, default="started", server_default="started")
    # Pointer to the current consolidated artifact; written only by the consolidator.
    metadata_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Journey merge state, updated in the same statement as metadata_url.
    initial_submission: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    diagnostic_results: Mapped[list[Any] | None] = mapped_column(JsonType, nullable=True)
    issue_confirmation: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    repair_guide: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class RepairSessionFile(Base):
    __tablename__ = "repair_session_files"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        Index("ix_repair_session_files_session_purpose", "repair_session_id", "file_purpose"),
    )

    # Audit row per persisted artifact; never mutated after insert.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repair_session_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repair_sessions.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_name: Mapped[str] = mapped_column(String)
    file_url: Mapped[str] = mapped_column(Text)
    file_purpose: Mapped[str] = mapped_column(String)
    step_name: Mapped[str | None] = mapped_column(String, nullable=True)
    content_type: Mapped[str] = mapped_column(String, default="application/json")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UserInteraction(Base):
    __tablename__ = "user_interactions"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    repair_request_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    interaction_type: Mapped[str] = mapped_column(String)
    content: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class RepairAnalytics(Base):
    __tablename__ = "repair_analytics"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repair_request_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String)
    event_data: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
