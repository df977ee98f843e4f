import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class DeployRunState(str, enum.Enum):
    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    skipped = "skipped"


class DeployTrigger(str, enum.Enum):
    webhook = "webhook"
    manual = "manual"


class DeployLog(Base):
    """Terminal record of a finished deploy run."""

    __tablename__ = "deploy_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    project_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("projects.project_id"), nullable=True, index=True
    )
    project_key: Mapped[str] = mapped_column(String(200), nullable=False)
    trigger: Mapped[DeployTrigger] = mapped_column(Enum(DeployTrigger, name="deploytrigger"), nullable=False)
    status: Mapped[DeployRunState] = mapped_column(Enum(DeployRunState, name="deployrunstate"), nullable=False)
    commit_hash: Mapped[str | None] = mapped_column(String(64))
    has_changes: Mapped[bool] = mapped_column(Boolean, default=False)
    error: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), index=True
    )
