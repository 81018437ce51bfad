from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Float, String, Integer, DateTime, Enum as SQLEnum, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db.database import Base


class RunStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_REVIEW = "awaiting_review"
    MANUAL_REQUIRED = "manual_required"
    FAILED = "failed"
    PAUSED = "paused"


class ApplicationRun(Base):
    """一次申请流程的运行记录，对应 application_runs 表。"""

    __tablename__ = "application_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    link: Mapped[str] = mapped_column(String(1024), nullable=False)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[RunStatus] = mapped_column(
        SQLEnum(RunStatus),
        default=RunStatus.PENDING,
        index=True,
        nullable=False,
    )
    pages_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dom_filled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    llm_filled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    agent_filled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_fields: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    final_page: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    keep_browser_open: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    cost_usd: Mapped[float | None] = mapped_column(Float, nullable=True)
    create_time: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )
    finish_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "link": self.link,
            "company": self.company,
            "title": self.title,
            "platform": self.platform,
            "status": self.status.value
            if isinstance(self.status, RunStatus)
            else self.status,
            "pages_processed": self.pages_processed,
            "dom_filled": self.dom_filled,
            "llm_filled": self.llm_filled,
            "agent_filled": self.agent_filled,
            "total_fields": self.total_fields,
            "final_page": self.final_page,
            "error": self.error,
            "keep_browser_open": self.keep_browser_open,
            "cost_usd": self.cost_usd,
            "create_time": self.create_time.isoformat() if self.create_time else None,
            "finish_time": self.finish_time.isoformat() if self.finish_time else None,
        }
