from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.servicequeue.models import Base

if TYPE_CHECKING:
    from app.servicequeue.models import User
    from app.servicequeue.modules.service_requests.models import ServiceRequest


class SubTask(Base):
    __tablename__ = "sub_tasks"
    __table_args__ = (
        Index("idx_subtasks_request", "request_id"),
        Index("idx_subtasks_assigned_to", "assigned_to_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    request_id: Mapped[int] = mapped_column(ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False)
    task_description: Mapped[str] = mapped_column(Text, nullable=False)
    assigned_to_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    assigned_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    task_status: Mapped[str] = mapped_column(String(32), nullable=False, default="new")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    request: Mapped["ServiceRequest"] = relationship(lazy="selectin")
    assigned_to: Mapped["User"] = relationship(foreign_keys=[assigned_to_id], lazy="selectin")
    assigned_by: Mapped["User"] = relationship(foreign_keys=[assigned_by_id], lazy="selectin")
