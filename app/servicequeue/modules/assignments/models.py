from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.servicequeue.models import Base

if TYPE_CHECKING:
    from app.servicequeue.models import User
    from app.servicequeue.modules.service_requests.models import ServiceRequest


class AssignmentChangeRequest(Base):
    __tablename__ = "assignment_change_requests"
    __table_args__ = (
        Index("idx_assignment_changes_request", "request_id"),
        Index("idx_assignment_changes_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False)
    requested_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    current_assignee_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    requested_assignee_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending, approved, rejected
    reviewed_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    review_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    request: Mapped["ServiceRequest"] = relationship(lazy="selectin")
    requested_by: Mapped["User"] = relationship(foreign_keys=[requested_by_id], lazy="selectin")
    current_assignee: Mapped["User | None"] = relationship(foreign_keys=[current_assignee_id], lazy="selectin")
    requested_assignee: Mapped["User | None"] = relationship(foreign_keys=[requested_assignee_id], lazy="selectin")
    reviewed_by: Mapped["User | None"] = relationship(foreign_keys=[reviewed_by_id], lazy="selectin")
