from __future__ import annotations

from datetime import date, datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.servicequeue.models import Base

if TYPE_CHECKING:
    from app.servicequeue.models import Company, User


class ServiceRequest(Base):
    __tablename__ = "service_requests"
    __table_args__ = (
        Index("idx_requests_company", "company_id"),
        Index("idx_requests_status", "task_status"),
        Index("idx_requests_assigned_to", "assigned_to_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_queue_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    insured: Mapped[str] = mapped_column(String(255), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    task_status: Mapped[str] = mapped_column(String(32), nullable=False, default="new")
    service_request_narrative: Mapped[str] = mapped_column(Text, nullable=False)
    service_queue_category: Mapped[str] = mapped_column(String(64), nullable=False, default="other")

    assigned_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    modified_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    in_progress_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    time_spent: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    company: Mapped["Company"] = relationship(lazy="selectin")
    assigned_to: Mapped["User | None"] = relationship(foreign_keys=[assigned_to_id], lazy="selectin")
    assigned_by: Mapped["User"] = relationship(foreign_keys=[assigned_by_id], lazy="selectin")
    modified_by: Mapped["User | None"] = relationship(foreign_keys=[modified_by_id], lazy="selectin")

    notes: Mapped[list["RequestNote"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestNote.created_at.desc()",
    )
    attachments: Mapped[list["RequestAttachment"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestAttachment.created_at.desc()",
    )

    def is_overdue(self, today: date | None = None) -> bool:
        today = today or date.today()
        return self.due_date is not None and self.due_date < today and self.task_status != "closed"


class RequestNote(Base):
    __tablename__ = "request_notes"
    __table_args__ = (Index("idx_notes_request", "request_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    note_content: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    request: Mapped[ServiceRequest] = relationship(back_populates="notes", lazy="selectin")
    author: Mapped["User"] = relationship(lazy="selectin")


class RequestAttachment(Base):
    __tablename__ = "request_attachments"
    __table_args__ = (Index("idx_attachments_request", "request_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(512), nullable=False)  # storage key
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    uploaded_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    request: Mapped[ServiceRequest] = relationship(back_populates="attachments", lazy="selectin")
    uploaded_by: Mapped["User"] = relationship(lazy="selectin")
