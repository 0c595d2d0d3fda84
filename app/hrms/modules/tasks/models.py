from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.hrms.models import Base, User, org_user_ids


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("idx_tasks_assignee", "assigned_to_user_id"),
        Index("idx_tasks_status_due", "status", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    assigned_to_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    assigned_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")  # low|medium|high|urgent
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending|in_progress|completed|overdue
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    overdue_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    assignee: Mapped[User] = relationship(foreign_keys=[assigned_to_user_id], lazy="selectin")
    assigner: Mapped[User | None] = relationship(foreign_keys=[assigned_by_user_id], lazy="selectin")
    updates: Mapped[list["TaskUpdate"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskUpdate.created_at.desc()",
    )
    requests: Mapped[list["TaskRequest"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskRequest.created_at.desc()",
    )

    @classmethod
    def in_org(cls, organization_id: str | None):
        return cls.assigned_to_user_id.in_(org_user_ids(organization_id))


class TaskUpdate(Base):
    """Daily progress note from the assignee."""

    __tablename__ = "task_updates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    update_text: Mapped[str] = mapped_column(Text, nullable=False)
    progress_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hours_worked: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    task: Mapped[Task] = relationship(back_populates="updates")
    user: Mapped[User | None] = relationship(lazy="selectin")


class TaskRequest(Base):
    __tablename__ = "task_requests"
    __table_args__ = (
        Index("idx_task_requests_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int | None] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True)
    requester_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # time_extension | document_request | help_request | clarification
    request_type: Mapped[str] = mapped_column(String(32), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    requested_extension_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending|approved|rejected
    response: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    task: Mapped[Task | None] = relationship(back_populates="requests", lazy="selectin")
    requester: Mapped[User] = relationship(foreign_keys=[requester_user_id], lazy="selectin")
    responder: Mapped[User | None] = relationship(foreign_keys=[responded_by_user_id], lazy="selectin")

    @classmethod
    def in_org(cls, organization_id: str | None):
        return cls.requester_user_id.in_(org_user_ids(organization_id))
