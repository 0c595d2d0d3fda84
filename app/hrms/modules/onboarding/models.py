from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, select
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.hrms.models import Base, User

if TYPE_CHECKING:
    from app.hrms.modules.employees.models import Employee


class OnboardingChecklistItem(Base):
    __tablename__ = "onboarding_checklist_items"
    __table_args__ = (
        Index("idx_onboarding_items_employee", "employee_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)

    # Stable key for standard items ("personal_profile", "personality_test", ...); None for ad hoc items
    key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    requires_document: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    document_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    document_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    document_uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    document_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Psychometric gate: test type that must be completed before the item can be ticked
    psychometric_test_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    psychometric_attempt_id: Mapped[int | None] = mapped_column(
        ForeignKey("psychometric_attempts.id", ondelete="SET NULL"), nullable=True
    )
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    employee: Mapped["Employee"] = relationship("Employee", back_populates="checklist_items")

    @classmethod
    def in_org(cls, organization_id: str | None):
        from app.hrms.modules.employees.models import Employee

        return cls.employee_id.in_(select(Employee.id).where(Employee.in_org(organization_id)).correlate(None))


class TeamIntroductionMeeting(Base):
    """A new hire's introduction to their team; attending it ticks the `team_meeting` checklist item."""

    __tablename__ = "team_introduction_meetings"
    __table_args__ = (
        Index("idx_team_meetings_employee", "employee_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    meeting_type: Mapped[str] = mapped_column(String(32), nullable=False, default="in_person")  # in_person|virtual
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(String(512), nullable=True)
    attendee_user_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="scheduled")  # scheduled|confirmed|completed|cancelled
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    scheduled_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    employee: Mapped["Employee"] = relationship("Employee", lazy="selectin")
    scheduled_by: Mapped[User | None] = relationship(lazy="selectin")

    @classmethod
    def in_org(cls, organization_id: str | None):
        from app.hrms.modules.employees.models import Employee

        return cls.employee_id.in_(select(Employee.id).where(Employee.in_org(organization_id)).correlate(None))
