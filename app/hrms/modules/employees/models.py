from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.hrms.models import Base, OrgOwned, User, org_user_ids

if TYPE_CHECKING:
    from app.hrms.modules.onboarding.models import OnboardingChecklistItem


class Department(OrgOwned, Base):
    __tablename__ = "departments"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_departments_org_name"),
        UniqueConstraint("organization_id", "code", name="uq_departments_org_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False)  # e.g. "HR", "OPS"
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    head_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    head: Mapped[User | None] = relationship(foreign_keys=[head_user_id], lazy="selectin")


class Employee(Base):
    __tablename__ = "employees"
    __table_args__ = (
        Index("idx_employees_department", "department_id"),
        Index("idx_employees_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    employee_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # EMP001

    department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)
    position: Mapped[str | None] = mapped_column(String(128), nullable=True)
    employment_type: Mapped[str] = mapped_column(String(32), nullable=False, default="full_time")
    manager_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    salary: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    # onboarding | active | on_leave | terminated
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="onboarding")
    # not_started | in_progress | completed
    onboarding_status: Mapped[str] = mapped_column(String(32), nullable=False, default="not_started")
    onboarding_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Personal profile
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_picture_key: Mapped[str | None] = mapped_column(String(512), nullable=True)

    emergency_contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    emergency_contact_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    emergency_contact_relationship: Mapped[str | None] = mapped_column(String(64), nullable=True)

    bank_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bank_routing_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    user: Mapped[User] = relationship(foreign_keys=[user_id], lazy="selectin")
    manager: Mapped[User | None] = relationship(foreign_keys=[manager_user_id], lazy="selectin")
    department: Mapped[Department | None] = relationship(lazy="selectin")
    checklist_items: Mapped[list["OnboardingChecklistItem"]] = relationship(
        "OnboardingChecklistItem",
        back_populates="employee",
        cascade="all, delete-orphan",
        order_by="OnboardingChecklistItem.order",
        lazy="selectin",
    )

    @property
    def display_name(self) -> str:
        return self.user.full_name if self.user else self.employee_number

    @classmethod
    def in_org(cls, organization_id: str | None):
        return cls.user_id.in_(org_user_ids(organization_id))
