from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, select
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.hrms.models import Base, User

if TYPE_CHECKING:
    from app.hrms.modules.employees.models import Employee


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (
        UniqueConstraint("employee_id", "year", name="uq_leave_balances_employee_year"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    sick_leave_paid_total: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    sick_leave_paid_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sick_leave_unpaid_total: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    sick_leave_unpaid_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    casual_leave_paid_total: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    casual_leave_paid_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    casual_leave_unpaid_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    bereavement_leave_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    public_holidays_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unpaid_leave_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        Index("idx_leave_requests_employee", "employee_id"),
        Index("idx_leave_requests_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    requested_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # sick_leave | casual_leave | public_holiday | bereavement_leave | unpaid_leave
    leave_type: Mapped[str] = mapped_column(String(32), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_days: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    # pending | approved | rejected | cancelled
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")

    medical_certificate_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    medical_certificate_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    approved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    admin_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    admin_processed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    admin_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    bdm_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    crm_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    employee: Mapped["Employee"] = relationship("Employee", lazy="selectin")
    approver: Mapped[User | None] = relationship(foreign_keys=[approved_by_user_id], lazy="selectin")

    @classmethod
    def in_org(cls, organization_id: str | None):
        from app.hrms.modules.employees.models import Employee

        return cls.employee_id.in_(select(Employee.id).where(Employee.in_org(organization_id)).correlate(None))
