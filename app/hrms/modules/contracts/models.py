from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.hrms.models import Base, User, org_user_ids


class EmploymentContract(Base):
    __tablename__ = "employment_contracts"
    __table_args__ = (
        Index("idx_employment_contracts_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[str] = mapped_column(String(255), nullable=False)
    salary: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending|signed|declined|expired
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    signed_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    signed_user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship(foreign_keys=[user_id], lazy="selectin")
    created_by: Mapped[User | None] = relationship(foreign_keys=[created_by_user_id], lazy="selectin")

    @classmethod
    def in_org(cls, organization_id: str | None):
        return cls.user_id.in_(org_user_ids(organization_id))
