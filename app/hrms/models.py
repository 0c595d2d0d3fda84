from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Select, String, Text, UniqueConstraint, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class UserRole(Base):
    __tablename__ = "user_roles"
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class RolePermission(Base):
    __tablename__ = "role_permissions"
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    username: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # active | onboarding | inactive
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")

    # One-time invitation token for the public onboarding page
    onboarding_token: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)

    # None = host organisation (full feature set); trial/customer accounts carry their own id
    organization_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    trial_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    trial_warning_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    subscription_plan: Mapped[str | None] = mapped_column(String(32), nullable=True)
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)  # trial|active|past_due|canceled|expired
    stripe_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    contract_signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    contract_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    roles: Mapped[list["Role"]] = relationship(
        secondary="user_roles",
        back_populates="users",
        lazy="selectin",
    )

    @property
    def full_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email

    @property
    def role_keys(self) -> list[str]:
        return sorted(r.key for r in self.roles)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "hr_admin"
    name: Mapped[str] = mapped_column(String(128), nullable=False)  # display name
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list[User]] = relationship(secondary="user_roles", back_populates="roles", lazy="selectin")
    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "leave.approve"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list[Role]] = relationship(secondary="role_permissions", back_populates="permissions", lazy="selectin")


def org_user_ids(organization_id: str | None) -> Select:
    """Ids of the users in an organisation. None is the host organisation."""
    q = select(User.id).correlate(None)
    if organization_id is None:
        return q.where(User.organization_id.is_(None))
    return q.where(User.organization_id == organization_id)


class OrgOwned:
    """
    Records with no owning user keep the creator's organisation on the row.
    Models owned through a user or a parent record define their own `in_org` instead.
    """

    organization_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    @classmethod
    def in_org(cls, organization_id: str | None):
        if organization_id is None:
            return cls.organization_id.is_(None)
        return cls.organization_id == organization_id


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Kept generic; module tables refer to their rows through entity_type/entity_id.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "leave_request.approve"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "LeaveRequest"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.hrms.modules.notifications.models import Notification  # noqa: E402,F401
from app.hrms.modules.employees.models import Department, Employee  # noqa: E402,F401
from app.hrms.modules.onboarding.models import OnboardingChecklistItem, TeamIntroductionMeeting  # noqa: E402,F401
from app.hrms.modules.tasks.models import Task, TaskRequest, TaskUpdate  # noqa: E402,F401
from app.hrms.modules.projects.models import Project, ProjectMember, ProjectTask  # noqa: E402,F401
from app.hrms.modules.leave.models import LeaveBalance, LeaveRequest  # noqa: E402,F401
from app.hrms.modules.logistics.models import (  # noqa: E402,F401
    LogisticsExpense,
    LogisticsItem,
    LogisticsMovement,
    LogisticsRequest,
)
from app.hrms.modules.recognition.models import Recognition  # noqa: E402,F401
from app.hrms.modules.psychometrics.models import (  # noqa: E402,F401
    PsychometricAttempt,
    PsychometricQuestion,
    PsychometricTest,
)
from app.hrms.modules.contracts.models import EmploymentContract  # noqa: E402,F401
from app.hrms.modules.billing.models import (  # noqa: E402,F401
    BillingEvent,
    Customer,
    Payment,
    Subscription,
    SubscriptionPlan,
    TrialRequest,
)
from app.hrms.modules.social_media.models import (  # noqa: E402,F401
    ConnectedSocialAccount,
    ContentItem,
    SocialMediaCampaign,
)
