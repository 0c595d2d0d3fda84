from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.hrms.models import Base, OrgOwned, User


class PsychometricTest(Base):
    __tablename__ = "psychometric_tests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    test_name: Mapped[str] = mapped_column(String(100), nullable=False)
    # personality | cognitive | communication | technical | culture
    test_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    time_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    questions: Mapped[list["PsychometricQuestion"]] = relationship(
        back_populates="test",
        cascade="all, delete-orphan",
        order_by="PsychometricQuestion.order",
    )

    @property
    def total_questions(self) -> int:
        return len(self.questions)


class PsychometricQuestion(Base):
    __tablename__ = "psychometric_questions"
    __table_args__ = (
        Index("idx_psychometric_questions_test_order", "test_id", "order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    test_id: Mapped[int] = mapped_column(ForeignKey("psychometric_tests.id", ondelete="CASCADE"), nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(String(50), nullable=False)  # scale|yes_no|multiple_choice
    options: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    correct_answer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # 16PF factor name for personality tests, domain for cognitive tests
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    test: Mapped[PsychometricTest] = relationship(back_populates="questions")


class PsychometricAttempt(OrgOwned, Base):
    __tablename__ = "psychometric_attempts"
    __table_args__ = (
        Index("idx_psychometric_attempts_email", "candidate_email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    test_id: Mapped[int] = mapped_column(ForeignKey("psychometric_tests.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    candidate_email: Mapped[str] = mapped_column(String(255), nullable=False)
    candidate_name: Mapped[str] = mapped_column(String(255), nullable=False)
    # handed to the candidate on start; required to submit
    access_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # [{"question_id": int, "answer": str}, ...]
    responses: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    time_spent: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds
    total_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    percentage_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    results: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="in_progress")  # in_progress|completed|abandoned

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    test: Mapped[PsychometricTest] = relationship(lazy="selectin")
    user: Mapped[User | None] = relationship(lazy="selectin")
