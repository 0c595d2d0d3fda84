"""
Psychometrics service layer.
Test/question administration, candidate attempts, scoring on submission and the onboarding hook.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.hrms.audit import record_event
from app.hrms.models import User, org_user_ids
from app.hrms.security import generate_token
from app.hrms.utils import clean, parse_bool, parse_int

from app.hrms.modules.employees.models import Employee
from app.hrms.modules.onboarding.service import record_psychometric_result

from .analysis import score_responses
from .models import PsychometricAttempt, PsychometricQuestion, PsychometricTest

logger = logging.getLogger(__name__)

TEST_TYPES = ("personality", "cognitive", "communication", "technical", "culture")
QUESTION_TYPES = ("scale", "yes_no", "multiple_choice")
SCALE_ANSWERS = range(1, 6)


class PsychometricError(ValueError):
    pass


# --- tests -------------------------------------------------------------------


def validate_test_payload(payload: dict[str, Any], *, creating: bool) -> list[str]:
    errors: list[str] = []
    if creating or "test_name" in payload:
        if not clean(payload.get("test_name")):
            errors.append("Test name is required.")
    if creating or "test_type" in payload:
        if clean(payload.get("test_type")) not in TEST_TYPES:
            errors.append(f"Test type must be one of: {', '.join(TEST_TYPES)}.")
    raw_limit = payload.get("time_limit")
    if raw_limit not in (None, ""):
        limit = parse_int(raw_limit)
        if limit is None or limit < 1:
            errors.append("Time limit must be a positive number of minutes.")
    return errors


def create_test(s: Session, payload: dict[str, Any], *, user: User | None) -> PsychometricTest:
    test = PsychometricTest(
        test_name=clean(payload.get("test_name")) or "",
        test_type=clean(payload.get("test_type")) or "",
        description=clean(payload.get("description")),
        instructions=clean(payload.get("instructions")),
        time_limit=parse_int(payload.get("time_limit")),
        is_active=parse_bool(payload.get("is_active", True)),
    )
    s.add(test)
    s.flush()
    record_event(s, actor=user, action="psychometric_test.create", entity_type="PsychometricTest", entity_id=test.id)
    return test


def update_test(s: Session, test: PsychometricTest, payload: dict[str, Any], *, user: User) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for attr, parser in (
        ("test_name", clean),
        ("test_type", clean),
        ("description", clean),
        ("instructions", clean),
        ("time_limit", parse_int),
        ("is_active", parse_bool),
    ):
        if attr not in payload:
            continue
        value = parser(payload.get(attr))
        if attr in ("test_name", "test_type") and value is None:
            continue
        if getattr(test, attr) != value:
            changes[attr] = {"from": str(getattr(test, attr)), "to": str(value)}
            setattr(test, attr, value)
    if changes:
        test.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="psychometric_test.update", entity_type="PsychometricTest", entity_id=test.id, metadata={"changes": changes})
    return changes


def deactivate_test(s: Session, test: PsychometricTest, *, user: User) -> None:
    test.is_active = False
    test.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="psychometric_test.deactivate", entity_type="PsychometricTest", entity_id=test.id)


# --- questions ---------------------------------------------------------------


def validate_question_payload(payload: dict[str, Any], *, creating: bool) -> list[str]:
    errors: list[str] = []
    if creating or "question_text" in payload:
        if not clean(payload.get("question_text")):
            errors.append("Question text is required.")
    question_type = clean(payload.get("question_type"))
    if creating or "question_type" in payload:
        if question_type not in QUESTION_TYPES:
            errors.append(f"Question type must be one of: {', '.join(QUESTION_TYPES)}.")
    options = payload.get("options")
    if options is not None and not isinstance(options, list):
        errors.append("Options must be a list.")
        options = None
    if question_type == "multiple_choice" and not options:
        errors.append("Multiple choice questions need options.")
    correct = clean(payload.get("correct_answer"))
    if correct and options and correct not in [str(o) for o in options]:
        errors.append("Correct answer must be one of the options.")
    if payload.get("order") not in (None, "") and parse_int(payload.get("order")) is None:
        errors.append("Order must be a whole number.")
    return errors


def add_question(s: Session, test: PsychometricTest, payload: dict[str, Any], *, user: User | None) -> PsychometricQuestion:
    order = parse_int(payload.get("order"))
    if order is None:
        order = (max((q.order for q in test.questions), default=0)) + 1
    question = PsychometricQuestion(
        test=test,
        question_text=clean(payload.get("question_text")) or "",
        question_type=clean(payload.get("question_type")) or "scale",
        options=payload.get("options"),
        correct_answer=clean(payload.get("correct_answer")),
        category=clean(payload.get("category")),
        order=order,
    )
    s.add(question)
    s.flush()
    test.updated_at = datetime.utcnow()
    if user is not None:
        record_event(s, actor=user, action="psychometric_question.create", entity_type="PsychometricQuestion", entity_id=question.id, metadata={"test_id": test.id})
    return question


def update_question(s: Session, question: PsychometricQuestion, payload: dict[str, Any], *, user: User) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for attr, parser in (
        ("question_text", clean),
        ("question_type", clean),
        ("options", lambda v: v),
        ("correct_answer", clean),
        ("category", clean),
        ("order", parse_int),
    ):
        if attr not in payload:
            continue
        value = parser(payload.get(attr))
        if attr in ("question_text", "question_type", "order") and value is None:
            continue
        if getattr(question, attr) != value:
            changes[attr] = {"from": str(getattr(question, attr)), "to": str(value)}
            setattr(question, attr, value)
    if changes:
        record_event(s, actor=user, action="psychometric_question.update", entity_type="PsychometricQuestion", entity_id=question.id, metadata={"changes": changes})
    return changes


def delete_question(s: Session, question: PsychometricQuestion, *, user: User) -> None:
    record_event(s, actor=user, action="psychometric_question.delete", entity_type="PsychometricQuestion", entity_id=question.id, metadata={"test_id": question.test_id})
    question.test.questions.remove(question)
    s.flush()


# --- attempts ----------------------------------------------------------------


def start_attempt(
    s: Session,
    test: PsychometricTest,
    *,
    candidate_name: str | None,
    candidate_email: str | None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    user: User | None = None,
) -> PsychometricAttempt:
    if not test.is_active:
        raise PsychometricError("This test is not currently available.")
    name = clean(candidate_name) or (user.full_name if user else None)
    email = (clean(candidate_email) or (user.email if user else "") or "").lower()
    if not name or not email or "@" not in email:
        raise PsychometricError("Candidate name and a valid email are required.")
    attempt = PsychometricAttempt(
        test=test,
        test_id=test.id,
        user_id=user.id if user else None,
        organization_id=user.organization_id if user else None,
        candidate_name=name,
        candidate_email=email,
        access_token=generate_token(24),
        responses=[],
        status="in_progress",
        ip_address=ip_address,
        user_agent=user_agent,
    )
    s.add(attempt)
    s.flush()
    return attempt


def normalise_responses(raw: Any, question_types: dict[int, str] | None = None) -> list[dict[str, Any]]:
    """Clean submitted answers. Scale answers must be whole numbers from 1 to 5."""
    if not isinstance(raw, list):
        raise PsychometricError("Responses must be a list.")
    out: list[dict[str, Any]] = []
    for r in raw:
        if not isinstance(r, dict):
            raise PsychometricError("Each response must be an object with question_id and answer.")
        qid = parse_int(r.get("question_id"))
        if qid is None:
            raise PsychometricError("Each response needs a question_id.")
        answer = r.get("answer")
        if (question_types or {}).get(qid) == "scale" and parse_int(answer) not in SCALE_ANSWERS:
            raise PsychometricError(f"Answer to question {qid} must be between 1 and 5.")
        out.append({"question_id": qid, "answer": "" if answer is None else str(answer)})
    return out


def submit_attempt(
    s: Session,
    attempt: PsychometricAttempt,
    responses: Any,
    *,
    time_spent: int | None = None,
    now: datetime | None = None,
) -> PsychometricAttempt:
    """Score the attempt, mark it completed and tick the employee's onboarding item when one matches."""
    if attempt.status != "in_progress":
        raise PsychometricError(f"Attempt is already {attempt.status}.")
    answers = normalise_responses(responses, {q.id: q.question_type for q in attempt.test.questions})
    if not answers:
        raise PsychometricError("At least one response is required.")
    known = {q.id for q in attempt.test.questions}
    unknown = [a["question_id"] for a in answers if a["question_id"] not in known]
    if unknown:
        raise PsychometricError(f"Unknown question id(s): {', '.join(str(i) for i in unknown)}.")

    now = now or datetime.utcnow()
    scored = score_responses(attempt.test.test_type, list(attempt.test.questions), answers)
    attempt.responses = answers
    attempt.total_score = scored["total_score"]
    attempt.percentage_score = scored["percentage_score"]
    attempt.results = scored["results"]
    attempt.completed_at = now
    attempt.time_spent = time_spent if time_spent is not None else int((now - attempt.started_at).total_seconds())
    attempt.status = "completed"
    s.flush()

    link_to_onboarding(s, attempt)
    record_event(
        s,
        actor=attempt.user,
        action="psychometric_attempt.submit",
        entity_type="PsychometricAttempt",
        entity_id=attempt.id,
        metadata={"test_id": attempt.test_id, "percentage_score": attempt.percentage_score},
    )
    return attempt


def link_to_onboarding(s: Session, attempt: PsychometricAttempt) -> bool:
    user = attempt.user
    if user is None:
        user = (
            s.query(User)
            .filter(func.lower(User.email) == attempt.candidate_email.lower(), User.id.in_(org_user_ids(attempt.organization_id)))
            .one_or_none()
        )
        if user is None:
            return False
        attempt.user_id = user.id
    employee = s.query(Employee).filter(Employee.user_id == user.id).one_or_none()
    if employee is None:
        return False
    item = record_psychometric_result(
        s,
        employee,
        test_type=attempt.test.test_type,
        attempt_id=attempt.id,
        score=attempt.percentage_score,
    )
    if item is not None:
        logger.info("Attempt %s completed onboarding item %s for employee %s", attempt.id, item.id, employee.id)
    return item is not None


def list_attempts(
    s: Session, *, organization_id: str | None = None, test_id: int | None = None, email: str | None = None
) -> list[PsychometricAttempt]:
    q = s.query(PsychometricAttempt).filter(PsychometricAttempt.in_org(organization_id))
    if test_id:
        q = q.filter(PsychometricAttempt.test_id == test_id)
    if email:
        q = q.filter(func.lower(PsychometricAttempt.candidate_email) == email.strip().lower())
    return q.order_by(PsychometricAttempt.started_at.desc(), PsychometricAttempt.id.desc()).all()
