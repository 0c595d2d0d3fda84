from __future__ import annotations

import hmac

from flask import Blueprint, Response, abort, g, jsonify, request

from app.hrms.db import db_session, get_or_404
from app.hrms.pdf import render_psychometric_report
from app.hrms.rbac import require_feature, require_permission
from app.hrms.tenancy import current_org, get_in_org_or_404
from app.hrms.utils import error_response, get_payload, iso, parse_bool, parse_int, user_summary

from .analysis import analyze_test_results
from .models import PsychometricAttempt, PsychometricQuestion, PsychometricTest
from .service import (
    PsychometricError,
    add_question,
    create_test,
    deactivate_test,
    delete_question,
    list_attempts,
    start_attempt,
    submit_attempt,
    update_question,
    update_test,
    validate_question_payload,
    validate_test_payload,
)

bp = Blueprint("psychometrics", __name__)
public_bp = Blueprint("public_psychometrics", __name__)


def question_json(q: PsychometricQuestion, *, include_answer: bool = False) -> dict:
    data = {
        "id": q.id,
        "question_text": q.question_text,
        "question_type": q.question_type,
        "options": q.options,
        "category": q.category,
        "order": q.order,
    }
    if include_answer:
        data["correct_answer"] = q.correct_answer
    return data


def test_json(test: PsychometricTest, *, include_questions: bool = False, include_answers: bool = False) -> dict:
    data = {
        "id": test.id,
        "test_name": test.test_name,
        "test_type": test.test_type,
        "description": test.description,
        "instructions": test.instructions,
        "time_limit": test.time_limit,
        "is_active": test.is_active,
        "total_questions": test.total_questions,
        "updated_at": iso(test.updated_at),
    }
    if include_questions:
        data["questions"] = [question_json(q, include_answer=include_answers) for q in test.questions]
    return data


def attempt_json(a: PsychometricAttempt, *, detail: bool = False) -> dict:
    data = {
        "id": a.id,
        "test_id": a.test_id,
        "test_name": a.test.test_name if a.test else None,
        "test_type": a.test.test_type if a.test else None,
        "candidate_name": a.candidate_name,
        "candidate_email": a.candidate_email,
        "user": user_summary(a.user),
        "status": a.status,
        "started_at": iso(a.started_at),
        "completed_at": iso(a.completed_at),
        "time_spent": a.time_spent,
        "total_score": a.total_score,
        "percentage_score": a.percentage_score,
    }
    if detail:
        data["responses"] = a.responses
        data["results"] = a.results
        data["ip_address"] = a.ip_address
    return data


def _active_test_or_404(s, test_id: int) -> PsychometricTest:
    test = get_or_404(s, PsychometricTest, test_id)
    if not test.is_active:
        abort(404)
    return test


# --- public (candidate-facing) -----------------------------------------------


@public_bp.get("/psychometric-tests")
def public_tests_list():
    s = db_session()
    tests = (
        s.query(PsychometricTest)
        .filter(PsychometricTest.is_active.is_(True))
        .order_by(PsychometricTest.test_name.asc())
        .all()
    )
    return jsonify({"items": [test_json(t) for t in tests]})


@public_bp.get("/psychometric-tests/<int:test_id>")
def public_tests_detail(test_id: int):
    s = db_session()
    test = _active_test_or_404(s, test_id)
    return jsonify(test_json(test, include_questions=True))


@public_bp.post("/psychometric-tests/<int:test_id>/attempts")
def public_attempts_start(test_id: int):
    s = db_session()
    test = _active_test_or_404(s, test_id)
    payload = get_payload()
    try:
        attempt = start_attempt(
            s,
            test,
            candidate_name=payload.get("candidate_name"),
            candidate_email=payload.get("candidate_email"),
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
            user=getattr(g, "current_user", None),
        )
    except PsychometricError as e:
        return error_response(str(e))
    s.commit()
    return (
        jsonify(
            {
                "attempt_id": attempt.id,
                "access_token": attempt.access_token,
                "test": test_json(test, include_questions=True),
                "started_at": iso(attempt.started_at),
            }
        ),
        201,
    )


@public_bp.post("/psychometric-attempts/<int:attempt_id>/submit")
def public_attempts_submit(attempt_id: int):
    s = db_session()
    attempt = get_or_404(s, PsychometricAttempt, attempt_id)
    payload = get_payload()
    token = str(payload.get("access_token") or request.headers.get("X-Attempt-Token") or "")
    if not token or not hmac.compare_digest(token, attempt.access_token):
        abort(404)
    raw_time = payload.get("time_spent")
    time_spent = parse_int(raw_time)
    if raw_time not in (None, "") and (time_spent is None or time_spent < 0):
        return error_response("Time spent must be a non-negative number of seconds.")
    try:
        submit_attempt(s, attempt, payload.get("responses"), time_spent=time_spent)
    except PsychometricError as e:
        status = 409 if attempt.status != "in_progress" else 400
        return error_response(str(e), status=status)
    s.commit()
    return jsonify(
        {
            "attempt_id": attempt.id,
            "status": attempt.status,
            "total_score": attempt.total_score,
            "percentage_score": attempt.percentage_score,
        }
    )


# --- admin -------------------------------------------------------------------


@bp.get("/psychometrics/tests")
@require_permission("psychometrics.view")
@require_feature("psychometric_tests")
def psychometrics_tests_list():
    s = db_session()
    q = s.query(PsychometricTest)
    if not parse_bool(request.args.get("include_inactive")):
        q = q.filter(PsychometricTest.is_active.is_(True))
    tests = q.order_by(PsychometricTest.test_name.asc()).all()
    return jsonify({"items": [test_json(t) for t in tests]})


@bp.post("/psychometrics/tests")
@require_permission("psychometrics.manage")
@require_feature("psychometric_tests")
def psychometrics_tests_create():
    s = db_session()
    payload = get_payload()
    errors = validate_test_payload(payload, creating=True)
    if errors:
        return error_response("Invalid test.", errors)
    test = create_test(s, payload, user=g.current_user)
    s.commit()
    return jsonify(test_json(test, include_questions=True, include_answers=True)), 201


@bp.get("/psychometrics/tests/<int:test_id>")
@require_permission("psychometrics.view")
@require_feature("psychometric_tests")
def psychometrics_tests_detail(test_id: int):
    s = db_session()
    test = get_or_404(s, PsychometricTest, test_id)
    return jsonify(test_json(test, include_questions=True, include_answers=True))


@bp.patch("/psychometrics/tests/<int:test_id>")
@require_permission("psychometrics.manage")
@require_feature("psychometric_tests")
def psychometrics_tests_update(test_id: int):
    s = db_session()
    test = get_or_404(s, PsychometricTest, test_id)
    payload = get_payload()
    errors = validate_test_payload(payload, creating=False)
    if errors:
        return error_response("Invalid test.", errors)
    update_test(s, test, payload, user=g.current_user)
    s.commit()
    return jsonify(test_json(test, include_questions=True, include_answers=True))


@bp.delete("/psychometrics/tests/<int:test_id>")
@require_permission("psychometrics.manage")
@require_feature("psychometric_tests")
def psychometrics_tests_delete(test_id: int):
    s = db_session()
    test = get_or_404(s, PsychometricTest, test_id)
    deactivate_test(s, test, user=g.current_user)
    s.commit()
    return jsonify(test_json(test))


@bp.post("/psychometrics/tests/<int:test_id>/questions")
@require_permission("psychometrics.manage")
@require_feature("psychometric_tests")
def psychometrics_questions_create(test_id: int):
    s = db_session()
    test = get_or_404(s, PsychometricTest, test_id)
    payload = get_payload()
    errors = validate_question_payload(payload, creating=True)
    if errors:
        return error_response("Invalid question.", errors)
    question = add_question(s, test, payload, user=g.current_user)
    s.commit()
    return jsonify(question_json(question, include_answer=True)), 201


@bp.patch("/psychometrics/questions/<int:question_id>")
@require_permission("psychometrics.manage")
@require_feature("psychometric_tests")
def psychometrics_questions_update(question_id: int):
    s = db_session()
    question = get_or_404(s, PsychometricQuestion, question_id)
    payload = get_payload()
    merged = {
        "question_type": question.question_type,
        "options": question.options,
        **payload,
    }
    errors = validate_question_payload(merged, creating=False)
    if errors:
        return error_response("Invalid question.", errors)
    update_question(s, question, payload, user=g.current_user)
    s.commit()
    return jsonify(question_json(question, include_answer=True))


@bp.delete("/psychometrics/questions/<int:question_id>")
@require_permission("psychometrics.manage")
@require_feature("psychometric_tests")
def psychometrics_questions_delete(question_id: int):
    s = db_session()
    question = get_or_404(s, PsychometricQuestion, question_id)
    delete_question(s, question, user=g.current_user)
    s.commit()
    return jsonify({"deleted": question_id})


@bp.get("/psychometrics/attempts")
@require_permission("psychometrics.view")
@require_feature("psychometric_tests")
def psychometrics_attempts_list():
    s = db_session()
    attempts = list_attempts(
        s,
        organization_id=current_org(),
        test_id=parse_int(request.args.get("test_id")),
        email=request.args.get("email"),
    )
    return jsonify({"items": [attempt_json(a) for a in attempts]})


@bp.get("/psychometrics/attempts/<int:attempt_id>")
@require_permission("psychometrics.view")
@require_feature("psychometric_tests")
def psychometrics_attempts_detail(attempt_id: int):
    s = db_session()
    attempt = get_in_org_or_404(s, PsychometricAttempt, attempt_id)
    data = attempt_json(attempt, detail=True)
    if attempt.status == "completed":
        data["analysis"] = analyze_test_results(attempt, list(attempt.test.questions))
    return jsonify(data)


@bp.get("/psychometrics/attempts/<int:attempt_id>/report.pdf")
@require_permission("psychometrics.view")
@require_feature("psychometric_tests")
def psychometrics_attempts_report(attempt_id: int):
    s = db_session()
    attempt = get_in_org_or_404(s, PsychometricAttempt, attempt_id)
    if attempt.status != "completed":
        return error_response("Report is available once the attempt is completed.", status=409)
    analysis = analyze_test_results(attempt, list(attempt.test.questions))
    pdf_bytes = render_psychometric_report(attempt, analysis)
    filename = f"psychometric_report_{attempt.id}.pdf"
    return Response(
        pdf_bytes,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
