import pytest

from app.hrms.db import session_scope
from app.hrms.modules.onboarding.models import OnboardingChecklistItem
from app.hrms.modules.psychometrics.analysis import (
    analyze_16pf,
    analyze_cognitive,
    analyze_test_results,
    assess_reliability,
    band_recommendations,
    global_factors,
    leadership_potential,
    longest_identical_run,
    percentile,
    score_responses,
    verification_score,
)
from app.hrms.modules.psychometrics.models import PsychometricAttempt, PsychometricQuestion, PsychometricTest
from app.hrms.modules.psychometrics.service import PsychometricError, normalise_responses


def _q(qid, question_type="scale", category=None, correct=None):
    return PsychometricQuestion(id=qid, question_type=question_type, category=category, correct_answer=correct, order=qid)


def test_score_responses_mixed_question_types():
    questions = [
        _q(1, "scale", "listening"),
        _q(2, "yes_no", "listening"),
        _q(3, "multiple_choice", "clarity", correct="B"),
        _q(4, "multiple_choice", "clarity", correct="C"),
    ]
    responses = [
        {"question_id": 1, "answer": "4"},
        {"question_id": 2, "answer": "no"},
        {"question_id": 3, "answer": "B"},
        {"question_id": 4, "answer": "A"},
        {"question_id": 99, "answer": "5"},
    ]
    scored = score_responses("communication", questions, responses)
    assert scored["total_score"] == 10
    assert scored["percentage_score"] == 50
    assert scored["results"]["category_scores"] == {"listening": 50, "clarity": 50}
    assert scored["results"]["recommendations"] == band_recommendations("communication", 50)


def test_band_recommendations_thresholds():
    assert band_recommendations("culture", 80)[0] == "Strong alignment with company values."
    assert band_recommendations("culture", 60)[0] == "Reasonable cultural alignment."
    assert band_recommendations("culture", 59)[0] == "Values alignment is limited."
    assert band_recommendations("astrology", 90) == []


def test_16pf_factor_scoring():
    questions = [
        _q(1, category="Warmth (A)"),
        _q(2, category="Warmth (A)"),
        _q(3, category="Dominance (E)"),
        _q(4, category="Tension (Q4)"),
    ]
    responses = [
        {"question_id": 1, "answer": "5"},
        {"question_id": 2, "answer": "4"},
        {"question_id": 3, "answer": "5"},
        {"question_id": 4, "answer": "1"},
    ]
    result = analyze_16pf(questions, responses)
    warmth = result["primary_factors"]["Warmth (A)"]
    assert warmth["score"] == 9
    assert warmth["level"] == "Very High"
    assert warmth["percentile"] == 89
    assert "Team-oriented" in warmth["implications"]
    assert result["primary_factors"]["Tension (Q4)"]["level"] == "Very Low"
    # factors without answers are left out
    assert "Reasoning (B)" not in result["primary_factors"]
    assert result["personality_type"] == "Natural Leader"
    assert result["work_style"] == ["Collaborative", "Leadership-oriented"]


def test_percentile_is_clamped():
    assert percentile(1) == 1
    assert percentile(10) == 99


def test_cognitive_analysis():
    questions = [
        _q(1, "multiple_choice", "numerical", correct="36"),
        _q(2, "multiple_choice", "numerical", correct="42"),
        _q(3, "multiple_choice", "verbal", correct="Frank"),
    ]
    responses = [
        {"question_id": 1, "answer": "36"},
        {"question_id": 2, "answer": "42"},
        {"question_id": 3, "answer": "Hidden"},
    ]
    result = analyze_cognitive(questions, responses)
    # 2/3 correct -> 40 + 160 * 2/3
    assert result["overall_iq"] == 147
    assert result["domains"]["numerical"] == 100
    assert result["domains"]["verbal"] == 0
    assert result["domains"]["spatial"] == 50
    assert "Strong numerical reasoning abilities" in result["strengths"]
    assert "verbal reasoning needs development" in result["weaknesses"]
    assert result["recommended_roles"][:3] == ["Strategic Planning", "Research & Development", "Senior Management"]
    assert "Financial Analysis" in result["recommended_roles"]

    assert analyze_cognitive(questions, [])["overall_iq"] == 40


def test_reliability_checks():
    same = [{"question_id": i, "answer": "3"} for i in range(12)]
    assert longest_identical_run(same) == 12
    assert assess_reliability([], 600) == "Invalid"
    assert assess_reliability(same[:3], 120) == "Questionable - Too Fast"
    assert assess_reliability(same[:3], 9000) == "Questionable - Too Slow"
    assert assess_reliability(same, 600) == "Questionable - Pattern Responding"
    assert assess_reliability(same[:3], 600) == "Reliable"

    assert verification_score(reliability="Reliable", completion_time=600, overall_score=80) == 100
    assert verification_score(reliability="Questionable - Too Fast", completion_time=100, overall_score=10) == 25


def _factors(**scores):
    names = {
        "A": "Warmth (A)",
        "B": "Reasoning (B)",
        "C": "Emotional Stability (C)",
        "E": "Dominance (E)",
        "F": "Liveliness (F)",
        "G": "Rule-Consciousness (G)",
        "H": "Social Boldness (H)",
        "I": "Sensitivity (I)",
        "L": "Vigilance (L)",
        "M": "Abstractedness (M)",
        "N": "Privateness (N)",
        "O": "Apprehension (O)",
        "Q1": "Openness to Change (Q1)",
        "Q2": "Self-Reliance (Q2)",
        "Q3": "Perfectionism (Q3)",
        "Q4": "Tension (Q4)",
    }
    return {names[k]: {"score": v} for k, v in scores.items()}


@pytest.mark.parametrize(
    "scores, factor, expected_score, expected_level",
    [
        ({}, "Extraversion", 0, "Low"),
        # (9 + 8 + 7 - 2) / 4 = 5.5
        (dict(A=9, F=8, H=7, N=2), "Extraversion", 6, "High"),
        # -6 / 4 = -1.5 rounds up to -1
        (dict(N=6), "Extraversion", -1, "Low"),
        # -10 / 4 = -2.5 rounds up to -2
        (dict(N=10), "Extraversion", -2, "Low"),
        # (8 + 9 - 3) / 3 = 4.67: rounds to 5 but the level uses the raw value
        (dict(O=8, Q4=9, C=3), "Anxiety", 5, "Low"),
        (dict(C=9), "Anxiety", -3, "Low"),
        (dict(B=10, I=2, L=7), "Tough-Mindedness", 5, "Low"),
        # (10 - 1 + 8) / 3 = 5.67
        (dict(B=10, I=1, L=8), "Tough-Mindedness", 6, "High"),
        (dict(E=8, Q1=7, Q2=6), "Independence", 7, "High"),
        (dict(E=5, Q1=5, Q2=5), "Independence", 5, "Low"),
        (dict(G=9, Q3=9, M=3), "Self-Control", 5, "Low"),
        # -7 / 3 = -2.33
        (dict(M=7), "Self-Control", -2, "Low"),
    ],
)
def test_global_factors(scores, factor, expected_score, expected_level):
    result = global_factors(_factors(**scores))
    assert set(result) == {"Extraversion", "Anxiety", "Tough-Mindedness", "Independence", "Self-Control"}
    assert result[factor]["score"] == expected_score
    assert result[factor]["level"] == expected_level
    assert result[factor]["description"]


@pytest.mark.parametrize(
    "scores, expected",
    [
        (dict(E=7, C=7, A=7, B=7), "High Leadership Potential"),
        (dict(E=10, C=10, A=4, B=4), "High Leadership Potential"),
        # 27 / 4 = 6.75
        (dict(E=7, C=7, A=7, B=6), "Moderate Leadership Potential"),
        (dict(E=5, C=5, A=5, B=5), "Moderate Leadership Potential"),
        # 19 / 4 = 4.75
        (dict(E=5, C=5, A=5, B=4), "Individual Contributor Strength"),
        ({}, "Individual Contributor Strength"),
    ],
)
def test_leadership_potential(scores, expected):
    assert leadership_potential(_factors(**scores)) == expected


def _attempt(test_type, responses, *, percentage, time_spent):
    return PsychometricAttempt(
        test=PsychometricTest(test_name="Assessment", test_type=test_type),
        candidate_name="Cam Candidate",
        candidate_email="cam@example.com",
        responses=responses,
        percentage_score=percentage,
        time_spent=time_spent,
    )


def test_analyze_results_personality():
    questions = [
        _q(1, category="Warmth (A)"),
        _q(2, category="Dominance (E)"),
        _q(3, category="Emotional Stability (C)"),
        _q(4, category="Reasoning (B)"),
        _q(5, category="Apprehension (O)"),
        _q(6, category="Tension (Q4)"),
    ]
    answers = ["5", "4", "1", "3", "5", "5"]
    responses = [{"question_id": i, "answer": a} for i, a in enumerate(answers, start=1)]
    report = analyze_test_results(_attempt("personality", responses, percentage=77, time_spent=900), questions)

    factors = report["detailed_analysis"]["personality_factors"]
    assert {k: v["score"] for k, v in factors["primary_factors"].items()} == {
        "Warmth (A)": 10,
        "Reasoning (B)": 6,
        "Emotional Stability (C)": 2,
        "Dominance (E)": 8,
        "Apprehension (O)": 10,
        "Tension (Q4)": 10,
    }
    # (10 + 10 - 2) / 3
    assert factors["global_factors"]["Anxiety"]["score"] == 6
    # (8 + 2 + 10 + 6) / 4 = 6.5
    assert factors["leadership_potential"] == "Moderate Leadership Potential"

    assert report["interpretations"] == [
        "Personality Type: Natural Leader",
        "Work Style: Collaborative, Leadership-oriented",
        "Leadership Assessment: Moderate Leadership Potential",
        "Test Reliability: Reliable",
        "Overall Performance: Good",
    ]
    assert report["strengths"] == [
        "Warmth (A): Reserved vs. Warm",
        "Dominance (E): Deferential vs. Dominant",
        "Apprehension (O): Self-Assured vs. Apprehensive",
        "Tension (Q4): Relaxed vs. Tense",
    ]
    assert report["areas_for_improvement"] == [
        "Emotional Stability (C): Consider development in Reactive vs. Emotionally Stable"
    ]
    assert report["recommendations"] == {
        "hiring": ["Highly recommended for hire", "Strong candidate with excellent potential"],
        "development": ["Regular performance reviews", "Continuous learning opportunities"],
        "placement": [],
    }
    assert report["risk_factors"] == []
    assert report["verification_score"] == 100
    assert report["completion_time"] == 900
    assert report["candidate"] == {"name": "Cam Candidate", "email": "cam@example.com"}


def test_analyze_results_cognitive_too_fast_and_low():
    questions = [
        _q(1, "multiple_choice", "numerical", correct="36"),
        _q(2, "multiple_choice", "verbal", correct="Frank"),
        _q(3, "multiple_choice", "logical", correct="C"),
    ]
    responses = [
        {"question_id": 1, "answer": "36"},
        {"question_id": 2, "answer": "Sly"},
        {"question_id": 3, "answer": "A"},
    ]
    report = analyze_test_results(_attempt("cognitive", responses, percentage=33, time_spent=120), questions)

    cognitive = report["detailed_analysis"]["cognitive_abilities"]
    # 40 + 160 / 3 = 93.3
    assert cognitive["overall_iq"] == 93
    assert report["interpretations"] == [
        "Cognitive Level: IQ 93 (Average)",
        "Strongest Areas: Strong numerical reasoning abilities",
        "Test Reliability: Questionable - Too Fast",
        "Overall Performance: Poor",
    ]
    assert report["strengths"] == ["Strong numerical reasoning abilities"]
    assert report["areas_for_improvement"] == [
        "verbal reasoning needs development",
        "logical reasoning needs development",
    ]
    assert report["recommendations"]["hiring"] == [
        "Consider for entry-level positions with extensive training",
        "May require significant development investment",
    ]
    assert report["recommendations"]["placement"] == ["Financial Analysis", "Data Analysis"]
    assert report["risk_factors"] == [
        "Test reliability concern: Questionable - Too Fast",
        "Very low overall performance - significant training required",
    ]
    # 100 - 30 unreliable - 20 too fast
    assert report["verification_score"] == 50


def test_analyze_results_category_based_test():
    questions = [_q(1, category="listening"), _q(2, category="clarity")]
    responses = [{"question_id": 1, "answer": "5"}, {"question_id": 2, "answer": "2"}]
    report = analyze_test_results(_attempt("communication", responses, percentage=70, time_spent=None), questions)

    assert report["detailed_analysis"] == {"category_scores": {"listening": 100, "clarity": 40}}
    assert report["strengths"] == ["listening: 100%"]
    assert report["areas_for_improvement"] == ["clarity: 40%"]
    assert report["recommendations"]["hiring"] == [
        "Recommended for hire with development support",
        "Good candidate with growth potential",
    ]
    assert report["reliability"] == "Reliable"
    assert report["completion_time"] == 0
    # no recorded time counts as too fast
    assert report["verification_score"] == 80


@pytest.mark.parametrize("answer", [0, 6, "7", "-1", "often", None])
def test_scale_answers_outside_one_to_five_are_refused(answer):
    with pytest.raises(PsychometricError, match="between 1 and 5"):
        normalise_responses([{"question_id": 1, "answer": answer}], {1: "scale"})


def test_scale_answers_in_range_are_kept():
    responses = [{"question_id": 1, "answer": 1}, {"question_id": 2, "answer": "5"}, {"question_id": 3, "answer": "7"}]
    cleaned = normalise_responses(responses, {1: "scale", 2: "scale", 3: "multiple_choice"})
    assert [r["answer"] for r in cleaned] == ["1", "5", "7"]


# --- endpoints ---------------------------------------------------------------


@pytest.fixture()
def cognitive_test(as_user):
    hr = as_user("hr@example.com", "hr_admin")
    r = hr.post("/api/psychometrics/tests", json={"test_name": "Reasoning", "test_type": "astrology"})
    assert r.status_code == 400

    test = hr.post(
        "/api/psychometrics/tests",
        json={"test_name": "Reasoning", "test_type": "cognitive", "time_limit": 20},
    ).json
    r = hr.post(
        f"/api/psychometrics/tests/{test['id']}/questions",
        json={"question_text": "15% of 240?", "question_type": "multiple_choice", "options": ["24", "36"], "correct_answer": "30"},
    )
    assert r.status_code == 400
    q1 = hr.post(
        f"/api/psychometrics/tests/{test['id']}/questions",
        json={"question_text": "15% of 240?", "question_type": "multiple_choice", "options": ["24", "36"], "correct_answer": "36", "category": "numerical"},
    ).json
    q2 = hr.post(
        f"/api/psychometrics/tests/{test['id']}/questions",
        json={"question_text": "Closest to candid?", "question_type": "multiple_choice", "options": ["Frank", "Sly"], "correct_answer": "Frank", "category": "verbal"},
    ).json
    assert q2["order"] == 2
    return hr, test, q1, q2


def test_public_attempt_flow_hides_answers(app, cognitive_test):
    hr, test, q1, q2 = cognitive_test
    anon = app.test_client()

    listed = anon.get("/public/psychometric-tests").json["items"]
    assert [t["id"] for t in listed] == [test["id"]]
    detail = anon.get(f"/public/psychometric-tests/{test['id']}").json
    assert all("correct_answer" not in q for q in detail["questions"])

    r = anon.post(f"/public/psychometric-tests/{test['id']}/attempts", json={"candidate_name": "Cam", "candidate_email": "nope"})
    assert r.status_code == 400

    r = anon.post(
        f"/public/psychometric-tests/{test['id']}/attempts",
        json={"candidate_name": "Cam Candidate", "candidate_email": "cam@example.com"},
    )
    assert r.status_code == 201
    attempt_id, token = r.json["attempt_id"], r.json["access_token"]

    responses = [{"question_id": q1["id"], "answer": "36"}, {"question_id": q2["id"], "answer": "Sly"}]
    r = anon.post(f"/public/psychometric-attempts/{attempt_id}/submit", json={"access_token": "wrong", "responses": responses})
    assert r.status_code == 404
    r = anon.post(f"/public/psychometric-attempts/{attempt_id}/submit", json={"access_token": token, "responses": [{"question_id": 999, "answer": "x"}]})
    assert r.status_code == 400

    r = anon.post(
        f"/public/psychometric-attempts/{attempt_id}/submit",
        json={"access_token": token, "responses": responses, "time_spent": 600},
    )
    assert r.status_code == 200
    assert r.json["status"] == "completed"
    assert r.json["total_score"] == 5
    assert r.json["percentage_score"] == 50

    r = anon.post(f"/public/psychometric-attempts/{attempt_id}/submit", json={"access_token": token, "responses": responses})
    assert r.status_code == 409

    detail = hr.get(f"/api/psychometrics/attempts/{attempt_id}").json
    assert detail["analysis"]["detailed_analysis"]["cognitive_abilities"]["overall_iq"] == 120
    assert detail["analysis"]["reliability"] == "Reliable"

    report = hr.get(f"/api/psychometrics/attempts/{attempt_id}/report.pdf")
    assert report.status_code == 200
    assert report.data.startswith(b"%PDF")

    assert [a["id"] for a in hr.get("/api/psychometrics/attempts?email=CAM@example.com").json["items"]] == [attempt_id]


def test_attempt_by_new_hire_ticks_onboarding_item(app, cognitive_test):
    hr, test, q1, q2 = cognitive_test
    emp = hr.post(
        "/api/employees",
        json={"email": "hire@example.com", "first_name": "Hana", "last_name": "Hire"},
    ).json

    anon = app.test_client()
    started = anon.post(
        f"/public/psychometric-tests/{test['id']}/attempts",
        json={"candidate_name": "Hana Hire", "candidate_email": "Hire@Example.com"},
    ).json
    anon.post(
        f"/public/psychometric-attempts/{started['attempt_id']}/submit",
        json={
            "access_token": started["access_token"],
            "responses": [{"question_id": q1["id"], "answer": "36"}, {"question_id": q2["id"], "answer": "Frank"}],
        },
    )

    with session_scope(app) as s:
        item = (
            s.query(OnboardingChecklistItem)
            .filter(OnboardingChecklistItem.employee_id == emp["id"], OnboardingChecklistItem.key == "cognitive_test")
            .one()
        )
        assert item.is_completed
        assert item.score == 100
        assert item.psychometric_attempt_id == started["attempt_id"]


def test_deactivated_tests_are_not_public(app, cognitive_test):
    hr, test, _q1, _q2 = cognitive_test
    assert hr.delete(f"/api/psychometrics/tests/{test['id']}").json["is_active"] is False
    anon = app.test_client()
    assert anon.get(f"/public/psychometric-tests/{test['id']}").status_code == 404
    assert anon.post(
        f"/public/psychometric-tests/{test['id']}/attempts",
        json={"candidate_name": "Late", "candidate_email": "late@example.com"},
    ).status_code == 404


def test_results_need_enterprise_plan(as_user):
    pro = as_user(
        "pro@example.com",
        "hr_admin",
        organization_id="org-2",
        subscription_plan="professional",
        subscription_status="active",
    )
    r = pro.get("/api/psychometrics/tests")
    assert r.status_code == 403
    assert r.json["required_plan"] == "enterprise"


def test_submit_refuses_out_of_range_scale_answer(app, as_user):
    hr = as_user("hr@example.com", "hr_admin")
    test = hr.post("/api/psychometrics/tests", json={"test_name": "16PF", "test_type": "personality"}).json
    q = hr.post(
        f"/api/psychometrics/tests/{test['id']}/questions",
        json={"question_text": "I enjoy meeting new people.", "question_type": "scale", "category": "Warmth (A)"},
    ).json

    anon = app.test_client()
    started = anon.post(
        f"/public/psychometric-tests/{test['id']}/attempts",
        json={"candidate_name": "Cam Candidate", "candidate_email": "cam@example.com"},
    ).json
    url = f"/public/psychometric-attempts/{started['attempt_id']}/submit"

    r = anon.post(url, json={"access_token": started["access_token"], "responses": [{"question_id": q["id"], "answer": "9"}]})
    assert r.status_code == 400
    assert r.json["message"] == f"Answer to question {q['id']} must be between 1 and 5."

    r = anon.post(url, json={"access_token": started["access_token"], "responses": [{"question_id": q["id"], "answer": "4"}]})
    assert r.status_code == 200
    assert r.json["percentage_score"] == 80


def test_attempts_are_private_to_the_organisation(app, as_user, cognitive_test):
    hr, test, _q1, _q2 = cognitive_test
    anon = app.test_client()
    started = anon.post(
        f"/public/psychometric-tests/{test['id']}/attempts",
        json={"candidate_name": "Cam Candidate", "candidate_email": "cam@example.com"},
    ).json
    assert [a["id"] for a in hr.get("/api/psychometrics/attempts").json["items"]] == [started["attempt_id"]]

    customer = as_user(
        "owner@customer.example.com",
        "hr_admin",
        organization_id="org-7",
        subscription_plan="enterprise",
        subscription_status="active",
    )
    assert customer.get("/api/psychometrics/attempts").json["items"] == []
    assert customer.get(f"/api/psychometrics/attempts/{started['attempt_id']}").status_code == 404
