"""
Psychometric scoring and interpretation.

Pure functions over questions and responses; nothing here touches the database.

Responses are stored as ``[{"question_id": int, "answer": str}, ...]``.
Scoring rules:
- scale: the integer answer (1-5)
- yes_no: "yes" -> 5, anything else -> 1
- multiple_choice with an answer key: 5 when correct, otherwise 0
The percentage is the total over 5 x number of questions in the test.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from app.hrms.utils import round_half_up

if TYPE_CHECKING:
    from .models import PsychometricAttempt, PsychometricQuestion

MAX_POINTS = 5
TOO_FAST_SECONDS = 300
TOO_SLOW_SECONDS = 7200
MAX_IDENTICAL_RUN = 10

PRIMARY_FACTORS: dict[str, str] = {
    "Warmth (A)": "Reserved vs. Warm",
    "Reasoning (B)": "Concrete vs. Abstract",
    "Emotional Stability (C)": "Reactive vs. Emotionally Stable",
    "Dominance (E)": "Deferential vs. Dominant",
    "Liveliness (F)": "Serious vs. Lively",
    "Rule-Consciousness (G)": "Expedient vs. Rule-Conscious",
    "Social Boldness (H)": "Shy vs. Socially Bold",
    "Sensitivity (I)": "Utilitarian vs. Sensitive",
    "Vigilance (L)": "Trusting vs. Vigilant",
    "Abstractedness (M)": "Practical vs. Abstract",
    "Privateness (N)": "Forthright vs. Private",
    "Apprehension (O)": "Self-Assured vs. Apprehensive",
    "Openness to Change (Q1)": "Traditional vs. Open to Change",
    "Self-Reliance (Q2)": "Group-Oriented vs. Self-Reliant",
    "Perfectionism (Q3)": "Tolerates Disorder vs. Perfectionist",
    "Tension (Q4)": "Relaxed vs. Tense",
}

FACTOR_IMPLICATIONS: dict[str, dict[str, list[str]]] = {
    "Warmth (A)": {
        "low": ["May prefer working independently", "Task-focused approach", "Direct communication style"],
        "high": ["Strong interpersonal skills", "Team-oriented", "Empathetic and caring"],
    },
    "Reasoning (B)": {
        "low": ["Practical, concrete thinking", "Hands-on learning style", "Detail-oriented"],
        "high": ["Abstract thinking ability", "Strategic planning skills", "Complex problem-solving"],
    },
    "Emotional Stability (C)": {
        "low": ["May be affected by stress", "Emotionally expressive", "Sensitive to feedback"],
        "high": ["Calm under pressure", "Resilient", "Stable emotional responses"],
    },
    "Dominance (E)": {
        "low": ["Collaborative approach", "Good follower", "Respectful of authority"],
        "high": ["Natural leadership qualities", "Assertive communication", "Decision-making ability"],
    },
}

# (factor, sign) terms and divisor for each global factor
GLOBAL_FACTORS: dict[str, tuple[tuple[tuple[str, int], ...], int, str]] = {
    "Extraversion": (
        (("Warmth (A)", 1), ("Liveliness (F)", 1), ("Social Boldness (H)", 1), ("Privateness (N)", -1)),
        4,
        "Tendency to be outgoing, talkative, and sociable vs. reserved and quiet",
    ),
    "Anxiety": (
        (("Apprehension (O)", 1), ("Tension (Q4)", 1), ("Emotional Stability (C)", -1)),
        3,
        "Tendency to experience worry, stress, and emotional instability",
    ),
    "Tough-Mindedness": (
        (("Reasoning (B)", 1), ("Sensitivity (I)", -1), ("Vigilance (L)", 1)),
        3,
        "Practical, objective thinking vs. emotional, subjective approach",
    ),
    "Independence": (
        (("Dominance (E)", 1), ("Openness to Change (Q1)", 1), ("Self-Reliance (Q2)", 1)),
        3,
        "Self-reliant, autonomous behavior vs. group-dependent approach",
    ),
    "Self-Control": (
        (("Rule-Consciousness (G)", 1), ("Perfectionism (Q3)", 1), ("Abstractedness (M)", -1)),
        3,
        "Disciplined, controlled behavior vs. spontaneous, impulsive actions",
    ),
}

COGNITIVE_DOMAINS: dict[str, tuple[str, str]] = {
    "verbal": ("verbal", "language"),
    "numerical": ("numerical", "math"),
    "logical": ("logical", "reasoning"),
    "spatial": ("spatial", "visual"),
    "speed": ("speed", "processing"),
    "memory": ("memory", "working_memory"),
}

RECOMMENDATION_BANDS: dict[str, tuple[list[str], list[str], list[str]]] = {
    "personality": (
        [
            "Excellent personality fit for the role with strong interpersonal skills.",
            "Consider for leadership development opportunities.",
        ],
        [
            "Good personality match with potential for growth.",
            "Recommend mentoring and skill development programs.",
        ],
        [
            "Consider additional personality development training.",
            "May benefit from team-based collaboration exercises.",
        ],
    ),
    "cognitive": (
        [
            "Strong cognitive abilities suitable for complex problem-solving roles.",
            "Consider for analytical and strategic positions.",
        ],
        [
            "Good cognitive performance with room for improvement.",
            "Recommend continued learning and development opportunities.",
        ],
        [
            "May benefit from additional training in analytical thinking.",
            "Consider roles that leverage existing strengths.",
        ],
    ),
    "communication": (
        ["Communicates clearly and adapts to the audience.", "Consider for client-facing or coordination roles."],
        ["Solid communication skills with room to grow.", "Recommend presentation and feedback practice."],
        ["Would benefit from structured communication training.", "Pair with a mentor for written and verbal feedback."],
    ),
    "technical": (
        ["Strong technical aptitude.", "Consider for specialist or technical lead tracks."],
        ["Good technical foundation.", "Recommend targeted training in weaker areas."],
        ["Technical fundamentals need development.", "Recommend a structured training plan before independent work."],
    ),
    "culture": (
        ["Strong alignment with company values.", "Consider as a culture ambassador or buddy for new hires."],
        ["Reasonable cultural alignment.", "Recommend mentorship during integration."],
        ["Values alignment is limited.", "Recommend cultural orientation and close follow-up."],
    ),
}


def _answer_int(answer: Any) -> int:
    """Leading integer of an answer ("4", " 3 ", "5 - strongly agree"); 0 when there is none."""
    if isinstance(answer, bool):
        return 0
    if isinstance(answer, int):
        return answer
    m = re.match(r"\s*([+-]?\d+)", str(answer or ""))
    return int(m.group(1)) if m else 0


def _by_id(questions: Iterable[PsychometricQuestion]) -> dict[int, PsychometricQuestion]:
    return {q.id: q for q in questions}


def _response_pairs(
    questions: Iterable[PsychometricQuestion], responses: Iterable[Mapping[str, Any]]
) -> list[tuple[PsychometricQuestion, Any]]:
    lookup = _by_id(questions)
    pairs = []
    for r in responses:
        q = lookup.get(_answer_int(r.get("question_id")))
        if q is not None:
            pairs.append((q, r.get("answer")))
    return pairs


def score_answer(question: PsychometricQuestion, answer: Any) -> int:
    if question.question_type == "scale":
        return _answer_int(answer)
    if question.question_type == "yes_no":
        return MAX_POINTS if answer == "yes" else 1
    if question.question_type == "multiple_choice" and question.correct_answer:
        return MAX_POINTS if answer == question.correct_answer else 0
    return 0


def band_recommendations(test_type: str, percentage: int) -> list[str]:
    bands = RECOMMENDATION_BANDS.get(test_type)
    if bands is None:
        return []
    high, mid, low = bands
    if percentage >= 80:
        return list(high)
    if percentage >= 60:
        return list(mid)
    return list(low)


def score_responses(
    test_type: str,
    questions: list[PsychometricQuestion],
    responses: Iterable[Mapping[str, Any]],
) -> dict[str, Any]:
    """Total, percentage and per-category percentages for a submitted attempt."""
    total = 0
    categories: dict[str, list[int]] = {}
    for question, answer in _response_pairs(questions, responses):
        points = score_answer(question, answer)
        total += points
        if question.category:
            bucket = categories.setdefault(question.category, [0, 0])
            bucket[0] += points
            bucket[1] += 1

    max_points = len(questions) * MAX_POINTS
    percentage = round_half_up(total / max_points * 100) if max_points else 0
    category_scores = {
        category: round_half_up(points / (count * MAX_POINTS) * 100) for category, (points, count) in categories.items()
    }

    results: dict[str, Any] = {"category_scores": category_scores}
    if test_type == "personality":
        results["personality_traits"] = category_scores
    elif test_type == "cognitive":
        results["cognitive_scores"] = category_scores
    results["recommendations"] = band_recommendations(test_type, percentage)
    return {"total_score": total, "percentage_score": percentage, "results": results}


# --- personality (16PF) ------------------------------------------------------


def percentile(score: int) -> int:
    return min(99, max(1, round_half_up((score - 1) * 11.11)))


def personality_level(score: int) -> str:
    if score <= 2:
        return "Very Low"
    if score <= 4:
        return "Low"
    if score <= 6:
        return "Average"
    if score <= 8:
        return "High"
    return "Very High"


def _factor_score(factors: Mapping[str, Mapping[str, Any]], name: str) -> int:
    return factors.get(name, {}).get("score", 0)


def global_factors(primary: Mapping[str, Mapping[str, Any]]) -> dict[str, dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    for name, (terms, divisor, description) in GLOBAL_FACTORS.items():
        raw = sum(sign * _factor_score(primary, factor) for factor, sign in terms) / divisor
        out[name] = {
            "score": round_half_up(raw),
            "level": "High" if raw > 5 else "Low",
            "description": description,
        }
    return out


def personality_type(primary: Mapping[str, Mapping[str, Any]]) -> str:
    warmth = _factor_score(primary, "Warmth (A)")
    stability = _factor_score(primary, "Emotional Stability (C)")
    openness = _factor_score(primary, "Openness to Change (Q1)")
    dominance = _factor_score(primary, "Dominance (E)")
    if dominance > 6 and warmth > 6:
        return "Natural Leader"
    if warmth > 6 and stability > 6:
        return "Team Player"
    if openness > 6 and _factor_score(primary, "Reasoning (B)") > 6:
        return "Innovator"
    if stability > 6 and _factor_score(primary, "Rule-Consciousness (G)") > 6:
        return "Reliable Executor"
    if _factor_score(primary, "Self-Reliance (Q2)") > 6:
        return "Independent Contributor"
    return "Balanced Professional"


def work_style(primary: Mapping[str, Mapping[str, Any]]) -> list[str]:
    styles = [
        label
        for factor, label in (
            ("Warmth (A)", "Collaborative"),
            ("Dominance (E)", "Leadership-oriented"),
            ("Self-Reliance (Q2)", "Independent"),
            ("Perfectionism (Q3)", "Detail-oriented"),
            ("Openness to Change (Q1)", "Adaptable"),
            ("Rule-Consciousness (G)", "Structured"),
        )
        if _factor_score(primary, factor) > 6
    ]
    return styles or ["Balanced approach"]


def leadership_potential(primary: Mapping[str, Mapping[str, Any]]) -> str:
    score = (
        _factor_score(primary, "Dominance (E)")
        + _factor_score(primary, "Emotional Stability (C)")
        + _factor_score(primary, "Warmth (A)")
        + _factor_score(primary, "Reasoning (B)")
    ) / 4
    if score >= 7:
        return "High Leadership Potential"
    if score >= 5:
        return "Moderate Leadership Potential"
    return "Individual Contributor Strength"


def analyze_16pf(questions: list[PsychometricQuestion], responses: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """
    Average the Likert answers per primary factor and double onto a 1-10 scale.
    Factors with no answered questions are left out.
    """
    sums: dict[str, list[int]] = {}
    for question, answer in _response_pairs(questions, responses):
        if question.category in PRIMARY_FACTORS:
            bucket = sums.setdefault(question.category, [0, 0])
            bucket[0] += _answer_int(answer)
            bucket[1] += 1

    primary: dict[str, dict[str, Any]] = {}
    for factor, description in PRIMARY_FACTORS.items():
        if factor not in sums:
            continue
        total, count = sums[factor]
        score = round_half_up(total / count * 2)
        primary[factor] = {
            "score": score,
            "percentile": percentile(score),
            "level": personality_level(score),
            "description": description,
            "implications": FACTOR_IMPLICATIONS.get(factor, {}).get("low" if score <= 4 else "high", []),
        }

    return {
        "primary_factors": primary,
        "global_factors": global_factors(primary),
        "personality_type": personality_type(primary),
        "work_style": work_style(primary),
        "leadership_potential": leadership_potential(primary),
    }


# --- cognitive ---------------------------------------------------------------


def recommended_roles(iq: int, domains: Mapping[str, int]) -> list[str]:
    roles: list[str] = []
    if iq >= 120:
        roles += ["Strategic Planning", "Research & Development", "Senior Management"]
    elif iq >= 110:
        roles += ["Project Management", "Technical Specialist", "Team Leadership"]
    elif iq >= 100:
        roles += ["Operations", "Customer Service", "Administrative"]
    if domains["numerical"] >= 75:
        roles += ["Financial Analysis", "Data Analysis"]
    if domains["verbal"] >= 75:
        roles += ["Communications", "Training", "Sales"]
    if domains["logical"] >= 75:
        roles += ["IT", "Engineering", "Quality Assurance"]
    return roles


def analyze_cognitive(questions: list[PsychometricQuestion], responses: list[Mapping[str, Any]]) -> dict[str, Any]:
    pairs = _response_pairs(questions, responses)
    correct = 0
    categories: dict[str, list[int]] = {}
    for question, answer in pairs:
        hit = question.correct_answer is not None and answer == question.correct_answer
        correct += int(hit)
        bucket = categories.setdefault(question.category or "general", [0, 0])
        bucket[0] += int(hit)
        bucket[1] += 1

    overall_iq = round_half_up(correct / len(responses) * 160 + 40) if responses else 40

    domains: dict[str, int] = {}
    for domain, aliases in COGNITIVE_DOMAINS.items():
        data = next((categories[a] for a in aliases if a in categories), None)
        # 50 = no questions in this domain
        domains[domain] = round_half_up(data[0] / data[1] * 100) if data and data[1] else 50

    return {
        "overall_iq": overall_iq,
        "domains": domains,
        "strengths": [f"Strong {d} reasoning abilities" for d, v in domains.items() if v >= 75],
        "weaknesses": [f"{d} reasoning needs development" for d, v in domains.items() if v < 50],
        "recommended_roles": recommended_roles(overall_iq, domains),
    }


def iq_level(iq: int) -> str:
    if iq >= 130:
        return "Very Superior"
    if iq >= 120:
        return "Superior"
    if iq >= 110:
        return "High Average"
    if iq >= 90:
        return "Average"
    if iq >= 80:
        return "Low Average"
    return "Below Average"


def performance_level(score: int) -> str:
    if score >= 90:
        return "Exceptional"
    if score >= 80:
        return "Excellent"
    if score >= 70:
        return "Good"
    if score >= 60:
        return "Satisfactory"
    if score >= 50:
        return "Below Average"
    return "Poor"


# --- reliability -------------------------------------------------------------


def longest_identical_run(responses: list[Mapping[str, Any]]) -> int:
    if not responses:
        return 0
    best = run = 1
    for prev, cur in zip(responses, responses[1:]):
        if cur.get("answer") == prev.get("answer"):
            run += 1
            best = max(best, run)
        else:
            run = 1
    return best


def assess_reliability(responses: list[Mapping[str, Any]], time_spent: int | None) -> str:
    if not responses:
        return "Invalid"
    if time_spent is not None and time_spent < TOO_FAST_SECONDS:
        return "Questionable - Too Fast"
    if time_spent is not None and time_spent > TOO_SLOW_SECONDS:
        return "Questionable - Too Slow"
    if longest_identical_run(responses) > MAX_IDENTICAL_RUN:
        return "Questionable - Pattern Responding"
    return "Reliable"


def verification_score(*, reliability: str, completion_time: int, overall_score: int) -> int:
    score = 100
    if reliability != "Reliable":
        score -= 30
    if completion_time < TOO_FAST_SECONDS:
        score -= 20
    if completion_time > TOO_SLOW_SECONDS:
        score -= 15
    if overall_score < 20:
        score -= 25
    return max(0, score)


# --- full report -------------------------------------------------------------


def analyze_test_results(attempt: PsychometricAttempt, questions: list[PsychometricQuestion]) -> dict[str, Any]:
    """Detailed report for a completed attempt: type-specific analysis plus interpretation."""
    test = attempt.test
    test_type = test.test_type if test else "unknown"
    responses = list(attempt.responses or [])
    overall = attempt.percentage_score or 0
    completion_time = attempt.time_spent or 0
    reliability = assess_reliability(responses, attempt.time_spent)

    detailed: dict[str, Any] = {}
    personality = cognitive = None
    if test_type == "personality":
        personality = detailed["personality_factors"] = analyze_16pf(questions, responses)
    elif test_type == "cognitive":
        cognitive = detailed["cognitive_abilities"] = analyze_cognitive(questions, responses)
    else:
        detailed["category_scores"] = score_responses(test_type, questions, responses)["results"]["category_scores"]

    interpretations: list[str] = []
    strengths: list[str] = []
    improvement: list[str] = []
    risks: list[str] = []
    recs: dict[str, list[str]] = {"hiring": [], "development": [], "placement": []}

    if personality:
        interpretations += [
            f"Personality Type: {personality['personality_type']}",
            f"Work Style: {', '.join(personality['work_style'])}",
            f"Leadership Assessment: {personality['leadership_potential']}",
        ]
        for factor, data in personality["primary_factors"].items():
            if data["level"] in ("High", "Very High"):
                strengths.append(f"{factor}: {data['description']}")
            elif data["level"] in ("Low", "Very Low"):
                improvement.append(f"{factor}: Consider development in {data['description']}")
    if cognitive:
        interpretations += [
            f"Cognitive Level: IQ {cognitive['overall_iq']} ({iq_level(cognitive['overall_iq'])})",
            f"Strongest Areas: {', '.join(cognitive['strengths'])}",
        ]
        strengths += cognitive["strengths"]
        improvement += cognitive["weaknesses"]
    for category, pct in (detailed.get("category_scores") or {}).items():
        if pct >= 75:
            strengths.append(f"{category}: {pct}%")
        elif pct < 50:
            improvement.append(f"{category}: {pct}%")

    interpretations += [f"Test Reliability: {reliability}", f"Overall Performance: {performance_level(overall)}"]

    if overall >= 75:
        recs["hiring"] += ["Highly recommended for hire", "Strong candidate with excellent potential"]
    elif overall >= 60:
        recs["hiring"] += ["Recommended for hire with development support", "Good candidate with growth potential"]
    else:
        recs["hiring"] += [
            "Consider for entry-level positions with extensive training",
            "May require significant development investment",
        ]
    if personality and "High" in personality["leadership_potential"]:
        recs["development"].append("Leadership development program")
        recs["placement"].append("Management track positions")
    if cognitive:
        recs["placement"] += cognitive["recommended_roles"]
    recs["development"] += ["Regular performance reviews", "Continuous learning opportunities"]

    if reliability != "Reliable":
        risks.append(f"Test reliability concern: {reliability}")
    if overall < 40:
        risks.append("Very low overall performance - significant training required")
    if personality and personality["global_factors"]["Anxiety"]["score"] > 7:
        risks.append("High anxiety levels - may affect performance under stress")

    return {
        "test_name": test.test_name if test else "Unknown Test",
        "test_type": test_type,
        "candidate": {"name": attempt.candidate_name, "email": attempt.candidate_email},
        "overall_score": overall,
        "reliability": reliability,
        "completion_time": completion_time,
        "detailed_analysis": detailed,
        "interpretations": interpretations,
        "recommendations": recs,
        "risk_factors": risks,
        "strengths": strengths,
        "areas_for_improvement": improvement,
        "verification_score": verification_score(
            reliability=reliability, completion_time=completion_time, overall_score=overall
        ),
    }
