"""
Seed the standard psychometric test battery.

Idempotent: a test whose name already exists is skipped. Pass --replace to deactivate
existing tests of the same name and create fresh copies (attempts are never deleted).

Usage:
  python scripts/seed_psychometric_tests.py [--replace]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.hrms.modules.psychometrics.models import PsychometricTest
from app.hrms.modules.psychometrics.service import add_question, create_test
from scripts._db_utils import script_session

LIKERT = ["1", "2", "3", "4", "5"]


def _scale(text: str, factor: str) -> dict:
    return {"question_text": text, "question_type": "scale", "category": factor, "options": LIKERT}


def _choice(text: str, domain: str, options: list[str], correct: str) -> dict:
    return {
        "question_text": text,
        "question_type": "multiple_choice",
        "category": domain,
        "options": options,
        "correct_answer": correct,
    }


def _yes_no(text: str, category: str) -> dict:
    return {"question_text": text, "question_type": "yes_no", "category": category, "options": ["yes", "no"]}


TESTS: list[dict] = [
    {
        "test_name": "16PF Personality Profile",
        "test_type": "personality",
        "description": "Sixteen-factor personality questionnaire covering work preferences and team dynamics.",
        "instructions": "Rate each statement from 1 (strongly disagree) to 5 (strongly agree). There are no right or wrong answers.",
        "time_limit": 30,
        "questions": [
            _scale("I enjoy getting to know new colleagues.", "Warmth (A)"),
            _scale("I prefer working with people over working alone.", "Warmth (A)"),
            _scale("I quickly see the pattern behind a complicated problem.", "Reasoning (B)"),
            _scale("I stay calm when plans change at short notice.", "Emotional Stability (C)"),
            _scale("Setbacks rarely stay with me for long.", "Emotional Stability (C)"),
            _scale("I am comfortable taking charge of a group.", "Dominance (E)"),
            _scale("I speak up when I disagree with a decision.", "Dominance (E)"),
            _scale("People describe me as energetic and spontaneous.", "Liveliness (F)"),
            _scale("I follow procedures even when nobody is checking.", "Rule-Consciousness (G)"),
            _scale("I find it easy to start conversations with strangers.", "Social Boldness (H)"),
            _scale("Aesthetics and feelings weigh heavily in my decisions.", "Sensitivity (I)"),
            _scale("I check other people's claims before relying on them.", "Vigilance (L)"),
            _scale("I often get absorbed in ideas and lose track of the details around me.", "Abstractedness (M)"),
            _scale("I keep personal matters to myself at work.", "Privateness (N)"),
            _scale("I worry about whether I have done a good job.", "Apprehension (O)"),
            _scale("I like trying new ways of doing routine work.", "Openness to Change (Q1)"),
            _scale("I would rather solve a problem myself than ask the team.", "Self-Reliance (Q2)"),
            _scale("I plan my work carefully and finish what I start.", "Perfectionism (Q3)"),
            _scale("I often feel impatient or under pressure.", "Tension (Q4)"),
        ],
    },
    {
        "test_name": "Cognitive Ability Assessment",
        "test_type": "cognitive",
        "description": "Verbal, numerical, logical, spatial and memory reasoning.",
        "instructions": "Choose the single best answer. Work quickly but accurately.",
        "time_limit": 25,
        "questions": [
            _choice("Choose the word closest in meaning to 'candid'.", "verbal", ["Frank", "Careful", "Sweet", "Hidden"], "Frank"),
            _choice("BOOK is to READ as FORK is to:", "verbal", ["Kitchen", "Eat", "Metal", "Spoon"], "Eat"),
            _choice("What is 15% of 240?", "numerical", ["24", "32", "36", "42"], "36"),
            _choice("Next number: 2, 6, 12, 20, 30, ?", "numerical", ["36", "40", "42", "44"], "42"),
            _choice(
                "All managers attend the briefing. Sam attends the briefing. Therefore:",
                "logical",
                ["Sam is a manager", "Sam is not a manager", "Sam may or may not be a manager", "Nobody else attends"],
                "Sam may or may not be a manager",
            ),
            _choice(
                "If no reports are late and some reports are long, which must be true?",
                "logical",
                ["Some long reports are not late", "All reports are long", "Some late reports are long", "No reports are long"],
                "Some long reports are not late",
            ),
            _choice("How many faces does a cube have?", "spatial", ["4", "6", "8", "12"], "6"),
            _choice(
                "A square is rotated 90 degrees clockwise. The top-left corner is now:",
                "spatial",
                ["Top-right", "Bottom-left", "Bottom-right", "Top-left"],
                "Top-right",
            ),
            _choice("Which is the odd one out: 3, 5, 7, 9, 11?", "speed", ["3", "5", "9", "11"], "9"),
            _choice(
                "Remember: RED, 7, TABLE, 2. What was the second item?",
                "memory",
                ["RED", "7", "TABLE", "2"],
                "7",
            ),
        ],
    },
    {
        "test_name": "Workplace Communication",
        "test_type": "communication",
        "description": "Listening, clarity and feedback habits in day-to-day work.",
        "instructions": "Rate each statement from 1 (never) to 5 (always).",
        "time_limit": 15,
        "questions": [
            _scale("I confirm I have understood a request before starting work.", "listening"),
            _scale("I let others finish speaking before I respond.", "listening"),
            _scale("I adapt my explanation to the person I am talking to.", "clarity"),
            _scale("My emails state the action needed in the first lines.", "clarity"),
            _scale("I give feedback that is specific and actionable.", "feedback"),
            _scale("I ask for feedback on my own work.", "feedback"),
        ],
    },
    {
        "test_name": "Values and Culture Alignment",
        "test_type": "culture",
        "description": "How closely working preferences match the organisation's values.",
        "instructions": "Answer yes or no based on what you would usually do.",
        "time_limit": 10,
        "questions": [
            _yes_no("Would you share credit for a success with the whole team?", "teamwork"),
            _yes_no("Would you raise a mistake you made even if nobody noticed it?", "integrity"),
            _yes_no("Do you volunteer for tasks outside your job description?", "ownership"),
            _yes_no("Do you keep commitments when priorities get busy?", "integrity"),
            _yes_no("Do you help new colleagues settle in without being asked?", "teamwork"),
        ],
    },
]


def seed(*, database_url: str | None = None, replace: bool = False) -> tuple[int, int]:
    """Returns (tests created, tests skipped)."""
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///hrms.db").strip()
    created = skipped = 0
    with script_session(db_url) as s:
        for definition in TESTS:
            existing = (
                s.query(PsychometricTest)
                .filter(PsychometricTest.test_name == definition["test_name"], PsychometricTest.is_active.is_(True))
                .all()
            )
            if existing and not replace:
                skipped += 1
                continue
            for old in existing:
                old.is_active = False

            test = create_test(s, {k: v for k, v in definition.items() if k != "questions"}, user=None)
            for order, question in enumerate(definition["questions"], start=1):
                add_question(s, test, {**question, "order": order}, user=None)
            created += 1
    return created, skipped


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the standard psychometric tests.")
    parser.add_argument("--replace", action="store_true", help="Deactivate existing tests with the same name and recreate them.")
    args = parser.parse_args()
    created, skipped = seed(replace=args.replace)
    print(f"Psychometric tests created: {created}, skipped (already present): {skipped}")


if __name__ == "__main__":
    main()
