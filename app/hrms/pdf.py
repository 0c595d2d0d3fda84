"""
PDF rendering (reportlab canvas): onboarding summaries, psychometric reports, employment contracts.
"""
from __future__ import annotations

import io
from datetime import datetime
from typing import TYPE_CHECKING, Any

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

if TYPE_CHECKING:
    from app.hrms.modules.contracts.models import EmploymentContract
    from app.hrms.modules.employees.models import Employee
    from app.hrms.modules.psychometrics.models import PsychometricAttempt

MARGIN = 56
LINE_HEIGHT = 16
BODY_FONT = ("Helvetica", 10)
HEADING_FONT = ("Helvetica-Bold", 13)
TITLE_FONT = ("Helvetica-Bold", 18)


class _Document:
    def __init__(self, title: str) -> None:
        self.buf = io.BytesIO()
        self.c = canvas.Canvas(self.buf, pagesize=A4)
        self.c.setTitle(title)
        self.width, self.height = A4
        self.y = self.height - MARGIN
        self.title(title)
        self.line(f"Generated {datetime.utcnow().strftime('%Y-%m-%d %H:%M')} UTC", font=("Helvetica-Oblique", 8))
        self.gap()

    def _ensure_room(self, needed: float = LINE_HEIGHT) -> None:
        if self.y - needed < MARGIN:
            self.c.showPage()
            self.y = self.height - MARGIN

    def title(self, text: str) -> None:
        self.c.setFont(*TITLE_FONT)
        self.c.drawString(MARGIN, self.y, text)
        self.y -= LINE_HEIGHT * 1.6

    def heading(self, text: str) -> None:
        self._ensure_room(LINE_HEIGHT * 2)
        self.y -= LINE_HEIGHT * 0.4
        self.c.setFont(*HEADING_FONT)
        self.c.drawString(MARGIN, self.y, text)
        self.y -= LINE_HEIGHT * 1.2

    def line(self, text: str, *, font: tuple[str, int] = BODY_FONT, indent: int = 0) -> None:
        max_width = self.width - 2 * MARGIN - indent
        for chunk in simpleSplit(text or "", font[0], font[1], max_width) or [""]:
            self._ensure_room()
            self.c.setFont(*font)
            self.c.drawString(MARGIN + indent, self.y, chunk)
            self.y -= LINE_HEIGHT

    def field(self, label: str, value: Any) -> None:
        self.line(f"{label}: {value if value not in (None, '') else '-'}")

    def bullets(self, items: list[str]) -> None:
        for item in items:
            self.line(f"- {item}", indent=12)

    def gap(self) -> None:
        self.y -= LINE_HEIGHT / 2

    def finish(self) -> bytes:
        self.c.showPage()
        self.c.save()
        return self.buf.getvalue()


def render_onboarding_summary(employee: Employee) -> bytes:
    doc = _Document(f"Onboarding Summary: {employee.display_name}")
    doc.field("Employee number", employee.employee_number)
    doc.field("Email", employee.user.email if employee.user else None)
    doc.field("Department", employee.department.name if employee.department else None)
    doc.field("Position", employee.position)
    doc.field("Hire date", employee.hire_date)
    doc.field("Onboarding status", employee.onboarding_status)
    doc.field("Progress", f"{employee.onboarding_progress}%")

    doc.heading("Checklist")
    for item in employee.checklist_items:
        mark = "[x]" if item.is_completed else "[ ]"
        due = f" (due {item.due_date.isoformat()})" if item.due_date else ""
        doc.line(f"{mark} {item.order}. {item.title}{due}")
        details: list[str] = []
        if item.completed_at:
            details.append(f"Completed {item.completed_at.strftime('%Y-%m-%d')}")
        if item.requires_document:
            if item.document_name:
                state = "verified" if item.document_verified else "awaiting verification"
                details.append(f"Document {item.document_name} ({state})")
            else:
                details.append("Document required, not uploaded")
        if item.score is not None:
            details.append(f"Score {item.score}%")
        if details:
            doc.line("; ".join(details), indent=24, font=("Helvetica", 9))
    return doc.finish()


def render_psychometric_report(attempt: PsychometricAttempt, analysis: dict[str, Any]) -> bytes:
    test = attempt.test
    doc = _Document(f"Psychometric Report: {attempt.candidate_name}")
    doc.field("Candidate", f"{attempt.candidate_name} <{attempt.candidate_email}>")
    doc.field("Test", f"{test.test_name} ({test.test_type})" if test else None)
    doc.field("Completed", attempt.completed_at.strftime("%Y-%m-%d %H:%M") if attempt.completed_at else None)
    doc.field("Overall score", f"{analysis.get('overall_score', 0)}%")
    doc.field("Reliability", analysis.get("reliability"))
    doc.field("Verification score", analysis.get("verification_score"))

    detailed = analysis.get("detailed_analysis") or {}
    personality = detailed.get("personality_factors")
    if personality:
        doc.heading("Primary factors")
        for factor, data in personality["primary_factors"].items():
            doc.line(f"{factor}: {data['score']}/10 ({data['level']}, {data['percentile']}th percentile)")
        doc.heading("Global factors")
        for factor, data in personality["global_factors"].items():
            doc.line(f"{factor}: {data['score']} ({data['level']})")
        doc.field("Personality type", personality["personality_type"])
        doc.field("Work style", ", ".join(personality["work_style"]))
        doc.field("Leadership", personality["leadership_potential"])

    cognitive = detailed.get("cognitive_abilities")
    if cognitive:
        doc.heading("Cognitive abilities")
        doc.field("Overall IQ", cognitive["overall_iq"])
        for key in ("verbal", "numerical", "logical", "spatial", "speed", "memory"):
            doc.field(key.capitalize(), f"{cognitive['domains'][key]}%")

    categories = detailed.get("category_scores")
    if categories:
        doc.heading("Category scores")
        for category, pct in categories.items():
            doc.field(category, f"{pct}%")

    for label, key in (
        ("Interpretation", "interpretations"),
        ("Strengths", "strengths"),
        ("Areas for improvement", "areas_for_improvement"),
        ("Risk factors", "risk_factors"),
    ):
        items = analysis.get(key) or []
        if items:
            doc.heading(label)
            doc.bullets(items)

    recs = analysis.get("recommendations") or {}
    if any(recs.values()):
        doc.heading("Recommendations")
        for group in ("hiring", "development", "placement"):
            if recs.get(group):
                doc.line(group.capitalize(), font=("Helvetica-Bold", 10))
                doc.bullets(recs[group])
    return doc.finish()


def render_contract(contract: EmploymentContract) -> bytes:
    doc = _Document(f"Employment Contract: {contract.user.full_name}")
    doc.field("Employee", f"{contract.user.full_name} <{contract.user.email}>")
    doc.field("Position", contract.position)
    doc.field("Start date", contract.start_date)
    doc.field("Salary", f"{contract.salary} {contract.currency}" if contract.salary is not None else None)
    doc.field("Status", contract.status)
    doc.heading("Terms")
    for paragraph in (contract.content or "").split("\n"):
        doc.line(paragraph)
    if contract.status == "signed":
        doc.heading("Signature")
        doc.field("Signed by", contract.signature)
        doc.field("Signed at", contract.signed_at.strftime("%Y-%m-%d %H:%M UTC") if contract.signed_at else None)
        doc.field("IP address", contract.signed_ip)
    return doc.finish()
