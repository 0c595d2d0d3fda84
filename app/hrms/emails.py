"""
Transactional email senders.

Each sender renders an HTML template from templates/email/ and hands it to the SMTP transport.
They return the number of messages accepted by the transport.
"""
from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from flask import current_app, render_template
from markupsafe import Markup

from app.hrms.mailer import send_email

if TYPE_CHECKING:
    from app.hrms.models import User
    from app.hrms.modules.billing.models import TrialRequest
    from app.hrms.modules.contracts.models import EmploymentContract
    from app.hrms.modules.leave.models import LeaveRequest
    from app.hrms.modules.logistics.models import LogisticsRequest
    from app.hrms.modules.projects.models import Project
    from app.hrms.modules.recognition.models import Recognition
    from app.hrms.modules.tasks.models import Task


def _recipients(to: str | Iterable[str | None]) -> list[str]:
    if isinstance(to, str):
        to = [to]
    seen: list[str] = []
    for addr in to:
        addr = (addr or "").strip().lower()
        if addr and addr not in seen:
            seen.append(addr)
    return seen


def app_url(path: str = "") -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/")
    return f"{base}/{path.lstrip('/')}" if path else base


def deliver(
    to: str | Iterable[str | None],
    subject: str,
    template: str,
    *,
    attachments: list[tuple[str, bytes, str]] | None = None,
    **context: Any,
) -> int:
    html = render_template(f"email/{template}.html", subject=subject, app_url=app_url(), **context)
    text = Markup(html).striptags()
    sent = 0
    for addr in _recipients(to):
        ok, _detail = send_email(addr, subject, text=text, html=html, attachments=attachments)
        if ok:
            sent += 1
    return sent


# --- employees / onboarding -------------------------------------------------


def send_onboarding_invite(user: User, *, token: str, position: str | None) -> int:
    return deliver(
        user.email,
        "Welcome aboard: complete your onboarding",
        "onboarding_invite",
        user=user,
        position=position,
        link=app_url(f"onboarding/{token}"),
    )


# --- tasks / projects -------------------------------------------------------


def send_task_assigned(task: Task) -> int:
    return deliver(
        task.assignee.email if task.assignee else None,
        f"New task assigned: {task.title}",
        "task_assigned",
        task=task,
    )


def send_task_overdue(task: Task, recipients: Iterable[str | None]) -> int:
    return deliver(recipients, f"Task overdue: {task.title}", "task_overdue", task=task)


def send_project_started(project: Project) -> int:
    manager = project.manager
    return deliver(
        manager.email if manager else None,
        f"Project started: {project.name}",
        "project_started",
        project=project,
    )


# --- leave ------------------------------------------------------------------


def send_leave_submitted(leave: LeaveRequest, approver_emails: Iterable[str | None]) -> int:
    return deliver(
        approver_emails,
        f"Leave request from {leave.employee.display_name}",
        "leave_submitted",
        leave=leave,
    )


def send_leave_decision(leave: LeaveRequest) -> int:
    user = leave.employee.user
    return deliver(
        user.email if user else None,
        f"Your leave request was {leave.status}",
        "leave_decision",
        leave=leave,
    )


# --- logistics --------------------------------------------------------------


def send_logistics_submitted(req: LogisticsRequest, approver_emails: Iterable[str | None]) -> int:
    return deliver(approver_emails, f"Logistics request: {req.item_name}", "logistics_submitted", req=req)


def send_logistics_status(req: LogisticsRequest) -> int:
    return deliver(
        req.requester.email if req.requester else None,
        f"Logistics request {req.status}: {req.item_name}",
        "logistics_status",
        req=req,
    )


# --- recognition ------------------------------------------------------------


def send_recognition_approved(rec: Recognition) -> int:
    return deliver(
        rec.nominee.email if rec.nominee else None,
        f"You have been recognised: {rec.title}",
        "recognition_approved",
        rec=rec,
    )


# --- contracts --------------------------------------------------------------


def send_contract_issued(contract: EmploymentContract) -> int:
    return deliver(
        contract.user.email,
        "Your employment contract is ready to sign",
        "contract_issued",
        contract=contract,
        link=app_url(f"contracts/{contract.id}"),
    )


def send_contract_signed(contract: EmploymentContract, hr_emails: Iterable[str | None]) -> int:
    return deliver(
        hr_emails,
        f"Contract signed by {contract.user.full_name}",
        "contract_signed",
        contract=contract,
    )


# --- billing / trials -------------------------------------------------------


def send_trial_request_received(trial: TrialRequest, hr_emails: Iterable[str | None]) -> int:
    return deliver(
        hr_emails,
        f"New trial request: {trial.company}",
        "trial_request_received",
        trial=trial,
    )


def send_trial_request_confirmation(trial: TrialRequest) -> int:
    return deliver(trial.email, "We received your trial request", "trial_request_confirmation", trial=trial)


def send_trial_approved(trial: TrialRequest, *, username: str, password: str) -> int:
    return deliver(
        trial.email,
        "Your free trial is ready",
        "trial_approved",
        trial=trial,
        username=username,
        password=password,
        login_url=app_url("login"),
    )


def send_trial_rejected(trial: TrialRequest) -> int:
    return deliver(trial.email, "Update on your trial request", "trial_rejected", trial=trial)


def send_trial_expiring(user: User, *, days_left: int) -> int:
    return deliver(
        user.email,
        f"Your trial ends in {days_left} day{'s' if days_left != 1 else ''}",
        "trial_expiring",
        user=user,
        days_left=days_left,
        upgrade_url=app_url("subscription"),
    )


def send_payment_failed(user: User, *, amount_display: str) -> int:
    return deliver(
        user.email,
        "Payment failed for your subscription",
        "payment_failed",
        user=user,
        amount_display=amount_display,
        billing_url=app_url("subscription"),
    )
