"""
Run the periodic sweeps once (schedule with cron or the platform's job runner).

Each sweep commits before its emails go out, so a mail failure never rolls back state.

Usage:
  python scripts/run_scheduled_jobs.py [--only tasks,projects,contracts,trials,social]
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.hrms import create_app
from app.hrms.db import session_scope
from app.hrms.emails import send_project_started, send_task_overdue, send_trial_expiring
from app.hrms.modules.billing.service import process_trial_expirations
from app.hrms.modules.contracts.service import expire_contracts
from app.hrms.modules.projects.service import mark_overdue_project_tasks, start_due_projects
from app.hrms.modules.social_media.service import publish_due_content
from app.hrms.modules.tasks.service import mark_overdue_tasks

logger = logging.getLogger("hrms.jobs")

JOBS = ("tasks", "projects", "contracts", "trials", "social")


def run_tasks(s, now: datetime) -> dict:
    overdue = mark_overdue_tasks(s, now=now)
    s.commit()
    for task, recipients in overdue:
        send_task_overdue(task, recipients)
    return {"tasks_overdue": len(overdue)}


def run_projects(s, now: datetime) -> dict:
    started = start_due_projects(s, today=now.date())
    overdue = mark_overdue_project_tasks(s, now=now)
    s.commit()
    for project in started:
        send_project_started(project)
    return {"projects_started": len(started), "project_tasks_overdue": len(overdue)}


def run_contracts(s, now: datetime) -> dict:
    expired = expire_contracts(s, now=now)
    s.commit()
    return {"contracts_expired": len(expired)}


def run_trials(s, now: datetime) -> dict:
    result = process_trial_expirations(s, now=now)
    s.commit()
    for account, days_left in result.warned:
        send_trial_expiring(account, days_left=days_left)
    return {"trials_warned": len(result.warned), "trials_expired": len(result.expired)}


def run_social(s, now: datetime) -> dict:
    published = publish_due_content(s, now=now)
    s.commit()
    return {"content_published": len(published)}


_RUNNERS = {
    "tasks": run_tasks,
    "projects": run_projects,
    "contracts": run_contracts,
    "trials": run_trials,
    "social": run_social,
}


def run_jobs(app, *, only: list[str] | None = None, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    summary: dict = {}
    with app.app_context():
        for name in only or JOBS:
            try:
                with session_scope(app) as s:
                    summary.update(_RUNNERS[name](s, now))
            except Exception:
                # one failing sweep must not block the others
                logger.exception("Scheduled job '%s' failed", name)
                summary[f"{name}_failed"] = True
    logger.info("Scheduled jobs complete: %s", summary)
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description="Run periodic HRMS sweeps once.")
    parser.add_argument("--only", default="", help=f"Comma-separated subset of: {', '.join(JOBS)}")
    args = parser.parse_args()
    only = [j.strip() for j in args.only.split(",") if j.strip()] or None
    unknown = [j for j in only or [] if j not in _RUNNERS]
    if unknown:
        parser.error(f"Unknown job(s): {', '.join(unknown)}")

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    summary = run_jobs(create_app(), only=only)
    print(summary)
    if any(k.endswith("_failed") for k in summary):
        sys.exit(1)


if __name__ == "__main__":
    main()
