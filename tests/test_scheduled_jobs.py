from datetime import datetime, timedelta

from scripts.run_scheduled_jobs import run_jobs


def test_run_jobs_sweeps_each_job(app, as_user, make_user):
    hr = as_user("hr@example.com", "hr_admin")
    user_id = make_user("signer@example.com", "employee")
    r = hr.post("/api/contracts", json={"user_id": user_id, "position": "Planner", "content": "Terms."})
    assert r.status_code == 201

    summary = run_jobs(app, now=datetime.utcnow() + timedelta(days=30))
    assert summary["contracts_expired"] == 1
    assert summary["tasks_overdue"] == 0
    assert summary["trials_expired"] == 0
    assert not any(k.endswith("_failed") for k in summary)

    again = run_jobs(app, only=["contracts"], now=datetime.utcnow() + timedelta(days=31))
    assert again == {"contracts_expired": 0}
