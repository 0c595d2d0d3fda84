from datetime import datetime, timedelta

from app.hrms.constants import ROLES
from app.hrms.models import User
from app.hrms.rbac import current_plan, required_plan


def _user(**fields) -> User:
    return User(email="u@example.com", password_hash="x", **fields)


def test_host_organisation_gets_enterprise():
    assert current_plan(_user(organization_id=None)) == "enterprise"


def test_trial_and_subscription_plans():
    now = datetime(2025, 3, 1)
    trial = _user(organization_id="trial-1", trial_end_date=now + timedelta(days=2), subscription_status="trial")
    assert current_plan(trial, now=now) == "professional"
    assert current_plan(trial, now=now + timedelta(days=3)) == "starter"

    paid = _user(organization_id="org-9", subscription_plan="enterprise", subscription_status="active")
    assert current_plan(paid, now=now) == "enterprise"
    paid.subscription_status = "past_due"
    assert current_plan(paid, now=now) == "starter"
    assert current_plan(None) == "starter"


def test_required_plan_is_cheapest_plan_with_feature():
    assert required_plan("employees") == "starter"
    assert required_plan("project_management") == "professional"
    assert required_plan("psychometric_tests") == "enterprise"


def test_role_catalogue():
    employee = set(ROLES["employee"][1])
    assert employee == {"logistics.request", "recognition.nominate", "projects.view"}
    assert employee < set(ROLES["manager"][1])
    assert "logistics.manage" not in ROLES["hr_admin"][1]
    assert not any(p.startswith("social.") for p in ROLES["hr_admin"][1])
