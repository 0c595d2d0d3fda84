"""
Central constants for the HRMS application: permission catalogue and seeded roles.
"""
from __future__ import annotations

PERMISSIONS: list[tuple[str, str]] = [
    ("admin.view", "Admin: view audit trail"),
    ("users.manage", "Users: manage accounts and roles"),
    # Employees & onboarding
    ("departments.manage", "Departments: manage"),
    ("employees.view", "Employees: view"),
    ("employees.manage", "Employees: create/edit"),
    ("onboarding.view", "Onboarding: view checklists"),
    ("onboarding.manage", "Onboarding: edit checklists"),
    ("onboarding.verify", "Onboarding: verify documents"),
    # Work tracking
    ("tasks.view_all", "Tasks: view all"),
    ("tasks.manage", "Tasks: assign and respond to requests"),
    ("projects.view", "Projects: view"),
    ("projects.manage", "Projects: manage"),
    # Leave
    ("leave.view_all", "Leave: view all requests"),
    ("leave.approve", "Leave: approve/reject"),
    ("leave.process", "Leave: admin processing"),
    # Logistics
    ("logistics.view", "Logistics: view"),
    ("logistics.request", "Logistics: submit requests"),
    ("logistics.approve", "Logistics: approve/reject requests"),
    ("logistics.manage", "Logistics: manage items and purchasing"),
    ("logistics.expenses", "Logistics: manage expenses and reports"),
    # Recognition
    ("recognition.nominate", "Recognition: nominate"),
    ("recognition.approve", "Recognition: approve"),
    # Psychometrics
    ("psychometrics.view", "Psychometrics: view results"),
    ("psychometrics.manage", "Psychometrics: manage tests"),
    # Contracts
    ("contracts.view", "Contracts: view all"),
    ("contracts.manage", "Contracts: issue"),
    # Billing
    ("billing.view", "Billing: view"),
    ("billing.manage", "Billing: manage trials and subscriptions"),
    # Social media
    ("social.view", "Social media: view"),
    ("social.create", "Social media: create content"),
    ("social.approve", "Social media: approve content"),
    ("social.manage", "Social media: manage campaigns and accounts"),
]

ALL_PERMISSION_KEYS = [key for key, _ in PERMISSIONS]

_EMPLOYEE_PERMISSIONS = [
    "logistics.request",
    "recognition.nominate",
    "projects.view",
]

ROLES: dict[str, tuple[str, list[str]]] = {
    "admin": ("Administrator", ALL_PERMISSION_KEYS),
    "hr_admin": (
        "HR Administrator",
        [
            "admin.view",
            "users.manage",
            "departments.manage",
            "employees.view",
            "employees.manage",
            "onboarding.view",
            "onboarding.manage",
            "onboarding.verify",
            "tasks.view_all",
            "tasks.manage",
            "projects.view",
            "projects.manage",
            "leave.view_all",
            "leave.approve",
            "leave.process",
            "logistics.view",
            "logistics.request",
            "logistics.approve",
            "recognition.nominate",
            "recognition.approve",
            "psychometrics.view",
            "psychometrics.manage",
            "contracts.view",
            "contracts.manage",
            "billing.view",
            "billing.manage",
        ],
    ),
    "manager": (
        "Manager",
        _EMPLOYEE_PERMISSIONS
        + [
            "employees.view",
            "onboarding.view",
            "tasks.view_all",
            "tasks.manage",
            "projects.manage",
            "leave.view_all",
            "leave.approve",
            "logistics.view",
            "recognition.approve",
        ],
    ),
    "logistics_manager": (
        "Logistics Manager",
        _EMPLOYEE_PERMISSIONS
        + ["logistics.view", "logistics.approve", "logistics.manage", "logistics.expenses"],
    ),
    "social_media_manager": (
        "Social Media Manager",
        _EMPLOYEE_PERMISSIONS + ["social.view", "social.create", "social.approve", "social.manage"],
    ),
    "content_creator": ("Content Creator", _EMPLOYEE_PERMISSIONS + ["social.view", "social.create"]),
    "employee": ("Employee", _EMPLOYEE_PERMISSIONS),
}

# Role keys that receive HR notification emails (overdue tasks, contract signatures, trial requests).
HR_ROLE_KEYS = ("admin", "hr_admin")


# Feature flags per subscription plan. Trial accounts get the professional set.
PLAN_FEATURES: dict[str, tuple[str, ...]] = {
    "starter": (
        "employees",
        "basic_tasks",
        "basic_profile",
        "basic_onboarding",
    ),
    "professional": (
        "employees",
        "basic_tasks",
        "basic_profile",
        "basic_onboarding",
        "departments",
        "advanced_tasks",
        "project_management",
        "logistics_basic",
        "recognition",
        "analytics_basic",
    ),
    "enterprise": (
        "employees",
        "basic_tasks",
        "basic_profile",
        "basic_onboarding",
        "departments",
        "advanced_tasks",
        "project_management",
        "logistics_basic",
        "logistics_advanced",
        "recognition",
        "analytics_advanced",
        "psychometric_tests",
        "advanced_onboarding",
        "content_creators",
        "social_media_hub",
        "advanced_reporting",
        "api_access",
    ),
}
TRIAL_PLAN = "professional"
