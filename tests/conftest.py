import pytest
from werkzeug.security import generate_password_hash

from app.hrms import create_app
from app.hrms.auth import reset_login_attempts
from app.hrms.db import session_scope
from app.hrms.models import Base, Role, User
from app.hrms.modules.billing.service import ensure_plans
from scripts.init_db import seed_permissions_and_roles


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("MAIL_SUPPRESS_SEND", "1")
    monkeypatch.setenv("APP_BASE_URL", "http://hrms.test")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "STRIPE_SECRET_KEY"):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")

    app = create_app()
    app.config["LOCAL_STORAGE_ROOT"] = str(tmp_path / "storage")
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        seed_permissions_and_roles(s)
        ensure_plans(s)

    reset_login_attempts()
    yield app
    reset_login_attempts()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_user(app):
    """Create an active user with the given roles; returns the user id."""

    def _make(email: str, *roles: str, password: str = "pw-secret-1", **fields) -> int:
        with session_scope(app) as s:
            u = User(
                email=email,
                password_hash=generate_password_hash(password),
                is_active=True,
                first_name=fields.pop("first_name", email.split("@")[0].capitalize()),
                last_name=fields.pop("last_name", "Tester"),
                **fields,
            )
            for key in roles:
                u.roles.append(s.query(Role).filter(Role.key == key).one())
            s.add(u)
            s.flush()
            return u.id

    return _make


@pytest.fixture()
def mail(app):
    """Messages captured by the suppressed mail transport."""
    box = app.extensions.setdefault("mail_outbox", [])
    box.clear()
    return box


@pytest.fixture()
def login():
    """Log in and attach the CSRF token to every later request from that client."""

    def _login(client, email: str, password: str = "pw-secret-1") -> dict:
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        client.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["csrf_token"]
        return r.json["user"]

    return _login


@pytest.fixture()
def as_user(app, make_user, login):
    """A fresh logged-in test client for a new user with the given roles."""

    def _as_user(email: str, *roles: str, **fields):
        make_user(email, *roles, **fields)
        c = app.test_client()
        login(c, email)
        return c

    return _as_user


@pytest.fixture()
def make_employee(app, make_user):
    """Create a user plus a linked employee record; returns (user_id, employee_id)."""
    from app.hrms.modules.employees.models import Employee

    counter = {"n": 0}

    def _make(email: str, *roles: str, **fields) -> tuple[int, int]:
        user_id = make_user(email, *(roles or ("employee",)))
        counter["n"] += 1
        with session_scope(app) as s:
            emp = Employee(
                user_id=user_id,
                employee_number=f"T{counter['n']:03d}",
                status=fields.pop("status", "active"),
                **fields,
            )
            s.add(emp)
            s.flush()
            return user_id, emp.id

    return _make
