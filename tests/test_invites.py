from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from conftest import login, make_user
from heartf.core.config import settings
from heartf.models.audit import AuditLog
from heartf.models.auth import Invite
from heartf.models.org import User
from heartf.services import invites
from heartf.services.email import EmailNotConfiguredError
from heartf.services.tokens import sha256_hex
from heartf.utils.clock import utcnow


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []
    monkeypatch.setattr(
        invites,
        "send_invite_email",
        lambda to_email, invite_link, expires_at: sent.append((to_email, invite_link)),
    )
    return sent


def _token_from(link):
    return parse_qs(urlparse(link).query)["token"][0]


def _create(client, email="new.hire@heartf.test", role="dispatcher", **extra):
    return client.post("/api/invites", json={"email": email, "role": role, **extra})


def test_create_invite_sends_email_and_audits(admin_client, db, sent_emails):
    response = _create(admin_client, email="New.Hire@HeartF.test")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["inviteLink"].startswith("http://testserver/accept-invite?token=")
    assert body["expiresAt"]
    assert sent_emails == [("new.hire@heartf.test", body["inviteLink"])]

    invite = db.query(Invite).one()
    assert invite.email == "new.hire@heartf.test"
    assert invite.role == "dispatcher"
    assert invite.token_hash == sha256_hex(_token_from(body["inviteLink"]))
    assert db.query(AuditLog).filter(AuditLog.action == "invite.create").count() == 1


def test_create_invite_without_email(admin_client, sent_emails):
    response = _create(admin_client, sendEmail=False)
    assert response.status_code == 200
    assert sent_emails == []


@pytest.mark.parametrize(
    "email,role,error",
    [
        ("not-an-email", "dispatcher", "Invalid email"),
        ("a@b", "dispatcher", "Invalid email"),
        ("ok@heartf.test", "superuser", "Invalid role"),
    ],
)
def test_create_invite_validation(admin_client, sent_emails, email, role, error):
    response = _create(admin_client, email=email, role=role)
    assert response.status_code == 400
    assert response.json() == {"error": error}


def test_blank_role_defaults_to_customer(admin_client, db, sent_emails):
    assert _create(admin_client, role="").status_code == 200
    assert db.query(Invite).one().role == "customer"


def test_only_admins_create_invites(client, db, org, sent_emails):
    make_user(db, org, "ops@heartf.test", "ops_manager")
    login(client, "ops@heartf.test")
    assert _create(client).status_code == 403


def test_new_invite_revokes_previous_active_invite(admin_client, db, sent_emails):
    _create(admin_client)
    _create(admin_client)

    rows = db.query(Invite).order_by(Invite.id).all()
    assert len(rows) == 2
    assert rows[0].revoked_at is not None
    assert rows[1].revoked_at is None


def test_per_email_rate_limit(admin_client, monkeypatch, sent_emails):
    monkeypatch.setattr(settings, "INVITE_LIMIT_PER_EMAIL_PER_DAY", 2)
    assert _create(admin_client).status_code == 200
    assert _create(admin_client).status_code == 200

    response = _create(admin_client)
    assert response.status_code == 429
    assert "email" in response.json()["error"]

    assert _create(admin_client, email="someone.else@heartf.test").status_code == 200


def test_per_user_rate_limit_counts_last_hour_only(admin_client, db, admin, monkeypatch, sent_emails):
    monkeypatch.setattr(settings, "INVITE_LIMIT_PER_USER_PER_HOUR", 2)
    _create(admin_client, email="one@heartf.test")
    _create(admin_client, email="two@heartf.test")

    response = _create(admin_client, email="three@heartf.test")
    assert response.status_code == 429
    assert "user" in response.json()["error"]

    db.query(Invite).update({Invite.created_at: utcnow() - timedelta(hours=2)})
    db.commit()
    assert _create(admin_client, email="three@heartf.test").status_code == 200


def test_per_org_rate_limit(admin_client, monkeypatch, sent_emails):
    monkeypatch.setattr(settings, "INVITE_LIMIT_PER_ORG_PER_DAY", 1)
    _create(admin_client, email="one@heartf.test")

    response = _create(admin_client, email="two@heartf.test")
    assert response.status_code == 429
    assert "org" in response.json()["error"]


def test_email_failure_rolls_back_invite(admin_client, db, monkeypatch):
    def _fail(*args, **kwargs):
        raise EmailNotConfiguredError("Missing SMTP_HOST")

    monkeypatch.setattr(invites, "send_invite_email", _fail)
    response = _create(admin_client)

    assert response.status_code == 500
    assert response.json() == {"error": "Missing SMTP_HOST"}
    assert db.query(Invite).count() == 0


def test_list_and_revoke(admin_client, db, sent_emails):
    _create(admin_client, email="one@heartf.test")
    _create(admin_client, email="two@heartf.test")

    listed = admin_client.get("/api/invites").json()["invites"]
    assert [row["email"] for row in listed] == ["two@heartf.test", "one@heartf.test"]

    revoked = admin_client.post(f"/api/invites/{listed[0]['id']}/revoke")
    assert revoked.json() == {"ok": True, "changed": True}

    again = admin_client.post(f"/api/invites/{listed[0]['id']}/revoke")
    assert again.json() == {"ok": True, "changed": False}
    assert db.query(AuditLog).filter(AuditLog.action == "invite.revoke").count() == 2


def test_accept_creates_user_and_session(admin_client, db, sent_emails):
    link = _create(admin_client, email="driver.one@heartf.test", role="driver").json()["inviteLink"]
    client = admin_client
    client.cookies.clear()

    response = client.post(
        "/api/invites/accept",
        json={"token": _token_from(link), "password": "driver-pass-1", "firstName": "Bongani", "lastName": "Zulu"},
    )
    assert response.status_code == 200
    user = response.json()["user"]
    assert user["email"] == "driver.one@heartf.test"
    assert user["role"] == "driver"
    assert user["firstName"] == "Bongani"

    me = client.get("/api/auth/me").json()["user"]
    assert me["userId"] == user["userId"]

    invite = db.query(Invite).one()
    assert invite.used_at is not None
    assert db.query(AuditLog).filter(AuditLog.action == "invite.accept").count() == 1

    login(client, "driver.one@heartf.test", "driver-pass-1")


def test_accept_reactivates_existing_user(admin_client, db, org, sent_emails):
    make_user(db, org, "returning@heartf.test", "customer", is_active=False)
    link = _create(admin_client, email="returning@heartf.test", role="finance").json()["inviteLink"]

    response = admin_client.post("/api/invites/accept", json={"token": _token_from(link), "password": "finance-pass-1"})
    assert response.status_code == 200

    db.expire_all()
    user = db.query(User).filter(User.email == "returning@heartf.test").one()
    assert user.is_active is True
    assert user.role == "finance"


def test_accept_errors(admin_client, admin, db, sent_emails):
    def accept(token, password="long-enough-1"):
        return admin_client.post("/api/invites/accept", json={"token": token, "password": password})

    assert accept("").json() == {"error": "Missing token"}
    assert accept("whatever", password="short").status_code == 400
    assert accept("f" * 64).json() == {"error": "Invalid invite"}

    used_link = _create(admin_client, email="used@heartf.test").json()["inviteLink"]
    assert accept(_token_from(used_link)).status_code == 200
    login(admin_client, admin.email)
    assert accept(_token_from(used_link)).json() == {"error": "Invite already used"}

    first = _create(admin_client, email="twice@heartf.test").json()["inviteLink"]
    _create(admin_client, email="twice@heartf.test")
    assert accept(_token_from(first)).json() == {"error": "Invite revoked"}

    expired_link = _create(admin_client, email="late@heartf.test").json()["inviteLink"]
    db.query(Invite).filter(Invite.email == "late@heartf.test").update(
        {Invite.expires_at: utcnow() - timedelta(minutes=5)}
    )
    db.commit()
    assert accept(_token_from(expired_link)).json() == {"error": "Invite expired"}
