import json

from scripts.simulate_status_change import main


def test_allowed_change_prints_booking_and_audit(capsys):
    assert main(["--from", "pending", "--to", "confirmed", "--role", "dispatcher", "--booking-number", "BK-1042"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["booking"]["status"] == "confirmed"
    assert out["booking"]["confirmed_at"]
    assert out["audit"]["action"] == "booking.status.change"
    assert out["audit"]["meta"] == {"from": "pending", "to": "confirmed"}
    assert out["audit"]["entity"]["ref"] == "BK-1042"


def test_role_without_status_permission(capsys):
    assert main(["--from", "pending", "--to", "cancelled", "--role", "finance"]) == 1

    out = json.loads(capsys.readouterr().out)
    assert out["status_code"] == 403
    assert out["allowed"] == ["confirmed", "cancelled"]


def test_invalid_transition_for_admin(capsys):
    assert main(["--from", "delivered", "--to", "pending", "--role", "admin"]) == 1

    out = json.loads(capsys.readouterr().out)
    assert out["status_code"] == 409
    assert out["allowed"] == ["closed"]
