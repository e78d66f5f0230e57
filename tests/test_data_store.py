import pytest

from conftest import login, make_user
from heartf.core.config import settings
from heartf.services import data_store


ACTOR = {"id": 1, "role": "admin"}


def _rule(field, operator, value=None, points=10, is_active=True):
    return {
        "rule_name": f"{field} {operator}",
        "condition": {"field": field, "operator": operator, "value": value},
        "points": points,
        "is_active": is_active,
    }


# ── Reducers ───────────────────────────────────────────────────────────────────

def test_normalize_state_fills_missing_collections():
    state = data_store.normalize_state({"vehicles": [{"id": 1}, "junk"], "unknown": [1]})
    assert state["vehicles"] == [{"id": 1}]
    assert state["bookings"] == []
    assert "unknown" not in state


def test_add_assigns_next_id_and_prepends():
    state = data_store.empty_state()
    first = data_store.add_record(state, "vehicles", {"registration": "CA 123"}, ACTOR)
    second = data_store.add_record(state, "vehicles", {"registration": "CA 456"}, ACTOR)

    assert first["id"] == 1
    assert second["id"] == 2
    assert first["created_at"] and first["updated_at"]
    assert [v["id"] for v in state["vehicles"]] == [2, 1]


def test_add_ignores_client_supplied_id():
    state = data_store.empty_state()
    state["vehicles"] = [{"id": 9}]
    record = data_store.add_record(state, "vehicles", {"id": 3}, ACTOR)
    assert record["id"] == 10


def test_unknown_collection():
    with pytest.raises(data_store.UnknownCollectionError):
        data_store.add_record(data_store.empty_state(), "spaceships", {}, ACTOR)


def test_booking_add_records_history_and_audit():
    state = data_store.empty_state()
    booking = data_store.add_record(state, "bookings", {"booking_number": "BK-1", "status": "pending"}, ACTOR)

    assert booking["status_history"][0]["to"] == "pending"
    assert state["auditLog"][0]["action"] == "booking.create"
    assert state["auditLog"][0]["entity"]["ref"] == "BK-1"


def test_booking_update_applies_status_rules():
    state = data_store.empty_state()
    booking = data_store.add_record(state, "bookings", {"booking_number": "BK-1", "status": "pending"}, ACTOR)
    updated = data_store.update_record(state, "bookings", booking["id"], {"status": "confirmed"}, ACTOR)

    assert updated["confirmed_at"]
    assert [event["to"] for event in updated["status_history"]] == ["pending", "confirmed"]
    assert state["auditLog"][0]["action"] == "booking.status.change"
    assert state["bookings"][0] is updated


def test_update_unknown_record():
    with pytest.raises(data_store.RecordNotFoundError):
        data_store.update_record(data_store.empty_state(), "vehicles", 99, {"make": "MAN"}, ACTOR)


def test_update_keeps_id_and_created_at():
    state = data_store.empty_state()
    vehicle = data_store.add_record(state, "vehicles", {"make": "Volvo"}, ACTOR)
    updated = data_store.update_record(state, "vehicles", str(vehicle["id"]), {"id": 55, "created_at": "x", "make": "MAN"})

    assert updated["id"] == vehicle["id"]
    assert updated["created_at"] == vehicle["created_at"]
    assert updated["make"] == "MAN"


def test_invoice_paid_update():
    state = data_store.empty_state()
    invoice = data_store.add_record(state, "invoices", {"total_amount": 400}, ACTOR)
    assert invoice["balance_due"] == 400.0

    paid = data_store.update_record(state, "invoices", invoice["id"], {"status": "paid"}, ACTOR)
    assert paid["balance_due"] == 0.0
    assert paid["amount_paid"] == 400.0


def test_leads_are_scored_and_rescored_when_rules_change():
    state = data_store.empty_state()
    lead = data_store.add_record(state, "leads", {"industry": "fmcg"}, ACTOR)
    assert lead["lead_score"] == 0

    rule = data_store.add_record(state, "leadScoringRules", _rule("industry", "equals", "FMCG", points=25), ACTOR)
    assert state["leads"][0]["lead_score"] == 25

    data_store.update_record(state, "leadScoringRules", rule["id"], {"points": 30}, ACTOR)
    assert state["leads"][0]["lead_score"] == 30

    updated = data_store.update_record(state, "leads", lead["id"], {"industry": "mining"}, ACTOR)
    assert updated["lead_score"] == 0


def test_delete_record():
    state = data_store.empty_state()
    vehicle = data_store.add_record(state, "vehicles", {"make": "Volvo"}, ACTOR)

    assert data_store.delete_record(state, "vehicles", vehicle["id"]) is True
    assert data_store.delete_record(state, "vehicles", vehicle["id"]) is False
    assert state["vehicles"] == []


def test_audit_log_is_capped(monkeypatch):
    monkeypatch.setattr(settings, "AUDIT_LOG_CAP", 3)
    state = data_store.empty_state()
    for n in range(5):
        data_store.append_audit(state, {"action": f"test.{n}"})

    assert [entry["action"] for entry in state["auditLog"]] == ["test.4", "test.3", "test.2"]


def test_change_booking_status_checks():
    state = data_store.empty_state()
    booking = data_store.add_record(state, "bookings", {"status": "pending"}, ACTOR)

    with pytest.raises(data_store.PermissionDenied):
        data_store.change_booking_status(state, booking["id"], "confirmed", role="finance")
    with pytest.raises(data_store.PermissionDenied):
        data_store.change_booking_status(state, booking["id"], "confirmed", role="driver")
    with pytest.raises(data_store.BookingTransitionError):
        data_store.change_booking_status(state, booking["id"], "delivered", role="admin")
    with pytest.raises(data_store.DataStoreError):
        data_store.change_booking_status(state, booking["id"], "teleported", role="admin")

    moved = data_store.change_booking_status(state, booking["id"], "confirmed", role="dispatcher", actor=ACTOR)
    assert moved["status"] == "confirmed"


def test_state_round_trips_through_client_state(db, org):
    state = data_store.load_state(db, org.id)
    data_store.add_record(state, "drivers", {"name": "Sipho"}, ACTOR)
    data_store.save_state(db, org.id, state)
    db.commit()

    reloaded = data_store.load_state(db, org.id)
    assert reloaded["drivers"][0]["name"] == "Sipho"

    data_store.add_record(reloaded, "drivers", {"name": "Thandi"}, ACTOR)
    data_store.save_state(db, org.id, reloaded)
    db.commit()
    db.expire_all()

    assert [d["name"] for d in data_store.load_state(db, org.id)["drivers"]] == ["Thandi", "Sipho"]


# ── HTTP ───────────────────────────────────────────────────────────────────────

def test_data_requires_auth(client):
    response = client.get("/api/data")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthenticated"}


def test_data_crud_over_http(admin_client):
    response = admin_client.get("/api/data")
    assert response.status_code == 200
    assert response.json()["data"]["vehicles"] == []

    created = admin_client.post("/api/data/vehicles", json={"make": "Volvo"}).json()["record"]
    assert created["id"] == 1

    patched = admin_client.patch(f"/api/data/vehicles/{created['id']}", json={"make": "Scania"})
    assert patched.json()["record"]["make"] == "Scania"

    missing = admin_client.patch("/api/data/vehicles/404", json={"make": "MAN"})
    assert missing.status_code == 404

    deleted = admin_client.delete(f"/api/data/vehicles/{created['id']}")
    assert deleted.json() == {"ok": True, "deleted": True}

    unknown = admin_client.post("/api/data/spaceships", json={})
    assert unknown.status_code == 404


def test_replace_requires_data_import(client, db, org):
    make_user(db, org, "cust@heartf.test", "customer")
    login(client, "cust@heartf.test")

    response = client.put("/api/data", json={"data": {"vehicles": []}})
    assert response.status_code == 403


def test_replace_whole_blob(admin_client):
    response = admin_client.put("/api/data", json={"data": {"vehicles": [{"id": 4, "make": "MAN"}]}})
    assert response.status_code == 200
    assert admin_client.get("/api/data").json()["data"]["vehicles"] == [{"id": 4, "make": "MAN"}]


def test_booking_status_endpoint(client, db, org, admin):
    login(client, admin.email)
    booking = client.post("/api/data/bookings", json={"booking_number": "BK-9", "status": "pending"}).json()["record"]

    make_user(db, org, "driver@heartf.test", "driver")
    login(client, "driver@heartf.test")
    forbidden = client.post(f"/api/bookings/{booking['id']}/status", json={"status": "confirmed"})
    assert forbidden.status_code == 403

    make_user(db, org, "dispatch@heartf.test", "dispatcher")
    login(client, "dispatch@heartf.test")
    invalid = client.post(f"/api/bookings/{booking['id']}/status", json={"status": "delivered"})
    assert invalid.status_code == 403

    login(client, admin.email)
    conflict = client.post(f"/api/bookings/{booking['id']}/status", json={"status": "delivered"})
    assert conflict.status_code == 409

    login(client, "dispatch@heartf.test")
    ok = client.post(f"/api/bookings/{booking['id']}/status", json={"status": "confirmed"})
    assert ok.status_code == 200
    assert ok.json()["booking"]["status"] == "confirmed"
    assert ok.json()["booking"]["status_history"][-1]["by"]["role"] == "dispatcher"


def test_permission_overrides_disable_status_changes(client, db, org, admin):
    login(client, admin.email)
    booking = client.post("/api/data/bookings", json={"status": "pending"}).json()["record"]
    response = client.put("/api/permissions", json={"matrix": {"dispatcher": {"booking.status.change": False}}})
    assert response.status_code == 200
    assert response.json()["matrix"]["dispatcher"]["booking.status.change"] is False

    make_user(db, org, "dispatch@heartf.test", "dispatcher")
    login(client, "dispatch@heartf.test")
    assert client.put("/api/permissions", json={"matrix": {}}).status_code == 403

    blocked = client.patch(f"/api/data/bookings/{booking['id']}", json={"status": "confirmed"})
    assert blocked.status_code == 403

    notes = client.patch(f"/api/data/bookings/{booking['id']}", json={"notes": "dock 4"})
    assert notes.status_code == 200


def test_invoice_from_booking(admin_client):
    booking = admin_client.post(
        "/api/data/bookings", json={"status": "delivered", "total_price": 1150, "surcharges": 150}
    ).json()["record"]

    response = admin_client.post(f"/api/bookings/{booking['id']}/invoice")
    assert response.status_code == 200
    invoice = response.json()["invoice"]
    assert invoice["invoice_number"].startswith(f"INV-B{booking['id']}-")
    assert invoice["total_amount"] == 1300.0
    assert invoice["balance_due"] == 1300.0


def test_lead_score_drops_to_zero_when_last_rule_is_deactivated():
    state = data_store.empty_state()
    rule = data_store.add_record(state, "leadScoringRules", _rule("industry", "equals", "retail", points=25), ACTOR)
    data_store.add_record(state, "leads", {"industry": "retail"}, ACTOR)
    assert state["leads"][0]["lead_score"] == 25

    data_store.update_record(state, "leadScoringRules", rule["id"], {"is_active": False}, ACTOR)
    assert state["leads"][0]["lead_score"] == 0


def test_lead_score_drops_to_zero_when_last_rule_is_deleted():
    state = data_store.empty_state()
    rule = data_store.add_record(state, "leadScoringRules", _rule("industry", "equals", "retail", points=25), ACTOR)
    data_store.add_record(state, "leads", {"industry": "retail", "lead_score": 80}, ACTOR)

    data_store.delete_record(state, "leadScoringRules", rule["id"])
    assert state["leads"][0]["lead_score"] == 0


def test_audit_entry_keeps_server_id_and_time():
    state = data_store.empty_state()
    entry = data_store.append_audit(state, {"id": "mine", "at": "2020-01-01T00:00:00", "action": "test.forged"})
    assert entry["id"] != "mine"
    assert not entry["at"].startswith("2020")


def test_audit_log_cannot_be_written_over_http(client, db, org, admin):
    make_user(db, org, "cust@heartf.test", "customer")
    login(client, "cust@heartf.test")

    forged = {"action": "user.role_updated", "actor": {"id": 999, "role": "admin"}, "at": "2020-01-01T00:00:00"}
    response = client.post("/api/data/auditLog", json=forged)
    assert response.status_code == 403
    assert response.json() == {"error": "Audit log is read-only"}

    login(client, admin.email)
    assert client.post("/api/data/auditLog", json=forged).status_code == 403
    assert client.patch("/api/data/auditLog/1", json=forged).status_code == 403
    assert client.delete("/api/data/auditLog/1").status_code == 403
    assert client.get("/api/data").json()["data"]["auditLog"] == []


def test_collection_writes_follow_roles(client, db, org, admin):
    login(client, admin.email)
    booking = client.post("/api/data/bookings", json={"status": "confirmed"}).json()["record"]
    invoice = client.post("/api/data/invoices", json={"total_amount": 100}).json()["record"]

    make_user(db, org, "driver@heartf.test", "driver")
    login(client, "driver@heartf.test")
    assert client.post("/api/data/leadScoringRules", json=_rule("industry", "exists")).status_code == 403
    assert client.patch(f"/api/data/invoices/{invoice['id']}", json={"status": "paid"}).status_code == 403
    assert client.delete(f"/api/data/invoices/{invoice['id']}").status_code == 403
    assert client.patch(f"/api/data/bookings/{booking['id']}", json={"total_price": 1}).status_code == 403

    moved = client.patch(f"/api/data/bookings/{booking['id']}", json={"status": "in_transit"})
    assert moved.status_code == 200
    assert moved.json()["record"]["status"] == "in_transit"

    make_user(db, org, "fin@heartf.test", "finance")
    login(client, "fin@heartf.test")
    paid = client.patch(f"/api/data/invoices/{invoice['id']}", json={"status": "paid"})
    assert paid.json()["record"]["balance_due"] == 0.0


def test_audit_log_hidden_without_audit_view(client, db, org, admin):
    login(client, admin.email)
    client.post("/api/data/bookings", json={"status": "pending"})
    assert len(client.get("/api/data").json()["data"]["auditLog"]) == 1

    make_user(db, org, "cust@heartf.test", "customer")
    login(client, "cust@heartf.test")
    data = client.get("/api/data").json()["data"]
    assert "auditLog" not in data
    assert len(data["bookings"]) == 1


def test_replace_keeps_stored_audit_log(admin_client):
    admin_client.post("/api/data/bookings", json={"status": "pending"})
    forged = [{"id": "x", "action": "user.deleted", "at": "2020-01-01T00:00:00"}]

    response = admin_client.put("/api/data", json={"data": {"vehicles": [], "auditLog": forged}})
    audit_log = response.json()["data"]["auditLog"]
    assert [entry["action"] for entry in audit_log] == ["booking.create"]
