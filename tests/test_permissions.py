import pytest

from heartf.logic.permissions import (
    ACTIONS,
    DEFAULT_PERMISSIONS,
    can,
    can_change_booking_status,
    can_transition_booking_status,
    effective_matrix,
    sanitize_matrix,
)


def test_default_matrix_covers_every_role_and_action():
    for role, row in DEFAULT_PERMISSIONS.items():
        assert set(row) == set(ACTIONS), role


def test_can_uses_defaults():
    assert can("permissions.manage", "admin") is True
    assert can("permissions.manage", "dispatcher") is False
    assert can("booking.status.change", "driver") is True
    assert can("booking.status.change", "finance") is False


def test_can_without_role_or_unknown_values():
    assert can("booking.view", None) is False
    assert can("booking.view", "") is False
    assert can("booking.view", "ghost") is False
    assert can("not.an.action", "admin") is False


def test_override_matrix_wins_only_for_boolean_cells():
    matrix = {"driver": {"booking.status.change": False, "files.view": "yes"}}
    assert can("booking.status.change", "driver", matrix) is False
    assert can("files.view", "driver", matrix) is True
    assert can_change_booking_status("driver", matrix) is False
    assert can_change_booking_status("dispatcher", matrix) is True


@pytest.mark.parametrize(
    "role,from_status,to_status,expected",
    [
        ("admin", "closed", "pending", True),
        ("dispatcher", "pending", "confirmed", True),
        ("dispatcher", "pending", "delivered", False),
        ("ops_manager", "delivered", "closed", True),
        ("driver", "confirmed", "in_transit", True),
        ("driver", "in_transit", "delivered", True),
        ("driver", "pending", "confirmed", False),
        ("customer", "pending", "cancelled", True),
        ("customer", "confirmed", "cancelled", False),
        ("finance", "pending", "confirmed", False),
        (None, "pending", "confirmed", False),
    ],
)
def test_role_transition_map(role, from_status, to_status, expected):
    assert can_transition_booking_status(role, from_status, to_status) is expected


def test_sanitize_matrix_drops_unknown_roles_actions_and_values():
    raw = {
        "driver": {"booking.status.change": False, "made.up": True, "files.view": 1},
        "intruder": {"booking.view": True},
        "finance": "nope",
    }
    assert sanitize_matrix(raw) == {"driver": {"booking.status.change": False}}
    assert sanitize_matrix(None) == {}


def test_effective_matrix_merges_overrides():
    matrix = effective_matrix({"finance": {"permissions.manage": True}})
    assert matrix["finance"]["permissions.manage"] is True
    assert matrix["customer"]["permissions.manage"] is False
    assert set(matrix) == set(DEFAULT_PERMISSIONS)
