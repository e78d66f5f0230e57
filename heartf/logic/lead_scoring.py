"""
Rule-based lead scoring.

A rule looks like::

    {"rule_name": "Big shipper", "condition": {"field": "monthly_shipment_volume",
     "operator": "gte", "value": 50}, "points": 20, "is_active": True}

The score of a lead is the sum of the points of every active rule whose
condition matches the lead.
"""
from __future__ import annotations

import math
import re
from typing import Any, Iterable, Mapping

EXISTENCE_OPERATORS = {"exists", "not_exists"}

OPERATORS = (
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "gt",
    "gte",
    "lt",
    "lte",
    "in",
    "not_in",
    "exists",
    "not_exists",
    "regex",
)


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(_to_text(item) for item in value)
    return str(value)


def _to_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [value]


def compare_values(lead_value: Any, operator: str | None, rule_value: Any) -> bool:
    op = (operator or "").lower()

    if op == "exists":
        return lead_value is not None and _to_text(lead_value).strip() != ""
    if op == "not_exists":
        return lead_value is None or _to_text(lead_value).strip() == ""

    lead_text = _to_text(lead_value).lower()
    rule_text = _to_text(rule_value).lower()
    lead_number = _to_number(lead_value)
    rule_number = _to_number(rule_value)
    both_numeric = lead_number is not None and rule_number is not None

    if op == "equals":
        return lead_number == rule_number if both_numeric else lead_text == rule_text
    if op == "not_equals":
        return lead_number != rule_number if both_numeric else lead_text != rule_text
    if op == "contains":
        return rule_text in lead_text
    if op == "not_contains":
        return rule_text not in lead_text
    if op == "starts_with":
        return lead_text.startswith(rule_text)
    if op == "ends_with":
        return lead_text.endswith(rule_text)
    if op in ("gt", "gte", "lt", "lte"):
        if not both_numeric:
            return False
        if op == "gt":
            return lead_number > rule_number
        if op == "gte":
            return lead_number >= rule_number
        if op == "lt":
            return lead_number < rule_number
        return lead_number <= rule_number
    if op in ("in", "not_in"):
        candidates = [_to_text(item).lower() for item in _to_list(rule_value)]
        found = lead_text in candidates
        return found if op == "in" else not found
    if op == "regex":
        try:
            return re.search(_to_text(rule_value), _to_text(lead_value), re.IGNORECASE) is not None
        except re.error:
            return False

    return False


def calculate_lead_score(lead: Mapping[str, Any], rules: Iterable[Mapping[str, Any]] | None) -> int | float:
    score = 0.0

    for rule in rules or []:
        if not isinstance(rule, Mapping) or not rule.get("is_active"):
            continue

        condition = rule.get("condition") or {}
        field = condition.get("field")
        operator = condition.get("operator")
        if not field or not operator:
            continue

        lead_value = lead.get(field)
        if lead_value is None and str(operator).lower() not in EXISTENCE_OPERATORS:
            continue

        if not compare_values(lead_value, operator, condition.get("value")):
            continue

        points = _to_number(rule.get("points") if rule.get("points") is not None else 0)
        if points is not None:
            score += points

    return int(score) if score.is_integer() else score
