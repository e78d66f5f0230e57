from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from heartf.utils.clock import utcnow

CENT = Decimal("0.01")
BOOKING_TAX_RATE = Decimal("0.15")
DEFAULT_PAYMENT_TERMS_DAYS = 30


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return parsed if parsed.is_finite() else Decimal("0")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _as_float(value: Decimal) -> float:
    return float(_money(value))


def booking_invoice_amounts(booking: dict[str, Any]) -> dict[str, float]:
    """Booking total_price already includes surcharges net of discount; tax applies to the base."""
    total_price = _to_decimal(booking.get("total_price"))
    surcharges = _to_decimal(booking.get("surcharges"))
    discount = _to_decimal(booking.get("discount"))

    subtotal = total_price - surcharges + discount
    tax_amount = subtotal * BOOKING_TAX_RATE
    total_amount = subtotal + tax_amount + surcharges - discount

    return {
        "subtotal": _as_float(subtotal),
        "tax_amount": _as_float(tax_amount),
        "discount_amount": _as_float(discount),
        "total_amount": _as_float(total_amount),
    }


def draft_invoice_from_booking(booking: dict[str, Any], *, issue_date: date | None = None) -> dict[str, Any]:
    issued = issue_date or utcnow().date()
    return {
        "invoice_number": f"INV-B{booking.get('id')}-{issued.year}",
        "customer_id": booking.get("customer_id"),
        "booking_id": booking.get("id"),
        "invoice_type": "booking",
        "issue_date": issued.isoformat(),
        "due_date": (issued + timedelta(days=DEFAULT_PAYMENT_TERMS_DAYS)).isoformat(),
        "payment_terms": DEFAULT_PAYMENT_TERMS_DAYS,
        "currency": booking.get("currency") or "USD",
        "status": "draft",
        "amount_paid": 0.0,
        **booking_invoice_amounts(booking),
    }


def balance_due(total_amount: Any, amount_paid: Any) -> float:
    remaining = _to_decimal(total_amount) - _to_decimal(amount_paid)
    return _as_float(max(remaining, Decimal("0")))


def apply_invoice_update(existing: dict[str, Any], updated: dict[str, Any]) -> dict[str, Any]:
    now_iso = utcnow().isoformat()
    merged = {**existing, **updated, "updated_at": now_iso}

    if merged.get("status") == "paid":
        if not merged.get("paid_at"):
            merged["paid_at"] = now_iso
        if _to_decimal(merged.get("amount_paid")) <= 0:
            merged["amount_paid"] = _as_float(_to_decimal(merged.get("total_amount")))
        merged["balance_due"] = 0.0
        return merged

    merged["balance_due"] = balance_due(merged.get("total_amount"), merged.get("amount_paid"))
    return merged


def prepare_new_invoice(invoice: dict[str, Any]) -> dict[str, Any]:
    prepared = dict(invoice)
    prepared.setdefault("amount_paid", 0.0)
    prepared.setdefault("status", "draft")
    if prepared.get("status") == "paid":
        return apply_invoice_update(prepared, {})
    prepared["balance_due"] = balance_due(prepared.get("total_amount"), prepared.get("amount_paid"))
    return prepared
