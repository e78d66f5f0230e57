from datetime import date

from heartf.logic.invoicing import (
    apply_invoice_update,
    balance_due,
    booking_invoice_amounts,
    draft_invoice_from_booking,
    prepare_new_invoice,
)


def test_booking_amounts_apply_tax_to_base_price():
    amounts = booking_invoice_amounts({"total_price": 1150, "surcharges": 150, "discount": 0})

    assert amounts["subtotal"] == 1000.0
    assert amounts["tax_amount"] == 150.0
    assert amounts["discount_amount"] == 0.0
    assert amounts["total_amount"] == 1300.0


def test_booking_amounts_with_discount_round_to_cents():
    amounts = booking_invoice_amounts({"total_price": "999.99", "surcharges": "10.005", "discount": 25})

    assert amounts["subtotal"] == 1014.99
    assert amounts["tax_amount"] == 152.25
    assert amounts["total_amount"] == 1152.24


def test_draft_invoice_from_booking():
    booking = {"id": 42, "customer_id": 3, "total_price": 500, "currency": "ZAR"}
    invoice = draft_invoice_from_booking(booking, issue_date=date(2026, 3, 10))

    assert invoice["invoice_number"] == "INV-B42-2026"
    assert invoice["booking_id"] == 42
    assert invoice["customer_id"] == 3
    assert invoice["issue_date"] == "2026-03-10"
    assert invoice["due_date"] == "2026-04-09"
    assert invoice["status"] == "draft"
    assert invoice["currency"] == "ZAR"
    assert invoice["total_amount"] == 575.0


def test_draft_invoice_defaults_currency():
    invoice = draft_invoice_from_booking({"id": 1}, issue_date=date(2026, 1, 1))
    assert invoice["currency"] == "USD"
    assert invoice["total_amount"] == 0.0


def test_paid_update_stamps_and_zeroes_balance():
    invoice = {"id": 1, "status": "sent", "total_amount": 1300.0, "amount_paid": 0}
    updated = apply_invoice_update(invoice, {"status": "paid"})

    assert updated["paid_at"]
    assert updated["amount_paid"] == 1300.0
    assert updated["balance_due"] == 0.0


def test_paid_update_keeps_existing_payment_details():
    invoice = {"id": 1, "status": "sent", "total_amount": 1300.0, "amount_paid": 1000, "paid_at": "2026-01-01"}
    updated = apply_invoice_update(invoice, {"status": "paid"})

    assert updated["paid_at"] == "2026-01-01"
    assert updated["amount_paid"] == 1000
    assert updated["balance_due"] == 0.0


def test_partial_payment_recomputes_balance():
    invoice = {"id": 1, "status": "sent", "total_amount": 1300.0, "amount_paid": 0}
    updated = apply_invoice_update(invoice, {"amount_paid": 300.5})

    assert updated["balance_due"] == 999.5
    assert "paid_at" not in updated


def test_balance_never_negative():
    assert balance_due(100, 250) == 0.0


def test_prepare_new_invoice_defaults():
    prepared = prepare_new_invoice({"total_amount": 200})
    assert prepared["status"] == "draft"
    assert prepared["amount_paid"] == 0.0
    assert prepared["balance_due"] == 200.0
