#!/usr/bin/env python3
"""
Booking status change dry run.

Runs one booking through a status change in memory, with the same role and
transition checks the API applies, and prints the resulting booking and the
audit entry as JSON. Nothing is written to the database.

Usage:
    python3 scripts/simulate_status_change.py --from pending --to confirmed --role dispatcher
    python3 scripts/simulate_status_change.py --from confirmed --to in_transit --role driver --booking-number BK-1042
"""
import argparse
import json
import sys

from heartf.logic.booking import BookingStatus, allowed_next_statuses
from heartf.services import data_store


def parse_args(argv=None):
    statuses = [status.value for status in BookingStatus]
    parser = argparse.ArgumentParser(description="Simulate a booking status change.")
    parser.add_argument("--from", dest="from_status", required=True, choices=statuses)
    parser.add_argument("--to", dest="to_status", required=True, choices=statuses)
    parser.add_argument("--role", default="dispatcher")
    parser.add_argument("--user-id", type=int, default=1)
    parser.add_argument("--booking-number", default="BK-0001")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    actor = {"id": args.user_id, "role": args.role}

    state = data_store.empty_state()
    booking = data_store.add_record(
        state,
        "bookings",
        {"booking_number": args.booking_number, "status": args.from_status},
        actor,
    )

    try:
        updated = data_store.change_booking_status(
            state,
            booking["id"],
            args.to_status,
            role=args.role,
            actor=actor,
        )
    except data_store.DataStoreError as exc:
        print(
            json.dumps(
                {
                    "ok": False,
                    "status_code": exc.status_code,
                    "error": exc.message,
                    "allowed": [status.value for status in allowed_next_statuses(args.from_status)],
                },
                indent=2,
            )
        )
        return 1

    print(json.dumps({"ok": True, "booking": updated, "audit": state["auditLog"][0]}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
