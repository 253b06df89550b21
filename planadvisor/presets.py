"""Presets provide ready-to-use catalogs for common schemas.

Currently, this is the schema of a vacation rental booking system (users, properties, bookings, payments, reviews and
messages). The bookings are range-partitioned by their start date into yearly partitions for 2024 to 2026. Statistics are
representative estimates for a medium-sized deployment, they are not derived from actual data.
"""
from __future__ import annotations

import copy
from typing import Any

from .catalog import CatalogSnapshot, load_catalog


def _pk(column: str) -> dict[str, Any]:
    return {"name": f"{column}_pkey", "columns": [column], "unique": True}


BookingSchema: dict[str, Any] = {
    "version": 0,
    "tables": [
        {
            "name": "Users",
            "row_count": 50_000,
            "columns": [
                {"name": "user_id", "kind": "uuid", "nullable": False, "distinct_values": 50_000},
                {"name": "first_name", "kind": "text", "nullable": False, "distinct_values": 8_000},
                {"name": "last_name", "kind": "text", "nullable": False, "distinct_values": 20_000},
                {"name": "email", "kind": "text", "nullable": False, "distinct_values": 50_000},
                {"name": "password_hash", "kind": "text", "nullable": False, "distinct_values": 50_000},
                {"name": "phone_number", "kind": "text", "distinct_values": 45_000},
                {"name": "role", "kind": "text", "nullable": False, "distinct_values": 3},
                {"name": "created_at", "kind": "date", "distinct_values": 1_500},
            ],
            "indexes": [_pk("user_id"), {"name": "users_email_key", "columns": ["email"], "unique": True}],
        },
        {
            "name": "Properties",
            "row_count": 10_000,
            "columns": [
                {"name": "property_id", "kind": "uuid", "nullable": False, "distinct_values": 10_000},
                {"name": "host_id", "kind": "uuid", "nullable": False, "distinct_values": 4_000},
                {"name": "name", "kind": "text", "nullable": False, "distinct_values": 9_500},
                {"name": "description", "kind": "text", "nullable": False, "distinct_values": 10_000},
                {"name": "location", "kind": "text", "nullable": False, "distinct_values": 800},
                {"name": "price_per_night", "kind": "numeric", "nullable": False, "distinct_values": 2_000},
                {"name": "created_at", "kind": "date", "distinct_values": 1_500},
                {"name": "updated_at", "kind": "date", "distinct_values": 1_000},
            ],
            "indexes": [_pk("property_id")],
        },
        {
            "name": "Bookings",
            "row_count": 300_000,
            "columns": [
                {"name": "booking_id", "kind": "uuid", "nullable": False, "distinct_values": 300_000},
                {"name": "property_id", "kind": "uuid", "nullable": False, "distinct_values": 10_000},
                {"name": "user_id", "kind": "uuid", "nullable": False, "distinct_values": 40_000},
                {"name": "start_date", "kind": "date", "nullable": False, "distinct_values": 1_095},
                {"name": "end_date", "kind": "date", "nullable": False, "distinct_values": 1_100},
                {"name": "total_price", "kind": "numeric", "nullable": False, "distinct_values": 25_000},
                {"name": "status", "kind": "text", "nullable": False, "distinct_values": 3},
                {"name": "created_at", "kind": "date", "distinct_values": 1_200},
            ],
            "indexes": [_pk("booking_id")],
            "partitioning": {
                "key": "start_date",
                "boundaries": ["2024-01-01", "2025-01-01", "2026-01-01", "2027-01-01"],
                "names": ["bookings_2024", "bookings_2025", "bookings_2026"],
            },
        },
        {
            "name": "Payments",
            "row_count": 250_000,
            "columns": [
                {"name": "payment_id", "kind": "uuid", "nullable": False, "distinct_values": 250_000},
                {"name": "booking_id", "kind": "uuid", "nullable": False, "distinct_values": 250_000},
                {"name": "amount", "kind": "numeric", "nullable": False, "distinct_values": 25_000},
                {"name": "payment_date", "kind": "date", "distinct_values": 1_100},
                {"name": "payment_method", "kind": "text", "nullable": False, "distinct_values": 3},
            ],
            "indexes": [_pk("payment_id"), {"name": "payments_booking_id_key", "columns": ["booking_id"], "unique": True}],
        },
        {
            "name": "Reviews",
            "row_count": 120_000,
            "columns": [
                {"name": "review_id", "kind": "uuid", "nullable": False, "distinct_values": 120_000},
                {"name": "property_id", "kind": "uuid", "nullable": False, "distinct_values": 9_000},
                {"name": "user_id", "kind": "uuid", "nullable": False, "distinct_values": 30_000},
                {"name": "rating", "kind": "numeric", "nullable": False, "distinct_values": 5},
                {"name": "comment", "kind": "text", "nullable": False, "distinct_values": 110_000},
                {"name": "created_at", "kind": "date", "distinct_values": 1_100},
            ],
            "indexes": [_pk("review_id")],
        },
        {
            "name": "Messages",
            "row_count": 400_000,
            "columns": [
                {"name": "message_id", "kind": "uuid", "nullable": False, "distinct_values": 400_000},
                {"name": "sender_id", "kind": "uuid", "nullable": False, "distinct_values": 45_000},
                {"name": "recipient_id", "kind": "uuid", "nullable": False, "distinct_values": 45_000},
                {"name": "message_body", "kind": "text", "nullable": False, "distinct_values": 390_000},
                {"name": "sent_at", "kind": "date", "distinct_values": 1_100},
            ],
            "indexes": [_pk("message_id")],
        },
    ],
}
"""Structured description of the booking system schema, see `catalog.load_catalog` for the format."""


def describe(key: str) -> dict[str, Any]:
    """Provides a copy of the structured description that is registered under the given key. Keys are case-insensitive."""
    if key.lower() == "booking":
        return copy.deepcopy(BookingSchema)
    raise ValueError(f"Unknown presets for key '{key}'")


def fetch(key: str) -> CatalogSnapshot:
    """Provides the catalog registered under the given key. Keys are case-insensitive.

    Currently supported catalogs are:

    - the booking system schema, available under key "booking"
    """
    return load_catalog(describe(key))
