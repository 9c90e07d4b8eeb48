"""
Read-only views over the ledger tables. Nothing here writes.

Every query is scoped by owner. Numeric columns are coerced to plain numbers
for JSON, with non-numeric or NaN values reported as 0.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import TypeAdapter, ValidationError

from .db import Database
from .errors import ErrorKind, LedgerError, Ok, validation_error
from .identity import OwnerId
from .validation import EntryType

_entry_type = TypeAdapter(EntryType)

RECEIPT_NUMBER_DIGITS = 5


def to_number(v: Any) -> float:
    if isinstance(v, bool) or v is None:
        return 0
    try:
        n = float(Decimal(str(v)))
    except Exception:
        return 0
    if math.isnan(n) or math.isinf(n):
        return 0
    return n


def _entry(v: Any) -> str:
    try:
        return _entry_type.validate_python(v)
    except ValidationError:
        return "debit"


def _due_row(row: dict) -> dict:
    return {
        "id": row["id"],
        "customerName": row["customer_name"],
        "customerContact": row["customer_contact"],
        "customerCountryCode": row["customer_country_code"],
        "productOrdered": row["product_ordered"],
        "quantity": to_number(row["quantity"]),
        "amountDue": to_number(row["amount_due"]),
        "expectedPaymentDate": row["expected_payment_date"],
        "createdAt": row["created_at"],
        "isPaid": bool(row["is_paid"]),
        "paidAt": row["paid_at"],
        "receiptNumber": row["receipt_number"],
    }


_DUE_COLUMNS = """
    id, customer_name, customer_contact, customer_country_code, product_ordered,
    quantity, amount_due, expected_payment_date, created_at, is_paid, paid_at, receipt_number
"""


def list_due(db: Database, owner_id: OwnerId) -> list:
    with db.session() as s:
        rows = s.fetch_all(
            f"""
            SELECT {_DUE_COLUMNS}
            FROM due_records
            WHERE owner_id = %s AND is_paid = false
            ORDER BY expected_payment_date ASC, id ASC
            """,
            (owner_id,),
        )
    return [_due_row(r) for r in rows]


def list_notifications(db: Database, owner_id: OwnerId, today: Optional[date] = None) -> list:
    """Unpaid due records whose expected payment date has arrived (UTC days, like the due dates)."""
    today = today or datetime.now(timezone.utc).date()
    with db.session() as s:
        rows = s.fetch_all(
            f"""
            SELECT {_DUE_COLUMNS}
            FROM due_records
            WHERE owner_id = %s AND is_paid = false AND expected_payment_date <= %s
            ORDER BY expected_payment_date ASC, id ASC
            """,
            (owner_id, today),
        )
    return [_due_row(r) for r in rows]


def list_receipts(db: Database, owner_id: OwnerId) -> list:
    with db.session() as s:
        rows = s.fetch_all(
            """
            SELECT id, receipt_number, receipt_date, customer_name, total, due_total, payment_status
            FROM receipts
            WHERE owner_id = %s
            ORDER BY receipt_date DESC, id DESC
            """,
            (owner_id,),
        )
    return [
        {
            "id": r["id"],
            "receiptNumber": r["receipt_number"],
            "date": r["receipt_date"],
            "customerName": r["customer_name"],
            "total": to_number(r["total"]),
            "dueTotal": to_number(r["due_total"]),
            "paymentStatus": r["payment_status"],
        }
        for r in rows
    ]


def get_receipt(db: Database, owner_id: OwnerId, receipt_id: int) -> Optional[dict]:
    with db.session() as s:
        r = s.fetch_one(
            """
            SELECT r.id, r.receipt_number, r.receipt_date, r.created_at,
                   r.customer_name, r.customer_contact, r.customer_country_code,
                   r.payment_type, r.payment_status, r.notes, r.total, r.due_total,
                   u.store_name, u.store_address, u.store_contact, u.store_country_code
            FROM receipts r
            JOIN users u ON u.id = r.owner_id
            WHERE r.id = %s AND r.owner_id = %s
            """,
            (receipt_id, owner_id),
        )
        if not r:
            return None
        items = s.fetch_all(
            """
            SELECT description, quantity, price, advance_amount, due_amount
            FROM receipt_items
            WHERE receipt_id = %s
            ORDER BY line_no ASC
            """,
            (receipt_id,),
        )
        pd = s.fetch_one(
            """
            SELECT card_number, phone_number, phone_country_code
            FROM payment_details
            WHERE receipt_id = %s
            """,
            (receipt_id,),
        )
    return {
        "receiptId": r["id"],
        "receiptNumber": r["receipt_number"],
        "date": r["receipt_date"],
        "createdAt": r["created_at"],
        "customerName": r["customer_name"],
        "customerContact": r["customer_contact"],
        "customerCountryCode": r["customer_country_code"],
        "paymentType": r["payment_type"],
        "paymentStatus": r["payment_status"],
        "notes": r["notes"],
        "total": to_number(r["total"]),
        "dueTotal": to_number(r["due_total"]),
        "items": [
            {
                "description": i["description"],
                "quantity": to_number(i["quantity"]),
                "price": to_number(i["price"]),
                "advanceAmount": to_number(i["advance_amount"]),
                "dueAmount": to_number(i["due_amount"]),
            }
            for i in items
        ],
        "paymentDetails": {
            "cardNumber": (pd or {}).get("card_number"),
            "phoneNumber": (pd or {}).get("phone_number"),
            "phoneCountryCode": (pd or {}).get("phone_country_code"),
        },
        "storeInfo": {
            "name": r["store_name"],
            "address": r["store_address"],
            "contact": r["store_contact"],
            "countryCode": r["store_country_code"],
        },
    }


def account_summary(db: Database, owner_id: OwnerId) -> dict:
    """
    Ledger rows plus the derived balance.

    The balance is a fold over the owner's ledger rows (credits add, debits
    subtract); it is never stored, so it cannot drift from the ledger.
    """
    with db.session() as s:
        rows = s.fetch_all(
            """
            SELECT t.id, t.particulars, t.amount, t.type, t.created_at, r.receipt_number
            FROM account_transactions t
            LEFT JOIN receipts r ON r.id = t.receipt_id
            WHERE t.owner_id = %s
            ORDER BY t.created_at DESC, t.id DESC
            """,
            (owner_id,),
        )
        due = s.fetch_one(
            """
            SELECT COALESCE(SUM(amount_due), 0) AS total_due
            FROM due_records
            WHERE owner_id = %s AND is_paid = false
            """,
            (owner_id,),
        )

    transactions = [
        {
            "id": str(r["id"]),
            "particulars": r["particulars"] or "Unknown Transaction",
            "amount": to_number(r["amount"]),
            "type": _entry(r["type"]),
            "date": r["created_at"],
            "receiptNumber": r["receipt_number"],
        }
        for r in rows
    ]
    credits = sum(t["amount"] for t in transactions if t["type"] == "credit")
    debits = sum(t["amount"] for t in transactions if t["type"] == "debit")
    return {
        "transactions": transactions,
        "balance": round(credits - debits, 2),
        "totalDueBalance": round(to_number((due or {}).get("total_due")), 2),
        "summary": {
            "totalCredits": round(credits, 2),
            "totalDebits": round(debits, 2),
            "transactionCount": len(transactions),
        },
    }


def receipt_number_prefix(store_name: str, owner_name: str) -> str:
    return f"{store_name[0]}{owner_name[0]}{store_name[-1]}-".upper()


def following_receipt_number(prefix: str, last: Optional[str]) -> str:
    n = 1
    if last and last.startswith(prefix):
        m = re.match(r"^(\d+)", last[len(prefix):])
        if m:
            n = int(m.group(1)) + 1
    return f"{prefix}{n:0{RECEIPT_NUMBER_DIGITS}d}"


def next_receipt_number(db: Database, owner_id: OwnerId) -> Union[Ok[str], LedgerError]:
    with db.session() as s:
        user = s.fetch_one("SELECT name, store_name FROM users WHERE id = %s", (owner_id,))
        if not user:
            return LedgerError(ErrorKind.NOT_FOUND, "User not found")
        store_name = (user.get("store_name") or "").strip()
        owner_name = (user.get("name") or "").strip()
        if not store_name or not owner_name:
            return validation_error("User profile incomplete")
        prefix = receipt_number_prefix(store_name, owner_name)
        last = s.fetch_one(
            """
            SELECT receipt_number
            FROM receipts
            WHERE owner_id = %s AND receipt_number LIKE %s
            ORDER BY receipt_number DESC
            LIMIT 1
            """,
            (owner_id, prefix.replace("%", r"\%").replace("_", r"\_") + "%"),
        )
    return Ok(following_receipt_number(prefix, last["receipt_number"] if last else None))
