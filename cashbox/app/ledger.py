"""
Receipt creation: the atomic multi-table write behind `POST /receipts`.

One session covers the receipt row, its items, optional payment details, the
optional due record and the optional ledger credit. Either all of them commit
or none are visible.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional, Union

import psycopg

from .config import settings
from .db import Database, Session
from .errors import LedgerError, Ok, internal_error, translate_store_error
from .identity import OwnerId
from .logs import json_log
from .validation import ReceiptDraft, store_datetime, validate_receipt

INSERT_RECEIPT = """
    INSERT INTO receipts (
      receipt_number, receipt_date, customer_name, customer_contact, customer_country_code,
      payment_type, payment_status, notes, total, due_total, owner_id, created_at
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    RETURNING id
"""

INSERT_RECEIPT_ITEM = """
    INSERT INTO receipt_items (receipt_id, line_no, description, quantity, price, advance_amount, due_amount)
    VALUES (%s, %s, %s, %s, %s, %s, %s)
    RETURNING id
"""

INSERT_PAYMENT_DETAILS = """
    INSERT INTO payment_details (receipt_id, card_number, phone_number, phone_country_code)
    VALUES (%s, %s, %s, %s)
    RETURNING id
"""

INSERT_DUE_RECORD = """
    INSERT INTO due_records (
      customer_name, customer_contact, customer_country_code,
      product_ordered, quantity, amount_due, expected_payment_date,
      owner_id, receipt_number
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
    RETURNING id
"""

INSERT_CREDIT = """
    INSERT INTO account_transactions (particulars, amount, type, owner_id, receipt_id, due_record_id)
    VALUES (%s, %s, 'credit', %s, %s, %s)
    RETURNING id
"""


@dataclass(frozen=True)
class CreatedReceipt:
    receipt_id: int
    due_record_id: Optional[int] = None
    transaction_id: Optional[int] = None


def payment_particulars(customer_name: str) -> str:
    return f"Payment from {customer_name}"


def insert_credit(
    s: Session,
    owner_id: OwnerId,
    customer_name: str,
    amount: Decimal,
    *,
    receipt_id: Optional[int] = None,
    due_record_id: Optional[int] = None,
) -> int:
    res = s.insert(
        INSERT_CREDIT,
        (payment_particulars(customer_name), amount, owner_id, receipt_id, due_record_id),
    )
    return res.generated_id


def _write_receipt(s: Session, draft: ReceiptDraft, owner_id: OwnerId, now: datetime, grace_days: int) -> CreatedReceipt:
    receipt_id = s.insert(
        INSERT_RECEIPT,
        (
            draft.receipt_number,
            draft.txn_date,
            draft.customer_name,
            draft.customer_contact,
            draft.customer_country_code,
            draft.payment_type,
            draft.payment_status,
            draft.notes,
            draft.total,
            draft.due_total,
            owner_id,
            store_datetime(now),
        ),
    ).generated_id

    # Later inserts depend on receipt_id, so everything stays sequential.
    for line_no, item in enumerate(draft.items, start=1):
        s.insert(
            INSERT_RECEIPT_ITEM,
            (receipt_id, line_no, item.description, item.quantity, item.price, item.advance_amount, item.due_amount),
        )

    pd = draft.payment_details
    if pd is not None:
        s.insert(INSERT_PAYMENT_DETAILS, (receipt_id, pd.card_number, pd.phone_number, pd.phone_country_code))

    due_record_id = None
    if draft.creates_due:
        due_record_id = s.insert(
            INSERT_DUE_RECORD,
            (
                draft.customer_name,
                draft.customer_contact,
                draft.customer_country_code,
                ", ".join(i.description for i in draft.items),
                sum((i.quantity for i in draft.items), Decimal("0")),
                draft.due_total,
                (now + timedelta(days=grace_days)).date(),
                owner_id,
                draft.receipt_number,
            ),
        ).generated_id

    transaction_id = None
    if draft.creates_credit:
        transaction_id = insert_credit(s, owner_id, draft.customer_name, draft.total, receipt_id=receipt_id)

    return CreatedReceipt(receipt_id=receipt_id, due_record_id=due_record_id, transaction_id=transaction_id)


def create_receipt(
    db: Database,
    payload: Any,
    owner_id: OwnerId,
    *,
    now: Optional[datetime] = None,
    grace_days: Optional[int] = None,
) -> Union[Ok[CreatedReceipt], LedgerError]:
    """
    Validate `payload` and persist the receipt with its conditional satellites.

    Validation failures return before a session is opened. Not idempotent: a
    resubmitted payload either creates another receipt or, when the receipt
    number is already taken for this owner, returns a CONFLICT.
    """
    checked = validate_receipt(payload)
    if isinstance(checked, LedgerError):
        return checked
    draft = checked.value
    now = now or datetime.now(timezone.utc)
    grace = settings.due_grace_days if grace_days is None else grace_days

    try:
        with db.session() as s:
            created = _write_receipt(s, draft, owner_id, now, grace)
    except psycopg.Error as exc:
        err = translate_store_error(exc, conflict_message=f"Receipt number {draft.receipt_number} already exists")
        json_log(
            "warning" if err.status_code < 500 else "error",
            "receipt.failed",
            owner_id=owner_id,
            receipt_number=draft.receipt_number,
            kind=err.kind.value,
            error=str(exc),
        )
        return err
    except Exception as exc:
        json_log("error", "receipt.failed", owner_id=owner_id, receipt_number=draft.receipt_number, error=str(exc))
        return internal_error()

    json_log(
        "info",
        "receipt.created",
        owner_id=owner_id,
        receipt_id=created.receipt_id,
        due_record_id=created.due_record_id,
        transaction_id=created.transaction_id,
    )
    return Ok(created)
