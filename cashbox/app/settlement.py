from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Union

import psycopg

from .db import Database
from .errors import ErrorKind, LedgerError, Ok, internal_error, translate_store_error, validation_error
from .identity import OwnerId
from .ledger import insert_credit
from .logs import json_log

# Compare-and-swap on is_paid: the only concurrency control for settlement.
MARK_DUE_PAID = """
    UPDATE due_records
    SET is_paid = true, paid_at = now()
    WHERE id = %s AND owner_id = %s AND is_paid = false
"""

SELECT_DUE_FOR_CREDIT = """
    SELECT customer_name, amount_due
    FROM due_records
    WHERE id = %s AND owner_id = %s
"""

NOT_FOUND_OR_PAID = "Due record not found or already paid"


class _DueVanished(Exception):
    pass


@dataclass(frozen=True)
class SettledDue:
    due_record_id: int
    transaction_id: int
    amount: Decimal
    customer_name: str


def parse_due_id(raw: Any) -> Optional[int]:
    # Any JSON number with a whole positive value; 3.0 is accepted as 3.
    if isinstance(raw, bool):
        return None
    if isinstance(raw, float):
        if not raw.is_integer():
            return None
        raw = int(raw)
    if not isinstance(raw, int) or raw <= 0:
        return None
    return raw


def settle_due(db: Database, due_record_id: Any, owner_id: OwnerId) -> Union[Ok[SettledDue], LedgerError]:
    """
    Mark a due record paid and post its ledger credit, exactly once.

    Concurrent callers race on the conditional UPDATE; the losers see zero
    affected rows and get NOT_FOUND_OR_PROCESSED. A missing record, another
    owner's record and an already-settled record are reported the same way.
    """
    due_id = parse_due_id(due_record_id)
    if due_id is None:
        return validation_error("Invalid due record ID")

    try:
        with db.session() as s:
            flipped = s.update(MARK_DUE_PAID, (due_id, owner_id))
            if not flipped.matched:
                # Nothing written yet; the session closes without side effects.
                outcome: Union[Ok[SettledDue], LedgerError] = LedgerError(
                    ErrorKind.NOT_FOUND_OR_PROCESSED, NOT_FOUND_OR_PAID
                )
            else:
                row = s.fetch_one(SELECT_DUE_FOR_CREDIT, (due_id, owner_id))
                if not row:
                    raise _DueVanished(f"due record {due_id} missing after update")
                amount = Decimal(str(row["amount_due"]))
                transaction_id = insert_credit(
                    s, owner_id, row["customer_name"], amount, due_record_id=due_id
                )
                outcome = Ok(
                    SettledDue(
                        due_record_id=due_id,
                        transaction_id=transaction_id,
                        amount=amount,
                        customer_name=row["customer_name"],
                    )
                )
    except psycopg.Error as exc:
        err = translate_store_error(exc)
        json_log("error", "due.settle_failed", owner_id=owner_id, due_record_id=due_id, kind=err.kind.value, error=str(exc))
        return err
    except Exception as exc:
        json_log("error", "due.settle_failed", owner_id=owner_id, due_record_id=due_id, error=str(exc))
        return internal_error()

    if isinstance(outcome, LedgerError):
        json_log("info", "due.settle_rejected", owner_id=owner_id, due_record_id=due_id)
    else:
        json_log(
            "info",
            "due.settled",
            owner_id=owner_id,
            due_record_id=due_id,
            transaction_id=outcome.value.transaction_id,
            amount=outcome.value.amount,
        )
    return outcome
