from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Literal, Mapping, Optional, Tuple, Union

from pydantic import BeforeValidator, TypeAdapter, ValidationError

from .errors import LedgerError, Ok, validation_error


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


# Canonical codes mirror the enums in `cashbox/db/schema.sql`.
PaymentType = Annotated[Literal["cash", "online"], BeforeValidator(_to_lower_str)]
PaymentStatus = Annotated[Literal["full", "advance", "due"], BeforeValidator(_to_lower_str)]
EntryType = Annotated[Literal["credit", "debit"], BeforeValidator(_to_lower_str)]

PAYMENT_TYPES = ("cash", "online")
PAYMENT_STATUSES = ("full", "advance", "due")
DEFAULT_COUNTRY_CODE = "+91"

_payment_type = TypeAdapter(PaymentType)
_payment_status = TypeAdapter(PaymentStatus)


@dataclass(frozen=True)
class ReceiptItemDraft:
    description: str
    quantity: Decimal
    price: Decimal
    advance_amount: Decimal = Decimal("0")
    due_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class PaymentDetailDraft:
    card_number: Optional[str] = None
    phone_number: Optional[str] = None
    phone_country_code: Optional[str] = None


@dataclass(frozen=True)
class ReceiptDraft:
    receipt_number: str
    txn_date: datetime
    customer_name: str
    customer_contact: str
    customer_country_code: str
    payment_type: str
    payment_status: str
    notes: Optional[str]
    total: Decimal
    due_total: Decimal
    items: Tuple[ReceiptItemDraft, ...]
    payment_details: Optional[PaymentDetailDraft] = None

    @property
    def creates_due(self) -> bool:
        return self.payment_status != "full" and self.due_total > 0

    @property
    def creates_credit(self) -> bool:
        return self.total > 0


def _text(v: Any) -> str:
    if isinstance(v, str):
        return v.strip()
    if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
        return str(v)
    return ""


def _optional_text(v: Any) -> Optional[str]:
    return _text(v) or None


def _number(v: Any) -> Optional[Decimal]:
    # JSON numbers only; booleans and numeric strings are rejected.
    if isinstance(v, bool) or not isinstance(v, (int, float, Decimal)):
        return None
    try:
        d = Decimal(str(v))
    except InvalidOperation:
        return None
    if not d.is_finite():
        return None
    return d


def store_datetime(dt: datetime) -> datetime:
    # Canonical DATETIME: naive UTC, whole seconds.
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0)


def parse_receipt_date(raw: Any) -> Optional[datetime]:
    """
    Parse a caller-supplied transaction date into the store's DATETIME form
    (see `store_datetime`). Returns None if unparseable.
    """
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, date):
        dt = datetime(raw.year, raw.month, raw.day)
    elif isinstance(raw, str) and raw.strip():
        text = raw.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    return store_datetime(dt)


def _split_amount(raw: Mapping, key: str) -> Optional[Decimal]:
    # Absent means 0; present must be a non-negative number.
    if raw.get(key) is None:
        return Decimal("0")
    v = _number(raw.get(key))
    if v is None or v < 0:
        return None
    return v


def _validate_items(raw_items: Any) -> Union[Tuple[ReceiptItemDraft, ...], LedgerError]:
    if not isinstance(raw_items, list) or not raw_items:
        return validation_error("At least one item is required")
    items = []
    for n, raw in enumerate(raw_items, start=1):
        raw = raw if isinstance(raw, Mapping) else {}
        description = _text(raw.get("description"))
        if not description:
            return validation_error(f"Item {n} description is required")
        quantity = _number(raw.get("quantity"))
        if quantity is None or quantity <= 0:
            return validation_error(f"Item {n} quantity must be a positive number")
        price = _number(raw.get("price"))
        if price is None or price < 0:
            return validation_error(f"Item {n} price must be a non-negative number")
        advance_amount = _split_amount(raw, "advanceAmount")
        if advance_amount is None:
            return validation_error(f"Item {n} advance amount must be a non-negative number")
        due_amount = _split_amount(raw, "dueAmount")
        if due_amount is None:
            return validation_error(f"Item {n} due amount must be a non-negative number")
        items.append(
            ReceiptItemDraft(
                description=description,
                quantity=quantity,
                price=price,
                advance_amount=advance_amount,
                due_amount=due_amount,
            )
        )
    return tuple(items)


def _payment_details(raw: Any) -> Optional[PaymentDetailDraft]:
    if not isinstance(raw, Mapping):
        return None
    return PaymentDetailDraft(
        card_number=_optional_text(raw.get("cardNumber")),
        phone_number=_optional_text(raw.get("phoneNumber")),
        phone_country_code=_optional_text(raw.get("phoneCountryCode")),
    )


def validate_receipt(payload: Any) -> Union[Ok[ReceiptDraft], LedgerError]:
    """
    Check a raw receipt payload and normalize it.

    Rules are applied in a fixed order and the first violation is returned;
    errors are not aggregated. No I/O.
    """
    if not isinstance(payload, Mapping):
        return validation_error("Receipt payload must be an object")

    receipt_number = _text(payload.get("receiptNumber"))
    if not receipt_number:
        return validation_error("Receipt number is required")

    raw_date = payload.get("date")
    if raw_date is None or (isinstance(raw_date, str) and not raw_date.strip()):
        return validation_error("Date is required")
    txn_date = parse_receipt_date(raw_date)
    if txn_date is None:
        return validation_error("Invalid date format")

    customer_name = _text(payload.get("customerName"))
    if not customer_name:
        return validation_error("Customer name is required")
    customer_contact = _text(payload.get("customerContact"))
    if not customer_contact:
        return validation_error("Customer contact is required")

    try:
        payment_type = _payment_type.validate_python(payload.get("paymentType"))
    except ValidationError:
        return validation_error(f"Payment type must be one of: {', '.join(PAYMENT_TYPES)}")
    try:
        payment_status = _payment_status.validate_python(payload.get("paymentStatus"))
    except ValidationError:
        return validation_error(f"Payment status must be one of: {', '.join(PAYMENT_STATUSES)}")

    items = _validate_items(payload.get("items"))
    if isinstance(items, LedgerError):
        return items

    total = _number(payload.get("total"))
    if total is None or total < 0:
        return validation_error("Total must be a non-negative number")
    due_total = _number(payload.get("dueTotal"))
    if due_total is None or due_total < 0:
        return validation_error("Due total must be a non-negative number")

    if payment_status == "full" and due_total != 0:
        return validation_error("Due total must be 0 for full payment")
    if payment_status == "advance" and due_total <= 0:
        return validation_error("Due total must be positive for advance payment")
    if payment_status == "due" and total <= 0:
        return validation_error("Total must be positive for due payment")

    return Ok(
        ReceiptDraft(
            receipt_number=receipt_number,
            txn_date=txn_date,
            customer_name=customer_name,
            customer_contact=customer_contact,
            customer_country_code=_text(payload.get("customerCountryCode")) or DEFAULT_COUNTRY_CODE,
            payment_type=payment_type,
            payment_status=payment_status,
            notes=_optional_text(payload.get("notes")),
            total=total,
            due_total=due_total,
            items=items,
            payment_details=_payment_details(payload.get("paymentDetails")),
        )
    )
