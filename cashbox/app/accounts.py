from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Union

import psycopg
from psycopg import errors as pg_errors

from .config import settings
from .db import Database
from .errors import ErrorKind, LedgerError, Ok, internal_error, translate_store_error, validation_error
from .identity import OwnerId
from .logs import json_log
from .retry import AttemptsExhausted, Retry, attempt
from .security import (
    generate_superkey,
    hash_password,
    hash_session_token,
    needs_rehash,
    new_session_token,
    verify_password,
)

SUPERKEY_CONSTRAINT = "uq_users_superkey"
INVALID_CREDENTIALS = "invalid credentials"


@dataclass(frozen=True)
class NewAccount:
    id: int
    name: str
    email: str
    superkey: str
    created_at: datetime


@dataclass(frozen=True)
class IssuedSession:
    token: str
    user_id: int
    expires_at: datetime


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _constraint_name(exc: Exception) -> Optional[str]:
    diag = getattr(exc, "diag", None)
    return getattr(diag, "constraint_name", None)


def create_account(
    db: Database,
    name: str,
    email: str,
    password: str,
    store_name: Optional[str] = None,
    *,
    max_attempts: Optional[int] = None,
    keygen: Callable[[], str] = generate_superkey,
) -> Union[Ok[NewAccount], LedgerError]:
    """
    Create a user with a freshly allocated superkey.

    Superkeys are short and random, so a collision is retried with a new key
    (bounded). Each attempt runs in its own session.
    """
    name = (name or "").strip()
    email = normalize_email(email)
    if not name or not email or not password:
        return validation_error("Missing required fields")
    hashed = hash_password(password)
    store = (store_name or "").strip() or None

    def _insert(n: int) -> NewAccount:
        superkey = keygen()
        try:
            with db.session() as s:
                row = s.fetch_one(
                    """
                    INSERT INTO users (superkey, name, email, hashed_password, store_name)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING id, created_at
                    """,
                    (superkey, name, email, hashed, store),
                )
        except pg_errors.UniqueViolation as exc:
            if _constraint_name(exc) == SUPERKEY_CONSTRAINT:
                json_log("warning", "account.superkey_collision", attempt=n)
                raise Retry(SUPERKEY_CONSTRAINT) from exc
            raise
        return NewAccount(id=row["id"], name=name, email=email, superkey=superkey, created_at=row["created_at"])

    cap = settings.superkey_attempts if max_attempts is None else max_attempts
    try:
        outcome = attempt(_insert, cap)
    except pg_errors.UniqueViolation:
        return LedgerError(ErrorKind.CONFLICT, "Email already exists")
    except psycopg.Error as exc:
        json_log("error", "account.create_failed", error=str(exc))
        return translate_store_error(exc)

    if isinstance(outcome, AttemptsExhausted):
        json_log("error", "account.superkey_exhausted", attempts=outcome.attempts)
        return LedgerError(ErrorKind.INTERNAL, "Could not allocate unique key")
    json_log("info", "account.created", user_id=outcome.value.id)
    return outcome


def open_session(db: Database, email: str, password: str, *, now: Optional[datetime] = None) -> Union[Ok[IssuedSession], LedgerError]:
    now = now or datetime.now(timezone.utc)
    try:
        with db.session() as s:
            user = s.fetch_one(
                """
                SELECT id, hashed_password, is_active
                FROM users
                WHERE email = %s
                """,
                (normalize_email(email),),
            )
            if not user or not user["is_active"] or not verify_password(password, user["hashed_password"]):
                return LedgerError(ErrorKind.AUTH, INVALID_CREDENTIALS)

            if needs_rehash(user["hashed_password"]):
                s.update(
                    "UPDATE users SET hashed_password = %s WHERE id = %s",
                    (hash_password(password), user["id"]),
                )

            # Strong random token; only a one-way hash is stored.
            token = new_session_token()
            expires = now + timedelta(days=settings.session_days)
            s.insert(
                """
                INSERT INTO auth_sessions (user_id, token, expires_at)
                VALUES (%s, %s, %s)
                RETURNING id
                """,
                (user["id"], hash_session_token(token), expires),
            )
    except psycopg.Error as exc:
        json_log("error", "auth.login_failed", error=str(exc))
        return internal_error()
    return Ok(IssuedSession(token=token, user_id=user["id"], expires_at=expires))


def resolve_owner(db: Database, token: str, *, now: Optional[datetime] = None) -> Optional[OwnerId]:
    now = now or datetime.now(timezone.utc)
    with db.session() as s:
        row = s.fetch_one(
            """
            SELECT s.user_id, s.expires_at, s.is_active
            FROM auth_sessions s
            JOIN users u ON u.id = s.user_id
            WHERE s.token = %s AND u.is_active = true
            """,
            (hash_session_token(token),),
        )
    if not row or not row["is_active"] or row["expires_at"] < now:
        return None
    return OwnerId(row["user_id"])


# (payload key, column) in the order missing fields are reported.
PROFILE_FIELDS = (
    ("name", "name"),
    ("storeName", "store_name"),
    ("storeAddress", "store_address"),
    ("storeContact", "store_contact"),
    ("storeCountryCode", "store_country_code"),
)

_STORE_CONTACT_RE = re.compile(r"^\d{10}$")

SELECT_PROFILE = """
    SELECT id, name, email, created_at, store_name, store_address, store_contact, store_country_code
    FROM users
    WHERE id = %s
"""


@dataclass(frozen=True)
class Profile:
    id: int
    name: str
    email: str
    created_at: datetime
    store_name: Optional[str] = None
    store_address: Optional[str] = None
    store_contact: Optional[str] = None
    store_country_code: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, column) for _, column in PROFILE_FIELDS)


def _profile(row: dict) -> Profile:
    return Profile(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        created_at=row["created_at"],
        store_name=row.get("store_name"),
        store_address=row.get("store_address"),
        store_contact=row.get("store_contact"),
        store_country_code=row.get("store_country_code"),
    )


def get_profile(db: Database, owner_id: OwnerId) -> Union[Ok[Profile], LedgerError]:
    with db.session() as s:
        row = s.fetch_one(SELECT_PROFILE, (owner_id,))
    if not row:
        return LedgerError(ErrorKind.NOT_FOUND, "User not found")
    return Ok(_profile(row))


def update_profile(db: Database, owner_id: OwnerId, payload: Any) -> Union[Ok[Profile], LedgerError]:
    """
    Replace the owner's name and store details.

    Every field is required; the store contact must be exactly 10 digits.
    The store name and owner name feed the receipt-number prefix.
    """
    if not isinstance(payload, Mapping):
        return validation_error("Profile payload must be an object")
    values = {}
    for key, column in PROFILE_FIELDS:
        v = payload.get(key)
        values[column] = v.strip() if isinstance(v, str) else ""
    missing = [key for key, column in PROFILE_FIELDS if not values[column]]
    if missing:
        return validation_error(f"Missing required fields: {', '.join(missing)}")
    if not _STORE_CONTACT_RE.match(values["store_contact"]):
        return validation_error("Store contact must be exactly 10 digits")

    try:
        with db.session() as s:
            res = s.update(
                """
                UPDATE users
                SET name = %s, store_name = %s, store_address = %s, store_contact = %s, store_country_code = %s
                WHERE id = %s
                """,
                tuple(values[column] for _, column in PROFILE_FIELDS) + (owner_id,),
            )
            if not res.matched:
                return LedgerError(ErrorKind.NOT_FOUND, "User not found")
            row = s.fetch_one(SELECT_PROFILE, (owner_id,))
    except psycopg.Error as exc:
        err = translate_store_error(exc)
        json_log("error", "profile.update_failed", user_id=owner_id, kind=err.kind.value, error=str(exc))
        return err
    json_log("info", "profile.updated", user_id=owner_id)
    return Ok(_profile(row))
