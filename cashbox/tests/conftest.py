import os
import sys
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

# Allow running pytest from either the repo root or from within `cashbox/`.
# Tests import `cashbox.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from psycopg import errors as pg_errors  # noqa: E402

from cashbox.app.db import InsertResult, UpdateResult  # noqa: E402

TABLES = ("users", "auth_sessions", "receipts", "receipt_items", "payment_details", "due_records", "account_transactions")


def _norm(sql: str) -> str:
    return " ".join(str(sql or "").lower().split())


class FakeStore:
    """
    In-memory stand-in for the relational store behind `Database`.

    Statements are recognised by their normalized SQL text. Writes apply
    immediately under a store-wide lock and are undone if the session rolls
    back, so a conditional UPDATE behaves like a row-level compare-and-swap.
    """

    def __init__(self, enforce_receipt_unique=True):
        self.lock = threading.RLock()
        self.tables = {t: {} for t in TABLES}
        self.seq = {t: 0 for t in TABLES}
        self.enforce_receipt_unique = enforce_receipt_unique
        self.fail_inserts = {}
        self.commits = 0
        self.rollbacks = 0
        self.sessions_opened = 0
        self.executed = []

    # -- helpers used by tests -------------------------------------------------

    def rows(self, table):
        return [dict(r) for _, r in sorted(self.tables[table].items())]

    def fail_insert_into(self, table, exc):
        self.fail_inserts[table] = exc

    def add_user(
        self,
        name="Ravi",
        store_name="Sunrise Mart",
        email=None,
        hashed_password="x",
        superkey=None,
        store_address="12 Market Road",
        store_contact="9876543210",
        store_country_code="+91",
    ):
        with self.lock:
            uid = self._next_id("users")
            self.tables["users"][uid] = {
                "id": uid,
                "superkey": superkey or f"K{uid:04d}",
                "name": name,
                "email": email or f"user{uid}@example.com",
                "hashed_password": hashed_password,
                "store_name": store_name,
                "store_address": store_address,
                "store_contact": store_contact,
                "store_country_code": store_country_code,
                "is_active": True,
                "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
            }
            return uid

    def add_due(self, owner_id, amount_due, customer_name="Asha", is_paid=False, expected=None, receipt_number="R-1"):
        with self.lock:
            did = self._next_id("due_records")
            self.tables["due_records"][did] = {
                "id": did,
                "customer_name": customer_name,
                "customer_contact": "9999999999",
                "customer_country_code": "+91",
                "product_ordered": "Service",
                "quantity": Decimal("1"),
                "amount_due": Decimal(str(amount_due)),
                "expected_payment_date": expected or date(2026, 1, 8),
                "is_paid": is_paid,
                "paid_at": datetime(2026, 1, 2, tzinfo=timezone.utc) if is_paid else None,
                "receipt_number": receipt_number,
                "owner_id": owner_id,
                "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
            }
            return did

    def add_due_with_id(self, did, owner_id, amount_due, **kw):
        with self.lock:
            self.seq["due_records"] = max(self.seq["due_records"], did - 1)
            return self.add_due(owner_id, amount_due, **kw)

    # -- Database protocol -----------------------------------------------------

    def _next_id(self, table):
        self.seq[table] += 1
        return self.seq[table]

    def open(self, wait=False):
        pass

    def close(self):
        pass

    def ping(self):
        return True

    @contextmanager
    def session(self):
        s = FakeSession(self)
        with self.lock:
            self.sessions_opened += 1
        try:
            yield s
        except BaseException:
            s.rollback()
            raise
        s.commit()


class FakeSession:
    def __init__(self, store):
        self.store = store
        self.undo = []

    def commit(self):
        self.undo = []
        self.store.commits += 1

    def rollback(self):
        with self.store.lock:
            for fn in reversed(self.undo):
                fn()
        self.undo = []
        self.store.rollbacks += 1

    def _put(self, table, row):
        st = self.store
        exc = st.fail_inserts.get(table)
        if exc is not None:
            raise exc
        rid = st._next_id(table)
        row = dict(row, id=rid)
        st.tables[table][rid] = row
        self.undo.append(lambda: st.tables[table].pop(rid, None))
        return row

    # -- Session protocol ------------------------------------------------------

    def insert(self, sql, params):
        text = _norm(sql)
        st = self.store
        st.executed.append(text)
        p = list(params)
        with st.lock:
            if text.startswith("insert into receipts "):
                if st.enforce_receipt_unique and any(
                    r["owner_id"] == p[10] and r["receipt_number"] == p[0] for r in st.tables["receipts"].values()
                ):
                    raise pg_errors.UniqueViolation("duplicate key value violates unique constraint uq_receipts_owner_number")
                keys = ("receipt_number", "receipt_date", "customer_name", "customer_contact", "customer_country_code",
                        "payment_type", "payment_status", "notes", "total", "due_total", "owner_id", "created_at")
                row = self._put("receipts", dict(zip(keys, p)))
            elif text.startswith("insert into receipt_items"):
                keys = ("receipt_id", "line_no", "description", "quantity", "price", "advance_amount", "due_amount")
                row = self._put("receipt_items", dict(zip(keys, p)))
            elif text.startswith("insert into payment_details"):
                keys = ("receipt_id", "card_number", "phone_number", "phone_country_code")
                row = self._put("payment_details", dict(zip(keys, p)))
            elif text.startswith("insert into due_records"):
                keys = ("customer_name", "customer_contact", "customer_country_code", "product_ordered", "quantity",
                        "amount_due", "expected_payment_date", "owner_id", "receipt_number")
                row = self._put(
                    "due_records",
                    dict(zip(keys, p), is_paid=False, paid_at=None, created_at=datetime.now(timezone.utc)),
                )
            elif text.startswith("insert into account_transactions"):
                keys = ("particulars", "amount", "owner_id", "receipt_id", "due_record_id")
                row = self._put(
                    "account_transactions",
                    dict(zip(keys, p), type="credit", created_at=datetime.now(timezone.utc)),
                )
            elif text.startswith("insert into auth_sessions"):
                keys = ("user_id", "token", "expires_at")
                row = self._put("auth_sessions", dict(zip(keys, p), is_active=True))
            else:
                raise AssertionError(f"unexpected INSERT in fake session: {text}")
        return InsertResult(generated_id=row["id"])

    def update(self, sql, params):
        text = _norm(sql)
        st = self.store
        st.executed.append(text)
        with st.lock:
            if text.startswith("update due_records set is_paid = true"):
                due_id, owner_id = params
                row = st.tables["due_records"].get(due_id)
                if not row or row["owner_id"] != owner_id or row["is_paid"]:
                    return UpdateResult(rows_affected=0)
                before = dict(row)
                row["is_paid"] = True
                row["paid_at"] = datetime.now(timezone.utc)
                self.undo.append(lambda: row.update(before))
                return UpdateResult(rows_affected=1)
            if text.startswith("update users set hashed_password"):
                hashed, uid = params
                row = st.tables["users"][uid]
                before = dict(row)
                row["hashed_password"] = hashed
                self.undo.append(lambda: row.update(before))
                return UpdateResult(rows_affected=1)
            if text.startswith("update users set name = %s"):
                *values, uid = params
                row = st.tables["users"].get(uid)
                if not row:
                    return UpdateResult(rows_affected=0)
                before = dict(row)
                cols = ("name", "store_name", "store_address", "store_contact", "store_country_code")
                row.update(zip(cols, values))
                self.undo.append(lambda: row.update(before))
                return UpdateResult(rows_affected=1)
        raise AssertionError(f"unexpected UPDATE in fake session: {text}")

    def fetch_one(self, sql, params):
        text = _norm(sql)
        st = self.store
        st.executed.append(text)
        p = list(params)
        with st.lock:
            if text == "select 1 as ok":
                return {"ok": 1}
            if text.startswith("insert into users"):
                superkey, name, email, hashed, store_name = p
                for u in st.tables["users"].values():
                    if u["email"] == email:
                        raise pg_errors.UniqueViolation("duplicate key value violates unique constraint uq_users_email")
                    if u["superkey"] == superkey:
                        raise st.superkey_clash()
                row = self._put(
                    "users",
                    {
                        "superkey": superkey,
                        "name": name,
                        "email": email,
                        "hashed_password": hashed,
                        "store_name": store_name,
                        "store_address": None,
                        "store_contact": None,
                        "store_country_code": None,
                        "is_active": True,
                        "created_at": datetime.now(timezone.utc),
                    },
                )
                return {"id": row["id"], "created_at": row["created_at"]}
            if text.startswith("select customer_name, amount_due from due_records"):
                row = st.tables["due_records"].get(p[0])
                if not row or row["owner_id"] != p[1]:
                    return None
                return {"customer_name": row["customer_name"], "amount_due": row["amount_due"]}
            if text.startswith("select id, hashed_password, is_active from users"):
                for u in st.tables["users"].values():
                    if u["email"] == p[0]:
                        return dict(u)
                return None
            if text.startswith("select s.user_id"):
                for s in st.tables["auth_sessions"].values():
                    user = st.tables["users"].get(s["user_id"])
                    if s["token"] == p[0] and user and user["is_active"]:
                        return {"user_id": s["user_id"], "expires_at": s["expires_at"], "is_active": s["is_active"]}
                return None
            if text.startswith("select name, store_name from users"):
                u = st.tables["users"].get(p[0])
                return {"name": u["name"], "store_name": u["store_name"]} if u else None
            if "from receipts where owner_id = %s and receipt_number like %s" in text:
                prefix = p[1].rstrip("%").replace("\\%", "%").replace("\\_", "_")
                nums = sorted(
                    (r["receipt_number"] for r in st.tables["receipts"].values()
                     if r["owner_id"] == p[0] and r["receipt_number"].startswith(prefix)),
                    reverse=True,
                )
                return {"receipt_number": nums[0]} if nums else None
            if "from receipts r join users u" in text:
                r = st.tables["receipts"].get(p[0])
                if not r or r["owner_id"] != p[1]:
                    return None
                u = st.tables["users"][r["owner_id"]]
                store_cols = ("store_name", "store_address", "store_contact", "store_country_code")
                return dict(r, **{c: u[c] for c in store_cols})
            if text.startswith("select id, name, email, created_at, store_name"):
                u = st.tables["users"].get(p[0])
                if not u:
                    return None
                cols = ("id", "name", "email", "created_at", "store_name", "store_address", "store_contact",
                        "store_country_code")
                return {c: u[c] for c in cols}
            if text.startswith("select card_number, phone_number, phone_country_code from payment_details"):
                for r in st.tables["payment_details"].values():
                    if r["receipt_id"] == p[0]:
                        return dict(r)
                return None
            if text.startswith("select coalesce(sum(amount_due), 0) as total_due"):
                total = sum(
                    (r["amount_due"] for r in st.tables["due_records"].values()
                     if r["owner_id"] == p[0] and not r["is_paid"]),
                    Decimal("0"),
                )
                return {"total_due": total}
        raise AssertionError(f"unexpected fetch_one in fake session: {text}")

    def fetch_all(self, sql, params):
        text = _norm(sql)
        st = self.store
        st.executed.append(text)
        p = list(params)
        with st.lock:
            if "from due_records where owner_id = %s and is_paid = false" in text:
                rows = [r for r in st.tables["due_records"].values() if r["owner_id"] == p[0] and not r["is_paid"]]
                if "expected_payment_date <= %s" in text:
                    rows = [r for r in rows if r["expected_payment_date"] <= p[1]]
                return [dict(r) for r in sorted(rows, key=lambda r: (r["expected_payment_date"], r["id"]))]
            if "from receipts where owner_id = %s" in text:
                rows = [r for r in st.tables["receipts"].values() if r["owner_id"] == p[0]]
                return [dict(r) for r in sorted(rows, key=lambda r: (r["receipt_date"], r["id"]), reverse=True)]
            if "from receipt_items where receipt_id = %s" in text:
                rows = [r for r in st.tables["receipt_items"].values() if r["receipt_id"] == p[0]]
                return [dict(r) for r in sorted(rows, key=lambda r: r["line_no"])]
            if "from account_transactions t left join receipts r" in text:
                out = []
                for t in st.tables["account_transactions"].values():
                    if t["owner_id"] != p[0]:
                        continue
                    r = st.tables["receipts"].get(t["receipt_id"]) if t["receipt_id"] else None
                    out.append(dict(t, receipt_number=r["receipt_number"] if r else None))
                return sorted(out, key=lambda r: (r["created_at"], r["id"]), reverse=True)
        raise AssertionError(f"unexpected fetch_all in fake session: {text}")


class _SuperkeyClash(pg_errors.UniqueViolation):
    class _Diag:
        constraint_name = "uq_users_superkey"

    diag = _Diag()


FakeStore.superkey_clash = staticmethod(lambda: _SuperkeyClash("duplicate key value violates unique constraint uq_users_superkey"))


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def owner(store):
    return store.add_user()


@pytest.fixture
def other_owner(store):
    return store.add_user(name="Meena", store_name="Corner Shop")
