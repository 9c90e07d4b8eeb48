#!/usr/bin/env python3
"""Apply `cashbox/db/schema.sql` to DATABASE_URL. Safe to re-run."""

import os
import sys
from pathlib import Path

import psycopg

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "db" / "schema.sql"


def main() -> int:
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("init_db: missing DATABASE_URL", file=sys.stderr)
        return 2

    sql = SCHEMA_PATH.read_text(encoding="utf-8")
    with psycopg.connect(db_url) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(sql)
    print(f"init_db: applied {SCHEMA_PATH.name}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
