#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.db.postgres import PostgresTxRunner
from app.db.schema import ALL_DDL


def main() -> int:
    parser = argparse.ArgumentParser(description="Create review rule, extraction run and audit tables")
    parser.add_argument("--dsn", default=os.getenv("POSTGRES_DSN", ""), help="PostgreSQL DSN")
    args = parser.parse_args()

    dsn = str(args.dsn or "").strip()
    if not dsn:
        raise SystemExit("POSTGRES_DSN is required (pass --dsn or set env)")

    def _op(conn):
        with conn.cursor() as cur:
            for ddl in ALL_DDL:
                cur.execute(ddl)
        return len(ALL_DDL)

    applied = PostgresTxRunner(dsn).run_in_tx(fn=_op)
    print(json.dumps({"applied_statements": applied}, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
