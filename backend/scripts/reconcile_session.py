#!/usr/bin/env python3
"""Re-run purchase reconciliation for a single Stripe Checkout Session.

Useful when a webhook delivery was lost or failed permanently. The purchase
ledger makes re-runs safe: already-applied line items come back as duplicates.

Usage:
  python scripts/reconcile_session.py cs_test_123
  python scripts/reconcile_session.py cs_test_123 --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Sequence

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from evergreen.db import pool  # noqa: E402
from evergreen.errors import LmsError  # noqa: E402
from evergreen.logging_utils import setup_logging  # noqa: E402
from evergreen.services import checkout_service, purchase_reconciliation  # noqa: E402


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile a paid Stripe Checkout Session.")
    parser.add_argument("session_id", help="Checkout Session id (cs_...)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch the session and line items without touching the database",
    )
    return parser.parse_args(argv)


async def _run(session_id: str, dry_run: bool) -> dict:
    session = await checkout_service.retrieve_session(session_id)
    line_items = await checkout_service.list_line_items(session_id)
    if dry_run:
        return {
            "session_id": session_id,
            "payment_status": session.get("payment_status"),
            "course_purchase": purchase_reconciliation.is_course_purchase(session),
            "line_items": [
                {
                    "price_id": purchase_reconciliation.line_item_price_id(item),
                    "quantity": purchase_reconciliation.line_item_quantity(item),
                }
                for item in line_items
            ],
        }

    await pool.open(wait=True)
    try:
        result = await purchase_reconciliation.reconcile_checkout_session(session, line_items)
    finally:
        await pool.close()
    return result.as_dict()


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging("WARNING")
    try:
        output = asyncio.run(_run(args.session_id, args.dry_run))
    except LmsError as exc:
        print(f"ERROR: {exc.detail}", file=sys.stderr)
        return 1
    print(json.dumps(output, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
