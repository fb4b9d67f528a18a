from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

from homeledger.dates import add_months, now_iso, parse_date
from homeledger.db import new_id, with_db_cursor

logger = logging.getLogger(__name__)

FREQUENCIES = ("daily", "weekly", "biweekly", "monthly", "quarterly", "semiannual", "yearly")


def _cadence(frequency: str):
    return {
        "daily": ("days", 1),
        "weekly": ("days", 7),
        "biweekly": ("days", 14),
        "monthly": ("months", 1),
        "quarterly": ("months", 3),
        "semiannual": ("months", 6),
        "yearly": ("months", 12),
    }.get((frequency or "").lower())


def next_due_date(start: Optional[str], frequency: Optional[str]) -> Optional[str]:
    d = parse_date(start)
    step = _cadence(frequency or "")
    if d is None or step is None:
        return None
    unit, n = step
    if unit == "days":
        return (d + timedelta(days=n)).isoformat()
    return add_months(d, n).isoformat()


def process_recurring_transactions(today: Optional[date] = None) -> int:
    """
    Spawn a dated copy of every recurring transaction whose next_due_date has
    arrived, then push that next_due_date forward. Returns the number of
    copies created.
    """
    today_s = (today or date.today()).isoformat()
    created = 0

    with with_db_cursor() as (conn, cur):
        due = cur.execute(
            """
            SELECT * FROM transactions
            WHERE is_recurring = 1 AND next_due_date IS NOT NULL AND next_due_date <= $1
            """,
            (today_s,),
        ).fetchall()

        if due:
            logger.info("found %s recurring transactions due", len(due))

        for t in due:
            copy_id = new_id("t")
            cur.execute(
                """
                INSERT INTO transactions (id, user_id, description, amount, date, category, type, is_recurring, frequency, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, 0, NULL, $8)
                """,
                (copy_id, t["user_id"], t["description"], t["amount"], today_s, t["category"], t["type"], now_iso()),
            )
            nxt = next_due_date(t["next_due_date"], t["frequency"])
            cur.execute("UPDATE transactions SET next_due_date = $1 WHERE id = $2", (nxt, t["id"]))
            created += 1
            logger.debug("recurring %s -> %s, next due %s", t["id"], copy_id, nxt)

        conn.commit()

    return created
