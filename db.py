"""
db.py
SQLite helpers + initialization (creates DB/tables, seeds plan prices).
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from models import PLAN_PRICES

logger = logging.getLogger("Billing.DB")

DB_FILE = Path(os.environ.get("GYM_BILLING_DB", Path(__file__).with_name("gym_billing.db")))


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def executemany(sql: str, seq_of_params: list[tuple]) -> None:
    with get_conn() as conn:
        conn.executemany(sql, seq_of_params)


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def _create_tables() -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS plans (
            id TEXT PRIMARY KEY CHECK(id IN ('MONTHLY','QUARTERLY','YEARLY')),
            price REAL NOT NULL
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS subscriptions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            member_name TEXT NOT NULL,
            plan TEXT NOT NULL REFERENCES plans(id),
            anchor_day INTEGER NOT NULL CHECK(anchor_day BETWEEN 1 AND 31),
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL,
            status TEXT NOT NULL,
            auto_renew INTEGER NOT NULL DEFAULT 1,
            grace_since TEXT,
            retries INTEGER NOT NULL DEFAULT 0
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS payments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subscription_id INTEGER NOT NULL,
            amount REAL NOT NULL,
            date TEXT NOT NULL,
            method TEXT NOT NULL CHECK(method IN ('cash','card','transfer')),
            notes TEXT,
            FOREIGN KEY(subscription_id) REFERENCES subscriptions(id) ON DELETE CASCADE
        )
        """
    )

    # Plan / auto-renew changes that take effect on a later date
    execute(
        """
        CREATE TABLE IF NOT EXISTS change_requests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subscription_id INTEGER NOT NULL,
            effective_at TEXT NOT NULL,
            new_plan TEXT REFERENCES plans(id),
            new_auto_renew INTEGER,
            status TEXT NOT NULL DEFAULT 'PENDING' CHECK(status IN ('PENDING','APPLIED')),
            FOREIGN KEY(subscription_id) REFERENCES subscriptions(id) ON DELETE CASCADE
        )
        """
    )


def _seed_plans() -> None:
    executemany(
        "INSERT OR IGNORE INTO plans(id, price) VALUES(?, ?)",
        [(plan.value, price) for plan, price in PLAN_PRICES.items()],
    )


def plan_price(plan: str) -> float:
    row = fetch_one("SELECT price FROM plans WHERE id = ?", (plan,))
    if row is None:
        raise KeyError(f"No price configured for plan {plan!r}")
    return float(row["price"])


def init_db() -> None:
    """
    Initialize the database.
    - Create tables
    - Seed default plan prices (existing prices are kept)
    """
    logger.info("Initializing database at %s", DB_FILE)
    _create_tables()
    _seed_plans()
