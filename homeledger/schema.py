from __future__ import annotations

import json
import logging
import os
from typing import Dict, List

from homeledger.dates import now_iso
from homeledger.db import Database, is_duplicate_index_error, new_id
from homeledger.security import hash_password

logger = logging.getLogger(__name__)

ADMIN_ID = "u0"
ADMIN_FAMILY_ID = "fam_admin"
BASE_LANGUAGE = "pt"

# =============================================================================
# Tables
# =============================================================================

TABLES: Dict[str, str] = {
    "families": """
        CREATE TABLE IF NOT EXISTS families (
            id VARCHAR(64) PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            created_at VARCHAR(32)
        )
    """,
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(64) PRIMARY KEY,
            username VARCHAR(191) NOT NULL UNIQUE,
            password VARCHAR(255) NOT NULL,
            name VARCHAR(255) NOT NULL,
            email VARCHAR(255),
            role VARCHAR(32) NOT NULL DEFAULT 'MEMBER',
            avatar TEXT,
            status VARCHAR(32) NOT NULL DEFAULT 'PENDING',
            created_by VARCHAR(64),
            family_id VARCHAR(64),
            birth_date VARCHAR(10),
            allow_parent_view INTEGER DEFAULT 0,
            security_question TEXT,
            security_answer VARCHAR(255),
            language_preference VARCHAR(16) DEFAULT 'pt',
            currency_provider_preference VARCHAR(32) DEFAULT 'BNA',
            created_at VARCHAR(32)
        )
    """,
    "transactions": """
        CREATE TABLE IF NOT EXISTS transactions (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            description TEXT NOT NULL,
            amount DOUBLE PRECISION NOT NULL,
            date VARCHAR(10) NOT NULL,
            category VARCHAR(191) NOT NULL,
            type VARCHAR(16) NOT NULL,
            is_recurring INTEGER DEFAULT 0,
            frequency VARCHAR(16),
            next_due_date VARCHAR(10),
            created_at VARCHAR(32)
        )
    """,
    "transaction_attachments": """
        CREATE TABLE IF NOT EXISTS transaction_attachments (
            id VARCHAR(64) PRIMARY KEY,
            transaction_id VARCHAR(64) NOT NULL,
            name VARCHAR(255) NOT NULL,
            size INTEGER,
            type VARCHAR(128),
            content TEXT
        )
    """,
    "savings_goals": """
        CREATE TABLE IF NOT EXISTS savings_goals (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            name VARCHAR(255) NOT NULL,
            target_amount DOUBLE PRECISION NOT NULL,
            current_amount DOUBLE PRECISION DEFAULT 0,
            deadline VARCHAR(10),
            color VARCHAR(16) DEFAULT '#10B981',
            interest_rate DOUBLE PRECISION,
            created_at VARCHAR(32)
        )
    """,
    "goal_transactions": """
        CREATE TABLE IF NOT EXISTS goal_transactions (
            id VARCHAR(64) PRIMARY KEY,
            goal_id VARCHAR(64) NOT NULL,
            user_id VARCHAR(64) NOT NULL,
            date VARCHAR(10) NOT NULL,
            amount DOUBLE PRECISION NOT NULL,
            note TEXT,
            FOREIGN KEY (goal_id) REFERENCES savings_goals(id) ON DELETE CASCADE
        )
    """,
    "budget_limits": """
        CREATE TABLE IF NOT EXISTS budget_limits (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            category VARCHAR(191) NOT NULL,
            limit_amount DOUBLE PRECISION NOT NULL,
            is_default INTEGER DEFAULT 0,
            translation_key VARCHAR(191),
            UNIQUE (user_id, category)
        )
    """,
    "budget_history": """
        CREATE TABLE IF NOT EXISTS budget_history (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            category VARCHAR(191) NOT NULL,
            month VARCHAR(7) NOT NULL,
            limit_amount DOUBLE PRECISION NOT NULL,
            spent_amount DOUBLE PRECISION DEFAULT 0,
            created_at VARCHAR(32),
            UNIQUE (user_id, category, month)
        )
    """,
    "family_tasks": """
        CREATE TABLE IF NOT EXISTS family_tasks (
            id VARCHAR(64) PRIMARY KEY,
            family_id VARCHAR(64) NOT NULL,
            description TEXT NOT NULL,
            assigned_to VARCHAR(64),
            is_completed INTEGER DEFAULT 0,
            due_date VARCHAR(10),
            created_at VARCHAR(32)
        )
    """,
    "family_events": """
        CREATE TABLE IF NOT EXISTS family_events (
            id VARCHAR(64) PRIMARY KEY,
            family_id VARCHAR(64) NOT NULL,
            title VARCHAR(255) NOT NULL,
            date VARCHAR(10) NOT NULL,
            type VARCHAR(32) DEFAULT 'general',
            description TEXT,
            created_at VARCHAR(32)
        )
    """,
    "notifications": """
        CREATE TABLE IF NOT EXISTS notifications (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            title VARCHAR(255) NOT NULL,
            message TEXT NOT NULL,
            is_read INTEGER DEFAULT 0,
            date VARCHAR(32)
        )
    """,
    "saved_simulations": """
        CREATE TABLE IF NOT EXISTS saved_simulations (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            name VARCHAR(255) NOT NULL,
            loan_amount DOUBLE PRECISION NOT NULL,
            interest_rate_annual DOUBLE PRECISION NOT NULL,
            term_months INTEGER NOT NULL,
            amortization_system VARCHAR(8) NOT NULL,
            created_at VARCHAR(32)
        )
    """,
    "app_settings": """
        CREATE TABLE IF NOT EXISTS app_settings (
            name VARCHAR(191) PRIMARY KEY,
            value TEXT
        )
    """,
    "exchange_rates": """
        CREATE TABLE IF NOT EXISTS exchange_rates (
            provider VARCHAR(32) PRIMARY KEY,
            rates TEXT NOT NULL,
            last_update VARCHAR(32),
            next_update VARCHAR(32)
        )
    """,
    "notification_preferences": """
        CREATE TABLE IF NOT EXISTS notification_preferences (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL UNIQUE,
            is_global INTEGER DEFAULT 0,
            budget_alerts INTEGER DEFAULT 1,
            subscription_alerts INTEGER DEFAULT 1,
            financial_tips INTEGER DEFAULT 1,
            goal_progress INTEGER DEFAULT 1,
            email_notifications INTEGER DEFAULT 1,
            push_notifications INTEGER DEFAULT 1
        )
    """,
    "ai_analysis_cache": """
        CREATE TABLE IF NOT EXISTS ai_analysis_cache (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            month VARCHAR(7) NOT NULL,
            analysis_data TEXT NOT NULL,
            created_at VARCHAR(32),
            expires_at VARCHAR(32),
            UNIQUE (user_id, month)
        )
    """,
    "push_subscriptions": """
        CREATE TABLE IF NOT EXISTS push_subscriptions (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            endpoint VARCHAR(500) NOT NULL,
            subscription TEXT NOT NULL,
            user_agent TEXT,
            created_at VARCHAR(32),
            last_active VARCHAR(32),
            UNIQUE (user_id, endpoint)
        )
    """,
    "api_configurations": """
        CREATE TABLE IF NOT EXISTS api_configurations (
            id VARCHAR(64) PRIMARY KEY,
            provider VARCHAR(64) NOT NULL UNIQUE,
            api_key TEXT NOT NULL,
            model VARCHAR(128),
            is_default INTEGER DEFAULT 0,
            created_at VARCHAR(32),
            updated_at VARCHAR(32)
        )
    """,
    "translations": """
        CREATE TABLE IF NOT EXISTS translations (
            id VARCHAR(64) PRIMARY KEY,
            language VARCHAR(16) NOT NULL,
            msg_key VARCHAR(191) NOT NULL,
            value TEXT NOT NULL,
            created_by VARCHAR(64) NOT NULL,
            updated_at VARCHAR(32),
            status VARCHAR(16) DEFAULT 'active',
            UNIQUE (language, msg_key)
        )
    """,
    "translation_history": """
        CREATE TABLE IF NOT EXISTS translation_history (
            id VARCHAR(64) PRIMARY KEY,
            translation_id VARCHAR(64),
            language VARCHAR(16) NOT NULL,
            msg_key VARCHAR(191) NOT NULL,
            old_value TEXT,
            new_value TEXT,
            changed_by VARCHAR(64),
            change_type VARCHAR(16) NOT NULL,
            changed_at VARCHAR(32)
        )
    """,
}

INDEXES: List[str] = [
    "CREATE INDEX IF NOT EXISTS idx_users_family_id ON users(family_id)",
    "CREATE INDEX IF NOT EXISTS idx_users_created_by ON users(created_by)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_user_id ON transactions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions(user_id, date)",
    "CREATE INDEX IF NOT EXISTS idx_budget_limits_user_id ON budget_limits(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_budget_history_user_id ON budget_history(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_goals_user_id ON savings_goals(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_goal_transactions_goal_id ON goal_transactions(goal_id)",
    "CREATE INDEX IF NOT EXISTS idx_goal_transactions_user_id ON goal_transactions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_family_tasks_family_id ON family_tasks(family_id)",
    "CREATE INDEX IF NOT EXISTS idx_family_events_family_id ON family_events(family_id)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user_id ON notifications(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_push_subscriptions_user_id ON push_subscriptions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_saved_simulations_user_id ON saved_simulations(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_attachments_transaction_id ON transaction_attachments(transaction_id)",
    "CREATE INDEX IF NOT EXISTS idx_translation_history_lang ON translation_history(language, msg_key)",
]

# goal_transactions references savings_goals, so it must come after it
TABLE_ORDER = list(TABLES.keys())


def init_schema(db: Database, locales_dir: str = "locales") -> None:
    with db.cursor() as (conn, cur):
        for name in TABLE_ORDER:
            cur.execute(TABLES[name])
        conn.commit()

    for stmt in INDEXES:
        try:
            db.execute(stmt)
        except Exception as e:
            if not is_duplicate_index_error(e):
                raise
            logger.debug("index already present: %s", stmt)

    _seed_admin(db)
    _seed_translations(db, locales_dir)
    logger.info("schema ready (%s)", db.dialect)


def _seed_admin(db: Database) -> None:
    with db.cursor() as (conn, cur):
        cur.execute(
            "INSERT INTO families (id, name, created_at) VALUES ($1, $2, $3) ON CONFLICT (id) DO NOTHING",
            (ADMIN_FAMILY_ID, "Administração", now_iso()),
        )
        cur.execute("SELECT id FROM users WHERE username = $1", ("admin",))
        if cur.fetchone() is None:
            cur.execute(
                """
                INSERT INTO users (id, username, password, name, role, avatar, status, family_id, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                (
                    ADMIN_ID,
                    "admin",
                    hash_password("admin"),
                    "Super Admin",
                    "SUPER_ADMIN",
                    "https://api.dicebear.com/7.x/avataaars/svg?seed=Super",
                    "APPROVED",
                    ADMIN_FAMILY_ID,
                    now_iso(),
                ),
            )
            logger.info("seeded default admin user")
        conn.commit()


def load_locale_files(locales_dir: str) -> Dict[str, Dict[str, str]]:
    out: Dict[str, Dict[str, str]] = {}
    if not os.path.isdir(locales_dir):
        logger.warning("locales directory not found: %s", locales_dir)
        return out
    for fname in sorted(os.listdir(locales_dir)):
        if not fname.endswith(".json"):
            continue
        lang = fname[:-5]
        with open(os.path.join(locales_dir, fname), "r", encoding="utf-8") as f:
            data = json.load(f)
        out[lang] = {str(k): str(v) for k, v in data.items() if v is not None}
    return out


def _seed_translations(db: Database, locales_dir: str) -> None:
    row = db.query_one("SELECT COUNT(*) AS n FROM translations")
    if row and int(row["n"]) > 0:
        return

    locales = load_locale_files(locales_dir)
    if not locales:
        return

    ts = now_iso()
    with db.cursor() as (conn, cur):
        for lang, entries in locales.items():
            for key, value in entries.items():
                cur.execute(
                    """
                    INSERT INTO translations (id, language, msg_key, value, created_by, updated_at, status)
                    VALUES ($1, $2, $3, $4, $5, $6, 'active')
                    ON CONFLICT (language, msg_key) DO NOTHING
                    """,
                    (new_id("tr"), lang, key, value, ADMIN_ID, ts),
                )
        conn.commit()
    logger.info("loaded translations for %s", ", ".join(sorted(locales)))
