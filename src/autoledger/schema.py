"""
autoledger - Database schema

Creates every table the engine needs, for SQLite or MySQL.

Database Schema Overview:
------------------------
- accounts: cash/bank/wallet/credit/investment accounts with stored balance;
  investment accounts also carry shares, cost price and current net value
- transactions: ledger entries (income, expense, repayment, refund)
- valuations: investment valuation snapshots, one per trade or net value update
- auto_investment_plans: recurring transfer plans with lifecycle status
- execution_records: append-only outcome log of scheduled and one-off buys
- balance_adjustments: append-only audit rows written by reconciliation
- investment_reminders: plan failure / low balance notices

Key Design Features:
- Monetary values are TEXT in SQLite (exact decimal strings) and
  DECIMAL(15,2) in MySQL; shares, prices and rates use 4 decimal places
- Indexes on the columns the engine filters by (user, account, plan, date)
- Cascade deletes from accounts to their valuations
"""

from autoledger.log import get_logger

logger = get_logger(__name__)

COLUMN_TYPES = {
    "sqlite": {
        "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "money": "TEXT",
        "quantity": "TEXT",
        "date": "TEXT",
        "datetime": "TEXT",
        "string": "TEXT",
        "short": "TEXT",
        "bool": "INTEGER",
        "now": "CURRENT_TIMESTAMP",
    },
    "mysql": {
        "pk": "INT AUTO_INCREMENT PRIMARY KEY",
        "money": "DECIMAL(15,2)",
        "quantity": "DECIMAL(15,4)",
        "date": "DATE",
        "datetime": "DATETIME",
        "string": "VARCHAR(255)",
        "short": "VARCHAR(32)",
        "bool": "TINYINT(1)",
        "now": "CURRENT_TIMESTAMP",
    },
}

# =============================================================================
# SCHEMA DEFINITION
# =============================================================================

TABLES = {}

TABLES['accounts'] = """
    CREATE TABLE IF NOT EXISTS accounts (
        id {pk},
        user_id INTEGER NOT NULL,
        name {string} NOT NULL,
        type {short} NOT NULL CHECK (type IN ('cash', 'bank', 'alipay', 'wechat', 'credit', 'investment', 'other')),
        balance {money} NOT NULL DEFAULT '0.00',
        credit_limit {money} DEFAULT NULL,
        billing_day INTEGER DEFAULT NULL,
        due_day INTEGER DEFAULT NULL,
        shares {quantity} DEFAULT NULL,
        cost_price {quantity} DEFAULT NULL,
        current_net_value {quantity} DEFAULT NULL,
        created_at {datetime} DEFAULT {now}
    )
"""

TABLES['transactions'] = """
    CREATE TABLE IF NOT EXISTS transactions (
        id {pk},
        user_id INTEGER NOT NULL,
        account_id INTEGER NOT NULL,
        category_id INTEGER DEFAULT NULL,
        type {short} NOT NULL CHECK (type IN ('income', 'expense', 'repayment', 'refund')),
        amount {money} NOT NULL,
        date {date} NOT NULL,
        note {string} DEFAULT NULL,
        source_account_id INTEGER DEFAULT NULL,
        original_transaction_id INTEGER DEFAULT NULL,
        created_at {datetime} DEFAULT {now},
        FOREIGN KEY (account_id) REFERENCES accounts(id)
    )
"""

TABLES['valuations'] = """
    CREATE TABLE IF NOT EXISTS valuations (
        id {pk},
        account_id INTEGER NOT NULL,
        net_value {quantity} NOT NULL,
        market_value {money} NOT NULL,
        date {date} NOT NULL,
        created_at {datetime} DEFAULT {now},
        FOREIGN KEY (account_id) REFERENCES accounts(id) ON DELETE CASCADE
    )
"""

TABLES['auto_investment_plans'] = """
    CREATE TABLE IF NOT EXISTS auto_investment_plans (
        id {pk},
        user_id INTEGER NOT NULL,
        name {string} NOT NULL,
        source_account_id INTEGER NOT NULL,
        target_account_id INTEGER NOT NULL,
        amount {money} NOT NULL,
        frequency {short} NOT NULL CHECK (frequency IN ('daily', 'weekly', 'monthly')),
        execution_day INTEGER DEFAULT NULL,
        execution_time {short} NOT NULL DEFAULT '09:00',
        status {short} NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'paused', 'deleted')),
        next_execution_date {date} NOT NULL,
        created_at {datetime} DEFAULT {now},
        updated_at {datetime} DEFAULT {now},
        FOREIGN KEY (source_account_id) REFERENCES accounts(id),
        FOREIGN KEY (target_account_id) REFERENCES accounts(id)
    )
"""

TABLES['execution_records'] = """
    CREATE TABLE IF NOT EXISTS execution_records (
        id {pk},
        plan_id INTEGER DEFAULT NULL,
        user_id INTEGER NOT NULL,
        source_account_id INTEGER NOT NULL,
        target_account_id INTEGER NOT NULL,
        paid_amount {money} NOT NULL,
        invested_amount {money} NOT NULL,
        discount_rate {quantity} NOT NULL,
        shares {quantity} NOT NULL,
        net_value {quantity} NOT NULL,
        status {short} NOT NULL CHECK (status IN ('success', 'failed')),
        fail_reason {string} DEFAULT NULL,
        executed_at {datetime} NOT NULL,
        created_at {datetime} DEFAULT {now}
    )
"""

TABLES['balance_adjustments'] = """
    CREATE TABLE IF NOT EXISTS balance_adjustments (
        id {pk},
        user_id INTEGER NOT NULL,
        account_id INTEGER NOT NULL,
        previous_balance {money} NOT NULL,
        new_balance {money} NOT NULL,
        difference {money} NOT NULL,
        note {string} DEFAULT NULL,
        created_at {datetime} NOT NULL,
        FOREIGN KEY (account_id) REFERENCES accounts(id)
    )
"""

TABLES['investment_reminders'] = """
    CREATE TABLE IF NOT EXISTS investment_reminders (
        id {pk},
        user_id INTEGER NOT NULL,
        plan_id INTEGER NOT NULL,
        type {short} NOT NULL CHECK (type IN ('execution_failed', 'insufficient_balance')),
        message {string} NOT NULL,
        is_read {bool} NOT NULL DEFAULT 0,
        created_at {datetime} NOT NULL
    )
"""

INDEXES = [
    "CREATE INDEX {if_not_exists}idx_accounts_user ON accounts(user_id)",
    "CREATE INDEX {if_not_exists}idx_transactions_account_type ON transactions(account_id, type)",
    "CREATE INDEX {if_not_exists}idx_transactions_original ON transactions(original_transaction_id)",
    "CREATE INDEX {if_not_exists}idx_valuations_account_date ON valuations(account_id, date)",
    "CREATE INDEX {if_not_exists}idx_plans_status_date ON auto_investment_plans(status, next_execution_date)",
    "CREATE INDEX {if_not_exists}idx_records_plan ON execution_records(plan_id)",
    "CREATE INDEX {if_not_exists}idx_adjustments_account ON balance_adjustments(account_id)",
    "CREATE INDEX {if_not_exists}idx_reminders_user_read ON investment_reminders(user_id, is_read)",
]


def render_statements(dialect):
    """Return the DDL for `dialect` in creation order."""
    types = COLUMN_TYPES[dialect]
    statements = [ddl.format(**types) for ddl in TABLES.values()]
    # MySQL has no CREATE INDEX IF NOT EXISTS; create_database runs once on an empty schema there
    if_not_exists = "IF NOT EXISTS " if dialect == "sqlite" else ""
    statements.extend(index.format(if_not_exists=if_not_exists) for index in INDEXES)
    return statements


def create_database(db):
    """
    Create all tables and indexes (no-op for tables that already exist).

    Args:
        db (Database): Target database.
    """
    db.executescript(render_statements(db.dialect))
    logger.info("schema_created", dialect=db.dialect, tables=list(TABLES))


def reset_database(db):
    """Drop every engine table and recreate the schema. Deletes all data."""
    drops = [f"DROP TABLE IF EXISTS {name}" for name in reversed(list(TABLES))]
    db.executescript(drops)
    logger.warning("schema_dropped", dialect=db.dialect)
    create_database(db)


def verify_schema(db):
    """
    Check that every engine table exists.

    Returns:
        list: Names of missing tables (empty when the schema is complete).
    """
    if db.dialect == "sqlite":
        query = "SELECT name AS table_name FROM sqlite_master WHERE type = 'table'"
    else:
        query = "SELECT table_name AS table_name FROM information_schema.tables WHERE table_schema = DATABASE()"

    with db.read() as cursor:
        existing = {row['table_name'] for row in cursor.execute(query).fetchall()}

    missing = [name for name in TABLES if name not in existing]
    if missing:
        logger.warning("schema_incomplete", missing=missing)
    return missing
