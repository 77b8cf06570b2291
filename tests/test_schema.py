"""Schema creation and verification."""

from autoledger.database import Database
from autoledger.schema import TABLES, create_database, reset_database, verify_schema


def test_verify_on_fresh_checkout_reports_every_table(tmp_path):
    db = Database.sqlite(tmp_path / "data" / "autoledger.db")

    assert verify_schema(db) == list(TABLES)
    assert (tmp_path / "data").is_dir()


def test_create_then_verify(tmp_path):
    db = Database.sqlite(tmp_path / "data" / "autoledger.db")
    create_database(db)
    create_database(db)

    assert verify_schema(db) == []


def test_reset_drops_rows(db):
    with db.transaction() as cursor:
        cursor.execute(
            "INSERT INTO accounts (user_id, name, type, balance) VALUES (?, ?, ?, ?)",
            (1, "Checking", "bank", "10.00")
        )

    reset_database(db)

    with db.read() as cursor:
        assert cursor.execute("SELECT COUNT(*) AS total FROM accounts").fetchone()['total'] == 0
    assert verify_schema(db) == []
