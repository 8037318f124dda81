import sqlite3

import pytest

from librarydesk.database import Database, initialize_database
from librarydesk.errors import BookUnavailable, TransactionFailure


def _count_books(db):
    return db.query_one("SELECT COUNT(*) AS count FROM books")["count"]


def test_initialize_database_creates_tables(tmp_path):
    db = initialize_database(str(tmp_path / "init.db"))
    try:
        tables = {r["name"] for r in db.query("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert {"users", "books", "borrows", "notifications", "user_activities", "penalties"} <= tables
        assert db.ping() is True
    finally:
        db.close()


def test_create_tables_is_idempotent(db):
    db.create_tables()
    assert _count_books(db) == 0


def test_transaction_commits(db):
    with db.transaction() as tx:
        tx.execute("INSERT INTO books (title, author, quantity, available_quantity) VALUES ('A', 'B', 1, 1)")
    assert _count_books(db) == 1


def test_transaction_rolls_back_on_typed_error(db):
    with pytest.raises(BookUnavailable):
        with db.transaction() as tx:
            tx.execute("INSERT INTO books (title, author, quantity, available_quantity) VALUES ('A', 'B', 1, 1)")
            raise BookUnavailable(1)
    assert _count_books(db) == 0


def test_transaction_wraps_sqlite_errors(db):
    with pytest.raises(TransactionFailure) as exc:
        with db.transaction() as tx:
            tx.execute("INSERT INTO books (title, author, quantity, available_quantity) VALUES ('A', 'B', 1, 1)")
            # available_quantity > quantity CHECK kısıtını ihlal eder
            tx.execute("INSERT INTO books (title, author, quantity, available_quantity) VALUES ('C', 'D', 1, 2)")
    assert isinstance(exc.value.__cause__, sqlite3.IntegrityError)
    assert _count_books(db) == 0


def test_stock_cannot_go_negative(db):
    db.execute("INSERT INTO books (title, author, quantity, available_quantity) VALUES ('A', 'B', 1, 0)")
    with pytest.raises(sqlite3.IntegrityError):
        db.execute("UPDATE books SET available_quantity = available_quantity - 1")


def test_connections_are_reused(tmp_path):
    db = Database(str(tmp_path / "pool.db"), pool_size=1)
    try:
        with db.connection() as first:
            pass
        with db.connection() as second:
            assert second is first
    finally:
        db.close()


def test_returned_connection_is_not_left_in_transaction(db):
    conn = db.get_connection()
    conn.execute("BEGIN IMMEDIATE")
    db.return_connection(conn)
    assert not conn.in_transaction
