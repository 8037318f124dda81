import logging
import queue
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, List, NamedTuple, Optional, Sequence

from librarydesk.config import settings
from librarydesk.errors import TransactionFailure

logger = logging.getLogger(__name__)


class ExecuteResult(NamedTuple):
    lastrowid: Optional[int]
    rowcount: int


class Transaction:
    """Açık bir işleme bağlı bağlantı üzerinde sorgu çalıştırır."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        return self._conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        return self._conn.execute(sql, params).fetchone()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        cursor = self._conn.execute(sql, params)
        return ExecuteResult(cursor.lastrowid, cursor.rowcount)


class Database:
    """Bağlantı havuzlu SQLite kalıcılık ağ geçidi.

    Modül düzeyinde tekil bir havuz yerine her servis bu tutamacı açıkça alır.
    Bağlantılar otomatik commit kipinde açılır; işlemler ``transaction()``
    ile açıkça ``BEGIN IMMEDIATE`` / ``COMMIT`` / ``ROLLBACK`` olarak yönetilir.
    """

    def __init__(self, db_file: Optional[str] = None, pool_size: Optional[int] = None,
                 busy_timeout: Optional[float] = None) -> None:
        self.db_file = db_file or settings.database_file
        self.busy_timeout = busy_timeout if busy_timeout is not None else settings.database_busy_timeout
        self._pool: "queue.Queue[sqlite3.Connection]" = queue.Queue(
            maxsize=pool_size or settings.database_pool_size
        )

    # ------------------------- Bağlantı havuzu ------------------------- #
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_file,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        # Eşzamanlı okuma için WAL; yazarlar BEGIN IMMEDIATE ile sıraya girer
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    def get_connection(self) -> sqlite3.Connection:
        try:
            return self._pool.get_nowait()
        except queue.Empty:
            return self._connect()

    def return_connection(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.rollback()
        try:
            self._pool.put_nowait(conn)
        except queue.Full:
            conn.close()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_connection()
        try:
            yield conn
        finally:
            self.return_connection(conn)

    def close(self) -> None:
        """Havuzdaki tüm bağlantıları kapat."""
        while True:
            try:
                conn = self._pool.get_nowait()
            except queue.Empty:
                break
            conn.close()

    # ------------------------- Sorgular ------------------------- #
    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self.connection() as conn:
            return conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self.connection() as conn:
            return conn.execute(sql, params).fetchone()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        with self.connection() as conn:
            cursor = conn.execute(sql, params)
            return ExecuteResult(cursor.lastrowid, cursor.rowcount)

    def ping(self) -> bool:
        try:
            self.query("SELECT 1")
            return True
        except sqlite3.Error:
            return False

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Yazma kilidini alarak atomik bir işlem aç.

        ``BEGIN IMMEDIATE`` okuma kontrollerinden önce veritabanı yazma kilidini
        alır; eşzamanlı ikinci bir yazar ilk işlem commit edilene kadar bekler.
        Bloktaki herhangi bir hata işlemi geri alır. ``sqlite3.Error``
        ``TransactionFailure`` olarak yeniden yükseltilir, tipli uygulama
        hataları olduğu gibi geçer.
        """
        conn = self.get_connection()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise TransactionFailure("Could not start transaction") from e
            try:
                yield Transaction(conn)
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.error(f"İşlem geri alındı: {e}")
                raise TransactionFailure("Transaction rolled back") from e
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        finally:
            self.return_connection(conn)

    # ------------------------- Şema ------------------------- #
    def create_tables(self) -> None:
        """Veritabanında mevcut değilse gerekli tabloları oluşturur."""
        with self.connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    full_name TEXT NOT NULL,
                    email TEXT UNIQUE NOT NULL,
                    role TEXT NOT NULL DEFAULT 'user' CHECK(role IN ('user', 'admin')),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS books (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    author TEXT NOT NULL,
                    category TEXT,
                    quantity INTEGER NOT NULL DEFAULT 1,
                    available_quantity INTEGER NOT NULL DEFAULT 1,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CHECK(available_quantity >= 0 AND available_quantity <= quantity)
                );

                CREATE TABLE IF NOT EXISTS borrows (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    book_id INTEGER NOT NULL,
                    borrow_date TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    return_date TEXT,
                    status TEXT NOT NULL DEFAULT 'borrowed' CHECK(status IN ('borrowed', 'returned')),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    is_read BOOLEAN NOT NULL DEFAULT 0,
                    reference_key TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS user_activities (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    action TEXT NOT NULL,
                    description TEXT,
                    ip_address TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS penalties (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    borrow_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    amount REAL NOT NULL CHECK(amount >= 0),
                    status TEXT NOT NULL DEFAULT 'unpaid' CHECK(status IN ('unpaid', 'paid')),
                    paid_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (borrow_id) REFERENCES borrows(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS reviews (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    book_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    rating INTEGER NOT NULL CHECK(rating BETWEEN 1 AND 5),
                    comment TEXT,
                    is_active BOOLEAN NOT NULL DEFAULT 1,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP,
                    FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS favorites (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    book_id INTEGER NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(user_id, book_id),
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
                );

                -- Sık kullanılan sorgular için dizinler
                CREATE INDEX IF NOT EXISTS idx_borrows_user_status ON borrows(user_id, status);
                CREATE INDEX IF NOT EXISTS idx_borrows_status_due ON borrows(status, due_date);
                CREATE INDEX IF NOT EXISTS idx_books_available ON books(available_quantity);
                CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, created_at);
                CREATE UNIQUE INDEX IF NOT EXISTS idx_notifications_reference_key ON notifications(reference_key);
                CREATE INDEX IF NOT EXISTS idx_user_activities_user ON user_activities(user_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_penalties_user ON penalties(user_id);
                -- Kullanıcı başına kitap için tek etkin yorum
                CREATE UNIQUE INDEX IF NOT EXISTS idx_reviews_active_user_book
                    ON reviews(book_id, user_id) WHERE is_active = 1;
            """)


def initialize_database(db_file: Optional[str] = None) -> Database:
    """Veritabanı tutamacını oluşturur ve tabloları hazırlar."""
    db = Database(db_file)
    db.create_tables()
    return db
