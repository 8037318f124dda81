import logging
from datetime import date, timedelta
from typing import Callable, List, Optional

from librarydesk.config import Settings, settings as default_settings
from librarydesk.database import Database
from librarydesk.errors import BookUnavailable, BorrowLimitExceeded, LoanNotFound
from librarydesk.hooks import PostCommitHooks
from librarydesk.loan import BORROWED, RETURNED, BorrowReceipt, Loan, ReturnReceipt
from librarydesk.services.activity import ActivityLogger
from librarydesk.services.notifications import NotificationEmitter

logger = logging.getLogger(__name__)


class CirculationEngine:
    """Ödünç verme ve iade iş akışı.

    Ön koşullar ``BEGIN IMMEDIATE`` ile alınan yazma kilidi altında okunur, bu
    yüzden aynı kitabın son kopyası için ya da aynı kullanıcı adına eşzamanlı
    gelen iki istek taahhüt edilmiş durumu sırayla görür. Stok azaltma ayrıca
    ``available_quantity > 0`` koşuluyla korunur.

    Bildirim, denetim kaydı ve düşük stok taraması commit sonrasında
    ``PostCommitHooks`` üzerinden çalışır; hataları işlemi geri almaz ve
    çağırana yükseltilmez.
    """

    def __init__(self, db: Database, notifier: NotificationEmitter, activity: ActivityLogger,
                 low_stock_sweep: Optional[Callable[[], object]] = None,
                 config: Optional[Settings] = None,
                 today: Callable[[], date] = date.today) -> None:
        config = config or default_settings
        self.db = db
        self.notifier = notifier
        self.activity = activity
        self.low_stock_sweep = low_stock_sweep
        self.loan_period_days = config.loan_period_days
        self.max_active_loans = config.max_active_loans
        self.low_stock_threshold = config.low_stock_threshold
        self._today = today

    # ------------------------- Ödünç / iade ------------------------- #
    def borrow(self, user_id: int, book_id: int, request_context: Optional[str] = None) -> BorrowReceipt:
        borrow_date = self._today()
        due_date = borrow_date + timedelta(days=self.loan_period_days)

        with self.db.transaction() as tx:
            book = tx.query_one(
                "SELECT id, title, available_quantity FROM books WHERE id = ? AND available_quantity > 0",
                (book_id,),
            )
            if book is None:
                raise BookUnavailable(book_id)

            active = tx.query_one(
                "SELECT COUNT(*) AS count FROM borrows WHERE user_id = ? AND status = ?",
                (user_id, BORROWED),
            )["count"]
            if active >= self.max_active_loans:
                raise BorrowLimitExceeded(user_id, self.max_active_loans)

            inserted = tx.execute(
                """
                INSERT INTO borrows (user_id, book_id, borrow_date, due_date, status)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, book_id, borrow_date.isoformat(), due_date.isoformat(), BORROWED),
            )
            updated = tx.execute(
                """
                UPDATE books SET available_quantity = available_quantity - 1
                WHERE id = ? AND available_quantity > 0
                """,
                (book_id,),
            )
            if updated.rowcount != 1:
                raise BookUnavailable(book_id)

        loan_id = inserted.lastrowid
        title = book["title"]
        remaining = book["available_quantity"] - 1
        logger.info(f"Kullanıcı {user_id} kitabı ödünç aldı: {book_id} (ödünç {loan_id}, kalan {remaining})")

        hooks = PostCommitHooks()
        hooks.add("notify_borrow", lambda: self.notifier.notify_borrow(user_id, title, due_date))
        if remaining < self.low_stock_threshold and self.low_stock_sweep is not None:
            hooks.add("low_stock_sweep", self.low_stock_sweep)
        hooks.add(
            "log_activity",
            lambda: self.activity.log(user_id, "borrow_book", f'Borrowed "{title}"', request_context),
        )

        return BorrowReceipt(
            loan_id=loan_id,
            book_id=book_id,
            borrow_date=borrow_date,
            due_date=due_date,
            side_effects=hooks.run(),
        )

    def return_loan(self, loan_id: int, user_id: int, request_context: Optional[str] = None) -> ReturnReceipt:
        return_date = self._today()

        with self.db.transaction() as tx:
            loan = tx.query_one(
                """
                SELECT b.id, b.book_id, books.title
                FROM borrows b
                JOIN books ON b.book_id = books.id
                WHERE b.id = ? AND b.user_id = ? AND b.status = ?
                """,
                (loan_id, user_id, BORROWED),
            )
            if loan is None:
                raise LoanNotFound(loan_id)

            updated = tx.execute(
                "UPDATE borrows SET status = ?, return_date = ? WHERE id = ? AND status = ?",
                (RETURNED, return_date.isoformat(), loan_id, BORROWED),
            )
            if updated.rowcount != 1:
                raise LoanNotFound(loan_id)
            tx.execute(
                "UPDATE books SET available_quantity = available_quantity + 1 WHERE id = ?",
                (loan["book_id"],),
            )

        title = loan["title"]
        logger.info(f"Kullanıcı {user_id} ödünç {loan_id} kaydını iade etti")

        hooks = PostCommitHooks()
        hooks.add("notify_return", lambda: self.notifier.notify_return(user_id, title))
        hooks.add(
            "log_activity",
            lambda: self.activity.log(user_id, "return_book", f'Returned "{title}"', request_context),
        )

        return ReturnReceipt(
            loan_id=loan_id,
            book_title=title,
            return_date=return_date,
            side_effects=hooks.run(),
        )

    # ------------------------- Sorgular ------------------------- #
    def get_loan(self, loan_id: int) -> Optional[Loan]:
        row = self.db.query_one(
            """
            SELECT b.*, books.title, books.author
            FROM borrows b JOIN books ON b.book_id = books.id
            WHERE b.id = ?
            """,
            (loan_id,),
        )
        return Loan.from_row(dict(row)) if row else None

    def list_user_loans(self, user_id: int) -> List[Loan]:
        rows = self.db.query(
            """
            SELECT b.*, books.title, books.author
            FROM borrows b
            JOIN books ON b.book_id = books.id
            WHERE b.user_id = ?
            ORDER BY b.created_at DESC, b.id DESC
            """,
            (user_id,),
        )
        return [Loan.from_row(dict(r)) for r in rows]

    def list_all_loans(self) -> List[Loan]:
        rows = self.db.query(
            """
            SELECT b.*,
                   books.title AS book_title,
                   users.full_name AS user_name,
                   users.email AS user_email
            FROM borrows b
            JOIN books ON b.book_id = books.id
            JOIN users ON b.user_id = users.id
            ORDER BY b.created_at DESC, b.id DESC
            """
        )
        return [Loan.from_row(dict(r)) for r in rows]
