import logging
from typing import List, Optional

from librarydesk.book import Book
from librarydesk.database import Database
from librarydesk.errors import BookNotFound
from librarydesk.services.notifications import NotificationEmitter

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = "id, title, author, category, quantity, available_quantity, created_at"


class Catalog:
    """Kitap envanterini yönetir (ekleme, listeleme, stok güncelleme).

    ``available_quantity`` ödünç verme/iade sırasında yalnızca
    ``CirculationEngine`` tarafından değiştirilir; burada yalnızca yeni kitap
    eklenirken ve stok yeniden ayarlanırken belirlenir.
    """

    def __init__(self, db: Database, notifier: Optional[NotificationEmitter] = None) -> None:
        self.db = db
        self.notifier = notifier

    # ------------------------- Çekirdek işlemler ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Yeni bir kitap ekle ve tüm kullanıcılara duyur."""
        if not book.title or not book.author:
            raise ValueError("Title and author are required.")
        if book.quantity < 0:
            raise ValueError("Quantity must not be negative.")
        if not 0 <= book.available_quantity <= book.quantity:
            raise ValueError("Available quantity must be between 0 and quantity.")

        result = self.db.execute(
            """
            INSERT INTO books (title, author, category, quantity, available_quantity)
            VALUES (?, ?, ?, ?, ?)
            """,
            (book.title, book.author, book.category, book.quantity, book.available_quantity),
        )
        created = self.find_book(result.lastrowid)

        if self.notifier is not None:
            try:
                self.notifier.notify_new_book(created.title, created.author)
            except Exception as e:
                logger.exception(f"Yeni kitap bildirimi gönderilemedi: {e}")
        return created

    def find_book(self, book_id: int) -> Optional[Book]:
        row = self.db.query_one(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,))
        return Book.from_dict(dict(row)) if row else None

    def list_books(self, available_only: bool = False) -> List[Book]:
        """Veritabanındaki tüm kitapları listele (her çağrıda taze)."""
        sql = f"SELECT {_BOOK_COLUMNS} FROM books"
        if available_only:
            sql += " WHERE available_quantity > 0"
        rows = self.db.query(sql + " ORDER BY title")
        return [Book.from_dict(dict(row)) for row in rows]

    def restock(self, book_id: int, quantity: int) -> Book:
        """Toplam kopya sayısını değiştir; rafta olan sayı aynı farkla kayar."""
        if quantity < 0:
            raise ValueError("Quantity must not be negative.")
        with self.db.transaction() as tx:
            row = tx.query_one("SELECT quantity, available_quantity FROM books WHERE id = ?", (book_id,))
            if row is None:
                raise BookNotFound(f"Book {book_id} not found")
            on_loan = row["quantity"] - row["available_quantity"]
            if quantity < on_loan:
                raise ValueError(f"Quantity cannot be lower than copies on loan ({on_loan}).")
            tx.execute(
                "UPDATE books SET quantity = ?, available_quantity = ? WHERE id = ?",
                (quantity, quantity - on_loan, book_id),
            )
        return self.find_book(book_id)
