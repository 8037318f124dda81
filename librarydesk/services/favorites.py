from typing import Any, Dict, List

from librarydesk.database import Database
from librarydesk.errors import BookNotFound, FavoriteNotFound


class FavoriteService:
    """Kullanıcının favori kitap listesi."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def add(self, user_id: int, book_id: int) -> None:
        if self.db.query_one("SELECT id FROM books WHERE id = ?", (book_id,)) is None:
            raise BookNotFound(f"Book {book_id} not found")
        result = self.db.execute(
            "INSERT INTO favorites (user_id, book_id) VALUES (?, ?) ON CONFLICT(user_id, book_id) DO NOTHING",
            (user_id, book_id),
        )
        if result.rowcount == 0:
            raise ValueError("Book is already in favorites")

    def remove(self, user_id: int, book_id: int) -> None:
        result = self.db.execute("DELETE FROM favorites WHERE user_id = ? AND book_id = ?", (user_id, book_id))
        if result.rowcount == 0:
            raise FavoriteNotFound(f"Book {book_id} is not in favorites")

    def list_for_user(self, user_id: int) -> List[Dict[str, Any]]:
        rows = self.db.query(
            """
            SELECT b.id, b.title, b.author, b.category, b.quantity, b.available_quantity,
                   f.created_at AS favorited_at
            FROM favorites f
            JOIN books b ON f.book_id = b.id
            WHERE f.user_id = ?
            ORDER BY f.created_at DESC, f.id DESC
            """,
            (user_id,),
        )
        return [dict(r) for r in rows]

    def is_favorite(self, user_id: int, book_id: int) -> bool:
        row = self.db.query_one("SELECT id FROM favorites WHERE user_id = ? AND book_id = ?", (user_id, book_id))
        return row is not None
