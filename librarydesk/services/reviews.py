import math
from typing import Any, Dict, Optional

from librarydesk.database import Database
from librarydesk.errors import BookNotFound, ReviewNotFound


def _validate_rating(rating: int) -> None:
    if not 1 <= rating <= 5:
        raise ValueError("Rating must be between 1 and 5")


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "current_page": page,
        "total_pages": math.ceil(total / limit),
        "total_items": total,
        "items_per_page": limit,
    }


class ReviewService:
    """Kitap yorumları ve puanları (1-5).

    Bir kullanıcının bir kitap için en fazla bir etkin yorumu olabilir;
    silme işlemi yorumu pasif hale getirir, böylece kullanıcı yeniden yorum
    yazabilir.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def list_for_book(self, book_id: int, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)
        if self.db.query_one("SELECT id FROM books WHERE id = ?", (book_id,)) is None:
            raise BookNotFound(f"Book {book_id} not found")
        stats = self.db.query_one(
            "SELECT COUNT(*) AS count, AVG(rating) AS average FROM reviews WHERE book_id = ? AND is_active = 1",
            (book_id,),
        )
        rows = self.db.query(
            """
            SELECT r.*, u.full_name AS user_name
            FROM reviews r
            JOIN users u ON r.user_id = u.id
            WHERE r.book_id = ? AND r.is_active = 1
            ORDER BY r.created_at DESC, r.id DESC
            LIMIT ? OFFSET ?
            """,
            (book_id, limit, (page - 1) * limit),
        )
        return {
            "reviews": [dict(r) for r in rows],
            "average_rating": stats["average"] or 0,
            "pagination": _pagination(page, limit, stats["count"]),
        }

    def list_for_user(self, user_id: int, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)
        total = self.db.query_one(
            "SELECT COUNT(*) AS count FROM reviews WHERE user_id = ? AND is_active = 1", (user_id,)
        )["count"]
        rows = self.db.query(
            """
            SELECT r.*, b.title AS book_title
            FROM reviews r
            JOIN books b ON r.book_id = b.id
            WHERE r.user_id = ? AND r.is_active = 1
            ORDER BY r.created_at DESC, r.id DESC
            LIMIT ? OFFSET ?
            """,
            (user_id, limit, (page - 1) * limit),
        )
        return {"reviews": [dict(r) for r in rows], "pagination": _pagination(page, limit, total)}

    def add(self, book_id: int, user_id: int, rating: int, comment: Optional[str] = None) -> Dict[str, Any]:
        _validate_rating(rating)
        with self.db.transaction() as tx:
            if tx.query_one("SELECT id FROM books WHERE id = ?", (book_id,)) is None:
                raise BookNotFound(f"Book {book_id} not found")
            existing = tx.query_one(
                "SELECT id FROM reviews WHERE book_id = ? AND user_id = ? AND is_active = 1",
                (book_id, user_id),
            )
            if existing is not None:
                raise ValueError("You have already reviewed this book")
            result = tx.execute(
                "INSERT INTO reviews (book_id, user_id, rating, comment) VALUES (?, ?, ?, ?)",
                (book_id, user_id, rating, comment),
            )
        return self.get(result.lastrowid)

    def get(self, review_id: int) -> Dict[str, Any]:
        row = self.db.query_one("SELECT * FROM reviews WHERE id = ? AND is_active = 1", (review_id,))
        if row is None:
            raise ReviewNotFound(f"Review {review_id} not found")
        return dict(row)

    def update(self, review_id: int, user_id: int, rating: int, comment: Optional[str] = None) -> Dict[str, Any]:
        _validate_rating(rating)
        result = self.db.execute(
            """
            UPDATE reviews SET rating = ?, comment = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND user_id = ? AND is_active = 1
            """,
            (rating, comment, review_id, user_id),
        )
        if result.rowcount == 0:
            raise ReviewNotFound(f"Review {review_id} not found")
        return self.get(review_id)

    def delete(self, review_id: int, user_id: int) -> None:
        """Yorumu pasifleştir (geçmiş kayıt olarak tutulur)."""
        result = self.db.execute(
            "UPDATE reviews SET is_active = 0 WHERE id = ? AND user_id = ? AND is_active = 1",
            (review_id, user_id),
        )
        if result.rowcount == 0:
            raise ReviewNotFound(f"Review {review_id} not found or not authorized")
