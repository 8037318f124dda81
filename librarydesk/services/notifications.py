import logging
import math
import sqlite3
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Union

from librarydesk.database import Database
from librarydesk.errors import SideEffectFailure
from librarydesk.services.users import UserDirectory

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("due_date", "overdue", "new_book", "low_stock", "borrow", "return", "system")


def _like_pattern(text: str) -> str:
    """LIKE joker karakterlerini kaçışla ve metni içeren kalıbı döndür."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    d = dict(row)
    d["is_read"] = bool(d.get("is_read"))
    return d


class NotificationEmitter:
    """Kullanıcıya yönelik bildirim kayıtlarını ekler."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def notify(self, user_id: int, type: str, title: str, message: str,
               reference_key: Optional[str] = None) -> Optional[int]:
        """Bir bildirim ekle ve kimliğini döndür.

        ``reference_key`` zaten kayıtlıysa hiçbir şey eklenmez ve ``None``
        döner; taramalar aynı gün tekrar çalıştığında bu sayede kopya
        bildirim üretmez. Depolama hataları ``SideEffectFailure`` olur.
        """
        try:
            result = self.db.execute(
                """
                INSERT INTO notifications (user_id, type, title, message, reference_key)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(reference_key) DO NOTHING
                """,
                (user_id, type, title, message, reference_key),
            )
        except sqlite3.Error as e:
            raise SideEffectFailure(f"Could not create notification for user {user_id}") from e
        if result.rowcount == 0:
            logger.debug(f"Bildirim zaten mevcut, atlandı: {reference_key}")
            return None
        return result.lastrowid

    def notify_borrow(self, user_id: int, book_title: str, due_date: date) -> Optional[int]:
        return self.notify(
            user_id,
            "borrow",
            "Book borrowed successfully",
            f'You have borrowed "{book_title}". Due date: {due_date.isoformat()}',
        )

    def notify_return(self, user_id: int, book_title: str) -> Optional[int]:
        return self.notify(
            user_id,
            "return",
            "Book returned successfully",
            f'You have returned "{book_title}" successfully',
        )

    def notify_new_book(self, title: str, author: str) -> int:
        """Yeni kitabı tüm kullanıcılara duyur; gönderilen bildirim sayısını döndürür."""
        user_ids = UserDirectory(self.db).list_user_ids()
        for user_id in user_ids:
            self.notify(
                user_id,
                "new_book",
                "New book added to the library",
                f'New book: "{title}" by {author} is now available',
            )
        return len(user_ids)


class NotificationService:
    """Bildirim okuma ve yönetim işlemleri."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def list_for_user(self, user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self.db.query(
            """
            SELECT * FROM notifications
            WHERE user_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (user_id, limit),
        )
        return [_row_to_dict(r) for r in rows]

    def mark_as_read(self, notification_id: int, user_id: int) -> bool:
        result = self.db.execute(
            "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        return result.rowcount > 0

    def list_all(self, page: int = 1, limit: int = 10, search: str = "",
                 type: str = "") -> Dict[str, Any]:
        """Tüm bildirimleri arama ve tür filtresiyle sayfalı listele."""
        page = max(page, 1)
        limit = max(limit, 1)
        where = " WHERE 1=1"
        params: List[Any] = []
        if search:
            where += (" AND (n.title LIKE ? ESCAPE '\\' OR n.message LIKE ? ESCAPE '\\'"
                      " OR u.full_name LIKE ? ESCAPE '\\')")
            like = _like_pattern(search)
            params.extend([like, like, like])
        if type:
            where += " AND n.type = ?"
            params.append(type)

        base = " FROM notifications n LEFT JOIN users u ON n.user_id = u.id" + where
        total = self.db.query_one("SELECT COUNT(*) AS count" + base, params)["count"]
        rows = self.db.query(
            "SELECT n.*, u.full_name, u.email" + base
            + " ORDER BY n.created_at DESC, n.id DESC LIMIT ? OFFSET ?",
            params + [limit, (page - 1) * limit],
        )
        return {
            "notifications": [_row_to_dict(r) for r in rows],
            "pagination": {
                "current_page": page,
                "total_pages": math.ceil(total / limit),
                "total_items": total,
                "items_per_page": limit,
            },
        }

    def create_bulk(self, user_ids: Union[str, Sequence[int]], type: str, title: str,
                    message: str) -> int:
        """Bir veya birden çok kullanıcıya ya da ``"all"`` ile herkese bildirim oluştur."""
        if not type or not title or not message:
            raise ValueError("Missing required fields")
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Invalid notification type: {type}")
        with self.db.transaction() as tx:
            if user_ids == "all":
                ids = [r["id"] for r in tx.query("SELECT id FROM users")]
            else:
                ids = sorted(set(user_ids))
                placeholders = ", ".join("?" for _ in ids)
                known = tx.query(f"SELECT id FROM users WHERE id IN ({placeholders})", ids) if ids else []
                if len(known) != len(ids):
                    raise ValueError("Unknown user id in recipients")
            for user_id in ids:
                tx.execute(
                    "INSERT INTO notifications (user_id, type, title, message) VALUES (?, ?, ?, ?)",
                    (user_id, type, title, message),
                )
        return len(ids)

    def delete(self, notification_id: int) -> bool:
        result = self.db.execute("DELETE FROM notifications WHERE id = ?", (notification_id,))
        return result.rowcount > 0

    def delete_bulk(self, ids: Sequence[int]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        result = self.db.execute(f"DELETE FROM notifications WHERE id IN ({placeholders})", ids)
        return result.rowcount
