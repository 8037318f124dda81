import math
import sqlite3
from typing import Any, Dict, Optional

from librarydesk.database import Database
from librarydesk.errors import SideEffectFailure


class ActivityLogger:
    """Kullanıcı eylemleri için denetim izi."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def log(self, user_id: int, action: str, description: str,
            request_context: Optional[str] = None) -> int:
        """Bir denetim kaydı ekle. ``request_context`` isteğin IP adresidir."""
        try:
            result = self.db.execute(
                """
                INSERT INTO user_activities (user_id, action, description, ip_address)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, action, description, request_context),
            )
        except sqlite3.Error as e:
            raise SideEffectFailure(f"Could not log activity '{action}' for user {user_id}") from e
        return result.lastrowid

    def list_for_user(self, user_id: int, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)
        rows = self.db.query(
            """
            SELECT * FROM user_activities
            WHERE user_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (user_id, limit, (page - 1) * limit),
        )
        total = self.db.query_one(
            "SELECT COUNT(*) AS count FROM user_activities WHERE user_id = ?", (user_id,)
        )["count"]
        return {
            "activities": [dict(r) for r in rows],
            "pagination": {
                "current_page": page,
                "total_pages": math.ceil(total / limit),
                "total_items": total,
                "items_per_page": limit,
            },
        }
