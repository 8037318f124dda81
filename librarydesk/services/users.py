import sqlite3
from typing import Any, Dict, List, Optional

from librarydesk.database import Database

ROLES = ("user", "admin")


class UserDirectory:
    """Kimlik aramaları için minimal kullanıcı deposu."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_user(self, full_name: str, email: str, role: str = "user") -> Dict[str, Any]:
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role}")
        if not full_name.strip() or not email.strip():
            raise ValueError("Full name and email are required")
        try:
            result = self.db.execute(
                "INSERT INTO users (full_name, email, role) VALUES (?, ?, ?)",
                (full_name.strip(), email.strip().lower(), role),
            )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"User with email {email} already exists") from e
        return self.find_user(result.lastrowid)

    def find_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        row = self.db.query_one(
            "SELECT id, full_name, email, role, created_at FROM users WHERE id = ?",
            (user_id,),
        )
        return dict(row) if row else None

    def list_user_ids(self) -> List[int]:
        return [r["id"] for r in self.db.query("SELECT id FROM users ORDER BY id")]

    def list_admin_ids(self) -> List[int]:
        return [r["id"] for r in self.db.query("SELECT id FROM users WHERE role = 'admin' ORDER BY id")]
