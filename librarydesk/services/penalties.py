from datetime import datetime
from typing import Any, Dict, List

from librarydesk.database import Database
from librarydesk.errors import LoanNotFound, PenaltyNotFound

PENALTY_STATUSES = ("unpaid", "paid")


class PenaltyService:
    """Ödünç kayıtlarına bağlı para cezaları."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create(self, borrow_id: int, reason: str, amount: float) -> Dict[str, Any]:
        """Bir ödünç kaydı için ödenmemiş ceza oluştur."""
        if not reason or not reason.strip():
            raise ValueError("Reason is required")
        if amount < 0:
            raise ValueError("Amount must not be negative")
        with self.db.transaction() as tx:
            loan = tx.query_one("SELECT user_id FROM borrows WHERE id = ?", (borrow_id,))
            if loan is None:
                raise LoanNotFound(borrow_id)
            result = tx.execute(
                """
                INSERT INTO penalties (borrow_id, user_id, reason, amount, status)
                VALUES (?, ?, ?, ?, 'unpaid')
                """,
                (borrow_id, loan["user_id"], reason.strip(), amount),
            )
        return self.get(result.lastrowid)

    def get(self, penalty_id: int) -> Dict[str, Any]:
        row = self.db.query_one("SELECT * FROM penalties WHERE id = ?", (penalty_id,))
        if row is None:
            raise PenaltyNotFound(f"Penalty {penalty_id} not found")
        return dict(row)

    def list_for_user(self, user_id: int) -> List[Dict[str, Any]]:
        rows = self.db.query(
            """
            SELECT p.*, b.title AS book_title, b.author
            FROM penalties p
            JOIN borrows br ON p.borrow_id = br.id
            JOIN books b ON br.book_id = b.id
            WHERE p.user_id = ?
            ORDER BY p.created_at DESC, p.id DESC
            """,
            (user_id,),
        )
        return [dict(r) for r in rows]

    def list_all(self) -> List[Dict[str, Any]]:
        rows = self.db.query(
            """
            SELECT p.*, u.full_name, b.title AS book_title
            FROM penalties p
            JOIN users u ON p.user_id = u.id
            JOIN borrows br ON p.borrow_id = br.id
            JOIN books b ON br.book_id = b.id
            ORDER BY p.created_at DESC, p.id DESC
            """
        )
        return [dict(r) for r in rows]

    def update_status(self, penalty_id: int, status: str) -> Dict[str, Any]:
        if status not in PENALTY_STATUSES:
            raise ValueError(f"Invalid penalty status: {status}")
        paid_at = datetime.now().isoformat(sep=" ", timespec="seconds") if status == "paid" else None
        result = self.db.execute(
            "UPDATE penalties SET status = ?, paid_at = ? WHERE id = ?",
            (status, paid_at, penalty_id),
        )
        if result.rowcount == 0:
            raise PenaltyNotFound(f"Penalty {penalty_id} not found")
        return self.get(penalty_id)
