from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from librarydesk.hooks import HookResult

BORROWED = "borrowed"
RETURNED = "returned"


@dataclass
class Loan:
    """Bir kullanıcının bir kitabı ödünç alma kaydı."""

    id: int
    user_id: int
    book_id: int
    borrow_date: date
    due_date: date
    status: str = BORROWED
    return_date: Optional[date] = None
    book_title: Optional[str] = None
    book_author: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    created_at: Optional[str] = None

    @staticmethod
    def from_row(row: dict) -> "Loan":
        return_date = row.get("return_date")
        return Loan(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            borrow_date=date.fromisoformat(row["borrow_date"]),
            due_date=date.fromisoformat(row["due_date"]),
            status=row["status"],
            return_date=date.fromisoformat(return_date) if return_date else None,
            book_title=row.get("title") or row.get("book_title"),
            book_author=row.get("author"),
            user_name=row.get("user_name"),
            user_email=row.get("user_email"),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "borrow_date": self.borrow_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "status": self.status,
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "book_title": self.book_title,
            "book_author": self.book_author,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "created_at": self.created_at,
        }


@dataclass
class BorrowReceipt:
    loan_id: int
    book_id: int
    borrow_date: date
    due_date: date
    side_effects: List[HookResult] = field(default_factory=list)


@dataclass
class ReturnReceipt:
    loan_id: int
    book_title: str
    return_date: date
    side_effects: List[HookResult] = field(default_factory=list)
