from __future__ import annotations


class Book:
    """Kütüphanedeki bir kitap başlığını ve stok sayılarını temsil eder."""

    def __init__(self, title: str, author: str, quantity: int = 1, available_quantity: int | None = None,
                 category: str | None = None, id: int | None = None, created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.category = category
        self.quantity = quantity
        # Yeni eklenen kitabın tüm kopyaları rafta
        self.available_quantity = quantity if available_quantity is None else available_quantity
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.available_quantity}/{self.quantity})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "quantity": self.quantity,
            "available_quantity": self.available_quantity,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            category=data.get("category"),
            quantity=data.get("quantity", 1),
            available_quantity=data.get("available_quantity"),
            created_at=data.get("created_at"),
        )
