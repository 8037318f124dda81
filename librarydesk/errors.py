"""Ödünç verme çekirdeğinin tipli hataları.

Kullanıcının düzeltebileceği hatalar (kitap yok, limit dolu, kayıt bulunamadı)
işlem açılmadan veya işlem kilidi altında tespit edilir ve HTTP katmanında 4xx
yanıtlara dönüşür. ``TransactionFailure`` 5xx olarak, ayrıntı sızdırmadan
döndürülür. ``SideEffectFailure`` yalnızca günlüğe yazılır.
"""


class LibraryDeskError(Exception):
    """Uygulamanın temel istisnası."""


class BookUnavailable(LibraryDeskError):
    """Kitap yok veya ödünç verilebilecek kopyası kalmadı."""

    def __init__(self, book_id: int) -> None:
        super().__init__(f"Book {book_id} is not available for borrowing")
        self.book_id = book_id


class BorrowLimitExceeded(LibraryDeskError):
    """Kullanıcı zaten izin verilen sayıda kitap ödünç almış."""

    def __init__(self, user_id: int, limit: int) -> None:
        super().__init__(
            f"You have reached the maximum number of books you can borrow ({limit})"
        )
        self.user_id = user_id
        self.limit = limit


class LoanNotFound(LibraryDeskError):
    """Ödünç kaydı yok, başka kullanıcıya ait veya zaten iade edilmiş."""

    def __init__(self, loan_id: int) -> None:
        super().__init__(f"Loan {loan_id} not found or already returned")
        self.loan_id = loan_id


class BookNotFound(LibraryDeskError):
    pass


class PenaltyNotFound(LibraryDeskError):
    pass


class ReviewNotFound(LibraryDeskError):
    """Yorum yok, silinmiş veya başka kullanıcıya ait."""


class FavoriteNotFound(LibraryDeskError):
    pass


class TransactionFailure(LibraryDeskError):
    """Atomik bölüm sırasında kalıcılık hatası; işlem geri alındı."""


class SideEffectFailure(LibraryDeskError):
    """Commit sonrası bildirim veya denetim kaydı yazılamadı."""
