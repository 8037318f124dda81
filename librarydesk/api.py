import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, NoReturn, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from librarydesk.book import Book
from librarydesk.catalog import Catalog
from librarydesk.circulation import CirculationEngine
from librarydesk.config import Settings, settings as default_settings
from librarydesk.database import Database
from librarydesk.errors import (
    BookNotFound,
    BookUnavailable,
    BorrowLimitExceeded,
    FavoriteNotFound,
    LoanNotFound,
    PenaltyNotFound,
    ReviewNotFound,
)
from librarydesk.monitor import SWEEP_NAMES, DueStockMonitor, SweepScheduler
from librarydesk.services.activity import ActivityLogger
from librarydesk.services.favorites import FavoriteService
from librarydesk.services.notifications import NotificationEmitter, NotificationService
from librarydesk.services.penalties import PenaltyService
from librarydesk.services.reviews import ReviewService
from librarydesk.services.users import UserDirectory

logger = logging.getLogger(__name__)


# --- Modeller ---
class BookModel(BaseModel):
    id: int
    title: str
    author: str
    category: str | None = None
    quantity: int
    available_quantity: int
    created_at: str | None = None


class BookCreateModel(BaseModel):
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    category: str | None = None
    quantity: int = Field(default=1, ge=0)


class StockUpdateModel(BaseModel):
    quantity: int = Field(ge=0)


class BorrowCreateModel(BaseModel):
    book_id: int


class BorrowResponse(BaseModel):
    loan_id: int
    book_id: int
    borrow_date: date
    due_date: date


class ReturnResponse(BaseModel):
    loan_id: int
    book_title: str
    return_date: date


class LoanModel(BaseModel):
    id: int
    user_id: int
    book_id: int
    borrow_date: date
    due_date: date
    status: str
    return_date: date | None = None
    book_title: str | None = None
    book_author: str | None = None
    user_name: str | None = None
    user_email: str | None = None
    created_at: str | None = None


class NotificationModel(BaseModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    is_read: bool
    created_at: str | None = None


class BulkNotificationModel(BaseModel):
    user_ids: Union[Literal["all"], List[int]]
    type: str
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)


class BulkDeleteModel(BaseModel):
    ids: List[int]


class PenaltyModel(BaseModel):
    id: int
    borrow_id: int
    user_id: int
    reason: str
    amount: float
    status: str
    paid_at: str | None = None
    created_at: str | None = None
    book_title: str | None = None
    author: str | None = None
    full_name: str | None = None


class PenaltyCreateModel(BaseModel):
    borrow_id: int
    reason: str = Field(min_length=1)
    amount: float = Field(ge=0)


class PenaltyStatusModel(BaseModel):
    status: Literal["unpaid", "paid"]


class ReviewModel(BaseModel):
    id: int
    book_id: int
    user_id: int
    rating: int
    comment: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    user_name: str | None = None
    book_title: str | None = None


class ReviewWriteModel(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = None


class FavoriteCreateModel(BaseModel):
    book_id: int


class SweepReportModel(BaseModel):
    name: str
    scanned: int
    emitted: int
    skipped: int
    failed: int


# --- Yardımcı Fonksiyonlar ---
def _raise_http(exc: Exception) -> NoReturn:
    """Tipli uygulama hatalarını HTTP yanıtlarına çevir."""
    if isinstance(exc, (BookUnavailable, BorrowLimitExceeded, ValueError)):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (LoanNotFound, BookNotFound, PenaltyNotFound, ReviewNotFound,
                        FavoriteNotFound)):
        raise HTTPException(status_code=404, detail=str(exc))
    # İç ayrıntıları istemciye sızdırma
    logger.error(f"Beklenmeyen sunucu hatası: {exc!r}")
    raise HTTPException(status_code=500, detail="Internal server error")


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# --- Güvenlik ---
user_id_header = APIKeyHeader(name="X-User-Id", auto_error=False)


def get_current_user(request: Request, user_id: str | None = Security(user_id_header)) -> Dict[str, Any]:
    """İstek başlığından kullanıcıyı çözen bağımlılık."""
    if not user_id:
        raise HTTPException(status_code=401, detail="No user provided")
    try:
        uid = int(user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user id")
    user = request.app.state.users.find_user(uid)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user["role"] != "admin":
        raise HTTPException(status_code=403, detail="Access denied. Admin only.")
    return user


def create_app(db: Optional[Database] = None, config: Optional[Settings] = None,
               enable_scheduler: Optional[bool] = None) -> FastAPI:
    """Servisleri verilen veritabanı tutamacına bağlayarak uygulamayı oluştur."""
    config = config or default_settings
    logging.basicConfig(level=config.log_level)
    if db is None:
        db = Database(config.database_file, config.database_pool_size, config.database_busy_timeout)
    db.create_tables()

    notifier = NotificationEmitter(db)
    activity = ActivityLogger(db)
    monitor = DueStockMonitor(db, notifier, config=config)
    circulation = CirculationEngine(db, notifier, activity, low_stock_sweep=monitor.run_low_stock_sweep,
                                    config=config)
    scheduler = SweepScheduler.for_monitor(monitor, config)
    run_scheduler = config.enable_scheduler if enable_scheduler is None else enable_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Başlangıçta zamanlanmış taramaları başlat
        if run_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            db.close()

    app = FastAPI(title=config.app_name, version=config.app_version, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-User-Id"],
    )

    app.state.db = db
    app.state.notifier = notifier
    app.state.activity = activity
    app.state.monitor = monitor
    app.state.circulation = circulation
    app.state.scheduler = scheduler
    app.state.catalog = Catalog(db, notifier)
    app.state.notifications = NotificationService(db)
    app.state.penalties = PenaltyService(db)
    app.state.reviews = ReviewService(db)
    app.state.favorites = FavoriteService(db)
    app.state.users = UserDirectory(db)

    # --- Sağlık Kontrolü ---
    @app.get("/health")
    def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "db": db.ping(),
            "scheduler": scheduler.running,
        }

    # --- Kitap Uç Noktaları ---
    @app.get("/books", response_model=List[BookModel])
    def list_books(available_only: bool = Query(False)):
        return [b.to_dict() for b in app.state.catalog.list_books(available_only=available_only)]

    @app.get("/books/{book_id}", response_model=BookModel)
    def get_book(book_id: int):
        book = app.state.catalog.find_book(book_id)
        if not book:
            raise HTTPException(status_code=404, detail="Book not found")
        return book.to_dict()

    @app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(require_admin)])
    def add_book(payload: BookCreateModel):
        try:
            book = app.state.catalog.add_book(
                Book(title=payload.title, author=payload.author, category=payload.category,
                     quantity=payload.quantity)
            )
        except Exception as e:
            _raise_http(e)
        return book.to_dict()

    @app.put("/books/{book_id}/stock", response_model=BookModel, dependencies=[Depends(require_admin)])
    def update_stock(book_id: int, payload: StockUpdateModel):
        try:
            return app.state.catalog.restock(book_id, payload.quantity).to_dict()
        except Exception as e:
            _raise_http(e)

    # --- Ödünç Uç Noktaları ---
    @app.post("/borrows", response_model=BorrowResponse, status_code=201)
    def create_borrow(payload: BorrowCreateModel, request: Request,
                      user: Dict[str, Any] = Depends(get_current_user)):
        try:
            receipt = circulation.borrow(user["id"], payload.book_id, request_context=_client_ip(request))
        except Exception as e:
            _raise_http(e)
        return BorrowResponse(loan_id=receipt.loan_id, book_id=receipt.book_id,
                              borrow_date=receipt.borrow_date, due_date=receipt.due_date)

    @app.post("/borrows/return/{loan_id}", response_model=ReturnResponse)
    def return_book(loan_id: int, request: Request, user: Dict[str, Any] = Depends(get_current_user)):
        try:
            receipt = circulation.return_loan(loan_id, user["id"], request_context=_client_ip(request))
        except Exception as e:
            _raise_http(e)
        return ReturnResponse(loan_id=receipt.loan_id, book_title=receipt.book_title,
                              return_date=receipt.return_date)

    @app.get("/borrows/my-borrows", response_model=List[LoanModel])
    def my_borrows(user: Dict[str, Any] = Depends(get_current_user)):
        return [loan.to_dict() for loan in circulation.list_user_loans(user["id"])]

    @app.get("/borrows/all", response_model=List[LoanModel], dependencies=[Depends(require_admin)])
    def all_borrows():
        return [loan.to_dict() for loan in circulation.list_all_loans()]

    # --- Bildirim Uç Noktaları ---
    @app.get("/notifications/user", response_model=List[NotificationModel])
    def user_notifications(user: Dict[str, Any] = Depends(get_current_user)):
        return app.state.notifications.list_for_user(user["id"])

    @app.put("/notifications/{notification_id}/read")
    def mark_notification_read(notification_id: int, user: Dict[str, Any] = Depends(get_current_user)):
        if not app.state.notifications.mark_as_read(notification_id, user["id"]):
            raise HTTPException(status_code=404, detail="Notification not found")
        return {"success": True, "message": "Marked as read"}

    @app.get("/notifications/admin", dependencies=[Depends(require_admin)])
    def all_notifications(page: int = Query(1, ge=1),
                          limit: int = Query(config.default_page_size, ge=1, le=config.max_page_size),
                          search: str = Query(""), type: str = Query("")):
        return app.state.notifications.list_all(page=page, limit=limit, search=search, type=type)

    @app.post("/notifications/admin", dependencies=[Depends(require_admin)])
    def create_bulk_notifications(payload: BulkNotificationModel):
        try:
            count = app.state.notifications.create_bulk(payload.user_ids, payload.type,
                                                        payload.title, payload.message)
        except Exception as e:
            _raise_http(e)
        return {"success": True, "created": count}

    @app.delete("/notifications/admin/{notification_id}", dependencies=[Depends(require_admin)])
    def delete_notification(notification_id: int):
        if not app.state.notifications.delete(notification_id):
            raise HTTPException(status_code=404, detail="Notification not found")
        return {"success": True}

    @app.post("/notifications/admin/delete-bulk", dependencies=[Depends(require_admin)])
    def delete_bulk_notifications(payload: BulkDeleteModel):
        return {"success": True, "deleted": app.state.notifications.delete_bulk(payload.ids)}

    # --- Etkinlik Uç Noktası ---
    @app.get("/activities")
    def user_activities(page: int = Query(1, ge=1),
                        limit: int = Query(config.default_page_size, ge=1, le=config.max_page_size),
                        user: Dict[str, Any] = Depends(get_current_user)):
        return activity.list_for_user(user["id"], page=page, limit=limit)

    # --- Ceza Uç Noktaları ---
    @app.get("/penalties", response_model=List[PenaltyModel])
    def user_penalties(user: Dict[str, Any] = Depends(get_current_user)):
        return app.state.penalties.list_for_user(user["id"])

    @app.post("/penalties", response_model=PenaltyModel, status_code=201, dependencies=[Depends(require_admin)])
    def create_penalty(payload: PenaltyCreateModel):
        try:
            return app.state.penalties.create(payload.borrow_id, payload.reason, payload.amount)
        except Exception as e:
            _raise_http(e)

    @app.get("/penalties/all", response_model=List[PenaltyModel], dependencies=[Depends(require_admin)])
    def all_penalties():
        return app.state.penalties.list_all()

    @app.put("/penalties/{penalty_id}/status", response_model=PenaltyModel, dependencies=[Depends(require_admin)])
    def update_penalty_status(penalty_id: int, payload: PenaltyStatusModel):
        try:
            return app.state.penalties.update_status(penalty_id, payload.status)
        except Exception as e:
            _raise_http(e)

    # --- Yorum Uç Noktaları ---
    @app.get("/reviews/book/{book_id}")
    def book_reviews(book_id: int, page: int = Query(1, ge=1),
                     limit: int = Query(config.default_page_size, ge=1, le=config.max_page_size)):
        try:
            return app.state.reviews.list_for_book(book_id, page=page, limit=limit)
        except Exception as e:
            _raise_http(e)

    @app.post("/reviews/book/{book_id}", response_model=ReviewModel, status_code=201)
    def add_review(book_id: int, payload: ReviewWriteModel, user: Dict[str, Any] = Depends(get_current_user)):
        try:
            return app.state.reviews.add(book_id, user["id"], payload.rating, payload.comment)
        except Exception as e:
            _raise_http(e)

    @app.get("/reviews/my-reviews")
    def my_reviews(page: int = Query(1, ge=1),
                   limit: int = Query(config.default_page_size, ge=1, le=config.max_page_size),
                   user: Dict[str, Any] = Depends(get_current_user)):
        return app.state.reviews.list_for_user(user["id"], page=page, limit=limit)

    @app.put("/reviews/{review_id}", response_model=ReviewModel)
    def update_review(review_id: int, payload: ReviewWriteModel,
                      user: Dict[str, Any] = Depends(get_current_user)):
        try:
            return app.state.reviews.update(review_id, user["id"], payload.rating, payload.comment)
        except Exception as e:
            _raise_http(e)

    @app.delete("/reviews/{review_id}")
    def delete_review(review_id: int, user: Dict[str, Any] = Depends(get_current_user)):
        try:
            app.state.reviews.delete(review_id, user["id"])
        except Exception as e:
            _raise_http(e)
        return {"success": True, "message": "Review deleted successfully"}

    # --- Favori Uç Noktaları ---
    @app.get("/favorites", response_model=List[BookModel])
    def list_favorites(user: Dict[str, Any] = Depends(get_current_user)):
        return app.state.favorites.list_for_user(user["id"])

    @app.post("/favorites", status_code=201)
    def add_favorite(payload: FavoriteCreateModel, user: Dict[str, Any] = Depends(get_current_user)):
        try:
            app.state.favorites.add(user["id"], payload.book_id)
        except Exception as e:
            _raise_http(e)
        return {"success": True, "message": "Book added to favorites"}

    @app.delete("/favorites/{book_id}")
    def remove_favorite(book_id: int, user: Dict[str, Any] = Depends(get_current_user)):
        try:
            app.state.favorites.remove(user["id"], book_id)
        except Exception as e:
            _raise_http(e)
        return {"success": True, "message": "Book removed from favorites"}

    @app.get("/favorites/check/{book_id}")
    def check_favorite(book_id: int, user: Dict[str, Any] = Depends(get_current_user)):
        return {"is_favorited": app.state.favorites.is_favorite(user["id"], book_id)}

    # --- Tarama Uç Noktası ---
    @app.post("/admin/sweeps/{name}", response_model=SweepReportModel, dependencies=[Depends(require_admin)])
    def run_sweep(name: str):
        if name not in SWEEP_NAMES:
            raise HTTPException(status_code=404, detail=f"Unknown sweep. Allowed: {', '.join(SWEEP_NAMES)}")
        report = monitor.run(name)
        return SweepReportModel(name=report.name, scanned=report.scanned, emitted=report.emitted,
                                skipped=report.skipped, failed=report.failed)

    return app
