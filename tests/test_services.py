from unittest.mock import MagicMock

import pytest

from librarydesk.book import Book
from librarydesk.catalog import Catalog
from librarydesk.errors import (
    BookNotFound,
    FavoriteNotFound,
    LoanNotFound,
    PenaltyNotFound,
    ReviewNotFound,
    SideEffectFailure,
)
from librarydesk.hooks import PostCommitHooks
from librarydesk.services.favorites import FavoriteService
from librarydesk.services.notifications import NotificationService
from librarydesk.services.penalties import PenaltyService
from librarydesk.services.reviews import ReviewService
from librarydesk.services.users import UserDirectory


def test_create_user_validation(db):
    directory = UserDirectory(db)
    user = directory.create_user("  Alice Reader ", "Alice@Example.com")
    assert (user["full_name"], user["email"], user["role"]) == ("Alice Reader", "alice@example.com", "user")

    with pytest.raises(ValueError):
        directory.create_user("Someone", "alice@example.com")
    with pytest.raises(ValueError):
        directory.create_user("Root", "root@example.com", role="superuser")
    assert directory.find_user(999) is None


def test_admin_ids(db, users):
    directory = UserDirectory(db)
    assert directory.list_admin_ids() == [users["admin"]["id"]]
    assert len(directory.list_user_ids()) == 3


def test_notify_with_reference_key_is_idempotent(db, users, notifier):
    uid = users["alice"]["id"]
    first = notifier.notify(uid, "system", "Hi", "Hello", reference_key="greeting:1")
    second = notifier.notify(uid, "system", "Hi", "Hello", reference_key="greeting:1")

    assert first is not None
    assert second is None
    # Anahtarsız bildirimler her seferinde eklenir
    assert notifier.notify(uid, "system", "Hi", "Hello") is not None
    assert notifier.notify(uid, "system", "Hi", "Hello") is not None
    assert len(NotificationService(db).list_for_user(uid)) == 3


def test_notify_storage_error_is_side_effect_failure(db, notifier):
    db.execute("DROP TABLE notifications")
    with pytest.raises(SideEffectFailure):
        notifier.notify(1, "system", "Hi", "Hello")


def test_activity_log_storage_error(db, activity):
    db.execute("DROP TABLE user_activities")
    with pytest.raises(SideEffectFailure):
        activity.log(1, "borrow_book", "Borrowed")


def test_activity_pagination(users, activity):
    uid = users["alice"]["id"]
    for i in range(5):
        activity.log(uid, "borrow_book", f"Borrowed #{i}")

    page = activity.list_for_user(uid, page=2, limit=2)
    assert [a["description"] for a in page["activities"]] == ["Borrowed #2", "Borrowed #1"]
    assert page["pagination"] == {
        "current_page": 2, "total_pages": 3, "total_items": 5, "items_per_page": 2,
    }


def test_bulk_notifications(db, users):
    service = NotificationService(db)
    assert service.create_bulk("all", "system", "Closed", "Closed on Monday") == 3

    with pytest.raises(ValueError):
        service.create_bulk([users["alice"]["id"], 999], "system", "Hi", "Hello")
    with pytest.raises(ValueError):
        service.create_bulk("all", "", "Hi", "Hello")
    # Başarısız toplu gönderim hiçbir kayıt bırakmaz
    assert service.list_all()["pagination"]["total_items"] == 3

    filtered = service.list_all(type="system", search="Monday", limit=2)
    assert filtered["pagination"]["total_pages"] == 2
    assert len(filtered["notifications"]) == 2


def test_penalty_lifecycle(users, engine, add_book, db):
    receipt = engine.borrow(users["alice"]["id"], add_book(title="Solaris").id)
    penalties = PenaltyService(db)

    penalty = penalties.create(receipt.loan_id, "Late return", 4.0)
    assert (penalty["user_id"], penalty["status"], penalty["paid_at"]) == (users["alice"]["id"], "unpaid", None)

    paid = penalties.update_status(penalty["id"], "paid")
    assert paid["paid_at"] is not None
    assert penalties.update_status(penalty["id"], "unpaid")["paid_at"] is None

    assert penalties.list_for_user(users["alice"]["id"])[0]["book_title"] == "Solaris"
    assert penalties.list_all()[0]["full_name"] == "Alice Reader"

    with pytest.raises(ValueError):
        penalties.update_status(penalty["id"], "waived")
    with pytest.raises(ValueError):
        penalties.create(receipt.loan_id, "Late", -1)
    with pytest.raises(LoanNotFound):
        penalties.create(999, "Late", 1)
    with pytest.raises(PenaltyNotFound):
        penalties.get(999)


def test_catalog_add_book_notification_failure_is_logged(db, users):
    notifier = MagicMock()
    notifier.notify_new_book.side_effect = SideEffectFailure("down")
    catalog = Catalog(db, notifier)

    book = catalog.add_book(Book("Dune", "Frank Herbert", quantity=2))

    assert book.id is not None
    assert catalog.find_book(book.id).available_quantity == 2


def test_catalog_validation_and_restock(db, catalog, users, engine, add_book):
    with pytest.raises(ValueError):
        catalog.add_book(Book("", "Nobody"))
    with pytest.raises(ValueError):
        catalog.add_book(Book("Dune", "Frank Herbert", quantity=1, available_quantity=2))

    book = add_book(quantity=2)
    engine.borrow(users["alice"]["id"], book.id)
    assert catalog.restock(book.id, 4).available_quantity == 3
    with pytest.raises(ValueError):
        catalog.restock(book.id, 0)
    with pytest.raises(BookNotFound):
        catalog.restock(999, 1)

    assert [b.id for b in catalog.list_books(available_only=True)] == [book.id]


def test_post_commit_hooks_continue_after_failure():
    calls = []
    hooks = PostCommitHooks()
    hooks.add("first", lambda: calls.append("first"))
    hooks.add("broken", MagicMock(side_effect=RuntimeError("boom")))
    hooks.add("last", lambda: calls.append("last"))

    results = hooks.run()

    assert calls == ["first", "last"]
    assert [(r.name, r.ok, r.error) for r in results] == [
        ("first", True, None), ("broken", False, "boom"), ("last", True, None),
    ]


def test_notify_missing_title_is_rejected(db, users, notifier):
    uid = users["alice"]["id"]
    with pytest.raises(SideEffectFailure):
        notifier.notify(uid, "system", None, "Hello")
    with pytest.raises(SideEffectFailure):
        notifier.notify(uid, "system", None, "Hello", reference_key="greeting:1")
    assert NotificationService(db).list_for_user(uid) == []


def test_notification_search_treats_wildcards_literally(db, users, notifier):
    uid = users["alice"]["id"]
    notifier.notify(uid, "system", "Sale", "Save 100% today")
    notifier.notify(uid, "system", "Sale", "Save 1000 today")
    notifier.notify(uid, "system", "Notice", "file_name changed")
    notifier.notify(uid, "system", "Notice", "filename changed")
    service = NotificationService(db)

    assert [n["message"] for n in service.list_all(search="100%")["notifications"]] == ["Save 100% today"]
    assert [n["message"] for n in service.list_all(search="file_")["notifications"]] == ["file_name changed"]


def test_review_lifecycle(db, users, add_book):
    reviews = ReviewService(db)
    alice, bob = users["alice"]["id"], users["bob"]["id"]
    book = add_book()

    review = reviews.add(book.id, alice, 4, "Great")
    assert (review["rating"], review["comment"], review["user_id"]) == (4, "Great", alice)
    reviews.add(book.id, bob, 2)

    with pytest.raises(ValueError):
        reviews.add(book.id, alice, 5)
    with pytest.raises(ValueError):
        reviews.add(book.id, alice, 0)
    with pytest.raises(BookNotFound):
        reviews.add(999, alice, 3)

    listing = reviews.list_for_book(book.id)
    assert listing["average_rating"] == 3
    assert {r["user_name"] for r in listing["reviews"]} == {"Alice Reader", "Bob Reader"}

    # Yalnızca sahibi güncelleyebilir veya silebilir
    with pytest.raises(ReviewNotFound):
        reviews.update(review["id"], bob, 1)
    with pytest.raises(ReviewNotFound):
        reviews.delete(review["id"], bob)
    assert reviews.update(review["id"], alice, 5, "Even better")["rating"] == 5

    reviews.delete(review["id"], alice)
    with pytest.raises(ReviewNotFound):
        reviews.get(review["id"])
    assert reviews.list_for_book(book.id)["pagination"]["total_items"] == 1

    # Silinen yorumun yerine yenisi yazılabilir
    again = reviews.add(book.id, alice, 3)
    assert reviews.list_for_user(alice)["reviews"][0]["id"] == again["id"]
    assert reviews.list_for_user(alice)["reviews"][0]["book_title"] == "Dune"


def test_favorites(db, users, add_book):
    favorites = FavoriteService(db)
    uid = users["alice"]["id"]
    dune = add_book()
    solaris = add_book(title="Solaris")

    favorites.add(uid, dune.id)
    favorites.add(uid, solaris.id)
    with pytest.raises(ValueError):
        favorites.add(uid, dune.id)
    with pytest.raises(BookNotFound):
        favorites.add(uid, 999)

    assert favorites.is_favorite(uid, dune.id)
    assert not favorites.is_favorite(users["bob"]["id"], dune.id)
    assert {b["title"] for b in favorites.list_for_user(uid)} == {"Dune", "Solaris"}

    favorites.remove(uid, dune.id)
    assert not favorites.is_favorite(uid, dune.id)
    with pytest.raises(FavoriteNotFound):
        favorites.remove(uid, dune.id)
