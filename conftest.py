from datetime import date

import pytest
from fastapi.testclient import TestClient

from librarydesk.api import create_app
from librarydesk.book import Book
from librarydesk.catalog import Catalog
from librarydesk.circulation import CirculationEngine
from librarydesk.database import Database
from librarydesk.monitor import DueStockMonitor
from librarydesk.services.activity import ActivityLogger
from librarydesk.services.notifications import NotificationEmitter
from librarydesk.services.users import UserDirectory

# Testlerde ödünç tarihleri bu güne sabitlenir
TODAY = date(2026, 10, 7)


@pytest.fixture
def db(tmp_path, request):
    # Her test için benzersiz bir veritabanı dosyası oluştur
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    database = Database(db_file)
    database.create_tables()
    yield database
    database.close()


@pytest.fixture
def users(db):
    directory = UserDirectory(db)
    return {
        "admin": directory.create_user("Ada Admin", "admin@example.com", role="admin"),
        "alice": directory.create_user("Alice Reader", "alice@example.com"),
        "bob": directory.create_user("Bob Reader", "bob@example.com"),
    }


@pytest.fixture
def notifier(db):
    return NotificationEmitter(db)


@pytest.fixture
def activity(db):
    return ActivityLogger(db)


@pytest.fixture
def catalog(db):
    return Catalog(db)


@pytest.fixture
def monitor(db, notifier):
    return DueStockMonitor(db, notifier)


@pytest.fixture
def engine(db, notifier, activity, monitor):
    return CirculationEngine(db, notifier, activity, low_stock_sweep=monitor.run_low_stock_sweep,
                             today=lambda: TODAY)


@pytest.fixture
def add_book(catalog):
    def _add(title="Dune", author="Frank Herbert", quantity=1):
        return catalog.add_book(Book(title=title, author=author, quantity=quantity))
    return _add


@pytest.fixture
def client(db, users):
    app = create_app(db=db, enable_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client
