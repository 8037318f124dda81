import logging
import os
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

from librarydesk.book import Book
from librarydesk.catalog import Catalog
from librarydesk.circulation import CirculationEngine
from librarydesk.config import settings
from librarydesk.database import Database
from librarydesk.errors import LibraryDeskError, TransactionFailure
from librarydesk.monitor import SWEEP_NAMES, DueStockMonitor
from librarydesk.services.activity import ActivityLogger
from librarydesk.services.notifications import NotificationEmitter
from librarydesk.services.users import UserDirectory
from librarydesk.ui_helpers import print_books, print_loans, print_sweep_reports, set_output_mode

console = Console()

# --- Typer CLI Uygulaması ---
app = typer.Typer(help="Kütüphane ödünç yönetimi CLI")

_state = {"db_file": None}


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Çıktı formatı: plain | json | rich (varsayılan: plain)"
    ),
    db_file: Optional[str] = typer.Option(
        None, "--db", help="SQLite veritabanı dosyası (varsayılan: LIBRARY_DB_FILE)"
    ),
):
    """CLI için genel seçenekler."""
    logging.basicConfig(level=settings.log_level)
    if output:
        set_output_mode(output)
    _state["db_file"] = db_file


def _open_db() -> Database:
    db = Database(_state["db_file"] or settings.database_file)
    db.create_tables()
    return db


def _monitor(db: Database) -> DueStockMonitor:
    return DueStockMonitor(db, NotificationEmitter(db))


def _engine(db: Database) -> CirculationEngine:
    notifier = NotificationEmitter(db)
    monitor = DueStockMonitor(db, notifier)
    return CirculationEngine(db, notifier, ActivityLogger(db), low_stock_sweep=monitor.run_low_stock_sweep)


def _fail(message: str) -> None:
    print(f"Error: {message}")
    raise typer.Exit(code=1)


@app.command("init-db")
def cli_init_db():
    """Veritabanı tablolarını oluştur."""
    db = _open_db()
    db.close()
    print(f"Database ready: {db.db_file}")


@app.command("add-user")
def cli_add_user(full_name: str, email: str,
                 admin: bool = typer.Option(False, "--admin", help="Yönetici rolü ver")):
    """Yeni bir kullanıcı kaydet."""
    db = _open_db()
    try:
        user = UserDirectory(db).create_user(full_name, email, role="admin" if admin else "user")
    except ValueError as e:
        _fail(str(e))
    finally:
        db.close()
    print(f"Created {user['role']} #{user['id']}: {user['full_name']} <{user['email']}>")


@app.command("add-book")
def cli_add_book(title: str, author: str,
                 quantity: int = typer.Option(1, "--quantity", "-q", min=0),
                 category: Optional[str] = typer.Option(None, "--category", "-c")):
    """Envantere bir kitap ekle."""
    db = _open_db()
    try:
        book = Catalog(db, NotificationEmitter(db)).add_book(
            Book(title=title, author=author, quantity=quantity, category=category)
        )
    except ValueError as e:
        _fail(str(e))
    finally:
        db.close()
    print(f"Successfully added: #{book.id} {book.title} by {book.author} ({book.quantity} copies)")


@app.command("list-books")
def cli_list_books(available: bool = typer.Option(False, "--available", help="Yalnızca rafta olanlar")):
    """Tüm kitapları listele."""
    db = _open_db()
    try:
        print_books(Catalog(db).list_books(available_only=available))
    finally:
        db.close()


@app.command("borrow")
def cli_borrow(user_id: int, book_id: int):
    """Bir kullanıcı adına kitap ödünç al."""
    db = _open_db()
    try:
        receipt = _engine(db).borrow(user_id, book_id)
    except TransactionFailure:
        _fail("Internal server error")
    except LibraryDeskError as e:
        _fail(str(e))
    finally:
        db.close()
    print(f"Loan #{receipt.loan_id} created. Due date: {receipt.due_date.isoformat()}")


@app.command("return")
def cli_return(loan_id: int, user_id: int):
    """Bir ödünç kaydını iade et."""
    db = _open_db()
    try:
        receipt = _engine(db).return_loan(loan_id, user_id)
    except TransactionFailure:
        _fail("Internal server error")
    except LibraryDeskError as e:
        _fail(str(e))
    finally:
        db.close()
    print(f'Returned "{receipt.book_title}" on {receipt.return_date.isoformat()}')


@app.command("loans")
def cli_loans(user_id: Optional[int] = typer.Argument(None, help="Boşsa tüm ödünçler listelenir")):
    """Ödünç kayıtlarını listele."""
    db = _open_db()
    try:
        engine = _engine(db)
        print_loans(engine.list_user_loans(user_id) if user_id is not None else engine.list_all_loans())
    finally:
        db.close()


@app.command("sweep")
def cli_sweep(name: str = typer.Argument("all", help=f"{' | '.join(SWEEP_NAMES)} | all")):
    """Bir bildirim taramasını hemen çalıştır."""
    if name != "all" and name not in SWEEP_NAMES:
        _fail(f"Unknown sweep: {name}")
    db = _open_db()
    try:
        monitor = _monitor(db)
        reports = monitor.run_all() if name == "all" else [monitor.run(name)]
    finally:
        db.close()
    print_sweep_reports(reports)


@app.command("serve")
def cli_serve(host: str = typer.Option(settings.api_host, "--host"),
              port: int = typer.Option(settings.api_port, "--port"),
              reload: bool = typer.Option(False, "--reload")):
    """API sunucusunu uvicorn ile başlat."""
    console.print(f"[bold green]Starting API on http://{host}:{port}[/]")
    cmd = [sys.executable, "-m", "uvicorn", "librarydesk.api:create_app", "--factory",
           "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")
    env = dict(os.environ)
    if _state["db_file"]:
        env["LIBRARY_DB_FILE"] = _state["db_file"]
    subprocess.run(cmd, env=env)


if __name__ == "__main__":
    app()
