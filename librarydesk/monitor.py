"""Süre ve stok izleyicisi.

Ödünç ve envanter durumunu periyodik olarak tarar ve bildirim üretir; ödünç
veya kitap satırlarını asla değiştirmez. Her tarama bağımsızdır: birinin
hatası diğerlerini engellemez. Tarama bildirimleri gün bazlı bir
``reference_key`` taşır, böylece aynı gün tekrar çalışan bir tarama kopya
bildirim üretmez.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from librarydesk.config import Settings, settings as default_settings
from librarydesk.database import Database
from librarydesk.errors import SideEffectFailure
from librarydesk.loan import BORROWED
from librarydesk.services.notifications import NotificationEmitter
from librarydesk.services.users import UserDirectory

logger = logging.getLogger(__name__)

DUE_SOON = "due-soon"
LOW_STOCK = "low-stock"
OVERDUE = "overdue"
SWEEP_NAMES = (DUE_SOON, LOW_STOCK, OVERDUE)


@dataclass
class SweepReport:
    name: str
    scanned: int = 0
    emitted: int = 0
    skipped: int = 0
    failed: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _days(n: int) -> str:
    return "1 day" if n == 1 else f"{n} days"


class DueStockMonitor:
    def __init__(self, db: Database, notifier: NotificationEmitter,
                 config: Optional[Settings] = None,
                 clock: Callable[[], datetime] = datetime.now) -> None:
        config = config or default_settings
        self.db = db
        self.notifier = notifier
        self.users = UserDirectory(db)
        self.due_soon_window_days = config.due_soon_window_days
        self.low_stock_threshold = config.low_stock_threshold
        self._clock = clock

    def _emit(self, report: SweepReport, user_id: int, type: str, title: str, message: str,
              reference_key: str) -> None:
        try:
            created = self.notifier.notify(user_id, type, title, message, reference_key=reference_key)
        except SideEffectFailure as e:
            report.failed += 1
            logger.warning(f"{report.name} taraması bildirim gönderemedi (kullanıcı {user_id}): {e}")
            return
        if created is None:
            report.skipped += 1
        else:
            report.emitted += 1

    # ------------------------- Taramalar ------------------------- #
    def run_due_soon_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Son tarihi önümüzdeki günlerde dolan ödünçler için hatırlatma gönder.

        Son tarihi bugün ile ``now + pencere`` arasına düşen ödünçler seçilir;
        bugün teslim edilmesi gerekenler de dahildir, gecikme taraması onları
        ancak ertesi gün yakalar. Kalan gün sayısı, son tarihin gece yarısına
        göre yukarı yuvarlanır.
        """
        now = now or self._clock()
        report = SweepReport(DUE_SOON)
        first_day = now.date()
        last_day = (now + timedelta(days=self.due_soon_window_days)).date()

        rows = self.db.query(
            """
            SELECT b.id AS borrow_id, b.user_id, b.due_date, bk.title
            FROM borrows b
            JOIN books bk ON b.book_id = bk.id
            WHERE b.status = ? AND b.due_date BETWEEN ? AND ?
            ORDER BY b.due_date, b.id
            """,
            (BORROWED, first_day.isoformat(), last_day.isoformat()),
        )
        for row in rows:
            report.scanned += 1
            due = datetime.combine(date.fromisoformat(row["due_date"]), time.min)
            days_left = math.ceil((due - now).total_seconds() / 86400)
            when = f"in {_days(days_left)}" if days_left > 0 else "today"
            self._emit(
                report,
                row["user_id"],
                "due_date",
                "Book due soon",
                f'"{row["title"]}" must be returned {when}',
                f"due_date:loan:{row['borrow_id']}:{now.date().isoformat()}",
            )
        logger.info(f"Son tarih taraması: {report.scanned} ödünç, {report.emitted} bildirim")
        return report

    def run_overdue_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Son tarihi geçmiş (son tarih bugünden önce) ödünçler için günde bir uyarı gönder."""
        now = now or self._clock()
        today = now.date()
        report = SweepReport(OVERDUE)

        rows = self.db.query(
            """
            SELECT b.id AS borrow_id, b.user_id, b.due_date, bk.title
            FROM borrows b
            JOIN books bk ON b.book_id = bk.id
            WHERE b.status = ? AND b.due_date < ?
            ORDER BY b.due_date, b.id
            """,
            (BORROWED, today.isoformat()),
        )
        for row in rows:
            report.scanned += 1
            days_over = (today - date.fromisoformat(row["due_date"])).days
            self._emit(
                report,
                row["user_id"],
                "overdue",
                "Book overdue",
                f'"{row["title"]}" is {_days(days_over)} overdue. Please return it as soon as possible',
                f"overdue:loan:{row['borrow_id']}:{today.isoformat()}",
            )
        logger.info(f"Gecikme taraması: {report.scanned} ödünç, {report.emitted} bildirim")
        return report

    def run_low_stock_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Az kopyası kalan her kitap için tüm yöneticilere bildirim gönder."""
        now = now or self._clock()
        report = SweepReport(LOW_STOCK)

        books = self.db.query(
            """
            SELECT id, title, available_quantity
            FROM books
            WHERE available_quantity > 0 AND available_quantity < ?
            ORDER BY id
            """,
            (self.low_stock_threshold,),
        )
        admin_ids = self.users.list_admin_ids()
        for book in books:
            report.scanned += 1
            qty = book["available_quantity"]
            for admin_id in admin_ids:
                # Anahtar miktarı içerir: stok tekrar düşerse yeni bildirim gider
                self._emit(
                    report,
                    admin_id,
                    "low_stock",
                    "Low stock",
                    f'"{book["title"]}" has only {qty} copies left',
                    f"low_stock:book:{book['id']}:{qty}:admin:{admin_id}:{now.date().isoformat()}",
                )
        logger.info(f"Düşük stok taraması: {report.scanned} kitap, {report.emitted} bildirim")
        return report

    def run(self, name: str, now: Optional[datetime] = None) -> SweepReport:
        sweeps = {
            DUE_SOON: self.run_due_soon_sweep,
            LOW_STOCK: self.run_low_stock_sweep,
            OVERDUE: self.run_overdue_sweep,
        }
        if name not in sweeps:
            raise ValueError(f"Unknown sweep: {name}. Allowed: {', '.join(SWEEP_NAMES)}")
        return sweeps[name](now)

    def run_all(self, now: Optional[datetime] = None) -> List[SweepReport]:
        """Tüm taramaları çalıştır; başarısız olan tarama diğerlerini durdurmaz."""
        reports = []
        for name in SWEEP_NAMES:
            try:
                reports.append(self.run(name, now))
            except Exception as e:
                logger.exception(f"{name} taraması başarısız oldu: {e}")
                reports.append(SweepReport(name, error=str(e)))
        return reports


class SweepScheduler:
    """Taramaları sabit aralıklarla, istek işleme döngüsünden bağımsız çalıştırır.

    Her tarama kendi asyncio görevinde döner ve veritabanı çağrılarının olay
    döngüsünü bloke etmemesi için ``asyncio.to_thread`` ile yürütülür. İlk
    çalıştırma ``initial_delay`` sonra yapılır (varsayılan: hemen), böylece
    aralıktan sık yeniden başlatılan bir süreç de taramaları kaçırmaz.
    """

    def __init__(self, jobs: Dict[str, Tuple[Callable[[], object], float]],
                 initial_delay: float = 0) -> None:
        self.jobs = jobs
        self.initial_delay = initial_delay
        self._tasks: List[asyncio.Task] = []

    @classmethod
    def for_monitor(cls, monitor: DueStockMonitor, config: Optional[Settings] = None) -> "SweepScheduler":
        config = config or default_settings
        return cls({
            DUE_SOON: (monitor.run_due_soon_sweep, config.due_soon_interval_seconds),
            LOW_STOCK: (monitor.run_low_stock_sweep, config.low_stock_interval_seconds),
            OVERDUE: (monitor.run_overdue_sweep, config.overdue_interval_seconds),
        }, initial_delay=config.sweep_initial_delay_seconds)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def _loop(self, name: str, sweep: Callable[[], object], interval: float) -> None:
        delay = self.initial_delay
        while True:
            await asyncio.sleep(delay)
            try:
                await asyncio.to_thread(sweep)
            except Exception as e:
                logger.exception(f"Zamanlanmış {name} taraması başarısız oldu: {e}")
            delay = interval

    def start(self) -> None:
        """Görevleri çalışan olay döngüsünde başlat."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._loop(name, sweep, interval), name=f"sweep:{name}")
            for name, (sweep, interval) in self.jobs.items()
        ]
        logger.info(f"Tarama zamanlayıcısı başlatıldı: {', '.join(self.jobs)}")

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
