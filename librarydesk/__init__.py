"""librarydesk - Library circulation backend

This package contains the core application modules including:
- API endpoints (api.py)
- Borrow/return engine (circulation.py)
- Due date and stock monitor (monitor.py)
- Inventory management (catalog.py)
- CLI interface (main.py)
- Data models (book.py, loan.py)
- Database layer (database.py)
"""
