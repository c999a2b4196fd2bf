"""Campus Library - Core Application Package

This package contains the core application modules including:
- API endpoints (api.py)
- CLI interface (main.py)
- Catalog management logic (library.py)
- Authentication (auth.py)
- Loan lifecycle (loans.py, loan.py)
- Favorites (favorites.py)
- Data models (book.py, user.py, loan.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
