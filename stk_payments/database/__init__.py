"""Database package for STK payments."""
from .connection import get_db, init_db
from .models import Base, Transaction

__all__ = [
    "Base",
    "Transaction",
    "get_db",
    "init_db",
]
