"""
Store — Local mirror persistence.
"""

from .base import LocalStore
from .sqlite import SCHEMA, SQLiteStore

__all__ = ["LocalStore", "SQLiteStore", "SCHEMA"]
