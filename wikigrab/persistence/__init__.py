"""
Persistence — Cursor files and the findings ledger.
"""

from .audit import FindingsLedger, new_run_id
from .cursor_file import load_cursor, save_cursor

__all__ = ["FindingsLedger", "load_cursor", "new_run_id", "save_cursor"]
