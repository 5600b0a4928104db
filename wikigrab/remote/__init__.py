"""
Remote — Access to the wiki being mirrored.
"""

from .base import RemoteSource
from .client import ApiClient

__all__ = ["ApiClient", "RemoteSource"]
