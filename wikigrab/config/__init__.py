"""
Config — Run settings.
"""

from .settings import GrabberSettings, normalize_timestamp, parse_namespaces

__all__ = ["GrabberSettings", "normalize_timestamp", "parse_namespaces"]
