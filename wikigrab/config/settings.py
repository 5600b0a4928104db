"""
Grabber Settings — Parse WIKIGRAB_* environment variables and YAML files.

Settings are resolved in three layers, later ones winning:

1. ``WIKIGRAB_*`` environment variables (``.env`` is loaded by the CLI)
2. An optional YAML file (``--config grab.yaml``), keys named like the
   dataclass fields
3. Command-line options

Minimal required config:
    WIKIGRAB_URL=https://wiki.example.org/w/api.php

## Environment Variables

- WIKIGRAB_URL: Remote ``api.php`` endpoint
- WIKIGRAB_USERNAME / WIKIGRAB_PASSWORD: Bot login (optional)
- WIKIGRAB_USER_AGENT: User agent sent to the remote
- WIKIGRAB_DB: SQLite file (default: mirror.sqlite)
- WIKIGRAB_FILE_REPO: Directory for file bytes (default: images)
- WIKIGRAB_NAMESPACES: ``|`` or ``,`` separated namespace ids
- WIKIGRAB_START / WIKIGRAB_END: Time window, any dateutil-parsable form
- WIKIGRAB_REPORT_INTERVAL: Progress line every N items (default: 500)
- WIKIGRAB_STALL_REPORT: Cursor report every N empty pages (default: 10)
- WIKIGRAB_TRANSCODING_HOSTS: Hosts needing ``format=original``
- WIKIGRAB_MAX_RETRIES: Download attempts per file (default: 3)
- WIKIGRAB_RETRY_DELAY: Seconds, multiplied by the retry number (default: 5)
- WIKIGRAB_COLLISION_SUFFIX: Appended to clashing user names (default: @imported)
- WIKIGRAB_TIMEOUT: HTTP timeout in seconds (default: 60)
- WIKIGRAB_FINDINGS: NDJSON findings ledger path (optional)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from datetime import timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from dateutil import parser as date_parser

from ..errors import ConfigurationError
from ..remote.client import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

ENV_PREFIX = "WIKIGRAB_"


def parse_namespaces(value: Union[str, List[Any], None]) -> List[int]:
    """``"0|10,14"`` or ``[0, "10"]`` -> ``[0, 10, 14]``."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        value = value.replace(",", "|").split("|")
    try:
        return [int(str(v).strip()) for v in value if str(v).strip()]
    except ValueError as e:
        raise ConfigurationError(f"Invalid namespace list: {value}") from e


def normalize_timestamp(value: Optional[str]) -> Optional[str]:
    """Parse any reasonable timestamp into ``YYYY-MM-DDTHH:MM:SSZ`` (UTC)."""
    if not value:
        return None
    try:
        parsed = date_parser.parse(str(value))
    except (ValueError, OverflowError) as e:
        raise ConfigurationError(f"Invalid timestamp: {value}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _split_hosts(value: Union[str, List[str], None]) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.replace(",", " ").split()
    return [h.strip().lower() for h in value if h.strip()]


@dataclass
class GrabberSettings:
    """Everything a run needs to know before it starts."""

    api_url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    db_path: Path = Path("mirror.sqlite")
    file_repo: Path = Path("images")
    findings_path: Optional[Path] = None

    namespaces: List[int] = field(default_factory=list)
    start: Optional[str] = None
    end: Optional[str] = None

    report_interval: int = 500
    stall_report_every: int = 10
    transcoding_hosts: List[str] = field(default_factory=list)
    max_retries: int = 3
    retry_delay: float = 5.0
    timeout: float = 60.0
    collision_suffix: str = "@imported"

    @property
    def has_login(self) -> bool:
        return bool(self.username and self.password)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "GrabberSettings":
        """Parse settings from ``WIKIGRAB_*`` environment variables."""
        env = os.environ if env is None else env

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        values: Dict[str, Any] = {
            "api_url": get("URL"),
            "username": get("USERNAME"),
            "password": get("PASSWORD"),
            "user_agent": get("USER_AGENT"),
            "db_path": get("DB"),
            "file_repo": get("FILE_REPO"),
            "findings_path": get("FINDINGS"),
            "namespaces": get("NAMESPACES"),
            "start": get("START"),
            "end": get("END"),
            "report_interval": get("REPORT_INTERVAL"),
            "stall_report_every": get("STALL_REPORT"),
            "transcoding_hosts": get("TRANSCODING_HOSTS"),
            "max_retries": get("MAX_RETRIES"),
            "retry_delay": get("RETRY_DELAY"),
            "timeout": get("TIMEOUT"),
            "collision_suffix": get("COLLISION_SUFFIX"),
        }
        return cls().merged(**values)

    @classmethod
    def from_yaml(cls, path: Path, base: Optional["GrabberSettings"] = None) -> "GrabberSettings":
        """Layer a YAML mapping over ``base`` (or the defaults)."""
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown settings in {path}: {unknown}")
        return (base or cls()).merged(**{k: v for k, v in data.items() if k in known})

    def merged(self, **overrides: Any) -> "GrabberSettings":
        """Return a copy with every non-None override applied and coerced."""
        values: Dict[str, Any] = {}
        try:
            for name, value in overrides.items():
                if value is None:
                    continue
                if name in ("db_path", "file_repo", "findings_path"):
                    value = Path(value)
                elif name == "namespaces":
                    value = parse_namespaces(value)
                elif name == "transcoding_hosts":
                    value = _split_hosts(value)
                elif name in ("start", "end"):
                    value = normalize_timestamp(value)
                elif name in ("report_interval", "stall_report_every", "max_retries"):
                    value = int(value)
                elif name in ("retry_delay", "timeout"):
                    value = float(value)
                values[name] = value
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid setting: {e}") from e
        return replace(self, **values)

    def validate(self, require_url: bool = True) -> None:
        """
        Check the settings are usable.

        Raises:
            ConfigurationError: On the first problem found
        """
        if require_url:
            if not self.api_url:
                raise ConfigurationError("No API URL configured (set WIKIGRAB_URL or --url)")
            if not self.api_url.startswith(("http://", "https://")):
                raise ConfigurationError(f"API URL must be http(s): {self.api_url}")
        if bool(self.username) != bool(self.password):
            raise ConfigurationError("Username and password must be given together")
        if any(ns < 0 for ns in self.namespaces):
            raise ConfigurationError(f"Namespaces must be >= 0: {self.namespaces}")
        if self.report_interval < 1 or self.stall_report_every < 1:
            raise ConfigurationError("Report intervals must be positive")
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if self.retry_delay < 0:
            raise ConfigurationError("retry_delay cannot be negative")
        if self.start and self.end and self.start > self.end:
            raise ConfigurationError(f"Time window is empty: {self.start} > {self.end}")
