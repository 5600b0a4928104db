"""
CLI shared plumbing — option set, settings resolution and error mapping.

Every grab command accepts the same scope and path options. Settings are
layered env -> ``--config`` YAML -> command-line options, then validated.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import click

from ..config.settings import GrabberSettings
from ..engine.run import RunResult, SyncRun
from ..errors import ConfigurationError, GrabberError

logger = logging.getLogger(__name__)


def grab_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the options shared by every grab command."""
    options = [
        click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
                     help="YAML settings file"),
        click.option("--url", help="Remote api.php endpoint (WIKIGRAB_URL)"),
        click.option("--db", "db_path", help="SQLite mirror file (WIKIGRAB_DB)"),
        click.option("--namespaces", help="Namespace ids, '|' or ',' separated"),
        click.option("--start", help="Window start timestamp"),
        click.option("--end", help="Window end timestamp"),
        click.option("--cursor-file", type=click.Path(dir_okay=False, path_type=Path),
                     help="Save the position after every page and resume from it"),
        click.option("--findings", "findings_path", help="NDJSON findings ledger (WIKIGRAB_FINDINGS)"),
        click.option("--report-interval", type=int, help="Progress line every N items"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def resolve_settings(
    config_file: Optional[Path] = None,
    **overrides: Any,
) -> GrabberSettings:
    """Layer env, YAML file and CLI overrides into validated settings."""
    settings = GrabberSettings.from_env()
    if config_file is not None:
        settings = GrabberSettings.from_yaml(config_file, base=settings)
    settings = settings.merged(
        api_url=overrides.get("url"),
        db_path=overrides.get("db_path"),
        namespaces=overrides.get("namespaces"),
        start=overrides.get("start"),
        end=overrides.get("end"),
        findings_path=overrides.get("findings_path"),
        report_interval=overrides.get("report_interval"),
        file_repo=overrides.get("file_repo"),
    )
    settings.validate()
    return settings


def run_job(
    job: Callable[[SyncRun], RunResult],
    config_file: Optional[Path],
    cursor_file: Optional[Path],
    **overrides: Any,
) -> RunResult:
    """
    Open a run, execute ``job`` on it and print the summary line.

    Fatal errors become a ``ClickException`` (exit status 1).
    """
    try:
        settings = resolve_settings(config_file, **overrides)
        with SyncRun.open(settings, cursor_path=cursor_file) as run:
            result = job(run)
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e
    except GrabberError as e:
        logger.error(f"Run aborted: {e}")
        raise click.ClickException(f"{type(e).__name__}: {e}") from e

    color = "yellow" if result.failures else "green"
    click.secho(result.summary(), fg=color)
    return result

