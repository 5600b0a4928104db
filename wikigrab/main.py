"""
wikigrab — CLI Entry Point

Usage:
    wikigrab revisions [--namespaces 0|10] [--cursor-file revisions.cursor.json]
    wikigrab deleted-revisions [--adrcontinue TOKEN]
    wikigrab files | restrictions | tags
    wikigrab check-revisions [--dry-run]
    wikigrab cursor-show FILE
"""

from __future__ import annotations

# Load .env file FIRST, before any other imports that might read env vars
from pathlib import Path
from dotenv import load_dotenv

# .env in the directory the grabber is run from
_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

import click

from . import __version__
from .cli.check import check_revisions, cursor_show
from .cli.grab import deleted_revisions, files, restrictions, revisions, tags
from .logging_config import setup_logging

# Initialize logging
setup_logging()


@click.group()
@click.version_option(__version__, prog_name="wikigrab")
def cli() -> None:
    """wikigrab — Resumable mirror of a remote wiki."""


# Grab commands
cli.add_command(revisions)
cli.add_command(deleted_revisions)
cli.add_command(files)
cli.add_command(restrictions)
cli.add_command(tags)

# Verification and inspection
cli.add_command(check_revisions)
cli.add_command(cursor_show)


if __name__ == "__main__":
    cli()
