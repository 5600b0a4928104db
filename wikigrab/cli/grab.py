"""
CLI grab commands — mirror one content type from the remote wiki.

Usage:
    wikigrab revisions [--namespaces 0|10] [--start 2020-01-01] [--end ...]
    wikigrab deleted-revisions [--adrcontinue '4|Foo|20200101000000|123']
    wikigrab files [--file-repo images]
    wikigrab restrictions
    wikigrab tags
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from .common import grab_options, run_job


@click.command("revisions")
@grab_options
def revisions(config_file: Optional[Path], cursor_file: Optional[Path], **options) -> None:
    """Mirror live revisions and keep page rows current."""
    run_job(lambda run: run.revisions(), config_file, cursor_file, **options)


@click.command("deleted-revisions")
@grab_options
@click.option("--adrcontinue", help="Resume token from an earlier run; earlier namespaces are skipped")
def deleted_revisions(
    config_file: Optional[Path],
    cursor_file: Optional[Path],
    adrcontinue: Optional[str],
    **options,
) -> None:
    """Mirror deleted revisions into the archive (needs deletedhistory rights)."""
    run_job(lambda run: run.deleted_revisions(adrcontinue=adrcontinue), config_file, cursor_file, **options)


@click.command("files")
@grab_options
@click.option("--file-repo", help="Directory receiving file bytes (WIKIGRAB_FILE_REPO)")
def files(config_file: Optional[Path], cursor_file: Optional[Path], **options) -> None:
    """Mirror file versions and download their bytes."""
    run_job(lambda run: run.files(), config_file, cursor_file, **options)


@click.command("restrictions")
@grab_options
def restrictions(config_file: Optional[Path], cursor_file: Optional[Path], **options) -> None:
    """Replace local page protections with the remote ones."""
    run_job(lambda run: run.restrictions(), config_file, cursor_file, **options)


@click.command("tags")
@grab_options
def tags(config_file: Optional[Path], cursor_file: Optional[Path], **options) -> None:
    """Apply remote change tags to mirrored revisions."""
    run_job(lambda run: run.revision_tags(), config_file, cursor_file, **options)
