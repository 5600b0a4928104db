"""
CLI check commands — verify the mirror and inspect saved cursors.

Usage:
    wikigrab check-revisions [--dry-run] [--findings audit/findings.ndjson]
    wikigrab cursor-show revisions.cursor.json [--json]
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click

from ..persistence.cursor_file import load_cursor
from .common import grab_options, run_job


@click.command("check-revisions")
@grab_options
@click.option("--dry-run", is_flag=True, help="Detect and report only, write nothing")
def check_revisions(
    config_file: Optional[Path],
    cursor_file: Optional[Path],
    dry_run: bool,
    **options,
) -> None:
    """Compare local revisions with remote checksums and heal what can be healed."""
    result = run_job(lambda run: run.check_revisions(dry_run=dry_run), config_file, cursor_file, **options)
    report = result.integrity
    if report is not None and report.unfixable:
        click.secho(f"  {report.unfixable} gap(s) need their parent revisions first", fg="yellow")


@click.command("cursor-show")
@click.argument("cursor_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def cursor_show(cursor_file: Path, as_json: bool) -> None:
    """Show where a saved run will resume."""
    cursor = load_cursor(cursor_file)
    if cursor is None:
        raise click.ClickException(f"No cursor in {cursor_file}")

    if as_json:
        click.echo(json.dumps(cursor.model_dump(), indent=2))
        return

    click.echo(f"\n  Job:         {cursor.job}")
    click.echo(f"  Direction:   {cursor.direction}")
    click.echo(f"  Namespaces:  {', '.join(map(str, cursor.namespaces)) or 'all'}")
    click.echo(f"  Window:      {cursor.start or '-'} .. {cursor.end or '-'}")
    click.echo(f"  Processed:   {cursor.items_processed} items")
    click.echo(f"  Last seen:   {cursor.last_timestamp or '-'}")
    click.echo(f"  Updated:     {cursor.updated_at}")
    if cursor.exhausted:
        click.secho("  Status:      complete", fg="green")
    else:
        click.secho(f"  Resume at:   {cursor.params}", fg="yellow")
    click.echo()
