import logging
import sys

import click

from config import Config, load_config
from errors import WorkshopError
from syncer import SyncEngine, build_engine
from telemetry import init_telemetry, shutdown_telemetry
from utils import format_file_size
from workshop_maps import extract_map_name

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def setup_logging(config: Config) -> None:
    level = getattr(logging, str(config.log_level).upper(), logging.INFO)
    if config.log_file:
        logging.basicConfig(level=level, filename=config.log_file, filemode="a", format=LOG_FORMAT)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


class _State:
    def __init__(self, config: Config) -> None:
        self.config = config
        self._engine: SyncEngine | None = None

    @property
    def engine(self) -> SyncEngine:
        if self._engine is None:
            try:
                self._engine = build_engine(self.config)
            except WorkshopError as exc:
                raise click.ClickException(str(exc)) from exc
        return self._engine


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Steam Workshop mirror: download, verify and remove workshop items."""
    config = load_config()
    setup_logging(config)
    init_telemetry()
    ctx.call_on_close(shutdown_telemetry)
    ctx.obj = _State(config)


@cli.command()
@click.argument("workshop_id")
@click.option("-f", "--force", is_flag=True, help="Re-download even if up to date.")
@click.pass_obj
def download(state: _State, workshop_id: str, force: bool) -> None:
    """Download a workshop item or every item of a collection."""
    try:
        report = state.engine.download(workshop_id, force=force)
    except WorkshopError as exc:
        raise click.ClickException(str(exc)) from exc
    if not report.is_collection:
        click.echo(f"{report.id}: {report.outcome.value if report.outcome else 'done'}")
        return
    collection = report.collection
    click.echo(
        f"Collection {report.id} ({report.title}): "
        f"{len(collection.transferred)} downloaded, {len(collection.skipped)} up to date, "
        f"{len(collection.failed)} failed"
    )
    for member_id, reason in collection.failed.items():
        click.echo(f"  failed {member_id}: {reason}", err=True)
    if not collection.ok:
        click.get_current_context().exit(1)


@cli.command()
@click.option("-f", "--force", is_flag=True, help="Re-download every item.")
@click.pass_obj
def update(state: _State, force: bool) -> None:
    """Update all tracked items."""
    try:
        report = state.engine.update_all(force=force)
    except WorkshopError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(
        f"{len(report.transferred)} updated, {len(report.skipped)} up to date, "
        f"{len(report.failed)} failed"
    )
    for workshop_id, reason in report.failed.items():
        click.echo(f"  failed {workshop_id}: {reason}", err=True)
    if not report.ok:
        click.get_current_context().exit(1)


@cli.command(name="list")
@click.option("-v", "--verbose", is_flag=True, help="Show titles, collections and files.")
@click.pass_obj
def list_items(state: _State, verbose: bool) -> None:
    """List tracked items."""
    items = state.engine.list_items()
    if not items:
        click.echo("No subscribed items. Use 'download <id>' to add items.")
        return
    click.echo(f"Subscribed items ({len(items)}):")
    if verbose:
        click.echo("=" * 60)
    for item in items:
        if not verbose:
            click.echo(f"{item.id:<12} {extract_map_name(item) or 'no_map'}")
            continue
        click.echo(f"ID: {item.id}")
        click.echo(f"Title: {item.title}")
        if item.collection_ids:
            click.echo(f"Collections: {', '.join(sorted(item.collection_ids))}")
        if item.files:
            click.echo(f"Files ({len(item.files)}):")
            for tracked in item.files:
                click.echo(f"  - {tracked.relative_path}")
        click.echo("-" * 40)


@cli.command()
@click.argument("workshop_id")
@click.pass_obj
def remove(state: _State, workshop_id: str) -> None:
    """Remove an item, or a collection together with its orphaned items."""
    try:
        report = state.engine.remove(workshop_id)
    except WorkshopError as exc:
        raise click.ClickException(str(exc)) from exc
    if not report.removed_ids:
        click.echo(f"Nothing tracked for {workshop_id}")
        return
    click.echo(
        f"Removed {len(report.removed_ids)} items, {len(report.deleted_files)} files"
    )
    for path in report.skipped_modified:
        click.echo(f"  kept modified file {path}, delete manually")


@cli.command()
@click.pass_obj
def info(state: _State) -> None:
    """Show configuration and storage information."""
    config = state.config
    try:
        storage = state.engine.storage_info()
    except WorkshopError as exc:
        raise click.ClickException(str(exc)) from exc

    def row(label: str, value: object) -> None:
        click.echo(f"{label:<25}: {value}")

    click.echo(f"\n{' CONFIGURATION ':-<60}")
    row("App ID", config.app_id)
    row("SteamCMD Path", config.steamcmd_path)
    row("Download Directory", config.output_dir)
    row("Whitelist", ", ".join(config.whitelist) or "(empty)")
    click.echo(f"\n{' PATHS ':-<60}")
    row("Metadata File", storage.store_path)
    row("Local Files", storage.cache_root)
    row("Workshop Maps", config.workshop_maps_file)
    click.echo(f"\n{' SUBSCRIPTIONS ':-<60}")
    row("Total Subscriptions", storage.item_count)
    row("Tracked Files", storage.file_count)
    click.echo(f"\n{' STORAGE ':-<60}")
    row("Used Space", format_file_size(storage.used_bytes))


if __name__ == "__main__":
    cli()
