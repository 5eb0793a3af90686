"""
Command line interface for the PulseConnect client core.

Every command works against the durable state directory from the loaded
configuration, so preferences changed offline with ``settings set`` are the
ones a later ``settings sync`` reconciles with the server.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .channel import EventChannel
from .session import SessionContext
from .storage import FileSlot
from .sync import (
    ChecksumConflictPolicy,
    HttpPreferenceService,
    PreferenceSyncEngine,
    RemoteWinsPolicy,
    SyncStatus,
    ThemeVariants,
)
from .utils.config import PulseConfig, load_config
from .utils.errors import PulseError
from .utils.logging import get_logger, setup_logging


output = Console()
logger = get_logger("pulseconnect.cli")

POLICIES = {
    "remote-wins": RemoteWinsPolicy,
    "checksum": ChecksumConflictPolicy,
}


def _parse_value(raw: str) -> Any:
    """Interpret a command line value as JSON, falling back to a plain string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _build_engine(config: PulseConfig, token: Optional[str] = None,
                  policy: str = "remote-wins") -> PreferenceSyncEngine:
    slot = FileSlot(config.storage.directory)
    remote = HttpPreferenceService(
        config.sync.api_url,
        token_provider=lambda: token,
        timeout=config.sync.request_timeout,
    )
    return PreferenceSyncEngine(
        slot,
        remote,
        sync_config=config.sync,
        storage_config=config.storage,
        conflict_policy=POLICIES[policy](),
    )


async def _load_engine(config: PulseConfig) -> PreferenceSyncEngine:
    engine = _build_engine(config)
    await engine.initialize(False)
    return engine


def _cli_error(error: PulseError) -> click.ClickException:
    """Log the structured error and turn it into a user-facing CLI failure."""
    logger.debug("cli_command_failed", **error.to_dict())
    lines = [error.message]
    lines.extend(f"  hint: {hint}" for hint in error.get_suggestions())
    return click.ClickException("\n".join(lines))


def _run(coro):
    try:
        return asyncio.run(coro)
    except PulseError as e:
        raise _cli_error(e) from e


@click.group()
@click.option('--config', 'config_paths', multiple=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Additional configuration file (may be repeated)')
@click.option('--log-level', default=None, help='Override the configured log level')
@click.version_option(__version__, prog_name='pulseconnect')
@click.pass_context
def main(ctx: click.Context, config_paths: Tuple[Path, ...], log_level: Optional[str]):
    """PulseConnect client core."""
    try:
        config = load_config(list(config_paths))
    except PulseError as e:
        raise _cli_error(e) from e

    setup_logging(
        app_name=config.app_name,
        log_level=log_level or config.logging.level,
        log_dir=config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
        max_bytes=config.logging.max_size,
        backup_count=config.logging.backup_count,
    )
    ctx.obj = config


@main.group()
def settings():
    """Inspect and change synchronized preferences."""


@settings.command('show')
@click.pass_obj
def settings_show(config: PulseConfig):
    """Print the current preferences."""
    engine = _run(_load_engine(config))

    table = Table(title="Preferences")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in engine.settings.items():
        table.add_row(key, json.dumps(value))
    output.print(table)

    stats = engine.get_stats()
    if stats["last_synced"]:
        output.print(f"Last synced: {stats['last_synced']}")


@settings.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_obj
def settings_set(config: PulseConfig, key: str, value: str):
    """Set KEY to VALUE (parsed as JSON when possible)."""
    engine = _run(_load_engine(config))
    try:
        engine.update(key, _parse_value(value))
    except PulseError as e:
        raise _cli_error(e) from e
    output.print(f"[green]{key}[/green] updated")


@settings.command('reset')
@click.confirmation_option(prompt='Reset all preferences to defaults?')
@click.pass_obj
def settings_reset(config: PulseConfig):
    """Restore every preference to its default."""
    engine = _run(_load_engine(config))
    engine.reset_all()
    output.print("Preferences reset to defaults")


@settings.command('export')
@click.option('--output', '-o', 'output_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Write to a file instead of stdout')
@click.pass_obj
def settings_export(config: PulseConfig, output_path: Optional[Path]):
    """Export the full preference snapshot as JSON."""
    engine = _run(_load_engine(config))
    text = engine.export_settings()
    if output_path:
        output_path.write_text(text, encoding='utf-8')
        output.print(f"Exported to {output_path}")
    else:
        click.echo(text)


@settings.command('import')
@click.argument('source', type=click.File('r'))
@click.pass_obj
def settings_import(config: PulseConfig, source):
    """Replace the preference snapshot with exported JSON."""
    engine = _run(_load_engine(config))
    if not engine.import_settings(source.read()):
        raise click.ClickException("Import failed: the file is not a JSON object")
    output.print("Preferences imported")


async def _sync(config: PulseConfig, token: str, policy: str, resolve: Optional[str]) -> PreferenceSyncEngine:
    engine = _build_engine(config, token=token, policy=policy)
    try:
        await engine.initialize(True)
        if engine.status is SyncStatus.CONFLICT and resolve:
            engine.resolve_conflict(keep_remote=resolve == "remote")
        await engine.flush()
    finally:
        await engine.remote.close()
    return engine


@settings.command('sync')
@click.option('--token', required=True, envvar='PULSECONNECT_TOKEN', help='Bearer token')
@click.option('--policy', type=click.Choice(sorted(POLICIES)), default='remote-wins',
              show_default=True, help='How divergence is detected on pull')
@click.option('--resolve', type=click.Choice(['local', 'remote']), default=None,
              help='Settle a detected conflict by keeping one side')
@click.pass_obj
def settings_sync(config: PulseConfig, token: str, policy: str, resolve: Optional[str]):
    """Pull from and push to the preference service once."""
    engine = _run(_sync(config, token, policy, resolve))
    status = engine.status

    color = {
        SyncStatus.SYNCED: "green",
        SyncStatus.OFFLINE: "yellow",
        SyncStatus.CONFLICT: "red",
    }.get(status, "white")
    output.print(f"Sync status: [{color}]{status.value}[/{color}]")

    if status is SyncStatus.CONFLICT:
        output.print("Local and server preferences diverged; rerun with --resolve local|remote")
        sys.exit(2)
    if status is SyncStatus.OFFLINE:
        sys.exit(1)


@main.group()
def themes():
    """Manage custom theme variants."""


@themes.command('list')
@click.pass_obj
def themes_list(config: PulseConfig):
    """List custom theme variants."""
    engine = _run(_load_engine(config))
    variants = ThemeVariants(engine).list_variants()
    if not variants:
        output.print("No custom themes")
        return

    table = Table(title="Custom themes")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Primary color")
    for variant_id, variant in variants.items():
        marker = " *" if engine.get("theme") == variant_id else ""
        table.add_row(variant_id + marker, variant.get("name", ""), variant.get("primaryColor", ""))
    output.print(table)


@themes.command('export')
@click.argument('variant_id')
@click.pass_obj
def themes_export(config: PulseConfig, variant_id: str):
    """Print one theme variant as JSON."""
    engine = _run(_load_engine(config))
    text = ThemeVariants(engine).export_variant(variant_id)
    if text is None:
        raise click.ClickException(f"No theme variant {variant_id}")
    click.echo(text)


@themes.command('import')
@click.argument('source', type=click.File('r'))
@click.pass_obj
def themes_import(config: PulseConfig, source):
    """Create a theme variant from exported JSON."""
    engine = _run(_load_engine(config))
    variant_id = ThemeVariants(engine).import_variant(source.read())
    if variant_id is None:
        raise click.ClickException("Import failed: expected a JSON object with a name")
    output.print(f"Imported theme [cyan]{variant_id}[/cyan]")


@themes.command('delete')
@click.argument('variant_id')
@click.pass_obj
def themes_delete(config: PulseConfig, variant_id: str):
    """Delete a theme variant."""
    engine = _run(_load_engine(config))
    if not ThemeVariants(engine).delete_variant(variant_id):
        raise click.ClickException(f"No theme variant {variant_id}")
    output.print(f"Deleted theme {variant_id}")


async def _listen(config: PulseConfig, user_id: str, token: str) -> EventChannel:
    session = SessionContext()
    await session.login({"id": user_id}, token)

    channel = EventChannel(session, config.resolve_ws_url(), config.channel)
    channel.add_listener(lambda data: output.print_json(data=data))
    channel.connect()
    try:
        await channel.wait_closed()
    finally:
        await channel.disconnect()
    return channel


@main.command()
@click.option('--user-id', required=True, help='User whose alerts to receive')
@click.option('--token', required=True, envvar='PULSECONNECT_TOKEN', help='Bearer token')
@click.pass_obj
def listen(config: PulseConfig, user_id: str, token: str):
    """Print every inbound alert until interrupted."""
    try:
        channel = _run(_listen(config, user_id, token))
    except KeyboardInterrupt:
        output.print("\nStopped")
        return

    if channel.exhausted:
        raise click.ClickException("Connection lost and reconnection attempts exhausted")


if __name__ == "__main__":
    main()
