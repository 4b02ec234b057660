"""CLI interface for WSL backup and restore."""

import logging

import click
from tqdm import tqdm
from tabulate import tabulate

from wslbackup import configure_logging
from wslbackup.config import load_config, resolve_distro
from wslbackup.errors import BackupError
from wslbackup.models import compression_ratio
from wslbackup.backup.executor import execute_backup
from wslbackup.backup.restore import execute_restore, restored_name, RESTORED_SUFFIX
from wslbackup.backup.sources import WslSource
from wslbackup.backup.status import get_backup_status, format_age, NO_BACKUPS, OVERDUE
from wslbackup.backup.storage import RcloneStorage


logger = logging.getLogger(__name__)

STATUS_STYLES = {
    'start': ('....', 'cyan'),
    'ok': (' OK ', 'green'),
    'warn': ('WARN', 'yellow'),
    'fail': ('FAIL', 'red'),
}


def format_bytes(size: int) -> str:
    """Format byte size for display."""
    for unit in ('B', 'KB', 'MB', 'GB', 'TB'):
        if size < 1024 or unit == 'TB':
            return f"{size:.2f} {unit}" if unit != 'B' else f"{size} B"
        size /= 1024


def report_stage(stage: str, status: str, message: str):
    """Print one colored status line for a pipeline stage."""
    label, color = STATUS_STYLES.get(status, (status.upper()[:4], None))
    click.echo(click.style(f"[{label}]", fg=color, bold=True) + f" {stage:<10} {message}")


class ExportProgressBar:
    """tqdm bar fed by ExportMonitor samples (total size is unknown up front)."""

    def __init__(self):
        self.bar = None
        self.last = 0

    def __call__(self, progress):
        if self.bar is None:
            self.bar = tqdm(desc="Exporting", unit='B', unit_scale=True, unit_divisor=1024, leave=False)
        delta = progress.bytes_written - self.last
        if delta > 0:
            self.bar.update(delta)
            self.last = progress.bytes_written

    def close(self):
        if self.bar is not None:
            self.bar.close()
            self.bar = None


def _load_config(ctx):
    try:
        return load_config(ctx.obj.get('config'))
    except BackupError as e:
        click.secho(f"Configuration error: {e}", fg='red', err=True)
        ctx.exit(1)


@click.group(invoke_without_command=True)
@click.option('--config', '-c', 'config_path', default=None,
              help='Configuration file (default: $WSLBACKUP_CONFIG or ./config.json)')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def cli(ctx, config_path, verbose):
    """Backup and restore a WSL distro to an rclone remote."""
    ctx.ensure_object(dict)
    ctx.obj['config'] = config_path
    ctx.obj['verbose'] = verbose

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.pass_context
def daily(ctx):
    """Export, compress, upload, verify and prune."""
    config = _load_config(ctx)
    configure_logging(config.log_dir, ctx.obj['verbose'])

    try:
        config = resolve_distro(config, WslSource(config.wsl_exe))
    except BackupError as e:
        click.secho(f"Configuration error: {e}", fg='red', err=True)
        ctx.exit(1)

    click.secho(f"Backing up {config.distro_name} -> {config.rclone_remote}", bold=True)

    progress_bar = ExportProgressBar()
    try:
        result = execute_backup(config, reporter=report_stage, on_progress=progress_bar)
    finally:
        progress_bar.close()

    if not result.success:
        click.secho(
            f"Backup failed at {result.failure_stage} after {result.elapsed_seconds:.0f}s",
            fg='red', bold=True
        )
        ctx.exit(1)

    click.secho("Backup complete", fg='green', bold=True)
    click.echo(tabulate([
        ['Archive', result.archive.local_path],
        ['Remote', result.archive.remote_path],
        ['Raw size', format_bytes(result.raw_size)],
        ['Compressed', format_bytes(result.compressed_size)],
        ['Ratio', f"{compression_ratio(result.raw_size, result.compressed_size):.2f}x"],
        ['MD5', result.archive.digest],
        ['Elapsed', f"{result.elapsed_seconds:.0f}s"],
    ], tablefmt='plain'))


@cli.command()
@click.pass_context
def status(ctx):
    """Show the most recent local archive and whether it is overdue."""
    config = _load_config(ctx)

    try:
        report = get_backup_status(config.backup_dir)
    except BackupError as e:
        click.secho(f"Error: {e}", fg='red', err=True)
        ctx.exit(1)

    if report['state'] == NO_BACKUPS:
        click.secho(f"No backups found in {config.backup_dir}", fg='yellow')
        return

    latest = report['latest']
    color = 'red' if report['state'] == OVERDUE else 'green'
    click.echo(f"Latest:  {latest['name']}")
    click.echo(f"Size:    {format_bytes(latest['size'])}")
    click.echo(f"Age:     {format_age(report['age'])}")
    click.echo(f"Local:   {report['count']} archive(s)")
    click.echo("Status:  " + click.style(report['state'], fg=color, bold=True))


@cli.command('list-cloud')
@click.pass_context
def list_cloud(ctx):
    """List archives in the remote location."""
    config = _load_config(ctx)
    storage = RcloneStorage(config.rclone_remote, config.rclone_exe)

    try:
        entries = storage.list_archives()
    except BackupError as e:
        click.secho(f"Error: {e}", fg='red', err=True)
        ctx.exit(1)

    if not entries:
        click.secho(f"No archives in {config.rclone_remote}", fg='yellow')
        return

    entries.sort(key=lambda e: e.name)
    rows = [
        [entry.name, format_bytes(entry.size),
         entry.modified.strftime('%Y-%m-%d %H:%M') if entry.modified else '-']
        for entry in entries
    ]
    click.echo(tabulate(rows, headers=['Name', 'Size', 'Modified'], tablefmt='simple'))
    click.echo(f"\n{len(entries)} archive(s), {format_bytes(sum(e.size for e in entries))} total")


@cli.command('restore-latest')
@click.pass_context
def restore_latest(ctx):
    """Restore the newest remote archive as a new distro."""
    config = _load_config(ctx)
    configure_logging(config.log_dir, ctx.obj['verbose'])

    # No auto-detection here: without a configured distro the name comes from the archive
    result = execute_restore(config, reporter=report_stage)

    if not result.success:
        click.secho(f"Restore failed at {result.failure_stage}", fg='red', bold=True)
        ctx.exit(1)

    click.secho(f"Restored {result.archive_name} as {result.restored_name}", fg='green', bold=True)
    click.echo(f"Install dir: {result.install_dir}")
    click.echo(f"Start it with: wsl -d {result.restored_name}")


@cli.command('discard-restored')
@click.argument('distro', required=False)
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def discard_restored(ctx, distro, yes):
    """Unregister a previously restored copy (DISTRO-restored) so it can be restored again."""
    config = _load_config(ctx)
    configure_logging(config.log_dir, ctx.obj['verbose'])

    distro = distro or config.distro_name
    if not distro:
        click.secho("Name the distro whose restored copy to discard (or set distroName)", fg='red', err=True)
        ctx.exit(1)

    # Only ever touches the restored copy, never the source distro
    name = distro if distro.endswith(RESTORED_SUFFIX) else restored_name(distro)
    source = WslSource(config.wsl_exe)

    if not source.distro_exists(name):
        click.secho(f"No distro named {name} is registered", fg='yellow')
        return

    if not yes:
        click.confirm(f"Unregister {name} and delete its virtual disk?", abort=True)

    try:
        source.unregister(name)
    except BackupError as e:
        click.secho(f"Error: {e}", fg='red', err=True)
        ctx.exit(1)

    click.secho(f"Unregistered {name}", fg='green', bold=True)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
