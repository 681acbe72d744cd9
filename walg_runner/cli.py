"""
Command line interface.

    walg-runner backup|clean|combo     run one mode (exit 0/1/2/3)
    walg-runner plan                   show what the age pass would delete
    walg-runner status                 show the last run status files
    walg-runner history [--limit N]    show recent runs
    walg-runner schedule               run on a cron schedule
"""

import click
from flask import Flask

from walg_runner import create_app
from walg_runner.config import ConfigError, RunnerSettings
from walg_runner.runner import MODES, ExitCode, run_mode


def _settings_or_exit(ctx, app) -> RunnerSettings:
    try:
        return RunnerSettings.from_config(app.config)
    except ConfigError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        ctx.exit(int(ExitCode.ENV_INVALID))


@click.group(invoke_without_command=True)
@click.option('--config', 'config_name', default=None,
              type=click.Choice(['development', 'production']),
              help='Configuration profile (default: WALG_RUNNER_ENV or production).')
@click.pass_context
def cli(ctx, config_name):
    """Run and maintain wal-g base backups."""
    if ctx.invoked_subcommand is None:
        raise click.UsageError(f"Missing mode. Use: {', '.join(MODES)}", ctx=ctx)
    if not isinstance(ctx.obj, Flask):
        try:
            ctx.obj = create_app(config_name)
        except ConfigError as e:
            click.echo(f"Invalid configuration: {e}", err=True)
            ctx.exit(int(ExitCode.ENV_INVALID))


@cli.command()
@click.pass_context
def backup(ctx):
    """Take a base backup."""
    ctx.exit(int(run_mode(ctx.obj, 'backup')))


@cli.command()
@click.pass_context
def clean(ctx):
    """Apply the retention policies."""
    ctx.exit(int(run_mode(ctx.obj, 'clean')))


@cli.command()
@click.pass_context
def combo(ctx):
    """Take a base backup, then clean up if it succeeded."""
    ctx.exit(int(run_mode(ctx.obj, 'combo')))


@cli.command()
@click.pass_context
def plan(ctx):
    """Show which backups the retention policy would delete (dry run)."""
    from walg_runner.backup import WalgClient, WalgError, RetentionPolicy, parse_backup_list

    app = ctx.obj
    settings = _settings_or_exit(ctx, app)

    try:
        listing = WalgClient(settings).backup_list()
    except WalgError as e:
        click.echo(str(e), err=True)
        ctx.exit(int(ExitCode.ENV_INVALID))

    if not listing.ok:
        click.echo(f"backup-list failed (exit code {listing.returncode})", err=True)
        click.echo(listing.output, err=True)
        ctx.exit(int(ExitCode.FAILURE))

    backups = parse_backup_list(listing.output)
    policy = RetentionPolicy(settings.retention_days, settings.retention_full)
    decision = policy.decide(backups)
    protected = {backup.name for backup in policy.protected(backups)}
    doomed = set(decision.deleted_names)

    if settings.retention_days is None:
        click.echo("Time-based retention disabled (WALG_RETENTION_DAYS not set)")
    else:
        click.echo(f"Cutoff: {decision.cutoff.isoformat()} ({settings.retention_days} days)")
    click.echo(f"Count-based retention: {settings.retention_full} full backups")
    click.echo('')

    if not backups:
        click.echo("No backups found")
        return

    for backup in backups:
        created = backup.created_at.isoformat() if backup.created_at else 'unknown'
        if backup.name in doomed:
            action = 'DELETE'
        elif backup.name in protected:
            action = 'keep (count)'
        else:
            action = 'keep'
        click.echo(f"{backup.name:<40} {backup.kind:<6} {created:<26} {action}")

    click.echo('')
    if decision.has_deletions:
        click.echo(f"Would run: delete before {decision.boundary_backup.name} --confirm "
                   f"({len(decision.to_delete)} backups)")
    else:
        click.echo("Nothing to delete by age")


@cli.command()
@click.pass_context
def status(ctx):
    """Show the status files of the last backup and cleanup."""
    from walg_runner.backup.runlog import LATEST_LINK, read_status_file

    settings = _settings_or_exit(ctx, ctx.obj)

    for title, path in (('Last backup', settings.backup_status_file),
                        ('Last cleanup', settings.cleanup_status_file)):
        click.echo(f"{title} ({path}):")
        content = read_status_file(path)
        click.echo(content.rstrip() if content else '  never run')
        click.echo('')

    latest = settings.log_dir / LATEST_LINK
    if latest.is_symlink():
        click.echo(f"Latest log: {latest.resolve()}")
    else:
        click.echo("Latest log: none")


@cli.command()
@click.option('--limit', default=10, show_default=True, type=click.IntRange(min=1),
              help='Number of runs to show.')
@click.pass_context
def history(ctx, limit):
    """Show recent backup and cleanup runs."""
    from walg_runner.models import RunHistory

    app = ctx.obj
    with app.app_context():
        records = (RunHistory.query
                   .order_by(RunHistory.started_at.desc(), RunHistory.id.desc())
                   .limit(limit)
                   .all())

        if not records:
            click.echo("No runs recorded")
            return

        for record in records:
            started = record.started_at.strftime('%Y-%m-%d %H:%M:%S')
            duration = f"{record.duration_seconds}s" if record.duration_seconds is not None else '-'
            details = []
            if record.backup_type:
                details.append(f"type={record.backup_type}")
            if record.deleted_count is not None:
                details.append(f"deleted={record.deleted_count}")
            if record.error_message:
                details.append(f"error={record.error_message}")
            click.echo(f"{started}  {record.operation:<8} {record.status:<8} {duration:>6}  {' '.join(details)}")


@cli.command()
@click.option('--cron', 'cron_expression', default=None,
              help='Crontab expression (default: BACKUP_CRON_SCHEDULE).')
@click.option('--mode', default=None, type=click.Choice(MODES),
              help='Mode to run (default: SCHEDULE_MODE or combo).')
@click.pass_context
def schedule(ctx, cron_expression, mode):
    """Run a mode on a cron schedule until interrupted."""
    from walg_runner.scheduler import build_scheduler

    app = ctx.obj
    cron_expression = cron_expression or app.config['BACKUP_CRON_SCHEDULE']
    mode = mode or app.config['SCHEDULE_MODE']
    if mode not in MODES:
        raise click.BadParameter(f"unknown mode '{mode}'", param_hint='SCHEDULE_MODE')

    timezone = app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    try:
        scheduler = build_scheduler(cron_expression, mode, timezone)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--cron')

    app.logger.info(f"Scheduler started: {mode} at '{cron_expression}' ({timezone})")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        app.logger.info("Scheduler stopped")


def main():
    cli(prog_name='walg-runner')
