# backupwiz/cli/sync.py
"""
Command line entry points.

    backupwiz sync [--tenant SLUG ...] [--skip TYPE ...] [--full-reconcile]
    backupwiz health [--no-alerts]
    backupwiz link-media --tenant SLUG
    backupwiz scheduler
    backupwiz encrypt-secret
"""

import asyncio
import json
import sys

import click
from cryptography.fernet import Fernet

from backupwiz.core.config import get_settings
from backupwiz.core.enums import HealthLevel, SyncType
from backupwiz.core.exceptions import BackupWizError
from backupwiz.core.logging_config import configure_logging
from backupwiz.core.security import encrypt_secret
from backupwiz.database import async_session, engine
from backupwiz.services.health_monitor import HealthMonitor
from backupwiz.services.sync_service import SyncService
from backupwiz.services.tenant_service import TenantService
from backupwiz.threecx.connection import open_source

SYNC_TYPE_CHOICES = [t.value for t in SyncType]


@click.group()
def cli():
    """3CX BackupWiz sync engine."""
    configure_logging()


@cli.command()
@click.option("--tenant", "tenants", multiple=True, help="Tenant slug to sync (repeatable). Default: all active tenants")
@click.option("--skip", multiple=True, type=click.Choice(SYNC_TYPE_CHOICES), help="Sync type to skip (repeatable)")
@click.option("--full-reconcile", is_flag=True, help="Force the full live/history divergence check")
@click.option("--max-concurrent", type=click.IntRange(1, 10), default=None, help="Tenants to sync in parallel")
@click.option("--json", "as_json", is_flag=True, help="Print the run report as JSON")
def sync(tenants, skip, full_reconcile, max_concurrent, as_json):
    """Run one sync cycle"""

    async def _sync():
        try:
            service = SyncService(async_session, get_settings())
            return await service.run_all(
                list(tenants) or None,
                skip=skip,
                full_reconcile=full_reconcile,
                max_concurrent=max_concurrent,
            )
        finally:
            await engine.dispose()

    report = asyncio.run(_sync())
    if as_json:
        click.echo(json.dumps(report.as_dict(), indent=2, default=str))
    else:
        for result in report.results:
            click.echo(f"{result.tenant_slug}: {result.status.value} "
                       f"({result.items_synced} synced, {result.items_failed} failed)")
            for entity in result.entities:
                line = f"  {entity.sync_type:<14} {entity.status:<8} synced={entity.items_synced} failed={entity.items_failed}"
                if entity.error:
                    line += f" error={entity.error}"
                click.echo(line)
            if result.error:
                click.echo(f"  aborted: {result.error}")
        for slug, message in report.failures.items():
            click.echo(f"{slug}: crashed ({message})")
        click.echo(f"Done: {report.success_count} succeeded, {report.failure_count} failed")

    if report.failure_count:
        sys.exit(1)


@cli.command()
@click.option("--tenant", "tenants", multiple=True, help="Tenant slug to check (repeatable)")
@click.option("--no-alerts", is_flag=True, help="Evaluate only; do not send alert emails")
def health(tenants, no_alerts):
    """Evaluate sync health and alert on critical sync types"""

    async def _health():
        try:
            monitor = HealthMonitor(async_session, settings=get_settings())
            return await monitor.check_all(list(tenants) or None, send_alerts=not no_alerts)
        finally:
            await engine.dispose()

    report = asyncio.run(_health())
    for tenant in report.tenants:
        click.echo(f"{tenant.tenant_name}: {tenant.level.value}")
        for item in tenant.sync_types:
            if item.level is not HealthLevel.HEALTHY:
                click.echo(f"  {item.sync_type:<14} {item.level.value:<8} {item.message}")
    click.echo(f"Overall: {report.level.value} ({report.alerts_sent} alerts sent)")

    if report.level is HealthLevel.CRITICAL:
        sys.exit(2)


@cli.command("link-media")
@click.option("--tenant", "slug", required=True, help="Tenant slug")
def link_media(slug):
    """Link already downloaded chat media to synced messages"""

    async def _link():
        try:
            settings = get_settings()
            tenant = await TenantService(async_session).get_by_slug(slug)
            if tenant is None:
                raise click.ClickException(f"No tenant with slug {slug}")
            service = SyncService(async_session, settings)
            async with open_source(tenant, settings) as source:
                return await service.link_media(tenant, source)
        finally:
            await engine.dispose()

    try:
        plan = asyncio.run(_link())
    except BackupWizError as e:
        raise click.ClickException(str(e)) from e
    for name, count in plan.summary().items():
        click.echo(f"{name}: {count}")


@cli.command()
def scheduler():
    """Run the sync and health check jobs on their cron schedules"""
    from backupwiz.scheduler import start_scheduler, stop_scheduler

    settings = get_settings()
    if not settings.SYNC_SCHEDULE_ENABLED:
        raise click.ClickException("SYNC_SCHEDULE_ENABLED is false; nothing to schedule")

    async def _run():
        await start_scheduler()
        try:
            await asyncio.Event().wait()
        finally:
            await stop_scheduler()
            await engine.dispose()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("Scheduler stopped")


@cli.command("encrypt-secret")
@click.option("--secret", prompt=True, hide_input=True, confirmation_prompt=True, help="Plaintext SSH or database password")
def encrypt_secret_command(secret):
    """Encrypt a tenant password with ENCRYPTION_KEY"""
    try:
        click.echo(encrypt_secret(secret))
    except BackupWizError as e:
        raise click.ClickException(str(e)) from e


@cli.command("generate-key")
def generate_key():
    """Print a new ENCRYPTION_KEY"""
    click.echo(Fernet.generate_key().decode())


if __name__ == "__main__":
    cli()
