"""Command-line interface for IoTDB restore."""

import logging
import signal
import sys
from typing import Optional

import click

from .config.config_manager import ConfigManager
from .core.artifacts import build_backup_url
from .core.errors import RestoreError
from .core.kube import PodInspector, load_kube_client
from .core.models import RestoreJob
from .core.restorer import RestoreOrchestrator, build_detector, build_downloader
from .reporters.webhook_reporter import WebhookReporter
from .utils.formatters import format_date, format_duration

LOGGER_NAME = "iotdb_restore"


def setup_logging(level: str, log_file: Optional[str] = None):
    """Set up logging configuration."""
    # Convert string level to logging constant
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {level}')

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            click.echo(f"Warning: Could not set up file logging: {e}", err=True)


def _load_config(ctx, overrides=None) -> ConfigManager:
    config_manager = ConfigManager(ctx.obj.get('config_path'))
    config_manager.load_config()
    if overrides:
        config_manager.apply_overrides(overrides)
    return config_manager


def _build_reporter(config_manager: ConfigManager, logger: logging.Logger) -> Optional[WebhookReporter]:
    notification_config = config_manager.get_notification_config()
    wechat_config = notification_config.get('wechat') or {}
    if not wechat_config.get('webhook_url'):
        return None

    return WebhookReporter(
        webhook_url=wechat_config['webhook_url'],
        environment=notification_config.get('environment', ''),
        enabled=bool(notification_config.get('enabled') and wechat_config.get('enabled', True)),
        logger=logger,
    )


@click.group()
@click.option('--config', '-c', 'config_path',
              help='Path to configuration file')
@click.option('--log-level', default='INFO',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Logging level')
@click.option('--log-file',
              help='Log file path')
@click.pass_context
def cli(ctx, config_path: Optional[str], log_level: str, log_file: Optional[str]):
    """IoTDB Restore - restore IoTDB backups into a Kubernetes pod."""

    ctx.ensure_object(dict)

    # Set up logging first
    setup_logging(log_level, log_file)

    ctx.obj['config_path'] = config_path
    ctx.obj['logger'] = logging.getLogger(LOGGER_NAME)


@cli.command()
@click.option('--timestamp', '-t',
              help='Backup timestamp (YYYYMMDDHHMMSS). Detected automatically when omitted')
@click.option('--dry-run', is_flag=True, help='Show what would happen without changing anything')
@click.option('--skip-delete', is_flag=True, help='Keep existing databases before importing')
@click.option('--namespace', '-n', help='Override the Kubernetes namespace')
@click.option('--pod', '-p', 'pod_name', help='Override the target pod name')
@click.option('--concurrency', type=click.IntRange(min=1), help='Override import concurrency')
@click.option('--batch-size', type=click.IntRange(min=1), help='Override import batch size')
@click.option('--notify/--no-notify', default=True, help='Send the result to the webhook')
@click.pass_context
def restore(ctx, timestamp: Optional[str], dry_run: bool, skip_delete: bool,
            namespace: Optional[str], pod_name: Optional[str], concurrency: Optional[int],
            batch_size: Optional[int], notify: bool):
    """Restore a backup into the target pod."""
    logger = ctx.obj['logger']
    try:
        config_manager = _load_config(ctx, {
            'kubernetes.namespace': namespace,
            'kubernetes.pod_name': pod_name,
            'import.concurrency': concurrency,
            'import.batch_size': batch_size,
        })
        settings = config_manager.get_restore_settings()

        core_api = load_kube_client(settings.kubeconfig, settings.context, logger=logger)
        inspector = PodInspector(core_api, settings.namespace, logger=logger)
        if not inspector.is_running(settings.pod_name):
            logger.warning(f"Pod {settings.namespace}/{settings.pod_name} is not in Running phase")

        orchestrator = RestoreOrchestrator.from_settings(settings, core_api=core_api, logger=logger)

        def _handle_signal(signum, frame):
            orchestrator.cancel()

        previous_handlers = {sig: signal.signal(sig, _handle_signal)
                             for sig in (signal.SIGINT, signal.SIGTERM)}

        click.echo(f"Restoring into {settings.namespace}/{settings.pod_name}...")
        try:
            result = orchestrator.restore(RestoreJob(
                timestamp=timestamp,
                dry_run=dry_run,
                skip_delete=skip_delete,
            ))
        finally:
            for sig, handler in previous_handlers.items():
                signal.signal(sig, handler)

    except (RestoreError, ValueError, FileNotFoundError) as e:
        click.echo(f"Error during restore: {e}", err=True)
        sys.exit(1)

    click.echo("\n📊 Summary:")
    click.echo(f"  Backup file: {result.backup_file or 'N/A'}")
    click.echo(f"  Started: {format_date(result.start_time)}")
    click.echo(f"  Duration: {format_duration(result.duration)}")
    click.echo(f"  Files: {result.total_files} total, {result.success_count} imported, "
               f"{result.failed_count} failed")

    if notify:
        reporter = _build_reporter(config_manager, logger)
        if reporter and reporter.send_report(result):
            click.echo("  📨 Notification sent")
        elif reporter is None:
            click.echo("  ⚠️  Webhook not configured - notification not sent")

    if result.error is not None:
        click.echo(f"❌ Restore failed during {result.failed_phase.value}: {result.error}", err=True)
        sys.exit(1)

    if result.dry_run:
        click.echo("✅ Dry run completed")
    else:
        click.echo("✅ Restore completed")


@cli.command()
@click.pass_context
def detect(ctx):
    """Detect the timestamp of the current backup."""
    logger = ctx.obj['logger']
    try:
        config_manager = _load_config(ctx)
        settings = config_manager.get_restore_settings()

        detector = build_detector(settings, build_downloader(settings, logger=logger), logger=logger)
        if detector is None:
            click.echo("❌ Timestamp auto-detection is disabled in the configuration", err=True)
            sys.exit(1)

        timestamp = detector.detect()
        click.echo(f"✅ Found backup timestamp: {timestamp}")
        click.echo(f"   URL: {build_backup_url(settings.base_url, settings.pod_name, timestamp)}")

    except (RestoreError, ValueError, FileNotFoundError) as e:
        click.echo(f"Error detecting timestamp: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def check_pod(ctx):
    """Show information about the target pod."""
    logger = ctx.obj['logger']
    try:
        config_manager = _load_config(ctx)
        settings = config_manager.get_restore_settings()

        core_api = load_kube_client(settings.kubeconfig, settings.context, logger=logger)
        info = PodInspector(core_api, settings.namespace, logger=logger).describe(settings.pod_name)

        click.echo(f"\n📦 Pod {info['namespace']}/{info['name']}")
        click.echo(f"   Phase: {info['phase']}")
        click.echo(f"   Node: {info['node']}")
        click.echo(f"   Created: {format_date(info['created'])}")
        for container in info['containers']:
            click.echo(f"   Container: {container['name']} ({container['image']})")

        if info['phase'] != 'Running':
            sys.exit(1)

    except (RestoreError, ValueError, FileNotFoundError) as e:
        click.echo(f"Error checking pod: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def test_notify(ctx):
    """Send a test message to verify webhook configuration."""
    logger = ctx.obj['logger']
    try:
        config_manager = _load_config(ctx)
    except (ValueError, FileNotFoundError) as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    reporter = _build_reporter(config_manager, logger)
    if reporter is None:
        click.echo("❌ Webhook not configured - cannot send test message", err=True)
        sys.exit(1)

    errors = reporter.validate_configuration()
    if errors:
        click.echo("❌ Webhook configuration errors:")
        for error in errors:
            click.echo(f"   • {error}")
        sys.exit(1)

    click.echo("Sending test message...")
    if reporter.send_test_message():
        click.echo("✅ Test message sent successfully!")
    else:
        click.echo("❌ Failed to send test message", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def validate_config(ctx):
    """Validate configuration file."""
    try:
        config_manager = _load_config(ctx)
        settings = config_manager.get_restore_settings()
    except (ValueError, FileNotFoundError) as e:
        click.echo(f"❌ Configuration validation failed: {e}", err=True)
        sys.exit(1)

    click.echo("✅ Configuration loaded successfully")

    click.echo("\n📊 Configuration Summary:")
    click.echo(f"   Target pod: {settings.namespace}/{settings.pod_name}")
    click.echo(f"   Backup source: {settings.base_url} ({settings.download_mode} download)")
    click.echo(f"   IoTDB CLI: {settings.cli_path} -h {settings.host}")
    click.echo(f"   Data dir: {settings.data_dir}")
    click.echo(f"   Import: batch size {settings.batch_size}, concurrency {settings.concurrency}")
    if settings.auto_detect_timestamp:
        click.echo(f"   Timestamp detection: {settings.timestamp_pattern or 'hourly window'}")
    else:
        click.echo("   Timestamp detection: disabled")

    reporter = _build_reporter(config_manager, ctx.obj['logger'])
    if reporter is None:
        click.echo("   📨 Notification: Not configured")
        return

    click.echo(f"   📨 Notification: {'enabled' if reporter.enabled else 'disabled'}")
    errors = reporter.validate_configuration()
    if errors:
        click.echo("\n⚠️  Webhook configuration issues:")
        for error in errors:
            click.echo(f"     • {error}")
    else:
        click.echo("\n✅ Webhook configuration valid")


def main():
    """Main CLI entry point."""
    cli()


if __name__ == '__main__':
    main()
