"""Config manager entrypoint."""

import asyncio
import logging
import signal

import click
from headscale_k8s import ClusterConnection, ResourceManager, ResourceWatcher

from . import __version__
from .config import Settings, get_settings
from .daemon import ConfigSyncDaemon
from .document import PolicyFile
from .process import ProcessLocator

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_daemon(settings: Settings) -> ConfigSyncDaemon:
    return ConfigSyncDaemon(
        PolicyFile(settings.mount_path),
        ProcessLocator(settings.proc_root),
        settings.process_prefix,
        idle_interval=settings.idle_interval_seconds,
    )


def init_policy(settings: Settings) -> None:
    """Fetch the policy ConfigMap once and write the policy file."""
    with ClusterConnection() as cluster:
        config_map = ResourceManager(cluster).get("ConfigMap", settings.configmap_name, settings.namespace)
    build_daemon(settings).init_once(config_map)


async def sync_policy(settings: Settings) -> None:
    """Watch the policy ConfigMap and keep the policy file in sync."""
    logger.info("Starting headscale ACL manager...")
    logger.info(f"   Version: {__version__}")
    logger.info(f"   ConfigMap: {settings.namespace}/{settings.configmap_name}")
    logger.info(f"   Mount path: {settings.mount_path}")

    cluster = ClusterConnection()
    watcher = ResourceWatcher(cluster)
    daemon = build_daemon(settings)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown...")
        daemon.stop()
        watcher.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    events = watcher.watch_config_map(
        settings.configmap_name,
        settings.namespace,
        timeout_seconds=settings.watch_timeout_seconds,
        retry_seconds=settings.watch_retry_seconds,
    )
    try:
        await daemon.run(events)
    finally:
        watcher.stop()
        cluster.close()


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx):
    """Sync the Headscale ACL policy from a ConfigMap (runs the sync loop by default)."""
    settings = get_settings()
    configure_logging(settings.log_level)
    ctx.obj = settings
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.pass_obj
def init(settings: Settings):
    """Write the policy file once and exit."""
    init_policy(settings)


@cli.command()
@click.pass_obj
def run(settings: Settings):
    """Keep the policy file in sync and reload Headscale on change."""
    asyncio.run(sync_policy(settings))


def main():
    cli()


if __name__ == "__main__":
    main()
