"""Headscale operator entrypoint."""

import asyncio
import json
import logging
import signal
import sys
from typing import Optional

import click
from headscale_k8s import ClusterConnection, ReconciliationDriver

from . import __version__
from .admission import review
from .config import Settings, get_settings
from .definitions import render_definitions
from .reconcilers import build_dispatch_table, build_reconcilers

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application orchestrator."""

    def __init__(self, settings: Settings):
        """
        Initialize application.

        Args:
            settings: Operator settings
        """
        self.settings = settings
        self.cluster: Optional[ClusterConnection] = None
        self.driver: Optional[ReconciliationDriver] = None
        self._shutdown = asyncio.Event()

    async def start(self) -> None:
        """Start the operator and run until a shutdown signal arrives."""
        logger.info("Starting Headscale operator...")
        logger.info(f"   Version: {__version__}")
        logger.info(f"   Namespace: {self.settings.watch_namespace or 'all'}")
        logger.info(f"   Config manager image: {self.settings.config_manager_image}")

        self.cluster = ClusterConnection(
            kubeconfig_path=self.settings.kubeconfig_path,
            context=self.settings.kube_context,
        )
        if self.cluster.is_healthy():
            logger.info("✓ Connected to Kubernetes API")
        else:
            logger.warning("Kubernetes API is not reachable yet, watches will keep retrying")

        registrations, table = build_dispatch_table(build_reconcilers(self.cluster, self.settings))
        self.driver = ReconciliationDriver(
            self.cluster,
            registrations,
            table,
            namespace=self.settings.watch_namespace or None,
            workers=self.settings.reconcile_workers,
            max_attempts=self.settings.reconcile_max_attempts,
            backoff_min=self.settings.reconcile_backoff_min_seconds,
            backoff_max=self.settings.reconcile_backoff_max_seconds,
            resync_interval=self.settings.resync_interval_seconds,
        )
        await self.driver.start()

        logger.info("✓ Headscale operator started successfully")
        await self._shutdown.wait()

    async def stop(self) -> None:
        """Stop the operator."""
        logger.info("Shutting down Headscale operator...")
        self._shutdown.set()

        if self.driver:
            await self.driver.stop()
        if self.cluster:
            self.cluster.close()

        logger.info("✓ Headscale operator stopped")

    def handle_signal(self, sig: int) -> None:
        """
        Handle shutdown signals.

        Args:
            sig: Signal number
        """
        logger.info(f"Received signal {sig}, initiating shutdown...")
        self._shutdown.set()


async def serve(settings: Settings) -> None:
    app = Application(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.handle_signal, sig)

    try:
        await app.start()
    finally:
        await app.stop()


@click.group()
@click.version_option(version=__version__)
def cli():
    """Kubernetes operator for Headscale."""


@cli.command()
def run():
    """Run the operator until terminated."""
    settings = get_settings()
    configure_logging(settings.log_level)
    asyncio.run(serve(settings))


@cli.command()
def crd():
    """Print the CustomResourceDefinitions as YAML."""
    click.echo(render_definitions(), nl=False)


@cli.command("admission-review")
def admission_review():
    """Answer an AdmissionReview read from stdin."""
    settings = get_settings()
    request = json.load(sys.stdin)
    response = review(request, settings.config_manager_image, settings.tailscale_image)
    click.echo(json.dumps(response))


def main():
    cli()


if __name__ == "__main__":
    main()
