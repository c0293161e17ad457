"""Keeps the Headscale ACL file in sync with its ConfigMap."""

import asyncio
import logging
import os
from typing import Any, Iterator, Optional

from headscale_k8s.watch import ConfigMapWatchItem
from kubernetes.client import V1ConfigMap

from .document import PolicyFile, extract_policy
from .exceptions import PolicyDocumentError
from .process import Process, ProcessLocator, SignalSender

logger = logging.getLogger(__name__)

_END = object()


class ConfigSyncDaemon:
    """
    Config sync daemon.

    Writes the policy document of every ConfigMap version it is handed to
    the policy file, and sends SIGHUP to the managed process whenever the
    document changed structurally.
    """

    def __init__(
        self,
        policy_file: PolicyFile,
        locator: ProcessLocator,
        prefix: str,
        idle_interval: float = 1.0,
        send_signal: SignalSender = os.kill,
    ):
        """
        Initialize daemon.

        Args:
            policy_file: File the managed process reads its policy from
            locator: Process table scanner
            prefix: Command line prefix of the managed process
            idle_interval: Sleep between polls when the watch delivers nothing (seconds)
            send_signal: Signal delivery function
        """
        self.policy_file = policy_file
        self.locator = locator
        self.prefix = prefix
        self.idle_interval = idle_interval
        self.send_signal = send_signal
        self.process: Optional[Process] = None
        self._running = False

    def init_once(self, config_map: Optional[V1ConfigMap]) -> Any:
        """
        Write the policy file once, without reloading anything.

        A missing ConfigMap or malformed document results in an empty
        policy, so the managed process can always start.

        Args:
            config_map: Source ConfigMap, or None if it does not exist

        Returns:
            The document written
        """
        document: Any = {}
        if config_map is None:
            logger.warning("Policy ConfigMap not found, writing an empty policy")
        else:
            try:
                document = extract_policy(config_map)
            except PolicyDocumentError as e:
                logger.error(f"Invalid policy document, writing an empty policy: {e}")

        self.policy_file.write(document)
        logger.info(f"✓ Initialized {self.policy_file.path}")
        return document

    def locate(self) -> Process:
        """
        Locate the managed process.

        Raises:
            ProcessNotFoundError: If no process matches the prefix
        """
        self.process = self.locator.find(self.prefix)
        logger.info(f"Managing process {self.process.pid}")
        return self.process

    def reload(self) -> None:
        """
        Send SIGHUP to the managed process.

        If the process is gone, it is located again once and signalled anew.

        Raises:
            ProcessNotFoundError: If the process cannot be found again
            ReloadError: If the signal cannot be delivered
        """
        if self.process is None:
            self.locate()
        try:
            self.process.sighup(self.send_signal)
        except ProcessLookupError:
            logger.warning(f"Process {self.process.pid} is gone, locating it again")
            self.locate().sighup(self.send_signal)
        logger.info(f"Sent SIGHUP to process {self.process.pid}")

    def handle(self, config_map: V1ConfigMap) -> bool:
        """
        Sync one ConfigMap version.

        Args:
            config_map: Delivered ConfigMap

        Returns:
            True if the file was rewritten and the process reloaded

        Raises:
            OSError: If the file cannot be written
            ConfigManagerError: If the process cannot be reloaded
        """
        try:
            document = extract_policy(config_map)
        except PolicyDocumentError as e:
            logger.error(f"Ignoring invalid policy document: {e}")
            return False

        if not self.policy_file.changed(document):
            logger.debug("Policy unchanged, skipping reload")
            return False

        self.policy_file.write(document)
        self.reload()
        return True

    async def run(self, events: Iterator[ConfigMapWatchItem]) -> None:
        """
        Sync until stopped or the event stream ends.

        Args:
            events: ConfigMap watch items (ConfigMap, exception or idle None)

        Raises:
            ProcessNotFoundError: If the managed process is not running at startup
        """
        self.locate()
        self._running = True
        logger.info("✓ Config sync started")

        while self._running:
            item = await asyncio.to_thread(next, events, _END)
            if item is _END:
                break

            if isinstance(item, Exception):
                logger.error(f"Error watching policy ConfigMap: {item}")
                continue

            if item is None:
                await asyncio.sleep(self.idle_interval)
                continue

            try:
                self.handle(item)
            except Exception as e:
                logger.error(f"Failed to sync policy: {e}", exc_info=True)

        logger.info("Config sync stopped")

    def stop(self) -> None:
        self._running = False
