"""Kubernetes watch and reconciliation functionality."""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, Optional, Union

from kubernetes import watch as k8s_watch
from kubernetes.client import V1ConfigMap
from kubernetes.client.exceptions import ApiException
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from .cluster import ClusterConnection
from .custom import CustomObjectClient
from .models import EventKind, ObjectKey, ResourceKind, WatchEvent

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], None]
DispatchTable = dict[tuple[str, EventKind], Handler]

ConfigMapWatchItem = Union[V1ConfigMap, Exception, None]


@dataclass(frozen=True)
class Registration:
    """A custom resource type managed by the driver, with its finalizer token."""

    resource: ResourceKind
    finalizer: str


class ResourceWatcher:
    """Watches Kubernetes resources for changes."""

    def __init__(self, cluster: ClusterConnection):
        """
        Initialize resource watcher.

        Args:
            cluster: Cluster connection
        """
        self.cluster = cluster
        self.core_v1 = cluster.core_v1
        self.custom_objects = cluster.custom_objects
        self._handlers: dict[str, list[Callable[[WatchEvent], None]]] = {}
        self._watches: list[k8s_watch.Watch] = []
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def register_handler(
        self,
        resource_type: str,
        handler: Callable[[WatchEvent], None],
    ) -> None:
        """
        Register a handler for watch events.

        Args:
            resource_type: Kind of the watched resource
            handler: Callback function that takes WatchEvent
        """
        if resource_type not in self._handlers:
            self._handlers[resource_type] = []
        self._handlers[resource_type].append(handler)

    def _emit_event(self, event: WatchEvent) -> None:
        """
        Emit a watch event to registered handlers.

        Args:
            event: Watch event to emit
        """
        handlers = self._handlers.get(event.resource_type, [])
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in watch event handler: {e}", exc_info=True)

    def _new_watch(self) -> k8s_watch.Watch:
        watch = k8s_watch.Watch()
        with self._lock:
            self._watches.append(watch)
        return watch

    def _release_watch(self, watch: k8s_watch.Watch) -> None:
        with self._lock:
            if watch in self._watches:
                self._watches.remove(watch)

    def watch_custom_objects(
        self,
        resource: ResourceKind,
        namespace: Optional[str] = None,
        timeout_seconds: int = 300,
    ) -> None:
        """
        Watch custom objects until stopped.

        Every stream is restarted from scratch after ``timeout_seconds``, so
        existing objects are re-announced periodically.

        Args:
            resource: Custom resource type
            namespace: Kubernetes namespace (None for all namespaces)
            timeout_seconds: Lifetime of a single watch stream
        """
        logger.info(f"Starting watch on {resource.plural} in namespace {namespace or '*'}")

        while not self._stopped.is_set():
            watch = self._new_watch()
            try:
                if namespace:
                    events = watch.stream(
                        self.custom_objects.list_namespaced_custom_object,
                        resource.group,
                        resource.version,
                        namespace,
                        resource.plural,
                        timeout_seconds=timeout_seconds,
                    )
                else:
                    events = watch.stream(
                        self.custom_objects.list_cluster_custom_object,
                        resource.group,
                        resource.version,
                        resource.plural,
                        timeout_seconds=timeout_seconds,
                    )

                for event in events:
                    obj = event["object"]
                    if event["type"] == "ERROR" or not isinstance(obj, dict):
                        logger.warning(f"Watch on {resource.plural} returned an error: {obj}")
                        break
                    metadata = obj.get("metadata", {})
                    self._emit_event(
                        WatchEvent(
                            event_type=event["type"],
                            resource_type=resource.kind,
                            name=metadata.get("name", ""),
                            namespace=metadata.get("namespace") or "default",
                            object=obj,
                            timestamp=datetime.utcnow(),
                        )
                    )
            except ApiException as e:
                if e.status == 410:  # Resource version too old
                    logger.warning("Watch expired, restarting...")
                else:
                    logger.error(f"Error watching {resource.plural}: {e}", exc_info=True)
                    self._stopped.wait(5)
            except Exception as e:
                logger.error(f"Error watching {resource.plural}: {e}", exc_info=True)
                self._stopped.wait(5)
            finally:
                self._release_watch(watch)

    def watch_config_map(
        self,
        name: str,
        namespace: str,
        timeout_seconds: int = 30,
        retry_seconds: float = 5,
    ) -> Iterator[ConfigMapWatchItem]:
        """
        Watch a single named ConfigMap.

        Yields the ConfigMap on every ADDED or MODIFIED event, the raised
        exception when the watch fails, and None when a stream ends without
        delivering anything. A failed watch is reopened after ``retry_seconds``.

        Args:
            name: ConfigMap name
            namespace: Kubernetes namespace
            timeout_seconds: Lifetime of a single watch stream
            retry_seconds: Delay before reopening a failed watch
        """
        while not self._stopped.is_set():
            watch = self._new_watch()
            delivered = False
            try:
                for event in watch.stream(
                    self.core_v1.list_namespaced_config_map,
                    namespace=namespace,
                    field_selector=f"metadata.name={name}",
                    timeout_seconds=timeout_seconds,
                ):
                    if event["type"] in ("ADDED", "MODIFIED"):
                        delivered = True
                        yield event["object"]
            except Exception as e:
                yield e
                self._stopped.wait(retry_seconds)
                continue
            finally:
                self._release_watch(watch)

            if not delivered:
                yield None

    def stop(self) -> None:
        """Stop all active watches."""
        self._stopped.set()
        with self._lock:
            for watch in self._watches:
                watch.stop()


class ReconciliationDriver:
    """
    Generic reconciliation driver.

    Implements the finalizer-gated operator pattern:
    1. Watch registered custom resource types
    2. Serialize work per object and re-read the latest object
    3. Dispatch Apply/Delete to the handler table, retrying failures
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        registrations: list[Registration],
        table: DispatchTable,
        namespace: Optional[str] = None,
        workers: int = 4,
        max_attempts: int = 5,
        backoff_min: float = 1,
        backoff_max: float = 60,
        resync_interval: int = 300,
    ):
        """
        Initialize reconciliation driver.

        Args:
            cluster: Cluster connection
            registrations: Managed resource types and their finalizers
            table: Handlers keyed by (resource kind, event kind)
            namespace: Namespace to watch (None for all namespaces)
            workers: Number of concurrent reconcile workers
            max_attempts: Attempts per reconcile before giving up until the next event
            backoff_min: Minimum retry delay (seconds)
            backoff_max: Maximum retry delay (seconds)
            resync_interval: Lifetime of a watch stream (seconds)
        """
        self.cluster = cluster
        self.custom = CustomObjectClient(cluster)
        self.registrations = {r.resource.kind: r for r in registrations}
        self.table = table
        self.namespace = namespace
        self.workers = workers
        self.max_attempts = max_attempts
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self.resync_interval = resync_interval
        self.watcher = ResourceWatcher(cluster)

        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._pending: set[ObjectKey] = set()
        self._locks: dict[ObjectKey, asyncio.Lock] = {}
        self._lock_users: dict[ObjectKey, int] = {}
        self._tasks: list[asyncio.Task] = []

    def handle(self, registration: Registration, obj: dict[str, Any]) -> None:
        """
        Run the finalizer protocol and the matching handler for one object.

        Args:
            registration: Resource type of the object
            obj: Latest version of the object
        """
        kind = registration.resource.kind
        metadata = obj.get("metadata", {})
        key = ObjectKey(kind, metadata.get("namespace") or "default", metadata.get("name", ""))
        finalizers = list(metadata.get("finalizers") or [])
        token = registration.finalizer

        if metadata.get("deletionTimestamp"):
            if token not in finalizers:
                logger.debug(f"{key} is being deleted and already cleaned up")
                return

            handler = self.table.get((kind, EventKind.DELETE))
            if handler:
                logger.info(f"Running cleanup for {key}")
                handler(obj)

            remaining = [f for f in finalizers if f != token]
            self.custom.set_finalizers(registration.resource, obj, remaining)
            logger.info(f"✓ Cleanup finished for {key}, finalizer removed")
            return

        if token not in finalizers:
            obj = self.custom.set_finalizers(registration.resource, obj, finalizers + [token])
            logger.debug(f"Added finalizer {token} to {key}")

        handler = self.table.get((kind, EventKind.APPLY))
        if handler:
            handler(obj)

    def reconcile(self, key: ObjectKey) -> None:
        """
        Reconcile an object by key, reading its latest version first.

        Args:
            key: Object identity
        """
        registration = self.registrations[key.kind]
        obj = self.custom.get(registration.resource, key.name, key.namespace)
        if obj is None:
            logger.debug(f"{key} no longer exists")
            return
        self.handle(registration, obj)

    def _on_watch_event(self, event: WatchEvent) -> None:
        """
        Queue a watch event for reconciliation (called from watch threads).

        Args:
            event: Watch event
        """
        if not self._running or event.event_type == "DELETED":
            return
        key = ObjectKey(event.resource_type, event.namespace, event.name)
        self._loop.call_soon_threadsafe(self._enqueue, key)

    def _enqueue(self, key: ObjectKey) -> None:
        if key in self._pending:
            return
        self._pending.add(key)
        self._queue.put_nowait(key)

    async def _reconcile_with_retry(self, key: ObjectKey) -> None:
        """
        Reconcile with exponential backoff.

        Args:
            key: Object identity
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=1, min=self.backoff_min, max=self.backoff_max),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(
                            f"Retrying {key} (attempt {attempt.retry_state.attempt_number})"
                        )
                    await asyncio.to_thread(self.reconcile, key)
        except Exception as e:
            logger.error(f"Error reconciling {key}: {e}", exc_info=True)

    async def _worker(self) -> None:
        """Consume queued keys one at a time."""
        while self._running:
            key = await self._queue.get()
            self._pending.discard(key)
            lock = self._acquire_lock(key)
            try:
                async with lock:
                    await self._reconcile_with_retry(key)
            finally:
                self._release_lock(key)
                self._queue.task_done()

    def _acquire_lock(self, key: ObjectKey) -> asyncio.Lock:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        return lock

    def _release_lock(self, key: ObjectKey) -> None:
        # Drop the lock once no worker holds or awaits it
        self._lock_users[key] -= 1
        if not self._lock_users[key]:
            del self._lock_users[key]
            del self._locks[key]

    async def start(self) -> None:
        """Start watches and workers."""
        if self._running:
            logger.warning("Reconciliation driver already running")
            return

        self._running = True
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()

        for kind, registration in self.registrations.items():
            self.watcher.register_handler(kind, self._on_watch_event)
            watch_task = asyncio.create_task(
                asyncio.to_thread(
                    self.watcher.watch_custom_objects,
                    registration.resource,
                    namespace=self.namespace,
                    timeout_seconds=self.resync_interval,
                )
            )
            self._tasks.append(watch_task)

        for _ in range(self.workers):
            self._tasks.append(asyncio.create_task(self._worker()))

        logger.info(
            f"✓ Reconciliation driver started for {', '.join(self.registrations)} "
            f"with {self.workers} workers"
        )

    async def stop(self) -> None:
        """Stop watches and workers."""
        logger.info("Stopping reconciliation driver")
        self._running = False
        self.watcher.stop()

        for task in self._tasks:
            task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
