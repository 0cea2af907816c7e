"""List+watch informers backed by a thread-safe local cache."""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import watch
from kubernetes.client.rest import ApiException

from .config import WATCH_TIMEOUT_SECONDS, RESYNC_PERIOD_SECONDS, WATCH_RETRY_MAX_SECONDS
from .meta import DeletedFinalStateUnknown, get_meta, meta_namespace_key

logger = logging.getLogger(__name__)


class ObjectCache:
    """
    Thread-safe cache of objects keyed by ``namespace/name``.

    Objects handed out are the cached instances. Callers must copy them
    before changing anything.
    """

    def __init__(self):
        """Initialize the cache."""
        self._objects: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def add_or_update(self, obj: Any) -> Optional[Any]:
        """
        Store an object.

        Returns:
            The previously cached object under the same key, or None
        """
        key = meta_namespace_key(obj)
        with self._lock:
            old = self._objects.get(key)
            self._objects[key] = obj
            return old

    def remove(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._objects.pop(key, None)

    def get(self, namespace: str, name: str) -> Optional[Any]:
        """
        Get an object from the cache.

        Args:
            namespace: Object namespace ("" for cluster-scoped objects)
            name: Object name

        Returns:
            The cached object or None
        """
        key = f"{namespace}/{name}" if namespace else name
        with self._lock:
            return self._objects.get(key)

    def get_by_key(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._objects.get(key)

    def get_by_uid(self, uid: str) -> Optional[Any]:
        with self._lock:
            for obj in self._objects.values():
                if get_meta(obj, "uid") == uid:
                    return obj
        return None

    def get_all(self) -> List[Any]:
        with self._lock:
            return list(self._objects.values())

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._objects.keys())

    def replace(self, objects: List[Any]) -> Tuple[List[Tuple[Optional[Any], Any]], Dict[str, Any]]:
        """
        Swap the cache contents for a fresh listing.

        Returns:
            (pairs of (old, new) for every listed object, objects that
            were cached but are no longer listed, by key)
        """
        fresh = {meta_namespace_key(obj): obj for obj in objects}
        with self._lock:
            previous = self._objects
            self._objects = fresh
        pairs = [(previous.get(key), obj) for key, obj in fresh.items()]
        removed = {key: obj for key, obj in previous.items() if key not in fresh}
        return pairs, removed

    def clear(self) -> None:
        with self._lock:
            self._objects.clear()


class EventHandler:
    """Add/update/delete callbacks registered on an informer."""

    def __init__(
        self,
        on_add: Optional[Callable[[Any], None]] = None,
        on_update: Optional[Callable[[Any, Any], None]] = None,
        on_delete: Optional[Callable[[Any], None]] = None,
    ):
        self.on_add = on_add
        self.on_update = on_update
        self.on_delete = on_delete


def _list_items(response: Any) -> Tuple[List[Any], Optional[str]]:
    """Pull items and the list resourceVersion from a typed or dict list response."""
    if isinstance(response, dict):
        metadata = response.get("metadata") or {}
        return list(response.get("items") or []), metadata.get("resourceVersion")
    metadata = getattr(response, "metadata", None)
    return list(response.items or []), getattr(metadata, "resource_version", None)


class Informer:
    """
    Keeps a local cache of one kind in step with the API server.

    Performs a list, then watches from the listed resourceVersion,
    relisting whenever the watch reports the version as expired. Every
    ``resync_period`` seconds all cached objects are re-delivered to the
    update handlers with identical old and new objects.
    """

    def __init__(
        self,
        name: str,
        list_func: Callable[..., Any],
        resync_period: float = RESYNC_PERIOD_SECONDS,
        **list_kwargs,
    ):
        """
        Initialize the informer.

        Args:
            name: Kind name, used in logs and thread names
            list_func: API list method, e.g. ``AppsV1Api.list_deployment_for_all_namespaces``
            resync_period: Seconds between resyncs (0 disables resync)
            **list_kwargs: Extra arguments for ``list_func`` (namespace, group, ...)
        """
        self.name = name
        self.cache = ObjectCache()
        self._list_func = list_func
        self._list_kwargs = list_kwargs
        self._resync_period = resync_period
        self._handlers: List[EventHandler] = []
        self._synced = threading.Event()
        self._resource_version: Optional[str] = None
        self._watcher: Optional[watch.Watch] = None
        self._watcher_lock = threading.Lock()

    def add_event_handler(self, on_add=None, on_update=None, on_delete=None) -> None:
        self._handlers.append(EventHandler(on_add, on_update, on_delete))

    def has_synced(self) -> bool:
        """True once the initial list has been loaded into the cache."""
        return self._synced.is_set()

    def _notify(self, callback_name: str, *args) -> None:
        for handler in self._handlers:
            callback = getattr(handler, callback_name)
            if callback is None:
                continue
            try:
                callback(*args)
            except Exception:
                logger.exception(f"{self.name} {callback_name} handler failed")

    def _deliver(self, old: Optional[Any], new: Any) -> None:
        if old is None:
            self._notify("on_add", new)
        else:
            self._notify("on_update", old, new)

    def list_and_replace(self) -> int:
        """
        List all objects and replace the cache with the result.

        Objects that vanished since the last listing are delivered to the
        delete handlers wrapped in ``DeletedFinalStateUnknown``.

        Returns:
            Number of objects listed
        """
        response = self._list_func(**self._list_kwargs)
        items, resource_version = _list_items(response)

        pairs, removed = self.cache.replace(items)
        for key, obj in removed.items():
            self._notify("on_delete", DeletedFinalStateUnknown(key, obj))
        for old, new in pairs:
            self._deliver(old, new)

        self._resource_version = resource_version
        self._synced.set()
        logger.info(f"Listed {len(items)} {self.name} object(s)")
        return len(items)

    def handle_watch_event(self, event_type: str, obj: Any) -> None:
        """Apply one watch event to the cache and notify handlers."""
        resource_version = get_meta(obj, "resource_version")
        if resource_version:
            self._resource_version = resource_version

        if event_type == "BOOKMARK":
            return
        if event_type in ("ADDED", "MODIFIED"):
            old = self.cache.add_or_update(obj)
            self._deliver(old, obj)
        elif event_type == "DELETED":
            self.cache.remove(meta_namespace_key(obj))
            self._notify("on_delete", obj)
        else:
            logger.warning(f"Ignoring {self.name} watch event of type {event_type}")

    def resync(self) -> None:
        """Re-deliver every cached object to the update handlers."""
        for obj in self.cache.get_all():
            self._notify("on_update", obj, obj)

    def _watch(self, stop_event: threading.Event) -> None:
        w = watch.Watch()
        with self._watcher_lock:
            self._watcher = w

        kwargs = dict(self._list_kwargs)
        kwargs["timeout_seconds"] = WATCH_TIMEOUT_SECONDS
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        try:
            for event in w.stream(self._list_func, **kwargs):
                if stop_event.is_set():
                    break
                event_type = event["type"]
                obj = event["object"]
                if event_type == "ERROR":
                    code = obj.get("code") if isinstance(obj, dict) else None
                    if code == 410:
                        raise ApiException(status=410, reason="Expired")
                    logger.warning(f"{self.name} watch error event: {obj}")
                    continue
                self.handle_watch_event(event_type, obj)
        finally:
            with self._watcher_lock:
                self._watcher = None

    def _resync_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._resync_period):
            logger.debug(f"Resyncing {self.name} cache")
            self.resync()

    def run(self, stop_event: threading.Event) -> None:
        """List and watch until ``stop_event`` is set."""
        logger.info(f"Starting {self.name} informer...")

        if self._resync_period > 0:
            threading.Thread(
                target=self._resync_loop,
                args=(stop_event,),
                name=f"{self.name}-resync",
                daemon=True,
            ).start()

        backoff = 1
        needs_list = True
        while not stop_event.is_set():
            try:
                if needs_list:
                    self.list_and_replace()
                    needs_list = False
                self._watch(stop_event)
                backoff = 1
            except ApiException as e:
                if e.status == 410:
                    logger.info(f"{self.name} watch expired, relisting")
                    needs_list = True
                    continue
                logger.error(f"{self.name} watch error: {e}")
                stop_event.wait(backoff)
                backoff = min(backoff * 2, WATCH_RETRY_MAX_SECONDS)
            except Exception as e:
                logger.error(f"Unexpected error in {self.name} informer: {e}")
                stop_event.wait(backoff)
                backoff = min(backoff * 2, WATCH_RETRY_MAX_SECONDS)

        logger.info(f"Stopped {self.name} informer")

    def stop(self) -> None:
        """Interrupt an open watch stream."""
        with self._watcher_lock:
            watcher = self._watcher
        if watcher is not None:
            watcher.stop()


def wait_for_cache_sync(stop_event: threading.Event, *informers: Informer, poll_interval: float = 0.1) -> bool:
    """
    Block until every informer has synced.

    Returns:
        True if all synced, False if ``stop_event`` was set first
    """
    while not all(informer.has_synced() for informer in informers):
        if stop_event.wait(poll_interval):
            return False
    return True
