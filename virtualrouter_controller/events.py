"""Records Kubernetes Events against VirtualRouter objects."""

import logging
import queue
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import CONTROLLER_AGENT_NAME, CRD_API_VERSION, CRD_KIND
from .virtual_router import VirtualRouter

logger = logging.getLogger(__name__)

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"


class EventRecorder:
    """
    Fire-and-forget event publisher.

    ``event`` only puts the event on an internal queue; a background thread
    posts it to the API server. Failed posts are logged and dropped.
    """

    def __init__(self, core_api=None, component: str = CONTROLLER_AGENT_NAME):
        self.core_api = core_api or client.CoreV1Api()
        self.component = component
        self._pending: "queue.Queue[Optional[client.CoreV1Event]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def build_event(self, subject: VirtualRouter, event_type: str, reason: str, message: str) -> client.CoreV1Event:
        now = datetime.now(timezone.utc)
        return client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                name=f"{subject.name}.{uuid.uuid4().hex[:16]}",
                namespace=subject.namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version=CRD_API_VERSION,
                kind=CRD_KIND,
                name=subject.name,
                namespace=subject.namespace,
                uid=subject.uid,
                resource_version=subject.resource_version,
            ),
            reason=reason,
            message=message,
            type=event_type,
            source=client.V1EventSource(component=self.component),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )

    def event(self, subject: VirtualRouter, event_type: str, reason: str, message: str) -> None:
        """Queue an event for ``subject``. Never blocks."""
        logger.debug(f"Event({subject.key}): type: {event_type} reason: {reason} message: {message}")
        self._pending.put(self.build_event(subject, event_type, reason, message))

    def _post(self, event: client.CoreV1Event) -> None:
        try:
            self.core_api.create_namespaced_event(namespace=event.metadata.namespace, body=event)
        except ApiException as e:
            logger.warning(f"Could not record event {event.reason} for {event.involved_object.name}: {e.reason}")
        except Exception:
            logger.exception(f"Could not record event {event.reason} for {event.involved_object.name}")

    def _run(self) -> None:
        while True:
            event = self._pending.get()
            if event is None:
                return
            self._post(event)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="event-recorder", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Flush queued events and stop the background thread."""
        if self._thread is None:
            return
        self._pending.put(None)
        self._thread.join(timeout)
        self._thread = None
