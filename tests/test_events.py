from kubernetes.client.rest import ApiException
from urllib3.exceptions import ProtocolError

from conftest import make_virtual_router
from virtualrouter_controller.events import EventRecorder
from virtualrouter_controller.virtual_router import VirtualRouter


class EventSink:
    def __init__(self, error=None):
        self.posted = []
        self.error = error

    def create_namespaced_event(self, namespace, body):
        self.posted.append((namespace, body))
        if self.error is not None:
            raise self.error
        return body


def test_event_recorder_posts_in_background():
    sink = EventSink()
    recorder = EventRecorder(sink)
    router = VirtualRouter.from_crd(make_virtual_router("r1"))

    recorder.start()
    recorder.event(router, "Normal", "Synced", "VirtualRouter synced successfully")
    recorder.stop()

    ((namespace, event),) = sink.posted
    assert namespace == "default"
    assert event.metadata.name.startswith("r1.")
    assert event.involved_object.kind == "VirtualRouter"
    assert event.involved_object.uid == "uid-r1"
    assert (event.type, event.reason, event.source.component) == ("Normal", "Synced", "virtual-router")


def test_event_recorder_keeps_going_after_post_failure():
    sink = EventSink(error=ApiException(status=403, reason="Forbidden"))
    recorder = EventRecorder(sink)
    router = VirtualRouter.from_crd(make_virtual_router("r1"))

    recorder.start()
    recorder.event(router, "Warning", "ErrResourceExists", "taken")
    recorder.event(router, "Normal", "Synced", "ok")
    recorder.stop()

    assert [event.reason for _, event in sink.posted] == ["ErrResourceExists", "Synced"]


class FlakySink(EventSink):
    def create_namespaced_event(self, namespace, body):
        if not self.posted:
            self.posted.append((namespace, body))
            raise ProtocolError("Connection aborted.")
        return super().create_namespaced_event(namespace, body)


def test_event_recorder_survives_connection_error():
    sink = FlakySink()
    recorder = EventRecorder(sink)
    router = VirtualRouter.from_crd(make_virtual_router("r1"))

    recorder.start()
    thread = recorder._thread
    recorder.event(router, "Warning", "ErrResourceExists", "taken")
    recorder.event(router, "Warning", "ErrResourceExists", "still taken")
    recorder.stop()

    assert [event.message for _, event in sink.posted] == ["taken", "still taken"]
    assert not thread.is_alive()
