import threading

from conftest import make_virtual_router
from virtualrouter_controller.informer import EventHandler, Informer, wait_for_cache_sync
from virtualrouter_controller.meta import DeletedFinalStateUnknown, split_meta_namespace_key


class Recorder:
    def __init__(self):
        self.calls = []

    def add(self, obj):
        self.calls.append(("add", obj["metadata"]["name"]))

    def update(self, old, new):
        self.calls.append(("update", new["metadata"]["name"], old is new))

    def delete(self, obj):
        if isinstance(obj, DeletedFinalStateUnknown):
            self.calls.append(("tombstone", obj.key))
        else:
            self.calls.append(("delete", obj["metadata"]["name"]))


def build_informer(listing):
    informer = Informer("VirtualRouter", lambda **kwargs: {"items": list(listing), "metadata": {"resourceVersion": "7"}},
                        resync_period=0)
    recorder = Recorder()
    informer.add_event_handler(recorder.add, recorder.update, recorder.delete)
    return informer, recorder


def test_list_populates_cache_and_marks_synced():
    informer, recorder = build_informer([make_virtual_router("r1"), make_virtual_router("r2")])
    assert not informer.has_synced()

    assert informer.list_and_replace() == 2

    assert informer.has_synced()
    assert sorted(informer.cache.keys()) == ["default/r1", "default/r2"]
    assert sorted(recorder.calls) == [("add", "r1"), ("add", "r2")]


def test_relist_emits_tombstones_for_vanished_objects():
    listing = [make_virtual_router("r1"), make_virtual_router("r2")]
    informer, recorder = build_informer(listing)
    informer.list_and_replace()
    recorder.calls.clear()

    listing.pop()
    informer.list_and_replace()

    assert recorder.calls == [("tombstone", "default/r2"), ("update", "r1", True)]
    assert informer.cache.get("default", "r2") is None


def test_watch_events_update_cache():
    informer, recorder = build_informer([])
    first = make_virtual_router("r1")
    second = make_virtual_router("r1", image="img:v2")

    informer.handle_watch_event("ADDED", first)
    informer.handle_watch_event("MODIFIED", second)
    informer.handle_watch_event("BOOKMARK", {"metadata": {"resourceVersion": "9"}})
    informer.handle_watch_event("DELETED", second)

    assert recorder.calls == [("add", "r1"), ("update", "r1", False), ("delete", "r1")]
    assert informer.cache.keys() == []


def test_resync_redelivers_cached_objects():
    informer, recorder = build_informer([make_virtual_router("r1")])
    informer.list_and_replace()
    recorder.calls.clear()

    informer.resync()

    assert recorder.calls == [("update", "r1", True)]


def test_failing_handler_does_not_stop_others():
    informer, recorder = build_informer([])

    def broken(obj):
        raise RuntimeError("handler bug")

    informer._handlers.insert(0, EventHandler(on_add=broken))
    informer.handle_watch_event("ADDED", make_virtual_router("r1"))

    assert recorder.calls == [("add", "r1")]


def test_wait_for_cache_sync():
    informer, _ = build_informer([])
    stop_event = threading.Event()
    stop_event.set()
    assert wait_for_cache_sync(stop_event, informer) is False

    informer.list_and_replace()
    assert wait_for_cache_sync(threading.Event(), informer) is True


def test_cache_lookup_by_uid():
    informer, _ = build_informer([make_virtual_router("r1", uid="abc")])
    informer.list_and_replace()

    assert informer.cache.get_by_uid("abc")["metadata"]["name"] == "r1"
    assert informer.cache.get_by_uid("missing") is None


def test_split_keys():
    assert split_meta_namespace_key("default/r1") == ("default", "r1")
    assert split_meta_namespace_key("r1") == ("", "r1")
