import threading
import time

import pytest

from skyreg.deriver import DeriveDefaults, ServiceDeriver
from skyreg.dispatcher import EventDispatcher, EventHandler
from skyreg.errors import TransportError
from skyreg.heartbeat import HeartbeatManager
from skyreg.models import EventStatus, LifecycleEvent, ServiceDescriptor
from skyreg.registration import RegistrationService

from fakes import FakeContainers, FakeRegistry, redis_container, wait_for

CID = "abcdef0123456789"
KEY = "abcdef0123"


@pytest.fixture
def stack():
    containers = FakeContainers(redis_container(CID))
    registry = FakeRegistry()
    registration = RegistrationService(registry)
    heartbeats = HeartbeatManager(containers, registration)
    deriver = ServiceDeriver(DeriveDefaults(environment="production", ttl=30))
    handler = EventHandler(containers, deriver, registration, heartbeats, beat_interval=0.02)
    yield containers, registry, heartbeats, handler
    heartbeats.stop_all(timeout=2)


def _event(status, container_id=CID, image="crosbymichael/redis"):
    return LifecycleEvent(container_id=container_id, status=EventStatus(status), image=image)


def test_start_event_registers_redis_example(stack):
    containers, registry, heartbeats, handler = stack
    EventDispatcher(handler, workers=2).run([_event("start")])

    assert registry.services[KEY] == ServiceDescriptor(
        name="redis",
        instance="redis1",
        host="192.168.1.10",
        environment="production",
        ttl_seconds=30,
        port=80,
    )
    assert heartbeats.running_keys() == [KEY]


@pytest.mark.parametrize("status", ["stop", "die", "kill"])
def test_stop_events_remove_registration(stack, status):
    containers, registry, heartbeats, handler = stack
    EventDispatcher(handler, workers=2).run([_event("start")])
    assert KEY in registry.services

    containers.set_running(CID, False)
    EventDispatcher(handler, workers=2).run([_event(status)])

    assert KEY not in registry.services
    # The renewal loop notices on its next tick.
    assert wait_for(lambda: not heartbeats.is_running(KEY), timeout=1)


def test_restart_event_registers(stack):
    _, registry, _, handler = stack
    assert handler.handle(_event("restart")) == "registered"
    assert KEY in registry.services


def test_image_mismatch_is_skipped_silently(stack):
    _, registry, heartbeats, handler = stack
    assert handler.handle(_event("start", image="someone/else")) == "skipped"
    assert registry.services == {}
    assert heartbeats.running_keys() == []


def test_other_statuses_are_ignored(stack):
    _, registry, _, handler = stack
    assert handler.handle(_event("other")) == "ignored"
    assert registry.calls == []


def test_invalid_descriptor_fails_only_that_event(stack):
    containers, registry, _, handler = stack
    containers.containers["ffffffffff00"] = redis_container("ffffffffff00", name="/nohost", ip="")

    dispatcher = EventDispatcher(handler, workers=1)
    dispatcher.run([_event("start", "ffffffffff00"), _event("start")])

    assert dispatcher.processed == 2
    assert dispatcher.outcomes == {"failed": 1, "registered": 1}
    assert list(registry.services) == [KEY]


def test_failures_do_not_stop_the_dispatcher(stack):
    _, registry, _, handler = stack
    registry.fail_adds = True
    dispatcher = EventDispatcher(handler, workers=3)
    dispatcher.run([_event("start"), _event("start", "0000000000aa"), _event("stop")])
    assert dispatcher.processed == 3
    assert dispatcher.outcomes["failed"] == 1
    assert dispatcher.outcomes["skipped"] == 1  # unknown container
    assert dispatcher.outcomes["not-found"] == 1


def test_queue_is_drained_before_workers_exit(stack):
    containers, registry, _, handler = stack
    ids = [f"{i:010d}ffff" for i in range(50)]
    for cid in ids:
        containers.containers[cid] = redis_container(cid, name=f"/redis{cid[:4]}")

    dispatcher = EventDispatcher(handler, workers=4, queue_size=1)
    dispatcher.run(_event("start", cid) for cid in ids)

    assert dispatcher.processed == 50
    assert len(registry.services) == 50


def test_producer_blocks_when_queue_is_full():
    gate = threading.Event()

    class SlowHandler:
        def handle(self, event):
            gate.wait(5)
            return "ignored"

    produced = []

    def events():
        for i in range(5):
            produced.append(i)
            yield _event("other")

    dispatcher = EventDispatcher(SlowHandler(), workers=1, queue_size=1)
    t = threading.Thread(target=dispatcher.run, args=(events(),))
    t.start()
    time.sleep(0.2)
    # One event held by the worker, one queued, one waiting on put().
    assert len(produced) <= 3
    gate.set()
    t.join(5)
    assert dispatcher.processed == 5


def test_stream_errors_are_raised_after_draining(stack):
    _, registry, _, handler = stack

    def events():
        yield _event("start")
        raise TransportError("connection reset")

    dispatcher = EventDispatcher(handler, workers=2)
    with pytest.raises(TransportError):
        dispatcher.run(events())
    assert dispatcher.processed == 1
    assert KEY in registry.services


def test_stop_then_start_leaves_exactly_one_loop(stack):
    containers, registry, heartbeats, handler = stack
    dispatcher = EventDispatcher(handler, workers=2)
    dispatcher.run([_event("start")])

    containers.set_running(CID, False)
    dispatcher.run([_event("stop")])
    time.sleep(0.2)
    containers.set_running(CID, True)
    dispatcher.run([_event("start")])

    def one_loop():
        alive = [t for t in threading.enumerate() if t.name == f"heartbeat-{KEY}" and t.is_alive()]
        return len(alive) == 1

    assert wait_for(one_loop)
    time.sleep(0.1)
    assert one_loop()
    assert heartbeats.running_keys() == [KEY]
    assert KEY in registry.services
