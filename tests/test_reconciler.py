from dataclasses import replace

import pytest

from skyreg.deriver import DeriveDefaults, ServiceDeriver
from skyreg.dispatcher import EventHandler
from skyreg.errors import TransportError
from skyreg.heartbeat import HeartbeatManager
from skyreg.models import ServiceDescriptor
from skyreg.reconciler import Reconciler
from skyreg.registration import RegistrationService

from fakes import FakeContainers, FakeRegistry, redis_container


class Listing:
    """Container list as the list endpoint reports it (may differ from inspect)."""

    def __init__(self, *snapshots):
        self.snapshots = list(snapshots)

    def list_containers(self):
        return list(self.snapshots)


@pytest.fixture
def stack():
    containers = FakeContainers(
        redis_container("aaaaaaaaaa0001", name="/redis1"),
        redis_container("bbbbbbbbbb0002", name="/redis2"),
        redis_container("cccccccccc0003", name="/web1", image="nginx:1.25", ip="192.168.1.12"),
    )
    registry = FakeRegistry()
    registration = RegistrationService(registry)
    heartbeats = HeartbeatManager(containers, registration)
    deriver = ServiceDeriver(DeriveDefaults(environment="dev", ttl=60))
    handler = EventHandler(containers, deriver, registration, heartbeats)
    yield containers, registry, heartbeats, handler
    heartbeats.stop_all(timeout=2)


def test_seeds_every_running_container(stack):
    containers, registry, heartbeats, handler = stack
    report = Reconciler(containers, handler).run()

    assert report.registered == 3
    assert sorted(registry.services) == ["aaaaaaaaaa", "bbbbbbbbbb", "cccccccccc"]
    assert registry.services["cccccccccc"].name == "nginx"
    assert heartbeats.running_keys() == ["aaaaaaaaaa", "bbbbbbbbbb", "cccccccccc"]


def test_skips_untagged_images_without_aborting(stack):
    containers, registry, heartbeats, handler = stack
    listed = [s for s in containers.containers.values()]
    listed[1] = replace(listed[1], image="sha256:0123456789abcdef")

    report = Reconciler(Listing(*listed), handler).run()

    assert report.skipped == 1
    assert report.registered == 2
    assert "bbbbbbbbbb" not in registry.services
    assert "bbbbbbbbbb" not in heartbeats.running_keys()


def test_individual_failures_are_skipped(stack):
    containers, registry, _, handler = stack
    containers.containers["dddddddddd0004"] = redis_container("dddddddddd0004", name="/broken", ip="")

    report = Reconciler(containers, handler).run()

    assert report.failed == 1
    assert report.registered == 3
    assert "dddddddddd" not in registry.services


def test_adopts_entries_left_by_a_previous_watcher(stack):
    containers, registry, heartbeats, handler = stack
    registry.services["aaaaaaaaaa"] = ServiceDescriptor("redis", "redis1", "192.168.1.10", "dev", 60)

    report = Reconciler(containers, handler).run()

    assert report.already_present == 1
    assert report.registered == 2
    assert registry.count("update", "aaaaaaaaaa") == 1
    assert "aaaaaaaaaa" in heartbeats.running_keys()


def test_listing_failure_is_fatal(stack):
    containers, _, _, handler = stack
    containers.fail_listing = True
    with pytest.raises(TransportError):
        Reconciler(containers, handler).run()
