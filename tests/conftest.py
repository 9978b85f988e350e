"""Pytest configuration and shared fixtures."""

import json
import random

import pytest
from hypothesis import Verbosity, settings

from pgcluster.backends import Backends
from pgcluster.backup import DirectoryRecreationBackup
from pgcluster.broker import Broker
from pgcluster.config import BackendConfig, BrokerConfig, RoutingConfig, StoreConfig, WaitConfig
from pgcluster.exceptions import BackendError
from pgcluster.kvstore import MemoryKVStore
from pgcluster.models import PRIMARY, Node
from pgcluster.placement import PlacementPlanner
from pgcluster.scheduler import AvoidPrimaryRemovalPolicy, Scheduler
from pgcluster.state import StateStore
from pgcluster.status import StatusAggregator

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


class FakeBackend:
    """In-process backend that also plays the node supervisor.

    Provisioned nodes publish a health record so that convergence waits
    succeed, unless ``state`` says otherwise.
    """

    def __init__(self, guid, availability_zone, store=None, state="running"):
        self.guid = guid
        self.availability_zone = availability_zone
        self.store = store
        self.state = state
        self.fail_provision = False
        self.fail_deprovision = False
        self.provisioned: list[str] = []
        self.deprovisioned: list[str] = []

    def provision_node(self, cluster, node_id, role):
        if self.fail_provision:
            raise BackendError(f"Backend {self.guid} failed to provision node {node_id}")
        node = Node(
            id=node_id,
            backend_id=self.guid,
            plan_id=cluster.plan_id,
            service_id=cluster.service_id,
            role=role,
        )
        self.provisioned.append(node_id)
        if self.store is not None:
            published_role = "master" if role == PRIMARY else "replica"
            self.store.set(
                f"/service/{cluster.instance_id}/members/{node_id}",
                json.dumps({"role": published_role, "state": self.state}),
            )
        return node

    def deprovision_node(self, instance_id, node):
        if self.fail_deprovision:
            raise BackendError(f"Backend {self.guid} failed to deprovision node {node.id}")
        self.deprovisioned.append(node.id)
        if self.store is not None:
            key = f"/service/{instance_id}/members/{node.id}"
            if self.store.exists(key):
                self.store.delete(key)


def no_sleep(_seconds):
    pass


@pytest.fixture
def store():
    return MemoryKVStore()


@pytest.fixture
def backends(store):
    """One backend in az-b, two in az-a, one in az-c."""
    return Backends(
        [
            FakeBackend("cell-a1", "az-a", store),
            FakeBackend("cell-a2", "az-a", store),
            FakeBackend("cell-b1", "az-b", store),
            FakeBackend("cell-c1", "az-c", store),
        ]
    )


@pytest.fixture
def state_store(store):
    return StateStore(store)


@pytest.fixture
def status(store):
    return StatusAggregator(store)


@pytest.fixture
def placement(backends, state_store):
    return PlacementPlanner(backends, state_store)


@pytest.fixture
def scheduler(backends, placement, state_store, status):
    return Scheduler(
        backends,
        placement,
        state_store,
        status,
        AvoidPrimaryRemovalPolicy(random.Random(7)),
    )


@pytest.fixture
def broker_config():
    return BrokerConfig(
        backends=[
            BackendConfig(guid="cell-a1", availability_zone="az-a"),
            BackendConfig(guid="cell-a2", availability_zone="az-a"),
            BackendConfig(guid="cell-b1", availability_zone="az-b"),
            BackendConfig(guid="cell-c1", availability_zone="az-c"),
        ],
        routing=RoutingConfig(port_range_start=30000, port_range_end=30002),
        store=StoreConfig(kind="memory"),
        waits=WaitConfig(
            member_running_timeout=0.05, routing_port_timeout=0.05, poll_interval=0.01
        ),
    )


@pytest.fixture
def broker(broker_config, store, backends, tmp_path):
    broker = Broker(
        broker_config,
        store,
        backends,
        DirectoryRecreationBackup(tmp_path / "backups"),
        sleep=no_sleep,
        rng=random.Random(7),
    )
    yield broker
    broker.shutdown()
