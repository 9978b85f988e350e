"""Entry points of the orchestration core.

Each request validates synchronously, then hands its convergence work to the
worker pool and returns an Operation handle. Background failures are recorded
in the persisted SchedulingInfo rather than raised to the requester.

At most one operation per instance is expected to be active at a time; this is
enforced only by the precondition checks below.
"""

import time
from collections.abc import Callable

from pydantic import BaseModel, Field

from pgcluster.backends import Backends
from pgcluster.backup import RecreationBackup, build_backup
from pgcluster.config import BrokerConfig
from pgcluster.credentials import create_cluster_credentials
from pgcluster.exceptions import BackupError, ConflictError, NotFoundError, ValidationError
from pgcluster.kvstore import KVStore, build_store
from pgcluster.logging_config import OperationContext
from pgcluster.models import STATUS_IN_PROGRESS, ClusterFeatures, ClusterState, SchedulingInfo
from pgcluster.placement import PlacementPlanner
from pgcluster.recreate import RecreateWorkflow
from pgcluster.router import Router
from pgcluster.scheduler import Scheduler, build_removal_policy
from pgcluster.state import StateStore
from pgcluster.status import StatusAggregator
from pgcluster.tasks import Operation, TaskRunner


class ProvisionDetails(BaseModel):
    """Fields of a provision request relevant to the core."""

    service_id: str = ""
    plan_id: str = ""
    organization_guid: str = ""
    space_guid: str = ""
    service_instance_name: str | None = None
    parameters: dict = Field(default_factory=dict)


class Broker:
    """Composes the core components behind provision/update/deprovision/recreate."""

    def __init__(
        self,
        config: BrokerConfig,
        store: KVStore,
        backends: Backends,
        backup: RecreationBackup,
        runner: TaskRunner | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng=None,
    ):
        self.config = config
        self.backends = backends
        self.backup = backup
        self.sleep = sleep
        self.state_store = StateStore(store)
        self.router = Router(store, config.routing)
        self.status = StatusAggregator(store)
        self.placement = PlacementPlanner(backends, self.state_store)
        self.scheduler = Scheduler(
            backends,
            self.placement,
            self.state_store,
            self.status,
            build_removal_policy(config.scheduler.removal_policy, rng),
        )
        self.recreate_workflow = RecreateWorkflow(
            self.state_store,
            self.router,
            self.scheduler,
            self.status,
            backup,
            waits=config.waits,
            sleep=sleep,
        )
        self.runner = runner or TaskRunner(config.scheduler.workers)

    @classmethod
    def from_config(cls, config: BrokerConfig) -> "Broker":
        return cls(
            config,
            build_store(config.store),
            Backends.from_config(config.backends),
            build_backup(config.backup),
        )

    def shutdown(self, wait: bool = True) -> None:
        self.runner.shutdown(wait=wait)

    def _members_running(self, instance_id: str) -> Callable[[], str]:
        waits = self.config.waits

        def gate():
            return self.status.wait_for_all_running(
                instance_id,
                timeout=waits.member_running_timeout,
                interval=waits.poll_interval,
                sleep=self.sleep,
            )

        return gate

    def _converge(
        self, cluster: ClusterState, features: ClusterFeatures, context: OperationContext
    ) -> ClusterState:
        try:
            self.scheduler.run_cluster(
                cluster, features, context, gate=self._members_running(cluster.instance_id)
            )
        finally:
            self.state_store.save_cluster(cluster)
        return cluster

    def _mark_cancelled(self, cluster: ClusterState) -> Callable[[], None]:
        def on_cancelled():
            cluster.scheduling_info.fail("Operation cancelled before it started")
            self.state_store.save_cluster(cluster)

        return on_cancelled

    def _verify_backup(self, cluster: ClusterState, log) -> None:
        """Write the recreation data and check that it reads back identically."""
        data = cluster.recreation_data()
        self.backup.write_recreation_data(data)
        restored = self.backup.restore_recreation_data(cluster.instance_id)
        if restored != data:
            log.error("Recreation backup does not read back identically")
            raise BackupError(
                f"Recreation backup of {cluster.instance_id} failed verification",
                "The restored document differs from the one written",
            )

    def provision(self, instance_id: str, details: ProvisionDetails) -> Operation:
        """Create a new cluster.

        A request without service and plan ids recreates the instance from its
        backup instead.

        Raises:
            ValidationError: If the requested features are invalid
            ConflictError: If the instance already exists
            ResourceExhaustedError: If no public port is free
        """
        if not details.service_id and not details.plan_id:
            return self.recreate(instance_id)

        context = OperationContext("provision", instance_id)
        log = context.logger(__name__)

        features = ClusterFeatures.from_parameters(details.parameters)
        if self.state_store.cluster_exists(instance_id):
            raise ConflictError(f"Service instance {instance_id} already exists")
        self.scheduler.verify_cluster_features(features)

        port = self.router.allocate_port()
        cluster = ClusterState(
            instance_id=instance_id,
            service_id=details.service_id,
            plan_id=details.plan_id,
            organization_guid=details.organization_guid,
            space_guid=details.space_guid,
            service_instance_name=details.service_instance_name,
            allocated_port=port,
            target_node_count=features.node_count,
            **create_cluster_credentials(),
        )

        try:
            if self.backup.configured:
                self._verify_backup(cluster, log)
            self.router.assign_port_to_cluster(instance_id, port)
            cluster.scheduling_info.begin(0, "Provisioning queued")
            self.state_store.save_cluster(cluster)
        except Exception:
            self.router.remove_cluster_assignment(instance_id)
            self.router.release_port(port)
            raise

        log.info(f"Accepted with {features.node_count} node(s) on port {port}")
        return self.runner.submit(
            context,
            self._converge,
            cluster,
            features,
            context,
            on_cancelled=self._mark_cancelled(cluster),
        )

    def update(self, instance_id: str, parameters: dict) -> Operation:
        """Resize an existing cluster.

        Raises:
            NotFoundError: If the instance does not exist
            ValidationError: If the requested features are invalid
            ConflictError: If another operation is still in progress
        """
        context = OperationContext("update", instance_id)
        log = context.logger(__name__)

        features = ClusterFeatures.from_parameters(parameters)
        cluster = self.state_store.load_cluster(instance_id)
        if cluster.scheduling_info.status == STATUS_IN_PROGRESS:
            raise ConflictError(
                f"Service instance {instance_id} has an operation in progress",
                cluster.scheduling_info.last_message,
            )
        self.scheduler.verify_cluster_features(features)

        cluster.scheduling_info = SchedulingInfo()
        cluster.scheduling_info.begin(0, "Resize queued")
        self.state_store.save_cluster(cluster)

        log.info(f"Accepted resize from {cluster.node_count()} to {features.node_count} node(s)")
        return self.runner.submit(
            context,
            self._converge,
            cluster,
            features,
            context,
            on_cancelled=self._mark_cancelled(cluster),
        )

    def _teardown(self, cluster: ClusterState, context: OperationContext) -> list:
        errors = self.scheduler.stop_cluster(cluster, context)
        self.state_store.delete_cluster(cluster.instance_id)
        self.router.remove_cluster_assignment(cluster.instance_id)
        return errors

    def deprovision(self, instance_id: str, service_id: str, plan_id: str) -> Operation:
        """Tear down every node and forget the instance.

        Raises:
            NotFoundError: If the instance does not exist
            ValidationError: If service or plan id is missing
        """
        context = OperationContext("deprovision", instance_id)

        if not self.state_store.cluster_exists(instance_id):
            raise NotFoundError(f"Service instance {instance_id} doesn't exist")
        if not service_id or not plan_id:
            raise ValidationError("Provide service_id and plan_id to deprovision")

        cluster = self.state_store.load_cluster(instance_id)
        return self.runner.submit(context, self._teardown, cluster, context)

    def recreate(self, instance_id: str) -> Operation:
        """Rebuild an instance from its recreation backup.

        Raises:
            ConflictError: If the instance still exists
            NotFoundError: If no backup exists
        """
        context = OperationContext("recreate", instance_id)
        cluster, target = self.recreate_workflow.prepare(instance_id, context)
        self.state_store.save_cluster(cluster)

        context.logger(__name__).info(f"Accepted recreate with {target} node(s)")
        return self.runner.submit(
            context,
            self.recreate_workflow.execute,
            cluster,
            target,
            context,
            on_cancelled=self._mark_cancelled(cluster),
        )

    def last_operation(self, instance_id: str) -> SchedulingInfo:
        return self.state_store.load_cluster(instance_id).scheduling_info
