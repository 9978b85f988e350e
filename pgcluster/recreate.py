"""Rebuild a cluster from its recreation backup after the live state is lost."""

import time
from collections.abc import Callable

from pgcluster.backup import RecreationBackup
from pgcluster.config import WaitConfig
from pgcluster.exceptions import ConflictError, PgClusterError
from pgcluster.logging_config import OperationContext
from pgcluster.models import ClusterFeatures, ClusterState
from pgcluster.router import Router
from pgcluster.scheduler import Scheduler
from pgcluster.state import StateStore
from pgcluster.status import StatusAggregator


class RecreateWorkflow:
    """Restores identity and port from a backup and schedules fresh nodes.

    Placement is recomputed, so nodes may land on other backends than before.
    """

    def __init__(
        self,
        state_store: StateStore,
        router: Router,
        scheduler: Scheduler,
        status: StatusAggregator,
        backup: RecreationBackup,
        waits: WaitConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.state_store = state_store
        self.router = router
        self.scheduler = scheduler
        self.status = status
        self.backup = backup
        self.waits = waits or WaitConfig()
        self.sleep = sleep

    def prepare(self, instance_id: str, context: OperationContext | None = None):
        """Check preconditions and build the zero-node cluster to schedule.

        The returned cluster is queued (in-progress) but not yet persisted.

        Returns:
            The cluster to rebuild and its target node count

        Raises:
            ConflictError: If the instance still has live state
            NotFoundError: If no backup exists for the instance
        """
        context = context or OperationContext("recreate", instance_id)
        log = context.logger(__name__)

        if self.state_store.cluster_exists(instance_id):
            log.info("Instance still exists, refusing to recreate")
            raise ConflictError(
                f"Service instance {instance_id} still exists",
                "Clean out its state before recreating the cluster",
            )

        data = self.backup.restore_recreation_data(instance_id)
        target = max(1, data.target_node_count)
        cluster = ClusterState.from_recreation_data(data)
        cluster.target_node_count = 0
        cluster.scheduling_info.begin(0, "Recreate queued")
        log.info(f"Restored recreation data, port {data.allocated_port}, {target} node(s)")
        return cluster, target

    def execute(
        self, cluster: ClusterState, target: int, context: OperationContext | None = None
    ) -> ClusterState:
        """Restore the port, schedule the nodes and wait for them to run.

        The cluster is persisted before the port is restored and again after
        scheduling, whatever the outcome.
        """
        instance_id = cluster.instance_id
        context = context or OperationContext("recreate", instance_id)
        log = context.logger(__name__)

        self.state_store.save_cluster(cluster)

        try:
            self.router.assign_port_to_cluster(instance_id, cluster.allocated_port)
            port = self.router.wait_for_routing_port_allocation(
                instance_id,
                timeout=self.waits.routing_port_timeout,
                interval=self.waits.poll_interval,
                sleep=self.sleep,
            )
        except PgClusterError as e:
            cluster.scheduling_info.fail(
                f"Restoring port {cluster.allocated_port} failed: {e.message}"
            )
            log.error(cluster.scheduling_info.last_message)
            self.state_store.save_cluster(cluster)
            raise
        log.info(f"Routing allocation restored to port {port}")

        def all_running():
            return self.status.wait_for_all_running(
                instance_id,
                timeout=self.waits.member_running_timeout,
                interval=self.waits.poll_interval,
                sleep=self.sleep,
            )

        try:
            self.scheduler.run_cluster(
                cluster, ClusterFeatures(node_count=target), context, gate=all_running
            )
        finally:
            self.state_store.save_cluster(cluster)

        self.backup.write_recreation_data(cluster.recreation_data())
        log.info(f"Recreated with {cluster.node_count()} node(s)")
        return cluster

    def recreate(self, instance_id: str, context: OperationContext | None = None) -> ClusterState:
        context = context or OperationContext("recreate", instance_id)
        cluster, target = self.prepare(instance_id, context)
        return self.execute(cluster, target, context)
