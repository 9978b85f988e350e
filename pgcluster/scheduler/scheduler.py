"""Converges a cluster's nodes to a requested topology."""

from collections.abc import Callable

from pgcluster.backends import Backends
from pgcluster.exceptions import ConsistencyError, PgClusterError, ValidationError
from pgcluster.logging_config import OperationContext, get_logger
from pgcluster.models import ClusterFeatures, ClusterState, SchedulingInfo
from pgcluster.placement import PlacementPlanner
from pgcluster.scheduler.removal import AvoidPrimaryRemovalPolicy, RemovalPolicy
from pgcluster.scheduler.steps import AddNode, RemoveNode, Step
from pgcluster.state import StateStore
from pgcluster.status import StatusAggregator

logger = get_logger(__name__)


class Scheduler:
    """Plans and executes the Steps of a scheduling run."""

    def __init__(
        self,
        backends: Backends,
        placement: PlacementPlanner,
        state_store: StateStore,
        status: StatusAggregator | None = None,
        removal_policy: RemovalPolicy | None = None,
    ):
        self.backends = backends
        self.placement = placement
        self.state_store = state_store
        self.status = status
        self.removal_policy = removal_policy or AvoidPrimaryRemovalPolicy()

    def _logger(self, context: OperationContext | None):
        return context.logger(__name__) if context else logger

    def verify_cluster_features(self, features: ClusterFeatures) -> None:
        """Reject requests that can never be scheduled.

        Raises:
            ValidationError: If the node count or a requested cell is invalid
        """
        if features.node_count < 1:
            raise ValidationError(f"node-count ({features.node_count}) must be a positive number")

        if len(self.backends) == 0:
            raise ValidationError(
                "No backends configured", "Add at least one backend to the broker configuration"
            )

        unknown = [guid for guid in features.cell_guids if self.backends.get(guid) is None]
        if unknown:
            raise ValidationError(
                f"Unknown cells requested: {', '.join(unknown)}",
                f"Available cells: {', '.join(self.backends.guids())}",
            )

    def plan(self, cluster: ClusterState, features: ClusterFeatures, log=None) -> list[Step]:
        """Compute the ordered Steps converging ``cluster`` to ``features``."""
        log = log or logger
        current = cluster.node_count()
        desired = features.node_count
        steps: list[Step] = []

        if desired > current:
            for _ in range(desired - current):
                steps.append(AddNode(cluster, features, self.placement, self.state_store, log))
        elif desired < current:
            roles = self.status.member_roles(cluster.instance_id) if self.status else {}
            remaining = list(cluster.nodes)
            for _ in range(current - desired):
                node = self.removal_policy.select(remaining, roles)
                remaining.remove(node)
                steps.append(RemoveNode(node, cluster, self.backends, self.state_store, log))

        log.debug(f"Planned {len(steps)} step(s): {steps}")
        return steps

    def run_cluster(
        self,
        cluster: ClusterState,
        features: ClusterFeatures,
        context: OperationContext | None = None,
        gate: Callable[[], object] | None = None,
    ) -> ClusterState:
        """Execute one scheduling run, recording progress in ``cluster.scheduling_info``.

        ``gate`` is called once every Step has completed; the run only succeeds
        if it returns without raising. The caller persists ``cluster`` whatever
        the outcome.

        Raises:
            PgClusterError: The first Step or gate failure, after the run is marked failed
        """
        log = self._logger(context)
        info = SchedulingInfo()
        cluster.scheduling_info = info
        cluster.target_node_count = features.node_count
        info.begin(0, "Planning")

        try:
            steps = self.plan(cluster, features, log)
        except PgClusterError as e:
            info.fail(f"Planning failed: {e.message}")
            log.error(f"Planning failed: {e.message}")
            raise

        info.planned(len(steps))
        log.info(
            f"Converging from {cluster.node_count()} to {features.node_count} node(s) "
            f"in {len(steps)} step(s)"
        )

        for step in steps:
            log.info(f"Performing {step.step_type}")
            try:
                step.perform()
            except Exception as e:
                message = e.message if isinstance(e, PgClusterError) else str(e)
                info.fail(f"{step.step_type} failed: {message}")
                log.error(f"{step.step_type} failed: {message}")
                raise
            info.step_completed(
                f"{step.step_type} completed ({info.completed_steps + 1}/{info.steps})"
            )

        if cluster.node_count() != features.node_count:
            message = (
                f"Cluster has {cluster.node_count()} node(s) after scheduling, "
                f"expected {features.node_count}"
            )
            info.fail(message)
            raise ConsistencyError(message)

        if gate is not None:
            try:
                gate()
            except PgClusterError as e:
                info.fail(f"Cluster did not converge: {e.message}")
                log.error(info.last_message)
                raise

        info.succeed(f"Cluster has {cluster.node_count()} node(s)")
        log.info(info.last_message)
        return cluster

    def stop_cluster(
        self, cluster: ClusterState, context: OperationContext | None = None
    ) -> list[PgClusterError]:
        """Remove every node, continuing past individual failures.

        Returns:
            The errors of the removals that failed
        """
        log = self._logger(context)
        errors: list[PgClusterError] = []
        for node in list(cluster.nodes):
            step = RemoveNode(node, cluster, self.backends, self.state_store, log)
            try:
                step.perform()
            except PgClusterError as e:
                log.warning(f"{step.step_type} failed during teardown: {e.message}")
                errors.append(e)

        log.info(f"Teardown finished with {len(errors)} error(s)")
        return errors
