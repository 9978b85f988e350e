"""Availability-zone aware placement of new nodes."""

from pgcluster.backends import Backends
from pgcluster.exceptions import StoreError, ValidationError
from pgcluster.logging_config import get_logger
from pgcluster.state import StateStore

logger = get_logger(__name__)


class PlacementPlanner:
    """Ranks availability zones and backends by how little a cluster uses them."""

    def __init__(self, backends: Backends, state_store: StateStore):
        self.backends = backends
        self.state_store = state_store

    def all_backends(self, cell_guids: list[str] | None = None) -> list:
        """Return the configured backends, narrowed to ``cell_guids`` when given."""
        if not cell_guids:
            return list(self.backends)
        return [b for b in self.backends if b.guid in cell_guids]

    def all_azs(self, cell_guids: list[str] | None = None) -> list[str]:
        return sorted({b.availability_zone for b in self.all_backends(cell_guids)})

    def used_backend_guids(self, instance_id: str) -> list[str]:
        """Return the backends hosting a node of ``instance_id``.

        Store errors mean the cluster has no running nodes yet.
        """
        try:
            return self.state_store.node_backend_guids(instance_id)
        except StoreError as e:
            logger.debug(f"No backend usage recorded for {instance_id}: {e}")
            return []

    def rank_azs_by_unusedness(
        self, instance_id: str, cell_guids: list[str] | None = None
    ) -> list[str]:
        """Order AZs so that those with the fewest nodes of the cluster come first.

        Ties are broken by AZ name.
        """
        usage = {az: 0 for az in self.all_azs(cell_guids)}
        for guid in self.used_backend_guids(instance_id):
            backend = self.backends.get(guid)
            if backend is not None and backend.availability_zone in usage:
                usage[backend.availability_zone] += 1
        return sorted(usage, key=lambda az: (usage[az], az))

    def select_backend(self, instance_id: str, cell_guids: list[str] | None = None):
        """Pick the backend for the next node of ``instance_id``.

        Raises:
            ValidationError: If no backend is eligible
        """
        candidates = self.all_backends(cell_guids)
        if not candidates:
            raise ValidationError(
                "No backend available for placement",
                f"Requested cells: {', '.join(cell_guids)}" if cell_guids else None,
            )

        used = set(self.used_backend_guids(instance_id))
        az = self.rank_azs_by_unusedness(instance_id, cell_guids)[0]
        in_az = [b for b in candidates if b.availability_zone == az]
        backend = next((b for b in in_az if b.guid not in used), in_az[0])
        logger.debug(f"Placing next node of {instance_id} on {backend.guid} in AZ {az}")
        return backend
