"""Public port bookkeeping for cluster instances.

Reservations live in the shared store so that every broker process sees the
same pool::

    /routing/ports/<port>            owner instance id, or "reserved"
    /routing/allocation/<instance>   decimal port
"""

import time
from collections.abc import Callable

from pgcluster.config import RoutingConfig
from pgcluster.exceptions import (
    ConflictError,
    KeyExistsError,
    KeyNotFoundError,
    PollTimeoutError,
    ResourceExhaustedError,
    StoreError,
)
from pgcluster.kvstore import KVStore
from pgcluster.logging_config import get_logger

logger = get_logger(__name__)

ALLOCATION_ROOT = "/routing/allocation"
PORTS_ROOT = "/routing/ports"
RESERVED = "reserved"


def allocation_key(instance_id: str) -> str:
    return f"{ALLOCATION_ROOT}/{instance_id}"


def port_key(port: int) -> str:
    return f"{PORTS_ROOT}/{port}"


class Router:
    """Allocates, assigns and releases public ports."""

    def __init__(self, store: KVStore, config: RoutingConfig | None = None):
        self.store = store
        self.config = config or RoutingConfig()

    @property
    def port_range(self) -> range:
        return range(self.config.port_range_start, self.config.port_range_end + 1)

    def _reserved_ports(self) -> dict[int, str]:
        try:
            entries = self.store.children(PORTS_ROOT)
        except KeyNotFoundError:
            return {}
        return {int(entry.name): entry.value for entry in entries if entry.name.isdigit()}

    def allocate_port(self) -> int:
        """Reserve the lowest free port of the configured range.

        Raises:
            ResourceExhaustedError: If every port of the range is taken
        """
        reserved = self._reserved_ports()
        for port in self.port_range:
            if port in reserved:
                continue
            try:
                self.store.create(port_key(port), RESERVED)
            except KeyExistsError:
                # Another broker process won the race for this port
                continue
            logger.info(f"Allocated public port {port}")
            return port

        logger.error(
            f"Port range {self.config.port_range_start}-{self.config.port_range_end} exhausted"
        )
        raise ResourceExhaustedError(
            "No free public port left",
            f"All {len(self.port_range)} ports in "
            f"{self.config.port_range_start}-{self.config.port_range_end} are allocated",
        )

    def release_port(self, port: int) -> None:
        """Return an allocated but never assigned port to the pool."""
        try:
            if self.store.get(port_key(port)) == RESERVED:
                self.store.delete(port_key(port))
        except KeyNotFoundError:
            pass

    def assigned_port(self, instance_id: str) -> int | None:
        try:
            return int(self.store.get(allocation_key(instance_id)))
        except KeyNotFoundError:
            return None

    def assign_port_to_cluster(self, instance_id: str, port: int) -> None:
        """Durably map ``instance_id`` to ``port``.

        Re-assigning the same port is a no-op.

        Raises:
            ConflictError: If the instance holds a different port or the port
                belongs to another instance
        """
        current = self.assigned_port(instance_id)
        if current is not None and current != port:
            raise ConflictError(
                f"Service instance {instance_id} is already assigned port {current}",
                f"Requested port {port}; remove the existing assignment first",
            )

        try:
            owner = self.store.get(port_key(port))
        except KeyNotFoundError:
            owner = None
        if owner not in (None, RESERVED, instance_id):
            raise ConflictError(f"Port {port} is already assigned to service instance {owner}")

        self.store.set(port_key(port), instance_id)
        self.store.set(allocation_key(instance_id), str(port))
        logger.info(f"Assigned port {port} to {instance_id}")

    def remove_cluster_assignment(self, instance_id: str) -> None:
        """Drop the mapping of ``instance_id`` and free its port."""
        try:
            self.store.delete(allocation_key(instance_id))
        except KeyNotFoundError:
            logger.debug(f"No port allocation recorded for {instance_id}")

        for port, owner in self._reserved_ports().items():
            if owner == instance_id:
                try:
                    self.store.delete(port_key(port))
                except KeyNotFoundError:
                    continue
                logger.info(f"Released port {port} of {instance_id}")

    def wait_for_routing_port_allocation(
        self,
        instance_id: str,
        timeout: float = 10.0,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """Block until the routing tier has published a port for ``instance_id``.

        Raises:
            PollTimeoutError: If no port appears within ``timeout`` seconds
        """
        attempts = max(1, int(timeout / interval)) if interval > 0 else 1
        last_error: Exception | None = None
        for attempt in range(attempts):
            try:
                port = int(self.store.get(allocation_key(instance_id)))
                logger.info(f"Routing port {port} allocated for {instance_id}")
                return port
            except (StoreError, ValueError) as e:
                last_error = e
                logger.debug(f"Polling routing allocation for {instance_id} ({attempt + 1})")
            sleep(interval)

        raise PollTimeoutError(
            f"Timed out waiting for routing port of {instance_id}",
            f"Polled {attempts} time(s) every {interval}s; last error: {last_error}",
        )
