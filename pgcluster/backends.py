"""Provisioning backends that host cluster nodes."""

import requests

from pgcluster.config import BackendConfig
from pgcluster.exceptions import BackendError
from pgcluster.logging_config import get_logger
from pgcluster.models import ClusterState, Node

logger = get_logger(__name__)


class Backend:
    """HTTP client for one backend's node provisioning API."""

    def __init__(self, config: BackendConfig, timeout: int = 30):
        self.config = config
        self.timeout = timeout

    @property
    def guid(self) -> str:
        return self.config.guid

    @property
    def availability_zone(self) -> str:
        return self.config.availability_zone

    def __repr__(self) -> str:
        return f"Backend({self.guid}, az={self.availability_zone})"

    def _node_url(self, instance_id: str, node_id: str) -> str:
        return f"{self.config.uri.rstrip('/')}/api/v1/clusters/{instance_id}/nodes/{node_id}"

    def _auth(self) -> tuple[str, str] | None:
        if self.config.username:
            return (self.config.username, self.config.password)
        return None

    def provision_node(self, cluster: ClusterState, node_id: str, role: str) -> Node:
        """Ask the backend to start a node for ``cluster``.

        Raises:
            BackendError: If the request fails or the backend rejects it
        """
        node = Node(
            id=node_id,
            backend_id=self.guid,
            plan_id=cluster.plan_id,
            service_id=cluster.service_id,
            role=role,
        )
        payload = {
            "node": node.model_dump(),
            "cluster": cluster.recreation_data().model_dump(),
        }
        url = self._node_url(cluster.instance_id, node_id)
        logger.debug(f"PUT {url}")

        try:
            response = requests.put(url, json=payload, auth=self._auth(), timeout=self.timeout)
        except requests.RequestException as e:
            raise BackendError(
                f"Backend {self.guid} unreachable while provisioning {node_id}", str(e)
            )

        if response.status_code >= 400:
            raise BackendError(
                f"Backend {self.guid} failed to provision node {node_id}",
                f"HTTP {response.status_code}: {response.text}",
            )
        return node

    def deprovision_node(self, instance_id: str, node: Node) -> None:
        """Ask the backend to stop and delete ``node``.

        Raises:
            BackendError: If the request fails or the backend rejects it
        """
        url = self._node_url(instance_id, node.id)
        logger.debug(f"DELETE {url}")

        try:
            response = requests.delete(url, auth=self._auth(), timeout=self.timeout)
        except requests.RequestException as e:
            raise BackendError(f"Backend {self.guid} unreachable while removing {node.id}", str(e))

        # Already gone is as good as removed
        if response.status_code >= 400 and response.status_code != 404:
            raise BackendError(
                f"Backend {self.guid} failed to deprovision node {node.id}",
                f"HTTP {response.status_code}: {response.text}",
            )


class Backends:
    """The configured backends, indexed by GUID."""

    def __init__(self, backends: list):
        self._backends = list(backends)

    @classmethod
    def from_config(cls, configs: list[BackendConfig]) -> "Backends":
        return cls([Backend(config) for config in configs])

    def __iter__(self):
        return iter(self._backends)

    def __len__(self) -> int:
        return len(self._backends)

    def get(self, guid: str):
        return next((b for b in self._backends if b.guid == guid), None)

    def guids(self) -> list[str]:
        return [b.guid for b in self._backends]
