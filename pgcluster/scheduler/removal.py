"""Policies choosing which node to remove when a cluster shrinks."""

import random
from abc import ABC, abstractmethod

from pgcluster.exceptions import ConfigurationError, ConsistencyError
from pgcluster.models import PRIMARY, Node


class RemovalPolicy(ABC):
    """Picks one node out of ``nodes`` for removal.

    ``roles`` maps node ids to the role last published by the node itself and
    takes precedence over the role recorded at provisioning time.
    """

    name = ""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    @staticmethod
    def role_of(node: Node, roles: dict[str, str]) -> str:
        return roles.get(node.id, node.role)

    @abstractmethod
    def select(self, nodes: list[Node], roles: dict[str, str]) -> Node:
        """Return the node to remove."""


class RandomRemovalPolicy(RemovalPolicy):
    """Any node may go, including the primary."""

    name = "random"

    def select(self, nodes: list[Node], roles: dict[str, str]) -> Node:
        if not nodes:
            raise ConsistencyError("No node left to remove")
        return self.rng.choice(nodes)


class AvoidPrimaryRemovalPolicy(RemovalPolicy):
    """An arbitrary replica goes; the primary is never chosen."""

    name = "avoid-primary"

    def select(self, nodes: list[Node], roles: dict[str, str]) -> Node:
        replicas = [n for n in nodes if self.role_of(n, roles) != PRIMARY]
        if not replicas:
            raise ConsistencyError(
                "No replica eligible for removal",
                f"Remaining nodes: {', '.join(n.id for n in nodes) or 'none'}",
            )
        return self.rng.choice(replicas)


REMOVAL_POLICIES = {
    RandomRemovalPolicy.name: RandomRemovalPolicy,
    AvoidPrimaryRemovalPolicy.name: AvoidPrimaryRemovalPolicy,
}


def build_removal_policy(name: str, rng: random.Random | None = None) -> RemovalPolicy:
    try:
        return REMOVAL_POLICIES[name](rng)
    except KeyError:
        raise ConfigurationError(
            f"Unknown removal policy: {name}",
            f"Choose one of: {', '.join(sorted(REMOVAL_POLICIES))}",
        )
