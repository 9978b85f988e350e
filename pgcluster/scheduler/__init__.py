"""Scheduling of node additions and removals."""

from pgcluster.scheduler.removal import (
    AvoidPrimaryRemovalPolicy,
    RandomRemovalPolicy,
    RemovalPolicy,
    build_removal_policy,
)
from pgcluster.scheduler.scheduler import Scheduler
from pgcluster.scheduler.steps import AddNode, RemoveNode, Step

__all__ = [
    "AddNode",
    "AvoidPrimaryRemovalPolicy",
    "RandomRemovalPolicy",
    "RemovalPolicy",
    "RemoveNode",
    "Scheduler",
    "Step",
    "build_removal_policy",
]
