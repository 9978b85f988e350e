"""Data models for cluster state and topology."""

from pgcluster.models.cluster import (
    DEFAULT_NODE_COUNT,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_SUCCESS,
    STATUS_UNKNOWN,
    ClusterFeatures,
    ClusterRecreationData,
    ClusterState,
    PostgresCredentials,
    SchedulingInfo,
)
from pgcluster.models.node import PRIMARY, REPLICA, MemberHealth, Node

__all__ = [
    "DEFAULT_NODE_COUNT",
    "PRIMARY",
    "REPLICA",
    "STATUS_FAILED",
    "STATUS_IN_PROGRESS",
    "STATUS_SUCCESS",
    "STATUS_UNKNOWN",
    "ClusterFeatures",
    "ClusterRecreationData",
    "ClusterState",
    "MemberHealth",
    "Node",
    "PostgresCredentials",
    "SchedulingInfo",
]
