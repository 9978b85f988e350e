"""Aggregation of the health records published by node supervisors."""

import time
from collections.abc import Callable

from pydantic import ValidationError as PydanticValidationError

from pgcluster.exceptions import (
    KeyNotFoundError,
    NotFoundError,
    PgClusterError,
    PollTimeoutError,
    StatusError,
)
from pgcluster.kvstore import KVStore
from pgcluster.logging_config import get_logger
from pgcluster.models import MemberHealth
from pgcluster.models.node import normalize_role

logger = get_logger(__name__)

DEFAULT_WAIT_TIMEOUT = 120.0


def members_key(instance_id: str) -> str:
    return f"/service/{instance_id}/members"


class StatusAggregator:
    """Reads ``/service/<instance>/members/<node>`` records."""

    def __init__(self, store: KVStore):
        self.store = store

    def member_health(self, instance_id: str) -> dict[str, MemberHealth]:
        """Return the parsed health record of every member, keyed by node id.

        Raises:
            NotFoundError: If no member has published a record
            StatusError: If a record is not valid JSON
        """
        try:
            entries = self.store.children(members_key(instance_id))
        except KeyNotFoundError:
            raise NotFoundError(f"Member status missing for service instance {instance_id}")

        members = {}
        for entry in entries:
            if entry.is_dir:
                continue
            try:
                members[entry.name] = MemberHealth.model_validate_json(entry.value or "")
            except PydanticValidationError as e:
                logger.error(f"Corrupt member record {entry.key}: {e}")
                raise StatusError(
                    f"Member status corrupt for service instance {instance_id}", entry.key
                )
        return members

    def member_status(self, instance_id: str) -> tuple[str, bool]:
        """Summarize member states.

        Returns:
            Human readable summary and whether every member is running
        """
        members = self.member_health(instance_id)

        primary_status = ""
        replica_statuses = []
        all_running = True
        for name in sorted(members):
            member = members[name]
            if member.is_primary:
                primary_status = member.state
            else:
                replica_statuses.append(member.state)
            if not member.is_running:
                all_running = False

        if primary_status:
            summary = f"primary {primary_status}; replicas {', '.join(replica_statuses)}"
        else:
            summary = f"members {', '.join(replica_statuses)}"
        return summary, all_running

    def member_roles(self, instance_id: str) -> dict[str, str]:
        """Map node ids to ``primary``/``replica``; empty when nothing is published."""
        try:
            members = self.member_health(instance_id)
        except PgClusterError as e:
            logger.debug(f"No member roles for {instance_id}: {e.message}")
            return {}
        return {name: normalize_role(m.role) for name, m in members.items() if m.role}

    def wait_for_all_running(
        self,
        instance_id: str,
        timeout: float = DEFAULT_WAIT_TIMEOUT,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> str:
        """Poll until every member reports ``running``.

        Transient read errors are tolerated until the budget runs out.

        Returns:
            The final status summary

        Raises:
            PollTimeoutError: If the members do not all run within ``timeout``
        """
        logger.debug(f"Waiting up to {timeout}s for all members of {instance_id} to run")
        deadline = clock() + timeout
        last = "no status read yet"
        while True:
            try:
                summary, all_running = self.member_status(instance_id)
                last = summary
                if all_running:
                    logger.info(f"All members of {instance_id} running: {summary}")
                    return summary
            except PgClusterError as e:
                last = e.message

            if clock() >= deadline:
                break
            sleep(interval)

        logger.error(f"Members of {instance_id} not running after {timeout}s: {last}")
        raise PollTimeoutError(
            f"Timed out waiting for service instance {instance_id} to be running",
            f"Last status after {timeout}s: {last}",
        )
