"""Broker configuration loaded from YAML."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from pgcluster.exceptions import ConfigurationError
from pgcluster.logging_config import get_logger

logger = get_logger(__name__)

STORE_KINDS = ["memory", "etcd"]


class BackendConfig(BaseModel):
    """A provisioning target for cluster nodes."""

    guid: str
    availability_zone: str
    uri: str = ""
    username: str = ""
    password: str = ""

    @field_validator("guid", "availability_zone")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate identity fields are not empty."""
        if not v:
            raise ValueError("backend guid and availability_zone cannot be empty")
        return v


class RoutingConfig(BaseModel):
    """Public port range handed out to cluster instances."""

    port_range_start: int = 30000
    port_range_end: int = 30999

    @model_validator(mode="after")
    def validate_range(self) -> "RoutingConfig":
        """Validate the port range is well formed."""
        if not 1 <= self.port_range_start <= self.port_range_end <= 65535:
            raise ValueError(
                f"port range {self.port_range_start}-{self.port_range_end} is invalid; "
                "expected 1 <= start <= end <= 65535"
            )
        return self


class StoreConfig(BaseModel):
    """Shared key-value store connection settings."""

    kind: str = "etcd"
    endpoint: str = "http://127.0.0.1:2379"
    timeout: float = 5.0

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        """Validate the store kind is supported."""
        if v not in STORE_KINDS:
            raise ValueError(f"kind must be one of {STORE_KINDS}, got '{v}'")
        return v


class BackupConfig(BaseModel):
    """Where recreation data is backed up.

    Either a pair of callback commands or a local directory; neither means
    backups are disabled.
    """

    backup_command: str | None = None
    restore_command: str | None = None
    directory: str | None = None
    timeout: int = 30

    @model_validator(mode="after")
    def validate_commands(self) -> "BackupConfig":
        """Validate backup and restore commands are configured together."""
        if bool(self.backup_command) != bool(self.restore_command):
            raise ValueError("backup_command and restore_command must be set together")
        return self


class SchedulerConfig(BaseModel):
    """Scheduler tuning."""

    removal_policy: str = "avoid-primary"
    workers: int = 4

    @field_validator("removal_policy")
    @classmethod
    def validate_removal_policy(cls, v: str) -> str:
        """Validate the node removal policy name."""
        from pgcluster.scheduler.removal import REMOVAL_POLICIES

        if v not in REMOVAL_POLICIES:
            raise ValueError(
                f"removal_policy must be one of {sorted(REMOVAL_POLICIES)}, got '{v}'"
            )
        return v

    @field_validator("workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Validate the worker pool size is positive."""
        if v < 1:
            raise ValueError("workers must be at least 1")
        return v


class WaitConfig(BaseModel):
    """Budgets for bounded polling loops, in seconds."""

    member_running_timeout: float = 120.0
    routing_port_timeout: float = 10.0
    poll_interval: float = 1.0


class BrokerConfig(BaseModel):
    """Complete broker configuration."""

    backends: list[BackendConfig] = Field(default_factory=list)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    waits: WaitConfig = Field(default_factory=WaitConfig)

    @field_validator("backends")
    @classmethod
    def validate_unique_guids(cls, v: list[BackendConfig]) -> list[BackendConfig]:
        """Validate backend GUIDs are unique."""
        guids = [b.guid for b in v]
        duplicates = sorted({g for g in guids if guids.count(g) > 1})
        if duplicates:
            raise ValueError(f"duplicate backend guids: {', '.join(duplicates)}")
        return v

    @classmethod
    def load(cls, path: str | Path) -> "BrokerConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid
        """
        path = Path(path)
        logger.debug(f"Loading broker configuration from {path}")

        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                f"Expected location: {path.absolute()}",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse configuration file: {e}", str(path))

        try:
            return cls(**(data or {}))
        except PydanticValidationError as e:
            problems = "\n".join(
                f"  - {'.'.join(str(x) for x in error['loc'])}: {error['msg']}"
                for error in e.errors()
            )
            raise ConfigurationError(f"Invalid configuration in {path}", problems)
