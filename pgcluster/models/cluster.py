"""Data models for cluster state, scheduling progress and requested features."""

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from pgcluster.exceptions import ValidationError
from pgcluster.models.node import PRIMARY, Node

DEFAULT_NODE_COUNT = 2

STATUS_UNKNOWN = "unknown"
STATUS_IN_PROGRESS = "in-progress"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"

SCHEDULING_STATUSES = [STATUS_UNKNOWN, STATUS_IN_PROGRESS, STATUS_SUCCESS, STATUS_FAILED]


class PostgresCredentials(BaseModel):
    """Username/password pair for one PostgreSQL role."""

    username: str = ""
    password: str = ""


class SchedulingInfo(BaseModel):
    """Progress of the most recent scheduling run.

    Status only moves forward: unknown -> in-progress -> success | failed.
    A new run starts from a fresh instance.
    """

    status: str = STATUS_UNKNOWN
    steps: int = 0
    completed_steps: int = 0
    last_message: str = ""

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        """Validate status is a known scheduling status."""
        if v not in SCHEDULING_STATUSES:
            raise ValueError(f"status must be one of {SCHEDULING_STATUSES}, got '{v}'")
        return v

    @property
    def finished(self) -> bool:
        return self.status in (STATUS_SUCCESS, STATUS_FAILED)

    def begin(self, steps: int, message: str = "") -> None:
        if self.status != STATUS_UNKNOWN:
            raise ValueError(f"cannot start a run from status '{self.status}'")
        self.status = STATUS_IN_PROGRESS
        self.steps = steps
        self.completed_steps = 0
        self.last_message = message or f"scheduling {steps} step(s)"

    def planned(self, steps: int, message: str = "") -> None:
        """Record the step count of a run that began before it was planned."""
        if self.status != STATUS_IN_PROGRESS or self.completed_steps:
            raise ValueError(f"cannot plan steps while '{self.status}'")
        self.steps = steps
        self.last_message = message or f"scheduling {steps} step(s)"

    def step_completed(self, message: str = "") -> None:
        if self.status != STATUS_IN_PROGRESS:
            raise ValueError(f"cannot complete a step while '{self.status}'")
        if self.completed_steps >= self.steps:
            raise ValueError("all planned steps are already completed")
        self.completed_steps += 1
        if message:
            self.last_message = message

    def succeed(self, message: str = "") -> None:
        if self.status != STATUS_IN_PROGRESS:
            raise ValueError(f"cannot succeed from status '{self.status}'")
        self.status = STATUS_SUCCESS
        self.last_message = message or "cluster converged"

    def fail(self, message: str) -> None:
        if self.status != STATUS_IN_PROGRESS:
            raise ValueError(f"cannot fail from status '{self.status}'")
        self.status = STATUS_FAILED
        self.last_message = message


class ClusterRecreationData(BaseModel):
    """Identity subset of a cluster, sufficient to rebuild it from scratch."""

    instance_id: str
    service_id: str = ""
    plan_id: str = ""
    organization_guid: str = ""
    space_guid: str = ""
    admin_credentials: PostgresCredentials = Field(default_factory=PostgresCredentials)
    superuser_credentials: PostgresCredentials = Field(default_factory=PostgresCredentials)
    app_credentials: PostgresCredentials = Field(default_factory=PostgresCredentials)
    allocated_port: int = 0
    target_node_count: int = 0


class ClusterState(BaseModel):
    """Live state of one instance, persisted between scheduling runs."""

    instance_id: str
    service_id: str = ""
    plan_id: str = ""
    organization_guid: str = ""
    space_guid: str = ""
    admin_credentials: PostgresCredentials = Field(default_factory=PostgresCredentials)
    superuser_credentials: PostgresCredentials = Field(default_factory=PostgresCredentials)
    app_credentials: PostgresCredentials = Field(default_factory=PostgresCredentials)
    allocated_port: int = 0
    target_node_count: int = 0
    nodes: list[Node] = Field(default_factory=list)
    scheduling_info: SchedulingInfo = Field(default_factory=SchedulingInfo)
    service_instance_name: str | None = None

    @field_validator("instance_id")
    @classmethod
    def validate_instance_id(cls, v: str) -> str:
        """Validate instance_id is not empty."""
        if not v:
            raise ValueError("instance_id cannot be empty")
        if "/" in v:
            raise ValueError("instance_id cannot contain '/'")
        return v

    def node_count(self) -> int:
        return len(self.nodes)

    def add_node(self, node: Node) -> None:
        self.nodes.append(node)

    def remove_node(self, node: Node) -> None:
        self.nodes = [n for n in self.nodes if n.id != node.id]

    def primary_node(self) -> Node | None:
        return next((n for n in self.nodes if n.role == PRIMARY), None)

    def recreation_data(self) -> ClusterRecreationData:
        """Extract the identity fields that a backup must preserve."""
        return ClusterRecreationData(
            instance_id=self.instance_id,
            service_id=self.service_id,
            plan_id=self.plan_id,
            organization_guid=self.organization_guid,
            space_guid=self.space_guid,
            admin_credentials=self.admin_credentials.model_copy(),
            superuser_credentials=self.superuser_credentials.model_copy(),
            app_credentials=self.app_credentials.model_copy(),
            allocated_port=self.allocated_port,
            target_node_count=self.target_node_count,
        )

    @classmethod
    def from_recreation_data(cls, data: ClusterRecreationData) -> "ClusterState":
        """Build a zero-node cluster carrying the backed-up identity."""
        return cls(**data.model_dump())


class ClusterFeatures(BaseModel):
    """Requested topology for a cluster. Input only, never persisted."""

    node_count: int = DEFAULT_NODE_COUNT
    cell_guids: list[str] = Field(default_factory=list)

    @field_validator("node_count", mode="before")
    @classmethod
    def default_node_count(cls, v):
        """Treat an unset node count as the default."""
        if v is None or v == "":
            return DEFAULT_NODE_COUNT
        return v

    @field_validator("node_count")
    @classmethod
    def validate_node_count(cls, v: int) -> int:
        """Validate node_count is not negative; zero means the default."""
        if v < 0:
            raise ValueError(f"node-count ({v}) must be a positive number")
        if v == 0:
            return DEFAULT_NODE_COUNT
        return v

    @classmethod
    def from_parameters(cls, params: dict | None) -> "ClusterFeatures":
        """Parse raw broker request parameters (``node-count``, ``cells``).

        Raises:
            ValidationError: If the parameters are malformed
        """
        params = params or {}
        node_count = params.get("node-count", params.get("node_count"))
        cells = params.get("cells", params.get("cell_guids")) or []
        if isinstance(cells, str):
            cells = [c.strip() for c in cells.split(",") if c.strip()]

        try:
            return cls(node_count=node_count, cell_guids=cells)
        except PydanticValidationError as e:
            messages = "; ".join(error["msg"] for error in e.errors())
            raise ValidationError("Invalid cluster features", messages)
