"""Pydantic schemas for the workflow graph and API request/response models.

This module defines the domain records (steps, gaps, decompositions, health
metrics), the schema-validation gate applied to model output, and all data
models used by the HTTP API. All models use Pydantic v2.

JSON payloads use camelCase field names (``automationScore``, ``stepIds``),
matching what the language model is asked to emit; snake_case names are
accepted as well.
"""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


class Layer(StrEnum):
    """Kind of work a step represents."""

    CELL = "cell"
    ORCHESTRATION = "orchestration"
    MEMORY = "memory"
    HUMAN = "human"
    INTEGRATION = "integration"


class GapType(StrEnum):
    """Deficiency categories a gap can describe."""

    BOTTLENECK = "bottleneck"
    CONTEXT_LOSS = "context_loss"
    SINGLE_DEPENDENCY = "single_dependency"
    MANUAL_OVERHEAD = "manual_overhead"
    MISSING_FEEDBACK = "missing_feedback"
    MISSING_FALLBACK = "missing_fallback"
    SCOPE_AMBIGUITY = "scope_ambiguity"


# Gap types that may describe the workflow as a whole with no step attached.
SYSTEM_LEVEL_GAP_TYPES: frozenset[GapType] = frozenset(
    {GapType.MISSING_FEEDBACK, GapType.SCOPE_AMBIGUITY}
)


class Severity(StrEnum):
    """Gap severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EffortLevel(StrEnum):
    """Rough effort needed to close a gap."""

    QUICK_WIN = "quick_win"
    INCREMENTAL = "incremental"
    STRATEGIC = "strategic"


# =============================================================================
# Graph records
# =============================================================================


class Step(CamelModel):
    """A node in the process graph.

    ``dependencies`` lists the ids of prerequisite steps. The automation score
    is accepted as any finite number here; the repair pipeline clamps and
    rounds it. NaN and infinities fail validation.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    id: str = Field(description="Identifier, unique within a decomposition")
    name: str = Field(description="Display name")
    description: str = Field(description="Free-text description of the work")
    owner: str | None = Field(default=None, description="Person or role owning the step")
    layer: Layer = Field(description="Kind of work")
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    automation_score: int | float = Field(description="Automation affinity, 0-100")
    dependencies: list[str] = Field(
        default_factory=list,
        description="Ids of prerequisite steps",
    )


class Gap(CamelModel):
    """A deficiency annotation over zero or more steps."""

    model_config = ConfigDict(frozen=True)

    type: GapType
    severity: Severity
    step_ids: list[str] = Field(default_factory=list)
    description: str
    suggestion: str
    time_waste: str | None = Field(
        default=None,
        description="Estimated time lost, free text",
        examples=["~4 hours/week"],
    )
    effort_level: EffortLevel | None = None
    impacted_roles: list[str] = Field(default_factory=list)


class RawDecomposition(CamelModel):
    """Schema-validation gate for the model's decomposition output.

    Passing this gate means the payload is well-typed; it may still contain
    duplicate ids, dangling references, self-loops and cycles.
    """

    title: str
    steps: list[Step]
    gaps: list[Gap] = Field(default_factory=list)


class HealthConfidence(CamelModel):
    """How much the health scores can be trusted."""

    model_config = ConfigDict(frozen=True)

    level: Literal["high", "inferred"]
    reason: str


class HealthMetrics(CamelModel):
    """Calibrated 0-100 health scores for a decomposition."""

    model_config = ConfigDict(frozen=True)

    complexity: int = Field(ge=0, le=100)
    fragility: int = Field(ge=0, le=100)
    automation_potential: int = Field(ge=0, le=100)
    team_load_balance: int = Field(ge=0, le=100)
    team_size: int | None = Field(default=None, ge=0)
    confidence: HealthConfidence


class Decomposition(CamelModel):
    """A repaired, scored workflow graph. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    steps: list[Step]
    gaps: list[Gap]
    health: HealthMetrics
    parent_id: str | None = Field(
        default=None,
        description="Decomposition this one re-analyzes, if any",
    )


# =============================================================================
# Decompose request / result
# =============================================================================


class StageInput(CamelModel):
    """One user-supplied stage of a structured workflow description."""

    name: str = Field(max_length=500)
    owner: str | None = Field(default=None, max_length=200)
    tools: str | None = Field(default=None, max_length=500)
    inputs: str | None = Field(default=None, max_length=500)
    outputs: str | None = Field(default=None, max_length=500)


class CostContext(CamelModel):
    """Team and cost parameters supplied alongside a description.

    Only ``team_size`` influences the analysis; the rest feeds downstream
    cost estimates.
    """

    team_size: int | None = Field(default=None, ge=1, le=10000)
    hourly_rate: float | None = Field(default=None, ge=0, le=10000)
    hours_per_step: float | None = Field(default=None, ge=0, le=1000)
    team_context: str | None = Field(default=None, max_length=200)


class DecomposeRequest(CamelModel):
    """Request body for decomposing a workflow description."""

    description: str = Field(
        min_length=1,
        max_length=15000,
        description="Free-text or semi-structured process description",
        examples=["Support tickets arrive by email, an agent triages them..."],
    )
    stages: list[StageInput] | None = Field(default=None, max_length=20)
    context: str | None = Field(default=None, max_length=5000)
    parent_id: str | None = Field(
        default=None,
        description="Workflow id this request re-analyzes",
    )
    skip_cache: bool = False
    cost_context: CostContext | None = None

    @property
    def team_size(self) -> int | None:
        """Team size from the cost context, if provided."""
        return self.cost_context.team_size if self.cost_context else None


class DecomposeMetadata(CamelModel):
    """Generation metadata recorded with every decomposition."""

    prompt_version: str
    model_used: str
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    latency_ms: int = Field(default=0, ge=0)
    cache_hit: bool = False


class DecomposeResult(CamelModel):
    """Response for a decompose request."""

    decomposition: Decomposition
    metadata: DecomposeMetadata


class CacheEntry(CamelModel):
    """A cached analysis keyed by its request fingerprint."""

    hash: str
    decomposition: Decomposition
    metadata: DecomposeMetadata
    cached_at: str = Field(description="ISO-8601 timestamp")
    hit_count: int = Field(default=0, ge=0)


class Workflow(CamelModel):
    """A persisted decomposition with its originating description."""

    id: str
    decomposition: Decomposition
    description: str
    created_at: str
    updated_at: str
    parent_id: str | None = None
    version: int = Field(default=1, ge=1)
    cost_context: CostContext | None = None


# =============================================================================
# Share links
# =============================================================================


class ShareLink(CamelModel):
    """Read-only public link to one workflow."""

    token: str
    workflow_id: str
    label: str | None = None
    created_at: str
    expires_at: str | None = Field(
        default=None,
        description="ISO-8601 expiry; None never expires",
    )
    access_count: int = Field(default=0, ge=0)
    last_accessed_at: str | None = None
    permissions: Literal["readonly"] = "readonly"


class CreateShareRequest(CamelModel):
    """Request body for creating a share link."""

    workflow_id: str = Field(min_length=1)
    label: str | None = Field(default=None, max_length=200)
    expires_in_days: int | None = Field(default=None, ge=1, le=365)


class ShareLinkResponse(ShareLink):
    """A created share link with its public path."""

    url: str


class ShareListResponse(CamelModel):
    shares: list[ShareLink]


class SharedWorkflow(CamelModel):
    """The public view of a workflow: no description, cost or lineage."""

    id: str
    decomposition: Decomposition
    created_at: str
    updated_at: str
    version: int


class ShareInfo(CamelModel):
    label: str | None = None
    expires_at: str | None = None


class SharedWorkflowResponse(CamelModel):
    """Response for resolving a share token."""

    workflow: SharedWorkflow
    share: ShareInfo


# =============================================================================
# Layout
# =============================================================================


class LayoutNode(CamelModel):
    """Position and display flags for one step."""

    id: str
    x: float
    y: float
    depth: int = Field(ge=0)
    order: int = Field(ge=0, description="Index within the depth row")
    critical: bool = False
    dimmed: bool = False


class LayoutEdge(CamelModel):
    """Display flags for one dependency edge (source is the prerequisite)."""

    id: str
    source: str
    target: str
    critical: bool = False
    dimmed: bool = False


class GraphLayout(CamelModel):
    """Layered drawing of a step graph."""

    nodes: list[LayoutNode] = Field(default_factory=list)
    edges: list[LayoutEdge] = Field(default_factory=list)
    critical_path: list[str] = Field(
        default_factory=list,
        description="Step ids from root to terminus of the longest chain",
    )
    horizontal_spacing: int = 0
    vertical_spacing: int = 0


class LayoutRequest(CamelModel):
    """Request body for laying out an ad-hoc step list."""

    steps: list[Step]
    hovered_step_id: str | None = None


# =============================================================================
# Compare
# =============================================================================


class StepChange(CamelModel):
    """A step present in both decompositions with differing fields."""

    step: Step
    before_step: Step
    changes: list[str]


class HealthDelta(CamelModel):
    """Per-metric difference, after minus before."""

    complexity: int
    fragility: int
    automation_potential: int
    team_load_balance: int


class CompareRequest(CamelModel):
    """Request body for comparing two decompositions."""

    before: Decomposition
    after: Decomposition


class CompareResult(CamelModel):
    """Structural and health differences between two decompositions."""

    added: list[Step]
    removed: list[Step]
    modified: list[StepChange]
    unchanged: list[Step]
    gaps_resolved: list[Gap]
    gaps_new: list[Gap]
    gaps_persistent: list[Gap]
    health_delta: HealthDelta
    health_before: HealthMetrics
    health_after: HealthMetrics
    summary: str


# =============================================================================
# Service
# =============================================================================


class LLMMetrics(CamelModel):
    """Token and latency metrics for a single LLM call."""

    model: str = Field(
        description="Model identifier used",
        examples=["anthropic/claude-sonnet-4-20250514"],
    )
    input_tokens: int = Field(ge=0, description="Number of input tokens")
    output_tokens: int = Field(ge=0, description="Number of output tokens")
    latency_ms: int = Field(ge=0, description="Latency in milliseconds")


class HealthResponse(BaseModel):
    """Health check response with infrastructure status."""

    status: Literal["healthy", "unhealthy"] = Field(
        description="Overall health status",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    storage_backend: Literal["sqlite", "memory", "none"] = Field(
        default="none",
        description="Key/value backend serving the cache and workflow store",
    )
