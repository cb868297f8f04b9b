"""Core data models for the knowledge graph.

Uses Pydantic v2 for validation, ULID for sortable unique IDs.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, Field, model_validator
from ulid import ULID


def generate_id() -> str:
    """Generate a ULID (sortable, unique identifier)."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UTCDatetime = Annotated[datetime, AfterValidator(_as_utc)]
Score = Annotated[float, Field(ge=0.0, le=1.0)]


NodeType = Literal[
    "concept",      # ideas, approaches
    "task",         # unit of work
    "learning",     # things discovered
    "pattern",      # recurring solutions
    "improvement",  # proposed change to other nodes
    "workflow",     # a complete workflow
    "step",         # a step in a workflow
    "trigger",      # event that starts a workflow
    "condition",    # decision point
    "outcome",      # workflow result
]

RelationType = Literal[
    "related",
    "depends_on",
    "improves",
    "implements",
    "derives_from",
    "follows",   # temporal: A follows B
    "triggers",  # causal: A triggers B
    "blocks",
    "enables",
    "part_of",   # compositional: A is part of B
]

PatternType = Literal[
    "sequence",      # ordered steps in a workflow
    "parallel",      # steps that can run concurrently
    "choice",        # decision points
    "iteration",     # cycles
    "temporal",      # time-constrained nodes
    "dependency",    # resource/state dependencies
    "optimization",  # improvement opportunities
]

Severity = Literal["critical", "major", "minor"]
Trend = Literal["increasing", "decreasing", "stable"]


# ─────────────────────────────────────────────────────────────────────────────
# Nodes and relationships
# ─────────────────────────────────────────────────────────────────────────────


class Recurrence(BaseModel):
    """Recurring schedule attached to a time window."""

    frequency: Literal["daily", "weekly", "monthly", "custom"]
    interval: int = Field(default=1, ge=1)  # e.g. every 2 weeks
    custom_pattern: str | None = None  # cron expression for "custom"


class TimeWindow(BaseModel):
    """A span of time; open ends are unbounded."""

    start: UTCDatetime | None = None
    end: UTCDatetime | None = None
    duration: float | None = Field(default=None, ge=0.0)  # seconds
    recurring: Recurrence | None = None

    def bounds(self) -> tuple[float, float]:
        """Return (start, end) as POSIX timestamps, open ends as -inf/+inf."""
        start = self.start.timestamp() if self.start else float("-inf")
        end = self.end.timestamp() if self.end else float("inf")
        return start, end

    def overlaps(self, other: "TimeWindow") -> bool:
        """True if the two windows share at least one instant."""
        start, end = self.bounds()
        other_start, other_end = other.bounds()
        return start <= other_end and end >= other_start


class WorkflowInfo(BaseModel):
    """Workflow-specific content of a node."""

    time_window: TimeWindow | None = None
    estimated_duration: float | None = Field(default=None, ge=0.0)  # seconds
    required_resources: list[str] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)
    error_handling: list[str] = Field(default_factory=list)


class NodeContent(BaseModel):
    title: str = ""
    description: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    workflow: WorkflowInfo | None = None


class NodeMetadata(BaseModel):
    created: UTCDatetime = Field(default_factory=utc_now)
    updated: UTCDatetime = Field(default_factory=utc_now)
    version: int = Field(default=1, ge=1)
    confidence: Score = 0.5
    source: str = ""
    tags: list[str] = Field(default_factory=list)
    frequency: float | None = Field(default=None, ge=0.0)  # involvement in workflows
    importance: Score | None = None  # critical-path significance
    reliability: Score | None = None  # success rate


class RelationshipTemporal(BaseModel):
    order: int = 0  # position in sequence
    time_window: TimeWindow | None = None
    max_duration: float | None = Field(default=None, ge=0.0)
    dependencies: list[str] = Field(default_factory=list)  # node IDs that must complete first


class Relationship(BaseModel):
    """A directed, typed, weighted edge owned by its source node."""

    source_id: str
    target_id: str
    type: RelationType = "related"
    strength: Score = 0.5
    metadata: dict[str, Any] = Field(default_factory=dict)
    created: UTCDatetime = Field(default_factory=utc_now)
    updated: UTCDatetime = Field(default_factory=utc_now)
    temporal: RelationshipTemporal | None = None

    def other_end(self, node_id: str) -> str:
        """Return the node on the other end of this relationship."""
        return self.target_id if self.source_id == node_id else self.source_id

    def to_summary(self) -> dict:
        """Return a compact summary of this relationship."""
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "type": self.type,
            "strength": round(self.strength, 3),
        }


class KnowledgeNode(BaseModel):
    """A node in the knowledge graph.

    Relationships live only in their source node's list, so every entry
    must name this node as its source.
    """

    id: str = Field(default_factory=generate_id)
    type: NodeType = "concept"
    content: NodeContent = Field(default_factory=NodeContent)
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)
    relationships: list[Relationship] = Field(default_factory=list)
    vector: list[float] | None = None  # optional embedding

    @model_validator(mode="after")
    def _check_relationship_ownership(self) -> "KnowledgeNode":
        for rel in self.relationships:
            if rel.source_id != self.id:
                raise ValueError(
                    f"Relationship {rel.source_id} -> {rel.target_id} "
                    f"is not owned by node {self.id}"
                )
        return self

    @property
    def title(self) -> str:
        return self.content.title

    def to_summary(self) -> dict:
        """Return a compact summary of this node."""
        return {
            "id": self.id,
            "type": self.type,
            "title": self.content.title,
            "confidence": round(self.metadata.confidence, 3),
            "relationship_count": len(self.relationships),
            "updated": self.metadata.updated.isoformat(),
        }


# ─────────────────────────────────────────────────────────────────────────────
# Queries
# ─────────────────────────────────────────────────────────────────────────────


class DateRange(BaseModel):
    start: UTCDatetime
    end: UTCDatetime


class ConfidenceRange(BaseModel):
    min: float = 0.0
    max: float = 1.0


class QueryParams(BaseModel):
    """Filters applied conjunctively by GraphStore.query()."""

    type: list[NodeType] | None = None
    tags: list[str] | None = None
    date_range: DateRange | None = None
    confidence: ConfidenceRange | None = None
    relationship_type: RelationType | None = None
    pattern_type: PatternType | None = None
    time_window: TimeWindow | None = None
    limit: int | None = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)


# ─────────────────────────────────────────────────────────────────────────────
# Analysis output (derived, never persisted)
# ─────────────────────────────────────────────────────────────────────────────


class PatternTemporal(BaseModel):
    average_duration: float = 0.0
    variability: float = 0.0  # coefficient of variation of durations
    time_windows: list[TimeWindow] = Field(default_factory=list)


class PatternOptimization(BaseModel):
    potential_gain: float = 0.0
    risk_level: float = 0.0
    prerequisites: list[str] = Field(default_factory=list)


class Pattern(BaseModel):
    type: PatternType
    description: str
    confidence: float
    impact: float
    frequency: float = 0.0
    related_nodes: list[str] = Field(default_factory=list)
    temporal: PatternTemporal | None = None
    optimization: PatternOptimization | None = None


class InsightImpact(BaseModel):
    time_reduction: float = 0.0
    quality_improvement: float = 0.0
    resource_optimization: float = 0.0


class Insight(BaseModel):
    type: str
    description: str
    importance: float
    actionable: bool = True
    suggested_actions: list[str] = Field(default_factory=list)
    impact: InsightImpact | None = None


class MetricContext(BaseModel):
    historical: list[float] = Field(default_factory=list)
    benchmark: float | None = None
    goal: float | None = None


class Metric(BaseModel):
    name: str
    value: float
    trend: Trend = "stable"
    context: MetricContext | None = None


class Timeline(BaseModel):
    optimal: float = 0.0
    actual: float = 0.0
    variance: float = 0.0


class WorkflowAnalysis(BaseModel):
    efficiency: float
    bottlenecks: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    timeline: Timeline = Field(default_factory=Timeline)


class Analysis(BaseModel):
    patterns: list[Pattern] = Field(default_factory=list)
    insights: list[Insight] = Field(default_factory=list)
    metrics: list[Metric] = Field(default_factory=list)
    workflow_analysis: WorkflowAnalysis | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Validation and stats
# ─────────────────────────────────────────────────────────────────────────────


class ValidationIssue(BaseModel):
    """A structural break in the graph."""

    type: str  # "broken_relationship", "temporal_cycle"
    message: str
    node_id: str | None = None
    relationship_ids: list[str] = Field(default_factory=list)
    severity: Severity
    impact: list[str] = Field(default_factory=list)


class ValidationWarning(BaseModel):
    """A soft issue worth a look."""

    type: str  # "orphaned_node", "empty_workflow"
    message: str
    suggestion: str | None = None
    affected_nodes: list[str] = Field(default_factory=list)


class GraphValidation(BaseModel):
    is_valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationWarning] = Field(default_factory=list)


class CriticalPath(BaseModel):
    workflow_id: str
    path: list[str]
    frequency: float = 0.0


class WorkflowMetrics(BaseModel):
    average_duration: float = 0.0
    success_rate: float = 0.0
    bottlenecks: list[str] = Field(default_factory=list)
    critical_paths: list[CriticalPath] = Field(default_factory=list)


class GraphStats(BaseModel):
    total_nodes: int
    nodes_by_type: dict[str, int] = Field(default_factory=dict)
    total_relationships: int
    relationships_by_type: dict[str, int] = Field(default_factory=dict)
    average_confidence: float
    last_updated: UTCDatetime = Field(default_factory=utc_now)
    workflow_metrics: WorkflowMetrics = Field(default_factory=WorkflowMetrics)


# ─────────────────────────────────────────────────────────────────────────────
# Persistence and similarity
# ─────────────────────────────────────────────────────────────────────────────


class GraphSnapshot(BaseModel):
    """Point-in-time copy of the graph.

    Nodes carry no relationships; those are listed separately and
    re-attached to their source nodes on restore.
    """

    nodes: list[KnowledgeNode] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    taken_at: UTCDatetime = Field(default_factory=utc_now)


class RelationshipSuggestion(BaseModel):
    source_id: str
    target_id: str
    score: float
    type: RelationType = "related"


class NodeCluster(BaseModel):
    node_ids: list[str]
    centroid: list[float]
    cohesion: float
    average_similarity: float
