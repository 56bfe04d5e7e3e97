"""Pydantic models for dependency-graph queries and reports."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from taskgraph.core.config import Settings


class CamelModel(BaseModel):
    """Base for models serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# THRESHOLDS
# =============================================================================


class GraphThresholds(BaseModel):
    """Heuristic constants for critical-path and impact analysis.

    The defaults carry no derivation; they are plain tuning knobs.
    """

    model_config = ConfigDict(frozen=True)

    priority_weights: dict[str, int] = Field(
        default_factory=lambda: {"high": 3, "medium": 2, "low": 1},
        description="Critical-path weight per priority (unlisted -> 1)",
    )
    critical_effort: int = Field(default=4, ge=1)
    critical_dependents: int = Field(default=3, ge=1)
    critical_total_impact: int = Field(default=5, ge=1)
    bottleneck_dependents: int = Field(default=3, ge=1)
    max_dependencies_warning: int = Field(default=10, ge=1)
    long_chain: int = Field(default=5, ge=2)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GraphThresholds":
        """Build thresholds from engine settings."""
        return cls(
            critical_effort=settings.critical_effort_threshold,
            critical_dependents=settings.critical_dependents_threshold,
            critical_total_impact=settings.critical_total_impact_threshold,
            bottleneck_dependents=settings.bottleneck_threshold,
            max_dependencies_warning=settings.max_dependencies_warning,
        )

    def weight(self, priority: str) -> int:
        """Priority weight, 1 for anything unlisted."""
        return self.priority_weights.get(priority, 1)


# =============================================================================
# QUERY RESULTS
# =============================================================================


class TaskRef(CamelModel):
    """Display view of a neighbouring task."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    status: str
    missing: bool = False


class ImpactAnalysis(CamelModel):
    """Blast radius of one task."""

    direct_dependencies: int = 0
    direct_dependents: int = 0
    total_impact: int = 0
    impact_score: int = 0
    is_critical: bool = False


class TaskImpact(CamelModel):
    """Single-task impact view with the affected ids."""

    task_id: str
    impact: ImpactAnalysis
    affected_tasks: list[str] = Field(default_factory=list)
    # Membership in the longest dependency chain, not the heuristic ranking.
    on_critical_path: bool = False
    risk_level: Literal["low", "medium", "high", "critical"] = "low"


class DependencyEdge(CamelModel):
    """Edge from a dependency to the task that needs it."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    type: str = "dependency"


class RedundantDependency(CamelModel):
    """A direct dependency that is also reachable through another one."""

    task_id: str
    dependency_id: str
    path: list[str]


class ValidationIssue(CamelModel):
    """One finding from dependency validation."""

    type: str
    severity: Literal["critical", "warning", "info"]
    message: str
    affected_tasks: list[str] = Field(default_factory=list)
    suggestion: str | None = None


class DependencyValidationResult(CamelModel):
    """Outcome of a full dependency scan."""

    tag: str
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    cycles: list[list[str]] = Field(default_factory=list)
    total_tasks: int = 0
    total_dependencies: int = 0

    @property
    def is_valid(self) -> bool:
        """True if no errors were found."""
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, including the validity flag."""
        data = super().to_dict()
        data["isValid"] = self.is_valid
        return data
