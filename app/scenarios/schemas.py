"""Pydantic schemas for scenario planning."""
from pydantic import BaseModel, Field, TypeAdapter, model_validator
from typing import Annotated, Optional, List, Dict, Any, Literal, Union
from datetime import datetime, date

from app.scenarios.models import (
    ScenarioType,
    ScenarioStatus,
    EntityType,
    ChangeType,
    MergeStatus,
    ConflictType,
    ConflictResolution,
)


# ============================================================================
# PLAN RECORD SCHEMAS (tagged by entity_type)
# ============================================================================

class AssignmentRecord(BaseModel):
    """User-editable fields of a project assignment."""
    entity_type: Literal["assignment"] = "assignment"
    project_id: str
    person_id: str
    role_id: str
    phase_id: Optional[str] = None
    allocation_percentage: float = Field(..., gt=0, le=100)
    assignment_date_mode: Literal["project", "phase", "fixed"] = "project"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_dates(self):
        if self.assignment_date_mode == "fixed" and (self.start_date is None or self.end_date is None):
            raise ValueError("fixed assignments need both start_date and end_date")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class PhaseTimelineRecord(BaseModel):
    """User-editable fields of a project phase timeline."""
    entity_type: Literal["phase_timeline"] = "phase_timeline"
    project_id: str
    phase_id: str
    start_date: date
    end_date: date
    notes: Optional[str] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ProjectRecord(BaseModel):
    """User-editable project attributes."""
    entity_type: Literal["project"] = "project"
    name: str = Field(..., min_length=1, max_length=255)
    priority: Optional[int] = Field(None, ge=1)
    aspiration_start: Optional[date] = None
    aspiration_finish: Optional[date] = None
    notes: Optional[str] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_dates(self):
        if self.aspiration_start and self.aspiration_finish and self.aspiration_finish < self.aspiration_start:
            raise ValueError("aspiration_finish must not be before aspiration_start")
        return self


PlanRecord = Annotated[
    Union[AssignmentRecord, PhaseTimelineRecord, ProjectRecord],
    Field(discriminator="entity_type"),
]

plan_record_adapter = TypeAdapter(PlanRecord)


def parse_plan_record(data: Dict[str, Any]) -> Union[AssignmentRecord, PhaseTimelineRecord, ProjectRecord]:
    """Rebuild a typed record from a JSON snapshot."""
    return plan_record_adapter.validate_python(data)


# ============================================================================
# SCENARIO SCHEMAS
# ============================================================================

class ScenarioCreate(BaseModel):
    """Schema for creating the baseline or forking a scenario."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    parent_scenario_id: Optional[str] = None
    scenario_type: ScenarioType = ScenarioType.BRANCH
    created_by: Optional[str] = None


class ScenarioUpdate(BaseModel):
    """Schema for renaming or re-describing a scenario. Status moves through archive and merge."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class ScenarioResponse(BaseModel):
    """Schema for scenario response."""
    id: str
    name: str
    description: Optional[str]
    scenario_type: ScenarioType
    status: ScenarioStatus
    parent_scenario_id: Optional[str]
    version: int
    branch_point: Optional[int]
    created_by: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


# ============================================================================
# OVERLAY / EFFECTIVE STATE SCHEMAS
# ============================================================================

class OverlayUpsert(BaseModel):
    """Write path payload: add a new entity or modify an existing one."""
    base_id: Optional[str] = None  # Absent = added
    record: PlanRecord
    created_by: Optional[str] = None


class OverlayResponse(BaseModel):
    """A single overlay as written."""
    id: str
    scenario_id: str
    entity_type: EntityType
    entity_id: str
    change_type: ChangeType
    version: int
    record: Optional[PlanRecord] = None


class EffectiveRecordResponse(BaseModel):
    """One resolved entity as a scenario sees it."""
    entity_type: EntityType
    entity_id: str
    record: PlanRecord
    origin_scenario_id: Optional[str]  # None = baseline record

    model_config = {"from_attributes": True}


class ScenarioChangeResponse(BaseModel):
    """The current change a scenario itself holds for one entity."""
    scenario_id: str
    entity_type: EntityType
    entity_id: str
    change_type: ChangeType
    version: int
    record: Optional[PlanRecord] = None  # None for removed

    model_config = {"from_attributes": True}


# ============================================================================
# COMPARISON SCHEMAS
# ============================================================================

class ModifiedRecord(BaseModel):
    """An entity present on both sides with different values."""
    entity_id: str
    source: PlanRecord
    target: PlanRecord


class EntityDiff(BaseModel):
    """Added / modified / removed buckets for one entity type."""
    added: List[EffectiveRecordResponse] = Field(default_factory=list)
    modified: List[ModifiedRecord] = Field(default_factory=list)
    removed: List[EffectiveRecordResponse] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.removed)


class ScenarioDifferences(BaseModel):
    assignments: EntityDiff = Field(default_factory=EntityDiff)
    phases: EntityDiff = Field(default_factory=EntityDiff)
    projects: EntityDiff = Field(default_factory=EntityDiff)


class TimelineShift(BaseModel):
    """Signed day shift of a phase timeline (source minus target)."""
    project_id: str
    phase_id: str
    start_shift_days: int
    end_shift_days: int


class ComparisonMetrics(BaseModel):
    """Aggregate impact, signed as source minus target."""
    utilization_impact: Dict[str, float] = Field(default_factory=dict)  # person_id -> allocation % delta
    capacity_impact: Dict[str, float] = Field(default_factory=dict)     # role_id -> allocation % delta
    timeline_impact: Dict[str, TimelineShift] = Field(default_factory=dict)  # entity_id -> shift
    projects_changed: int = 0


class ScenarioComparison(BaseModel):
    """Result of comparing two scenarios."""
    source_scenario_id: str
    target_scenario_id: str
    differences: ScenarioDifferences
    metrics: ComparisonMetrics


# ============================================================================
# MERGE SCHEMAS
# ============================================================================

class MergeRequest(BaseModel):
    """Options for merging a scenario."""
    target_scenario_id: Optional[str] = None  # Defaults to the parent
    resolve_conflicts_as: ConflictResolution = ConflictResolution.MANUAL
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def _check_policy(self):
        if self.resolve_conflicts_as == ConflictResolution.PENDING:
            raise ValueError("resolve_conflicts_as must be manual, use_source or use_target")
        return self


class MergeConflictResponse(BaseModel):
    """Schema for merge conflict response."""
    id: str
    merge_id: str
    source_scenario_id: str
    target_scenario_id: str
    conflict_type: ConflictType
    entity_id: str
    source_data: Optional[Dict[str, Any]]
    target_data: Optional[Dict[str, Any]]
    resolution: ConflictResolution
    resolved_data: Optional[Dict[str, Any]]
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]

    model_config = {"from_attributes": True}


class ScenarioMergeResponse(BaseModel):
    """Schema for a merge attempt."""
    id: str
    source_scenario_id: str
    target_scenario_id: str
    common_ancestor_id: str
    status: MergeStatus
    resolve_conflicts_as: ConflictResolution
    changes_applied: int
    conflicts_detected: int
    created_by: Optional[str]
    completed_at: Optional[datetime]

    model_config = {"from_attributes": True}


class MergeResponse(BaseModel):
    """Merge outcome plus the conflicts it detected."""
    merge: ScenarioMergeResponse
    conflicts: List[MergeConflictResponse]


class ConflictResolveRequest(BaseModel):
    """Settle one merge conflict."""
    resolution: ConflictResolution
    resolved_data: Optional[PlanRecord] = None
    resolved_by: Optional[str] = None

    @model_validator(mode="after")
    def _check_resolution(self):
        if self.resolution == ConflictResolution.PENDING:
            raise ValueError("resolution must be use_source, use_target or manual")
        if self.resolution == ConflictResolution.MANUAL and self.resolved_data is None:
            raise ValueError("manual resolution requires resolved_data")
        return self
