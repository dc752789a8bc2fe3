"""Scenario Planning Models - branching, overlays and merges."""
from sqlalchemy import Column, String, DateTime, Date, Float, Integer, Text, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declared_attr, relationship
from sqlalchemy.sql import func
import enum

from app.database import Base
from app.data.models import generate_id


# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ScenarioType(str, enum.Enum):
    """Where a scenario sits in the hierarchy."""
    BASELINE = "baseline"  # The accepted plan, no parent
    BRANCH = "branch"      # Forked to explore changes
    SANDBOX = "sandbox"    # Disposable experiment


class ScenarioStatus(str, enum.Enum):
    """Scenario lifecycle status."""
    ACTIVE = "active"
    ARCHIVED = "archived"  # Soft-deleted, read-only
    MERGED = "merged"      # Folded into another scenario


class EntityType(str, enum.Enum):
    """Plan entities that scenarios can overlay."""
    ASSIGNMENT = "assignment"
    PHASE_TIMELINE = "phase_timeline"
    PROJECT = "project"


class ChangeType(str, enum.Enum):
    """What an overlay does to its base entity."""
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class MergeStatus(str, enum.Enum):
    """Merge attempt state machine."""
    INITIATED = "initiated"
    CONFLICTS_DETECTED = "conflicts_detected"
    COMPLETED = "completed"
    SUPERSEDED = "superseded"  # A newer attempt for the same pair replaced it


class ConflictType(str, enum.Enum):
    """Conflict categories, one per entity type."""
    ASSIGNMENT = "assignment"
    PHASE_TIMELINE = "phase_timeline"
    PROJECT_DETAILS = "project_details"


class ConflictResolution(str, enum.Enum):
    """How a merge conflict was (or will be) settled."""
    USE_SOURCE = "use_source"
    USE_TARGET = "use_target"
    MANUAL = "manual"
    PENDING = "pending"


CONFLICT_TYPE_BY_ENTITY = {
    EntityType.ASSIGNMENT: ConflictType.ASSIGNMENT,
    EntityType.PHASE_TIMELINE: ConflictType.PHASE_TIMELINE,
    EntityType.PROJECT: ConflictType.PROJECT_DETAILS,
}
ENTITY_BY_CONFLICT_TYPE = {v: k for k, v in CONFLICT_TYPE_BY_ENTITY.items()}


class Scenario(Base):
    """A plan in the scenario hierarchy.

    The baseline is the only scenario without a parent. Every other scenario
    reaches it by following parent_scenario_id.
    """
    __tablename__ = "scenarios"

    id = Column(String, primary_key=True, default=lambda: generate_id("scn"))

    name = Column(String, nullable=False)
    description = Column(String)
    scenario_type = Column(String, nullable=False, default=ScenarioType.BRANCH.value)
    status = Column(String, nullable=False, default=ScenarioStatus.ACTIVE.value)

    parent_scenario_id = Column(String, ForeignKey("scenarios.id"), nullable=True, index=True)

    # Write counter; every overlay (or baseline record) write bumps it
    version = Column(Integer, nullable=False, default=0)
    # Parent's version at fork time
    branch_point = Column(Integer, nullable=True)

    created_by = Column(String)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    parent_scenario = relationship("Scenario", remote_side=[id], backref="child_scenarios")

    @property
    def is_baseline(self) -> bool:
        return self.parent_scenario_id is None


class OverlayMixin:
    """Columns shared by the three overlay tables.

    entity_id is the logical entity key: the base record id for modified and
    removed overlays, a fresh id for added ones. Rows are append-only; the
    highest version per (scenario_id, entity_id) is the current change.
    """

    id = Column(String, primary_key=True, default=lambda: generate_id("ovl"))

    @declared_attr
    def scenario_id(cls):
        return Column(String, ForeignKey("scenarios.id"), nullable=False, index=True)

    entity_id = Column(String, nullable=False, index=True)
    change_type = Column(String, nullable=False)
    version = Column(Integer, nullable=False)

    created_by = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @declared_attr
    def __table_args__(cls):
        return (UniqueConstraint("scenario_id", "entity_id", "version", name=f"uq_{cls.__tablename__}_entity_version"),)


class ScenarioAssignment(OverlayMixin, Base):
    """Scenario-scoped change to a project assignment."""
    __tablename__ = "scenario_project_assignments"

    base_assignment_id = Column(String, nullable=True)

    project_id = Column(String)
    person_id = Column(String)
    role_id = Column(String)
    phase_id = Column(String)
    allocation_percentage = Column(Float)
    assignment_date_mode = Column(String)
    start_date = Column(Date)
    end_date = Column(Date)
    notes = Column(Text)


class ScenarioPhaseTimeline(OverlayMixin, Base):
    """Scenario-scoped change to a phase timeline."""
    __tablename__ = "scenario_project_phases"

    base_phase_timeline_id = Column(String, nullable=True)

    project_id = Column(String)
    phase_id = Column(String)
    start_date = Column(Date)
    end_date = Column(Date)
    notes = Column(Text)


class ScenarioProject(OverlayMixin, Base):
    """Scenario-scoped change to project attributes.

    The base reference is the project id itself, so project_id is always set
    (equal to entity_id).
    """
    __tablename__ = "scenario_projects"

    project_id = Column(String, nullable=False)

    name = Column(String)
    priority = Column(Integer)
    aspiration_start = Column(Date)
    aspiration_finish = Column(Date)
    notes = Column(Text)


class ScenarioMerge(Base):
    """One attempt to merge a source scenario into a target scenario."""
    __tablename__ = "scenario_merges"

    id = Column(String, primary_key=True, default=lambda: generate_id("merge"))
    source_scenario_id = Column(String, ForeignKey("scenarios.id"), nullable=False, index=True)
    target_scenario_id = Column(String, ForeignKey("scenarios.id"), nullable=False, index=True)
    common_ancestor_id = Column(String, ForeignKey("scenarios.id"), nullable=False)

    status = Column(String, nullable=False, default=MergeStatus.INITIATED.value)
    resolve_conflicts_as = Column(String, nullable=False, default=ConflictResolution.MANUAL.value)

    changes_applied = Column(Integer, nullable=False, default=0)
    conflicts_detected = Column(Integer, nullable=False, default=0)

    created_by = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True))

    conflicts = relationship("MergeConflict", back_populates="merge", cascade="all, delete-orphan")


class MergeConflict(Base):
    """Both sides of a merge changed the same base entity differently."""
    __tablename__ = "scenario_merge_conflicts"

    id = Column(String, primary_key=True, default=lambda: generate_id("mcfl"))
    merge_id = Column(String, ForeignKey("scenario_merges.id"), nullable=False, index=True)
    source_scenario_id = Column(String, ForeignKey("scenarios.id"), nullable=False, index=True)
    target_scenario_id = Column(String, ForeignKey("scenarios.id"), nullable=False, index=True)

    conflict_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)

    # Effective-record snapshots; null where that side removed the entity
    source_data = Column(JSONType, nullable=True)
    target_data = Column(JSONType, nullable=True)

    resolution = Column(String, nullable=False, default=ConflictResolution.PENDING.value)
    resolved_data = Column(JSONType, nullable=True)
    resolved_by = Column(String)
    resolved_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    merge = relationship("ScenarioMerge", back_populates="conflicts")

    @property
    def is_pending(self) -> bool:
        return self.resolution == ConflictResolution.PENDING.value
