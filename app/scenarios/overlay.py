"""
Scenario Overlay Service - Computes a scenario's effective plan.

Key principle: scenarios NEVER modify baseline records. Each scenario holds
overlays (added / modified / removed) against what its parent sees, and the
effective plan is computed on read.

Resolution for one entity:
1. Walk the ancestor path from the scenario toward the baseline
2. The first scenario holding an overlay for the entity decides it:
   added/modified yields the overlay's record, removed yields nothing
3. With no overlay on the path, fall back to the baseline record
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.data.models import Project, ProjectAssignment, ProjectPhaseTimeline
from app.scenarios.models import (
    ChangeType,
    EntityType,
    Scenario,
    ScenarioAssignment,
    ScenarioPhaseTimeline,
    ScenarioProject,
)
from app.scenarios.registry import ScenarioRegistry
from app.scenarios.schemas import AssignmentRecord, PhaseTimelineRecord, ProjectRecord

logger = logging.getLogger(__name__)


Record = Union[AssignmentRecord, PhaseTimelineRecord, ProjectRecord]

OVERLAY_MODELS = {
    EntityType.ASSIGNMENT: ScenarioAssignment,
    EntityType.PHASE_TIMELINE: ScenarioPhaseTimeline,
    EntityType.PROJECT: ScenarioProject,
}

BASELINE_MODELS = {
    EntityType.ASSIGNMENT: ProjectAssignment,
    EntityType.PHASE_TIMELINE: ProjectPhaseTimeline,
    EntityType.PROJECT: Project,
}

RECORD_SCHEMAS = {
    EntityType.ASSIGNMENT: AssignmentRecord,
    EntityType.PHASE_TIMELINE: PhaseTimelineRecord,
    EntityType.PROJECT: ProjectRecord,
}

# Column naming the base record on each overlay table
BASE_REFERENCE_COLUMNS = {
    EntityType.ASSIGNMENT: "base_assignment_id",
    EntityType.PHASE_TIMELINE: "base_phase_timeline_id",
    EntityType.PROJECT: "project_id",
}

# Prefix for ids of entities created by added overlays
ENTITY_ID_PREFIXES = {
    EntityType.ASSIGNMENT: "asgn",
    EntityType.PHASE_TIMELINE: "phtl",
    EntityType.PROJECT: "proj",
}


def entity_type_of(record: Record) -> EntityType:
    return EntityType(record.entity_type)


def row_to_record(entity_type: EntityType, row) -> Record:
    """Read the user-editable fields off a baseline or overlay row."""
    schema = RECORD_SCHEMAS[entity_type]
    fields = {
        name: getattr(row, name)
        for name in schema.model_fields
        if name != "entity_type"
    }
    return schema(**fields)


def record_to_columns(record: Record) -> Dict:
    """Column values for writing a record onto a row."""
    return record.model_dump(exclude={"entity_type"})


@dataclass(frozen=True)
class OverlayChange:
    """The current change one scenario holds for one entity."""
    entity_type: EntityType
    entity_id: str
    change_type: ChangeType
    record: Optional[Record]  # None for removed
    scenario_id: str
    version: int

    @property
    def is_removal(self) -> bool:
        return self.change_type == ChangeType.REMOVED


@dataclass(frozen=True)
class EffectiveRecord:
    """One entity as a scenario sees it."""
    entity_type: EntityType
    entity_id: str
    record: Record
    origin_scenario_id: Optional[str] = None  # None = baseline record
    change_type: Optional[ChangeType] = None


def latest_changes(entity_type: EntityType, rows: Sequence) -> Dict[str, OverlayChange]:
    """Collapse an append-only overlay log to the newest change per entity."""
    newest: Dict[str, object] = {}
    for row in rows:
        current = newest.get(row.entity_id)
        if current is None or row.version > current.version:
            newest[row.entity_id] = row

    changes = {}
    for entity_id, row in newest.items():
        change_type = ChangeType(row.change_type)
        changes[entity_id] = OverlayChange(
            entity_type=entity_type,
            entity_id=entity_id,
            change_type=change_type,
            record=None if change_type == ChangeType.REMOVED else row_to_record(entity_type, row),
            scenario_id=row.scenario_id,
            version=row.version,
        )
    return changes


def resolve_effective_state(
    entity_type: EntityType,
    path_changes: List[Dict[str, OverlayChange]],
    baseline_records: Dict[str, Record],
) -> Dict[str, EffectiveRecord]:
    """
    Apply an overlay chain to baseline records.

    Args:
        path_changes: current changes per scenario, nearest scenario first,
            baseline excluded
        baseline_records: live baseline records keyed by id

    Returns:
        Effective records keyed by entity id, in id order
    """
    decided = set()
    effective: Dict[str, EffectiveRecord] = {}

    for changes in path_changes:
        for entity_id, change in changes.items():
            if entity_id in decided:
                continue
            decided.add(entity_id)
            if not change.is_removal:
                effective[entity_id] = EffectiveRecord(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    record=change.record,
                    origin_scenario_id=change.scenario_id,
                    change_type=change.change_type,
                )

    for entity_id, record in baseline_records.items():
        if entity_id not in decided:
            effective[entity_id] = EffectiveRecord(
                entity_type=entity_type,
                entity_id=entity_id,
                record=record,
            )

    return dict(sorted(effective.items()))


class EffectiveStateResolver:
    """
    Reads overlays and baseline records and computes effective plans.

    Pure read: never writes, never commits.
    """

    def __init__(self, db: AsyncSession, registry: Optional[ScenarioRegistry] = None):
        self.db = db
        self.registry = registry or ScenarioRegistry(db)

    async def resolve(self, scenario_id: str, entity_type: EntityType) -> Dict[str, EffectiveRecord]:
        """Effective records of one entity type for a scenario."""
        path = await self.registry.ancestor_path(scenario_id)
        return await self.resolve_path(path, entity_type)

    async def resolve_plan(self, scenario_id: str) -> Dict[EntityType, Dict[str, EffectiveRecord]]:
        """Effective records of every entity type for a scenario."""
        path = await self.registry.ancestor_path(scenario_id)
        return {
            entity_type: await self.resolve_path(path, entity_type)
            for entity_type in EntityType
        }

    async def resolve_entity(
        self,
        scenario_id: str,
        entity_type: EntityType,
        entity_id: str,
    ) -> Optional[EffectiveRecord]:
        """Effective record of a single entity, or None if it does not exist."""
        path = await self.registry.ancestor_path(scenario_id)
        state = await self.resolve_path(path, entity_type, entity_id=entity_id)
        return state.get(entity_id)

    async def resolve_path(
        self,
        path: List[Scenario],
        entity_type: EntityType,
        entity_id: Optional[str] = None,
    ) -> Dict[str, EffectiveRecord]:
        """Resolve along an already-built ancestor path."""
        overlay_path = [s for s in path if not s.is_baseline]
        rows = await self._overlay_rows(entity_type, [s.id for s in overlay_path], entity_id)

        by_scenario: Dict[str, List] = {s.id: [] for s in overlay_path}
        for row in rows:
            by_scenario[row.scenario_id].append(row)

        path_changes = [latest_changes(entity_type, by_scenario[s.id]) for s in overlay_path]
        baseline = await self.baseline_records(entity_type, entity_id)

        state = resolve_effective_state(entity_type, path_changes, baseline)
        logger.debug(
            f"Resolved {len(state)} {entity_type.value} records for scenario {path[0].id} "
            f"over {len(path)} levels"
        )
        return state

    async def baseline_records(
        self,
        entity_type: EntityType,
        entity_id: Optional[str] = None,
    ) -> Dict[str, Record]:
        """Live baseline records keyed by id."""
        model = BASELINE_MODELS[entity_type]
        query = select(model).where(model.removed_version.is_(None))
        if entity_id is not None:
            query = query.where(model.id == entity_id)
        result = await self.db.execute(query)
        return {row.id: row_to_record(entity_type, row) for row in result.scalars().all()}

    async def scenario_changes(
        self,
        scenario: Scenario,
        entity_type: EntityType,
        since_version: Optional[int] = None,
    ) -> Dict[str, OverlayChange]:
        """
        Changes a single scenario itself made, newest per entity.

        For the baseline these are writes to the baseline tables. With
        since_version, only changes stamped after that version are returned.
        """
        if scenario.is_baseline:
            return await self._baseline_changes(scenario, entity_type, since_version)

        rows = await self._overlay_rows(entity_type, [scenario.id])
        changes = latest_changes(entity_type, rows)
        if since_version is not None:
            changes = {k: v for k, v in changes.items() if v.version > since_version}
        return changes

    async def _baseline_changes(
        self,
        baseline: Scenario,
        entity_type: EntityType,
        since_version: Optional[int],
    ) -> Dict[str, OverlayChange]:
        model = BASELINE_MODELS[entity_type]
        query = select(model)
        if since_version is not None:
            query = query.where(model.version > since_version)
        result = await self.db.execute(query)

        changes = {}
        for row in result.scalars().all():
            if row.is_removed:
                change_type, record = ChangeType.REMOVED, None
            else:
                change_type, record = ChangeType.MODIFIED, row_to_record(entity_type, row)
            changes[row.id] = OverlayChange(
                entity_type=entity_type,
                entity_id=row.id,
                change_type=change_type,
                record=record,
                scenario_id=baseline.id,
                version=row.version,
            )
        return changes

    async def _overlay_rows(
        self,
        entity_type: EntityType,
        scenario_ids: List[str],
        entity_id: Optional[str] = None,
    ) -> List:
        if not scenario_ids:
            return []
        model = OVERLAY_MODELS[entity_type]
        query = select(model).where(model.scenario_id.in_(scenario_ids))
        if entity_id is not None:
            query = query.where(model.entity_id == entity_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())
