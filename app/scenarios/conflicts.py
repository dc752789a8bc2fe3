"""
Merge Conflict Detector.

Given a merge of source into target:
1. Find the common ancestor (CA) of the two scenarios
2. Collect what each side changed since CA
3. Every source change the target side did not also make is clean;
   every entity both sides changed differently is a conflict

"Changed since CA" for one side means the overlays of every scenario on its
path strictly below CA, nearest scenario winning. When a side IS the CA, its
own writes stamped after the other side forked (version > branch_point of
the other side's child of CA) count instead.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.scenarios.models import CONFLICT_TYPE_BY_ENTITY, ConflictType, EntityType, Scenario
from app.scenarios.overlay import EffectiveStateResolver, OverlayChange, Record
from app.scenarios.registry import build_ancestor_path, find_common_ancestor


@dataclass(frozen=True)
class SideChange:
    """One side's net change to an entity since the common ancestor."""
    entity_type: EntityType
    entity_id: str
    record: Optional[Record]  # None = removed on this side
    scenario_id: str

    @property
    def is_removal(self) -> bool:
        return self.record is None

    def snapshot(self) -> Optional[Dict]:
        """JSON-safe copy of the effective record for conflict storage."""
        return None if self.record is None else self.record.model_dump(mode="json")


@dataclass(frozen=True)
class DetectedConflict:
    """Both sides changed the same entity and disagree."""
    source: SideChange
    target: SideChange

    @property
    def entity_type(self) -> EntityType:
        return self.source.entity_type

    @property
    def entity_id(self) -> str:
        return self.source.entity_id

    @property
    def conflict_type(self) -> ConflictType:
        return CONFLICT_TYPE_BY_ENTITY[self.entity_type]


@dataclass
class MergePlan:
    """What a merge would do, before anything is written."""
    source: Scenario
    target: Scenario
    common_ancestor: Scenario
    clean: List[SideChange] = field(default_factory=list)
    agreed: List[SideChange] = field(default_factory=list)
    conflicts: List[DetectedConflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


def changes_disagree(source: SideChange, target: SideChange) -> bool:
    """
    Two changes to one entity disagree unless both removed it or both
    left it with identical field values.
    """
    if source.is_removal and target.is_removal:
        return False
    if source.is_removal != target.is_removal:
        return True
    return source.record != target.record


def collapse_side(per_scenario: List[Dict[str, OverlayChange]]) -> Dict[str, SideChange]:
    """Net change per entity across a side's scenarios, nearest first."""
    side: Dict[str, SideChange] = {}
    for changes in per_scenario:
        for entity_id, change in changes.items():
            if entity_id in side:
                continue
            side[entity_id] = SideChange(
                entity_type=change.entity_type,
                entity_id=entity_id,
                record=change.record,
                scenario_id=change.scenario_id,
            )
    return side


def classify_changes(
    source_side: Dict[str, SideChange],
    target_side: Dict[str, SideChange],
    plan: MergePlan,
) -> None:
    """Sort source changes into clean / agreed / conflicting on the plan."""
    for entity_id in sorted(source_side):
        source_change = source_side[entity_id]
        target_change = target_side.get(entity_id)
        if target_change is None:
            plan.clean.append(source_change)
        elif changes_disagree(source_change, target_change):
            plan.conflicts.append(DetectedConflict(source=source_change, target=target_change))
        else:
            plan.agreed.append(source_change)


class ConflictDetector:
    """Builds a MergePlan for source -> target. Read-only."""

    def __init__(self, db: AsyncSession, resolver: Optional[EffectiveStateResolver] = None):
        self.db = db
        self.resolver = resolver or EffectiveStateResolver(db)
        self.registry = self.resolver.registry

    async def detect(self, source: Scenario, target: Scenario) -> MergePlan:
        index = await self.registry.load_index()
        source_path = build_ancestor_path(index, source.id)
        target_path = build_ancestor_path(index, target.id)
        common = find_common_ancestor(source_path, target_path)

        plan = MergePlan(source=source, target=target, common_ancestor=common)
        for entity_type in EntityType:
            source_side = await self._side_changes(source_path, target_path, common, entity_type)
            target_side = await self._side_changes(target_path, source_path, common, entity_type)
            classify_changes(source_side, target_side, plan)
        return plan

    async def _side_changes(
        self,
        path: List[Scenario],
        other_path: List[Scenario],
        common: Scenario,
        entity_type: EntityType,
    ) -> Dict[str, SideChange]:
        depth = [s.id for s in path].index(common.id)

        if depth > 0:
            per_scenario = [
                await self.resolver.scenario_changes(scenario, entity_type)
                for scenario in path[:depth]
            ]
            return collapse_side(per_scenario)

        # This side is the common ancestor: only writes after the other side forked
        other_depth = [s.id for s in other_path].index(common.id)
        forked_child = other_path[other_depth - 1]
        changes = await self.resolver.scenario_changes(
            common, entity_type, since_version=forked_child.branch_point or 0
        )
        return collapse_side([changes])
