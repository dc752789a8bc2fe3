"""
Scenario Comparison Engine.

Diffs the effective plans of two scenarios per entity type:
- added:    present in source, absent in target
- removed:  absent in source, present in target
- modified: present in both with different field values

Equality is by value of the user-editable fields, never by which overlay
produced the record. Impact metrics are signed as source minus target.
"""

import logging
from collections import defaultdict
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.scenarios.models import EntityType
from app.scenarios.overlay import EffectiveRecord, EffectiveStateResolver
from app.scenarios.registry import ScenarioRegistry, build_ancestor_path, find_common_ancestor
from app.scenarios.schemas import (
    ComparisonMetrics,
    EffectiveRecordResponse,
    EntityDiff,
    ModifiedRecord,
    ScenarioComparison,
    ScenarioDifferences,
    TimelineShift,
)

logger = logging.getLogger(__name__)

# Deltas smaller than this are treated as no change
_EPSILON = 1e-9


def _to_response(effective: EffectiveRecord) -> EffectiveRecordResponse:
    return EffectiveRecordResponse(
        entity_type=effective.entity_type,
        entity_id=effective.entity_id,
        record=effective.record,
        origin_scenario_id=effective.origin_scenario_id,
    )


def diff_states(
    source: Dict[str, EffectiveRecord],
    target: Dict[str, EffectiveRecord],
) -> EntityDiff:
    """Bucket two effective states of the same entity type."""
    diff = EntityDiff()

    for entity_id in sorted(set(source) | set(target)):
        in_source = source.get(entity_id)
        in_target = target.get(entity_id)

        if in_source and not in_target:
            diff.added.append(_to_response(in_source))
        elif in_target and not in_source:
            diff.removed.append(_to_response(in_target))
        elif in_source.record != in_target.record:
            diff.modified.append(ModifiedRecord(
                entity_id=entity_id,
                source=in_source.record,
                target=in_target.record,
            ))

    return diff


def compute_metrics(differences: ScenarioDifferences) -> ComparisonMetrics:
    """Roll signed deltas up per person, per role and per phase timeline."""
    by_person: Dict[str, float] = defaultdict(float)
    by_role: Dict[str, float] = defaultdict(float)

    def credit(record, sign: int):
        by_person[record.person_id] += sign * record.allocation_percentage
        by_role[record.role_id] += sign * record.allocation_percentage

    assignments = differences.assignments
    for item in assignments.added:
        credit(item.record, +1)
    for item in assignments.removed:
        credit(item.record, -1)
    for item in assignments.modified:
        credit(item.source, +1)
        credit(item.target, -1)

    timeline = {}
    for item in differences.phases.modified:
        timeline[item.entity_id] = TimelineShift(
            project_id=item.source.project_id,
            phase_id=item.source.phase_id,
            start_shift_days=(item.source.start_date - item.target.start_date).days,
            end_shift_days=(item.source.end_date - item.target.end_date).days,
        )

    projects = differences.projects
    return ComparisonMetrics(
        utilization_impact={k: round(v, 4) for k, v in sorted(by_person.items()) if abs(v) > _EPSILON},
        capacity_impact={k: round(v, 4) for k, v in sorted(by_role.items()) if abs(v) > _EPSILON},
        timeline_impact=timeline,
        projects_changed=len(projects.added) + len(projects.modified) + len(projects.removed),
    )


class ScenarioComparisonService:
    """Read-only comparison of two scenarios."""

    def __init__(self, db: AsyncSession, resolver: Optional[EffectiveStateResolver] = None):
        self.db = db
        self.resolver = resolver or EffectiveStateResolver(db)
        self.registry: ScenarioRegistry = self.resolver.registry

    async def compare(self, source_id: str, target_id: str) -> ScenarioComparison:
        """
        Compare the effective plans of two scenarios.

        Both scenarios must hang off the same baseline; archived scenarios
        may be compared.
        """
        index = await self.registry.load_index()
        source_path = build_ancestor_path(index, source_id)
        target_path = build_ancestor_path(index, target_id)
        find_common_ancestor(source_path, target_path)

        buckets = {}
        for entity_type in EntityType:
            source_state = await self.resolver.resolve_path(source_path, entity_type)
            target_state = await self.resolver.resolve_path(target_path, entity_type)
            buckets[entity_type] = diff_states(source_state, target_state)

        differences = ScenarioDifferences(
            assignments=buckets[EntityType.ASSIGNMENT],
            phases=buckets[EntityType.PHASE_TIMELINE],
            projects=buckets[EntityType.PROJECT],
        )
        logger.debug(
            f"Compared {source_id} against {target_id}: "
            + ", ".join(
                f"{t.value} +{len(d.added)}/~{len(d.modified)}/-{len(d.removed)}"
                for t, d in buckets.items()
            )
        )
        return ScenarioComparison(
            source_scenario_id=source_id,
            target_scenario_id=target_id,
            differences=differences,
            metrics=compute_metrics(differences),
        )
