"""
Scenario Merge Service - Folds one scenario's changes into another.

This is the ONLY place one scenario's changes reach another scenario (or the
baseline records). Everything else only reads.

Architecture:
1. Check preconditions (source != target, source is not the baseline,
   both sides active)
2. Detect clean changes and conflicts against the common ancestor
3. Supersede earlier attempts for the same pair still waiting on conflicts
4. Write clean changes onto the target
5. Persist conflicts as pending (or settle them at once under a
   use_source / use_target policy)
6. Complete the attempt and mark the source merged once nothing is pending

A merge is one transaction: it commits whole or rolls back whole.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.scenarios.conflicts import ConflictDetector, SideChange
from app.scenarios.exceptions import (
    ConflictAlreadyResolvedError,
    ConflictNotFoundError,
    InvalidMergeError,
    ScenarioStructureError,
    ScenarioValidationError,
)
from app.scenarios.locks import scenario_locks
from app.scenarios.models import (
    ENTITY_BY_CONFLICT_TYPE,
    ConflictResolution,
    ConflictType,
    EntityType,
    MergeConflict,
    MergeStatus,
    Scenario,
    ScenarioMerge,
    ScenarioStatus,
)
from app.scenarios.overlay import EffectiveStateResolver, Record, entity_type_of
from app.scenarios.registry import ensure_writable
from app.scenarios.schemas import parse_plan_record
from app.scenarios.writer import OverlayWriter

logger = logging.getLogger(__name__)

SYSTEM_RESOLVER = "system"


def check_merge_preconditions(source: Scenario, target: Scenario) -> None:
    """Reject merges that can never be valid."""
    if source.id == target.id:
        raise InvalidMergeError(f"Cannot merge scenario '{source.id}' into itself")
    if source.is_baseline:
        raise InvalidMergeError("The baseline scenario cannot be merged into another scenario")
    ensure_writable(source, action="merge")
    ensure_writable(target, action="merge into")


class ScenarioMergeService:
    """
    Service for merging scenarios and settling merge conflicts.

    Key principles:
    - Writes to a target are serialized with every other write to it
    - Conflicting entities are never written until someone settles them
    - Re-running a merge compares against current state, never a stale one
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.resolver = EffectiveStateResolver(db)
        self.registry = self.resolver.registry
        self.detector = ConflictDetector(db, resolver=self.resolver)
        self.writer = OverlayWriter(db, resolver=self.resolver)

    # =========================================================================
    # Merge
    # =========================================================================

    async def merge(
        self,
        source_id: str,
        target_id: Optional[str] = None,
        resolve_conflicts_as: ConflictResolution = ConflictResolution.MANUAL,
        created_by: Optional[str] = None,
    ) -> Tuple[ScenarioMerge, List[MergeConflict]]:
        """
        Merge source into target (default: the source's parent).

        Returns:
            The merge attempt and every conflict it detected. Under the
            manual policy these are left pending.
        """
        if resolve_conflicts_as == ConflictResolution.PENDING:
            raise InvalidMergeError("resolve_conflicts_as must be manual, use_source or use_target")

        source = await self.registry.get(source_id)
        if target_id is None:
            if source.is_baseline:
                raise InvalidMergeError("The baseline scenario has no parent to merge into")
            target_id = source.parent_scenario_id

        async with scenario_locks.hold_many(source_id, target_id):
            try:
                source = await self.registry.get(source_id, for_update=True)
                target = await self.registry.get(target_id, for_update=True)
                check_merge_preconditions(source, target)

                plan = await self.detector.detect(source, target)
                superseded = await self._supersede_pending(source.id, target.id)

                merge = ScenarioMerge(
                    source_scenario_id=source.id,
                    target_scenario_id=target.id,
                    common_ancestor_id=plan.common_ancestor.id,
                    status=MergeStatus.INITIATED.value,
                    resolve_conflicts_as=resolve_conflicts_as.value,
                    created_by=created_by,
                )
                self.db.add(merge)
                await self.db.flush()

                applied = 0
                for change in plan.clean:
                    if await self._apply(target, change.entity_type, change.entity_id, change.record, created_by):
                        applied += 1

                conflicts = []
                for detected in plan.conflicts:
                    conflict = MergeConflict(
                        merge_id=merge.id,
                        source_scenario_id=source.id,
                        target_scenario_id=target.id,
                        conflict_type=detected.conflict_type.value,
                        entity_id=detected.entity_id,
                        source_data=detected.source.snapshot(),
                        target_data=detected.target.snapshot(),
                        resolution=ConflictResolution.PENDING.value,
                    )
                    self.db.add(conflict)
                    conflicts.append(conflict)

                merge.changes_applied = applied
                merge.conflicts_detected = len(conflicts)
                if conflicts:
                    merge.status = MergeStatus.CONFLICTS_DETECTED.value
                await self.db.flush()

                if conflicts and resolve_conflicts_as != ConflictResolution.MANUAL:
                    for conflict in conflicts:
                        await self._settle(
                            conflict, target, resolve_conflicts_as, None, SYSTEM_RESOLVER
                        )

                await self._complete_if_settled(merge, source)
                await self.db.commit()

            except ScenarioStructureError as e:
                await self.db.rollback()
                logger.warning(f"Merge {source_id} -> {target_id} aborted: {e.message}")
                raise
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            f"Merge {merge.id}: {source.id} -> {target.id} (ancestor {merge.common_ancestor_id}) "
            f"applied {applied} changes, {len(conflicts)} conflicts, status {merge.status}"
            + (f", superseded {superseded} earlier attempts" if superseded else "")
        )
        return merge, conflicts

    async def _supersede_pending(self, source_id: str, target_id: str) -> int:
        result = await self.db.execute(
            select(ScenarioMerge).where(
                ScenarioMerge.source_scenario_id == source_id,
                ScenarioMerge.target_scenario_id == target_id,
                ScenarioMerge.status == MergeStatus.CONFLICTS_DETECTED.value,
            )
        )
        earlier = result.scalars().all()
        for attempt in earlier:
            attempt.status = MergeStatus.SUPERSEDED.value
        return len(earlier)

    async def _apply(
        self,
        target: Scenario,
        entity_type: EntityType,
        entity_id: str,
        record: Optional[Record],
        created_by: Optional[str],
    ) -> bool:
        """Write one change onto the target unless it already holds it."""
        current = await self.resolver.resolve_entity(target.id, entity_type, entity_id)
        if record is None and current is None:
            return False
        if record is not None and current is not None and current.record == record:
            return False

        await self.writer.write_record(target, entity_type, entity_id, record, created_by)
        return True

    # =========================================================================
    # Conflict resolution
    # =========================================================================

    async def resolve_conflict(
        self,
        conflict_id: str,
        resolution: ConflictResolution,
        resolved_data: Optional[Record] = None,
        resolved_by: Optional[str] = None,
    ) -> MergeConflict:
        """
        Settle one pending conflict and write the chosen value onto the target.

        use_target keeps whatever the target holds now, not the snapshot
        taken when the merge ran. Both sides must still be active. Settling
        the last pending conflict completes the merge.
        """
        if resolution == ConflictResolution.PENDING:
            raise ScenarioValidationError(
                "resolution must be use_source, use_target or manual", code="INVALID_RESOLUTION"
            )

        conflict = await self._get_conflict(conflict_id)
        target_id = conflict.target_scenario_id

        async with scenario_locks.hold_many(conflict.source_scenario_id, target_id):
            try:
                conflict = await self._get_conflict(conflict_id, for_update=True)
                merge = await self._get_merge(conflict.merge_id)

                if not conflict.is_pending:
                    raise ConflictAlreadyResolvedError(conflict.id, conflict.resolution)
                if merge.status != MergeStatus.CONFLICTS_DETECTED.value:
                    raise InvalidMergeError(
                        f"Merge {merge.id} is {merge.status}; its conflicts can no longer be resolved"
                    )

                target = await self.registry.get(target_id, for_update=True)
                ensure_writable(target, action="resolve conflicts into")
                source = await self.registry.get(conflict.source_scenario_id, for_update=True)
                ensure_writable(source, action="complete merge of")

                await self._settle(conflict, target, resolution, resolved_data, resolved_by)
                await self._complete_if_settled(merge, source)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            f"Resolved conflict {conflict.id} on {conflict.conflict_type} {conflict.entity_id} "
            f"as {resolution.value}; merge {merge.id} is {merge.status}"
        )
        return conflict

    async def _settle(
        self,
        conflict: MergeConflict,
        target: Scenario,
        resolution: ConflictResolution,
        resolved_data: Optional[Record],
        resolved_by: Optional[str],
    ) -> None:
        entity_type = ENTITY_BY_CONFLICT_TYPE[ConflictType(conflict.conflict_type)]

        if resolution == ConflictResolution.USE_SOURCE:
            data = conflict.source_data
        elif resolution == ConflictResolution.USE_TARGET:
            # The target may have moved on since the merge ran
            current = await self.resolver.resolve_entity(target.id, entity_type, conflict.entity_id)
            data = current.record.model_dump(mode="json") if current is not None else None
        else:
            if resolved_data is None:
                raise ScenarioValidationError(
                    "manual resolution requires resolved_data", code="INVALID_RESOLUTION"
                )
            if entity_type_of(resolved_data) != entity_type:
                raise ScenarioValidationError(
                    f"resolved_data is a {resolved_data.entity_type} record; "
                    f"conflict {conflict.id} is about a {entity_type.value}",
                    code="INVALID_RESOLUTION",
                )
            data = resolved_data.model_dump(mode="json")

        record = parse_plan_record(data) if data is not None else None
        await self._apply(target, entity_type, conflict.entity_id, record, resolved_by)

        conflict.resolution = resolution.value
        conflict.resolved_data = data
        conflict.resolved_by = resolved_by
        conflict.resolved_at = datetime.now(timezone.utc)

    async def _complete_if_settled(self, merge: ScenarioMerge, source: Scenario) -> None:
        await self.db.flush()
        result = await self.db.execute(
            select(func.count()).select_from(MergeConflict).where(
                MergeConflict.merge_id == merge.id,
                MergeConflict.resolution == ConflictResolution.PENDING.value,
            )
        )
        if result.scalar_one() > 0:
            return

        merge.status = MergeStatus.COMPLETED.value
        merge.completed_at = datetime.now(timezone.utc)
        source.status = ScenarioStatus.MERGED.value

    # =========================================================================
    # Queries
    # =========================================================================

    async def pending_conflicts(self, source_id: str) -> List[MergeConflict]:
        """Conflicts still waiting on a decision, from live attempts of source."""
        await self.registry.get(source_id)
        result = await self.db.execute(
            select(MergeConflict)
            .join(ScenarioMerge, MergeConflict.merge_id == ScenarioMerge.id)
            .where(
                MergeConflict.source_scenario_id == source_id,
                MergeConflict.resolution == ConflictResolution.PENDING.value,
                ScenarioMerge.status == MergeStatus.CONFLICTS_DETECTED.value,
            )
            .order_by(MergeConflict.conflict_type, MergeConflict.entity_id)
        )
        return list(result.scalars().all())

    async def _get_conflict(self, conflict_id: str, for_update: bool = False) -> MergeConflict:
        query = select(MergeConflict).where(MergeConflict.id == conflict_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        conflict = result.scalar_one_or_none()
        if conflict is None:
            raise ConflictNotFoundError(conflict_id)
        return conflict

    async def _get_merge(self, merge_id: str) -> ScenarioMerge:
        result = await self.db.execute(select(ScenarioMerge).where(ScenarioMerge.id == merge_id))
        return result.scalar_one()
