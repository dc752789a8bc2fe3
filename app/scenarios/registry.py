"""
Scenario Registry - the scenario hierarchy.

Scenarios are kept as a flat table keyed by id; ancestry is resolved by
repeated lookup of parent_scenario_id. The baseline is structural: the one
scenario without a parent.
"""
import logging
from typing import Dict, List, Mapping, Optional, Protocol

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.scenarios.exceptions import (
    BrokenScenarioChainError,
    CyclicScenarioChainError,
    DuplicateBaselineError,
    NoCommonAncestorError,
    ScenarioNotFoundError,
    ScenarioNotWritableError,
    ScenarioValidationError,
)
from app.scenarios.locks import scenario_locks, BASELINE_LOCK_KEY
from app.scenarios.models import MergeStatus, Scenario, ScenarioMerge, ScenarioStatus, ScenarioType

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "description")


class _Node(Protocol):
    id: str
    parent_scenario_id: Optional[str]


# =============================================================================
# Pure hierarchy helpers
# =============================================================================

def build_ancestor_path(index: Mapping[str, _Node], scenario_id: str) -> List[_Node]:
    """
    Walk parent pointers from scenario_id up to the baseline.

    Returns [scenario, parent, ..., baseline]. Raises on a missing scenario,
    a dangling parent pointer, or a cycle.
    """
    if scenario_id not in index:
        raise ScenarioNotFoundError(scenario_id)

    path: List[_Node] = []
    seen = set()
    current = index[scenario_id]
    while True:
        if current.id in seen:
            raise CyclicScenarioChainError([node.id for node in path] + [current.id])
        seen.add(current.id)
        path.append(current)

        parent_id = current.parent_scenario_id
        if parent_id is None:
            return path
        parent = index.get(parent_id)
        if parent is None:
            raise BrokenScenarioChainError(current.id, parent_id)
        current = parent


def find_common_ancestor(source_path: List[_Node], target_path: List[_Node]) -> _Node:
    """Nearest scenario (from the source side) that appears on both paths."""
    target_ids = {node.id for node in target_path}
    for node in source_path:
        if node.id in target_ids:
            return node
    raise NoCommonAncestorError(source_path[0].id, target_path[0].id)


def ensure_writable(scenario: Scenario, action: str = "write to") -> None:
    """Archived and merged scenarios are read-only."""
    if scenario.status != ScenarioStatus.ACTIVE.value:
        raise ScenarioNotWritableError(scenario.id, scenario.status, action=action)


# =============================================================================
# Registry
# =============================================================================

class ScenarioRegistry:
    """Lookup, traversal and lifecycle of scenarios."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, scenario_id: str, for_update: bool = False) -> Scenario:
        query = select(Scenario).where(Scenario.id == scenario_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        scenario = result.scalar_one_or_none()
        if scenario is None:
            raise ScenarioNotFoundError(scenario_id)
        return scenario

    async def list_scenarios(self, status: Optional[ScenarioStatus] = None) -> List[Scenario]:
        query = select(Scenario).order_by(Scenario.created_at, Scenario.id)
        if status:
            query = query.where(Scenario.status == status.value)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def children(self, scenario_id: str) -> List[Scenario]:
        result = await self.db.execute(
            select(Scenario).where(Scenario.parent_scenario_id == scenario_id)
        )
        return list(result.scalars().all())

    async def open_merges(self, scenario_id: str) -> List[ScenarioMerge]:
        """Merge attempts into or out of a scenario still waiting on conflicts."""
        result = await self.db.execute(
            select(ScenarioMerge).where(
                or_(
                    ScenarioMerge.source_scenario_id == scenario_id,
                    ScenarioMerge.target_scenario_id == scenario_id,
                ),
                ScenarioMerge.status == MergeStatus.CONFLICTS_DETECTED.value,
            )
        )
        return list(result.scalars().all())

    async def get_baseline(self) -> Optional[Scenario]:
        result = await self.db.execute(
            select(Scenario).where(Scenario.parent_scenario_id.is_(None))
        )
        return result.scalars().first()

    async def load_index(self) -> Dict[str, Scenario]:
        result = await self.db.execute(select(Scenario))
        return {s.id: s for s in result.scalars().all()}

    async def ancestor_path(self, scenario_id: str) -> List[Scenario]:
        """[scenario, parent, ..., baseline]."""
        return build_ancestor_path(await self.load_index(), scenario_id)

    async def common_ancestor(self, source_id: str, target_id: str) -> Scenario:
        index = await self.load_index()
        return find_common_ancestor(
            build_ancestor_path(index, source_id),
            build_ancestor_path(index, target_id),
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def create_baseline(
        self,
        name: str,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Scenario:
        """Create the root scenario. Only one may ever exist."""
        async with scenario_locks.hold(BASELINE_LOCK_KEY):
            existing = await self.get_baseline()
            if existing is not None:
                raise DuplicateBaselineError(existing.id)

            scenario = Scenario(
                name=name,
                description=description,
                scenario_type=ScenarioType.BASELINE.value,
                status=ScenarioStatus.ACTIVE.value,
                parent_scenario_id=None,
                version=0,
                branch_point=None,
                created_by=created_by,
            )
            self.db.add(scenario)
            await self.db.commit()
            await self.db.refresh(scenario)

        logger.info(f"Created baseline scenario {scenario.id}")
        return scenario

    async def fork(
        self,
        parent_id: str,
        name: str,
        description: Optional[str] = None,
        scenario_type: ScenarioType = ScenarioType.BRANCH,
        created_by: Optional[str] = None,
    ) -> Scenario:
        """Branch a new scenario off an existing one."""
        if scenario_type == ScenarioType.BASELINE:
            raise ScenarioValidationError(
                "A baseline scenario cannot have a parent", code="BASELINE_WITH_PARENT"
            )

        async with scenario_locks.hold(parent_id):
            parent = await self.get(parent_id, for_update=True)
            ensure_writable(parent, action="fork from")
            # Validates the chain above the new scenario
            await self.ancestor_path(parent.id)

            scenario = Scenario(
                name=name,
                description=description,
                scenario_type=scenario_type.value,
                status=ScenarioStatus.ACTIVE.value,
                parent_scenario_id=parent.id,
                version=0,
                branch_point=parent.version or 0,
                created_by=created_by,
            )
            self.db.add(scenario)
            await self.db.commit()
            await self.db.refresh(scenario)

        logger.info(
            f"Forked scenario {scenario.id} ({scenario_type.value}) from {parent.id} "
            f"at version {scenario.branch_point}"
        )
        return scenario

    async def archive(self, scenario_id: str) -> Scenario:
        """Soft-delete a scenario. It stays readable."""
        async with scenario_locks.hold(scenario_id):
            scenario = await self.get(scenario_id, for_update=True)
            if scenario.is_baseline:
                raise ScenarioValidationError(
                    f"Cannot archive baseline scenario '{scenario.id}'", code="ARCHIVE_BASELINE"
                )
            if scenario.status == ScenarioStatus.ARCHIVED.value:
                return scenario

            active_children = [
                child for child in await self.children(scenario.id)
                if child.status == ScenarioStatus.ACTIVE.value
            ]
            if active_children:
                raise ScenarioValidationError(
                    f"Cannot archive scenario '{scenario.id}' with active child scenarios: "
                    f"{', '.join(sorted(c.id for c in active_children))}",
                    code="ARCHIVE_WITH_CHILDREN",
                )

            open_merges = await self.open_merges(scenario.id)
            if open_merges:
                raise ScenarioValidationError(
                    f"Cannot archive scenario '{scenario.id}' while merges with pending conflicts "
                    f"involve it: {', '.join(sorted(m.id for m in open_merges))}",
                    code="ARCHIVE_WITH_PENDING_MERGE",
                )

            scenario.status = ScenarioStatus.ARCHIVED.value
            await self.db.commit()
            await self.db.refresh(scenario)

        logger.info(f"Archived scenario {scenario.id}")
        return scenario

    async def update(self, scenario_id: str, **changes: Optional[str]) -> Scenario:
        """Rename or re-describe a scenario. Only the given fields change."""
        not_editable = sorted(set(changes) - set(EDITABLE_FIELDS))
        if not_editable:
            raise ScenarioValidationError(
                f"Cannot edit {', '.join(not_editable)}; use archive or merge to change status",
                code="NOT_EDITABLE",
            )
        if "name" in changes and not changes["name"]:
            raise ScenarioValidationError("Scenario name cannot be empty", code="INVALID_NAME")

        async with scenario_locks.hold(scenario_id):
            scenario = await self.get(scenario_id, for_update=True)
            ensure_writable(scenario, action="edit")
            for field, value in changes.items():
                setattr(scenario, field, value)
            await self.db.commit()
            await self.db.refresh(scenario)

        logger.info(f"Updated scenario {scenario.id}: {', '.join(sorted(changes)) or 'no changes'}")
        return scenario
