"""Scenario Planning API routes."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.database import get_db
from app.scenarios import schemas
from app.scenarios.comparison import ScenarioComparisonService
from app.scenarios.exceptions import ScenarioValidationError
from app.scenarios.merge import ScenarioMergeService
from app.scenarios.models import EntityType, ScenarioStatus, ScenarioType
from app.scenarios.overlay import EffectiveStateResolver
from app.scenarios.registry import ScenarioRegistry
from app.scenarios.writer import OverlayWriter

router = APIRouter()


# ============================================================================
# SCENARIO ROUTES
# ============================================================================

@router.post("", response_model=schemas.ScenarioResponse, status_code=201)
async def create_scenario(
    data: schemas.ScenarioCreate,
    db: AsyncSession = Depends(get_db)
):
    """Create the baseline (no parent) or fork an existing scenario."""
    registry = ScenarioRegistry(db)
    if data.parent_scenario_id is None and data.scenario_type == ScenarioType.BASELINE:
        return await registry.create_baseline(
            name=data.name,
            description=data.description,
            created_by=data.created_by,
        )

    # Branches and sandboxes without a parent fork from the baseline
    parent_id = data.parent_scenario_id
    if parent_id is None:
        baseline = await registry.get_baseline()
        if baseline is None:
            raise ScenarioValidationError(
                "No baseline scenario exists yet; create one first", code="NO_BASELINE"
            )
        parent_id = baseline.id

    return await registry.fork(
        parent_id=parent_id,
        name=data.name,
        description=data.description,
        scenario_type=data.scenario_type,
        created_by=data.created_by,
    )


@router.get("", response_model=List[schemas.ScenarioResponse])
async def list_scenarios(
    status: Optional[ScenarioStatus] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """List scenarios, optionally by status."""
    return await ScenarioRegistry(db).list_scenarios(status)


@router.get("/{scenario_id}", response_model=schemas.ScenarioResponse)
async def get_scenario(
    scenario_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Get a scenario by ID."""
    return await ScenarioRegistry(db).get(scenario_id)


@router.put("/{scenario_id}", response_model=schemas.ScenarioResponse)
async def update_scenario(
    scenario_id: str,
    data: schemas.ScenarioUpdate,
    db: AsyncSession = Depends(get_db)
):
    """Rename or re-describe a scenario."""
    return await ScenarioRegistry(db).update(scenario_id, **data.model_dump(exclude_unset=True))


@router.post("/{scenario_id}/archive", response_model=schemas.ScenarioResponse)
async def archive_scenario(
    scenario_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Archive a scenario. It stays readable but no longer accepts writes."""
    return await ScenarioRegistry(db).archive(scenario_id)


# ============================================================================
# EFFECTIVE STATE ROUTES
# ============================================================================

@router.get("/{scenario_id}/effective", response_model=List[schemas.EffectiveRecordResponse])
async def get_effective_state(
    scenario_id: str,
    entity_type: Optional[EntityType] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """Effective plan of a scenario, one entity type or all of them."""
    resolver = EffectiveStateResolver(db)
    if entity_type is not None:
        states = {entity_type: await resolver.resolve(scenario_id, entity_type)}
    else:
        states = await resolver.resolve_plan(scenario_id)

    return [
        schemas.EffectiveRecordResponse(
            entity_type=effective.entity_type,
            entity_id=effective.entity_id,
            record=effective.record,
            origin_scenario_id=effective.origin_scenario_id,
        )
        for state in states.values()
        for effective in state.values()
    ]


@router.get("/{scenario_id}/overlays", response_model=List[schemas.ScenarioChangeResponse])
async def list_overlays(
    scenario_id: str,
    entity_type: Optional[EntityType] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """Changes the scenario itself holds, newest per entity."""
    scenario = await ScenarioRegistry(db).get(scenario_id)
    resolver = EffectiveStateResolver(db)
    entity_types = [entity_type] if entity_type is not None else list(EntityType)

    changes = []
    for current_type in entity_types:
        scenario_changes = await resolver.scenario_changes(scenario, current_type)
        changes.extend(
            schemas.ScenarioChangeResponse(
                scenario_id=change.scenario_id,
                entity_type=change.entity_type,
                entity_id=change.entity_id,
                change_type=change.change_type,
                version=change.version,
                record=change.record,
            )
            for change in sorted(scenario_changes.values(), key=lambda c: c.entity_id)
        )
    return changes


@router.put("/{scenario_id}/overlays", response_model=schemas.OverlayResponse)
async def upsert_overlay(
    scenario_id: str,
    data: schemas.OverlayUpsert,
    db: AsyncSession = Depends(get_db)
):
    """Add an entity (no base_id) or modify one visible to the scenario."""
    return await OverlayWriter(db).upsert_overlay(
        scenario_id,
        data.record,
        base_id=data.base_id,
        created_by=data.created_by,
    )


@router.delete("/{scenario_id}/overlays/{entity_type}/{base_id}", response_model=schemas.OverlayResponse)
async def remove_overlay(
    scenario_id: str,
    entity_type: EntityType,
    base_id: str,
    created_by: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """Remove an entity from the scenario's effective plan."""
    return await OverlayWriter(db).remove_overlay(
        scenario_id, entity_type, base_id, created_by=created_by
    )


# ============================================================================
# COMPARISON & MERGE ROUTES
# ============================================================================

@router.get("/{scenario_id}/compare", response_model=schemas.ScenarioComparison)
async def compare_scenarios(
    scenario_id: str,
    compare_to: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """Compare a scenario (source) against another (target)."""
    return await ScenarioComparisonService(db).compare(scenario_id, compare_to)


@router.post("/{scenario_id}/merge", response_model=schemas.MergeResponse)
async def merge_scenario(
    scenario_id: str,
    data: schemas.MergeRequest,
    db: AsyncSession = Depends(get_db)
):
    """Merge a scenario into its parent or another target."""
    merge, conflicts = await ScenarioMergeService(db).merge(
        scenario_id,
        target_id=data.target_scenario_id,
        resolve_conflicts_as=data.resolve_conflicts_as,
        created_by=data.created_by,
    )
    return schemas.MergeResponse(
        merge=schemas.ScenarioMergeResponse.model_validate(merge),
        conflicts=[schemas.MergeConflictResponse.model_validate(c) for c in conflicts],
    )


@router.get("/{scenario_id}/conflicts", response_model=List[schemas.MergeConflictResponse])
async def get_pending_conflicts(
    scenario_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Pending conflicts from merges of this scenario."""
    return await ScenarioMergeService(db).pending_conflicts(scenario_id)


@router.post("/conflicts/{conflict_id}/resolve", response_model=schemas.MergeConflictResponse)
async def resolve_conflict(
    conflict_id: str,
    data: schemas.ConflictResolveRequest,
    db: AsyncSession = Depends(get_db)
):
    """Settle one merge conflict."""
    return await ScenarioMergeService(db).resolve_conflict(
        conflict_id,
        data.resolution,
        resolved_data=data.resolved_data,
        resolved_by=data.resolved_by,
    )
