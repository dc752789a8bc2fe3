"""
Scenario Overlay Writer - the only code path that records plan changes.

Two entry points:
- upsert_overlay / remove_overlay: a single user edit, serialized per
  scenario and committed on its own
- write_record: "make this scenario hold this value" for one entity, used by
  the edits above and by the merge executor inside its transaction

Non-baseline scenarios only ever gain overlay rows (append-only). The
baseline is written in place: its own records are the plan.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.data.models import generate_id
from app.scenarios.exceptions import BaseRecordNotFoundError
from app.scenarios.locks import scenario_locks
from app.scenarios.models import ChangeType, EntityType, Scenario
from app.scenarios.overlay import (
    BASE_REFERENCE_COLUMNS,
    BASELINE_MODELS,
    ENTITY_ID_PREFIXES,
    OVERLAY_MODELS,
    EffectiveStateResolver,
    Record,
    entity_type_of,
    record_to_columns,
)
from app.scenarios.registry import ensure_writable
from app.scenarios.schemas import OverlayResponse

logger = logging.getLogger(__name__)


class OverlayWriter:
    """Writes overlays (or baseline records) for one session."""

    def __init__(self, db: AsyncSession, resolver: Optional[EffectiveStateResolver] = None):
        self.db = db
        self.resolver = resolver or EffectiveStateResolver(db)
        self.registry = self.resolver.registry

    # =========================================================================
    # Single edits
    # =========================================================================

    async def upsert_overlay(
        self,
        scenario_id: str,
        record: Record,
        base_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> OverlayResponse:
        """
        Add a new entity (no base_id) or modify an existing one.

        The base must be visible in the parent's effective plan, or be an
        entity this scenario added itself.
        """
        entity_type = entity_type_of(record)

        async with scenario_locks.hold(scenario_id):
            try:
                scenario = await self.registry.get(scenario_id, for_update=True)
                ensure_writable(scenario)

                if base_id is None:
                    entity_id = generate_id(ENTITY_ID_PREFIXES[entity_type])
                else:
                    await self._require_visible(scenario, entity_type, base_id)
                    entity_id = base_id

                response = await self.write_record(scenario, entity_type, entity_id, record, created_by)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            f"Recorded {response.change_type.value} {entity_type.value} {entity_id} "
            f"on scenario {scenario_id}"
        )
        return response

    async def remove_overlay(
        self,
        scenario_id: str,
        entity_type: EntityType,
        base_id: str,
        created_by: Optional[str] = None,
    ) -> OverlayResponse:
        """Remove an entity from the scenario's effective plan."""
        async with scenario_locks.hold(scenario_id):
            try:
                scenario = await self.registry.get(scenario_id, for_update=True)
                ensure_writable(scenario)

                current = await self.resolver.resolve_entity(scenario.id, entity_type, base_id)
                if current is None:
                    raise BaseRecordNotFoundError(entity_type.value, base_id, scenario.id)

                response = await self.write_record(scenario, entity_type, base_id, None, created_by)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Removed {entity_type.value} {base_id} on scenario {scenario_id}")
        return response

    async def _require_visible(self, scenario: Scenario, entity_type: EntityType, base_id: str) -> None:
        if scenario.is_baseline:
            visible = await self.resolver.resolve_entity(scenario.id, entity_type, base_id)
        else:
            visible = await self.resolver.resolve_entity(scenario.parent_scenario_id, entity_type, base_id)
            if visible is None:
                # Entities this scenario added itself may be modified too
                own = await self.resolver.scenario_changes(scenario, entity_type)
                change = own.get(base_id)
                visible = change if change is not None and not change.is_removal else None
        if visible is None:
            raise BaseRecordNotFoundError(entity_type.value, base_id, scenario.parent_scenario_id or scenario.id)

    # =========================================================================
    # Core write (no commit)
    # =========================================================================

    async def write_record(
        self,
        scenario: Scenario,
        entity_type: EntityType,
        entity_id: str,
        record: Optional[Record],
        created_by: Optional[str] = None,
    ) -> OverlayResponse:
        """
        Make `scenario` hold `record` for the entity (None = removed).

        Bumps the scenario version and stamps it on the written row. The
        caller holds the scenario lock and owns the transaction.
        """
        scenario.version = (scenario.version or 0) + 1

        if scenario.is_baseline:
            return await self._write_baseline(scenario, entity_type, entity_id, record)
        return await self._write_overlay(scenario, entity_type, entity_id, record, created_by)

    async def _write_overlay(
        self,
        scenario: Scenario,
        entity_type: EntityType,
        entity_id: str,
        record: Optional[Record],
        created_by: Optional[str],
    ) -> OverlayResponse:
        in_parent = await self.resolver.resolve_entity(
            scenario.parent_scenario_id, entity_type, entity_id
        )

        if record is None:
            change_type = ChangeType.REMOVED
        elif in_parent is None:
            change_type = ChangeType.ADDED
        else:
            change_type = ChangeType.MODIFIED

        model = OVERLAY_MODELS[entity_type]
        values = record_to_columns(record) if record is not None else {}

        base_column = BASE_REFERENCE_COLUMNS[entity_type]
        if entity_type == EntityType.PROJECT:
            values[base_column] = entity_id
        else:
            values[base_column] = entity_id if in_parent is not None else None

        overlay = model(
            scenario_id=scenario.id,
            entity_id=entity_id,
            change_type=change_type.value,
            version=scenario.version,
            created_by=created_by,
            **values,
        )
        self.db.add(overlay)
        await self.db.flush()

        return OverlayResponse(
            id=overlay.id,
            scenario_id=scenario.id,
            entity_type=entity_type,
            entity_id=entity_id,
            change_type=change_type,
            version=overlay.version,
            record=record,
        )

    async def _write_baseline(
        self,
        baseline: Scenario,
        entity_type: EntityType,
        entity_id: str,
        record: Optional[Record],
    ) -> OverlayResponse:
        model = BASELINE_MODELS[entity_type]
        result = await self.db.execute(select(model).where(model.id == entity_id))
        row = result.scalar_one_or_none()

        if record is None:
            change_type = ChangeType.REMOVED
            if row is not None:
                row.removed_version = baseline.version
                row.version = baseline.version
        elif row is None:
            change_type = ChangeType.ADDED
            row = model(id=entity_id, version=baseline.version, **record_to_columns(record))
            self.db.add(row)
        else:
            change_type = ChangeType.ADDED if row.is_removed else ChangeType.MODIFIED
            for column, value in record_to_columns(record).items():
                setattr(row, column, value)
            row.removed_version = None
            row.version = baseline.version

        await self.db.flush()

        return OverlayResponse(
            id=entity_id,
            scenario_id=baseline.id,
            entity_type=entity_type,
            entity_id=entity_id,
            change_type=change_type,
            version=baseline.version,
            record=record,
        )
