"""
Unit Tests for effective-state resolution and the overlay write path.

Tests:
1. Pure resolution: nearest overlay wins, removed hides, baseline fallback
2. Resolution across a multi-level hierarchy
3. Write path: added / modified / removed, base visibility, append-only log
4. Writing to the baseline rewrites baseline records
"""

import pytest
from datetime import date
from types import SimpleNamespace

from sqlalchemy import select

from app.data.models import ProjectAssignment
from app.scenarios.exceptions import BaseRecordNotFoundError
from app.scenarios.models import ChangeType, EntityType, ScenarioAssignment
from app.scenarios.overlay import (
    EffectiveStateResolver,
    latest_changes,
    resolve_effective_state,
)
from app.scenarios.registry import ScenarioRegistry
from app.scenarios.writer import OverlayWriter
from tests.records import assignment, phase, project


def overlay_row(entity_id, version, change_type, allocation=None, scenario_id="scn_a"):
    """Stand-in for a ScenarioAssignment row."""
    return SimpleNamespace(
        scenario_id=scenario_id,
        entity_id=entity_id,
        version=version,
        change_type=change_type,
        project_id="proj_apollo",
        person_id="person_ada",
        role_id="role_dev",
        phase_id=None,
        allocation_percentage=allocation,
        assignment_date_mode="project",
        start_date=None,
        end_date=None,
        notes=None,
    )


# =============================================================================
# TEST: PURE RESOLUTION
# =============================================================================

class TestLatestChanges:
    """Tests for collapsing the append-only overlay log."""

    def test_highest_version_wins(self):
        rows = [
            overlay_row("asgn_x", 2, "modified", 80),
            overlay_row("asgn_x", 1, "modified", 70),
            overlay_row("asgn_x", 3, "removed"),
            overlay_row("asgn_z", 4, "added", 10),
        ]

        changes = latest_changes(EntityType.ASSIGNMENT, rows)

        assert changes["asgn_x"].is_removal
        assert changes["asgn_x"].record is None
        assert changes["asgn_z"].change_type == ChangeType.ADDED
        assert changes["asgn_z"].record.allocation_percentage == 10


class TestResolveEffectiveState:
    """Tests for applying an overlay chain to baseline records."""

    def test_baseline_records_show_through_without_overlays(self):
        baseline = {"asgn_x": assignment(50)}

        state = resolve_effective_state(EntityType.ASSIGNMENT, [], baseline)

        assert state["asgn_x"].record.allocation_percentage == 50
        assert state["asgn_x"].origin_scenario_id is None

    def test_nearest_scenario_decides(self):
        child = latest_changes(EntityType.ASSIGNMENT, [overlay_row("asgn_x", 1, "modified", 90, "scn_child")])
        parent = latest_changes(EntityType.ASSIGNMENT, [overlay_row("asgn_x", 5, "modified", 70, "scn_parent")])

        state = resolve_effective_state(EntityType.ASSIGNMENT, [child, parent], {"asgn_x": assignment(50)})

        assert state["asgn_x"].record.allocation_percentage == 90
        assert state["asgn_x"].origin_scenario_id == "scn_child"

    def test_removal_hides_entity_even_if_ancestor_modified_it(self):
        child = latest_changes(EntityType.ASSIGNMENT, [overlay_row("asgn_x", 1, "removed", None, "scn_child")])
        parent = latest_changes(EntityType.ASSIGNMENT, [overlay_row("asgn_x", 1, "modified", 70, "scn_parent")])

        state = resolve_effective_state(EntityType.ASSIGNMENT, [child, parent], {"asgn_x": assignment(50)})

        assert "asgn_x" not in state

    def test_added_entities_appear_in_id_order(self):
        changes = latest_changes(EntityType.ASSIGNMENT, [
            overlay_row("asgn_b", 1, "added", 10),
            overlay_row("asgn_a", 2, "added", 20),
        ])

        state = resolve_effective_state(EntityType.ASSIGNMENT, [changes], {"asgn_c": assignment(30)})

        assert list(state) == ["asgn_a", "asgn_b", "asgn_c"]


# =============================================================================
# TEST: RESOLVER OVER THE DATABASE
# =============================================================================

class TestEffectiveStateResolver:
    """Tests for resolving scenarios stored in the database."""

    @pytest.mark.asyncio
    async def test_baseline_resolves_to_its_records(self, db, baseline):
        state = await EffectiveStateResolver(db).resolve(baseline.id, EntityType.ASSIGNMENT)

        assert {k: v.record.allocation_percentage for k, v in state.items()} == {"asgn_x": 50, "asgn_y": 25}

    @pytest.mark.asyncio
    async def test_fresh_fork_matches_its_parent(self, db, baseline):
        a = await ScenarioRegistry(db).fork(baseline.id, name="A")

        resolver = EffectiveStateResolver(db)

        assert await resolver.resolve_plan(a.id) == await resolver.resolve_plan(baseline.id)

    @pytest.mark.asyncio
    async def test_three_level_hierarchy(self, db, baseline):
        registry = ScenarioRegistry(db)
        writer = OverlayWriter(db)
        a = await registry.fork(baseline.id, name="A")
        await writer.upsert_overlay(a.id, assignment(70), base_id="asgn_x")
        a1 = await registry.fork(a.id, name="A1")
        await writer.remove_overlay(a1.id, EntityType.ASSIGNMENT, "asgn_y")

        resolver = EffectiveStateResolver(db)
        a_state = await resolver.resolve(a.id, EntityType.ASSIGNMENT)
        a1_state = await resolver.resolve(a1.id, EntityType.ASSIGNMENT)

        assert a_state["asgn_x"].record.allocation_percentage == 70
        assert a_state["asgn_y"].record.allocation_percentage == 25
        assert a1_state["asgn_x"].record.allocation_percentage == 70
        assert a1_state["asgn_x"].origin_scenario_id == a.id
        assert "asgn_y" not in a1_state

    @pytest.mark.asyncio
    async def test_resolution_is_idempotent(self, db, baseline):
        a = await ScenarioRegistry(db).fork(baseline.id, name="A")
        await OverlayWriter(db).upsert_overlay(a.id, phase(date(2026, 2, 2), date(2026, 4, 24)), base_id="phtl_apollo_build")

        resolver = EffectiveStateResolver(db)
        first = await resolver.resolve_plan(a.id)
        second = await resolver.resolve_plan(a.id)

        assert first == second

    @pytest.mark.asyncio
    async def test_resolve_entity_returns_none_for_removed(self, db, baseline):
        a = await ScenarioRegistry(db).fork(baseline.id, name="A")
        await OverlayWriter(db).remove_overlay(a.id, EntityType.ASSIGNMENT, "asgn_x")

        assert await EffectiveStateResolver(db).resolve_entity(a.id, EntityType.ASSIGNMENT, "asgn_x") is None


# =============================================================================
# TEST: WRITE PATH
# =============================================================================

class TestOverlayWriter:
    """Tests for recording changes on scenarios."""

    @pytest.mark.asyncio
    async def test_add_without_base_creates_new_entity(self, db, baseline):
        a = await ScenarioRegistry(db).fork(baseline.id, name="A")

        written = await OverlayWriter(db).upsert_overlay(a.id, assignment(20, person_id="person_cy"))

        assert written.change_type == ChangeType.ADDED
        assert written.entity_id.startswith("asgn_")
        state = await EffectiveStateResolver(db).resolve(a.id, EntityType.ASSIGNMENT)
        assert state[written.entity_id].record.person_id == "person_cy"

    @pytest.mark.asyncio
    async def test_modify_requires_visible_base(self, db, baseline):
        a = await ScenarioRegistry(db).fork(baseline.id, name="A")

        with pytest.raises(BaseRecordNotFoundError):
            await OverlayWriter(db).upsert_overlay(a.id, assignment(70), base_id="asgn_missing")

    @pytest.mark.asyncio
    async def test_modifying_own_added_entity_keeps_it_added(self, db, baseline):
        a = await ScenarioRegistry(db).fork(baseline.id, name="A")
        writer = OverlayWriter(db)
        added = await writer.upsert_overlay(a.id, assignment(20))

        rewritten = await writer.upsert_overlay(a.id, assignment(35), base_id=added.entity_id)

        assert rewritten.change_type == ChangeType.ADDED
        assert rewritten.version > added.version
        state = await EffectiveStateResolver(db).resolve(a.id, EntityType.ASSIGNMENT)
        assert state[added.entity_id].record.allocation_percentage == 35

    @pytest.mark.asyncio
    async def test_overlay_log_is_append_only(self, db, baseline):
        a = await ScenarioRegistry(db).fork(baseline.id, name="A")
        writer = OverlayWriter(db)
        await writer.upsert_overlay(a.id, assignment(70), base_id="asgn_x")
        await writer.upsert_overlay(a.id, assignment(80), base_id="asgn_x")
        await writer.remove_overlay(a.id, EntityType.ASSIGNMENT, "asgn_x")

        result = await db.execute(
            select(ScenarioAssignment)
            .where(ScenarioAssignment.scenario_id == a.id)
            .order_by(ScenarioAssignment.version)
        )
        rows = result.scalars().all()

        assert [r.change_type for r in rows] == ["modified", "modified", "removed"]
        assert [r.version for r in rows] == [1, 2, 3]
        assert all(r.base_assignment_id == "asgn_x" for r in rows)

    @pytest.mark.asyncio
    async def test_removing_invisible_entity_is_rejected(self, db, baseline):
        a = await ScenarioRegistry(db).fork(baseline.id, name="A")
        writer = OverlayWriter(db)
        await writer.remove_overlay(a.id, EntityType.ASSIGNMENT, "asgn_x")

        with pytest.raises(BaseRecordNotFoundError):
            await writer.remove_overlay(a.id, EntityType.ASSIGNMENT, "asgn_x")

    @pytest.mark.asyncio
    async def test_project_overlay_references_project(self, db, baseline):
        a = await ScenarioRegistry(db).fork(baseline.id, name="A")

        await OverlayWriter(db).upsert_overlay(a.id, project(name="Apollo II", priority=2), base_id="proj_apollo")

        state = await EffectiveStateResolver(db).resolve(a.id, EntityType.PROJECT)
        assert state["proj_apollo"].record.name == "Apollo II"
        result = await db.execute(select(ScenarioAssignment).where(ScenarioAssignment.scenario_id == a.id))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_writing_to_baseline_updates_baseline_records(self, db, baseline):
        writer = OverlayWriter(db)

        await writer.upsert_overlay(baseline.id, assignment(60), base_id="asgn_x")
        await writer.remove_overlay(baseline.id, EntityType.ASSIGNMENT, "asgn_y")

        result = await db.execute(select(ProjectAssignment).order_by(ProjectAssignment.id))
        rows = {row.id: row for row in result.scalars().all()}
        assert rows["asgn_x"].allocation_percentage == 60
        assert rows["asgn_x"].version == 1
        assert rows["asgn_y"].removed_version == 2
        overlays = await db.execute(select(ScenarioAssignment))
        assert overlays.scalars().all() == []
