"""
API Tests for the scenario routes.

Tests the HTTP surface over an in-memory database:
1. Creating the baseline, forking and editing scenarios
2. Overlay writes, listed changes and effective state
3. Compare, merge and conflict resolution
4. Domain errors map to status codes with a {"detail", "code"} body
"""

import pytest

API = "/api/scenarios"


async def create(client, name, **body):
    response = await client.post(API, json={"name": name, **body})
    assert response.status_code == 201, response.text
    return response.json()


async def seed_assignment(client, scenario_id, allocation, base_id=None):
    response = await client.put(f"{API}/{scenario_id}/overlays", json={
        "base_id": base_id,
        "record": {
            "entity_type": "assignment",
            "project_id": "proj_apollo",
            "person_id": "person_ada",
            "role_id": "role_dev",
            "allocation_percentage": allocation,
        },
    })
    assert response.status_code == 200, response.text
    return response.json()


class TestScenarioRoutes:
    """Tests for scenario lifecycle endpoints."""

    @pytest.mark.asyncio
    async def test_create_baseline_and_fork(self, client):
        baseline = await create(client, "Baseline", scenario_type="baseline")
        branch = await create(client, "Hiring plan")

        assert baseline["parent_scenario_id"] is None
        assert branch["parent_scenario_id"] == baseline["id"]
        assert branch["scenario_type"] == "branch"
        assert branch["branch_point"] == 0

        listed = await client.get(API)
        assert {s["name"] for s in listed.json()} == {"Baseline", "Hiring plan"}

    @pytest.mark.asyncio
    async def test_second_baseline_is_conflict(self, client):
        await create(client, "Baseline", scenario_type="baseline")

        response = await client.post(API, json={"name": "Again", "scenario_type": "baseline"})

        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_BASELINE"

    @pytest.mark.asyncio
    async def test_fork_before_baseline_is_rejected(self, client):
        response = await client.post(API, json={"name": "Orphan"})

        assert response.status_code == 400
        assert response.json()["code"] == "NO_BASELINE"

    @pytest.mark.asyncio
    async def test_unknown_scenario_is_404(self, client):
        response = await client.get(f"{API}/scn_missing")

        assert response.status_code == 404
        assert response.json() == {"detail": "Scenario 'scn_missing' not found", "code": "SCENARIO_NOT_FOUND"}

    @pytest.mark.asyncio
    async def test_archive_then_write_is_rejected(self, client):
        await create(client, "Baseline", scenario_type="baseline")
        branch = await create(client, "Branch")

        archived = await client.post(f"{API}/{branch['id']}/archive")
        assert archived.json()["status"] == "archived"

        response = await client.put(f"{API}/{branch['id']}/overlays", json={
            "record": {"entity_type": "project", "name": "Zeus"},
        })
        assert response.status_code == 409
        assert response.json()["code"] == "SCENARIO_NOT_WRITABLE"

    @pytest.mark.asyncio
    async def test_update_edits_name_and_description(self, client):
        await create(client, "Baseline", scenario_type="baseline")
        branch = await create(client, "Hiring plan")

        renamed = await client.put(f"{API}/{branch['id']}", json={"name": "Hiring plan v2", "description": "Q3"})
        assert renamed.status_code == 200
        assert (renamed.json()["name"], renamed.json()["description"]) == ("Hiring plan v2", "Q3")

        described = await client.put(f"{API}/{branch['id']}", json={"description": "Q4"})
        assert (described.json()["name"], described.json()["description"]) == ("Hiring plan v2", "Q4")

    @pytest.mark.asyncio
    async def test_update_does_not_change_status(self, client):
        await create(client, "Baseline", scenario_type="baseline")
        branch = await create(client, "Branch")

        response = await client.put(f"{API}/{branch['id']}", json={"status": "archived"})

        assert response.status_code == 200
        assert response.json()["status"] == "active"

    @pytest.mark.asyncio
    async def test_update_rejects_empty_name(self, client):
        await create(client, "Baseline", scenario_type="baseline")
        branch = await create(client, "Branch")

        assert (await client.put(f"{API}/{branch['id']}", json={"name": ""})).status_code == 422

        response = await client.put(f"{API}/{branch['id']}", json={"name": None})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_NAME"

    @pytest.mark.asyncio
    async def test_update_archived_scenario_is_rejected(self, client):
        await create(client, "Baseline", scenario_type="baseline")
        branch = await create(client, "Branch")
        await client.post(f"{API}/{branch['id']}/archive")

        response = await client.put(f"{API}/{branch['id']}", json={"name": "Renamed"})

        assert response.status_code == 409
        assert response.json()["code"] == "SCENARIO_NOT_WRITABLE"


class TestPlanRoutes:
    """Tests for overlays, effective state, comparison and merge."""

    @pytest.mark.asyncio
    async def test_merge_worked_example_over_http(self, client):
        baseline = await create(client, "Baseline", scenario_type="baseline")
        x = await seed_assignment(client, baseline["id"], 50)
        a = await create(client, "A")
        b = await create(client, "B")
        await seed_assignment(client, a["id"], 70, base_id=x["entity_id"])
        await seed_assignment(client, b["id"], 40, base_id=x["entity_id"])

        comparison = await client.get(f"{API}/{a['id']}/compare", params={"compare_to": b["id"]})
        assert comparison.status_code == 200
        assert comparison.json()["metrics"]["utilization_impact"] == {"person_ada": 30.0}

        merged = await client.post(f"{API}/{a['id']}/merge", json={"target_scenario_id": b["id"]})
        assert merged.status_code == 200
        body = merged.json()
        assert body["merge"]["status"] == "conflicts_detected"
        assert len(body["conflicts"]) == 1

        pending = await client.get(f"{API}/{a['id']}/conflicts")
        assert [c["id"] for c in pending.json()] == [body["conflicts"][0]["id"]]

        resolved = await client.post(
            f"{API}/conflicts/{body['conflicts'][0]['id']}/resolve",
            json={"resolution": "use_target", "resolved_by": "lead"},
        )
        assert resolved.status_code == 200
        assert resolved.json()["resolution"] == "use_target"

        effective = await client.get(f"{API}/{b['id']}/effective", params={"entity_type": "assignment"})
        assert [r["record"]["allocation_percentage"] for r in effective.json()] == [40.0]

        source = await client.get(f"{API}/{a['id']}")
        assert source.json()["status"] == "merged"

    @pytest.mark.asyncio
    async def test_remove_overlay(self, client):
        baseline = await create(client, "Baseline", scenario_type="baseline")
        x = await seed_assignment(client, baseline["id"], 50)
        branch = await create(client, "Branch")

        response = await client.delete(f"{API}/{branch['id']}/overlays/assignment/{x['entity_id']}")

        assert response.status_code == 200
        assert response.json()["change_type"] == "removed"
        effective = await client.get(f"{API}/{branch['id']}/effective")
        assert effective.json() == []

    @pytest.mark.asyncio
    async def test_list_overlays_shows_current_changes(self, client):
        baseline = await create(client, "Baseline", scenario_type="baseline")
        x = await seed_assignment(client, baseline["id"], 50)
        branch = await create(client, "Branch")
        await seed_assignment(client, branch["id"], 60, base_id=x["entity_id"])
        await seed_assignment(client, branch["id"], 70, base_id=x["entity_id"])
        added = await seed_assignment(client, branch["id"], 20)

        response = await client.get(f"{API}/{branch['id']}/overlays")

        assert response.status_code == 200
        changes = {c["entity_id"]: c for c in response.json()}
        assert set(changes) == {x["entity_id"], added["entity_id"]}
        assert changes[x["entity_id"]]["change_type"] == "modified"
        assert changes[x["entity_id"]]["record"]["allocation_percentage"] == 70.0
        assert changes[added["entity_id"]]["change_type"] == "added"

        await client.delete(f"{API}/{branch['id']}/overlays/assignment/{x['entity_id']}")
        assignments = await client.get(f"{API}/{branch['id']}/overlays", params={"entity_type": "assignment"})
        removed = [c for c in assignments.json() if c["entity_id"] == x["entity_id"]]
        assert removed[0]["change_type"] == "removed"
        assert removed[0]["record"] is None

        projects = await client.get(f"{API}/{branch['id']}/overlays", params={"entity_type": "project"})
        assert projects.json() == []

    @pytest.mark.asyncio
    async def test_list_overlays_of_unknown_scenario_is_404(self, client):
        response = await client.get(f"{API}/scn_missing/overlays")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_record_is_422(self, client):
        baseline = await create(client, "Baseline", scenario_type="baseline")

        response = await client.put(f"{API}/{baseline['id']}/overlays", json={
            "record": {
                "entity_type": "assignment",
                "project_id": "proj_apollo",
                "person_id": "person_ada",
                "role_id": "role_dev",
                "allocation_percentage": 150,
            },
        })

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_manual_resolution_without_data_is_422(self, client):
        response = await client.post(f"{API}/conflicts/mcfl_any/resolve", json={"resolution": "manual"})

        assert response.status_code == 422
