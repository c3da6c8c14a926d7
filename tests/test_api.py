"""
REST API tests against the in-process app.
"""

import pytest


async def _report(client, label, task_id="task-1", **extra):
    response = await client.post(f"/v1/tasks/{task_id}/progress", json={"label": label, **extra})
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_progress_follows_reported_records(client):
    await _report(client, "Planning", created_at="2026-01-01T12:00:00Z")

    response = await client.get("/v1/tasks/task-1/progress", params={"breadth": 2, "depth": 2})
    body = response.json()
    assert response.status_code == 200
    assert body["expected_total"] == 7
    assert body["percentage"] == 14
    assert body["subscription_status"] == "subscribed"
    assert [r["label"] for r in body["records"]] == ["Planning"]
    assert body["records"][0]["settled"] is False

    await _report(client, "Searching", created_at="2026-01-01T12:00:05Z")

    body = (await client.get("/v1/tasks/task-1/progress")).json()
    assert [r["label"] for r in body["records"]] == ["Searching", "Planning"]
    assert [r["settled"] for r in body["records"]] == [False, True]
    assert body["percentage"] == 29


@pytest.mark.asyncio
async def test_debug_records_never_shown(client):
    await client.get("/v1/tasks/task-1/progress")
    await _report(client, "Debug Topic probe")
    await _report(client, "Planning")

    body = (await client.get("/v1/tasks/task-1/progress")).json()

    assert [r["label"] for r in body["records"]] == ["Planning"]


@pytest.mark.asyncio
async def test_terminal_record_completes_task(client):
    await client.get("/v1/tasks/task-1/progress", params={"breadth": 5, "depth": 5})
    await _report(client, "Planning", created_at="2026-01-01T12:00:00Z")
    await _report(client, "research_done", created_at="2026-01-01T12:00:01Z")

    body = (await client.get("/v1/tasks/task-1/progress")).json()

    assert body["is_complete"] is True
    assert body["percentage"] == 100
    assert body["result_available"] is False


@pytest.mark.asyncio
async def test_sources_update_is_merged(client):
    await client.get("/v1/tasks/task-1/progress")
    created = await _report(client, "Searching", record_id="rec-1")

    response = await client.put(
        "/v1/tasks/task-1/progress/rec-1/sources",
        json={"sources": [{"url": "https://a.example", "title": "A"}]},
    )
    assert response.status_code == 200
    assert created["record_id"] == "rec-1"

    body = (await client.get("/v1/tasks/task-1/progress")).json()
    assert body["records"][0]["sources"] == [{"url": "https://a.example", "title": "A"}]


@pytest.mark.asyncio
async def test_sources_update_unknown_record_is_404(client):
    response = await client.put(
        "/v1/tasks/task-1/progress/missing/sources",
        json={"sources": []},
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_duplicate_record_id_conflicts(client):
    await _report(client, "Planning", record_id="rec-1")

    response = await client.post(
        "/v1/tasks/task-1/progress",
        json={"label": "Planning", "record_id": "rec-1"},
    )

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_refresh_requires_tracking(client):
    response = await client.post("/v1/tasks/unknown/refresh")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_refresh_returns_progress(client):
    await _report(client, "Planning")
    await client.get("/v1/tasks/task-1/progress")

    response = await client.post("/v1/tasks/task-1/refresh")
    body = response.json()

    assert response.status_code == 200
    assert body["refreshed"] is True
    assert len(body["progress"]["records"]) == 1


@pytest.mark.asyncio
async def test_result_flow(client):
    await client.get("/v1/tasks/task-1/progress")

    assert (await client.get("/v1/tasks/task-1/result")).status_code == 404
    availability = (await client.get("/v1/tasks/task-1/result-availability")).json()
    assert availability["available"] is False

    response = await client.post(
        "/v1/tasks/task-1/results",
        json={"content": {"summary": "done"}, "owner_id": "owner-1"},
    )
    assert response.status_code == 200

    availability = (await client.get("/v1/tasks/task-1/result-availability")).json()
    assert availability["available"] is True
    assert availability["observed_at"] is not None

    result = await client.get("/v1/tasks/task-1/result")
    assert result.status_code == 200
    assert result.json()["content"] == {"summary": "done"}

    progress = (await client.get("/v1/tasks/task-1/progress")).json()
    assert progress["result_available"] is True
    assert progress["is_complete"] is False


@pytest.mark.asyncio
async def test_result_availability_requires_tracking(client):
    response = await client.get("/v1/tasks/unknown/result-availability")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_owner_results(client):
    assert (await client.get("/v1/owners/me/results")).status_code == 401

    await client.post("/v1/tasks/task-1/results", json={"owner_id": "owner-1"})
    await client.post("/v1/tasks/task-2/results", json={"owner_id": "owner-2"})

    response = await client.get("/v1/owners/me/results", headers={"X-Owner-ID": "owner-1"})

    assert response.status_code == 200
    assert response.json()["task_ids"] == ["task-1"]


@pytest.mark.asyncio
async def test_feedback_flow(client):
    status = (await client.get("/v1/tasks/task-1/feedback")).json()
    assert status["submitted"] is False

    rejected = await client.post("/v1/tasks/task-1/feedback", json={"rating": 6})
    assert rejected.status_code == 422

    accepted = await client.post(
        "/v1/tasks/task-1/feedback",
        json={"rating": 4, "comment": "  useful  "},
        headers={"X-Owner-ID": "owner-1"},
    )
    assert accepted.status_code == 200
    assert accepted.json()["submitted"] is True

    status = (await client.get("/v1/tasks/task-1/feedback")).json()
    assert status["submitted"] is True


@pytest.mark.asyncio
async def test_cache_endpoints(client):
    await client.post("/v1/tasks/task-1/results", json={"owner_id": "owner-1"})
    await client.get("/v1/tasks/task-1/result")
    await client.get("/v1/owners/me/results", headers={"X-Owner-ID": "owner-1"})

    stats = (await client.get("/v1/cache/stats")).json()
    assert stats["total_entries"] == 2
    assert stats["by_entity"] == {"task_result": 1, "owner_results": 1}

    evicted = (await client.post("/v1/cache/evict")).json()
    assert evicted["removed"] == 0

    cleared = (await client.delete("/v1/cache", headers={"X-Owner-ID": "owner-1"})).json()
    assert cleared["removed"] == 2

    cleared = (await client.delete("/v1/cache")).json()
    assert cleared["removed"] == 0


@pytest.mark.asyncio
async def test_stop_tracking(client):
    await client.get("/v1/tasks/task-1/progress")

    first = (await client.delete("/v1/tasks/task-1/progress")).json()
    second = (await client.delete("/v1/tasks/task-1/progress")).json()

    assert first["stopped"] is True
    assert second["stopped"] is False
    assert (await client.post("/v1/tasks/task-1/refresh")).status_code == 404


@pytest.mark.asyncio
async def test_metrics_count_feed_events(client):
    await client.get("/v1/tasks/task-1/progress")
    await _report(client, "Planning")

    body = (await client.get("/v1/metrics")).json()

    assert body["counters"]["feed.events.insert"] == 1
