from uuid import uuid4

from conftest import seed_dead_letter
from fastapi.testclient import TestClient


def test_stats(client: TestClient, ctx):
    seed_dead_letter(ctx.store)

    response = client.get("/v1/admin/dlq/stats")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["by_status"]["pending"] == 1
    assert data["by_queue"] == {"email": 1}


def test_list_entries(client: TestClient, ctx):
    seed_dead_letter(ctx.store)
    seed_dead_letter(
        ctx.store, queue_name="cleanup", job_type="CLEANUP", payload={"type": "temp_files"}
    )

    response = client.get("/v1/admin/dlq", params={"queue_name": "cleanup"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["entries"][0]["job_type"] == "CLEANUP"
    assert data["limit"] == 50


def test_list_rejects_oversized_page(client: TestClient):
    response = client.get("/v1/admin/dlq", params={"limit": 500})
    assert response.status_code == 422


def test_get_entry(client: TestClient, ctx):
    entry = seed_dead_letter(ctx.store)

    response = client.get(f"/v1/admin/dlq/{entry.id}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == str(entry.id)
    assert data["error"] == "SMTP unavailable"
    assert data["attempts_made"] == 3


def test_get_unknown_entry(client: TestClient):
    response = client.get(f"/v1/admin/dlq/{uuid4()}")

    assert response.status_code == 404
    assert response.json()["ok"] is False


def test_retry_entry(client: TestClient, ctx):
    entry = seed_dead_letter(ctx.store)

    response = client.post(f"/v1/admin/dlq/{entry.id}/retry")

    assert response.status_code == 200
    job_id = response.json()["data"]["job_id"]
    assert ctx.store.jobs[entry.retried_job_id].status == "waiting"
    assert str(entry.retried_job_id) == job_id

    again = client.post(f"/v1/admin/dlq/{entry.id}/retry")
    assert again.status_code == 409


def test_discard_entry(client: TestClient, ctx):
    entry = seed_dead_letter(ctx.store)

    assert client.post(f"/v1/admin/dlq/{entry.id}/discard").status_code == 200
    assert client.post(f"/v1/admin/dlq/{entry.id}/discard").status_code == 404


def test_discard_batch_partial_success(client: TestClient, ctx):
    entry = seed_dead_letter(ctx.store)
    missing = str(uuid4())

    response = client.post(
        "/v1/admin/dlq/discard-batch", json={"ids": [str(entry.id), missing]}
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["results"] == {str(entry.id): True, missing: False}
    assert data["succeeded"] == 1
    assert data["failed"] == 1


def test_retry_batch(client: TestClient, ctx):
    first = seed_dead_letter(ctx.store)
    second = seed_dead_letter(ctx.store)

    response = client.post(
        "/v1/admin/dlq/retry-batch", json={"ids": [str(first.id), str(second.id)]}
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["succeeded"] == 2
    assert data["results"][str(first.id)]["success"] is True


def test_batch_request_requires_ids(client: TestClient):
    response = client.post("/v1/admin/dlq/retry-batch", json={"ids": []})
    assert response.status_code == 422


def test_cleanup(client: TestClient, ctx):
    seed_dead_letter(ctx.store)

    response = client.post("/v1/admin/dlq/cleanup", json={"older_than_days": 7})

    assert response.status_code == 200
    assert response.json()["data"] == {"deleted": 0, "older_than_days": 7}


def test_admin_role_required(client: TestClient, member_headers):
    response = client.get("/v1/admin/dlq/stats", headers=member_headers)

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Admin access required"
