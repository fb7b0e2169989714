"""Integration tests — export API round-trips against an in-memory database."""

import asyncio
import os

import pytest

pytestmark = pytest.mark.asyncio


def _payload(**overrides):
    payload = {
        "name": "Q1",
        "dataTypes": {"applications": True},
        "filters": {},
        "format": "csv",
    }
    payload.update(overrides)
    return payload


async def _create(client, headers, **overrides):
    return await client.post("/api/v1/exports/", json=_payload(**overrides), headers=headers)


async def _run_processor(processor):
    await processor.poll_once()
    tasks = list(processor._tasks)
    if tasks:
        await asyncio.gather(*tasks)


async def _history_total(client, headers):
    resp = await client.get("/api/v1/exports/", headers=headers)
    assert resp.status_code == 200
    return resp.json()["data"]["pagination"]["total"]


# -----------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------

async def test_rejects_unauthenticated(client):
    resp = await client.get("/api/v1/exports/")
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"] is True
    assert body["status_code"] == 401


async def test_rejects_bad_token(client):
    resp = await client.get("/api/v1/exports/", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


# -----------------------------------------------------------------------
# Create
# -----------------------------------------------------------------------

async def test_create_returns_pending_job(client, super_admin_headers):
    resp = await _create(client, super_admin_headers, filters={"dateRange": "current-quarter"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["status"] == "pending"
    assert body["data"]["exportId"]


async def test_admin_cannot_export_employees(client, admin_headers):
    resp = await _create(client, admin_headers, dataTypes={"employees": True})
    assert resp.status_code == 403
    assert "employees" in resp.json()["detail"]
    assert await _history_total(client, admin_headers) == 0


async def test_applicant_cannot_export(client, auth_headers, seed):
    resp = await _create(client, auth_headers(seed.alice_id, "applicant"))
    assert resp.status_code == 403


async def test_invalid_price_range_rejected(client, super_admin_headers):
    resp = await _create(client, super_admin_headers, filters={"priceRange": {"min": 100, "max": 50}})
    assert resp.status_code == 400
    assert "Price range minimum" in resp.json()["detail"]
    assert await _history_total(client, super_admin_headers) == 0


async def test_custom_range_requires_dates(client, super_admin_headers):
    resp = await _create(client, super_admin_headers, filters={"dateRange": "custom"})
    assert resp.status_code == 400


async def test_mixed_case_custom_range_requires_dates(client, super_admin_headers):
    resp = await _create(client, super_admin_headers, filters={"dateRange": "Custom"})
    assert resp.status_code == 400
    assert "startDate and endDate" in resp.json()["detail"]
    assert await _history_total(client, super_admin_headers) == 0


async def test_no_data_type_rejected(client, super_admin_headers):
    resp = await _create(client, super_admin_headers, dataTypes={"applications": False})
    assert resp.status_code == 400
    assert "At least one data type" in resp.json()["detail"]


async def test_unknown_format_rejected(client, super_admin_headers):
    resp = await _create(client, super_admin_headers, format="docx")
    assert resp.status_code == 400


# -----------------------------------------------------------------------
# Status, download, history
# -----------------------------------------------------------------------

async def test_full_export_round_trip(client, processor, super_admin_headers):
    export_id = (await _create(client, super_admin_headers)).json()["data"]["exportId"]

    status_resp = await client.get(f"/api/v1/exports/{export_id}", headers=super_admin_headers)
    assert status_resp.status_code == 200
    data = status_resp.json()["data"]
    assert data["status"] == "pending"
    assert data["progress"] == 0
    assert "downloadUrl" not in data

    not_ready = await client.get(f"/api/v1/exports/{export_id}/download", headers=super_admin_headers)
    assert not_ready.status_code == 400

    await _run_processor(processor)

    data = (await client.get(f"/api/v1/exports/{export_id}", headers=super_admin_headers)).json()["data"]
    assert data["status"] == "completed"
    assert data["progress"] == 100
    assert data["fileSize"] > 0
    assert data["downloadUrl"] == f"/api/v1/exports/{export_id}/download"
    assert data["completedAt"] is not None

    download = await client.get(data["downloadUrl"], headers=super_admin_headers)
    assert download.status_code == 200
    assert download.headers["content-type"] == "text/csv; charset=utf-8"
    text = download.content.decode("utf-8-sig")
    assert text.startswith("Type,ID,Name")
    assert text.count("Application,") == 4


async def test_download_missing_file(client, processor, super_admin_headers):
    export_id = (await _create(client, super_admin_headers, format="json")).json()["data"]["exportId"]
    await _run_processor(processor)

    data = (await client.get(f"/api/v1/exports/{export_id}", headers=super_admin_headers)).json()["data"]
    download = await client.get(data["downloadUrl"], headers=super_admin_headers)
    assert download.headers["content-type"] == "application/json; charset=utf-8"

    from traininghub.export.job_store import get_export_job
    async with processor._session_factory() as session:
        os.remove((await get_export_job(session, export_id)).file_path)

    resp = await client.get(data["downloadUrl"], headers=super_admin_headers)
    assert resp.status_code == 404


async def test_failed_export_reports_error(client, super_admin_headers, seeded_factory, export_config):
    from traininghub.export.errors import CollectionError
    from traininghub.export.processor import ExportProcessor

    class BrokenCollector:
        entity_type = "applications"

        async def collect(self, filters, session):
            raise CollectionError("applications source unavailable", entity_type="applications")

    export_id = (await _create(client, super_admin_headers)).json()["data"]["exportId"]
    await _run_processor(
        ExportProcessor(seeded_factory, export_config, collectors={"applications": BrokenCollector()})
    )

    data = (await client.get(f"/api/v1/exports/{export_id}", headers=super_admin_headers)).json()["data"]
    assert data["status"] == "failed"
    assert "applications source unavailable" in data["errorMessage"]
    assert "downloadUrl" not in data


async def test_history_is_scoped_to_owner(client, super_admin_headers, admin_headers):
    await _create(client, super_admin_headers, name="mine")
    admin_job = (await _create(client, admin_headers, name="theirs")).json()["data"]["exportId"]

    admin_history = (await client.get("/api/v1/exports/", headers=admin_headers)).json()["data"]
    assert [e["id"] for e in admin_history["exports"]] == [admin_job]
    assert admin_history["pagination"]["total"] == 1

    assert await _history_total(client, super_admin_headers) == 2


async def test_history_pagination_and_status(client, super_admin_headers):
    for i in range(3):
        await _create(client, super_admin_headers, name=f"job {i}")

    resp = await client.get("/api/v1/exports/?page=2&limit=2", headers=super_admin_headers)
    data = resp.json()["data"]
    assert len(data["exports"]) == 1
    assert data["pagination"] == {"page": 2, "limit": 2, "total": 3, "totalPages": 2}

    resp = await client.get("/api/v1/exports/?status=completed", headers=super_admin_headers)
    assert resp.json()["data"]["pagination"]["total"] == 0


async def test_history_query_validation(client, super_admin_headers):
    assert (await client.get("/api/v1/exports/?limit=101", headers=super_admin_headers)).status_code == 422
    assert (await client.get("/api/v1/exports/?page=0", headers=super_admin_headers)).status_code == 422
    assert (await client.get("/api/v1/exports/?status=done", headers=super_admin_headers)).status_code == 422


async def test_other_users_job_is_not_found(client, super_admin_headers, admin_headers):
    export_id = (await _create(client, super_admin_headers)).json()["data"]["exportId"]
    resp = await client.get(f"/api/v1/exports/{export_id}", headers=admin_headers)
    assert resp.status_code == 404

    admin_job = (await _create(client, admin_headers)).json()["data"]["exportId"]
    resp = await client.get(f"/api/v1/exports/{admin_job}", headers=super_admin_headers)
    assert resp.status_code == 200


# -----------------------------------------------------------------------
# Delete
# -----------------------------------------------------------------------

async def test_delete_removes_job_and_file(client, processor, admin_headers):
    export_id = (await _create(client, admin_headers)).json()["data"]["exportId"]
    await _run_processor(processor)

    from traininghub.export.job_store import get_export_job
    async with processor._session_factory() as session:
        file_path = (await get_export_job(session, export_id)).file_path
    assert os.path.isfile(file_path)

    resp = await client.delete(f"/api/v1/exports/{export_id}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "Export deleted successfully"
    assert not os.path.exists(file_path)

    again = await client.delete(f"/api/v1/exports/{export_id}", headers=admin_headers)
    assert again.status_code == 404


async def test_delete_foreign_or_missing_job(client, super_admin_headers, admin_headers):
    export_id = (await _create(client, super_admin_headers)).json()["data"]["exportId"]

    assert (await client.delete(f"/api/v1/exports/{export_id}", headers=admin_headers)).status_code == 404
    assert (await client.delete("/api/v1/exports/does-not-exist", headers=admin_headers)).status_code == 404
    assert (await client.get(f"/api/v1/exports/{export_id}", headers=super_admin_headers)).status_code == 200


# -----------------------------------------------------------------------
# App plumbing
# -----------------------------------------------------------------------

async def test_health_reports_processor(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert "details" in body["export_processor"]


async def test_request_id_is_echoed(client, super_admin_headers):
    resp = await client.get(
        "/api/v1/exports/", headers={**super_admin_headers, "X-Request-ID": "req-123"}
    )
    assert resp.headers["X-Request-ID"] == "req-123"


async def test_malformed_request_id_is_replaced(client, super_admin_headers):
    resp = await client.get(
        "/api/v1/exports/", headers={**super_admin_headers, "X-Request-ID": "bad id with spaces"}
    )
    request_id = resp.headers["X-Request-ID"]
    assert request_id != "bad id with spaces"
    assert len(request_id) == 32


async def test_error_body_carries_request_id(client):
    resp = await client.get("/api/v1/exports/", headers={"X-Request-ID": "req-401"})
    assert resp.status_code == 401
    assert resp.json()["request_id"] == "req-401"
