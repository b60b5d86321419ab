from __future__ import annotations

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from kinwatch.apps.api.deps import get_store
from kinwatch.apps.api.main import create_app
from kinwatch.persistence import paths
from kinwatch.persistence.memory_store import MemoryStore
from kinwatch.services.auth.principals import issue_token
from kinwatch.services.quota import QuotaService
from kinwatch.tests.utils.accounts import make_admin, seed_account


def _auth(uid: str, email: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(uid, email=email)}"}


@pytest.fixture
def api_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
async def client(api_store: MemoryStore):
    # Route every request at one in-memory store; triggers run inline.
    app = create_app()
    app.dependency_overrides[get_store] = lambda: api_store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


@pytest.mark.asyncio
async def test_health_is_public(client: AsyncClient) -> None:
    response = await client.get("/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["status"] == "ok"
    assert body["data"]["trigger_mode"] == "inline"
    assert body["data"]["queue_depth"] == 0
    assert body["meta"]["api_version"] == "v1"
    assert response.headers["X-Request-Id"] == body["meta"]["request_id"]


@pytest.mark.asyncio
async def test_anonymous_and_non_admin_callers_get_error_envelopes(
    client: AsyncClient, api_store: MemoryStore
) -> None:
    command = {"targetUid": "u1", "deviceKey": "d1", "commandType": "capturePhoto"}

    anonymous = await client.post("/v1/admin/commands", json=command)
    malformed = await client.post("/v1/admin/commands", json=command, headers={"Authorization": "Token abc"})
    member = await client.post("/v1/admin/commands", json=command, headers=_auth("u1"))

    assert anonymous.status_code == 401
    assert anonymous.json()["error"]["code"] == "UNAUTHENTICATED"
    assert anonymous.headers["WWW-Authenticate"] == "Bearer"
    assert malformed.status_code == 401
    assert member.status_code == 403
    assert member.json()["error"] == {
        "code": "PERMISSION_DENIED",
        "message": "User must be an admin to perform this action.",
    }
    assert await api_store.get(paths.command_history("u1", "d1")) is None


@pytest.mark.asyncio
async def test_command_over_limit_returns_429(client: AsyncClient, api_store: MemoryStore) -> None:
    await make_admin(api_store, "admin1")
    today = QuotaService().today()
    await seed_account(
        api_store,
        "U1",
        created_at=datetime.now(timezone.utc),
        limits={"photos": {"count": 5, "max": 5, "date": today}},
    )

    response = await client.post(
        "/v1/admin/commands",
        json={"targetUid": "U1", "deviceKey": "d1", "commandType": "capturePhoto"},
        headers=_auth("admin1"),
    )

    assert response.status_code == 429
    error = response.json()["error"]
    assert error["code"] == "RESOURCE_EXHAUSTED"
    assert error["details"] == {"reason": "LIMIT_REACHED", "type": "photos"}
    assert await api_store.get(paths.command_history("U1", "d1")) is None

    audit = await client.get("/v1/audit/entries", headers=_auth("admin1"))
    [entry] = audit.json()["data"]["items"]
    assert entry["action"] == "COMMAND_BLOCKED"
    assert entry["verified"] is True


@pytest.mark.asyncio
async def test_command_flow_and_history_listing(client: AsyncClient, api_store: MemoryStore) -> None:
    await make_admin(api_store, "admin1")
    await seed_account(api_store, "U1", created_at=datetime.now(timezone.utc))

    sent = await client.post(
        "/v1/admin/commands",
        json={"targetUid": "U1", "deviceKey": "d1", "commandType": "recordVideo", "payload": {"seconds": 10}},
        headers=_auth("admin1"),
    )
    history = await client.get("/v1/admin/accounts/U1/devices/d1/commands", headers=_auth("admin1"))

    assert sent.status_code == 200
    command_id = sent.json()["data"]["command_id"]
    [item] = history.json()["data"]["items"]
    assert item["id"] == command_id
    assert item["status"] == "pending"
    assert await api_store.get(paths.limits("U1", "videos/count")) == 1


@pytest.mark.asyncio
async def test_unknown_command_type_is_invalid_argument(client: AsyncClient, api_store: MemoryStore) -> None:
    await make_admin(api_store, "admin1")

    response = await client.post(
        "/v1/admin/commands",
        json={"targetUid": "U1", "deviceKey": "d1", "commandType": "selfDestruct"},
        headers=_auth("admin1"),
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_ARGUMENT"


@pytest.mark.asyncio
async def test_missing_body_fields_fail_validation(client: AsyncClient, api_store: MemoryStore) -> None:
    await make_admin(api_store, "admin1")

    response = await client.post("/v1/admin/plan", json={"targetUid": "U1"}, headers=_auth("admin1"))

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_keystroke_upload_reaches_the_vault(client: AsyncClient, api_store: MemoryStore) -> None:
    await make_admin(api_store, "admin1")
    await seed_account(api_store, "child1", created_at=datetime.now(timezone.utc))

    upload = await client.post(
        "/v1/devices/d1/keystrokes",
        json={"text": "my bank otp is 4411"},
        headers=_auth("child1"),
    )
    record_id = upload.json()["data"]["record_id"]
    vault = await client.get("/v1/admin/accounts/child1/vault", headers=_auth("admin1"))

    assert upload.status_code == 200
    banking = vault.json()["data"]["buckets"]["Banking_Logs"]
    assert list(banking) == [record_id]
    assert banking[record_id]["type"] == "FINANCIAL_RISK"
    assert vault.json()["data"]["buckets"]["Danger_Logs"] == {}


@pytest.mark.asyncio
async def test_upload_to_frozen_account_is_removed(client: AsyncClient, api_store: MemoryStore) -> None:
    await make_admin(api_store, "admin1")
    await seed_account(api_store, "child1", created_at=datetime.now(timezone.utc))
    frozen = await client.post(
        "/v1/admin/freeze",
        json={"targetUid": "child1", "isFrozen": True},
        headers=_auth("admin1"),
    )

    upload = await client.post("/v1/devices/d1/photo", json={"url": "gs://b/p.jpg"}, headers=_auth("child1"))

    assert frozen.json()["data"]["message"] == "Account frozen successfully."
    assert upload.status_code == 200
    assert await api_store.get(upload.json()["data"]["path"]) is None


@pytest.mark.asyncio
async def test_telemetry_rejects_unknown_kinds_and_reserved_keys(client: AsyncClient) -> None:
    unknown = await client.post("/v1/devices/d1/contacts", json={"n": 1}, headers=_auth("child1"))
    reserved = await client.put("/v1/devices/profile/status", json={"battery": 5}, headers=_auth("child1"))

    assert unknown.status_code == 400
    assert reserved.status_code == 400


@pytest.mark.asyncio
async def test_dotted_device_keys_and_field_names_are_invalid_arguments(
    client: AsyncClient, api_store: MemoryStore
) -> None:
    dotted_device = await client.post(
        "/v1/devices/Pixel.7/keystrokes", json={"text": "hello there"}, headers=_auth("child1")
    )
    dotted_field = await client.post(
        "/v1/devices/d1/keystrokes", json={"a.b": "hello there"}, headers=_auth("child1")
    )

    for response in (dotted_device, dotted_field):
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ARGUMENT"
    assert await api_store.get("account/child1") is None


@pytest.mark.asyncio
async def test_low_battery_status_notifies_the_account(client: AsyncClient, api_store: MemoryStore) -> None:
    response = await client.put("/v1/devices/d1/status", json={"battery": 4}, headers=_auth("child1"))

    assert response.status_code == 200
    [notification] = (await api_store.get(paths.notifications("child1"))).values()
    assert notification["type"] == "WARNING"


@pytest.mark.asyncio
async def test_self_serve_signup_location_and_delete(client: AsyncClient, api_store: MemoryStore) -> None:
    headers = _auth("parent1", email="parent1@example.com")

    signup = await client.post("/v1/self/account", json={"display_name": "Meera"}, headers=headers)
    location = await client.post("/v1/self/location", json={"city": "Pune", "lat": 18.5}, headers=headers)

    assert signup.status_code == 200
    assert signup.json()["data"]["profile"]["name"] == "Meera"
    assert (await api_store.get(paths.replica("parent1")))["email"] == "parent1@example.com"
    assert location.json()["data"] == {"success": True, "message": "Location updated successfully."}
    assert (await api_store.get(paths.location_info("parent1")))["city"] == "Pune"

    deleted = await client.delete("/v1/self/account", headers=headers)

    assert deleted.json()["data"]["message"] == "Account deleted successfully."
    assert await api_store.get(paths.account("parent1")) is None
    assert await api_store.get(paths.identity("parent1")) is None
