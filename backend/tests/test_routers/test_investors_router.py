import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from helpers import auth_headers, make_user
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from raisetracker.models.user import User

ACME = {"name": "Acme Ventures", "category": "VC", "stage": "Contacted", "owner": "Dana"}


@pytest_asyncio.fixture
async def headers(member: User) -> dict[str, str]:
    return auth_headers(member)


async def _create(client: AsyncClient, headers: dict, **overrides) -> dict:
    response = await client.post("/api/investors", json={**ACME, **overrides}, headers=headers)
    assert response.status_code == 201
    return response.json()


def _if_match(stamp: str) -> dict[str, str]:
    return {"If-Match": f'"{stamp}"'}


@pytest.mark.asyncio
async def test_requires_session(client: AsyncClient):
    assert (await client.get("/api/investors")).status_code == 401
    assert (await client.post("/api/investors", json=ACME)).status_code == 401


@pytest.mark.asyncio
async def test_create_returns_record_and_etag(client: AsyncClient, headers: dict, member: User):
    response = await client.post(
        "/api/investors",
        json={**ACME, "commitAmount": "250000.50", "contactEmail": "lp@acme.vc"},
        headers=headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "Acme Ventures"
    assert data["status"] == "Active"
    assert data["contactEmail"] == "lp@acme.vc"
    assert Decimal(data["commitAmount"]) == Decimal("250000.50")
    assert data["tasks"] == []
    assert data["createdBy"] == str(member.id)
    assert response.headers["etag"] == f'"{data["versionStamp"]}"'
    assert response.headers["location"] == f"/api/investors/{data['id']}"


@pytest.mark.asyncio
async def test_create_validates_required_fields(client: AsyncClient, headers: dict):
    response = await client.post("/api/investors", json={"name": "No stage"}, headers=headers)
    assert response.status_code == 422
    assert response.json()["status_code"] == 422


@pytest.mark.asyncio
async def test_get_and_list(client: AsyncClient, headers: dict):
    created = await _create(client, headers)
    await _create(client, headers, name="Beta Capital")

    response = await client.get(f"/api/investors/{created['id']}", headers=headers)
    assert response.status_code == 200
    assert response.json()["versionStamp"] == created["versionStamp"]
    assert response.headers["etag"] == f'"{created["versionStamp"]}"'

    listing = await client.get("/api/investors", headers=headers)
    assert listing.status_code == 200
    assert {i["name"] for i in listing.json()} == {"Acme Ventures", "Beta Capital"}
    assert "tasks" not in listing.json()[0]


@pytest.mark.asyncio
async def test_get_unknown_and_malformed_ids(client: AsyncClient, headers: dict):
    missing = await client.get(f"/api/investors/{uuid.uuid4()}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "Investor not found"

    malformed = await client.get("/api/investors/not-a-uuid", headers=headers)
    assert malformed.status_code == 400


@pytest.mark.asyncio
async def test_two_editors_second_write_conflicts(
    client: AsyncClient, db_session: AsyncSession, member: User
):
    """A and B read the same version; A saves first; B's save is refused until B reloads."""
    a_headers = auth_headers(member)
    other = await make_user(db_session, username="b@example.com", display_name="B")
    b_headers = auth_headers(other)

    created = await _create(client, a_headers)
    investor_url = f"/api/investors/{created['id']}"
    a_read = (await client.get(investor_url, headers=a_headers)).json()
    b_read = (await client.get(investor_url, headers=b_headers)).json()
    assert a_read["versionStamp"] == b_read["versionStamp"]

    a_write = await client.put(
        investor_url,
        json={"notes": "Partner meeting booked"},
        headers={**a_headers, **_if_match(a_read["versionStamp"])},
    )
    assert a_write.status_code == 200
    assert a_write.json()["versionStamp"] != a_read["versionStamp"]

    b_write = await client.put(
        investor_url,
        json={"owner": "Bea"},
        headers={**b_headers, **_if_match(b_read["versionStamp"])},
    )
    assert b_write.status_code == 409
    body = b_write.json()
    assert body["code"] == "ETAG_MISMATCH"
    assert body["error"] == "Data changed, please reload"

    reloaded = await client.get(investor_url, headers=b_headers)
    current = reloaded.json()
    assert current["owner"] == "Dana"
    assert current["notes"] == "Partner meeting booked"
    assert current["versionStamp"] == a_write.json()["versionStamp"]

    retry = await client.put(
        investor_url,
        json={"owner": "Bea"},
        headers={**b_headers, "If-Match": reloaded.headers["etag"]},
    )
    assert retry.status_code == 200
    assert retry.json()["owner"] == "Bea"
    assert retry.json()["notes"] == "Partner meeting booked"


@pytest.mark.asyncio
async def test_stamp_in_body_is_honoured(client: AsyncClient, headers: dict):
    created = await _create(client, headers)
    url = f"/api/investors/{created['id']}"

    ok = await client.put(
        url, json={"notes": "first", "versionStamp": created["versionStamp"]}, headers=headers
    )
    assert ok.status_code == 200

    stale = await client.put(
        url, json={"notes": "second", "versionStamp": created["versionStamp"]}, headers=headers
    )
    assert stale.status_code == 409


@pytest.mark.asyncio
async def test_if_match_header_wins_over_body(client: AsyncClient, headers: dict):
    created = await _create(client, headers)
    url = f"/api/investors/{created['id']}"
    updated = (await client.put(url, json={"notes": "x"}, headers=headers)).json()

    response = await client.put(
        url,
        json={"notes": "y", "versionStamp": updated["versionStamp"]},
        headers={**headers, **_if_match(created["versionStamp"])},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_partial_update_and_blank_amount(client: AsyncClient, headers: dict):
    created = await _create(client, headers, commitAmount="1000")
    url = f"/api/investors/{created['id']}"

    response = await client.put(url, json={"commitAmount": ""}, headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["commitAmount"]) == 0
    assert data["owner"] == "Dana"
    assert data["stage"] == "Contacted"


@pytest.mark.asyncio
async def test_delete_is_guarded(client: AsyncClient, headers: dict):
    created = await _create(client, headers)
    url = f"/api/investors/{created['id']}"
    updated = (await client.put(url, json={"stage": "Pitched"}, headers=headers)).json()

    stale = await client.delete(url, headers={**headers, **_if_match(created["versionStamp"])})
    assert stale.status_code == 409

    response = await client.delete(
        url, headers={**headers, **_if_match(updated["versionStamp"])}
    )
    assert response.status_code == 204
    assert (await client.get(url, headers=headers)).status_code == 404
    assert (await client.delete(url, headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_task_lifecycle(client: AsyncClient, headers: dict):
    created = await _create(client, headers)
    url = f"/api/investors/{created['id']}"

    added = await client.post(
        f"{url}/tasks",
        json={"description": "Send deck", "dueDate": "2024-04-01"},
        headers={**headers, **_if_match(created["versionStamp"])},
    )
    assert added.status_code == 200
    investor = added.json()
    [task] = investor["tasks"]
    assert task["description"] == "Send deck"
    assert task["done"] is False
    assert investor["versionStamp"] != created["versionStamp"]

    done = await client.put(
        f"{url}/tasks/{task['id']}",
        json={"done": True, "versionStamp": investor["versionStamp"]},
        headers=headers,
    )
    assert done.status_code == 200
    assert done.json()["tasks"][0]["done"] is True

    # The stamp from before the task update is stale now
    stale = await client.delete(
        f"{url}/tasks/{task['id']}",
        headers={**headers, **_if_match(investor["versionStamp"])},
    )
    assert stale.status_code == 409

    removed = await client.delete(
        f"{url}/tasks/{task['id']}",
        headers={**headers, **_if_match(done.json()["versionStamp"])},
    )
    assert removed.status_code == 200
    assert removed.json()["tasks"] == []


@pytest.mark.asyncio
async def test_unknown_task(client: AsyncClient, headers: dict):
    created = await _create(client, headers)
    response = await client.put(
        f"/api/investors/{created['id']}/tasks/{uuid.uuid4()}",
        json={"done": True},
        headers=headers,
    )
    assert response.status_code == 404
    assert response.json()["error"] == "Task not found"


@pytest.mark.asyncio
async def test_history(client: AsyncClient, headers: dict, member: User):
    member_id = str(member.id)
    created = await _create(client, headers)
    url = f"/api/investors/{created['id']}"
    await client.put(url, json={"stage": "Pitched"}, headers=headers)
    await client.post(
        f"{url}/tasks", json={"description": "Call", "dueDate": "2024-05-01"}, headers=headers
    )

    response = await client.get(f"{url}/history", headers=headers)

    assert response.status_code == 200
    events = response.json()
    assert [e["eventType"] for e in events] == [
        "investor.created",
        "investor.updated",
        "investor.task_added",
    ]
    assert all(e["userId"] == member_id for e in events)
