from datetime import datetime, timedelta, timezone

import httpx
import pytest
from httpx import AsyncClient
from mongomock_motor import AsyncMongoMockClient

from petcontest.database import Database, create_indexes
from petcontest.main import app

DEVICE = {"device_info": {"device_id": "abc", "device_model": "Pixel 8", "platform": "android"}}


@pytest.fixture
async def client(monkeypatch):
    monkeypatch.setattr(Database, "client", AsyncMongoMockClient())
    await create_indexes(Database.get_db())
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def schedule(date: str, entry_open: bool):
    """Competition payload relative to the real clock."""
    now = datetime.now(timezone.utc)
    entry_start = now - timedelta(hours=1) if entry_open else now + timedelta(days=1)
    return {
        "date": date,
        "entry_fee": 10,
        "entry_start_time": entry_start.isoformat(),
        "entry_end_time": (entry_start + timedelta(hours=2)).isoformat(),
        "start_time": (entry_start + timedelta(hours=3)).isoformat(),
        "end_time": (entry_start + timedelta(hours=4)).isoformat(),
    }


async def create(client, date, entry_open=True):
    res = await client.post("/api/admin/competitions", json=schedule(date, entry_open))
    assert res.status_code == 201
    return res.json()["data"]["competition"]


async def test_health(client):
    res = await client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "healthy", "database": "connected"}


async def test_unknown_competition_is_404(client):
    res = await client.get("/api/competitions/not-an-id")

    assert res.status_code == 404
    assert res.json() == {"success": False, "message": "Competition not found", "code": "not_found"}


async def test_duplicate_date_is_400(client):
    await create(client, "2099-01-01")

    res = await client.post("/api/admin/competitions", json=schedule("2099-01-01", True))

    assert res.status_code == 400
    assert res.json()["code"] == "validation_error"


async def test_entry_requires_caller(client):
    competition = await create(client, "2099-01-01")

    res = await client.post(
        f"/api/competitions/{competition['id']}/entry",
        json={"pet_name": "Rex", "photo_url": "https://cdn.example.com/rex.jpg"}
    )

    assert res.status_code == 401


async def test_entry_window_closed_maps_to_400(client):
    competition = await create(client, "2099-01-01", entry_open=False)

    res = await client.post(
        f"/api/competitions/{competition['id']}/entry",
        json={"pet_name": "Rex", "photo_url": "https://cdn.example.com/rex.jpg"},
        headers={"X-User-Id": "u1"}
    )

    assert res.status_code == 400
    assert res.json()["success"] is False
    assert res.json()["code"] == "entry_window_closed"


async def test_insufficient_funds_maps_to_400(client):
    competition = await create(client, "2099-01-01")

    res = await client.post(
        f"/api/competitions/{competition['id']}/entry",
        json={"pet_name": "Rex", "photo_url": "https://cdn.example.com/rex.jpg"},
        headers={"X-User-Id": "broke-user"}
    )

    assert res.status_code == 400
    assert res.json()["code"] == "insufficient_funds"


async def test_submit_entry_and_read_it_back(client):
    competition = await create(client, "2099-01-01")
    await Database.get_db().wallets.insert_one({"user_id": "u1", "balance": 25})

    res = await client.post(
        f"/api/competitions/{competition['id']}/entry",
        json={"pet_name": "Rex", "photo_url": "https://cdn.example.com/rex.jpg"},
        headers={"X-User-Id": "u1"}
    )
    assert res.status_code == 201
    assert res.json()["data"]["entry"]["updated_token_balance"] == 15

    mine = await client.get(f"/api/competitions/{competition['id']}/my-entry", headers={"X-User-Id": "u1"})
    assert mine.json()["data"]["has_entry"] is True
    assert mine.json()["data"]["entry"]["current_rank"] == 1

    details = await client.get(f"/api/competitions/{competition['id']}")
    assert details.json()["data"]["competition"]["prize_pool"] == 10
    assert len(details.json()["data"]["entries"]) == 1


async def test_vote_on_upcoming_competition_is_closed(client):
    competition = await create(client, "2099-01-01")
    await Database.get_db().wallets.insert_one({"user_id": "u1", "balance": 25})
    entry = await client.post(
        f"/api/competitions/{competition['id']}/entry",
        json={"pet_name": "Rex", "photo_url": "https://cdn.example.com/rex.jpg"},
        headers={"X-User-Id": "u1"}
    )
    entry_id = entry.json()["data"]["entry"]["id"]

    res = await client.post(
        f"/api/competitions/{competition['id']}/vote/{entry_id}",
        json=DEVICE,
        headers={"X-User-Id": "u2"}
    )

    assert res.status_code == 400
    assert res.json()["code"] == "voting_closed"


async def test_unknown_job(client):
    res = await client.post("/api/admin/competitions/jobs/reindex")
    assert res.status_code == 404


async def test_update_statuses_job(client):
    res = await client.post("/api/admin/competitions/jobs/update-statuses")

    assert res.status_code == 200
    assert res.json()["data"] == {"activated": 0}


async def test_entry_details_route(client):
    competition = await create(client, "2099-01-01")
    await Database.get_db().wallets.insert_one({"user_id": "u1", "balance": 25})
    entry = await client.post(
        f"/api/competitions/{competition['id']}/entry",
        json={"pet_name": "Rex", "photo_url": "https://cdn.example.com/rex.jpg"},
        headers={"X-User-Id": "u1"}
    )
    url = f"/api/competitions/{competition['id']}/entries/{entry.json()['data']['entry']['id']}"

    assert (await client.get(url)).status_code == 401

    res = await client.get(url, headers={"X-User-Id": "u2", "X-Device-Fingerprint": "fp-1"})
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["entry"]["pet_name"] == "Rex"
    assert data["can_vote"] is False
    assert data["vote_status_message"] == "Competition is not active"
    assert data["vote_status"]["device_has_voted"] is False

    missing = await client.get(
        f"/api/competitions/{competition['id']}/entries/65f000000000000000000000",
        headers={"X-User-Id": "u2"}
    )
    assert missing.status_code == 404
    assert missing.json()["message"] == "Entry not found"


async def test_admin_vote_queue(client):
    competition = await create(client, "2099-01-01")
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    await Database.get_db().competition_votes.insert_many([
        {
            "competition_id": competition["id"], "entry_id": "65f000000000000000000001",
            "user_id": f"voter-{i}", "device_fingerprint": "fp", "flagged_for_review": i == 2,
            "created_at": now + timedelta(seconds=i), "updated_at": now
        }
        for i in range(3)
    ])

    res = await client.get("/api/admin/votes", params={"competition_id": competition["id"]})
    assert res.status_code == 200
    data = res.json()["data"]
    assert [vote["user_id"] for vote in data["votes"]] == ["voter-2", "voter-1", "voter-0"]
    assert data["pagination"]["total"] == 3
    assert data["votes"][0]["competition"]["date"] == "2099-01-01"
    assert data["votes"][0]["entry"] is None

    flagged = await client.get("/api/admin/votes", params={"flagged_only": "true"})
    assert [vote["user_id"] for vote in flagged.json()["data"]["votes"]] == ["voter-2"]

    assert (await client.get("/api/admin/votes", params={"sort_order": "sideways"})).status_code == 422
