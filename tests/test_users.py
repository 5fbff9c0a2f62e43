"""
test_users.py — Tests for /api/users (sync, me, dashboard, trial).
"""

import base64

from authentiscan.core.database import USERS
from conftest import auth_headers, seed_user

_PROFILE = {"email": "Alice@Example.com", "full_name": "Alice Liddell"}


class TestSync:
    async def test_first_sync_opens_account(self, api_client, fake_db):
        r = await api_client.post("/api/users/sync", json=_PROFILE, headers=auth_headers("alice"))

        assert r.status_code == 200
        body = r.json()
        assert body["external_id"] == "alice"
        assert body["email"] == "alice@example.com"
        assert body["credits"] == 5
        assert body["plan"] == "trial"
        assert "settled_references" not in body
        assert await fake_db[USERS].count_documents({"external_id": "alice"}) == 1

    async def test_resync_updates_profile_not_credits(self, api_client, fake_db):
        headers = auth_headers("alice")
        await api_client.post("/api/users/sync", json=_PROFILE, headers=headers)
        await fake_db[USERS].update_one({"external_id": "alice"}, {"$set": {"credits": 42}})

        r = await api_client.post(
            "/api/users/sync",
            json={**_PROFILE, "full_name": "Alice L.", "image_url": "https://img.example.com/a.png"},
            headers=headers,
        )

        body = r.json()
        assert body["full_name"] == "Alice L."
        assert body["image_url"] == "https://img.example.com/a.png"
        assert body["credits"] == 42
        assert await fake_db[USERS].count_documents({}) == 1

    async def test_email_taken_by_other_account(self, api_client, fake_db):
        await seed_user(fake_db, "bob", email="alice@example.com")
        r = await api_client.post("/api/users/sync", json=_PROFILE, headers=auth_headers("alice"))

        assert r.status_code == 409
        assert r.json()["code"] == "email_in_use"

    async def test_invalid_email(self, api_client):
        r = await api_client.post(
            "/api/users/sync",
            json={"email": "not-an-email", "full_name": "X"},
            headers=auth_headers("alice"),
        )
        assert r.status_code == 422

    async def test_requires_token(self, api_client):
        r = await api_client.post("/api/users/sync", json=_PROFILE)
        assert r.status_code == 401


class TestMe:
    async def test_me(self, api_client, fake_db):
        await seed_user(fake_db, "alice", credits=7)
        r = await api_client.get("/api/users/me", headers=auth_headers("alice"))

        assert r.status_code == 200
        assert r.json()["credits"] == 7

    async def test_never_synced(self, api_client):
        r = await api_client.get("/api/users/me", headers=auth_headers("ghost"))
        assert r.status_code == 404
        assert r.json()["code"] == "user_not_found"


class TestDashboard:
    async def test_dashboard_shows_credits_and_recent_scans(self, api_client, fake_db):
        await seed_user(fake_db, "alice", credits=5)
        headers = auth_headers("alice")
        b64 = base64.b64encode(b"media").decode()
        await api_client.post("/api/scans", json={"base64": b64, "file_name": "a.jpg"}, headers=headers)

        r = await api_client.get("/api/users/dashboard", headers=headers)

        assert r.status_code == 200
        body = r.json()
        assert body["credits"] == 4
        assert [s["file_name"] for s in body["scans"]] == ["a.jpg"]
        assert body["page"] == 1
        assert body["limit"] == 10

    async def test_dashboard_refreshed_after_trial(self, api_client, fake_db):
        await seed_user(fake_db, "alice", credits=1)
        headers = auth_headers("alice")
        assert (await api_client.get("/api/users/dashboard", headers=headers)).json()["credits"] == 1

        await api_client.post("/api/users/trial", headers=headers)

        assert (await api_client.get("/api/users/dashboard", headers=headers)).json()["credits"] == 5

    async def test_dashboard_unknown_user(self, api_client):
        r = await api_client.get("/api/users/dashboard", headers=auth_headers("ghost"))
        assert r.status_code == 404


class TestTrial:
    async def test_trial_tops_up(self, api_client, fake_db):
        await seed_user(fake_db, "alice", credits=0)
        r = await api_client.post("/api/users/trial", headers=auth_headers("alice"))

        assert r.status_code == 200
        assert r.json() == {"success": True, "credits": 5, "plan": "trial"}

    async def test_trial_keeps_larger_balance(self, api_client, fake_db):
        await seed_user(fake_db, "alice", credits=30)
        r = await api_client.post("/api/users/trial", headers=auth_headers("alice"))
        assert r.json()["credits"] == 30
