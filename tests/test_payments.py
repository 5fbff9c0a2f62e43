"""
test_payments.py — /api/payments end to end, with Paystack in mock mode.
"""

from authentiscan.core.database import PAYMENTS
from conftest import auth_headers, seed_user

_ORDER = {"amount": 9.99, "credits": 50, "currency": "usd"}


async def _checkout(api_client, user_id: str) -> str:
    r = await api_client.post("/api/payments/initialize", json=_ORDER, headers=auth_headers(user_id))
    assert r.status_code == 200
    return r.json()["reference"]


class TestInitialize:
    async def test_returns_checkout(self, api_client, fake_db, app):
        await seed_user(fake_db, "alice")
        r = await api_client.post("/api/payments/initialize", json=_ORDER, headers=auth_headers("alice"))

        body = r.json()
        assert body["authorization_url"].endswith(body["reference"])
        txn = app.state.paystack._mock_transactions[body["reference"]]
        assert txn["amount"] == 999
        assert txn["currency"] == "USD"
        assert txn["metadata"] == {"credits": 50, "owner_id": "alice"}

    async def test_unknown_user(self, api_client):
        r = await api_client.post("/api/payments/initialize", json=_ORDER, headers=auth_headers("ghost"))
        assert r.status_code == 404

    async def test_invalid_order(self, api_client, fake_db):
        await seed_user(fake_db, "alice")
        r = await api_client.post(
            "/api/payments/initialize",
            json={"amount": 0, "credits": 10},
            headers=auth_headers("alice"),
        )
        assert r.status_code == 422


class TestVerify:
    async def test_settles_once(self, api_client, fake_db):
        await seed_user(fake_db, "alice", credits=5)
        reference = await _checkout(api_client, "alice")

        r = await api_client.post(
            "/api/payments/verify", json={"reference": reference}, headers=auth_headers("alice")
        )

        assert r.status_code == 200
        assert r.json() == {
            "success": True,
            "reference": reference,
            "credits": 50,
            "balance": 55,
            "replayed": False,
        }
        assert (await fake_db[PAYMENTS].find_one({"reference": reference}))["processed"] is True

    async def test_replay_returns_same_outcome(self, api_client, fake_db):
        await seed_user(fake_db, "alice", credits=5)
        reference = await _checkout(api_client, "alice")
        headers = auth_headers("alice")

        first = (await api_client.post("/api/payments/verify", json={"reference": reference}, headers=headers)).json()
        second = (await api_client.post("/api/payments/verify", json={"reference": reference}, headers=headers)).json()

        assert second["replayed"] is True
        assert second["credits"] == first["credits"]
        assert second["balance"] == 55

    async def test_other_user_cannot_redeem(self, api_client, fake_db):
        await seed_user(fake_db, "alice", credits=5)
        await seed_user(fake_db, "mallory", credits=0)
        reference = await _checkout(api_client, "alice")

        r = await api_client.post(
            "/api/payments/verify", json={"reference": reference}, headers=auth_headers("mallory")
        )

        assert r.status_code == 403
        assert r.json()["code"] == "metadata_mismatch"
        assert await fake_db[PAYMENTS].count_documents({}) == 0

    async def test_unknown_reference(self, api_client, fake_db):
        await seed_user(fake_db, "alice")
        r = await api_client.post(
            "/api/payments/verify", json={"reference": "mock_doesnotexist"}, headers=auth_headers("alice")
        )
        assert r.status_code == 400
        assert r.json()["code"] == "payment_verification_failed"

    async def test_dashboard_sees_new_balance(self, api_client, fake_db):
        await seed_user(fake_db, "alice", credits=5)
        headers = auth_headers("alice")
        assert (await api_client.get("/api/users/dashboard", headers=headers)).json()["credits"] == 5

        reference = await _checkout(api_client, "alice")
        await api_client.post("/api/payments/verify", json={"reference": reference}, headers=headers)

        assert (await api_client.get("/api/users/dashboard", headers=headers)).json()["credits"] == 55

    async def test_requires_token(self, api_client):
        r = await api_client.post("/api/payments/verify", json={"reference": "x"})
        assert r.status_code == 401
