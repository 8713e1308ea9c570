"""
HTTP tests through the FastAPI app with test-mode authentication.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from fortune_city.models import User

from conftest import WEBHOOK_SECRET, auth


API = "/api/v1"


async def fund(session_maker, telegram_id: int, **balances):
    async with session_maker() as session:
        user = (await session.execute(
            select(User).where(User.telegram_id == str(telegram_id))
        )).scalar_one()
        for key, value in balances.items():
            setattr(user, key, Decimal(str(value)))
        await session.commit()


async def test_root(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["success"] is True


async def test_requires_authorization(client):
    response = await client.get(f"{API}/users/me")

    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "AUTHENTICATION_ERROR"
    assert body["message"] == "Authorization header required"


async def test_test_auth_disabled_outside_testing_mode(client, monkeypatch):
    from fortune_city.core.config import settings
    monkeypatch.setattr(settings, "testing_mode", False)

    response = await client.get(f"{API}/users/me", headers=auth())

    assert response.status_code == 401


async def test_first_request_creates_player(client):
    response = await client.get(f"{API}/users/me", headers=auth())

    assert response.status_code == 200
    profile = response.json()["data"]
    assert profile["telegram_id"] == "1001"
    assert profile["fortune_balance"] == 0
    assert profile["max_available_tier"] == 1
    assert len(profile["referral_code"]) > 0

    again = await client.get(f"{API}/users/me", headers=auth())
    assert again.json()["data"]["id"] == profile["id"]


async def test_start_param_sets_referrer(client):
    referrer = (await client.get(f"{API}/users/me", headers=auth(1001))).json()["data"]

    profile = (await client.get(
        f"{API}/users/me", headers=auth(1002, referrer["referral_code"])
    )).json()["data"]

    assert profile["referred_by_id"] == referrer["id"]


async def test_tier_catalogue(client):
    tiers = (await client.get(f"{API}/machines/tiers")).json()["data"]
    assert len(tiers) == 10

    missing = await client.get(f"{API}/machines/tiers/11")
    assert missing.status_code == 404


async def test_purchase_and_list_machines(client, session_maker):
    await client.get(f"{API}/users/me", headers=auth())
    await fund(session_maker, 1001, fortune_balance=15, total_fresh_deposits=15)

    response = await client.post(f"{API}/economy/purchase", json={"tier": 1}, headers=auth())

    assert response.status_code == 200
    result = response.json()["data"]
    assert result["price"] == 10
    assert result["is_upgrade"] is True
    assert "user" not in result
    machine = result["machine"]
    assert machine["tier"] == 1
    assert machine["status"] == "active"
    assert machine["income"]["can_collect"] is False

    machines = (await client.get(f"{API}/machines", headers=auth())).json()["data"]
    assert [m["id"] for m in machines] == [machine["id"]]

    profile = (await client.get(f"{API}/users/me", headers=auth())).json()["data"]
    assert profile["fortune_balance"] == 5


async def test_purchase_errors(client):
    await client.get(f"{API}/users/me", headers=auth())

    broke = await client.post(f"{API}/economy/purchase", json={"tier": 1}, headers=auth())
    assert broke.status_code == 400
    assert broke.json()["message"].startswith("Insufficient balance")

    invalid = await client.post(f"{API}/economy/purchase", json={"tier": 0}, headers=auth())
    assert invalid.status_code == 422


async def test_other_players_machine_is_hidden(client, session_maker):
    await client.get(f"{API}/users/me", headers=auth(1001))
    await fund(session_maker, 1001, fortune_balance=10)
    machine_id = (await client.post(
        f"{API}/economy/purchase", json={"tier": 1}, headers=auth(1001)
    )).json()["data"]["machine"]["id"]

    response = await client.get(f"{API}/machines/{machine_id}", headers=auth(1002))

    assert response.status_code == 404


async def test_collect_partial_box_rejected(client, session_maker):
    await client.get(f"{API}/users/me", headers=auth())
    await fund(session_maker, 1001, fortune_balance=10)
    machine_id = (await client.post(
        f"{API}/economy/purchase", json={"tier": 1}, headers=auth()
    )).json()["data"]["machine"]["id"]

    response = await client.post(f"{API}/machines/{machine_id}/collect", headers=auth())

    assert response.status_code == 400
    assert response.json()["success"] is False


async def test_daily_login(client):
    first = await client.post(f"{API}/fame/daily-login", headers=auth())

    assert first.status_code == 200
    assert first.json()["data"]["streak"] == 1
    assert first.json()["message"] == "Day 1 login claimed"

    second = await client.post(f"{API}/fame/daily-login", headers=auth())
    assert second.status_code == 400

    fame = (await client.get(f"{API}/fame", headers=auth())).json()["data"]
    assert fame["fame"] == 15


async def test_wheel_spin_without_funds(client):
    await client.get(f"{API}/users/me", headers=auth())

    response = await client.post(f"{API}/wheel/spin", json={"multiplier": 1}, headers=auth())

    assert response.status_code == 400
    assert response.json()["message"].startswith("Insufficient balance")


async def test_jackpot_is_public(client):
    response = await client.get(f"{API}/wheel/jackpot")

    assert response.status_code == 200
    assert "current_pool" in response.json()["data"]


async def test_withdrawal_preview(client, session_maker):
    await client.get(f"{API}/users/me", headers=auth())
    await fund(session_maker, 1001, fortune_balance=10, total_profit_collected=10)

    response = await client.post(f"{API}/withdrawals/preview", json={"amount": 10}, headers=auth())

    assert response.status_code == 200
    quote = response.json()["data"]
    assert quote["tax_amount"] == pytest.approx(5)
    assert quote["net_amount"] == pytest.approx(5)


async def test_deposit_rates(client):
    rates = (await client.get(f"{API}/deposits/rates")).json()["data"]

    assert rates["sol"] == 150
    assert rates["usdt"] == 1


async def test_helius_webhook_requires_secret(client):
    rejected = await client.post(f"{API}/deposits/webhook/helius", json=[])
    assert rejected.status_code == 401

    accepted = await client.post(
        f"{API}/deposits/webhook/helius",
        json=[],
        headers={"Authorization": f"Bearer {WEBHOOK_SECRET}"},
    )
    assert accepted.status_code == 200
    assert accepted.json()["data"] == {"processed": 0, "skipped": 0}


async def test_notifications_start_empty(client):
    response = await client.get(f"{API}/notifications/unread-count", headers=auth())

    assert response.status_code == 200


async def test_settings_admin_only(client):
    public = await client.get(f"{API}/settings")
    assert public.status_code == 200
    assert public.json()["data"]["max_global_tier"] == 1

    forbidden = await client.put(
        f"{API}/settings/max-tier", json={"max_global_tier": 3}, headers=auth(1001)
    )
    assert forbidden.status_code == 403

    allowed = await client.put(
        f"{API}/settings/max-tier", json={"max_global_tier": 3}, headers=auth(9000)
    )
    assert allowed.status_code == 200
    assert allowed.json()["data"] == {"max_global_tier": 3}

    public = await client.get(f"{API}/settings")
    assert public.json()["data"]["max_global_tier"] == 3
