"""Tests for user sync after OAuth sign-in and account deletion."""
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.models import BannedAccount, PushToken, Transaction

SYNC_BODY = {
    "id": "user_1",
    "authProvider": "google",
    "memberSince": "2024-05-01T12:00:00Z",
    "email": "jane@example.com",
    "fullName": "Jane Doe",
    "firstName": "Jane",
    "lastName": "Doe",
    "googleUserId": "google-123",
}


# ===== SYNC =====

@pytest.mark.asyncio
async def test_sync_creates_user(client: AsyncClient, fetch_user):
    response = await client.post("/users/sync", json=SYNC_BODY)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "User created successfully",
        "userId": "user_1",
        "existingAccount": False,
    }
    user = await fetch_user("user_1")
    assert user.email == "jane@example.com"
    assert user.google_user_id == "google-123"
    assert user.auth_provider == "google"


@pytest.mark.asyncio
async def test_sync_updates_profile_and_keeps_processor_fields(
    client: AsyncClient, create_user, fetch_user
):
    await create_user(
        "user_1",
        stripe_account_id="acct_1",
        stripe_onboarding_completed=True,
        google_user_id="google-123",
        full_name="Old Name",
    )

    response = await client.post("/users/sync", json=SYNC_BODY)

    assert response.status_code == 200
    assert response.json()["message"] == "User updated successfully"
    user = await fetch_user("user_1")
    assert user.full_name == "Jane Doe"
    assert user.stripe_account_id == "acct_1"
    assert user.stripe_onboarding_completed is True


@pytest.mark.asyncio
async def test_sync_with_provider_id_owned_by_another_user(
    client: AsyncClient, create_user, fetch_user
):
    await create_user("user_original", stripe_account_id="acct_1", google_user_id="google-123")

    response = await client.post("/users/sync", json={**SYNC_BODY, "id": "user_duplicate"})

    assert response.status_code == 200
    data = response.json()
    assert data["existingAccount"] is True
    assert data["userId"] == "user_original"
    assert await fetch_user("user_duplicate") is None


@pytest.mark.asyncio
async def test_sync_of_banned_email_is_refused(client: AsyncClient, TestSessionLocal, fetch_user):
    async with TestSessionLocal() as session:
        session.add(
            BannedAccount(
                id="ban_1", email="Jane@Example.com", ban_reason="fraud", ban_type="manual", is_active=True
            )
        )
        await session.commit()

    response = await client.post("/users/sync", json=SYNC_BODY)

    assert response.status_code == 403
    assert response.json() == {"error": "This account has been banned"}
    assert await fetch_user("user_1") is None


@pytest.mark.asyncio
async def test_sync_ignores_lifted_ban(client: AsyncClient, TestSessionLocal):
    async with TestSessionLocal() as session:
        session.add(
            BannedAccount(
                id="ban_1", email="jane@example.com", ban_reason="fraud", ban_type="manual", is_active=False
            )
        )
        await session.commit()

    response = await client.post("/users/sync", json=SYNC_BODY)

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_sync_requires_member_since(client: AsyncClient):
    body = {key: value for key, value in SYNC_BODY.items() if key != "memberSince"}

    response = await client.post("/users/sync", json=body)

    assert response.status_code == 400
    assert "memberSince" in response.json()["error"]


# ===== DELETE =====

@pytest.mark.asyncio
async def test_delete_user_removes_related_rows(
    client: AsyncClient, create_user, create_transaction, create_push_token, headers_for,
    fetch_user, db_session,
):
    await create_user("user_1")
    await create_transaction("txn_1")
    await create_push_token("user_1")

    response = await client.delete("/users/user_1", headers=headers_for("user_1"))

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert await fetch_user("user_1") is None
    assert await db_session.scalar(select(func.count()).select_from(Transaction)) == 0
    assert await db_session.scalar(select(func.count()).select_from(PushToken)) == 0
    assert await db_session.scalar(select(func.count()).select_from(BannedAccount)) == 0


@pytest.mark.asyncio
async def test_delete_with_ban_leaves_tombstone(
    client: AsyncClient, create_user, create_transaction, headers_for, fetch_user, db_session
):
    """The ban outlives the user and blocks a later sign-up with the same email."""
    await create_user("user_1", email="jane@example.com", stripe_account_id="acct_1")
    await create_transaction("txn_1")

    response = await client.delete(
        "/users/user_1", params={"banReason": "chargebacks"}, headers=headers_for("user_1")
    )

    assert response.status_code == 200
    assert await fetch_user("user_1") is None

    ban = (await db_session.execute(select(BannedAccount))).scalar_one()
    assert ban.user_id is None
    assert ban.email == "jane@example.com"
    assert ban.stripe_account_id == "acct_1"
    assert ban.ban_reason == "chargebacks"
    assert ban.ban_type == "persistent"
    assert ban.is_active is True

    resync = await client.post("/users/sync", json=SYNC_BODY)
    assert resync.status_code == 403


@pytest.mark.asyncio
async def test_delete_another_user_is_forbidden(client: AsyncClient, create_user, headers_for, fetch_user):
    await create_user("user_1")

    response = await client.delete("/users/user_1", headers=headers_for("user_2"))

    assert response.status_code == 403
    assert await fetch_user("user_1") is not None


@pytest.mark.asyncio
async def test_delete_unknown_user(client: AsyncClient, headers_for):
    response = await client.delete("/users/ghost", headers=headers_for("ghost"))

    assert response.status_code == 404
