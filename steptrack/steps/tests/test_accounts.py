"""Tests for explicit user provisioning and linking Google logins to users."""

from __future__ import annotations

import pytest

from steptrack.steps.accounts import link_google_account, provision_user
from steptrack.steps.base import OAuthTokens
from steptrack.steps.errors import Conflict
from steptrack.steps.storage.memory import MemoryStepStorage
from steptrack.steps.tests.conftest import TEST_USER_ID, add_user


async def _login(storage: MemoryStepStorage, refresh_token: str | None = "refresh-1", **kwargs):
    profile = {"external_id": "google-123", "email": "walker@example.com", "name": "Walker"}
    profile.update(kwargs)
    return await link_google_account(
        storage.users,
        tokens=OAuthTokens(access_token="access-1", refresh_token=refresh_token),
        **profile,
    )


class TestLinkGoogleAccount:
    @pytest.mark.asyncio
    async def test_first_login_provisions_user(self, storage: MemoryStepStorage) -> None:
        user = await _login(storage)

        assert user.external_id == "google-123"
        assert user.total_steps == 0
        assert user.has_refresh_token
        assert await storage.users.find_by_external_id("google-123") is not None

    @pytest.mark.asyncio
    async def test_relogin_without_refresh_token_keeps_stored_one(
        self, storage: MemoryStepStorage
    ) -> None:
        first = await _login(storage)
        again = await link_google_account(
            storage.users,
            external_id="google-123",
            email="walker@example.com",
            name="Walker",
            tokens=OAuthTokens(access_token="access-2"),
        )

        assert again.user_id == first.user_id
        assert again.access_token == "access-2"
        assert again.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_existing_email_is_linked(self, storage: MemoryStepStorage) -> None:
        existing = await add_user(storage, email="walker@example.com", refresh_token=None)

        user = await _login(storage)

        assert user.user_id == existing.user_id == TEST_USER_ID
        assert user.external_id == "google-123"
        assert user.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_login_preserves_total(self, storage: MemoryStepStorage) -> None:
        user = await _login(storage)
        await storage.users.add_to_total(user.user_id, 1234)

        again = await _login(storage, refresh_token=None)

        assert again.total_steps == 1234

    @pytest.mark.asyncio
    async def test_new_user_without_refresh_token_not_eligible_for_sync(
        self, storage: MemoryStepStorage
    ) -> None:
        await _login(storage, refresh_token=None)
        assert await storage.users.find_users_with_refresh_credential() == []

    @pytest.mark.asyncio
    async def test_duplicate_email_on_save_conflicts(
        self, storage: MemoryStepStorage
    ) -> None:
        await _login(storage)
        with pytest.raises(ValueError, match="already exists"):
            await add_user(storage, email="walker@example.com")


class TestProvisionUser:
    @pytest.mark.asyncio
    async def test_creates_user_with_zero_total(self, storage: MemoryStepStorage) -> None:
        user = await provision_user(storage.users, "Walker", "walker@example.com")

        assert user.total_steps == 0
        assert user.external_id is None
        assert not user.has_refresh_token
        assert await storage.users.find_by_email("walker@example.com") is not None

    @pytest.mark.asyncio
    async def test_tokens_make_user_eligible_for_sync(self, storage: MemoryStepStorage) -> None:
        user = await provision_user(
            storage.users,
            "Walker",
            "walker@example.com",
            OAuthTokens(access_token="access-1", refresh_token="refresh-1"),
        )

        eligible = await storage.users.find_users_with_refresh_credential()
        assert [u.user_id for u in eligible] == [user.user_id]

    @pytest.mark.asyncio
    async def test_duplicate_email_raises_conflict(self, storage: MemoryStepStorage) -> None:
        await provision_user(storage.users, "Walker", "walker@example.com")

        with pytest.raises(Conflict, match="already exists"):
            await provision_user(storage.users, "Other Walker", "walker@example.com")

        stored = await storage.users.find_by_email("walker@example.com")
        assert stored.name == "Walker"

    @pytest.mark.asyncio
    async def test_later_google_login_links_provisioned_user(
        self, storage: MemoryStepStorage
    ) -> None:
        provisioned = await provision_user(storage.users, "Walker", "walker@example.com")

        linked = await _login(storage)

        assert linked.user_id == provisioned.user_id
        assert linked.has_refresh_token
