"""Tests for the trigger guard."""

import asyncio

import pytest

from lastwish.engine.guard import TriggerGuard
from lastwish.services.storage import StorageError

from conftest import make_settings, seed_user


class TestTriggerGuard:
    """Atomic claim and release."""

    @pytest.mark.asyncio
    async def test_first_claim_wins(self, store):
        """Test a claim on an untriggered user succeeds and sets the flag."""
        seed_user(store, make_settings("u1"))
        guard = TriggerGuard(store)

        assert await guard.try_claim("u1") is True
        assert store.raw_settings("u1")["delivery_triggered"] is True
        assert await guard.try_claim("u1") is False

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, store):
        """Test racing claims produce exactly one winner."""
        seed_user(store, make_settings("u1"))
        guard = TriggerGuard(store)

        results = await asyncio.gather(*(guard.try_claim("u1") for _ in range(10)))

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_claims_from_threads_have_one_winner(self, store):
        """Test claims from separate event loops in threads are serialized."""
        seed_user(store, make_settings("u1"))
        guard = TriggerGuard(store)

        def claim() -> bool:
            return asyncio.run(guard.try_claim("u1"))

        results = await asyncio.gather(*(asyncio.to_thread(claim) for _ in range(8)))

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_claim_unknown_user(self, store):
        """Test claiming a missing user loses."""
        assert await TriggerGuard(store).try_claim("ghost") is False

    @pytest.mark.asyncio
    async def test_release_clears_flag(self, store):
        """Test a release makes the episode claimable again."""
        seed_user(store, make_settings("u1"))
        guard = TriggerGuard(store)
        await guard.try_claim("u1")

        assert await guard.release("u1", reason="settings changed") is True
        assert store.raw_settings("u1")["delivery_triggered"] is False
        assert await guard.try_claim("u1") is True

    @pytest.mark.asyncio
    async def test_release_without_claim(self, store):
        """Test releasing an unclaimed user changes nothing."""
        seed_user(store, make_settings("u1"))
        assert await TriggerGuard(store).release("u1") is False

    @pytest.mark.asyncio
    async def test_claim_is_not_retried(self, store):
        """Test a failing store surfaces on the first attempt."""
        seed_user(store, make_settings("u1"))
        store.fail_on.add("conditional_update")

        with pytest.raises(StorageError):
            await TriggerGuard(store).try_claim("u1")
        assert store.conditional_update_calls == 0
