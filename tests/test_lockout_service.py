"""Tests for durable per-account lockout tracking."""

from datetime import timedelta

from app.models.base import utcnow
from app.models.user import User
from app.services import lockout_service, user_service
from tests.conftest import TEST_PASSWORD


async def _make_user(session_factory, username="alice", email="alice@x.com"):
    async with session_factory() as db:
        user = await user_service.create_user(username, email, TEST_PASSWORD, db)
        await db.commit()
        return user.id


async def _reload(session_factory, user_id) -> User:
    async with session_factory() as db:
        return await db.get(User, user_id)


async def test_failures_below_threshold_do_not_lock(session_factory):
    user_id = await _make_user(session_factory)

    async with session_factory() as db:
        for expected in range(1, 5):
            status = await lockout_service.record_failure(user_id, db, max_attempts=5)
            assert status.attempts == expected
            assert not status.locked

    user = await _reload(session_factory, user_id)
    assert user.login_attempts == 4
    assert user.lockout_until is None
    assert not lockout_service.check_lockout(user).locked


async def test_reaching_threshold_locks_for_duration(session_factory):
    user_id = await _make_user(session_factory)

    async with session_factory() as db:
        for _ in range(4):
            await lockout_service.record_failure(user_id, db, max_attempts=5)
        status = await lockout_service.record_failure(
            user_id, db, max_attempts=5, lockout_duration=timedelta(minutes=15),
        )

    assert status.locked
    assert status.attempts == 5
    assert status.retry_after == 15 * 60

    user = await _reload(session_factory, user_id)
    check = lockout_service.check_lockout(user)
    assert check.locked
    assert 0 < check.retry_after <= 15 * 60


async def test_failure_survives_rollback_of_caller(session_factory):
    user_id = await _make_user(session_factory)

    async with session_factory() as db:
        await lockout_service.record_failure(user_id, db, max_attempts=5)
        await db.rollback()

    user = await _reload(session_factory, user_id)
    assert user.login_attempts == 1


async def test_unknown_user_is_a_noop(session_factory):
    async with session_factory() as db:
        status = await lockout_service.record_failure(None, db)

    assert not status.locked
    assert status.attempts == 0


async def test_expired_lockout_is_not_locked(session_factory):
    user_id = await _make_user(session_factory)

    async with session_factory() as db:
        user = await db.get(User, user_id)
        user.login_attempts = 5
        user.lockout_until = utcnow() - timedelta(seconds=1)
        await db.commit()

    user = await _reload(session_factory, user_id)
    assert not lockout_service.check_lockout(user).locked


async def test_reset_clears_counter_and_lockout(session_factory):
    user_id = await _make_user(session_factory)

    async with session_factory() as db:
        for _ in range(5):
            await lockout_service.record_failure(user_id, db, max_attempts=5)

    async with session_factory() as db:
        await lockout_service.reset_failures(user_id, db)
        await db.commit()

    user = await _reload(session_factory, user_id)
    assert user.login_attempts == 0
    assert user.lockout_until is None


async def test_lockout_is_per_account(session_factory):
    alice = await _make_user(session_factory)
    bob = await _make_user(session_factory, username="bob", email="bob@x.com")

    async with session_factory() as db:
        for _ in range(5):
            await lockout_service.record_failure(alice, db, max_attempts=5)

    assert lockout_service.check_lockout(await _reload(session_factory, alice)).locked
    assert not lockout_service.check_lockout(await _reload(session_factory, bob)).locked
