"""Tests for the server-side session lifecycle."""

from datetime import timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.models.base import utcnow
from app.models.session import UserSession
from app.models.user import User
from app.services import session_service, user_service
from tests.conftest import TEST_PASSWORD


async def _make_user(db, username="alice", email="alice@x.com"):
    user = await user_service.create_user(username, email, TEST_PASSWORD, db)
    await db.commit()
    return user


async def _expire(db, session_id, by=timedelta(seconds=1)):
    row = await db.get(UserSession, session_id)
    row.expires_at = utcnow() - by
    await db.commit()


class TestCreateAndValidate:
    async def test_create_issues_distinct_tokens(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(
                user.id, db, ip_address="10.0.0.1", user_agent="pytest", device_info={"os": "linux"},
            )
            await db.commit()

            row = await db.get(UserSession, issued.session_id)

        assert len(issued.session_token) == 64
        assert len(issued.refresh_token) == 64
        assert issued.session_token != issued.refresh_token
        assert row.is_active
        assert row.ip_address == "10.0.0.1"
        assert row.device_info == {"os": "linux"}
        ttl = issued.expires_at - utcnow()
        assert timedelta(minutes=settings.SESSION_EXPIRE_MINUTES - 1) < ttl
        assert ttl <= timedelta(minutes=settings.SESSION_EXPIRE_MINUTES)

    async def test_validate_returns_owner_identity(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            await db.commit()

            view = await session_service.validate_session(issued.session_token, db)

        assert view.session_id == issued.session_id
        assert view.user_id == user.id
        assert view.username == "alice"
        assert view.email == "alice@x.com"

    async def test_validate_touches_last_activity(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            row = await db.get(UserSession, issued.session_id)
            row.last_activity = utcnow() - timedelta(minutes=5)
            await db.commit()

            await session_service.validate_session(issued.session_token, db)
            await db.commit()

        async with session_factory() as db:
            row = await db.get(UserSession, issued.session_id)
        assert utcnow() - row.last_activity < timedelta(minutes=1)

    async def test_unknown_token_is_none(self, session_factory):
        async with session_factory() as db:
            assert await session_service.validate_session("f" * 64, db) is None

    async def test_expired_session_is_none(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            await db.commit()
            await _expire(db, issued.session_id)

            assert await session_service.validate_session(issued.session_token, db) is None

    async def test_session_of_disabled_user_is_none(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            user.is_active = False
            await db.commit()

            assert await session_service.validate_session(issued.session_token, db) is None


class TestRefresh:
    async def test_rotates_session_token_and_extends_expiry(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            row = await db.get(UserSession, issued.session_id)
            row.expires_at = utcnow() + timedelta(minutes=1)
            await db.commit()

            view = await session_service.refresh_session(issued.refresh_token, db)
            await db.commit()

            assert view.session_id == issued.session_id
            assert view.session_token != issued.session_token
            assert view.refresh_token == issued.refresh_token
            assert view.expires_at - utcnow() > timedelta(minutes=settings.SESSION_EXPIRE_MINUTES - 1)

            assert await session_service.validate_session(issued.session_token, db) is None
            assert await session_service.validate_session(view.session_token, db) is not None

    async def test_rotates_refresh_token_when_enabled(self, session_factory, monkeypatch):
        monkeypatch.setattr(settings, "ROTATE_REFRESH_TOKENS", True)
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            await db.commit()

            view = await session_service.refresh_session(issued.refresh_token, db)
            await db.commit()

            assert view.refresh_token != issued.refresh_token
            assert await session_service.refresh_session(issued.refresh_token, db) is None

    async def test_expired_or_inactive_session_cannot_refresh(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            expired = await session_service.create_session(user.id, db)
            revoked = await session_service.create_session(user.id, db)
            await db.commit()
            await _expire(db, expired.session_id)
            await session_service.invalidate_session(revoked.session_token, db)
            await db.commit()

            assert await session_service.refresh_session(expired.refresh_token, db) is None
            assert await session_service.refresh_session(revoked.refresh_token, db) is None

    async def test_concurrent_refresh_loser_gets_none(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            await db.commit()

        async with session_factory() as first, session_factory() as second:
            # second holds the pre-refresh row in its identity map
            await second.execute(select(UserSession).where(UserSession.id == issued.session_id))

            winner = await session_service.refresh_session(issued.refresh_token, first)
            await first.commit()

            loser = await session_service.refresh_session(issued.refresh_token, second)

        assert winner is not None
        assert loser is None

        async with session_factory() as db:
            row = await db.get(UserSession, issued.session_id)
        assert row.session_token == winner.session_token


class TestInvalidate:
    async def test_invalidate_is_idempotent(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            await db.commit()

            assert await session_service.invalidate_session(issued.session_token, db) is True
            assert await session_service.invalidate_session(issued.session_token, db) is False
            assert await session_service.invalidate_session("0" * 64, db) is False
            await db.commit()

            assert await session_service.validate_session(issued.session_token, db) is None

    async def test_invalidate_all_counts_and_spares_excluded(self, session_factory):
        async with session_factory() as db:
            alice = await _make_user(db)
            bob = await _make_user(db, username="bob", email="bob@x.com")
            keep = await session_service.create_session(alice.id, db)
            await session_service.create_session(alice.id, db)
            await session_service.create_session(alice.id, db)
            bobs = await session_service.create_session(bob.id, db)
            await db.commit()

            revoked = await session_service.invalidate_all_user_sessions(
                alice.id, db, except_session_id=keep.session_id,
            )
            await db.commit()

            assert revoked == 2
            assert await session_service.validate_session(keep.session_token, db) is not None
            assert await session_service.validate_session(bobs.session_token, db) is not None

            assert await session_service.invalidate_all_user_sessions(alice.id, db) == 1
            assert await session_service.invalidate_all_user_sessions(alice.id, db) == 0


class TestListingAndSweep:
    async def test_list_orders_by_last_activity(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            older = await session_service.create_session(user.id, db)
            newer = await session_service.create_session(user.id, db)
            gone = await session_service.create_session(user.id, db)
            row = await db.get(UserSession, older.session_id)
            row.last_activity = utcnow() - timedelta(minutes=3)
            await db.commit()
            await session_service.invalidate_session(gone.session_token, db)
            await db.commit()

            sessions = await session_service.list_active_sessions(user.id, db)

        assert [s.id for s in sessions] == [newer.session_id, older.session_id]

    async def test_has_active_session(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            assert not await session_service.has_active_session(user.id, db)

            issued = await session_service.create_session(user.id, db)
            await db.commit()
            assert await session_service.has_active_session(user.id, db)

            await _expire(db, issued.session_id)
            assert not await session_service.has_active_session(user.id, db)

    async def test_sweep_deactivates_only_expired(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            live = await session_service.create_session(user.id, db)
            stale = await session_service.create_session(user.id, db)
            await db.commit()
            await _expire(db, stale.session_id, by=timedelta(hours=1))

            assert await session_service.sweep_expired_sessions(db) == 1
            await db.commit()
            assert await session_service.sweep_expired_sessions(db) == 0

        async with session_factory() as db:
            rows = {
                row.id: row.is_active
                for row in (await db.execute(select(UserSession))).scalars()
            }
            owner = await db.get(User, user.id)

        assert rows == {live.session_id: True, stale.session_id: False}
        assert owner.is_active


class TestDeactivationVersioning:
    """A row loaded before a deactivation must not be flushed over it."""

    async def _load_in_second_session(self, session_factory, issued, deactivate):
        async with session_factory() as first, session_factory() as second:
            stale = (
                await second.execute(select(UserSession).where(UserSession.id == issued.session_id))
            ).scalar_one()

            await deactivate(first)
            await first.commit()

            stale.session_token = "9" * 64
            with pytest.raises(StaleDataError):
                await second.flush()
            await second.rollback()

        async with session_factory() as db:
            return await db.get(UserSession, issued.session_id)

    async def test_sweep_bumps_version(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            await db.commit()

        async def expire_and_sweep(db):
            # plain UPDATE so only the sweep touches the version
            await db.execute(
                update(UserSession)
                .where(UserSession.id == issued.session_id)
                .values(expires_at=utcnow() - timedelta(seconds=1))
            )
            assert await session_service.sweep_expired_sessions(db) == 1

        row = await self._load_in_second_session(session_factory, issued, expire_and_sweep)

        assert row.is_active is False
        assert row.version == 2
        assert row.session_token == issued.session_token

    async def test_logout_bumps_version(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            await db.commit()

        async def logout(db):
            assert await session_service.invalidate_session(issued.session_token, db)

        row = await self._load_in_second_session(session_factory, issued, logout)

        assert row.is_active is False
        assert row.version == 2

    async def test_logout_all_bumps_version(self, session_factory):
        async with session_factory() as db:
            user = await _make_user(db)
            issued = await session_service.create_session(user.id, db)
            await db.commit()

        async def logout_all(db):
            assert await session_service.invalidate_all_user_sessions(user.id, db) == 1

        row = await self._load_in_second_session(session_factory, issued, logout_all)

        assert row.is_active is False
        assert row.version == 2


async def test_user_sessions_are_never_lazy_loaded(session_factory):
    async with session_factory() as db:
        user = await _make_user(db)
        user_id = user.id

    async with session_factory() as db:
        user = await db.get(User, user_id)
        with pytest.raises(InvalidRequestError):
            user.sessions
