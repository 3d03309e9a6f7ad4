"""
One-time bootstrap script — creates the first ADMIN user.

Usage:
    python -m app.scripts.create_admin

Regular accounts come from POST /api/auth/signup and always get the
`user` role; this is the only way to mint an admin.
"""

import asyncio
import getpass

from app.core.config import settings
from app.core.database import async_session_factory, engine
from app.core.errors import ValidationError
from app.models.user import UserRole
from app.services import auth_service, user_service


async def create_admin() -> None:
    async with async_session_factory() as session:
        # ── Collect input ────────────────────────────────────────────
        print("\n🔧  OSINT Toolkit — First Admin Setup\n")
        username = input("  Username:    ").strip()
        email = input("  Admin email: ").strip()
        password = getpass.getpass("  Password:    ")
        confirm = getpass.getpass("  Confirm:     ")

        if password != confirm:
            print("\n❌  Passwords do not match.")
            await engine.dispose()
            return

        # ── Same input policy as signup ──────────────────────────────
        try:
            auth_service.require_fields(username=username, email=email, password=password)
            auth_service.validate_username(username)
            auth_service.validate_email(email)
            auth_service.validate_password(password)
        except ValidationError as exc:
            print(f"\n❌  {exc.detail}")
            await engine.dispose()
            return

        # ── Check for existing user ──────────────────────────────────
        if await user_service.get_user_by_email(email, session) is not None:
            print(f"\n❌  User with email '{email}' already exists.")
            await engine.dispose()
            return
        if await user_service.get_user_by_username(username, session) is not None:
            print(f"\n❌  Username '{username}' is taken.")
            await engine.dispose()
            return

        # ── Create the admin user ────────────────────────────────────
        admin_user = await user_service.create_user(
            username, email, password, session, role=UserRole.ADMIN,
        )
        await session.commit()

        print("\n✅  Admin user created successfully!")
        print(f"    ID:       {admin_user.id}")
        print(f"    Username: {admin_user.username}")
        print(f"    Email:    {admin_user.email}")
        print(f"\n   Database: {settings.DATABASE_URL.rsplit('@', 1)[-1]}")
        print("   You can now log in via POST /api/auth/login\n")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_admin())
