#!/usr/bin/env python3
"""
Set a user's role directly in the database. Run on the server.

Signup always creates USER accounts and only an OWNER can grant OWNER, so the
first OWNER is provisioned with this script:

    python demo/promote_user.py admin@example.com
    python demo/promote_user.py ops@example.com --role ADMINISTRATOR
"""

import argparse
import asyncio
import sys

from sqlalchemy import update

from keystone.database import AsyncSessionLocal, engine
from keystone.models.user import User
from keystone.rbac import UserRole


async def promote(email: str, role: UserRole) -> int:
    async with AsyncSessionLocal() as s:
        r = await s.execute(
            update(User)
            .where(User.email == email)
            .values(role=role)
        )
        await s.commit()
        print(f"Rows updated: {r.rowcount}")
    await engine.dispose()
    return r.rowcount


def main() -> int:
    parser = argparse.ArgumentParser(description="Set a user's role")
    parser.add_argument("email")
    parser.add_argument(
        "--role",
        default=UserRole.OWNER.value,
        choices=[r.value for r in UserRole],
    )
    args = parser.parse_args()
    updated = asyncio.run(promote(args.email, UserRole(args.role)))
    return 0 if updated else 1


if __name__ == "__main__":
    sys.exit(main())
