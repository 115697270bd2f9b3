#!/usr/bin/env python3
"""Create (or promote) an admin user and print a bearer token for it.

Credentials are issued by the identity provider in production; this script
is for local setups and smoke tests.
"""

import argparse
import asyncio

from sqlalchemy import select

from app.core.permissions import UserRole
from app.core.security import create_user_token
from app.database import AsyncSessionLocal, close_db, init_db
from app.models.user import User


async def create_admin(
    email: str = "admin@panameconsulting.com",
    first_name: str = "Paname",
    last_name: str = "Admin",
    create_tables: bool = False,
) -> str:
    """Create an admin user if it doesn't exist and return an access token."""
    if create_tables:
        await init_db()

    email = email.lower()
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user:
            user.role = UserRole.ADMIN.value
            user.is_active = True
            print(f"Updated existing user to admin: {email}")
        else:
            user = User(
                email=email,
                role=UserRole.ADMIN.value,
                first_name=first_name,
                last_name=last_name,
                is_active=True,
            )
            session.add(user)
            print(f"Created admin user: {email}")
        await session.commit()

        token = create_user_token(str(user.id), user.email, user.role)

    await close_db()
    return token


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create an admin user")
    parser.add_argument("--email", default="admin@panameconsulting.com", help="Admin email")
    parser.add_argument("--first-name", default="Paname", help="First name")
    parser.add_argument("--last-name", default="Admin", help="Last name")
    parser.add_argument("--create-tables", action="store_true", help="Create tables first")

    args = parser.parse_args()

    access_token = asyncio.run(
        create_admin(
            email=args.email,
            first_name=args.first_name,
            last_name=args.last_name,
            create_tables=args.create_tables,
        )
    )
    print(f"Bearer token: {access_token}")
