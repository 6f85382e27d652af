import argparse
import asyncio
import os
import sys

# add project root (one level up from /scripts) to import path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from crystal_ball.modules.auth_helpers import find_user_by_email, hash_password, normalize_email
from crystal_ball.modules.db import AsyncSessionLocal, User


async def seed(email: str, password: str, name: str | None) -> None:
    async with AsyncSessionLocal() as session:
        user = await find_user_by_email(session, email)
        if user is None:
            user = User(email=normalize_email(email))
            session.add(user)
        user.name = name or user.name or normalize_email(email)
        user.password_hash = hash_password(password)
        user.is_admin = True
        user.requires_password_change = False
        await session.commit()
    print(f"seeded {normalize_email(email)}")


def main():
    parser = argparse.ArgumentParser(description="Create or reset an administrator account.")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--name", default=None)
    args = parser.parse_args()
    asyncio.run(seed(args.email, args.password, args.name))


if __name__ == "__main__":
    main()
