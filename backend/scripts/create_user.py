"""Create (or reuse) a warehouse user and print a bearer token for the API.

Usage: python scripts/create_user.py EMAIL NAME [--admin] [--hours N]
"""
import argparse
import asyncio
from datetime import timedelta

from sqlalchemy import select

from warehouse.core.security import create_access_token
from warehouse.db.database import async_session, create_tables
from warehouse.db.enums import UserRole
from warehouse.db.models import User


async def create_user(email: str, name: str, admin: bool, hours: int) -> None:
    await create_tables()
    async with async_session() as db:
        user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
        if user is None:
            user = User(email=email, name=name, role=UserRole.ADMIN if admin else UserRole.EMPLOYEE)
            db.add(user)
            await db.commit()
            await db.refresh(user)
            print(f'Created user {user.id}: {user.email} ({user.role.value})')
        else:
            print(f'User already exists: {user.id} {user.email}')

    token = create_access_token({'sub': str(user.id)}, expires_delta=timedelta(hours=hours))
    print('Bearer token:')
    print(token)


def main():
    parser = argparse.ArgumentParser(description='Create a warehouse user and issue a token')
    parser.add_argument('email')
    parser.add_argument('name')
    parser.add_argument('--admin', action='store_true')
    parser.add_argument('--hours', type=int, default=24)
    args = parser.parse_args()
    asyncio.run(create_user(args.email, args.name, args.admin, args.hours))


if __name__ == '__main__':
    main()
