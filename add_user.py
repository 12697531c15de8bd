"""
Quick script to register a document owner
"""
import asyncio
from sqlalchemy import select
from receipts.database.core import AsyncSessionLocal
from receipts.database.models import User
from receipts.services.user_service import get_user_by_email, create_user

async def check_and_add_user():
    print("Enter user email:")
    email = input().strip()

    async with AsyncSessionLocal() as session:
        user = await get_user_by_email(session, email)

        if user:
            print(f"User found: {user.name} ({user.email})")
        else:
            print("User not found. Creating...")

            print("Enter full name:")
            name = input().strip()

            user = await create_user(session, email, name)
            print(f"User created: {user.name} (ID: {user.id})")

        stmt = select(User).order_by(User.id)
        result = await session.execute(stmt)
        users = result.scalars().all()

        print("\nAll users in database:")
        for u in users:
            print(f"  - {u.name} (ID: {u.id}, Email: {u.email})")

if __name__ == "__main__":
    asyncio.run(check_and_add_user())
