"""
Database setup script - tables, the admin account and a few demo users
"""
import asyncio
from sqlalchemy import select

from taskboard.config import get_settings
from taskboard.database import AsyncSessionLocal, create_tables
from taskboard.models.user import User, UserRole

DEMO_USERS = [
    ("planner", "Demo Planner", "planner@example.com", UserRole.CREATOR),
    ("field1", "Field Staff One", "field1@example.com", UserRole.USER),
    ("field2", "Field Staff Two", "field2@example.com", UserRole.USER),
]


async def setup_database():
    """Create tables and seed initial data"""
    settings = get_settings()

    print("Creating database tables...")
    await create_tables()
    print("Tables created")

    async with AsyncSessionLocal() as session:
        result = await session.execute(select(User.username))
        existing = set(result.scalars().all())

        accounts = [(
            settings.DEFAULT_ADMIN_USERNAME, "Administrator",
            settings.DEFAULT_ADMIN_EMAIL or None, UserRole.ADMIN,
        )] + DEMO_USERS

        created = 0
        for username, full_name, email, role in accounts:
            if username in existing:
                continue
            session.add(User(username=username, full_name=full_name, email=email, role=role, is_active=True))
            created += 1

        await session.commit()
        print(f"Seed data created ({created} users)")

    print("\nDatabase setup complete!")
    print("\nSend requests with the X-User-Id header set to a user id, e.g. 1 for the admin.")


if __name__ == "__main__":
    asyncio.run(setup_database())
