"""
Database seeding script for development assignments.

Identity is issued upstream, so there are no users to seed: this creates a
few assignments for one owner id and prints a bearer token for that owner.
Run after the database is reachable, before the first manual test.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from freelance_backend.app.core.jwt import create_access_token
from freelance_backend.app.db.session import AsyncSessionLocal, engine, Base
from freelance_backend.app.models.assignment import Assignment
from sqlalchemy import select

DEFAULT_ASSIGNMENTS = ["Platform migration", "Security audit", "On-call support"]


async def seed_assignments(owner_id: int):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print(f"🌱 Seeding assignments for owner {owner_id}...")

        result = await db.execute(select(Assignment.name).where(Assignment.owner_id == owner_id))
        existing = set(result.scalars().all())

        for name in DEFAULT_ASSIGNMENTS:
            if name in existing:
                print(f"ℹ️  '{name}' already exists, skipping")
                continue
            db.add(Assignment(name=name, owner_id=owner_id))
            print(f"✅ Created assignment '{name}'")

        await db.commit()

    await engine.dispose()

    token = create_access_token(data={"sub": f"owner-{owner_id}", "user_id": owner_id})
    print("\n🎉 Seeding completed. Bearer token for this owner:")
    print(f"  {token}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed development assignments")
    parser.add_argument("--owner-id", type=int, default=1)
    args = parser.parse_args()
    asyncio.run(seed_assignments(args.owner_id))
