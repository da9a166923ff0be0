"""Seed script for the autoservice backend.

Creates baseline data for local testing:
- 1 admin
- 2 mechanics
- 1 customer with one vehicle

Idempotent: users are matched by phone and the vehicle by licence plate.
Run with: python seed.py
"""

import asyncio
import sys
import uuid

from autoservice.config import settings

# Guard: prevent running on production
if settings.is_production:
    print("ERROR: Cannot seed production database.")
    sys.exit(1)

import structlog
from sqlalchemy import select

from autoservice.database import async_session
from autoservice.models.enums import UserRole
from autoservice.models.user import User
from autoservice.models.vehicle import Vehicle
from autoservice.observability import configure_logging

logger = structlog.get_logger()

SEED_USERS = [
    {"full_name": "Admin Bengkel", "role": UserRole.ADMIN, "phone": "+6281100000000"},
    {"full_name": "Budi Santoso", "role": UserRole.MECHANIC, "phone": "+6281100000001"},
    {"full_name": "Agus Wijaya", "role": UserRole.MECHANIC, "phone": "+6281100000002"},
    {"full_name": "Siti Rahma", "role": UserRole.CUSTOMER, "phone": "+6281100000003"},
]

SEED_VEHICLES = [
    {
        "owner_phone": "+6281100000003",
        "make": "Toyota",
        "model": "Avanza",
        "year": 2019,
        "license_plate": "B 1234 XYZ",
    },
]


async def seed() -> None:
    async with async_session() as db:
        user_map: dict[str, User] = {}

        # Create users (idempotent)
        for user_data in SEED_USERS:
            result = await db.execute(select(User).where(User.phone == user_data["phone"]))
            existing = result.scalar_one_or_none()
            if existing:
                print(f"  [skip] User {user_data['full_name']} already exists")
                user_map[user_data["phone"]] = existing
                continue

            user = User(id=uuid.uuid4(), **user_data)
            db.add(user)
            await db.flush()
            user_map[user_data["phone"]] = user
            print(f"  [created] User {user_data['full_name']} ({user_data['role'].value})")

        # Create vehicles (idempotent)
        for vehicle_data in SEED_VEHICLES:
            result = await db.execute(
                select(Vehicle).where(Vehicle.license_plate == vehicle_data["license_plate"])
            )
            if result.scalar_one_or_none():
                print(f"  [skip] Vehicle {vehicle_data['license_plate']} already exists")
                continue

            owner = user_map[vehicle_data["owner_phone"]]
            vehicle = Vehicle(
                id=uuid.uuid4(),
                customer_id=owner.id,
                make=vehicle_data["make"],
                model=vehicle_data["model"],
                year=vehicle_data["year"],
                license_plate=vehicle_data["license_plate"],
            )
            db.add(vehicle)
            await db.flush()
            print(f"  [created] Vehicle {vehicle_data['license_plate']} for {owner.full_name}")

        await db.commit()
        logger.info("seed_completed", users=len(user_map), env=settings.APP_ENV)
        print("\nSeed completed successfully.")


def main() -> None:
    configure_logging()
    print("Seeding autoservice database...")
    asyncio.run(seed())


if __name__ == "__main__":
    main()
