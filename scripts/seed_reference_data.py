"""Seed asset statuses, equipment units and PMC procedures.

Safe to run repeatedly: rows are matched by name and only missing ones are
inserted.

    python -m scripts.seed_reference_data
"""
import asyncio
from datetime import datetime
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from labpmc.database import get_db_session, init_db
from labpmc.models import AssetStatus, Unit, MaintenanceProcedure


ASSET_STATUSES = [
    "Functional",
    "For Repair",
    "For Upgrade",
    "For Replacement",
    "Decommissioned",
]

UNITS = [
    "Monitor", "System Unit", "Keyboard", "Mouse", "SSD", "PSU", "RAM", "CPU",
    "HDD", "Case", "CPU Fan", "Motherboard", "System Fan", "GPU", "Video Card",
    "Router", "Switch", "Printer", "Air Conditioner", "AVR",
]

# Quarterly PMC checklist
PROCEDURES = [
    "Hardware Maintenance",
    "Software Maintenance",
    "Security Maintenance",
    "Network Maintenance",
    "System Performance",
    "Regular Cleaning",
]


async def _seed_names(db: AsyncSession, model, column, names, title: str) -> int:
    print("\n" + "=" * 60)
    print(f"SEEDING {title}")
    print("=" * 60)

    result = await db.execute(select(column).where(column.in_(names)))
    existing = set(result.scalars().all())

    created = 0
    for name in names:
        if name in existing:
            print(f"  = {name} (exists)")
            continue
        db.add(model(id=uuid4(), **{column.key: name}))
        created += 1
        print(f"  + {name}")

    await db.flush()
    print(f"\nTotal {title.lower()} created: {created}")
    return created


async def seed_asset_statuses(db: AsyncSession) -> int:
    return await _seed_names(db, AssetStatus, AssetStatus.status_name, ASSET_STATUSES, "ASSET STATUSES")


async def seed_units(db: AsyncSession) -> int:
    return await _seed_names(db, Unit, Unit.unit_name, UNITS, "UNITS")


async def seed_procedures(db: AsyncSession) -> int:
    return await _seed_names(
        db, MaintenanceProcedure, MaintenanceProcedure.procedure_name, PROCEDURES, "PROCEDURES"
    )


async def main():
    """Main seed function."""
    print("\n" + "=" * 60)
    print("REFERENCE DATA SEED SCRIPT")
    print("=" * 60)
    print(f"Started at: {datetime.now()}")

    await init_db()
    async with get_db_session() as db:
        await seed_asset_statuses(db)
        await seed_units(db)
        await seed_procedures(db)

    print("\n" + "=" * 60)
    print("REFERENCE DATA SEED COMPLETED SUCCESSFULLY!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
