"""Shared fixtures: a throwaway SQLite database seeded with one laboratory."""
import uuid
from datetime import date
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from labpmc.database import build_engine, init_db, get_db
from labpmc.models import (
    Laboratory, Workstation, Unit, AssetStatus, InventoryAsset, AssetDetail,
    MaintenanceProcedure,
)
from labpmc.schemas.maintenance import ReportConditions


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'labpmc_test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def _seed(session_factory, status_names, initial_status):
    async with session_factory() as session:
        statuses = {name: AssetStatus(id=uuid.uuid4(), status_name=name) for name in status_names}
        session.add_all(statuses.values())

        lab = Laboratory(id=uuid.uuid4(), name="Computer Lab 1", location="Main Building")
        other_lab = Laboratory(id=uuid.uuid4(), name="Computer Lab 2")
        session.add_all([lab, other_lab])
        await session.flush()

        workstation = Workstation(id=uuid.uuid4(), lab_id=lab.id, name="WS-01", status="Functional")
        other_workstation = Workstation(id=uuid.uuid4(), lab_id=lab.id, name="WS-02", status="Functional")
        session.add_all([workstation, other_workstation])

        monitor = Unit(id=uuid.uuid4(), unit_name="Monitor")
        keyboard = Unit(id=uuid.uuid4(), unit_name="Keyboard")
        session.add_all([monitor, keyboard])

        procedures = [
            MaintenanceProcedure(id=uuid.uuid4(), procedure_name=name)
            for name in ("Hardware Maintenance", "Software Maintenance", "Regular Cleaning")
        ]
        session.add_all(procedures)
        await session.flush()

        issued = statuses.get(initial_status)
        assets = {}
        for key, unit, tag, serial in (
            ("monitor", monitor, "PT-MON-001", "SN-MON-001"),
            ("keyboard", keyboard, "PT-KBD-001", "SN-KBD-001"),
        ):
            asset = InventoryAsset(
                id=uuid.uuid4(),
                lab_id=lab.id,
                workstation_id=workstation.id,
                unit_id=unit.id,
            )
            asset.details = AssetDetail(
                id=uuid.uuid4(),
                description=f"Lab {unit.unit_name.lower()}",
                serial_number=serial,
                property_tag_no=tag,
                quantity=1,
                status_id=issued.id if issued else None,
                asset_remarks="Issued 2024",
            )
            session.add(asset)
            assets[key] = asset

        await session.commit()

        return SimpleNamespace(
            lab_id=lab.id,
            other_lab_id=other_lab.id,
            workstation_id=workstation.id,
            other_workstation_id=other_workstation.id,
            procedure_ids=[p.id for p in procedures],
            monitor_id=assets["monitor"].id,
            keyboard_id=assets["keyboard"].id,
            monitor_unit_id=monitor.id,
            status_ids={name: status.id for name, status in statuses.items()},
            user_id=uuid.uuid4(),
        )


@pytest_asyncio.fixture
async def lab(session_factory):
    """Laboratory with two workstations, two assets and full reference data."""
    return await _seed(
        session_factory,
        ["Functional", "For Repair", "For Upgrade", "For Replacement", "Decommissioned"],
        initial_status="Functional",
    )


@pytest_asyncio.fixture
async def bare_lab(session_factory):
    """Laboratory seeded with neither an end-of-life nor a Functional status."""
    return await _seed(session_factory, ["For Repair"], initial_status="For Repair")


@pytest.fixture
def conditions():
    def _build(status="Functional", **overrides):
        return ReportConditions(workstation_status=status, **overrides)
    return _build


@pytest.fixture
def report_date():
    return date(2025, 3, 14)


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP client bound to the app with ``get_db`` pointed at the test database."""
    from labpmc.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()
