"""Laboratory reference data: rooms, workstations and equipment units.

CRUD for these tables lives outside the maintenance subsystem; the
maintenance services only read them and update ``Workstation.status``.
"""
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labpmc.database import Base
from labpmc.db_types import UUIDType

if TYPE_CHECKING:
    from labpmc.models.inventory import InventoryAsset


class Laboratory(Base):
    """A physical computer laboratory."""
    __tablename__ = "laboratories"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    workstations: Mapped[List["Workstation"]] = relationship(
        "Workstation", back_populates="laboratory"
    )

    def __repr__(self) -> str:
        return f"<Laboratory(name='{self.name}')>"


class Workstation(Base):
    """A desk/unit inside a laboratory with its attached equipment."""
    __tablename__ = "workstations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    lab_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("laboratories.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(50),
        default="Functional",
        nullable=False,
        comment="Functional, Needs Repair, For Repair, Upgraded, ..."
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    laboratory: Mapped["Laboratory"] = relationship("Laboratory", back_populates="workstations")
    assets: Mapped[List["InventoryAsset"]] = relationship(
        "InventoryAsset", back_populates="workstation"
    )

    def __repr__(self) -> str:
        return f"<Workstation(name='{self.name}', status='{self.status}')>"


class Unit(Base):
    """Equipment kind, e.g. Monitor, Keyboard, System Unit."""
    __tablename__ = "units"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    unit_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Unit(unit_name='{self.unit_name}')>"
