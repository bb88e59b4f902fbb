"""Inventory models: physical assets, their details and lifecycle statuses."""
import uuid
from datetime import datetime, date, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Date
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labpmc.database import Base
from labpmc.db_types import UUIDType

if TYPE_CHECKING:
    from labpmc.models.laboratory import Workstation, Unit


class AssetStatus(Base):
    """
    Named asset states (Functional, For Repair, Decommissioned, ...).
    Reference data: looked up by name, never created by the maintenance flow.
    """
    __tablename__ = "asset_statuses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    status_name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    def __repr__(self) -> str:
        return f"<AssetStatus(status_name='{self.status_name}')>"


class InventoryAsset(Base):
    """
    A physical item such as a monitor or PC unit.

    Never physically deleted by the maintenance flow; end of life is modelled
    through the status of its detail row and by detaching it from its
    workstation.
    """
    __tablename__ = "inventory_assets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Location
    lab_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("laboratories.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    workstation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("workstations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    unit_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("units.id", ondelete="SET NULL"),
        nullable=True
    )

    added_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=True
    )
    date_added: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    workstation: Mapped[Optional["Workstation"]] = relationship(
        "Workstation", back_populates="assets"
    )
    unit: Mapped[Optional["Unit"]] = relationship("Unit", lazy="selectin")
    details: Mapped["AssetDetail"] = relationship(
        "AssetDetail",
        back_populates="asset",
        uselist=False,
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<InventoryAsset(id='{self.id}', workstation_id='{self.workstation_id}')>"


class AssetDetail(Base):
    """Descriptive and lifecycle data for exactly one InventoryAsset."""
    __tablename__ = "asset_details"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    asset_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("inventory_assets.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )

    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    property_tag_no: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    date_of_purchase: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    asset_remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("asset_statuses.id", ondelete="SET NULL"),
        nullable=True
    )

    asset: Mapped["InventoryAsset"] = relationship("InventoryAsset", back_populates="details")
    current_status: Mapped[Optional["AssetStatus"]] = relationship("AssetStatus", lazy="selectin")

    @property
    def status_name(self) -> Optional[str]:
        return self.current_status.status_name if self.current_status else None

    def __repr__(self) -> str:
        return f"<AssetDetail(property_tag_no='{self.property_tag_no}')>"
