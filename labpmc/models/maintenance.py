"""Preventive maintenance (PMC) models.

Supports:
- One current maintenance report per workstation and quarter
- Checklist of inspection procedures linked to the current report
- Append-only service log with per-event procedure checks and asset actions
- Replacement provenance from a retired asset to the asset that replaced it
"""
import uuid
from datetime import datetime, date, timezone
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Date
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labpmc.database import Base
from labpmc.db_types import UUIDType

if TYPE_CHECKING:
    from labpmc.models.laboratory import Workstation
    from labpmc.models.inventory import InventoryAsset


# ==================== Procedures ====================

class MaintenanceProcedure(Base):
    """Named inspection step of the PMC checklist."""
    __tablename__ = "maintenance_procedures"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    procedure_name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<MaintenanceProcedure(procedure_name='{self.procedure_name}')>"


# ==================== Maintenance Report ====================

class MaintenanceReport(Base):
    """
    Current PMC record for a workstation in a quarter.

    Updated in place by every service in the same quarter; the history of
    those services lives in ServiceLogEntry.
    """
    __tablename__ = "maintenance_reports"
    __table_args__ = (
        UniqueConstraint("workstation_id", "quarter", name="uq_maintenance_report_workstation_quarter"),
        Index("ix_maintenance_reports_lab_quarter", "lab_id", "quarter"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    lab_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("laboratories.id", ondelete="RESTRICT"),
        nullable=False
    )
    workstation_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("workstations.id", ondelete="RESTRICT"),
        nullable=False
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=True,
        comment="Last user who submitted the report"
    )

    quarter: Mapped[str] = mapped_column(String(20), nullable=False, comment="1st, 2nd, 3rd, 4th")
    report_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Condition fields
    workstation_status: Mapped[str] = mapped_column(String(50), nullable=False)
    overall_remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    software_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    software_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    connectivity_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    connectivity_type_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    connectivity_speed: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    connectivity_speed_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    service_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

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

    # Relationships
    workstation: Mapped["Workstation"] = relationship("Workstation")
    procedures: Mapped[List["ReportProcedureCheck"]] = relationship(
        "ReportProcedureCheck",
        back_populates="report",
        order_by="ReportProcedureCheck.created_at",
    )
    service_logs: Mapped[List["ServiceLogEntry"]] = relationship(
        "ServiceLogEntry",
        back_populates="report",
        order_by="ServiceLogEntry.created_at.desc()",
    )

    def __repr__(self) -> str:
        return (
            f"<MaintenanceReport(workstation_id='{self.workstation_id}', "
            f"quarter='{self.quarter}', service_count={self.service_count})>"
        )


class ReportProcedureCheck(Base):
    """Procedure checked during the latest service of a report (replaced as a set)."""
    __tablename__ = "maintenance_report_procedures"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    report_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("maintenance_reports.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    procedure_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("maintenance_procedures.id", ondelete="RESTRICT"),
        nullable=False
    )
    is_checked: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    report: Mapped["MaintenanceReport"] = relationship("MaintenanceReport", back_populates="procedures")
    procedure: Mapped["MaintenanceProcedure"] = relationship("MaintenanceProcedure", lazy="selectin")

    @property
    def procedure_name(self) -> Optional[str]:
        return self.procedure.procedure_name if self.procedure else None


# ==================== Service Log ====================

class ServiceLogEntry(Base):
    """
    Immutable audit row for one service event (routine or repair).
    Never updated or deleted once written.
    """
    __tablename__ = "service_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    report_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("maintenance_reports.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    service_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="ROUTINE, REPAIR, REPLACEMENT, UPGRADE"
    )
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    performed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Workstation status snapshot
    workstation_status_before: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    workstation_status_after: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    report: Mapped["MaintenanceReport"] = relationship("MaintenanceReport", back_populates="service_logs")
    procedure_checks: Mapped[List["ServiceLogProcedureCheck"]] = relationship(
        "ServiceLogProcedureCheck",
        back_populates="log_entry",
        lazy="selectin",
    )
    asset_actions: Mapped[List["AssetAction"]] = relationship(
        "AssetAction",
        back_populates="log_entry",
        lazy="selectin",
        order_by="AssetAction.position",
    )

    def __repr__(self) -> str:
        return f"<ServiceLogEntry(service_type='{self.service_type}', service_date='{self.service_date}')>"


class ServiceLogProcedureCheck(Base):
    """Procedure checked during a specific service event."""
    __tablename__ = "service_log_procedures"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    log_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("service_logs.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    procedure_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("maintenance_procedures.id", ondelete="RESTRICT"),
        nullable=False
    )
    is_checked: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    log_entry: Mapped["ServiceLogEntry"] = relationship("ServiceLogEntry", back_populates="procedure_checks")
    procedure: Mapped["MaintenanceProcedure"] = relationship("MaintenanceProcedure", lazy="selectin")

    @property
    def procedure_name(self) -> Optional[str]:
        return self.procedure.procedure_name if self.procedure else None


class AssetAction(Base):
    """What happened to one physical asset during a service event."""
    __tablename__ = "service_log_asset_actions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    log_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("service_logs.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    asset_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("inventory_assets.id", ondelete="SET NULL"),
        nullable=True
    )
    action: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="CHECKED, REPAIRED, UPGRADED, REPLACED (stored as submitted)"
    )
    status_before: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status_after: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    old_property_tag: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    new_property_tag: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    new_serial_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    new_description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Provenance: set only when a REPLACED action produced a new item
    replacement_asset_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("inventory_assets.id", ondelete="SET NULL"),
        nullable=True
    )

    log_entry: Mapped["ServiceLogEntry"] = relationship("ServiceLogEntry", back_populates="asset_actions")
    asset: Mapped[Optional["InventoryAsset"]] = relationship(
        "InventoryAsset", foreign_keys=[asset_id]
    )
    replacement_asset: Mapped[Optional["InventoryAsset"]] = relationship(
        "InventoryAsset", foreign_keys=[replacement_asset_id]
    )

    def __repr__(self) -> str:
        return f"<AssetAction(action='{self.action}', asset_id='{self.asset_id}')>"
