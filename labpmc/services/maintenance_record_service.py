"""Maintenance Record Store: the current PMC report per workstation and quarter."""
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Optional, List, Sequence, Tuple

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from labpmc.core.exceptions import MaintenanceValidationError, StorageConflictError
from labpmc.models.maintenance import (
    MaintenanceReport, ReportProcedureCheck, MaintenanceProcedure, ServiceLogEntry,
)
from labpmc.services.status_rules import WorkstationStatus
from labpmc.core.enum_utils import get_enum_value


logger = logging.getLogger(__name__)


CONDITION_FIELDS = (
    "workstation_status",
    "overall_remarks",
    "software_name",
    "software_status",
    "connectivity_type",
    "connectivity_type_status",
    "connectivity_speed",
    "connectivity_speed_status",
)


@dataclass(frozen=True)
class ReportKey:
    """Uniqueness key of a maintenance report."""
    workstation_id: uuid.UUID
    quarter: str

    def __post_init__(self):
        if self.workstation_id is None:
            raise MaintenanceValidationError("workstation_id is required")
        if not self.quarter or not str(self.quarter).strip():
            raise MaintenanceValidationError("quarter is required")
        object.__setattr__(self, "quarter", str(self.quarter).strip())


class MaintenanceRecordService:
    """
    Service for the current maintenance report of a (workstation, quarter).

    Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOOKUPS ====================

    async def find_current(
        self,
        key: ReportKey,
        for_update: bool = False,
    ) -> Optional[MaintenanceReport]:
        """Get the report for a key. ``for_update`` row-locks it where supported."""
        query = select(MaintenanceReport).where(
            MaintenanceReport.workstation_id == key.workstation_id,
            MaintenanceReport.quarter == key.quarter,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_detail(self, key: ReportKey) -> Optional[MaintenanceReport]:
        """Report with procedures and full service history, newest entry first."""
        query = (
            select(MaintenanceReport)
            .options(
                selectinload(MaintenanceReport.procedures).selectinload(ReportProcedureCheck.procedure),
                selectinload(MaintenanceReport.service_logs).selectinload(ServiceLogEntry.asset_actions),
                selectinload(MaintenanceReport.service_logs).selectinload(ServiceLogEntry.procedure_checks),
            )
            .where(
                MaintenanceReport.workstation_id == key.workstation_id,
                MaintenanceReport.quarter == key.quarter,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_id(self, report_id: uuid.UUID) -> Optional[MaintenanceReport]:
        """Reload a report with its procedures."""
        query = (
            select(MaintenanceReport)
            .options(
                selectinload(MaintenanceReport.procedures).selectinload(ReportProcedureCheck.procedure),
            )
            .where(MaintenanceReport.id == report_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_for_lab(self, lab_id: uuid.UUID, quarter: str) -> List[MaintenanceReport]:
        """All reports of a laboratory for a quarter."""
        query = (
            select(MaintenanceReport)
            .options(
                selectinload(MaintenanceReport.procedures).selectinload(ReportProcedureCheck.procedure),
            )
            .where(
                MaintenanceReport.lab_id == lab_id,
                MaintenanceReport.quarter == quarter,
            )
            .order_by(MaintenanceReport.report_date.desc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ==================== UPSERT ====================

    async def create_or_update(
        self,
        key: ReportKey,
        lab_id: uuid.UUID,
        user_id: Optional[uuid.UUID],
        report_date: date,
        conditions,
    ) -> Tuple[MaintenanceReport, str]:
        """
        Upsert the report for ``key``.

        Returns the report and the workstation status it had before this
        call ("Not Previously Serviced" for a new report).
        """
        report = await self.find_current(key, for_update=True)
        if report is None:
            report = await self._insert(key, lab_id, user_id, report_date, conditions)
            if report is not None:
                return report, WorkstationStatus.NOT_PREVIOUSLY_SERVICED.value

            # A concurrent writer created the row first; update theirs
            logger.info(
                f"Report for workstation {key.workstation_id} / {key.quarter} created concurrently; updating"
            )
            report = await self.find_current(key, for_update=True)
            if report is None:
                # Winner committed outside this transaction's snapshot
                raise StorageConflictError(
                    "Concurrent update conflict, please retry",
                    details={"workstation_id": str(key.workstation_id), "quarter": key.quarter},
                )

        status_before = report.workstation_status
        self._apply_conditions(report, conditions)
        report.report_date = report_date
        report.user_id = user_id
        report.service_count = (report.service_count or 0) + 1
        await self.db.flush()
        return report, status_before

    async def _insert(
        self,
        key: ReportKey,
        lab_id: uuid.UUID,
        user_id: Optional[uuid.UUID],
        report_date: date,
        conditions,
    ) -> Optional[MaintenanceReport]:
        """Insert under a savepoint; None if the unique key was already taken."""
        report = MaintenanceReport(
            id=uuid.uuid4(),
            lab_id=lab_id,
            workstation_id=key.workstation_id,
            quarter=key.quarter,
            user_id=user_id,
            report_date=report_date,
            service_count=1,
        )
        self._apply_conditions(report, conditions)
        try:
            async with self.db.begin_nested():
                self.db.add(report)
                await self.db.flush()
        except IntegrityError:
            if report in self.db:
                self.db.expunge(report)
            return None
        return report

    @staticmethod
    def _apply_conditions(report: MaintenanceReport, conditions) -> None:
        for field in CONDITION_FIELDS:
            value = getattr(conditions, field, None)
            if field == "workstation_status":
                value = get_enum_value(value)
            setattr(report, field, value)

    # ==================== PROCEDURES ====================

    async def replace_procedure_links(
        self,
        report_id: uuid.UUID,
        procedure_ids: Sequence[uuid.UUID],
    ) -> List[ReportProcedureCheck]:
        """Replace the report's checklist with ``procedure_ids`` (all checked)."""
        unique_ids = list(dict.fromkeys(procedure_ids or []))
        await self.ensure_procedures_exist(unique_ids)

        await self.db.execute(
            delete(ReportProcedureCheck).where(ReportProcedureCheck.report_id == report_id)
        )
        links = [
            ReportProcedureCheck(
                id=uuid.uuid4(),
                report_id=report_id,
                procedure_id=procedure_id,
                is_checked=True,
            )
            for procedure_id in unique_ids
        ]
        self.db.add_all(links)
        await self.db.flush()
        return links

    async def ensure_procedures_exist(self, procedure_ids: Sequence[uuid.UUID]) -> None:
        """Raise MaintenanceValidationError for unknown procedure ids."""
        if not procedure_ids:
            return
        result = await self.db.execute(
            select(MaintenanceProcedure.id).where(MaintenanceProcedure.id.in_(list(procedure_ids)))
        )
        known = set(result.scalars().all())
        missing = [str(pid) for pid in procedure_ids if pid not in known]
        if missing:
            raise MaintenanceValidationError(
                "Unknown maintenance procedure(s)",
                details={"procedure_ids": missing},
            )

    # ==================== REPAIR OUTCOME ====================

    async def apply_repair_outcome(
        self,
        report: MaintenanceReport,
        status_after,
        service_date: date,
    ) -> MaintenanceReport:
        """Count the repair as a service and move the report to ``status_after``."""
        report.service_count = (report.service_count or 0) + 1
        report.workstation_status = get_enum_value(status_after)
        report.report_date = service_date
        await self.db.flush()
        return report
