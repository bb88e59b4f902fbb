"""
Maintenance Orchestrator.

Runs each maintenance operation as one atomic unit of work across the
record store, the asset registry and the service log. Either every row an
operation touches is committed, or none is.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from labpmc.config import settings
from labpmc.core.enum_utils import get_enum_value
from labpmc.core.exceptions import (
    MaintenanceError,
    MaintenanceReportNotFoundError,
    MaintenanceValidationError,
    ReferenceDataMissingError,
    StorageConflictError,
    StorageError,
    AmbiguousOutcomeError,
)
from labpmc.models.laboratory import Workstation
from labpmc.models.maintenance import MaintenanceReport, ServiceLogEntry
from labpmc.services.asset_registry_service import AssetRegistryService
from labpmc.services.maintenance_record_service import MaintenanceRecordService, ReportKey
from labpmc.services.service_log_service import ServiceLogService
from labpmc.services.status_rules import (
    AssetActionKind,
    ServiceType,
    derive_status_after,
)


logger = logging.getLogger(__name__)


# PostgreSQL serialization_failure / deadlock_detected
SERIALIZATION_SQLSTATES = {"40001", "40P01"}


def is_serialization_failure(exc: DBAPIError) -> bool:
    """True if the driver reports a write conflict the caller may retry."""
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in SERIALIZATION_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


def _as_dict(action) -> Dict[str, Any]:
    if isinstance(action, dict):
        return dict(action)
    return action.model_dump()


class MaintenanceService:
    """
    Entry point for recording routine services and repair events.

    Owns the transaction: sub-services only flush, this class commits on
    success and rolls back on any failure.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.records = MaintenanceRecordService(db)
        self.assets = AssetRegistryService(db)
        self.service_log = ServiceLogService(db)

    # ==================== TRANSACTION ====================

    @asynccontextmanager
    async def _unit_of_work(self, operation: str, key: ReportKey):
        try:
            yield
            await self.db.flush()
        except MaintenanceError as e:
            await self.db.rollback()
            logger.warning(f"{operation} rejected for {key.workstation_id}/{key.quarter}: {e.message}")
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"{operation} violated a constraint for {key.workstation_id}/{key.quarter}: {e.orig}")
            raise MaintenanceValidationError(
                "Maintenance record violates data integrity",
                details={"reason": str(e.orig)},
            ) from e
        except DBAPIError as e:
            await self.db.rollback()
            if is_serialization_failure(e):
                logger.warning(f"{operation} conflicted with a concurrent writer for {key.workstation_id}/{key.quarter}")
                raise StorageConflictError(
                    "Concurrent update conflict, please retry",
                    details={"workstation_id": str(key.workstation_id), "quarter": key.quarter},
                ) from e
            logger.error(f"{operation} failed for {key.workstation_id}/{key.quarter}: {e}", exc_info=True)
            raise StorageError(
                "Database error, nothing was saved",
                details={"workstation_id": str(key.workstation_id), "quarter": key.quarter},
            ) from e
        except Exception:
            await self.db.rollback()
            logger.error(f"{operation} failed for {key.workstation_id}/{key.quarter}", exc_info=True)
            raise

        try:
            await self.db.commit()
        except DBAPIError as e:
            await self.db.rollback()
            if is_serialization_failure(e):
                raise StorageConflictError(
                    "Concurrent update conflict, please retry",
                    details={"workstation_id": str(key.workstation_id), "quarter": key.quarter},
                ) from e
            logger.error(f"Commit of {operation} for {key.workstation_id}/{key.quarter} failed: {e}")
            raise AmbiguousOutcomeError(
                "Commit failed; the change may or may not have been saved",
                details={"workstation_id": str(key.workstation_id), "quarter": key.quarter},
            ) from e

    async def _get_workstation(self, workstation_id: uuid.UUID) -> Workstation:
        workstation = await self.db.get(Workstation, workstation_id)
        if workstation is None:
            raise ReferenceDataMissingError(
                f"Workstation {workstation_id} not found",
                details={"workstation_id": str(workstation_id)},
            )
        return workstation

    # ==================== ROUTINE SERVICE ====================

    async def record_routine_service(
        self,
        lab_id: uuid.UUID,
        workstation_id: uuid.UUID,
        quarter: str,
        report_date: date,
        conditions,
        procedure_ids: Sequence[uuid.UUID] = (),
        performed_by: Optional[uuid.UUID] = None,
        service_type=ServiceType.ROUTINE,
        asset_actions: Sequence = (),
    ) -> Tuple[MaintenanceReport, ServiceLogEntry]:
        """
        Record a routine PMC for (workstation, quarter).

        Upserts the report, replaces its checklist, appends a log entry and
        mirrors the reported status onto the workstation.
        """
        key = ReportKey(workstation_id, quarter)
        if lab_id is None or report_date is None:
            raise MaintenanceValidationError("lab_id and report_date are required")

        async with self._unit_of_work("Routine service", key):
            workstation = await self._get_workstation(key.workstation_id)
            if workstation.lab_id != lab_id:
                raise MaintenanceValidationError(
                    "Workstation does not belong to the laboratory",
                    details={"workstation_id": str(workstation_id), "lab_id": str(lab_id)},
                )

            report, status_before = await self.records.create_or_update(
                key, lab_id, performed_by, report_date, conditions,
            )
            await self.records.replace_procedure_links(report.id, procedure_ids)
            entry = await self.service_log.append(
                report_id=report.id,
                service_type=(get_enum_value(service_type) or ServiceType.ROUTINE.value).upper(),
                service_date=report_date,
                performed_by=performed_by,
                remarks=report.overall_remarks,
                status_before=status_before,
                status_after=report.workstation_status,
                procedure_ids=procedure_ids,
                asset_actions=asset_actions,
            )
            workstation.status = report.workstation_status
            report_id, entry_id = report.id, entry.id

        logger.info(
            f"Routine service recorded for workstation {key.workstation_id} "
            f"({key.quarter}): {status_before} -> {report.workstation_status}"
        )
        return await self.records.get_by_id(report_id), await self.service_log.get_entry(entry_id)

    # ==================== REPAIR EVENT ====================

    async def record_repair_event(
        self,
        workstation_id: uuid.UUID,
        quarter: str,
        lab_id: Optional[uuid.UUID],
        service_date: date,
        service_type: Optional[str] = None,
        remarks: Optional[str] = None,
        asset_actions: Sequence = (),
        performed_by: Optional[uuid.UUID] = None,
    ) -> ServiceLogEntry:
        """
        Record a repair, replacement or upgrade on an already serviced
        workstation.

        Requires an existing report for (workstation, quarter); without one
        nothing is written and MaintenanceReportNotFoundError is raised.
        """
        key = ReportKey(workstation_id, quarter)
        if service_date is None:
            raise MaintenanceValidationError("service_date is required")
        service_type = (get_enum_value(service_type) or ServiceType.REPAIR.value).upper()

        async with self._unit_of_work("Repair event", key):
            report = await self.records.find_current(key, for_update=True)
            if report is None:
                raise MaintenanceReportNotFoundError(
                    "Maintenance report not found for this workstation and quarter",
                    details={"workstation_id": str(key.workstation_id), "quarter": key.quarter},
                )

            self._reject_duplicate_assets(asset_actions or [])
            status_before = report.workstation_status
            recorded = []
            for action in asset_actions or []:
                recorded.append(
                    await self._apply_asset_action(
                        _as_dict(action),
                        workstation_id=key.workstation_id,
                        lab_id=lab_id or report.lab_id,
                        service_date=service_date,
                        service_type=service_type,
                        event_remarks=remarks,
                        performed_by=performed_by,
                    )
                )

            status_after = derive_status_after(item.get("action") for item in recorded)
            entry = await self.service_log.append(
                report_id=report.id,
                service_type=service_type,
                service_date=service_date,
                performed_by=performed_by,
                remarks=remarks,
                status_before=status_before,
                status_after=status_after,
                asset_actions=recorded,
            )
            await self.records.apply_repair_outcome(report, status_after, service_date)
            workstation = await self._get_workstation(key.workstation_id)
            workstation.status = get_enum_value(status_after)
            entry_id = entry.id

        logger.info(
            f"{service_type} event recorded for workstation {key.workstation_id} "
            f"({key.quarter}): {status_before} -> {get_enum_value(status_after)}, "
            f"{len(recorded)} asset action(s)"
        )
        return await self.service_log.get_entry(entry_id)

    async def _apply_asset_action(
        self,
        data: Dict[str, Any],
        workstation_id: uuid.UUID,
        lab_id: Optional[uuid.UUID],
        service_date: date,
        service_type: str,
        event_remarks: Optional[str],
        performed_by: Optional[uuid.UUID],
    ) -> Dict[str, Any]:
        """Apply one asset action to the inventory and return what to log for it."""
        raw_kind = data.get("action")
        kind = AssetActionKind.parse(raw_kind)
        data["action"] = get_enum_value(raw_kind) or AssetActionKind.CHECKED.value
        data.setdefault("replacement_asset_id", None)

        if kind is AssetActionKind.CHECKED:
            if not AssetActionKind.is_known(raw_kind):
                logger.warning(f"Unknown asset action '{raw_kind}' recorded without inventory changes")
            return data

        asset_id = data.get("asset_id")
        if asset_id is None:
            raise MaintenanceValidationError(f"{kind.value} action requires asset_id")

        asset = await self.assets.get_asset(asset_id)
        if asset.workstation_id != workstation_id:
            raise MaintenanceValidationError(
                f"Asset {asset.id} is not attached to workstation {workstation_id}",
                details={
                    "asset_id": str(asset.id),
                    "workstation_id": str(workstation_id),
                    "attached_to": str(asset.workstation_id) if asset.workstation_id else None,
                },
            )
        detail = asset.details
        data["status_before"] = detail.status_name or data.get("status_before")
        data["old_property_tag"] = detail.property_tag_no or data.get("old_property_tag")

        if kind is AssetActionKind.REPLACED:
            updated = await self._retire_asset(asset, data, service_date, service_type)
            if any(data.get(f) for f in ("new_property_tag", "new_serial_number", "new_description")):
                replacement = await self.assets.create_replacement(
                    lab_id=asset.lab_id or lab_id,
                    workstation_id=workstation_id,
                    unit_id=asset.unit_id,
                    added_by_user_id=performed_by,
                    tag=data.get("new_property_tag"),
                    serial=data.get("new_serial_number"),
                    description=data.get("new_description") or detail.description,
                )
                data["replacement_asset_id"] = replacement.id
        else:
            functional = await self.assets.find_status_by_name(settings.FUNCTIONAL_STATUS_NAME)
            if functional is None:
                logger.warning(
                    f"Status '{settings.FUNCTIONAL_STATUS_NAME}' is not seeded; "
                    f"asset {asset.id} keeps its current status"
                )
            detail_text = data.get("remarks") or event_remarks
            note = f"{kind.value}: {detail_text}" if detail_text else kind.value
            updated = await self.assets.set_status_and_remark(
                detail.id,
                functional.id if functional else detail.status_id,
                note,
                service_date,
            )

        data["status_after"] = updated.status_name or data.get("status_after")
        return data

    @staticmethod
    def _reject_duplicate_assets(asset_actions: Sequence) -> None:
        """An asset may be repaired, upgraded or replaced at most once per event."""
        seen = set()
        for action in asset_actions:
            data = _as_dict(action)
            asset_id = data.get("asset_id")
            if asset_id is None or AssetActionKind.parse(data.get("action")) is AssetActionKind.CHECKED:
                continue
            if str(asset_id) in seen:
                raise MaintenanceValidationError(
                    f"Asset {asset_id} appears in more than one action",
                    details={"asset_id": str(asset_id)},
                )
            seen.add(str(asset_id))

    async def _retire_asset(self, asset, data: Dict[str, Any], service_date: date, service_type: str):
        """Detach a replaced asset and move it to an end-of-life status."""
        detail = asset.details
        await self.assets.detach_from_workstation(asset.id)

        end_of_life = await self.assets.find_status_by_name_preferred(settings.END_OF_LIFE_STATUS_NAMES)
        if end_of_life is None:
            logger.warning(
                f"No end-of-life status seeded ({', '.join(settings.END_OF_LIFE_STATUS_NAMES)}); "
                f"replaced asset {asset.id} keeps its current status"
            )

        new_tag = data.get("new_property_tag")
        note = f"Replaced by {new_tag}" if new_tag else "Replaced"
        note = f"{note} during {service_type.lower()} service"
        if data.get("remarks"):
            note = f"{note}: {data['remarks']}"

        return await self.assets.set_status_and_remark(
            detail.id,
            end_of_life.id if end_of_life else detail.status_id,
            note,
            service_date,
        )

    # ==================== READS ====================

    async def list_service_history(
        self,
        workstation_id: uuid.UUID,
        quarter: Optional[str] = None,
    ) -> List[ServiceLogEntry]:
        """Service log of a workstation, newest first."""
        return await self.service_log.list_history(workstation_id, quarter)

    async def get_report_detail(self, workstation_id: uuid.UUID, quarter: str) -> MaintenanceReport:
        """Report for (workstation, quarter) with its history. Raises if absent."""
        key = ReportKey(workstation_id, quarter)
        report = await self.records.get_detail(key)
        if report is None:
            raise MaintenanceReportNotFoundError(
                "Maintenance report not found for this workstation and quarter",
                details={"workstation_id": str(key.workstation_id), "quarter": key.quarter},
            )
        return report

    async def list_lab_reports(self, lab_id: uuid.UUID, quarter: str) -> List[MaintenanceReport]:
        """Current reports of every serviced workstation in a lab for a quarter."""
        return await self.records.list_for_lab(lab_id, quarter.strip())
