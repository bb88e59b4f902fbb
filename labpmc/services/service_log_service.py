"""Service Log Recorder: append-only ledger of maintenance events."""
import uuid
from datetime import date
from typing import Optional, List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from labpmc.core.enum_utils import get_enum_value
from labpmc.models.maintenance import (
    MaintenanceReport, ServiceLogEntry, ServiceLogProcedureCheck, AssetAction,
)


ASSET_ACTION_FIELDS = (
    "asset_id",
    "status_before",
    "status_after",
    "old_property_tag",
    "new_property_tag",
    "new_serial_number",
    "new_description",
    "remarks",
    "replacement_asset_id",
)


class ServiceLogService:
    """
    Append-only ledger of service events.

    There is no update or delete: an entry is final once appended.
    Methods flush but never commit.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        report_id: uuid.UUID,
        service_type: str,
        service_date: date,
        performed_by: Optional[uuid.UUID],
        remarks: Optional[str],
        status_before: Optional[str],
        status_after: Optional[str],
        procedure_ids: Sequence[uuid.UUID] = (),
        asset_actions: Sequence = (),
    ) -> ServiceLogEntry:
        """
        Write a log entry together with its procedure checks and asset actions.

        ``asset_actions`` items may be schema objects or dicts; the ``action``
        value is stored exactly as supplied.
        """
        entry = ServiceLogEntry(
            id=uuid.uuid4(),
            report_id=report_id,
            service_type=get_enum_value(service_type),
            service_date=service_date,
            performed_by=performed_by,
            remarks=remarks,
            workstation_status_before=get_enum_value(status_before),
            workstation_status_after=get_enum_value(status_after),
        )
        entry.procedure_checks = [
            ServiceLogProcedureCheck(id=uuid.uuid4(), procedure_id=procedure_id, is_checked=True)
            for procedure_id in dict.fromkeys(procedure_ids or [])
        ]
        entry.asset_actions = [
            self._build_action(position, action)
            for position, action in enumerate(asset_actions or [])
        ]
        self.db.add(entry)
        await self.db.flush()
        return entry

    @staticmethod
    def _build_action(position: int, action) -> AssetAction:
        data = action if isinstance(action, dict) else action.model_dump()
        return AssetAction(
            id=uuid.uuid4(),
            position=position,
            action=get_enum_value(data.get("action")) or "CHECKED",
            **{field: data.get(field) for field in ASSET_ACTION_FIELDS},
        )

    # ==================== HISTORY ====================

    def _history_query(self):
        return (
            select(ServiceLogEntry)
            .options(
                selectinload(ServiceLogEntry.asset_actions),
                selectinload(ServiceLogEntry.procedure_checks).selectinload(ServiceLogProcedureCheck.procedure),
            )
            .order_by(ServiceLogEntry.created_at.desc())
            .execution_options(populate_existing=True)
        )

    async def get_entry(self, entry_id: uuid.UUID) -> Optional[ServiceLogEntry]:
        """Reload one entry with its nested rows."""
        result = await self.db.execute(
            self._history_query().where(ServiceLogEntry.id == entry_id)
        )
        return result.scalar_one_or_none()

    async def list_for_report(self, report_id: uuid.UUID) -> List[ServiceLogEntry]:
        """Entries of one report, newest first."""
        result = await self.db.execute(
            self._history_query().where(ServiceLogEntry.report_id == report_id)
        )
        return list(result.scalars().all())

    async def list_history(
        self,
        workstation_id: uuid.UUID,
        quarter: Optional[str] = None,
    ) -> List[ServiceLogEntry]:
        """Entries of a workstation across quarters (or one quarter), newest first."""
        query = self._history_query().join(
            MaintenanceReport, ServiceLogEntry.report_id == MaintenanceReport.id
        ).where(MaintenanceReport.workstation_id == workstation_id)
        if quarter:
            query = query.where(MaintenanceReport.quarter == quarter)
        result = await self.db.execute(query)
        return list(result.scalars().all())
