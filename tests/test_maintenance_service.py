"""Tests for the maintenance orchestrator and the stores behind it."""
import asyncio
import logging
import uuid
from datetime import date

import pytest
from sqlalchemy import select, func, update
from sqlalchemy.exc import OperationalError

from labpmc.core.exceptions import (
    AssetNotFoundError,
    MaintenanceReportNotFoundError,
    MaintenanceValidationError,
    ReferenceDataMissingError,
    StorageConflictError,
    StorageError,
)
from labpmc.models import (
    AssetDetail, InventoryAsset, MaintenanceReport, ServiceLogEntry, Workstation,
)
from labpmc.schemas.maintenance import MaintenanceReportDetail
from labpmc.services import (
    AssetRegistryService, MaintenanceService, MaintenanceRecordService, ReportKey, ServiceLogService,
)


REPAIR_DATE = date(2025, 4, 2)


async def submit_routine(session_factory, lab, conditions, status="Functional", quarter="1st",
                         procedure_ids=None, workstation_id=None, lab_id=None):
    async with session_factory() as session:
        return await MaintenanceService(session).record_routine_service(
            lab_id=lab_id or lab.lab_id,
            workstation_id=workstation_id or lab.workstation_id,
            quarter=quarter,
            report_date=date(2025, 3, 14),
            conditions=conditions(status, overall_remarks=f"PMC: {status}"),
            procedure_ids=lab.procedure_ids[:2] if procedure_ids is None else procedure_ids,
            performed_by=lab.user_id,
        )


async def submit_repair(session_factory, lab, actions, quarter="1st", **kwargs):
    async with session_factory() as session:
        return await MaintenanceService(session).record_repair_event(
            workstation_id=lab.workstation_id,
            quarter=quarter,
            lab_id=lab.lab_id,
            service_date=REPAIR_DATE,
            asset_actions=actions,
            performed_by=lab.user_id,
            **kwargs,
        )


async def count_rows(session_factory, model, *criteria):
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*criteria))
        return result.scalar_one()


async def load(session_factory, model, row_id):
    async with session_factory() as session:
        return await session.get(model, row_id)


async def load_report(session_factory, lab, quarter="1st"):
    async with session_factory() as session:
        return await MaintenanceRecordService(session).find_current(ReportKey(lab.workstation_id, quarter))


class TestRoutineService:
    """Routine PMC submission."""

    async def test_first_submission_creates_report(self, session_factory, lab, conditions):
        report, entry = await submit_routine(session_factory, lab, conditions)

        assert report.service_count == 1
        assert report.workstation_status == "Functional"
        assert report.user_id == lab.user_id
        assert {p.procedure_name for p in report.procedures} == {"Hardware Maintenance", "Software Maintenance"}
        assert entry.service_type == "ROUTINE"
        assert entry.workstation_status_before == "Not Previously Serviced"
        assert entry.workstation_status_after == "Functional"
        assert entry.remarks == "PMC: Functional"
        assert len(entry.procedure_checks) == 2
        assert all(check.is_checked for check in entry.procedure_checks)

    async def test_resubmission_updates_same_report(self, session_factory, lab, conditions):
        first, _ = await submit_routine(session_factory, lab, conditions)
        second, entry = await submit_routine(
            session_factory, lab, conditions, status="Needs Repair", procedure_ids=lab.procedure_ids[2:],
        )

        assert second.id == first.id
        assert second.service_count == 2
        assert second.workstation_status == "Needs Repair"
        assert [p.procedure_name for p in second.procedures] == ["Regular Cleaning"]
        assert entry.workstation_status_before == "Functional"
        assert entry.workstation_status_after == "Needs Repair"

    async def test_workstation_status_is_mirrored(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions, status="for upgrade")

        workstation = await load(session_factory, Workstation, lab.workstation_id)
        assert workstation.status == "For Upgrade"

    async def test_repeated_submissions_keep_one_report(self, session_factory, lab, conditions):
        for _ in range(4):
            await submit_routine(session_factory, lab, conditions)

        assert await count_rows(session_factory, MaintenanceReport) == 1
        assert await count_rows(session_factory, ServiceLogEntry) == 4
        report = await load_report(session_factory, lab)
        assert report.service_count == 4

    async def test_concurrent_submissions_keep_one_report(self, session_factory, lab, conditions):
        await asyncio.gather(*(submit_routine(session_factory, lab, conditions) for _ in range(3)))

        assert await count_rows(session_factory, MaintenanceReport) == 1
        assert await count_rows(session_factory, ServiceLogEntry) == 3
        report = await load_report(session_factory, lab)
        assert report.service_count == 3

    async def test_quarters_are_separate_reports(self, session_factory, lab, conditions):
        q1, _ = await submit_routine(session_factory, lab, conditions, quarter="1st")
        q2, entry = await submit_routine(session_factory, lab, conditions, quarter="2nd")

        assert q1.id != q2.id
        assert q2.service_count == 1
        assert entry.workstation_status_before == "Not Previously Serviced"

    async def test_unknown_procedure_rolls_back_everything(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)

        with pytest.raises(MaintenanceValidationError) as exc_info:
            await submit_routine(
                session_factory, lab, conditions, status="Needs Repair", procedure_ids=[uuid.uuid4()],
            )

        assert exc_info.value.outcome == "not_applied"
        report = await load_report(session_factory, lab)
        assert report.service_count == 1
        assert report.workstation_status == "Functional"
        assert await count_rows(session_factory, ServiceLogEntry) == 1
        workstation = await load(session_factory, Workstation, lab.workstation_id)
        assert workstation.status == "Functional"

    async def test_workstation_from_other_lab_rejected(self, session_factory, lab, conditions):
        with pytest.raises(MaintenanceValidationError):
            await submit_routine(session_factory, lab, conditions, lab_id=lab.other_lab_id)

        assert await count_rows(session_factory, MaintenanceReport) == 0

    async def test_unknown_workstation(self, session_factory, lab, conditions):
        with pytest.raises(ReferenceDataMissingError):
            await submit_routine(session_factory, lab, conditions, workstation_id=uuid.uuid4())

        assert await count_rows(session_factory, MaintenanceReport) == 0

    async def test_blank_quarter_rejected(self, session_factory, lab, conditions):
        with pytest.raises(MaintenanceValidationError):
            await submit_routine(session_factory, lab, conditions, quarter="  ")

    async def test_database_error_is_reported_as_not_applied(self, session_factory, lab, conditions, monkeypatch):
        async def failing_links(self, report_id, procedure_ids):
            raise OperationalError("DELETE FROM report_procedure_checks", {}, Exception("disk I/O error"))

        monkeypatch.setattr(MaintenanceRecordService, "replace_procedure_links", failing_links)

        with pytest.raises(StorageError) as exc_info:
            await submit_routine(session_factory, lab, conditions)

        assert exc_info.value.outcome == "not_applied"
        assert exc_info.value.status_code == 500
        assert exc_info.value.retryable is False
        assert await count_rows(session_factory, MaintenanceReport) == 0
        assert await count_rows(session_factory, ServiceLogEntry) == 0


class TestRecordStore:

    async def test_insert_of_taken_key_falls_back_to_update(self, db, lab, conditions):
        records = MaintenanceRecordService(db)
        key = ReportKey(lab.workstation_id, "1st")
        report, status_before = await records.create_or_update(
            key, lab.lab_id, lab.user_id, date(2025, 3, 14), conditions("Functional"),
        )
        assert status_before == "Not Previously Serviced"

        assert await records._insert(key, lab.lab_id, lab.user_id, date(2025, 3, 15), conditions("Needs Repair")) is None

        # The failed insert only rolled back its savepoint
        again, status_before = await records.create_or_update(
            key, lab.lab_id, lab.user_id, date(2025, 3, 15), conditions("Needs Repair"),
        )
        await db.commit()
        assert again.id == report.id
        assert again.service_count == 2
        assert status_before == "Functional"

    async def test_conflict_row_outside_snapshot_is_retryable(self, db, lab, conditions, monkeypatch):
        records = MaintenanceRecordService(db)

        async def lost_insert(*args, **kwargs):
            return None

        async def not_visible(*args, **kwargs):
            return None

        monkeypatch.setattr(records, "_insert", lost_insert)
        monkeypatch.setattr(records, "find_current", not_visible)

        with pytest.raises(StorageConflictError) as exc_info:
            await records.create_or_update(
                ReportKey(lab.workstation_id, "1st"), lab.lab_id, lab.user_id, date(2025, 3, 14), conditions(),
            )

        assert exc_info.value.retryable is True
        assert exc_info.value.outcome == "not_applied"

    def test_report_key_normalizes_quarter(self):
        key = ReportKey(uuid.uuid4(), " 3rd ")
        assert key.quarter == "3rd"

    def test_report_key_requires_workstation(self):
        with pytest.raises(MaintenanceValidationError):
            ReportKey(None, "1st")


class TestRepairEvent:
    """Repair / replacement events on an already serviced workstation."""

    async def test_requires_prior_report(self, session_factory, lab):
        with pytest.raises(MaintenanceReportNotFoundError) as exc_info:
            await submit_repair(
                session_factory, lab,
                [{"asset_id": lab.monitor_id, "action": "REPLACED", "new_property_tag": "PT-MON-002"}],
            )

        assert exc_info.value.outcome == "not_applied"
        assert await count_rows(session_factory, ServiceLogEntry) == 0
        assert await count_rows(session_factory, MaintenanceReport) == 0
        assert await count_rows(session_factory, InventoryAsset) == 2
        monitor = await load(session_factory, InventoryAsset, lab.monitor_id)
        assert monitor.workstation_id == lab.workstation_id
        assert monitor.details.status_name == "Functional"
        assert monitor.details.asset_remarks == "Issued 2024"

    async def test_replacement_with_details_creates_new_asset(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)

        entry = await submit_repair(
            session_factory, lab,
            [{
                "asset_id": lab.monitor_id,
                "action": "REPLACED",
                "new_property_tag": "PT-MON-002",
                "new_serial_number": "SN-MON-002",
            }],
            remarks="Monitor flickering",
        )

        assert entry.service_type == "REPAIR"
        assert entry.workstation_status_before == "Functional"
        assert entry.workstation_status_after == "Upgraded"
        action = entry.asset_actions[0]
        assert action.action == "REPLACED"
        assert action.status_before == "Functional"
        assert action.status_after == "Decommissioned"
        assert action.old_property_tag == "PT-MON-001"
        assert action.replacement_asset_id is not None

        old = await load(session_factory, InventoryAsset, lab.monitor_id)
        assert old.workstation_id is None
        assert old.lab_id == lab.lab_id
        assert old.details.status_name == "Decommissioned"
        assert old.details.asset_remarks == "Issued 2024\n[2025-04-02] Replaced by PT-MON-002 during repair service"

        new = await load(session_factory, InventoryAsset, action.replacement_asset_id)
        assert new.workstation_id == lab.workstation_id
        assert new.lab_id == lab.lab_id
        assert new.unit_id == lab.monitor_unit_id
        assert new.added_by_user_id == lab.user_id
        assert new.details.property_tag_no == "PT-MON-002"
        assert new.details.serial_number == "SN-MON-002"
        assert new.details.description == "Lab monitor"
        assert new.details.status_name == "Functional"

        report = await load_report(session_factory, lab)
        assert report.service_count == 2
        assert report.workstation_status == "Upgraded"
        assert report.report_date == REPAIR_DATE
        workstation = await load(session_factory, Workstation, lab.workstation_id)
        assert workstation.status == "Upgraded"

    async def test_replacement_without_details_creates_no_asset(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)

        entry = await submit_repair(session_factory, lab, [{"asset_id": lab.monitor_id, "action": "replaced"}])

        assert entry.asset_actions[0].replacement_asset_id is None
        assert entry.asset_actions[0].action == "replaced"
        assert entry.workstation_status_after == "Upgraded"
        assert await count_rows(session_factory, InventoryAsset) == 2
        old = await load(session_factory, InventoryAsset, lab.monitor_id)
        assert old.workstation_id is None
        assert old.details.status_name == "Decommissioned"

    async def test_replacement_without_reference_statuses(self, session_factory, bare_lab, conditions):
        await submit_routine(session_factory, bare_lab, conditions)

        entry = await submit_repair(
            session_factory, bare_lab,
            [{"asset_id": bare_lab.monitor_id, "action": "REPLACED", "new_description": "24in LED monitor"}],
        )

        action = entry.asset_actions[0]
        assert action.status_before == "For Repair"
        assert action.status_after == "For Repair"
        old = await load(session_factory, InventoryAsset, bare_lab.monitor_id)
        assert old.workstation_id is None
        assert old.details.status_name == "For Repair"

        new = await load(session_factory, InventoryAsset, action.replacement_asset_id)
        assert new.details.description == "24in LED monitor"
        assert new.details.status_id is None
        assert entry.workstation_status_after == "Upgraded"

    async def test_repair_restores_functional_status(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions, status="Needs Repair")
        async with session_factory() as session:
            await session.execute(
                update(AssetDetail)
                .where(AssetDetail.asset_id == lab.keyboard_id)
                .values(status_id=lab.status_ids["For Repair"])
            )
            await session.commit()

        entry = await submit_repair(
            session_factory, lab,
            [{"asset_id": lab.keyboard_id, "action": "REPAIRED", "status_before": "Functional",
              "remarks": "replaced cable"}],
        )

        action = entry.asset_actions[0]
        assert action.status_before == "For Repair"
        assert action.status_after == "Functional"
        assert action.replacement_asset_id is None
        assert entry.workstation_status_before == "Needs Repair"
        assert entry.workstation_status_after == "Functional"
        keyboard = await load(session_factory, InventoryAsset, lab.keyboard_id)
        assert keyboard.workstation_id == lab.workstation_id
        assert keyboard.details.status_name == "Functional"
        assert keyboard.details.asset_remarks == "Issued 2024\n[2025-04-02] REPAIRED: replaced cable"

    async def test_repair_falls_back_to_event_remarks(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)

        await submit_repair(
            session_factory, lab, [{"asset_id": lab.keyboard_id, "action": "UPGRADED"}],
            service_type="upgrade", remarks="Mechanical keyboard",
        )

        keyboard = await load(session_factory, InventoryAsset, lab.keyboard_id)
        assert keyboard.details.asset_remarks.endswith("[2025-04-02] UPGRADED: Mechanical keyboard")

    async def test_repair_without_functional_status_keeps_current(self, session_factory, bare_lab, conditions):
        await submit_routine(session_factory, bare_lab, conditions)

        entry = await submit_repair(session_factory, bare_lab, [{"asset_id": bare_lab.keyboard_id, "action": "REPAIRED"}])

        assert entry.asset_actions[0].status_after == "For Repair"
        keyboard = await load(session_factory, InventoryAsset, bare_lab.keyboard_id)
        assert keyboard.details.asset_remarks == "Issued 2024\n[2025-04-02] REPAIRED"

    async def test_unknown_action_recorded_without_changes(self, session_factory, lab, conditions, caplog):
        await submit_routine(session_factory, lab, conditions)

        with caplog.at_level(logging.WARNING, logger="labpmc.services.maintenance_service"):
            entry = await submit_repair(
                session_factory, lab,
                [{"asset_id": lab.monitor_id, "action": "CALIBRATED", "status_before": "Functional",
                  "status_after": "Functional"}],
            )

        assert "Unknown asset action 'CALIBRATED'" in caplog.text
        action = entry.asset_actions[0]
        assert action.action == "CALIBRATED"
        assert action.status_before == "Functional"
        assert entry.workstation_status_after == "Functional"
        monitor = await load(session_factory, InventoryAsset, lab.monitor_id)
        assert monitor.workstation_id == lab.workstation_id
        assert monitor.details.asset_remarks == "Issued 2024"

    async def test_service_type_is_recorded(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)

        entry = await submit_repair(session_factory, lab, [], service_type="REPLACEMENT")

        assert entry.service_type == "REPLACEMENT"
        assert entry.asset_actions == []
        assert entry.workstation_status_after == "Functional"

    async def test_missing_asset_rolls_back_event(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)

        with pytest.raises(AssetNotFoundError):
            await submit_repair(
                session_factory, lab,
                [
                    {"asset_id": lab.keyboard_id, "action": "REPAIRED"},
                    {"asset_id": uuid.uuid4(), "action": "REPLACED", "new_property_tag": "PT-X"},
                ],
            )

        assert await count_rows(session_factory, ServiceLogEntry) == 1
        assert await count_rows(session_factory, InventoryAsset) == 2
        report = await load_report(session_factory, lab)
        assert report.service_count == 1
        keyboard = await load(session_factory, InventoryAsset, lab.keyboard_id)
        assert keyboard.details.asset_remarks == "Issued 2024"

    async def test_replaced_asset_becomes_unassigned(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)
        await submit_repair(session_factory, lab, [{"asset_id": lab.monitor_id, "action": "REPLACED"}])

        async with session_factory() as session:
            unassigned = await AssetRegistryService(session).list_unassigned(lab.lab_id)

        assert [asset.id for asset in unassigned] == [lab.monitor_id]

    async def test_mutating_action_requires_asset(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)

        with pytest.raises(MaintenanceValidationError):
            await submit_repair(session_factory, lab, [{"action": "REPAIRED"}])

        assert await count_rows(session_factory, ServiceLogEntry) == 1

    async def test_asset_of_another_workstation_rejected(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)
        async with session_factory() as session:
            await session.execute(
                update(InventoryAsset)
                .where(InventoryAsset.id == lab.monitor_id)
                .values(workstation_id=lab.other_workstation_id)
            )
            await session.commit()

        with pytest.raises(MaintenanceValidationError) as exc_info:
            await submit_repair(
                session_factory, lab,
                [{"asset_id": lab.monitor_id, "action": "REPLACED", "new_property_tag": "PT-MON-002"}],
            )

        assert exc_info.value.details["attached_to"] == str(lab.other_workstation_id)
        monitor = await load(session_factory, InventoryAsset, lab.monitor_id)
        assert monitor.workstation_id == lab.other_workstation_id
        assert monitor.details.asset_remarks == "Issued 2024"
        assert await count_rows(session_factory, InventoryAsset) == 2
        assert await count_rows(session_factory, ServiceLogEntry) == 1

    async def test_same_asset_twice_rejected(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)

        with pytest.raises(MaintenanceValidationError):
            await submit_repair(
                session_factory, lab,
                [
                    {"asset_id": lab.monitor_id, "action": "REPLACED", "new_property_tag": "PT-MON-002"},
                    {"asset_id": lab.monitor_id, "action": "REPLACED", "new_property_tag": "PT-MON-003"},
                ],
            )

        monitor = await load(session_factory, InventoryAsset, lab.monitor_id)
        assert monitor.workstation_id == lab.workstation_id
        assert monitor.details.asset_remarks == "Issued 2024"
        assert await count_rows(session_factory, InventoryAsset) == 2
        report = await load_report(session_factory, lab)
        assert report.service_count == 1

    async def test_same_asset_may_be_checked_and_repaired(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)

        entry = await submit_repair(
            session_factory, lab,
            [
                {"asset_id": lab.keyboard_id, "action": "CHECKED"},
                {"asset_id": lab.keyboard_id, "action": "REPAIRED"},
            ],
        )

        assert [a.action for a in entry.asset_actions] == ["CHECKED", "REPAIRED"]


class TestServiceHistory:
    """A workstation's quarter from first PMC to replacement."""

    async def test_full_quarter_scenario(self, session_factory, lab, conditions):
        first, _ = await submit_routine(session_factory, lab, conditions, status="Functional")
        assert first.service_count == 1

        second, _ = await submit_routine(session_factory, lab, conditions, status="Needs Repair")
        assert second.service_count == 2

        await submit_repair(
            session_factory, lab,
            [{"asset_id": lab.monitor_id, "action": "REPLACED", "new_property_tag": "PT-MON-002"}],
        )
        report = await load_report(session_factory, lab)
        assert report.service_count == 3
        assert report.workstation_status == "Upgraded"

        async with session_factory() as session:
            history = await MaintenanceService(session).list_service_history(lab.workstation_id)

        assert [e.service_type for e in history] == ["REPAIR", "ROUTINE", "ROUTINE"]
        assert [(e.workstation_status_before, e.workstation_status_after) for e in history] == [
            ("Needs Repair", "Upgraded"),
            ("Functional", "Needs Repair"),
            ("Not Previously Serviced", "Functional"),
        ]
        created = [e.created_at for e in history]
        assert created == sorted(created, reverse=True)

    async def test_history_filtered_by_quarter(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions, quarter="1st")
        await submit_routine(session_factory, lab, conditions, quarter="2nd")
        await submit_routine(session_factory, lab, conditions, quarter="2nd")

        async with session_factory() as session:
            service = MaintenanceService(session)
            everything = await service.list_service_history(lab.workstation_id)
            second_quarter = await service.list_service_history(lab.workstation_id, "2nd")
            other = await service.list_service_history(lab.other_workstation_id)

        assert len(everything) == 3
        assert len(second_quarter) == 2
        assert other == []

    async def test_report_detail_read_is_repeatable(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions)
        await submit_repair(session_factory, lab, [{"asset_id": lab.keyboard_id, "action": "REPAIRED"}])

        async with session_factory() as session:
            service = MaintenanceService(session)
            first = MaintenanceReportDetail.model_validate(
                await service.get_report_detail(lab.workstation_id, "1st")
            ).model_dump()
            second = MaintenanceReportDetail.model_validate(
                await service.get_report_detail(lab.workstation_id, "1st")
            ).model_dump()

        assert first == second
        assert len(first["service_logs"]) == 2
        assert first["service_logs"][0]["service_type"] == "REPAIR"
        assert len(first["procedures"]) == 2
        assert await count_rows(session_factory, ServiceLogEntry) == 2

    async def test_report_detail_missing(self, session_factory, lab):
        async with session_factory() as session:
            with pytest.raises(MaintenanceReportNotFoundError):
                await MaintenanceService(session).get_report_detail(lab.workstation_id, "1st")

    async def test_lab_reports_for_quarter(self, session_factory, lab, conditions):
        await submit_routine(session_factory, lab, conditions, quarter="1st")
        await submit_routine(
            session_factory, lab, conditions, quarter="1st", workstation_id=lab.other_workstation_id,
        )
        await submit_routine(session_factory, lab, conditions, quarter="2nd")

        async with session_factory() as session:
            reports = await MaintenanceService(session).list_lab_reports(lab.lab_id, "1st")

        assert {r.workstation_id for r in reports} == {lab.workstation_id, lab.other_workstation_id}

    async def test_entries_of_one_report(self, session_factory, lab, conditions):
        report, _ = await submit_routine(session_factory, lab, conditions, quarter="1st")
        await submit_routine(session_factory, lab, conditions, quarter="2nd")
        await submit_repair(session_factory, lab, [], quarter="1st")

        async with session_factory() as session:
            entries = await ServiceLogService(session).list_for_report(report.id)

        assert [e.service_type for e in entries] == ["REPAIR", "ROUTINE"]
        assert all(e.report_id == report.id for e in entries)
