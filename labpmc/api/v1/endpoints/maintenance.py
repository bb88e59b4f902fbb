"""PMC maintenance API endpoints."""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Query, status

from labpmc.api.deps import CurrentUserId, Maintenance
from labpmc.schemas.maintenance import (
    MaintenanceReportSubmit,
    RepairEventSubmit,
    MaintenanceReportResponse,
    MaintenanceReportDetail,
    ServiceLogEntryResponse,
    RoutineServiceResponse,
)


router = APIRouter()


# ==================== PMC REPORTS ====================

@router.post("/pmc", response_model=RoutineServiceResponse, status_code=status.HTTP_201_CREATED)
async def submit_maintenance_report(
    payload: MaintenanceReportSubmit,
    service: Maintenance,
    user_id: CurrentUserId,
):
    """
    Submit the routine PMC of a workstation for a quarter.

    Creates the quarter's report on first submission and updates it on
    later ones; every submission is appended to the service log.
    """
    report, entry = await service.record_routine_service(
        lab_id=payload.lab_id,
        workstation_id=payload.workstation_id,
        quarter=payload.quarter,
        report_date=payload.report_date,
        conditions=payload,
        procedure_ids=payload.procedure_ids,
        performed_by=user_id,
        service_type=payload.service_type,
        asset_actions=payload.asset_actions,
    )
    return RoutineServiceResponse(
        report=MaintenanceReportResponse.model_validate(report),
        log_entry=ServiceLogEntryResponse.model_validate(entry),
    )


@router.get("/pmc", response_model=List[MaintenanceReportResponse])
async def list_lab_reports(
    service: Maintenance,
    lab_id: UUID = Query(...),
    quarter: str = Query(..., min_length=1),
):
    """Current reports of a laboratory for a quarter."""
    return await service.list_lab_reports(lab_id, quarter)


@router.get("/pmc/detail", response_model=MaintenanceReportDetail)
async def get_report_detail(
    service: Maintenance,
    workstation_id: UUID = Query(...),
    quarter: str = Query(..., min_length=1),
):
    """Report of a workstation for a quarter with procedures and full history."""
    return await service.get_report_detail(workstation_id, quarter)


# ==================== REPAIRS ====================

@router.post("/pmc/repair", response_model=ServiceLogEntryResponse, status_code=status.HTTP_201_CREATED)
@router.post("/repairs", response_model=ServiceLogEntryResponse, status_code=status.HTTP_201_CREATED)
async def submit_repair_event(
    payload: RepairEventSubmit,
    service: Maintenance,
    user_id: CurrentUserId,
):
    """
    Record a repair, replacement or upgrade on a workstation.

    The workstation must already have a PMC report for the quarter.
    """
    return await service.record_repair_event(
        workstation_id=payload.workstation_id,
        quarter=payload.quarter,
        lab_id=payload.lab_id,
        service_date=payload.service_date,
        service_type=payload.service_type,
        remarks=payload.remarks,
        asset_actions=payload.asset_actions,
        performed_by=user_id,
    )


# ==================== HISTORY ====================

@router.get("/pmc/history", response_model=List[ServiceLogEntryResponse])
@router.get("/history", response_model=List[ServiceLogEntryResponse])
async def list_service_history(
    service: Maintenance,
    workstation_id: UUID = Query(...),
    quarter: Optional[str] = Query(None),
):
    """Service log of a workstation, newest first."""
    return await service.list_service_history(workstation_id, quarter)
