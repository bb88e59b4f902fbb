"""PMC maintenance schemas for API requests/responses."""
from pydantic import Field, field_validator
from typing import Optional, List
from datetime import datetime, date
import uuid

from labpmc.core.enum_utils import match_enum_value
from labpmc.schemas.base import BaseCreateSchema, BaseResponseSchema
from labpmc.services.status_rules import WorkstationStatus, ServiceType


# ==================== INPUT SCHEMAS ====================

class AssetActionInput(BaseCreateSchema):
    """One asset touched during a service event."""
    asset_id: Optional[uuid.UUID] = None
    action: str = Field("CHECKED", max_length=30)
    status_before: Optional[str] = Field(None, max_length=50)
    status_after: Optional[str] = Field(None, max_length=50)
    old_property_tag: Optional[str] = Field(None, max_length=100)
    # Replacement details (REPLACED only)
    new_property_tag: Optional[str] = Field(None, max_length=100)
    new_serial_number: Optional[str] = Field(None, max_length=100)
    new_description: Optional[str] = Field(None, max_length=255)
    remarks: Optional[str] = None


class ReportConditions(BaseCreateSchema):
    """Workstation, software and connectivity condition captured by a PMC."""
    workstation_status: WorkstationStatus
    overall_remarks: Optional[str] = None
    software_name: Optional[str] = Field(None, max_length=200)
    software_status: Optional[str] = Field(None, max_length=50)
    connectivity_type: Optional[str] = Field(None, max_length=100)
    connectivity_type_status: Optional[str] = Field(None, max_length=50)
    connectivity_speed: Optional[str] = Field(None, max_length=100)
    connectivity_speed_status: Optional[str] = Field(None, max_length=50)

    @field_validator("workstation_status", mode="before")
    @classmethod
    def normalize_workstation_status(cls, v):
        return match_enum_value(v, WorkstationStatus)

    @field_validator("workstation_status")
    @classmethod
    def reject_system_status(cls, v):
        if v == WorkstationStatus.NOT_PREVIOUSLY_SERVICED:
            raise ValueError(f"'{v.value}' cannot be submitted as a workstation status")
        return v


class MaintenanceReportSubmit(ReportConditions):
    """Routine PMC submission for a workstation and quarter."""
    lab_id: uuid.UUID
    workstation_id: uuid.UUID
    quarter: str = Field(..., min_length=1, max_length=20)
    report_date: date
    procedure_ids: List[uuid.UUID] = Field(default_factory=list)
    service_type: str = Field(ServiceType.ROUTINE.value, max_length=30)
    asset_actions: List[AssetActionInput] = Field(default_factory=list)

    @field_validator("service_type")
    @classmethod
    def uppercase_service_type(cls, v):
        return v.upper() if v else ServiceType.ROUTINE.value


class RepairEventSubmit(BaseCreateSchema):
    """Repair / replacement / upgrade event on an already serviced workstation."""
    workstation_id: uuid.UUID
    quarter: str = Field(..., min_length=1, max_length=20)
    lab_id: uuid.UUID
    service_date: date
    service_type: Optional[str] = Field(None, max_length=30)
    remarks: Optional[str] = None
    asset_actions: List[AssetActionInput] = Field(default_factory=list)

    @field_validator("service_type")
    @classmethod
    def uppercase_service_type(cls, v):
        return v.upper() if v else None


# ==================== RESPONSE SCHEMAS ====================

class ProcedureCheckResponse(BaseResponseSchema):
    procedure_id: uuid.UUID
    procedure_name: Optional[str] = None
    is_checked: bool


class AssetActionResponse(BaseResponseSchema):
    id: uuid.UUID
    asset_id: Optional[uuid.UUID] = None
    action: str
    status_before: Optional[str] = None
    status_after: Optional[str] = None
    old_property_tag: Optional[str] = None
    new_property_tag: Optional[str] = None
    new_serial_number: Optional[str] = None
    new_description: Optional[str] = None
    remarks: Optional[str] = None
    replacement_asset_id: Optional[uuid.UUID] = None


class ServiceLogEntryResponse(BaseResponseSchema):
    id: uuid.UUID
    report_id: uuid.UUID
    service_type: str
    service_date: date
    performed_by: Optional[uuid.UUID] = None
    remarks: Optional[str] = None
    workstation_status_before: Optional[str] = None
    workstation_status_after: Optional[str] = None
    created_at: datetime
    procedure_checks: List[ProcedureCheckResponse] = []
    asset_actions: List[AssetActionResponse] = []


class MaintenanceReportResponse(BaseResponseSchema):
    id: uuid.UUID
    lab_id: uuid.UUID
    workstation_id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    quarter: str
    report_date: date
    workstation_status: str
    overall_remarks: Optional[str] = None
    software_name: Optional[str] = None
    software_status: Optional[str] = None
    connectivity_type: Optional[str] = None
    connectivity_type_status: Optional[str] = None
    connectivity_speed: Optional[str] = None
    connectivity_speed_status: Optional[str] = None
    service_count: int
    created_at: datetime
    updated_at: datetime
    procedures: List[ProcedureCheckResponse] = []


class MaintenanceReportDetail(MaintenanceReportResponse):
    """Report with its full service history, newest first."""
    service_logs: List[ServiceLogEntryResponse] = []


class RoutineServiceResponse(BaseResponseSchema):
    report: MaintenanceReportResponse
    log_entry: ServiceLogEntryResponse
