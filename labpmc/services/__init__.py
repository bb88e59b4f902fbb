# Services module
from labpmc.services.asset_registry_service import AssetRegistryService
from labpmc.services.maintenance_record_service import MaintenanceRecordService, ReportKey
from labpmc.services.service_log_service import ServiceLogService
from labpmc.services.maintenance_service import MaintenanceService

__all__ = [
    "AssetRegistryService",
    "MaintenanceRecordService",
    "ReportKey",
    "ServiceLogService",
    "MaintenanceService",
]
