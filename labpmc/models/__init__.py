# labpmc/models/__init__.py
from .laboratory import Laboratory, Workstation, Unit
from .inventory import AssetStatus, InventoryAsset, AssetDetail
from .maintenance import (
    MaintenanceProcedure,
    MaintenanceReport,
    ReportProcedureCheck,
    ServiceLogEntry,
    ServiceLogProcedureCheck,
    AssetAction,
)

__all__ = [
    'Laboratory', 'Workstation', 'Unit',
    'AssetStatus', 'InventoryAsset', 'AssetDetail',
    'MaintenanceProcedure', 'MaintenanceReport', 'ReportProcedureCheck',
    'ServiceLogEntry', 'ServiceLogProcedureCheck', 'AssetAction',
]
