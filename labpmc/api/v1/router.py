from fastapi import APIRouter

from labpmc.api.v1.endpoints import maintenance


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Maintenance (PMC, repairs, service history) ====================
api_router.include_router(
    maintenance.router,
    prefix="/maintenance",
    tags=["Maintenance"]
)
