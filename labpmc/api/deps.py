from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from labpmc.database import get_db
from labpmc.services.maintenance_service import MaintenanceService


logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None,
) -> uuid.UUID:
    """
    Dependency to get the id of the calling user.

    Authentication happens upstream; the gateway forwards the authenticated
    user's id in the ``X-User-Id`` header.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing or invalid X-User-Id header",
    )
    if not x_user_id:
        raise credentials_exception
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        logger.warning(f"Invalid user id in X-User-Id header: {x_user_id}")
        raise credentials_exception


async def get_maintenance_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MaintenanceService:
    return MaintenanceService(db)


# Type aliases for cleaner dependency injection
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
Maintenance = Annotated[MaintenanceService, Depends(get_maintenance_service)]
