"""Asset Registry: lifecycle operations on physical inventory."""
import logging
import uuid
from datetime import date
from typing import Optional, List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from labpmc.config import settings
from labpmc.core.exceptions import AssetNotFoundError, ReferenceDataMissingError
from labpmc.models.inventory import AssetStatus, InventoryAsset, AssetDetail
from labpmc.services.status_rules import compose_dated_remark, resolve_preferred_status


logger = logging.getLogger(__name__)


class AssetRegistryService:
    """
    Service for inventory status lookups and mutations.

    Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== STATUS LOOKUPS ====================

    async def find_status_by_name_preferred(
        self,
        candidate_names: Sequence[str],
    ) -> Optional[AssetStatus]:
        """
        Return the first existing status among ``candidate_names`` (priority
        order), or None when none of them is seeded.
        """
        if not candidate_names:
            return None
        result = await self.db.execute(
            select(AssetStatus).where(AssetStatus.status_name.in_(list(candidate_names)))
        )
        available = {status.status_name: status for status in result.scalars().all()}
        return resolve_preferred_status(candidate_names, available)

    async def find_status_by_name(self, name: str) -> Optional[AssetStatus]:
        return await self.find_status_by_name_preferred([name])

    # ==================== ASSET LOOKUPS ====================

    async def get_asset(self, asset_id: uuid.UUID) -> InventoryAsset:
        """Get asset with its detail and status. Raises AssetNotFoundError."""
        result = await self.db.execute(
            select(InventoryAsset).where(InventoryAsset.id == asset_id)
        )
        asset = result.scalar_one_or_none()
        if asset is None:
            raise AssetNotFoundError(asset_id)
        if asset.details is None:
            raise ReferenceDataMissingError(
                f"Inventory asset {asset_id} has no detail record",
                details={"asset_id": str(asset_id)},
            )
        return asset

    async def list_unassigned(self, lab_id: uuid.UUID) -> List[InventoryAsset]:
        """Assets of a lab that are not attached to any workstation."""
        result = await self.db.execute(
            select(InventoryAsset)
            .where(
                InventoryAsset.lab_id == lab_id,
                InventoryAsset.workstation_id.is_(None),
            )
            .order_by(InventoryAsset.date_added.desc())
        )
        return list(result.scalars().all())

    # ==================== MUTATIONS ====================

    async def detach_from_workstation(self, asset_id: uuid.UUID) -> InventoryAsset:
        """Clear the workstation link but keep the lab link."""
        asset = await self.get_asset(asset_id)
        asset.workstation_id = None
        await self.db.flush()
        return asset

    async def set_status_and_remark(
        self,
        detail_id: uuid.UUID,
        status_id: Optional[uuid.UUID],
        remark: Optional[str],
        on: date,
    ) -> AssetDetail:
        """Set the detail's status and append ``remark`` as a dated line to its remarks."""
        detail = await self.db.get(AssetDetail, detail_id)
        if detail is None:
            raise ReferenceDataMissingError(
                f"Asset detail {detail_id} not found",
                details={"detail_id": str(detail_id)},
            )
        detail.status_id = status_id
        if remark:
            detail.asset_remarks = compose_dated_remark(detail.asset_remarks, remark, on)
        await self.db.flush()
        await self.db.refresh(detail, attribute_names=["current_status"])
        return detail

    async def create_replacement(
        self,
        lab_id: Optional[uuid.UUID],
        workstation_id: uuid.UUID,
        unit_id: Optional[uuid.UUID],
        added_by_user_id: Optional[uuid.UUID],
        tag: Optional[str],
        serial: Optional[str],
        description: Optional[str],
    ) -> InventoryAsset:
        """Create a new Functional asset attached to ``workstation_id``."""
        functional = await self.find_status_by_name(settings.FUNCTIONAL_STATUS_NAME)
        if functional is None:
            logger.warning(
                f"Status '{settings.FUNCTIONAL_STATUS_NAME}' is not seeded; "
                f"replacement asset for workstation {workstation_id} created without status"
            )

        asset = InventoryAsset(
            id=uuid.uuid4(),
            lab_id=lab_id,
            workstation_id=workstation_id,
            unit_id=unit_id,
            added_by_user_id=added_by_user_id,
        )
        asset.details = AssetDetail(
            id=uuid.uuid4(),
            description=description,
            serial_number=serial,
            property_tag_no=tag,
            quantity=1,
            status_id=functional.id if functional else None,
            current_status=functional,
        )
        self.db.add(asset)
        await self.db.flush()

        logger.info(f"Created replacement asset {asset.id} (tag={tag}) on workstation {workstation_id}")
        return asset
