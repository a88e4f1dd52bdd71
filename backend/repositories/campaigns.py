"""
Campaign persistence: the only place that issues queries for campaigns,
discount rules and the usage ledger. Services own the unit of work through
commit()/rollback().
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_, func, desc, asc
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from core.database import utc_now
from models.campaigns import Campaign, CampaignStatus
from models.campaign_usages import CampaignUsage

SORT_COLUMNS = {
    "name": Campaign.name,
    "start_date": Campaign.start_date,
    "end_date": Campaign.end_date,
    "status": Campaign.status,
    "created_at": Campaign.created_at,
    "priority": Campaign.priority,
}


class CampaignRepository:
    """Async SQLAlchemy repository for campaigns and their usage ledger"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Campaigns -------------------------------------------------------

    async def find_applicable_campaigns(self, now: Optional[datetime] = None) -> List[Campaign]:
        """Active campaigns whose date window contains ``now``, rules and targets loaded."""
        now = now or utc_now()
        result = await self.db.execute(
            select(Campaign)
            .where(
                and_(
                    Campaign.is_deleted == False,  # noqa: E712
                    Campaign.status == CampaignStatus.ACTIVE,
                    Campaign.start_date <= now,
                    Campaign.end_date >= now,
                )
            )
            .order_by(desc(Campaign.priority), asc(Campaign.created_at))
        )
        return list(result.scalars().all())

    async def get_campaign(
        self,
        campaign_id: UUID,
        for_update: bool = False,
        include_deleted: bool = False,
    ) -> Optional[Campaign]:
        """Fetch a campaign. ``for_update`` takes a row lock and refreshes loaded state.

        Soft-deleted campaigns are hidden unless ``include_deleted`` is set
        (ledger reversal still has to credit them).
        """
        query = select(Campaign).where(Campaign.id == campaign_id)
        if not include_deleted:
            query = query.where(Campaign.is_deleted == False)  # noqa: E712
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_id: str) -> Optional[Campaign]:
        result = await self.db.execute(
            select(Campaign).where(
                and_(Campaign.external_id == external_id, Campaign.is_deleted == False)  # noqa: E712
            )
        )
        return result.scalar_one_or_none()

    async def external_id_exists(self, external_id: str) -> bool:
        result = await self.db.execute(
            select(func.count(Campaign.id)).where(Campaign.external_id == external_id)
        )
        return (result.scalar() or 0) > 0

    async def list_campaigns(
        self,
        search: Optional[str] = None,
        status: Optional[CampaignStatus] = None,
        start_date_from: Optional[datetime] = None,
        start_date_to: Optional[datetime] = None,
        sort_by: str = "priority",
        sort_direction: str = "desc",
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Campaign], int]:
        """Filtered, sorted page of campaigns plus the total match count."""
        conditions = [Campaign.is_deleted == False]  # noqa: E712
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(Campaign.name.ilike(pattern), Campaign.description.ilike(pattern)))
        if status is not None:
            conditions.append(Campaign.status == status)
        if start_date_from is not None:
            conditions.append(Campaign.start_date >= start_date_from)
        if start_date_to is not None:
            conditions.append(Campaign.start_date <= start_date_to)

        count_result = await self.db.execute(
            select(func.count(Campaign.id)).where(and_(*conditions))
        )
        total = count_result.scalar() or 0

        column = SORT_COLUMNS.get((sort_by or "").lower(), Campaign.priority)
        order = desc(column) if (sort_direction or "").lower() == "desc" else asc(column)

        result = await self.db.execute(
            select(Campaign)
            .where(and_(*conditions))
            .order_by(order, asc(Campaign.id))
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    def add(self, campaign: Campaign) -> None:
        self.db.add(campaign)

    # --- Usage ledger ----------------------------------------------------

    def add_usage(self, usage: CampaignUsage) -> None:
        self.db.add(usage)

    async def find_customer_usage_aggregate(self, campaign_id: UUID, customer_id: UUID) -> Tuple[int, Decimal]:
        """(count, total discount) of the customer's non-reversed usages of the campaign."""
        result = await self.db.execute(
            select(CampaignUsage.discount_amount_value).where(
                and_(
                    CampaignUsage.campaign_id == campaign_id,
                    CampaignUsage.customer_id == customer_id,
                    CampaignUsage.is_reversed == False,  # noqa: E712
                )
            )
        )
        amounts = list(result.scalars().all())
        # Summed in Python: SQLite stores the decimal column as text
        return len(amounts), sum(amounts, Decimal("0"))

    async def find_usages_by_order(self, order_id: UUID, for_update: bool = False) -> List[CampaignUsage]:
        query = (
            select(CampaignUsage)
            .where(CampaignUsage.order_id == order_id)
            .order_by(asc(CampaignUsage.used_at))
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def find_usages_by_campaign(self, campaign_id: UUID) -> Sequence[CampaignUsage]:
        result = await self.db.execute(
            select(CampaignUsage)
            .where(CampaignUsage.campaign_id == campaign_id)
            .order_by(desc(CampaignUsage.used_at))
        )
        return list(result.scalars().all())

    # --- Unit of work ----------------------------------------------------

    async def flush(self) -> None:
        await self.db.flush()

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()
