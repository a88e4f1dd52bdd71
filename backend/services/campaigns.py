"""
Campaign Service
Administration of campaigns and their discount rules: create, update,
soft delete, listing, lifecycle transitions and usage statistics.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID
import uuid
import logging

from core.config import settings
from core.exceptions import (
    ConflictException,
    NotFoundException,
    DatabaseException,
)
from core.logging import structured_logger
from models.campaigns import Campaign, CampaignStatus
from models.campaign_usages import active_usage_totals
from models.discount_rules import DiscountRule, ProductTargetType, CustomerTargetType, PriceTier
from repositories.campaigns import CampaignRepository
from schemas.campaigns import (
    CampaignCreate,
    CampaignUpdate,
    CampaignListFilters,
    CampaignListResponse,
    DiscountRuleCreate,
    DiscountRuleUpdate,
    CampaignUsageStats,
    CustomerUsageSummary,
    RecentUsage,
)

logger = logging.getLogger(__name__)

TOP_CUSTOMER_COUNT = 10
RECENT_USAGE_COUNT = 10


class CampaignService:
    """Admin operations on campaigns. Every mutation is one unit of work."""

    def __init__(self, db: AsyncSession, repository: Optional[CampaignRepository] = None):
        self.db = db
        self.repository = repository or CampaignRepository(db)

    async def _save(self, action: str, metadata: Dict[str, str]) -> None:
        try:
            await self.repository.flush()
            await self.repository.commit()
        except SQLAlchemyError as e:
            await self.repository.rollback()
            structured_logger.error(
                message=f"Failed to {action}",
                metadata=metadata,
                exception=e,
            )
            raise DatabaseException(message=f"Failed to {action}: {str(e)}", metadata=metadata)

    # --- Queries ---------------------------------------------------------

    async def get_campaign(self, campaign_id: UUID) -> Campaign:
        campaign = await self.repository.get_campaign(campaign_id)
        if not campaign:
            raise NotFoundException(f"Campaign {campaign_id} not found", resource="campaign")
        return campaign

    async def get_by_external_id(self, external_id: str) -> Campaign:
        campaign = await self.repository.get_by_external_id(external_id)
        if not campaign:
            raise NotFoundException(f"Campaign with external id {external_id} not found", resource="campaign")
        return campaign

    async def list_campaigns(self, filters: Optional[CampaignListFilters] = None) -> CampaignListResponse:
        filters = filters or CampaignListFilters()
        page = max(filters.page, 1)
        page_size = min(max(filters.page_size, 1), settings.MAX_PAGE_SIZE)

        campaigns, total = await self.repository.list_campaigns(
            search=filters.search,
            status=filters.status,
            start_date_from=filters.start_date_from,
            start_date_to=filters.start_date_to,
            sort_by=filters.sort_by,
            sort_direction=filters.sort_direction,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        items = []
        for campaign in campaigns:
            data = campaign.to_dict(include_rules=False)
            data["discount_rule_count"] = len(campaign.discount_rules)
            items.append(data)
        return CampaignListResponse(items=items, total=total, page=page, page_size=page_size)

    # --- Campaign administration -----------------------------------------

    async def create_campaign(self, data: CampaignCreate, created_by: Optional[str] = None) -> Campaign:
        if data.external_id and await self.repository.external_id_exists(data.external_id):
            raise ConflictException(f"Campaign with external id {data.external_id} already exists")

        campaign = Campaign.create(
            name=data.name,
            start_date=data.start_date,
            end_date=data.end_date,
            description=data.description,
            priority=data.priority,
            currency=data.currency,
            total_budget_limit=data.total_budget_limit,
            total_usage_limit=data.total_usage_limit,
            per_customer_budget_limit=data.per_customer_budget_limit,
            per_customer_usage_limit=data.per_customer_usage_limit,
            external_id=data.external_id,
            external_code=data.external_code,
            created_by=created_by,
        )
        campaign.id = uuid.uuid4()
        self.repository.add(campaign)
        await self._save("create campaign", {"campaign_id": str(campaign.id)})

        structured_logger.log_business_event(
            "campaign_created",
            {"campaign_id": str(campaign.id), "name": campaign.name, "created_by": created_by},
        )
        return campaign

    async def update_campaign(
        self, campaign_id: UUID, data: CampaignUpdate, updated_by: Optional[str] = None
    ) -> Campaign:
        campaign = await self.get_campaign(campaign_id)
        campaign.update(
            name=data.name,
            start_date=data.start_date,
            end_date=data.end_date,
            description=data.description,
            priority=data.priority,
            total_budget_limit=data.total_budget_limit,
            total_usage_limit=data.total_usage_limit,
            per_customer_budget_limit=data.per_customer_budget_limit,
            per_customer_usage_limit=data.per_customer_usage_limit,
            updated_by=updated_by,
        )
        await self._save("update campaign", {"campaign_id": str(campaign_id)})
        logger.info(f"Campaign updated: {campaign_id}")
        return campaign

    async def delete_campaign(self, campaign_id: UUID, deleted_by: Optional[str] = None) -> None:
        """Soft delete; usage history stays in the ledger."""
        campaign = await self.get_campaign(campaign_id)
        campaign.mark_as_deleted(deleted_by)
        await self._save("delete campaign", {"campaign_id": str(campaign_id)})
        structured_logger.log_business_event(
            "campaign_deleted", {"campaign_id": str(campaign_id), "deleted_by": deleted_by}
        )

    # --- Lifecycle -------------------------------------------------------

    async def _transition(self, campaign_id: UUID, action: str, updated_by: Optional[str]) -> Campaign:
        campaign = await self.get_campaign(campaign_id)
        previous = campaign.status
        getattr(campaign, action)()
        if updated_by is not None:
            campaign.updated_by = updated_by
        await self._save(f"{action} campaign", {"campaign_id": str(campaign_id)})

        structured_logger.log_business_event(
            "campaign_status_changed",
            {
                "campaign_id": str(campaign_id),
                "from_status": previous.value,
                "to_status": campaign.status.value,
                "updated_by": updated_by,
            },
        )
        return campaign

    async def schedule(self, campaign_id: UUID, updated_by: Optional[str] = None) -> Campaign:
        return await self._transition(campaign_id, "schedule", updated_by)

    async def activate(self, campaign_id: UUID, updated_by: Optional[str] = None) -> Campaign:
        return await self._transition(campaign_id, "activate", updated_by)

    async def pause(self, campaign_id: UUID, updated_by: Optional[str] = None) -> Campaign:
        return await self._transition(campaign_id, "pause", updated_by)

    async def end(self, campaign_id: UUID, updated_by: Optional[str] = None) -> Campaign:
        return await self._transition(campaign_id, "end", updated_by)

    async def cancel(self, campaign_id: UUID, updated_by: Optional[str] = None) -> Campaign:
        return await self._transition(campaign_id, "cancel", updated_by)

    # --- Rule administration ---------------------------------------------

    def _get_rule(self, campaign: Campaign, rule_id: UUID) -> DiscountRule:
        rule = campaign.find_rule(rule_id)
        if rule is None:
            raise NotFoundException(
                f"Discount rule {rule_id} not found in campaign {campaign.id}", resource="discount_rule"
            )
        return rule

    async def add_discount_rule(self, campaign_id: UUID, data: DiscountRuleCreate) -> DiscountRule:
        """Create a rule with its initial targets. Ids of unselected dimensions are ignored."""
        campaign = await self.get_campaign(campaign_id)
        rule = DiscountRule.create(
            discount_type=data.discount_type,
            discount_value=data.discount_value,
            product_target_type=data.product_target_type,
            customer_target_type=data.customer_target_type,
            max_discount_amount=data.max_discount_amount,
            min_order_amount=data.min_order_amount,
            min_quantity=data.min_quantity,
            campaign_id=campaign.id,
        )
        rule.id = uuid.uuid4()

        if rule.product_target_type == ProductTargetType.SPECIFIC_PRODUCTS:
            rule.replace_products(data.target_product_ids)
        elif rule.product_target_type == ProductTargetType.CATEGORIES:
            rule.replace_categories(data.target_category_ids)
        elif rule.product_target_type == ProductTargetType.BRANDS:
            rule.replace_brands(data.target_brand_ids)

        if rule.customer_target_type == CustomerTargetType.SPECIFIC_CUSTOMERS:
            rule.replace_customers(data.target_customer_ids)
        elif rule.customer_target_type == CustomerTargetType.CUSTOMER_TIERS:
            rule.replace_customer_tiers(data.target_customer_tiers)

        campaign.add_discount_rule(rule)
        await self._save("add discount rule", {"campaign_id": str(campaign_id), "rule_id": str(rule.id)})
        logger.info(f"Discount rule added to campaign: {campaign_id} - {rule.id}")
        return rule

    async def update_discount_rule(self, campaign_id: UUID, rule_id: UUID, data: DiscountRuleUpdate) -> DiscountRule:
        campaign = await self.get_campaign(campaign_id)
        campaign.ensure_status("update rules of", CampaignStatus.DRAFT)
        rule = self._get_rule(campaign, rule_id)
        rule.update(
            discount_type=data.discount_type,
            discount_value=data.discount_value,
            product_target_type=data.product_target_type,
            customer_target_type=data.customer_target_type,
            max_discount_amount=data.max_discount_amount,
            min_order_amount=data.min_order_amount,
            min_quantity=data.min_quantity,
        )
        await self._save("update discount rule", {"campaign_id": str(campaign_id), "rule_id": str(rule_id)})
        return rule

    async def remove_discount_rule(self, campaign_id: UUID, rule_id: UUID) -> None:
        campaign = await self.get_campaign(campaign_id)
        rule = self._get_rule(campaign, rule_id)
        campaign.remove_discount_rule(rule)
        await self._save("remove discount rule", {"campaign_id": str(campaign_id), "rule_id": str(rule_id)})
        logger.info(f"Discount rule removed from campaign: {campaign_id} - {rule_id}")

    async def _replace_targets(self, campaign_id: UUID, rule_id: UUID, method: str, values: Iterable) -> DiscountRule:
        campaign = await self.get_campaign(campaign_id)
        campaign.ensure_status("change rule targets of", CampaignStatus.DRAFT)
        rule = self._get_rule(campaign, rule_id)
        getattr(rule, method)(list(values))
        await self._save("update rule targets", {"campaign_id": str(campaign_id), "rule_id": str(rule_id)})
        return rule

    async def set_rule_products(self, campaign_id: UUID, rule_id: UUID, product_ids: Iterable[UUID]) -> DiscountRule:
        return await self._replace_targets(campaign_id, rule_id, "replace_products", product_ids)

    async def set_rule_categories(self, campaign_id: UUID, rule_id: UUID, category_ids: Iterable[UUID]) -> DiscountRule:
        return await self._replace_targets(campaign_id, rule_id, "replace_categories", category_ids)

    async def set_rule_brands(self, campaign_id: UUID, rule_id: UUID, brand_ids: Iterable[UUID]) -> DiscountRule:
        return await self._replace_targets(campaign_id, rule_id, "replace_brands", brand_ids)

    async def set_rule_customers(self, campaign_id: UUID, rule_id: UUID, customer_ids: Iterable[UUID]) -> DiscountRule:
        return await self._replace_targets(campaign_id, rule_id, "replace_customers", customer_ids)

    async def set_rule_customer_tiers(self, campaign_id: UUID, rule_id: UUID, tiers: Iterable[PriceTier]) -> DiscountRule:
        return await self._replace_targets(campaign_id, rule_id, "replace_customer_tiers", tiers)

    # --- Statistics ------------------------------------------------------

    async def get_usage_stats(self, campaign_id: UUID) -> CampaignUsageStats:
        campaign = await self.get_campaign(campaign_id)
        usages = await self.repository.find_usages_by_campaign(campaign_id)
        active = [usage for usage in usages if not usage.is_reversed]
        _, ledger_total = active_usage_totals(usages)
        if ledger_total != campaign.total_discount_used.amount:
            logger.warning(
                "Campaign %s ledger total %s differs from recorded total %s",
                campaign_id, ledger_total, campaign.total_discount_used.amount
            )

        per_customer: Dict[UUID, List[Decimal]] = defaultdict(list)
        for usage in active:
            per_customer[usage.customer_id].append(usage.discount_amount_value)

        top_customers = sorted(
            (
                CustomerUsageSummary(
                    customer_id=customer_id,
                    usage_count=len(amounts),
                    total_discount_amount=sum(amounts, Decimal("0")),
                )
                for customer_id, amounts in per_customer.items()
            ),
            key=lambda summary: summary.total_discount_amount,
            reverse=True,
        )[:TOP_CUSTOMER_COUNT]

        recent_usages = [
            RecentUsage(
                usage_id=usage.id,
                order_id=usage.order_id,
                customer_id=usage.customer_id,
                discount_amount=usage.discount_amount_value,
                used_at=usage.used_at,
                is_reversed=usage.is_reversed,
            )
            for usage in usages[:RECENT_USAGE_COUNT]
        ]

        remaining = campaign.get_remaining_budget()
        return CampaignUsageStats(
            campaign_id=campaign.id,
            campaign_name=campaign.name,
            currency=campaign.currency,
            total_usage_count=campaign.total_usage_count,
            total_discount_used=campaign.total_discount_used.amount,
            unique_customer_count=len(per_customer),
            unique_order_count=len({usage.order_id for usage in active}),
            total_budget_limit=campaign.total_budget_limit_amount,
            total_usage_limit=campaign.total_usage_limit,
            remaining_budget=remaining.amount if remaining is not None else None,
            remaining_usage_count=campaign.get_remaining_usage(),
            top_customers=top_customers,
            recent_usages=recent_usages,
        )
