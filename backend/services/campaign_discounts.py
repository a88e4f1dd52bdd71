"""
Campaign Discount Service
Quotes the single best campaign discount for a line item, commits quoted
discounts to the usage ledger and reverses them on order cancellation.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Iterable, List, Optional
from uuid import UUID
import logging

from core.config import settings
from core.database import utc_now
from core.exceptions import (
    APIException,
    ValidationException,
    NotFoundException,
    BudgetExceededException,
    DatabaseException,
)
from core.logging import structured_logger
from models.campaigns import Campaign
from models.campaign_usages import CampaignUsage
from models.discount_rules import DiscountRule, PriceTier
from models.money import Money
from repositories.campaigns import CampaignRepository
from schemas.campaigns import (
    DiscountCandidate,
    DiscountQuoteItem,
    QuoteResults,
    ReversalSummary,
    UsageRecordResult,
)
from services.protocols import ProductCatalogProtocol, ProductTargeting

logger = logging.getLogger(__name__)


class CampaignDiscountService:
    """Selection (quote) and usage recording for campaign discounts"""

    def __init__(
        self,
        db: AsyncSession,
        catalog: Optional[ProductCatalogProtocol] = None,
        repository: Optional[CampaignRepository] = None,
    ):
        self.db = db
        self.catalog = catalog
        self.repository = repository or CampaignRepository(db)

    # --- Quote -----------------------------------------------------------

    async def quote(
        self,
        product_id: UUID,
        customer_id: UUID,
        customer_tier: Optional[PriceTier],
        unit_price: Money,
        quantity: int,
        targeting: Optional[ProductTargeting] = None,
        now: Optional[datetime] = None,
    ) -> Optional[DiscountCandidate]:
        """
        Best discount for one line item, or None for "no discount".

        Read-only: campaign totals are not touched and nothing is reserved,
        so a quote can be repeated freely. Exhausted budgets and missing
        campaigns both yield None.
        """
        if quantity is None or quantity <= 0:
            raise ValidationException("Quantity must be greater than 0")
        if unit_price.amount < 0:
            raise ValidationException("Unit price cannot be negative")

        campaigns = await self.repository.find_applicable_campaigns(now or utc_now())
        if not campaigns:
            return None

        if targeting is None:
            targeting = await self._resolve_targeting(product_id)

        best: Optional[DiscountCandidate] = None
        for campaign in campaigns:
            candidate = await self._best_for_campaign(
                campaign, targeting, customer_id, customer_tier, unit_price, quantity
            )
            if candidate is None:
                continue
            if best is None or self._beats(candidate, best):
                best = candidate

        if best is not None:
            logger.debug(
                "Quoted %s %s from campaign %s for product %s",
                best.discount_amount, best.currency, best.campaign_id, product_id
            )
        return best

    async def quote_items(
        self,
        customer_id: UUID,
        customer_tier: Optional[PriceTier],
        items: Iterable[DiscountQuoteItem],
        now: Optional[datetime] = None,
    ) -> QuoteResults:
        """Quote every item; only items that received a discount appear in the result."""
        now = now or utc_now()
        results: QuoteResults = {}
        for item in items:
            candidate = await self.quote(
                item.product_id,
                customer_id,
                customer_tier,
                Money(item.unit_price, item.currency),
                item.quantity,
                now=now,
            )
            if candidate is not None:
                results[item.product_id] = candidate
        return results

    async def _resolve_targeting(self, product_id: UUID) -> ProductTargeting:
        if self.catalog is None:
            # Without a catalog only product-id targeting can match
            return ProductTargeting(product_id=product_id)

        targeting = await self.catalog.get_product_targeting(product_id)
        if targeting is None:
            raise NotFoundException(f"Product {product_id} not found", resource="product")
        return targeting

    async def _best_for_campaign(
        self,
        campaign: Campaign,
        targeting: ProductTargeting,
        customer_id: UUID,
        customer_tier: Optional[PriceTier],
        unit_price: Money,
        quantity: int,
    ) -> Optional[DiscountCandidate]:
        if campaign.currency != unit_price.currency:
            logger.debug(
                "Skipping campaign %s: currency %s does not match price currency %s",
                campaign.id, campaign.currency, unit_price.currency
            )
            return None

        zero = Money.zero(unit_price.currency)
        if not campaign.has_budget_for(zero):
            return None

        customer_count, customer_total = await self.repository.find_customer_usage_aggregate(
            campaign.id, customer_id
        )
        customer_total = Money(customer_total, campaign.currency)
        if not campaign.has_customer_budget_for(zero, customer_count, customer_total):
            return None

        best: Optional[DiscountCandidate] = None
        for rule in campaign.discount_rules:
            if not rule.applies_to_product(
                targeting.product_id,
                targeting.category_id,
                targeting.category_ancestor_ids,
                targeting.brand_id,
            ):
                continue
            if not rule.applies_to_customer(customer_id, customer_tier):
                continue

            amount = rule.calculate_discount(unit_price, quantity, unit_price.currency)
            if not amount.is_positive():
                continue

            amount = self._clamp_to_budgets(campaign, amount, customer_total)
            if amount is None:
                continue

            candidate = self._build_candidate(campaign, rule, customer_id, targeting.product_id,
                                              unit_price, quantity, amount)
            # Same campaign, same priority: only a strictly larger amount wins
            if best is None or candidate.discount_amount > best.discount_amount:
                best = candidate
        return best

    @staticmethod
    def _clamp_to_budgets(campaign: Campaign, amount: Money, customer_total: Money) -> Optional[Money]:
        """Round, then clamp to the remaining global and per-customer budget.

        A clamped amount is rounded down so it never exceeds what is left.
        Returns None when nothing is left to grant.
        """
        places = settings.MONEY_DECIMAL_PLACES
        amount = amount.round(places)

        remaining = campaign.get_remaining_budget()
        if remaining is not None and remaining < amount:
            amount = remaining.round(places, ROUND_DOWN)

        customer_limit = campaign.per_customer_budget_limit
        if customer_limit is not None:
            customer_remaining = customer_limit - customer_total
            if customer_remaining < amount:
                amount = customer_remaining.round(places, ROUND_DOWN)

        if not amount.is_positive():
            return None
        return amount

    @staticmethod
    def _build_candidate(
        campaign: Campaign,
        rule: DiscountRule,
        customer_id: UUID,
        product_id: UUID,
        unit_price: Money,
        quantity: int,
        amount: Money,
    ) -> DiscountCandidate:
        total_price = unit_price.amount * quantity
        discounted_total = total_price - amount.amount
        return DiscountCandidate(
            campaign_id=campaign.id,
            campaign_name=campaign.name,
            campaign_priority=campaign.priority,
            discount_rule_id=rule.id,
            customer_id=customer_id,
            product_id=product_id,
            discount_type=rule.discount_type,
            discount_value=rule.discount_value,
            discount_amount=amount.amount,
            currency=amount.currency,
            quantity=quantity,
            original_unit_price=unit_price.amount,
            discounted_unit_price=discounted_total / Decimal(quantity),
            original_total_price=total_price,
            discounted_total_price=discounted_total,
        )

    @staticmethod
    def _beats(candidate: DiscountCandidate, best: DiscountCandidate) -> bool:
        """Larger discount wins; on an exact tie the higher campaign priority wins."""
        if candidate.discount_amount != best.discount_amount:
            return candidate.discount_amount > best.discount_amount
        return candidate.campaign_priority > best.campaign_priority

    # --- Commit ----------------------------------------------------------

    async def commit(
        self,
        candidate: DiscountCandidate,
        order_id: UUID,
        order_item_id: Optional[UUID] = None,
    ) -> UsageRecordResult:
        """Commit a quoted discount for an order (item)."""
        return await self.record_usage(
            campaign_id=candidate.campaign_id,
            customer_id=candidate.customer_id,
            order_id=order_id,
            discount_amount=candidate.discount_money,
            order_item_id=order_item_id,
        )

    async def record_usage(
        self,
        campaign_id: UUID,
        customer_id: UUID,
        order_id: UUID,
        discount_amount: Money,
        order_item_id: Optional[UUID] = None,
    ) -> UsageRecordResult:
        """
        Append a usage row and add it to the campaign totals in one unit of work.

        The campaign row is locked for the duration. With
        STRICT_BUDGET_ENFORCEMENT the budgets are re-checked under the lock,
        closing the gap between quote and commit.
        """
        try:
            campaign = await self.repository.get_campaign(campaign_id, for_update=True)
            if campaign is None:
                raise NotFoundException(f"Campaign {campaign_id} not found", resource="campaign")

            if discount_amount.currency != campaign.currency:
                raise ValidationException(
                    f"Discount currency {discount_amount.currency} does not match "
                    f"campaign currency {campaign.currency}"
                )
            if not discount_amount.is_positive():
                raise ValidationException("Discount amount must be greater than 0")

            if settings.STRICT_BUDGET_ENFORCEMENT:
                await self._ensure_budget(campaign, customer_id, discount_amount)

            usage = CampaignUsage.create(
                campaign_id=campaign.id,
                customer_id=customer_id,
                order_id=order_id,
                discount_amount=discount_amount,
                order_item_id=order_item_id,
            )
            self.repository.add_usage(usage)
            campaign.record_usage(discount_amount)

            await self.repository.flush()
            await self.repository.commit()

        except APIException:
            await self.repository.rollback()
            raise
        except SQLAlchemyError as e:
            await self.repository.rollback()
            structured_logger.error(
                message="Failed to record campaign usage",
                metadata={"campaign_id": str(campaign_id), "order_id": str(order_id)},
                exception=e,
            )
            raise DatabaseException(
                message=f"Failed to record campaign usage: {str(e)}",
                metadata={"campaign_id": str(campaign_id), "order_id": str(order_id)},
            )

        structured_logger.log_business_event(
            "campaign_usage_recorded",
            {
                "campaign_id": str(campaign.id),
                "customer_id": str(customer_id),
                "order_id": str(order_id),
                "order_item_id": str(order_item_id) if order_item_id else None,
                "discount_amount": str(discount_amount.amount),
                "currency": discount_amount.currency,
            },
        )

        return UsageRecordResult(
            usage_id=usage.id,
            campaign_id=campaign.id,
            order_id=order_id,
            order_item_id=order_item_id,
            discount_amount=discount_amount.amount,
            currency=discount_amount.currency,
            total_discount_used=campaign.total_discount_used.amount,
            total_usage_count=campaign.total_usage_count,
        )

    async def _ensure_budget(self, campaign: Campaign, customer_id: UUID, discount_amount: Money) -> None:
        if not campaign.has_budget_for(discount_amount):
            raise BudgetExceededException(
                f"Campaign {campaign.id} budget no longer covers {discount_amount}",
                campaign_id=str(campaign.id),
            )

        count, total = await self.repository.find_customer_usage_aggregate(campaign.id, customer_id)
        if not campaign.has_customer_budget_for(discount_amount, count, Money(total, campaign.currency)):
            raise BudgetExceededException(
                f"Customer budget for campaign {campaign.id} no longer covers {discount_amount}",
                campaign_id=str(campaign.id),
            )

    # --- Reversal --------------------------------------------------------

    async def reverse_usage_for_order(self, order_id: UUID) -> ReversalSummary:
        """
        Reverse every usage of an order and credit the owning campaigns.

        Already-reversed rows are skipped, so retries and concurrent
        cancellations never credit a campaign twice.
        """
        summary = ReversalSummary(order_id=order_id)
        try:
            usages = await self.repository.find_usages_by_order(order_id, for_update=True)
            campaigns: Dict[UUID, Campaign] = {}
            clamped: List[UUID] = []

            for usage in usages:
                if not usage.reverse():
                    summary.already_reversed_count += 1
                    continue

                campaign = campaigns.get(usage.campaign_id)
                if campaign is None:
                    campaign = await self.repository.get_campaign(
                        usage.campaign_id, for_update=True, include_deleted=True
                    )
                    if campaign is None:
                        raise NotFoundException(
                            f"Campaign {usage.campaign_id} not found", resource="campaign"
                        )
                    campaigns[usage.campaign_id] = campaign

                if campaign.reverse_usage(usage.discount_amount) and campaign.id not in clamped:
                    clamped.append(campaign.id)
                summary.reversed_count += 1

            # Ends the transaction on every path; the usage rows are locked
            await self.repository.flush()
            await self.repository.commit()

        except APIException:
            await self.repository.rollback()
            raise
        except SQLAlchemyError as e:
            await self.repository.rollback()
            structured_logger.error(
                message="Failed to reverse campaign usage",
                metadata={"order_id": str(order_id)},
                exception=e,
            )
            raise DatabaseException(
                message=f"Failed to reverse campaign usage: {str(e)}",
                metadata={"order_id": str(order_id)},
            )

        summary.clamped_campaign_ids = clamped
        for campaign_id in clamped:
            structured_logger.warning(
                "Campaign discount total clamped at zero during reversal",
                metadata={"campaign_id": str(campaign_id), "order_id": str(order_id)},
            )

        structured_logger.log_business_event(
            "campaign_usage_reversed",
            {
                "order_id": str(order_id),
                "reversed_count": summary.reversed_count,
                "already_reversed_count": summary.already_reversed_count,
            },
        )
        return summary
