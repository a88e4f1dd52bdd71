from pydantic import BaseModel, Field, ConfigDict, computed_field
from typing import Dict, List, Optional
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from uuid import UUID

from core.config import settings
from models.campaigns import CampaignStatus
from models.discount_rules import DiscountType, ProductTargetType, CustomerTargetType, PriceTier
from models.money import Money


def _percentage(part: Decimal, whole: Decimal) -> Decimal:
    return ((part / whole) * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# Campaign administration schemas
class CampaignCreate(BaseModel):
    name: str
    start_date: datetime
    end_date: datetime
    description: Optional[str] = None
    priority: int = 0
    currency: Optional[str] = None  # defaults to settings.DEFAULT_CURRENCY
    total_budget_limit: Optional[Decimal] = None
    total_usage_limit: Optional[int] = None
    per_customer_budget_limit: Optional[Decimal] = None
    per_customer_usage_limit: Optional[int] = None
    external_id: Optional[str] = None
    external_code: Optional[str] = None


class CampaignUpdate(BaseModel):
    name: str
    start_date: datetime
    end_date: datetime
    description: Optional[str] = None
    priority: Optional[int] = None
    total_budget_limit: Optional[Decimal] = None
    total_usage_limit: Optional[int] = None
    per_customer_budget_limit: Optional[Decimal] = None
    per_customer_usage_limit: Optional[int] = None


class CampaignListFilters(BaseModel):
    search: Optional[str] = None
    status: Optional[CampaignStatus] = None
    start_date_from: Optional[datetime] = None
    start_date_to: Optional[datetime] = None
    sort_by: str = "priority"
    sort_direction: str = "desc"
    page: int = 1
    page_size: int = 20


class CampaignListResponse(BaseModel):
    items: List[dict]
    total: int
    page: int
    page_size: int

    @computed_field
    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


class DiscountRuleCreate(BaseModel):
    discount_type: DiscountType
    discount_value: Decimal
    product_target_type: ProductTargetType = ProductTargetType.ALL_PRODUCTS
    customer_target_type: CustomerTargetType = CustomerTargetType.ALL_CUSTOMERS
    max_discount_amount: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    min_quantity: Optional[int] = None
    # Ids for dimensions the target types do not select are ignored
    target_product_ids: List[UUID] = Field(default_factory=list)
    target_category_ids: List[UUID] = Field(default_factory=list)
    target_brand_ids: List[UUID] = Field(default_factory=list)
    target_customer_ids: List[UUID] = Field(default_factory=list)
    target_customer_tiers: List[PriceTier] = Field(default_factory=list)


class DiscountRuleUpdate(BaseModel):
    discount_type: DiscountType
    discount_value: Decimal
    product_target_type: ProductTargetType
    customer_target_type: CustomerTargetType
    max_discount_amount: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    min_quantity: Optional[int] = None


# Quote schemas
class DiscountQuoteItem(BaseModel):
    product_id: UUID
    unit_price: Decimal
    currency: str = Field(default_factory=lambda: settings.DEFAULT_CURRENCY)
    quantity: int = Field(..., gt=0)


class DiscountCandidate(BaseModel):
    """Best discount found for one line item. Read-only quote, nothing is reserved."""
    campaign_id: UUID
    campaign_name: str
    campaign_priority: int
    discount_rule_id: UUID
    customer_id: UUID
    product_id: UUID
    discount_type: DiscountType
    discount_value: Decimal
    discount_amount: Decimal
    currency: str
    quantity: int
    original_unit_price: Decimal
    discounted_unit_price: Decimal
    original_total_price: Decimal
    discounted_total_price: Decimal

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def discount_percentage(self) -> Decimal:
        if self.original_total_price <= 0:
            return Decimal("0")
        return _percentage(self.discount_amount, self.original_total_price)

    @property
    def discount_money(self) -> Money:
        return Money(self.discount_amount, self.currency)


# Usage schemas
class UsageRecordResult(BaseModel):
    usage_id: UUID
    campaign_id: UUID
    order_id: UUID
    order_item_id: Optional[UUID] = None
    discount_amount: Decimal
    currency: str
    total_discount_used: Decimal
    total_usage_count: int


class ReversalSummary(BaseModel):
    order_id: UUID
    reversed_count: int = 0
    already_reversed_count: int = 0
    # Campaigns whose discount total was clamped at zero during reversal
    clamped_campaign_ids: List[UUID] = Field(default_factory=list)


class CustomerUsageSummary(BaseModel):
    customer_id: UUID
    usage_count: int
    total_discount_amount: Decimal


class RecentUsage(BaseModel):
    usage_id: UUID
    order_id: UUID
    customer_id: UUID
    discount_amount: Decimal
    used_at: datetime
    is_reversed: bool


class CampaignUsageStats(BaseModel):
    campaign_id: UUID
    campaign_name: str
    currency: str
    total_usage_count: int
    total_discount_used: Decimal
    unique_customer_count: int = 0
    unique_order_count: int = 0
    total_budget_limit: Optional[Decimal] = None
    total_usage_limit: Optional[int] = None
    remaining_budget: Optional[Decimal] = None
    remaining_usage_count: Optional[int] = None
    top_customers: List[CustomerUsageSummary] = Field(default_factory=list)
    recent_usages: List[RecentUsage] = Field(default_factory=list)

    @computed_field
    @property
    def budget_utilization_percentage(self) -> Optional[Decimal]:
        if not self.total_budget_limit:
            return None
        return _percentage(self.total_discount_used, self.total_budget_limit)

    @computed_field
    @property
    def usage_utilization_percentage(self) -> Optional[Decimal]:
        if not self.total_usage_limit:
            return None
        return _percentage(Decimal(self.total_usage_count), Decimal(self.total_usage_limit))

    @computed_field
    @property
    def average_discount_per_usage(self) -> Decimal:
        if self.total_usage_count <= 0:
            return Decimal("0")
        return (self.total_discount_used / self.total_usage_count).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP)


QuoteResults = Dict[UUID, DiscountCandidate]
