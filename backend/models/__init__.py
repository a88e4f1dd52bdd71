# Models package - Consolidated imports only
from .money import Money, CurrencyMismatchError
from .campaigns import Campaign, CampaignStatus
from .discount_rules import (
    DiscountRule,
    DiscountRuleProduct,
    DiscountRuleCategory,
    DiscountRuleBrand,
    DiscountRuleCustomer,
    DiscountRuleCustomerTier,
    DiscountType,
    ProductTargetType,
    CustomerTargetType,
    PriceTier,
)
from .campaign_usages import CampaignUsage

__all__ = [
    # Value objects
    "Money",
    "CurrencyMismatchError",

    # Campaign models
    "Campaign",
    "CampaignStatus",

    # Discount rule models
    "DiscountRule",
    "DiscountRuleProduct",
    "DiscountRuleCategory",
    "DiscountRuleBrand",
    "DiscountRuleCustomer",
    "DiscountRuleCustomerTier",
    "DiscountType",
    "ProductTargetType",
    "CustomerTargetType",
    "PriceTier",

    # Usage ledger
    "CampaignUsage",
]
