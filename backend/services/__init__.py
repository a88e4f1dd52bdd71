# Services package - Consolidated imports only
from .protocols import (
    ProductTargeting,
    ProductCatalogProtocol,
    InMemoryProductCatalog,
    walk_category_ancestors,
)
from .campaign_discounts import CampaignDiscountService
from .campaigns import CampaignService

__all__ = [
    # Catalog collaborator
    "ProductTargeting",
    "ProductCatalogProtocol",
    "InMemoryProductCatalog",
    "walk_category_ancestors",

    # Campaign services
    "CampaignDiscountService",
    "CampaignService",
]
