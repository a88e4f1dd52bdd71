"""
Collaborator interfaces the campaign engine consumes but does not own.
"""
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Protocol, Tuple, runtime_checkable
from uuid import UUID


@dataclass(frozen=True)
class ProductTargeting:
    """What a discount rule needs to know about a product.

    ``category_ancestor_ids`` is the full parent chain of ``category_id``,
    nearest parent first, already walked by the catalog.
    """
    product_id: UUID
    category_id: Optional[UUID] = None
    category_ancestor_ids: Tuple[UUID, ...] = ()
    brand_id: Optional[UUID] = None


@runtime_checkable
class ProductCatalogProtocol(Protocol):
    async def get_product_targeting(self, product_id: UUID) -> Optional[ProductTargeting]:
        """Return targeting data for the product, or None when it does not exist."""
        ...


async def walk_category_ancestors(
    category_id: UUID,
    get_parent_id: Callable[[UUID], Awaitable[Optional[UUID]]],
) -> Tuple[UUID, ...]:
    """Collect the ancestor chain of a category by following parent links.

    Stops at a root or when a cycle is detected.
    """
    ancestors = []
    seen = {category_id}
    parent_id = await get_parent_id(category_id)
    while parent_id is not None and parent_id not in seen:
        ancestors.append(parent_id)
        seen.add(parent_id)
        parent_id = await get_parent_id(parent_id)
    return tuple(ancestors)


@dataclass
class InMemoryProductCatalog:
    """Catalog backed by dictionaries. Used by tests and callers that preload products."""
    products: Dict[UUID, Tuple[Optional[UUID], Optional[UUID]]] = field(default_factory=dict)
    category_parents: Dict[UUID, Optional[UUID]] = field(default_factory=dict)

    def add_product(self, product_id: UUID, category_id: Optional[UUID] = None,
                    brand_id: Optional[UUID] = None) -> None:
        self.products[product_id] = (category_id, brand_id)

    def add_category(self, category_id: UUID, parent_id: Optional[UUID] = None) -> None:
        self.category_parents[category_id] = parent_id

    async def _parent_of(self, category_id: UUID) -> Optional[UUID]:
        return self.category_parents.get(category_id)

    async def get_product_targeting(self, product_id: UUID) -> Optional[ProductTargeting]:
        if product_id not in self.products:
            return None
        category_id, brand_id = self.products[product_id]
        ancestors = ()
        if category_id is not None:
            ancestors = await walk_category_ancestors(category_id, self._parent_of)
        return ProductTargeting(
            product_id=product_id,
            category_id=category_id,
            category_ancestor_ids=ancestors,
            brand_id=brand_id,
        )
