"""
Discount rule models: targeting and calculation units belonging to a campaign
Includes: DiscountType, ProductTargetType, CustomerTargetType, PriceTier,
DiscountRule and its target junction tables
"""
from sqlalchemy import Column, Integer, ForeignKey, Index, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from core.database import BaseModel, GUID, DecimalType
from core.exceptions import ValidationException, InvalidOperationException
from models.money import Money
from enum import Enum
from decimal import Decimal
from typing import Dict, Any, Iterable, Optional, Set
from uuid import UUID


class DiscountType(str, Enum):
    """How the discount value is interpreted"""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"  # per unit


class ProductTargetType(str, Enum):
    """Which products a rule targets"""
    ALL_PRODUCTS = "all_products"
    SPECIFIC_PRODUCTS = "specific_products"
    CATEGORIES = "categories"
    BRANDS = "brands"


class CustomerTargetType(str, Enum):
    """Which customers a rule targets"""
    ALL_CUSTOMERS = "all_customers"
    SPECIFIC_CUSTOMERS = "specific_customers"
    CUSTOMER_TIERS = "customer_tiers"


class PriceTier(str, Enum):
    """Customer price tier"""
    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"
    TIER4 = "tier4"
    TIER5 = "tier5"


def _decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class DiscountRule(BaseModel):
    """A single targeting-and-calculation unit of a campaign"""
    __tablename__ = "discount_rules"
    __table_args__ = (
        Index('idx_discount_rules_campaign_id', 'campaign_id'),
        {'extend_existing': True}
    )

    campaign_id = Column(GUID(), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)

    discount_type = Column(SQLEnum(DiscountType, native_enum=False, length=20), nullable=False)
    discount_value = Column(DecimalType(), nullable=False)
    max_discount_amount = Column(DecimalType(), nullable=True)

    product_target_type = Column(SQLEnum(ProductTargetType, native_enum=False, length=30),
                                 default=ProductTargetType.ALL_PRODUCTS, nullable=False)
    customer_target_type = Column(SQLEnum(CustomerTargetType, native_enum=False, length=30),
                                  default=CustomerTargetType.ALL_CUSTOMERS, nullable=False)

    # Gates
    min_order_amount = Column(DecimalType(), nullable=True)
    min_quantity = Column(Integer, nullable=True)

    # Relationships
    products = relationship("DiscountRuleProduct", cascade="all, delete-orphan", lazy="selectin")
    categories = relationship("DiscountRuleCategory", cascade="all, delete-orphan", lazy="selectin")
    brands = relationship("DiscountRuleBrand", cascade="all, delete-orphan", lazy="selectin")
    customers = relationship("DiscountRuleCustomer", cascade="all, delete-orphan", lazy="selectin")
    customer_tiers = relationship("DiscountRuleCustomerTier", cascade="all, delete-orphan", lazy="selectin")

    @staticmethod
    def _validate(
        discount_type: DiscountType,
        discount_value: Decimal,
        max_discount_amount: Optional[Decimal],
        min_order_amount: Optional[Decimal],
        min_quantity: Optional[int],
    ) -> None:
        if discount_value is None or discount_value <= 0:
            raise ValidationException("Discount value must be greater than 0")
        if discount_type == DiscountType.PERCENTAGE and discount_value > 100:
            raise ValidationException("Percentage discount cannot exceed 100%")
        if max_discount_amount is not None and max_discount_amount < 0:
            raise ValidationException("Maximum discount amount cannot be negative")
        if min_order_amount is not None and min_order_amount < 0:
            raise ValidationException("Minimum order amount cannot be negative")
        if min_quantity is not None and min_quantity < 0:
            raise ValidationException("Minimum quantity cannot be negative")

    @classmethod
    def create(
        cls,
        discount_type: DiscountType,
        discount_value,
        product_target_type: ProductTargetType = ProductTargetType.ALL_PRODUCTS,
        customer_target_type: CustomerTargetType = CustomerTargetType.ALL_CUSTOMERS,
        max_discount_amount=None,
        min_order_amount=None,
        min_quantity: Optional[int] = None,
        campaign_id: Optional[UUID] = None,
    ) -> "DiscountRule":
        discount_type = DiscountType(discount_type)
        discount_value = _decimal(discount_value)
        max_discount_amount = _decimal(max_discount_amount)
        min_order_amount = _decimal(min_order_amount)
        cls._validate(discount_type, discount_value, max_discount_amount, min_order_amount, min_quantity)

        return cls(
            campaign_id=campaign_id,
            discount_type=discount_type,
            discount_value=discount_value,
            max_discount_amount=max_discount_amount,
            product_target_type=ProductTargetType(product_target_type),
            customer_target_type=CustomerTargetType(customer_target_type),
            min_order_amount=min_order_amount,
            min_quantity=min_quantity,
            products=[],
            categories=[],
            brands=[],
            customers=[],
            customer_tiers=[],
        )

    def update(
        self,
        discount_type: DiscountType,
        discount_value,
        product_target_type: ProductTargetType,
        customer_target_type: CustomerTargetType,
        max_discount_amount=None,
        min_order_amount=None,
        min_quantity: Optional[int] = None,
    ) -> None:
        """Replace the rule's values. Target sets of dimensions no longer selected are cleared."""
        discount_type = DiscountType(discount_type)
        discount_value = _decimal(discount_value)
        max_discount_amount = _decimal(max_discount_amount)
        min_order_amount = _decimal(min_order_amount)
        self._validate(discount_type, discount_value, max_discount_amount, min_order_amount, min_quantity)

        self.discount_type = discount_type
        self.discount_value = discount_value
        self.max_discount_amount = max_discount_amount
        self.product_target_type = ProductTargetType(product_target_type)
        self.customer_target_type = CustomerTargetType(customer_target_type)
        self.min_order_amount = min_order_amount
        self.min_quantity = min_quantity

        if self.product_target_type != ProductTargetType.SPECIFIC_PRODUCTS:
            self.clear_products()
        if self.product_target_type != ProductTargetType.CATEGORIES:
            self.clear_categories()
        if self.product_target_type != ProductTargetType.BRANDS:
            self.clear_brands()
        if self.customer_target_type != CustomerTargetType.SPECIFIC_CUSTOMERS:
            self.clear_customers()
        if self.customer_target_type != CustomerTargetType.CUSTOMER_TIERS:
            self.clear_customer_tiers()

    # --- Target sets -----------------------------------------------------

    @property
    def product_ids(self) -> Set[UUID]:
        return {target.product_id for target in self.products}

    @property
    def category_ids(self) -> Set[UUID]:
        return {target.category_id for target in self.categories}

    @property
    def brand_ids(self) -> Set[UUID]:
        return {target.brand_id for target in self.brands}

    @property
    def customer_ids(self) -> Set[UUID]:
        return {target.customer_id for target in self.customers}

    @property
    def tiers(self) -> Set[PriceTier]:
        return {target.price_tier for target in self.customer_tiers}

    def _require_product_target(self, target_type: ProductTargetType, noun: str) -> None:
        if self.product_target_type != target_type:
            raise InvalidOperationException(
                f"Can only add {noun} when product target type is {target_type.value}",
                current_state=self.product_target_type.value,
                required_states=[target_type.value],
            )

    def _require_customer_target(self, target_type: CustomerTargetType, noun: str) -> None:
        if self.customer_target_type != target_type:
            raise InvalidOperationException(
                f"Can only add {noun} when customer target type is {target_type.value}",
                current_state=self.customer_target_type.value,
                required_states=[target_type.value],
            )

    def add_product(self, product_id: UUID) -> None:
        self._require_product_target(ProductTargetType.SPECIFIC_PRODUCTS, "products")
        if product_id not in self.product_ids:
            self.products.append(DiscountRuleProduct(product_id=product_id))

    def add_category(self, category_id: UUID) -> None:
        self._require_product_target(ProductTargetType.CATEGORIES, "categories")
        if category_id not in self.category_ids:
            self.categories.append(DiscountRuleCategory(category_id=category_id))

    def add_brand(self, brand_id: UUID) -> None:
        self._require_product_target(ProductTargetType.BRANDS, "brands")
        if brand_id not in self.brand_ids:
            self.brands.append(DiscountRuleBrand(brand_id=brand_id))

    def add_customer(self, customer_id: UUID) -> None:
        self._require_customer_target(CustomerTargetType.SPECIFIC_CUSTOMERS, "customers")
        if customer_id not in self.customer_ids:
            self.customers.append(DiscountRuleCustomer(customer_id=customer_id))

    def add_customer_tier(self, tier: PriceTier) -> None:
        self._require_customer_target(CustomerTargetType.CUSTOMER_TIERS, "tiers")
        tier = PriceTier(tier)
        if tier not in self.tiers:
            self.customer_tiers.append(DiscountRuleCustomerTier(price_tier=tier))

    def clear_products(self) -> None:
        self.products.clear()

    def clear_categories(self) -> None:
        self.categories.clear()

    def clear_brands(self) -> None:
        self.brands.clear()

    def clear_customers(self) -> None:
        self.customers.clear()

    def clear_customer_tiers(self) -> None:
        self.customer_tiers.clear()

    def replace_products(self, product_ids: Iterable[UUID]) -> None:
        self._require_product_target(ProductTargetType.SPECIFIC_PRODUCTS, "products")
        self.clear_products()
        for product_id in product_ids:
            self.add_product(product_id)

    def replace_categories(self, category_ids: Iterable[UUID]) -> None:
        self._require_product_target(ProductTargetType.CATEGORIES, "categories")
        self.clear_categories()
        for category_id in category_ids:
            self.add_category(category_id)

    def replace_brands(self, brand_ids: Iterable[UUID]) -> None:
        self._require_product_target(ProductTargetType.BRANDS, "brands")
        self.clear_brands()
        for brand_id in brand_ids:
            self.add_brand(brand_id)

    def replace_customers(self, customer_ids: Iterable[UUID]) -> None:
        self._require_customer_target(CustomerTargetType.SPECIFIC_CUSTOMERS, "customers")
        self.clear_customers()
        for customer_id in customer_ids:
            self.add_customer(customer_id)

    def replace_customer_tiers(self, tiers: Iterable[PriceTier]) -> None:
        self._require_customer_target(CustomerTargetType.CUSTOMER_TIERS, "tiers")
        self.clear_customer_tiers()
        for tier in tiers:
            self.add_customer_tier(tier)

    # --- Matching and calculation ----------------------------------------

    def applies_to_product(
        self,
        product_id: UUID,
        category_id: Optional[UUID] = None,
        category_ancestor_ids: Iterable[UUID] = (),
        brand_id: Optional[UUID] = None,
    ) -> bool:
        """Test the product against the rule's product targeting.

        The caller supplies the full category ancestor chain; the rule only
        checks set membership.
        """
        target_type = self.product_target_type
        if target_type == ProductTargetType.ALL_PRODUCTS:
            return True
        elif target_type == ProductTargetType.SPECIFIC_PRODUCTS:
            return product_id in self.product_ids
        elif target_type == ProductTargetType.CATEGORIES:
            if category_id is None:
                return False
            targets = self.category_ids
            if category_id in targets:
                return True
            return any(ancestor_id in targets for ancestor_id in category_ancestor_ids)
        elif target_type == ProductTargetType.BRANDS:
            if brand_id is None:
                return False
            return brand_id in self.brand_ids
        raise ValueError(f"Unsupported product target type: {target_type}")

    def applies_to_customer(self, customer_id: UUID, customer_tier: Optional[PriceTier] = None) -> bool:
        target_type = self.customer_target_type
        if target_type == CustomerTargetType.ALL_CUSTOMERS:
            return True
        elif target_type == CustomerTargetType.SPECIFIC_CUSTOMERS:
            return customer_id in self.customer_ids
        elif target_type == CustomerTargetType.CUSTOMER_TIERS:
            if customer_tier is None:
                return False
            return PriceTier(customer_tier) in self.tiers
        raise ValueError(f"Unsupported customer target type: {target_type}")

    def calculate_discount(self, unit_price: Money, quantity: int, currency: Optional[str] = None) -> Money:
        """Discount for ``quantity`` units at ``unit_price``.

        Plain decimal arithmetic, no rounding. Percentage discounts are capped
        by ``max_discount_amount``; fixed amounts apply per unit and never
        exceed the line total.
        """
        currency = currency or unit_price.currency

        if self.min_quantity is not None and quantity < self.min_quantity:
            return Money.zero(currency)

        total_price = unit_price.amount * quantity
        if self.min_order_amount is not None and total_price < self.min_order_amount:
            return Money.zero(currency)

        if self.discount_type == DiscountType.PERCENTAGE:
            discount_amount = total_price * (self.discount_value / Decimal(100))
            if self.max_discount_amount is not None and discount_amount > self.max_discount_amount:
                discount_amount = self.max_discount_amount
        elif self.discount_type == DiscountType.FIXED_AMOUNT:
            discount_amount = self.discount_value * quantity
            if discount_amount > total_price:
                discount_amount = total_price
        else:
            raise ValueError(f"Unsupported discount type: {self.discount_type}")

        return Money(discount_amount, currency)

    def to_dict(self) -> Dict[str, Any]:
        """Convert discount rule to dictionary for API responses"""
        return {
            "id": str(self.id),
            "campaign_id": str(self.campaign_id) if self.campaign_id else None,
            "discount_type": self.discount_type.value,
            "discount_value": str(self.discount_value),
            "max_discount_amount": str(self.max_discount_amount) if self.max_discount_amount is not None else None,
            "product_target_type": self.product_target_type.value,
            "customer_target_type": self.customer_target_type.value,
            "min_order_amount": str(self.min_order_amount) if self.min_order_amount is not None else None,
            "min_quantity": self.min_quantity,
            "target_product_ids": sorted(str(i) for i in self.product_ids),
            "target_category_ids": sorted(str(i) for i in self.category_ids),
            "target_brand_ids": sorted(str(i) for i in self.brand_ids),
            "target_customer_ids": sorted(str(i) for i in self.customer_ids),
            "target_customer_tiers": sorted(tier.value for tier in self.tiers),
        }


class DiscountRuleProduct(BaseModel):
    """Product targeted by a discount rule"""
    __tablename__ = "discount_rule_products"
    __table_args__ = (
        UniqueConstraint('discount_rule_id', 'product_id', name='uq_discount_rule_products'),
        {'extend_existing': True}
    )

    discount_rule_id = Column(GUID(), ForeignKey("discount_rules.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(GUID(), nullable=False)


class DiscountRuleCategory(BaseModel):
    """Category targeted by a discount rule"""
    __tablename__ = "discount_rule_categories"
    __table_args__ = (
        UniqueConstraint('discount_rule_id', 'category_id', name='uq_discount_rule_categories'),
        {'extend_existing': True}
    )

    discount_rule_id = Column(GUID(), ForeignKey("discount_rules.id", ondelete="CASCADE"), nullable=False)
    category_id = Column(GUID(), nullable=False)


class DiscountRuleBrand(BaseModel):
    """Brand targeted by a discount rule"""
    __tablename__ = "discount_rule_brands"
    __table_args__ = (
        UniqueConstraint('discount_rule_id', 'brand_id', name='uq_discount_rule_brands'),
        {'extend_existing': True}
    )

    discount_rule_id = Column(GUID(), ForeignKey("discount_rules.id", ondelete="CASCADE"), nullable=False)
    brand_id = Column(GUID(), nullable=False)


class DiscountRuleCustomer(BaseModel):
    """Customer targeted by a discount rule"""
    __tablename__ = "discount_rule_customers"
    __table_args__ = (
        UniqueConstraint('discount_rule_id', 'customer_id', name='uq_discount_rule_customers'),
        {'extend_existing': True}
    )

    discount_rule_id = Column(GUID(), ForeignKey("discount_rules.id", ondelete="CASCADE"), nullable=False)
    customer_id = Column(GUID(), nullable=False)


class DiscountRuleCustomerTier(BaseModel):
    """Price tier targeted by a discount rule"""
    __tablename__ = "discount_rule_customer_tiers"
    __table_args__ = (
        UniqueConstraint('discount_rule_id', 'price_tier', name='uq_discount_rule_customer_tiers'),
        {'extend_existing': True}
    )

    discount_rule_id = Column(GUID(), ForeignKey("discount_rules.id", ondelete="CASCADE"), nullable=False)
    price_tier = Column(SQLEnum(PriceTier, native_enum=False, length=10), nullable=False)
