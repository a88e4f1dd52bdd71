"""
Campaign usage ledger
Includes: CampaignUsage
"""
from sqlalchemy import Column, String, Boolean, ForeignKey, Index
from core.database import BaseModel, GUID, UTCDateTime, DecimalType, utc_now
from core.exceptions import ValidationException
from models.money import Money
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Iterable, Optional, Tuple
from uuid import UUID


class CampaignUsage(BaseModel):
    """One application of a campaign discount to an order (or order item).

    Rows are append-only: reversal flips ``is_reversed`` and keeps the row
    as audit trail for budget reconciliation.
    """
    __tablename__ = "campaign_usages"
    __table_args__ = (
        Index('idx_campaign_usages_campaign_id', 'campaign_id'),
        Index('idx_campaign_usages_order_id', 'order_id'),
        Index('idx_campaign_usages_campaign_customer', 'campaign_id', 'customer_id', 'is_reversed'),
        {'extend_existing': True}
    )

    campaign_id = Column(GUID(), ForeignKey("campaigns.id"), nullable=False)
    customer_id = Column(GUID(), nullable=False)
    order_id = Column(GUID(), nullable=False)
    order_item_id = Column(GUID(), nullable=True)

    discount_amount_value = Column(DecimalType(), nullable=False)
    currency = Column(String(3), nullable=False)

    used_at = Column(UTCDateTime(), default=utc_now, nullable=False)
    is_reversed = Column(Boolean, default=False, nullable=False)
    reversed_at = Column(UTCDateTime(), nullable=True)

    @classmethod
    def create(
        cls,
        campaign_id: UUID,
        customer_id: UUID,
        order_id: UUID,
        discount_amount: Money,
        order_item_id: Optional[UUID] = None,
        used_at: Optional[datetime] = None,
    ) -> "CampaignUsage":
        if discount_amount is None or discount_amount.amount < 0:
            raise ValidationException("Usage discount amount cannot be negative")

        return cls(
            campaign_id=campaign_id,
            customer_id=customer_id,
            order_id=order_id,
            order_item_id=order_item_id,
            discount_amount_value=discount_amount.amount,
            currency=discount_amount.currency,
            used_at=used_at or utc_now(),
            is_reversed=False,
        )

    @property
    def discount_amount(self) -> Money:
        return Money(self.discount_amount_value, self.currency)

    def reverse(self) -> bool:
        """Mark the usage reversed. Returns False when it already was (no-op)."""
        if self.is_reversed:
            return False
        self.is_reversed = True
        self.reversed_at = utc_now()
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "campaign_id": str(self.campaign_id),
            "customer_id": str(self.customer_id),
            "order_id": str(self.order_id),
            "order_item_id": str(self.order_item_id) if self.order_item_id else None,
            "discount_amount": str(self.discount_amount_value),
            "currency": self.currency,
            "used_at": self.used_at.isoformat() if self.used_at else None,
            "is_reversed": self.is_reversed,
            "reversed_at": self.reversed_at.isoformat() if self.reversed_at else None,
        }


def active_usage_totals(usages: Iterable[CampaignUsage]) -> Tuple[int, Decimal]:
    """(count, total discount) of the non-reversed usages."""
    active = [usage for usage in usages if not usage.is_reversed]
    return len(active), sum((usage.discount_amount_value for usage in active), Decimal("0"))
