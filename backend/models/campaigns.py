"""
Campaign models for promotional discount campaigns
Includes: CampaignStatus, Campaign
"""
from sqlalchemy import Column, String, Text, Integer, Boolean, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from core.database import BaseModel, UTCDateTime, DecimalType, utc_now
from core.exceptions import ValidationException, InvalidOperationException
from models.money import Money
from enum import Enum
from decimal import Decimal
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Union
import logging

logger = logging.getLogger(__name__)

MoneyInput = Union[Money, Decimal, int, str, None]


class CampaignStatus(str, Enum):
    """Campaign lifecycle status"""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"
    CANCELLED = "cancelled"


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Campaign(BaseModel):
    """Promotional campaign grouping discount rules under budgets and a lifecycle"""
    __tablename__ = "campaigns"
    __table_args__ = (
        Index('idx_campaigns_status', 'status'),
        Index('idx_campaigns_priority', 'priority'),
        Index('idx_campaigns_external_id', 'external_id'),
        # Applicable-campaign lookup
        Index('idx_campaigns_status_dates', 'status', 'start_date', 'end_date'),
        {'extend_existing': True}
    )

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(UTCDateTime(), nullable=False)
    end_date = Column(UTCDateTime(), nullable=False)
    status = Column(SQLEnum(CampaignStatus, native_enum=False, length=20),
                    default=CampaignStatus.DRAFT, nullable=False)
    priority = Column(Integer, default=0, nullable=False)

    # Budget and usage limits (unset means unlimited)
    currency = Column(String(3), nullable=False)
    total_budget_limit_amount = Column(DecimalType(), nullable=True)
    total_usage_limit = Column(Integer, nullable=True)
    per_customer_budget_limit_amount = Column(DecimalType(), nullable=True)
    per_customer_usage_limit = Column(Integer, nullable=True)

    # Running totals, maintained through record_usage / reverse_usage only
    total_discount_used_amount = Column(DecimalType(), default=Decimal("0"), nullable=False)
    total_usage_count = Column(Integer, default=0, nullable=False)

    # External system (ERP) integration
    external_id = Column(String(100), nullable=True, unique=True)
    external_code = Column(String(100), nullable=True)

    # Soft delete and audit
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(UTCDateTime(), nullable=True)
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)
    deleted_by = Column(String(100), nullable=True)

    # Relationships
    discount_rules = relationship(
        "DiscountRule",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DiscountRule.created_at",
    )

    # --- Money views -----------------------------------------------------

    def _money(self, amount: Optional[Decimal]) -> Optional[Money]:
        if amount is None:
            return None
        return Money(amount, self.currency)

    @property
    def total_budget_limit(self) -> Optional[Money]:
        return self._money(self.total_budget_limit_amount)

    @property
    def per_customer_budget_limit(self) -> Optional[Money]:
        return self._money(self.per_customer_budget_limit_amount)

    @property
    def total_discount_used(self) -> Money:
        return Money(self.total_discount_used_amount or Decimal("0"), self.currency)

    # --- Construction ----------------------------------------------------

    @staticmethod
    def _validate_details(name: str, start_date: datetime, end_date: datetime) -> None:
        if name is None or not str(name).strip():
            raise ValidationException("Campaign name is required")
        if start_date is None or end_date is None:
            raise ValidationException("Campaign start and end dates are required")
        if ensure_utc(end_date) <= ensure_utc(start_date):
            raise ValidationException("End date must be after start date")

    @staticmethod
    def _limit_amount(value: MoneyInput, currency: str, field: str) -> Optional[Decimal]:
        if value is None:
            return None
        if isinstance(value, Money):
            if value.currency != currency:
                raise ValidationException(
                    f"{field} currency {value.currency} does not match campaign currency {currency}"
                )
            amount = value.amount
        else:
            amount = Decimal(str(value))
        if amount < 0:
            raise ValidationException(f"{field} cannot be negative")
        return amount

    @staticmethod
    def _limit_count(value: Optional[int], field: str) -> Optional[int]:
        if value is None:
            return None
        if value < 0:
            raise ValidationException(f"{field} cannot be negative")
        return int(value)

    @classmethod
    def create(
        cls,
        name: str,
        start_date: datetime,
        end_date: datetime,
        description: Optional[str] = None,
        priority: int = 0,
        currency: Optional[str] = None,
        total_budget_limit: MoneyInput = None,
        total_usage_limit: Optional[int] = None,
        per_customer_budget_limit: MoneyInput = None,
        per_customer_usage_limit: Optional[int] = None,
        external_id: Optional[str] = None,
        external_code: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> "Campaign":
        """Create a new campaign in Draft status.

        Budget limits accept Money (currency must match) or a plain amount.
        """
        from core.config import settings

        cls._validate_details(name, start_date, end_date)
        currency = (currency or settings.DEFAULT_CURRENCY).strip().upper()
        if len(currency) != 3:
            raise ValidationException(f"Invalid currency code: {currency}")

        return cls(
            name=name.strip(),
            description=description,
            start_date=ensure_utc(start_date),
            end_date=ensure_utc(end_date),
            status=CampaignStatus.DRAFT,
            priority=priority or 0,
            currency=currency,
            total_budget_limit_amount=cls._limit_amount(total_budget_limit, currency, "Total budget limit"),
            total_usage_limit=cls._limit_count(total_usage_limit, "Total usage limit"),
            per_customer_budget_limit_amount=cls._limit_amount(
                per_customer_budget_limit, currency, "Per-customer budget limit"),
            per_customer_usage_limit=cls._limit_count(per_customer_usage_limit, "Per-customer usage limit"),
            total_discount_used_amount=Decimal("0"),
            total_usage_count=0,
            external_id=external_id,
            external_code=external_code,
            is_deleted=False,
            created_by=created_by,
            discount_rules=[],
        )

    def update(
        self,
        name: str,
        start_date: datetime,
        end_date: datetime,
        description: Optional[str] = None,
        priority: Optional[int] = None,
        total_budget_limit: MoneyInput = None,
        total_usage_limit: Optional[int] = None,
        per_customer_budget_limit: MoneyInput = None,
        per_customer_usage_limit: Optional[int] = None,
        updated_by: Optional[str] = None,
    ) -> None:
        """Update campaign details. Allowed in Draft or Scheduled status only.

        Limits are replaced as given; passing None removes a limit.
        """
        self.ensure_status(
            "update",
            CampaignStatus.DRAFT, CampaignStatus.SCHEDULED,
            message=f"Cannot update campaign in {self.status.value} status"
        )
        self._validate_details(name, start_date, end_date)

        self.name = name.strip()
        self.description = description
        self.start_date = ensure_utc(start_date)
        self.end_date = ensure_utc(end_date)
        if priority is not None:
            self.priority = priority

        self.total_budget_limit_amount = self._limit_amount(
            total_budget_limit, self.currency, "Total budget limit")
        self.total_usage_limit = self._limit_count(total_usage_limit, "Total usage limit")
        self.per_customer_budget_limit_amount = self._limit_amount(
            per_customer_budget_limit, self.currency, "Per-customer budget limit")
        self.per_customer_usage_limit = self._limit_count(per_customer_usage_limit, "Per-customer usage limit")
        if updated_by is not None:
            self.updated_by = updated_by

    # --- Lifecycle -------------------------------------------------------

    def ensure_status(self, action: str, *allowed: CampaignStatus, message: Optional[str] = None) -> None:
        if self.status not in allowed:
            required = [status.value for status in allowed]
            raise InvalidOperationException(
                message or (
                    f"Cannot {action} campaign in {self.status.value} status. "
                    f"Campaign must be in {' or '.join(required)} status."
                ),
                current_state=self.status.value,
                required_states=required,
            )

    def schedule(self) -> None:
        """Draft -> Scheduled. Requires at least one discount rule."""
        self.ensure_status("schedule", CampaignStatus.DRAFT)
        if not self.discount_rules:
            raise InvalidOperationException(
                "Cannot schedule campaign without discount rules",
                current_state=self.status.value,
                required_states=[CampaignStatus.DRAFT.value],
            )
        self.status = CampaignStatus.SCHEDULED

    def activate(self) -> None:
        """Scheduled or Paused -> Active."""
        self.ensure_status("activate", CampaignStatus.SCHEDULED, CampaignStatus.PAUSED)
        self.status = CampaignStatus.ACTIVE

    def pause(self) -> None:
        """Scheduled or Active -> Paused."""
        self.ensure_status("pause", CampaignStatus.SCHEDULED, CampaignStatus.ACTIVE)
        self.status = CampaignStatus.PAUSED

    def end(self) -> None:
        """Active -> Ended."""
        self.ensure_status("end", CampaignStatus.ACTIVE)
        self.status = CampaignStatus.ENDED

    def cancel(self) -> None:
        """Any state except Ended or Cancelled -> Cancelled."""
        cancellable = [
            CampaignStatus.DRAFT,
            CampaignStatus.SCHEDULED,
            CampaignStatus.ACTIVE,
            CampaignStatus.PAUSED,
        ]
        if self.status == CampaignStatus.ENDED:
            message = "Cannot cancel a campaign that has already ended"
        elif self.status == CampaignStatus.CANCELLED:
            message = "Campaign is already cancelled"
        else:
            message = None
        self.ensure_status("cancel", *cancellable, message=message)
        self.status = CampaignStatus.CANCELLED

    def is_applicable(self, now: Optional[datetime] = None) -> bool:
        """Active and within [start_date, end_date]. No automatic transitions on expiry."""
        now = ensure_utc(now or utc_now())
        return (
            not self.is_deleted
            and self.status == CampaignStatus.ACTIVE
            and ensure_utc(self.start_date) <= now <= ensure_utc(self.end_date)
        )

    # --- Budget accounting -----------------------------------------------

    def has_budget_for(self, discount_amount: Money) -> bool:
        """Check the global money and usage-count limits for a candidate amount."""
        limit = self.total_budget_limit
        if limit is not None and self.total_discount_used + discount_amount > limit:
            return False

        if self.total_usage_limit is not None and self.total_usage_count >= self.total_usage_limit:
            return False

        return True

    def has_customer_budget_for(
        self,
        discount_amount: Money,
        customer_usage_count: int,
        customer_total_discount: Money
    ) -> bool:
        """Check the per-customer limits against the customer's external usage aggregate."""
        limit = self.per_customer_budget_limit
        if limit is not None and customer_total_discount + discount_amount > limit:
            return False

        if (self.per_customer_usage_limit is not None
                and customer_usage_count >= self.per_customer_usage_limit):
            return False

        return True

    def record_usage(self, discount_amount: Money) -> None:
        """Accounting primitive: callers confirm budget beforehand."""
        self.total_discount_used_amount = (self.total_discount_used + discount_amount).amount
        self.total_usage_count = (self.total_usage_count or 0) + 1

    def reverse_usage(self, discount_amount: Money) -> bool:
        """Credit a usage back. Totals are floored at zero.

        Returns True when the discount total had to be clamped, meaning the
        ledger no longer matches the recorded usages exactly.
        """
        if (self.total_usage_count or 0) > 0:
            self.total_usage_count -= 1

        used = self.total_discount_used
        if used >= discount_amount:
            self.total_discount_used_amount = (used - discount_amount).amount
            return False

        logger.warning(
            "Reversal of %s exceeds recorded discount %s on campaign %s; clamping to zero",
            discount_amount, used, self.id
        )
        self.total_discount_used_amount = Decimal("0")
        return True

    def get_remaining_budget(self) -> Optional[Money]:
        """Remaining global budget, or None when unlimited (not zero)."""
        limit = self.total_budget_limit
        if limit is None:
            return None
        return limit - self.total_discount_used

    def get_remaining_usage(self) -> Optional[int]:
        if self.total_usage_limit is None:
            return None
        return max(self.total_usage_limit - (self.total_usage_count or 0), 0)

    # --- Rules -----------------------------------------------------------

    def add_discount_rule(self, rule) -> None:
        self.ensure_status("add rules to", CampaignStatus.DRAFT)
        if rule not in self.discount_rules:
            self.discount_rules.append(rule)

    def remove_discount_rule(self, rule) -> None:
        self.ensure_status("remove rules from", CampaignStatus.DRAFT)
        if rule in self.discount_rules:
            self.discount_rules.remove(rule)

    def find_rule(self, rule_id) -> Optional[Any]:
        for rule in self.discount_rules:
            if rule.id == rule_id:
                return rule
        return None

    # --- Soft delete -----------------------------------------------------

    def mark_as_deleted(self, deleted_by: Optional[str] = None) -> None:
        self.is_deleted = True
        self.deleted_at = utc_now()
        self.deleted_by = deleted_by

    def to_dict(self, include_rules: bool = True) -> Dict[str, Any]:
        """Convert campaign to dictionary for API responses"""
        data = {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status.value if self.status else None,
            "priority": self.priority,
            "currency": self.currency,
            "total_budget_limit": _decimal_str(self.total_budget_limit_amount),
            "total_usage_limit": self.total_usage_limit,
            "per_customer_budget_limit": _decimal_str(self.per_customer_budget_limit_amount),
            "per_customer_usage_limit": self.per_customer_usage_limit,
            "total_discount_used": _decimal_str(self.total_discount_used_amount),
            "total_usage_count": self.total_usage_count,
            "external_id": self.external_id,
            "external_code": self.external_code,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_rules:
            data["discount_rules"] = [rule.to_dict() for rule in self.discount_rules]
        return data


def _decimal_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None
