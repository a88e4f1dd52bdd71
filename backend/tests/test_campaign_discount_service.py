"""
Integration tests for quoting, committing and reversing campaign discounts
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select

from core.config import settings
from core.exceptions import (
    NotFoundException,
    ValidationException,
    BudgetExceededException,
)
from models.campaign_usages import CampaignUsage
from models.discount_rules import DiscountType, ProductTargetType, CustomerTargetType, PriceTier
from models.money import Money
from schemas.campaigns import DiscountQuoteItem
from services.campaign_discounts import CampaignDiscountService
from services.protocols import InMemoryProductCatalog, ProductTargeting


def try_(amount) -> Money:
    return Money(Decimal(str(amount)), "TRY")


@pytest.fixture
def service(db_session):
    return CampaignDiscountService(db_session)


@pytest.mark.integration
class TestQuote:

    async def test_no_campaigns_is_no_discount(self, service):
        assert await service.quote(uuid4(), uuid4(), PriceTier.TIER1, try_(100), 1) is None

    async def test_budget_clamp(self, service, persist, campaign_factory, rule_factory, activate_campaign):
        campaign = campaign_factory(total_budget_limit=Decimal("100"))
        activate_campaign(campaign, rule_factory(discount_value="50"))
        await persist(campaign)

        candidate = await service.quote(uuid4(), uuid4(), PriceTier.TIER1, try_(300), 1)

        assert candidate is not None
        assert candidate.campaign_id == campaign.id
        assert candidate.discount_amount == Decimal("100")
        assert candidate.discounted_total_price == Decimal("200")
        assert candidate.discounted_unit_price == Decimal("200")

    async def test_tie_prefers_higher_priority(self, service, persist, campaign_factory,
                                               rule_factory, activate_campaign):
        low = activate_campaign(
            campaign_factory(name="A", priority=1),
            rule_factory(discount_type=DiscountType.FIXED_AMOUNT, discount_value="20"),
        )
        high = activate_campaign(
            campaign_factory(name="B", priority=5),
            rule_factory(discount_type=DiscountType.FIXED_AMOUNT, discount_value="20"),
        )
        await persist(low, high)

        candidate = await service.quote(uuid4(), uuid4(), None, try_(100), 1)

        assert candidate.campaign_id == high.id
        assert candidate.discount_amount == Decimal("20")

    async def test_larger_discount_beats_priority(self, service, persist, campaign_factory,
                                                  rule_factory, activate_campaign):
        generous = activate_campaign(campaign_factory(priority=0), rule_factory(discount_value="30"))
        preferred = activate_campaign(campaign_factory(priority=10), rule_factory(discount_value="10"))
        await persist(generous, preferred)

        candidate = await service.quote(uuid4(), uuid4(), None, try_(100), 1)

        assert candidate.campaign_id == generous.id
        assert candidate.discount_amount == Decimal("30")
        assert candidate.discount_percentage == Decimal("30.00")

    async def test_best_rule_within_campaign(self, service, persist, campaign_factory,
                                             rule_factory, activate_campaign):
        small = rule_factory(discount_value="5")
        large = rule_factory(discount_type=DiscountType.FIXED_AMOUNT, discount_value="12")
        campaign = activate_campaign(campaign_factory(), small, large)
        await persist(campaign)

        candidate = await service.quote(uuid4(), uuid4(), None, try_(100), 1)

        assert candidate.discount_rule_id == large.id
        assert candidate.discount_type == DiscountType.FIXED_AMOUNT

    async def test_category_ancestor_targeting(self, db_session, persist, campaign_factory,
                                               rule_factory, activate_campaign):
        electronics, laptops, product_id = uuid4(), uuid4(), uuid4()
        catalog = InMemoryProductCatalog()
        catalog.add_category(electronics)
        catalog.add_category(laptops, parent_id=electronics)
        catalog.add_product(product_id, category_id=laptops)

        rule = rule_factory(product_target_type=ProductTargetType.CATEGORIES)
        rule.add_category(electronics)
        await persist(activate_campaign(campaign_factory(), rule))

        service = CampaignDiscountService(db_session, catalog=catalog)
        candidate = await service.quote(product_id, uuid4(), None, try_(100), 1)

        assert candidate is not None
        assert candidate.discount_amount == Decimal("10")

    async def test_precomputed_targeting(self, service, persist, campaign_factory,
                                         rule_factory, activate_campaign):
        brand_id, product_id = uuid4(), uuid4()
        rule = rule_factory(product_target_type=ProductTargetType.BRANDS)
        rule.add_brand(brand_id)
        await persist(activate_campaign(campaign_factory(), rule))

        miss = await service.quote(product_id, uuid4(), None, try_(100), 1)
        hit = await service.quote(product_id, uuid4(), None, try_(100), 1,
                                  targeting=ProductTargeting(product_id=product_id, brand_id=brand_id))

        assert miss is None
        assert hit is not None

    async def test_customer_tier_targeting(self, service, persist, campaign_factory,
                                           rule_factory, activate_campaign):
        rule = rule_factory(customer_target_type=CustomerTargetType.CUSTOMER_TIERS)
        rule.add_customer_tier(PriceTier.TIER3)
        await persist(activate_campaign(campaign_factory(), rule))

        assert await service.quote(uuid4(), uuid4(), PriceTier.TIER3, try_(100), 1) is not None
        assert await service.quote(uuid4(), uuid4(), PriceTier.TIER1, try_(100), 1) is None

    async def test_unknown_product_with_catalog(self, db_session, persist, campaign_factory,
                                                rule_factory, activate_campaign):
        await persist(activate_campaign(campaign_factory(), rule_factory()))
        service = CampaignDiscountService(db_session, catalog=InMemoryProductCatalog())

        with pytest.raises(NotFoundException):
            await service.quote(uuid4(), uuid4(), None, try_(100), 1)

    async def test_unknown_product_without_campaigns_is_not_looked_up(self, db_session):
        service = CampaignDiscountService(db_session, catalog=InMemoryProductCatalog())
        assert await service.quote(uuid4(), uuid4(), None, try_(100), 1) is None

    async def test_inactive_and_expired_campaigns_ignored(self, service, persist, campaign_factory,
                                                          rule_factory, activate_campaign):
        draft = campaign_factory()
        draft.add_discount_rule(rule_factory())
        paused = activate_campaign(campaign_factory(), rule_factory())
        paused.pause()
        now = datetime.now(timezone.utc)
        expired = activate_campaign(
            campaign_factory(start_date=now - timedelta(days=10), end_date=now - timedelta(days=1)),
            rule_factory(),
        )
        await persist(draft, paused, expired)

        assert await service.quote(uuid4(), uuid4(), None, try_(100), 1) is None

    async def test_per_customer_usage_limit(self, service, persist, campaign_factory,
                                            rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(per_customer_usage_limit=1), rule_factory())
        await persist(campaign)
        customer_id, other_customer = uuid4(), uuid4()
        await service.record_usage(campaign.id, customer_id, uuid4(), try_(10))

        assert await service.quote(uuid4(), customer_id, None, try_(100), 1) is None
        assert await service.quote(uuid4(), other_customer, None, try_(100), 1) is not None

    async def test_per_customer_budget_clamp(self, service, persist, campaign_factory,
                                             rule_factory, activate_campaign):
        campaign = activate_campaign(
            campaign_factory(per_customer_budget_limit=Decimal("25")),
            rule_factory(discount_value="20"),
        )
        await persist(campaign)
        customer_id = uuid4()
        await service.record_usage(campaign.id, customer_id, uuid4(), try_(20))

        candidate = await service.quote(uuid4(), customer_id, None, try_(100), 1)
        assert candidate.discount_amount == Decimal("5")

    async def test_sub_cent_budget_remainder_rounds_down(self, service, persist, campaign_factory,
                                                         rule_factory, activate_campaign):
        campaign = activate_campaign(
            campaign_factory(total_budget_limit=Decimal("10.005")),
            rule_factory(discount_value="50"),
        )
        await persist(campaign)

        candidate = await service.quote(uuid4(), uuid4(), None, try_(300), 1)

        assert candidate.discount_amount == Decimal("10.00")
        assert candidate.discount_amount <= Decimal("10.005")

    async def test_sub_cent_customer_remainder_rounds_down(self, service, persist, campaign_factory,
                                                           rule_factory, activate_campaign):
        campaign = activate_campaign(
            campaign_factory(per_customer_budget_limit=Decimal("10.005")),
            rule_factory(discount_value="50"),
        )
        await persist(campaign)

        candidate = await service.quote(uuid4(), uuid4(), None, try_(300), 1)

        assert candidate.discount_amount == Decimal("10.00")
        assert candidate.discount_amount <= Decimal("10.005")

    async def test_tie_compares_rounded_amounts(self, service, persist, campaign_factory,
                                                rule_factory, activate_campaign):
        larger_raw = activate_campaign(
            campaign_factory(name="A", priority=1), rule_factory(discount_value="10.004")
        )
        preferred = activate_campaign(
            campaign_factory(name="B", priority=5), rule_factory(discount_value="10.001")
        )
        await persist(larger_raw, preferred)

        candidate = await service.quote(uuid4(), uuid4(), None, try_(100), 1)

        assert candidate.campaign_id == preferred.id
        assert candidate.discount_amount == Decimal("10.00")

    def test_quote_item_currency_defaults_to_setting(self, monkeypatch):
        monkeypatch.setattr(settings, "DEFAULT_CURRENCY", "USD")
        item = DiscountQuoteItem(product_id=uuid4(), unit_price=Decimal("10"), quantity=1)
        assert item.currency == "USD"

    async def test_exhausted_usage_limit(self, service, persist, campaign_factory,
                                         rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(total_usage_limit=1), rule_factory())
        await persist(campaign)
        await service.record_usage(campaign.id, uuid4(), uuid4(), try_(10))

        assert await service.quote(uuid4(), uuid4(), None, try_(100), 1) is None

    async def test_currency_mismatch_skipped(self, service, persist, campaign_factory,
                                             rule_factory, activate_campaign):
        await persist(activate_campaign(campaign_factory(currency="USD"), rule_factory()))
        assert await service.quote(uuid4(), uuid4(), None, try_(100), 1) is None

    async def test_quote_is_read_only(self, service, persist, campaign_factory,
                                      rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(total_budget_limit=Decimal("500")), rule_factory())
        await persist(campaign)

        first = await service.quote(uuid4(), uuid4(), None, try_(100), 2)
        second = await service.quote(uuid4(), uuid4(), None, try_(100), 2)

        assert first.discount_amount == second.discount_amount == Decimal("20")
        assert campaign.total_usage_count == 0
        assert campaign.total_discount_used == Money.zero("TRY")

    async def test_amount_rounded_to_currency_places(self, service, persist, campaign_factory,
                                                     rule_factory, activate_campaign):
        await persist(activate_campaign(campaign_factory(), rule_factory(discount_value="33")))
        candidate = await service.quote(uuid4(), uuid4(), None, try_("10.01"), 1)
        assert candidate.discount_amount == Decimal("3.30")

    async def test_invalid_quantity(self, service):
        with pytest.raises(ValidationException):
            await service.quote(uuid4(), uuid4(), None, try_(100), 0)

    async def test_quote_items(self, service, persist, campaign_factory, rule_factory, activate_campaign):
        targeted = uuid4()
        rule = rule_factory(product_target_type=ProductTargetType.SPECIFIC_PRODUCTS)
        rule.add_product(targeted)
        await persist(activate_campaign(campaign_factory(), rule))

        results = await service.quote_items(uuid4(), None, [
            DiscountQuoteItem(product_id=targeted, unit_price=Decimal("50"), currency="TRY", quantity=2),
            DiscountQuoteItem(product_id=uuid4(), unit_price=Decimal("50"), currency="TRY", quantity=2),
        ])

        assert list(results) == [targeted]
        assert results[targeted].discount_amount == Decimal("10")


@pytest.mark.integration
class TestCommit:

    async def test_commit_records_usage_and_totals(self, db_session, service, persist,
                                                   campaign_factory, rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(), rule_factory(discount_value="10"))
        await persist(campaign)
        order_id, order_item_id = uuid4(), uuid4()

        candidate = await service.quote(uuid4(), uuid4(), None, try_(100), 3)
        result = await service.commit(candidate, order_id, order_item_id)

        assert result.discount_amount == Decimal("30")
        assert result.total_usage_count == 1
        assert result.total_discount_used == Decimal("30")

        usages = (await db_session.execute(select(CampaignUsage))).scalars().all()
        assert len(usages) == 1
        assert usages[0].order_item_id == order_item_id
        assert usages[0].customer_id == candidate.customer_id
        assert not usages[0].is_reversed

    async def test_unknown_campaign(self, service):
        with pytest.raises(NotFoundException):
            await service.record_usage(uuid4(), uuid4(), uuid4(), try_(10))

    async def test_currency_must_match_campaign(self, service, persist, campaign_factory,
                                                rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(), rule_factory())
        await persist(campaign)
        with pytest.raises(ValidationException):
            await service.record_usage(campaign.id, uuid4(), uuid4(), Money(Decimal("10"), "USD"))

    async def test_strict_mode_rejects_overrun(self, db_session, service, persist, campaign_factory,
                                               rule_factory, activate_campaign, monkeypatch):
        monkeypatch.setattr(settings, "STRICT_BUDGET_ENFORCEMENT", True)
        campaign = activate_campaign(campaign_factory(total_budget_limit=Decimal("50")), rule_factory())
        await persist(campaign)

        # Two quotes taken before either commits
        first = await service.quote(uuid4(), uuid4(), None, try_(400), 1)
        second = await service.quote(uuid4(), uuid4(), None, try_(400), 1)
        await service.commit(first, uuid4())

        with pytest.raises(BudgetExceededException):
            await service.commit(second, uuid4())

        await db_session.refresh(campaign)
        usages = (await db_session.execute(select(CampaignUsage))).scalars().all()
        assert len(usages) == 1
        assert campaign.total_discount_used == try_(40)

    async def test_soft_mode_allows_overrun(self, service, persist, campaign_factory,
                                            rule_factory, activate_campaign, monkeypatch):
        monkeypatch.setattr(settings, "STRICT_BUDGET_ENFORCEMENT", False)
        campaign = activate_campaign(campaign_factory(total_budget_limit=Decimal("50")), rule_factory())
        await persist(campaign)

        first = await service.quote(uuid4(), uuid4(), None, try_(400), 1)
        second = await service.quote(uuid4(), uuid4(), None, try_(400), 1)
        await service.commit(first, uuid4())
        await service.commit(second, uuid4())

        assert campaign.total_discount_used == try_(80)
        assert campaign.total_usage_count == 2

    async def test_strict_mode_per_customer_limit(self, service, persist, campaign_factory,
                                                  rule_factory, activate_campaign, monkeypatch):
        monkeypatch.setattr(settings, "STRICT_BUDGET_ENFORCEMENT", True)
        campaign = activate_campaign(campaign_factory(per_customer_usage_limit=1), rule_factory())
        await persist(campaign)
        customer_id = uuid4()

        await service.record_usage(campaign.id, customer_id, uuid4(), try_(5))
        with pytest.raises(BudgetExceededException):
            await service.record_usage(campaign.id, customer_id, uuid4(), try_(5))

    @pytest.mark.parametrize("limit", ["total_budget_limit", "per_customer_budget_limit"])
    async def test_strict_commit_of_clamped_quote(self, service, persist, campaign_factory,
                                                  rule_factory, activate_campaign, monkeypatch, limit):
        monkeypatch.setattr(settings, "STRICT_BUDGET_ENFORCEMENT", True)
        campaign = activate_campaign(
            campaign_factory(**{limit: Decimal("10.005")}),
            rule_factory(discount_value="50"),
        )
        await persist(campaign)

        candidate = await service.quote(uuid4(), uuid4(), None, try_(300), 1)
        result = await service.commit(candidate, uuid4())

        assert result.discount_amount == Decimal("10.00")
        assert campaign.total_discount_used == try_("10.00")
        assert campaign.total_usage_count == 1

    async def test_usage_recorded_on_paused_campaign(self, service, persist, campaign_factory,
                                                     rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(), rule_factory())
        campaign.pause()
        await persist(campaign)

        result = await service.record_usage(campaign.id, uuid4(), uuid4(), try_(5))
        assert result.total_usage_count == 1


@pytest.mark.integration
class TestReversal:

    async def test_reverse_order(self, db_session, service, persist, campaign_factory,
                                 rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(), rule_factory())
        await persist(campaign)
        order_id, other_order = uuid4(), uuid4()
        customer_id = uuid4()
        await service.record_usage(campaign.id, customer_id, order_id, try_(10), uuid4())
        await service.record_usage(campaign.id, customer_id, order_id, try_(15), uuid4())
        await service.record_usage(campaign.id, customer_id, other_order, try_(7))

        summary = await service.reverse_usage_for_order(order_id)

        assert summary.reversed_count == 2
        assert summary.already_reversed_count == 0
        assert summary.clamped_campaign_ids == []
        assert campaign.total_discount_used == try_(7)
        assert campaign.total_usage_count == 1

        usages = (await db_session.execute(
            select(CampaignUsage).where(CampaignUsage.order_id == order_id)
        )).scalars().all()
        assert all(usage.is_reversed and usage.reversed_at is not None for usage in usages)

    async def test_reverse_twice_credits_once(self, service, persist, campaign_factory,
                                              rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(), rule_factory())
        await persist(campaign)
        order_id = uuid4()
        await service.record_usage(campaign.id, uuid4(), order_id, try_(10))
        await service.record_usage(campaign.id, uuid4(), uuid4(), try_(10))

        await service.reverse_usage_for_order(order_id)
        summary = await service.reverse_usage_for_order(order_id)

        assert summary.reversed_count == 0
        assert summary.already_reversed_count == 1
        assert campaign.total_discount_used == try_(10)
        assert campaign.total_usage_count == 1

    async def test_reverse_unknown_order_is_noop(self, service):
        summary = await service.reverse_usage_for_order(uuid4())
        assert summary.reversed_count == 0
        assert summary.already_reversed_count == 0

    async def test_reversal_restores_customer_eligibility(self, service, persist, campaign_factory,
                                                          rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(per_customer_usage_limit=1), rule_factory())
        await persist(campaign)
        customer_id, order_id = uuid4(), uuid4()
        await service.record_usage(campaign.id, customer_id, order_id, try_(10))
        assert await service.quote(uuid4(), customer_id, None, try_(100), 1) is None

        await service.reverse_usage_for_order(order_id)

        assert await service.quote(uuid4(), customer_id, None, try_(100), 1) is not None

    async def test_mismatched_ledger_is_clamped(self, db_session, service, persist, campaign_factory,
                                                rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(), rule_factory())
        await persist(campaign)
        order_id = uuid4()
        # Ledger row without a matching campaign total
        db_session.add(CampaignUsage.create(campaign.id, uuid4(), order_id, try_(30)))
        await db_session.commit()

        summary = await service.reverse_usage_for_order(order_id)

        assert summary.clamped_campaign_ids == [campaign.id]
        assert campaign.total_discount_used == Money.zero("TRY")
        assert campaign.total_usage_count == 0

    async def test_reversal_credits_soft_deleted_campaign(self, service, persist, campaign_factory,
                                                          rule_factory, activate_campaign):
        campaign = activate_campaign(campaign_factory(), rule_factory())
        await persist(campaign)
        order_id = uuid4()
        await service.record_usage(campaign.id, uuid4(), order_id, try_(10))
        campaign.mark_as_deleted("admin")

        summary = await service.reverse_usage_for_order(order_id)

        assert summary.reversed_count == 1
        assert campaign.total_discount_used == Money.zero("TRY")

    async def test_reversal_ends_transaction_when_nothing_changes(self, db_session, service, persist,
                                                                  campaign_factory, rule_factory,
                                                                  activate_campaign):
        campaign = activate_campaign(campaign_factory(), rule_factory())
        await persist(campaign)
        order_id = uuid4()
        await service.record_usage(campaign.id, uuid4(), order_id, try_(10))
        await service.reverse_usage_for_order(order_id)

        summary = await service.reverse_usage_for_order(order_id)

        assert summary.reversed_count == 0
        assert not db_session.in_transaction()
