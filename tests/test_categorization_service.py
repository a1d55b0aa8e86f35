"""Applier, bulk runner and auto-apply hook against a real database."""

from datetime import timedelta

import pytest
from sqlalchemy import select, update
from structlog.testing import capture_logs

from rulebook.config import settings
from rulebook.core.exceptions import SplitConversionError
from rulebook.models import CategorizationRule, Record, SplitAllocation
from rulebook.models.base import utcnow
from rulebook.services.categorization_service import CategorizationService
from rulebook.services.rule_service import RuleService

COFFEE_SPLIT = [
    {"category_id": "food", "percentage": 70, "fixed_amount": None, "label": "Food"},
    {"category_id": "beverage", "percentage": 30, "fixed_amount": None, "label": "Beverage"},
]


async def _allocations(db, record_id):
    result = await db.execute(
        select(SplitAllocation)
        .where(SplitAllocation.record_id == record_id)
        .order_by(SplitAllocation.position)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


# ── Applier ────────────────────────────────────────


async def test_direct_rule_categorizes_record_and_updates_stats(db, add_rule, add_record):
    rule = await add_rule(text_pattern="SYSCO", text_match_type="contains", category_id="food-cogs")
    record = await add_record(description="SYSCO DALLAS", amount=-45210)

    outcome = await CategorizationService(db).categorize(record, [rule])

    assert outcome.applied is True
    assert record.categorization_state == "categorized"
    assert record.category_id == "food-cogs"
    assert record.rule_id == rule.id
    assert record.categorized_at is not None
    assert rule.apply_count == 1
    assert rule.last_applied_at is not None
    assert await _allocations(db, record.id) == []


async def test_split_rule_writes_allocations(db, add_rule, add_record):
    rule = await add_rule(scope="pos", text_pattern="coffee combo", split_specs=COFFEE_SPLIT)
    sale = await add_record(source="pos", item_name="Coffee Combo", amount=800)

    outcome = await CategorizationService(db).apply_rule(sale, rule)

    assert outcome.applied is True
    assert sale.categorization_state == "split"
    assert sale.category_id is None
    allocations = await _allocations(db, sale.id)
    assert [(a.category_id, a.amount, a.label) for a in allocations] == [
        ("food", 560, "Food"),
        ("beverage", 240, "Beverage"),
    ]
    assert sum(a.amount for a in allocations) == 800
    assert all(a.rule_id == rule.id for a in allocations)


async def test_split_uses_absolute_amount_for_refunds(db, add_rule, add_record):
    rule = await add_rule(scope="pos", text_pattern="coffee", split_specs=COFFEE_SPLIT)
    refund = await add_record(source="pos", item_name="Coffee Combo", amount=-800)

    await CategorizationService(db).apply_rule(refund, rule)

    assert [a.amount for a in await _allocations(db, refund.id)] == [560, 240]


async def test_applying_twice_is_a_noop(db, add_rule, add_record):
    rule = await add_rule(text_pattern="sysco", category_id="food-cogs")
    record = await add_record(description="SYSCO")
    service = CategorizationService(db)

    first = await service.apply_rule(record, rule)
    second = await service.apply_rule(record, rule)

    assert first.applied is True
    assert second.applied is False
    assert rule.apply_count == 1


async def test_stale_record_loses_race_silently(db, add_rule, add_record):
    rule = await add_rule(text_pattern="sysco", category_id="food-cogs")
    record = await add_record(description="SYSCO")
    # Another writer categorizes the row behind the session's back
    await db.execute(
        update(Record)
        .where(Record.id == record.id)
        .values(categorization_state="categorized", category_id="other")
        .execution_options(synchronize_session=False)
    )
    assert record.categorization_state == "uncategorized"

    outcome = await CategorizationService(db).apply_rule(record, rule)

    assert outcome.applied is False
    assert record.category_id == "other"
    stored = await db.get(CategorizationRule, rule.id)
    await db.refresh(stored)
    assert stored.apply_count == 0
    assert stored.last_applied_at is None


async def test_split_conversion_failure_leaves_record_untouched(db, add_rule, add_record):
    specs = [
        {"category_id": "rent", "percentage": None, "fixed_amount": 5000, "label": None},
        {"category_id": "utilities", "percentage": None, "fixed_amount": 100, "label": None},
    ]
    rule = await add_rule(text_pattern="landlord", split_specs=specs)
    record = await add_record(description="LANDLORD LLC", amount=-1000)

    with capture_logs() as logs, pytest.raises(SplitConversionError):
        await CategorizationService(db).apply_rule(record, rule)

    await db.refresh(record)
    assert record.categorization_state == "uncategorized"
    assert record.rule_id is None
    assert await _allocations(db, record.id) == []
    assert rule.apply_count == 0
    assert any(e["event"] == "split_conversion_failed" for e in logs)


async def test_manually_overridden_record_is_never_touched(db, add_rule, add_record):
    rule = await add_rule(text_pattern="sysco", category_id="food-cogs")
    record = await add_record(
        description="SYSCO", categorization_state="manually_overridden", category_id="mine"
    )

    outcome = await CategorizationService(db).categorize(record, [rule])

    assert outcome.applied is False
    assert record.category_id == "mine"


# ── Bulk runner ────────────────────────────────────


async def test_bulk_apply_twice_applies_nothing_the_second_time(db, restaurant, add_rule, add_record):
    await add_rule(text_pattern="sysco", category_id="food-cogs")
    await add_rule(text_pattern="us foods", category_id="food-cogs")
    for description in ("SYSCO DALLAS", "US FOODS 123", "SYSCO HOUSTON"):
        await add_record(description=description)
    service = CategorizationService(db)

    first = await service.bulk_apply(restaurant.id, "bank", 100)
    second = await service.bulk_apply(restaurant.id, "bank", 100)

    assert first["applied_count"] == 3
    assert first["total_considered"] == 3
    assert second["applied_count"] == 0
    assert second["total_considered"] == 0


async def test_bulk_apply_respects_batch_limit_newest_first(db, restaurant, add_rule, add_record):
    await add_rule(text_pattern="sysco", category_id="food-cogs")
    now = utcnow()
    old = await add_record(description="SYSCO old", occurred_at=now - timedelta(days=3))
    new = await add_record(description="SYSCO new", occurred_at=now)

    summary = await CategorizationService(db).bulk_apply(restaurant.id, "bank", 1)

    assert summary["total_considered"] == 1
    assert summary["applied_count"] == 1
    await db.refresh(old)
    await db.refresh(new)
    assert new.categorization_state == "categorized"
    assert old.categorization_state == "uncategorized"


async def test_bulk_apply_batches_only_matching_records(db, restaurant, add_rule, add_record):
    await add_rule(text_pattern="sysco", category_id="food-cogs")
    await add_record(description="SYSCO")
    await add_record(description="RANDOM VENDOR")

    summary = await CategorizationService(db).bulk_apply(restaurant.id, "bank", 100)

    assert summary == {
        "scope": "bank",
        "applied_count": 1,
        "total_considered": 1,
        "failed_count": 0,
        "scanned_count": 2,
    }


async def test_unmatched_newer_records_do_not_block_older_matches(db, restaurant, add_rule, add_record):
    await add_rule(text_pattern="sysco", category_id="food-cogs")
    now = utcnow()
    older = await add_record(description="SYSCO DALLAS", occurred_at=now - timedelta(days=5))
    await add_record(description="RANDOM ONE", occurred_at=now - timedelta(days=1))
    await add_record(description="RANDOM TWO", occurred_at=now)
    service = CategorizationService(db)

    first = await service.bulk_apply(restaurant.id, "bank", 2)
    second = await service.bulk_apply(restaurant.id, "bank", 2)

    assert (first["applied_count"], first["total_considered"], first["scanned_count"]) == (1, 1, 3)
    assert (second["applied_count"], second["total_considered"]) == (0, 0)
    await db.refresh(older)
    assert older.categorization_state == "categorized"


async def test_bulk_apply_fills_batch_across_pages(db, restaurant, add_rule, add_record):
    await add_rule(text_pattern="sysco", category_id="food-cogs")
    now = utcnow()
    for hours in range(6):
        description = "SYSCO" if hours % 3 == 2 else f"RANDOM {hours}"
        await add_record(description=description, occurred_at=now - timedelta(hours=hours))

    summary = await CategorizationService(db).bulk_apply(restaurant.id, "bank", 2)

    assert summary["applied_count"] == 2
    assert summary["scanned_count"] == 6

async def test_bulk_apply_skips_failing_record_and_continues(db, restaurant, add_rule, add_record):
    specs = [
        {"category_id": "a", "percentage": None, "fixed_amount": 5000, "label": None},
        {"category_id": "b", "percentage": None, "fixed_amount": 100, "label": None},
    ]
    await add_rule(text_pattern="landlord", split_specs=specs, priority=10)
    await add_rule(text_pattern="sysco", category_id="food-cogs")
    await add_record(description="LANDLORD", amount=-1000)
    await add_record(description="SYSCO", amount=-1000)

    summary = await CategorizationService(db).bulk_apply(restaurant.id, "bank", 100)

    assert summary["applied_count"] == 1
    assert summary["failed_count"] == 1
    assert summary["total_considered"] == 2


async def test_bulk_apply_without_rules_has_nothing_eligible(db, restaurant, add_record):
    record = await add_record(description="SYSCO")

    summary = await CategorizationService(db).bulk_apply(restaurant.id, "bank", 100)

    assert summary == {
        "scope": "bank",
        "applied_count": 0,
        "total_considered": 0,
        "failed_count": 0,
        "scanned_count": 0,
    }
    assert record.categorization_state == "uncategorized"


async def test_bulk_apply_both_scopes(db, restaurant, add_rule, add_record):
    await add_rule(scope="both", text_pattern="coffee", text_field="description", category_id="bev")
    await add_rule(scope="pos", text_pattern="coffee", category_id="bev")
    await add_record(description="COFFEE ROASTERS INC")
    await add_record(source="pos", item_name="Coffee", amount=350)

    summaries = await CategorizationService(db).bulk_apply_scopes(restaurant.id, "both", 50)

    assert [(s["scope"], s["applied_count"]) for s in summaries] == [("bank", 1), ("pos", 1)]


async def test_inactive_rules_are_ignored_by_bulk_apply(db, restaurant, add_rule, add_record):
    await add_rule(text_pattern="sysco", category_id="food-cogs", is_active=False)
    await add_record(description="SYSCO")

    summary = await CategorizationService(db).bulk_apply(restaurant.id, "bank", 100)

    assert summary["applied_count"] == 0


# ── Auto-apply hook ────────────────────────────────


async def test_auto_apply_skips_when_no_auto_apply_rule(db, add_rule, add_record):
    await add_rule(text_pattern="sysco", category_id="food-cogs", auto_apply=False)
    record = await add_record(description="SYSCO")

    with capture_logs() as logs:
        applied = await CategorizationService(db).auto_apply(record)

    assert applied is False
    assert record.categorization_state == "uncategorized"
    assert any(e["event"] == "auto_apply_skipped_no_rules" for e in logs)


async def test_auto_apply_uses_only_auto_apply_rules(db, add_rule, add_record):
    await add_rule(text_pattern="sysco", category_id="manual-only", priority=100)
    auto = await add_rule(text_pattern="sysco", category_id="food-cogs", auto_apply=True)
    record = await add_record(description="SYSCO")

    applied = await CategorizationService(db).auto_apply(record)

    assert applied is True
    assert record.category_id == "food-cogs"
    assert record.rule_id == auto.id


async def test_auto_apply_failure_is_swallowed(db, add_rule, add_record, monkeypatch):
    await add_rule(text_pattern="sysco", category_id="food-cogs", auto_apply=True)
    record = await add_record(description="SYSCO")

    async def boom(self, *args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(CategorizationService, "load_rules", boom)

    with capture_logs() as logs:
        applied = await CategorizationService(db).auto_apply(record)

    assert applied is False
    await db.refresh(record)
    assert record.categorization_state == "uncategorized"
    assert any(e["event"] == "auto_apply_failed" for e in logs)


async def test_auto_apply_can_be_disabled(db, add_rule, add_record, monkeypatch):
    await add_rule(text_pattern="sysco", category_id="food-cogs", auto_apply=True)
    record = await add_record(description="SYSCO")
    monkeypatch.setattr(settings, "auto_apply_enabled", False)

    assert await CategorizationService(db).auto_apply(record) is False
    assert record.categorization_state == "uncategorized"


# ── Rule lifecycle effects ─────────────────────────


async def test_deleting_a_rule_keeps_historical_categorization(db, restaurant, add_rule, add_record):
    rule = await add_rule(scope="pos", text_pattern="coffee", split_specs=COFFEE_SPLIT)
    sale = await add_record(source="pos", item_name="Coffee Combo", amount=800)
    await CategorizationService(db).apply_rule(sale, rule)

    await RuleService(db).delete_rule(restaurant.id, rule.id)
    await db.commit()

    await db.refresh(sale)
    assert sale.categorization_state == "split"
    assert sale.rule_id is None
    allocations = await _allocations(db, sale.id)
    assert [a.amount for a in allocations] == [560, 240]
    assert all(a.rule_id is None for a in allocations)
