"""Rule application: the atomic applier, the bulk backfill runner and the
auto-apply hook run on record insertion.

The only concurrency control is the conditional update in ``apply_rule``:
a record moves out of ``uncategorized`` at most once, whoever gets there
first (auto-apply or any number of concurrent backfills) wins and every
other attempt is a silent no-op.
"""

from dataclasses import dataclass, field

import structlog
from sqlalchemy import exists, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from rulebook.config import settings
from rulebook.core.exceptions import SplitConversionError
from rulebook.engine.resolver import resolve
from rulebook.engine.splits import SplitAmount, convert_splits
from rulebook.engine.vocab import RecordState, Scope, Source, scopes_reaching
from rulebook.models.base import utcnow
from rulebook.models.categorization_rule import CategorizationRule
from rulebook.models.record import Record, SplitAllocation

logger = structlog.get_logger()


@dataclass
class ApplyOutcome:
    applied: bool
    rule_id: int | None = None
    state: str | None = None
    allocations: list[SplitAmount] = field(default_factory=list)


class CategorizationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Rule snapshots ─────────────────────────────────

    async def load_rules(
        self, restaurant_id: int, source: str, auto_apply_only: bool = False
    ) -> list[CategorizationRule]:
        """Active rules that can reach records from ``source``."""
        query = select(CategorizationRule).where(
            CategorizationRule.restaurant_id == restaurant_id,
            CategorizationRule.is_active.is_(True),
            CategorizationRule.scope.in_(scopes_reaching(source)),
        )
        if auto_apply_only:
            query = query.where(CategorizationRule.auto_apply.is_(True))
        query = query.order_by(
            CategorizationRule.priority.desc(),
            CategorizationRule.created_at.asc(),
            CategorizationRule.id.asc(),
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def has_auto_apply_rules(self, restaurant_id: int, source: str) -> bool:
        result = await self.db.execute(
            select(
                exists().where(
                    CategorizationRule.restaurant_id == restaurant_id,
                    CategorizationRule.is_active.is_(True),
                    CategorizationRule.auto_apply.is_(True),
                    CategorizationRule.scope.in_(scopes_reaching(source)),
                )
            )
        )
        return bool(result.scalar())

    # ── Applier ────────────────────────────────────────

    async def apply_rule(self, record: Record, rule: CategorizationRule) -> ApplyOutcome:
        """Categorize (or split) ``record`` with ``rule`` as one atomic unit.

        No-op when the record has already left ``uncategorized``. Raises
        SplitConversionError, before anything is written, when the rule's
        splits cannot be reconciled with the record amount.
        """
        if record.categorization_state != RecordState.UNCATEGORIZED:
            return ApplyOutcome(applied=False, rule_id=rule.id, state=record.categorization_state)

        splits: list[SplitAmount] = []
        if rule.is_split_rule:
            try:
                splits = convert_splits(rule.split_specs, abs(record.amount))
            except SplitConversionError as e:
                logger.warning(
                    "split_conversion_failed",
                    record_id=record.id,
                    rule_id=rule.id,
                    total=e.total,
                    amounts=e.amounts,
                    error=str(e),
                )
                raise
            values = {"categorization_state": RecordState.SPLIT, "category_id": None}
        else:
            values = {"categorization_state": RecordState.CATEGORIZED, "category_id": rule.category_id}

        now = utcnow()
        async with self.db.begin_nested():
            result = await self.db.execute(
                update(Record)
                .where(
                    Record.id == record.id,
                    Record.categorization_state == RecordState.UNCATEGORIZED,
                )
                .values(rule_id=rule.id, categorized_at=now, updated_at=now, **values)
                .execution_options(synchronize_session=False)
            )
            won = result.rowcount == 1

            if won:
                self.db.add_all(
                    SplitAllocation(
                        record_id=record.id,
                        category_id=split.category_id,
                        amount=split.amount,
                        label=split.label,
                        position=position,
                        rule_id=rule.id,
                    )
                    for position, split in enumerate(splits)
                )
                await self.db.execute(
                    update(CategorizationRule)
                    .where(CategorizationRule.id == rule.id)
                    .values(
                        apply_count=CategorizationRule.apply_count + 1,
                        last_applied_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                await self.db.flush()

        await self.db.refresh(record)
        if not won:
            return ApplyOutcome(applied=False, rule_id=rule.id, state=record.categorization_state)

        set_committed_value(rule, "apply_count", (rule.apply_count or 0) + 1)
        set_committed_value(rule, "last_applied_at", now)
        logger.info(
            "rule_applied",
            record_id=record.id,
            rule_id=rule.id,
            state=record.categorization_state,
            allocations=len(splits),
        )
        return ApplyOutcome(
            applied=True, rule_id=rule.id, state=record.categorization_state, allocations=splits
        )

    async def categorize(self, record: Record, rules: list[CategorizationRule]) -> ApplyOutcome:
        """Resolve the winning rule among ``rules`` and apply it."""
        rule = resolve(record, rules)
        if rule is None:
            return ApplyOutcome(applied=False, state=record.categorization_state)
        return await self.apply_rule(record, rule)

    # ── Bulk backfill ──────────────────────────────────

    async def _collect_batch(
        self, restaurant_id: int, source: str, rules: list[CategorizationRule], batch_limit: int
    ) -> tuple[list[tuple[Record, CategorizationRule]], int]:
        """Page through uncategorized records, newest first, keeping those a rule resolves.

        Returns up to ``batch_limit`` (record, winning rule) pairs and the
        number of records examined. Records no rule matches are paged past
        so they never hold back older records that do match.
        """
        query = (
            select(Record)
            .where(
                Record.restaurant_id == restaurant_id,
                Record.source == source,
                Record.categorization_state == RecordState.UNCATEGORIZED,
            )
            .order_by(Record.occurred_at.desc(), Record.id.desc())
        )
        batch: list[tuple[Record, CategorizationRule]] = []
        scanned = 0
        offset = 0
        while len(batch) < batch_limit:
            result = await self.db.execute(query.offset(offset).limit(batch_limit))
            page = list(result.scalars().all())
            if not page:
                break
            offset += len(page)
            for record in page:
                scanned += 1
                rule = resolve(record, rules)
                if rule is None:
                    continue
                batch.append((record, rule))
                if len(batch) == batch_limit:
                    break
        return batch, scanned

    async def bulk_apply(self, restaurant_id: int, source: str, batch_limit: int) -> dict:
        """Apply rules to up to ``batch_limit`` matching uncategorized records of ``source``.

        ``total_considered`` counts the records taken into the batch, that
        is uncategorized records some active rule resolves to;
        ``scanned_count`` counts every uncategorized record examined to fill
        it. Each record is its own atomic unit; a failing record is logged
        and skipped. Safe to call repeatedly.
        """
        summary = {
            "scope": source,
            "applied_count": 0,
            "total_considered": 0,
            "failed_count": 0,
            "scanned_count": 0,
        }
        rules = await self.load_rules(restaurant_id, source)
        if not rules:
            # No active rule reaches this source: no record is eligible
            logger.info("bulk_apply_completed", restaurant_id=restaurant_id, **summary)
            return summary

        batch, summary["scanned_count"] = await self._collect_batch(
            restaurant_id, source, rules, batch_limit
        )
        summary["total_considered"] = len(batch)

        for record, rule in batch:
            record_id = record.id
            try:
                outcome = await self.apply_rule(record, rule)
            except SplitConversionError:
                summary["failed_count"] += 1
                continue
            except SQLAlchemyError:
                logger.exception("bulk_apply_record_failed", record_id=record_id)
                summary["failed_count"] += 1
                continue
            if outcome.applied:
                summary["applied_count"] += 1

        logger.info("bulk_apply_completed", restaurant_id=restaurant_id, **summary)
        return summary

    async def bulk_apply_scopes(self, restaurant_id: int, scope: str, batch_limit: int) -> list[dict]:
        """Run the backfill for one source, or for each source when ``scope`` is ``both``."""
        sources = list(Source.ALL) if scope == Scope.BOTH else [scope]
        return [await self.bulk_apply(restaurant_id, source, batch_limit) for source in sources]

    # ── Auto-apply hook ────────────────────────────────

    async def auto_apply(self, record: Record) -> bool:
        """Run on a freshly inserted record. Never raises.

        Skips all rule loading when no active auto-apply rule exists for the
        record's source. Any failure is logged and rolled back to the
        savepoint, leaving the record inserted and uncategorized.
        """
        if not settings.auto_apply_enabled:
            return False
        if record.categorization_state != RecordState.UNCATEGORIZED:
            return False

        record_id, restaurant_id = record.id, record.restaurant_id
        try:
            async with self.db.begin_nested():
                if not await self.has_auto_apply_rules(record.restaurant_id, record.source):
                    logger.debug("auto_apply_skipped_no_rules", record_id=record.id, source=record.source)
                    return False
                rules = await self.load_rules(record.restaurant_id, record.source, auto_apply_only=True)
                outcome = await self.categorize(record, rules)
                return outcome.applied
        except Exception:
            logger.exception("auto_apply_failed", record_id=record_id, restaurant_id=restaurant_id)
            return False
