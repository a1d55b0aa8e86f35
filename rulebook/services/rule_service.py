"""Categorization rule management.

Every rule definition, whether typed by a user or proposed by the AI
suggestion feature, goes through ``create_rule``/``update_rule`` and thus
through the safety guard.
"""

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rulebook.config import settings
from rulebook.core.exceptions import NotFoundError, RuleRejectedError, ValidationError
from rulebook.engine.guard import GuardViolation, RuleGuard
from rulebook.engine.vocab import scopes_reaching
from rulebook.models.categorization_rule import CategorizationRule
from rulebook.schemas.categorization_rule import RuleCreate, RuleUpdate, SplitSpec

logger = structlog.get_logger()

_DEFINITION_FIELDS = tuple(RuleCreate.model_fields)


def default_guard() -> RuleGuard:
    return RuleGuard(settings.guard_generic_terms_list, settings.guard_min_pattern_length)


def _spec_to_json(spec: SplitSpec) -> dict:
    return {
        "category_id": spec.category_id,
        "percentage": float(spec.percentage) if spec.percentage is not None else None,
        "fixed_amount": spec.fixed_amount,
        "label": spec.label,
    }


class RuleService:
    def __init__(self, db: AsyncSession, guard: RuleGuard | None = None):
        self.db = db
        self.guard = guard or default_guard()

    # ── CRUD ───────────────────────────────────────────

    async def list_rules(self, restaurant_id: int, source: str | None = None) -> list[CategorizationRule]:
        """List rules in precedence order; ``source`` keeps rules reaching that source."""
        query = select(CategorizationRule).where(CategorizationRule.restaurant_id == restaurant_id)
        if source:
            query = query.where(CategorizationRule.scope.in_(scopes_reaching(source)))
        query = query.order_by(
            CategorizationRule.priority.desc(),
            CategorizationRule.created_at.asc(),
            CategorizationRule.id.asc(),
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_rule(self, restaurant_id: int, rule_id: int) -> CategorizationRule:
        result = await self.db.execute(
            select(CategorizationRule).where(
                CategorizationRule.id == rule_id,
                CategorizationRule.restaurant_id == restaurant_id,
            )
        )
        rule = result.scalar_one_or_none()
        if not rule:
            raise NotFoundError("CategorizationRule")
        return rule

    def check_rule(self, data: RuleCreate) -> list[GuardViolation]:
        """Advisory check: every guard violation, nothing persisted."""
        return self.guard.check(data)

    async def create_rule(
        self, restaurant_id: int, data: RuleCreate, created_by: str = "manual"
    ) -> CategorizationRule:
        """Create a rule. Raises RuleRejectedError if the guard objects."""
        self._enforce_guard(data, restaurant_id)

        rule = CategorizationRule(
            restaurant_id=restaurant_id,
            created_by=created_by,
            apply_count=0,
            **self._columns(data),
        )
        self.db.add(rule)
        await self.db.flush()
        await self.db.refresh(rule)

        logger.info("rule_created", restaurant_id=restaurant_id, rule_id=rule.id, created_by=created_by)
        return rule

    async def update_rule(self, restaurant_id: int, rule_id: int, data: RuleUpdate) -> CategorizationRule:
        """Patch a rule. The merged definition is validated and guarded like a new one."""
        rule = await self.get_rule(restaurant_id, rule_id)
        patch = data.model_dump(exclude_unset=True)

        merged = {name: getattr(rule, name) for name in _DEFINITION_FIELDS}
        merged.update(patch)
        # Switching target kind clears the other one
        if patch.get("category_id"):
            merged["split_specs"] = None
        elif patch.get("split_specs"):
            merged["category_id"] = None
        # A new scope gets its own default text field unless one is given
        if patch.get("scope") and patch["scope"] != rule.scope and "text_field" not in patch:
            merged["text_field"] = None

        try:
            definition = RuleCreate.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(
                "; ".join(err["msg"] for err in e.errors(include_url=False))
            ) from e
        self._enforce_guard(definition, restaurant_id, rule_id=rule.id)

        for key, value in self._columns(definition).items():
            setattr(rule, key, value)
        await self.db.flush()
        await self.db.refresh(rule)
        return rule

    async def delete_rule(self, restaurant_id: int, rule_id: int) -> None:
        """Delete a rule. Records it already categorized keep their category."""
        rule = await self.get_rule(restaurant_id, rule_id)
        await self.db.delete(rule)
        await self.db.flush()
        logger.info("rule_deleted", restaurant_id=restaurant_id, rule_id=rule_id)

    async def set_active(self, restaurant_id: int, rule_id: int, enabled: bool) -> CategorizationRule:
        rule = await self.get_rule(restaurant_id, rule_id)
        rule.is_active = enabled
        await self.db.flush()
        await self.db.refresh(rule)
        return rule

    async def set_auto_apply(self, restaurant_id: int, rule_id: int, enabled: bool) -> CategorizationRule:
        rule = await self.get_rule(restaurant_id, rule_id)
        rule.auto_apply = enabled
        await self.db.flush()
        await self.db.refresh(rule)
        return rule

    # ── Helpers ─────────────────────────────────────────

    def _enforce_guard(self, data: RuleCreate, restaurant_id: int, rule_id: int | None = None) -> None:
        violations = self.guard.check(data)
        if not violations:
            return
        first = violations[0]
        logger.info(
            "rule_rejected_by_guard",
            restaurant_id=restaurant_id,
            rule_id=rule_id,
            code=first.code,
            offending_value=first.offending_value,
        )
        raise RuleRejectedError(first.code, first.reason, first.offending_value)

    @staticmethod
    def _columns(data: RuleCreate) -> dict:
        columns = data.model_dump(exclude={"split_specs"})
        columns["split_specs"] = (
            [_spec_to_json(spec) for spec in data.split_specs] if data.split_specs else None
        )
        return columns
