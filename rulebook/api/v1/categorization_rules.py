"""Categorization rules API routes."""

from typing import Literal

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rulebook.api.deps import get_db, get_managed_restaurant, get_restaurant
from rulebook.models.restaurant import Restaurant
from rulebook.schemas.categorization_rule import (
    BulkApplyRequest,
    BulkApplyResult,
    GuardReport,
    RuleCreate,
    RuleResponse,
    RuleUpdate,
    ToggleRequest,
)
from rulebook.services.categorization_service import CategorizationService
from rulebook.services.rule_service import RuleService

router = APIRouter()


@router.get("", response_model=list[RuleResponse])
async def list_rules(
    source: Literal["bank", "pos"] | None = None,
    restaurant: Restaurant = Depends(get_restaurant),
    db: AsyncSession = Depends(get_db),
):
    """List rules in precedence order, optionally only those reaching a source (bank/pos)."""
    return await RuleService(db).list_rules(restaurant.id, source)


@router.post("", response_model=RuleResponse, status_code=201)
async def create_rule(
    data: RuleCreate,
    restaurant: Restaurant = Depends(get_managed_restaurant),
    db: AsyncSession = Depends(get_db),
):
    """Create a rule. Overbroad definitions are rejected with 422 {code, reason, offending_value}."""
    return await RuleService(db).create_rule(restaurant.id, data)


@router.post("/validate", response_model=GuardReport)
async def validate_rule(
    data: RuleCreate,
    restaurant: Restaurant = Depends(get_restaurant),
    db: AsyncSession = Depends(get_db),
):
    """Advisory safety check, run before the user commits a rule."""
    violations = RuleService(db).check_rule(data)
    return {
        "valid": not violations,
        "violations": [
            {"code": v.code, "reason": v.reason, "offending_value": v.offending_value}
            for v in violations
        ],
    }


@router.post("/apply", response_model=BulkApplyResult)
async def apply_rules(
    data: BulkApplyRequest,
    restaurant: Restaurant = Depends(get_managed_restaurant),
    db: AsyncSession = Depends(get_db),
):
    """Backfill: apply active rules to a bounded batch of uncategorized records."""
    summaries = await CategorizationService(db).bulk_apply_scopes(
        restaurant.id, data.scope, data.batch_limit
    )
    return {
        "summaries": summaries,
        "applied_count": sum(s["applied_count"] for s in summaries),
        "total_considered": sum(s["total_considered"] for s in summaries),
    }


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: int,
    restaurant: Restaurant = Depends(get_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return await RuleService(db).get_rule(restaurant.id, rule_id)


@router.patch("/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: int,
    data: RuleUpdate,
    restaurant: Restaurant = Depends(get_managed_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return await RuleService(db).update_rule(restaurant.id, rule_id, data)


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: int,
    restaurant: Restaurant = Depends(get_managed_restaurant),
    db: AsyncSession = Depends(get_db),
):
    """Delete a rule. Already categorized records are left as they are."""
    await RuleService(db).delete_rule(restaurant.id, rule_id)


@router.put("/{rule_id}/active", response_model=RuleResponse)
async def set_rule_active(
    rule_id: int,
    data: ToggleRequest,
    restaurant: Restaurant = Depends(get_managed_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return await RuleService(db).set_active(restaurant.id, rule_id, data.enabled)


@router.put("/{rule_id}/auto-apply", response_model=RuleResponse)
async def set_rule_auto_apply(
    rule_id: int,
    data: ToggleRequest,
    restaurant: Restaurant = Depends(get_managed_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return await RuleService(db).set_auto_apply(restaurant.id, rule_id, data.enabled)
