"""Shared API dependencies."""

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rulebook.core.database import get_db
from rulebook.core.exceptions import ForbiddenError, NotFoundError
from rulebook.core.security import get_current_user
from rulebook.models.restaurant import Restaurant, RestaurantMember
from rulebook.models.user import User

RULE_MANAGER_ROLES = ("owner", "manager")

__all__ = ["get_db", "get_current_user", "get_restaurant", "get_managed_restaurant"]


async def get_restaurant(
    restaurant_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Restaurant:
    """Any member (or an admin) may read a restaurant's rules and records."""
    restaurant = await db.get(Restaurant, restaurant_id)
    if restaurant is None:
        raise NotFoundError("Restaurant")
    if current_user.is_admin:
        return restaurant
    if await _member_role(db, restaurant_id, current_user.id) is None:
        raise ForbiddenError()
    return restaurant


async def get_managed_restaurant(
    restaurant_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Restaurant:
    """Owners and managers may change rules and run bulk application."""
    restaurant = await get_restaurant(restaurant_id, current_user, db)
    if current_user.is_admin:
        return restaurant
    role = await _member_role(db, restaurant_id, current_user.id)
    if role not in RULE_MANAGER_ROLES:
        raise ForbiddenError("Only owners and managers can manage categorization rules")
    return restaurant


async def _member_role(db: AsyncSession, restaurant_id: int, user_id: int) -> str | None:
    result = await db.execute(
        select(RestaurantMember.role).where(
            RestaurantMember.restaurant_id == restaurant_id,
            RestaurantMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()
