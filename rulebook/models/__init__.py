"""SQLAlchemy models."""

from rulebook.models.base import Base
from rulebook.models.categorization_rule import CategorizationRule
from rulebook.models.record import Record, SplitAllocation
from rulebook.models.restaurant import Restaurant, RestaurantMember
from rulebook.models.user import User

__all__ = [
    "Base",
    "User",
    "Restaurant",
    "RestaurantMember",
    "CategorizationRule",
    "Record",
    "SplitAllocation",
]
