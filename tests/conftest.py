"""Shared test fixtures."""

import os

# Must be set before rulebook.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

import itertools  # noqa: E402
from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from rulebook.api.deps import get_current_user, get_db  # noqa: E402
from rulebook.core.database import build_engine, build_session_factory  # noqa: E402
from rulebook.main import app  # noqa: E402
from rulebook.models import (  # noqa: E402
    Base,
    CategorizationRule,
    Record,
    Restaurant,
    RestaurantMember,
    User,
)
from rulebook.models.base import utcnow  # noqa: E402

_ids = itertools.count(1)


@pytest.fixture
def make_rule():
    """Build a transient rule; unspecified conditions stay None (wildcards)."""
    base_time = utcnow()

    def _make(**overrides) -> CategorizationRule:
        n = next(_ids)
        values = {
            "id": n,
            "restaurant_id": 1,
            "name": f"rule-{n}",
            "scope": "bank",
            "priority": 0,
            "is_active": True,
            "auto_apply": False,
            "category_id": "cat-default",
            "apply_count": 0,
            "created_at": base_time + timedelta(seconds=n),
        }
        values.update(overrides)
        return CategorizationRule(**values)

    return _make


@pytest.fixture
def make_record():
    def _make(**overrides) -> Record:
        values = {
            "id": next(_ids),
            "restaurant_id": 1,
            "source": "bank",
            "description": "",
            "amount": -1000,
            "categorization_state": "uncategorized",
        }
        values.update(overrides)
        return Record(**values)

    return _make


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rulebook.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def restaurant(db) -> Restaurant:
    restaurant = Restaurant(name="Bistro Test")
    db.add(restaurant)
    await db.commit()
    return restaurant


async def _add_user(db, restaurant, keycloak_id: str, role: str | None) -> User:
    user = User(keycloak_id=keycloak_id, email=f"{keycloak_id}@example.com", full_name=keycloak_id)
    db.add(user)
    await db.flush()
    if role:
        db.add(RestaurantMember(restaurant_id=restaurant.id, user_id=user.id, role=role))
    await db.commit()
    return user


@pytest.fixture
async def owner(db, restaurant) -> User:
    return await _add_user(db, restaurant, "owner-1", "owner")


@pytest.fixture
async def staff(db, restaurant) -> User:
    return await _add_user(db, restaurant, "staff-1", "staff")


@pytest.fixture
async def outsider(db, restaurant) -> User:
    return await _add_user(db, restaurant, "outsider-1", None)


@pytest.fixture
async def add_rule(db, restaurant):
    """Persist a rule for the test restaurant."""

    async def _add(**overrides) -> CategorizationRule:
        values = {
            "restaurant_id": restaurant.id,
            "name": "rule",
            "scope": "bank",
            "priority": 0,
            "is_active": True,
            "auto_apply": False,
            "apply_count": 0,
        }
        values.update(overrides)
        if "split_specs" not in values and "category_id" not in values:
            values["category_id"] = "cat-default"
        rule = CategorizationRule(**values)
        db.add(rule)
        await db.flush()
        return rule

    return _add


@pytest.fixture
async def add_record(db, restaurant):
    """Persist an uncategorized record for the test restaurant (no auto-apply)."""

    async def _add(**overrides) -> Record:
        values = {
            "restaurant_id": restaurant.id,
            "source": "bank",
            "amount": -1000,
            "categorization_state": "uncategorized",
        }
        values.update(overrides)
        record = Record(**values)
        db.add(record)
        await db.flush()
        return record

    return _add


@pytest.fixture
def as_user(session_factory):
    """Point the app at the test database and authenticate as ``user``."""

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def _as(user: User) -> None:
        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_current_user] = lambda: user

    yield _as
    app.dependency_overrides.clear()


@pytest.fixture
async def client():
    """Async test client for the FastAPI app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
