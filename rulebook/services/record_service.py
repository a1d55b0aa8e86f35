"""Record store: insertion (with the auto-apply hook) and the read-only
categorization view used by downstream consumers."""

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from rulebook.core.exceptions import NotFoundError
from rulebook.engine.vocab import RecordState
from rulebook.models.base import utcnow
from rulebook.models.record import Record, SplitAllocation
from rulebook.schemas.record import RecordCreate
from rulebook.services.categorization_service import CategorizationService

logger = structlog.get_logger()


class RecordService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_record(self, restaurant_id: int, data: RecordCreate) -> dict:
        """Insert a normalized record, then give auto-apply rules a chance at it."""
        values = data.model_dump(exclude_none=True)
        record = Record(
            restaurant_id=restaurant_id,
            categorization_state=RecordState.UNCATEGORIZED,
            **values,
        )
        if record.occurred_at is None:
            record.occurred_at = utcnow()
        self.db.add(record)
        await self.db.flush()
        await self.db.refresh(record)

        await CategorizationService(self.db).auto_apply(record)
        await self.db.refresh(record)
        return await self.to_view(record)

    async def get_record(self, restaurant_id: int, record_id: int) -> Record:
        result = await self.db.execute(
            select(Record).where(Record.id == record_id, Record.restaurant_id == restaurant_id)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise NotFoundError("Record")
        return record

    async def list_records(
        self,
        restaurant_id: int,
        source: str | None = None,
        state: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        query = select(Record).where(Record.restaurant_id == restaurant_id)
        if source:
            query = query.where(Record.source == source)
        if state:
            query = query.where(Record.categorization_state == state)
        query = query.order_by(Record.occurred_at.desc(), Record.id.desc()).offset(offset).limit(limit)

        result = await self.db.execute(query)
        return [await self.to_view(record) for record in result.scalars().all()]

    async def list_allocations(self, record_id: int) -> list[SplitAllocation]:
        result = await self.db.execute(
            select(SplitAllocation)
            .where(SplitAllocation.record_id == record_id)
            .order_by(SplitAllocation.position.asc(), SplitAllocation.id.asc())
        )
        return list(result.scalars().all())

    async def override_category(self, restaurant_id: int, record_id: int, category_id: str) -> dict:
        """Manual categorization. The engine never touches the record again."""
        record = await self.get_record(restaurant_id, record_id)
        await self.db.execute(delete(SplitAllocation).where(SplitAllocation.record_id == record.id))
        record.category_id = category_id
        record.categorization_state = RecordState.MANUALLY_OVERRIDDEN
        record.rule_id = None
        record.categorized_at = utcnow()
        await self.db.flush()
        await self.db.refresh(record)

        logger.info("record_manually_categorized", record_id=record.id, category_id=category_id)
        return await self.to_view(record)

    async def to_view(self, record: Record) -> dict:
        allocations = []
        if record.categorization_state == RecordState.SPLIT:
            allocations = await self.list_allocations(record.id)
        return {
            "id": record.id,
            "restaurant_id": record.restaurant_id,
            "source": record.source,
            "external_id": record.external_id,
            "description": record.description,
            "item_name": record.item_name,
            "amount": record.amount,
            "currency": record.currency,
            "supplier_id": record.supplier_id,
            "pos_category": record.pos_category,
            "occurred_at": record.occurred_at,
            "categorization_state": record.categorization_state,
            "category_id": record.category_id,
            "rule_id": record.rule_id,
            "categorized_at": record.categorized_at,
            "allocations": allocations,
            "created_at": record.created_at,
        }
