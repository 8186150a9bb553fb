"""
Persistence sinks for counted items.

A sink persists one item write and returns the values actually stored.
`SqlCountItemSink` opens its own session per write, so concurrent writes of
one commit never share an AsyncSession.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.circuit_breaker import FeatureBreaker, IS_COUNTED_COLUMN, is_missing_column_error
from app.models.stock_count import StockCountItem
from app.schemas.stock_count import CountItem, CountItemWrite
from app.services.stock_count.variance import compute_variance, variance_mismatches

logger = logging.getLogger(__name__)


class CountItemSink(ABC):
    """Abstract destination for counted item writes."""

    @abstractmethod
    async def write(self, item: CountItem, data: CountItemWrite) -> CountItemWrite:
        """Persist one item. Returns the persisted values; raises on failure."""
        pass


class SqlCountItemSink(CountItemSink):
    """
    Writes counted items to `stock_count_items`.

    The expected closing and unit cost are reloaded from the database and the
    variance is recomputed from them. Client values that differ are logged
    and listed in the returned `variance_mismatch`. If the hosted schema lacks
    the legacy `is_counted` column, the breaker is tripped and later writes
    skip that column.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        breaker: Optional[FeatureBreaker] = None,
        count_id: Optional[UUID] = None,
    ):
        self.session_factory = session_factory
        self.breaker = breaker or FeatureBreaker()
        self.count_id = count_id

    async def write(self, item: CountItem, data: CountItemWrite) -> CountItemWrite:
        async with self.session_factory() as session:
            query = select(
                StockCountItem.stock_count_id,
                StockCountItem.theoretical_closing,
                StockCountItem.unit_cost,
            ).where(StockCountItem.id == data.item_id)
            if self.count_id is not None:
                query = query.where(StockCountItem.stock_count_id == self.count_id)

            result = await session.execute(query)
            row = result.one_or_none()
            if row is None:
                raise LookupError(f"Count item {data.item_id} not found")

            variance = compute_variance(data.counted_quantity, row.theoretical_closing, row.unit_cost)
            mismatches = variance_mismatches(data, variance)
            if mismatches:
                logger.warning(
                    f"Variance mismatch for item {data.item_id} ({item.item_name}): "
                    f"{', '.join(mismatches)} differ from stored expected values; using recomputed values"
                )

            persisted = data.model_copy(update={
                "variance_quantity": variance.quantity,
                "variance_percentage": variance.percentage,
                "variance_value": variance.value,
                "variance_mismatch": mismatches,
            })

            values = {
                "counted_quantity": persisted.counted_quantity,
                "variance_quantity": persisted.variance_quantity,
                "variance_percentage": persisted.variance_percentage,
                "variance_value": persisted.variance_value,
                "status": persisted.status.value,
                "counted_at": persisted.counted_at,
            }
            if self.breaker.allows(IS_COUNTED_COLUMN):
                values["is_counted"] = True

            try:
                await self._update(session, data.item_id, values)
            except DBAPIError as e:
                await session.rollback()
                if "is_counted" not in values or not is_missing_column_error(e, "is_counted"):
                    logger.error(f"Failed to save count item {data.item_id}: {e}")
                    raise
                self.breaker.trip(IS_COUNTED_COLUMN, "column is_counted does not exist")
                values.pop("is_counted")
                await self._update(session, data.item_id, values)

            return persisted

    async def _update(self, session: AsyncSession, item_id: UUID, values: dict) -> None:
        await session.execute(
            update(StockCountItem)
            .where(StockCountItem.id == item_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
