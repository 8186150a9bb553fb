"""
Count session store.

Holds the items of one stock count together with the edit buffer: raw text
typed by the counter that has not been saved yet. Each buffered value carries
a version number; a save only clears the buffer entry it actually wrote, so a
value typed while a save is in flight survives that save.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from app.config import settings
from app.models.stock_count import CountItemStatus
from app.schemas.stock_count import CommitResult, CountItem, CountItemWrite, FailedItem
from app.services.stock_count.navigation import canonical_order, normalize_library
from app.services.stock_count.persistence import CountItemSink
from app.services.stock_count.variance import compute_variance, format_quantity, parse_count_value

logger = logging.getLogger(__name__)


@dataclass
class PendingValue:
    raw: str
    version: int


class CountSessionStore:
    """Items and unsaved edits of one count session."""

    def __init__(
        self,
        count_id: UUID,
        items: Iterable,
        libraries_included: Optional[Sequence[str]] = None,
    ):
        self.count_id = count_id
        self.libraries_included: List[str] = list(libraries_included or [])
        self._items: Dict[UUID, CountItem] = {}
        self._order: List[UUID] = []
        self._buffer: Dict[UUID, PendingValue] = {}
        self._version = 0
        self.replace_items(items)

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------

    def replace_items(self, items: Iterable) -> None:
        """Load (or reload) the item catalogue. The edit buffer is kept."""
        loaded = [
            item if isinstance(item, CountItem) else CountItem.model_validate(item)
            for item in items
        ]
        self._items = {item.id: item for item in loaded}
        self._order = [item.id for item in canonical_order(loaded, self.libraries_included)]

    @property
    def items(self) -> List[CountItem]:
        """All items in canonical order."""
        return [self._items[item_id] for item_id in self._order]

    def get_item(self, item_id: UUID) -> Optional[CountItem]:
        return self._items.get(item_id)

    def __len__(self) -> int:
        return len(self._items)

    # ------------------------------------------------------------------
    # Edit buffer
    # ------------------------------------------------------------------

    def set_pending_value(self, item_id: UUID, raw: Optional[str]) -> None:
        """Buffer raw input for an item. Not validated; replaces any earlier value."""
        self._version += 1
        self._buffer[item_id] = PendingValue(raw="" if raw is None else str(raw), version=self._version)

    def get_pending_value(self, item_id: UUID) -> Optional[str]:
        entry = self._buffer.get(item_id)
        return entry.raw if entry is not None else None

    def has_pending_value(self, item_id: UUID) -> bool:
        """True when the buffer holds non-blank text for the item."""
        entry = self._buffer.get(item_id)
        return entry is not None and entry.raw.strip() != ""

    def pending_ids(self, section: Optional[str] = None) -> List[UUID]:
        """Ids with a buffered value, in canonical order, optionally limited to a section."""
        scope = normalize_library(section)
        ids = []
        for item_id in self._order:
            if item_id not in self._buffer:
                continue
            if scope is not None and normalize_library(self._items[item_id].library_type) != scope:
                continue
            ids.append(item_id)
        return ids

    def get_effective_value(self, item_id: UUID) -> str:
        """Pending text if any, else the saved quantity as plain text, else ''."""
        entry = self._buffer.get(item_id)
        if entry is not None:
            return entry.raw
        item = self._items.get(item_id)
        if item is None or item.counted_quantity is None:
            return ""
        return format_quantity(item.counted_quantity)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def commit(
        self,
        item_ids: Iterable[UUID],
        sink: CountItemSink,
        max_concurrency: Optional[int] = None,
    ) -> CommitResult:
        """
        Persist buffered values for the given ids.

        Ids that are unknown, have no buffered value, or whose value is empty or
        not a finite number are skipped. All writes run concurrently. A failed
        write keeps its buffered value and is reported in `failed`.
        """
        result = CommitResult()
        planned: List[Tuple[CountItem, CountItemWrite, int]] = []
        seen = set()

        for item_id in item_ids:
            if item_id in seen:
                continue
            seen.add(item_id)

            item = self._items.get(item_id)
            entry = self._buffer.get(item_id)
            if item is None or entry is None:
                result.skipped_ids.append(item_id)
                continue

            counted = parse_count_value(entry.raw)
            if counted is None:
                result.skipped_ids.append(item_id)
                continue

            variance = compute_variance(counted, item.theoretical_closing, item.unit_cost)
            write = CountItemWrite(
                item_id=item.id,
                counted_quantity=counted,
                variance_quantity=variance.quantity,
                variance_percentage=variance.percentage,
                variance_value=variance.value,
                status=CountItemStatus.COUNTED,
                counted_at=datetime.now(timezone.utc),
            )
            planned.append((item, write, entry.version))

        if not planned:
            return result

        semaphore = asyncio.Semaphore(max(1, max_concurrency or settings.STOCK_COUNT_SAVE_CONCURRENCY))

        async def _write(item: CountItem, write: CountItemWrite):
            async with semaphore:
                try:
                    return await sink.write(item, write), None
                except Exception as e:
                    logger.error(f"Failed to save count for '{item.item_name}' ({item.id}): {e}")
                    return None, e

        outcomes = await asyncio.gather(*(_write(item, write) for item, write, _ in planned))

        for (item, write, version), (persisted, error) in zip(planned, outcomes):
            if error is not None:
                result.failed.append(FailedItem(
                    item_id=item.id,
                    item_name=item.item_name,
                    error=str(error) or type(error).__name__,
                ))
                continue

            persisted = persisted or write
            self._apply_write(persisted)
            result.saved_ids.append(item.id)
            if persisted.variance_mismatch:
                result.variance_mismatch_ids.append(item.id)

            entry = self._buffer.get(item.id)
            if entry is not None and entry.version == version:
                del self._buffer[item.id]
            else:
                result.superseded_ids.append(item.id)

        logger.info(
            f"Count {self.count_id}: saved {result.saved_count}, failed {len(result.failed)}, "
            f"skipped {len(result.skipped_ids)}"
        )
        return result

    def _apply_write(self, write: CountItemWrite) -> None:
        item = self._items.get(write.item_id)
        if item is None:
            return
        self._items[write.item_id] = item.model_copy(update={
            "counted_quantity": write.counted_quantity,
            "variance_quantity": write.variance_quantity,
            "variance_percentage": write.variance_percentage,
            "variance_value": write.variance_value,
            "status": write.status,
            "counted_at": write.counted_at,
        })
