"""
Batch Save Coordinator.

Saves buffered values per section, for the whole count, or for a single item
(blur / Enter). Calling a save again without new edits performs no writes.
"""
import logging
from typing import Optional
from uuid import UUID

from app.schemas.stock_count import BatchSaveResult, CommitResult
from app.services.stock_count.navigation import CountNavigator, normalize_library
from app.services.stock_count.persistence import CountItemSink
from app.services.stock_count.session_store import CountSessionStore

logger = logging.getLogger(__name__)


def failure_message(commit: CommitResult) -> Optional[str]:
    """User-facing summary of a partial failure, naming the failed items."""
    if not commit.failed:
        return None
    names = ", ".join(failed.item_name for failed in commit.failed)
    return (
        f"Saved {commit.saved_count} item(s). "
        f"Failed to save {len(commit.failed)} item(s): {names}"
    )


class BatchSaveCoordinator:
    """Drives commits of a CountSessionStore through a sink."""

    def __init__(
        self,
        store: CountSessionStore,
        sink: CountItemSink,
        navigator: Optional[CountNavigator] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.store = store
        self.sink = sink
        self.navigator = navigator or CountNavigator(store)
        self.max_concurrency = max_concurrency

    async def save_section(self, section: Optional[str], advance: bool = False) -> BatchSaveResult:
        """Save every buffered value of one library section."""
        scope = normalize_library(section)
        commit = await self._commit(self.store.pending_ids(scope))

        next_item_id = None
        if advance:
            next_item = self.navigator.first_empty_item(scope)
            next_item_id = next_item.id if next_item is not None else None

        logger.debug(f"Section '{scope}' saved {commit.saved_count} item(s)")
        return self._to_result(commit, next_item_id)

    async def save_all(self, advance: bool = False) -> BatchSaveResult:
        """Save every buffered value of the count."""
        commit = await self._commit(self.store.pending_ids())

        next_item_id = None
        if advance:
            next_item = self.navigator.first_empty_item()
            next_item_id = next_item.id if next_item is not None else None

        return self._to_result(commit, next_item_id)

    async def save_item(self, item_id: UUID) -> BatchSaveResult:
        """Save a single item, e.g. when its input loses focus."""
        return self._to_result(await self._commit([item_id]))

    async def _commit(self, item_ids) -> CommitResult:
        if not item_ids:
            return CommitResult()
        return await self.store.commit(item_ids, self.sink, self.max_concurrency)

    def _to_result(self, commit: CommitResult, next_item_id: Optional[UUID] = None) -> BatchSaveResult:
        return BatchSaveResult(
            saved_count=commit.saved_count,
            saved_ids=commit.saved_ids,
            failed=commit.failed,
            skipped_ids=commit.skipped_ids,
            superseded_ids=commit.superseded_ids,
            variance_mismatch_ids=commit.variance_mismatch_ids,
            next_item_id=next_item_id,
            message=failure_message(commit),
        )
