"""
Per-session feature breaker.

Some hosted databases lag behind the current schema (for example the legacy
`is_counted` item flag). When a write
fails because such a column is missing, the caller trips the matching feature
and subsequent writes in the same session skip it.

A breaker is created per request (see `app.api.deps.get_feature_breaker`)
and injected into the services that need it. It is never shared globally.
"""
import logging
from typing import Optional, Set

logger = logging.getLogger(__name__)


# Known optional schema features
IS_COUNTED_COLUMN = "stock_count_items.is_counted"


def is_missing_column_error(exc: BaseException, column: str) -> bool:
    """True when a database error reports that `column` does not exist."""
    message = str(getattr(exc, "orig", None) or exc).lower()
    if column.lower() not in message:
        return False
    return "does not exist" in message or "no such column" in message or "has no column" in message


class FeatureBreaker:
    """Remembers which optional schema features are unavailable."""

    def __init__(self):
        self._tripped: Set[str] = set()

    def allows(self, feature: str) -> bool:
        return feature not in self._tripped

    def trip(self, feature: str, reason: Optional[str] = None) -> None:
        if feature in self._tripped:
            return
        self._tripped.add(feature)
        logger.warning(f"Feature '{feature}' disabled for this session: {reason or 'unavailable'}")
