"""
Library sections, canonical item order and keyboard navigation.

The canonical order is the single ordering shared by the entry grid, the
print sheet and next/previous navigation:

1. section rank in the count's `libraries_included` (unknown sections last)
2. item name, case-insensitive
3. raw item name, then item id (stable tie-break)
"""
import logging
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence
from uuid import UUID

from app.models.stock_count import CountItemStatus
from app.schemas.stock_count import CountItem

if TYPE_CHECKING:
    from app.services.stock_count.session_store import CountSessionStore

logger = logging.getLogger(__name__)


NEXT = 1
PREVIOUS = -1

LIBRARY_SUFFIX = "_library"

LIBRARY_DISPLAY_NAMES = {
    "ingredients": "Ingredients",
    "packaging": "Packaging",
    "foh": "FOH Items",
    "first_aid": "First Aid",
    "ppe": "PPE",
    "chemicals": "Chemicals",
    "disposables": "Disposables",
    "glassware": "Glassware",
    "drinks": "Drinks",
    "serving_equipment": "Serving Equipment",
}

# Spellings found in older counts
LIBRARY_ALIASES = {
    "firstaid": "first_aid",
    "servingequipment": "serving_equipment",
}


def normalize_library(tag: Optional[str]) -> Optional[str]:
    """'Ingredients_Library' -> 'ingredients'. Blank tags are None."""
    if tag is None:
        return None
    normalized = tag.strip().lower()
    if normalized.endswith(LIBRARY_SUFFIX):
        normalized = normalized[: -len(LIBRARY_SUFFIX)]
    if not normalized:
        return None
    return LIBRARY_ALIASES.get(normalized, normalized)


def section_display_name(tag: Optional[str]) -> str:
    normalized = normalize_library(tag)
    if normalized is None:
        return "Unknown"
    if normalized in LIBRARY_DISPLAY_NAMES:
        return LIBRARY_DISPLAY_NAMES[normalized]
    return normalized.replace("_", " ").title()


def section_ranks(libraries_included: Optional[Sequence[str]]) -> dict:
    """Map normalized section -> position of its first occurrence."""
    ranks = {}
    for tag in libraries_included or []:
        normalized = normalize_library(tag)
        if normalized is not None and normalized not in ranks:
            ranks[normalized] = len(ranks)
    return ranks


def canonical_order(
    items: Iterable[CountItem],
    libraries_included: Optional[Sequence[str]] = None,
) -> List[CountItem]:
    """Return items sorted in canonical order. Deterministic for equal names."""
    ranks = section_ranks(libraries_included)
    last = len(ranks)

    def sort_key(item: CountItem):
        section = normalize_library(item.library_type)
        name = item.item_name or ""
        return (ranks.get(section, last), name.casefold(), name, str(item.id))

    return sorted(items, key=sort_key)


class CountNavigator:
    """
    Next/previous navigation over the store's canonical order.

    While a section is selected, only items of that section are reachable.
    """

    def __init__(self, store: "CountSessionStore"):
        self.store = store
        self.section: Optional[str] = None

    def select_section(self, section: Optional[str]) -> None:
        self.section = normalize_library(section)

    def in_scope(self, item: CountItem, scope: Optional[str]) -> bool:
        if scope is None:
            return True
        return normalize_library(item.library_type) == scope

    def items_in_scope(self, scope: Optional[str] = None) -> List[CountItem]:
        normalized = normalize_library(scope)
        return [item for item in self.store.items if self.in_scope(item, normalized)]

    @property
    def view(self) -> List[CountItem]:
        """Items of the selected section (or all items) in canonical order."""
        return self.items_in_scope(self.section)

    def sections(self) -> List[str]:
        """Normalized sections present in the count, in canonical order."""
        seen = []
        for item in self.store.items:
            section = normalize_library(item.library_type)
            if section is not None and section not in seen:
                seen.append(section)
        return seen

    def next_index(self, current_index: int, direction: int = NEXT) -> Optional[int]:
        """Adjacent index within the current view, or None at either boundary."""
        if direction not in (NEXT, PREVIOUS):
            raise ValueError(f"direction must be {NEXT} or {PREVIOUS}, got {direction}")

        size = len(self.view)
        if current_index < 0 or current_index >= size:
            logger.warning(f"Navigation index {current_index} out of range for view of {size} items")
            return None

        target = current_index + direction
        if target < 0 or target >= size:
            return None
        return target

    def next_item(self, item_id: UUID, direction: int = NEXT) -> Optional[CountItem]:
        view = self.view
        for index, item in enumerate(view):
            if item.id == item_id:
                target = self.next_index(index, direction)
                return view[target] if target is not None else None
        return None

    def first_empty_item(self, scope: Optional[str] = None) -> Optional[CountItem]:
        """First item in scope that is neither counted nor holding a pending value."""
        for item in self.items_in_scope(scope):
            if item.status == CountItemStatus.COUNTED:
                continue
            if self.store.has_pending_value(item.id):
                continue
            return item
        return None
