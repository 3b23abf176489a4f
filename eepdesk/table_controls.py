"""
Table Controls - sort / filter / search / page state for list views

One instance backs one listing (students, tasks, ...). State only changes
through the methods below, and every change that alters the result set
(sort, filters) puts the view back on page 1 so it never lands past the
last page.

Usage:
    controls = TableControls(SortConfig("dueDate"), {"status": "", "priority": "High"})
    controls.handle_sort("dueDate")          # -> dueDate desc
    controls.handle_filter_change("status", "Done")
    controls.api_query_string
    # 'page=1&ordering=-due_date&priority=High&status=Done'
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

from eepdesk.case_converter import camel_to_snake

# Page size of every paginated endpoint (fixed on the server too)
PAGE_SIZE = 15

INACTIVE_FILTER_VALUES = frozenset({"", "all", "All"})

# Logical sort keys that map to a different remote field
ORDERING_ALIASES: Dict[str, str] = {
    "studentName": "student__first_name",
}

# Logical sort keys whose remote field sorts in the opposite direction
# (ascending age == descending date of birth)
INVERTED_ORDERING: Dict[str, str] = {
    "age": "date_of_birth",
}


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class SortConfig:
    """Active sort column and direction"""
    key: Optional[str] = None
    order: SortOrder = SortOrder.ASC

    def __post_init__(self):
        if self.key is not None and not isinstance(self.key, str):
            object.__setattr__(self, "key", str(self.key))
        if not isinstance(self.order, SortOrder):
            object.__setattr__(self, "order", SortOrder(self.order))

    def toggled(self, key: str) -> "SortConfig":
        """Same key flips the order, a new key starts ascending"""
        key = str(key)
        if key == self.key:
            order = SortOrder.DESC if self.order == SortOrder.ASC else SortOrder.ASC
            return replace(self, order=order)
        return SortConfig(key=key, order=SortOrder.ASC)

    def to_ordering(self) -> Optional[str]:
        """Remote `ordering` parameter for this sort, or None when unsorted"""
        if not self.key:
            return None

        descending = self.order == SortOrder.DESC
        if self.key in INVERTED_ORDERING:
            field = INVERTED_ORDERING[self.key]
            descending = not descending
        elif self.key in ORDERING_ALIASES:
            field = ORDERING_ALIASES[self.key]
        else:
            field = camel_to_snake(self.key)

        return f"-{field}" if descending else field


def is_active_filter(value: Any) -> bool:
    """A filter value that should be sent to the server"""
    return value is not None and str(value) not in INACTIVE_FILTER_VALUES


def prune_filters(values: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Drop inactive entries; keys and values become strings"""
    if not values:
        return {}
    return {str(name): str(value) for name, value in values.items() if is_active_filter(value)}


class TableControls:
    """
    Sort, filter, search and page state for one remote, paginated list.

    `api_query_string` is derived on every read, so it always reflects the
    current state and identical state always yields the identical string.
    """

    def __init__(
        self,
        initial_sort: Union[SortConfig, Tuple[str, str], None] = None,
        initial_filters: Optional[Mapping[str, Any]] = None,
        page_size: int = PAGE_SIZE,
    ):
        if isinstance(initial_sort, tuple):
            initial_sort = SortConfig(*initial_sort)
        self._sort = initial_sort or SortConfig()
        self._filters: Dict[str, str] = prune_filters(initial_filters)
        self._search_term = ""
        self._current_page = 1
        self.page_size = page_size

    # ==================== State ====================

    @property
    def sort_config(self) -> SortConfig:
        return self._sort

    @property
    def filters(self) -> Dict[str, str]:
        """Active filters (a copy; mutate through the handlers)"""
        return dict(self._filters)

    @property
    def search_term(self) -> str:
        return self._search_term

    @property
    def current_page(self) -> int:
        return self._current_page

    # ==================== Handlers ====================

    def handle_sort(self, key: str) -> None:
        self._sort = self._sort.toggled(key)
        self._current_page = 1

    def set_sort(self, key: str, order: Union[SortOrder, str] = SortOrder.ASC) -> None:
        """Sort by `key` in an explicit direction"""
        self._sort = SortConfig(key=key, order=order)
        self._current_page = 1

    def set_search_term(self, term: Optional[str]) -> None:
        """Replace the free-text search. Does not touch the page."""
        self._search_term = "" if term is None else str(term)

    def handle_filter_change(self, name: str, value: Any) -> None:
        name = str(name)
        if is_active_filter(value):
            self._filters[name] = str(value)
        else:
            self._filters.pop(name, None)
        self._current_page = 1

    def apply_filters(self, values: Optional[Mapping[str, Any]]) -> None:
        """Replace every filter at once"""
        self._filters = prune_filters(values)
        self._current_page = 1

    def clear_filters(self) -> None:
        self._filters = {}
        self._current_page = 1

    def set_current_page(self, page: Any) -> None:
        try:
            page = int(page)
        except (TypeError, ValueError):
            page = 1
        self._current_page = max(1, page)

    # ==================== Derived ====================

    def query_params(self) -> List[Tuple[str, str]]:
        """Ordered query parameters: page, ordering, search, then filters"""
        params = [("page", str(self._current_page))]

        ordering = self._sort.to_ordering()
        if ordering:
            params.append(("ordering", ordering))

        if self._search_term:
            params.append(("search", self._search_term))

        for name, value in self._filters.items():
            if is_active_filter(value):
                params.append((name, value))

        return params

    @property
    def api_query_string(self) -> str:
        return urlencode(self.query_params())

    def total_pages(self, count: int) -> int:
        """Number of pages for `count` results (at least 1)"""
        if count <= 0:
            return 1
        return math.ceil(count / self.page_size)

    def __repr__(self) -> str:
        return f"TableControls({self.api_query_string!r})"
