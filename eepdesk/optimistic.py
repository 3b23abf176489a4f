"""
Optimistic row updates

A quick edit (task status, user role) is shown immediately and confirmed or
undone once the server answers:

    update = apply_optimistic(rows, lambda row: row["id"] == task_id, {"status": "Done"})
    try:
        saved = await api.update_task(task_id, {"status": "Done"})
    except EepDeskError:
        update.rollback()
        raise
    update.commit(saved)
"""

from copy import deepcopy
from typing import Any, Callable, Dict, List, Mapping, MutableSequence, Optional, Tuple

Row = Dict[str, Any]


class OptimisticUpdate:
    """Pending change to some rows; resolves exactly once"""

    def __init__(self, rows: MutableSequence[Row], originals: List[Tuple[int, Row]]):
        self._rows = rows
        self._originals = originals
        self.resolved = False

    @property
    def indexes(self) -> List[int]:
        return [index for index, _ in self._originals]

    def _resolve(self) -> None:
        if self.resolved:
            raise RuntimeError("Optimistic update already resolved")
        self.resolved = True

    def commit(self, server_row: Optional[Mapping[str, Any]] = None) -> None:
        """Keep the change, replacing the patched rows with the server's version"""
        self._resolve()
        if server_row is None:
            return
        for index in self.indexes:
            self._rows[index] = dict(server_row)

    def rollback(self) -> None:
        """Put back the rows as they were before the change"""
        self._resolve()
        for index, original in self._originals:
            self._rows[index] = original


def apply_optimistic(
    rows: MutableSequence[Row],
    match: Callable[[Row], bool],
    changes: Mapping[str, Any],
) -> OptimisticUpdate:
    """Patch every row matching `match` with `changes` right away"""
    originals: List[Tuple[int, Row]] = []
    for index, row in enumerate(rows):
        if match(row):
            originals.append((index, deepcopy(row)))
            rows[index] = {**row, **changes}
    return OptimisticUpdate(rows, originals)
