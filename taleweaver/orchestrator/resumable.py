"""Resumable batch execution over ordered units of work.

Process:
1. Order units by their positive ``order`` (others are dropped)
2. Index already-completed result records by both unit id and order
3. For each unit: skip if completed, otherwise process it and append the
   success or failure record
4. Checkpoint the full record list after every processed unit

Re-running a batch over the same records only processes units that have no
completed record yet, and leaves completed records untouched.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, Protocol, TypeVar

from taleweaver.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Unit(Protocol):
    id: str
    order: int


U = TypeVar("U", bound=Unit)

Record = dict[str, Any]


def ordered_units(units: Iterable[U]) -> list[U]:
    """Stable-sort units by ``order`` and drop those without a positive order."""
    return sorted((u for u in units if u.order > 0), key=lambda u: u.order)


class CompletionIndex:
    """Lookup of completed result records by unit id and by order.

    A record is complete when its ``output_field`` is non-empty.
    """

    def __init__(self, records: Iterable[Record], id_field: str, output_field: str) -> None:
        self.output_field = output_field
        self.by_id: dict[str, Record] = {}
        self.by_order: dict[int, Record] = {}
        for record in records:
            if not record.get(output_field):
                continue
            if record.get(id_field):
                self.by_id[str(record[id_field])] = record
            try:
                order = int(record.get("order") or 0)
            except (TypeError, ValueError):
                order = 0
            if order > 0:
                self.by_order[order] = record

    def lookup(self, unit: Unit) -> Optional[Record]:
        return self.by_id.get(unit.id) or self.by_order.get(unit.order)

    def latest(self) -> Optional[Record]:
        """Completed record with the highest order, if any."""
        if not self.by_order:
            return None
        return self.by_order[max(self.by_order)]


@dataclass
class BatchSummary:
    succeeded: int
    failed: int
    total: int

    def as_dict(self) -> dict[str, int]:
        return {"succeeded": self.succeeded, "failed": self.failed, "total": self.total}


class ResumableBatch(Generic[U]):
    """Runs units in order against prior results, checkpointing after each.

    Args:
        units: Units of work, in any order
        records: Result records from previous runs (copied, not mutated)
        id_field: Record field holding the unit id
        output_field: Record field that is non-empty on success
        checkpoint: Called with the full record list after every unit
    """

    def __init__(
        self,
        units: Iterable[U],
        records: Iterable[Record],
        *,
        id_field: str,
        output_field: str,
        checkpoint: Callable[[list[Record]], None],
    ) -> None:
        self.units = ordered_units(units)
        self.records: list[Record] = [dict(r) for r in records]
        self.id_field = id_field
        self.output_field = output_field
        self.index = CompletionIndex(self.records, id_field, output_field)
        self._checkpoint = checkpoint

    @property
    def total(self) -> int:
        return len(self.units)

    @property
    def completed(self) -> int:
        return sum(1 for u in self.units if self.index.lookup(u) is not None)

    def _drop_stale_failures(self, unit: U) -> None:
        self.records = [
            r
            for r in self.records
            if r.get(self.output_field)
            or not (str(r.get(self.id_field) or "") == unit.id or r.get("order") == unit.order)
        ]

    async def run(
        self,
        process: Callable[[U], Awaitable[Record]],
        on_failure: Callable[[U, Exception], Record],
        on_skip: Optional[Callable[[U, Record], None]] = None,
        on_unit_done: Optional[Callable[[U, Record, BatchSummary], None]] = None,
    ) -> BatchSummary:
        """Process every not-yet-completed unit.

        Args:
            process: Produces the success record for a unit
            on_failure: Builds the failure record for a unit and its error
            on_skip: Called for already-completed units with their record
            on_unit_done: Called after each processed unit is checkpointed

        Returns:
            Summary counting previously completed units as succeeded

        Raises:
            ConfigurationError: Aborts the batch; misconfiguration is not a
                per-unit failure
        """
        succeeded = 0
        failed = 0

        for unit in self.units:
            done = self.index.lookup(unit)
            if done is not None:
                succeeded += 1
                if on_skip is not None:
                    on_skip(unit, done)
                continue

            try:
                record = await process(unit)
                succeeded += 1
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning(f"Unit {unit.order} ({unit.id}) failed: {type(e).__name__}: {e}")
                record = on_failure(unit, e)
                failed += 1

            self._drop_stale_failures(unit)
            self.records.append(record)
            self._checkpoint(list(self.records))

            if on_unit_done is not None:
                on_unit_done(unit, record, BatchSummary(succeeded, failed, self.total))

        return BatchSummary(succeeded=succeeded, failed=failed, total=self.total)
