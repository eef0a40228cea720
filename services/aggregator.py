"""Reduction and fleet-wide aggregation of semantic values."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from models.records import Reduction, Semantic

if TYPE_CHECKING:
    from services.pipeline import FilteredResultSet


def _mean(values: List[float]) -> float:
    return sum(values) / len(values)


_REDUCERS: Dict[Reduction, Callable[[List[float]], float]] = {
    Reduction.AVG: _mean,
    Reduction.SUM: sum,
    Reduction.MAX: max,
    Reduction.MIN: min,
}


def reduce_values(values: Iterable[Optional[float]], reduction: Reduction) -> Optional[float]:
    """Collapse values with ``reduction``, ignoring ``None``.

    Returns ``None`` when nothing is left to reduce; an empty input never
    becomes zero.
    """
    present = [value for value in values if value is not None]
    if not present:
        return None
    return float(_REDUCERS[reduction](present))


@dataclass(frozen=True)
class AggregateValue:
    """Fleet-wide value of one semantic over a filtered device set."""

    semantic: Semantic
    reduction: Reduction
    value: Optional[float]
    device_count: int = 0


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation."""

    def aggregate(
        self,
        result_set: FilteredResultSet,
        semantic: Semantic,
        reduction: Reduction,
    ) -> AggregateValue:
        per_device = result_set.values_for(semantic, result_set.device_reduction(semantic))
        present = [value for value in per_device if value is not None]
        return AggregateValue(
            semantic=semantic,
            reduction=reduction,
            value=reduce_values(present, reduction),
            device_count=len(present),
        )
