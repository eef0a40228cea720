"""Combines device predicates and semantic terms into one filtered set."""

from __future__ import annotations

from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from models.records import DeviceAttributes, Reduction, Semantic
from services.deadline import Deadline, run_parallel
from services.filters import ResolvedValues, SemanticFilterEvaluator, SemanticFilterTerm

SemanticKey = Tuple[Semantic, Reduction]


@dataclass(frozen=True)
class DevicePredicate:
    """Non-semantic device criteria; every set criterion must hold."""

    tags_contains: Optional[FrozenSet[str]] = None
    tags_overlap: Optional[FrozenSet[str]] = None
    online: Optional[bool] = None
    search: Optional[str] = None

    def is_empty(self) -> bool:
        return (
            not self.tags_contains
            and not self.tags_overlap
            and self.online is None
            and not self.search
        )

    def matches(self, device: DeviceAttributes) -> bool:
        if self.tags_contains and not self.tags_contains <= device.tags:
            return False
        if self.tags_overlap and not self.tags_overlap & device.tags:
            return False
        if self.online is not None and device.online != self.online:
            return False
        if self.search and self.search.casefold() not in device.name.casefold():
            return False
        return True


@dataclass
class FilteredResultSet:
    """Matching devices plus every per-device value resolved while filtering.

    Counts, aggregates and pages of a single query are all derived from one
    instance so they cannot disagree.
    """

    devices: List[DeviceAttributes]
    values: Dict[SemanticKey, Dict[str, Optional[float]]] = field(default_factory=dict)
    term_reductions: Dict[Semantic, Reduction] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.devices)

    def device_reduction(self, semantic: Semantic) -> Reduction:
        """Per-device reduction for ``semantic``: the filter's, else AVG."""
        return self.term_reductions.get(semantic, Reduction.AVG)

    def has_values(self, semantic: Semantic, reduction: Reduction) -> bool:
        return (semantic, reduction) in self.values

    def values_for(self, semantic: Semantic, reduction: Reduction) -> List[Optional[float]]:
        resolved = self.values.get((semantic, reduction))
        if resolved is None:
            raise LookupError(f"{semantic.value}/{reduction.value} was not resolved for this result set.")
        return [resolved.get(device.device_id) for device in self.devices]

    def value_of(
        self, device_id: str, semantic: Semantic, reduction: Reduction
    ) -> Optional[float]:
        return self.values.get((semantic, reduction), {}).get(device_id)


class DeviceFilterPipeline:

    def __init__(
        self,
        evaluator: SemanticFilterEvaluator,
        executor: Optional[Executor] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.evaluator = evaluator
        self.executor = executor
        self.max_workers = max_workers

    def run(
        self,
        devices: Sequence[DeviceAttributes],
        predicate: DevicePredicate,
        terms: Sequence[SemanticFilterTerm],
        deadline: Deadline,
    ) -> FilteredResultSet:
        candidates = [device for device in devices if predicate.matches(device)]
        result_set = FilteredResultSet(
            devices=[],
            values={(term.semantic, term.reduction): {} for term in terms},
            term_reductions={term.semantic: term.reduction for term in terms},
        )
        if not terms:
            result_set.devices = candidates
            return result_set

        outcomes: List[Tuple[bool, ResolvedValues]] = run_parallel(
            self.executor,
            lambda device: self.evaluator.evaluate(device, terms),
            candidates,
            deadline,
            self.max_workers,
        )
        for device, (matched, resolved) in zip(candidates, outcomes):
            if not matched:
                continue
            result_set.devices.append(device)
            for key, value in resolved.items():
                result_set.values[key][device.device_id] = value
        return result_set

    def ensure(
        self,
        result_set: FilteredResultSet,
        semantic: Semantic,
        reduction: Reduction,
        deadline: Deadline,
    ) -> None:
        """Resolve ``semantic`` for every matching device not resolved yet."""
        if result_set.has_values(semantic, reduction):
            return
        resolver = self.evaluator.resolver
        resolved = run_parallel(
            self.executor,
            lambda device: resolver.resolve(device, semantic, reduction),
            result_set.devices,
            deadline,
            self.max_workers,
        )
        result_set.values[(semantic, reduction)] = {
            device.device_id: value for device, value in zip(result_set.devices, resolved)
        }
