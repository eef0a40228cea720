"""Semantic filter terms and their evaluation against devices."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple, Union

from models.records import DeviceAttributes, Reduction, Semantic
from services.errors import QueryValidationError
from services.resolver import MeasurementResolver

ResolvedValues = Dict[Tuple[Semantic, Reduction], Optional[float]]

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def parse_semantic(name: Union[str, Semantic]) -> Semantic:
    """Accept ``co2``, ``CO2``, ``energyConsumption`` or ``energy_consumption``."""
    if isinstance(name, Semantic):
        return name
    candidate = _CAMEL_BOUNDARY.sub("_", name.strip()).replace("-", "_").upper()
    try:
        return Semantic(candidate)
    except ValueError:
        raise QueryValidationError(f"Unknown semantic {name!r}.") from None


def parse_numeric_semantic(name: Union[str, Semantic]) -> Semantic:
    semantic = parse_semantic(name)
    if not semantic.is_numeric:
        raise QueryValidationError(
            f"Semantic {semantic.value} is not numeric and cannot be filtered or aggregated."
        )
    return semantic


def parse_reduction(name: Union[str, Reduction, None]) -> Reduction:
    if name is None:
        return Reduction.AVG
    if isinstance(name, Reduction):
        return name
    try:
        return Reduction(name.strip().upper())
    except ValueError:
        raise QueryValidationError(f"Unknown aggregation {name!r}.") from None


@dataclass(frozen=True)
class SemanticFilterTerm:
    """Numeric predicate on one semantic; operators combine with AND."""

    semantic: Semantic
    reduction: Reduction = Reduction.AVG
    gt: Optional[float] = None
    gte: Optional[float] = None
    lt: Optional[float] = None
    lte: Optional[float] = None
    range: Optional[Tuple[float, float]] = None

    def matches(self, value: Optional[float]) -> bool:
        # A device that does not report the semantic never matches.
        if value is None:
            return False
        if self.gt is not None and not value > self.gt:
            return False
        if self.gte is not None and not value >= self.gte:
            return False
        if self.lt is not None and not value < self.lt:
            return False
        if self.lte is not None and not value <= self.lte:
            return False
        if self.range is not None:
            start, end = self.range
            if not start <= value <= end:
                return False
        return True


def _is_finite(bound: float) -> bool:
    try:
        return math.isfinite(bound)
    except OverflowError:
        return False


def build_term(
    semantic: Union[str, Semantic],
    gt: Optional[float] = None,
    gte: Optional[float] = None,
    lt: Optional[float] = None,
    lte: Optional[float] = None,
    range: Optional[Tuple[float, float]] = None,
    aggregation: Union[str, Reduction, None] = None,
) -> SemanticFilterTerm:
    """Validate raw filter input and build a term."""
    parsed = parse_numeric_semantic(semantic)
    bounds = {"gt": gt, "gte": gte, "lt": lt, "lte": lte}
    if range is not None:
        start, end = range
        bounds.update({"range start": start, "range end": end})
    for name, bound in bounds.items():
        if bound is not None and not _is_finite(bound):
            raise QueryValidationError(f"Filter {name} for {parsed.value} must be a finite number.")
    if range is not None:
        if start > end:
            raise QueryValidationError(
                f"Range for {parsed.value} has start {start} greater than end {end}."
            )
        range = (float(start), float(end))
    return SemanticFilterTerm(
        semantic=parsed,
        reduction=parse_reduction(aggregation),
        gt=gt,
        gte=gte,
        lt=lt,
        lte=lte,
        range=range,
    )


class SemanticFilterEvaluator:
    """Checks a device against a conjunction of semantic terms."""

    def __init__(self, resolver: MeasurementResolver) -> None:
        self.resolver = resolver

    def evaluate(
        self,
        device: DeviceAttributes,
        terms: Iterable[SemanticFilterTerm],
    ) -> Tuple[bool, ResolvedValues]:
        resolved: ResolvedValues = {}
        for term in terms:
            key = (term.semantic, term.reduction)
            if key not in resolved:
                resolved[key] = self.resolver.resolve(device, term.semantic, term.reduction)
            if not term.matches(resolved[key]):
                return False, resolved
        return True, resolved
