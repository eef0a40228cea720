"""Per-device resolution of semantic values from raw fields."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Tuple

from datastore.interfaces import MeasurementStore
from models.records import DeviceAttributes, Reduction, Semantic
from services.aggregator import reduce_values
from services.catalog import CatalogLookups
from services.errors import EngineError, QueryValidationError, UpstreamFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldReading:
    field_name: str
    label: str
    unit: str
    value: Any
    timestamp: Optional[datetime]


@dataclass(frozen=True)
class SemanticResolution:
    """Resolved semantic value of one device with the fields behind it."""

    device_id: str
    semantic: Semantic
    reduction: Reduction
    value: Optional[float]
    fields: Tuple[FieldReading, ...] = ()


def as_number(raw: Any) -> Optional[float]:
    """Return ``raw`` as a float, or ``None`` when it is not a usable number."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    try:
        number = float(raw)
    except OverflowError:
        return None
    if not math.isfinite(number):
        return None
    return number


class MeasurementResolver:
    """Reduces every field of a device sharing a semantic to one value."""

    def __init__(self, catalog: CatalogLookups, measurements: MeasurementStore) -> None:
        self.catalog = catalog
        self.measurements = measurements

    def resolve(
        self,
        device: DeviceAttributes,
        semantic: Semantic,
        reduction: Reduction = Reduction.AVG,
    ) -> Optional[float]:
        if not semantic.is_numeric:
            raise QueryValidationError(f"Semantic {semantic.value} is not numeric.")

        field_names = self.catalog.field_names(device.product_id, semantic)
        if not field_names:
            return None

        values = [as_number(self._read(device.device_id, name)) for name in field_names]
        # A single field is returned as-is; reducing one value is the identity.
        return reduce_values(values, reduction)

    def describe(
        self,
        device: DeviceAttributes,
        semantic: Semantic,
        reduction: Reduction = Reduction.AVG,
    ) -> SemanticResolution:
        declarations = self.catalog.declarations_for(device.product_id, semantic)
        readings: List[FieldReading] = []
        for declaration in declarations:
            sample = self._read_sample(device.device_id, declaration.name)
            readings.append(
                FieldReading(
                    field_name=declaration.name,
                    label=declaration.label,
                    unit=declaration.unit,
                    value=sample.value if sample is not None else None,
                    timestamp=sample.timestamp if sample is not None else None,
                )
            )

        value: Optional[float] = None
        if semantic.is_numeric:
            value = reduce_values((as_number(reading.value) for reading in readings), reduction)

        return SemanticResolution(
            device_id=device.device_id,
            semantic=semantic,
            reduction=reduction,
            value=value,
            fields=tuple(readings),
        )

    def _read(self, device_id: str, field_name: str) -> Any:
        sample = self._read_sample(device_id, field_name)
        return sample.value if sample is not None else None

    def _read_sample(self, device_id: str, field_name: str):
        try:
            return self.measurements.get_current_value(device_id, field_name)
        except EngineError:
            raise
        except Exception as exc:
            logger.warning(
                "Measurement store read failed",
                extra={"device_id": device_id, "reason": str(exc)},
            )
            raise UpstreamFailure(
                f"Measurement store failed for device {device_id!r}."
            ) from exc
