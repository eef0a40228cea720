"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, FrozenSet, Optional, Tuple


class Semantic(str, Enum):
    """Normalized measurement categories, independent of raw field naming."""

    TEMPERATURE = "TEMPERATURE"
    HUMIDITY = "HUMIDITY"
    CO2 = "CO2"
    BATTERY = "BATTERY"
    POWER = "POWER"
    ENERGY_CONSUMPTION = "ENERGY_CONSUMPTION"
    SOIL_MOISTURE = "SOIL_MOISTURE"
    WATER_CONSUMPTION = "WATER_CONSUMPTION"
    WATER_DEPTH = "WATER_DEPTH"
    FILL_LEVEL = "FILL_LEVEL"
    AIR_POLLUTION = "AIR_POLLUTION"
    AMBIENT_LIGHT = "AMBIENT_LIGHT"
    LOUDNESS = "LOUDNESS"
    PEOPLE_COUNT = "PEOPLE_COUNT"
    SIGNAL = "SIGNAL"
    VOC = "VOC"
    LOCATION = "LOCATION"

    @property
    def is_numeric(self) -> bool:
        return self is not Semantic.LOCATION


class Reduction(str, Enum):
    """How several values collapse into one, per device or across a fleet."""

    AVG = "AVG"
    SUM = "SUM"
    MAX = "MAX"
    MIN = "MIN"


class ValueType(str, Enum):
    numeric = "numeric"
    string = "string"
    location = "location"


@dataclass(frozen=True, slots=True)
class FieldDeclaration:
    """One raw data channel exposed by a product."""

    name: str
    label: str = ""
    unit: str = ""
    value_type: ValueType = ValueType.numeric
    semantic: Optional[Semantic] = None


@dataclass(frozen=True, slots=True)
class Product:
    product_id: str
    name: str
    fields: Tuple[FieldDeclaration, ...] = ()


@dataclass(frozen=True, slots=True)
class DeviceRef:
    device_id: str
    workspace_id: str


@dataclass(frozen=True, slots=True)
class DeviceAttributes:
    """Attributes of a managed device as seen at query time."""

    device_id: str
    name: str
    product_id: str
    online: bool = False
    last_heard: Optional[datetime] = None
    tags: FrozenSet[str] = frozenset()


@dataclass(frozen=True, slots=True)
class CurrentValue:
    """Latest raw value recorded for a (device, field) pair."""

    value: Any
    timestamp: datetime
