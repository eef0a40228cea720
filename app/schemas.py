"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.records import Reduction, Semantic, ValueType
from services.pagination import DeviceOrder


class RangeInput(BaseModel):
    """Inclusive numeric range."""

    start: float
    end: float


class SemanticFilterInput(BaseModel):
    """Numeric predicate on one semantic; all supplied operators must hold."""

    gt: Optional[float] = None
    gte: Optional[float] = None
    lt: Optional[float] = None
    lte: Optional[float] = None
    range: Optional[RangeInput] = None
    aggregation: Reduction = Field(
        default=Reduction.AVG,
        description="How a device's fields sharing the semantic are combined.",
    )


class AggregateInput(BaseModel):
    alias: str = Field(..., min_length=1)
    semantic: str
    aggregation: Reduction = Reduction.AVG


class FilterDevicesRequest(BaseModel):
    """Filter, aggregate and page the devices of a workspace."""

    tags_contains: Optional[List[str]] = Field(
        default=None, description="Devices must carry every listed tag."
    )
    tags_overlap: Optional[List[str]] = Field(
        default=None, description="Devices must carry at least one listed tag."
    )
    online: Optional[bool] = None
    search: Optional[str] = Field(
        default=None, description="Case-insensitive substring of the device name."
    )
    all: bool = Field(
        default=False, description="Allow an unpaginated device list without filters."
    )
    page: Optional[int] = None
    page_size: Optional[int] = None
    order: DeviceOrder = DeviceOrder.name_asc
    include_devices: bool = False
    device_semantics: List[str] = Field(
        default_factory=list,
        description="Extra semantics whose per-device values are returned with each device.",
    )
    filters: Dict[str, SemanticFilterInput] = Field(
        default_factory=dict,
        description="Semantic filters keyed by semantic name, e.g. 'temperature' or 'CO2'.",
    )
    aggregates: List[AggregateInput] = Field(default_factory=list)
    timeout_seconds: Optional[float] = None


class DeviceSummary(BaseModel):
    device_id: str
    name: str
    product_id: str
    online: bool
    last_heard: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    values: Dict[str, Optional[float]] = Field(default_factory=dict)


class AggregateResult(BaseModel):
    """Fleet-wide value; ``value`` is null when no device reports the semantic."""

    semantic: Semantic
    aggregation: Reduction
    value: Optional[float] = None
    device_count: int = Field(..., ge=0)


class FilterDevicesResponse(BaseModel):
    total: int = Field(..., ge=0, description="Matching devices across every page.")
    page: int
    page_size: Optional[int] = None
    devices: Optional[List[DeviceSummary]] = None
    aggregates: Dict[str, AggregateResult] = Field(default_factory=dict)


class FieldReadingOut(BaseModel):
    field_name: str
    label: str = ""
    unit: str = ""
    value: Any = None
    timestamp: Optional[datetime] = None


class SemanticFieldResponse(BaseModel):
    device_id: str
    semantic: Semantic
    aggregation: Reduction
    value: Optional[float] = None
    fields: List[FieldReadingOut] = Field(default_factory=list)


class FieldDeclarationOut(BaseModel):
    name: str
    label: str = ""
    unit: str = ""
    value_type: ValueType
    semantic: Optional[Semantic] = None


class ProductFieldsResponse(BaseModel):
    product_id: str
    fields: List[FieldDeclarationOut] = Field(default_factory=list)


class SemanticInfo(BaseModel):
    name: Semantic
    numeric: bool
