"""Read interfaces the engine consumes from externally owned stores."""

from __future__ import annotations

from typing import List, Optional, Protocol

from models.records import CurrentValue, DeviceAttributes, DeviceRef, FieldDeclaration


class DeviceStore(Protocol):

    def list_devices(self, workspace_id: str) -> List[DeviceRef]:
        ...

    def get_device_attributes(self, device_id: str) -> DeviceAttributes:
        ...


class MeasurementStore(Protocol):

    def get_current_value(self, device_id: str, field_name: str) -> Optional[CurrentValue]:
        ...


class ProductStore(Protocol):

    def get_product_fields(self, product_id: str) -> List[FieldDeclaration]:
        ...


class FleetStore(DeviceStore, MeasurementStore, ProductStore, Protocol):
    """A single backend serving devices, measurements and products."""
