from __future__ import annotations
import json
from dataclasses import replace
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from models.records import (
    CurrentValue,
    DeviceAttributes,
    DeviceRef,
    FieldDeclaration,
    Product,
    Semantic,
    ValueType,
)
from services.errors import NotFoundError
from settings import get_settings


class FieldDocument(BaseModel):
    name: str
    label: str = ""
    unit: str = ""
    value_type: ValueType = ValueType.numeric
    semantic: Optional[Semantic] = None


class ProductDocument(BaseModel):
    product_id: str
    name: str
    fields: List[FieldDocument] = Field(default_factory=list)


class MeasurementDocument(BaseModel):
    value: Any = None
    timestamp: datetime


class DeviceDocument(BaseModel):
    device_id: str
    name: str
    product_id: str
    online: bool = False
    last_heard: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    values: Dict[str, MeasurementDocument] = Field(default_factory=dict)


class WorkspaceDocument(BaseModel):
    workspace_id: str
    devices: List[DeviceDocument] = Field(default_factory=list)


class FleetDocument(BaseModel):
    """On-disk layout of a fleet snapshot."""

    products: List[ProductDocument] = Field(default_factory=list)
    workspaces: List[WorkspaceDocument] = Field(default_factory=list)


class InMemoryFleetStore:
    """Thread-safe device, measurement and product store kept in memory.

    Serves as the default backend behind the query engine. Mutating calls
    stand in for the external writers (provisioning, telemetry ingestion,
    tag edits and field administration) and rewrite the JSON snapshot when
    a persistence path is configured.
    """

    def __init__(self, name: str = "fleet", persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self.persistence_path = persistence_path
        self._products: Dict[str, Product] = {}
        self._workspaces: Dict[str, List[str]] = {}
        self._device_workspace: Dict[str, str] = {}
        self._devices: Dict[str, DeviceAttributes] = {}
        self._values: Dict[str, Dict[str, CurrentValue]] = {}
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    # Read interface

    def list_devices(self, workspace_id: str) -> List[DeviceRef]:
        with self._lock:
            device_ids = self._workspaces.get(workspace_id)
            if device_ids is None:
                raise NotFoundError(f"Workspace {workspace_id!r} not found.")
            return [DeviceRef(device_id=device_id, workspace_id=workspace_id) for device_id in device_ids]

    def get_device_attributes(self, device_id: str) -> DeviceAttributes:
        with self._lock:
            device = self._devices.get(device_id)
        if device is None:
            raise NotFoundError(f"Device {device_id!r} not found.")
        return device

    def get_current_value(self, device_id: str, field_name: str) -> Optional[CurrentValue]:
        with self._lock:
            return self._values.get(device_id, {}).get(field_name)

    def get_product_fields(self, product_id: str) -> List[FieldDeclaration]:
        with self._lock:
            product = self._products.get(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id!r} not found.")
        return list(product.fields)

    # Writers

    def put_product(self, product: Product) -> None:
        with self._lock:
            self._products[product.product_id] = product
            self._persist()

    def put_workspace(self, workspace_id: str) -> None:
        with self._lock:
            self._workspaces.setdefault(workspace_id, [])
            self._persist()

    def put_device(self, workspace_id: str, device: DeviceAttributes) -> None:
        with self._lock:
            self._put_device_locked(workspace_id, device)
            self._persist()

    def put_devices(self, workspace_id: str, devices: Iterable[DeviceAttributes]) -> None:
        with self._lock:
            self._workspaces.setdefault(workspace_id, [])
            for device in devices:
                self._put_device_locked(workspace_id, device)
            self._persist()

    def record_value(
        self,
        device_id: str,
        field_name: str,
        value: Any,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Store a telemetry sample; the device is marked online and heard."""
        recorded_at = timestamp or datetime.now(timezone.utc)
        with self._lock:
            device = self._require_device_locked(device_id)
            self._values.setdefault(device_id, {})[field_name] = CurrentValue(
                value=value, timestamp=recorded_at
            )
            last_heard = device.last_heard
            if last_heard is None or recorded_at > last_heard:
                last_heard = recorded_at
            self._devices[device_id] = replace(device, online=True, last_heard=last_heard)
            self._persist()

    def set_online(self, device_id: str, online: bool) -> None:
        with self._lock:
            device = self._require_device_locked(device_id)
            self._devices[device_id] = replace(device, online=online)
            self._persist()

    def set_tags(self, device_id: str, tags: Iterable[str]) -> None:
        with self._lock:
            device = self._require_device_locked(device_id)
            self._devices[device_id] = replace(device, tags=frozenset(tags))
            self._persist()

    def assign_semantic(
        self, product_id: str, field_name: str, semantic: Optional[Semantic]
    ) -> None:
        """Change which semantic a product field carries."""
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id!r} not found.")
            if not any(declaration.name == field_name for declaration in product.fields):
                raise NotFoundError(
                    f"Field {field_name!r} not declared on product {product_id!r}."
                )
            fields = tuple(
                replace(declaration, semantic=semantic)
                if declaration.name == field_name
                else declaration
                for declaration in product.fields
            )
            self._products[product_id] = replace(product, fields=fields)
            self._persist()

    def load_document(self, document: FleetDocument) -> None:
        with self._lock:
            self._apply_document(document)
            self._persist()

    def to_document(self) -> FleetDocument:
        with self._lock:
            return self._build_document()

    # Internals

    def _put_device_locked(self, workspace_id: str, device: DeviceAttributes) -> None:
        previous_workspace = self._device_workspace.get(device.device_id)
        if previous_workspace is not None and previous_workspace != workspace_id:
            self._workspaces[previous_workspace].remove(device.device_id)
        members = self._workspaces.setdefault(workspace_id, [])
        if device.device_id not in members:
            members.append(device.device_id)
        self._device_workspace[device.device_id] = workspace_id
        self._devices[device.device_id] = device

    def _require_device_locked(self, device_id: str) -> DeviceAttributes:
        device = self._devices.get(device_id)
        if device is None:
            raise NotFoundError(f"Device {device_id!r} not found.")
        return device

    def _apply_document(self, document: FleetDocument) -> None:
        for product_doc in document.products:
            self._products[product_doc.product_id] = Product(
                product_id=product_doc.product_id,
                name=product_doc.name,
                fields=tuple(
                    FieldDeclaration(
                        name=field_doc.name,
                        label=field_doc.label,
                        unit=field_doc.unit,
                        value_type=field_doc.value_type,
                        semantic=field_doc.semantic,
                    )
                    for field_doc in product_doc.fields
                ),
            )
        for workspace_doc in document.workspaces:
            self._workspaces.setdefault(workspace_doc.workspace_id, [])
            for device_doc in workspace_doc.devices:
                device = DeviceAttributes(
                    device_id=device_doc.device_id,
                    name=device_doc.name,
                    product_id=device_doc.product_id,
                    online=device_doc.online,
                    last_heard=device_doc.last_heard,
                    tags=frozenset(device_doc.tags),
                )
                self._put_device_locked(workspace_doc.workspace_id, device)
                self._values[device.device_id] = {
                    field_name: CurrentValue(value=sample.value, timestamp=sample.timestamp)
                    for field_name, sample in device_doc.values.items()
                }

    def _build_document(self) -> FleetDocument:
        products = [
            ProductDocument(
                product_id=product.product_id,
                name=product.name,
                fields=[
                    FieldDocument(
                        name=declaration.name,
                        label=declaration.label,
                        unit=declaration.unit,
                        value_type=declaration.value_type,
                        semantic=declaration.semantic,
                    )
                    for declaration in product.fields
                ],
            )
            for product in self._products.values()
        ]
        workspaces = []
        for workspace_id, device_ids in self._workspaces.items():
            devices = []
            for device_id in device_ids:
                device = self._devices[device_id]
                devices.append(
                    DeviceDocument(
                        device_id=device.device_id,
                        name=device.name,
                        product_id=device.product_id,
                        online=device.online,
                        last_heard=device.last_heard,
                        tags=sorted(device.tags),
                        values={
                            field_name: MeasurementDocument(
                                value=sample.value, timestamp=sample.timestamp
                            )
                            for field_name, sample in self._values.get(device_id, {}).items()
                        },
                    )
                )
            workspaces.append(WorkspaceDocument(workspace_id=workspace_id, devices=devices))
        return FleetDocument(products=products, workspaces=workspaces)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = self._build_document().model_dump(mode="json")
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            document = FleetDocument.model_validate(json.loads(raw))
        except (OSError, json.JSONDecodeError, ValidationError):
            document = FleetDocument()

        self._apply_document(document)


@lru_cache
def build_default_store(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> InMemoryFleetStore:
    settings = get_settings()
    snapshot_path = settings.snapshot_path if path is None else path
    persistence = Path(snapshot_path) if snapshot_path else None
    return InMemoryFleetStore(name=name or "fleet", persistence_path=persistence)
