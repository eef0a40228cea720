from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, Optional

import pytest

from datastore.fleet_store import InMemoryFleetStore
from models.records import DeviceAttributes, FieldDeclaration, Product, Semantic, ValueType
from services.aggregator import Aggregator
from services.catalog import FieldCatalog
from services.query import QueryService

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

CLIMATE = Product(
    product_id="climate",
    name="Climate sensor",
    fields=(
        FieldDeclaration(name="temp", label="Temperature", unit="°C", semantic=Semantic.TEMPERATURE),
        FieldDeclaration(name="co2", label="CO2", unit="ppm", semantic=Semantic.CO2),
        FieldDeclaration(name="hum", label="Humidity", unit="%", semantic=Semantic.HUMIDITY),
        FieldDeclaration(name="firmware", label="Firmware", value_type=ValueType.string),
    ),
)

DUAL_PROBE = Product(
    product_id="dual-probe",
    name="Dual probe thermometer",
    fields=(
        FieldDeclaration(name="probe_1", label="Probe 1", unit="°C", semantic=Semantic.TEMPERATURE),
        FieldDeclaration(name="probe_2", label="Probe 2", unit="°C", semantic=Semantic.TEMPERATURE),
    ),
)

TRACKER = Product(
    product_id="tracker",
    name="Asset tracker",
    fields=(
        FieldDeclaration(name="battery", label="Battery", unit="%", semantic=Semantic.BATTERY),
        FieldDeclaration(
            name="gps",
            label="Position",
            value_type=ValueType.location,
            semantic=Semantic.LOCATION,
        ),
    ),
)


def make_device(
    device_id: str,
    product_id: str = "climate",
    name: Optional[str] = None,
    online: bool = True,
    tags: Iterable[str] = (),
    last_heard: Optional[datetime] = BASE_TIME,
) -> DeviceAttributes:
    return DeviceAttributes(
        device_id=device_id,
        name=name or device_id,
        product_id=product_id,
        online=online,
        last_heard=last_heard,
        tags=frozenset(tags),
    )


def add_device(
    store: InMemoryFleetStore,
    workspace_id: str,
    device: DeviceAttributes,
    **values: object,
) -> None:
    store.put_device(workspace_id, device)
    for field_name, value in values.items():
        store.record_value(device.device_id, field_name, value, timestamp=BASE_TIME - timedelta(minutes=1))
    # Keep the declared status; record_value marks devices online.
    store.set_online(device.device_id, device.online)


@pytest.fixture
def store() -> InMemoryFleetStore:
    """Office workspace: three climate sensors, one dual probe, one empty sensor."""
    fleet = InMemoryFleetStore(name="test")
    for product in (CLIMATE, DUAL_PROBE, TRACKER):
        fleet.put_product(product)

    add_device(fleet, "office", make_device("dev-a", name="Meeting Room", tags={"floor-1", "indoor"}), temp=23.9, co2=479)
    add_device(fleet, "office", make_device("dev-b", name="Kitchen", tags={"floor-1"}), temp=23.1, co2=430)
    add_device(fleet, "office", make_device("dev-c", name="Lobby", tags={"floor-2", "indoor"}, online=False), temp=23.6, co2=604)
    add_device(
        fleet,
        "office",
        make_device("dev-d", product_id="dual-probe", name="Server Rack"),
        probe_1=10.0,
        probe_2=20.0,
    )
    add_device(fleet, "office", make_device("dev-e", name="Storage", last_heard=None))
    fleet.put_workspace("empty")
    return fleet


@pytest.fixture
def service(store: InMemoryFleetStore) -> Iterator[QueryService]:
    query_service = QueryService(
        store=store,
        catalog=FieldCatalog(store, ttl_seconds=30.0),
        aggregator=Aggregator(),
        workers=4,
        max_page_size=100,
        timeout_seconds=5.0,
    )
    try:
        yield query_service
    finally:
        query_service.shutdown()
