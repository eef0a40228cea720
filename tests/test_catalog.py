from __future__ import annotations

import pytest

from datastore.fleet_store import InMemoryFleetStore
from models.records import Semantic
from services.catalog import FieldCatalog
from services.errors import NotFoundError, UpstreamFailure

from conftest import CLIMATE


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class CountingStore(InMemoryFleetStore):
    def __init__(self) -> None:
        super().__init__(name="counting")
        self.lookups = 0

    def get_product_fields(self, product_id):
        self.lookups += 1
        return super().get_product_fields(product_id)


class BrokenStore:
    def get_product_fields(self, product_id):
        raise ConnectionError("catalog offline")


def test_field_names_by_semantic(store: InMemoryFleetStore) -> None:
    catalog = FieldCatalog(store)

    assert catalog.field_names("climate", Semantic.TEMPERATURE) == ("temp",)
    assert catalog.field_names("dual-probe", Semantic.TEMPERATURE) == ("probe_1", "probe_2")
    assert [field.name for field in catalog.fields("climate")] == ["temp", "co2", "hum", "firmware"]


def test_missing_semantic_is_an_empty_result(store: InMemoryFleetStore) -> None:
    catalog = FieldCatalog(store)

    assert catalog.field_names("climate", Semantic.BATTERY) == ()
    assert catalog.declarations_for("tracker", Semantic.CO2) == ()


def test_unknown_product_raises_not_found(store: InMemoryFleetStore) -> None:
    catalog = FieldCatalog(store)

    with pytest.raises(NotFoundError):
        catalog.fields("no-such-product")


def test_store_errors_become_upstream_failures() -> None:
    catalog = FieldCatalog(BrokenStore())

    with pytest.raises(UpstreamFailure) as exc_info:
        catalog.field_names("climate", Semantic.TEMPERATURE)
    assert isinstance(exc_info.value.__cause__, ConnectionError)


def test_entries_are_cached_within_the_staleness_window() -> None:
    counting = CountingStore()
    counting.put_product(CLIMATE)
    clock = FakeClock()
    catalog = FieldCatalog(counting, ttl_seconds=10.0, clock=clock)

    catalog.fields("climate")
    clock.now = 9.9
    catalog.field_names("climate", Semantic.CO2)
    assert counting.lookups == 1

    clock.now = 10.0
    catalog.fields("climate")
    assert counting.lookups == 2


def test_semantic_reassignment_is_picked_up_after_expiry(store: InMemoryFleetStore) -> None:
    clock = FakeClock()
    catalog = FieldCatalog(store, ttl_seconds=5.0, clock=clock)
    assert catalog.field_names("climate", Semantic.HUMIDITY) == ("hum",)

    store.assign_semantic("climate", "hum", Semantic.TEMPERATURE)

    assert catalog.field_names("climate", Semantic.HUMIDITY) == ("hum",)
    clock.now = 6.0
    assert catalog.field_names("climate", Semantic.HUMIDITY) == ()
    assert catalog.field_names("climate", Semantic.TEMPERATURE) == ("temp", "hum")


def test_invalidate_forces_reload(store: InMemoryFleetStore) -> None:
    catalog = FieldCatalog(store, ttl_seconds=60.0)
    catalog.fields("climate")
    store.assign_semantic("climate", "co2", None)

    catalog.invalidate("climate")

    assert catalog.field_names("climate", Semantic.CO2) == ()


def test_zero_ttl_disables_caching(store: InMemoryFleetStore) -> None:
    catalog = FieldCatalog(store, ttl_seconds=0)
    catalog.fields("climate")
    store.assign_semantic("climate", "co2", None)

    assert catalog.field_names("climate", Semantic.CO2) == ()



def test_pinned_view_keeps_the_first_entry_for_the_whole_query(store: InMemoryFleetStore) -> None:
    clock = FakeClock()
    catalog = FieldCatalog(store, ttl_seconds=30.0, clock=clock)
    pinned = catalog.pinned()

    assert pinned.field_names("climate", Semantic.TEMPERATURE) == ("temp",)
    store.assign_semantic("climate", "hum", Semantic.TEMPERATURE)
    clock.now = 31.0

    assert pinned.field_names("climate", Semantic.TEMPERATURE) == ("temp",)
    assert catalog.field_names("climate", Semantic.TEMPERATURE) == ("temp", "hum")
    assert catalog.pinned().field_names("climate", Semantic.TEMPERATURE) == ("temp", "hum")


def test_pinned_view_loads_each_product_once() -> None:
    counting = CountingStore()
    counting.put_product(CLIMATE)
    pinned = FieldCatalog(counting, ttl_seconds=0).pinned()

    pinned.fields("climate")
    pinned.field_names("climate", Semantic.CO2)
    pinned.declarations_for("climate", Semantic.HUMIDITY)

    assert counting.lookups == 1
