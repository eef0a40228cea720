"""Unit tests for the in-memory fleet store."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from datastore.fleet_store import InMemoryFleetStore
from models.records import Semantic
from services.errors import NotFoundError

from conftest import CLIMATE, make_device


def test_list_devices_preserves_provisioning_order() -> None:
    store = InMemoryFleetStore()
    store.put_product(CLIMATE)
    store.put_devices("ws", [make_device("b"), make_device("a")])

    assert [ref.device_id for ref in store.list_devices("ws")] == ["b", "a"]
    assert {ref.workspace_id for ref in store.list_devices("ws")} == {"ws"}


def test_unknown_ids_raise_not_found() -> None:
    store = InMemoryFleetStore()

    with pytest.raises(NotFoundError):
        store.list_devices("ws")
    with pytest.raises(NotFoundError):
        store.get_device_attributes("device")
    with pytest.raises(NotFoundError):
        store.get_product_fields("product")
    with pytest.raises(NotFoundError):
        store.record_value("device", "temp", 1.0)


def test_missing_value_is_none() -> None:
    store = InMemoryFleetStore()
    store.put_device("ws", make_device("a"))

    assert store.get_current_value("a", "temp") is None


def test_record_value_marks_device_heard() -> None:
    store = InMemoryFleetStore()
    store.put_device("ws", make_device("a", online=False, last_heard=None))
    heard_at = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)

    store.record_value("a", "temp", 21.5, timestamp=heard_at)

    device = store.get_device_attributes("a")
    assert device.online is True
    assert device.last_heard == heard_at
    sample = store.get_current_value("a", "temp")
    assert sample is not None
    assert sample.value == 21.5
    assert sample.timestamp == heard_at


def test_moving_a_device_between_workspaces() -> None:
    store = InMemoryFleetStore()
    store.put_device("ws-1", make_device("a"))
    store.put_device("ws-2", make_device("a"))

    assert store.list_devices("ws-1") == []
    assert [ref.device_id for ref in store.list_devices("ws-2")] == ["a"]


def test_assign_semantic_updates_the_product() -> None:
    store = InMemoryFleetStore()
    store.put_product(CLIMATE)

    store.assign_semantic("climate", "firmware", Semantic.SIGNAL)

    fields = {field.name: field.semantic for field in store.get_product_fields("climate")}
    assert fields["firmware"] is Semantic.SIGNAL
    with pytest.raises(NotFoundError):
        store.assign_semantic("climate", "nope", None)


def test_snapshot_persists_and_reloads(tmp_path) -> None:
    path = tmp_path / "fleet.json"
    store = InMemoryFleetStore(persistence_path=path)
    store.put_product(CLIMATE)
    store.put_device("ws", make_device("a", tags={"indoor"}))
    store.record_value("a", "temp", 22.0)

    payload = json.loads(path.read_text())
    assert payload["workspaces"][0]["devices"][0]["values"]["temp"]["value"] == 22.0

    reloaded = InMemoryFleetStore(persistence_path=path)
    assert reloaded.get_device_attributes("a") == store.get_device_attributes("a")
    assert reloaded.get_product_fields("climate") == store.get_product_fields("climate")
    assert reloaded.get_current_value("a", "temp") == store.get_current_value("a", "temp")


def test_corrupt_snapshot_starts_empty(tmp_path) -> None:
    path = tmp_path / "fleet.json"
    path.write_text("{not json")

    store = InMemoryFleetStore(persistence_path=path)

    with pytest.raises(NotFoundError):
        store.list_devices("ws")
