from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from datastore.fleet_store import InMemoryFleetStore
from models.records import Reduction, Semantic
from services.catalog import FieldCatalog
from services.deadline import Deadline
from services.filters import SemanticFilterEvaluator, build_term
from services.pipeline import DeviceFilterPipeline, DevicePredicate
from services.resolver import MeasurementResolver

from conftest import make_device


def _devices(store: InMemoryFleetStore):
    return [store.get_device_attributes(ref.device_id) for ref in store.list_devices("office")]


@pytest.fixture
def pipeline(store: InMemoryFleetStore):
    evaluator = SemanticFilterEvaluator(MeasurementResolver(FieldCatalog(store), store))
    with ThreadPoolExecutor(max_workers=2) as executor:
        yield DeviceFilterPipeline(evaluator, executor)


def test_tags_contains_requires_every_tag() -> None:
    predicate = DevicePredicate(tags_contains=frozenset({"floor-1", "indoor"}))

    assert predicate.matches(make_device("x", tags={"floor-1", "indoor", "east"}))
    assert not predicate.matches(make_device("y", tags={"floor-1"}))


def test_tags_overlap_requires_any_tag() -> None:
    predicate = DevicePredicate(tags_overlap=frozenset({"floor-1", "floor-2"}))

    assert predicate.matches(make_device("x", tags={"floor-2"}))
    assert not predicate.matches(make_device("y", tags={"roof"}))


def test_tags_are_case_sensitive() -> None:
    predicate = DevicePredicate(tags_contains=frozenset({"Indoor"}))

    assert not predicate.matches(make_device("x", tags={"indoor"}))


def test_online_and_search() -> None:
    predicate = DevicePredicate(online=False, search="LOB")

    assert predicate.matches(make_device("x", name="Main lobby", online=False))
    assert not predicate.matches(make_device("y", name="Main lobby", online=True))
    assert not predicate.matches(make_device("z", name="Kitchen", online=False))


def test_empty_predicate() -> None:
    assert DevicePredicate().is_empty()
    assert not DevicePredicate(online=True).is_empty()
    assert DevicePredicate().matches(make_device("x"))


def test_run_combines_predicate_and_terms(store: InMemoryFleetStore, pipeline: DeviceFilterPipeline) -> None:
    result_set = pipeline.run(
        _devices(store),
        DevicePredicate(tags_overlap=frozenset({"indoor"})),
        [build_term("temperature", gt=23.5)],
        Deadline(5.0),
    )

    assert [device.device_id for device in result_set.devices] == ["dev-a", "dev-c"]
    assert result_set.total == 2
    assert result_set.values_for(Semantic.TEMPERATURE, Reduction.AVG) == [23.9, 23.6]


def test_run_without_terms_keeps_every_candidate(store: InMemoryFleetStore, pipeline: DeviceFilterPipeline) -> None:
    result_set = pipeline.run(_devices(store), DevicePredicate(online=True), [], Deadline(5.0))

    assert {device.device_id for device in result_set.devices} == {"dev-a", "dev-b", "dev-d", "dev-e"}
    assert result_set.values == {}


def test_term_reduction_is_recorded(store: InMemoryFleetStore, pipeline: DeviceFilterPipeline) -> None:
    result_set = pipeline.run(
        _devices(store),
        DevicePredicate(),
        [build_term("temperature", gte=20, aggregation="MAX")],
        Deadline(5.0),
    )

    assert [device.device_id for device in result_set.devices] == ["dev-a", "dev-b", "dev-c", "dev-d"]
    assert result_set.device_reduction(Semantic.TEMPERATURE) is Reduction.MAX
    assert result_set.device_reduction(Semantic.CO2) is Reduction.AVG
    assert result_set.value_of("dev-d", Semantic.TEMPERATURE, Reduction.MAX) == 20.0


def test_ensure_resolves_other_semantics_over_the_matching_set(
    store: InMemoryFleetStore, pipeline: DeviceFilterPipeline
) -> None:
    result_set = pipeline.run(
        _devices(store),
        DevicePredicate(),
        [build_term("temperature", gt=0)],
        Deadline(5.0),
    )

    pipeline.ensure(result_set, Semantic.CO2, Reduction.AVG, Deadline(5.0))

    assert result_set.values_for(Semantic.CO2, Reduction.AVG) == [479.0, 430.0, 604.0, None]
