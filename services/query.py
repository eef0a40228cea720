"""Query orchestration: one consistent snapshot, counted, aggregated and paged."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import lru_cache
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from datastore.fleet_store import build_default_store
from datastore.interfaces import FleetStore
from models.records import (
    CurrentValue,
    DeviceAttributes,
    DeviceRef,
    FieldDeclaration,
    Reduction,
    Semantic,
)
from services.aggregator import AggregateValue, Aggregator
from services.catalog import FieldCatalog
from services.deadline import Deadline, run_parallel
from services.errors import (
    EngineError,
    NotFoundError,
    QueryTimeout,
    QueryValidationError,
    UpstreamFailure,
)
from services.filters import (
    SemanticFilterEvaluator,
    SemanticFilterTerm,
    build_term,
    parse_numeric_semantic,
    parse_reduction,
    parse_semantic,
)
from services.pagination import DEFAULT_ORDER, DeviceOrder, paginate, validate_page
from services.pipeline import DeviceFilterPipeline, DevicePredicate
from services.resolver import MeasurementResolver, SemanticResolution
from settings import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateSpec:
    alias: str
    semantic: Semantic
    reduction: Reduction = Reduction.AVG


@dataclass(frozen=True)
class DeviceQuery:
    """Validated, immutable description of a filtered device query."""

    workspace_id: str
    predicate: DevicePredicate = DevicePredicate()
    terms: Tuple[SemanticFilterTerm, ...] = ()
    aggregates: Tuple[AggregateSpec, ...] = ()
    include_devices: bool = False
    device_semantics: Tuple[Semantic, ...] = ()
    all_devices: bool = False
    page: int = 0
    page_size: Optional[int] = None
    order: DeviceOrder = DEFAULT_ORDER
    timeout: Optional[float] = None

    def is_unrestricted(self) -> bool:
        return self.predicate.is_empty() and not self.terms


@dataclass(frozen=True)
class DeviceRow:
    device: DeviceAttributes
    values: Dict[Semantic, Optional[float]] = field(default_factory=dict)


@dataclass(frozen=True)
class QueryResult:
    total: int
    page: int
    page_size: Optional[int]
    devices: Optional[List[DeviceRow]]
    aggregates: Dict[str, AggregateValue]


def _parse_range(raw: Any) -> Optional[Tuple[float, float]]:
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        try:
            return (raw["start"], raw["end"])
        except KeyError as exc:
            raise QueryValidationError(f"Range is missing {exc.args[0]!r}.") from None
    start, end = raw
    return (start, end)


def build_device_query(
    workspace_id: str,
    tags_contains: Optional[Iterable[str]] = None,
    tags_overlap: Optional[Iterable[str]] = None,
    online: Optional[bool] = None,
    search: Optional[str] = None,
    all_devices: bool = False,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
    order: Union[str, DeviceOrder, None] = None,
    include_devices: bool = False,
    device_semantics: Iterable[Union[str, Semantic]] = (),
    filters: Optional[Mapping[str, Mapping[str, Any]]] = None,
    aggregates: Iterable[Tuple[str, Union[str, Semantic], Union[str, Reduction, None]]] = (),
    timeout: Optional[float] = None,
) -> DeviceQuery:
    """Turn raw query input into a :class:`DeviceQuery` or raise a validation error."""
    if not workspace_id:
        raise QueryValidationError("workspace_id is required.")

    terms: List[SemanticFilterTerm] = []
    seen_semantics = set()
    for name, operators in (filters or {}).items():
        operators = dict(operators or {})
        term = build_term(
            name,
            gt=operators.get("gt"),
            gte=operators.get("gte"),
            lt=operators.get("lt"),
            lte=operators.get("lte"),
            range=_parse_range(operators.get("range")),
            aggregation=operators.get("aggregation"),
        )
        if term.semantic in seen_semantics:
            raise QueryValidationError(f"Semantic {term.semantic.value} is filtered more than once.")
        seen_semantics.add(term.semantic)
        terms.append(term)

    specs: List[AggregateSpec] = []
    aliases = set()
    for alias, semantic, aggregation in aggregates:
        if not alias:
            raise QueryValidationError("Aggregate alias must not be empty.")
        if alias in aliases:
            raise QueryValidationError(f"Aggregate alias {alias!r} is used more than once.")
        aliases.add(alias)
        specs.append(
            AggregateSpec(
                alias=alias,
                semantic=parse_numeric_semantic(semantic),
                reduction=parse_reduction(aggregation),
            )
        )

    if order is None:
        parsed_order = DEFAULT_ORDER
    else:
        try:
            parsed_order = DeviceOrder(order)
        except ValueError:
            raise QueryValidationError(f"Unknown order {order!r}.") from None

    if timeout is not None and timeout <= 0:
        raise QueryValidationError("timeout must be greater than zero.")

    display: List[Semantic] = []
    for name in device_semantics:
        semantic = parse_numeric_semantic(name)
        if semantic not in display:
            display.append(semantic)

    predicate = DevicePredicate(
        tags_contains=frozenset(tags_contains) if tags_contains else None,
        tags_overlap=frozenset(tags_overlap) if tags_overlap else None,
        online=online,
        search=search.strip() if search and search.strip() else None,
    )
    return DeviceQuery(
        workspace_id=workspace_id,
        predicate=predicate,
        terms=tuple(terms),
        aggregates=tuple(specs),
        include_devices=include_devices,
        device_semantics=tuple(display),
        all_devices=all_devices,
        page=0 if page is None else page,
        page_size=page_size,
        order=parsed_order,
        timeout=timeout,
    )


class QuerySnapshot:
    """Store reads for a single query, each fetched at most once.

    Count, aggregates and page are derived from the values memoized here,
    so a device changing mid-query cannot make them disagree.
    """

    def __init__(self, store: FleetStore) -> None:
        self.store = store
        self._values: Dict[Tuple[str, str], Optional[CurrentValue]] = {}
        self._lock = Lock()

    def list_devices(self, workspace_id: str) -> List[DeviceRef]:
        return self._call("device store", self.store.list_devices, workspace_id)

    def get_device_attributes(self, device_id: str) -> DeviceAttributes:
        return self._call("device store", self.store.get_device_attributes, device_id)

    def get_current_value(self, device_id: str, field_name: str) -> Optional[CurrentValue]:
        key = (device_id, field_name)
        with self._lock:
            if key in self._values:
                return self._values[key]
        fetched = self._call("measurement store", self.store.get_current_value, device_id, field_name)
        with self._lock:
            return self._values.setdefault(key, fetched)

    @staticmethod
    def _call(source: str, fn, *args):
        try:
            return fn(*args)
        except EngineError:
            raise
        except Exception as exc:
            logger.warning(
                "Upstream call failed",
                extra={"reason": f"{source}: {exc}"},
            )
            raise UpstreamFailure(f"The {source} is unavailable.") from exc


class QueryService:
    """Coordinates the catalog, resolver, pipeline and aggregator per query."""

    def __init__(
        self,
        store: FleetStore,
        catalog: FieldCatalog,
        aggregator: Aggregator,
        workers: int = 8,
        max_page_size: int = 500,
        timeout_seconds: float = 10.0,
        per_query_workers: Optional[int] = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.aggregator = aggregator
        self.max_page_size = max_page_size
        self.timeout_seconds = timeout_seconds
        self.per_query_workers = per_query_workers or max(1, workers // 2)
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fleet-query")

    def filter_devices(self, query: DeviceQuery) -> QueryResult:
        """Count, aggregate and optionally page the devices matching ``query``."""
        self._validate(query)
        started = time.perf_counter()
        deadline = Deadline(self._effective_timeout(query.timeout))
        snapshot = QuerySnapshot(self.store)
        resolver = MeasurementResolver(self.catalog.pinned(), snapshot)
        pipeline = DeviceFilterPipeline(
            SemanticFilterEvaluator(resolver), self.executor, self.per_query_workers
        )

        try:
            devices = self._load_devices(snapshot, query.workspace_id, deadline)
            result_set = pipeline.run(devices, query.predicate, query.terms, deadline)

            aggregates: Dict[str, AggregateValue] = {}
            for spec in query.aggregates:
                pipeline.ensure(
                    result_set,
                    spec.semantic,
                    result_set.device_reduction(spec.semantic),
                    deadline,
                )
                aggregates[spec.alias] = self.aggregator.aggregate(
                    result_set, spec.semantic, spec.reduction
                )

            rows: Optional[List[DeviceRow]] = None
            if query.include_devices:
                page_devices = paginate(result_set.devices, query.page, query.page_size, query.order)
                semantics = list(result_set.term_reductions)
                semantics.extend(s for s in query.device_semantics if s not in semantics)

                def build_row(device: DeviceAttributes) -> DeviceRow:
                    values: Dict[Semantic, Optional[float]] = {}
                    for semantic in semantics:
                        reduction = result_set.device_reduction(semantic)
                        if result_set.has_values(semantic, reduction):
                            values[semantic] = result_set.value_of(device.device_id, semantic, reduction)
                            continue
                        try:
                            values[semantic] = resolver.resolve(device, semantic, reduction)
                        except UpstreamFailure:
                            logger.warning(
                                "Device value unavailable, reporting null",
                                extra={"device_id": device.device_id, "semantic": semantic.value},
                            )
                            values[semantic] = None
                    return DeviceRow(device=device, values=values)

                rows = run_parallel(
                    self.executor, build_row, page_devices, deadline, self.per_query_workers
                )

            deadline.check()
        except QueryTimeout:
            logger.warning(
                "Query timed out",
                extra={
                    "workspace_id": query.workspace_id,
                    "elapsed_ms": int((time.perf_counter() - started) * 1000),
                },
            )
            raise

        logger.info(
            "Device query completed",
            extra={
                "workspace_id": query.workspace_id,
                "total": result_set.total,
                "page": query.page if query.include_devices else None,
                "page_size": query.page_size if query.include_devices else None,
                "elapsed_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        return QueryResult(
            total=result_set.total,
            page=query.page,
            page_size=query.page_size,
            devices=rows,
            aggregates=aggregates,
        )

    def resolve_device_semantic(
        self,
        device_id: str,
        semantic: Union[str, Semantic],
        aggregation: Union[str, Reduction, None] = None,
        timeout: Optional[float] = None,
    ) -> SemanticResolution:
        """Resolve one device's value for ``semantic`` and list the fields behind it."""
        parsed = parse_semantic(semantic)
        reduction = parse_reduction(aggregation)
        if timeout is not None and timeout <= 0:
            raise QueryValidationError("timeout must be greater than zero.")
        started = time.perf_counter()
        deadline = Deadline(self._effective_timeout(timeout))
        snapshot = QuerySnapshot(self.store)
        catalog = self.catalog.pinned()

        try:
            device = snapshot.get_device_attributes(device_id)
            deadline.check()
            names = catalog.field_names(device.product_id, parsed)
            # Warm the snapshot so describe() reads memoized values only.
            run_parallel(
                self.executor,
                lambda name: snapshot.get_current_value(device.device_id, name),
                names,
                deadline,
                self.per_query_workers,
            )
            deadline.check()
        except QueryTimeout:
            logger.warning(
                "Device resolution timed out",
                extra={
                    "device_id": device_id,
                    "semantic": parsed.value,
                    "elapsed_ms": int((time.perf_counter() - started) * 1000),
                },
            )
            raise
        return MeasurementResolver(catalog, snapshot).describe(device, parsed, reduction)

    def product_fields(self, product_id: str) -> Tuple[FieldDeclaration, ...]:
        return self.catalog.fields(product_id)

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _validate(self, query: DeviceQuery) -> None:
        validate_page(query.page, query.page_size, self.max_page_size)
        if (
            query.include_devices
            and query.page_size is None
            and not query.all_devices
            and query.is_unrestricted()
        ):
            raise QueryValidationError(
                "page_size is required when listing devices without filters; "
                "pass all=true to list every device."
            )

    def _effective_timeout(self, requested: Optional[float]) -> float:
        if requested is None:
            return self.timeout_seconds
        return min(requested, self.timeout_seconds)

    def _load_devices(
        self, snapshot: QuerySnapshot, workspace_id: str, deadline: Deadline
    ) -> List[DeviceAttributes]:
        refs = snapshot.list_devices(workspace_id)

        def load(ref: DeviceRef) -> Optional[DeviceAttributes]:
            try:
                return snapshot.get_device_attributes(ref.device_id)
            except NotFoundError:
                # Deleted between listing and lookup.
                logger.debug(
                    "Listed device vanished",
                    extra={"workspace_id": workspace_id, "device_id": ref.device_id},
                )
                return None

        loaded = run_parallel(self.executor, load, refs, deadline, self.per_query_workers)
        return [device for device in loaded if device is not None]


@lru_cache
def build_default_query_service(
    workers: Optional[int] = None,
) -> QueryService:
    """Factory that wires the query service with the default store."""
    settings = get_settings()
    store = build_default_store()
    catalog = FieldCatalog(store, ttl_seconds=settings.catalog_ttl_seconds)
    return QueryService(
        store=store,
        catalog=catalog,
        aggregator=Aggregator(),
        workers=workers or settings.query_workers,
        max_page_size=settings.max_page_size,
        timeout_seconds=settings.query_timeout_seconds,
        per_query_workers=settings.per_query_workers,
    )
