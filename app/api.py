"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    AggregateResult,
    DeviceSummary,
    FieldDeclarationOut,
    FieldReadingOut,
    FilterDevicesRequest,
    FilterDevicesResponse,
    ProductFieldsResponse,
    SemanticFieldResponse,
    SemanticInfo,
)
from models.records import Reduction, Semantic
from services.errors import (
    EngineError,
    NotFoundError,
    QueryTimeout,
    QueryValidationError,
    UpstreamFailure,
)
from services.query import QueryService, build_default_query_service, build_device_query

router = APIRouter()


def get_query_service() -> QueryService:
    return build_default_query_service()


def _raise_http(exc: EngineError) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, QueryValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, QueryTimeout):
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Query deadline exceeded; no partial results were returned.",
        ) from exc
    if isinstance(exc, UpstreamFailure):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="A backing store is temporarily unavailable; retry the request.",
        ) from exc
    raise exc


@router.post(
    "/workspaces/{workspace_id}/devices/query",
    response_model=FilterDevicesResponse,
    summary="Filter devices by tags, status and semantic ranges; aggregate over every match.",
)
def filter_devices(
    workspace_id: str,
    request: FilterDevicesRequest,
    service: QueryService = Depends(get_query_service),
) -> FilterDevicesResponse:
    try:
        query = build_device_query(
            workspace_id,
            tags_contains=request.tags_contains,
            tags_overlap=request.tags_overlap,
            online=request.online,
            search=request.search,
            all_devices=request.all,
            page=request.page,
            page_size=request.page_size,
            order=request.order,
            include_devices=request.include_devices,
            device_semantics=request.device_semantics,
            filters={
                name: term.model_dump(exclude_none=True)
                for name, term in request.filters.items()
            },
            aggregates=[
                (aggregate.alias, aggregate.semantic, aggregate.aggregation)
                for aggregate in request.aggregates
            ],
            timeout=request.timeout_seconds,
        )
        result = service.filter_devices(query)
    except EngineError as exc:
        _raise_http(exc)

    devices = None
    if result.devices is not None:
        devices = [
            DeviceSummary(
                device_id=row.device.device_id,
                name=row.device.name,
                product_id=row.device.product_id,
                online=row.device.online,
                last_heard=row.device.last_heard,
                tags=sorted(row.device.tags),
                values={semantic.value: value for semantic, value in row.values.items()},
            )
            for row in result.devices
        ]
    return FilterDevicesResponse(
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        devices=devices,
        aggregates={
            alias: AggregateResult(
                semantic=aggregate.semantic,
                aggregation=aggregate.reduction,
                value=aggregate.value,
                device_count=aggregate.device_count,
            )
            for alias, aggregate in result.aggregates.items()
        },
    )


@router.get(
    "/devices/{device_id}/semantics/{semantic}",
    response_model=SemanticFieldResponse,
    summary="Resolve one device's semantic value and the raw fields behind it.",
)
def resolve_device_semantic(
    device_id: str,
    semantic: str,
    aggregation: Optional[Reduction] = Query(default=None),
    timeout_seconds: Optional[float] = Query(default=None),
    service: QueryService = Depends(get_query_service),
) -> SemanticFieldResponse:
    try:
        resolution = service.resolve_device_semantic(
            device_id, semantic, aggregation, timeout=timeout_seconds
        )
    except EngineError as exc:
        _raise_http(exc)
    return SemanticFieldResponse(
        device_id=resolution.device_id,
        semantic=resolution.semantic,
        aggregation=resolution.reduction,
        value=resolution.value,
        fields=[
            FieldReadingOut(
                field_name=reading.field_name,
                label=reading.label,
                unit=reading.unit,
                value=reading.value,
                timestamp=reading.timestamp,
            )
            for reading in resolution.fields
        ],
    )


@router.get(
    "/products/{product_id}/fields",
    response_model=ProductFieldsResponse,
    summary="List a product's measurement fields and their semantics.",
)
def product_fields(
    product_id: str,
    service: QueryService = Depends(get_query_service),
) -> ProductFieldsResponse:
    try:
        declarations = service.product_fields(product_id)
    except EngineError as exc:
        _raise_http(exc)
    return ProductFieldsResponse(
        product_id=product_id,
        fields=[
            FieldDeclarationOut(
                name=declaration.name,
                label=declaration.label,
                unit=declaration.unit,
                value_type=declaration.value_type,
                semantic=declaration.semantic,
            )
            for declaration in declarations
        ],
    )


@router.get(
    "/semantics",
    response_model=list[SemanticInfo],
    summary="List the supported semantics.",
)
async def list_semantics() -> list[SemanticInfo]:
    return [SemanticInfo(name=semantic, numeric=semantic.is_numeric) for semantic in Semantic]


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
