"""Deterministic ordering and slicing of filtered devices."""

from __future__ import annotations

from datetime import timezone
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from models.records import DeviceAttributes
from services.errors import QueryValidationError


class DeviceOrder(str, Enum):
    """Page orderings; every one breaks ties by device id."""

    name_asc = "name_asc"
    name_desc = "name_desc"
    last_heard_desc = "last_heard_desc"
    last_heard_asc = "last_heard_asc"


DEFAULT_ORDER = DeviceOrder.name_asc


def _heard_ts(device: DeviceAttributes) -> float:
    last_heard = device.last_heard
    if last_heard.tzinfo is None:
        last_heard = last_heard.replace(tzinfo=timezone.utc)
    return last_heard.timestamp()


def _name_key(device: DeviceAttributes) -> Tuple:
    return (device.name.casefold(), device.name, device.device_id)


def _last_heard_key(device: DeviceAttributes, newest_first: bool) -> Tuple:
    # Never-heard devices sort last in both directions.
    if device.last_heard is None:
        return (1, 0.0, device.device_id)
    ts = _heard_ts(device)
    return (0, -ts if newest_first else ts, device.device_id)


def _sort(devices: Sequence[DeviceAttributes], order: DeviceOrder) -> List[DeviceAttributes]:
    if order is DeviceOrder.name_asc:
        return sorted(devices, key=_name_key)
    if order is DeviceOrder.name_desc:
        # Reverse by name while keeping ascending id among equal names.
        by_id = sorted(devices, key=lambda device: device.device_id)
        return sorted(by_id, key=lambda device: (device.name.casefold(), device.name), reverse=True)
    newest_first = order is DeviceOrder.last_heard_desc
    return sorted(devices, key=lambda device: _last_heard_key(device, newest_first))


def validate_page(page: Optional[int], page_size: Optional[int], max_page_size: int) -> None:
    if page is not None and page < 0:
        raise QueryValidationError("page must be zero or greater.")
    if page_size is not None and page_size <= 0:
        raise QueryValidationError("page_size must be greater than zero.")
    if page_size is not None and page_size > max_page_size:
        raise QueryValidationError(f"page_size must not exceed {max_page_size}.")


def paginate(
    devices: Sequence[DeviceAttributes],
    page: int,
    page_size: Optional[int],
    order: DeviceOrder = DEFAULT_ORDER,
) -> List[DeviceAttributes]:
    """Return the ``page``-th slice of ``devices`` under ``order``.

    ``page_size`` of ``None`` returns the whole ordered set. A page past the
    end is empty rather than an error.
    """
    ordered = _sort(devices, order)
    if page_size is None:
        return ordered
    start = page * page_size
    return ordered[start:start + page_size]
