"""Product field catalog with semantic lookups."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from datastore.interfaces import ProductStore
from models.records import FieldDeclaration, Semantic
from services.errors import EngineError, UpstreamFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _CatalogEntry:
    loaded_at: float
    fields: Tuple[FieldDeclaration, ...]
    by_semantic: Dict[Semantic, Tuple[FieldDeclaration, ...]]


class CatalogLookups:
    """Semantic lookups over whatever entry source a subclass provides."""

    def _entry(self, product_id: str) -> _CatalogEntry:
        raise NotImplementedError

    def fields(self, product_id: str) -> Tuple[FieldDeclaration, ...]:
        return self._entry(product_id).fields

    def declarations_for(
        self, product_id: str, semantic: Semantic
    ) -> Tuple[FieldDeclaration, ...]:
        return self._entry(product_id).by_semantic.get(semantic, ())

    def field_names(self, product_id: str, semantic: Semantic) -> Tuple[str, ...]:
        """Names of the product fields tagged with ``semantic``; may be empty."""
        return tuple(declaration.name for declaration in self.declarations_for(product_id, semantic))


class FieldCatalog(CatalogLookups):
    """Resolves which raw fields of a product carry a given semantic.

    Field-to-semantic assignments are editable, so entries are only trusted
    for ``ttl_seconds`` before being reloaded from the product store. A TTL
    of zero disables caching.
    """

    def __init__(
        self,
        store: ProductStore,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, _CatalogEntry] = {}
        self._lock = Lock()

    def pinned(self) -> PinnedCatalog:
        """A view that keeps each product's fields fixed once first read."""
        return PinnedCatalog(self)

    def invalidate(self, product_id: Optional[str] = None) -> None:
        with self._lock:
            if product_id is None:
                self._entries.clear()
            else:
                self._entries.pop(product_id, None)

    def _entry(self, product_id: str) -> _CatalogEntry:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(product_id)
        if entry is not None and now - entry.loaded_at < self.ttl_seconds:
            return entry

        entry = self._load(product_id, now)
        if self.ttl_seconds > 0:
            with self._lock:
                self._entries[product_id] = entry
        return entry

    def _load(self, product_id: str, now: float) -> _CatalogEntry:
        try:
            declarations = tuple(self.store.get_product_fields(product_id))
        except EngineError:
            raise
        except Exception as exc:
            logger.warning(
                "Product store lookup failed",
                extra={"product_id": product_id, "reason": str(exc)},
            )
            raise UpstreamFailure(f"Product store failed for {product_id!r}.") from exc

        by_semantic: Dict[Semantic, list[FieldDeclaration]] = {}
        for declaration in declarations:
            if declaration.semantic is not None:
                by_semantic.setdefault(declaration.semantic, []).append(declaration)

        return _CatalogEntry(
            loaded_at=now,
            fields=declarations,
            by_semantic={semantic: tuple(items) for semantic, items in by_semantic.items()},
        )


class PinnedCatalog(CatalogLookups):
    """Catalog view for a single query.

    The first lookup of a product goes through the shared catalog; every
    later lookup in the same query returns that same entry, so all devices
    of a product are reduced over one field set even if the shared entry
    expires or is reassigned mid-query.
    """

    def __init__(self, catalog: FieldCatalog) -> None:
        self.catalog = catalog
        self._entries: Dict[str, _CatalogEntry] = {}
        self._lock = Lock()

    def _entry(self, product_id: str) -> _CatalogEntry:
        with self._lock:
            entry = self._entries.get(product_id)
        if entry is None:
            loaded = self.catalog._entry(product_id)
            with self._lock:
                entry = self._entries.setdefault(product_id, loaded)
        return entry
