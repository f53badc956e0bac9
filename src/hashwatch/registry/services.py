"""Service registry — the set of remote services a user can target.

Two sources are merged:
- services listed by the discovery collaborator, and
- service ids the user added by hand, persisted so they survive restarts.

The registry also owns the active selection, persisted alongside the
custom ids. Discovery calls are the only suspension points; a refresh
that is overtaken by a newer refresh is discarded when it resumes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from hashwatch.errors import (
    DiscoveryError,
    InvalidServiceIdError,
    ServiceNotFoundError,
)
from hashwatch.models.service import (
    BOOTSTRAP_SERVICE_ID,
    Service,
    normalize_service_id,
)
from hashwatch.persistence.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_SELECTED_KEY = "jam-selected-service"
DEFAULT_CUSTOM_KEY = "jam-custom-services"


# ---------------------------------------------------------------------------
# Discovery collaborator
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DiscoveryResult:
    """Outcome of listing services. ``error`` set means the listing failed."""
    services: list[Service] = field(default_factory=list)
    error: Optional[str] = None


class DiscoveryClient(Protocol):
    """Remote lookup of services.

    Implementations raise DiscoveryError (or OSError) when unreachable.
    """

    async def list_services(self) -> DiscoveryResult: ...

    async def get_service_info(self, service_id: str) -> Optional[Service]: ...

    async def check_service(self, raw_id: str) -> Optional[Service]: ...


@dataclass(frozen=True)
class RefreshResult:
    """Result of a refresh.

    ``stale`` is True when a newer refresh started while this one was
    waiting; the registry state was left to the newer call.
    """
    services: list[Service] = field(default_factory=list)
    error: Optional[str] = None
    stale: bool = False


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ServiceRegistry:
    """Merges discovered and custom services and tracks the selection.

    Usage:
        registry = ServiceRegistry(discovery, kv)
        result = await registry.refresh()
        ok = await registry.add_custom("0x8a851331")
        registry.select("8a851331")
        active = registry.selected

    Thread-safety: not thread-safe; all calls belong on one event loop.
    """

    def __init__(
        self,
        discovery: DiscoveryClient,
        kv: KeyValueStore,
        selected_key: str = DEFAULT_SELECTED_KEY,
        custom_key: str = DEFAULT_CUSTOM_KEY,
        bootstrap_id: str = BOOTSTRAP_SERVICE_ID,
    ) -> None:
        self._discovery = discovery
        self._kv = kv
        self._selected_key = selected_key
        self._custom_key = custom_key
        self._bootstrap_id = bootstrap_id

        self._services: list[Service] = []
        self._selected: Optional[Service] = None
        self._error: Optional[str] = None
        self._loading = False
        self._generation = 0

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def services(self) -> list[Service]:
        return list(self._services)

    @property
    def selected(self) -> Optional[Service]:
        return self._selected

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_loading(self) -> bool:
        return self._loading

    def get(self, service_id: str) -> Optional[Service]:
        return next(
            (s for s in self._services if s.service_id == service_id), None,
        )

    def custom_service_ids(self) -> list[str]:
        """Persisted custom ids, including ones that failed to resolve."""
        return list(self._kv.get(self._custom_key, []))

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> RefreshResult:
        """Re-list services and merge persisted custom ids.

        On discovery failure the in-memory set is emptied and the error
        returned; persisted selection and custom ids are not touched.
        """
        self._generation += 1
        generation = self._generation
        self._loading = True
        self._error = None
        try:
            try:
                listing = await self._discovery.list_services()
            except (DiscoveryError, OSError) as exc:
                listing = DiscoveryResult(error=str(exc) or "Failed to fetch services")
            if generation != self._generation:
                return RefreshResult(stale=True)

            if listing.error:
                logger.warning("Service discovery failed: %s", listing.error)
                self._error = listing.error
                self._services = []
                self._selected = None
                return RefreshResult(error=listing.error)

            merged = list(listing.services)
            for custom_id in self.custom_service_ids():
                if any(s.service_id == custom_id for s in merged):
                    continue
                try:
                    info = await self._discovery.get_service_info(custom_id)
                except (DiscoveryError, OSError) as exc:
                    logger.warning("Lookup of custom service %s failed: %s", custom_id, exc)
                    info = None
                if generation != self._generation:
                    return RefreshResult(stale=True)
                if info is None:
                    logger.warning("Custom service %s no longer resolves", custom_id)
                    continue
                merged.append(Service(
                    service_id=custom_id,
                    name=info.name,
                    version=info.version,
                    author=info.author,
                ))

            self._services = merged
            self._restore_selection()
            return RefreshResult(services=list(merged))
        finally:
            if generation == self._generation:
                self._loading = False

    def _restore_selection(self) -> None:
        saved_id = self._kv.get(self._selected_key)
        saved = self.get(saved_id) if saved_id else None
        if saved is not None:
            self._selected = saved
            return
        default = self._default_service()
        self._selected = default
        if default is not None:
            self._kv.set(self._selected_key, default.service_id)

    def _default_service(self) -> Optional[Service]:
        for service in self._services:
            if service.service_id != self._bootstrap_id:
                return service
        return self._services[0] if self._services else None

    # ------------------------------------------------------------------
    # Selection and custom services
    # ------------------------------------------------------------------

    def select(self, service_id: str) -> None:
        """Make ``service_id`` active. Unknown ids are ignored."""
        service = self.get(service_id)
        if service is None:
            return
        self._selected = service
        self._kv.set(self._selected_key, service.service_id)

    async def resolve(self, raw_id: str) -> Service:
        """Normalize ``raw_id`` and look it up through discovery.

        Raises InvalidServiceIdError for malformed ids and
        ServiceNotFoundError when discovery does not know the id.
        """
        service_id = normalize_service_id(raw_id)
        try:
            info = await self._discovery.check_service(service_id)
        except (DiscoveryError, OSError) as exc:
            logger.warning("Lookup of service %s failed: %s", service_id, exc)
            info = None
        if info is None:
            raise ServiceNotFoundError(f"Service {service_id} not found on chain")
        return info

    async def add_custom(self, raw_id: str) -> bool:
        """Validate, resolve, persist, and select a user-supplied service id.

        Returns False and sets ``error`` when the id is malformed or does
        not resolve; the service set is unchanged in both cases.
        A successful add supersedes any refresh still in flight.
        """
        try:
            service_id = normalize_service_id(raw_id)
        except InvalidServiceIdError as exc:
            self._error = str(exc)
            return False

        if self.get(service_id) is not None:
            self.select(service_id)
            return True

        try:
            info = await self.resolve(service_id)
        except ServiceNotFoundError as exc:
            self._error = str(exc)
            return False

        custom_ids = self.custom_service_ids()
        if info.service_id not in custom_ids:
            custom_ids.append(info.service_id)
            self._kv.set(self._custom_key, custom_ids)

        if self.get(info.service_id) is None:
            self._services.append(info)
        self._selected = self.get(info.service_id)
        self._generation += 1
        self._loading = False
        self._kv.set(self._selected_key, info.service_id)
        self._error = None
        return True

    def clear(self) -> None:
        """Forget all services, the selection, and persisted custom ids."""
        self._generation += 1
        self._services = []
        self._selected = None
        self._error = None
        self._loading = False
        self._kv.delete(self._selected_key)
        self._kv.delete(self._custom_key)
