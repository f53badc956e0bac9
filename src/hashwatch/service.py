"""Tracker service — facade over the verification tracker.

This is the primary interface for programmatic access. It wires:
- Payload building and hashing (codec)
- Submission through the external submission collaborator
- Record persistence and aggregation (record store)
- Simulated pipeline progress (simulator)
- Service discovery and selection (registry)
- Dashboard snapshots for a caller-owned refresh driver

User-facing failures come back as ServiceResult with errors rather than
exceptions. A submission attempt that reaches the collaborator is always
recorded, whether it succeeds or not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from hashwatch.codec.payload import build_payload, compute_digest, to_hex
from hashwatch.errors import SubmissionError
from hashwatch.models.record import (
    HistoryStats,
    RecordStatus,
    VerificationRecord,
    VerificationResult,
)
from hashwatch.persistence.kv_store import KeyValueStore
from hashwatch.persistence.record_store import VerificationRecordStore
from hashwatch.pipeline.clock import IntervalDriver, Scheduler
from hashwatch.pipeline.simulator import PipelineSimulator
from hashwatch.policy.settings import TrackerSettings
from hashwatch.registry.services import DiscoveryClient, ServiceRegistry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Submission collaborator
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SubmissionOutcome:
    """What the remote service reported for one submission.

    ``hash`` and ``payload`` are hex strings. ``package_id`` and ``slot``
    are only present on success.
    """
    success: bool
    hash: str
    payload: str
    package_id: Optional[str] = None
    slot: Optional[int] = None
    error: Optional[str] = None


class SubmissionClient(Protocol):
    """Sends a hash-verification work item to a service.

    Reports remote rejection as ``SubmissionOutcome(success=False)``;
    raises SubmissionError (or OSError) when the service is unreachable.
    """

    async def submit(
        self, service_id: str, preimage: str, tamper: bool,
    ) -> SubmissionOutcome: ...


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DashboardSnapshot:
    """Everything a history/explorer view needs in one read."""
    history: list[VerificationRecord]
    stats: HistoryStats
    recent_slots: list[int]
    selected_service_id: Optional[str]


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------

class TrackerService:
    """Verification tracker facade.

    Usage:
        settings = TrackerSettings.from_config_dir(Path("config"))
        tracker = TrackerService.from_settings(
            settings, kv=JsonFileStore(Path("data/state.json")),
            scheduler=asyncio.get_running_loop(),
            submitter=rpc_submitter, discovery=rpc_discovery,
        )
        await tracker.registry.refresh()
        result = await tracker.submit_verification("hello")
        # result.data["record_id"] advances refining → auditing → accumulated
    """

    def __init__(
        self,
        records: VerificationRecordStore,
        simulator: PipelineSimulator,
        registry: ServiceRegistry,
        submitter: SubmissionClient,
        scheduler: Scheduler,
        history_max_items: int = 10,
        recent_slot_count: int = 10,
        refresh_interval: float = 5.0,
    ) -> None:
        self.records = records
        self.simulator = simulator
        self.registry = registry
        self._submitter = submitter
        self._scheduler = scheduler
        self._history_max_items = history_max_items
        self._recent_slot_count = recent_slot_count
        self._refresh_interval = refresh_interval

    @classmethod
    def from_settings(
        cls,
        settings: TrackerSettings,
        kv: KeyValueStore,
        scheduler: Scheduler,
        submitter: SubmissionClient,
        discovery: DiscoveryClient,
    ) -> TrackerService:
        """Build every component from one settings object and one store."""
        keys = settings.storage_keys()
        records = VerificationRecordStore(kv, history_key=keys.history)
        simulator = PipelineSimulator(
            records, scheduler, stage_interval=settings.stage_interval_seconds(),
        )
        registry = ServiceRegistry(
            discovery,
            kv,
            selected_key=keys.selected_service,
            custom_key=keys.custom_services,
            bootstrap_id=settings.bootstrap_service_id(),
        )
        return cls(
            records,
            simulator,
            registry,
            submitter,
            scheduler,
            history_max_items=settings.history_max_items(),
            recent_slot_count=settings.recent_slot_count(),
            refresh_interval=settings.history_refresh_seconds(),
        )

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    @staticmethod
    def compute_hash(preimage: str) -> str:
        """Hex Blake2s-256 digest of the preimage."""
        return to_hex(compute_digest(preimage))

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_verification(
        self, preimage: str, tamper: bool = False,
    ) -> ServiceResult:
        """Submit a preimage to the selected service and track it.

        Success starts the pipeline simulation. A reported failure is
        stored as FAILED with the remote error. An unreachable service is
        also stored as FAILED, with the payload built locally so the
        tamper-derived hash and result still hold.
        """
        if not preimage:
            return ServiceResult(success=False, errors=["Preimage is required"])
        service = self.registry.selected
        if service is None:
            return ServiceResult(success=False, errors=["No service selected"])

        expected = VerificationResult.INVALID if tamper else VerificationResult.VALID
        try:
            outcome = await self._submitter.submit(service.service_id, preimage, tamper)
        except (SubmissionError, OSError) as exc:
            message = str(exc) or "Unknown error"
            logger.warning("Submission to %s failed: %s", service.service_id, message)
            built = build_payload(preimage, tamper=tamper)
            record = self.records.add_record(
                preimage=preimage,
                hash=built.digest_hex,
                payload=built.payload_hex,
                tampered=tamper,
                status=RecordStatus.FAILED,
                result=expected,
                error=message,
            )
            return ServiceResult(
                success=False,
                errors=[message],
                data={
                    "record_id": record.record_id,
                    "hash": record.hash,
                    "payload": record.payload,
                },
            )

        record = self.records.add_record(
            preimage=preimage,
            hash=outcome.hash,
            payload=outcome.payload,
            tampered=tamper,
            status=RecordStatus.SUBMITTED if outcome.success else RecordStatus.FAILED,
            result=expected,
            package_id=outcome.package_id,
            anchor_slot=outcome.slot,
            error=outcome.error,
        )
        data = {
            "record_id": record.record_id,
            "hash": outcome.hash,
            "payload": outcome.payload,
            "package_id": outcome.package_id,
            "slot": outcome.slot,
        }
        if not outcome.success:
            return ServiceResult(
                success=False,
                errors=[outcome.error or "Submission rejected"],
                data=data,
            )

        self.simulator.start(record.record_id)
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # History views
    # ------------------------------------------------------------------

    def dashboard(self, filter_slot: Optional[int] = None) -> DashboardSnapshot:
        """Current history page, stats, and slots with submissions."""
        if filter_slot is not None:
            history = self.records.get_records_by_slot(filter_slot)
        else:
            history = self.records.get_history()
        selected = self.registry.selected
        return DashboardSnapshot(
            history=history[:self._history_max_items],
            stats=self.records.get_stats(),
            recent_slots=self.records.recent_slots(self._recent_slot_count),
            selected_service_id=selected.service_id if selected else None,
        )

    def start_dashboard_refresh(
        self,
        callback: Callable[[DashboardSnapshot], Any],
        filter_slot: Optional[int] = None,
    ) -> IntervalDriver:
        """Push a fresh snapshot to ``callback`` on every refresh interval.

        The caller owns the returned driver and must stop it.
        """
        driver = IntervalDriver(
            self._scheduler,
            self._refresh_interval,
            lambda: callback(self.dashboard(filter_slot)),
        )
        driver.start()
        return driver

    def clear_history(self) -> None:
        """Stop all pipeline runs and delete the stored history."""
        self.simulator.cancel_all()
        self.records.clear_history()
