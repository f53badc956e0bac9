"""Tests for TrackerService — proves the facade orchestrates correctly."""

import asyncio
import hashlib
from pathlib import Path
from typing import Optional

import pytest

from hashwatch.codec.payload import build_payload, decode, from_hex
from hashwatch.errors import SubmissionError
from hashwatch.models.record import RecordStatus, VerificationResult
from hashwatch.models.service import Service, normalize_service_id
from hashwatch.persistence.kv_store import JsonFileStore, MemoryStore
from hashwatch.pipeline.clock import ManualScheduler
from hashwatch.pipeline.simulator import PipelineStage
from hashwatch.policy.settings import TrackerSettings
from hashwatch.registry.services import DiscoveryResult
from hashwatch.service import DashboardSnapshot, SubmissionOutcome, TrackerService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

VERIFIER = Service("8a851331", "hash-verifier")


class FakeDiscovery:
    def __init__(self, services: list[Service]) -> None:
        self.services = services

    async def list_services(self) -> DiscoveryResult:
        return DiscoveryResult(services=list(self.services))

    async def get_service_info(self, service_id: str) -> Optional[Service]:
        return next((s for s in self.services if s.service_id == service_id), None)

    async def check_service(self, raw_id: str) -> Optional[Service]:
        return await self.get_service_info(normalize_service_id(raw_id))


class FakeSubmitter:
    """Builds the real payload locally and reports a scripted outcome."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, bool]] = []
        self.reject_with: Optional[str] = None
        self.raise_error: Optional[Exception] = None
        self.next_slot = 100

    async def submit(self, service_id: str, preimage: str, tamper: bool) -> SubmissionOutcome:
        self.calls.append((service_id, preimage, tamper))
        if self.raise_error is not None:
            raise self.raise_error
        built = build_payload(preimage, tamper=tamper)
        if self.reject_with:
            return SubmissionOutcome(
                success=False,
                hash=built.digest_hex,
                payload=built.payload_hex,
                error=self.reject_with,
            )
        self.next_slot += 1
        return SubmissionOutcome(
            success=True,
            hash=built.digest_hex,
            payload=built.payload_hex,
            package_id=f"pkg-{self.next_slot}",
            slot=self.next_slot,
        )


@pytest.fixture
def settings() -> TrackerSettings:
    return TrackerSettings.from_config_dir(CONFIG_DIR)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def submitter() -> FakeSubmitter:
    return FakeSubmitter()


def _tracker(settings, scheduler, submitter, kv=None, services=None) -> TrackerService:
    tracker = TrackerService.from_settings(
        settings,
        kv=kv if kv is not None else MemoryStore(),
        scheduler=scheduler,
        submitter=submitter,
        discovery=FakeDiscovery(services if services is not None else [VERIFIER]),
    )
    asyncio.run(tracker.registry.refresh())
    return tracker


@pytest.fixture
def tracker(settings, scheduler, submitter) -> TrackerService:
    return _tracker(settings, scheduler, submitter)


class TestSubmitVerification:
    def test_hello_scenario(
        self, tracker: TrackerService, scheduler: ManualScheduler,
    ) -> None:
        result = asyncio.run(tracker.submit_verification("hello"))
        assert result.success

        digest = hashlib.blake2s(b"hello", digest_size=32).digest()
        record = tracker.records.get_record(result.data["record_id"])
        assert record.hash == digest.hex()
        assert record.result == VerificationResult.VALID
        assert record.anchor_slot == result.data["slot"]
        assert record.package_id == result.data["package_id"]

        breakdown = record.payload_breakdown
        assert breakdown.expected_hash == digest.hex()
        assert breakdown.preimage_hex == b"hello".hex()

        assert record.status == RecordStatus.SUBMITTED
        scheduler.advance(2.0)
        assert tracker.records.get_record(record.record_id).status == RecordStatus.REFINING
        scheduler.advance(2.0)
        assert tracker.records.get_record(record.record_id).status == RecordStatus.AUDITING
        scheduler.advance(2.0)
        assert tracker.records.get_record(record.record_id).status == RecordStatus.ACCUMULATED

    def test_tamper_scenario(
        self, tracker: TrackerService, scheduler: ManualScheduler,
    ) -> None:
        result = asyncio.run(tracker.submit_verification("hello", tamper=True))
        assert result.success
        record = tracker.records.get_record(result.data["record_id"])
        assert record.tampered
        assert record.hash != tracker.compute_hash("hello")
        assert record.result == VerificationResult.INVALID

        decoded = decode(from_hex(record.payload))
        assert decoded.expected_hash.hex() == record.hash
        assert decoded.preimage_bytes == b"hello"

        scheduler.advance(6.0)
        record = tracker.records.get_record(record.record_id)
        assert record.status == RecordStatus.ACCUMULATED
        assert record.result == VerificationResult.INVALID

    def test_routes_to_selected_service(
        self, tracker: TrackerService, submitter: FakeSubmitter,
    ) -> None:
        asyncio.run(tracker.submit_verification("x", tamper=True))
        assert submitter.calls == [("8a851331", "x", True)]

    def test_rejected_submission_stored_as_failed(
        self,
        tracker: TrackerService,
        submitter: FakeSubmitter,
        scheduler: ManualScheduler,
    ) -> None:
        submitter.reject_with = "work package rejected"
        result = asyncio.run(tracker.submit_verification("hello"))
        assert not result.success
        assert result.errors == ["work package rejected"]

        record = tracker.records.get_record(result.data["record_id"])
        assert record.status == RecordStatus.FAILED
        assert record.error == "work package rejected"
        assert record.anchor_slot is None
        assert tracker.simulator.stage_of(record.record_id) is None

        scheduler.advance(10.0)
        assert tracker.records.get_record(record.record_id).status == RecordStatus.FAILED

    def test_unreachable_submitter_stored_as_failed(
        self, tracker: TrackerService, submitter: FakeSubmitter,
    ) -> None:
        submitter.raise_error = SubmissionError("connection refused")
        result = asyncio.run(tracker.submit_verification("hello"))
        assert not result.success
        assert result.errors == ["connection refused"]

        record = tracker.records.get_record(result.data["record_id"])
        assert record.status == RecordStatus.FAILED
        assert record.error == "connection refused"
        assert record.result == VerificationResult.VALID
        assert record.hash == tracker.compute_hash("hello")
        assert record.payload_breakdown.preimage_text == "hello"

        stats = tracker.records.get_stats()
        assert stats.failed == 1
        assert stats.pending == 0

    def test_unreachable_submitter_keeps_tamper(
        self,
        tracker: TrackerService,
        submitter: FakeSubmitter,
        scheduler: ManualScheduler,
    ) -> None:
        submitter.raise_error = OSError("network unreachable")
        result = asyncio.run(tracker.submit_verification("hello", tamper=True))
        assert not result.success

        record = tracker.records.get_record(result.data["record_id"])
        assert record.tampered
        assert record.result == VerificationResult.INVALID
        assert record.hash != tracker.compute_hash("hello")
        assert record.payload_breakdown.expected_hash == record.hash
        assert tracker.simulator.stage_of(record.record_id) is None

        scheduler.advance(10.0)
        record = tracker.records.get_record(record.record_id)
        assert record.status == RecordStatus.FAILED
        assert record.result == VerificationResult.INVALID
        assert tracker.records.get_stats().invalid == 1

    def test_empty_preimage_rejected(
        self, tracker: TrackerService, submitter: FakeSubmitter,
    ) -> None:
        result = asyncio.run(tracker.submit_verification(""))
        assert not result.success
        assert submitter.calls == []
        assert tracker.records.get_history() == []

    def test_requires_selected_service(
        self, settings, scheduler, submitter,
    ) -> None:
        tracker = _tracker(settings, scheduler, submitter, services=[])
        result = asyncio.run(tracker.submit_verification("hello"))
        assert not result.success
        assert result.errors == ["No service selected"]
        assert submitter.calls == []


class TestDashboard:
    def test_snapshot(self, tracker: TrackerService, submitter: FakeSubmitter) -> None:
        for i in range(12):
            asyncio.run(tracker.submit_verification(f"p{i}", tamper=i % 3 == 0))
        snapshot = tracker.dashboard()
        assert len(snapshot.history) == 10
        assert snapshot.history[0].preimage == "p11"
        assert snapshot.stats.total == 12
        assert snapshot.stats.invalid == 4
        assert snapshot.recent_slots == list(range(112, 102, -1))
        assert snapshot.selected_service_id == "8a851331"

    def test_slot_filter(self, tracker: TrackerService) -> None:
        first = asyncio.run(tracker.submit_verification("a"))
        asyncio.run(tracker.submit_verification("b"))
        snapshot = tracker.dashboard(filter_slot=first.data["slot"])
        assert [r.preimage for r in snapshot.history] == ["a"]

    def test_refresh_driver(
        self, tracker: TrackerService, scheduler: ManualScheduler,
    ) -> None:
        snapshots: list[DashboardSnapshot] = []
        driver = tracker.start_dashboard_refresh(snapshots.append)
        asyncio.run(tracker.submit_verification("hello"))
        scheduler.advance(5.0)
        driver.stop()
        scheduler.advance(30.0)

        assert len(snapshots) == 2
        assert snapshots[0].stats.total == 0
        assert snapshots[1].stats.total == 1
        assert snapshots[1].history[0].status == RecordStatus.AUDITING

    def test_clear_history(
        self, tracker: TrackerService, scheduler: ManualScheduler,
    ) -> None:
        asyncio.run(tracker.submit_verification("hello"))
        scheduler.advance(2.0)
        tracker.clear_history()
        assert tracker.simulator.active_runs == 0
        assert scheduler.pending == 0
        scheduler.advance(4.0)
        snapshot = tracker.dashboard()
        assert snapshot.history == []
        assert snapshot.stats.as_dict() == {
            "total": 0, "valid": 0, "invalid": 0, "pending": 0, "failed": 0,
        }


class TestPersistence:
    def test_state_shared_through_one_file(
        self, settings, scheduler, submitter, tmp_path: Path,
    ) -> None:
        path = tmp_path / "tracker_state.json"
        tracker = _tracker(settings, scheduler, submitter, kv=JsonFileStore(path))
        stages: list[PipelineStage] = []
        tracker.simulator.subscribe(lambda rid, stage: stages.append(stage))
        asyncio.run(tracker.submit_verification("hello"))
        scheduler.advance(6.0)

        reopened = _tracker(settings, ManualScheduler(), FakeSubmitter(), kv=JsonFileStore(path))
        history = reopened.records.get_history()
        assert len(history) == 1
        assert history[0].status == RecordStatus.ACCUMULATED
        assert reopened.registry.selected == VERIFIER
        assert stages[-1] == PipelineStage.COMPLETE

        keys = JsonFileStore(path).keys()
        assert keys == ["jam-selected-service", "jam-verification-history"]
