"""Pipeline simulator — local model of the remote processing pipeline.

The remote service processes a submission in four stages (submit →
refine → audit → accumulate) but exposes no per-stage signal. The
simulator advances the stored record on a fixed schedule instead:

    submitted --(+interval)--> refining --(+interval)--> auditing
              --(+interval)--> accumulated (terminal)

Every run owns its own timers, so runs for different records proceed
independently. Failed submissions are never started.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable, Optional

from hashwatch.models.record import RecordStatus
from hashwatch.persistence.record_store import VerificationRecordStore
from hashwatch.pipeline.clock import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

DEFAULT_STAGE_INTERVAL = 2.0


class PipelineStage(str, enum.Enum):
    """Display label for the current pipeline position."""
    SUBMIT = "submit"
    REFINE = "refine"
    AUDIT = "audit"
    ACCUMULATE = "accumulate"
    COMPLETE = "complete"


# Scheduled transitions, in order: (status to write, stage to announce).
_TRANSITIONS: list[tuple[RecordStatus, PipelineStage]] = [
    (RecordStatus.REFINING, PipelineStage.REFINE),
    (RecordStatus.AUDITING, PipelineStage.AUDIT),
    (RecordStatus.ACCUMULATED, PipelineStage.ACCUMULATE),
]

StageObserver = Callable[[str, PipelineStage], None]


class PipelineRun:
    """Pending transitions for one record."""

    def __init__(
        self,
        record_id: str,
        on_finish: Optional[Callable[[PipelineRun], None]] = None,
    ) -> None:
        self.record_id = record_id
        self._on_finish = on_finish
        self._handles: list[TimerHandle] = []
        self._remaining = 0

    @property
    def done(self) -> bool:
        return self._remaining == 0

    def cancel(self) -> None:
        """Drop this run's remaining transitions. Other runs are unaffected."""
        for handle in self._handles:
            handle.cancel()
        self._remaining = 0
        if self._on_finish is not None:
            self._on_finish(self)


class PipelineSimulator:
    """Advances stored records through the pipeline on a clock.

    Usage:
        simulator = PipelineSimulator(records, scheduler)
        simulator.subscribe(lambda record_id, stage: print(record_id, stage))
        simulator.start(record.record_id)
    """

    def __init__(
        self,
        records: VerificationRecordStore,
        scheduler: Scheduler,
        stage_interval: float = DEFAULT_STAGE_INTERVAL,
    ) -> None:
        if stage_interval <= 0:
            raise ValueError(f"Stage interval must be positive, got {stage_interval}")
        self._records = records
        self._scheduler = scheduler
        self._interval = stage_interval
        self._observers: list[StageObserver] = []
        self._stages: dict[str, PipelineStage] = {}
        self._runs: dict[str, PipelineRun] = {}

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: StageObserver) -> Callable[[], None]:
        """Register an observer. Returns a function that unregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def stage_of(self, record_id: str) -> Optional[PipelineStage]:
        """Last stage announced for a record still in the pipeline.

        None once the run has completed or been cancelled, and for records
        that never started.
        """
        return self._stages.get(record_id)

    @property
    def active_runs(self) -> int:
        return len(self._runs)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def start(self, record_id: str) -> PipelineRun:
        """Begin simulating the pipeline for a submitted record.

        Raises ValueError if the record does not exist or is not in the
        SUBMITTED state.
        """
        record = self._records.get_record(record_id)
        if record is None:
            raise ValueError(f"Unknown record: {record_id}")
        if record.status != RecordStatus.SUBMITTED:
            raise ValueError(
                f"Record {record_id} is {record.status.value}; "
                f"only submitted records can enter the pipeline"
            )
        if record_id in self._runs:
            raise ValueError(f"Record {record_id} already has a pipeline run")

        run = PipelineRun(record_id, on_finish=self._release)
        self._runs[record_id] = run
        self._notify(record_id, PipelineStage.SUBMIT)

        for step, (status, stage) in enumerate(_TRANSITIONS, start=1):
            handle = self._scheduler.call_later(
                self._interval * step, self._advance, run, status, stage,
            )
            run._handles.append(handle)
        run._remaining = len(_TRANSITIONS)
        return run

    def cancel_all(self) -> None:
        """Cancel every run in progress. Records keep their current status."""
        for run in list(self._runs.values()):
            run.cancel()

    def _advance(
        self,
        run: PipelineRun,
        status: RecordStatus,
        stage: PipelineStage,
    ) -> None:
        # Runs on the scheduler: errors are logged, never raised.
        run._remaining = max(run._remaining - 1, 0)
        try:
            self._records.update_record(run.record_id, status=status)
        except Exception:
            logger.exception(
                "Pipeline transition to %s failed for record %s",
                status.value, run.record_id,
            )
        else:
            logger.info("Record %s -> %s", run.record_id, status.value)

        self._notify(run.record_id, stage)
        if status.is_terminal:
            self._notify(run.record_id, PipelineStage.COMPLETE)
            self._release(run)

    def _release(self, run: PipelineRun) -> None:
        if self._runs.get(run.record_id) is run:
            del self._runs[run.record_id]
            self._stages.pop(run.record_id, None)

    def _notify(self, record_id: str, stage: PipelineStage) -> None:
        self._stages[record_id] = stage
        for observer in list(self._observers):
            try:
                observer(record_id, stage)
            except Exception:
                logger.exception("Pipeline observer failed on %s", stage.value)
