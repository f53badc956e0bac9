"""Verification record store — the source of truth for submission history.

Records are kept newest-first under a single key of the injected
KeyValueStore. Each operation reads the list fresh and writes the whole
list back, so an update for a record always sees the latest prior write
for that record.

Records are append-only: nothing is deleted individually, and after
creation only ``status`` (forward only) and the collaborator-assigned
fields may change. Clearing removes everything at once.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from hashwatch.codec.payload import parse_payload
from hashwatch.models.record import (
    IMMUTABLE_FIELDS,
    HistoryStats,
    PayloadBreakdown,
    RecordStatus,
    VerificationRecord,
    VerificationResult,
)
from hashwatch.persistence.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_KEY = "jam-verification-history"

_RECORD_FIELDS = frozenset(f.name for f in dataclasses.fields(VerificationRecord))


def _new_record_id() -> str:
    return uuid.uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VerificationRecordStore:
    """Persists, queries, and aggregates verification records.

    Usage:
        records = VerificationRecordStore(MemoryStore())
        record = records.add_record(
            preimage="hello", hash=digest_hex, payload=payload_hex,
            tampered=False, status=RecordStatus.SUBMITTED,
            result=VerificationResult.VALID,
        )
        records.update_record(record.record_id, status=RecordStatus.REFINING)
        stats = records.get_stats()
    """

    def __init__(
        self,
        kv: KeyValueStore,
        history_key: str = DEFAULT_HISTORY_KEY,
        id_factory: Callable[[], str] = _new_record_id,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._kv = kv
        self._key = history_key
        self._id_factory = id_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Storage round-trip
    # ------------------------------------------------------------------

    def _read(self) -> list[VerificationRecord]:
        return [
            VerificationRecord.from_dict(data)
            for data in self._kv.get(self._key, [])
        ]

    def _write(self, records: list[VerificationRecord]) -> None:
        self._kv.set(self._key, [r.to_dict() for r in records])

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_record(
        self,
        preimage: str,
        hash: str,
        payload: str,
        tampered: bool,
        status: RecordStatus = RecordStatus.SUBMITTED,
        result: Optional[VerificationResult] = None,
        package_id: Optional[str] = None,
        anchor_slot: Optional[int] = None,
        error: Optional[str] = None,
    ) -> VerificationRecord:
        """Create a record, prepend it to history, and persist.

        Only SUBMITTED and FAILED are valid initial statuses. Storage
        errors propagate; the record is returned only once written.
        """
        if status not in (RecordStatus.SUBMITTED, RecordStatus.FAILED):
            raise ValueError(
                f"New records must start as submitted or failed, got {status.value}"
            )
        record = VerificationRecord(
            record_id=self._id_factory(),
            preimage=preimage,
            hash=hash,
            payload=payload,
            tampered=tampered,
            status=status,
            timestamp_utc=self._clock(),
            result=result,
            package_id=package_id,
            anchor_slot=anchor_slot,
            error=error,
        )
        records = self._read()
        if any(r.record_id == record.record_id for r in records):
            raise ValueError(f"Duplicate record ID: {record.record_id}")
        records.insert(0, record)
        self._write(records)
        logger.info(
            "Stored record %s status=%s tampered=%s",
            record.record_id, record.status.value, record.tampered,
        )
        return record

    def update_record(self, record_id: str, **fields: Any) -> None:
        """Merge ``fields`` into the record with ``record_id``.

        Missing records are ignored (history may have been cleared while
        a pipeline run was in flight).

        Raises ValueError for immutable or unknown fields, or a status
        change that would move the record backward.
        """
        blocked = IMMUTABLE_FIELDS.intersection(fields)
        if blocked:
            raise ValueError(f"Cannot update immutable field(s): {sorted(blocked)}")

        records = self._read()
        record = next((r for r in records if r.record_id == record_id), None)
        if record is None:
            logger.debug("Update for unknown record %s ignored", record_id)
            return

        for name, value in fields.items():
            if name not in _RECORD_FIELDS:
                raise ValueError(f"Unknown record field: {name}")
            if name == "status":
                value = RecordStatus(value)
                if not record.status.can_advance_to(value):
                    raise ValueError(
                        f"Record {record_id}: invalid status transition "
                        f"{record.status.value} -> {value.value}"
                    )
            setattr(record, name, value)
        self._write(records)

    def clear_history(self) -> None:
        """Remove every record. Safe to call on an empty history."""
        self._write([])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_record(self, record_id: str) -> Optional[VerificationRecord]:
        return next(
            (r for r in self._read() if r.record_id == record_id), None,
        )

    def get_history(self, max_items: Optional[int] = None) -> list[VerificationRecord]:
        """Return records newest first, optionally truncated."""
        records = self._read()
        if max_items is not None:
            return records[:max_items]
        return records

    def get_records_by_slot(self, slot: int) -> list[VerificationRecord]:
        return [r for r in self._read() if r.anchor_slot == slot]

    def recent_slots(self, limit: int) -> list[int]:
        """Distinct anchor slots in history, highest first."""
        slots = {
            r.anchor_slot for r in self._read() if r.anchor_slot is not None
        }
        return sorted(slots, reverse=True)[:limit]

    def get_stats(self) -> HistoryStats:
        """Aggregate counts.

        valid/invalid come from ``result``, failed from ``status``.
        pending is every record not yet terminal whose result is not
        ``error``; a record can therefore be counted in both valid and
        pending while its pipeline is still running.
        """
        records = self._read()
        return HistoryStats(
            total=len(records),
            valid=sum(1 for r in records if r.result == VerificationResult.VALID),
            invalid=sum(1 for r in records if r.result == VerificationResult.INVALID),
            pending=sum(1 for r in records if r.is_pending),
            failed=sum(1 for r in records if r.status == RecordStatus.FAILED),
        )

    @staticmethod
    def parse_payload(payload_hex: str) -> PayloadBreakdown:
        """Display breakdown of a hex payload; never raises."""
        return parse_payload(payload_hex)
