"""Verification record data models.

A record is created once per submission attempt. After creation only
``status`` may change, and only forward along the pipeline:

    submitted → refining → auditing → accumulated
    submitted → failed

``result`` is the expected verification outcome, fixed at creation from
the tamper flag. It says nothing about how far the pipeline has run.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class RecordStatus(str, enum.Enum):
    """Processing status of a verification record."""
    SUBMITTED = "submitted"
    REFINING = "refining"
    AUDITING = "auditing"
    ACCUMULATED = "accumulated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RecordStatus.ACCUMULATED, RecordStatus.FAILED)

    def can_advance_to(self, target: RecordStatus) -> bool:
        """True if moving from this status to ``target`` is a forward step.

        Staying put is allowed (idempotent writes). FAILED is only
        reachable from SUBMITTED.
        """
        if target == self:
            return True
        if self.is_terminal:
            return False
        if target == RecordStatus.FAILED:
            return self == RecordStatus.SUBMITTED
        return _PIPELINE_ORDER.index(target) > _PIPELINE_ORDER.index(self)


_PIPELINE_ORDER = [
    RecordStatus.SUBMITTED,
    RecordStatus.REFINING,
    RecordStatus.AUDITING,
    RecordStatus.ACCUMULATED,
]


class VerificationResult(str, enum.Enum):
    """Expected outcome of the remote hash comparison."""
    VALID = "valid"
    INVALID = "invalid"
    ERROR = "error"


# Fields that may never be changed after creation.
IMMUTABLE_FIELDS = frozenset({
    "record_id", "preimage", "hash", "payload", "tampered",
    "result", "timestamp_utc",
})


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PayloadBreakdown:
    """Display view of a decoded payload.

    ``malformed`` marks the empty breakdown returned for undecodable input.
    """
    expected_hash: str
    preimage_hex: str
    preimage_text: str = ""
    malformed: bool = False

    @staticmethod
    def empty() -> PayloadBreakdown:
        return PayloadBreakdown(expected_hash="", preimage_hex="", malformed=True)


@dataclass(frozen=True)
class HistoryStats:
    """Aggregate counts over the verification history."""
    total: int = 0
    valid: int = 0
    invalid: int = 0
    pending: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "pending": self.pending,
            "failed": self.failed,
        }


@dataclass
class VerificationRecord:
    """A single hash-verification submission and its lifecycle."""
    record_id: str
    preimage: str
    hash: str
    payload: str
    tampered: bool
    status: RecordStatus
    timestamp_utc: datetime
    result: Optional[VerificationResult] = None
    package_id: Optional[str] = None
    anchor_slot: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        """Still moving through the pipeline and not an errored submission."""
        return (
            not self.status.is_terminal
            and self.result != VerificationResult.ERROR
        )

    @property
    def payload_breakdown(self) -> PayloadBreakdown:
        # Local import: the codec depends on this module for PayloadBreakdown.
        from hashwatch.codec.payload import parse_payload
        return parse_payload(self.payload)

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "preimage": self.preimage,
            "hash": self.hash,
            "payload": self.payload,
            "tampered": self.tampered,
            "status": self.status.value,
            "timestamp_utc": self.timestamp_utc.strftime(TIMESTAMP_FORMAT),
            "result": self.result.value if self.result else None,
            "package_id": self.package_id,
            "anchor_slot": self.anchor_slot,
            "error": self.error,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> VerificationRecord:
        result = data.get("result")
        return VerificationRecord(
            record_id=data["record_id"],
            preimage=data["preimage"],
            hash=data["hash"],
            payload=data["payload"],
            tampered=data["tampered"],
            status=RecordStatus(data["status"]),
            timestamp_utc=datetime.strptime(
                data["timestamp_utc"], TIMESTAMP_FORMAT,
            ).replace(tzinfo=timezone.utc),
            result=VerificationResult(result) if result else None,
            package_id=data.get("package_id"),
            anchor_slot=data.get("anchor_slot"),
            error=data.get("error"),
        )
