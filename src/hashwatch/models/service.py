"""Remote service model and service-id normalization."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from hashwatch.errors import InvalidServiceIdError

SERVICE_ID_LENGTH = 8
BOOTSTRAP_SERVICE_ID = "00000000"

_SERVICE_ID_RE = re.compile(r"^[0-9a-f]{1,8}$")


def normalize_service_id(raw_id: str) -> str:
    """Normalize user input to an 8-character lowercase hex service id.

    Accepts an optional ``0x`` prefix (any case) and fewer than eight
    digits, which are left-padded with zeros.

    Raises InvalidServiceIdError if the cleaned value is not 1-8 hex chars.
    """
    clean = raw_id.strip().lower()
    if clean.startswith("0x"):
        clean = clean[2:]
    if not _SERVICE_ID_RE.match(clean):
        raise InvalidServiceIdError(
            "Invalid service ID format. Must be up to 8 hex characters."
        )
    return clean.rjust(SERVICE_ID_LENGTH, "0")


@dataclass(frozen=True)
class Service:
    """A remotely addressable service that accepts submissions."""
    service_id: str
    name: str
    version: Optional[str] = None
    author: Optional[str] = None

    def __post_init__(self) -> None:
        if len(self.service_id) != SERVICE_ID_LENGTH or not _SERVICE_ID_RE.match(
            self.service_id
        ):
            raise InvalidServiceIdError(
                f"Service id must be {SERVICE_ID_LENGTH} lowercase hex "
                f"characters, got {self.service_id!r}"
            )
        if not self.name:
            raise ValueError("Service name is required")
