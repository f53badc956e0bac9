"""Persistence layer — key-value state and verification record storage."""

from hashwatch.persistence.kv_store import JsonFileStore, KeyValueStore, MemoryStore
from hashwatch.persistence.record_store import VerificationRecordStore

__all__ = ["JsonFileStore", "KeyValueStore", "MemoryStore", "VerificationRecordStore"]
