"""Persistence for learner event logs, snapshots, profiles, and backups."""

from .event_store import BackupHandle, EventStore, RecordView
from .locking import FileLock
from .records import LogRecord, decode_record, encode_record, scan_log

__all__ = [
    "BackupHandle",
    "EventStore",
    "FileLock",
    "LogRecord",
    "RecordView",
    "decode_record",
    "encode_record",
    "scan_log",
]
