"""Line codec for the event log: one checksummed JSON object per line."""

from __future__ import annotations

import json
import zlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..events import utc

RecordType = Literal["event", "assessment", "quality_report", "achievement"]


class RecordError(ValueError):
    """A single log line failed structural or checksum validation."""


class LogRecord(BaseModel):
    seq: int = Field(ge=1)
    record_type: RecordType
    timestamp: datetime
    data: Dict[str, Any]

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return utc(value)


def _canonical(body: Dict[str, Any]) -> str:
    return json.dumps(body, sort_keys=True, separators=(",", ":"))


def _checksum(canonical: str) -> str:
    return f"{zlib.crc32(canonical.encode('utf-8')):08x}"


def encode_record(record: LogRecord) -> bytes:
    body = record.model_dump(mode="json")
    line = dict(body)
    line["checksum"] = _checksum(_canonical(body))
    return (_canonical(line) + "\n").encode("utf-8")


def decode_record(line: bytes) -> LogRecord:
    if not line.endswith(b"\n"):
        raise RecordError("record is not newline-terminated (partial write)")
    try:
        parsed = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RecordError(f"record is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise RecordError("record is not a JSON object")
    checksum = parsed.pop("checksum", None)
    if checksum != _checksum(_canonical(parsed)):
        raise RecordError("checksum mismatch")
    try:
        return LogRecord.model_validate(parsed)
    except ValidationError as exc:
        raise RecordError(f"record has an invalid shape: {exc.errors()[0]['msg']}") from exc


@dataclass
class ScanResult:
    """Outcome of validating a whole log file."""

    records: List[LogRecord]
    valid_length: int
    total_length: int
    error: Optional[str] = None
    error_line: int = 0

    @property
    def needs_truncation(self) -> bool:
        return self.valid_length < self.total_length

    @property
    def last_seq(self) -> int:
        return self.records[-1].seq if self.records else 0

    @property
    def last_timestamp(self) -> Optional[datetime]:
        return self.records[-1].timestamp if self.records else None


class CorruptLog(RecordError):
    def __init__(self, line_number: int, reason: str) -> None:
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"line {line_number}: {reason}")


def scan_log(data: bytes) -> ScanResult:
    """Validate every line of ``data``.

    A bad final line is reported through ``valid_length`` so the caller can
    truncate it. A bad line followed by more data, or a sequence number that
    does not increase, raises ``CorruptLog``.
    """
    records: List[LogRecord] = []
    offset = 0
    line_number = 0
    total = len(data)
    while offset < total:
        line_number += 1
        newline = data.find(b"\n", offset)
        end = total if newline == -1 else newline + 1
        raw = data[offset:end]
        try:
            record = decode_record(raw)
        except RecordError as exc:
            if end >= total:
                return ScanResult(records, offset, total, str(exc), line_number)
            raise CorruptLog(line_number, str(exc)) from exc
        if records and record.seq <= records[-1].seq:
            raise CorruptLog(line_number, f"sequence {record.seq} does not follow {records[-1].seq}")
        records.append(record)
        offset = end
    return ScanResult(records, offset, total)


__all__ = [
    "CorruptLog",
    "LogRecord",
    "RecordError",
    "RecordType",
    "ScanResult",
    "decode_record",
    "encode_record",
    "scan_log",
]
