"""Read contract shared by every log source.

A log source loads raw records written upstream, one JSON object per
session or timing event, and turns them back into :class:`Session` trees.
Decoding is shared here so every backend applies the same validation, the
same data-field filtering and the same malformed-record policy: a record
that fails validation is skipped and logged, the rest of the read goes on.
"""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from dbtrace.timings.models import SESSION_TYPE, Session, Timing, parse_timestamp
from dbtrace.timings.reconstructor import reconstruct_session
from dbtrace.timings.tags import TagSet
from dbtrace.utils.errors import MalformedRecordError
from dbtrace.utils.logging import get_logger

logger = get_logger(__name__)

Identifier = Union[UUID, str]

# One year; anything longer is a corrupt record.
MAX_DURATION_MS = 365 * 24 * 60 * 60 * 1000


class RawLogRecord(BaseModel):
    """Validated form of one stored event.

    Unknown top-level keys are kept as extras and later folded into the
    record's data, which is where indexers put fields such as ``@timestamp``.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    session_id: UUID = Field(alias="sessionId")
    id: Optional[UUID] = None
    correlation_id: Optional[UUID] = Field(default=None, alias="correlationId")
    name: str = ""
    started_at: datetime = Field(alias="startedAt")
    duration: Optional[float] = Field(default=None, ge=0, le=MAX_DURATION_MS, allow_inf_nan=False)
    data: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)

    @field_validator("started_at", mode="before")
    @classmethod
    def _parse_started_at(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    @field_validator("id", "correlation_id", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _parse_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return TagSet.parse(value).to_list()
        return value

    @field_validator("data", mode="before")
    @classmethod
    def _parse_data(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def _check_stop_time(self) -> "RawLogRecord":
        try:
            self.stopped_at
        except OverflowError as exc:
            raise ValueError(f"duration {self.duration} overflows the start time") from exc
        return self

    @property
    def is_session(self) -> bool:
        return self.type == SESSION_TYPE

    @property
    def duration_ms(self) -> Optional[int]:
        return None if self.duration is None else int(round(self.duration))

    @property
    def stopped_at(self) -> Optional[datetime]:
        if self.duration_ms is None:
            return None
        return self.started_at + timedelta(milliseconds=self.duration_ms)


def decode_record(raw: Any) -> RawLogRecord:
    """Validate one raw record, raising :class:`MalformedRecordError`."""

    if not isinstance(raw, Mapping):
        raise MalformedRecordError(f"expected a JSON object, got {type(raw).__name__}")
    try:
        return RawLogRecord.model_validate(dict(raw))
    except (ValidationError, OverflowError) as exc:
        raise MalformedRecordError(str(exc)) from exc


def as_uuid(value: Identifier) -> UUID:
    if value is None:
        raise ValueError("identifier is required")
    return value if isinstance(value, UUID) else UUID(str(value))


class LogSource(ABC):
    """Backend-agnostic read contract.

    Parameters
    ----------
    ignore_data_fields:
        Data keys never exposed to callers, typically bookkeeping fields
        added by the storage pipeline.
    """

    ignore_data_fields: frozenset = frozenset()

    def __init__(self, *, ignore_data_fields: Optional[Iterable[str]] = None) -> None:
        if ignore_data_fields is not None:
            self.ignore_data_fields = frozenset(ignore_data_fields)

    @abstractmethod
    def load_latest_session_summaries(self, top: int = 100, min_duration: int = 0) -> List[Session]:
        """Newest session summaries with ``duration >= min_duration``, timings omitted."""

    @abstractmethod
    def load_session(self, session_id: Identifier) -> Optional[Session]:
        """Load a session and its timing tree, or ``None``."""

    @abstractmethod
    def drill_down_session(self, correlation_id: Identifier) -> Optional[Session]:
        """Load the session started on behalf of ``correlation_id``."""

    @abstractmethod
    def drill_up_session(self, correlation_id: Identifier) -> Optional[Session]:
        """Load the session owning the timing that issued ``correlation_id``."""

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self) -> "LogSource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def decode(self, raw: Any, *, location: str = "") -> Optional[RawLogRecord]:
        """Validate ``raw``; malformed records are logged and skipped."""

        try:
            return decode_record(raw)
        except MalformedRecordError as exc:
            logger.warning(
                "skipping malformed record",
                extra={"source": location or type(self).__name__, "reason": str(exc)},
            )
            return None

    def is_ignored_data_field(self, key: str) -> bool:
        return key in self.ignore_data_fields

    def parse_data(self, record: RawLogRecord) -> Dict[str, str]:
        merged: Dict[str, Any] = dict(record.model_extra or {})
        merged.update(record.data)
        data: Dict[str, str] = {}
        for key, value in merged.items():
            if self.is_ignored_data_field(key) or value is None:
                continue
            data[key] = value if isinstance(value, str) else json.dumps(value, default=str)
        return data

    def parse_session_fields(self, record: RawLogRecord) -> Session:
        return Session(
            id=record.session_id,
            name=record.name,
            started_at=record.started_at,
            duration_ms=record.duration_ms,
            correlation_id=record.correlation_id,
            tags=TagSet(record.tags),
            data=self.parse_data(record),
        )

    def parse_timing_fields(self, record: RawLogRecord) -> Timing:
        timing = Timing(
            session_id=record.session_id,
            name=record.name,
            started_at=record.started_at,
            stopped_at=record.stopped_at,
            type=record.type,
            correlation_id=record.correlation_id,
            tags=TagSet(record.tags),
            data=self.parse_data(record),
        )
        if record.id is not None:
            timing.id = record.id
        return timing

    def build_session(self, records: Iterable[RawLogRecord]) -> Optional[Session]:
        """Assemble one session from its raw records, or ``None`` without a session record."""

        session_record: Optional[RawLogRecord] = None
        timings: List[Timing] = []
        for record in records:
            if record.is_session:
                if session_record is None:
                    session_record = record
                continue
            timings.append(self.parse_timing_fields(record))
        if session_record is None:
            return None
        return reconstruct_session(self.parse_session_fields(session_record), timings)


__all__ = ["Identifier", "LogSource", "RawLogRecord", "as_uuid", "decode_record"]
