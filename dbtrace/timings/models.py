"""Timing and session data structures.

These are the types shared by the profiler (which produces open timings and
closes them) and by the log sources (which rebuild them from raw records and
hand them to the reconstructor). ``to_record`` yields the wire shape that
upstream storage persists, one JSON object per event.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Union
from uuid import UUID, uuid4

from .tags import TagSet

SESSION_TYPE = "session"
DB_TIMING_TYPE = "db"
STEP_TIMING_TYPE = "step"

Timestamp = Union[datetime, int, float, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Timestamp) -> datetime:
    """Turn an ISO-8601 string or epoch milliseconds into an aware datetime."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    text = str(value).strip()
    if not text:
        raise ValueError("empty timestamp")
    try:
        return parse_timestamp(float(text))
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def elapsed_ms(delta: timedelta) -> int:
    return int(round(delta.total_seconds() * 1000))


def monotonic_since(clock: float) -> timedelta:
    """Time elapsed since a ``time.perf_counter()`` reading."""

    return timedelta(seconds=max(0.0, time.perf_counter() - clock))


@dataclass(eq=False)
class Timing:
    """One measured operation within a session.

    A timing is open while ``stopped_at`` is unset. Nesting is structural:
    ``children`` is only populated by the reconstructor from interval
    containment, never stored.
    """

    session_id: UUID
    name: str
    started_at: datetime
    stopped_at: Optional[datetime] = None
    type: str = DB_TIMING_TYPE
    id: UUID = field(default_factory=uuid4)
    correlation_id: Optional[UUID] = None
    tags: TagSet = field(default_factory=TagSet)
    data: Dict[str, str] = field(default_factory=dict)
    children: List["Timing"] = field(default_factory=list)
    anomalous: bool = False
    # perf_counter() reading taken with started_at; stop() measures from it.
    started_clock: Optional[float] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.session_id is None:
            raise ValueError("timing requires a session id")
        if self.stopped_at is not None and self.stopped_at < self.started_at:
            raise ValueError("timing stopped before it started")

    @property
    def is_open(self) -> bool:
        return self.stopped_at is None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.stopped_at is None:
            return None
        return elapsed_ms(self.stopped_at - self.started_at)

    def stop(self, at: Optional[datetime] = None) -> bool:
        """Close the timing. Only the first call has an effect."""

        if self.stopped_at is not None:
            return False
        if at is not None:
            stopped_at = at
        elif self.started_clock is not None:
            stopped_at = self.started_at + monotonic_since(self.started_clock)
        else:
            stopped_at = utcnow()
        if stopped_at < self.started_at:
            stopped_at = self.started_at
        self.stopped_at = stopped_at
        return True

    def walk(self) -> Iterator["Timing"]:
        yield self
        for child in self.children:
            yield from child.walk()

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "type": self.type,
            "id": str(self.id),
            "sessionId": str(self.session_id),
            "correlationId": str(self.correlation_id) if self.correlation_id else None,
            "name": self.name,
            "startedAt": format_timestamp(self.started_at),
            "data": dict(self.data),
            "tags": self.tags.to_list(),
        }
        if self.stopped_at is not None:
            record["duration"] = self.duration_ms
        return record


@dataclass(eq=False)
class Session:
    """Root aggregate: one logical unit of work and its timing tree."""

    id: UUID
    name: str
    started_at: datetime
    duration_ms: Optional[int] = None
    correlation_id: Optional[UUID] = None
    tags: TagSet = field(default_factory=TagSet)
    data: Dict[str, str] = field(default_factory=dict)
    timings: List[Timing] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def stopped_at(self) -> Optional[datetime]:
        if self.duration_ms is None:
            return None
        return self.started_at + timedelta(milliseconds=self.duration_ms)

    @property
    def open_timings(self) -> List[Timing]:
        return [timing for timing in self.walk() if timing.anomalous]

    def walk(self) -> Iterator[Timing]:
        """Iterate every timing depth first, parents before children."""

        for timing in self.timings:
            yield from timing.walk()

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "type": SESSION_TYPE,
            "id": str(self.id),
            "sessionId": str(self.id),
            "correlationId": str(self.correlation_id) if self.correlation_id else None,
            "name": self.name,
            "startedAt": format_timestamp(self.started_at),
            "data": dict(self.data),
            "tags": self.tags.to_list(),
        }
        if self.duration_ms is not None:
            record["duration"] = self.duration_ms
        return record

    def to_dict(self) -> Dict[str, Any]:
        """Nested representation including children and warnings."""

        def _timing(timing: Timing) -> Dict[str, Any]:
            payload = timing.to_record()
            payload["anomalous"] = timing.anomalous
            payload["children"] = [_timing(child) for child in timing.children]
            return payload

        payload = self.to_record()
        payload["timings"] = [_timing(timing) for timing in self.timings]
        payload["warnings"] = list(self.warnings)
        return payload


__all__ = [
    "DB_TIMING_TYPE",
    "SESSION_TYPE",
    "STEP_TIMING_TYPE",
    "Session",
    "Timing",
    "elapsed_ms",
    "format_timestamp",
    "parse_timestamp",
    "utcnow",
]
