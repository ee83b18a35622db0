"""Execution-time profiling of database commands.

The :class:`Profiler` is shared by every thread of a process. Each unit of
work opens a session with :meth:`Profiler.session`; the session is bound to
the calling context through :mod:`contextvars`, so concurrent requests on
different threads never see each other's sessions.

Database wrappers call :meth:`Profiler.execute_and_profile` around every
command. Reader commands hand back a result stream that is consumed after the
call returns, so their timing stays open until the wrapper reports the
stream exhausted or disposed through :meth:`Profiler.notify_stream_finished`.
"""
from __future__ import annotations

import json
import threading
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, TypeVar, Union
from uuid import UUID, uuid4

from dbtrace.timings.models import (
    DB_TIMING_TYPE,
    STEP_TIMING_TYPE,
    Session,
    Timing,
    elapsed_ms,
    monotonic_since,
    utcnow,
)
from dbtrace.timings.reconstructor import reconstruct_session
from dbtrace.timings.tags import TagSet
from dbtrace.utils.logging import get_logger

from .filters import FilterSet
from .sinks import LoggingSink, RecordSink

logger = get_logger(__name__)

T = TypeVar("T")
Tags = Union[TagSet, Iterable[str], None]

_CURRENT_SESSION: ContextVar[Optional["ProfilingSession"]] = ContextVar(
    "dbtrace_current_session", default=None
)


class ExecuteKind(str, Enum):
    """How a command is executed; only readers stream their result."""

    NON_QUERY = "non_query"
    SCALAR = "scalar"
    READER = "reader"

    @property
    def streams(self) -> bool:
        return self is ExecuteKind.READER


@dataclass(frozen=True)
class DbCommand:
    """Description of a command handed to the profiler."""

    sql: str
    parameters: Any = None

    @property
    def name(self) -> str:
        return " ".join(self.sql.split())

    def describe(self, kind: ExecuteKind) -> Dict[str, str]:
        data = {"executeType": kind.value, "sql": self.sql}
        if self.parameters is not None:
            data["parameters"] = json.dumps(self.parameters, default=str)
        return data


def _as_tags(tags: Tags) -> TagSet:
    if isinstance(tags, TagSet):
        return tags
    if isinstance(tags, str):
        return TagSet.parse(tags)
    return TagSet(tags)


class ProfilingSession:
    """A session in flight. Thread-safe for timing registration."""

    def __init__(
        self,
        name: str,
        *,
        tags: Optional[TagSet] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.id = uuid4()
        self.name = name
        self.tags = tags or TagSet()
        self.correlation_id = correlation_id
        self.started_at = utcnow()
        self._clock = time.perf_counter()
        self.duration_ms: Optional[int] = None
        self._timings: List[Timing] = []
        self._lock = threading.Lock()

    @property
    def is_stopped(self) -> bool:
        return self.duration_ms is not None

    @property
    def timings(self) -> List[Timing]:
        with self._lock:
            return list(self._timings)

    def start_timing(
        self,
        name: str,
        *,
        type: str = DB_TIMING_TYPE,
        tags: Optional[TagSet] = None,
        data: Optional[Dict[str, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Timing:
        timing = Timing(
            session_id=self.id,
            name=name,
            started_at=utcnow(),
            started_clock=time.perf_counter(),
            type=type,
            tags=tags or TagSet(),
            data=dict(data or {}),
            correlation_id=correlation_id,
        )
        with self._lock:
            self._timings.append(timing)
        return timing

    def stop(self) -> bool:
        if self.duration_ms is not None:
            return False
        self.duration_ms = elapsed_ms(monotonic_since(self._clock))
        return True

    def to_session(self) -> Session:
        """Summary view of the session without timings."""

        return Session(
            id=self.id,
            name=self.name,
            started_at=self.started_at,
            duration_ms=self.duration_ms,
            correlation_id=self.correlation_id,
            tags=self.tags,
        )

    def snapshot(self) -> Session:
        """Current timings arranged into a tree."""

        return reconstruct_session(self.to_session(), self.timings)


class Profiler:
    """Process-wide collector of database timings.

    Parameters
    ----------
    sink:
        Callable receiving each closed record exactly once. Defaults to a
        :class:`LoggingSink`.
    filters:
        :class:`FilterSet` consulted before a session or timing starts.
    """

    def __init__(self, sink: Optional[RecordSink] = None, filters: Optional[FilterSet] = None) -> None:
        self._sink: RecordSink = sink if sink is not None else LoggingSink()
        self._filters = filters if filters is not None else FilterSet()
        self._open_streams: Dict[int, Tuple[object, Timing]] = {}
        self._lock = threading.Lock()

    @property
    def filters(self) -> FilterSet:
        return self._filters

    @property
    def open_stream_count(self) -> int:
        with self._lock:
            return len(self._open_streams)

    @staticmethod
    def current_session() -> Optional[ProfilingSession]:
        return _CURRENT_SESSION.get()

    @contextmanager
    def session(
        self,
        name: str,
        tags: Tags = None,
        *,
        correlation_id: Optional[UUID] = None,
    ) -> Iterator[Optional[ProfilingSession]]:
        """Profile the enclosed unit of work as one session.

        Yields ``None`` when a filter vetoes the session; commands executed
        inside then run unprofiled.
        """

        tag_set = _as_tags(tags)
        if self._filters.should_exclude(name, tag_set):
            logger.debug("session excluded by filter", extra={"session_name": name})
            token = _CURRENT_SESSION.set(None)
            try:
                yield None
            finally:
                _CURRENT_SESSION.reset(token)
            return

        session = ProfilingSession(name, tags=tag_set, correlation_id=correlation_id)
        token = _CURRENT_SESSION.set(session)
        try:
            yield session
        finally:
            _CURRENT_SESSION.reset(token)
            self._finish_session(session)

    def execute_and_profile(
        self,
        kind: Union[ExecuteKind, str],
        command: Union[DbCommand, str],
        execute: Callable[[], T],
        tags: Tags = None,
    ) -> T:
        """Run ``execute`` and time it inside the current session.

        When no session is active, or a filter excludes the command, the
        callback runs untouched. A failing callback still closes its timing,
        annotated with ``data["error"]``, before the exception propagates.
        """

        kind = ExecuteKind(kind)
        descriptor = command if isinstance(command, DbCommand) else DbCommand(str(command))
        tag_set = _as_tags(tags)
        session = _CURRENT_SESSION.get()
        if session is None or self._filters.should_exclude(descriptor.name, tag_set):
            return execute()

        timing = session.start_timing(descriptor.name, tags=tag_set, data=descriptor.describe(kind))
        try:
            result = execute()
        except BaseException as exc:
            timing.data["error"] = f"{type(exc).__name__}: {exc}"
            self._close(timing)
            raise

        if kind.streams and result is not None:
            with self._lock:
                displaced = self._open_streams.get(id(result))
                self._open_streams[id(result)] = (result, timing)
            # Re-executing a cursor ends the stream it was still holding.
            if displaced is not None:
                self._close(displaced[1])
        else:
            self._close(timing)
        return result

    def notify_stream_finished(self, handle: object) -> None:
        """Close the reader timing registered for ``handle``.

        Unknown handles and repeated notifications are ignored.
        """

        with self._lock:
            entry = self._open_streams.pop(id(handle), None)
        if entry is None:
            return
        self._close(entry[1])

    @contextmanager
    def step(
        self,
        name: str,
        tags: Tags = None,
        *,
        correlation_id: Optional[UUID] = None,
    ) -> Iterator[Optional[Timing]]:
        """Time an arbitrary block inside the current session.

        Commands executed inside the block nest under the step once the
        session is reconstructed. ``correlation_id`` marks the step as the
        origin of work done by another session.
        """

        tag_set = _as_tags(tags)
        session = _CURRENT_SESSION.get()
        if session is None or self._filters.should_exclude(name, tag_set):
            yield None
            return

        timing = session.start_timing(
            name, type=STEP_TIMING_TYPE, tags=tag_set, correlation_id=correlation_id
        )
        try:
            yield timing
        except BaseException as exc:
            timing.data["error"] = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            self._close(timing)

    def _close(self, timing: Timing) -> None:
        if timing.stop():
            self._emit(timing.to_record())

    def _finish_session(self, session: ProfilingSession) -> None:
        if not session.stop():
            return
        still_open = [timing for timing in session.timings if timing.is_open]
        if still_open:
            logger.warning(
                "session finished with open timings",
                extra={"session_id": session.id, "open_timings": len(still_open)},
            )
        self._emit(session.to_session().to_record())

    def _emit(self, record: Dict[str, Any]) -> None:
        try:
            self._sink(record)
        except Exception as exc:  # pragma: no cover - sink side effects only
            logger.exception("timing sink failed", exc_info=exc)


__all__ = [
    "DbCommand",
    "ExecuteKind",
    "Profiler",
    "ProfilingSession",
]
