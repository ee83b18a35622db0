"""Rebuild nested session trees from flat timing records.

Storage is record-flat: each timing is persisted on its own without a parent
pointer. The tree is recovered from interval containment. Timings are sorted
by start time (longest first on equal starts, then input order) and walked
with a stack of ancestors that are still open when the next timing starts.
A timing that starts before its predecessor closes becomes its child even if
it outlives it; millisecond rounding in persisted durations makes that common.

Timings that were never stopped are stretched to the end of the session
window, flagged ``anomalous`` and reported in ``Session.warnings``.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Iterable, List, Optional

from dbtrace.utils.logging import get_logger

from .models import Session, Timing, elapsed_ms

logger = get_logger(__name__)


def _envelope_end(timings: List[Timing]) -> Optional[datetime]:
    instants = [timing.stopped_at or timing.started_at for timing in timings]
    return max(instants) if instants else None


def sort_session_timings(
    timings: Iterable[Timing], *, window_end: Optional[datetime] = None
) -> List[Timing]:
    """Return the root timings of the tree built from ``timings``.

    The input is left untouched; every timing in the result is a copy with
    its ``children`` rebuilt.
    """

    items = [replace(timing, children=[], anomalous=timing.is_open) for timing in timings]
    if not items:
        return []
    end = window_end or _envelope_end(items)

    def effective_stop(timing: Timing) -> datetime:
        if timing.stopped_at is not None:
            return timing.stopped_at
        return max(end, timing.started_at)

    # Two stable passes: longest first, then by start.
    items.sort(key=effective_stop, reverse=True)
    items.sort(key=lambda timing: timing.started_at)

    roots: List[Timing] = []
    stack: List[Timing] = []
    for timing in items:
        while stack:
            top_stop = effective_stop(stack[-1])
            if top_stop < timing.started_at or (
                top_stop == timing.started_at and effective_stop(timing) > top_stop
            ):
                stack.pop()
                continue
            break
        (stack[-1].children if stack else roots).append(timing)
        stack.append(timing)
    return roots


def reconstruct_session(session: Session, timings: Iterable[Timing]) -> Session:
    """Attach ``timings`` to ``session`` as a nested tree.

    Returns a new :class:`Session`. A missing session duration is derived from
    the envelope of the timings; timings belonging to another session are
    dropped with a warning.
    """

    warnings = list(session.warnings)
    owned: List[Timing] = []
    for timing in timings:
        if timing.session_id != session.id:
            warnings.append(f"timing {timing.id} belongs to session {timing.session_id}; ignored")
            continue
        owned.append(timing)

    duration = session.duration_ms
    envelope = _envelope_end(owned)
    window_end = session.stopped_at or envelope
    roots = sort_session_timings(owned, window_end=window_end)

    if duration is None and envelope is not None:
        duration = max(0, elapsed_ms(envelope - session.started_at))
    elif duration is not None and envelope is not None and session.stopped_at is not None:
        if envelope > session.stopped_at:
            warnings.append(
                f"timings extend {elapsed_ms(envelope - session.stopped_at)}ms past the session duration"
            )

    rebuilt = replace(session, duration_ms=duration, timings=roots, warnings=warnings)
    for timing in rebuilt.open_timings:
        rebuilt.warnings.append(f"timing {timing.id} ({timing.name}) was never stopped")
    if len(rebuilt.warnings) > len(session.warnings):
        logger.debug(
            "session reconstructed with warnings",
            extra={"session_id": session.id, "warnings": len(rebuilt.warnings)},
        )
    return rebuilt


__all__ = ["reconstruct_session", "sort_session_timings"]
