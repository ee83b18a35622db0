"""Timing data model and session reconstruction."""

from __future__ import annotations

from dbtrace.timings.models import (
    DB_TIMING_TYPE,
    SESSION_TYPE,
    STEP_TIMING_TYPE,
    Session,
    Timing,
    format_timestamp,
    parse_timestamp,
)
from dbtrace.timings.reconstructor import reconstruct_session, sort_session_timings
from dbtrace.timings.tags import TagSet

__all__ = [
    "DB_TIMING_TYPE",
    "SESSION_TYPE",
    "STEP_TIMING_TYPE",
    "Session",
    "TagSet",
    "Timing",
    "format_timestamp",
    "parse_timestamp",
    "reconstruct_session",
    "sort_session_timings",
]
