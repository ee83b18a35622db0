"""Instrumentation of database command execution."""

from __future__ import annotations

from dbtrace.profiling.filters import (
    DisableProfilingFilter,
    FilterSet,
    NameContainsProfilingFilter,
    create_filter,
    register_filter,
)
from dbtrace.profiling.profiler import DbCommand, ExecuteKind, Profiler, ProfilingSession
from dbtrace.profiling.sinks import LoggingSink, MemorySink

__all__ = [
    "DbCommand",
    "DisableProfilingFilter",
    "ExecuteKind",
    "FilterSet",
    "LoggingSink",
    "MemorySink",
    "NameContainsProfilingFilter",
    "Profiler",
    "ProfilingSession",
    "create_filter",
    "register_filter",
]
