"""Destinations for closed timing and session records.

A sink is any callable accepting the raw record dictionary. Persisting the
records is the job of whatever sits behind the sink; the profiler only
guarantees each record is handed over once, when it closes.
"""
from __future__ import annotations

import json
import threading
from typing import Any, Callable, Dict, List

from dbtrace.timings.models import SESSION_TYPE
from dbtrace.utils.logging import RECORDS_LOGGER, get_logger

RecordSink = Callable[[Dict[str, Any]], None]


class MemorySink:
    """Thread-safe in-process collector."""

    def __init__(self) -> None:
        self._records: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def __call__(self, record: Dict[str, Any]) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._records)

    def sessions(self) -> List[Dict[str, Any]]:
        return [record for record in self.records if record["type"] == SESSION_TYPE]

    def timings(self) -> List[Dict[str, Any]]:
        return [record for record in self.records if record["type"] != SESSION_TYPE]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class LoggingSink:
    """Write each record as one JSON line on the records logger.

    With :func:`dbtrace.utils.logging.configure_logging` the records logger
    appends to ``sessions.jsonl``, the format :class:`FileLogSource` reads.
    """

    def __init__(self, logger_name: str = RECORDS_LOGGER) -> None:
        self._logger = get_logger(logger_name)

    def __call__(self, record: Dict[str, Any]) -> None:
        self._logger.info(json.dumps(record, ensure_ascii=False))


__all__ = ["LoggingSink", "MemorySink", "RecordSink"]
