"""Read-only log sources for stored profiling sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Dict

from dbtrace.sources.base import LogSource, RawLogRecord, decode_record
from dbtrace.sources.file import FileLogSource
from dbtrace.sources.search_index import SearchIndexLogSource
from dbtrace.utils.errors import ConfigurationError

if TYPE_CHECKING:  # pragma: no cover
    from dbtrace.core.config import LogSourceSettings


def _file_source(settings: "LogSourceSettings") -> LogSource:
    return FileLogSource(settings.path, ignore_data_fields=settings.ignore_data_fields)


def _search_index_source(settings: "LogSourceSettings") -> LogSource:
    return SearchIndexLogSource(
        settings.url,
        timeout=settings.timeout,
        max_hits=settings.max_hits,
        ignore_data_fields=settings.ignore_data_fields,
    )


SOURCE_REGISTRY: Dict[str, Callable[["LogSourceSettings"], LogSource]] = {
    "file": _file_source,
    "elasticsearch": _search_index_source,
}


def create_log_source(settings: "LogSourceSettings") -> LogSource:
    """Build the backend named by ``settings.kind``."""

    factory = SOURCE_REGISTRY.get(settings.kind)
    if factory is None:
        raise ConfigurationError(f"Unknown log source kind: {settings.kind}")
    return factory(settings)


__all__ = [
    "FileLogSource",
    "LogSource",
    "RawLogRecord",
    "SOURCE_REGISTRY",
    "SearchIndexLogSource",
    "create_log_source",
    "decode_record",
]
