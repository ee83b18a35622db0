"""Search-index (Elasticsearch-compatible) log source."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import UUID

import httpx

from dbtrace.timings.models import SESSION_TYPE, Session
from dbtrace.utils.errors import ConfigurationError, LogSourceTransportError
from dbtrace.utils.logging import get_logger

from .base import Identifier, LogSource, RawLogRecord, as_uuid

logger = get_logger(__name__)

_NEWEST_FIRST = [
    {"@timestamp": {"order": "desc", "unmapped_type": "date"}},
    {"startedAt": {"order": "desc", "unmapped_type": "date"}},
]


class SearchIndexLogSource(LogSource):
    """Query records from a search endpoint such as ``http://es:9200/logs/_search``.

    Every read is a JSON ``POST`` whose response carries the stored records
    under ``hits.hits[]._source``. Transport failures, non-2xx responses and
    undecodable bodies raise :class:`LogSourceTransportError`; callers decide
    whether to retry.
    """

    ignore_data_fields = frozenset({"@timestamp", "@version"})
    user_agent = "dbtrace-search-index-source"

    def __init__(
        self,
        search_url: str,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
        max_hits: int = 1000,
        headers: Optional[Mapping[str, str]] = None,
        ignore_data_fields: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(ignore_data_fields=ignore_data_fields)
        if not search_url:
            raise ConfigurationError("search index url is required")
        if max_hits <= 0:
            raise ConfigurationError("max_hits must be positive")
        self._search_url = str(search_url)
        self._max_hits = max_hits
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=timeout,
            headers={"User-Agent": self.user_agent, **dict(headers or {})},
        )

    @property
    def search_url(self) -> str:
        return self._search_url

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def load_latest_session_summaries(self, top: int = 100, min_duration: int = 0) -> List[Session]:
        if top <= 0:
            return []
        records = self._search(self.latest_query(top, min_duration))
        sessions = [
            self.parse_session_fields(record)
            for record in records
            if record.is_session and (record.duration_ms or 0) >= min_duration
        ]
        return sessions[:top]

    def load_session(self, session_id: Identifier) -> Optional[Session]:
        records = self._search(self.session_query(as_uuid(session_id), self._max_hits))
        if not records:
            return None
        return self.build_session(records)

    def drill_down_session(self, correlation_id: Identifier) -> Optional[Session]:
        return self._drill(as_uuid(correlation_id), sessions=True)

    def drill_up_session(self, correlation_id: Identifier) -> Optional[Session]:
        return self._drill(as_uuid(correlation_id), sessions=False)

    def _drill(self, correlation_id: UUID, *, sessions: bool) -> Optional[Session]:
        records = self._search(self.correlation_query(correlation_id, sessions=sessions))
        for record in records:
            if record.is_session == sessions and record.correlation_id == correlation_id:
                return self.load_session(record.session_id)
        return None

    @staticmethod
    def latest_query(top: int, min_duration: int) -> Dict[str, Any]:
        filters: List[Dict[str, Any]] = [{"match_phrase": {"type": SESSION_TYPE}}]
        # A range clause never matches a missing field; sessions without a
        # duration count as 0ms and must still match a zero minimum.
        if min_duration > 0:
            filters.append({"range": {"duration": {"gte": min_duration}}})
        return {
            "query": {"bool": {"filter": filters}},
            "size": top,
            "sort": _NEWEST_FIRST,
        }

    @staticmethod
    def session_query(session_id: UUID, size: int) -> Dict[str, Any]:
        return {
            "query": {"bool": {"filter": [{"match_phrase": {"sessionId": str(session_id)}}]}},
            "size": size,
        }

    @staticmethod
    def correlation_query(correlation_id: UUID, *, sessions: bool) -> Dict[str, Any]:
        type_clause = {"match_phrase": {"type": SESSION_TYPE}}
        query: Dict[str, Any] = {"filter": [{"match_phrase": {"correlationId": str(correlation_id)}}]}
        if sessions:
            query["filter"].append(type_clause)
        else:
            query["must_not"] = [type_clause]
        return {"query": {"bool": query}, "size": 1, "sort": _NEWEST_FIRST}

    def _search(self, query: Dict[str, Any]) -> List[RawLogRecord]:
        logger.debug("search request", extra={"source": self._search_url})
        try:
            response = self._client.post(self._search_url, json=query)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise LogSourceTransportError(f"search request to {self._search_url} failed: {exc}") from exc
        except ValueError as exc:
            raise LogSourceTransportError(f"search response from {self._search_url} is not JSON") from exc

        try:
            hits = payload["hits"]["hits"]
        except (KeyError, TypeError) as exc:
            raise LogSourceTransportError("search response has no hits") from exc

        records: List[RawLogRecord] = []
        for hit in hits or []:
            source = hit.get("_source") if isinstance(hit, Mapping) else None
            record = self.decode(source, location=self._search_url)
            if record is not None:
                records.append(record)
        return records


__all__ = ["SearchIndexLogSource"]
