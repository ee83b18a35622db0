import json
from uuid import uuid4

import httpx
import pytest

from dbtrace.sources import SearchIndexLogSource
from dbtrace.utils.errors import ConfigurationError, LogSourceTransportError

SEARCH_URL = "https://search.test/profiling-*/_search"


def hits(*sources) -> dict:
    return {"hits": {"total": len(sources), "hits": [{"_source": source} for source in sources]}}


class FakeIndex:
    """Minimal search backend answering the queries the source sends."""

    def __init__(self, records) -> None:
        self.records = records
        self.queries = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        query = json.loads(request.content)
        self.queries.append(query)
        clauses = query["query"]["bool"]
        matched = [record for record in self.records if self._matches(record, clauses)]
        return httpx.Response(200, json=hits(*matched[: query["size"]]))

    @staticmethod
    def _matches(record, clauses) -> bool:
        def check(clause) -> bool:
            if "match_phrase" in clause:
                [(field, value)] = clause["match_phrase"].items()
                return str(record.get(field)) == str(value)
            if "range" in clause:
                [(field, bounds)] = clause["range"].items()
                return field in record and record[field] >= bounds["gte"]
            raise AssertionError(clause)

        return all(check(clause) for clause in clauses.get("filter", [])) and not any(
            check(clause) for clause in clauses.get("must_not", [])
        )


def make_source(handler) -> SearchIndexLogSource:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return SearchIndexLogSource(SEARCH_URL, client=client)


def record(kind, session_id, name, *, started, duration=None, correlation_id=None):
    payload = {
        "type": kind,
        "sessionId": str(session_id),
        "correlationId": str(correlation_id) if correlation_id else None,
        "name": name,
        "startedAt": started,
        "data": {"sql": name},
        "tags": [],
        "@timestamp": "2026-10-17T09:30:00Z",
        "@version": "1",
    }
    if duration is not None:
        payload["duration"] = duration
    return payload


def test_url_is_required() -> None:
    with pytest.raises(ConfigurationError):
        SearchIndexLogSource("")


def test_latest_summaries_query_and_parse() -> None:
    ids = [uuid4(), uuid4(), uuid4()]
    index = FakeIndex(
        [
            record("session", ids[2], "newest", started=3000, duration=150),
            record("session", ids[1], "middle", started=2000, duration=20),
            record("session", ids[0], "oldest", started=1000, duration=200),
            record("db", ids[0], "SELECT 1", started=1000, duration=5),
        ]
    )
    source = make_source(index)

    sessions = source.load_latest_session_summaries(top=2, min_duration=50)
    assert [session.id for session in sessions] == [ids[2], ids[0]]
    assert sessions[0].data == {"sql": "newest"}
    query = index.queries[0]
    assert query["size"] == 2
    assert query["sort"][0]["@timestamp"]["order"] == "desc"
    assert {"range": {"duration": {"gte": 50}}} in query["query"]["bool"]["filter"]


def test_load_session_builds_tree() -> None:
    session_id = uuid4()
    index = FakeIndex(
        [
            record("db", session_id, "B", started=10, duration=40),
            record("session", session_id, "job", started=0, duration=100),
            record("db", session_id, "A", started=0, duration=100),
            record("db", session_id, "C", started=60, duration=30),
        ]
    )
    session = make_source(index).load_session(session_id)
    [root] = session.timings
    assert root.name == "A"
    assert [child.name for child in root.children] == ["B", "C"]
    assert index.queries[0]["size"] == 1000
    assert make_source(FakeIndex([])).load_session(uuid4()) is None


def test_drill_directions_are_distinct() -> None:
    caller, callee = uuid4(), uuid4()
    correlation_id = uuid4()
    index = FakeIndex(
        [
            record("session", caller, "GET /checkout", started=0, duration=50),
            record("step", caller, "call inventory", started=5, duration=30, correlation_id=correlation_id),
            record("session", callee, "GET /stock", started=10, duration=10, correlation_id=correlation_id),
        ]
    )
    source = make_source(index)

    assert source.drill_up_session(correlation_id).id == caller
    assert source.drill_down_session(correlation_id).id == callee
    assert source.drill_down_session(uuid4()) is None
    drill_up_query = index.queries[0]["query"]["bool"]
    assert drill_up_query["must_not"] == [{"match_phrase": {"type": "session"}}]


def test_malformed_hits_are_skipped() -> None:
    session_id = uuid4()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "hits": {
                    "hits": [
                        {"_source": {"type": "db", "sessionId": "broken"}},
                        {"_id": "no-source"},
                        {"_source": record("session", session_id, "ok", started=0, duration=1)},
                    ]
                }
            },
        )

    session = make_source(handler).load_session(session_id)
    assert session.name == "ok"


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(503, json={"error": "unavailable"}),
        lambda request: httpx.Response(200, content=b"<html>"),
        lambda request: httpx.Response(200, json={"took": 1}),
    ],
)
def test_transport_failures_are_surfaced(handler) -> None:
    source = make_source(handler)
    with pytest.raises(LogSourceTransportError) as excinfo:
        source.load_latest_session_summaries()
    assert excinfo.value.retryable is True


def test_connection_errors_are_surfaced() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(LogSourceTransportError):
        make_source(handler).drill_up_session(uuid4())


def test_session_without_duration_counts_as_zero() -> None:
    session_id = uuid4()
    index = FakeIndex([record("session", session_id, "pending", started=0)])
    source = make_source(index)

    assert [session.id for session in source.load_latest_session_summaries(min_duration=0)] == [session_id]
    assert not any("range" in clause for clause in index.queries[0]["query"]["bool"]["filter"])
    assert source.load_latest_session_summaries(min_duration=1) == []


def test_out_of_range_durations_are_skipped() -> None:
    good, bad = uuid4(), uuid4()
    index = FakeIndex(
        [
            record("session", bad, "corrupt", started=2000, duration=1e18),
            record("session", good, "ok", started=1000, duration=30),
        ]
    )

    sessions = make_source(index).load_latest_session_summaries()
    assert [session.id for session in sessions] == [good]
