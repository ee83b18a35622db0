from pathlib import Path

import pytest

from dbtrace.core.config import ConfigManager, build_profiler
from dbtrace.profiling import ExecuteKind, MemorySink, NameContainsProfilingFilter
from dbtrace.sources import FileLogSource, SearchIndexLogSource, create_log_source
from dbtrace.utils.errors import ConfigurationError


def test_load_yaml_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    log_file = tmp_path / "sessions.jsonl"
    log_file.write_text("", encoding="utf-8")
    config_path = tmp_path / "dbtrace.yml"
    config_path.write_text(
        "profiler:\n"
        "  filters:\n"
        "    - kind: name_contains\n"
        "      args: healthcheck\n"
        "source:\n"
        "  kind: file\n"
        f"  path: {log_file}\n"
        "  ignore_data_fields: ['@timestamp']\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("DBTRACE_CONFIG", str(config_path))
    settings = ConfigManager().load()

    assert settings.profiler.filters[0].args == "healthcheck"
    source = create_log_source(settings.source)
    assert isinstance(source, FileLogSource)
    assert source.ignore_data_fields == frozenset({"@timestamp"})

    sink = MemorySink()
    profiler = build_profiler(settings, sink=sink)
    assert isinstance(next(iter(profiler.filters)), NameContainsProfilingFilter)
    with profiler.session("GET /healthcheck") as session:
        assert session is None
    with profiler.session("GET /orders"):
        profiler.execute_and_profile(ExecuteKind.SCALAR, "SELECT 1", lambda: 1)
    assert len(sink.records) == 2


def test_load_toml_search_index_config(tmp_path: Path) -> None:
    config_path = tmp_path / "dbtrace.toml"
    config_path.write_text(
        '[source]\nkind = "elasticsearch"\nurl = "http://localhost:9200/logs/_search"\ntimeout = 2.5\n',
        encoding="utf-8",
    )
    settings = ConfigManager(config_path).load()
    source = create_log_source(settings.source)
    try:
        assert isinstance(source, SearchIndexLogSource)
        assert source.search_url == "http://localhost:9200/logs/_search"
        assert "@timestamp" in source.ignore_data_fields
    finally:
        source.close()


@pytest.mark.parametrize(
    ("filename", "content"),
    [
        ("dbtrace.yml", "source:\n  kind: file\n"),
        ("dbtrace.yml", "source:\n  kind: elasticsearch\n"),
        ("dbtrace.yml", "profiler:\n  filters:\n    - kind: regex\n"),
        ("dbtrace.yml", "- just\n- a list\n"),
        ("dbtrace.ini", "[source]\n"),
    ],
)
def test_invalid_config_is_rejected(tmp_path: Path, filename: str, content: str) -> None:
    config_path = tmp_path / filename
    config_path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigurationError):
        ConfigManager(config_path).load()


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        ConfigManager(tmp_path / "absent.yml").get_settings()


def test_missing_log_file_fails_at_construction(tmp_path: Path) -> None:
    config_path = tmp_path / "dbtrace.yml"
    config_path.write_text(f"source:\n  kind: file\n  path: {tmp_path / 'absent.jsonl'}\n", encoding="utf-8")
    settings = ConfigManager(config_path).load()
    with pytest.raises(ConfigurationError):
        create_log_source(settings.source)
