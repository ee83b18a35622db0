"""Profiling filters.

A filter vetoes profiling of a session or timing by name and tags. Filter
kinds are looked up in an explicit registry so configuration can name them
with a plain string and an argument string.
"""
from __future__ import annotations

from typing import Callable, Dict, Iterable, Iterator, Optional, Protocol, Tuple, runtime_checkable

from dbtrace.utils.errors import ConfigurationError
from dbtrace.utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ProfilingFilter(Protocol):
    """Interface every filter implements."""

    name: str
    args: str

    def should_be_excluded(self, name: Optional[str], tags: Iterable[str]) -> bool:
        ...


class DisableProfilingFilter:
    """Exclude everything, turning profiling off."""

    name = "disable"

    def __init__(self, args: str = "") -> None:
        self.args = ""

    def should_be_excluded(self, name: Optional[str], tags: Iterable[str]) -> bool:
        return True

    def __repr__(self) -> str:
        return "DisableProfilingFilter()"


class NameContainsProfilingFilter:
    """Exclude names containing ``substr``, ignoring case."""

    name = "name_contains"

    def __init__(self, substr: str) -> None:
        if not substr:
            raise ConfigurationError("name_contains filter requires a substring")
        self.args = substr
        self._needle = substr.casefold()

    @property
    def substring(self) -> str:
        return self.args

    def should_be_excluded(self, name: Optional[str], tags: Iterable[str]) -> bool:
        if name is None:
            return True
        return self._needle in name.casefold()

    def __repr__(self) -> str:
        return f"NameContainsProfilingFilter({self.args!r})"


FilterFactory = Callable[[str], ProfilingFilter]

FILTER_REGISTRY: Dict[str, FilterFactory] = {
    "disable": DisableProfilingFilter,
    "name_contains": NameContainsProfilingFilter,
    "DisableProfilingFilter": DisableProfilingFilter,
    "NameContainsProfilingFilter": NameContainsProfilingFilter,
}


def register_filter(kind: str, factory: FilterFactory) -> None:
    """Make a filter kind available to configuration."""

    if not kind:
        raise ConfigurationError("filter kind may not be empty")
    FILTER_REGISTRY[kind] = factory


def create_filter(kind: str, args: str = "") -> ProfilingFilter:
    factory = FILTER_REGISTRY.get(kind)
    if factory is None:
        raise ConfigurationError(f"Unknown profiling filter kind: {kind}")
    return factory(args)


class FilterSet:
    """Immutable collection of filters combined with logical OR."""

    def __init__(self, filters: Iterable[ProfilingFilter] = ()) -> None:
        self._filters: Tuple[ProfilingFilter, ...] = tuple(filters)

    @classmethod
    def from_settings(cls, entries: Iterable[object]) -> "FilterSet":
        """Build a set from ``FilterSettings``-like objects with ``kind``/``args``."""

        filters = [create_filter(entry.kind, entry.args or "") for entry in entries]  # type: ignore[attr-defined]
        logger.debug("filters configured", extra={"filters": [repr(item) for item in filters]})
        return cls(filters)

    def should_exclude(self, name: Optional[str], tags: Iterable[str] = ()) -> bool:
        tags = tuple(tags)
        return any(item.should_be_excluded(name, tags) for item in self._filters)

    def __iter__(self) -> Iterator[ProfilingFilter]:
        return iter(self._filters)

    def __len__(self) -> int:
        return len(self._filters)


__all__ = [
    "DisableProfilingFilter",
    "FILTER_REGISTRY",
    "FilterSet",
    "NameContainsProfilingFilter",
    "ProfilingFilter",
    "create_filter",
    "register_filter",
]
