"""Ordered, duplicate-free tag collections."""
from __future__ import annotations

from typing import Iterable, Iterator, List, Optional, Tuple


class TagSet:
    """Immutable set of case-sensitive labels that remembers insertion order.

    Tags carry no meaning beyond membership. Order only matters for display,
    so two sets with the same members in a different order compare equal.
    """

    __slots__ = ("_tags",)

    def __init__(self, tags: Optional[Iterable[str]] = None) -> None:
        seen: List[str] = []
        for tag in tags or ():
            if tag is None:
                continue
            tag = str(tag).strip()
            if tag and tag not in seen:
                seen.append(tag)
        self._tags: Tuple[str, ...] = tuple(seen)

    @classmethod
    def parse(cls, value: Optional[str], *, separator: str = ",") -> "TagSet":
        """Build a tag set from a separated string such as ``"sql,slow"``."""

        if not value:
            return cls()
        return cls(value.split(separator))

    def union(self, other: Iterable[str]) -> "TagSet":
        return TagSet((*self._tags, *other))

    def with_tag(self, tag: str) -> "TagSet":
        return self.union((tag,))

    def to_list(self) -> List[str]:
        return list(self._tags)

    def __contains__(self, tag: object) -> bool:
        return tag in self._tags

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __bool__(self) -> bool:
        return bool(self._tags)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TagSet):
            return set(self._tags) == set(other._tags)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._tags))

    def __repr__(self) -> str:
        return f"TagSet({list(self._tags)!r})"


__all__ = ["TagSet"]
