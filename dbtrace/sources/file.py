"""JSON-lines file log source."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union
from uuid import UUID

from dbtrace.timings.models import Session
from dbtrace.utils.errors import ConfigurationError, LogSourceError
from dbtrace.utils.logging import get_logger

from .base import Identifier, LogSource, RawLogRecord, as_uuid

logger = get_logger(__name__)


class FileLogSource(LogSource):
    """Read sessions from an append-only file holding one JSON record per line.

    The newest records are at the end of the file, so every query scans it
    backwards. The file is re-read on each call to pick up appended records.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        ignore_data_fields: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(ignore_data_fields=ignore_data_fields)
        if not path:
            raise ConfigurationError("log file path is required")
        self._path = Path(path)
        if not self._path.is_file():
            raise ConfigurationError(f"Log file doesn't exist: {self._path}")

    @property
    def path(self) -> Path:
        return self._path

    def _newest_first(self) -> Iterator[RawLogRecord]:
        try:
            with self._path.open("rb") as handle:
                lines = handle.readlines()
        except OSError as exc:
            raise LogSourceError(f"cannot read {self._path}: {exc}") from exc

        for index in range(len(lines) - 1, -1, -1):
            line = lines[index].strip()
            if not line:
                continue
            location = f"{self._path}:{index + 1}"
            try:
                payload = json.loads(line.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                logger.warning("skipping unparsable line", extra={"source": location, "reason": str(exc)})
                continue
            record = self.decode(payload, location=location)
            if record is not None:
                yield record

    def load_latest_session_summaries(self, top: int = 100, min_duration: int = 0) -> List[Session]:
        results: List[Session] = []
        if top <= 0:
            return results
        for record in self._newest_first():
            if record.is_session and (record.duration_ms or 0) >= min_duration:
                results.append(self.parse_session_fields(record))
                if len(results) >= top:
                    break
        return results

    def load_session(self, session_id: Identifier) -> Optional[Session]:
        session_id = as_uuid(session_id)
        records = [record for record in self._newest_first() if record.session_id == session_id]
        if not records:
            return None
        return self.build_session(records)

    def drill_down_session(self, correlation_id: Identifier) -> Optional[Session]:
        return self._drill(as_uuid(correlation_id), sessions=True)

    def drill_up_session(self, correlation_id: Identifier) -> Optional[Session]:
        return self._drill(as_uuid(correlation_id), sessions=False)

    def _drill(self, correlation_id: UUID, *, sessions: bool) -> Optional[Session]:
        for record in self._newest_first():
            if record.is_session == sessions and record.correlation_id == correlation_id:
                return self.load_session(record.session_id)
        return None


__all__ = ["FileLogSource"]
