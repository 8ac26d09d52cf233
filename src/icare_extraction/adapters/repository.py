"""Run-log repository following Cosmic Python approach."""

import abc
import json
import logging
import os
import tempfile
from typing import List, Set

from icare_extraction.config import ConfigurationError
from icare_extraction.domain.model import RunHistory, RunRecord, as_utc

logger = logging.getLogger(__name__)


class AbstractRunLogRepository(abc.ABC):
    def __init__(self):
        self.seen = set()  # type: Set[RunHistory]

    def get(self) -> RunHistory:
        history = self._get()
        self.seen.add(history)
        return history

    def save(self):
        for history in self.seen:
            self._save(history)

    @abc.abstractmethod
    def _get(self) -> RunHistory:
        raise NotImplementedError

    @abc.abstractmethod
    def _save(self, history: RunHistory):
        raise NotImplementedError


class JsonRunLogRepository(AbstractRunLogRepository):
    """Run history persisted as a JSON array of {fromDate, toDate, dateRun} records."""

    def __init__(self, path):
        super().__init__()
        self.path = path
        self._history = RunHistory(records=self._load())

    def _load(self) -> List[RunRecord]:
        try:
            with open(self.path, encoding="utf-8") as f:
                content = json.load(f)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Could not read run log {self.path}: {e}")
            raise ConfigurationError(
                f"The provided filepath to a LogFile, {self.path}, did not point to a valid JSON file. "
                "Create a json file with an empty array at this location."
            ) from e

        if not isinstance(content, list):
            raise ConfigurationError("Log file needs to be an array.")

        return [self._parse_record(index, item) for index, item in enumerate(content)]

    def _parse_record(self, index: int, item) -> RunRecord:
        if not isinstance(item, dict):
            raise ConfigurationError(f"Run log {self.path} entry {index} is not an object: {item!r}")
        record = RunRecord.from_dict(item)
        if record.to_date:
            try:
                as_utc(record.to_date)
            except (TypeError, ValueError, OverflowError) as e:
                raise ConfigurationError(
                    f"Run log {self.path} entry {index} has an invalid toDate {record.to_date!r}"
                ) from e
        return record

    def _get(self) -> RunHistory:
        return self._history

    def _save(self, history: RunHistory):
        """Write the whole log to a temp file in the same directory, then swap it in."""
        directory = os.path.dirname(os.path.abspath(self.path))
        payload = json.dumps([record.to_dict() for record in history.records], indent=2)

        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".run-log-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        logger.info(f"Saved {len(history.records)} run records to {self.path}")
