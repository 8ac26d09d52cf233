"""Domain model for extraction runs, run history and per-patient error tracking."""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

from dateutil import parser as date_parser

from icare_extraction.config import ConfigurationError
from icare_extraction.domain.events import RunRecorded

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def as_utc(value: str) -> datetime:
    parsed = date_parser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class RunRecord:
    from_date: Optional[str]
    to_date: str
    date_run: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunRecord":
        return cls(
            from_date=data.get("fromDate"),
            to_date=data.get("toDate"),
            date_run=data.get("dateRun"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"fromDate": self.from_date, "toDate": self.to_date, "dateRun": self.date_run}


@dataclass(frozen=True)
class EffectiveDateWindow:
    from_date: Optional[str] = None
    to_date: Optional[str] = None


@dataclass(eq=False)
class RunHistory:
    """Append-only history of successfully completed extraction windows."""
    records: List[RunRecord] = field(default_factory=list)
    events: List = field(default_factory=list)

    def most_recent_to_date(self) -> Optional[str]:
        """Latest toDate across all records, compared chronologically."""
        dated = [record for record in self.records if record.to_date]
        if not dated:
            return None
        return max(dated, key=lambda record: as_utc(record.to_date)).to_date

    def effective_from_date(self, from_date: Optional[str] = None) -> str:
        """
        Use previous runs to infer a fromDate if none was provided.

        Raises:
            NoEffectiveDateError: If no fromDate was given and there is no history
        """
        if from_date:
            return from_date
        effective_from_date = self.most_recent_to_date()
        if not effective_from_date:
            raise NoEffectiveDateError(
                "no valid fromDate was supplied, and there are no log records from which we could pull a fromDate"
            )
        return effective_from_date

    def add_run(self, from_date: Optional[str], to_date: Optional[str], date_run: Optional[str] = None) -> RunRecord:
        """
        Record a completed window and generate a RunRecorded event.

        An open-ended window is recorded as ending when the run started.
        """
        date_run = date_run or utc_timestamp()
        record = RunRecord(from_date=from_date, to_date=to_date or date_run, date_run=date_run)
        self.records.append(record)
        self.events.append(
            RunRecorded(from_date=record.from_date, to_date=record.to_date, date_run=record.date_run)
        )
        return record


class PatientErrorLog:
    """Errors per roster row (0-based), kept in the order they were observed."""

    def __init__(self, errors: Optional[Dict[int, List[Any]]] = None):
        self._errors: Dict[int, List[Any]] = {index: list(errs) for index, errs in (errors or {}).items()}

    def start(self, index: int) -> List[Any]:
        return self._errors.setdefault(index, [])

    def add(self, index: int, *errors: Any):
        self.start(index).extend(errors)

    def total_errors(self) -> int:
        return sum(len(errs) for errs in self._errors.values())

    def is_empty(self) -> bool:
        return self.total_errors() == 0

    def zip(self, other: "PatientErrorLog") -> "PatientErrorLog":
        """Concatenate two logs row by row, this log's errors first."""
        merged = PatientErrorLog(self._errors)
        for index, errs in other.items():
            merged.add(index, *errs)
        return merged

    def items(self) -> List[Tuple[int, List[Any]]]:
        return sorted(self._errors.items())

    def __getitem__(self, index: int) -> List[Any]:
        return self._errors[index]

    def __contains__(self, index: int) -> bool:
        return index in self._errors

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._errors))

    def __len__(self) -> int:
        return len(self._errors)

    def __repr__(self):
        return f"PatientErrorLog({self._errors!r})"


@dataclass
class ExtractionOutcome:
    extracted_bundles: List[Dict[str, Any]] = field(default_factory=list)
    successful_extraction: bool = True
    extraction_errors: PatientErrorLog = field(default_factory=PatientErrorLog)
    bundle_rows: List[int] = field(default_factory=list)


@dataclass
class DispatchOutcome:
    successful_message_post: bool = True
    messaging_errors: PatientErrorLog = field(default_factory=PatientErrorLog)


@dataclass
class ValidationRejection:
    """A message the remote endpoint rejected with an OperationOutcome violation."""
    error: Exception
    detail: str

    def __str__(self):
        return f"{self.error} - {self.detail}"


@dataclass
class TransportError:
    """A failed submission whose error carried no parsable violation payload."""
    error: Exception
    parse_failure: Optional[Exception] = None

    def __str__(self):
        return str(self.error) or type(self.error).__name__


class RunState(enum.Enum):
    INITIALIZING = "initializing"
    COMPUTING_WINDOW = "computing_window"
    EXTRACTING = "extracting"
    DISPATCHING = "dispatching"
    NOTIFYING = "notifying"
    CHECKPOINTING = "checkpointing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunOutcome:
    state: RunState = RunState.INITIALIZING
    window: EffectiveDateWindow = field(default_factory=EffectiveDateWindow)
    successful_extraction: bool = False
    successful_message_post: bool = False
    errors: PatientErrorLog = field(default_factory=PatientErrorLog)
    checkpointed: bool = False


class NoEffectiveDateError(ConfigurationError):
    """Exception raised when no fromDate is given and none can be inferred from run history."""
    pass
