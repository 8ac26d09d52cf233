"""Domain events for the extraction client."""

from dataclasses import dataclass
from typing import Optional

from icare_extraction.domain.commands import Event


@dataclass
class RunRecorded(Event):
    """Event raised when a successful run window has been added to the run history."""
    from_date: Optional[str]
    to_date: str
    date_run: str
