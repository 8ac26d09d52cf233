"""Base command and event interfaces plus commands for the extraction client."""

from dataclasses import dataclass, field
from typing import List, Optional

from icare_extraction.config import NotificationInfo


@dataclass
class Command:
    """Base class for all commands."""
    pass


@dataclass
class Event:
    """Base class for all domain events."""
    pass


@dataclass
class ExtractAndPostData(Command):
    """Command to extract data for every patient on the roster and post it as FHIR messages."""
    patient_ids: List[str] = field(default_factory=list)
    from_date: Optional[str] = None
    to_date: Optional[str] = None
    all_entries: bool = False
    test_extraction: bool = False
    debug: bool = False
    notification_info: Optional[NotificationInfo] = None
    post_empty_bundles: bool = False


@dataclass
class CheckMessagingAuthentication(Command):
    """Command to verify the messaging client can authorize and send messages."""
    pass
