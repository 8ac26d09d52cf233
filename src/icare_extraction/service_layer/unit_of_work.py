# pylint: disable=attribute-defined-outside-init
from __future__ import annotations
import abc
from typing import Optional

from icare_extraction.adapters import repository
from icare_extraction.adapters.extraction_client import AbstractExtractionClient
from icare_extraction.adapters.messaging_client import AbstractMessagingClient
from icare_extraction.adapters.notifications import AbstractNotifier, EmailNotifier


class AbstractUnitOfWork(abc.ABC):
    runs: repository.AbstractRunLogRepository
    extraction_client: Optional[AbstractExtractionClient]
    messaging_client: Optional[AbstractMessagingClient]
    notifier: Optional[AbstractNotifier]

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args):
        self.rollback()

    def commit(self):
        self._commit()

    def collect_new_events(self):
        if getattr(self, "runs", None) is None:
            return
        for history in self.runs.seen:
            while history.events:
                yield history.events.pop(0)

    @abc.abstractmethod
    def _commit(self):
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self):
        raise NotImplementedError


class JsonFileUnitOfWork(AbstractUnitOfWork):
    """Run log kept in a JSON file; the whole file is re-read on enter and replaced on commit."""

    def __init__(self, run_log_path, extraction_client=None, messaging_client=None, notifier=None):
        self.run_log_path = run_log_path
        self.extraction_client = extraction_client
        self.messaging_client = messaging_client
        self.notifier = notifier or EmailNotifier()
        self.runs = None

    def __enter__(self):
        self.runs = repository.JsonRunLogRepository(self.run_log_path)
        return super().__enter__()

    def _commit(self):
        self.runs.save()

    def rollback(self):
        # Nothing is written before commit
        pass
