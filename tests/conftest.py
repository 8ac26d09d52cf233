# pylint: disable=redefined-outer-name
import copy
import json
from pathlib import Path

import pytest

from icare_extraction.adapters import repository
from icare_extraction.adapters.extraction_client import AbstractExtractionClient, ExtractionResult
from icare_extraction.adapters.fhir_bundling import MessageBundler
from icare_extraction.adapters.messaging_client import AbstractMessagingClient
from icare_extraction.adapters.notifications import AbstractNotifier
from icare_extraction.domain.model import RunHistory, RunRecord
from icare_extraction.service_layer.unit_of_work import AbstractUnitOfWork

EXAMPLES_DIR = Path(__file__).parent / "examples"


def load_example(name: str):
    with open(EXAMPLES_DIR / name, encoding="utf-8") as f:
        return json.load(f)


def raw_bundle(*resource_types):
    return {
        "resourceType": "Bundle",
        "type": "collection",
        "entry": [
            {"resource": {"resourceType": resource_type, "id": f"{resource_type.lower()}-{i}"}}
            for i, resource_type in enumerate(resource_types)
        ],
    }


class FakeExtractionClient(AbstractExtractionClient):
    """Returns preset results per MRN; an Exception value is raised instead."""

    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []
        self.initialized = False

    async def init(self):
        self.initialized = True

    async def get(self, mrn, from_date=None, to_date=None):
        self.calls.append((mrn, from_date, to_date))
        result = self.results.get(mrn)
        if isinstance(result, Exception):
            raise result
        if result is None:
            result = ExtractionResult(bundle=MessageBundler.wrap(raw_bundle("Patient")))
        return result


class FakeMessagingClient(AbstractMessagingClient):
    def __init__(self, can_send=True, authorize_error=None, failures=None):
        self.can_send = can_send
        self.authorize_error = authorize_error
        self.failures = failures or {}
        self.sent = []
        self.authorized = False

    async def can_send_message(self):
        return self.can_send

    async def authorize(self):
        if self.authorize_error:
            raise self.authorize_error
        self.authorized = True

    async def process_message(self, message_bundle):
        position = len(self.sent)
        self.sent.append(message_bundle)
        if position in self.failures:
            raise self.failures[position]


class FakeNotifier(AbstractNotifier):
    def __init__(self, error=None):
        self.error = error
        self.sent = []

    async def send(self, notification_info, errors, debug=False):
        if self.error:
            raise self.error
        self.sent.append((notification_info, errors, debug))


class FakeRunLogRepository(repository.AbstractRunLogRepository):
    def __init__(self, records=None):
        super().__init__()
        self._history = RunHistory(records=list(records or []))
        self.saved = []

    def _get(self):
        return self._history

    def _save(self, history):
        self.saved.append(copy.deepcopy(history.records))


class FakeUnitOfWork(AbstractUnitOfWork):
    def __init__(self, records=None, extraction_client=None, messaging_client=None, notifier=None):
        self.runs = FakeRunLogRepository(records)
        self.extraction_client = extraction_client or FakeExtractionClient()
        self.messaging_client = messaging_client or FakeMessagingClient()
        self.notifier = notifier or FakeNotifier()
        self.committed = False

    def _commit(self):
        self.runs.save()
        self.committed = True

    def rollback(self):
        pass


@pytest.fixture
def message_bundle():
    return load_example("message-bundle.json")


@pytest.fixture
def fake_uow():
    return FakeUnitOfWork()


@pytest.fixture
def run_log_file(tmp_path):
    path = tmp_path / "run-logs.json"
    path.write_text("[]", encoding="utf-8")
    return path


@pytest.fixture
def previous_runs():
    return [
        RunRecord(from_date="2019-10-01", to_date="2020-03-15", date_run="2020-03-15T00:00:00Z"),
        RunRecord(from_date="2019-06-01", to_date="2020-01-01", date_run="2020-01-01T00:00:00Z"),
    ]
