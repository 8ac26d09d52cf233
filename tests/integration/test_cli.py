"""Integration tests for the command line entrypoint."""

import json

import pytest

from conftest import EXAMPLES_DIR, FakeExtractionClient, FakeMessagingClient
from icare_extraction.config import ConfigurationError
from icare_extraction.domain.model import RunState
from icare_extraction.entrypoints import cli


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "patientIdCsvPath": str(EXAMPLES_DIR / "patient-mrns.csv"),
        "awsConfig": {"baseUrl": "https://icare.example.org", "clientId": "site-1"},
        "extractors": [],
    }), encoding="utf-8")
    return path


class Factories:
    def __init__(self, messaging_client=None):
        self.extraction_client = FakeExtractionClient()
        self.messaging_client = messaging_client or FakeMessagingClient()
        self.messaging_calls = 0

    def extraction(self, config):
        return self.extraction_client

    def messaging(self, config):
        self.messaging_calls += 1
        return self.messaging_client


async def run(argv, factories):
    args = cli.parse_args(argv)
    return await cli.run_app(
        args,
        extraction_client_factory=factories.extraction,
        messaging_client_factory=factories.messaging,
    )


def test_parse_args_defaults(monkeypatch):
    """Test the default command line options."""
    monkeypatch.setenv("ICARE_CONFIG_PATH", "site.config.json")

    args = cli.parse_args([])

    assert args.all_entries is True
    assert args.path_to_config == "site.config.json"
    assert args.from_date is None
    assert args.test_extraction is False


def test_parse_args_flags():
    """Test parsing the date and run-log flags."""
    args = cli.parse_args(["--no-all-entries", "-f", "2020-01-01", "-t", "2020-06-30", "-l", "runs.json", "-d"])

    assert args.all_entries is False
    assert (args.from_date, args.to_date) == ("2020-01-01", "2020-06-30")
    assert args.path_to_run_logs == "runs.json"
    assert args.debug is True


@pytest.mark.asyncio
async def test_full_run_posts_every_patient(config_file, run_log_file):
    """Test that a default run posts every patient without recording."""
    factories = Factories()

    results = await run(["-p", str(config_file), "-l", str(run_log_file)], factories)

    assert results[0].state is RunState.DONE
    assert [call[0] for call in factories.extraction_client.calls] == ["123", "456", "789"]
    assert len(factories.messaging_client.sent) == 3
    assert json.loads(run_log_file.read_text(encoding="utf-8")) == []


@pytest.mark.asyncio
async def test_incremental_run_writes_run_log(config_file, run_log_file):
    """Test that an incremental run records its window."""
    factories = Factories()

    await run(
        ["-p", str(config_file), "-l", str(run_log_file), "--no-all-entries", "-f", "2020-01-01", "-t", "2020-06-30"],
        factories,
    )

    records = json.loads(run_log_file.read_text(encoding="utf-8"))
    assert len(records) == 1
    assert records[0]["fromDate"] == "2020-01-01"
    assert records[0]["toDate"] == "2020-06-30"


@pytest.mark.asyncio
async def test_incremental_run_without_history_fails(config_file, run_log_file):
    """Test that an incremental run needs a fromDate or history."""
    factories = Factories()

    with pytest.raises(ConfigurationError, match="no valid fromDate was supplied"):
        await run(["-p", str(config_file), "-l", str(run_log_file), "--no-all-entries"], factories)

    assert factories.extraction_client.calls == []


@pytest.mark.asyncio
async def test_test_extraction_does_not_build_messaging_client(config_file, run_log_file):
    """Test that test extraction needs no messaging client."""
    factories = Factories()

    results = await run(["-p", str(config_file), "-l", str(run_log_file), "--test-extraction"], factories)

    assert factories.messaging_calls == 0
    assert results[0].state is RunState.DONE
    assert len(factories.extraction_client.calls) == 3


@pytest.mark.asyncio
async def test_aws_auth_only(config_file, run_log_file):
    """Test that the auth check runs without extracting."""
    factories = Factories()

    results = await run(["-p", str(config_file), "-l", str(run_log_file), "--test-aws-auth"], factories)

    assert results == []
    assert factories.messaging_client.authorized is True
    assert factories.extraction_client.calls == []


@pytest.mark.asyncio
async def test_invalid_date_is_rejected(config_file, run_log_file):
    """Test that invalid dates are rejected before running."""
    with pytest.raises(ConfigurationError, match="-f/--from-date is not a valid date."):
        await run(["-p", str(config_file), "-l", str(run_log_file), "-f", "someday"], Factories())


def test_main_exit_codes(config_file, tmp_path):
    """Test the exit codes for failed and successful runs."""
    bad_config = tmp_path / "bad.json"
    bad_config.write_text("{", encoding="utf-8")

    assert cli.main(["-p", str(bad_config)]) == 1
    assert cli.main(["-p", str(config_file), "--test-extraction"]) == 0
