"""Unit tests for the per-patient extraction loop"""
import logging

import pytest

from conftest import FakeExtractionClient, raw_bundle
from icare_extraction.adapters.extraction_client import ExtractionResult
from icare_extraction.adapters.fhir_bundling import MessageBundler
from icare_extraction.service_layer.extraction import extract_data_for_patients


@pytest.mark.asyncio
async def test_extracts_every_patient_in_order():
    """Test that patients are extracted one by one in roster order."""
    client = FakeExtractionClient()

    outcome = await extract_data_for_patients(["123", "456", "789"], client, "2020-01-01", "2020-06-30")

    assert [mrn for mrn, _, _ in client.calls] == ["123", "456", "789"]
    assert all(call[1:] == ("2020-01-01", "2020-06-30") for call in client.calls)
    assert outcome.successful_extraction is True
    assert len(outcome.extracted_bundles) == 3
    assert outcome.bundle_rows == [0, 1, 2]
    assert outcome.extraction_errors.is_empty()


@pytest.mark.asyncio
async def test_fatal_failure_only_affects_that_patient():
    """Test that a failing patient does not stop the others."""
    fatal = ConnectionError("database unreachable")
    first = ExtractionResult(bundle=MessageBundler.wrap(raw_bundle("Patient")))
    third = ExtractionResult(bundle=MessageBundler.wrap(raw_bundle("Patient", "Condition")))
    client = FakeExtractionClient({"123": first, "456": fatal, "789": third})

    outcome = await extract_data_for_patients(["123", "456", "789"], client)

    assert outcome.successful_extraction is False
    assert len(outcome.extraction_errors) == 3
    assert outcome.extraction_errors[0] == []
    assert outcome.extraction_errors[1] == [fatal]
    assert outcome.extraction_errors[2] == []
    assert outcome.extracted_bundles == [first.bundle, third.bundle]
    assert outcome.bundle_rows == [0, 2]


@pytest.mark.asyncio
async def test_non_fatal_errors_do_not_fail_extraction():
    """Test that non-fatal errors are recorded without failing extraction."""
    warning = ValueError("Missing stage for condition")
    client = FakeExtractionClient({
        "123": ExtractionResult(bundle=MessageBundler.wrap(raw_bundle("Patient")), extraction_errors=[warning]),
    })

    outcome = await extract_data_for_patients(["123", "456"], client)

    assert outcome.successful_extraction is True
    assert outcome.extraction_errors[0] == [warning]
    assert outcome.extraction_errors[1] == []
    assert len(outcome.extracted_bundles) == 2


@pytest.mark.asyncio
async def test_uncountable_bundle_is_still_kept(caplog):
    """Test that a bundle whose resources cannot be counted is kept."""
    malformed = {"resourceType": "Bundle", "type": "message", "entry": [{"resource": {}}]}
    client = FakeExtractionClient({"123": ExtractionResult(bundle=malformed)})

    with caplog.at_level(logging.WARNING):
        outcome = await extract_data_for_patients(["123"], client)

    assert outcome.extracted_bundles == [malformed]
    assert outcome.successful_extraction is True


@pytest.mark.asyncio
async def test_raw_bundles_are_counted_and_kept_unwrapped(caplog):
    """Test that raw bundles are counted but left for dispatch to wrap."""
    bundle = raw_bundle("Patient", "Condition")
    client = FakeExtractionClient({"123": ExtractionResult(bundle=bundle)})

    with caplog.at_level(logging.INFO):
        outcome = await extract_data_for_patients(["123"], client)

    assert outcome.extracted_bundles == [bundle]
    assert "Condition: 1 extracted" in caplog.text


@pytest.mark.asyncio
async def test_logs_to_injected_logger(caplog):
    """Test that progress goes to the logger passed in."""
    run_logger = logging.getLogger("icare-test-run")

    with caplog.at_level(logging.INFO, logger="icare-test-run"):
        await extract_data_for_patients(["123"], FakeExtractionClient(), logger=run_logger)

    assert any(
        record.name == "icare-test-run" and "patient at row 1" in record.getMessage()
        for record in caplog.records
    )


@pytest.mark.asyncio
async def test_empty_roster():
    """Test that an empty roster is a successful extraction."""
    outcome = await extract_data_for_patients([], FakeExtractionClient())

    assert outcome.successful_extraction is True
    assert outcome.extracted_bundles == []
    assert len(outcome.extraction_errors) == 0
