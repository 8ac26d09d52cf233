"""Command and event handlers for extraction runs."""

import logging
from typing import Optional

from icare_extraction.domain import commands, events
from icare_extraction.domain.model import (
    EffectiveDateWindow,
    PatientErrorLog,
    RunOutcome,
    RunState,
    utc_timestamp,
)
from icare_extraction.service_layer.extraction import extract_data_for_patients
from icare_extraction.service_layer.messaging import check_messaging_authentication, post_extracted_data
from icare_extraction.service_layer.unit_of_work import AbstractUnitOfWork

module_logger = logging.getLogger(__name__)


def _transition(outcome: RunOutcome, state: RunState, logger: logging.Logger):
    logger.debug(f"Run state {outcome.state.name} -> {state.name}")
    outcome.state = state


async def extract_and_post_data(
    command: commands.ExtractAndPostData,
    uow: AbstractUnitOfWork,
    logger: Optional[logging.Logger] = None,
) -> RunOutcome:
    """
    Extract data for every patient on the roster, post it, and record the run.

    Flow:
    1. Compute the date window, inferring fromDate from the run history
    2. Extract a bundle per patient, collecting per-row errors
    3. Post bundles as FHIR messages (skipped in test-extraction runs)
    4. Email the combined errors when notificationInfo is configured
    5. Record the window when extraction and posting both succeeded

    Args:
        command: ExtractAndPostData command with roster and run options
        uow: Unit of work with the run history and external clients

    Returns:
        RunOutcome describing the finished run

    Raises:
        ConfigurationError: If the run log cannot be read or no fromDate can be established
        MessagingPreconditionError: If the messaging client cannot send or authorize
    """
    logger = logger or module_logger
    outcome = RunOutcome()
    run_started = utc_timestamp()

    if command.test_extraction:
        logger.info("test-extraction will perform extraction but will not post any data")

    try:
        _transition(outcome, RunState.COMPUTING_WINDOW, logger)
        outcome.window = _compute_window(command, uow, logger)

        _transition(outcome, RunState.EXTRACTING, logger)
        await uow.extraction_client.init()
        logger.info(f"Extracting data for {len(command.patient_ids)} patients")
        extraction = await extract_data_for_patients(
            command.patient_ids,
            uow.extraction_client,
            outcome.window.from_date,
            outcome.window.to_date,
            logger=logger,
        )
        outcome.successful_extraction = extraction.successful_extraction

        messaging_errors = PatientErrorLog()
        outcome.successful_message_post = True
        if not command.test_extraction:
            _transition(outcome, RunState.DISPATCHING, logger)
            logger.info(f"Posting data for {len(extraction.extracted_bundles)} patients")
            dispatch = await post_extracted_data(
                uow.messaging_client,
                extraction.extracted_bundles,
                rows=extraction.bundle_rows,
                post_empty_bundles=command.post_empty_bundles,
                logger=logger,
            )
            outcome.successful_message_post = dispatch.successful_message_post
            messaging_errors = dispatch.messaging_errors

        outcome.errors = extraction.extraction_errors.zip(messaging_errors)

        _transition(outcome, RunState.NOTIFYING, logger)
        if not command.test_extraction and command.notification_info:
            await _send_notification(command, outcome.errors, uow, logger)

        _transition(outcome, RunState.CHECKPOINTING, logger)
        if _should_checkpoint(command, outcome):
            logger.info("Logging successful run information to records")
            with uow:
                history = uow.runs.get()
                # An open-ended window ends when the run started, not when it is recorded
                history.add_run(outcome.window.from_date, outcome.window.to_date, date_run=run_started)
                uow.commit()
            outcome.checkpointed = True
    except Exception:
        _transition(outcome, RunState.FAILED, logger)
        raise

    _transition(outcome, RunState.DONE, logger)
    return outcome


def _compute_window(command, uow: AbstractUnitOfWork, logger: logging.Logger) -> EffectiveDateWindow:
    if command.all_entries:
        return EffectiveDateWindow()

    with uow:
        history = uow.runs.get()
        if not command.from_date:
            logger.info("No fromDate was provided, inferring an effectiveFromDate")
        effective_from_date = history.effective_from_date(command.from_date)
    logger.info(f"effectiveFromDate: {effective_from_date}")
    return EffectiveDateWindow(from_date=effective_from_date, to_date=command.to_date)


def _should_checkpoint(command, outcome: RunOutcome) -> bool:
    # Test-extraction runs never post, so they never count as a completed window
    return (
        not command.all_entries
        and not command.test_extraction
        and bool(outcome.window.from_date)
        and outcome.successful_extraction
        and outcome.successful_message_post
    )


async def _send_notification(command, errors: PatientErrorLog, uow: AbstractUnitOfWork, logger: logging.Logger):
    if errors.is_empty():
        return
    try:
        await uow.notifier.send(command.notification_info, errors, debug=command.debug)
    except Exception as e:
        logger.error(f"Failed to send error notification: {e}")
        logger.debug("Notification failure", exc_info=True)


async def check_authentication(command: commands.CheckMessagingAuthentication, uow: AbstractUnitOfWork):
    """Check the messaging client can authorize and send, without extracting or posting data."""
    module_logger.info("test-aws-auth will authenticate to AWS but will not extract or post any data")
    await check_messaging_authentication(uow.messaging_client)


async def log_run_recorded(event: events.RunRecorded, uow: AbstractUnitOfWork):
    module_logger.info(
        f"Recorded run from {event.from_date} to {event.to_date} (run at {event.date_run})"
    )
