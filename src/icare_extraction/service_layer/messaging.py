"""Posting extracted bundles to the FHIR messaging endpoint."""

import json
import logging
from typing import Any, Dict, Optional, Sequence, Union

from icare_extraction.adapters.fhir_bundling import MessageBundler
from icare_extraction.adapters.messaging_client import AbstractMessagingClient, PROCESS_MESSAGE_SCOPE
from icare_extraction.domain.model import DispatchOutcome, TransportError, ValidationRejection

module_logger = logging.getLogger(__name__)


async def check_messaging_client(messaging_client: AbstractMessagingClient):
    """
    Ensure the messaging client can send messages and authorize.

    Raises:
        MessagingPreconditionError: If the scope is missing or authorization fails
    """
    try:
        can_send = await messaging_client.can_send_message()
    except Exception as e:
        raise MessagingPreconditionError(str(e)) from e
    if not can_send:
        raise MessagingPreconditionError(f'The server does not provide the "{PROCESS_MESSAGE_SCOPE}" scope.')

    try:
        await messaging_client.authorize()
    except Exception as e:
        raise MessagingPreconditionError(f"Could not authorize messaging client - {e}") from e


def classify_dispatch_error(error: Exception) -> Union[ValidationRejection, TransportError]:
    """
    Turn a processMessage failure into a ValidationRejection when it carries an
    ICAREdata OperationOutcome violation, otherwise a TransportError.
    """
    try:
        violation = json.loads(error.response_data["errorMessage"])
        issue = violation["entry"][1]["resource"]["issue"]
        if isinstance(issue, list):
            issue = issue[0]
        detail = issue["details"]["text"]
    except Exception as parse_failure:
        return TransportError(error=error, parse_failure=parse_failure)
    return ValidationRejection(error=error, detail=detail)


def _has_extracted_data(message_bundle: Dict[str, Any]) -> bool:
    return bool(MessageBundler.collection_entries(message_bundle))


async def post_extracted_data(
    messaging_client: AbstractMessagingClient,
    bundles: Sequence[Dict[str, Any]],
    rows: Optional[Sequence[int]] = None,
    post_empty_bundles: bool = False,
    logger: Optional[logging.Logger] = None,
) -> DispatchOutcome:
    """
    Post each bundle in order, awaiting each submission before the next.

    Raw bundles are wrapped into message bundles first. A rejected message is
    recorded against its patient row and marks the post unsuccessful; the
    remaining bundles are still posted.

    Args:
        messaging_client: Client used to submit messages
        bundles: Raw or message bundles, one per extracted patient
        rows: Roster row of each bundle; defaults to the bundle position
        post_empty_bundles: Post bundles whose collection holds no resources
        logger: Logger to report progress to

    Returns:
        DispatchOutcome with per-row errors and success flag

    Raises:
        MessagingPreconditionError: If the client cannot send messages or authorize
    """
    logger = logger or module_logger
    rows = list(rows) if rows is not None else list(range(len(bundles)))

    await check_messaging_client(messaging_client)

    outcome = DispatchOutcome()
    for row, bundle in zip(rows, bundles):
        outcome.messaging_errors.start(row)
        try:
            message_bundle = bundle if MessageBundler.is_message_bundle(bundle) else MessageBundler.wrap(bundle)
            if not post_empty_bundles and not _has_extracted_data(message_bundle):
                logger.warning(f"No data extracted for patient at row {row + 1}; message not sent")
                continue

            await messaging_client.process_message(message_bundle)
            logger.info(f"SUCCESS - sent message for patient at row {row + 1}")
        except Exception as e:
            outcome.successful_message_post = False
            dispatch_error = classify_dispatch_error(e)
            outcome.messaging_errors.add(row, dispatch_error)
            if isinstance(dispatch_error, ValidationRejection):
                logger.error(
                    f"ERROR - could not send message for patient at row {row + 1} - {e} - {dispatch_error.detail}"
                )
            else:
                logger.error(
                    f"ERROR - could not send message for patient at row {row + 1} - "
                    f"processMessage error has status {getattr(e, 'status', None)} and message \"{e}\""
                )
                logger.debug(f"Could not parse processMessage error as a violation: {dispatch_error.parse_failure}")
            logger.debug("processMessage failure", exc_info=e)

    return outcome


async def check_messaging_authentication(messaging_client: AbstractMessagingClient,
                                         logger: Optional[logging.Logger] = None):
    """Confirm the messaging client is configured properly without sending data."""
    logger = logger or module_logger
    await check_messaging_client(messaging_client)
    logger.info("AWS authenticated properly")


class MessagingPreconditionError(Exception):
    """Exception raised when the messaging client cannot be used to send messages."""
    pass
