"""Email notifications summarizing per-patient errors of a run."""

import abc
import asyncio
import logging
import smtplib
import traceback
from email.message import EmailMessage

from icare_extraction import config
from icare_extraction.config import NotificationInfo
from icare_extraction.domain.model import PatientErrorLog

logger = logging.getLogger(__name__)

DEFAULT_FROM_ADDRESS = "mCODE Extraction Errors <mcode-extraction-errors@mitre.org>"
EMAIL_SUBJECT = "mCODE Extraction Client Errors"
SEPARATOR = "\n============================================================\n\n"


def _error_trace(error) -> str:
    original = getattr(error, "error", error)
    if isinstance(original, BaseException):
        return "".join(traceback.format_exception(type(original), original, original.__traceback__))
    return ""


def format_email_body(errors: PatientErrorLog, from_address: str = DEFAULT_FROM_ADDRESS, debug: bool = False) -> str:
    """Build the plain-text body listing errors per 1-based patient row."""
    body = ""
    if "mcode-extraction-errors@mitre.org" in from_address:
        body += "[This is an automated email from the mCODE Extraction Client. Do not reply to this message.]\n\n"

    body += "Thank you for using the mCODE Extraction Client. "
    body += "Unfortunately, the following errors occurred when running the extraction client:\n\n"

    for patient_row, row_errors in errors.items():
        body += f"Errors for patient at row {patient_row + 1} in .csv file:\n\n"
        for error in row_errors:
            body += f"{str(error).strip()}\n"
            if debug:
                body += f"{_error_trace(error)}\n\n"
        if not row_errors:
            body += "No errors for this patient. Extraction was successful.\n"
        body += SEPARATOR

    if not debug:
        body += "For additional stack trace information about these errors, run the extraction client using the `--debug` flag. "
        body += "The stack trace information can be seen in the terminal as well as in the notification email."
    return body


class AbstractNotifier(abc.ABC):

    @abc.abstractmethod
    async def send(self, notification_info: NotificationInfo, errors: PatientErrorLog, debug: bool = False):
        raise NotImplementedError


class EmailNotifier(AbstractNotifier):
    """Send error summaries over SMTP."""

    async def send(self, notification_info, errors, debug=False):
        """
        Email a summary of errors, unless there are none.

        Raises:
            NotificationError: If notificationInfo lacks a recipient or host
        """
        total_errors = errors.total_errors()
        if total_errors == 0:
            return

        if not notification_info.to or not notification_info.host:
            raise NotificationError(
                f"Email notification information incomplete. Unable to send email with {total_errors} errors. "
                "Update notificationInfo object in configuration in order to receive emails when errors occur."
            )

        from_address = notification_info.from_address or DEFAULT_FROM_ADDRESS
        message = EmailMessage()
        message["Subject"] = EMAIL_SUBJECT
        message["From"] = from_address
        to = notification_info.to
        message["To"] = ", ".join(to) if isinstance(to, list) else to
        message.set_content(format_email_body(errors, from_address, debug))

        logger.debug("Sending email with error information")
        await asyncio.to_thread(self._deliver, notification_info, message)

    @staticmethod
    def _deliver(notification_info: NotificationInfo, message: EmailMessage):
        port = notification_info.port or config.get_smtp_port()
        with smtplib.SMTP(notification_info.host, port) as smtp:
            smtp.send_message(message)


class NotificationError(Exception):
    """Exception raised when an error notification cannot be sent."""
    pass
