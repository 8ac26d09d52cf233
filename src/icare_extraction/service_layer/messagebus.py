# pylint: disable=broad-except
"""Message bus for the extraction client following Cosmic Python pattern."""

from __future__ import annotations
import logging
from typing import List, Dict, Callable, Type, Union, TYPE_CHECKING

from icare_extraction.domain.commands import (
    Command,
    Event,
    ExtractAndPostData,
    CheckMessagingAuthentication,
)
from icare_extraction.domain.events import RunRecorded
from icare_extraction.service_layer import handlers

if TYPE_CHECKING:
    from icare_extraction.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

Message = Union[Command, Event]


async def handle(
    message: Message,
    uow: AbstractUnitOfWork,
):
    """Handle message (command or event) with the appropriate handler."""
    results = []
    queue = [message]

    while queue:
        message = queue.pop(0)

        if isinstance(message, Event):
            await handle_event(message, queue, uow)
        elif isinstance(message, Command):
            cmd_result = await handle_command(message, queue, uow)
            results.append(cmd_result)
        else:
            raise Exception(f"{message} was not an Event or Command")

    return results


async def handle_event(
    event: Event,
    queue: List[Message],
    uow: AbstractUnitOfWork,
):
    """Handle event by calling all registered event handlers; failures are logged only."""
    for handler in EVENT_HANDLERS[type(event)]:
        try:
            logger.debug(f"handling event {event} with handler {handler.__name__}")
            await handler(event, uow=uow)
            queue.extend(uow.collect_new_events())
        except Exception:
            logger.exception("Exception handling event %s", event)
            continue


async def handle_command(
    command: Command,
    queue: List[Message],
    uow: AbstractUnitOfWork,
):
    """Handle command by calling the registered command handler."""
    logger.debug(f"handling command {command.__class__.__name__}")
    try:
        handler = COMMAND_HANDLERS[type(command)]
        result = await handler(command, uow=uow)
        queue.extend(uow.collect_new_events())
        return result
    except Exception:
        logger.debug("Exception handling command %s", command.__class__.__name__, exc_info=True)
        raise


EVENT_HANDLERS = {
    RunRecorded: [handlers.log_run_recorded],
}  # type: Dict[Type[Event], List[Callable]]

COMMAND_HANDLERS = {
    ExtractAndPostData: handlers.extract_and_post_data,
    CheckMessagingAuthentication: handlers.check_authentication,
}  # type: Dict[Type[Command], Callable]
