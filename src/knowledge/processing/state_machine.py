"""Processing status state machine.

    PROCESSING --success event--> SUCCESS
    PROCESSING --failure event--> FAILED

SUCCESS and FAILED are absorbing. Re-applying the same terminal status is a
no-op (duplicate delivery); anything else out of a terminal state is illegal.
"""

from __future__ import annotations

from src.knowledge.processing.errors import IllegalTransition
from src.knowledge.processing.events import (
    ProcessFailedEvent,
    ProcessingEvent,
    ProcessSuccessEvent,
)
from src.knowledge.schemas import ProcessingStatus


def transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    """Validate a status change.

    Returns:
        True if the change must be applied, False if it is a no-op because
        the record already holds ``target``.

    Raises:
        IllegalTransition: For any move back to PROCESSING or between the
            two terminal states.
    """
    if target is ProcessingStatus.PROCESSING:
        raise IllegalTransition(current.value, target.value)
    if current is ProcessingStatus.PROCESSING:
        return True
    if current is target:
        return False
    raise IllegalTransition(current.value, target.value)


def target_status(event: ProcessingEvent) -> ProcessingStatus | None:
    """Terminal status an inbound event drives a record to, if any."""
    if isinstance(event, ProcessSuccessEvent):
        return ProcessingStatus.SUCCESS
    if isinstance(event, ProcessFailedEvent):
        return ProcessingStatus.FAILED
    return None
