"""
Payment status state machine for invoice lines.

    unpaid  --> paid
    partial --> paid
    paid    --> unpaid

`partial` is never produced here; it only arrives from stored data and
behaves like `unpaid` for selection purposes.
"""
import logging
from typing import Optional

from invoice_tracker.exceptions import InvalidStatusTransition
from invoice_tracker.models import PaymentStatus
from invoice_tracker.services.records import StatusUpdate

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PaymentStatus.UNPAID: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PARTIAL: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.UNPAID}),
}


def is_selectable(status: Optional[PaymentStatus]) -> bool:
    """Lines can be picked for registration unless they are fully paid."""
    return (status or PaymentStatus.UNPAID) is not PaymentStatus.PAID


def can_transition(current: Optional[PaymentStatus], target: PaymentStatus) -> bool:
    current = current or PaymentStatus.UNPAID
    return target in ALLOWED_TRANSITIONS[current]


def transition(line_id: str,
               current: Optional[PaymentStatus],
               target: PaymentStatus) -> Optional[StatusUpdate]:
    """
    Validate a status change and describe it.

    Returns None when the line is already in `target` (repeating a transition
    is a no-op), a StatusUpdate when the change is allowed.

    Raises:
        InvalidStatusTransition: when the change is not allowed.
    """
    current = current or PaymentStatus.UNPAID
    if current is target:
        return None
    if not can_transition(current, target):
        logger.warning(f"Rejected payment status change for line {line_id}: {current.value} -> {target.value}")
        raise InvalidStatusTransition(current, target)
    return StatusUpdate(line_id=line_id, status=target, previous=current)


def fully_paid_target(is_paid: bool) -> PaymentStatus:
    """Status requested by the "fully paid" switch."""
    return PaymentStatus.PAID if is_paid else PaymentStatus.UNPAID
