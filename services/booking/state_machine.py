"""
services/booking/state_machine.py
Booking status transitions and who may trigger them.

    Pending  → Accepted | Rejected   (giver)
    Accepted → Completed             (giver or client)

Rejected, Completed and Cancelled are terminal. Nothing transitions into Cancelled.
"""

from typing import Dict, FrozenSet, Tuple

from shared.models.models import Booking, BookingStatus, UserRole

Edge = Tuple[BookingStatus, BookingStatus]

TRANSITIONS: Dict[Edge, FrozenSet[UserRole]] = {
    (BookingStatus.PENDING, BookingStatus.ACCEPTED): frozenset({UserRole.GIVER}),
    (BookingStatus.PENDING, BookingStatus.REJECTED): frozenset({UserRole.GIVER}),
    (BookingStatus.ACCEPTED, BookingStatus.COMPLETED): frozenset({UserRole.GIVER, UserRole.CLIENT}),
}

TERMINAL_STATES = frozenset(
    {BookingStatus.REJECTED, BookingStatus.COMPLETED, BookingStatus.CANCELLED}
)


class InvalidTransitionError(Exception):
    """The requested status is not reachable from the booking's current status."""

    def __init__(self, current: BookingStatus, requested: BookingStatus):
        self.current = BookingStatus(current)
        self.requested = BookingStatus(requested)
        super().__init__(
            f"Cannot move booking from '{self.current.value}' to '{self.requested.value}'"
        )


class TransitionNotPermittedError(Exception):
    """The caller's role or ownership does not allow this transition."""


def allowed_targets(current: BookingStatus) -> list[BookingStatus]:
    return [dst for (src, dst) in TRANSITIONS if src == current]


def is_owner(booking: Booking, role: UserRole, account_id: int) -> bool:
    if role == UserRole.GIVER:
        return booking.giver_id == account_id
    if role == UserRole.CLIENT:
        return booking.client_id == account_id
    return False


def assert_transition(
    booking: Booking,
    requested: BookingStatus,
    role: UserRole,
    account_id: int,
) -> BookingStatus:
    """
    Validate a status change against the graph and the caller.
    Returns the booking's current status (the value to compare-and-set against).

    A caller outside the booking is refused before its status is read.

    Raises:
        TransitionNotPermittedError: the caller is not a party to the booking,
            or may not drive this edge.
        InvalidTransitionError: (current, requested) is not an edge.
    """
    if not is_owner(booking, role, account_id):
        raise TransitionNotPermittedError("Not authorized to update this booking")

    current = BookingStatus(booking.status)
    requested = BookingStatus(requested)

    actors = TRANSITIONS.get((current, requested))
    if actors is None:
        raise InvalidTransitionError(current, requested)
    if role not in actors:
        raise TransitionNotPermittedError(
            f"{role.value} cannot set a booking to '{requested.value}'"
        )
    return current
