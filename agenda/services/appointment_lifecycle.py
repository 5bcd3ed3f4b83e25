"""
Appointment status state machine.

    pending   -> confirmed | canceled | completed
    reserved  -> confirmed | canceled | completed
    confirmed -> canceled | completed
    canceled, completed: terminal
"""

from agenda.exceptions import ConflictError
from agenda.models.appointment import AppointmentStatus

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.pending: frozenset(
        {AppointmentStatus.confirmed, AppointmentStatus.canceled, AppointmentStatus.completed}
    ),
    AppointmentStatus.reserved: frozenset(
        {AppointmentStatus.confirmed, AppointmentStatus.canceled, AppointmentStatus.completed}
    ),
    AppointmentStatus.confirmed: frozenset({AppointmentStatus.canceled, AppointmentStatus.completed}),
    AppointmentStatus.canceled: frozenset(),
    AppointmentStatus.completed: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    try:
        current_status = AppointmentStatus(current)
        target_status = AppointmentStatus(target)
    except ValueError:
        return False
    return target_status in ALLOWED_TRANSITIONS[current_status]


def assert_transition(current: str, target: str) -> None:
    """Raise ConflictError(invalid_transition) unless current -> target is allowed."""
    if not can_transition(current, target):
        raise ConflictError(
            f"Cannot move appointment from {current} to {target}",
            reason="invalid_transition",
        )
