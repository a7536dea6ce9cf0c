"""Appointment status state machine.

``pending`` is the initial state; ``completed``, ``no-show`` and
``cancelled`` are terminal. Every legal edge, the roles allowed to take it
and whether it frees the slot are listed in ``TRANSITIONS``; anything not in
the table is rejected.
"""
from datetime import datetime
from typing import Dict, FrozenSet, NamedTuple, Optional, Union

from ..models.appointment import Appointment, AppointmentStatus, CancelledBy, ACTIVE_STATUSES
from ..core.exceptions import AuthorizationError, InvalidTransitionError, ValidationError
from ..core.security import UserRole

STAFF: FrozenSet[UserRole] = frozenset({UserRole.DOCTOR, UserRole.ADMIN})
ANY_PARTY: FrozenSet[UserRole] = frozenset({UserRole.PATIENT, UserRole.DOCTOR, UserRole.ADMIN})

TRANSITIONS: Dict[AppointmentStatus, Dict[AppointmentStatus, FrozenSet[UserRole]]] = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.CONFIRMED: STAFF,
        AppointmentStatus.COMPLETED: STAFF,
        AppointmentStatus.NO_SHOW: STAFF,
        AppointmentStatus.CANCELLED: ANY_PARTY,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.COMPLETED: STAFF,
        AppointmentStatus.NO_SHOW: STAFF,
        AppointmentStatus.CANCELLED: ANY_PARTY,
    },
}

SLOT_RELEASING: FrozenSet[AppointmentStatus] = frozenset({AppointmentStatus.CANCELLED})

class Transition(NamedTuple):
    source: AppointmentStatus
    target: AppointmentStatus
    releases_slot: bool

class AppointmentLifecycle:
    @staticmethod
    def parse_status(value: Union[str, AppointmentStatus, None]) -> AppointmentStatus:
        """Map a status string onto the closed set of statuses."""
        if isinstance(value, AppointmentStatus):
            return value
        try:
            return AppointmentStatus(str(value).strip().lower())
        except ValueError as exc:
            valid = ", ".join(status.value for status in AppointmentStatus)
            raise ValidationError(f"Invalid status. Must be one of: {valid}") from exc

    @staticmethod
    def parse_role(value: Union[str, UserRole]) -> UserRole:
        if isinstance(value, UserRole):
            return value
        try:
            return UserRole(str(value).strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Unknown role: {value}") from exc

    def allowed_targets(self, current: AppointmentStatus) -> FrozenSet[AppointmentStatus]:
        return frozenset(TRANSITIONS.get(current, {}))

    def is_terminal(self, status: AppointmentStatus) -> bool:
        return not TRANSITIONS.get(status)

    def can_be_cancelled(self, appointment: Appointment, now: Optional[datetime] = None) -> bool:
        """True when the appointment is still ahead and not yet closed."""
        now = now or datetime.utcnow()
        return appointment.scheduled_at > now and appointment.status in ACTIVE_STATUSES

    def check(
        self,
        current: Union[str, AppointmentStatus],
        target: Union[str, AppointmentStatus],
        actor_role: Union[str, UserRole]
    ) -> Transition:
        source = self.parse_status(current)
        destination = self.parse_status(target)
        role = self.parse_role(actor_role)

        allowed_roles = TRANSITIONS.get(source, {}).get(destination)
        if allowed_roles is None:
            raise InvalidTransitionError(
                f"Cannot change appointment status from {source.value} to {destination.value}"
            )
        if role not in allowed_roles:
            raise AuthorizationError(
                f"A {role.value} cannot change appointment status to {destination.value}"
            )

        return Transition(
            source=source,
            target=destination,
            releases_slot=destination in SLOT_RELEASING
        )

    def changes(
        self,
        transition: Transition,
        actor_role: Union[str, UserRole],
        notes: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, object]:
        """Column values written when ``transition`` is taken."""
        values: Dict[str, object] = {"status": transition.target}
        if transition.target == AppointmentStatus.CANCELLED:
            values["cancelled_by"] = CancelledBy(self.parse_role(actor_role).value)
            values["cancellation_reason"] = (reason or "").strip()
            values["cancelled_at"] = now or datetime.utcnow()
        elif notes:
            values["notes"] = notes.strip()
        return values

    def apply(
        self,
        appointment: Appointment,
        target: Union[str, AppointmentStatus],
        actor_role: Union[str, UserRole],
        notes: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Transition:
        """Validate the edge and move ``appointment`` along it (not persisted)."""
        transition = self.check(appointment.status, target, actor_role)
        for column, value in self.changes(transition, actor_role, notes, reason, now).items():
            setattr(appointment, column, value)
        return transition
