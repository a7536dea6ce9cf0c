from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import date, datetime
from typing import List, Optional, Tuple, Union
import logging
import secrets

from ..models.appointment import Appointment, AppointmentStatus
from ..models.availability import Availability
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..core.exceptions import (
    AuthorizationError, ConflictError, NotFoundError, ValidationError
)
from ..core.security import Principal, UserRole
from ..schemas.appointment import BookingSnapshot
from .appointment_repository import AppointmentRepository, Page
from .lifecycle import AppointmentLifecycle, Transition
from .reservation_service import SlotReservationService

logger = logging.getLogger(__name__)

def generate_appointment_id() -> str:
    """Generate an external appointment reference, e.g. APT-20250601-1A2B3C4D."""
    return f"APT-{datetime.utcnow():%Y%m%d}-{secrets.token_hex(4).upper()}"

class BookingService:
    """Keeps availability slots and appointment records consistent.

    A reservation is always paired with a persisted appointment or undone,
    and every cancellation path gives its slot back.
    """

    def __init__(self, db: Session):
        self.db = db
        self.reservations = SlotReservationService(db)
        self.appointments = AppointmentRepository(db)
        self.lifecycle = AppointmentLifecycle()

    def create_appointment(
        self,
        patient_id: int,
        doctor_id: int,
        availability_id: int,
        slot: str,
        symptoms: str,
        snapshot: Optional[BookingSnapshot] = None,
        appointment_id: Optional[str] = None
    ) -> Appointment:
        """Book ``slot`` for a patient and record a pending appointment."""
        slot = (slot or "").strip()
        symptoms = (symptoms or "").strip()
        if not slot or not symptoms:
            raise ValidationError("All appointment details are required")

        doctor = self.db.query(Doctor).filter(
            Doctor.id == doctor_id,
            Doctor.is_active == True  # noqa: E712
        ).first()
        if not doctor:
            raise NotFoundError("Doctor not found")

        patient = self.db.query(Patient).filter(
            Patient.id == patient_id,
            Patient.is_active == True  # noqa: E712
        ).first()
        if not patient:
            raise NotFoundError("Patient not found")

        availability = self.db.query(Availability).filter(
            Availability.id == availability_id,
            Availability.doctor_id == doctor_id
        ).first()
        if not availability:
            raise NotFoundError("Availability slot not found")

        snapshot = snapshot or BookingSnapshot()
        appointment = Appointment(
            appointment_id=(appointment_id or "").strip() or generate_appointment_id(),
            patient_id=patient.id,
            patient_name=snapshot.patient_name or patient.full_name,
            patient_email=(snapshot.patient_email or patient.email).strip().lower(),
            patient_phone=snapshot.patient_phone or patient.phone_number or "",
            doctor_id=doctor.id,
            doctor_name=snapshot.doctor_name or doctor.full_name,
            specialization=snapshot.specialization or doctor.specialization,
            availability_id=availability.id,
            appointment_date=datetime.combine(availability.date, datetime.min.time()),
            appointment_time=slot,
            symptoms=symptoms,
            status=AppointmentStatus.PENDING,
            notes=""
        )

        token = self.reservations.reserve(availability_id, slot, patient_id)

        try:
            appointment = self.appointments.add(appointment)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                f"Failed to persist appointment for slot {slot} of availability "
                f"{availability_id}: {str(exc)}; releasing reservation"
            )
            self._compensate(token)
            if isinstance(exc, IntegrityError):
                raise ConflictError("An appointment with this ID already exists") from exc
            raise

        logger.info(
            f"Appointment {appointment.appointment_id} booked: patient {patient_id}, "
            f"doctor {doctor_id}, {availability.date} {slot}"
        )
        return appointment

    def get_appointment(self, pk: int, principal: Principal) -> Appointment:
        appointment = self._load(pk)
        if self._party_role(appointment, principal.id, principal.role) is None:
            raise AuthorizationError(
                "Access denied. You do not have permission to view this appointment."
            )
        return appointment

    def cancel_appointment(
        self,
        pk: int,
        actor_id: int,
        actor_role: Union[str, UserRole],
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Appointment:
        """Cancel an appointment on behalf of a party and free its slot."""
        appointment = self._load(pk)

        role = self._party_role(appointment, actor_id, actor_role)
        if role is None:
            raise AuthorizationError("Access denied. You cannot cancel this appointment.")

        if not self.lifecycle.can_be_cancelled(appointment, now=now):
            raise ConflictError(
                "This appointment cannot be cancelled. It may be in the past or already completed."
            )

        appointment, _ = self._transition(
            appointment, AppointmentStatus.CANCELLED, role, reason=reason, now=now
        )
        logger.info(f"Appointment {appointment.appointment_id} cancelled by {role.value}")

        self._release_best_effort(appointment)
        return appointment

    def update_status(
        self,
        pk: int,
        actor_id: int,
        actor_role: Union[str, UserRole],
        new_status: Union[str, AppointmentStatus],
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Appointment:
        """Move an appointment along the lifecycle as its doctor or an admin."""
        appointment = self._load(pk)

        role = self._party_role(appointment, actor_id, actor_role)
        if role not in (UserRole.DOCTOR, UserRole.ADMIN):
            raise AuthorizationError(
                "Access denied. Only the assigned doctor or admin can update status."
            )

        target = self.lifecycle.parse_status(new_status)
        if target == AppointmentStatus.CANCELLED:
            return self.cancel_appointment(pk, actor_id, role, reason=notes, now=now)

        appointment, transition = self._transition(appointment, target, role, notes=notes, now=now)
        logger.info(
            f"Appointment {appointment.appointment_id} moved from "
            f"{transition.source.value} to {transition.target.value}"
        )
        return appointment

    def delete_appointment(self, pk: int, actor_role: Union[str, UserRole]) -> None:
        """Remove an appointment record (admin only), freeing a held slot."""
        if self.lifecycle.parse_role(actor_role) != UserRole.ADMIN:
            raise AuthorizationError("Access denied. Admin only.")

        appointment = self._load(pk)

        # Cancelled appointments already gave their slot back
        if appointment.status not in (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED):
            self._release_best_effort(appointment)

        appointment_id = appointment.appointment_id
        self.appointments.delete(appointment)
        logger.info(f"Appointment {appointment_id} deleted")

    def list_patient_appointments(
        self,
        patient_id: int,
        status: Optional[str] = None,
        upcoming: Optional[bool] = None
    ) -> List[Appointment]:
        return self.appointments.list_for_patient(
            patient_id, status=self._optional_status(status), upcoming=upcoming
        )

    def patient_appointment_details(
        self,
        patient_id: int,
        now: Optional[datetime] = None
    ) -> Tuple[Optional[Appointment], List[Appointment]]:
        """The patient's next appointment alongside their past and closed ones."""
        current = self.appointments.next_for_patient(patient_id, now=now)
        previous = self.appointments.list_for_patient(patient_id, upcoming=False, now=now)
        return current, previous

    def list_doctor_appointments(
        self,
        doctor_id: int,
        status: Optional[str] = None,
        upcoming: Optional[bool] = None,
        on_date: Optional[date] = None
    ) -> List[Appointment]:
        return self.appointments.list_for_doctor(
            doctor_id, status=self._optional_status(status), upcoming=upcoming, on_date=on_date
        )

    def list_all_appointments(
        self,
        actor_role: Union[str, UserRole],
        status: Optional[str] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        on_date: Optional[date] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Page:
        if self.lifecycle.parse_role(actor_role) != UserRole.ADMIN:
            raise AuthorizationError("Access denied. Admin only.")
        return self.appointments.paginate(
            status=self._optional_status(status),
            doctor_id=doctor_id,
            patient_id=patient_id,
            on_date=on_date,
            page=page,
            limit=limit
        )

    def _load(self, pk: int) -> Appointment:
        appointment = self.appointments.get(pk)
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def _transition(
        self,
        appointment: Appointment,
        target: AppointmentStatus,
        role: UserRole,
        notes: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[Appointment, Transition]:
        """Validate against the loaded status and write only if it is unchanged."""
        transition = self.lifecycle.check(appointment.status, target, role)
        values = self.lifecycle.changes(transition, role, notes=notes, reason=reason, now=now)
        appointment = self.appointments.update_if_status(appointment, transition.source, values)
        return appointment, transition

    def _party_role(
        self,
        appointment: Appointment,
        actor_id: int,
        actor_role: Union[str, UserRole]
    ) -> Optional[UserRole]:
        """The capacity in which the actor takes part, or None if they don't."""
        role = self.lifecycle.parse_role(actor_role)
        if role == UserRole.ADMIN:
            return role
        if role == UserRole.PATIENT and appointment.patient_id == actor_id:
            return role
        if role == UserRole.DOCTOR and appointment.doctor_id == actor_id:
            return role
        return None

    def _optional_status(self, status: Optional[str]) -> Optional[AppointmentStatus]:
        if status is None or status == "":
            return None
        return self.lifecycle.parse_status(status)

    def _compensate(self, token) -> None:
        try:
            self.reservations.release_token(token)
        except (NotFoundError, SQLAlchemyError) as exc:
            logger.error(
                f"Could not release slot {token.slot} of availability "
                f"{token.availability_id} after failed booking: {str(exc)}"
            )

    def _release_best_effort(self, appointment: Appointment) -> None:
        """Free the appointment's slot; a vanished availability is only logged."""
        try:
            self.reservations.release(
                appointment.availability_id,
                appointment.appointment_time,
                patient_id=appointment.patient_id
            )
        except NotFoundError as exc:
            logger.warning(
                f"Slot for appointment {appointment.appointment_id} not released: {exc.detail}"
            )
        except SQLAlchemyError as exc:
            logger.error(
                f"Slot for appointment {appointment.appointment_id} not released: {str(exc)}"
            )
