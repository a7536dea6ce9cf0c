import pytest
from datetime import date, datetime, timedelta

from clinicbook.core.exceptions import AuthorizationError, InvalidTransitionError, ValidationError
from clinicbook.core.security import UserRole
from clinicbook.models.appointment import Appointment, AppointmentStatus, CancelledBy
from clinicbook.services.lifecycle import AppointmentLifecycle

def make_appointment(day, time="10:00", status=AppointmentStatus.PENDING):
    """Unsaved appointment; the lifecycle never touches the database."""
    return Appointment(
        appointment_id="APT-TEST",
        patient_id=1,
        doctor_id=2,
        availability_id=3,
        patient_name="Test Patient",
        patient_email="patient@clinic.test",
        patient_phone="",
        doctor_name="Dr. Test",
        specialization="Cardiology",
        appointment_date=datetime.combine(day, datetime.min.time()),
        appointment_time=time,
        status=status,
        symptoms="Headache",
        notes="",
        cancellation_reason="",
    )

@pytest.fixture
def lifecycle():
    return AppointmentLifecycle()

class TestTransitions:

    @pytest.mark.parametrize("source,target", [
        (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.PENDING, AppointmentStatus.COMPLETED),
        (AppointmentStatus.PENDING, AppointmentStatus.NO_SHOW),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.NO_SHOW),
    ])
    def test_staff_transitions(self, lifecycle, source, target):
        for role in (UserRole.DOCTOR, UserRole.ADMIN):
            transition = lifecycle.check(source, target, role)
            assert transition.target == target
            assert transition.releases_slot is False

    def test_patient_cannot_confirm(self, lifecycle):
        with pytest.raises(AuthorizationError):
            lifecycle.check(AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, UserRole.PATIENT)

    def test_any_party_can_cancel(self, lifecycle):
        for role in UserRole:
            transition = lifecycle.check("pending", "cancelled", role)
            assert transition.releases_slot is True

    @pytest.mark.parametrize("source,target", [
        (AppointmentStatus.COMPLETED, AppointmentStatus.PENDING),
        (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED),
        (AppointmentStatus.CANCELLED, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.NO_SHOW, AppointmentStatus.COMPLETED),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.PENDING),
        (AppointmentStatus.PENDING, AppointmentStatus.PENDING),
    ])
    def test_illegal_transitions(self, lifecycle, source, target):
        with pytest.raises(InvalidTransitionError):
            lifecycle.check(source, target, UserRole.ADMIN)

    def test_terminal_states(self, lifecycle):
        assert lifecycle.is_terminal(AppointmentStatus.COMPLETED)
        assert lifecycle.is_terminal(AppointmentStatus.CANCELLED)
        assert lifecycle.is_terminal(AppointmentStatus.NO_SHOW)
        assert not lifecycle.is_terminal(AppointmentStatus.PENDING)
        assert lifecycle.allowed_targets(AppointmentStatus.CONFIRMED) == {
            AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW, AppointmentStatus.CANCELLED
        }

    def test_parse_status(self, lifecycle):
        assert lifecycle.parse_status(" No-Show ") == AppointmentStatus.NO_SHOW
        with pytest.raises(ValidationError):
            lifecycle.parse_status("archived")

class TestApply:

    def test_apply_cancel_records_who_and_why(self, lifecycle):
        appointment = make_appointment(date.today() + timedelta(days=3))
        now = datetime(2030, 1, 1, 8, 0)

        lifecycle.apply(appointment, "cancelled", "doctor", reason=" Doctor unavailable ", now=now)

        assert appointment.status == AppointmentStatus.CANCELLED
        assert appointment.cancelled_by == CancelledBy.DOCTOR
        assert appointment.cancellation_reason == "Doctor unavailable"
        assert appointment.cancelled_at == now

    def test_apply_status_sets_notes(self, lifecycle):
        appointment = make_appointment(date.today() + timedelta(days=3))

        lifecycle.apply(appointment, AppointmentStatus.CONFIRMED, UserRole.DOCTOR, notes="Bring results")

        assert appointment.status == AppointmentStatus.CONFIRMED
        assert appointment.notes == "Bring results"
        assert appointment.cancelled_by is None

    def test_apply_leaves_appointment_untouched_on_error(self, lifecycle):
        appointment = make_appointment(date.today(), status=AppointmentStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            lifecycle.apply(appointment, AppointmentStatus.PENDING, UserRole.ADMIN)
        assert appointment.status == AppointmentStatus.COMPLETED

    def test_changes_without_notes_only_sets_status(self, lifecycle):
        transition = lifecycle.check(AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, "admin")
        assert lifecycle.changes(transition, "admin") == {"status": AppointmentStatus.CONFIRMED}

    def test_changes_for_cancel(self, lifecycle):
        now = datetime(2030, 1, 1, 8, 0)
        transition = lifecycle.check(AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, "patient")

        assert lifecycle.changes(transition, "patient", notes="ignored", now=now) == {
            "status": AppointmentStatus.CANCELLED,
            "cancelled_by": CancelledBy.PATIENT,
            "cancellation_reason": "",
            "cancelled_at": now,
        }

class TestCanBeCancelled:

    def test_future_pending(self, lifecycle):
        appointment = make_appointment(date.today() + timedelta(days=1))
        assert lifecycle.can_be_cancelled(appointment)

    def test_yesterday(self, lifecycle):
        appointment = make_appointment(date.today() - timedelta(days=1))
        assert not lifecycle.can_be_cancelled(appointment)

    def test_closed_status(self, lifecycle):
        appointment = make_appointment(
            date.today() + timedelta(days=1), status=AppointmentStatus.COMPLETED
        )
        assert not lifecycle.can_be_cancelled(appointment)

    def test_uses_slot_time(self, lifecycle):
        """Same day: before the slot it can be cancelled, after it cannot."""
        appointment = make_appointment(date(2030, 5, 1), time="14:00")
        assert lifecycle.can_be_cancelled(appointment, now=datetime(2030, 5, 1, 13, 59))
        assert not lifecycle.can_be_cancelled(appointment, now=datetime(2030, 5, 1, 14, 1))
