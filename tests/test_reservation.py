import threading

import pytest

from clinicbook.core.exceptions import NotFoundError, SlotAlreadyBookedError, SlotNotFoundError
from clinicbook.models.availability import TimeSlot
from clinicbook.services.reservation_service import SlotReservationService

def load_slot(db, availability_id, label):
    db.expire_all()
    return db.query(TimeSlot).filter(
        TimeSlot.availability_id == availability_id,
        TimeSlot.slot == label
    ).one()

class TestReserve:

    def test_reserve_marks_slot(self, db, patient, availability):
        token = SlotReservationService(db).reserve(availability.id, "10:00", patient.id)

        assert token.availability_id == availability.id
        assert token.slot == "10:00"
        assert token.patient_id == patient.id

        slot = load_slot(db, availability.id, "10:00")
        assert slot.is_booked
        assert slot.patient_id == patient.id
        assert not load_slot(db, availability.id, "09:00").is_booked

    def test_reserve_booked_slot(self, db, make_patient, availability):
        first, second = make_patient(), make_patient()
        service = SlotReservationService(db)
        service.reserve(availability.id, "10:00", first.id)

        with pytest.raises(SlotAlreadyBookedError):
            service.reserve(availability.id, "10:00", second.id)

        assert load_slot(db, availability.id, "10:00").patient_id == first.id

    def test_reserve_unknown_slot(self, db, patient, availability):
        with pytest.raises(SlotNotFoundError):
            SlotReservationService(db).reserve(availability.id, "23:59", patient.id)

    def test_reserve_unknown_availability(self, db, patient):
        with pytest.raises(NotFoundError) as exc_info:
            SlotReservationService(db).reserve(4242, "10:00", patient.id)
        assert not isinstance(exc_info.value, SlotNotFoundError)

class TestRelease:

    def test_release_frees_slot(self, db, patient, availability):
        service = SlotReservationService(db)
        service.reserve(availability.id, "10:00", patient.id)

        assert service.release(availability.id, "10:00") is True

        slot = load_slot(db, availability.id, "10:00")
        assert not slot.is_booked
        assert slot.patient_id is None

    def test_release_is_idempotent(self, db, patient, availability):
        """Releasing a free slot is a no-op, not an error."""
        service = SlotReservationService(db)
        service.reserve(availability.id, "10:00", patient.id)

        assert service.release(availability.id, "10:00") is True
        assert service.release(availability.id, "10:00") is False
        assert not load_slot(db, availability.id, "10:00").is_booked

    def test_release_guarded_by_patient(self, db, make_patient, availability):
        holder, other = make_patient(), make_patient()
        service = SlotReservationService(db)
        service.reserve(availability.id, "10:00", holder.id)

        assert service.release(availability.id, "10:00", patient_id=other.id) is False
        assert load_slot(db, availability.id, "10:00").patient_id == holder.id

    def test_release_token(self, db, patient, availability):
        service = SlotReservationService(db)
        token = service.reserve(availability.id, "11:00", patient.id)

        assert service.release_token(token) is True
        assert not load_slot(db, availability.id, "11:00").is_booked

    def test_release_unknown_slot(self, db, availability):
        with pytest.raises(SlotNotFoundError):
            SlotReservationService(db).release(availability.id, "23:59")

    def test_rebook_after_release(self, db, make_patient, availability):
        first, second = make_patient(), make_patient()
        service = SlotReservationService(db)
        service.reserve(availability.id, "10:00", first.id)
        service.release(availability.id, "10:00")

        service.reserve(availability.id, "10:00", second.id)
        assert load_slot(db, availability.id, "10:00").patient_id == second.id

class TestConcurrentReservations:

    def _race(self, session_factory, availability_id, attempts):
        """Run reserve() for each (slot, patient_id) pair at the same moment."""
        barrier = threading.Barrier(len(attempts))
        outcomes = []
        lock = threading.Lock()

        def attempt(slot, patient_id):
            session = session_factory()
            try:
                barrier.wait()
                SlotReservationService(session).reserve(availability_id, slot, patient_id)
                result = ("ok", slot, patient_id)
            except SlotAlreadyBookedError:
                result = ("taken", slot, patient_id)
            finally:
                session.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=pair) for pair in attempts]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        return outcomes

    def test_single_winner_for_same_slot(self, db, session_factory, make_patient, availability):
        """Only one of several simultaneous bookings of a slot succeeds."""
        patients = [make_patient() for _ in range(5)]

        outcomes = self._race(session_factory, availability.id, [("10:00", p.id) for p in patients])

        winners = [o for o in outcomes if o[0] == "ok"]
        assert len(outcomes) == 5
        assert len(winners) == 1
        assert load_slot(db, availability.id, "10:00").patient_id == winners[0][2]

    def test_different_slots_do_not_contend(self, db, session_factory, make_patient, availability):
        first, second = make_patient(), make_patient()

        outcomes = self._race(session_factory, availability.id, [("09:00", first.id), ("11:00", second.id)])

        assert sorted(o[0] for o in outcomes) == ["ok", "ok"]
        assert load_slot(db, availability.id, "09:00").patient_id == first.id
        assert load_slot(db, availability.id, "11:00").patient_id == second.id
