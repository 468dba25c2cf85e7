"""Tests for the appointment booking engine."""

import pytest

from expertmeet.booking.engine import BookingEngine, normalize_date_time
from expertmeet.errors import CallProvisioningError, InvalidRequest, NotFound, QuotaExceeded
from expertmeet.schemas import AvailabilityRuleCreate, BookingRequest, Message, UsagePeriod


def _request(**overrides) -> BookingRequest:
    fields = {
        "client_id": "client-1",
        "provider_id": "provider-1",
        "service": "Consultation",
        "date": "2026-10-19",
        "time": "09:00",
        "method": "video",
    }
    fields.update(overrides)
    return BookingRequest(**fields)


def _appointments_used(meter) -> int:
    return meter.get_or_create_period("provider-1").appointments_used


class TestNormalizeDateTime:
    def test_iso(self):
        assert normalize_date_time("2026-10-19", "09:00") == ("2026-10-19", "09:00")

    def test_flexible(self):
        assert normalize_date_time("Oct 19 2026", "2:30 PM") == ("2026-10-19", "14:30")

    def test_unparseable(self):
        with pytest.raises(InvalidRequest):
            normalize_date_time("nonsense", "09:00")


class TestBook:
    """Tests for BookingEngine.book()."""

    def test_books_offered_slot_end_to_end(self, availability, engine, meter, repos):
        """Booking an offered Monday slot stores a pending appointment, counts usage and emits a lead."""
        availability.create_rule(
            "provider-1", AvailabilityRuleCreate(day_of_week=1, start_time="09:00", end_time="10:00")
        )
        times = availability.available_times("provider-1", "2026-10-19")
        assert times == ["09:00", "09:30"]

        appointment = engine.book(_request(time=times[0]))

        assert appointment.status == "pending"
        assert appointment.call_room_id
        assert repos.appointments.get(appointment.id) is not None
        assert _appointments_used(meter) == 1
        leads = repos.leads.list_by_provider("provider-1")
        assert len(leads) == 1
        assert leads[0].status == "new"
        assert leads[0].client_id == "client-1"
        assert leads[0].email == "ada@example.com"

    def test_video_gets_room(self, engine):
        appointment = engine.book(_request(method="video"))
        assert appointment.call_room_id.startswith("room_")

    def test_in_person_has_no_room(self, engine):
        appointment = engine.book(_request(method="in-person"))
        assert appointment.call_room_id is None

    def test_quota_exceeded_persists_nothing(self, engine, meter, repos):
        repos.usage.insert_period(UsagePeriod(provider_id="provider-1", month=10, year=2026, appointments_used=2))
        with pytest.raises(QuotaExceeded):
            engine.book(_request())
        assert repos.appointments.list_by_provider("provider-1") == []
        assert _appointments_used(meter) == 2
        assert repos.leads.list_by_provider("provider-1") == []

    def test_unknown_client(self, engine):
        with pytest.raises(NotFound, match="Client profile not found"):
            engine.book(_request(client_id="missing"))

    def test_unknown_provider(self, engine):
        with pytest.raises(NotFound, match="Provider not found"):
            engine.book(_request(provider_id="missing"))

    def test_room_failure_persists_nothing(self, repos, meter, leads):
        def broken_rooms():
            raise RuntimeError("room service down")

        engine = BookingEngine(repos, meter, leads, room_factory=broken_rooms)
        with pytest.raises(CallProvisioningError):
            engine.book(_request())
        assert repos.appointments.list_by_provider("provider-1") == []
        assert _appointments_used(meter) == 0

    def test_usage_failure_keeps_booking(self, engine, repos, monkeypatch):
        """A failed usage write is logged and the booking plus lead still stand."""

        def broken_swap(period, expected_version):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(repos.usage, "compare_and_swap", broken_swap)
        appointment = engine.book(_request())
        assert repos.appointments.get(appointment.id) is not None
        assert len(repos.leads.list_by_provider("provider-1")) == 1

    def test_lead_failure_keeps_booking(self, engine, repos, meter, monkeypatch):
        def broken_create(lead):
            raise RuntimeError("leads table missing")

        monkeypatch.setattr(repos.leads, "create", broken_create)
        appointment = engine.book(_request())
        assert repos.appointments.get(appointment.id) is not None
        assert _appointments_used(meter) == 1

    def test_same_slot_can_be_booked_twice(self, engine, repos):
        """Slots are not reserved: two bookings of one slot both succeed."""
        first = engine.book(_request())
        second = engine.book(_request(client_id="client-2"))
        assert first.id != second.id
        assert len(repos.appointments.list_by_provider("provider-1")) == 2

    def test_lead_only_for_first_contact(self, engine, repos):
        engine.book(_request())
        engine.book(_request(time="09:30"))
        assert len(repos.leads.list_by_provider("provider-1")) == 1

    def test_no_lead_after_prior_messages(self, engine, repos):
        repos.messages.create(Message(sender_id="user-client-1", receiver_id="user-provider-1", content="Hi"))
        engine.book(_request())
        assert repos.leads.list_by_provider("provider-1") == []

    def test_time_is_normalized(self, engine):
        appointment = engine.book(_request(date="October 19, 2026", time="2 PM"))
        assert (appointment.date, appointment.time) == ("2026-10-19", "14:00")


class TestTransitions:
    """Tests for cancel/confirm/complete."""

    def test_cancel_is_idempotent(self, engine):
        appointment = engine.book(_request())
        assert engine.cancel(appointment.id).status == "canceled"
        assert engine.cancel(appointment.id).status == "canceled"
        assert engine.get(appointment.id).status == "canceled"

    def test_cancel_unknown(self, engine):
        with pytest.raises(NotFound):
            engine.cancel("missing")

    def test_confirm_then_complete(self, engine):
        appointment = engine.book(_request())
        assert engine.confirm(appointment.id).status == "confirmed"
        assert engine.complete(appointment.id).status == "completed"
        assert engine.complete(appointment.id).status == "completed"

    def test_cannot_confirm_canceled(self, engine):
        appointment = engine.book(_request())
        engine.cancel(appointment.id)
        with pytest.raises(InvalidRequest):
            engine.confirm(appointment.id)

    def test_cannot_complete_pending(self, engine):
        appointment = engine.book(_request())
        with pytest.raises(InvalidRequest):
            engine.complete(appointment.id)

    def test_list_filters(self, engine):
        first = engine.book(_request())
        engine.book(_request(client_id="client-2"))
        engine.cancel(first.id)
        assert [a.id for a in engine.list_for_client("client-1")] == [first.id]
        assert len(engine.list_for_provider("provider-1")) == 2
        assert [a.id for a in engine.list_for_provider("provider-1", "canceled")] == [first.id]


class TestJoinCall:
    """Tests for join_call()."""

    def test_client_and_provider_can_join(self, engine):
        appointment = engine.book(_request())
        assert engine.join_call(appointment.id, "client-1") == appointment.call_room_id
        assert engine.join_call(appointment.id, "provider-1") == appointment.call_room_id

    def test_stranger_rejected(self, engine):
        appointment = engine.book(_request())
        with pytest.raises(NotFound):
            engine.join_call(appointment.id, "client-2")

    def test_canceled_rejected(self, engine):
        appointment = engine.book(_request())
        engine.cancel(appointment.id)
        with pytest.raises(InvalidRequest):
            engine.join_call(appointment.id, "client-1")

    def test_in_person_has_no_call(self, engine):
        appointment = engine.book(_request(method="in-person"))
        with pytest.raises(CallProvisioningError):
            engine.join_call(appointment.id, "client-1")
