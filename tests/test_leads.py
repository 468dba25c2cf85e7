"""Tests for lead capture and pipeline status."""

import pytest

from expertmeet.errors import InvalidRequest, NotFound
from expertmeet.schemas import Appointment, Message


@pytest.fixture
def parties(repos):
    return repos.profiles.get_client("client-1"), repos.profiles.get_provider("provider-1")


def _appointment(**overrides) -> Appointment:
    fields = {
        "client_id": "client-1",
        "provider_id": "provider-1",
        "service": "Tax review",
        "date": "2026-10-19",
        "time": "09:00",
        "method": "video",
    }
    fields.update(overrides)
    return Appointment(**fields)


class TestEmitForBooking:
    def test_first_booking_creates_lead(self, leads, repos, parties):
        appointment = repos.appointments.create(_appointment())
        lead = leads.emit_for_booking(appointment, *parties)
        assert lead is not None
        assert lead.status == "new"
        assert lead.service == "Tax review"
        assert lead.date == "2026-10-19"
        assert lead.name == "Ada Client"

    def test_prior_appointment_suppresses_lead(self, leads, repos, parties):
        repos.appointments.create(_appointment())
        second = repos.appointments.create(_appointment(time="10:00"))
        assert leads.emit_for_booking(second, *parties) is None

    def test_existing_lead_suppresses_duplicate(self, leads, repos, parties):
        appointment = repos.appointments.create(_appointment())
        leads.emit_for_booking(appointment, *parties)
        assert leads.emit_for_booking(appointment, *parties) is None
        assert len(repos.leads.list_by_provider("provider-1")) == 1


class TestEmitForMessage:
    def test_first_message_creates_lead(self, leads, repos, parties):
        message = repos.messages.create(
            Message(sender_id="user-client-1", receiver_id="user-provider-1", content="Can you help with my taxes?")
        )
        lead = leads.emit_for_message(message, *parties)
        assert lead.message == "Can you help with my taxes?"
        assert lead.service == "Tax Law"

    def test_later_message_ignored(self, leads, repos, parties):
        repos.messages.create(Message(sender_id="user-client-1", receiver_id="user-provider-1", content="Hi"))
        message = repos.messages.create(
            Message(sender_id="user-client-1", receiver_id="user-provider-1", content="Hello again")
        )
        assert leads.emit_for_message(message, *parties) is None


class TestPipeline:
    """Tests for listing, counting and moving leads."""

    def test_update_status(self, leads, repos, parties):
        appointment = repos.appointments.create(_appointment())
        lead = leads.emit_for_booking(appointment, *parties)
        updated = leads.update_status(lead.id, "contacted")
        assert updated.status == "contacted"
        assert [item.id for item in leads.list_leads("provider-1", "contacted")] == [lead.id]
        assert leads.list_leads("provider-1", "new") == []

    def test_invalid_status(self, leads, repos, parties):
        appointment = repos.appointments.create(_appointment())
        lead = leads.emit_for_booking(appointment, *parties)
        with pytest.raises(InvalidRequest):
            leads.update_status(lead.id, "lost")

    def test_unknown_lead(self, leads):
        with pytest.raises(NotFound):
            leads.update_status("missing", "contacted")

    def test_counts_are_zero_filled(self, leads, repos, parties):
        appointment = repos.appointments.create(_appointment())
        leads.emit_for_booking(appointment, *parties)
        assert leads.lead_counts("provider-1") == {"new": 1, "contacted": 0, "qualified": 0, "converted": 0}
