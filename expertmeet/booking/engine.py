"""Appointment booking state machine.

A booking runs validate -> quota check -> call provisioning -> persist, then
the best-effort steps (usage recording, lead emission). Only the first four can
fail the request; nothing is persisted before the quota check passes.
"""

from __future__ import annotations

import logging
from typing import Callable

from dateutil import parser as date_parser

from ..db.repository import Repositories
from ..effects import Effect, run_effects
from ..errors import CallProvisioningError, InvalidRequest, NotFound
from ..schemas import Appointment, BookingRequest
from ..calls.rooms import generate_room_id
from .leads import LeadService
from .usage import UsageMeter

logger = logging.getLogger(__name__)


def normalize_date_time(date_str: str, time_str: str) -> tuple[str, str]:
    # Parse flexible inputs and normalize to ISO date + 24h time for storage.
    try:
        parsed_date = date_parser.parse(date_str, fuzzy=True).date()
        parsed_time = date_parser.parse(time_str, fuzzy=True).time()
    except (ValueError, OverflowError) as exc:
        raise InvalidRequest("Could not understand the date/time.") from exc
    return parsed_date.isoformat(), parsed_time.strftime("%H:%M")


class BookingEngine:
    def __init__(
        self,
        repos: Repositories,
        meter: UsageMeter,
        leads: LeadService,
        room_factory: Callable[[], str] = generate_room_id,
    ) -> None:
        self.repos = repos
        self.meter = meter
        self.leads = leads
        self.room_factory = room_factory

    def _provision_room(self) -> str:
        try:
            room_id = self.room_factory()
        except Exception as exc:
            raise CallProvisioningError("Could not set up a video room for this appointment.") from exc
        if not room_id:
            raise CallProvisioningError("Could not set up a video room for this appointment.")
        return room_id

    def book(self, request: BookingRequest) -> Appointment:
        date, time = normalize_date_time(request.date, request.time)

        client = self.repos.profiles.get_client(request.client_id)
        if client is None:
            raise NotFound("Client profile not found.")
        provider = self.repos.profiles.get_provider(request.provider_id)
        if provider is None:
            raise NotFound("Provider not found.")

        self.meter.check_limit(provider.id, "appointment")

        room_id = self._provision_room() if request.method == "video" else None

        appointment = Appointment(
            client_id=client.id,
            provider_id=provider.id,
            service=request.service,
            date=date,
            time=time,
            method=request.method,
            status="pending",
            call_room_id=room_id,
        )
        self.repos.appointments.create(appointment)
        logger.info(
            "Booked %s appointment %s with provider %s on %s %s",
            appointment.method,
            appointment.id,
            provider.id,
            date,
            time,
        )

        run_effects(
            [
                Effect("record_usage", lambda: self.meter.record_usage(provider.id, "appointment")),
                Effect("emit_lead", lambda: self.leads.emit_for_booking(appointment, client, provider)),
            ],
            context=f"Booking {appointment.id}",
        )
        return appointment

    def get(self, appointment_id: str) -> Appointment:
        appointment = self.repos.appointments.get(appointment_id)
        if appointment is None:
            raise NotFound("Appointment not found.")
        return appointment

    def cancel(self, appointment_id: str) -> Appointment:
        # TODO: verify the caller owns the appointment once the auth layer exposes the caller's profile.
        appointment = self.get(appointment_id)
        if appointment.status == "canceled":
            return appointment
        appointment.status = "canceled"
        logger.info("Canceled appointment %s", appointment_id)
        return self.repos.appointments.update(appointment)

    def confirm(self, appointment_id: str) -> Appointment:
        appointment = self.get(appointment_id)
        if appointment.status == "confirmed":
            return appointment
        if appointment.status != "pending":
            raise InvalidRequest(f"Cannot confirm a {appointment.status} appointment.")
        appointment.status = "confirmed"
        return self.repos.appointments.update(appointment)

    def complete(self, appointment_id: str) -> Appointment:
        appointment = self.get(appointment_id)
        if appointment.status == "completed":
            return appointment
        if appointment.status != "confirmed":
            raise InvalidRequest(f"Cannot complete a {appointment.status} appointment.")
        appointment.status = "completed"
        return self.repos.appointments.update(appointment)

    def list_for_client(self, client_id: str, status: str | None = None) -> list[Appointment]:
        return self.repos.appointments.list_by_client(client_id, status)

    def list_for_provider(self, provider_id: str, status: str | None = None) -> list[Appointment]:
        return self.repos.appointments.list_by_provider(provider_id, status)

    def join_call(self, appointment_id: str, participant_id: str) -> str:
        appointment = self.repos.appointments.get(appointment_id)
        if appointment is None or participant_id not in (appointment.client_id, appointment.provider_id):
            raise NotFound("Appointment not found or you don't have permission.")
        if appointment.status in ("canceled", "completed"):
            raise InvalidRequest(f"This appointment is {appointment.status}.")
        if not appointment.call_room_id:
            raise CallProvisioningError("Video call not initialized for this appointment.")
        return appointment.call_room_id
