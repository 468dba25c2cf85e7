from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..db.repository import AppointmentRepository, LeadRepository, MessageRepository
from ..errors import InvalidRequest, NotFound
from ..schemas import LEAD_STATUSES, Appointment, ClientProfile, Lead, Message, ProviderProfile

logger = logging.getLogger(__name__)


class LeadService:
    def __init__(
        self,
        leads: LeadRepository,
        appointments: AppointmentRepository,
        messages: MessageRepository,
    ) -> None:
        self.leads = leads
        self.appointments = appointments
        self.messages = messages

    def _has_history(
        self,
        client: ClientProfile,
        provider: ProviderProfile,
        *,
        skip_appointment: str | None = None,
        skip_message: str | None = None,
    ) -> bool:
        if self.leads.find(provider.id, client.id):
            return True
        appointments = [
            appt
            for appt in self.appointments.list_for_pair(client.id, provider.id)
            if appt.id != skip_appointment
        ]
        if appointments:
            return True
        messages = [
            message
            for message in self.messages.list_between(client.user_id, provider.user_id)
            if message.id != skip_message
        ]
        return bool(messages)

    def emit_for_booking(
        self, appointment: Appointment, client: ClientProfile, provider: ProviderProfile
    ) -> Optional[Lead]:
        if self._has_history(client, provider, skip_appointment=appointment.id):
            return None
        lead = Lead(
            provider_id=provider.id,
            client_id=client.id,
            name=client.name,
            email=client.email,
            phone=client.phone,
            service=appointment.service,
            date=appointment.date,
            message=f"Booked {appointment.service} on {appointment.date} at {appointment.time}",
        )
        logger.info("New lead %s for provider %s from booking %s", lead.id, provider.id, appointment.id)
        return self.leads.create(lead)

    def emit_for_message(
        self, message: Message, client: ClientProfile, provider: ProviderProfile
    ) -> Optional[Lead]:
        if self._has_history(client, provider, skip_message=message.id):
            return None
        lead = Lead(
            provider_id=provider.id,
            client_id=client.id,
            name=client.name,
            email=client.email,
            phone=client.phone,
            service=provider.specialty or "Consultation",
            date=message.created_at.date().isoformat(),
            message=message.content,
        )
        logger.info("New lead %s for provider %s from message %s", lead.id, provider.id, message.id)
        return self.leads.create(lead)

    def list_leads(self, provider_id: str, status: str | None = None) -> list[Lead]:
        if status is not None and status not in LEAD_STATUSES:
            raise InvalidRequest(f"Unknown lead status: {status}")
        return self.leads.list_by_provider(provider_id, status)

    def update_status(self, lead_id: str, status: str) -> Lead:
        if status not in LEAD_STATUSES:
            raise InvalidRequest(f"Unknown lead status: {status}")
        lead = self.leads.get(lead_id)
        if lead is None:
            raise NotFound("Lead not found.")
        lead.status = status
        lead.updated_at = datetime.utcnow()
        return self.leads.update(lead)

    def lead_counts(self, provider_id: str) -> dict[str, int]:
        counts = {status: 0 for status in LEAD_STATUSES}
        for lead in self.leads.list_by_provider(provider_id):
            if lead.status in counts:
                counts[lead.status] += 1
        return counts
