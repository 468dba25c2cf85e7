from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol

from ..errors import DuplicateRecord, StaleRecord
from ..schemas import (
    Appointment,
    AvailabilityRule,
    ClientNote,
    ClientProfile,
    Document,
    Lead,
    Message,
    ProviderProfile,
    ProviderSubscription,
    SubscriptionPlan,
    UsagePeriod,
)


class AppointmentRepository(Protocol):
    def create(self, appointment: Appointment) -> Appointment:
        ...

    def get(self, appointment_id: str) -> Optional[Appointment]:
        ...

    def update(self, appointment: Appointment) -> Appointment:
        ...

    def list_by_client(self, client_id: str, status: str | None = None) -> list[Appointment]:
        ...

    def list_by_provider(self, provider_id: str, status: str | None = None) -> list[Appointment]:
        ...

    def list_for_pair(self, client_id: str, provider_id: str) -> list[Appointment]:
        ...


class AvailabilityRepository(Protocol):
    def create(self, rule: AvailabilityRule) -> AvailabilityRule:
        ...

    def delete(self, rule_id: str) -> bool:
        ...

    def list_by_provider(self, provider_id: str) -> list[AvailabilityRule]:
        ...

    def list_for_day(self, provider_id: str, day_of_week: int) -> list[AvailabilityRule]:
        ...


class UsageRepository(Protocol):
    def get_period(self, provider_id: str, month: int, year: int) -> Optional[UsagePeriod]:
        ...

    def insert_period(self, period: UsagePeriod) -> UsagePeriod:
        """Insert a new period; raises DuplicateRecord if provider/month/year exists."""
        ...

    def compare_and_swap(self, period: UsagePeriod, expected_version: int) -> UsagePeriod:
        """Write ``period`` only if the stored version still equals ``expected_version``."""
        ...


class PlanRepository(Protocol):
    def get_active_plan(self, provider_id: str) -> Optional[SubscriptionPlan]:
        ...

    def get_plan_by_name(self, name: str) -> Optional[SubscriptionPlan]:
        ...

    def assign_plan(self, subscription: ProviderSubscription) -> ProviderSubscription:
        """Insert a subscription; raises DuplicateRecord if the provider already has an active one."""
        ...


class LeadRepository(Protocol):
    def create(self, lead: Lead) -> Lead:
        ...

    def get(self, lead_id: str) -> Optional[Lead]:
        ...

    def update(self, lead: Lead) -> Lead:
        ...

    def find(self, provider_id: str, client_id: str) -> Optional[Lead]:
        ...

    def list_by_provider(self, provider_id: str, status: str | None = None) -> list[Lead]:
        ...


class MessageRepository(Protocol):
    def create(self, message: Message) -> Message:
        ...

    def list_between(self, user_id: str, partner_id: str) -> list[Message]:
        ...

    def list_for_user(self, user_id: str) -> list[Message]:
        ...

    def mark_read(self, message_ids: list[str]) -> None:
        ...


class ProfileRepository(Protocol):
    def get_client(self, client_id: str) -> Optional[ClientProfile]:
        ...

    def get_provider(self, provider_id: str) -> Optional[ProviderProfile]:
        ...

    def get_client_by_user(self, user_id: str) -> Optional[ClientProfile]:
        ...

    def get_provider_by_user(self, user_id: str) -> Optional[ProviderProfile]:
        ...

    def search_providers(self, term: str | None = None, category: str | None = None) -> list[ProviderProfile]:
        """Providers whose name or specialty contains ``term`` (case-insensitive), within ``category``."""
        ...

    def top_rated_providers(self, limit: int) -> list[ProviderProfile]:
        ...


class DocumentRepository(Protocol):
    def create(self, document: Document) -> Document:
        ...

    def get(self, document_id: str) -> Optional[Document]:
        ...

    def update(self, document: Document) -> Document:
        ...

    def delete(self, document_id: str) -> bool:
        ...

    def list_by_owner(self, user_id: str) -> list[Document]:
        ...

    def list_shared_with(self, user_id: str) -> list[Document]:
        ...


class NoteRepository(Protocol):
    def create(self, note: ClientNote) -> ClientNote:
        ...

    def get(self, note_id: str) -> Optional[ClientNote]:
        ...

    def update(self, note: ClientNote) -> ClientNote:
        ...

    def delete(self, note_id: str) -> bool:
        ...

    def list_for_client(self, provider_id: str, client_id: str) -> list[ClientNote]:
        """Newest first."""
        ...


@dataclass
class Repositories:
    appointments: AppointmentRepository
    availability: AvailabilityRepository
    usage: UsageRepository
    plans: PlanRepository
    leads: LeadRepository
    messages: MessageRepository
    profiles: ProfileRepository
    documents: DocumentRepository
    notes: NoteRepository


@dataclass
class InMemoryAppointmentRepository:
    store: dict[str, Appointment] = field(default_factory=dict)

    def create(self, appointment: Appointment) -> Appointment:
        self.store[appointment.id] = appointment.model_copy()
        return appointment

    def get(self, appointment_id: str) -> Optional[Appointment]:
        found = self.store.get(appointment_id)
        return found.model_copy() if found else None

    def update(self, appointment: Appointment) -> Appointment:
        self.store[appointment.id] = appointment.model_copy()
        return appointment

    def list_by_client(self, client_id: str, status: str | None = None) -> list[Appointment]:
        return [
            appointment.model_copy()
            for appointment in self.store.values()
            if appointment.client_id == client_id and (status is None or appointment.status == status)
        ]

    def list_by_provider(self, provider_id: str, status: str | None = None) -> list[Appointment]:
        return [
            appointment.model_copy()
            for appointment in self.store.values()
            if appointment.provider_id == provider_id
            and (status is None or appointment.status == status)
        ]

    def list_for_pair(self, client_id: str, provider_id: str) -> list[Appointment]:
        return [
            appointment.model_copy()
            for appointment in self.store.values()
            if appointment.client_id == client_id and appointment.provider_id == provider_id
        ]


@dataclass
class InMemoryAvailabilityRepository:
    store: dict[str, AvailabilityRule] = field(default_factory=dict)

    def create(self, rule: AvailabilityRule) -> AvailabilityRule:
        self.store[rule.id] = rule
        return rule

    def delete(self, rule_id: str) -> bool:
        return self.store.pop(rule_id, None) is not None

    def list_by_provider(self, provider_id: str) -> list[AvailabilityRule]:
        rules = [rule for rule in self.store.values() if rule.provider_id == provider_id]
        return sorted(rules, key=lambda rule: (rule.day_of_week, rule.start_time))

    def list_for_day(self, provider_id: str, day_of_week: int) -> list[AvailabilityRule]:
        return [
            rule
            for rule in self.store.values()
            if rule.provider_id == provider_id and rule.day_of_week == day_of_week
        ]


@dataclass
class InMemoryUsageRepository:
    store: dict[tuple[str, int, int], UsagePeriod] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def get_period(self, provider_id: str, month: int, year: int) -> Optional[UsagePeriod]:
        with self.lock:
            found = self.store.get((provider_id, month, year))
            return found.model_copy(deep=True) if found else None

    def insert_period(self, period: UsagePeriod) -> UsagePeriod:
        key = (period.provider_id, period.month, period.year)
        with self.lock:
            if key in self.store:
                raise DuplicateRecord(f"Usage period {key} already exists")
            self.store[key] = period.model_copy(deep=True)
        return period

    def compare_and_swap(self, period: UsagePeriod, expected_version: int) -> UsagePeriod:
        key = (period.provider_id, period.month, period.year)
        with self.lock:
            current = self.store.get(key)
            if current is None or current.version != expected_version:
                raise StaleRecord(f"Usage period {key} changed concurrently")
            self.store[key] = period.model_copy(deep=True)
        return period


@dataclass
class InMemoryPlanRepository:
    plans: dict[str, SubscriptionPlan] = field(default_factory=dict)
    subscriptions: dict[str, ProviderSubscription] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def add_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        self.plans[plan.id] = plan
        return plan

    def get_active_plan(self, provider_id: str) -> Optional[SubscriptionPlan]:
        for subscription in self.subscriptions.values():
            if subscription.provider_id == provider_id and subscription.status == "active":
                return self.plans.get(subscription.plan_id)
        return None

    def get_plan_by_name(self, name: str) -> Optional[SubscriptionPlan]:
        return next((plan for plan in self.plans.values() if plan.name == name), None)

    def assign_plan(self, subscription: ProviderSubscription) -> ProviderSubscription:
        with self.lock:
            if self.get_active_plan(subscription.provider_id) is not None:
                raise DuplicateRecord(f"Provider {subscription.provider_id} already has an active subscription")
            self.subscriptions[subscription.id] = subscription
        return subscription


@dataclass
class InMemoryLeadRepository:
    store: dict[str, Lead] = field(default_factory=dict)

    def create(self, lead: Lead) -> Lead:
        self.store[lead.id] = lead
        return lead

    def get(self, lead_id: str) -> Optional[Lead]:
        return self.store.get(lead_id)

    def update(self, lead: Lead) -> Lead:
        self.store[lead.id] = lead
        return lead

    def find(self, provider_id: str, client_id: str) -> Optional[Lead]:
        return next(
            (
                lead
                for lead in self.store.values()
                if lead.provider_id == provider_id and lead.client_id == client_id
            ),
            None,
        )

    def list_by_provider(self, provider_id: str, status: str | None = None) -> list[Lead]:
        return [
            lead
            for lead in self.store.values()
            if lead.provider_id == provider_id and (status is None or lead.status == status)
        ]


@dataclass
class InMemoryMessageRepository:
    store: dict[str, Message] = field(default_factory=dict)

    def create(self, message: Message) -> Message:
        self.store[message.id] = message
        return message

    def list_between(self, user_id: str, partner_id: str) -> list[Message]:
        thread = [
            message
            for message in self.store.values()
            if {message.sender_id, message.receiver_id} == {user_id, partner_id}
        ]
        return sorted(thread, key=lambda message: message.created_at)

    def list_for_user(self, user_id: str) -> list[Message]:
        mine = [
            message
            for message in self.store.values()
            if user_id in (message.sender_id, message.receiver_id)
        ]
        return sorted(mine, key=lambda message: message.created_at, reverse=True)

    def mark_read(self, message_ids: list[str]) -> None:
        for message_id in message_ids:
            if message_id in self.store:
                self.store[message_id].read = True


@dataclass
class InMemoryProfileRepository:
    clients: dict[str, ClientProfile] = field(default_factory=dict)
    providers: dict[str, ProviderProfile] = field(default_factory=dict)

    def add_client(self, profile: ClientProfile) -> ClientProfile:
        self.clients[profile.id] = profile
        return profile

    def add_provider(self, profile: ProviderProfile) -> ProviderProfile:
        self.providers[profile.id] = profile
        return profile

    def get_client(self, client_id: str) -> Optional[ClientProfile]:
        return self.clients.get(client_id)

    def get_provider(self, provider_id: str) -> Optional[ProviderProfile]:
        return self.providers.get(provider_id)

    def get_client_by_user(self, user_id: str) -> Optional[ClientProfile]:
        return next((p for p in self.clients.values() if p.user_id == user_id), None)

    def get_provider_by_user(self, user_id: str) -> Optional[ProviderProfile]:
        return next((p for p in self.providers.values() if p.user_id == user_id), None)

    def search_providers(self, term: str | None = None, category: str | None = None) -> list[ProviderProfile]:
        needle = (term or "").lower()
        return [
            provider
            for provider in self.providers.values()
            if (not needle or needle in provider.name.lower() or needle in (provider.specialty or "").lower())
            and (not category or provider.category == category)
        ]

    def top_rated_providers(self, limit: int) -> list[ProviderProfile]:
        rated = sorted(self.providers.values(), key=lambda provider: provider.rating or 0, reverse=True)
        return rated[:limit]


@dataclass
class InMemoryDocumentRepository:
    store: dict[str, Document] = field(default_factory=dict)

    def create(self, document: Document) -> Document:
        self.store[document.id] = document
        return document

    def get(self, document_id: str) -> Optional[Document]:
        return self.store.get(document_id)

    def update(self, document: Document) -> Document:
        self.store[document.id] = document
        return document

    def delete(self, document_id: str) -> bool:
        return self.store.pop(document_id, None) is not None

    def list_by_owner(self, user_id: str) -> list[Document]:
        return [document for document in self.store.values() if document.user_id == user_id]

    def list_shared_with(self, user_id: str) -> list[Document]:
        return [document for document in self.store.values() if user_id in document.shared_with]


@dataclass
class InMemoryNoteRepository:
    store: dict[str, ClientNote] = field(default_factory=dict)

    def create(self, note: ClientNote) -> ClientNote:
        self.store[note.id] = note
        return note

    def get(self, note_id: str) -> Optional[ClientNote]:
        found = self.store.get(note_id)
        return found.model_copy() if found else None

    def update(self, note: ClientNote) -> ClientNote:
        self.store[note.id] = note
        return note

    def delete(self, note_id: str) -> bool:
        return self.store.pop(note_id, None) is not None

    def list_for_client(self, provider_id: str, client_id: str) -> list[ClientNote]:
        notes = [
            note
            for note in self.store.values()
            if note.provider_id == provider_id and note.client_id == client_id
        ]
        return sorted(notes, key=lambda note: note.created_at, reverse=True)


def build_in_memory_repositories() -> Repositories:
    return Repositories(
        appointments=InMemoryAppointmentRepository(),
        availability=InMemoryAvailabilityRepository(),
        usage=InMemoryUsageRepository(),
        plans=InMemoryPlanRepository(),
        leads=InMemoryLeadRepository(),
        messages=InMemoryMessageRepository(),
        profiles=InMemoryProfileRepository(),
        documents=InMemoryDocumentRepository(),
        notes=InMemoryNoteRepository(),
    )
