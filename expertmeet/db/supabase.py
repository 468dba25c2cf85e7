from __future__ import annotations

import logging
from typing import Optional

from postgrest.exceptions import APIError

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
from .repository import Repositories

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def _quoted(value: str) -> str:
    """Quote a value for a PostgREST ``or``/``and`` filter so reserved characters stay literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _first(response) -> Optional[dict]:
    rows = response.data or []
    return rows[0] if rows else None


class SupabaseAppointmentRepository:
    def __init__(self, client) -> None:
        self.client = client

    def create(self, appointment: Appointment) -> Appointment:
        payload = appointment.model_dump(mode="json")
        self.client.table("appointments").insert(payload).execute()
        return appointment

    def get(self, appointment_id: str) -> Optional[Appointment]:
        response = self.client.table("appointments").select("*").eq("id", appointment_id).limit(1).execute()
        row = _first(response)
        return Appointment(**row) if row else None

    def update(self, appointment: Appointment) -> Appointment:
        payload = appointment.model_dump(mode="json")
        self.client.table("appointments").update(payload).eq("id", appointment.id).execute()
        return appointment

    def _list(self, column: str, value: str, status: str | None) -> list[Appointment]:
        query = self.client.table("appointments").select("*").eq(column, value)
        if status:
            query = query.eq("status", status)
        response = query.order("date").order("time").execute()
        return [Appointment(**row) for row in response.data or []]

    def list_by_client(self, client_id: str, status: str | None = None) -> list[Appointment]:
        return self._list("client_id", client_id, status)

    def list_by_provider(self, provider_id: str, status: str | None = None) -> list[Appointment]:
        return self._list("provider_id", provider_id, status)

    def list_for_pair(self, client_id: str, provider_id: str) -> list[Appointment]:
        response = (
            self.client.table("appointments")
            .select("*")
            .eq("client_id", client_id)
            .eq("provider_id", provider_id)
            .execute()
        )
        return [Appointment(**row) for row in response.data or []]


class SupabaseAvailabilityRepository:
    def __init__(self, client) -> None:
        self.client = client

    def create(self, rule: AvailabilityRule) -> AvailabilityRule:
        self.client.table("provider_availability").insert(rule.model_dump(mode="json")).execute()
        return rule

    def delete(self, rule_id: str) -> bool:
        response = self.client.table("provider_availability").delete().eq("id", rule_id).execute()
        return bool(response.data)

    def list_by_provider(self, provider_id: str) -> list[AvailabilityRule]:
        response = (
            self.client.table("provider_availability")
            .select("*")
            .eq("provider_id", provider_id)
            .order("day_of_week")
            .order("start_time")
            .execute()
        )
        return [AvailabilityRule(**row) for row in response.data or []]

    def list_for_day(self, provider_id: str, day_of_week: int) -> list[AvailabilityRule]:
        response = (
            self.client.table("provider_availability")
            .select("*")
            .eq("provider_id", provider_id)
            .eq("day_of_week", day_of_week)
            .execute()
        )
        return [AvailabilityRule(**row) for row in response.data or []]


class SupabaseUsageRepository:
    def __init__(self, client) -> None:
        self.client = client

    def get_period(self, provider_id: str, month: int, year: int) -> Optional[UsagePeriod]:
        response = (
            self.client.table("provider_usage")
            .select("*")
            .eq("provider_id", provider_id)
            .eq("month", month)
            .eq("year", year)
            .limit(1)
            .execute()
        )
        row = _first(response)
        return UsagePeriod(**row) if row else None

    def insert_period(self, period: UsagePeriod) -> UsagePeriod:
        try:
            self.client.table("provider_usage").insert(period.model_dump(mode="json")).execute()
        except APIError as exc:
            if exc.code == UNIQUE_VIOLATION:
                raise DuplicateRecord(
                    f"Usage period for {period.provider_id} {period.month}/{period.year} already exists"
                ) from exc
            raise
        return period

    def compare_and_swap(self, period: UsagePeriod, expected_version: int) -> UsagePeriod:
        response = (
            self.client.table("provider_usage")
            .update(period.model_dump(mode="json", exclude={"id"}))
            .eq("id", period.id)
            .eq("version", expected_version)
            .execute()
        )
        if not response.data:
            raise StaleRecord(f"Usage period {period.id} changed concurrently")
        return period


class SupabasePlanRepository:
    def __init__(self, client) -> None:
        self.client = client

    def get_active_plan(self, provider_id: str) -> Optional[SubscriptionPlan]:
        response = (
            self.client.table("provider_subscriptions")
            .select(
                "plan_id, status, subscription_plans!inner "
                "(id, name, monthly_appointments, monthly_storage_mb, monthly_chats)"
            )
            .eq("provider_id", provider_id)
            .eq("status", "active")
            .limit(1)
            .execute()
        )
        row = _first(response)
        if not row or not row.get("subscription_plans"):
            return None
        return SubscriptionPlan(**row["subscription_plans"])

    def get_plan_by_name(self, name: str) -> Optional[SubscriptionPlan]:
        response = self.client.table("subscription_plans").select("*").eq("name", name).limit(1).execute()
        row = _first(response)
        return SubscriptionPlan(**row) if row else None

    def assign_plan(self, subscription: ProviderSubscription) -> ProviderSubscription:
        try:
            self.client.table("provider_subscriptions").insert(subscription.model_dump(mode="json")).execute()
        except APIError as exc:
            if exc.code == UNIQUE_VIOLATION:
                raise DuplicateRecord(
                    f"Provider {subscription.provider_id} already has an active subscription"
                ) from exc
            raise
        return subscription


class SupabaseLeadRepository:
    def __init__(self, client) -> None:
        self.client = client

    def create(self, lead: Lead) -> Lead:
        self.client.table("leads").insert(lead.model_dump(mode="json")).execute()
        return lead

    def get(self, lead_id: str) -> Optional[Lead]:
        row = _first(self.client.table("leads").select("*").eq("id", lead_id).limit(1).execute())
        return Lead(**row) if row else None

    def update(self, lead: Lead) -> Lead:
        self.client.table("leads").update(lead.model_dump(mode="json")).eq("id", lead.id).execute()
        return lead

    def find(self, provider_id: str, client_id: str) -> Optional[Lead]:
        response = (
            self.client.table("leads")
            .select("*")
            .eq("provider_id", provider_id)
            .eq("client_id", client_id)
            .limit(1)
            .execute()
        )
        row = _first(response)
        return Lead(**row) if row else None

    def list_by_provider(self, provider_id: str, status: str | None = None) -> list[Lead]:
        query = self.client.table("leads").select("*").eq("provider_id", provider_id)
        if status:
            query = query.eq("status", status)
        response = query.order("created_at", desc=True).execute()
        return [Lead(**row) for row in response.data or []]


class SupabaseMessageRepository:
    def __init__(self, client) -> None:
        self.client = client

    def create(self, message: Message) -> Message:
        self.client.table("messages").insert(message.model_dump(mode="json")).execute()
        return message

    def list_between(self, user_id: str, partner_id: str) -> list[Message]:
        user, partner = _quoted(user_id), _quoted(partner_id)
        response = (
            self.client.table("messages")
            .select("*")
            .or_(
                f"and(sender_id.eq.{user},receiver_id.eq.{partner}),"
                f"and(sender_id.eq.{partner},receiver_id.eq.{user})"
            )
            .order("created_at")
            .execute()
        )
        return [Message(**row) for row in response.data or []]

    def list_for_user(self, user_id: str) -> list[Message]:
        user = _quoted(user_id)
        response = (
            self.client.table("messages")
            .select("*")
            .or_(f"sender_id.eq.{user},receiver_id.eq.{user}")
            .order("created_at", desc=True)
            .execute()
        )
        return [Message(**row) for row in response.data or []]

    def mark_read(self, message_ids: list[str]) -> None:
        if not message_ids:
            return
        self.client.table("messages").update({"read": True}).in_("id", message_ids).execute()


class SupabaseProfileRepository:
    def __init__(self, client) -> None:
        self.client = client

    def _one(self, table: str, column: str, value: str) -> Optional[dict]:
        return _first(self.client.table(table).select("*").eq(column, value).limit(1).execute())

    def get_client(self, client_id: str) -> Optional[ClientProfile]:
        row = self._one("client_profiles", "id", client_id)
        return ClientProfile(**row) if row else None

    def get_provider(self, provider_id: str) -> Optional[ProviderProfile]:
        row = self._one("provider_profiles", "id", provider_id)
        return ProviderProfile(**row) if row else None

    def get_client_by_user(self, user_id: str) -> Optional[ClientProfile]:
        row = self._one("client_profiles", "user_id", user_id)
        return ClientProfile(**row) if row else None

    def get_provider_by_user(self, user_id: str) -> Optional[ProviderProfile]:
        row = self._one("provider_profiles", "user_id", user_id)
        return ProviderProfile(**row) if row else None

    def search_providers(self, term: str | None = None, category: str | None = None) -> list[ProviderProfile]:
        query = self.client.table("provider_profiles").select("*")
        if term:
            pattern = _quoted(f"%{term}%")
            query = query.or_(f"name.ilike.{pattern},specialty.ilike.{pattern}")
        if category:
            query = query.eq("category", category)
        response = query.execute()
        return [ProviderProfile(**row) for row in response.data or []]

    def top_rated_providers(self, limit: int) -> list[ProviderProfile]:
        response = (
            self.client.table("provider_profiles").select("*").order("rating", desc=True).limit(limit).execute()
        )
        return [ProviderProfile(**row) for row in response.data or []]


class SupabaseDocumentRepository:
    def __init__(self, client) -> None:
        self.client = client

    def create(self, document: Document) -> Document:
        self.client.table("documents").insert(document.model_dump(mode="json")).execute()
        return document

    def get(self, document_id: str) -> Optional[Document]:
        row = _first(self.client.table("documents").select("*").eq("id", document_id).limit(1).execute())
        return Document(**row) if row else None

    def update(self, document: Document) -> Document:
        self.client.table("documents").update(document.model_dump(mode="json")).eq("id", document.id).execute()
        return document

    def delete(self, document_id: str) -> bool:
        response = self.client.table("documents").delete().eq("id", document_id).execute()
        return bool(response.data)

    def list_by_owner(self, user_id: str) -> list[Document]:
        response = self.client.table("documents").select("*").eq("user_id", user_id).execute()
        return [Document(**row) for row in response.data or []]

    def list_shared_with(self, user_id: str) -> list[Document]:
        response = self.client.table("documents").select("*").contains("shared_with", [user_id]).execute()
        return [Document(**row) for row in response.data or []]


class SupabaseNoteRepository:
    def __init__(self, client) -> None:
        self.client = client

    def create(self, note: ClientNote) -> ClientNote:
        self.client.table("client_notes").insert(note.model_dump(mode="json")).execute()
        return note

    def get(self, note_id: str) -> Optional[ClientNote]:
        row = _first(self.client.table("client_notes").select("*").eq("id", note_id).limit(1).execute())
        return ClientNote(**row) if row else None

    def update(self, note: ClientNote) -> ClientNote:
        payload = note.model_dump(mode="json", include={"content", "updated_at"})
        self.client.table("client_notes").update(payload).eq("id", note.id).execute()
        return note

    def delete(self, note_id: str) -> bool:
        response = self.client.table("client_notes").delete().eq("id", note_id).execute()
        return bool(response.data)

    def list_for_client(self, provider_id: str, client_id: str) -> list[ClientNote]:
        response = (
            self.client.table("client_notes")
            .select("*")
            .eq("provider_id", provider_id)
            .eq("client_id", client_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [ClientNote(**row) for row in response.data or []]


def create_supabase_client(supabase_url: str | None, supabase_key: str | None):
    if not supabase_url or not supabase_key:
        raise ValueError("Missing Supabase configuration (SUPABASE_URL/SUPABASE_KEY).")

    from supabase import create_client

    return create_client(supabase_url, supabase_key)


def build_repositories(client) -> Repositories:
    logger.info("Using Supabase repositories")
    return Repositories(
        appointments=SupabaseAppointmentRepository(client),
        availability=SupabaseAvailabilityRepository(client),
        usage=SupabaseUsageRepository(client),
        plans=SupabasePlanRepository(client),
        leads=SupabaseLeadRepository(client),
        messages=SupabaseMessageRepository(client),
        profiles=SupabaseProfileRepository(client),
        documents=SupabaseDocumentRepository(client),
        notes=SupabaseNoteRepository(client),
    )
