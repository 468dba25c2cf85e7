from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from dotenv import load_dotenv

from fastapi import FastAPI, File, Form, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from .booking.availability import AvailabilityService, format_slot, parse_date
from .booking.engine import BookingEngine
from .booking.leads import LeadService
from .booking.usage import UsageMeter
from .calls.rooms import generate_room_id, user_channel
from .calls.signaling import parse_signaling_message
from .config import configure_logging, settings
from .db.repository import Repositories, build_in_memory_repositories
from .db.supabase import build_repositories, create_supabase_client
from .documents import DocumentService
from .errors import ExpertMeetError, InvalidRequest, SignalingError
from .experts import ExpertDirectory
from .messaging import MessagingService
from .notifications import appointment_booked, error_notification
from .notes import ClientNoteService
from .realtime.hub import ConnectionManager, RoomHub
from .realtime.supabase_channel import create_realtime_channel
from .schemas import (
    Appointment,
    AvailabilityRule,
    AvailabilityRuleCreate,
    BookingRequest,
    CallJoinResponse,
    CallStart,
    ClientNote,
    ClientNoteCreate,
    ClientNoteUpdate,
    Conversation,
    Document,
    DocumentShare,
    Expert,
    Lead,
    LeadStatusUpdate,
    Message,
    MessageCreate,
    PresenceEntry,
    SubscriptionPlan,
    UsageStats,
    new_id,
)
from .storage import BlobStorage, InMemoryBlobStorage, SupabaseBlobStorage

logger = logging.getLogger(__name__)


def create_app(
    repos: Optional[Repositories] = None,
    channel: Optional[RoomHub] = None,
    storage: Optional[BlobStorage] = None,
    room_factory: Callable[[], str] = generate_room_id,
) -> FastAPI:
    """Build the API with injectable persistence, realtime hub and blob storage.

    Without ``repos`` the Supabase backend from the environment is used, unless
    ``USE_IN_MEMORY_STORE`` is set.
    """
    configure_logging()

    if repos is None:
        if settings.use_in_memory_store:
            repos = build_in_memory_repositories()
        else:
            client = create_supabase_client(settings.supabase_url, settings.supabase_key)
            repos = build_repositories(client)
            storage = storage or SupabaseBlobStorage(client, settings.supabase_storage_bucket)
    storage = storage or InMemoryBlobStorage()
    hub = channel or RoomHub()

    meter = UsageMeter(
        repos.usage,
        repos.plans,
        default_plan_name=settings.default_plan_name,
        cas_attempts=settings.usage_cas_attempts,
    )
    leads = LeadService(repos.leads, repos.appointments, repos.messages)
    availability = AvailabilityService(repos.availability, settings.slot_minutes)
    engine = BookingEngine(repos, meter, leads, room_factory=room_factory)
    messaging = MessagingService(repos, meter, leads, channel=hub, room_factory=room_factory)
    documents = DocumentService(repos, meter, storage)
    experts = ExpertDirectory(repos.profiles)
    notes = ClientNoteService(repos)
    connections = ConnectionManager(hub)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if channel is None and settings.realtime_backend == "supabase":
            realtime = await create_realtime_channel(settings.supabase_url, settings.supabase_key)
            app.state.channel = realtime
            connections.channel = realtime
            messaging.channel = realtime
            logger.info("Using Supabase Realtime for room channels")
        yield

    app = FastAPI(title="ExpertMeet API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.repos = repos
    app.state.channel = hub
    app.state.engine = engine
    app.state.meter = meter

    @app.exception_handler(ExpertMeetError)
    async def handle_expertmeet_error(request: Request, exc: ExpertMeetError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.message})

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    # Availability

    @app.get("/providers/{provider_id}/availability", response_model=list[AvailabilityRule])
    async def list_availability(provider_id: str) -> list[AvailabilityRule]:
        return availability.list_rules(provider_id)

    @app.post("/providers/{provider_id}/availability", response_model=AvailabilityRule, status_code=201)
    async def create_availability(provider_id: str, rule: AvailabilityRuleCreate) -> AvailabilityRule:
        created = availability.create_rule(provider_id, rule)
        if created is None:
            raise InvalidRequest("End time must be after start time.")
        return created

    @app.delete("/availability/{rule_id}")
    async def delete_availability(rule_id: str) -> dict:
        return {"deleted": availability.delete_rule(rule_id)}

    @app.get("/providers/{provider_id}/available-times")
    async def available_times(provider_id: str, date: str) -> dict:
        day = parse_date(date)
        times = availability.available_times(provider_id, day)
        return {
            "provider_id": provider_id,
            "date": day.isoformat(),
            "times": times,
            "times_human": [format_slot(day, time) for time in times],
        }

    # Appointments

    @app.post("/appointments", response_model=Appointment, status_code=201)
    async def book_appointment(request: BookingRequest) -> Appointment:
        appointment = engine.book(request)
        provider = repos.profiles.get_provider(appointment.provider_id)
        if provider:
            try:
                await connections.broadcast(
                    user_channel(provider.user_id),
                    {"type": "notification", "payload": appointment_booked(appointment).model_dump(mode="json")},
                )
            except Exception:
                logger.exception("Could not notify provider %s of appointment %s", provider.id, appointment.id)
        return appointment

    @app.get("/appointments/{appointment_id}", response_model=Appointment)
    async def get_appointment(appointment_id: str) -> Appointment:
        return engine.get(appointment_id)

    @app.post("/appointments/{appointment_id}/cancel", response_model=Appointment)
    async def cancel_appointment(appointment_id: str) -> Appointment:
        return engine.cancel(appointment_id)

    @app.post("/appointments/{appointment_id}/confirm", response_model=Appointment)
    async def confirm_appointment(appointment_id: str) -> Appointment:
        return engine.confirm(appointment_id)

    @app.post("/appointments/{appointment_id}/complete", response_model=Appointment)
    async def complete_appointment(appointment_id: str) -> Appointment:
        return engine.complete(appointment_id)

    @app.get("/appointments/{appointment_id}/call", response_model=CallJoinResponse)
    async def join_call(appointment_id: str, participant_id: str) -> CallJoinResponse:
        room_id = engine.join_call(appointment_id, participant_id)
        return CallJoinResponse(
            appointment_id=appointment_id,
            room_id=room_id,
            ws_url=f"{settings.ws_base_url}/rooms/{room_id}/signal",
            ice_servers=settings.ice_servers,
        )

    @app.get("/clients/{client_id}/appointments", response_model=list[Appointment])
    async def client_appointments(client_id: str, status: Optional[str] = None) -> list[Appointment]:
        return engine.list_for_client(client_id, status)

    @app.get("/providers/{provider_id}/appointments", response_model=list[Appointment])
    async def provider_appointments(provider_id: str, status: Optional[str] = None) -> list[Appointment]:
        return engine.list_for_provider(provider_id, status)

    # Subscription usage

    @app.get("/providers/{provider_id}/plan", response_model=SubscriptionPlan)
    async def provider_plan(provider_id: str) -> SubscriptionPlan:
        return meter.ensure_active_plan(provider_id)

    @app.get("/providers/{provider_id}/usage", response_model=UsageStats)
    async def provider_usage(provider_id: str) -> UsageStats:
        return meter.usage_stats(provider_id)

    # Leads

    @app.get("/providers/{provider_id}/leads", response_model=list[Lead])
    async def provider_leads(provider_id: str, status: Optional[str] = None) -> list[Lead]:
        return leads.list_leads(provider_id, status)

    @app.get("/providers/{provider_id}/leads/counts")
    async def provider_lead_counts(provider_id: str) -> dict[str, int]:
        return leads.lead_counts(provider_id)

    @app.patch("/leads/{lead_id}", response_model=Lead)
    async def update_lead(lead_id: str, update: LeadStatusUpdate) -> Lead:
        return leads.update_status(lead_id, update.status)

    # Expert directory

    @app.get("/experts", response_model=list[Expert])
    async def search_experts(q: Optional[str] = None, category: Optional[str] = None) -> list[Expert]:
        return experts.search(q, category)

    @app.get("/experts/recommended", response_model=list[Expert])
    async def recommended_experts() -> list[Expert]:
        return experts.recommended()

    # Client notes

    @app.get("/providers/{provider_id}/clients/{client_id}/notes", response_model=list[ClientNote])
    async def list_client_notes(provider_id: str, client_id: str) -> list[ClientNote]:
        return notes.list_notes(provider_id, client_id)

    @app.post("/notes", response_model=ClientNote, status_code=201)
    async def add_client_note(payload: ClientNoteCreate) -> ClientNote:
        return notes.add_note(payload)

    @app.patch("/notes/{note_id}", response_model=ClientNote)
    async def update_client_note(note_id: str, provider_id: str, payload: ClientNoteUpdate) -> ClientNote:
        return notes.update_note(note_id, provider_id, payload.content)

    @app.delete("/notes/{note_id}")
    async def delete_client_note(note_id: str, provider_id: str) -> dict:
        notes.delete_note(note_id, provider_id)
        return {"deleted": True}

    # Messaging and call invitations

    @app.post("/messages", response_model=Message, status_code=201)
    async def send_message(payload: MessageCreate) -> Message:
        return await messaging.send_message(payload.sender_id, payload.receiver_id, payload.content)

    @app.post("/calls", response_model=Message, status_code=201)
    async def start_call(payload: CallStart) -> Message:
        return await messaging.start_call(payload.sender_id, payload.receiver_id)

    @app.get("/users/{user_id}/conversations", response_model=list[Conversation])
    async def list_conversations(user_id: str) -> list[Conversation]:
        return messaging.list_conversations(user_id)

    @app.get("/users/{user_id}/messages/{partner_id}", response_model=list[Message])
    async def get_conversation(user_id: str, partner_id: str) -> list[Message]:
        return messaging.get_conversation(user_id, partner_id)

    # Documents

    @app.post("/documents", response_model=Document, status_code=201)
    async def upload_document(
        user_id: str = Form(...),
        name: Optional[str] = Form(None),
        file: UploadFile = File(...),
    ) -> Document:
        content = await file.read()
        return documents.upload(
            user_id,
            name or file.filename or "document",
            content,
            file.content_type or "application/octet-stream",
        )

    @app.get("/users/{user_id}/documents", response_model=list[Document])
    async def list_documents(user_id: str) -> list[Document]:
        return documents.list_owned(user_id)

    @app.get("/users/{user_id}/documents/shared", response_model=list[Document])
    async def list_shared_documents(user_id: str) -> list[Document]:
        return documents.list_shared(user_id)

    @app.post("/documents/{document_id}/share", response_model=Document)
    async def share_document(document_id: str, payload: DocumentShare) -> Document:
        return documents.share(document_id, payload.owner_id, payload.user_ids)

    @app.delete("/documents/{document_id}")
    async def delete_document(document_id: str, owner_id: str) -> dict:
        documents.delete(document_id, owner_id)
        return {"deleted": True}

    # Realtime

    @app.websocket("/rooms/{room_id}/signal")
    async def room_signal(room_id: str, websocket: WebSocket, identity: str = "guest") -> None:
        key = new_id()
        presence = app.state.channel
        await connections.connect(room_id, websocket)

        async def on_sync(entries: list[PresenceEntry]) -> None:
            await websocket.send_json(
                {
                    "type": "presence",
                    "self": key,
                    "entries": [entry.model_dump(mode="json") for entry in entries],
                }
            )

        await presence.track(room_id, PresenceEntry(key=key, identity=identity), on_sync)
        try:
            while True:
                try:
                    raw = await websocket.receive_json()
                except ValueError:
                    raw = None
                if isinstance(raw, dict) and raw.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
                    continue
                try:
                    if not isinstance(raw, dict):
                        raise SignalingError("Received a malformed signaling message.")
                    message = parse_signaling_message({**raw, "sender": key})
                except SignalingError as error:
                    logger.warning("Room %s: rejected message from %s: %s", room_id, identity, error.message)
                    await websocket.send_json(
                        {"type": "error", "payload": error_notification("signal", error).model_dump(mode="json")}
                    )
                    continue
                await connections.broadcast(room_id, message.model_dump(mode="json"))
        except WebSocketDisconnect:
            logger.info("%s left room %s", identity, room_id)
        finally:
            await connections.disconnect(room_id, websocket)
            await presence.untrack(room_id, key)

    @app.websocket("/users/{user_id}/events")
    async def user_events(user_id: str, websocket: WebSocket) -> None:
        room_id = user_channel(user_id)
        await connections.connect(room_id, websocket)
        await websocket.send_json({"type": "status", "payload": {"user_id": user_id, "state": "connected"}})
        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError:
                    logger.warning("Ignoring a malformed frame on the event stream of %s", user_id)
                    continue
                if isinstance(message, dict) and message.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
        except WebSocketDisconnect:
            logger.info("Event stream of %s closed", user_id)
        finally:
            await connections.disconnect(room_id, websocket)

    return app
