from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

AppointmentMethod = Literal["video", "in-person"]
AppointmentStatus = Literal["pending", "confirmed", "completed", "canceled"]
LeadStatus = Literal["new", "contacted", "qualified", "converted"]
UsageKind = Literal["appointment", "storage", "chat"]

LEAD_STATUSES: tuple[str, ...] = ("new", "contacted", "qualified", "converted")


def new_id() -> str:
    return uuid.uuid4().hex


def _check_hhmm(value: str) -> str:
    try:
        parsed = datetime.strptime(value, "%H:%M")
    except ValueError:
        try:
            parsed = datetime.strptime(value, "%H:%M:%S")
        except ValueError as exc:
            raise ValueError("time must be HH:MM") from exc
    return parsed.strftime("%H:%M")


class AvailabilityRuleCreate(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_time(cls, value: str) -> str:
        return _check_hhmm(value)


class AvailabilityRule(AvailabilityRuleCreate):
    id: str = Field(default_factory=new_id)
    provider_id: str


class ClientProfile(BaseModel):
    id: str
    user_id: str
    name: str
    email: str
    phone: Optional[str] = None


class ProviderProfile(BaseModel):
    id: str
    user_id: str
    name: str
    specialty: Optional[str] = None
    category: Optional[str] = None
    rating: Optional[float] = None
    image_url: Optional[str] = None
    years_experience: Optional[int] = None


class Expert(BaseModel):
    """Public listing of a provider as shown to clients looking for help."""

    id: str
    name: str
    specialty: str = ""
    category: Optional[str] = None
    rating: float = 4.5
    image: str = "/placeholder.svg"
    years_experience: Optional[int] = None


class BookingRequest(BaseModel):
    client_id: str
    provider_id: str
    service: str = "Consultation"
    date: str
    time: str
    method: AppointmentMethod = "video"


class Appointment(BaseModel):
    id: str = Field(default_factory=new_id)
    client_id: str
    provider_id: str
    service: str
    date: str
    time: str
    method: AppointmentMethod
    status: AppointmentStatus = "pending"
    call_room_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class SubscriptionPlan(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    monthly_appointments: int
    monthly_storage_mb: int
    monthly_chats: int


class ProviderSubscription(BaseModel):
    id: str = Field(default_factory=new_id)
    provider_id: str
    plan_id: str
    status: str = "active"
    starts_at: datetime = Field(default_factory=datetime.utcnow)


class UsagePeriod(BaseModel):
    id: str = Field(default_factory=new_id)
    provider_id: str
    month: int
    year: int
    appointments_used: int = 0
    storage_used_mb: int = 0
    chats_used: int = 0
    unique_chat_partners: list[str] = Field(default_factory=list)
    version: int = 0


class UsageDelta(BaseModel):
    size_mb: float = 0
    partner_id: Optional[str] = None


class UsageLine(BaseModel):
    used: int
    limit: int
    remaining: int


class UsageStats(BaseModel):
    provider_id: str
    plan: str
    month: int
    year: int
    appointments: UsageLine
    storage_mb: UsageLine
    chats: UsageLine


class Lead(BaseModel):
    id: str = Field(default_factory=new_id)
    provider_id: str
    client_id: str
    name: str
    email: str
    phone: Optional[str] = None
    service: str
    status: LeadStatus = "new"
    date: str
    message: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class LeadStatusUpdate(BaseModel):
    status: LeadStatus


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    sender_id: str
    receiver_id: str
    content: str
    read: bool = False
    call_room_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class MessageCreate(BaseModel):
    sender_id: str
    receiver_id: str
    content: str


class CallStart(BaseModel):
    sender_id: str
    receiver_id: str


class Conversation(BaseModel):
    partner_id: str
    last_message: str
    last_message_time: datetime
    unread: int = 0


class Document(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    name: str
    file_path: str
    storage_path: str = ""
    file_type: str
    size_mb: float = 0
    shared_with: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class DocumentShare(BaseModel):
    owner_id: str
    user_ids: list[str]


class ClientNote(BaseModel):
    id: str = Field(default_factory=new_id)
    provider_id: str
    client_id: str
    content: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ClientNoteCreate(BaseModel):
    provider_id: str
    client_id: str
    content: str


class ClientNoteUpdate(BaseModel):
    content: str


class CallJoinResponse(BaseModel):
    appointment_id: str
    room_id: str
    ws_url: str
    ice_servers: list[str]


class Notification(BaseModel):
    id: str
    name: str
    status: str
    detail: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class PresenceEntry(BaseModel):
    key: str
    identity: str
    joined_at: datetime = Field(default_factory=datetime.utcnow)


# Signaling envelopes. The ``type`` field discriminates the payload.


class SessionDescription(BaseModel):
    type: Literal["offer", "answer"]
    sdp: str


class IceCandidate(BaseModel):
    candidate: str
    sdp_mid: Optional[str] = None
    sdp_m_line_index: Optional[int] = None


class SdpPayload(BaseModel):
    sdp: str


class CandidatePayload(BaseModel):
    candidate: IceCandidate


class OfferMessage(BaseModel):
    type: Literal["offer"] = "offer"
    sender: str
    payload: SdpPayload


class AnswerMessage(BaseModel):
    type: Literal["answer"] = "answer"
    sender: str
    payload: SdpPayload


class CandidateMessage(BaseModel):
    type: Literal["candidate"] = "candidate"
    sender: str
    payload: CandidatePayload


SignalingMessage = Annotated[
    Union[OfferMessage, AnswerMessage, CandidateMessage],
    Field(discriminator="type"),
]
