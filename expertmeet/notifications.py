from __future__ import annotations

import uuid
from datetime import datetime

from .errors import ExpertMeetError
from .schemas import Appointment, Message, Notification


def build_notification(name: str, detail: str, status: str = "completed") -> Notification:
    return Notification(
        id=uuid.uuid4().hex,
        name=name,
        status=status,
        detail=detail,
        timestamp=datetime.utcnow(),
    )


def error_notification(name: str, error: ExpertMeetError) -> Notification:
    return build_notification(name, error.message, status="failed")


def message_received(message: Message) -> Notification:
    preview = message.content if len(message.content) <= 80 else message.content[:77] + "..."
    return build_notification("message_received", preview, status="info")


def call_invitation(message: Message) -> Notification:
    return build_notification("call_invitation", f"Incoming video call in room {message.call_room_id}", status="info")


def appointment_booked(appointment: Appointment) -> Notification:
    detail = f"Booked {appointment.service} on {appointment.date} at {appointment.time}"
    return build_notification("appointment_booked", detail)
