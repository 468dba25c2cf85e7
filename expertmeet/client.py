from __future__ import annotations

import os
from typing import Any, Optional

import httpx

from .schemas import Appointment, CallJoinResponse, Expert, Message, UsageStats


class ExpertMeetClient:
    """Async client for the ExpertMeet HTTP API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10,
    ) -> None:
        self.base_url = base_url or os.getenv("HTTP_BASE_URL", "http://localhost:8000")
        self.transport = transport
        self.timeout = timeout

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        async with httpx.AsyncClient(
            base_url=self.base_url, transport=self.transport, timeout=self.timeout
        ) as client:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()

    async def search_experts(self, term: Optional[str] = None, category: Optional[str] = None) -> list[Expert]:
        params = {key: value for key, value in (("q", term), ("category", category)) if value}
        return [Expert(**item) for item in await self._request("GET", "/experts", params=params)]

    async def available_times(self, provider_id: str, date: str) -> list[str]:
        data = await self._request("GET", f"/providers/{provider_id}/available-times", params={"date": date})
        return data["times"]

    async def book_appointment(
        self,
        client_id: str,
        provider_id: str,
        date: str,
        time: str,
        *,
        method: str = "video",
        service: str = "Consultation",
    ) -> Appointment:
        data = await self._request(
            "POST",
            "/appointments",
            json={
                "client_id": client_id,
                "provider_id": provider_id,
                "date": date,
                "time": time,
                "method": method,
                "service": service,
            },
        )
        return Appointment(**data)

    async def cancel_appointment(self, appointment_id: str) -> Appointment:
        return Appointment(**await self._request("POST", f"/appointments/{appointment_id}/cancel"))

    async def join_call(self, appointment_id: str, participant_id: str) -> CallJoinResponse:
        data = await self._request(
            "GET", f"/appointments/{appointment_id}/call", params={"participant_id": participant_id}
        )
        return CallJoinResponse(**data)

    async def send_message(self, sender_id: str, receiver_id: str, content: str) -> Message:
        data = await self._request(
            "POST",
            "/messages",
            json={"sender_id": sender_id, "receiver_id": receiver_id, "content": content},
        )
        return Message(**data)

    async def start_call(self, sender_id: str, receiver_id: str) -> Message:
        data = await self._request("POST", "/calls", json={"sender_id": sender_id, "receiver_id": receiver_id})
        return Message(**data)

    async def usage(self, provider_id: str) -> UsageStats:
        return UsageStats(**await self._request("GET", f"/providers/{provider_id}/usage"))
