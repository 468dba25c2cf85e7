"""Shared fixtures: in-memory repositories, seeded profiles/plans and a fake media engine."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from expertmeet.booking.availability import AvailabilityService
from expertmeet.booking.engine import BookingEngine
from expertmeet.booking.leads import LeadService
from expertmeet.booking.usage import UsageMeter
from expertmeet.db.repository import Repositories, build_in_memory_repositories
from expertmeet.realtime.hub import RoomHub
from expertmeet.schemas import ClientProfile, ProviderProfile, SessionDescription, SubscriptionPlan

FIXED_NOW = datetime(2026, 10, 18, 12, 0)


class FakeTrack:
    def __init__(self, kind: str) -> None:
        self.kind = kind
        self.enabled = True
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeStream:
    def __init__(self, tracks: list[FakeTrack]) -> None:
        self.tracks = tracks

    def get_tracks(self) -> list[FakeTrack]:
        return list(self.tracks)

    def get_audio_tracks(self) -> list[FakeTrack]:
        return [track for track in self.tracks if track.kind == "audio"]

    def get_video_tracks(self) -> list[FakeTrack]:
        return [track for track in self.tracks if track.kind == "video"]


class FakePeerConnection:
    def __init__(self, name: str, ice_servers: list[str]) -> None:
        self.name = name
        self.ice_servers = ice_servers
        self.on_track = None
        self.on_ice_candidate = None
        self.on_connection_state_change = None
        self.local_description: SessionDescription | None = None
        self.remote_description: SessionDescription | None = None
        self.tracks: list[FakeTrack] = []
        self.candidates = []
        self.closed = False
        self.offers_created = 0
        self.fail_candidates = False
        self.fail_close = False
        self.yield_on_offer = False

    def add_track(self, track, stream) -> None:
        self.tracks.append(track)

    async def create_offer(self) -> SessionDescription:
        self.offers_created += 1
        if self.yield_on_offer:
            await asyncio.sleep(0)
        return SessionDescription(type="offer", sdp=f"offer-from-{self.name}")

    async def create_answer(self) -> SessionDescription:
        if self.remote_description is None:
            raise RuntimeError("no remote offer")
        return SessionDescription(type="answer", sdp=f"answer-from-{self.name}")

    async def set_local_description(self, description: SessionDescription) -> None:
        self.local_description = description

    async def set_remote_description(self, description: SessionDescription) -> None:
        self.remote_description = description

    async def add_ice_candidate(self, candidate) -> None:
        if self.fail_candidates:
            raise RuntimeError("candidate rejected")
        self.candidates.append(candidate)

    async def close(self) -> None:
        if self.fail_close:
            raise RuntimeError("close failed")
        self.closed = True

    async def emit_candidate(self, candidate) -> None:
        await self.on_ice_candidate(candidate)

    async def emit_remote_track(self, kind: str = "video") -> None:
        await self.on_track(FakeTrack(kind))

    async def emit_state(self, state: str) -> None:
        await self.on_connection_state_change(state)


class FakeMediaEngine:
    def __init__(self, name: str, *, deny_media: bool = False, audio: bool = True) -> None:
        self.name = name
        self.deny_media = deny_media
        self.audio = audio
        self.peers: list[FakePeerConnection] = []
        self.stream: FakeStream | None = None

    async def get_user_media(self, *, audio: bool, video: bool) -> FakeStream:
        if self.deny_media:
            raise PermissionError("NotAllowedError: permission denied")
        tracks = [FakeTrack("video")]
        if self.audio:
            tracks.insert(0, FakeTrack("audio"))
        self.stream = FakeStream(tracks)
        return self.stream

    def create_peer_connection(self, ice_servers: list[str]) -> FakePeerConnection:
        peer = FakePeerConnection(self.name, ice_servers)
        self.peers.append(peer)
        return peer


@pytest.fixture
def free_plan() -> SubscriptionPlan:
    return SubscriptionPlan(
        id="plan-free",
        name="Free",
        monthly_appointments=2,
        monthly_storage_mb=10,
        monthly_chats=2,
    )


@pytest.fixture
def repos(free_plan) -> Repositories:
    """In-memory repositories seeded with the Free plan and three profiles."""
    repos = build_in_memory_repositories()
    repos.plans.add_plan(free_plan)
    repos.plans.add_plan(
        SubscriptionPlan(
            id="plan-pro",
            name="Pro",
            monthly_appointments=100,
            monthly_storage_mb=1000,
            monthly_chats=100,
        )
    )
    repos.profiles.add_client(
        ClientProfile(id="client-1", user_id="user-client-1", name="Ada Client", email="ada@example.com")
    )
    repos.profiles.add_client(
        ClientProfile(id="client-2", user_id="user-client-2", name="Ben Client", email="ben@example.com")
    )
    repos.profiles.add_provider(
        ProviderProfile(
            id="provider-1",
            user_id="user-provider-1",
            name="Dana Counsel",
            specialty="Tax Law",
            category="Legal",
        )
    )
    return repos


@pytest.fixture
def meter(repos) -> UsageMeter:
    return UsageMeter(repos.usage, repos.plans, clock=lambda: FIXED_NOW)


@pytest.fixture
def leads(repos) -> LeadService:
    return LeadService(repos.leads, repos.appointments, repos.messages)


@pytest.fixture
def availability(repos) -> AvailabilityService:
    return AvailabilityService(repos.availability)


@pytest.fixture
def engine(repos, meter, leads) -> BookingEngine:
    return BookingEngine(repos, meter, leads)


@pytest.fixture
def hub() -> RoomHub:
    return RoomHub()


@pytest.fixture
def media_factory():
    """Build fake media engines: ``media_factory("alice", deny_media=True)``."""
    return FakeMediaEngine
