"""Media engine contract consumed by the signaling coordinator.

Shaped after the browser WebRTC API: capture returns a stream of tracks,
and a peer connection exposes offer/answer/ICE primitives plus coroutine
callbacks for remote tracks, local ICE candidates and connection state.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol

from ..schemas import IceCandidate, SessionDescription


class MediaTrack(Protocol):
    kind: str
    enabled: bool

    def stop(self) -> None:
        ...


class MediaStream(Protocol):
    def get_tracks(self) -> list[MediaTrack]:
        ...

    def get_audio_tracks(self) -> list[MediaTrack]:
        ...

    def get_video_tracks(self) -> list[MediaTrack]:
        ...


TrackHandler = Callable[[MediaTrack], Awaitable[None]]
CandidateHandler = Callable[[Optional[IceCandidate]], Awaitable[None]]
StateHandler = Callable[[str], Awaitable[None]]


class PeerConnection(Protocol):
    on_track: Optional[TrackHandler]
    on_ice_candidate: Optional[CandidateHandler]
    on_connection_state_change: Optional[StateHandler]

    def add_track(self, track: MediaTrack, stream: MediaStream) -> None:
        ...

    async def create_offer(self) -> SessionDescription:
        ...

    async def create_answer(self) -> SessionDescription:
        ...

    async def set_local_description(self, description: SessionDescription) -> None:
        ...

    async def set_remote_description(self, description: SessionDescription) -> None:
        ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        ...

    async def close(self) -> None:
        ...


class MediaEngine(Protocol):
    async def get_user_media(self, *, audio: bool, video: bool) -> MediaStream:
        ...

    def create_peer_connection(self, ice_servers: list[str]) -> PeerConnection:
        ...
