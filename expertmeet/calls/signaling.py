"""Peer-to-peer call setup over a room broadcast channel.

Both participants subscribe to the room channel and announce themselves via
presence. When exactly two participants are present, the one that arrived
first creates the SDP offer; the other answers it. ICE candidates are relayed
as they are discovered. Signaling problems never raise out of the message
handlers: they are logged and surfaced as a single notification.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable, List, Optional

from pydantic import TypeAdapter, ValidationError

from ..errors import ExpertMeetError, IceFailure, MediaAcquisitionError, SignalingError
from ..notifications import build_notification, error_notification
from ..realtime.hub import MessageChannel, PresenceTracker
from ..schemas import (
    AnswerMessage,
    CandidateMessage,
    CandidatePayload,
    IceCandidate,
    Notification,
    OfferMessage,
    PresenceEntry,
    SdpPayload,
    SessionDescription,
    SignalingMessage,
    new_id,
)
from .media import MediaEngine, MediaStream, MediaTrack, PeerConnection

logger = logging.getLogger(__name__)

_MESSAGE_ADAPTER: TypeAdapter = TypeAdapter(SignalingMessage)


class CallState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    ENDED = "ended"


def parse_signaling_message(raw: object) -> OfferMessage | AnswerMessage | CandidateMessage:
    try:
        return _MESSAGE_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise SignalingError("Received a malformed signaling message.") from exc


class SignalingCoordinator:
    def __init__(
        self,
        room_id: str,
        identity: str,
        *,
        channel: MessageChannel,
        presence: PresenceTracker,
        media: MediaEngine,
        ice_servers: Optional[list[str]] = None,
        notify: Optional[Callable[[Notification], None]] = None,
    ) -> None:
        self.room_id = room_id
        self.identity = identity
        self.key = new_id()
        self.channel = channel
        self.presence = presence
        self.media = media
        self.ice_servers = ice_servers or []
        self._notify = notify

        self.state = CallState.IDLE
        self.error: Optional[ExpertMeetError] = None
        self.notifications: List[Notification] = []
        self.peer: Optional[PeerConnection] = None
        self.local_stream: Optional[MediaStream] = None
        self.remote_tracks: List[MediaTrack] = []
        self.is_initiator = False
        self.mic_muted = False
        self.video_off = False

        self._negotiating = False
        self._offer_sent = False
        self._answer_sent = False
        self._answer_applied = False
        self._subscribed = False
        self._tracked = False

    # -- notifications -----------------------------------------------------

    def _emit(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self._notify:
            self._notify(notification)

    def _report(self, error: ExpertMeetError, exc: BaseException | None = None) -> None:
        logger.warning("Room %s (%s): %s", self.room_id, self.identity, error.message, exc_info=exc)
        self._emit(error_notification("call", error))

    def _fail(self, error: ExpertMeetError, exc: BaseException | None = None) -> None:
        self.state = CallState.FAILED
        self.error = error
        logger.error("Room %s (%s) failed: %s", self.room_id, self.identity, error.message, exc_info=exc)
        self._emit(error_notification("call", error))

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> CallState:
        if self.state is not CallState.IDLE:
            return self.state
        self.state = CallState.CONNECTING

        try:
            self.local_stream = await self.media.get_user_media(audio=True, video=True)
        except Exception as exc:
            self._fail(MediaAcquisitionError("Camera and microphone access required for video calls."), exc)
            return self.state

        try:
            await self._join()
        except Exception as exc:
            self._fail(SignalingError("Could not join the call room."), exc)
            await self._release()
        return self.state

    async def _join(self) -> None:
        self.peer = self.media.create_peer_connection(self.ice_servers)
        self.peer.on_track = self._on_track
        self.peer.on_ice_candidate = self._on_ice_candidate
        self.peer.on_connection_state_change = self._on_connection_state_change
        for track in self.local_stream.get_tracks():
            self.peer.add_track(track, self.local_stream)

        await self.channel.subscribe(self.room_id, self._on_message)
        self._subscribed = True
        await self.presence.track(
            self.room_id,
            PresenceEntry(key=self.key, identity=self.identity),
            self._on_presence_sync,
        )
        self._tracked = True

    async def end_call(self) -> None:
        await self._release()
        self.state = CallState.ENDED

    async def _release(self) -> None:
        steps = [
            ("stop_tracks", self._stop_tracks),
            ("close_peer", self._close_peer),
            ("untrack", self._untrack),
            ("unsubscribe", self._unsubscribe),
        ]
        for name, step in steps:
            try:
                await step()
            except Exception:
                logger.exception("Call cleanup step %s failed for room %s", name, self.room_id)

    async def _stop_tracks(self) -> None:
        if self.local_stream is None:
            return
        for track in self.local_stream.get_tracks():
            try:
                track.stop()
            except Exception:
                logger.exception("Could not stop local %s track in room %s", track.kind, self.room_id)

    async def _close_peer(self) -> None:
        if self.peer is not None:
            await self.peer.close()

    async def _untrack(self) -> None:
        if self._tracked:
            self._tracked = False
            await self.presence.untrack(self.room_id, self.key)

    async def _unsubscribe(self) -> None:
        if self._subscribed:
            self._subscribed = False
            await self.channel.unsubscribe(self.room_id, self._on_message)

    # -- local media controls ----------------------------------------------

    def toggle_microphone(self) -> bool:
        tracks = self.local_stream.get_audio_tracks() if self.local_stream else []
        if not tracks:
            self._emit(build_notification("call", "No microphone available", status="failed"))
            return self.mic_muted
        self.mic_muted = not self.mic_muted
        for track in tracks:
            track.enabled = not self.mic_muted
        return self.mic_muted

    def toggle_video(self) -> bool:
        tracks = self.local_stream.get_video_tracks() if self.local_stream else []
        if not tracks:
            self._emit(build_notification("call", "No camera available", status="failed"))
            return self.video_off
        self.video_off = not self.video_off
        for track in tracks:
            track.enabled = not self.video_off
        return self.video_off

    # -- signaling ---------------------------------------------------------

    def _active(self) -> bool:
        return self.peer is not None and self.state in (CallState.CONNECTING, CallState.CONNECTED)

    async def _send(self, message: OfferMessage | AnswerMessage | CandidateMessage) -> None:
        await self.channel.publish(self.room_id, message.model_dump(mode="json"))

    async def _on_presence_sync(self, entries: list[PresenceEntry]) -> None:
        if not self._active() or self._negotiating or self._offer_sent or self._answer_sent:
            return
        if len(entries) != 2 or entries[0].key != self.key:
            return
        # Claimed before the first await so overlapping syncs cannot both offer.
        self._negotiating = True
        self.is_initiator = True
        logger.info("Room %s: %s is the initiator", self.room_id, self.identity)
        try:
            offer = await self.peer.create_offer()
            await self.peer.set_local_description(offer)
            self._offer_sent = True
            await self._send(OfferMessage(sender=self.key, payload=SdpPayload(sdp=offer.sdp)))
        except Exception as exc:
            self._report(SignalingError("Failed to establish connection"), exc)
        finally:
            self._negotiating = False

    async def _on_message(self, raw: dict) -> None:
        try:
            message = parse_signaling_message(raw)
        except SignalingError as error:
            self._report(error, error.__cause__)
            return
        if message.sender == self.key:
            return
        if not self._active():
            logger.debug("Room %s: dropping %s while %s", self.room_id, message.type, self.state.value)
            return

        if isinstance(message, OfferMessage):
            await self._handle_offer(message)
        elif isinstance(message, AnswerMessage):
            await self._handle_answer(message)
        elif isinstance(message, CandidateMessage):
            await self._handle_candidate(message)

    async def _handle_offer(self, message: OfferMessage) -> None:
        if self._offer_sent:
            self._report(SignalingError("Ignored an offer: this side already started the call."))
            return
        if self._answer_sent:
            self._report(SignalingError("Ignored a repeated offer."))
            return
        try:
            await self.peer.set_remote_description(SessionDescription(type="offer", sdp=message.payload.sdp))
            answer = await self.peer.create_answer()
            await self.peer.set_local_description(answer)
            self._answer_sent = True
            await self._send(AnswerMessage(sender=self.key, payload=SdpPayload(sdp=answer.sdp)))
        except Exception as exc:
            self._report(SignalingError("Could not answer the call offer."), exc)

    async def _handle_answer(self, message: AnswerMessage) -> None:
        if not self._offer_sent:
            self._report(SignalingError("Ignored an answer without a pending offer."))
            return
        if self._answer_applied:
            self._report(SignalingError("Ignored a repeated answer."))
            return
        try:
            await self.peer.set_remote_description(SessionDescription(type="answer", sdp=message.payload.sdp))
            self._answer_applied = True
        except Exception as exc:
            self._report(SignalingError("Could not apply the call answer."), exc)

    async def _handle_candidate(self, message: CandidateMessage) -> None:
        try:
            await self.peer.add_ice_candidate(message.payload.candidate)
        except Exception as exc:
            self._report(SignalingError("Could not apply a network candidate from the other participant."), exc)

    # -- peer connection callbacks -----------------------------------------

    async def _on_ice_candidate(self, candidate: Optional[IceCandidate]) -> None:
        if candidate is None or not self._active():
            return
        try:
            await self._send(CandidateMessage(sender=self.key, payload=CandidatePayload(candidate=candidate)))
        except Exception as exc:
            self._report(SignalingError("Could not send a network candidate."), exc)

    async def _on_track(self, track: MediaTrack) -> None:
        self.remote_tracks.append(track)
        if self.state is CallState.CONNECTING:
            self.state = CallState.CONNECTED
            self._emit(build_notification("call", "Connected to call"))

    async def _on_connection_state_change(self, state: str) -> None:
        if state == "failed" and self.state in (CallState.CONNECTING, CallState.CONNECTED):
            self._fail(IceFailure("Could not connect to the other participant. Please restart the call."))
