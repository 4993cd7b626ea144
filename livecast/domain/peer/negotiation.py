"""Offer/answer exchange and ICE candidate application."""

from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from livecast.domain.peer.peer_manager import PeerConnectionManager
from livecast.domain.peer.peer_models import OfferProcessingGuard
from livecast.domain.peer.peer_state_machine import PeerStateMachine
from livecast.schemas import (
    AnswerIn,
    ClientMessage,
    IceCandidatePayload,
    OfferIn,
    PeerRole,
    SessionDescriptionPayload,
)
from livecast.services.media.rtc import (
    candidate_from_payload,
    description_from_payload,
    description_to_payload,
    is_end_of_candidates,
)
from livecast.utils.app_errors import AppError, AppErrorCode, IceError, NegotiationError

LOCAL_MEDIA_NOT_READY_MESSAGE = "Local stream not ready, cannot create offer"


class NegotiationCoordinator:
    """Drives SDP negotiation over the sessions held by a PeerConnectionManager.

    Failures surface as NegotiationError or IceError; nothing here retries.
    """

    def __init__(self, manager: PeerConnectionManager, send: Callable[[ClientMessage], Awaitable[Any]]):
        self.manager = manager
        self.guard = OfferProcessingGuard()
        self._send = send

    async def create_offer(self, viewer_id: str, *, fresh: bool = True) -> None:
        """Send an offer to `viewer_id`.

        With `fresh` a new session replaces any existing one. Otherwise the
        existing session is renegotiated in place unless it is terminal.

        Raises:
            NegotiationError: local media is not ready or the SDP step failed
        """
        local_media = self.manager.local_media
        if local_media is None or not local_media.ready:
            logger.warning("Local stream not ready, cannot create offer for {}", viewer_id)
            raise NegotiationError(AppErrorCode.E_LOCAL_MEDIA_NOT_READY, LOCAL_MEDIA_NOT_READY_MESSAGE)

        session = None if fresh else self.manager.get_session(viewer_id)
        if session is not None and PeerStateMachine.is_terminal(session.connection_state):
            session = None

        if session is None:
            session = await self.manager.create_session(viewer_id)
        else:
            await self.manager.attach_local_media(session)

        pc = session.connection
        try:
            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
        except AppError:
            raise
        except Exception as exc:
            logger.error("Failed to create offer for {}: {}", viewer_id, exc)
            raise NegotiationError(AppErrorCode.E_SDP_FAILURE, f"Failed to create offer: {exc}") from exc

        description = pc.localDescription or offer
        await self._send(OfferIn(offer=description_to_payload(description), target=viewer_id))
        logger.info("Offer sent to viewer: {}", viewer_id)

    async def create_answer(self, offer: SessionDescriptionPayload, streamer_id: str) -> bool:
        """Answer an offer from the streamer.

        Returns False when the offer was dropped: another offer from the same
        streamer is still being processed, or the session is mid-negotiation.

        Raises:
            NegotiationError: the SDP step failed
        """
        if not self.guard.try_enter(streamer_id):
            logger.warning("Offer from {} already being processed, ignoring", streamer_id)
            return False

        try:
            session = await self.manager.ensure_viewer_session(streamer_id)
            pc = session.connection

            if not PeerStateMachine.can_accept_offer(session.signaling_state):
                logger.warning("Signaling state is {}, dropping offer", session.signaling_state)
                return False

            try:
                await pc.setRemoteDescription(description_from_payload(offer))
                answer = await pc.createAnswer()
                await pc.setLocalDescription(answer)
            except AppError:
                raise
            except Exception as exc:
                logger.error("Failed to answer offer from {}: {}", streamer_id, exc)
                raise NegotiationError(
                    AppErrorCode.E_SDP_FAILURE, f"Failed to process offer: {exc}"
                ) from exc

            description = pc.localDescription or answer
            await self._send(AnswerIn(answer=description_to_payload(description), target=streamer_id))
            logger.info("Answer sent to streamer: {}", streamer_id)
            return True
        finally:
            self.guard.leave(streamer_id)

    async def handle_answer(self, answer: SessionDescriptionPayload, viewer_id: str) -> bool:
        if self.manager.role != PeerRole.STREAMER:
            return False

        session = self.manager.get_session(viewer_id)
        if session is None:
            logger.debug("No session for viewer {}, ignoring answer", viewer_id)
            return False

        try:
            await session.connection.setRemoteDescription(description_from_payload(answer))
        except Exception as exc:
            logger.error("Failed to apply answer from {}: {}", viewer_id, exc)
            raise NegotiationError(AppErrorCode.E_SDP_FAILURE, f"Failed to apply answer: {exc}") from exc

        logger.info("Answer applied for viewer: {}", viewer_id)
        return True

    async def handle_ice_candidate(self, candidate: IceCandidatePayload, peer_id: str) -> bool:
        """Apply a remote candidate to the matching session right away.

        Candidates are not buffered: one that arrives before the remote
        description is set is handed to the connection as is.
        """
        session = self.manager.get_session(peer_id)
        if session is None:
            logger.debug("No session for {}, ignoring ICE candidate", peer_id)
            return False
        if is_end_of_candidates(candidate):
            return False

        try:
            await session.connection.addIceCandidate(candidate_from_payload(candidate))
        except Exception as exc:
            logger.error("Failed to add ICE candidate from {}: {}", peer_id, exc)
            raise IceError(AppErrorCode.E_ADD_CANDIDATE_FAILURE, f"Failed to add ICE candidate: {exc}") from exc
        return True
