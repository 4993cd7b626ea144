"""aiortc adapter: peer connection construction and wire conversions.

The domain layer talks to peer connections through the aiortc surface
(`createOffer`, `setRemoteDescription`, `on(...)`, ...). This module is the
only place that builds aiortc objects from wire payloads and back.
"""

from collections.abc import Callable, Sequence
from typing import Any

from aiortc import (
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from livecast.app_config import get_app_environ_config
from livecast.schemas import IceCandidatePayload, SessionDescriptionPayload

PeerFactory = Callable[[], Any]

_CANDIDATE_PREFIX = "candidate:"


def build_ice_servers(urls: Sequence[str] | None = None) -> list[RTCIceServer]:
    if urls is None:
        urls = get_app_environ_config().ICE_STUN_URLS
    return [RTCIceServer(urls=url) for url in urls]


def create_peer_connection(ice_servers: list[RTCIceServer] | None = None) -> RTCPeerConnection:
    if ice_servers is None:
        ice_servers = build_ice_servers()
    return RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers))


def default_peer_factory(urls: Sequence[str] | None = None) -> PeerFactory:
    ice_servers = build_ice_servers(urls)

    def factory() -> RTCPeerConnection:
        return create_peer_connection(ice_servers)

    return factory


def description_from_payload(payload: SessionDescriptionPayload) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=payload.sdp, type=payload.type)


def description_to_payload(description: Any) -> SessionDescriptionPayload:
    return SessionDescriptionPayload(type=description.type, sdp=description.sdp)


def is_end_of_candidates(payload: IceCandidatePayload) -> bool:
    return not payload.candidate.strip()


def candidate_from_payload(payload: IceCandidatePayload) -> RTCIceCandidate:
    """Build an aiortc candidate from an RTCIceCandidateInit-shaped payload."""
    value = payload.candidate.strip()
    if value.startswith(_CANDIDATE_PREFIX):
        value = value[len(_CANDIDATE_PREFIX):]
    candidate = candidate_from_sdp(value)
    candidate.sdpMid = payload.sdp_mid
    candidate.sdpMLineIndex = payload.sdp_m_line_index
    return candidate


def candidate_to_payload(candidate: RTCIceCandidate) -> IceCandidatePayload:
    return IceCandidatePayload(
        candidate=_CANDIDATE_PREFIX + candidate_to_sdp(candidate),
        sdp_mid=candidate.sdpMid,
        sdp_m_line_index=candidate.sdpMLineIndex,
    )
