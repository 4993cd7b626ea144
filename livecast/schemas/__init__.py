"""Pydantic schemas and enums shared by relay and clients."""

from .messages import (
    AckOut,
    AnswerIn,
    AnswerOut,
    ClientMessage,
    ConnectedOut,
    CreateRoomIn,
    CreateRoomResult,
    ErrorOut,
    IceCandidateIn,
    IceCandidateOut,
    IceCandidatePayload,
    JoinRoomIn,
    JoinRoomResult,
    OfferIn,
    OfferOut,
    SessionDescriptionPayload,
    StreamerLeftOut,
    StreamPausedIn,
    StreamPausedOut,
    StreamResumedIn,
    StreamResumedOut,
    ViewerJoinedOut,
    ViewerLeftOut,
    WireModel,
    dump_message,
    parse_client_message,
    parse_relay_message,
)
from .peer_state import ConnectionState, PeerRole, SignalingState

__all__ = [
    "AckOut",
    "AnswerIn",
    "AnswerOut",
    "ClientMessage",
    "ConnectedOut",
    "ConnectionState",
    "CreateRoomIn",
    "CreateRoomResult",
    "ErrorOut",
    "IceCandidateIn",
    "IceCandidateOut",
    "IceCandidatePayload",
    "JoinRoomIn",
    "JoinRoomResult",
    "OfferIn",
    "OfferOut",
    "PeerRole",
    "SessionDescriptionPayload",
    "SignalingState",
    "StreamPausedIn",
    "StreamPausedOut",
    "StreamResumedIn",
    "StreamResumedOut",
    "StreamerLeftOut",
    "ViewerJoinedOut",
    "ViewerLeftOut",
    "WireModel",
    "dump_message",
    "parse_client_message",
    "parse_relay_message",
]
