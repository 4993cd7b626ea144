"""Signaling wire schemas.

Every WebSocket frame is a JSON object tagged by `event`. Field names are
camelCase on the wire and snake_case in Python. Messages sent by clients to
the relay are `*In` models; messages emitted by the relay are `*Out` models.
"""

from typing import Annotated, Any, Literal, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from livecast.utils.app_errors import MessageParseError


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SessionDescriptionPayload(WireModel):
    """SDP offer or answer, forwarded without inspection."""

    type: Literal["offer", "answer"]
    sdp: str


class IceCandidatePayload(WireModel):
    """Trickled ICE candidate in RTCIceCandidateInit shape."""

    candidate: str
    sdp_mid: str | None = Field(default=None, alias="sdpMid")
    sdp_m_line_index: int | None = Field(default=None, alias="sdpMLineIndex")
    username_fragment: str | None = Field(default=None, alias="usernameFragment")


# ==================== CLIENT -> RELAY ====================


class ClientMessage(WireModel):
    # Request id; when present the relay replies with an `ack` frame.
    ack: int | None = None


class CreateRoomIn(ClientMessage):
    event: Literal["create-room"] = "create-room"


class JoinRoomIn(ClientMessage):
    event: Literal["join-room"] = "join-room"
    room_id: str = Field(min_length=1)


class OfferIn(ClientMessage):
    event: Literal["offer"] = "offer"
    offer: SessionDescriptionPayload
    target: str = Field(min_length=1)


class AnswerIn(ClientMessage):
    event: Literal["answer"] = "answer"
    answer: SessionDescriptionPayload
    target: str = Field(min_length=1)


class IceCandidateIn(ClientMessage):
    event: Literal["ice-candidate"] = "ice-candidate"
    candidate: IceCandidatePayload
    target: str = Field(min_length=1)


class StreamPausedIn(ClientMessage):
    event: Literal["stream-paused"] = "stream-paused"
    room_id: str = Field(min_length=1)


class StreamResumedIn(ClientMessage):
    event: Literal["stream-resumed"] = "stream-resumed"
    room_id: str = Field(min_length=1)


ClientMessageIn = Annotated[
    Union[
        CreateRoomIn,
        JoinRoomIn,
        OfferIn,
        AnswerIn,
        IceCandidateIn,
        StreamPausedIn,
        StreamResumedIn,
    ],
    Field(discriminator="event"),
]


# ==================== RELAY -> CLIENT ====================


class CreateRoomResult(WireModel):
    room_id: str


class JoinRoomResult(WireModel):
    success: bool | None = None
    error: str | None = None


class ConnectedOut(WireModel):
    event: Literal["connected"] = "connected"
    client_id: str


class AckOut(WireModel):
    event: Literal["ack"] = "ack"
    ack: int
    result: dict[str, Any] = Field(default_factory=dict)


class ErrorOut(WireModel):
    event: Literal["error"] = "error"
    errcode: str
    errmesg: str
    erresid: str | None = None


class OfferOut(WireModel):
    event: Literal["offer"] = "offer"
    offer: SessionDescriptionPayload
    sender: str


class AnswerOut(WireModel):
    event: Literal["answer"] = "answer"
    answer: SessionDescriptionPayload
    sender: str


class IceCandidateOut(WireModel):
    event: Literal["ice-candidate"] = "ice-candidate"
    candidate: IceCandidatePayload
    sender: str


class ViewerJoinedOut(WireModel):
    event: Literal["viewer-joined"] = "viewer-joined"
    viewer_id: str


class ViewerLeftOut(WireModel):
    event: Literal["viewer-left"] = "viewer-left"
    viewer_id: str


class StreamerLeftOut(WireModel):
    event: Literal["streamer-left"] = "streamer-left"


class StreamPausedOut(WireModel):
    event: Literal["stream-paused"] = "stream-paused"


class StreamResumedOut(WireModel):
    event: Literal["stream-resumed"] = "stream-resumed"


RelayMessageOut = Annotated[
    Union[
        ConnectedOut,
        AckOut,
        ErrorOut,
        OfferOut,
        AnswerOut,
        IceCandidateOut,
        ViewerJoinedOut,
        ViewerLeftOut,
        StreamerLeftOut,
        StreamPausedOut,
        StreamResumedOut,
    ],
    Field(discriminator="event"),
]

_client_adapter: TypeAdapter = TypeAdapter(ClientMessageIn)
_relay_adapter: TypeAdapter = TypeAdapter(RelayMessageOut)


def _parse(adapter: TypeAdapter, raw: str | bytes) -> Any:
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise MessageParseError(f"Frame is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MessageParseError("Frame must be a JSON object")

    try:
        return adapter.validate_python(data)
    except ValidationError as exc:
        event = data.get("event")
        raise MessageParseError(
            f"Invalid '{event}' message: {exc.errors(include_url=False)}"
        ) from exc


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Parse a client frame into its typed message, raising MessageParseError."""
    return _parse(_client_adapter, raw)


def parse_relay_message(raw: str | bytes) -> WireModel:
    """Parse a relay frame into its typed message, raising MessageParseError."""
    return _parse(_relay_adapter, raw)


def dump_message(message: BaseModel) -> str:
    return orjson.dumps(message.model_dump(by_alias=True, exclude_none=True)).decode()
