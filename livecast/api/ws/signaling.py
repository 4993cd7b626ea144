"""Signaling WebSocket endpoint.

One connection per client. Inbound frames are parsed into typed messages and
handed to the relay; outbound messages are drained from the connection's
outbox by a dedicated writer task.
"""

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

from livecast.domain.signaling.relay import QueueEndpoint, SignalingRelay
from livecast.domain.utils.idgen import new_client_id
from livecast.schemas import AckOut, ConnectedOut, ErrorOut, dump_message, parse_client_message
from livecast.shared.api.utils import format_error
from livecast.utils.app_errors import MessageParseError

router = APIRouter()


async def _pump_outbox(websocket: WebSocket, endpoint: QueueEndpoint) -> None:
    while True:
        message = await endpoint.next()
        if message is None:
            return
        try:
            await websocket.send_text(dump_message(message))
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("Send to {} failed: {}", endpoint.client_id, exc)
            return


@router.websocket("/ws")
async def signaling_socket(websocket: WebSocket):
    relay: SignalingRelay = websocket.app.state.relay

    await websocket.accept()

    client_id = new_client_id()
    endpoint = QueueEndpoint(client_id)
    endpoint.deliver(ConnectedOut(client_id=client_id))
    relay.connect(client_id, endpoint)
    writer = asyncio.create_task(_pump_outbox(websocket, endpoint), name=f"outbox:{client_id}")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = parse_client_message(raw)
            except MessageParseError as exc:
                logger.warning("{} {} from {}: {}", exc.errcode, exc.erresid, client_id, exc.errmesg)
                endpoint.deliver(
                    ErrorOut(errcode=exc.errcode, errmesg=exc.errmesg, erresid=exc.erresid)
                )
                continue

            result = relay.handle(client_id, message)
            if message.ack is not None:
                endpoint.deliver(
                    AckOut(
                        ack=message.ack,
                        result=result.model_dump(by_alias=True, exclude_none=True) if result else {},
                    )
                )
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        logger.error("Signaling socket {} crashed:\n{}", client_id, format_error(exc))
        raise
    finally:
        relay.disconnect(client_id)
        endpoint.close()
        writer.cancel()
