from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router
from coordinator import Connection, Coordinator
from constants import CORS_ORIGINS, DASHBOARD_INTERVAL_SECONDS, LOG_FILE, LOG_LEVEL
from schemas.messages import ErrorMessage, InitMessage, parse_envelope, to_wire
from schemas.rooms import HealthResponse
import asyncio
import json
from typing import Optional, Union
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

app = FastAPI(title="Room Coordinator")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

# In-memory, single-process state shared by every socket handler.
# Handlers reach it through app.state so tests can swap in a fresh coordinator.
app.state.coordinator = Coordinator()
app.state.dashboard_interval = DASHBOARD_INTERVAL_SECONDS

logger.info("FastAPI application initialized")


@app.get("/", response_model=HealthResponse)
async def health():
    return HealthResponse(message="Room coordinator is running")


async def receive_frame(websocket: WebSocket) -> Union[str, bytes]:
    """Receive one text or binary frame, raising WebSocketDisconnect on close."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))
    if message.get("text") is not None:
        return message["text"]
    return message.get("bytes") or b""


async def handshake(websocket: WebSocket, coordinator: Coordinator) -> Optional[Connection]:
    """Read the init frame and register the connection. Closes the socket on failure."""
    try:
        raw = await receive_frame(websocket)
    except WebSocketDisconnect:
        logger.info("Connection closed before init")
        return None

    message = parse_envelope(raw)
    if not isinstance(message, InitMessage):
        logger.warning(f"First message must be init, got {getattr(message, 'type', None) or getattr(message, 'kind', None)}")
        await websocket.close(code=1008, reason="First message must be init")
        return None

    connection = await coordinator.register(message.user_id, websocket)
    if connection is None:
        await websocket.send_text(json.dumps(to_wire(ErrorMessage(error="User id already connected"))))
        await websocket.close(code=1008, reason="User id already connected")
    return connection


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Participant socket: init handshake, then one envelope per frame until close."""
    coordinator: Coordinator = websocket.app.state.coordinator
    await websocket.accept()
    logger.debug("WebSocket connection accepted on /ws")

    connection = await handshake(websocket, coordinator)
    if connection is None:
        return

    writer = asyncio.create_task(connection.run_writer())
    message_count = 0
    try:
        while True:
            raw = await receive_frame(websocket)
            message_count += 1
            await coordinator.dispatch(connection, parse_envelope(raw))
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for connection {connection.id} after {message_count} messages")
    except Exception as e:
        logger.error(f"Error in receive loop for connection {connection.id}: {e}", exc_info=True)
    finally:
        await coordinator.unregister(connection)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")


async def run_dashboard_feed(websocket: WebSocket, coordinator: Coordinator, interval: float):
    """Write a cross-room summary every `interval` seconds until a write fails."""
    updates = 0
    while True:
        await asyncio.sleep(interval)
        summary = await coordinator.dashboard_summary()
        try:
            await websocket.send_text(json.dumps(to_wire(summary)))
        except Exception as e:
            logger.info(f"Dashboard feed stopped after {updates} updates: {e}")
            break
        updates += 1


@app.websocket("/dashboard")
async def dashboard_endpoint(websocket: WebSocket):
    await websocket.accept()
    logger.info("Dashboard subscriber connected")
    await run_dashboard_feed(websocket, websocket.app.state.coordinator, websocket.app.state.dashboard_interval)
