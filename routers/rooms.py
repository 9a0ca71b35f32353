from fastapi import APIRouter, HTTPException, Request
from schemas.messages import DashboardRoom
from schemas.rooms import RoomDetailsResponse
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/", response_model=list[DashboardRoom], response_model_exclude_none=True)
async def list_rooms(request: Request):
    """Same per-room summary the dashboard feed pushes, on demand."""
    client_host = request.client.host if request.client else 'unknown'
    summary = await request.app.state.coordinator.dashboard_summary()
    logger.info(f"Room list request from {client_host}: {len(summary.rooms)} rooms")
    return summary.rooms


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """
    Get details of a room held by the coordinator.

    Returns:
    - room_id: Room identifier
    - host_id: Connection id holding host authority (may be disconnected)
    - members: Connection ids currently in the room
    - participant_count: Number of current members
    - active_vote: Open vote with running yes/no counts, if any
    - has_shared_media: Whether media has been shared in this room
    - votes_closed: Number of votes closed so far
    - created_at: Room creation timestamp

    Vote history itself is only ever delivered to the host over the socket.
    """
    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"Room details request for {room_id} from {client_host}")

    details = await request.app.state.coordinator.room_details(room_id)
    if details is None:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    logger.info(f"Room details retrieved for {room_id}: {details.participant_count} members")
    return details
