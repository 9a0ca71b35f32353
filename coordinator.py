import asyncio
import json
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Union

from fastapi import WebSocket
from pydantic import BaseModel

from constants import OUTBOUND_QUEUE_SIZE, ROOM_EMPTY_POLICY, ID_COLLISION_POLICY
from logging_config import get_logger
from schemas.messages import (
    ActiveVote,
    CreateVoteMessage,
    DashboardRoom,
    DashboardSummary,
    DashboardVote,
    EndVoteMessage,
    ErrorMessage,
    IgnoredMessage,
    InitAck,
    JoinMessage,
    LeaveEvent,
    LeaveMessage,
    RelayMessage,
    RoomState,
    ShareMediaMessage,
    SharedMediaEvent,
    SpeakingEvent,
    SpeakingMessage,
    VoteMessage,
    VoteRecord,
    to_wire,
)
from schemas.rooms import ActiveVoteDetails, RoomDetailsResponse

logger = get_logger(__name__)

EMPTY_ROOM_POLICIES = ("preserve", "delete")
ID_COLLISION_POLICIES = ("generate", "reject", "replace")


def generate_connection_id() -> str:
    return str(uuid.uuid4())


class Connection:
    """A live participant socket.

    Everything written to the socket goes through ``outbound`` and is drained by
    ``run_writer``, so the writer task is the only coroutine touching the
    transport.
    """

    def __init__(self, connection_id: str, websocket: Optional[WebSocket] = None, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.id = connection_id
        self.websocket = websocket
        self.room_id: Optional[str] = None
        self.outbound: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.closed = False

    def send(self, message: Union[BaseModel, dict]) -> bool:
        """Queue a message for delivery. Returns False when it was dropped."""
        payload = to_wire(message) if isinstance(message, BaseModel) else message
        if self.closed:
            logger.warning(f"Dropping {payload.get('type', 'unknown')} for closed connection {self.id}")
            return False
        try:
            self.outbound.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for connection {self.id}, dropping {payload.get('type', 'unknown')}")
            return False
        return True

    async def run_writer(self):
        sent = 0
        try:
            while True:
                payload = await self.outbound.get()
                await self.websocket.send_text(json.dumps(payload))
                sent += 1
        except Exception as e:
            logger.warning(f"Write to connection {self.id} failed after {sent} messages: {e}")
        finally:
            self.closed = True


class Room:
    def __init__(self, room_id: str, host_id: str = ""):
        self.id = room_id
        self.host_id = host_id
        # dict used as an ordered set of connection ids
        self.members: Dict[str, None] = {}
        self.active_vote: Optional[str] = None
        self.current_votes: Dict[str, str] = {}
        self.last_shared_media: Optional[SharedMediaEvent] = None
        self.vote_history: List[VoteRecord] = []
        self.created_at = datetime.now().isoformat()

    def tally(self):
        yes = sum(1 for value in self.current_votes.values() if value == "yes")
        no = sum(1 for value in self.current_votes.values() if value == "no")
        return yes, no


class Coordinator:
    """Owns the connection and room registries.

    All registry reads and writes happen under ``self.lock``. Broadcasts only
    enqueue onto member connections, so holding the lock never waits on a
    socket.
    """

    def __init__(
        self,
        queue_size: int = OUTBOUND_QUEUE_SIZE,
        empty_room_policy: str = ROOM_EMPTY_POLICY,
        id_collision_policy: str = ID_COLLISION_POLICY,
    ):
        if empty_room_policy not in EMPTY_ROOM_POLICIES:
            raise ValueError(f"Unknown empty room policy: {empty_room_policy}")
        if id_collision_policy not in ID_COLLISION_POLICIES:
            raise ValueError(f"Unknown id collision policy: {id_collision_policy}")

        self.connections: Dict[str, Connection] = {}
        self.rooms: Dict[str, Room] = {}
        self.lock = asyncio.Lock()
        self.queue_size = queue_size
        self.empty_room_policy = empty_room_policy
        self.id_collision_policy = id_collision_policy

        self._handlers = {
            JoinMessage: self.handle_join,
            RelayMessage: self.handle_relay,
            LeaveMessage: self.handle_leave,
            ShareMediaMessage: self.handle_share_media,
            CreateVoteMessage: self.handle_create_vote,
            EndVoteMessage: self.handle_end_vote,
            VoteMessage: self.handle_vote,
            SpeakingMessage: self.handle_speaking,
        }
        logger.info(
            f"Coordinator initialized (empty_room_policy={empty_room_policy}, "
            f"id_collision_policy={id_collision_policy}, queue_size={queue_size})"
        )

    # Connection lifecycle

    async def register(self, requested_id: Optional[str], websocket: Optional[WebSocket] = None) -> Optional[Connection]:
        """Register a connection after a valid init. Returns None if the id is refused."""
        async with self.lock:
            connection_id = requested_id or generate_connection_id()
            if connection_id in self.connections:
                if self.id_collision_policy == "reject":
                    logger.warning(f"Rejecting connection: id {connection_id} is already connected")
                    return None
                if self.id_collision_policy == "generate":
                    fresh_id = generate_connection_id()
                    logger.warning(f"Id {connection_id} is already connected, assigning {fresh_id}")
                    connection_id = fresh_id
                else:
                    logger.warning(f"Id {connection_id} is already connected, new connection shadows it")

            connection = Connection(connection_id, websocket, self.queue_size)
            self.connections[connection_id] = connection
            logger.info(f"Connected: {connection_id} (live connections: {len(self.connections)})")

        connection.send(InitAck(user_id=connection_id))
        return connection

    async def unregister(self, connection: Connection):
        """Tear down a connection. Calling it twice is harmless."""
        async with self.lock:
            current = self.connections.get(connection.id)
            if current is connection:
                del self.connections[connection.id]
                self._remove_member(connection)
                logger.info(f"Disconnected: {connection.id} (live connections: {len(self.connections)})")
            elif current is None:
                self._remove_member(connection)
                logger.debug(f"Connection {connection.id} already unregistered")
            else:
                # a newer connection owns this id and its room membership
                logger.info(f"Disconnected shadowed connection {connection.id}, registry entry kept")
        connection.closed = True

    # Dispatch

    async def dispatch(self, connection: Connection, message):
        if isinstance(message, IgnoredMessage):
            logger.debug(f"Ignoring frame from {connection.id}: kind={message.kind} reason={message.reason}")
            return

        handler = self._handlers.get(type(message))
        if handler is None:
            logger.debug(f"No handler for {message.type} from {connection.id}")
            return
        await handler(connection, message)

    # Relay

    async def handle_relay(self, connection: Connection, message: RelayMessage):
        envelope = message.model_dump(by_alias=True)
        envelope["from"] = connection.id
        target_id = message.user_id

        if target_id == connection.id:
            logger.warning(f"Skipping self-forward of {message.type} from {connection.id}")
            return

        async with self.lock:
            target = self.connections.get(target_id)
            if target is None:
                logger.debug(f"Dropping {message.type} from {connection.id}: target {target_id} not connected")
                return
            logger.debug(f"Forwarding {message.type} from {connection.id} to {target_id}")
            target.send(envelope)

    # Room state machine

    async def handle_join(self, connection: Connection, message: JoinMessage):
        async with self.lock:
            room = self.rooms.get(message.room_id)
            if room is None:
                if not message.is_creator:
                    logger.warning(f"Rejected guest {connection.id} trying to join non-existent room {message.room_id}")
                    connection.send(ErrorMessage(error="Room does not exist"))
                    return
                room = Room(message.room_id, host_id=connection.id)
                self.rooms[room.id] = room
                logger.info(f"Created room {room.id} (host: {connection.id})")

            if connection.room_id and connection.room_id != room.id:
                logger.info(f"{connection.id} switching from room {connection.room_id} to {room.id}")
                self._remove_member(connection)

            if not room.host_id and message.is_creator:
                room.host_id = connection.id
                logger.info(f"Host of room {room.id} reassigned to {connection.id}")
            elif room.host_id != connection.id:
                logger.debug(f"Preserving host {room.host_id} of room {room.id}, {connection.id} is a guest")

            room.members[connection.id] = None
            connection.room_id = room.id
            logger.info(f"{connection.id} joined room {room.id} ({len(room.members)} members)")
            self._broadcast_room_state(room)

    async def handle_leave(self, connection: Connection, message: LeaveMessage):
        async with self.lock:
            if not self._remove_member(connection):
                logger.debug(f"Leave from {connection.id} ignored, not in a room")

    async def handle_create_vote(self, connection: Connection, message: CreateVoteMessage):
        async with self.lock:
            room = self._current_room(connection)
            if room is None:
                return
            if room.host_id != connection.id:
                logger.warning(f"Ignoring create-vote from non-host {connection.id} in room {room.id}")
                return
            if not message.question:
                logger.warning(f"Ignoring create-vote with empty question from {connection.id}")
                return
            if room.active_vote is not None:
                logger.info(f"Replacing open vote {room.active_vote!r} in room {room.id}")

            room.active_vote = message.question
            room.current_votes = {}
            logger.info(f"Vote opened in room {room.id}: {message.question!r}")
            self._broadcast_room_state(room)

    async def handle_end_vote(self, connection: Connection, message: EndVoteMessage):
        async with self.lock:
            room = self._current_room(connection)
            if room is None:
                return
            if room.host_id != connection.id:
                logger.warning(f"Ignoring end-vote from non-host {connection.id} in room {room.id}")
                return
            if room.active_vote is None:
                logger.debug(f"end-vote in room {room.id} with no open vote")
                return

            yes, no = room.tally()
            record = VoteRecord(
                question=room.active_vote,
                total_votes=len(room.current_votes),
                yes_count=yes,
                no_count=no,
            )
            room.vote_history.append(record)
            room.active_vote = None
            room.current_votes = {}
            logger.info(f"Vote closed in room {room.id}: {record.question!r} yes={yes} no={no} total={record.total_votes}")
            self._broadcast_room_state(room)

    async def handle_vote(self, connection: Connection, message: VoteMessage):
        async with self.lock:
            room = self._current_room(connection)
            if room is None:
                return
            if room.active_vote is None:
                logger.debug(f"Dropping vote from {connection.id}, no open vote in room {room.id}")
                return

            room.current_votes[connection.id] = message.value
            self._broadcast_room_state(room)

    async def handle_share_media(self, connection: Connection, message: ShareMediaMessage):
        async with self.lock:
            room = self._current_room(connection)
            if room is None:
                return

            room.last_shared_media = SharedMediaEvent(
                user_id=connection.id,
                url=message.url,
                media_type=message.media_type,
            )
            logger.info(f"{connection.id} shared {message.media_type} in room {room.id}")
            self._broadcast(room, room.last_shared_media)
            self._broadcast_room_state(room)

    async def handle_speaking(self, connection: Connection, message: SpeakingMessage):
        async with self.lock:
            room = self._current_room(connection)
            if room is None:
                return
            self._broadcast(room, SpeakingEvent(user_id=connection.id, is_speaking=message.is_speaking))

    # Internals, lock must be held

    def _current_room(self, connection: Connection) -> Optional[Room]:
        if not connection.room_id:
            logger.debug(f"Connection {connection.id} sent a room message before joining")
            return None
        return self.rooms.get(connection.room_id)

    def _remove_member(self, connection: Connection) -> bool:
        room = self.rooms.get(connection.room_id) if connection.room_id else None
        if room is None or connection.id not in room.members:
            return False

        del room.members[connection.id]
        logger.info(f"{connection.id} left room {room.id} ({len(room.members)} members)")

        if not room.members:
            if self.empty_room_policy == "delete":
                del self.rooms[room.id]
                # a later room reusing this id must not inherit former members
                connection.room_id = None
                for other in self.connections.values():
                    if other.room_id == room.id:
                        other.room_id = None
                logger.info(f"Room {room.id} is empty, deleted")
            else:
                logger.info(f"Room {room.id} is now empty (host {room.host_id} preserved)")
            return True

        self._broadcast(room, LeaveEvent(user_id=connection.id))
        self._broadcast_room_state(room)
        return True

    def _broadcast(self, room: Room, message: BaseModel) -> int:
        payload = to_wire(message)
        delivered = 0
        for member_id in list(room.members):
            member = self.connections.get(member_id)
            if member is None:
                logger.warning(f"Member {member_id} of room {room.id} has no live connection")
                continue
            if member.send(payload):
                delivered += 1
        return delivered

    def _room_state_for(self, room: Room, recipient_id: str) -> RoomState:
        return RoomState(
            members=list(room.members),
            host_id=room.host_id,
            active_vote=ActiveVote(question=room.active_vote) if room.active_vote is not None else None,
            current_votes=dict(room.current_votes),
            shared_media=room.last_shared_media,
            vote_history=list(room.vote_history) if recipient_id == room.host_id else None,
        )

    def _broadcast_room_state(self, room: Room) -> int:
        delivered = 0
        for member_id in list(room.members):
            member = self.connections.get(member_id)
            if member is None:
                logger.warning(f"Member {member_id} of room {room.id} has no live connection")
                continue
            if member.send(self._room_state_for(room, member_id)):
                delivered += 1
        logger.debug(f"Room state for {room.id} delivered to {delivered}/{len(room.members)} members")
        return delivered

    def _summarize(self, room: Room) -> DashboardRoom:
        active_vote = None
        if room.active_vote is not None:
            yes, no = room.tally()
            active_vote = DashboardVote(question=room.active_vote, yes=yes, no=no)
        return DashboardRoom(
            room_id=room.id,
            host_id=room.host_id,
            participant_count=len(room.members),
            active_vote=active_vote,
        )

    # Read-only views

    async def dashboard_summary(self) -> DashboardSummary:
        async with self.lock:
            rooms = [self._summarize(room) for room in self.rooms.values()]
        return DashboardSummary(rooms=rooms)

    async def room_details(self, room_id: str) -> Optional[RoomDetailsResponse]:
        async with self.lock:
            room = self.rooms.get(room_id)
            if room is None:
                return None
            active_vote = None
            if room.active_vote is not None:
                yes, no = room.tally()
                active_vote = ActiveVoteDetails(
                    question=room.active_vote,
                    votes_cast=len(room.current_votes),
                    yes=yes,
                    no=no,
                )
            return RoomDetailsResponse(
                room_id=room.id,
                host_id=room.host_id,
                members=list(room.members),
                participant_count=len(room.members),
                active_vote=active_vote,
                has_shared_media=room.last_shared_media is not None,
                votes_closed=len(room.vote_history),
                created_at=room.created_at,
            )
