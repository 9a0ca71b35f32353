"""
Wire envelopes for the /ws and /dashboard sockets.

Inbound frames are decoded into a closed union keyed on ``type``. Anything that
is not valid JSON, not an object, of an unknown kind, or missing required fields
becomes an ``IgnoredMessage`` instead of raising, so the receive loop can log
and move on.

Outbound models serialize with camelCase keys via ``to_wire``.
"""
import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel


class Envelope(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Inbound

class InitMessage(Envelope):
    type: Literal["init"]
    user_id: Optional[str] = None

    @field_validator("user_id", mode="before")
    @classmethod
    def non_string_id_is_absent(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None


class JoinMessage(Envelope):
    type: Literal["join"]
    room_id: str
    is_creator: bool = False

    @field_validator("is_creator", mode="before")
    @classmethod
    def only_literal_true(cls, value: Any) -> bool:
        # anything other than a JSON true means guest
        return value is True


class RelayMessage(Envelope):
    """offer / answer / ice-candidate. Payload fields pass through untouched."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: Literal["offer", "answer", "ice-candidate"]
    user_id: str


class LeaveMessage(Envelope):
    type: Literal["leave"]


class ShareMediaMessage(Envelope):
    type: Literal["share-media"]
    url: str
    media_type: str


class CreateVoteMessage(Envelope):
    type: Literal["create-vote"]
    question: str


class EndVoteMessage(Envelope):
    type: Literal["end-vote"]


class VoteMessage(Envelope):
    type: Literal["vote"]
    value: str
    # informational only, the sender's connection id is what gets recorded
    user_id: Optional[str] = None


class SpeakingMessage(Envelope):
    type: Literal["speaking"]
    is_speaking: StrictBool


InboundMessage = Annotated[
    Union[
        InitMessage,
        JoinMessage,
        RelayMessage,
        LeaveMessage,
        ShareMediaMessage,
        CreateVoteMessage,
        EndVoteMessage,
        VoteMessage,
        SpeakingMessage,
    ],
    Field(discriminator="type"),
]

inbound_adapter = TypeAdapter(InboundMessage)

INBOUND_TYPES = {
    "init", "join", "offer", "answer", "ice-candidate", "leave",
    "share-media", "create-vote", "end-vote", "vote", "speaking",
}


class IgnoredMessage(BaseModel):
    kind: Optional[str] = None
    reason: str


def parse_envelope(raw: Union[str, bytes]) -> Union[InboundMessage, IgnoredMessage]:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return IgnoredMessage(reason=f"invalid JSON: {e}")

    if not isinstance(data, dict):
        return IgnoredMessage(reason="envelope is not an object")

    kind = data.get("type")
    if not isinstance(kind, str):
        return IgnoredMessage(reason="missing type")
    if kind not in INBOUND_TYPES:
        return IgnoredMessage(kind=kind, reason="unknown message type")

    try:
        return inbound_adapter.validate_python(data)
    except ValidationError as e:
        return IgnoredMessage(kind=kind, reason=f"invalid fields: {e.error_count()} error(s)")


# Outbound

class InitAck(Envelope):
    type: Literal["init-ack"] = "init-ack"
    user_id: str


class ErrorMessage(Envelope):
    type: Literal["error"] = "error"
    error: str


class LeaveEvent(Envelope):
    type: Literal["leave"] = "leave"
    user_id: str


class SpeakingEvent(Envelope):
    type: Literal["speaking"] = "speaking"
    user_id: str
    is_speaking: bool


class SharedMediaEvent(Envelope):
    type: Literal["shared-media"] = "shared-media"
    user_id: str
    url: str
    media_type: str


class ActiveVote(Envelope):
    question: str


class VoteRecord(Envelope):
    question: str
    total_votes: int
    yes_count: int
    no_count: int


class RoomState(Envelope):
    type: Literal["room-state"] = "room-state"
    members: List[str]
    host_id: str
    active_vote: Optional[ActiveVote] = None
    current_votes: Dict[str, str] = Field(default_factory=dict)
    shared_media: Optional[SharedMediaEvent] = None
    vote_history: Optional[List[VoteRecord]] = None


class DashboardVote(Envelope):
    question: str
    yes: int
    no: int


class DashboardRoom(Envelope):
    room_id: str
    host_id: str
    participant_count: int
    active_vote: Optional[DashboardVote] = None


class DashboardSummary(Envelope):
    type: Literal["dashboard-summary"] = "dashboard-summary"
    rooms: List[DashboardRoom] = Field(default_factory=list)


def to_wire(message: BaseModel) -> dict:
    return message.model_dump(by_alias=True, exclude_none=True)
