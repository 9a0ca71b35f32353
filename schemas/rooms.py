from pydantic import BaseModel
from typing import Optional


class ActiveVoteDetails(BaseModel):
    question: str
    votes_cast: int
    yes: int
    no: int

class RoomDetailsResponse(BaseModel):
    room_id: str
    host_id: str
    members: list[str]
    participant_count: int
    active_vote: Optional[ActiveVoteDetails] = None
    has_shared_media: bool
    votes_closed: int
    created_at: str

class HealthResponse(BaseModel):
    message: str
