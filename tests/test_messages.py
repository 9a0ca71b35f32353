import json

from schemas.messages import (
    ActiveVote,
    IgnoredMessage,
    InitMessage,
    JoinMessage,
    RelayMessage,
    RoomState,
    SpeakingMessage,
    VoteMessage,
    VoteRecord,
    parse_envelope,
    to_wire,
)


def test_parse_init_with_and_without_user_id():
    message = parse_envelope(json.dumps({"type": "init", "userId": "alice"}))
    assert isinstance(message, InitMessage)
    assert message.user_id == "alice"

    message = parse_envelope('{"type": "init"}')
    assert isinstance(message, InitMessage)
    assert message.user_id is None


def test_non_string_init_id_is_treated_as_absent():
    message = parse_envelope(json.dumps({"type": "init", "userId": 42}))
    assert isinstance(message, InitMessage)
    assert message.user_id is None


def test_parse_join_creator_flag():
    message = parse_envelope(json.dumps({"type": "join", "roomId": "r1", "isCreator": True}))
    assert isinstance(message, JoinMessage)
    assert message.room_id == "r1"
    assert message.is_creator is True

    assert parse_envelope('{"type": "join", "roomId": "r1"}').is_creator is False
    # only a real boolean true marks a creator
    assert parse_envelope('{"type": "join", "roomId": "r1", "isCreator": "true"}').is_creator is False


def test_relay_keeps_opaque_payload():
    raw = {"type": "offer", "userId": "bob", "sdp": {"type": "offer", "sdp": "v=0"}, "extra": 1}
    message = parse_envelope(json.dumps(raw))
    assert isinstance(message, RelayMessage)
    assert message.user_id == "bob"
    assert message.model_dump(by_alias=True) == raw


def test_ice_candidate_is_a_relay_message():
    message = parse_envelope('{"type": "ice-candidate", "userId": "bob", "candidate": {"candidate": "x"}}')
    assert isinstance(message, RelayMessage)
    assert message.type == "ice-candidate"


def test_malformed_frames_are_ignored():
    assert isinstance(parse_envelope("not json"), IgnoredMessage)
    assert isinstance(parse_envelope("[1, 2]"), IgnoredMessage)
    assert isinstance(parse_envelope('{"roomId": "r1"}'), IgnoredMessage)
    assert isinstance(parse_envelope('{"type": 7}'), IgnoredMessage)


def test_unknown_kind_is_ignored_with_kind():
    message = parse_envelope('{"type": "chat", "text": "hi"}')
    assert isinstance(message, IgnoredMessage)
    assert message.kind == "chat"


def test_missing_required_fields_are_ignored():
    assert isinstance(parse_envelope('{"type": "join"}'), IgnoredMessage)
    assert isinstance(parse_envelope('{"type": "offer"}'), IgnoredMessage)
    assert isinstance(parse_envelope('{"type": "vote", "value": 1}'), IgnoredMessage)
    assert isinstance(parse_envelope('{"type": "speaking", "isSpeaking": "yes"}'), IgnoredMessage)


def test_vote_and_speaking_fields():
    vote = parse_envelope('{"type": "vote", "userId": "g", "value": "yes"}')
    assert isinstance(vote, VoteMessage)
    assert vote.value == "yes"

    speaking = parse_envelope(b'{"type": "speaking", "isSpeaking": true}')
    assert isinstance(speaking, SpeakingMessage)
    assert speaking.is_speaking is True


def test_room_state_wire_shape_omits_absent_fields():
    state = RoomState(members=["a", "b"], host_id="a", current_votes={"b": "no"})
    assert to_wire(state) == {
        "type": "room-state",
        "members": ["a", "b"],
        "hostId": "a",
        "currentVotes": {"b": "no"},
    }

    state = RoomState(
        members=["a"],
        host_id="a",
        active_vote=ActiveVote(question="Q"),
        vote_history=[VoteRecord(question="P", total_votes=2, yes_count=1, no_count=1)],
    )
    wire = to_wire(state)
    assert wire["activeVote"] == {"question": "Q"}
    assert wire["voteHistory"] == [{"question": "P", "totalVotes": 2, "yesCount": 1, "noCount": 1}]
