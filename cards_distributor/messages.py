"""
Wire messages exchanged with the cards distributor contract.

Requests are tagged variants, one class per message kind, validated when
they are built. Responses are decoded into typed records; every 64-bit
value is carried as a decimal string on the wire and as an exact int here.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from cards_distributor.cards import Card, decode_cards, parse_card_str
from cards_distributor.errors import MalformedResponse
from cards_distributor.phases import GAME_STATES
from cards_distributor.share_math import U64_MAX, is_u64

U32_MAX = (1 << 32) - 1


# ---------------------------------------------------------------------------
# Numeric codec
# ---------------------------------------------------------------------------

def parse_u64(value: Any, field_name: str = "value") -> int:
    """Decode a u64 from its decimal string form without going through float."""
    if isinstance(value, bool):
        raise MalformedResponse(f"{field_name}: expected u64, got bool")
    if isinstance(value, int):
        if is_u64(value):
            return value
        raise MalformedResponse(f"{field_name}: {value} is outside the u64 range")
    if not isinstance(value, str) or not value.isascii() or not value.isdigit():
        raise MalformedResponse(f"{field_name}: expected decimal string, got {value!r}")
    number = int(value)
    if number > U64_MAX:
        raise MalformedResponse(f"{field_name}: {value} is outside the u64 range")
    return number


def parse_optional_u64(value: Any, field_name: str = "value") -> Optional[int]:
    return None if value is None else parse_u64(value, field_name)


def format_u64(value: int) -> str:
    if not is_u64(value):
        raise ValueError(f"Not a u64: {value!r}")
    return str(value)


def _reject_float(text: str):
    raise MalformedResponse(f"floating point number {text} in contract payload")


def loads(text) -> Any:
    """json.loads that refuses floats, so nothing numeric is ever rounded."""
    if isinstance(text, (bytes, bytearray)):
        text = text.decode("utf-8")
    try:
        return json.loads(text, parse_float=_reject_float, parse_constant=_reject_float)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"invalid JSON: {e}") from e


def dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True)


def _check_u32(value, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= U32_MAX:
        raise ValueError(f"{name} must be a u32, got {value!r}")


def _check_secret(value, name: str, optional: bool = False) -> None:
    if value is None and optional:
        return
    if not is_u64(value):
        raise ValueError(f"{name} must be a u64, got {value!r}")


def _check_game_state(value: str) -> None:
    if value not in GAME_STATES:
        raise ValueError(f"game_state must be one of {GAME_STATES}, got {value!r}")


# ---------------------------------------------------------------------------
# Execute messages
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StartGamePlayer:
    username: str
    player_id: str
    public_key: str

    def to_msg(self) -> Dict[str, str]:
        return {"username": self.username, "player_id": self.player_id, "public_key": self.public_key}


@dataclass(frozen=True)
class StartGame:
    table_id: int
    hand_ref: int
    players: Tuple[StartGamePlayer, ...]
    prev_hand_showdown_players: Tuple[str, ...] = ()

    def __post_init__(self):
        _check_u32(self.table_id, "table_id")
        _check_u32(self.hand_ref, "hand_ref")
        if not self.players:
            raise ValueError("start_game needs players")

    def to_msg(self) -> Dict[str, Any]:
        return {"start_game": {
            "table_id": self.table_id,
            "hand_ref": self.hand_ref,
            "players": [p.to_msg() for p in self.players],
            "prev_hand_showdown_players": list(self.prev_hand_showdown_players),
        }}


@dataclass(frozen=True)
class AdvancePhase:
    """Ask the contract to release the community cards of a phase."""

    table_id: int
    game_state: str

    def __post_init__(self):
        _check_u32(self.table_id, "table_id")
        _check_game_state(self.game_state)
        if self.game_state == "pre_flop":
            raise ValueError("advance-phase needs flop, turn or river")

    def to_msg(self) -> Dict[str, Any]:
        return {"community_cards": {"table_id": self.table_id, "game_state": self.game_state}}


@dataclass(frozen=True)
class ShowdownExec:
    table_id: int
    players_secrets: Tuple[int, ...]
    flop_secret: Optional[int] = None
    turn_secret: Optional[int] = None
    river_secret: Optional[int] = None
    show_cards: Tuple[str, ...] = ()
    all_in_showdown: bool = False

    def __post_init__(self):
        _check_u32(self.table_id, "table_id")
        for i, secret in enumerate(self.players_secrets):
            _check_secret(secret, f"players_secrets[{i}]")
        _check_secret(self.flop_secret, "flop_secret", optional=True)
        _check_secret(self.turn_secret, "turn_secret", optional=True)
        _check_secret(self.river_secret, "river_secret", optional=True)

    def to_msg(self) -> Dict[str, Any]:
        return {"showdown": {
            "table_id": self.table_id,
            "players_secrets": [format_u64(s) for s in self.players_secrets],
            "flop_secret": _opt(self.flop_secret),
            "turn_secret": _opt(self.turn_secret),
            "river_secret": _opt(self.river_secret),
            "show_cards": list(self.show_cards),
            "all_in_showdown": self.all_in_showdown,
        }}


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PrivateDataQuery:
    table_id: int
    permit: Dict[str, Any]

    def __post_init__(self):
        _check_u32(self.table_id, "table_id")
        if "params" not in self.permit or "signature" not in self.permit:
            raise ValueError("permit must carry params and signature")

    def to_msg(self) -> Dict[str, Any]:
        return {"with_permit": {
            "query": {"player_private_data": {"table_id": self.table_id}},
            "permit": self.permit,
        }}


@dataclass(frozen=True)
class CommunityCardsQuery:
    table_id: int
    game_state: str
    secret_key: int

    def __post_init__(self):
        _check_u32(self.table_id, "table_id")
        _check_game_state(self.game_state)
        _check_secret(self.secret_key, "secret_key")

    def to_msg(self) -> Dict[str, Any]:
        return {"community_cards": {
            "table_id": self.table_id,
            "game_state": self.game_state,
            "secret_key": format_u64(self.secret_key),
        }}


@dataclass(frozen=True)
class ShowdownQuery:
    table_id: int
    players_secrets: Tuple[int, ...]
    flop_secret: Optional[int] = None
    turn_secret: Optional[int] = None
    river_secret: Optional[int] = None

    def __post_init__(self):
        _check_u32(self.table_id, "table_id")
        if not self.players_secrets:
            raise ValueError("showdown query needs at least one hand secret")
        for i, secret in enumerate(self.players_secrets):
            _check_secret(secret, f"players_secrets[{i}]")
        _check_secret(self.flop_secret, "flop_secret", optional=True)
        _check_secret(self.turn_secret, "turn_secret", optional=True)
        _check_secret(self.river_secret, "river_secret", optional=True)

    def to_msg(self) -> Dict[str, Any]:
        return {"showdown": {
            "table_id": self.table_id,
            "players_secrets": [format_u64(s) for s in self.players_secrets],
            "flop_secret": _opt(self.flop_secret),
            "turn_secret": _opt(self.turn_secret),
            "river_secret": _opt(self.river_secret),
        }}


def _opt(value: Optional[int]) -> Optional[str]:
    return None if value is None else format_u64(value)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlayerPrivateData:
    table_id: int
    hand_ref: int
    hand: List[Card]
    hand_secret: int
    flop_secret_share: int
    turn_secret_share: Optional[int] = None
    river_secret_share: Optional[int] = None

    def share_for(self, phase_name: str) -> Optional[int]:
        return {
            "flop": self.flop_secret_share,
            "turn": self.turn_secret_share,
            "river": self.river_secret_share,
        }.get(phase_name)

    @classmethod
    def from_json(cls, data: Any) -> "PlayerPrivateData":
        # the permit query answers with a JSON document encoded as a string
        if isinstance(data, str):
            data = loads(data)
        obj = _require_dict(data, "player private data")
        return cls(
            table_id=_int_field(obj, "table_id"),
            hand_ref=_int_field(obj, "hand_ref"),
            hand=_cards_field(obj, "hand"),
            hand_secret=parse_u64(_get(obj, "hand_secret"), "hand_secret"),
            flop_secret_share=parse_u64(_get(obj, "flop_secret_share"), "flop_secret_share"),
            turn_secret_share=parse_optional_u64(obj.get("turn_secret_share"), "turn_secret_share"),
            river_secret_share=parse_optional_u64(obj.get("river_secret_share"), "river_secret_share"),
        )


@dataclass(frozen=True)
class CommunityCards:
    table_id: int
    hand_ref: int
    game_state: str
    cards: List[Card]

    @classmethod
    def from_json(cls, data: Any) -> "CommunityCards":
        obj = _require_dict(data, "community cards")
        game_state = _get(obj, "game_state")
        if game_state not in GAME_STATES:
            raise MalformedResponse(f"unknown game_state {game_state!r}")
        return cls(
            table_id=_int_field(obj, "table_id"),
            hand_ref=_int_field(obj, "hand_ref"),
            game_state=game_state,
            cards=_cards_field(obj, "community_cards"),
        )


@dataclass(frozen=True)
class ShowdownReveal:
    table_id: int
    hand_ref: int
    players_cards: List[Tuple[str, List[Card]]]
    community_cards: Optional[List[Card]] = None

    @classmethod
    def from_json(cls, data: Any) -> "ShowdownReveal":
        obj = _require_dict(data, "showdown")
        pairs = _get(obj, "players_cards")
        if not isinstance(pairs, list):
            raise MalformedResponse("players_cards must be a list")
        players_cards = []
        for entry in pairs:
            if not isinstance(entry, (list, tuple)) or len(entry) != 2 or not isinstance(entry[0], str):
                raise MalformedResponse(f"bad players_cards entry {entry!r}")
            players_cards.append((entry[0], _decode_card_list(entry[1], "players_cards")))
        community = obj.get("community_cards")
        return cls(
            table_id=_int_field(obj, "table_id"),
            hand_ref=_int_field(obj, "hand_ref"),
            players_cards=players_cards,
            community_cards=None if community is None else _decode_card_list(community, "community_cards"),
        )


@dataclass(frozen=True)
class StartGameAck:
    table_id: int
    hand_ref: int
    players: List[str]

    @classmethod
    def from_json(cls, data: Any) -> "StartGameAck":
        obj = _require_dict(data, "start game")
        players = _get(obj, "players")
        if not isinstance(players, list) or not all(isinstance(p, str) for p in players):
            raise MalformedResponse("players must be a list of usernames")
        return cls(table_id=_int_field(obj, "table_id"), hand_ref=_int_field(obj, "hand_ref"), players=players)


@dataclass(frozen=True)
class LastHandLog:
    """Plaintext audit of the previous hand, logged when the next one starts."""

    showdown_players: List[Tuple[str, List[Card]]]
    community_cards: List[Card]
    retrieved_at: Dict[str, Optional[str]] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Any) -> "LastHandLog":
        obj = _require_dict(data, "last hand log")
        try:
            players = [
                (p["username"], [parse_card_str(c) for c in p["hand"]])
                for p in _get(obj, "showdown_players")
            ]
            community = [parse_card_str(c) for c in _get(obj, "community_cards")]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponse(f"bad last hand log: {e}") from e
        retrieved = {
            key[:-len("_retrieved_at")]: (None if obj.get(key) is None else str(obj.get(key)))
            for key in ("flop_retrieved_at", "turn_retrieved_at", "river_retrieved_at", "showdown_retrieved_at")
        }
        return cls(showdown_players=players, community_cards=community, retrieved_at=retrieved)


_PAYLOAD_TYPES = {
    "start_game": StartGameAck,
    "last_hand": LastHandLog,
    "community_cards": CommunityCards,
    "showdown": ShowdownReveal,
}


def decode_payload(data: Any):
    """Decode a tagged execution payload ({"type": ..., ...})."""
    if isinstance(data, (str, bytes, bytearray)):
        data = loads(data)
    obj = _require_dict(data, "payload")
    tag = obj.get("type")
    decoder = _PAYLOAD_TYPES.get(tag) if isinstance(tag, str) else None
    if decoder is None:
        raise MalformedResponse(f"unknown payload type {tag!r}")
    return decoder.from_json(obj)


def _require_dict(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedResponse(f"{what}: expected an object, got {type(data).__name__}")
    return data


def _get(obj: Dict[str, Any], key: str) -> Any:
    if key not in obj:
        raise MalformedResponse(f"missing field {key!r}")
    return obj[key]


def _int_field(obj: Dict[str, Any], key: str) -> int:
    value = _get(obj, key)
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= U32_MAX:
        raise MalformedResponse(f"{key}: expected u32, got {value!r}")
    return value


def _decode_card_list(values: Any, key: str) -> List[Card]:
    if not isinstance(values, list):
        raise MalformedResponse(f"{key}: expected a list of cards")
    try:
        return decode_cards(values)
    except ValueError as e:
        raise MalformedResponse(f"{key}: {e}") from e


def _cards_field(obj: Dict[str, Any], key: str) -> List[Card]:
    return _decode_card_list(_get(obj, key), key)
