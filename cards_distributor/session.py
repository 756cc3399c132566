"""
Hand session model for Poker Cards Distributor.

A GameSession is the explicit state of one hand at one table. It is created
when the hand starts, mutated only by the phase controller, and archived
(written to the hand log) once the hand resolves.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from cards_distributor.cards import Card
from cards_distributor.messages import StartGamePlayer
from cards_distributor.phases import COMMUNITY_PHASES, Phase
from cards_distributor.share_store import SecretShareStore

MIN_PLAYERS = 2
MAX_PLAYERS = 9


class Participant:
    """A player dealt into a hand.

    identity and public_address never change; hand_secret is filled in only
    when the player reveals it for showdown.
    """

    def __init__(self, identity: str, public_address: str, username: Optional[str] = None):
        if not identity or not public_address:
            raise ValueError("Participant needs an identity and a public address")
        self._identity = identity
        self._public_address = public_address
        self.username = username or identity
        self.hand_secret: Optional[int] = None

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def public_address(self) -> str:
        return self._public_address

    def to_start_game_player(self) -> StartGamePlayer:
        return StartGamePlayer(username=self.username, player_id=self.identity, public_key=self.public_address)

    def __repr__(self):
        return f"Participant({self.identity!r}, {self.public_address!r})"


@dataclass(frozen=True)
class ShowdownRecord:
    """Everything the showdown query needs, gathered once at resolution."""

    hand_secrets: Dict[str, int]
    flop_secret: Optional[int] = None
    turn_secret: Optional[int] = None
    river_secret: Optional[int] = None


class GameSession:
    """One hand at one table."""

    def __init__(self, table_id: int, hand_ref: int, participants: Iterable[Participant],
                 prev_hand_showdown_players: Iterable[str] = ()):
        self.table_id = table_id
        self.hand_ref = hand_ref
        self.participants: List[Participant] = list(participants)
        self.prev_hand_showdown_players = list(prev_hand_showdown_players)
        self._validate_participants()

        self.phase = Phase.INIT
        self.share_store = SecretShareStore(table_id, hand_ref)
        self.reveals: Dict[Phase, List[Card]] = {}
        self.fallback_phases: List[Phase] = []
        self.secrets: Dict[Phase, int] = {}
        self.started = False
        # held by the controller while it moves the hand between phases
        self.transition_lock = asyncio.Lock()

        for phase in COMMUNITY_PHASES:
            self.share_store.expect(phase, self.identities)

    def _validate_participants(self):
        count = len(self.participants)
        if not MIN_PLAYERS <= count <= MAX_PLAYERS:
            raise ValueError(f"A hand needs {MIN_PLAYERS}-{MAX_PLAYERS} players, got {count}")
        if len({p.identity for p in self.participants}) != count:
            raise ValueError("Duplicate participant identity")
        if len({p.public_address for p in self.participants}) != count:
            raise ValueError("Duplicate public address")

    @property
    def identities(self) -> List[str]:
        return [p.identity for p in self.participants]

    @property
    def community_cards(self) -> List[Card]:
        cards: List[Card] = []
        for phase in COMMUNITY_PHASES:
            cards.extend(self.reveals.get(phase, []))
        return cards

    def participant(self, identity: str) -> Participant:
        for p in self.participants:
            if p.identity == identity:
                return p
        raise KeyError(f"No participant {identity!r} at table {self.table_id}")

    def missing_hand_secrets(self) -> List[str]:
        return [p.identity for p in self.participants if p.hand_secret is None]

    def showdown_record(self) -> ShowdownRecord:
        return ShowdownRecord(
            hand_secrets={p.identity: p.hand_secret for p in self.participants if p.hand_secret is not None},
            flop_secret=self.secrets.get(Phase.FLOP),
            turn_secret=self.secrets.get(Phase.TURN),
            river_secret=self.secrets.get(Phase.RIVER),
        )

    def __repr__(self):
        return f"GameSession(table={self.table_id}, hand={self.hand_ref}, phase={self.phase.value})"
