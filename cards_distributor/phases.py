"""
Hand phases for Poker Cards Distributor.
"""

from enum import Enum
from typing import Optional


class Phase(str, Enum):
    INIT = "init"
    FLOP = "flop"
    TURN = "turn"
    RIVER = "river"
    SHOWDOWN = "showdown"
    RESOLVED = "resolved"

    @property
    def order(self) -> int:
        return _ORDER.index(self)

    def next(self) -> Optional["Phase"]:
        """Return the following phase, or None once resolved."""
        idx = self.order + 1
        return _ORDER[idx] if idx < len(_ORDER) else None

    @property
    def has_community_cards(self) -> bool:
        return self in COMMUNITY_PHASES

    @property
    def game_state(self) -> str:
        """Name the contract uses for the deal state matching this phase."""
        if self is Phase.INIT:
            return "pre_flop"
        if self.has_community_cards:
            return self.value
        # showdown reveals whatever was dealt last
        return "river"

    def __str__(self):
        return self.value


_ORDER = [Phase.INIT, Phase.FLOP, Phase.TURN, Phase.RIVER, Phase.SHOWDOWN, Phase.RESOLVED]

COMMUNITY_PHASES = (Phase.FLOP, Phase.TURN, Phase.RIVER)

# contract game_state names accepted on the wire
GAME_STATES = ("pre_flop", "flop", "turn", "river")
