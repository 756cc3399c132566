"""
Showdown ranking for Poker Cards Distributor.

The contract reveals the hole cards of the players whose hand secrets were
presented, plus the community cards. Ranking them is done here.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from cards_distributor.cards import Card
from cards_distributor.hand_evaluation import HandValue, best_hand, hand_description
from cards_distributor.messages import ShowdownReveal


@dataclass(frozen=True)
class RankedHand:
    identity: str
    hole_cards: List[Card]
    value: Optional[HandValue]
    description: str


@dataclass(frozen=True)
class ShowdownResult:
    ranking: List[RankedHand]
    winners: List[str]
    community_cards: List[Card] = field(default_factory=list)


class ShowdownResolver:
    """Orders revealed hands from best to worst and picks the winners."""

    def resolve(self, reveal: ShowdownReveal, known_community: Sequence[Card] = ()) -> ShowdownResult:
        community = self._community(reveal, known_community)
        hands: List[RankedHand] = []
        for identity, hole in reveal.players_cards:
            cards = list(hole) + community
            if len(cards) < 5:
                hands.append(RankedHand(identity, list(hole), None, "Not enough cards to rank"))
                continue
            value = best_hand(cards)
            hands.append(RankedHand(identity, list(hole), value, hand_description(*value)))

        ranked = [h for h in hands if h.value is not None]
        ranked.sort(key=lambda h: h.value, reverse=True)
        unranked = [h for h in hands if h.value is None]

        winners: List[str] = []
        if ranked:
            best_val = ranked[0].value
            winners = [h.identity for h in ranked if h.value == best_val]
        logging.info(f"Showdown on table {reveal.table_id}: winners {winners or 'undetermined'}")
        return ShowdownResult(ranking=ranked + unranked, winners=winners, community_cards=community)

    @staticmethod
    def _community(reveal: ShowdownReveal, known: Sequence[Card]) -> List[Card]:
        """Merge cards already on the board with whatever the reveal adds.

        An all-in showdown reveals only the cards not dealt yet, while a
        normal one echoes the whole board back; duplicates are dropped.
        """
        merged: List[Card] = list(known)
        for card in reveal.community_cards or []:
            if card not in merged:
                merged.append(card)
        return merged[:5]
