"""
Hold'em hand ranking used to order revealed hands at showdown.
"""

import itertools
from collections import Counter
from typing import List, Sequence, Tuple

from cards_distributor.cards import Card

HandValue = Tuple[int, List[int]]

HAND_RANKS = {
    'highcard': 0,
    'pair': 1,
    'two_pair': 2,
    'trips': 3,
    'straight': 4,
    'flush': 5,
    'fullhouse': 6,
    'quads': 7,
    'straight_flush': 8,
}


def _straight_high(ranks: Sequence[int]) -> int:
    """Return the top rank of the best straight in ranks, or 0 if none."""
    present = set(ranks)
    if 14 in present:
        present.add(1)  # wheel (A-2-3-4-5)
    for high in range(14, 4, -1):
        if all(r in present for r in range(high - 4, high + 1)):
            return high
    return 0


def evaluate_5cards(cards: Sequence[Card]) -> HandValue:
    """Evaluate exactly 5 cards; a higher tuple is a better hand."""
    if len(cards) != 5:
        raise ValueError(f"Expected 5 cards, got {len(cards)}")
    ranks = sorted((r for r, _ in cards), reverse=True)
    is_flush = len({s for _, s in cards}) == 1
    high = _straight_high(ranks)

    # (count, rank) groups, biggest group first then highest rank
    groups = sorted(((cnt, r) for r, cnt in Counter(ranks).items()), reverse=True)
    counts = [cnt for cnt, _ in groups]
    by_group = [r for _, r in groups]

    if is_flush and high:
        return (HAND_RANKS['straight_flush'], [high])
    if counts[0] == 4:
        return (HAND_RANKS['quads'], by_group)
    if counts[:2] == [3, 2]:
        return (HAND_RANKS['fullhouse'], by_group)
    if is_flush:
        return (HAND_RANKS['flush'], ranks)
    if high:
        return (HAND_RANKS['straight'], [high])
    if counts[0] == 3:
        return (HAND_RANKS['trips'], by_group)
    if counts[:2] == [2, 2]:
        return (HAND_RANKS['two_pair'], by_group)
    if counts[0] == 2:
        return (HAND_RANKS['pair'], by_group)
    return (HAND_RANKS['highcard'], ranks)


def best_hand(cards: Sequence[Card]) -> HandValue:
    """Best 5-card value from 5 to 7 cards."""
    if len(cards) < 5:
        raise ValueError(f"Need at least 5 cards, got {len(cards)}")
    return max(evaluate_5cards(combo) for combo in itertools.combinations(cards, 5))


def hand_description(hand_rank: int, tiebreakers: List[int]) -> str:
    """Convert hand evaluation result to human-readable description."""

    def name(r: int) -> str:
        return {11: 'Jack', 12: 'Queen', 13: 'King', 14: 'Ace'}.get(r, str(r))

    def plural(r: int) -> str:
        return {11: 'Jacks', 12: 'Queens', 13: 'Kings', 14: 'Aces'}.get(r, f"{r}s")

    top = tiebreakers[0]
    if hand_rank == HAND_RANKS['straight_flush']:
        return "Royal Flush" if top == 14 else f"Straight Flush, {name(top)} high"
    if hand_rank == HAND_RANKS['quads']:
        return f"Four of a Kind, {plural(top)}"
    if hand_rank == HAND_RANKS['fullhouse']:
        return f"Full House, {plural(top)} over {plural(tiebreakers[1])}"
    if hand_rank == HAND_RANKS['flush']:
        return f"Flush, {name(top)} high"
    if hand_rank == HAND_RANKS['straight']:
        return "Straight, 5 high (Wheel)" if top == 5 else f"Straight, {name(top)} high"
    if hand_rank == HAND_RANKS['trips']:
        return f"Three of a Kind, {plural(top)}"
    if hand_rank == HAND_RANKS['two_pair']:
        return f"Two Pair, {plural(top)} and {plural(tiebreakers[1])}"
    if hand_rank == HAND_RANKS['pair']:
        return f"Pair of {plural(top)}"
    return f"High Card, {name(top)}"
