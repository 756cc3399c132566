"""
Card encoding for Poker Cards Distributor.

The contract stores a card in one byte: the suit in the high nibble
(0..3 for clubs, diamonds, hearts, spades) and the rank in the low nibble
(1..13, ace is 1). Locally a card is a (rank, suit) tuple with ranks 2..14
so aces sort high for hand evaluation.
"""

from typing import List, Tuple

# Card representation: tuple (rank:int 2..14, suit:str one of 'cdhs')
Rank = int
Suit = str
Card = Tuple[Rank, Suit]

SUITS = 'cdhs'
# order must match the contract's plaintext audit log
SUIT_SYMBOLS = ['♣', '♦', '♥', '♠']
CONTRACT_RANKS = ['A', '2', '3', '4', '5', '6', '7', '8', '9', '10', 'J', 'Q', 'K']


def decode_card(byte: int) -> Card:
    """Convert a contract card byte into a (rank, suit) tuple."""
    if isinstance(byte, bool) or not isinstance(byte, int) or not 0 <= byte <= 0xFF:
        raise ValueError(f"Card byte out of range: {byte!r}")
    suit = byte >> 4
    rank = byte & 0x0F
    if suit > 3 or not 1 <= rank <= 13:
        raise ValueError(f"Invalid card byte: {byte}")
    return (14 if rank == 1 else rank, SUITS[suit])


def decode_cards(values) -> List[Card]:
    return [decode_card(v) for v in values]


def card_str(card: Card) -> str:
    """Convert a card to its string representation."""
    r, s = card
    names = {11: 'J', 12: 'Q', 13: 'K', 14: 'A'}
    return f"{names.get(r, r)}{s}"


def parse_card_str(text: str) -> Card:
    """Parse the contract's audit format, e.g. '♥10' or '♠A'."""
    if not text:
        raise ValueError("Empty card string")
    symbol, rank_text = text[0], text[1:]
    if symbol not in SUIT_SYMBOLS or rank_text not in CONTRACT_RANKS:
        raise ValueError(f"Invalid card string: {text!r}")
    contract_rank = CONTRACT_RANKS.index(rank_text) + 1
    return (14 if contract_rank == 1 else contract_rank, SUITS[SUIT_SYMBOLS.index(symbol)])
