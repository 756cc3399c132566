"""
Additive secret sharing arithmetic for Poker Cards Distributor.

Shares live in the ring of integers modulo 2**64. A phase secret is the
wraparound sum of every participant's share, so overflow is the defined
behaviour here and never an error.
"""

import secrets
from typing import Callable, Iterable, List, Optional

U64_MODULUS = 1 << 64
U64_MAX = U64_MODULUS - 1


def is_u64(value) -> bool:
    """Return True if value is an exact unsigned 64-bit integer."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= U64_MAX


def _check_u64(value, name: str) -> int:
    if not is_u64(value):
        raise ValueError(f"{name} must be an unsigned 64-bit integer, got {value!r}")
    return value


def wrap_add(a: int, b: int) -> int:
    """Add two u64 values modulo 2**64, discarding the carry."""
    _check_u64(a, "a")
    _check_u64(b, "b")
    return (a + b) & U64_MAX


def wrap_sub(a: int, b: int) -> int:
    """Subtract two u64 values modulo 2**64."""
    _check_u64(a, "a")
    _check_u64(b, "b")
    return (a - b) & U64_MAX


def combine_shares(shares: Iterable[int]) -> int:
    """Fold shares together with wrap_add.

    The result does not depend on the order shares arrive in.
    """
    total = 0
    for share in shares:
        total = wrap_add(total, share)
    return total


def split_secret(secret: int, count: int,
                 rng: Optional[Callable[[], int]] = None) -> List[int]:
    """Split a secret into `count` additive shares.

    The first count-1 shares are uniformly random; the last one closes the
    sum back to the secret.
    """
    _check_u64(secret, "secret")
    if count < 1:
        raise ValueError(f"Cannot split a secret into {count} shares")
    draw = rng or (lambda: secrets.randbits(64))

    shares: List[int] = []
    running = 0
    for _ in range(count - 1):
        share = _check_u64(draw(), "share")
        shares.append(share)
        running = wrap_add(running, share)
    shares.append(wrap_sub(secret, running))
    return shares
