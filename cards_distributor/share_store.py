"""
Per-hand bookkeeping of secret shares for Poker Cards Distributor.

The store is append-only: a share, once accepted, is never retracted or
replaced. That keeps concurrent contributions from different participants
free of conflicts without holding any lock across awaits.
"""

import logging
from typing import Dict, Iterable, List

from cards_distributor.phases import COMMUNITY_PHASES, Phase
from cards_distributor.results import Err, MissingShares, Ok, Result
from cards_distributor.share_math import combine_shares, is_u64


class SecretShareStore:
    """Tracks which dealt participants contributed a share for each phase."""

    def __init__(self, table_id: int, hand_ref: int):
        self.table_id = table_id
        self.hand_ref = hand_ref
        self._expected: Dict[Phase, List[str]] = {}
        self._shares: Dict[Phase, Dict[str, int]] = {}

    def expect(self, phase: Phase, identities: Iterable[str]) -> None:
        """Declare the participants dealt into a phase (dealing order kept)."""
        if phase not in COMMUNITY_PHASES:
            raise ValueError(f"Phase {phase} has no game secret")
        self._expected[phase] = list(dict.fromkeys(identities))
        self._shares.setdefault(phase, {})

    def expected(self, phase: Phase) -> List[str]:
        return list(self._expected.get(phase, []))

    def add_share(self, phase: Phase, identity: str, value: int) -> bool:
        """Record a participant's share. Returns False if it was refused."""
        if identity not in self._expected.get(phase, []):
            logging.warning(f"Table {self.table_id}: share from {identity} refused, not dealt into {phase}")
            return False
        if not is_u64(value):
            logging.warning(f"Table {self.table_id}: share from {identity} for {phase} is not a u64")
            return False

        shares = self._shares[phase]
        existing = shares.get(identity)
        if existing is not None:
            if existing != value:
                logging.warning(f"Table {self.table_id}: conflicting share from {identity} for {phase} ignored")
                return False
            return True

        shares[identity] = value
        logging.debug(f"Table {self.table_id}: share for {phase} from {identity} "
                      f"({len(shares)}/{len(self._expected[phase])})")
        return True

    def has_share(self, phase: Phase, identity: str) -> bool:
        return identity in self._shares.get(phase, {})

    def missing(self, phase: Phase) -> List[str]:
        """Identities dealt into the phase that have not contributed yet."""
        shares = self._shares.get(phase, {})
        return [identity for identity in self._expected.get(phase, []) if identity not in shares]

    def is_complete(self, phase: Phase) -> bool:
        return bool(self._expected.get(phase)) and not self.missing(phase)

    def reconstruct(self, phase: Phase) -> Result:
        """Combine the shares of a phase into its game secret.

        Partial sets are never summed: the result is Err(MissingShares)
        listing the absent identities until every dealt participant is in.
        """
        if not self._expected.get(phase):
            return Err(MissingShares(phase, []))
        absent = self.missing(phase)
        if absent:
            return Err(MissingShares(phase, absent))
        return Ok(combine_shares(self._shares[phase].values()))
