"""
Permit-authenticated and secret-authenticated contract queries.

Queries are read-only and cost nothing, which makes them the fast path for
revealing cards. Every call returns Ok or Err; the error kind tells the
controller whether falling back to the execution path is worthwhile.
"""

import asyncio
import logging
import re
from typing import Any, Dict, Optional, Sequence, Tuple

from cards_distributor.contract_info import ContractInfo
from cards_distributor.errors import ContractError, MalformedResponse, QueryTimeout, QueryUnavailable
from cards_distributor.messages import (
    CommunityCards,
    CommunityCardsQuery,
    PlayerPrivateData,
    PrivateDataQuery,
    ShowdownQuery,
    ShowdownReveal,
)
from cards_distributor.permit import Permit
from cards_distributor.phases import Phase
from cards_distributor.results import Err, ErrorKind, Ok, QueryFailure, Result
from cards_distributor.session import Participant

# contract rejections that mean "you are not allowed to see this"
_UNAUTHORIZED = re.compile(
    r"unauthori[sz]ed|permit|signature|invalid viewing key|invalid secret|not allowed",
    re.IGNORECASE,
)


def classify(error: Exception) -> QueryFailure:
    """Map a boundary exception to the error kind the controller routes on."""
    if isinstance(error, (QueryTimeout, asyncio.TimeoutError)):
        return QueryFailure(ErrorKind.TIMEOUT, str(error) or "timed out")
    if isinstance(error, QueryUnavailable):
        return QueryFailure(ErrorKind.QUERY_UNAVAILABLE, str(error))
    if isinstance(error, ContractError):
        if _UNAUTHORIZED.search(error.message):
            return QueryFailure(ErrorKind.UNAUTHORIZED, error.message)
        return QueryFailure(ErrorKind.MALFORMED_RESPONSE, error.message)
    if isinstance(error, (MalformedResponse, ValueError)):
        return QueryFailure(ErrorKind.MALFORMED_RESPONSE, str(error))
    raise error


class QueryClient:
    """Issues contract queries through an injected connection."""

    def __init__(self, connection, contract: ContractInfo, timeout: float = 10.0):
        self.connection = connection
        self.contract = contract
        self.timeout = timeout
        self._private_cache: Dict[Tuple[int, int, str], PlayerPrivateData] = {}

    async def _query(self, msg: Dict[str, Any]) -> Any:
        return await asyncio.wait_for(
            self.connection.query(self.contract.contract_address, self.contract.code_hash, msg),
            timeout=self.timeout,
        )

    async def query_private_data(self, table_id: int, participant: Participant,
                                 permit: Permit, hand_ref: Optional[int] = None) -> Result:
        """Read a participant's own hole cards, hand secret and phase shares."""
        if permit.signer_address != participant.public_address:
            logging.warning(f"Permit from {permit.signer_address} refused for {participant.identity}")
            return Err(QueryFailure(ErrorKind.UNAUTHORIZED,
                                    f"permit signer does not match {participant.identity}"))
        if not permit.covers(self.contract.contract_address):
            return Err(QueryFailure(ErrorKind.UNAUTHORIZED,
                                    f"permit does not cover {self.contract.contract_address}"))

        cache_key = (table_id, hand_ref, participant.public_address)
        if hand_ref is not None and cache_key in self._private_cache:
            return Ok(self._private_cache[cache_key])

        try:
            request = PrivateDataQuery(table_id=table_id, permit=permit.to_query_dict())
            data = PlayerPrivateData.from_json(await self._query(request.to_msg()))
        except Exception as e:
            failure = classify(e)
            logging.info(f"Private data query for {participant.identity} on table {table_id} failed: {failure.kind.value}")
            return Err(failure)

        if data.table_id != table_id or (hand_ref is not None and data.hand_ref != hand_ref):
            return Err(QueryFailure(ErrorKind.MALFORMED_RESPONSE,
                                    f"answer is for table {data.table_id} hand {data.hand_ref}"))
        self._private_cache[(table_id, data.hand_ref, participant.public_address)] = data
        return Ok(data)

    async def query_community_cards(self, table_id: int, phase: Phase, secret: int) -> Result:
        """Reveal a phase's community cards by proving possession of its secret."""
        try:
            request = CommunityCardsQuery(table_id=table_id, game_state=phase.game_state, secret_key=secret)
            result = CommunityCards.from_json(await self._query(request.to_msg()))
        except Exception as e:
            failure = classify(e)
            logging.info(f"Community cards query for {phase} on table {table_id} failed: {failure.kind.value}")
            return Err(failure)
        return Ok(result)

    async def query_showdown(self, table_id: int, players_secrets: Sequence[int],
                             flop_secret: Optional[int] = None, turn_secret: Optional[int] = None,
                             river_secret: Optional[int] = None) -> Result:
        """Reveal the showdown hands for the given hand secrets."""
        try:
            request = ShowdownQuery(
                table_id=table_id,
                players_secrets=tuple(players_secrets),
                flop_secret=flop_secret,
                turn_secret=turn_secret,
                river_secret=river_secret,
            )
            result = ShowdownReveal.from_json(await self._query(request.to_msg()))
        except Exception as e:
            failure = classify(e)
            logging.info(f"Showdown query on table {table_id} failed: {failure.kind.value}")
            return Err(failure)
        return Ok(result)

    def forget(self, table_id: int) -> None:
        """Drop cached private data for a table (call after the hand resolves)."""
        for key in [k for k in self._private_cache if k[0] == table_id]:
            del self._private_cache[key]
