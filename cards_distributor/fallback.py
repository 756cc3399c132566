"""
Execution-log fallback for Poker Cards Distributor.

When the query path cannot deliver, the same information can be recovered
by executing a state-changing message and reading the plaintext payload the
contract attaches to the transaction's `wasm` event. This costs a block
inclusion, so it is only ever tried after the query path has failed.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cards_distributor import messages
from cards_distributor.contract_info import ContractInfo
from cards_distributor.errors import ContractError, DistributorError, MalformedResponse, QueryTimeout
from cards_distributor.results import Err, ErrorKind, Ok, QueryFailure, Result

WASM_EVENT = "wasm"
RESPONSE_KEY = "response"
PREVIOUS_HAND_KEY = "previous_hand_log"


def _dicts(values: Any) -> List[Dict[str, Any]]:
    # entries of the wrong shape are skipped, not fatal
    if not isinstance(values, list):
        return []
    return [v for v in values if isinstance(v, dict)]


def _iter_events(tx_record: Dict[str, Any]):
    """Yield events from the per-message `logs` layout or the flat `events` one.

    Records saved by wallet tooling call the per-message logs `jsonLog`.
    """
    if not isinstance(tx_record, dict):
        return
    seen_logs = False
    for log in _dicts(tx_record.get("logs") or tx_record.get("jsonLog")):
        for event in _dicts(log.get("events")):
            seen_logs = True
            yield event
    if not seen_logs:
        yield from _dicts(tx_record.get("events"))


def extract_payloads(tx_record: Dict[str, Any], key: str = RESPONSE_KEY) -> List[str]:
    """Collect the values of `key` attributes on wasm events, in log order."""
    payloads: List[str] = []
    for event in _iter_events(tx_record):
        if event.get("type") != WASM_EVENT:
            continue
        for attribute in _dicts(event.get("attributes")):
            if attribute.get("key") == key:
                payloads.append(attribute.get("value"))
                break
    return payloads


def decode_tx_record(tx_record: Dict[str, Any]):
    """Decode the response payload (and previous hand log, if any) of a tx.

    Returns (payload, last_hand_log_or_None).
    """
    payloads = extract_payloads(tx_record)
    if not payloads:
        raise MalformedResponse("transaction carries no contract response payload")
    payload = messages.decode_payload(payloads[0])
    previous = extract_payloads(tx_record, PREVIOUS_HAND_KEY)
    last_hand = messages.decode_payload(previous[0]) if previous else None
    if last_hand is not None and not isinstance(last_hand, messages.LastHandLog):
        raise MalformedResponse(f"previous hand log has type {type(last_hand).__name__}")
    return payload, last_hand


@dataclass(frozen=True)
class Execution:
    """What one included execute message left in its transaction log."""

    payload: Any
    txhash: str
    last_hand: Optional[messages.LastHandLog] = None


class FallbackExecutor:
    """Submits execute messages and recovers their payload from the tx log."""

    def __init__(self, connection, contract: ContractInfo, sender: str,
                 inclusion_timeout: float = 60.0, poll_interval: float = 2.0, gas_limit: int = 50_000):
        self.connection = connection
        self.contract = contract
        self.sender = sender
        self.inclusion_timeout = inclusion_timeout
        self.poll_interval = poll_interval
        self.gas_limit = gas_limit

    async def execute(self, request) -> Result:
        """Run one execute message through to inclusion. One attempt, no retry.

        Returns Ok(Execution) or Err(QueryFailure).
        """
        msg = request.to_msg()
        kind = next(iter(msg))
        try:
            txhash = await self.connection.execute(
                self.sender, self.contract.contract_address, self.contract.code_hash, msg, self.gas_limit,
            )
            tx_record = await self.connection.wait_for_tx(txhash, self.inclusion_timeout, self.poll_interval)
        except (QueryTimeout, asyncio.TimeoutError) as e:
            logging.error(f"Fallback {kind} timed out: {e}")
            return Err(QueryFailure(ErrorKind.TIMEOUT, str(e) or "inclusion timed out"))
        except DistributorError as e:
            logging.error(f"Fallback {kind} failed: {e}")
            return Err(QueryFailure(ErrorKind.FALLBACK_FAILED, str(e)))

        if not isinstance(tx_record, dict):
            logging.error(f"Fallback {kind} got a non-object tx record from tx {txhash}")
            return Err(QueryFailure(ErrorKind.MALFORMED_RESPONSE, "tx record is not an object"))
        code = tx_record.get("code", 0)
        if code:
            message = tx_record.get("raw_log", f"code {code}")
            logging.error(f"Fallback {kind} rejected by contract: {message}")
            return Err(QueryFailure(ErrorKind.FALLBACK_FAILED, str(ContractError(message, code=code))))

        try:
            payload, last_hand = decode_tx_record(tx_record)
        except MalformedResponse as e:
            logging.error(f"Fallback {kind} returned an unreadable log: {e}")
            return Err(QueryFailure(ErrorKind.MALFORMED_RESPONSE, str(e)))

        logging.info(f"Fallback {kind} recovered {type(payload).__name__} from tx {txhash}")
        return Ok(Execution(payload=payload, txhash=txhash, last_hand=last_hand))
