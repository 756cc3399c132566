"""
Connection to the ledger's REST (LCD) endpoint, built on aiohttp.

This is the only module that performs network I/O. It raises the boundary
exceptions from cards_distributor.errors; turning those into routing
decisions is left to the query client, fallback path and controller.
"""

import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional, Protocol

import aiohttp

from cards_distributor import messages
from cards_distributor.errors import ContractError, MalformedResponse, QueryTimeout, QueryUnavailable
from cards_distributor.settings import Settings

QUERY_PATH = "/compute/v1beta1/query/{address}"
BROADCAST_PATH = "/cosmos/tx/v1beta1/txs"
TX_PATH = "/cosmos/tx/v1beta1/txs/{txhash}"
EXECUTE_MSG_TYPE = "/secret.compute.v1beta1.MsgExecuteContract"


class TxSigner(Protocol):
    """Wallet side of transaction signing; returns base64 encoded tx bytes."""

    async def sign_tx(self, sender: str, msgs: List[Dict[str, Any]], gas_limit: int, chain_id: str) -> str:
        ...


class LcdClient:
    """Queries and executes contract messages over HTTP."""

    def __init__(self, base_url: str, chain_id: str, tx_signer: Optional[TxSigner] = None,
                 session: Optional[aiohttp.ClientSession] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self.chain_id = chain_id
        self.tx_signer = tx_signer
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, settings: Settings, tx_signer: Optional[TxSigner] = None) -> "LcdClient":
        return cls(settings.lcd_url, settings.chain_id, tx_signer=tx_signer, timeout=settings.query_timeout)

    async def __aenter__(self):
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        session = self._ensure_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, **kwargs) as resp:
                text = await resp.text()
                status = resp.status
        except asyncio.TimeoutError as e:
            raise QueryTimeout(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            raise QueryUnavailable(f"{method} {path} failed: {e}") from e

        if status >= 400:
            message = _error_message(text)
            if status in (502, 503, 504):
                raise QueryUnavailable(f"{method} {path} answered {status}: {message}")
            raise ContractError(message, status=status)

        body = messages.loads(text) if text else {}
        if not isinstance(body, dict):
            raise MalformedResponse(f"{method} {path}: expected an object")
        return body

    async def query(self, contract_address: str, code_hash: str, query: Dict[str, Any]) -> Any:
        """Run a read-only contract query and return the decoded result."""
        encoded = base64.b64encode(messages.dumps(query).encode("utf-8")).decode("ascii")
        body = await self._request(
            "GET",
            QUERY_PATH.format(address=contract_address),
            params={"query": encoded, "code_hash": code_hash},
        )
        data = body.get("data")
        if data is None:
            raise MalformedResponse("query response has no data field")
        try:
            raw = base64.b64decode(data, validate=True)
        except (ValueError, TypeError) as e:
            raise MalformedResponse(f"query data is not base64: {e}") from e
        return messages.loads(raw)

    async def execute(self, sender: str, contract_address: str, code_hash: str,
                      msg: Dict[str, Any], gas_limit: int = 50_000) -> str:
        """Sign and broadcast a MsgExecuteContract; returns the tx hash."""
        if self.tx_signer is None:
            raise ContractError("No transaction signer configured")
        execute_msg = {
            "@type": EXECUTE_MSG_TYPE,
            "sender": sender,
            "contract": contract_address,
            "code_hash": code_hash,
            "msg": msg,
            "sent_funds": [],
        }
        try:
            tx_bytes = await self.tx_signer.sign_tx(sender, [execute_msg], gas_limit, self.chain_id)
        except Exception as e:
            raise ContractError(f"Signing transaction for {sender} failed: {e}") from e
        body = await self._request(
            "POST", BROADCAST_PATH,
            json={"tx_bytes": tx_bytes, "mode": "BROADCAST_MODE_SYNC"},
        )
        tx_response = body.get("tx_response") or {}
        txhash = tx_response.get("txhash")
        code = tx_response.get("code", 0)
        if code:
            raise ContractError(tx_response.get("raw_log", "broadcast rejected"), code=code)
        if not txhash:
            raise MalformedResponse("broadcast response has no txhash")
        logging.info(f"Broadcast {next(iter(msg), '?')} from {sender}: {txhash}")
        return txhash

    async def wait_for_tx(self, txhash: str, timeout: float = 60.0, poll_interval: float = 2.0) -> Dict[str, Any]:
        """Poll until the transaction is included in a block."""

        async def _poll():
            while True:
                try:
                    body = await self._request("GET", TX_PATH.format(txhash=txhash))
                    return body.get("tx_response") or body
                except ContractError as e:
                    # not indexed yet
                    if e.status != 404:
                        raise
                await asyncio.sleep(poll_interval)

        try:
            return await asyncio.wait_for(_poll(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise QueryTimeout(f"tx {txhash} not included after {timeout}s") from e


def _error_message(text: str) -> str:
    """Pull the node's error message out of an error body, if it is JSON."""
    try:
        body = messages.loads(text)
    except MalformedResponse:
        return text
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return text
