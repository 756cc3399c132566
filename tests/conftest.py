import asyncio
import base64
import hashlib
import random
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest

from cards_distributor import messages
from cards_distributor.contract_info import ContractInfo
from cards_distributor.controller import GamePhaseController
from cards_distributor.database import DatabaseManager
from cards_distributor.errors import ContractError, QueryTimeout, QueryUnavailable
from cards_distributor.fallback import FallbackExecutor
from cards_distributor.permit import PermitBuilder
from cards_distributor.query_client import QueryClient
from cards_distributor.session import GameSession, Participant
from cards_distributor.share_math import split_secret

CONTRACT_ADDRESS = "secret1distributor0000000000000000000000000"
CODE_HASH = "c0ffee" * 10 + "abcd"
OWNER = "secret1owner00000000000000000000000000000000"
CHAIN_ID = "pulsar-3"
ADDRESSES = {
    "P1": "secret1p1xxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx",
    "P2": "secret1p2xxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx",
    "P3": "secret1p3xxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx",
}


def fake_signature(address: str, sign_doc: Dict[str, Any]) -> str:
    digest = hashlib.sha256((address + messages.dumps(sign_doc)).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def permit_sign_doc(params: Dict[str, Any]) -> Dict[str, Any]:
    """Rebuild the document a permit's signature covers from its params."""
    return {
        "chain_id": params["chain_id"],
        "account_number": "0",
        "sequence": "0",
        "fee": {"amount": [{"denom": "uscrt", "amount": "0"}], "gas": "1"},
        "msgs": [{"type": "query_permit", "value": {
            "permit_name": params["permit_name"],
            "allowed_tokens": params["allowed_tokens"],
            "permissions": params["permissions"],
        }}],
        "memo": "",
    }


class FakeSigner:
    """Wallet double: signs with a hash bound to its own address."""

    def __init__(self, address: str, fail: bool = False):
        self.address = address
        self.fail = fail
        self.signed: List[Dict[str, Any]] = []

    async def sign_amino(self, signer_address, sign_doc):
        if self.fail:
            raise RuntimeError("wallet locked")
        self.signed.append(sign_doc)
        return {
            "pub_key": {
                "type": "tendermint/PubKeySecp256k1",
                "value": base64.b64encode(signer_address.encode("utf-8")).decode("ascii"),
            },
            "signature": fake_signature(signer_address, sign_doc),
        }


class FakeTable:
    def __init__(self, hand_ref: int, players: List[Dict[str, Any]], rng: random.Random):
        deck = [(suit << 4) | rank for suit in range(4) for rank in range(1, 14)]
        rng.shuffle(deck)
        self.hand_ref = hand_ref
        self.players = []
        for info in players:
            self.players.append({
                "username": info["username"],
                "player_id": info["player_id"],
                "public_key": info["public_key"],
                "hand": [deck.pop(), deck.pop()],
                "hand_secret": rng.getrandbits(64),
            })
        self.board = {"flop": [deck.pop() for _ in range(3)], "turn": [deck.pop()], "river": [deck.pop()]}
        self.secrets: Dict[str, int] = {}
        for name in ("flop", "turn", "river"):
            secret = rng.getrandbits(64)
            self.secrets[name] = secret
            shares = split_secret(secret, len(self.players), rng=lambda: rng.getrandbits(64))
            for player, share in zip(self.players, shares):
                player[f"{name}_secret_share"] = share
        self.retrieved_at: Dict[str, Optional[str]] = {"flop": None, "turn": None, "river": None, "showdown": None}


class FakeContract:
    """In-memory stand-in for the LCD connection and the contract behind it.

    Implements the same query/execute/wait_for_tx surface as LcdClient.
    """

    def __init__(self, address: str = CONTRACT_ADDRESS, code_hash: str = CODE_HASH,
                 owner: str = OWNER, chain_id: str = CHAIN_ID, seed: int = 7):
        self.address = address
        self.code_hash = code_hash
        self.owner = owner
        self.chain_id = chain_id
        self.rng = random.Random(seed)
        self.tables: Dict[int, FakeTable] = {}
        self.block_time = 1_700_000_000_000_000_000

        # failure injection
        self.unreachable_addresses = set()   # private-data queries signed by these fail
        self.down_queries = set()            # query kinds that fail ("community_cards", "showdown")
        self.query_delays: Dict[str, float] = {}
        self.execute_unreachable = False
        self.never_included = False
        self.inclusion_delays: Dict[int, float] = {}   # per table, before a tx is included

        self.queries: List[Dict[str, Any]] = []
        self.executed: List[Dict[str, Any]] = []
        self.txs: Dict[str, Dict[str, Any]] = {}
        self.tx_tables: Dict[str, Any] = {}
        self.gas_limits: List[int] = []

    # -- transport surface -------------------------------------------------

    async def query(self, contract_address, code_hash, query):
        self.queries.append(query)
        if contract_address != self.address or code_hash != self.code_hash:
            raise ContractError("contract not found", status=500)
        kind = next(iter(query))
        if kind in self.down_queries:
            raise QueryUnavailable(f"GET query {kind} failed: connection refused")

        if kind == "with_permit":
            body = query["with_permit"]
            viewer = self._validate_permit(body["permit"])
            if viewer in self.unreachable_addresses:
                raise QueryUnavailable("GET query failed: connection reset")
            delay = self.query_delays.get(viewer)
            if delay:
                await asyncio.sleep(delay)
            return self._private_data(body["query"]["player_private_data"]["table_id"], viewer)
        if kind == "community_cards":
            return self._query_community(query["community_cards"])
        if kind == "showdown":
            return self._query_showdown(query["showdown"])
        raise ContractError(f"unknown query {kind}", status=400)

    async def execute(self, sender, contract_address, code_hash, msg, gas_limit=50_000):
        if self.execute_unreachable:
            raise QueryUnavailable("POST /cosmos/tx/v1beta1/txs failed: connection refused")
        self.executed.append(msg)
        self.gas_limits.append(gas_limit)
        txhash = hashlib.sha256(f"{len(self.executed)}{messages.dumps(msg)}".encode()).hexdigest().upper()
        self.block_time += 6_000_000_000
        self.tx_tables[txhash] = next(iter(msg.values())).get("table_id")
        try:
            if sender != self.owner:
                raise ContractError("Unauthorized")
            attributes = self._handle_execute(msg)
        except ContractError as e:
            self.txs[txhash] = {"txhash": txhash, "code": 3, "raw_log": e.message, "logs": []}
            return txhash
        self.txs[txhash] = {
            "txhash": txhash,
            "code": 0,
            "logs": [{"msg_index": 0, "events": [
                {"type": "message", "attributes": [{"key": "action", "value": "execute"}]},
                {"type": WASM, "attributes": [{"key": "contract_address", "value": self.address}] + attributes},
            ]}],
        }
        return txhash

    async def wait_for_tx(self, txhash, timeout=60.0, poll_interval=2.0):
        if self.never_included:
            raise QueryTimeout(f"tx {txhash} not included after {timeout}s")
        delay = self.inclusion_delays.get(self.tx_tables.get(txhash))
        if delay:
            await asyncio.sleep(delay)
        return self.txs[txhash]

    # -- contract semantics ------------------------------------------------

    def _validate_permit(self, permit: Dict[str, Any]) -> str:
        params = permit["params"]
        signature = permit["signature"]
        address = base64.b64decode(signature["pub_key"]["value"]).decode("utf-8")
        if signature["signature"] != fake_signature(address, permit_sign_doc(params)):
            raise ContractError("Failed to verify signatures for the given permit", status=500)
        if params["chain_id"] != self.chain_id:
            raise ContractError(f"Permit chain_id {params['chain_id']} is not {self.chain_id}", status=500)
        if self.address not in params["allowed_tokens"]:
            raise ContractError(
                f"Permit doesn't apply to token {self.address!r}, allowed tokens: {params['allowed_tokens']}",
                status=500,
            )
        return address

    def _table(self, table_id) -> FakeTable:
        table = self.tables.get(table_id)
        if table is None:
            raise ContractError("No table found", status=500)
        return table

    def _private_data(self, table_id, viewer):
        table = self._table(table_id)
        for player in table.players:
            if player["public_key"] == viewer:
                return messages.dumps({
                    "table_id": table_id,
                    "hand_ref": table.hand_ref,
                    "hand": player["hand"],
                    "hand_secret": str(player["hand_secret"]),
                    "flop_secret_share": str(player["flop_secret_share"]),
                    "turn_secret_share": str(player["turn_secret_share"]),
                    "river_secret_share": str(player["river_secret_share"]),
                })
        raise ContractError("No player found", status=500)

    def _query_community(self, body):
        table = self._table(body["table_id"])
        state = body["game_state"]
        if state not in table.board:
            raise ContractError("Invalid game state", status=500)
        if table.secrets[state] != int(body["secret_key"]):
            raise ContractError("Invalid viewing key", status=500)
        return {"table_id": body["table_id"], "hand_ref": table.hand_ref,
                "game_state": state, "community_cards": list(table.board[state])}

    def _check_phase_secrets(self, table: FakeTable, body) -> List[int]:
        community: List[int] = []
        for name in ("flop", "turn", "river"):
            given = body.get(f"{name}_secret")
            if given is None:
                continue
            if table.secrets[name] != int(given):
                raise ContractError("Invalid secret key", status=500)
            community.extend(table.board[name])
        return community

    def _match_players(self, table: FakeTable, secrets: Iterable[str]):
        matched = []
        for secret in secrets:
            player = next((p for p in table.players if p["hand_secret"] == int(secret)), None)
            if player is None:
                raise ContractError("Player not found", status=500)
            matched.append(player)
        return matched

    def _query_showdown(self, body):
        table = self._table(body["table_id"])
        community = self._check_phase_secrets(table, body)
        players = self._match_players(table, body["players_secrets"])
        return {"table_id": body["table_id"], "hand_ref": table.hand_ref,
                "players_cards": [[p["player_id"], p["hand"]] for p in players],
                "community_cards": community}

    def _handle_execute(self, msg):
        kind = next(iter(msg))
        body = msg[kind]
        if kind == "start_game":
            return self._start_game(body)
        if kind == "community_cards":
            return self._community_cards(body)
        if kind == "showdown":
            return self._showdown(body)
        raise ContractError(f"unknown execute message {kind}")

    def _start_game(self, body):
        players = body["players"]
        if not 2 <= len(players) <= 9:
            raise ContractError(f"Players invalide count: {len(players)}")
        if len({p["public_key"] for p in players}) != len(players):
            raise ContractError("Duplicate public key")

        attributes = []
        previous = self.tables.get(body["table_id"])
        if previous is not None:
            shown = [p for p in previous.players if p["player_id"] in body["prev_hand_showdown_players"]]
            log = {
                "type": "last_hand",
                "showdown_players": [{"username": p["username"], "hand": [card_text(c) for c in p["hand"]]}
                                     for p in shown],
                "community_cards": [card_text(c) for name in ("flop", "turn", "river") for c in previous.board[name]],
            }
            for name, value in previous.retrieved_at.items():
                log[f"{name}_retrieved_at"] = value
            attributes.append({"key": "previous_hand_log", "value": messages.dumps(log)})

        self.tables[body["table_id"]] = FakeTable(body["hand_ref"], players, self.rng)
        response = {"type": "start_game", "table_id": body["table_id"], "hand_ref": body["hand_ref"],
                    "players": [p["username"] for p in players]}
        return [{"key": "response", "value": messages.dumps(response)}] + attributes

    def _community_cards(self, body):
        table = self._table(body["table_id"])
        state = body["game_state"]
        if state not in table.board:
            raise ContractError(f"Game state error in method distribute_community_cards "
                                f"for table {body['table_id']}: got {state}")
        if table.retrieved_at[state] is not None:
            raise ContractError("Cards already retrieved by contract owner...")
        table.retrieved_at[state] = str(self.block_time)
        response = {"type": "community_cards", "table_id": body["table_id"], "hand_ref": table.hand_ref,
                    "game_state": state, "community_cards": list(table.board[state])}
        return [{"key": "response", "value": messages.dumps(response)}]

    def _showdown(self, body):
        table = self._table(body["table_id"])
        if table.retrieved_at["showdown"] is not None:
            raise ContractError("Cards already retrieved by contract owner...")
        self._check_phase_secrets(table, body)
        players = self._match_players(table, body["players_secrets"])
        show = set(body.get("show_cards") or [])
        if show:
            players = [p for p in players if p["public_key"] in show]
        if body.get("all_in_showdown"):
            community = [c for name in ("flop", "turn", "river") if table.retrieved_at[name] is None
                         for c in table.board[name]]
        else:
            community = [c for name in ("flop", "turn", "river") for c in table.board[name]]
        table.retrieved_at["showdown"] = str(self.block_time)
        response = {"type": "showdown", "table_id": body["table_id"], "hand_ref": table.hand_ref,
                    "players_cards": [[p["player_id"], p["hand"]] for p in players],
                    "community_cards": community}
        return [{"key": "response", "value": messages.dumps(response)}]

    # -- test helpers ------------------------------------------------------

    def player(self, table_id: int, public_key: str) -> Dict[str, Any]:
        return next(p for p in self.tables[table_id].players if p["public_key"] == public_key)


WASM = "wasm"
SUIT_SYMBOLS = ["♣", "♦", "♥", "♠"]
RANK_TEXT = ["A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K"]


def card_text(byte: int) -> str:
    return f"{SUIT_SYMBOLS[byte >> 4]}{RANK_TEXT[(byte & 0x0F) - 1]}"


@pytest.fixture
def contract() -> FakeContract:
    return FakeContract()


@pytest.fixture
def contract_info() -> ContractInfo:
    return ContractInfo(contract_address=CONTRACT_ADDRESS, code_hash=CODE_HASH)


@pytest.fixture
def make_session() -> Callable[..., GameSession]:
    """Factory for sessions at table 999 with the given player identities."""

    def _factory(*identities: str, table_id: int = 999, hand_ref: int = 1, prev_showdown=()) -> GameSession:
        identities = identities or ("P2", "P3")
        participants = [Participant(i, ADDRESSES[i], username=i.lower()) for i in identities]
        return GameSession(table_id, hand_ref, participants, prev_hand_showdown_players=prev_showdown)

    return _factory


@pytest.fixture
def session(make_session) -> GameSession:
    return make_session("P2", "P3")


@pytest.fixture
def signers() -> Dict[str, FakeSigner]:
    return {identity: FakeSigner(address) for identity, address in ADDRESSES.items()}


@pytest.fixture
def permit_factory(signers):
    """Async factory building a permit for one identity."""

    async def _build(identity: str, targets: Optional[Iterable[str]] = None, chain_id: str = CHAIN_ID):
        builder = PermitBuilder(signers[identity], chain_id)
        return await builder.build(targets if targets is not None else [CONTRACT_ADDRESS])

    return _build


@pytest.fixture
def query_client(contract, contract_info) -> QueryClient:
    return QueryClient(contract, contract_info, timeout=1.0)


@pytest.fixture
def fallback(contract, contract_info) -> FallbackExecutor:
    return FallbackExecutor(contract, contract_info, OWNER, inclusion_timeout=1.0, poll_interval=0.01)


@pytest.fixture
def controller(query_client, fallback) -> GamePhaseController:
    return GamePhaseController(query_client, fallback, share_timeout=1.0)


@pytest.fixture
def database_manager(tmp_path, monkeypatch):
    """Provide isolated DatabaseManager instance with temporary SQLite file."""

    db_path = tmp_path / "test_hand_log.sqlite"
    manager = DatabaseManager(str(db_path))

    # Ensure module-level helpers return this instance
    monkeypatch.setattr("cards_distributor.database._db_manager", manager, raising=False)

    yield manager

    manager.close()


@pytest.fixture(autouse=True)
def reset_database_singleton(monkeypatch):
    """Ensure database singleton is reset between tests."""

    monkeypatch.setattr("cards_distributor.database._db_manager", None, raising=False)
