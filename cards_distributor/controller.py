"""
Game phase controller for Poker Cards Distributor.

Drives a hand through init -> flop -> turn -> river -> showdown -> resolved.
For every community phase it tries the query path first (reconstruct the
phase secret from everybody's shares, then prove it to the contract) and
falls back to the execution path at most once when that is not possible.
The controller is the only place where that routing decision is made.
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from cards_distributor.cards import Card
from cards_distributor.contract_info import ContractInfo
from cards_distributor.fallback import FallbackExecutor
from cards_distributor.messages import (
    AdvancePhase,
    CommunityCards,
    LastHandLog,
    ShowdownExec,
    ShowdownReveal,
    StartGame,
    StartGameAck,
)
from cards_distributor.permit import Permit
from cards_distributor.phases import Phase
from cards_distributor.query_client import QueryClient
from cards_distributor.results import Err, ErrorKind, MissingShares, Ok, QueryFailure
from cards_distributor.session import GameSession, Participant
from cards_distributor.settings import Settings
from cards_distributor.share_math import is_u64
from cards_distributor.showdown import ShowdownResolver, ShowdownResult

PATH_QUERY = "query"
PATH_EXECUTION = "execution"
PATH_NONE = "none"

Failure = Union[QueryFailure, MissingShares]


class InvalidTransition(Exception):
    """The requested move is not allowed from the session's current phase."""


class PhaseStatus(str, Enum):
    REVEALED = "revealed"
    FALLBACK_USED = "fallback_used"
    ADVANCED = "advanced"
    FAILED = "failed"


class ShowdownStatus(str, Enum):
    RESOLVED = "resolved"
    INCOMPLETE = "incomplete"
    FAILED = "failed"


@dataclass
class StartGameResult:
    ok: bool
    ack: Optional[StartGameAck] = None
    previous_hand: Optional[LastHandLog] = None
    error: Optional[QueryFailure] = None


@dataclass
class PhaseReport:
    """What happened when a phase was entered (or why it was not)."""

    phase: Phase
    status: PhaseStatus
    path: str = PATH_NONE
    cards: List[Card] = field(default_factory=list)
    error: Optional[Failure] = None
    fallback_reason: Optional[Failure] = None
    share_failures: Dict[str, QueryFailure] = field(default_factory=dict)

    @property
    def fallback_used(self) -> bool:
        return self.path == PATH_EXECUTION


@dataclass
class ShowdownReport:
    status: ShowdownStatus
    path: str = PATH_NONE
    result: Optional[ShowdownResult] = None
    missing: List[str] = field(default_factory=list)
    error: Optional[QueryFailure] = None

    @property
    def winners(self) -> List[str]:
        return self.result.winners if self.result else []


class GamePhaseController:
    """Moves GameSessions through their phases."""

    def __init__(self, query_client: QueryClient, fallback: FallbackExecutor,
                 hand_log=None, share_timeout: float = 10.0,
                 resolver: Optional[ShowdownResolver] = None):
        self.query_client = query_client
        self.fallback = fallback
        self.hand_log = hand_log
        self.share_timeout = share_timeout
        self.resolver = resolver or ShowdownResolver()

    # ------------------------------------------------------------------
    # Hand start
    # ------------------------------------------------------------------

    async def start_hand(self, session: GameSession) -> StartGameResult:
        """Ask the contract to shuffle and deal. This only exists as an execute."""
        async with session.transition_lock:
            if session.started:
                raise InvalidTransition(f"Hand {session.hand_ref} on table {session.table_id} already started")

            request = StartGame(
                table_id=session.table_id,
                hand_ref=session.hand_ref,
                players=tuple(p.to_start_game_player() for p in session.participants),
                prev_hand_showdown_players=tuple(session.prev_hand_showdown_players),
            )
            outcome = await self.fallback.execute(request)
            if not outcome.is_ok:
                logging.error(f"Table {session.table_id}: start of hand {session.hand_ref} failed: {outcome.error}")
                return StartGameResult(ok=False, error=outcome.error)
            execution = outcome.value
            if not isinstance(execution.payload, StartGameAck):
                error = QueryFailure(ErrorKind.MALFORMED_RESPONSE,
                                     f"expected start_game payload, got {type(execution.payload).__name__}")
                return StartGameResult(ok=False, error=error)

            session.started = True
            logging.info(f"Table {session.table_id}: hand {session.hand_ref} dealt to {len(session.participants)} players")
            if self.hand_log is not None:
                with self._hand_log_write("hand start"):
                    self.hand_log.record_hand_start(session)
            return StartGameResult(ok=True, ack=execution.payload, previous_hand=execution.last_hand)

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    def submit_share(self, session: GameSession, phase: Phase, identity: str, value: int) -> bool:
        """A participant explicitly hands in its share for a phase."""
        return session.share_store.add_share(phase, identity, value)

    async def collect_shares(self, session: GameSession, phase: Phase,
                             permits: Dict[str, Permit]) -> Dict[str, QueryFailure]:
        """Query every participant's share for a phase concurrently.

        Participants that already contributed are skipped. Returns the
        failures per identity; those participants simply stay missing.
        """
        store = session.share_store
        pending = [p for p in session.participants if not store.has_share(phase, p.identity)]

        async def _fetch(participant: Participant):
            permit = permits.get(participant.identity)
            if permit is None:
                return participant, Err(QueryFailure(ErrorKind.UNAUTHORIZED, "no permit supplied"))
            try:
                result = await asyncio.wait_for(
                    self.query_client.query_private_data(session.table_id, participant, permit, session.hand_ref),
                    timeout=self.share_timeout,
                )
            except asyncio.TimeoutError:
                result = Err(QueryFailure(ErrorKind.TIMEOUT, f"no answer within {self.share_timeout}s"))
            return participant, result

        failures: Dict[str, QueryFailure] = {}
        for participant, result in await asyncio.gather(*(_fetch(p) for p in pending)):
            if not result.is_ok:
                failures[participant.identity] = result.error
                continue
            share = result.value.share_for(phase.value)
            if share is None:
                failures[participant.identity] = QueryFailure(ErrorKind.MALFORMED_RESPONSE, f"no {phase} share")
            elif not store.add_share(phase, participant.identity, share):
                failures[participant.identity] = QueryFailure(ErrorKind.MALFORMED_RESPONSE, "share refused")

        if failures:
            logging.info(f"Table {session.table_id}: {len(failures)} share(s) for {phase} unavailable: "
                         f"{', '.join(f'{k} ({v.kind.value})' for k, v in failures.items())}")
        return failures

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    async def advance(self, session: GameSession,
                      permits: Optional[Dict[str, Permit]] = None) -> PhaseReport:
        """Enter the next phase and obtain its community cards."""
        async with session.transition_lock:
            if not session.started:
                raise InvalidTransition("Hand has not been started")
            if session.phase in (Phase.SHOWDOWN, Phase.RESOLVED):
                raise InvalidTransition(f"Cannot advance from {session.phase}; resolve the showdown instead")

            target = session.phase.next()
            if target is Phase.SHOWDOWN:
                session.phase = Phase.SHOWDOWN
                report = PhaseReport(phase=target, status=PhaseStatus.ADVANCED)
            else:
                report = await self._reveal(session, target, permits)
            if self.hand_log is not None:
                with self._hand_log_write(f"{report.phase} report"):
                    self.hand_log.record_phase_report(session, report)
            return report

    async def _reveal(self, session: GameSession, phase: Phase,
                      permits: Optional[Dict[str, Permit]]) -> PhaseReport:
        share_failures: Dict[str, QueryFailure] = {}
        if permits:
            share_failures = await self.collect_shares(session, phase, permits)

        reconstructed = session.share_store.reconstruct(phase)
        if reconstructed.is_ok:
            secret = reconstructed.value
            queried = await self.query_client.query_community_cards(session.table_id, phase, secret)
            if queried.is_ok:
                session.secrets[phase] = secret
                return self._enter(session, phase, queried.value, PATH_QUERY, share_failures)
            if not queried.error.kind.transient:
                # unauthorized or malformed: surfaced, never retried
                logging.error(f"Table {session.table_id}: {phase} query refused: {queried.error}")
                return PhaseReport(phase=phase, status=PhaseStatus.FAILED, path=PATH_QUERY,
                                   error=queried.error, share_failures=share_failures)
            # the secret is complete even if the node was not reachable
            session.secrets[phase] = secret
            reason: Failure = queried.error
        else:
            reason = reconstructed.error

        logging.warning(f"Table {session.table_id}: falling back to execution for {phase} ({reason})")
        outcome = await self.fallback.execute(AdvancePhase(table_id=session.table_id, game_state=phase.game_state))
        session.fallback_phases.append(phase)

        if outcome.is_ok and isinstance(outcome.value.payload, CommunityCards):
            report = self._enter(session, phase, outcome.value.payload, PATH_EXECUTION, share_failures)
            report.fallback_reason = reason
            return report

        error = outcome.error if not outcome.is_ok else QueryFailure(
            ErrorKind.MALFORMED_RESPONSE, f"expected community cards, got {type(outcome.value.payload).__name__}")
        # no further fallback exists: the phase is entered with its failure on record
        session.phase = phase
        logging.error(f"Table {session.table_id}: {phase} could not be revealed: {error}")
        return PhaseReport(phase=phase, status=PhaseStatus.FAILED, path=PATH_EXECUTION, error=error,
                           fallback_reason=reason, share_failures=share_failures)

    def _enter(self, session: GameSession, phase: Phase, reveal: CommunityCards,
               path: str, share_failures: Dict[str, QueryFailure]) -> PhaseReport:
        session.reveals[phase] = list(reveal.cards)
        session.phase = phase
        status = PhaseStatus.REVEALED if path == PATH_QUERY else PhaseStatus.FALLBACK_USED
        logging.info(f"Table {session.table_id}: entered {phase} via {path}")
        return PhaseReport(phase=phase, status=status, path=path, cards=list(reveal.cards),
                           share_failures=share_failures)

    async def enter_showdown(self, session: GameSession) -> PhaseReport:
        """Jump straight to showdown when the hand ends before the river."""
        async with session.transition_lock:
            if not session.started:
                raise InvalidTransition("Hand has not been started")
            if session.phase.order >= Phase.SHOWDOWN.order:
                raise InvalidTransition(f"Already at {session.phase}")
            logging.info(f"Table {session.table_id}: early showdown from {session.phase}")
            session.phase = Phase.SHOWDOWN
            report = PhaseReport(phase=Phase.SHOWDOWN, status=PhaseStatus.ADVANCED)
            if self.hand_log is not None:
                with self._hand_log_write(f"{report.phase} report"):
                    self.hand_log.record_phase_report(session, report)
            return report

    # ------------------------------------------------------------------
    # Showdown
    # ------------------------------------------------------------------

    def submit_hand_secret(self, session: GameSession, identity: str, secret: int) -> bool:
        """A participant reveals its hand secret for the showdown."""
        if session.phase is Phase.RESOLVED:
            logging.warning(f"Table {session.table_id}: hand secret from {identity} after resolution ignored")
            return False
        if not is_u64(secret):
            logging.warning(f"Table {session.table_id}: hand secret from {identity} is not a u64")
            return False
        if identity not in session.identities:
            logging.warning(f"Table {session.table_id}: hand secret from {identity}, who was not dealt in, ignored")
            return False
        participant = session.participant(identity)
        if participant.hand_secret is not None and participant.hand_secret != secret:
            logging.warning(f"Table {session.table_id}: conflicting hand secret from {identity} ignored")
            return False
        participant.hand_secret = secret
        return True

    async def resolve_showdown(self, session: GameSession, all_in: bool = False,
                               show_cards: Optional[Iterable[str]] = None) -> ShowdownReport:
        """Reveal and rank the hands. Requires every participant's hand secret."""
        async with session.transition_lock:
            if session.phase is not Phase.SHOWDOWN:
                raise InvalidTransition(f"Showdown cannot be resolved from {session.phase}")

            missing = session.missing_hand_secrets()
            if missing:
                logging.warning(f"Table {session.table_id}: incomplete showdown, waiting on {', '.join(missing)}")
                report = ShowdownReport(
                    status=ShowdownStatus.INCOMPLETE,
                    missing=missing,
                    error=QueryFailure(ErrorKind.INCOMPLETE_SHOWDOWN, f"no hand secret from {', '.join(missing)}"),
                )
                if self.hand_log is not None:
                    with self._hand_log_write("showdown"):
                        self.hand_log.record_showdown(session, report)
                return report

            record = session.showdown_record()
            players_secrets = [record.hand_secrets[i] for i in session.identities]
            path = PATH_QUERY
            outcome = await self.query_client.query_showdown(
                session.table_id, players_secrets,
                record.flop_secret, record.turn_secret, record.river_secret,
            )
            if not outcome.is_ok and outcome.error.kind.transient:
                logging.warning(f"Table {session.table_id}: falling back to execution for showdown ({outcome.error})")
                path = PATH_EXECUTION
                addresses = [p.public_address for p in session.participants]
                executed = await self.fallback.execute(ShowdownExec(
                    table_id=session.table_id,
                    players_secrets=tuple(players_secrets),
                    flop_secret=record.flop_secret,
                    turn_secret=record.turn_secret,
                    river_secret=record.river_secret,
                    show_cards=tuple(show_cards if show_cards is not None else addresses),
                    all_in_showdown=all_in,
                ))
                outcome = Ok(executed.value.payload) if executed.is_ok else executed

            if outcome.is_ok and isinstance(outcome.value, ShowdownReveal):
                result = self.resolver.resolve(outcome.value, session.community_cards)
                session.phase = Phase.RESOLVED
                self.query_client.forget(session.table_id)
                report = ShowdownReport(status=ShowdownStatus.RESOLVED, path=path, result=result)
            else:
                error = outcome.error if not outcome.is_ok else QueryFailure(
                    ErrorKind.MALFORMED_RESPONSE, f"expected showdown payload, got {type(outcome.value).__name__}")
                logging.error(f"Table {session.table_id}: showdown failed: {error}")
                report = ShowdownReport(status=ShowdownStatus.FAILED, path=path, error=error)

            if self.hand_log is not None:
                with self._hand_log_write("showdown"):
                    self.hand_log.record_showdown(session, report)
            return report

    @contextmanager
    def _hand_log_write(self, what: str):
        """Hand log failures are logged and never fail the hand."""
        try:
            yield
        except Exception:
            logging.exception(f"Failed to write {what} to hand log")


def build_controller(settings: Settings, connection, contract: ContractInfo, sender: str,
                     hand_log=None) -> GamePhaseController:
    """Wire the query and execution paths to one connection with the configured bounds."""
    query_client = QueryClient(connection, contract, timeout=settings.query_timeout)
    fallback = FallbackExecutor(
        connection, contract, sender,
        inclusion_timeout=settings.inclusion_timeout,
        poll_interval=settings.poll_interval,
        gas_limit=settings.gas_limit,
    )
    return GamePhaseController(query_client, fallback, hand_log=hand_log, share_timeout=settings.query_timeout)
