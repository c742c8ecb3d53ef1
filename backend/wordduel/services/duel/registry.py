"""Process-wide routing table for connections, players and live duels.

The registry owns three maps (connection -> player, player -> connection,
player -> duel) and the duel -> session table. Its lock guards only those
maps: it is never held while calling into the match queue or a session,
so the queue lock, the registry lock and a session lock are never nested.
"""

import logging
import threading
from typing import Callable, Dict, Optional

from . import state as duel
from .errors import DuelError, ProtocolViolation, ValidationError
from .matchmaking import MatchQueue, MatchTicket, normalize_stake
from .session import DuelSession, SendFn
from .store import DuelStore, MemoryDuelStore
from .words import accept_any_word

logger = logging.getLogger(__name__)

DEFAULT_EVICT_GRACE_SEC = 30
DEFAULT_ABANDON_GRACE_SEC = 300


def _field(message: dict, name: str):
    value = message.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f'{name} is required')
    return value


class SessionRegistry:
    def __init__(
        self,
        queue: MatchQueue,
        scheduler,
        send: SendFn,
        store: Optional[DuelStore] = None,
        is_valid_word: Callable[[str], bool] = accept_any_word,
        turn_duration_secs: int = duel.DEFAULT_TURN_DURATION_SEC,
        max_turns: int = duel.DEFAULT_MAX_TURNS,
        evict_grace_secs: float = DEFAULT_EVICT_GRACE_SEC,
        abandon_grace_secs: float = DEFAULT_ABANDON_GRACE_SEC,
    ):
        self.queue = queue
        self.scheduler = scheduler
        self.store = store if store is not None else MemoryDuelStore()
        self._send = send
        self._is_valid_word = is_valid_word
        self.turn_duration_secs = turn_duration_secs
        self.max_turns = max_turns
        self.evict_grace_secs = evict_grace_secs
        self.abandon_grace_secs = abandon_grace_secs

        self._lock = threading.Lock()
        self._sessions: Dict[str, DuelSession] = {}
        self._player_duel: Dict[str, str] = {}
        self._sid_player: Dict[str, str] = {}
        self._player_sid: Dict[str, str] = {}
        self._tickets: Dict[str, MatchTicket] = {}

        self._handlers = {
            'join_queue': self._handle_join_queue,
            'leave_queue': self._handle_leave_queue,
            'create_duel': self._handle_create_duel,
            'join_duel': self._handle_join_duel,
            'set_word': self._handle_set_word,
            'commit_guess': self._handle_commit_guess,
            'reveal_guess': self._handle_reveal_guess,
        }

    # ---- lookups ----

    def get_session(self, duel_id: str) -> Optional[DuelSession]:
        with self._lock:
            return self._sessions.get(duel_id)

    def duel_for_player(self, player_id: str) -> Optional[str]:
        with self._lock:
            return self._player_duel.get(player_id)

    def player_for_connection(self, sid: str) -> Optional[str]:
        with self._lock:
            return self._sid_player.get(sid)

    def ticket_for(self, player_id: str) -> Optional[MatchTicket]:
        with self._lock:
            return self._tickets.get(player_id)

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def public_view(self, duel_id: str) -> Optional[dict]:
        session = self.get_session(duel_id)
        if session is not None:
            return session.state.public_view()
        return None

    # ---- routing ----

    def route(self, sid: str, message) -> None:
        """Dispatch one inbound message; rejections go back to ``sid`` only."""
        msg_type = message.get('type') if isinstance(message, dict) else None
        try:
            if not isinstance(message, dict):
                raise ValidationError('Message must be an object')
            handler = self._handlers.get(msg_type)
            if handler is None:
                raise ProtocolViolation(f"Unknown message type {msg_type!r}")
            handler(sid, message)
        except DuelError as exc:
            logger.info(f"[protocol] sid={sid} type={msg_type} {exc.kind}: {exc.message}")
            self._send(sid, 'error', exc.to_dict())

    def disconnect(self, sid: str) -> None:
        with self._lock:
            player_id = self._sid_player.pop(sid, None)
            if player_id is None:
                return
            if self._player_sid.get(player_id) == sid:
                del self._player_sid[player_id]
            else:
                # the player already reconnected on another socket
                return
            self._tickets.pop(player_id, None)
            duel_id = self._player_duel.get(player_id)
            session = self._sessions.get(duel_id) if duel_id else None

        self.queue.leave(player_id)
        if session is None:
            return
        remaining = session.handle_disconnect(player_id)
        logger.info(f"[disconnect] player={player_id} duel={duel_id} remaining={remaining}")
        if remaining == 0 and not session.state.is_finished:
            self.scheduler.call_later(
                self.abandon_grace_secs,
                lambda: self._evict_if_abandoned(duel_id),
                name=f'abandon duel={duel_id}',
            )

    def evict(self, duel_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(duel_id, None)
            if session is None:
                return False
            for player_id in session.state.player_ids:
                if self._player_duel.get(player_id) == duel_id:
                    del self._player_duel[player_id]
        session.close()
        logger.info(f"[evict] duel={duel_id} phase={session.state.phase.value}")
        return True

    # ---- internals ----

    def _bind(self, sid: str, player_id: str) -> None:
        with self._lock:
            bound = self._sid_player.get(sid)
            if bound is not None and bound != player_id:
                raise ProtocolViolation('Connection already bound to another player')
            previous = self._player_sid.get(player_id)
            if previous is not None and previous != sid:
                self._sid_player.pop(previous, None)
            self._sid_player[sid] = player_id
            self._player_sid[player_id] = sid

    def _identify(self, sid: str, message: dict) -> str:
        player_id = duel.normalize_player_id(message.get('playerID'))
        self._bind(sid, player_id)
        return player_id

    def _active_session_for(self, player_id: str) -> Optional[DuelSession]:
        with self._lock:
            duel_id = self._player_duel.get(player_id)
            session = self._sessions.get(duel_id) if duel_id else None
        if session is None or session.state.is_finished:
            return None
        return session

    def _require_free(self, player_id: str) -> None:
        if self._active_session_for(player_id) is not None:
            raise ProtocolViolation('Already in a duel')

    def _session_for(self, message: dict) -> DuelSession:
        duel_id = _field(message, 'duelID')
        session = self.get_session(str(duel_id))
        if session is None:
            raise ProtocolViolation('Unknown duel')
        return session

    def _register(self, session: DuelSession) -> None:
        with self._lock:
            self._sessions[session.id] = session
            for player_id in session.state.player_ids:
                self._player_duel[player_id] = session.id

    def _new_session(self, state: duel.DuelState) -> DuelSession:
        return DuelSession(
            state,
            send=self._send,
            scheduler=self.scheduler,
            is_valid_word=self._is_valid_word,
            on_finished=self._on_finished,
        )

    def _new_state(self, player_id: str, stake: str) -> duel.DuelState:
        return duel.create_duel(
            player_id,
            stake=stake,
            now=self.scheduler.time(),
            turn_duration_secs=self.turn_duration_secs,
            max_turns=self.max_turns,
        )

    def _on_finished(self, session: DuelSession) -> None:
        self.store.save(session.state)
        self.scheduler.call_later(
            self.evict_grace_secs,
            lambda: self.evict(session.id),
            name=f'evict duel={session.id}',
        )

    def _evict_if_abandoned(self, duel_id: str) -> None:
        session = self.get_session(duel_id)
        if session is None or session.state.is_finished or session.connected_players():
            return
        logger.info(f"[evict] duel={duel_id} abandoned with no connections")
        self.store.save(session.state)
        self.evict(duel_id)

    def _expire_queue_entry(self, player_id: str, enqueued_at: float) -> None:
        if not self.queue.expire(player_id, enqueued_at):
            return
        with self._lock:
            self._tickets.pop(player_id, None)
            sid = self._player_sid.get(player_id)
        if sid is not None:
            self._send(sid, 'queue_timeout', {'playerID': player_id})

    # ---- message handlers ----

    def _handle_join_queue(self, sid: str, message: dict) -> None:
        player_id = self._identify(sid, message)
        stake = normalize_stake(message.get('stake'))
        self._require_free(player_id)

        # stored before the queue can park the player; a matcher pops it
        ticket = MatchTicket(player_id)
        with self._lock:
            previous = self._tickets.get(player_id)
            self._tickets[player_id] = ticket
        try:
            opponent_id = self.queue.join(player_id, stake, ticket)
        except DuelError:
            with self._lock:
                if self._tickets.get(player_id) is ticket:
                    if previous is None:
                        del self._tickets[player_id]
                    else:
                        self._tickets[player_id] = previous
            raise

        if opponent_id is None:
            entry = self.queue.entry_for(player_id)
            if entry is None:
                # paired by a later joiner before we got here
                return
            self._send(sid, 'queued', {'playerID': player_id, 'stake': stake})
            self.scheduler.call_later(
                self.queue.timeout_secs,
                lambda: self._expire_queue_entry(player_id, entry.enqueued_at),
                name=f'queue player={player_id}',
            )
            return

        # the longest-waiting player becomes player 1
        state = duel.join(self._new_state(opponent_id, stake), player_id)
        session = self._new_session(state)
        self._register(session)
        self.store.save(state)
        logger.info(f"[duel-create] duel={session.id} player1={opponent_id} player2={player_id} stake={stake}")

        with self._lock:
            self._tickets.pop(opponent_id, None)
            self._tickets.pop(player_id, None)
            opponent_sid = self._player_sid.get(opponent_id)
        for pid, other, psid in ((opponent_id, player_id, opponent_sid), (player_id, opponent_id, sid)):
            if psid is None:
                continue
            self._send(psid, 'match_found', {'duelID': session.id, 'opponentID': other, 'stake': stake})
            session.attach(pid, psid)

    def _handle_leave_queue(self, sid: str, message: dict) -> None:
        player_id = self._identify(sid, message)
        removed = self.queue.leave(player_id)
        with self._lock:
            self._tickets.pop(player_id, None)
        self._send(sid, 'queue_left', {'playerID': player_id, 'removed': removed})

    def _handle_create_duel(self, sid: str, message: dict) -> None:
        player_id = self._identify(sid, message)
        stake = normalize_stake(message.get('stake', '0'))
        self._require_free(player_id)
        if self.queue.is_queued(player_id):
            raise ProtocolViolation('Already in matchmaking queue')

        state = self._new_state(player_id, stake)
        session = self._new_session(state)
        self._register(session)
        self.store.save(state)
        logger.info(f"[duel-create] duel={session.id} player1={player_id} stake={stake}")
        self._send(sid, 'duel_created', {'duelID': session.id, 'stake': stake})
        session.attach(player_id, sid)

    def _handle_join_duel(self, sid: str, message: dict) -> None:
        session = self._session_for(message)
        player_id = self._identify(sid, message)
        if session.has_player(player_id):
            session.attach(player_id, sid)
            with self._lock:
                self._player_duel[player_id] = session.id
            return

        self._require_free(player_id)
        if self.queue.is_queued(player_id):
            raise ProtocolViolation('Already in matchmaking queue')
        session.handle_join(player_id, sid)
        self._register(session)
        self.store.save(session.state)

    def _handle_set_word(self, sid: str, message: dict) -> None:
        session = self._session_for(message)
        player_id = self._identify(sid, message)
        session.handle_set_word(player_id, _field(message, 'word'))

    def _handle_commit_guess(self, sid: str, message: dict) -> None:
        session = self._session_for(message)
        player_id = self._identify(sid, message)
        session.handle_commit(player_id, message.get('guessHash'))

    def _handle_reveal_guess(self, sid: str, message: dict) -> None:
        session = self._session_for(message)
        player_id = self._identify(sid, message)
        session.handle_reveal(player_id, _field(message, 'guess'), message.get('salt'))
