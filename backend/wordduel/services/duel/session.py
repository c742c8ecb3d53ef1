"""One live duel: its state, its turn timer and its players' connections.

All mutation of a session goes through ``self._lock``, the timer callback
included, so handlers and the timer always see the current state. Outbound
messages are sent while the lock is held, which keeps their order identical
to the order of the transitions that produced them.
"""

import logging
import threading
from typing import Callable, Dict, Optional

from . import state as duel
from .errors import InternalInconsistency, ProtocolViolation
from .state import DuelState, Phase
from .words import accept_any_word

logger = logging.getLogger(__name__)

SendFn = Callable[[str, str, dict], None]


class DuelSession:
    def __init__(
        self,
        state: DuelState,
        send: SendFn,
        scheduler,
        is_valid_word: Callable[[str], bool] = accept_any_word,
        on_finished: Optional[Callable[['DuelSession'], None]] = None,
    ):
        self._state = state
        self._send = send
        self._scheduler = scheduler
        self._is_valid_word = is_valid_word
        self._on_finished = on_finished
        self._lock = threading.Lock()
        self._timer = None
        self._timer_gen = 0
        self._finish_reported = False
        self.closed = False
        self.connections: Dict[str, str] = {}

    @property
    def id(self) -> str:
        return self._state.id

    @property
    def state(self) -> DuelState:
        return self._state

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def has_player(self, player_id: str) -> bool:
        return self._state.slot_for(player_id) is not None

    def connected_players(self):
        with self._lock:
            return list(self.connections)

    # ---- inbound ----

    def attach(self, player_id: str, sid: str) -> None:
        """Bind a player's connection and send them the current state."""
        with self._lock:
            self._require_open()
            self._require_member(player_id)
            self.connections[player_id] = sid
            self._send(sid, 'duel_state', self._state.public_view(player_id))

    def handle_join(self, player_id: str, sid: str) -> None:
        with self._lock:
            self._require_open()
            self._apply(self._transition(duel.join, self._state, player_id))
            self.connections[self._state.slot_b.id] = sid
            self._broadcast_state()

    def handle_set_word(self, player_id: str, word: str) -> None:
        with self._lock:
            self._require_open()
            self._require_member(player_id)
            new = self._transition(
                duel.set_word, self._state, player_id, word,
                now=self._scheduler.time(), is_valid_word=self._is_valid_word,
            )
            started = new.phase is Phase.PLAYING
            self._apply(new)
            self._broadcast_state()
            if started:
                self._arm_timer()
                self._broadcast_turn_start()

    def handle_commit(self, player_id: str, guess_hash: Optional[str] = None) -> None:
        with self._lock:
            self._require_open()
            self._require_member(player_id)
            self._apply(self._transition(duel.commit_guess, self._state, player_id, guess_hash))
            self._broadcast('guess_committed', {'duelID': self.id, 'playerID': player_id})

    def handle_reveal(self, player_id: str, guess: str, salt: Optional[str] = None) -> None:
        with self._lock:
            self._require_open()
            self._require_member(player_id)
            prev_turn = self._state.turn
            new = self._transition(
                duel.reveal_guess, self._state, player_id, guess,
                now=self._scheduler.time(), is_valid_word=self._is_valid_word, salt=salt,
            )
            self._apply(new)
            record = new.slot_for(player_id).guesses[-1]
            self._broadcast('guess_revealed', {
                'duelID': self.id,
                'playerID': player_id,
                'guess': record.guess,
                'feedback': [f.value for f in record.feedback],
                'solved': new.slot_for(player_id).solved,
            })
            if new.is_finished:
                self._cancel_timer()
                self._broadcast_end()
            elif new.turn != prev_turn:
                self._arm_timer()
                self._broadcast_turn_start()
            self._broadcast_state()
        self._report_finished()

    def handle_disconnect(self, player_id: str) -> int:
        """Forget a player's connection; returns how many remain.

        The duel keeps running: a player who stays away is timed out by the
        turn timer like any other idle player.
        """
        with self._lock:
            self.connections.pop(player_id, None)
            return len(self.connections)

    def close(self) -> None:
        with self._lock:
            self._cancel_timer()
            self.closed = True
            self.connections.clear()

    # ---- timer ----

    def _arm_timer(self) -> None:
        self._cancel_timer()
        st = self._state
        delay = max(0.0, st.turn_started_at + st.turn_duration_secs - self._scheduler.time())
        self._timer_gen += 1
        gen = self._timer_gen
        self._timer = self._scheduler.call_later(
            delay, lambda: self._on_timer(gen), name=f'duel={self.id} turn={st.turn}'
        )
        logger.info(f"[timer-set] duel={self.id} turn={st.turn} duration={delay:.1f}s")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, gen: int) -> None:
        with self._lock:
            if gen != self._timer_gen or self._timer is None or self.closed:
                logger.info(f"[timer-abort] duel={self.id} stale timer")
                return
            self._timer = None
            st = self._state
            logger.info(f"[timer-fire] duel={self.id} turn={st.turn} phase={st.phase.value}")
            if st.phase is not Phase.PLAYING:
                return
            now = self._scheduler.time()
            if not duel.timeout_due(st, now):
                self._arm_timer()
                return
            try:
                new = self._transition(duel.timeout, st, now)
            except InternalInconsistency:
                return
            if new is st:
                logger.info(f"[timer-abort] duel={self.id} turn={st.turn} both players done")
                return
            self._apply(new)
            self._broadcast_end()
            self._broadcast_state()
        self._report_finished()

    # ---- helpers ----

    def _require_open(self) -> None:
        if self.closed:
            raise ProtocolViolation('Duel is closed')

    def _require_member(self, player_id: str) -> None:
        if not self.has_player(player_id):
            raise ProtocolViolation('Player not in this duel')

    def _transition(self, fn, *args, **kwargs) -> DuelState:
        try:
            return fn(*args, **kwargs)
        except InternalInconsistency as exc:
            logger.error(f"[invariant] duel={self.id} {fn.__name__} refused: {exc.message}")
            raise

    def _apply(self, new: DuelState) -> None:
        self._state = new
        if new.is_finished:
            logger.info(
                f"[duel-end] duel={self.id} winner={new.winner} reason={new.end_reason} turn={new.turn}"
            )

    def _report_finished(self) -> None:
        with self._lock:
            if not self._state.is_finished or self._finish_reported:
                return
            self._finish_reported = True
        if self._on_finished is not None:
            self._on_finished(self)

    def _broadcast(self, event: str, payload: dict) -> None:
        for sid in list(self.connections.values()):
            self._send(sid, event, payload)

    def _broadcast_state(self) -> None:
        for player_id, sid in list(self.connections.items()):
            self._send(sid, 'duel_state', self._state.public_view(player_id))

    def _broadcast_turn_start(self) -> None:
        st = self._state
        self._broadcast('turn_start', {
            'duelID': self.id,
            'turn': st.turn,
            'startedAt': st.turn_started_at,
            'durationSecs': st.turn_duration_secs,
        })

    def _broadcast_end(self) -> None:
        st = self._state
        self._broadcast('duel_end', {
            'duelID': self.id,
            'winner': st.winner,
            'player1Word': st.slot_a.secret_word,
            'player2Word': st.slot_b.secret_word if st.slot_b else None,
            'reason': st.end_reason,
        })
