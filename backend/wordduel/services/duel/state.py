"""Duel data model and its state transitions.

A ``DuelState`` is a plain value. It is only ever changed through the
transition functions in this module, each of which validates its
preconditions first and works on a copy, so a rejected transition leaves
the caller's state untouched::

    state = create_duel('alice', stake='0.01', now=clock())
    state = join(state, 'bob')
    state = set_word(state, 'alice', 'crane', now=clock())

Phases run ``waiting -> setting_words -> playing -> finished``. Within
``playing`` each turn is a commit then reveal cycle per player, tracked by
the ``committed``/``revealed`` flags on each slot.
"""

import copy
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .commitment import verify_commitment
from .errors import InternalInconsistency, ProtocolViolation, ValidationError
from .words import LetterFeedback, accept_any_word, evaluate, is_solved, normalize_word


DEFAULT_TURN_DURATION_SEC = 120
DEFAULT_MAX_TURNS = 6

REASON_SOLVED = 'solved'
REASON_TIMEOUT = 'timeout'
REASON_DRAW = 'draw'


class Phase(str, Enum):
    WAITING = 'waiting'
    SETTING_WORDS = 'setting_words'
    PLAYING = 'playing'
    FINISHED = 'finished'


@dataclass(frozen=True)
class GuessRecord:
    guess: str
    feedback: List[LetterFeedback]
    timestamp: float

    def to_dict(self):
        return {
            'guess': self.guess,
            'feedback': [f.value for f in self.feedback],
            'timestamp': self.timestamp,
        }


@dataclass
class PlayerSlot:
    id: str
    secret_word: Optional[str] = None
    committed: bool = False
    revealed: bool = False
    guesses: List[GuessRecord] = field(default_factory=list)
    solved: bool = False
    solved_on_turn: Optional[int] = None
    # sha256 commitment sent with this turn's commit, if any
    commitment: Optional[str] = None

    @property
    def turn_complete(self) -> bool:
        return self.committed and self.revealed

    def to_dict(self, include_word: bool = False):
        data = {
            'playerID': self.id,
            'secretWordSet': self.secret_word is not None,
            'committed': self.committed,
            'revealed': self.revealed,
            'guesses': [g.to_dict() for g in self.guesses],
            'solved': self.solved,
            'solvedOnTurn': self.solved_on_turn,
        }
        if include_word:
            data['secretWord'] = self.secret_word
        return data


@dataclass
class DuelState:
    id: str
    slot_a: PlayerSlot
    slot_b: Optional[PlayerSlot] = None
    turn: int = 0
    turn_started_at: Optional[float] = None
    turn_duration_secs: int = DEFAULT_TURN_DURATION_SEC
    phase: Phase = Phase.WAITING
    winner: Optional[str] = None
    stake: str = '0'
    created_at: float = 0.0
    max_turns: int = DEFAULT_MAX_TURNS
    end_reason: Optional[str] = None
    finished_at: Optional[float] = None

    @property
    def slots(self) -> List[PlayerSlot]:
        return [s for s in (self.slot_a, self.slot_b) if s is not None]

    @property
    def player_ids(self) -> List[str]:
        return [s.id for s in self.slots]

    @property
    def is_finished(self) -> bool:
        return self.phase is Phase.FINISHED

    def slot_for(self, player_id: str) -> Optional[PlayerSlot]:
        for slot in self.slots:
            if slot.id == player_id:
                return slot
        return None

    def opponent_of(self, player_id: str) -> Optional[PlayerSlot]:
        if self.slot_a.id == player_id:
            return self.slot_b
        if self.slot_b is not None and self.slot_b.id == player_id:
            return self.slot_a
        return None

    def public_view(self, viewer: Optional[str] = None):
        """Redacted view for ``viewer``.

        The opponent's secret word is never included; the viewer's own word
        is included once the duel is finished.
        """
        def pack(slot):
            if slot is None:
                return None
            own = viewer is not None and slot.id == viewer
            return slot.to_dict(include_word=own and self.is_finished)

        return {
            'duelID': self.id,
            'player1': pack(self.slot_a),
            'player2': pack(self.slot_b),
            'turn': self.turn,
            'turnStartedAt': self.turn_started_at,
            'turnDurationSecs': self.turn_duration_secs,
            'maxTurns': self.max_turns,
            'phase': self.phase.value,
            'winner': self.winner,
            'endReason': self.end_reason,
            'stake': self.stake,
            'createdAt': self.created_at,
        }

    def to_record(self):
        """Full snapshot, secret words included, for the result store."""
        data = self.public_view()
        data['player1'] = self.slot_a.to_dict(include_word=True)
        data['player2'] = self.slot_b.to_dict(include_word=True) if self.slot_b else None
        data['finishedAt'] = self.finished_at
        return data


def normalize_player_id(player_id) -> str:
    if not isinstance(player_id, str) or not player_id.strip():
        raise ValidationError('playerID is required')
    return player_id.strip().lower()


def create_duel(
    player_id: str,
    stake: str = '0',
    now: float = 0.0,
    turn_duration_secs: int = DEFAULT_TURN_DURATION_SEC,
    max_turns: int = DEFAULT_MAX_TURNS,
    duel_id: Optional[str] = None,
) -> DuelState:
    return DuelState(
        id=duel_id or str(uuid.uuid4()),
        slot_a=PlayerSlot(id=normalize_player_id(player_id)),
        turn_duration_secs=int(turn_duration_secs),
        max_turns=int(max_turns),
        stake=str(stake),
        created_at=now,
    )


def _require_phase(state: DuelState, phase: Phase, message: str) -> None:
    if state.phase is not phase:
        raise ProtocolViolation(message)


def _require_slot(state: DuelState, player_id: str) -> PlayerSlot:
    slot = state.slot_for(player_id)
    if slot is None:
        raise ProtocolViolation('Player not in duel')
    return slot


def _check_invariants(state: DuelState) -> DuelState:
    if (state.slot_b is None) != (state.phase is Phase.WAITING):
        raise InternalInconsistency(
            f'duel {state.id}: second slot must be empty exactly while waiting'
        )
    if state.phase is Phase.PLAYING:
        if any(s.secret_word is None for s in state.slots):
            raise InternalInconsistency(f'duel {state.id}: playing without both secret words')
        if state.turn_started_at is None:
            raise InternalInconsistency(f'duel {state.id}: playing without a turn start')
    return state


def _finish(state: DuelState, winner: Optional[str], reason: str, now: float) -> DuelState:
    state.phase = Phase.FINISHED
    state.winner = winner
    state.end_reason = reason
    state.finished_at = now
    return state


def join(state: DuelState, player_id: str) -> DuelState:
    _require_phase(state, Phase.WAITING, 'Duel is not waiting for players')
    player_id = normalize_player_id(player_id)
    if player_id == state.slot_a.id:
        raise ProtocolViolation('Cannot play against yourself')
    new = copy.deepcopy(state)
    new.slot_b = PlayerSlot(id=player_id)
    new.phase = Phase.SETTING_WORDS
    return _check_invariants(new)


def set_word(
    state: DuelState,
    player_id: str,
    word: str,
    now: float,
    is_valid_word: Callable[[str], bool] = accept_any_word,
) -> DuelState:
    _require_phase(state, Phase.SETTING_WORDS, 'Not in word setting phase')
    player_id = normalize_player_id(player_id)
    slot = _require_slot(state, player_id)
    if slot.secret_word is not None:
        raise ProtocolViolation('Word already set')
    word = normalize_word(word)
    if not is_valid_word(word):
        raise ValidationError('Invalid word')

    new = copy.deepcopy(state)
    new.slot_for(player_id).secret_word = word
    if all(s.secret_word is not None for s in new.slots):
        new.phase = Phase.PLAYING
        new.turn = 1
        new.turn_started_at = now
    return _check_invariants(new)


def commit_guess(state: DuelState, player_id: str, commitment: Optional[str] = None) -> DuelState:
    _require_phase(state, Phase.PLAYING, 'Duel not in progress')
    player_id = normalize_player_id(player_id)
    slot = _require_slot(state, player_id)
    if slot.committed:
        raise ProtocolViolation('Already committed this turn')
    if commitment is not None and (not isinstance(commitment, str) or not commitment.strip()):
        raise ValidationError('guessHash must be a non-empty string')

    new = copy.deepcopy(state)
    new_slot = new.slot_for(player_id)
    new_slot.committed = True
    new_slot.commitment = commitment.strip().lower() if commitment else None
    return _check_invariants(new)


def reveal_guess(
    state: DuelState,
    player_id: str,
    guess: str,
    now: float,
    is_valid_word: Callable[[str], bool] = accept_any_word,
    salt: Optional[str] = None,
) -> DuelState:
    """Record a guess, scoring it against the opponent's word.

    Advances the turn once both players have revealed.
    """
    _require_phase(state, Phase.PLAYING, 'Duel not in progress')
    player_id = normalize_player_id(player_id)
    slot = _require_slot(state, player_id)
    if not slot.committed:
        raise ProtocolViolation('Must commit before revealing')
    if slot.revealed:
        raise ProtocolViolation('Already revealed this turn')
    guess = normalize_word(guess)
    if not is_valid_word(guess):
        raise ValidationError('Invalid word')
    if slot.commitment is not None:
        if not salt or not verify_commitment(guess, str(salt), slot.commitment):
            raise ProtocolViolation('Revealed guess does not match commitment')

    opponent = state.opponent_of(player_id)
    if opponent is None or opponent.secret_word is None:
        raise InternalInconsistency(f'duel {state.id}: opponent has no secret word')

    new = copy.deepcopy(state)
    new_slot = new.slot_for(player_id)
    feedback = evaluate(guess, opponent.secret_word)
    new_slot.guesses.append(GuessRecord(guess=guess, feedback=feedback, timestamp=now))
    new_slot.revealed = True
    if is_solved(feedback) and not new_slot.solved:
        new_slot.solved = True
        new_slot.solved_on_turn = new.turn

    if all(s.revealed for s in new.slots):
        new = advance_turn(new, now)
    return _check_invariants(new)


def advance_turn(state: DuelState, now: float) -> DuelState:
    """Resolve the turn once both players revealed.

    Priority: both solved (fewer turns wins, equal is a draw), one solved
    at the turn limit, nobody solved at the turn limit, else next turn.
    """
    if state.slot_b is None:
        raise InternalInconsistency(f'duel {state.id}: advance_turn without a second player')
    if state.phase is not Phase.PLAYING:
        raise InternalInconsistency(f'duel {state.id}: advance_turn outside play')
    if not all(s.revealed for s in state.slots):
        raise InternalInconsistency(f'duel {state.id}: advance_turn before both reveals')

    new = copy.deepcopy(state)
    a, b = new.slot_a, new.slot_b

    if a.solved and b.solved:
        if a.solved_on_turn < b.solved_on_turn:
            return _finish(new, a.id, REASON_SOLVED, now)
        if b.solved_on_turn < a.solved_on_turn:
            return _finish(new, b.id, REASON_SOLVED, now)
        return _finish(new, None, REASON_DRAW, now)

    if new.turn >= new.max_turns:
        if a.solved:
            return _finish(new, a.id, REASON_SOLVED, now)
        if b.solved:
            return _finish(new, b.id, REASON_SOLVED, now)
        return _finish(new, None, REASON_DRAW, now)

    new.turn += 1
    new.turn_started_at = now
    for slot in new.slots:
        slot.committed = False
        slot.revealed = False
        slot.commitment = None
    return new


def timeout_due(state: DuelState, now: float) -> bool:
    if state.phase is not Phase.PLAYING or state.turn_started_at is None:
        return False
    return now - state.turn_started_at >= state.turn_duration_secs


def timeout(state: DuelState, now: float) -> DuelState:
    """Apply turn expiry.

    Before the deadline, or when both players completed the turn, the
    state is returned unchanged. Otherwise a player who completed the turn
    wins by forfeit, and if neither did the duel is drawn.
    """
    _require_phase(state, Phase.PLAYING, 'Duel not in progress')
    if state.slot_b is None or state.turn_started_at is None:
        raise InternalInconsistency(f'duel {state.id}: playing without both players')
    if not timeout_due(state, now):
        return state

    a_done = state.slot_a.turn_complete
    b_done = state.slot_b.turn_complete
    if a_done and b_done:
        return state

    new = copy.deepcopy(state)
    if not a_done and not b_done:
        return _finish(new, None, REASON_TIMEOUT, now)
    winner = new.slot_a.id if a_done else new.slot_b.id
    return _finish(new, winner, REASON_TIMEOUT, now)
