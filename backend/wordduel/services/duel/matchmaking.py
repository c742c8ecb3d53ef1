"""In-memory matchmaking: one FIFO of waiting players per stake tier."""

import logging
import threading
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional

from .errors import ProtocolViolation, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_TIMEOUT_SEC = 300
MAX_STAKE_DIGITS = 30


def normalize_stake(stake) -> str:
    if stake is None or isinstance(stake, bool):
        raise ValidationError('stake is required')
    text = str(stake).strip()
    try:
        value = Decimal(text)
    except InvalidOperation:
        raise ValidationError(f'Invalid stake {stake!r}') from None
    if not value.is_finite() or value < 0:
        raise ValidationError(f'Invalid stake {stake!r}')
    if value.adjusted() > MAX_STAKE_DIGITS:
        raise ValidationError(f'Invalid stake {stake!r}')
    # one tier key per amount: '0.010', '1e-2' and '0.01' share a tier
    if value == 0:
        return '0'
    return format(value.normalize(), 'f')


class MatchTicket:
    """Notification handed to the queue for one waiting player.

    The queue calls ``notify`` with the opponent's ID when a later joiner
    is paired with this player; the owner can poll ``opponent_id`` or block
    in ``wait``.
    """

    def __init__(self, player_id: str):
        self.player_id = player_id
        self.opponent_id: Optional[str] = None
        self._event = threading.Event()

    @property
    def matched(self) -> bool:
        return self._event.is_set()

    def notify(self, opponent_id: str) -> None:
        self.opponent_id = opponent_id
        self._event.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[str]:
        self._event.wait(timeout)
        return self.opponent_id


@dataclass
class QueueEntry:
    player_id: str
    stake: str
    enqueued_at: float
    ticket: MatchTicket = field(repr=False)


class MatchQueue:
    """Strict FIFO per stake tier.

    Each tier has its own lock; ``_guard`` protects the tier table and the
    player index and is only ever taken inside a tier lock, never around one.
    """

    def __init__(self, timeout_secs: float = DEFAULT_QUEUE_TIMEOUT_SEC,
                 clock: Callable[[], float] = time.time):
        self.timeout_secs = timeout_secs
        self._clock = clock
        self._tiers: Dict[str, List[QueueEntry]] = {}
        self._tier_locks: Dict[str, threading.Lock] = {}
        self._index: Dict[str, str] = {}  # player_id -> stake
        self._guard = threading.Lock()

    def _lock_for(self, stake: str) -> threading.Lock:
        with self._guard:
            lock = self._tier_locks.get(stake)
            if lock is None:
                lock = self._tier_locks[stake] = threading.Lock()
                self._tiers[stake] = []
            return lock

    def _forget(self, entry: QueueEntry) -> None:
        with self._guard:
            if self._index.get(entry.player_id) == entry.stake:
                del self._index[entry.player_id]

    def join(self, player_id: str, stake: str,
             ticket: Optional[MatchTicket] = None) -> Optional[str]:
        """Pair ``player_id`` with the oldest waiting player in its tier.

        Returns the opponent's ID on a match, after notifying the
        opponent's ticket. Otherwise parks the player and returns None.
        """
        stake = normalize_stake(stake)
        ticket = ticket or MatchTicket(player_id)
        with self._lock_for(stake):
            queue = self._tiers[stake]
            now = self._clock()
            live = []
            for entry in queue:
                if now - entry.enqueued_at < self.timeout_secs and entry.player_id != player_id:
                    live.append(entry)
                else:
                    self._forget(entry)

            with self._guard:
                other_tier = self._index.get(player_id)
            if other_tier is not None:
                queue[:] = live
                raise ProtocolViolation(f'Already queued at stake {other_tier}')

            if live:
                opponent = live.pop(0)
                queue[:] = live
                self._forget(opponent)
                opponent.ticket.notify(player_id)
                ticket.notify(opponent.player_id)
                logger.info(f"[queue-match] stake={stake} waiting={opponent.player_id} joiner={player_id}")
                return opponent.player_id

            live.append(QueueEntry(player_id=player_id, stake=stake, enqueued_at=now, ticket=ticket))
            queue[:] = live
            with self._guard:
                self._index[player_id] = stake
            logger.info(f"[queue-join] stake={stake} player={player_id} depth={len(queue)}")
            return None

    def _remove(self, player_id: str, predicate: Callable[[QueueEntry], bool]) -> bool:
        with self._guard:
            stake = self._index.get(player_id)
        if stake is None:
            return False
        with self._lock_for(stake):
            queue = self._tiers[stake]
            keep = [e for e in queue if not (e.player_id == player_id and predicate(e))]
            removed = len(keep) < len(queue)
            queue[:] = keep
            if removed:
                with self._guard:
                    if self._index.get(player_id) == stake:
                        del self._index[player_id]
            return removed

    def leave(self, player_id: str) -> bool:
        return self._remove(player_id, lambda e: True)

    def expire(self, player_id: str, enqueued_at: float) -> bool:
        """Drop the entry parked at ``enqueued_at`` if it is still waiting."""
        removed = self._remove(player_id, lambda e: e.enqueued_at == enqueued_at)
        if removed:
            logger.info(f"[queue-timeout] player={player_id}")
        return removed

    def entry_for(self, player_id: str) -> Optional[QueueEntry]:
        with self._guard:
            stake = self._index.get(player_id)
        if stake is None:
            return None
        with self._lock_for(stake):
            for entry in self._tiers[stake]:
                if entry.player_id == player_id:
                    return entry
        return None

    def is_queued(self, player_id: str) -> bool:
        with self._guard:
            return player_id in self._index

    def stats(self):
        with self._guard:
            by_stake = {stake: len(queue) for stake, queue in self._tiers.items() if queue}
        return {'totalQueued': sum(by_stake.values()), 'byStake': by_stake}
