"""Duel result storage behind a small save/load interface."""

import json
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from sqlalchemy import or_

from wordduel import db
from wordduel.models import DuelRecord

from .state import DuelState, Phase

logger = logging.getLogger(__name__)


def redact_record(record: dict) -> dict:
    """Strip secret words from a stored snapshot unless the duel is over."""
    data = dict(record)
    if data.get('phase') != Phase.FINISHED.value:
        for key in ('player1', 'player2'):
            if data.get(key):
                data[key] = {k: v for k, v in data[key].items() if k != 'secretWord'}
    return data


def _turns_to_win(rec: dict, player_id: str) -> int:
    for key in ('player1', 'player2'):
        slot = rec.get(key) or {}
        if slot.get('playerID') == player_id and slot.get('solvedOnTurn'):
            return slot['solvedOnTurn']
    # timeout wins have no solving turn
    return rec.get('turn') or 0


def summarize_player(player_id: str, records: List[dict]) -> dict:
    wins = losses = draws = 0
    win_turns = []
    stake_won = Decimal('0')
    for rec in records:
        if rec.get('phase') != Phase.FINISHED.value:
            continue
        winner = rec.get('winner')
        if winner is None:
            draws += 1
        elif winner == player_id:
            wins += 1
            win_turns.append(_turns_to_win(rec, player_id))
            try:
                stake_won += Decimal(rec.get('stake') or '0')
            except InvalidOperation:
                pass
        else:
            losses += 1
    total = wins + losses + draws
    return {
        'playerID': player_id,
        'wins': wins,
        'losses': losses,
        'draws': draws,
        'totalGames': total,
        'winRate': round(wins / total, 4) if total else 0.0,
        'avgTurnsToWin': round(sum(win_turns) / len(win_turns), 2) if win_turns else 0.0,
        'totalStakeWon': str(stake_won),
    }


class DuelStore:
    def save(self, state: DuelState) -> None:
        raise NotImplementedError

    def load(self, duel_id: str) -> Optional[dict]:
        raise NotImplementedError

    def player_stats(self, player_id: str) -> dict:
        raise NotImplementedError

    def leaderboard(self, limit: int = 10) -> List[dict]:
        raise NotImplementedError


class MemoryDuelStore(DuelStore):
    def __init__(self):
        self._records: Dict[str, dict] = {}

    def save(self, state: DuelState) -> None:
        self._records[state.id] = state.to_record()

    def load(self, duel_id: str) -> Optional[dict]:
        return self._records.get(duel_id)

    def _records_for(self, player_id: str) -> List[dict]:
        return [
            r for r in self._records.values()
            if player_id in (r['player1']['playerID'], (r.get('player2') or {}).get('playerID'))
        ]

    def player_stats(self, player_id: str) -> dict:
        return summarize_player(player_id, self._records_for(player_id))

    def leaderboard(self, limit: int = 10) -> List[dict]:
        winners = {r['winner'] for r in self._records.values() if r.get('winner')}
        rows = [self.player_stats(pid) for pid in winners]
        rows.sort(key=lambda r: (-r['wins'], -r['winRate'], r['playerID']))
        return rows[:limit]


class SqlDuelStore(DuelStore):
    """Flask-SQLAlchemy backed store.

    Every call opens its own app context so it can be used from timer
    callbacks running outside a request.
    """

    def __init__(self, app):
        self.app = app

    def save(self, state: DuelState) -> None:
        with self.app.app_context():
            try:
                record = db.session.get(DuelRecord, state.id)
                if record is None:
                    record = DuelRecord(id=state.id)
                record.player1 = state.slot_a.id
                record.player2 = state.slot_b.id if state.slot_b else None
                record.phase = state.phase.value
                record.winner = state.winner
                record.end_reason = state.end_reason
                record.stake = state.stake
                record.turn = state.turn
                record.created_at = state.created_at
                record.finished_at = state.finished_at
                record.snapshot = json.dumps(state.to_record())
                record.updated_at = time.time()
                db.session.add(record)
                db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception(f"[store] failed to save duel={state.id}")
                raise

    def load(self, duel_id: str) -> Optional[dict]:
        with self.app.app_context():
            record = db.session.get(DuelRecord, duel_id)
            return record.to_dict() if record else None

    def _records_for(self, player_id: str) -> List[dict]:
        with self.app.app_context():
            rows = DuelRecord.query.filter(
                or_(DuelRecord.player1 == player_id, DuelRecord.player2 == player_id)
            ).all()
            return [r.to_dict() for r in rows]

    def player_stats(self, player_id: str) -> dict:
        return summarize_player(player_id, self._records_for(player_id))

    def leaderboard(self, limit: int = 10) -> List[dict]:
        with self.app.app_context():
            wins = db.func.count(DuelRecord.id)
            rows = (
                db.session.query(DuelRecord.winner, wins)
                .filter(DuelRecord.winner.isnot(None))
                .group_by(DuelRecord.winner)
                .order_by(wins.desc(), DuelRecord.winner)
                .limit(limit)
                .all()
            )
        return [self.player_stats(winner) for winner, _ in rows]
