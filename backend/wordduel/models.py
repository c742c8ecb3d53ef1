from wordduel import db
import json


class DuelRecord(db.Model):
    __tablename__ = 'duel_record'
    id = db.Column(db.String(36), primary_key=True)
    player1 = db.Column(db.String(128), nullable=False, index=True)
    player2 = db.Column(db.String(128), nullable=True, index=True)
    phase = db.Column(db.String(32), nullable=False)  # waiting, setting_words, playing, finished
    winner = db.Column(db.String(128), nullable=True, index=True)
    end_reason = db.Column(db.String(16), nullable=True)  # solved, timeout, draw
    stake = db.Column(db.String(64), nullable=False, default='0')
    turn = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.Float, nullable=False)
    finished_at = db.Column(db.Float, nullable=True)
    updated_at = db.Column(db.Float, nullable=True)
    snapshot = db.Column(db.Text, nullable=False)  # JSON, secret words included

    def to_dict(self):
        try:
            data = json.loads(self.snapshot) if self.snapshot else {}
        except ValueError:
            data = {}
        data.update({
            'duelID': self.id,
            'phase': self.phase,
            'winner': self.winner,
            'endReason': self.end_reason,
            'stake': self.stake,
            'turn': self.turn,
        })
        return data
