import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///word-duel.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = [
        o.strip() for o in os.environ.get(
            'CORS_ORIGINS',
            'http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000',
        ).split(',') if o.strip()
    ]
    # Turn timer (seconds) and turn limit for new duels
    TURN_DURATION_SEC = int(os.environ.get('TURN_DURATION_SEC', '120'))
    MAX_TURNS = int(os.environ.get('MAX_TURNS', '6'))
    # Matchmaking: how long a player may wait in a stake tier (seconds)
    QUEUE_TIMEOUT_SEC = int(os.environ.get('QUEUE_TIMEOUT_SEC', '300'))
    # Finished duels stay readable this long before eviction (seconds)
    DUEL_EVICT_GRACE_SEC = int(os.environ.get('DUEL_EVICT_GRACE_SEC', '30'))
    # Unfinished duels with no connected sockets are evicted after this (seconds)
    DUEL_ABANDON_GRACE_SEC = int(os.environ.get('DUEL_ABANDON_GRACE_SEC', '300'))
    # Optional newline-separated dictionary; unset accepts any 5-letter word
    WORD_LIST_PATH = os.environ.get('WORD_LIST_PATH')
    # Optional: heartbeat interval for timer worker logs (sec). 0 disables.
    TIMER_HEARTBEAT_SEC = int(os.environ.get('TIMER_HEARTBEAT_SEC', '0'))
