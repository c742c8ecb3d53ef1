"""Wire the duel services to a Flask app and its Socket.IO server."""

from .matchmaking import MatchQueue
from .registry import SessionRegistry
from .scheduler import BackgroundScheduler, ManualScheduler
from .store import SqlDuelStore
from .words import load_word_list


def build_registry(app, socketio) -> SessionRegistry:
    """Build the app's registry.

    - TESTING uses a ManualScheduler so timers only fire when a test
      advances the clock
    - Otherwise timers run as Socket.IO background tasks
    """
    cfg = app.config
    if cfg.get('TESTING') and not cfg.get('ENABLE_SCHEDULER_IN_TESTS'):
        scheduler = ManualScheduler()
    else:
        scheduler = BackgroundScheduler(socketio, heartbeat_sec=int(cfg.get('TIMER_HEARTBEAT_SEC', 0)))

    def send(sid, event, payload):
        # Use socketio.emit since this may be called from a background task
        socketio.emit(event, payload, to=sid, namespace='/ws')

    return SessionRegistry(
        queue=MatchQueue(timeout_secs=int(cfg.get('QUEUE_TIMEOUT_SEC', 300)), clock=scheduler.time),
        scheduler=scheduler,
        send=send,
        store=SqlDuelStore(app),
        is_valid_word=load_word_list(cfg.get('WORD_LIST_PATH')),
        turn_duration_secs=int(cfg.get('TURN_DURATION_SEC', 120)),
        max_turns=int(cfg.get('MAX_TURNS', 6)),
        evict_grace_secs=int(cfg.get('DUEL_EVICT_GRACE_SEC', 30)),
        abandon_grace_secs=int(cfg.get('DUEL_ABANDON_GRACE_SEC', 300)),
    )
