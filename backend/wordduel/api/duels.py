from flask import Blueprint, current_app, jsonify, request

from wordduel.services.duel.state import normalize_player_id
from wordduel.services.duel.errors import ValidationError
from wordduel.services.duel.store import redact_record

duels = Blueprint('duels', __name__)


def _registry():
    return current_app.extensions['duel_registry']


@duels.route('/duels/<string:duel_id>', methods=['GET'])
def get_duel(duel_id):
    """Redacted view of a live duel, or of a stored one once evicted."""
    registry = _registry()
    view = registry.public_view(duel_id)
    if view is not None:
        return jsonify(view), 200
    record = registry.store.load(duel_id)
    if record is None:
        return jsonify({'error': 'Duel not found'}), 404
    return jsonify(redact_record(record)), 200


@duels.route('/queue/stats', methods=['GET'])
def queue_stats():
    return jsonify(_registry().queue.stats()), 200


@duels.route('/players/<string:player_id>/stats', methods=['GET'])
def player_stats(player_id):
    try:
        player_id = normalize_player_id(player_id)
    except ValidationError as exc:
        return jsonify({'error': exc.message}), 400
    return jsonify(_registry().store.player_stats(player_id)), 200


@duels.route('/leaderboard', methods=['GET'])
def leaderboard():
    try:
        limit = int(request.args.get('limit', 10))
    except ValueError:
        return jsonify({'error': 'limit must be an integer'}), 400
    limit = max(1, min(limit, 100))
    return jsonify(_registry().store.leaderboard(limit)), 200
