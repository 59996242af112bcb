from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from betparty.errors import BetPartyError, ValidationError, error_payload, user_message
from betparty.services.lobbies.context import get_context
from betparty.services.lobbies import state_machine
from betparty.services.lobbies.answers import submit_answer
from betparty.services.lobbies.scheduler import is_scheduled, schedule_question_sequence
from betparty.services.lobbies.settlement import get_leaderboard, settle_lobby


lobbies = Blueprint('lobbies', __name__)


@lobbies.errorhandler(BetPartyError)
def handle_lobby_error(err):
    current_app.logger.info(f"[api-error] path={request.path} kind={err.kind} message={user_message(err)}")
    return jsonify(error_payload(err)), err.status_code


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _state_payload(lobby_id):
    ctx = get_context()
    payload = state_machine.get_lobby_state(ctx, lobby_id)
    # Include timing so clients can show countdowns
    payload['durations'] = {
        'question_window': ctx.settings.question_window_sec,
        'poll_interval': ctx.settings.poll_interval_sec,
    }
    payload['server_time'] = ctx.now()
    payload['sequence_running'] = is_scheduled(lobby_id)
    return payload


@lobbies.route('/create', methods=['POST'])
@login_required
def create_lobby():
    """
    Creates a new lobby and seats the current user as its host.
    """
    data = _json_body()
    lobby = state_machine.create_lobby(
        get_context(),
        current_user.id,
        buy_in=data.get('buy_in'),
        max_players=data.get('max_players'),
        event_name=data.get('event_name'),
        game_id=data.get('game_id'),
    )
    return jsonify({
        'message': 'New lobby created!',
        'lobby_id': lobby.id,
        'code': lobby.code,
        'lobby': lobby.to_dict(),
    }), 201


@lobbies.route('/games/upcoming', methods=['GET'])
@login_required
def upcoming_games():
    """
    Lists games that have not kicked off yet, soonest first.
    """
    games = state_machine.list_upcoming_games(get_context(), limit=25)
    return jsonify([game.to_dict() for game in games])


@lobbies.route('/join', methods=['POST'])
@login_required
def join_lobby():
    """
    Joins a lobby by its share code or id.
    """
    data = _json_body()
    target = data.get('code') or data.get('lobby_id')
    lobby = state_machine.join_lobby(get_context(), target, current_user.id)
    return jsonify({
        'message': f'Successfully joined lobby {lobby.code}',
        'lobby_id': lobby.id,
    }), 200


@lobbies.route('/<string:lobby_id>/state', methods=['GET'])
@login_required
def get_lobby_state(lobby_id):
    return jsonify(_state_payload(lobby_id))


@lobbies.route('/<string:lobby_id>/start', methods=['POST'])
@login_required
def start_lobby(lobby_id):
    state_machine.start_lobby(get_context(), lobby_id, current_user.id)
    return jsonify(_state_payload(lobby_id))


@lobbies.route('/<string:lobby_id>/leave', methods=['POST'])
@login_required
def leave_lobby(lobby_id):
    lobby = state_machine.leave_lobby(get_context(), lobby_id, current_user.id)
    return jsonify({'message': 'You have left the lobby.', 'status': lobby.status})


@lobbies.route('/<string:lobby_id>/cancel', methods=['POST'])
@login_required
def cancel_lobby(lobby_id):
    state_machine.cancel_lobby(get_context(), lobby_id, current_user.id)
    return jsonify(_state_payload(lobby_id))


@lobbies.route('/<string:lobby_id>/finish', methods=['POST'])
@login_required
def finish_lobby(lobby_id):
    state_machine.finish_lobby(get_context(), lobby_id, owner_id=current_user.id)
    return jsonify(_state_payload(lobby_id))


@lobbies.route('/<string:lobby_id>/questions', methods=['POST'])
@login_required
def publish_question(lobby_id):
    question = state_machine.publish_question(
        get_context(), lobby_id, _json_body(), owner_id=current_user.id
    )
    return jsonify({'question': question.to_public_dict()}), 201


@lobbies.route('/<string:lobby_id>/questions/clear', methods=['POST'])
@login_required
def clear_question(lobby_id):
    cleared = state_machine.clear_question(get_context(), lobby_id, owner_id=current_user.id)
    return jsonify({'cleared': cleared})


@lobbies.route('/<string:lobby_id>/questions/sequence', methods=['POST'])
@login_required
def run_question_sequence(lobby_id):
    ctx = get_context()
    lobby = state_machine.load_lobby(ctx, lobby_id)
    state_machine.require_owner(lobby, current_user.id, 'run questions')
    questions = _json_body().get('questions')
    scheduled = schedule_question_sequence(current_app._get_current_object(), lobby_id, questions)
    return jsonify({'scheduled': scheduled}), 202


@lobbies.route('/<string:lobby_id>/answer', methods=['POST'])
@login_required
def answer_question(lobby_id):
    data = _json_body()
    outcome = submit_answer(
        get_context(), lobby_id, current_user.id, data.get('question_key'), data.get('choice')
    )
    return jsonify(outcome.to_dict())


@lobbies.route('/<string:lobby_id>/stats', methods=['GET'])
@login_required
def get_my_stats(lobby_id):
    ctx = get_context()
    state_machine.load_lobby(ctx, lobby_id)
    membership = ctx.store.get_membership(lobby_id, current_user.id)
    if membership is None:
        return jsonify({'error': 'You are not in this lobby', 'kind': 'not_found'}), 404
    return jsonify(membership.stats())


@lobbies.route('/<string:lobby_id>/settle', methods=['POST'])
@login_required
def settle(lobby_id):
    payload = settle_lobby(get_context(), lobby_id, requester_id=current_user.id)
    if payload.get('settling'):
        return jsonify(payload), 202
    return jsonify(payload)


@lobbies.route('/<string:lobby_id>/leaderboard', methods=['GET'])
@login_required
def leaderboard(lobby_id):
    return jsonify(get_leaderboard(get_context(), lobby_id))
