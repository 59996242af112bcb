from flask_socketio import join_room, leave_room, emit
from flask_login import current_user
from betparty import socketio
from flask import current_app, request
from betparty.errors import BetPartyError, ValidationError, error_payload
from betparty.services.lobbies.context import get_context
from betparty.services.lobbies import state_machine
from typing import Dict, Any
import time


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    # On disconnect, if this socket was the host of a live lobby and no other
    # host socket remains, pause the lobby after a grace period
    seat = _socket_seats.pop(_get_sid(), None)
    if not seat:
        return
    lobby_id = seat.get('lobby_id')
    if seat.get('is_owner') and lobby_id:
        _owner_count[lobby_id] = max(0, _owner_count.get(lobby_id, 0) - 1)
        # In tests, pause immediately for determinism; in prod, allow grace period
        if current_app and current_app.config.get('TESTING'):
            if _owner_count.get(lobby_id, 0) == 0:
                _pause_for_missing_host(current_app._get_current_object(), lobby_id)
            return
        _schedule_pause_if_no_owner(current_app._get_current_object(), lobby_id)


def _current_user_id():
    if current_user and current_user.is_authenticated:
        return current_user.id
    return None


def handle_join_lobby(data):
    lobby_id = (data or {}).get('lobby_id')
    if not lobby_id:
        emit('error', error_payload(ValidationError('lobby_id is required')))
        return
    try:
        lobby = state_machine.load_lobby(get_context(), lobby_id)
    except BetPartyError as err:
        emit('error', error_payload(err))
        return
    room = f"lobby:{lobby.id}"
    join_room(room)
    # Track host presence per socket; a repeated join from the same socket counts once
    is_owner = _current_user_id() is not None and _current_user_id() == lobby.owner_id
    previous = _socket_seats.get(_get_sid())
    already_counted = bool(previous) and previous.get('is_owner') and previous.get('lobby_id') == lobby.id
    if previous and previous.get('is_owner') and not already_counted:
        old_id = previous.get('lobby_id')
        _owner_count[old_id] = max(0, _owner_count.get(old_id, 0) - 1)
    _socket_seats[_get_sid()] = {'lobby_id': lobby.id, 'is_owner': is_owner}
    if is_owner and not already_counted:
        _owner_count[lobby.id] = _owner_count.get(lobby.id, 0) + 1
        _cancel_scheduled_pause(lobby.id)
    emit('joined', {'room': room, 'lobby': lobby.to_dict()})


def handle_leave_lobby(data):
    lobby_id = (data or {}).get('lobby_id')
    if not lobby_id:
        emit('error', error_payload(ValidationError('lobby_id is required')))
        return
    room = f"lobby:{lobby_id}"
    leave_room(room)
    emit('left', {'room': room})
    # Explicit quit by the host leaves the lobby for real
    seat = _socket_seats.get(_get_sid())
    if seat and seat.get('is_owner') and seat.get('lobby_id') == lobby_id:
        _socket_seats.pop(_get_sid(), None)
        _owner_count[lobby_id] = max(0, _owner_count.get(lobby_id, 0) - 1)
        try:
            lobby = state_machine.leave_lobby(get_context(), lobby_id, _current_user_id())
        except BetPartyError as err:
            emit('error', error_payload(err))
            return
        if lobby.status == 'cancelled':
            socketio.emit('session_ended', {'lobby_id': lobby_id}, to=room, namespace='/ws')


def handle_ping(data):
    emit('pong', data or {})

# ---- Host presence helpers ----

_socket_seats: Dict[str, Dict[str, Any]] = {}
_owner_count: Dict[str, int] = {}
_pause_deadline: Dict[str, float] = {}


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore

def _pause_for_missing_host(app, lobby_id: str) -> None:
    """Put a live lobby back to waiting because its host went away."""
    try:
        with app.app_context():
            ctx = get_context()
            lobby = ctx.store.get_lobby(lobby_id)
            if lobby is None or lobby.status != 'active':
                return
            state_machine.abort_lobby(ctx, lobby_id, lobby.owner_id)
            app.logger.info(f"[host-left] lobby={lobby_id} paused")
        socketio.emit('host_left', {'lobby_id': lobby_id}, to=f"lobby:{lobby_id}", namespace='/ws')
    except BetPartyError as err:
        app.logger.warning(f"[host-left] lobby={lobby_id} pause failed kind={err.kind}")
    finally:
        _pause_deadline.pop(lobby_id, None)

def _schedule_pause_if_no_owner(app, lobby_id: str) -> None:
    if _owner_count.get(lobby_id, 0) > 0:
        return
    delay_sec = get_context().settings.host_disconnect_grace_sec
    _pause_deadline[lobby_id] = time.time() + delay_sec

    def _runner(lid: str, deadline: float):
        sleep_for = max(0.0, deadline - time.time())
        if sleep_for:
            time.sleep(sleep_for)
        if _owner_count.get(lid, 0) == 0 and _pause_deadline.get(lid) == deadline:
            _pause_for_missing_host(app, lid)

    socketio.start_background_task(_runner, lobby_id, _pause_deadline[lobby_id])

def _cancel_scheduled_pause(lobby_id: str) -> None:
    _pause_deadline.pop(lobby_id, None)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    # Primary namespace
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('disconnect', handle_disconnect, namespace='/ws')
    socketio.on_event('join_lobby', handle_join_lobby, namespace='/ws')
    socketio.on_event('leave_lobby', handle_leave_lobby, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('disconnect', handle_disconnect, namespace='/')
        socketio.on_event('join_lobby', handle_join_lobby, namespace='/')
        socketio.on_event('leave_lobby', handle_leave_lobby, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
