from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from .models import db, User, Lobby, LobbyMember, OPEN_STATUSES
from .services.lobbies.context import get_context

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the BetParty game server!'})


@main.route('/register', methods=['POST', 'OPTIONS'])
def register():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    if not username or not password:
        return jsonify({'error': 'Missing username or password', 'kind': 'validation'}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists', 'kind': 'validation'}), 400

    new_user = User(username=username, balance=get_context().settings.starting_balance)
    new_user.set_password(password)
    db.session.add(new_user)
    db.session.commit()
    login_user(new_user)
    return jsonify({"success": True, "user": new_user.to_dict()}), 201


@main.route('/login', methods=['POST', 'OPTIONS'])
def login():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    data = request.get_json(silent=True) or {}
    user = User.query.filter_by(username=data.get('username')).first()
    if user and user.check_password(data.get('password') or ''):
        login_user(user, remember=True)
        return jsonify({"success": True, "user": user.to_dict()})
    return jsonify({"success": False, "error": "Invalid username or password", 'kind': 'auth'}), 401


@main.route('/check_login', methods=['GET'])
@login_required
def check_login():
    return jsonify({"success": True, "user": current_user.to_dict()})


@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})


@main.route('/lobbies/active')
@login_required
def get_active_lobbies():
    # Open lobbies where the current user holds a seat
    lobbies = (
        Lobby.query.join(LobbyMember)
        .filter(LobbyMember.user_id == current_user.id, LobbyMember.left_at.is_(None))
        .filter(Lobby.status.in_(OPEN_STATUSES))
        .order_by(Lobby.created_at.desc())
        .all()
    )
    return jsonify([lobby.to_dict(include_members=False) for lobby in lobbies])
