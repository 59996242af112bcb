from betparty import db, bcrypt
from betparty.services.lobbies.questions import Question
from flask_login import UserMixin
from uuid import uuid4
import json
import random
import time

LOBBY_CODE_ALPHABET = 'ABCDEFGHJKMNPQRSTUVWXYZ23456789'
OPEN_STATUSES = ('waiting', 'active')
CLOSED_STATUSES = ('finished', 'cancelled')


def new_id():
    return uuid4().hex


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    balance = db.Column(db.Integer, nullable=False, default=0)

    def __init__(self, **kwargs):
        super(User, self).__init__(**kwargs)
        if not self.id:
            self.id = new_id()

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'balance': self.balance,
        }


def display_name(user, user_id):
    """Username for leaderboards, falling back to a shortened id."""
    if user is not None and user.username:
        return user.username
    return (user_id or '')[:8] or 'Player'


def generate_lobby_code(length=6):
    """Generate a join code that no open lobby is using."""
    while True:
        code = ''.join(random.choices(LOBBY_CODE_ALPHABET, k=length))
        taken = Lobby.query.filter(Lobby.code == code, Lobby.status.in_(OPEN_STATUSES)).first()
        if not taken:
            return code


class Game(db.Model):
    """A scheduled sporting event lobbies are played against."""
    __tablename__ = 'game'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    league = db.Column(db.String(32), nullable=False)
    home = db.Column(db.String(64), nullable=False)
    away = db.Column(db.String(64), nullable=False)
    start_time = db.Column(db.Float, nullable=False, index=True)

    def __init__(self, **kwargs):
        super(Game, self).__init__(**kwargs)
        if not self.id:
            self.id = new_id()

    @property
    def label(self):
        return f"{self.league}: {self.away} @ {self.home}"

    def to_dict(self):
        return {
            'id': self.id,
            'league': self.league,
            'home': self.home,
            'away': self.away,
            'start_time': self.start_time,
            'label': self.label,
        }


class Lobby(db.Model):
    __tablename__ = 'lobby'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    # Unique among open lobbies only; enforced by generate_lobby_code
    code = db.Column(db.String(16), nullable=False, index=True)
    owner_id = db.Column(db.String(32), db.ForeignKey('user.id'), nullable=False)
    game_id = db.Column(db.String(32), db.ForeignKey('game.id'), nullable=True, index=True)
    event_name = db.Column(db.String(128), nullable=True)
    buy_in = db.Column(db.Integer, nullable=False, default=0)
    max_players = db.Column(db.Integer, nullable=False, default=5)
    status = db.Column(db.String(16), nullable=False, default='waiting', index=True)  # waiting, active, finished, cancelled
    current_question = db.Column(db.Text, nullable=True)  # serialized Question
    question_seq = db.Column(db.Integer, nullable=False, default=0)
    question_published_at = db.Column(db.Float, nullable=True)
    started_at = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    version = db.Column(db.Integer, nullable=False, default=1)
    settled_at = db.Column(db.Float, nullable=True)
    settlement = db.Column(db.Text, nullable=True)  # cached leaderboard payload (JSON)

    owner = db.relationship('User', foreign_keys=[owner_id])
    game = db.relationship('Game')
    members = db.relationship(
        'LobbyMember',
        back_populates='lobby',
        order_by=lambda: [LobbyMember.joined_at, LobbyMember.id],
    )

    def __init__(self, **kwargs):
        super(Lobby, self).__init__(**kwargs)
        if not self.id:
            self.id = new_id()
        if not self.code:
            self.code = generate_lobby_code()

    @property
    def question(self):
        if not self.current_question:
            return None
        return Question.deserialize(self.current_question)

    @property
    def is_open(self):
        return self.status in OPEN_STATUSES

    def to_dict(self, include_members=True):
        question = self.question
        data = {
            'id': self.id,
            'code': self.code,
            'owner_id': self.owner_id,
            'game_id': self.game_id,
            'game': self.game.to_dict() if self.game is not None else None,
            'event_name': self.event_name,
            'buy_in': self.buy_in,
            'max_players': self.max_players,
            'status': self.status,
            'current_question': question.to_public_dict() if question else None,
            'question_published_at': self.question_published_at,
            'started_at': self.started_at,
            'created_at': self.created_at,
            'version': self.version,
            'settled': self.settled_at is not None,
        }
        if include_members:
            players = [m.to_dict() for m in self.members]
            data['players'] = players
            data['player_count'] = len(players)
        return data


class LobbyMember(db.Model):
    __tablename__ = 'lobby_member'
    __table_args__ = (
        db.UniqueConstraint('lobby_id', 'user_id', name='uq_lobby_member'),
    )
    id = db.Column(db.Integer, primary_key=True)
    lobby_id = db.Column(db.String(32), db.ForeignKey('lobby.id'), nullable=False, index=True)
    user_id = db.Column(db.String(32), db.ForeignKey('user.id'), nullable=False)
    points_earned = db.Column(db.Integer, nullable=False, default=0)
    correct_bets = db.Column(db.Integer, nullable=False, default=0)
    questions_attempted = db.Column(db.Integer, nullable=False, default=0)
    joined_at = db.Column(db.Float, nullable=False, default=time.time)
    left_at = db.Column(db.Float, nullable=True)
    # Key of the last question scored for this member; guards the atomic increment
    last_question_key = db.Column(db.String(64), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    lobby = db.relationship('Lobby', back_populates='members')
    user = db.relationship('User')

    def stats(self):
        return {
            'points_earned': self.points_earned,
            'correct_bets': self.correct_bets,
            'questions_attempted': self.questions_attempted,
        }

    def to_dict(self):
        data = {
            'lobby_id': self.lobby_id,
            'user_id': self.user_id,
            'username': display_name(self.user, self.user_id),
            'joined_at': self.joined_at,
            'left': self.left_at is not None,
        }
        data.update(self.stats())
        return data


class AnswerRecord(db.Model):
    __tablename__ = 'lobby_answer'
    __table_args__ = (
        db.UniqueConstraint('lobby_id', 'user_id', 'question_key', name='uq_lobby_answer'),
    )
    id = db.Column(db.Integer, primary_key=True)
    lobby_id = db.Column(db.String(32), db.ForeignKey('lobby.id'), nullable=False, index=True)
    user_id = db.Column(db.String(32), db.ForeignKey('user.id'), nullable=False)
    question_key = db.Column(db.String(64), nullable=False)
    question_text = db.Column(db.Text, nullable=True)
    answer = db.Column(db.String(8), nullable=False)
    is_correct = db.Column(db.Boolean, nullable=False, default=False)
    points_delta = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.Float, nullable=False, default=time.time)

    def to_dict(self):
        return {
            'lobby_id': self.lobby_id,
            'user_id': self.user_id,
            'question_key': self.question_key,
            'question_text': self.question_text,
            'answer': self.answer,
            'is_correct': self.is_correct,
            'points_delta': self.points_delta,
            'created_at': self.created_at,
        }


def load_settlement(lobby):
    return json.loads(lobby.settlement) if lobby.settlement else None
