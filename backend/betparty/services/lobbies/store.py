"""Record store interface and its SQLAlchemy implementation.

Services only talk to ``RecordStore``. Writes are staged in the current
session and become durable on ``commit``; committed lobby rows are then
pushed through the change feed.
"""

import abc
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from betparty import db
from betparty.errors import ConflictError, TransientIOError
from betparty.models import AnswerRecord, Game, Lobby, LobbyMember, User

_DIRTY_KEY = 'betparty_dirty_lobbies'


class RecordStore(abc.ABC):

    @abc.abstractmethod
    def get_lobby(self, lobby_id: str) -> Optional[Lobby]: ...

    @abc.abstractmethod
    def find_lobby_by_code(self, code: str) -> Optional[Lobby]: ...

    @abc.abstractmethod
    def lock_lobby(self, lobby_id: str) -> Optional[Lobby]: ...

    @abc.abstractmethod
    def insert_lobby(self, lobby: Lobby) -> Lobby: ...

    @abc.abstractmethod
    def update_lobby(self, lobby_id: str, fields: dict, expected_status=None) -> Lobby: ...

    @abc.abstractmethod
    def transition_lobby(self, lobby_id: str, expected_status, new_status: str, **fields) -> Lobby: ...

    @abc.abstractmethod
    def count_memberships(self, lobby_id: str) -> int: ...

    @abc.abstractmethod
    def list_memberships(self, lobby_id: str) -> List[LobbyMember]: ...

    @abc.abstractmethod
    def get_membership(self, lobby_id: str, user_id: str) -> Optional[LobbyMember]: ...

    @abc.abstractmethod
    def upsert_membership(self, lobby_id: str, user_id: str, joined_at: float) -> LobbyMember: ...

    @abc.abstractmethod
    def delete_membership(self, lobby_id: str, user_id: str) -> bool: ...

    @abc.abstractmethod
    def update_membership(self, lobby_id: str, user_id: str, fields: dict) -> None: ...

    @abc.abstractmethod
    def increment_membership(self, lobby_id: str, user_id: str, question_key: str,
                             points_delta: int, correct: bool) -> bool: ...

    @abc.abstractmethod
    def has_answer(self, lobby_id: str, user_id: str, question_key: str) -> bool: ...

    @abc.abstractmethod
    def append_answer_record(self, record: AnswerRecord) -> None: ...

    @abc.abstractmethod
    def get_game(self, game_id: str) -> Optional[Game]: ...

    @abc.abstractmethod
    def list_upcoming_games(self, now: float, limit: int = 25) -> List[Game]: ...

    @abc.abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abc.abstractmethod
    def set_user_balance(self, user_id: str, balance: int) -> None: ...

    @abc.abstractmethod
    def claim_settlement(self, lobby_id: str, now: float) -> bool: ...

    @abc.abstractmethod
    def save_settlement(self, lobby_id: str, payload: str) -> None: ...

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


class SqlRecordStore(RecordStore):
    """``RecordStore`` on the Flask-SQLAlchemy session of the current context."""

    def __init__(self, feed=None, logger=None):
        self.feed = feed
        self.logger = logger

    @property
    def session(self):
        return db.session

    def _mark_dirty(self, lobby_id: str) -> None:
        self.session.info.setdefault(_DIRTY_KEY, set()).add(lobby_id)

    def _execute(self, stmt):
        try:
            return self.session.execute(stmt.execution_options(synchronize_session=False))
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError(cause=exc.__class__.__name__) from exc

    def _touch_lobby(self, lobby_id: str) -> None:
        self._execute(sa.update(Lobby).where(Lobby.id == lobby_id).values(version=Lobby.version + 1))
        self._mark_dirty(lobby_id)

    # ---- lobbies ----

    def get_lobby(self, lobby_id):
        if not lobby_id:
            return None
        try:
            return self.session.get(Lobby, lobby_id, populate_existing=True)
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc

    def find_lobby_by_code(self, code):
        try:
            candidates = Lobby.query.filter_by(code=code).order_by(Lobby.created_at.desc()).all()
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc
        for lobby in candidates:
            if lobby.is_open:
                return lobby
        return candidates[0] if candidates else None

    def lock_lobby(self, lobby_id):
        try:
            return (
                Lobby.query.filter_by(id=lobby_id)
                .populate_existing()
                .with_for_update()
                .first()
            )
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc

    def insert_lobby(self, lobby):
        self.session.add(lobby)
        self._flush()
        self._mark_dirty(lobby.id)
        return lobby

    def update_lobby(self, lobby_id, fields, expected_status=None):
        """Last-write-wins update, optionally guarded on the current status."""
        stmt = sa.update(Lobby).where(Lobby.id == lobby_id)
        if expected_status is not None:
            stmt = stmt.where(Lobby.status.in_(_as_tuple(expected_status)))
        result = self._execute(stmt.values(version=Lobby.version + 1, **fields))
        if result.rowcount != 1:
            raise ConflictError()
        self._mark_dirty(lobby_id)
        return self.get_lobby(lobby_id)

    def transition_lobby(self, lobby_id, expected_status, new_status, **fields):
        return self.update_lobby(lobby_id, dict(fields, status=new_status), expected_status=expected_status)

    # ---- memberships ----

    def count_memberships(self, lobby_id):
        try:
            return LobbyMember.query.filter_by(lobby_id=lobby_id).count()
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc

    def list_memberships(self, lobby_id):
        try:
            return (
                LobbyMember.query.filter_by(lobby_id=lobby_id)
                .populate_existing()
                .order_by(LobbyMember.joined_at, LobbyMember.id)
                .all()
            )
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc

    def get_membership(self, lobby_id, user_id):
        try:
            return (
                LobbyMember.query.filter_by(lobby_id=lobby_id, user_id=user_id)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc

    def upsert_membership(self, lobby_id, user_id, joined_at):
        member = self.get_membership(lobby_id, user_id)
        if member is None:
            member = LobbyMember(lobby_id=lobby_id, user_id=user_id, joined_at=joined_at)
            self.session.add(member)
        elif member.left_at is not None:
            member.left_at = None
        self._flush()
        self._touch_lobby(lobby_id)
        return member

    def delete_membership(self, lobby_id, user_id):
        result = self._execute(
            sa.delete(LobbyMember).where(LobbyMember.lobby_id == lobby_id, LobbyMember.user_id == user_id)
        )
        if result.rowcount:
            self._touch_lobby(lobby_id)
        return bool(result.rowcount)

    def update_membership(self, lobby_id, user_id, fields):
        self._execute(
            sa.update(LobbyMember)
            .where(LobbyMember.lobby_id == lobby_id, LobbyMember.user_id == user_id)
            .values(version=LobbyMember.version + 1, **fields)
        )
        self._touch_lobby(lobby_id)

    def increment_membership(self, lobby_id, user_id, question_key, points_delta, correct):
        """Atomically score one answer; False when this key was already scored."""
        stmt = (
            sa.update(LobbyMember)
            .where(
                LobbyMember.lobby_id == lobby_id,
                LobbyMember.user_id == user_id,
                sa.or_(LobbyMember.last_question_key.is_(None), LobbyMember.last_question_key != question_key),
            )
            .values(
                points_earned=LobbyMember.points_earned + points_delta,
                correct_bets=LobbyMember.correct_bets + (1 if correct else 0),
                questions_attempted=LobbyMember.questions_attempted + 1,
                last_question_key=question_key,
                version=LobbyMember.version + 1,
            )
        )
        result = self._execute(stmt)
        if result.rowcount != 1:
            return False
        self._touch_lobby(lobby_id)
        return True

    # ---- answer log ----

    def has_answer(self, lobby_id, user_id, question_key):
        try:
            return AnswerRecord.query.filter_by(
                lobby_id=lobby_id, user_id=user_id, question_key=question_key
            ).first() is not None
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc

    def append_answer_record(self, record):
        self.session.add(record)
        self._flush()

    # ---- games ----

    def get_game(self, game_id):
        if not game_id:
            return None
        try:
            return self.session.get(Game, game_id)
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc

    def list_upcoming_games(self, now, limit=25):
        try:
            return (
                Game.query.filter(Game.start_time >= now)
                .order_by(Game.start_time, Game.id)
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc

    # ---- users and settlement ----

    def get_user(self, user_id):
        try:
            return self.session.get(User, user_id)
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc

    def set_user_balance(self, user_id, balance):
        self._execute(sa.update(User).where(User.id == user_id).values(balance=balance))

    def claim_settlement(self, lobby_id, now):
        result = self._execute(
            sa.update(Lobby)
            .where(Lobby.id == lobby_id, Lobby.status == 'finished', Lobby.settled_at.is_(None))
            .values(settled_at=now, version=Lobby.version + 1)
        )
        if result.rowcount != 1:
            return False
        self._mark_dirty(lobby_id)
        return True

    def save_settlement(self, lobby_id, payload):
        self._execute(sa.update(Lobby).where(Lobby.id == lobby_id).values(settlement=payload))

    # ---- transactions ----

    def _flush(self):
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.rollback()
            raise ConflictError(cause='integrity') from exc
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc

    def commit(self):
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.rollback()
            raise ConflictError(cause='integrity') from exc
        except SQLAlchemyError as exc:
            self.rollback()
            raise TransientIOError() from exc
        dirty = self.session.info.pop(_DIRTY_KEY, set())
        if self.feed is not None:
            for lobby_id in sorted(dirty):
                lobby = self.get_lobby(lobby_id)
                if lobby is not None:
                    self.feed.publish(lobby_id, lobby.to_dict())

    def rollback(self):
        self.session.info.pop(_DIRTY_KEY, None)
        self.session.rollback()


def _as_tuple(value):
    if isinstance(value, (tuple, list, set, frozenset)):
        return tuple(value)
    return (value,)
