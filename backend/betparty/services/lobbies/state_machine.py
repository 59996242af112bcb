"""Lobby lifecycle: waiting -> active -> finished, with cancel and host abort.

Only the owner moves a lobby between states or publishes questions. The
question scheduler acts on the owner's behalf with ``by_scheduler=True``.
"""

from typing import Optional

from betparty.errors import (
    AuthError,
    InvalidTransition,
    LobbyClosed,
    LobbyFull,
    NotAuthenticated,
    NotFoundError,
    StateError,
    ValidationError,
)
from betparty.models import CLOSED_STATUSES, Lobby, generate_lobby_code
from .questions import Question

TRANSITIONS = {
    ('waiting', 'active'),
    ('active', 'waiting'),
    ('active', 'finished'),
    ('waiting', 'cancelled'),
    ('active', 'cancelled'),
}


def can_transition(current: str, target: str) -> bool:
    return (current, target) in TRANSITIONS


def check_transition(current: str, target: str) -> None:
    if can_transition(current, target):
        return
    if current in CLOSED_STATUSES:
        raise LobbyClosed(f'This lobby is already {current}')
    raise InvalidTransition(f'Cannot move a {current} lobby to {target}')


def load_lobby(ctx, lobby_id) -> Lobby:
    lobby = ctx.store.get_lobby(lobby_id)
    if lobby is None:
        raise NotFoundError('Lobby not found')
    return lobby


def require_owner(lobby: Lobby, user_id, action: str = 'do that') -> None:
    if not user_id:
        raise NotAuthenticated()
    if lobby.owner_id != user_id:
        raise AuthError(f'Only the host can {action}')


def _transition(ctx, lobby: Lobby, target: str, **fields) -> Lobby:
    current = lobby.status
    check_transition(current, target)
    updated = ctx.store.transition_lobby(lobby.id, current, target, **fields)
    ctx.store.commit()
    ctx.logger.info(f"[lobby-{target}] lobby={lobby.id} from={current} version={updated.version}")
    return ctx.store.get_lobby(lobby.id)


def _whole_number(value, name, minimum=0):
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(f'{name} must be a whole number')
    try:
        number = int(value)
    except ValueError:
        raise ValidationError(f'{name} must be a whole number')
    if number < minimum:
        raise ValidationError(f'{name} must be at least {minimum}')
    return number


def list_upcoming_games(ctx, limit=25) -> list:
    """Games that have not started yet, soonest first."""
    return ctx.store.list_upcoming_games(ctx.now(), limit=limit)


def create_lobby(ctx, owner_id, buy_in=None, max_players=None, event_name=None, game_id=None) -> Lobby:
    """Create a waiting lobby and seat its owner as the first member.

    ``game_id`` ties the lobby to a catalog game and must exist; the game's
    label becomes the event name unless one is given.
    """
    if not owner_id:
        raise NotAuthenticated()
    settings = ctx.settings
    buy_in = _whole_number(settings.default_buy_in if buy_in is None else buy_in, 'buy_in')
    max_players = _whole_number(
        settings.default_max_players if max_players is None else max_players, 'max_players', minimum=1
    )
    if event_name is not None and not isinstance(event_name, str):
        raise ValidationError('event_name must be text')
    game = None
    if game_id is not None:
        if not isinstance(game_id, str) or not game_id.strip():
            raise ValidationError('game_id must be text')
        game = ctx.store.get_game(game_id.strip())
        if game is None:
            raise NotFoundError('Game not found')
    now = ctx.now()
    lobby = Lobby(
        owner_id=owner_id,
        game_id=game.id if game is not None else None,
        event_name=(event_name or '').strip() or (game.label if game is not None else None),
        buy_in=buy_in,
        max_players=max_players,
        status='waiting',
        code=generate_lobby_code(settings.lobby_code_length),
        created_at=now,
    )
    ctx.store.insert_lobby(lobby)
    ctx.store.upsert_membership(lobby.id, owner_id, joined_at=now)
    ctx.store.commit()
    ctx.logger.info(
        f"[lobby-create] lobby={lobby.id} code={lobby.code} owner={owner_id} buy_in={buy_in} game={lobby.game_id}"
    )
    return ctx.store.get_lobby(lobby.id)


def resolve_lobby(ctx, code_or_id) -> Lobby:
    if not isinstance(code_or_id, str) or not code_or_id.strip():
        raise ValidationError('A lobby code is required')
    value = code_or_id.strip()
    lobby = ctx.store.get_lobby(value) or ctx.store.find_lobby_by_code(value.upper())
    if lobby is None:
        raise NotFoundError('Lobby not found')
    return lobby


def join_lobby(ctx, code_or_id, user_id) -> Lobby:
    """Add ``user_id`` to a lobby by id or join code.

    Joining twice is a no-op. The member count is read under a row lock and
    re-checked once the new row is flushed, so concurrent joins cannot
    overshoot ``max_players``.
    """
    if not user_id:
        raise NotAuthenticated()
    lobby = resolve_lobby(ctx, code_or_id)
    lobby = ctx.store.lock_lobby(lobby.id)
    if lobby.status in CLOSED_STATUSES:
        ctx.store.rollback()
        raise LobbyClosed()

    existing = ctx.store.get_membership(lobby.id, user_id)
    if existing is not None:
        if existing.left_at is not None:
            ctx.store.upsert_membership(lobby.id, user_id, joined_at=existing.joined_at)
            ctx.store.commit()
            ctx.logger.info(f"[lobby-rejoin] lobby={lobby.id} user={user_id}")
        else:
            ctx.store.rollback()
        return ctx.store.get_lobby(lobby.id)

    max_players = lobby.max_players
    if ctx.store.count_memberships(lobby.id) >= max_players:
        ctx.store.rollback()
        raise LobbyFull()
    ctx.store.upsert_membership(lobby.id, user_id, joined_at=ctx.now())
    if ctx.store.count_memberships(lobby.id) > max_players:
        ctx.store.rollback()
        raise LobbyFull()
    ctx.store.commit()
    ctx.logger.info(f"[lobby-join] lobby={lobby.id} user={user_id}")
    return ctx.store.get_lobby(lobby.id)


def leave_lobby(ctx, lobby_id, user_id) -> Lobby:
    """Remove a member.

    While waiting the row is deleted; once the lobby is live it is only
    marked as left, since the buy-in is already in the pool. The host
    leaving cancels a waiting lobby and pauses a live one.
    """
    if not user_id:
        raise NotAuthenticated()
    lobby = load_lobby(ctx, lobby_id)
    membership = ctx.store.get_membership(lobby.id, user_id)
    if membership is None:
        raise NotFoundError('You are not in this lobby')
    if lobby.status in CLOSED_STATUSES:
        raise LobbyClosed()

    is_owner = lobby.owner_id == user_id
    if lobby.status == 'waiting':
        if is_owner:
            return _transition(ctx, lobby, 'cancelled', current_question=None, question_published_at=None)
        ctx.store.delete_membership(lobby.id, user_id)
        ctx.store.commit()
        ctx.logger.info(f"[lobby-leave] lobby={lobby.id} user={user_id}")
        return ctx.store.get_lobby(lobby.id)

    if is_owner:
        return abort_lobby(ctx, lobby.id, user_id)
    if membership.left_at is None:
        ctx.store.update_membership(lobby.id, user_id, {'left_at': ctx.now()})
        ctx.store.commit()
    ctx.logger.info(f"[lobby-leave] lobby={lobby.id} user={user_id} soft=1")
    return ctx.store.get_lobby(lobby.id)


def start_lobby(ctx, lobby_id, owner_id) -> Lobby:
    lobby = load_lobby(ctx, lobby_id)
    require_owner(lobby, owner_id, 'start this lobby')
    if lobby.status == 'active':
        raise InvalidTransition('This lobby has already started')
    return _transition(
        ctx, lobby, 'active',
        started_at=ctx.now(), current_question=None, question_published_at=None,
    )


def abort_lobby(ctx, lobby_id, owner_id) -> Lobby:
    """Host stepped out of a live lobby: back to waiting, question cleared."""
    lobby = load_lobby(ctx, lobby_id)
    require_owner(lobby, owner_id, 'pause this lobby')
    return _transition(ctx, lobby, 'waiting', current_question=None, question_published_at=None)


def finish_lobby(ctx, lobby_id, owner_id=None, by_scheduler=False) -> Lobby:
    lobby = load_lobby(ctx, lobby_id)
    if not by_scheduler:
        require_owner(lobby, owner_id, 'finish this lobby')
    return _transition(ctx, lobby, 'finished', current_question=None, question_published_at=None)


def cancel_lobby(ctx, lobby_id, owner_id) -> Lobby:
    lobby = load_lobby(ctx, lobby_id)
    require_owner(lobby, owner_id, 'cancel this lobby')
    return _transition(ctx, lobby, 'cancelled', current_question=None, question_published_at=None)


def publish_question(ctx, lobby_id, payload, owner_id=None, by_scheduler=False) -> Question:
    """Broadcast a question to the lobby, replacing any current one."""
    lobby = load_lobby(ctx, lobby_id)
    if not by_scheduler:
        require_owner(lobby, owner_id, 'publish questions')
    question = Question.from_payload(payload)
    if lobby.status != 'active':
        raise StateError('Questions can only be published while the lobby is live')
    question = question.with_seq(int(lobby.question_seq or 0) + 1)
    ctx.store.update_lobby(
        lobby.id,
        {
            'current_question': question.serialize(),
            'question_seq': question.seq,
            'question_published_at': ctx.now(),
        },
        expected_status='active',
    )
    ctx.store.commit()
    ctx.logger.info(f"[question-publish] lobby={lobby.id} seq={question.seq} key={question.key[:12]}")
    return question


def clear_question(ctx, lobby_id, owner_id=None, by_scheduler=False, expected_key: Optional[str] = None) -> bool:
    """Retire the live question. False when nothing (or another question) is live."""
    lobby = load_lobby(ctx, lobby_id)
    if not by_scheduler:
        require_owner(lobby, owner_id, 'clear questions')
    question = lobby.question
    if question is None:
        return False
    if expected_key is not None and question.key != expected_key:
        return False
    ctx.store.update_lobby(
        lobby.id, {'current_question': None, 'question_published_at': None}, expected_status='active'
    )
    ctx.store.commit()
    ctx.logger.info(f"[question-clear] lobby={lobby.id} seq={question.seq}")
    return True


def get_lobby_state(ctx, lobby_id) -> dict:
    return load_lobby(ctx, lobby_id).to_dict(include_members=True)
