from dataclasses import asdict, dataclass

from betparty.errors import (
    AlreadyAnswered,
    ConflictError,
    NoActiveQuestion,
    NotAuthenticated,
    NotFoundError,
    QuestionExpired,
    TransientIOError,
    UpdateFailed,
    ValidationError,
)
from betparty.models import AnswerRecord
from .questions import Question, normalize_choice
from .state_machine import load_lobby


@dataclass
class AnswerOutcome:
    question_key: str
    answer: str
    is_correct: bool
    points_delta: int
    points_earned: int
    correct_bets: int
    questions_attempted: int
    log_recorded: bool

    def to_dict(self):
        return asdict(self)


def score_choice(question: Question, choice: str, settings) -> tuple:
    """Return ``(is_correct, points_delta)`` for one Yes/No choice."""
    is_correct = question.is_correct(choice)
    return is_correct, settings.correct_points if is_correct else settings.wrong_points


def submit_answer(ctx, lobby_id, player_id, question_key, choice) -> AnswerOutcome:
    """Score one player's answer to the live question.

    The accumulators are bumped by a single conditional UPDATE that also
    records the question key, so a second answer for the same key (from a
    double tap or another device) scores nothing. The answer log is written
    afterwards and is best-effort: a failed append is logged as a warning
    and reported through ``log_recorded``.
    """
    if not player_id:
        raise NotAuthenticated()
    store = ctx.store
    lobby = load_lobby(ctx, lobby_id)
    membership = store.get_membership(lobby.id, player_id)
    if membership is None or membership.left_at is not None:
        raise NotFoundError('You are not playing in this lobby')

    question = lobby.question if lobby.status == 'active' else None
    if question is None or question.key != question_key:
        raise NoActiveQuestion()

    answer = normalize_choice(choice)
    if answer is None:
        raise ValidationError('Answer must be Yes or No')
    if store.has_answer(lobby.id, player_id, question_key):
        raise AlreadyAnswered()

    published_at = lobby.question_published_at
    settings = ctx.settings
    if published_at is not None:
        deadline = published_at + settings.question_window_sec + settings.answer_grace_sec
        if ctx.now() > deadline:
            raise QuestionExpired()

    is_correct, delta = score_choice(question, answer, settings)
    try:
        scored = store.increment_membership(lobby.id, player_id, question_key, delta, is_correct)
        if not scored:
            store.rollback()
            raise AlreadyAnswered()
        store.commit()
    except (TransientIOError, ConflictError) as exc:
        store.rollback()
        ctx.logger.error(f"[answer-update-failed] lobby={lobby.id} user={player_id} kind={exc.kind}")
        raise UpdateFailed() from exc

    log_recorded = True
    try:
        store.append_answer_record(AnswerRecord(
            lobby_id=lobby.id,
            user_id=player_id,
            question_key=question_key,
            question_text=question.text,
            answer=answer,
            is_correct=is_correct,
            points_delta=delta,
            created_at=ctx.now(),
        ))
        store.commit()
    except (TransientIOError, ConflictError) as exc:
        store.rollback()
        log_recorded = False
        ctx.logger.warning(f"[answer-log-failed] lobby={lobby.id} user={player_id} kind={exc.kind}")

    membership = store.get_membership(lobby.id, player_id)
    ctx.logger.info(
        f"[answer] lobby={lobby.id} user={player_id} seq={question.seq} correct={int(is_correct)} delta={delta}"
    )
    return AnswerOutcome(
        question_key=question_key,
        answer=answer,
        is_correct=is_correct,
        points_delta=delta,
        points_earned=membership.points_earned,
        correct_bets=membership.correct_bets,
        questions_attempted=membership.questions_attempted,
        log_recorded=log_recorded,
    )
