import time
from typing import List, Set

from betparty import socketio
from betparty.errors import BetPartyError, ValidationError
from .context import get_context
from .questions import Question
from .settlement import settle_lobby
from .state_machine import clear_question, finish_lobby, load_lobby, publish_question


_scheduled_lobbies: Set[str] = set()


def _sleep(app, delay: float, lobby_id: str, label: str) -> None:
    # heartbeat sleep loop if enabled
    try:
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
    except (TypeError, ValueError):
        hb = 0
    if hb and hb > 0:
        slept = 0.0
        while slept < delay:
            step = min(hb, delay - slept)
            time.sleep(step)
            slept += step
            app.logger.info(f"[timer-heartbeat] lobby={lobby_id} {label} remaining={max(0, delay - slept)}s")
    elif delay > 0:
        time.sleep(delay)


def is_scheduled(lobby_id: str) -> bool:
    return lobby_id in _scheduled_lobbies


def schedule_question_sequence(app, lobby_id: str, questions: List[dict]) -> bool:
    """Run a question sequence for a live lobby.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single sequence per lobby
    - Publishes each question, retires it after the answer window, waits
      QUESTION_GAP_SEC, then finishes and settles the lobby
    - Stops quietly if the lobby leaves ``active`` or the host replaces
      the live question
    """
    if not isinstance(questions, list) or not questions:
        raise ValidationError('At least one question is required')
    parsed = [Question.from_payload(q) for q in questions]

    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return False

    with app.app_context():
        ctx = get_context()
        lobby = load_lobby(ctx, lobby_id)
        if lobby.status != 'active':
            raise ValidationError('The lobby must be live to run questions')
        window = ctx.settings.question_window_sec
        gap = ctx.settings.question_gap_sec

    if lobby_id in _scheduled_lobbies:
        app.logger.info(f"[timer-skip] lobby={lobby_id} sequence already scheduled")
        return False
    _scheduled_lobbies.add(lobby_id)
    app.logger.info(f"[timer-set] lobby={lobby_id} questions={len(parsed)} window={window}s gap={gap}s")

    def _worker(lid: str, sequence: List[Question]):
        try:
            for idx, question in enumerate(sequence):
                with app.app_context():
                    ctx = get_context()
                    current = load_lobby(ctx, lid)
                    if current.status != 'active':
                        app.logger.info(f"[timer-abort] lobby={lid} status={current.status} at={idx}")
                        return
                    published = publish_question(ctx, lid, question, by_scheduler=True)
                _sleep(app, window, lid, f"question={idx + 1}")
                with app.app_context():
                    ctx = get_context()
                    app.logger.info(f"[timer-fire] lobby={lid} question={idx + 1} seq={published.seq}")
                    if not clear_question(ctx, lid, by_scheduler=True, expected_key=published.key):
                        app.logger.info(f"[timer-abort] lobby={lid} question replaced or lobby paused")
                        return
                if idx < len(sequence) - 1:
                    _sleep(app, gap, lid, 'gap')
            with app.app_context():
                ctx = get_context()
                finish_lobby(ctx, lid, by_scheduler=True)
                settle_lobby(ctx, lid, by_scheduler=True)
        except BetPartyError as exc:
            app.logger.warning(f"[timer-abort] lobby={lid} kind={exc.kind} reason={exc.message}")
        finally:
            _scheduled_lobbies.discard(lid)

    if app.config.get('TESTING'):
        _worker(lobby_id, parsed)
    else:
        socketio.start_background_task(_worker, lobby_id, parsed)
    return True
