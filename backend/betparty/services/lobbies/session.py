from typing import Optional

from betparty.errors import AlreadyAnswered, NoActiveQuestion, StateError
from .answers import AnswerOutcome, submit_answer
from .state_machine import get_lobby_state
from .sync import LobbyObserver
from .timer import QuestionTimer

STATS_DEFAULT = {'points_earned': 0, 'correct_bets': 0, 'questions_attempted': 0}


class PlayerSession:
    """One player's live view of a lobby.

    Combines the row observer, the local question countdown and the
    per-client dedup state. A question disappears from this view once the
    player answers it or its countdown runs out.
    """

    def __init__(self, ctx, lobby_id: str, user_id: str):
        self.ctx = ctx
        self.lobby_id = lobby_id
        self.user_id = user_id
        settings = ctx.settings
        self.timer = QuestionTimer(settings.question_window_sec, clock=ctx.clock)
        self.observer = LobbyObserver(
            lobby_id,
            fetch=self._fetch,
            on_apply=self._apply,
            poll_interval=settings.poll_interval_sec,
            push_stale=settings.push_stale_sec,
            clock=ctx.clock,
        )
        self.lobby: Optional[dict] = None
        self.stats = dict(STATS_DEFAULT)
        self.answered_keys = set()
        self._submitting = False

    def open(self) -> 'PlayerSession':
        self.observer.attach(self.ctx.feed)
        self.observer.poll(force=True)
        self.refresh_stats()
        return self

    def close(self) -> None:
        self.observer.detach()

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _fetch(self) -> dict:
        return get_lobby_state(self.ctx, self.lobby_id)

    def _apply(self, snapshot: dict) -> None:
        self.lobby = snapshot
        question = snapshot.get('current_question') if snapshot.get('status') == 'active' else None
        self.timer.observe(question)
        for player in snapshot.get('players') or []:
            if player.get('user_id') == self.user_id:
                self.stats = {k: player.get(k, 0) for k in STATS_DEFAULT}

    @property
    def status(self) -> Optional[str]:
        return self.lobby.get('status') if self.lobby else None

    @property
    def is_host(self) -> bool:
        return bool(self.lobby) and self.lobby.get('owner_id') == self.user_id

    def tick(self) -> bool:
        """Run the poll fallback if pushes went quiet."""
        return self.observer.poll()

    def active_question(self, now: Optional[float] = None) -> Optional[dict]:
        question = self.timer.active(now)
        if question is None or question.get('key') in self.answered_keys:
            return None
        return question

    def seconds_left(self, now: Optional[float] = None) -> float:
        if self.active_question(now) is None:
            return 0.0
        return self.timer.seconds_left(now)

    def refresh_stats(self) -> dict:
        membership = self.ctx.store.get_membership(self.lobby_id, self.user_id)
        self.stats = membership.stats() if membership is not None else dict(STATS_DEFAULT)
        return self.stats

    def submit(self, choice: str) -> AnswerOutcome:
        question = self.active_question()
        if question is None:
            raise NoActiveQuestion()
        if self._submitting:
            raise StateError('Your answer is still being sent')
        key = question['key']
        self._submitting = True
        try:
            outcome = submit_answer(self.ctx, self.lobby_id, self.user_id, key, choice)
        except AlreadyAnswered:
            self.answered_keys.add(key)
            self.timer.retire()
            raise
        finally:
            self._submitting = False
        self.answered_keys.add(key)
        self.timer.retire()
        self.stats = {
            'points_earned': outcome.points_earned,
            'correct_bets': outcome.correct_bets,
            'questions_attempted': outcome.questions_attempted,
        }
        return outcome
