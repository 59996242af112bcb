import time
from typing import Callable, Optional


class QuestionTimer:
    """Local countdown for the question an observer is looking at.

    A question's window starts the first time this observer sees its key.
    The timer never extends and never talks to the server; whether an
    answer still counts is decided by the answer engine.
    """

    def __init__(self, window_sec: float, clock: Callable[[], float] = time.time):
        self.window_sec = window_sec
        self._clock = clock
        self.key: Optional[str] = None
        self.question: Optional[dict] = None
        self.observed_at: Optional[float] = None
        self.expires_at: Optional[float] = None
        self.retired = False

    def observe(self, question: Optional[dict], now: Optional[float] = None) -> bool:
        """Feed the current question payload; True when it is a new question."""
        key = question.get('key') if question else None
        if key == self.key:
            return False
        self.key = key
        if question is None:
            self.question = None
            self.observed_at = None
            self.expires_at = None
            self.retired = True
            return True
        now = self._clock() if now is None else now
        self.question = question
        self.observed_at = now
        self.expires_at = now + self.window_sec
        self.retired = False
        return True

    def active(self, now: Optional[float] = None) -> Optional[dict]:
        if self.retired or self.question is None:
            return None
        now = self._clock() if now is None else now
        if now >= self.expires_at:
            self.retire()
            return None
        return self.question

    def seconds_left(self, now: Optional[float] = None) -> float:
        if self.active(now) is None:
            return 0.0
        now = self._clock() if now is None else now
        return max(0.0, self.expires_at - now)

    def progress(self, now: Optional[float] = None) -> float:
        """Fraction of the window already used, 1.0 once retired."""
        if self.active(now) is None or not self.window_sec:
            return 1.0
        return 1.0 - self.seconds_left(now) / self.window_sec

    def retire(self) -> None:
        self.retired = True
