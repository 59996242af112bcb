import logging
import time
from dataclasses import dataclass
from typing import Callable

from flask import current_app

EXTENSION_KEY = 'betparty'


@dataclass(frozen=True)
class GameSettings:
    question_window_sec: float = 20
    answer_grace_sec: float = 2
    question_gap_sec: float = 3
    correct_points: int = 20
    wrong_points: int = 0
    default_max_players: int = 5
    default_buy_in: int = 20
    lobby_code_length: int = 6
    starting_balance: int = 1000
    poll_interval_sec: float = 1.0
    push_stale_sec: float = 3.0
    host_disconnect_grace_sec: float = 2.0
    timer_heartbeat_sec: int = 0

    @classmethod
    def from_config(cls, config) -> 'GameSettings':
        defaults = cls()
        return cls(
            question_window_sec=float(config.get('QUESTION_WINDOW_SEC', defaults.question_window_sec)),
            answer_grace_sec=float(config.get('ANSWER_GRACE_SEC', defaults.answer_grace_sec)),
            question_gap_sec=float(config.get('QUESTION_GAP_SEC', defaults.question_gap_sec)),
            correct_points=int(config.get('CORRECT_POINTS', defaults.correct_points)),
            wrong_points=int(config.get('WRONG_POINTS', defaults.wrong_points)),
            default_max_players=int(config.get('DEFAULT_MAX_PLAYERS', defaults.default_max_players)),
            default_buy_in=int(config.get('DEFAULT_BUY_IN', defaults.default_buy_in)),
            lobby_code_length=int(config.get('LOBBY_CODE_LENGTH', defaults.lobby_code_length)),
            starting_balance=int(config.get('STARTING_BALANCE', defaults.starting_balance)),
            poll_interval_sec=float(config.get('POLL_INTERVAL_SEC', defaults.poll_interval_sec)),
            push_stale_sec=float(config.get('PUSH_STALE_SEC', defaults.push_stale_sec)),
            host_disconnect_grace_sec=float(
                config.get('HOST_DISCONNECT_GRACE_SEC', defaults.host_disconnect_grace_sec)
            ),
            timer_heartbeat_sec=int(config.get('TIMER_HEARTBEAT_SEC', defaults.timer_heartbeat_sec)),
        )


@dataclass
class LobbyContext:
    """Everything a lobby service needs, created once per app in ``create_app``."""

    store: 'RecordStore'
    feed: 'ChangeFeed'
    settings: GameSettings
    logger: logging.Logger
    clock: Callable[[], float] = time.time

    def now(self) -> float:
        return self.clock()

    def close(self) -> None:
        self.feed.clear()


def get_context() -> LobbyContext:
    return current_app.extensions[EXTENSION_KEY]
