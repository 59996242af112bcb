"""Lobby change delivery: push fan-out plus an observer with a poll fallback."""

import logging
import time
from collections import defaultdict
from threading import Lock
from typing import Callable, Dict, List, Optional


class ChangeFeed:
    """In-process fan-out of committed lobby rows.

    ``subscribe`` watches one lobby; ``listen`` watches every lobby (the
    Socket.IO bridge uses it). Callbacks run in the committing thread.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._subscribers: Dict[str, List[Callable[[dict], None]]] = defaultdict(list)
        self._listeners: List[Callable[[str, dict], None]] = []
        self._lock = Lock()
        self.logger = logger or logging.getLogger(__name__)

    def subscribe(self, lobby_id: str, on_change: Callable[[dict], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers[lobby_id].append(on_change)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(lobby_id, [])
                if on_change in callbacks:
                    callbacks.remove(on_change)
                if not callbacks:
                    self._subscribers.pop(lobby_id, None)

        return unsubscribe

    def listen(self, on_change: Callable[[str, dict], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(on_change)

        def unsubscribe():
            with self._lock:
                if on_change in self._listeners:
                    self._listeners.remove(on_change)

        return unsubscribe

    def publish(self, lobby_id: str, snapshot: dict) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(lobby_id, []))
            listeners = list(self._listeners)
        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception:
                # One broken observer must not fail the write that triggered it
                self.logger.exception(f"[feed-error] lobby={lobby_id} subscriber failed")
        for listener in listeners:
            try:
                listener(lobby_id, snapshot)
            except Exception:
                self.logger.exception(f"[feed-error] lobby={lobby_id} listener failed")

    def subscriber_count(self, lobby_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(lobby_id, []))

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()
            self._listeners.clear()


class LobbyObserver:
    """Keeps one client's copy of a lobby row fresh.

    Pushed rows are applied unless they are older than what we already
    hold. Polling only runs while pushes have gone quiet for
    ``push_stale`` seconds, and a polled row is applied only when its
    version is strictly newer than the last applied one.
    """

    def __init__(
        self,
        lobby_id: str,
        fetch: Callable[[], Optional[dict]],
        on_apply: Callable[[dict], None],
        poll_interval: float = 1.0,
        push_stale: float = 3.0,
        clock: Callable[[], float] = time.time,
    ):
        self.lobby_id = lobby_id
        self._fetch = fetch
        self._on_apply = on_apply
        self.poll_interval = poll_interval
        self.push_stale = push_stale
        self._clock = clock
        self.last_version: Optional[int] = None
        self.last_push_at: Optional[float] = None
        self.last_poll_at: Optional[float] = None
        self.snapshot: Optional[dict] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, feed: ChangeFeed) -> Callable[[], None]:
        self._unsubscribe = feed.subscribe(self.lobby_id, self.on_push)
        return self._unsubscribe

    def detach(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _apply(self, snapshot: dict) -> None:
        self.last_version = snapshot.get('version')
        self.snapshot = snapshot
        self._on_apply(snapshot)

    def on_push(self, snapshot: dict) -> bool:
        self.last_push_at = self._clock()
        version = snapshot.get('version')
        if self.last_version is not None and version is not None and version < self.last_version:
            return False
        self._apply(snapshot)
        return True

    def should_poll(self, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        if self.last_poll_at is not None and now - self.last_poll_at < self.poll_interval:
            return False
        if self.last_push_at is None:
            return True
        return now - self.last_push_at >= self.push_stale

    def poll(self, force: bool = False) -> bool:
        now = self._clock()
        if not force and not self.should_poll(now):
            return False
        self.last_poll_at = now
        snapshot = self._fetch()
        if not snapshot:
            return False
        version = snapshot.get('version')
        if self.last_version is not None and (version is None or version <= self.last_version):
            return False
        self._apply(snapshot)
        return True

    def run(self, should_stop: Callable[[], bool], sleep: Callable[[float], None] = time.sleep) -> None:
        """Poll loop for background use; exits once ``should_stop`` returns True."""
        while not should_stop():
            self.poll()
            sleep(self.poll_interval)
