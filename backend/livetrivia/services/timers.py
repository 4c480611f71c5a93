import logging
import threading
import time
from contextlib import nullcontext
from typing import Callable, ContextManager, Dict, Optional


class _TimerHandle:
    def __init__(self, lobby_id: str, kind: str):
        self.lobby_id = lobby_id
        self.kind = kind
        self.cancelled = False


class _Deadline(_TimerHandle):
    def __init__(self, lobby_id: str, start_time: float, time_limit: float):
        super().__init__(lobby_id, 'question')
        self.start_time = start_time
        self.time_limit = time_limit


class TimerRegistry:
    """Owns every wall-clock timer: one countdown and one question deadline per lobby.

    - Starting a countdown cancels whatever was scheduled for the lobby
    - The question deadline records its start time so elapsed/remaining time
      can be computed by answer validation and reconnecting clients
    - Workers run through ``spawn`` (``socketio.start_background_task`` in the
      app); a cancelled handle turns its worker into a no-op, checked again
      under ``lock_for(lobby_id)`` right before each callback
    - Callback exceptions are logged here and never escape a worker
    """

    def __init__(self, spawn: Callable, sleep: Callable = time.sleep,
                 clock: Callable[[], float] = time.time, logger=None,
                 lock_for: Callable[[str], ContextManager] = nullcontext):
        self._spawn = spawn
        self._sleep = sleep
        self.clock = clock
        # Per-lobby lock held while a callback runs (the orchestrator's lobby lock in the app)
        self.lock_for = lock_for
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._countdowns: Dict[str, _TimerHandle] = {}
        self._deadlines: Dict[str, _Deadline] = {}

    def start_countdown(self, lobby_id: str, seconds: int,
                        on_tick: Callable[[int], None], on_complete: Callable[[], None]) -> None:
        self.clear(lobby_id)
        handle = _TimerHandle(lobby_id, 'countdown')
        with self._lock:
            self._countdowns[lobby_id] = handle
        self.logger.info(f"[timer-set] lobby={lobby_id} kind=countdown duration={seconds}s")
        self._spawn(self._run_countdown, handle, int(seconds), on_tick, on_complete)

    def start_question_deadline(self, lobby_id: str, seconds: float, on_expire: Callable[[], None],
                                start_time: Optional[float] = None) -> float:
        """Arm the question deadline and return the recorded start time.

        ``start_time`` re-arms a deadline for a question that started earlier,
        e.g. after a process restart; the worker only sleeps for what is left.
        """
        with self._lock:
            previous = self._deadlines.pop(lobby_id, None)
            if previous:
                previous.cancelled = True
            start = self.clock() if start_time is None else start_time
            handle = _Deadline(lobby_id, start, seconds)
            self._deadlines[lobby_id] = handle
        self.logger.info(
            f"[timer-set] lobby={lobby_id} kind=question limit={seconds}s deadline={start + seconds}"
        )
        self._spawn(self._run_deadline, handle, on_expire)
        return start

    def clear(self, lobby_id: str) -> None:
        with self._lock:
            countdown = self._countdowns.pop(lobby_id, None)
            deadline = self._deadlines.pop(lobby_id, None)
        for handle in (countdown, deadline):
            if handle is not None:
                handle.cancelled = True
                self.logger.info(f"[timer-clear] lobby={lobby_id} kind={handle.kind}")

    def elapsed(self, lobby_id: str) -> Optional[float]:
        deadline = self._deadlines.get(lobby_id)
        if deadline is None:
            return None
        return max(0.0, self.clock() - deadline.start_time)

    def time_limit(self, lobby_id: str) -> Optional[float]:
        deadline = self._deadlines.get(lobby_id)
        return deadline.time_limit if deadline else None

    def has_countdown(self, lobby_id: str) -> bool:
        return lobby_id in self._countdowns

    def has_question_timer(self, lobby_id: str) -> bool:
        return lobby_id in self._deadlines

    # ---- workers ----

    def _discard(self, handle: _TimerHandle) -> None:
        registry = self._countdowns if handle.kind == 'countdown' else self._deadlines
        with self._lock:
            if registry.get(handle.lobby_id) is handle:
                del registry[handle.lobby_id]

    def _invoke(self, handle: _TimerHandle, callback: Callable, *args, fire=False) -> bool:
        """Run ``callback`` under the lobby lock; False if ``handle`` was cancelled first."""
        with self.lock_for(handle.lobby_id):
            # Re-checked under the lock: a host command may have replaced this timer meanwhile
            if handle.cancelled:
                return False
            if fire:
                self.logger.info(f"[timer-fire] lobby={handle.lobby_id} kind={handle.kind}")
            try:
                callback(*args)
            except Exception:
                self.logger.exception(f"[timer-error] lobby={handle.lobby_id} kind={handle.kind}")
            return True

    def _run_countdown(self, handle: _TimerHandle, seconds: int,
                       on_tick: Callable[[int], None], on_complete: Callable[[], None]) -> None:
        remaining = seconds
        try:
            while remaining > 0:
                self._sleep(1)
                remaining -= 1
                if not self._invoke(handle, on_tick, remaining):
                    return
            self._invoke(handle, on_complete, fire=True)
        finally:
            self._discard(handle)

    def _run_deadline(self, handle: _Deadline, on_expire: Callable[[], None]) -> None:
        delay = handle.start_time + handle.time_limit - self.clock()
        if delay > 0:
            self._sleep(delay)
        try:
            self._invoke(handle, on_expire, fire=True)
        finally:
            self._discard(handle)
