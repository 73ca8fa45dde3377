import threading
from typing import Callable


class Scheduler:
    """Runs timer work off the request path.

    Subclasses provide ``spawn`` and ``sleep``; ``call_later`` is built on them.
    """

    def spawn(self, fn: Callable, *args):
        raise NotImplementedError

    def sleep(self, seconds: float) -> None:
        raise NotImplementedError

    def call_later(self, delay: float, fn: Callable, *args):
        def _delayed():
            if delay > 0:
                self.sleep(delay)
            fn(*args)
        return self.spawn(_delayed)


class BackgroundScheduler(Scheduler):
    """Scheduler backed by Socket.IO background tasks."""

    def __init__(self, socketio):
        self._socketio = socketio

    def spawn(self, fn: Callable, *args):
        return self._socketio.start_background_task(fn, *args)

    def sleep(self, seconds: float) -> None:
        self._socketio.sleep(seconds)


class RoundClock:
    """Countdown for a single round.

    - Calls ``on_tick(round_number, seconds_remaining)`` once per interval
    - Calls ``on_deadline(round_number)`` when the countdown runs out
    - ``cancel()`` stops it early; after firing or cancelling it does nothing else

    The armed -> fired/cancelled transition is a compare-and-set under the
    clock's own lock, so at most one of the two ever wins.
    """

    ARMED = 'armed'
    FIRED = 'fired'
    CANCELLED = 'cancelled'

    def __init__(self, scheduler: Scheduler, round_number: int, duration: int,
                 on_tick: Callable[[int, int], None], on_deadline: Callable[[int], None],
                 interval: int = 1):
        self.scheduler = scheduler
        self.round_number = round_number
        self.duration = duration
        self.interval = max(1, int(interval))
        self._on_tick = on_tick
        self._on_deadline = on_deadline
        self._state = self.ARMED
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        return self._state

    @property
    def armed(self) -> bool:
        return self._state == self.ARMED

    def start(self):
        return self.scheduler.spawn(self.run)

    def cancel(self) -> bool:
        """Cancel the countdown. Returns False if it already fired or was cancelled."""
        return self._transition(self.CANCELLED)

    def run(self) -> None:
        remaining = self.duration
        while remaining > 0:
            if not self.armed:
                return
            self._on_tick(self.round_number, remaining)
            self.scheduler.sleep(self.interval)
            remaining -= self.interval
        if self._transition(self.FIRED):
            self._on_deadline(self.round_number)

    def _transition(self, target: str) -> bool:
        with self._lock:
            if self._state != self.ARMED:
                return False
            self._state = target
            return True
