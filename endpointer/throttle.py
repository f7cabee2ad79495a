"""
Client-side request throttling.

A `Throttle` attached to an endpoint limits how many requests sharing a throttle key (host, path and sorted query of
the URL) may be issued per interval. The window state of every key lives in a `Throttler`, which a session owns.
"""

from dataclasses import dataclass
import logging
import threading
import time
from typing import Callable, Dict

from .model import RequestDescriptor, Throttle


logger = logging.getLogger(__name__)


@dataclass
class ThrottleWindow:
    count: int
    interval: float
    started: float
    hits: int

    def matches(self, throttle: Throttle) -> bool:
        return self.count == throttle.count and self.interval == throttle.interval


class Throttler:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.__clock = clock
        self.__windows: Dict[str, ThrottleWindow] = {}
        self.__lock = threading.Lock()

    def __len__(self) -> int:
        with self.__lock:
            return len(self.__windows)

    def __contains__(self, key: str) -> bool:
        with self.__lock:
            return key in self.__windows

    def throttled(self, request: RequestDescriptor, throttle: Throttle) -> bool:
        return self.should_throttle(request.throttle_key(throttle.ignored_query_keys), throttle)

    def should_throttle(self, key: str, throttle: Throttle) -> bool:
        """
        Record a request for `key` and decide whether it must be rejected.

        A key seen for the first time, or whose throttle configuration changed, opens a new window and is allowed.
        Within a window a request is rejected once `throttle.count` requests have been allowed. Once the interval has
        elapsed the window restarts, and every other window whose interval has elapsed is dropped.
        """
        with self.__lock:
            now = self.__clock()
            window = self.__windows.get(key)

            if window is None or not window.matches(throttle):
                reason = 'new' if window is None else 'updated'
                self.__windows[key] = ThrottleWindow(count=throttle.count, interval=throttle.interval,
                                                     started=now, hits=1)
                logger.info('{}: {} allowed (1/{} in {}s)'.format(reason, key, throttle.count, throttle.interval))
                return False

            if now - window.started < window.interval:
                if window.hits >= window.count:
                    logger.info('rate limited: {} ({}/{} in {}s)'.format(key, window.hits, window.count,
                                                                         window.interval))
                    return True
                window.hits += 1
                logger.info('within window: {} allowed ({}/{})'.format(key, window.hits, window.count))
                return False

            window.started = now
            window.hits = 1
            self._sweep(now)
            logger.info('exceeded interval: {} allowed, window restarted'.format(key))
            return False

    def _sweep(self, now: float) -> None:
        expired = [key for key, window in self.__windows.items() if now - window.started > window.interval]
        for key in expired:
            del self.__windows[key]
        if expired:
            logger.info('Dropped {} expired throttle windows'.format(len(expired)))

    def reset(self) -> None:
        with self.__lock:
            self.__windows.clear()
