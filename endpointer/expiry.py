"""
Expiry decisions for cached responses.

`resolve` is asked twice per request: before dispatch, to decide whether the cached response can be served without
touching the network, and after a failed network attempt (`request_failed=True`), to decide whether it can stand in
for the failure. `should_remove` decides whether an entry must be dropped once a network attempt has completed.
"""

import time
from typing import Optional

from .model import CachedResponse, CacheExpiry, ExpiryKind


def _within(entry: CachedResponse, interval: float, now: float) -> bool:
    if interval < 0:
        return False
    return entry.age(now) <= interval


def resolve(entry: Optional[CachedResponse],
            expiry: CacheExpiry,
            request_failed: bool = False,
            now: Optional[float] = None) -> Optional[CachedResponse]:
    """
    Decide whether `entry` may be used.

    @param entry
      The stored entry, or `None` on a miss.
    @param expiry
      The policy in effect for the request.
    @param request_failed
      Whether a live network attempt for the request has just failed.
    @param now
      The current time in seconds since the epoch. Defaults to `time.time()`.
    @return
      The entry when it is usable, otherwise `None`.
    """
    if entry is None:
        return None
    now = time.time() if now is None else now

    if expiry.kind is ExpiryKind.NEVER:
        return entry
    if expiry.kind is ExpiryKind.ALWAYS:
        return None
    if expiry.kind is ExpiryKind.CONTINGENT:
        return entry if request_failed else None
    if expiry.kind is ExpiryKind.CONTINGENT_AFTER:
        if request_failed:
            return entry
        return entry if _within(entry, expiry.interval, now) else None
    if expiry.kind is ExpiryKind.CUSTOM:
        return entry if _within(entry, expiry.interval, now) else None
    raise ValueError('Unknown cache expiry: {}'.format(expiry))


def should_remove(timestamp: float, expiry: CacheExpiry, now: Optional[float] = None) -> bool:
    """
    Decide whether an entry stored at `timestamp` must be removed after a network attempt.

    Contingent policies keep their entries forever so that they remain available as a fallback.
    """
    now = time.time() if now is None else now

    if expiry.kind is ExpiryKind.ALWAYS:
        return True
    if expiry.kind is ExpiryKind.CUSTOM:
        return now - timestamp > expiry.interval
    return False
