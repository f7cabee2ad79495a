from ddt import ddt, data, unpack
from unittest import TestCase

from endpointer import expiry
from endpointer.model import CachedResponse, CacheExpiry


NOW = 10000.0


def entry_aged(seconds: float) -> CachedResponse:
    return CachedResponse(status=200, body=b'{}', timestamp=NOW - seconds)


@ddt
class TestResolve(TestCase):
    @data(
        (CacheExpiry.never(), 10 ** 6, False, True),
        (CacheExpiry.never(), 10 ** 6, True, True),
        (CacheExpiry.always(), 0, False, False),
        (CacheExpiry.always(), 0, True, False),
        (CacheExpiry.contingent(), 0, False, False),
        (CacheExpiry.contingent(), 10 ** 6, True, True),
        (CacheExpiry.contingent_after(60), 30, False, True),
        (CacheExpiry.contingent_after(60), 90, False, False),
        (CacheExpiry.contingent_after(60), 90, True, True),
        (CacheExpiry.custom(60), 60, False, True),
        (CacheExpiry.custom(60), 61, False, False),
        (CacheExpiry.custom(60), 61, True, False),
        # A negative interval never yields an entry, except as a fallback for contingent_after.
        (CacheExpiry.custom(-1), 0, False, False),
        (CacheExpiry.contingent_after(-1), 0, False, False),
        (CacheExpiry.contingent_after(-1), 0, True, True),
    )
    @unpack
    def test_resolve(self, policy: CacheExpiry, age: float, request_failed: bool, usable: bool):
        entry = entry_aged(age)
        actual = expiry.resolve(entry, policy, request_failed=request_failed, now=NOW)
        if usable:
            self.assertIs(entry, actual)
        else:
            self.assertIsNone(actual)

    @data(CacheExpiry.never(), CacheExpiry.contingent(), CacheExpiry.custom(60))
    def test_miss(self, policy: CacheExpiry):
        self.assertIsNone(expiry.resolve(None, policy, now=NOW))
        self.assertIsNone(expiry.resolve(None, policy, request_failed=True, now=NOW))


@ddt
class TestShouldRemove(TestCase):
    @data(
        (CacheExpiry.always(), 0, True),
        (CacheExpiry.custom(60), 61, True),
        (CacheExpiry.custom(60), 59, False),
        (CacheExpiry.never(), 10 ** 6, False),
        (CacheExpiry.contingent(), 10 ** 6, False),
        (CacheExpiry.contingent_after(60), 10 ** 6, False),
    )
    @unpack
    def test_should_remove(self, policy: CacheExpiry, age: float, expected: bool):
        self.assertEqual(expected, expiry.should_remove(NOW - age, policy, now=NOW))
