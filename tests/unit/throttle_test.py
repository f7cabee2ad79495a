from ddt import ddt, data, unpack
from unittest import TestCase

from endpointer.model import RequestDescriptor, RequestType, Throttle
from endpointer.throttle import Throttler

from fakes import FakeClock


@ddt
class TestThrottler(TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.throttler = Throttler(clock=self.clock)

    def test_one_per_second_over_seven_requests(self):
        throttle = Throttle(count=1, interval=1.0)
        allowed = 0
        start = self.clock.now
        for index in range(7):
            self.clock.now = start + index * 0.2
            if not self.throttler.should_throttle('httpbin.org/get', throttle):
                allowed += 1

        # Requests at 0.0s and at 1.0s get through.
        self.assertEqual(2, allowed)

    @data(
        (2, 1.0, 5, 2),
        (3, 10.0, 5, 3),
        (5, 1.0, 5, 5),
    )
    @unpack
    def test_burst_within_window(self, count: int, interval: float, requests: int, expected_allowed: int):
        throttle = Throttle(count=count, interval=interval)
        results = [self.throttler.should_throttle('key', throttle) for _ in range(requests)]

        self.assertEqual(expected_allowed, results.count(False))
        self.assertEqual([False] * expected_allowed, results[:expected_allowed])

    def test_window_restarts_after_interval(self):
        throttle = Throttle(count=1, interval=1.0)
        self.assertFalse(self.throttler.should_throttle('key', throttle))
        self.assertTrue(self.throttler.should_throttle('key', throttle))

        self.clock.advance(1.0)
        self.assertFalse(self.throttler.should_throttle('key', throttle))
        self.assertTrue(self.throttler.should_throttle('key', throttle))

    def test_changed_configuration_restarts_window(self):
        self.assertFalse(self.throttler.should_throttle('key', Throttle(count=1, interval=60.0)))
        self.assertTrue(self.throttler.should_throttle('key', Throttle(count=1, interval=60.0)))

        self.assertFalse(self.throttler.should_throttle('key', Throttle(count=2, interval=60.0)))
        self.assertFalse(self.throttler.should_throttle('key', Throttle(count=2, interval=60.0)))
        self.assertTrue(self.throttler.should_throttle('key', Throttle(count=2, interval=60.0)))

    def test_keys_are_independent(self):
        throttle = Throttle(count=1, interval=60.0)
        self.assertFalse(self.throttler.should_throttle('a', throttle))
        self.assertFalse(self.throttler.should_throttle('b', throttle))
        self.assertTrue(self.throttler.should_throttle('a', throttle))

    def test_expired_windows_are_swept(self):
        short = Throttle(count=1, interval=1.0)
        long = Throttle(count=1, interval=100.0)
        self.throttler.should_throttle('short', short)
        self.throttler.should_throttle('other', short)
        self.throttler.should_throttle('long', long)

        self.clock.advance(2.0)
        # Restarting the window of 'short' drops every window whose interval has elapsed.
        self.throttler.should_throttle('short', short)

        self.assertIn('short', self.throttler)
        self.assertIn('long', self.throttler)
        self.assertNotIn('other', self.throttler)
        self.assertEqual(2, len(self.throttler))

    def test_reset(self):
        throttle = Throttle(count=1, interval=60.0)
        self.throttler.should_throttle('key', throttle)
        self.throttler.reset()

        self.assertEqual(0, len(self.throttler))
        self.assertFalse(self.throttler.should_throttle('key', throttle))

    @data(
        ('https://httpbin.org/get?z=last&a=first&m=middle', 'https://httpbin.org/get?m=middle&a=first&z=last', ()),
        ('https://httpbin.org/get?a=1&token=abc', 'https://httpbin.org/get?a=1&token=xyz', ('token',)),
        ('https://httpbin.org/get?a=1&Token=abc', 'https://httpbin.org/get?a=1', ('token',)),
        ('https://httpbin.org/get?a=1', 'https://httpbin.org/get?b=2', ('*',)),
    )
    @unpack
    def test_requests_sharing_a_key(self, first: str, second: str, ignored):
        throttle = Throttle(count=1, interval=60.0, ignored_query_keys=ignored)
        self.assertFalse(self.throttler.throttled(RequestDescriptor(RequestType.GET, first), throttle))
        self.assertTrue(self.throttler.throttled(RequestDescriptor(RequestType.GET, second), throttle))

    def test_requests_with_different_queries(self):
        throttle = Throttle(count=1, interval=60.0)
        self.assertFalse(self.throttler.throttled(RequestDescriptor(RequestType.GET, 'https://h.org/p?a=1'), throttle))
        self.assertFalse(self.throttler.throttled(RequestDescriptor(RequestType.GET, 'https://h.org/p?a=2'), throttle))
