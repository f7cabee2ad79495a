from unittest import TestCase

from endpointer.aggregator import AggregateItem, EndpointAggregator
from endpointer.errors import DecodeFailure, HTTPStatusError
from endpointer.session import Configuration, Session

from fakes import FakeTransport


class TestEndpointAggregator(TestCase):
    def setUp(self):
        self.transport = FakeTransport()
        self.session = Session(Configuration(host='httpbin.org'), transport=self.transport)

    def tearDown(self):
        self.session.close()

    def test_results_are_ordered_by_index(self):
        delivered = []
        aggregator = EndpointAggregator(self.session)

        aggregator.request([AggregateItem('/first'), AggregateItem('/second'), AggregateItem('/third')],
                           decoder=lambda index, response: (response.json['n'], None),
                           completion=delivered.append)
        first, second, third = self.transport.tasks()
        # Completion order differs from request order.
        self.transport.respond(third, 200, b'{"n": 3}')
        self.transport.respond(first, 200, b'{"n": 1}')
        self.transport.respond(second, 200, b'{"n": 2}')

        self.assertTrue(aggregator.wait(5))
        self.assertEqual(1, len(delivered))
        self.assertEqual([1, 2, 3], [item.value for item in delivered[0]])
        self.assertEqual([None, None, None], [item.error for item in delivered[0]])

    def test_failures_are_reported_per_item(self):
        delivered = []
        aggregator = EndpointAggregator(self.session)

        def decoder(index, response):
            if index == 1:
                raise DecodeFailure('unexpected document')
            return response.json, None

        aggregator.request([AggregateItem('/a'), AggregateItem('/b'), AggregateItem('/c')],
                           decoder=decoder,
                           completion=delivered.append)
        a, b, c = self.transport.tasks()
        self.transport.respond(a, 200, b'{}')
        self.transport.respond(b, 200, b'{}')
        self.transport.respond(c, 500, b'{}')

        self.assertTrue(aggregator.wait(5))
        items = delivered[0]
        self.assertEqual({}, items[0].value)
        self.assertIsInstance(items[1].error, DecodeFailure)
        self.assertIsInstance(items[2].error, HTTPStatusError)
        self.assertEqual(500, items[2].response.status)

    def test_failing_decoder_still_completes(self):
        delivered = []
        aggregator = EndpointAggregator(self.session)

        aggregator.request([AggregateItem('/a'), AggregateItem('/b')],
                           decoder=lambda index, response: (response.json['missing'], None),
                           completion=delivered.append)
        for task_id in self.transport.tasks():
            self.transport.respond(task_id, 200, b'{}')

        self.assertTrue(aggregator.wait(5))
        self.assertEqual(1, len(delivered))
        self.assertEqual([None, None], [item.value for item in delivered[0]])
        for item in delivered[0]:
            self.assertIsInstance(item.error, DecodeFailure)
            self.assertEqual(200, item.response.status)

    def test_factory(self):
        endpoints = iter([
            self.session.endpoint().mock_json({'id': 'a'}),
            self.session.endpoint().mock_json({'id': 'b'}),
        ])
        delivered = []
        aggregator = EndpointAggregator(factory=lambda: next(endpoints))

        aggregator.request([AggregateItem('/items/a'), AggregateItem('/items/b')],
                           decoder=lambda index, response: (response.json['id'], None),
                           completion=delivered.append)

        self.assertTrue(aggregator.wait(5))
        self.assertEqual(['a', 'b'], [item.value for item in delivered[0]])
        self.assertEqual([], self.transport.requests)

    def test_no_items(self):
        delivered = []

        EndpointAggregator(self.session).request([], decoder=lambda index, response: None, completion=delivered.append)

        self.assertEqual([[]], delivered)

    def test_requires_a_session_or_factory(self):
        with self.assertRaises(ValueError):
            EndpointAggregator()
