from dataclasses import dataclass, field
from datetime import datetime, timezone
from ddt import ddt, data, unpack
import json
from typing import Dict, List, Optional
from unittest import TestCase

from endpointer import util
from endpointer.util import DataclassJSONDecoder, KeyStrategy


@ddt
class TestCacheName(TestCase):
    @data(
        ('https://httpbin.org/get', True, 'httpbin.org/get'),
        ('https://httpbin.org/get?b=2&a=1', True, 'httpbin.org/get+b=2&a=1'),
        ('https://httpbin.org/get?b=2&a=1', False, 'httpbin.org/get'),
        ('http://Example.com:8080/a/b/', True, 'example.com/a/b/'),
    )
    @unpack
    def test_cache_name(self, url: str, include_query: bool, expected: str):
        self.assertEqual(expected, util.cache_name(url, include_query))


@ddt
class TestThrottleName(TestCase):
    @data(
        ('https://httpbin.org/get?z=last&a=first&m=middle', None, 'httpbin.org/get?a=first&m=middle&z=last'),
        ('https://httpbin.org/get?z=last&a=first&m=middle&key=secret', ['KEY'],
         'httpbin.org/get?a=first&m=middle&z=last'),
        ('https://httpbin.org/get?z=last&a=first', ['*'], 'httpbin.org/get'),
        ('https://httpbin.org/get?key=secret', ['key'], 'httpbin.org/get'),
        ('https://httpbin.org/get', None, 'httpbin.org/get'),
        ('https://httpbin.org/get?flag=', None, 'httpbin.org/get?flag='),
    )
    @unpack
    def test_throttle_name(self, url: str, ignored, expected: str):
        self.assertEqual(expected, util.throttle_name(url, ignored))


@ddt
class TestKeyStrategy(TestCase):
    @data(
        (KeyStrategy.DEFAULT, 'created_at', 'created_at'),
        (KeyStrategy.FROM_CAMEL_CASE, 'created_at', 'createdAt'),
        (KeyStrategy.FROM_CAMEL_CASE, 'id', 'id'),
        (KeyStrategy.FROM_CAMEL_CASE, 'user_display_name', 'userDisplayName'),
    )
    @unpack
    def test_key_for(self, strategy: KeyStrategy, field_name: str, expected: str):
        self.assertEqual(expected, strategy.key_for(field_name))


@dataclass
class Owner:
    login: str
    site_admin: bool = False


@dataclass
class Repository:
    id: int
    full_name: str
    owner: Owner
    topics: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    counts: Dict[str, int] = field(default_factory=dict)


class TestDataclassJSONDecoder(TestCase):
    def test_nested_dataclasses(self):
        document = json.dumps({
            'id': 7,
            'full_name': 'octo/repo',
            'owner': {'login': 'octo', 'site_admin': True},
            'topics': ['http', 'cache'],
            'counts': {'stars': 3},
            'ignored': 'extra keys are skipped',
        })

        repository = json.loads(document, cls=DataclassJSONDecoder, class_type=Repository)

        self.assertEqual(Repository(id=7, full_name='octo/repo', owner=Owner('octo', True),
                                    topics=['http', 'cache'], counts={'stars': 3}), repository)

    def test_lists_of_dataclasses(self):
        document = '[{"login": "a"}, {"login": "b", "site_admin": true}]'

        owners = json.loads(document, cls=DataclassJSONDecoder, class_type=List[Owner])

        self.assertEqual([Owner('a'), Owner('b', True)], owners)

    def test_camel_case_keys_and_iso_dates(self):
        document = '{"id": 1, "fullName": "a/b", "owner": {"login": "a", "siteAdmin": false},' \
                   ' "createdAt": "2020-01-02T03:04:05Z"}'

        repository = json.loads(document, cls=DataclassJSONDecoder, class_type=Repository,
                                key_strategy=KeyStrategy.FROM_CAMEL_CASE)

        self.assertEqual('a/b', repository.full_name)
        self.assertEqual(datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc), repository.created_at)

    def test_date_formats_are_tried_in_order(self):
        document = '{"id": 1, "full_name": "a/b", "owner": {"login": "a"}, "created_at": "02/01/2020"}'

        repository = json.loads(document, cls=DataclassJSONDecoder, class_type=Repository,
                                date_formats=['%Y-%m-%d', '%d/%m/%Y'])

        self.assertEqual(datetime(2020, 1, 2), repository.created_at)

    def test_unmatched_date_fails(self):
        document = '{"id": 1, "full_name": "a/b", "owner": {"login": "a"}, "created_at": "yesterday"}'

        with self.assertRaises(ValueError):
            json.loads(document, cls=DataclassJSONDecoder, class_type=Repository, date_formats=['%Y-%m-%d'])

    def test_missing_required_field_fails(self):
        with self.assertRaises(TypeError):
            json.loads('{"id": 1}', cls=DataclassJSONDecoder, class_type=Repository)
