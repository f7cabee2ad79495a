import dataclasses
from datetime import datetime
from enum import Enum
import json
import typing
from typing import Any, List, Optional, Sequence, Tuple, Type
from urllib.parse import parse_qsl, urlsplit


def cache_name(url: str, include_query: bool = True) -> str:
    """
    Build the cache fingerprint of a URL: its host and path, optionally followed by '+' and the raw query.
    """
    parts = urlsplit(url)
    name = (parts.hostname or '') + parts.path
    if include_query and parts.query:
        name += '+' + parts.query
    return name


def sorted_query_pairs(url: str) -> List[Tuple[str, str]]:
    pairs = parse_qsl(urlsplit(url).query, keep_blank_values=True)
    return sorted(pairs, key=lambda pair: pair[0])


def throttle_name(url: str, ignored_query_keys: Optional[Sequence[str]] = None) -> str:
    """
    Build the throttle key of a URL: its host and path, followed by the query pairs sorted by key.

    Keys listed in `ignored_query_keys` (compared case-insensitively) are left out. A '*' leaves out the whole
    query.
    """
    parts = urlsplit(url)
    name = (parts.hostname or '') + parts.path
    ignored = {key.lower() for key in ignored_query_keys or ()}
    if '*' in ignored:
        return name

    query = '&'.join('{}={}'.format(key, value)
                     for key, value in sorted_query_pairs(url)
                     if key.lower() not in ignored)
    if query:
        name += '?' + query
    return name


class KeyStrategy(Enum):
    DEFAULT = 'default'
    """
    JSON keys are the dataclass field names.
    """

    FROM_CAMEL_CASE = 'from_camel_case'
    """
    JSON keys are the camelCase spelling of the snake_case field names.
    """

    def key_for(self, field_name: str) -> str:
        if self is KeyStrategy.DEFAULT:
            return field_name
        head, *rest = field_name.split('_')
        return head + ''.join(word[:1].upper() + word[1:] for word in rest)


class DataclassJSONDecoder(json.JSONDecoder):
    """
    Decodes a JSON document straight into a dataclass, recursing into nested dataclasses, lists and dicts.

    Fields annotated as `datetime` are parsed with the first matching format of `date_formats`, or as ISO 8601 when
    no formats are given.
    """

    def __init__(self, class_type: Type, date_formats: Optional[Sequence[str]] = None,
                 key_strategy: KeyStrategy = KeyStrategy.DEFAULT, **kwargs) -> None:
        super().__init__(**kwargs)
        self.__class_type = class_type
        self.__date_formats = list(date_formats) if date_formats else None
        self.__key_strategy = key_strategy

    def decode(self, s):
        result = super().decode(s)
        return self._build(self.__class_type, result)

    def _build(self, class_type, value) -> Any:
        if class_type is Any or value is None:
            return value

        origin = typing.get_origin(class_type)
        args = typing.get_args(class_type)

        if origin is typing.Union:
            candidates = [arg for arg in args if arg is not type(None)]
            return self._build(candidates[0], value) if len(candidates) == 1 else value
        if origin in (list, tuple, set, frozenset):
            item_type = args[0] if args else Any
            return origin(self._build(item_type, item) for item in value)
        if origin is dict:
            value_type = args[1] if len(args) == 2 else Any
            return {key: self._build(value_type, item) for key, item in value.items()}

        if class_type is datetime:
            return self._parse_date(value)
        if dataclasses.is_dataclass(class_type):
            if not isinstance(value, dict):
                raise TypeError('Expected an object for {}, got {}'.format(class_type.__name__, type(value).__name__))
            hints = typing.get_type_hints(class_type)
            kwargs = {}
            for field in dataclasses.fields(class_type):
                if not field.init:
                    continue
                key = self.__key_strategy.key_for(field.name)
                if key in value:
                    kwargs[field.name] = self._build(hints.get(field.name, Any), value[key])
            return class_type(**kwargs)
        return value

    def _parse_date(self, text) -> datetime:
        if not isinstance(text, str):
            raise TypeError('Could not decode date text: {!r}'.format(text))
        if self.__date_formats is None:
            return datetime.fromisoformat(text.replace('Z', '+00:00'))
        for date_format in self.__date_formats:
            try:
                return datetime.strptime(text, date_format)
            except ValueError:
                continue
        raise ValueError('Cannot decode date string {}'.format(text))
