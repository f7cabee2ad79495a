"""
Defines the types shared by the caches, the throttler and the endpoint engine.

These types are as simple as possible in order to most conveniently consume and
produce instances of them.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from . import util


class RequestType(Enum):
    GET = 'GET'
    POST = 'POST'
    PUT = 'PUT'
    PATCH = 'PATCH'
    DELETE = 'DELETE'

    @property
    def is_cachable(self) -> bool:
        return self is RequestType.GET

    @property
    def is_write(self) -> bool:
        return self is not RequestType.GET


@dataclass(frozen=True)
class RequestDescriptor:
    """
    Identifies a logical request once all of its parameters have been encoded.
    """

    method: RequestType
    """
    The HTTP method of the request.
    """

    url: str
    """
    The absolute URL, including the query.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    """
    All the headers being sent with the request.
    """

    body: Optional[bytes] = None
    """
    The already encoded request body, if any.
    """

    timeout: float = 60.0
    """
    Seconds the transport may spend on the request before reporting a failure.
    """

    def __post_init__(self) -> None:
        object.__setattr__(self, 'headers', MappingProxyType(dict(self.headers)))

    def __hash__(self) -> int:
        return hash((self.method, self.url, tuple(sorted(self.headers.items())), self.body))

    @property
    def host(self) -> str:
        return urlsplit(self.url).hostname or ''

    @property
    def is_valid(self) -> bool:
        parts = urlsplit(self.url)
        return bool(parts.scheme) and bool(parts.hostname)

    def fingerprint(self, include_query: bool = True) -> str:
        return util.cache_name(self.url, include_query)

    def throttle_key(self, ignored_query_keys: Optional[Sequence[str]] = None) -> str:
        return util.throttle_name(self.url, ignored_query_keys)


@dataclass(frozen=True)
class CachedResponse:
    """
    A cached response. Entries are replaced wholesale, never updated in place.
    """

    status: int
    body: bytes = field(repr=False)
    timestamp: float
    """
    Seconds since the epoch at which the entry was stored.
    """

    def age(self, now: float) -> float:
        return now - self.timestamp


class ExpiryKind(Enum):
    NEVER = 'never'
    ALWAYS = 'always'
    CONTINGENT = 'contingent'
    CONTINGENT_AFTER = 'contingent_after'
    CUSTOM = 'custom'


@dataclass(frozen=True)
class CacheExpiry:
    """
    How long a cached response may be used.

    - never: the entry never expires.
    - always: the entry is always expired, which forces its removal.
    - contingent: the entry never expires but is only used when the network request fails.
    - contingent_after(interval): the entry is used for `interval` seconds, then only as a fallback for failed
      network requests. It is never removed.
    - custom(interval): the entry is used for `interval` seconds and removed afterwards.
    """

    kind: ExpiryKind
    interval: Optional[float] = None

    @classmethod
    def never(cls) -> 'CacheExpiry':
        return cls(ExpiryKind.NEVER)

    @classmethod
    def always(cls) -> 'CacheExpiry':
        return cls(ExpiryKind.ALWAYS)

    @classmethod
    def contingent(cls) -> 'CacheExpiry':
        return cls(ExpiryKind.CONTINGENT)

    @classmethod
    def contingent_after(cls, interval: float) -> 'CacheExpiry':
        return cls(ExpiryKind.CONTINGENT_AFTER, float(interval))

    @classmethod
    def custom(cls, interval: float) -> 'CacheExpiry':
        return cls(ExpiryKind.CUSTOM, float(interval))


@dataclass(frozen=True)
class Throttle:
    """
    Limits requests sharing a throttle key to `count` per `interval` seconds.

    The key is the host, path and sorted query of the request URL. Query keys listed in `ignored_query_keys` are
    left out of the key; '*' leaves out the whole query.
    """

    count: int
    interval: float
    ignored_query_keys: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, 'ignored_query_keys', tuple(self.ignored_query_keys or ()))


class Provenance(Enum):
    NETWORK = 'network'
    SYSTEM_CACHE = 'system-cache'
    APP_CACHE = 'app-cache'
    MOCK = 'mock'
    INVALID = 'invalid'

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Task:
    """
    Describes a dispatch attempt once it has been evaluated.
    """

    identifier: Optional[int]
    """
    The transport's task identifier. Only network tasks have one.
    """

    request: Optional[RequestDescriptor]
    provenance: Provenance = field(compare=False)


class StatusFamily(Enum):
    INFORMATIONAL = 'informational'
    SUCCESSFUL = 'successful'
    REDIRECT = 'redirect'
    CLIENT_ERROR = 'client_error'
    SERVER_ERROR = 'server_error'
    CANCELED = 'canceled'
    UNKNOWN = 'unknown'


def classify(status: Optional[int], cancelled: bool = False) -> StatusFamily:
    if cancelled:
        return StatusFamily.CANCELED
    if status is None:
        return StatusFamily.UNKNOWN
    if 100 <= status < 200:
        return StatusFamily.INFORMATIONAL
    if 200 <= status < 300:
        return StatusFamily.SUCCESSFUL
    if 300 <= status < 400:
        return StatusFamily.REDIRECT
    if 400 <= status < 500:
        return StatusFamily.CLIENT_ERROR
    if 500 <= status < 600:
        return StatusFamily.SERVER_ERROR
    return StatusFamily.UNKNOWN


class CacheUsePolicy(Enum):
    """
    NORMAL uses the session's cache. IGNORE forces a network request; successful responses are still cached.
    """

    NORMAL = 'normal'
    IGNORE = 'ignore'
