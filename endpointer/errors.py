"""
Failures delivered to endpoint completions.

Every failure the engine reports is an `EndpointError`. None of them are raised
out of a dispatch; they reach the caller as `Result.error`.
"""

from typing import Optional


class EndpointError(Exception):
    default_message = 'The request failed'

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class BadURL(EndpointError):
    default_message = 'Bad URL'

    def __init__(self, url: Optional[str] = None) -> None:
        super().__init__('Bad URL: {}'.format(url) if url else None)
        self.__url = url

    @property
    def url(self) -> Optional[str]:
        return self.__url


class RequestTypeDisabled(EndpointError):
    def __init__(self, request_type) -> None:
        super().__init__('The {} request type has been disabled by the client'.format(request_type.value))
        self.__request_type = request_type

    @property
    def request_type(self):
        return self.__request_type


class Throttled(EndpointError):
    default_message = 'The request exceeds the throttle limit set by the client'


class Offline(EndpointError):
    default_message = 'The Internet connection appears to be offline'


class CachedNotFound(EndpointError):
    default_message = 'Requested cached response not found'


class Cancelled(EndpointError):
    default_message = 'The request was cancelled'


class HTTPStatusError(EndpointError):
    def __init__(self, status: int, reason: Optional[str] = None) -> None:
        super().__init__('HTTP {}{}'.format(status, ' ' + reason if reason else ''))
        self.__status = status

    @property
    def status(self) -> int:
        return self.__status


class Unauthorized(HTTPStatusError):
    pass


class DecodeFailure(EndpointError):
    default_message = 'The response could not be decoded'


class TransportError(EndpointError):
    """
    The transport could not produce a response at all (connection refused, DNS failure, timeout, ...).
    """

    def __init__(self, message: Optional[str] = None, timed_out: bool = False) -> None:
        super().__init__(message)
        self.__timed_out = timed_out

    @property
    def timed_out(self) -> bool:
        return self.__timed_out


class IOFailure(EndpointError):
    """
    A cache file could not be read or written. Only raised inside the durable cache, which turns it into a miss.
    """

    def __init__(self, path, message: Optional[str] = None) -> None:
        super().__init__(message or 'Unusable cache entry: {}'.format(path))
        self.__path = path

    @property
    def path(self):
        return self.__path
