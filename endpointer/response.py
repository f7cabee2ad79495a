from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
import json
import logging
from typing import Any, Mapping, Optional, Sequence, Type, Union

from .errors import DecodeFailure, EndpointError
from .model import Provenance, StatusFamily, classify
from .util import DataclassJSONDecoder, KeyStrategy


logger = logging.getLogger(__name__)


@dataclass
class Response:
    """
    The data an endpoint request produced, wherever it came from.
    """

    status: Optional[int]
    """
    The HTTP status code, or `None` when no HTTP response was received.
    """

    body: Optional[bytes] = field(default=None, repr=False)
    headers: Mapping[str, str] = field(default_factory=dict)
    url: Optional[str] = None
    provenance: Optional[Provenance] = None
    """
    Where the response came from. A network failure answered from the cache has the app-cache provenance.
    """

    json: Any = field(default=None, repr=False, compare=False)
    """
    The parsed body for JSON response types.
    """

    @property
    def text(self) -> Optional[str]:
        return self.body.decode('utf-8', errors='replace') if self.body is not None else None

    @property
    def family(self) -> StatusFamily:
        return classify(self.status)

    def decoded(self,
                class_type: Type,
                date_formats: Optional[Sequence[str]] = None,
                key_strategy: KeyStrategy = KeyStrategy.DEFAULT) -> Any:
        """
        Decode the body into an instance of the dataclass `class_type`.

        @param date_formats
          `datetime.strptime` formats tried in order for `datetime` fields. ISO 8601 when omitted.
        @param key_strategy
          How JSON keys map onto field names.
        @throws DecodeFailure
          If there is no body, or it does not decode into `class_type`.
        """
        if self.body is None:
            raise DecodeFailure('Data to decode is missing')
        try:
            return json.loads(self.body,
                              cls=DataclassJSONDecoder,
                              class_type=class_type,
                              date_formats=date_formats,
                              key_strategy=key_strategy)
        except (ValueError, TypeError, KeyError) as e:
            name = getattr(class_type, '__name__', class_type)
            logger.error('Could not decode {} from {}: {}'.format(name, self.url, e))
            raise DecodeFailure(str(e)) from e


@dataclass
class Result:
    """
    The terminal outcome of a dispatch: a response and, for failures, the error.
    """

    response: Response
    error: Optional[EndpointError] = None
    value: Any = None
    """
    A value produced from the response, e.g. by a typed request.
    """

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def raise_for_error(self) -> Response:
        if self.error is not None:
            raise self.error
        return self.response


class ResponseMaker(ABC):
    """
    A strategy turning raw response data into a `Result`, for clients handling their own response formats.
    """

    accept: Optional[str] = None
    """
    The value of the Accept header sent with the request, if any.
    """

    @abstractmethod
    def make(self, response: Response, error: Optional[EndpointError]) -> Result:
        pass


class ResponseType(Enum):
    NONE = 'none'
    JSON = 'json'
    OPTIONAL_JSON = 'optional_json'
    DATA = 'data'

    @property
    def accept(self) -> Optional[str]:
        if self in (ResponseType.JSON, ResponseType.OPTIONAL_JSON):
            return 'application/json'
        return None


def accept_header(response_type: Union[ResponseType, ResponseMaker]) -> Optional[str]:
    return response_type.accept


def make_result(response_type: Union[ResponseType, ResponseMaker],
                response: Response,
                error: Optional[EndpointError] = None) -> Result:
    if isinstance(response_type, ResponseMaker):
        return response_type.make(response, error)
    if response_type in (ResponseType.NONE, ResponseType.DATA):
        return Result(response, error)

    if not response.body:
        if response_type is ResponseType.OPTIONAL_JSON:
            return Result(response, error)
        logger.debug('Result: Invalid JSON response from {}'.format(response.url))
        return Result(response, error or DecodeFailure('Invalid JSON response: the body is empty'))

    try:
        parsed = json.loads(response.body)
    except ValueError as e:
        return Result(response, error or DecodeFailure('Invalid JSON response: {}'.format(e)))
    return Result(replace(response, json=parsed), error)
