"""
Runs several requests at once and delivers their results together.
"""

from dataclasses import dataclass
from functools import partial
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .errors import DecodeFailure, EndpointError
from .model import RequestType
from .response import Response, ResponseMaker, ResponseType, Result


logger = logging.getLogger(__name__)


@dataclass
class AggregateItem:
    """
    One request of an aggregate.
    """

    path: str
    request_type: RequestType = RequestType.GET
    params: Any = None
    data: Any = None
    json: Any = None
    response_type: Union[ResponseType, ResponseMaker] = ResponseType.JSON


@dataclass
class AggregateResponseItem:
    value: Any
    """
    What the decoder produced for a successful response.
    """

    response: Response
    error: Optional[EndpointError] = None


AggregateDecoder = Callable[[int, Response], Optional[Tuple[Any, Optional[EndpointError]]]]
"""
Called with the index of the item and its successful response. Returns the decoded value and, optionally, an error.
"""

AggregateCompletion = Callable[[List[AggregateResponseItem]], None]


class EndpointAggregator:
    """
    Issues one request per `AggregateItem`, each through its own endpoint, and calls the completion once with every
    result ordered by item index.
    """

    def __init__(self, session=None, factory: Optional[Callable[[], Any]] = None) -> None:
        """
        @param session
          The session creating the endpoints.
        @param factory
          Creates an endpoint per item. Takes precedence over `session`.
        """
        if session is None and factory is None:
            raise ValueError('An aggregator needs a session or an endpoint factory')
        self.__factory = factory if factory is not None else session.endpoint
        self.__endpoints: List[Any] = []
        self.__results: Dict[int, AggregateResponseItem] = {}
        self.__remaining = 0
        self.__lock = threading.Lock()
        self.__done = threading.Event()

    @property
    def endpoints(self) -> List[Any]:
        return list(self.__endpoints)

    def request(self,
                items: Sequence[AggregateItem],
                decoder: AggregateDecoder,
                completion: AggregateCompletion) -> 'EndpointAggregator':
        self.__endpoints = [self.__factory() for _ in items]
        self.__results = {}
        self.__remaining = len(items)
        self.__done = threading.Event()

        if not items:
            completion([])
            self.__done.set()
            return self

        for index, (item, endpoint) in enumerate(zip(items, self.__endpoints)):
            endpoint.request(item.request_type,
                             item.path,
                             params=item.params,
                             data=item.data,
                             json=item.json,
                             response_type=item.response_type,
                             completion=partial(self._collect, index, decoder, completion))
        return self

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.__done.wait(timeout)

    def _collect(self,
                 index: int,
                 decoder: AggregateDecoder,
                 completion: AggregateCompletion,
                 result: Result) -> None:
        item = AggregateResponseItem(None, result.response, result.error)
        try:
            if result.succeeded:
                try:
                    decoded = decoder(index, result.response)
                    value, error = decoded if decoded is not None else (None, None)
                except EndpointError as e:
                    logger.warning('Could not decode item {} of the aggregate: {}'.format(index, e))
                    value, error = None, e
                except Exception as e:
                    logger.exception('The decoder failed on item {} of the aggregate'.format(index))
                    value, error = None, DecodeFailure(str(e))
                item = AggregateResponseItem(value, result.response, error)
        finally:
            with self.__lock:
                self.__results[index] = item
                self.__remaining -= 1
                finished = self.__remaining == 0
                if finished:
                    ordered = [self.__results[key] for key in sorted(self.__results)]

        if finished:
            logger.debug('All {} aggregate requests completed'.format(len(ordered)))
            try:
                completion(ordered)
            finally:
                self.__done.set()
