from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Type, Union

from . import expiry
from .errors import (BadURL, CachedNotFound, Cancelled, DecodeFailure, EndpointError, HTTPStatusError, Offline,
                     RequestTypeDisabled, Throttled, TransportError, Unauthorized)
from .model import (CachedResponse, CacheUsePolicy, Provenance, RequestDescriptor, RequestType, StatusFamily, Task,
                    Throttle, classify)
from .response import Response, ResponseMaker, ResponseType, Result, accept_header, make_result
from .transport import TransportResponse
from .util import KeyStrategy


logger = logging.getLogger(__name__)


EndpointCompletion = Callable[[Result], None]
EndpointProgress = Callable[[int, int, Optional[int], Optional[float]], None]

_FALLBACK_FAMILIES = (StatusFamily.CLIENT_ERROR, StatusFamily.SERVER_ERROR, StatusFamily.UNKNOWN)


@dataclass
class _Dispatch:
    """
    The state of a single dispatch. An endpoint replaces it whenever it is reset.
    """

    completion: Optional[EndpointCompletion] = None
    response_type: Union[ResponseType, ResponseMaker] = ResponseType.JSON
    progress: Optional[EndpointProgress] = None
    request: Optional[RequestDescriptor] = None
    task: Optional[Task] = None
    pending: Optional[int] = None
    """
    The identifier of the network task whose completion is awaited.
    """

    cached_timestamp: Optional[float] = None
    """
    The timestamp of the cache entry found before dispatch, if any.
    """

    result: Optional[Result] = None
    done: threading.Event = field(default_factory=threading.Event)

    def finish(self, result: Result) -> None:
        self.result = result
        self.done.set()


class _DecodingMaker(ResponseMaker):
    accept = 'application/json'

    def __init__(self,
                 class_type: Type,
                 date_formats: Optional[Sequence[str]] = None,
                 key_strategy: KeyStrategy = KeyStrategy.DEFAULT) -> None:
        self.class_type = class_type
        self.date_formats = date_formats
        self.key_strategy = key_strategy

    def make(self, response: Response, error: Optional[EndpointError]) -> Result:
        if error is not None:
            return Result(response, error)
        try:
            return Result(response, value=response.decoded(self.class_type, self.date_formats, self.key_strategy))
        except DecodeFailure as e:
            return Result(response, e)


class Endpoint:
    """
    Issues requests and delivers exactly one `Result` per dispatch.

    An endpoint resolves every dispatch in a strict order: simulated offline mode, URL composition, disabled request
    types, mocked responses, throttling, the session's cache and finally the network. Whatever the outcome, the
    completion runs on the session's delivery context.

    An endpoint has at most one task in flight. Dispatching again resets it first, cancelling the pending task, whose
    completion then receives `Cancelled`.
    """

    def __init__(self, session) -> None:
        self.session = session
        self.cache_use_policy = CacheUsePolicy.NORMAL
        self.throttle: Optional[Throttle] = None
        self.description: Optional[str] = None
        self.user_data: Any = None

        self.__mock_body: Optional[bytes] = None
        self.__mock_status: Optional[int] = None
        self.__mock_headers: Optional[Dict[str, str]] = None
        self.__mock_pagination_keys: Sequence[str] = ()

        self.__dispatch = _Dispatch()
        self.__lock = threading.Lock()

    def __repr__(self) -> str:
        dispatch = self.__dispatch
        request = dispatch.request
        return '<Endpoint {}{}{}>'.format(
            self.description + ' ' if self.description else '',
            '{} {}'.format(request.method.value, request.url) if request is not None else 'idle',
            ' ({})'.format(dispatch.task.provenance) if dispatch.task is not None else '')

    # region Properties

    @property
    def task(self) -> Optional[Task]:
        return self.__dispatch.task

    @property
    def request_descriptor(self) -> Optional[RequestDescriptor]:
        return self.__dispatch.request

    @property
    def result(self) -> Optional[Result]:
        return self.__dispatch.result

    @property
    def is_pending(self) -> bool:
        return self.__dispatch.pending is not None

    # endregion

    # region Setup

    def with_description(self, description: str) -> 'Endpoint':
        self.description = description
        return self

    def with_data(self, user_data: Any) -> 'Endpoint':
        self.user_data = user_data
        return self

    def with_throttle(self, throttle: Optional[Throttle]) -> 'Endpoint':
        self.throttle = throttle
        return self

    def with_cache_use_policy(self, policy: CacheUsePolicy) -> 'Endpoint':
        self.cache_use_policy = policy
        return self

    def mock(self, body: Union[bytes, str, None] = None, status: Optional[int] = None) -> 'Endpoint':
        """
        Answer the next dispatch with a synthesized response instead of touching the network.

        The body and status are consumed by that dispatch. A status without a body produces an empty response, and
        a body without a status is delivered with status 200.
        """
        self.__mock_body = body.encode('utf-8') if isinstance(body, str) else body
        self.__mock_status = status
        return self

    def mock_json(self, document: Union[str, Any], status: Optional[int] = None) -> 'Endpoint':
        if not isinstance(document, str):
            document = json.dumps(document)
        return self.mock(document, status)

    def mock_json_file(self, path: Union[str, Path], status: Optional[int] = None) -> 'Endpoint':
        try:
            document = Path(path).read_text(encoding='utf-8')
            json.loads(document)
        except (OSError, ValueError):
            logger.warning('Could not load mock JSON from {}'.format(path), exc_info=True)
            return self
        return self.mock(document, status)

    def mock_headers(self,
                     headers: Optional[Mapping[str, str]],
                     pagination_keys: Optional[Sequence[str]] = None) -> 'Endpoint':
        """
        Send `headers` with every mocked response until they are cleared with `None`.

        @param pagination_keys
          Header keys with integer values incremented before every mocked response.
        """
        self.__mock_headers = dict(headers) if headers is not None else None
        self.__mock_pagination_keys = tuple(pagination_keys or ())
        return self

    # endregion

    # region Requests

    def get(self,
            path: str,
            params: Any = None,
            completion: Optional[EndpointCompletion] = None,
            response_type: Union[ResponseType, ResponseMaker] = ResponseType.JSON,
            headers: Optional[Mapping[str, str]] = None) -> 'Endpoint':
        return self.request(RequestType.GET, path, params=params, headers=headers, completion=completion,
                            response_type=response_type)

    def get_cached(self,
                   path: str,
                   params: Any = None,
                   completion: Optional[EndpointCompletion] = None,
                   response_type: Union[ResponseType, ResponseMaker] = ResponseType.JSON,
                   headers: Optional[Mapping[str, str]] = None) -> 'Endpoint':
        """
        Answer a GET from the cache only. Fails with `CachedNotFound` when there is no usable entry.
        """
        return self.request(RequestType.GET, path, params=params, headers=headers, completion=completion,
                            response_type=response_type, cached_only=True)

    def get_decoded(self,
                    path: str,
                    class_type: Type,
                    params: Any = None,
                    completion: Optional[EndpointCompletion] = None,
                    date_formats: Optional[Sequence[str]] = None,
                    key_strategy: KeyStrategy = KeyStrategy.DEFAULT,
                    headers: Optional[Mapping[str, str]] = None) -> 'Endpoint':
        """
        GET a JSON document and decode it into the dataclass `class_type`, delivered as `Result.value`.
        """
        return self.request(RequestType.GET, path, params=params, headers=headers, completion=completion,
                            response_type=_DecodingMaker(class_type, date_formats, key_strategy))

    def post(self,
             path: str,
             data: Any = None,
             json: Any = None,
             completion: Optional[EndpointCompletion] = None,
             response_type: Union[ResponseType, ResponseMaker] = ResponseType.JSON,
             headers: Optional[Mapping[str, str]] = None) -> 'Endpoint':
        return self.request(RequestType.POST, path, data=data, json=json, headers=headers, completion=completion,
                            response_type=response_type)

    def put(self,
            path: str,
            data: Any = None,
            json: Any = None,
            completion: Optional[EndpointCompletion] = None,
            response_type: Union[ResponseType, ResponseMaker] = ResponseType.JSON,
            headers: Optional[Mapping[str, str]] = None) -> 'Endpoint':
        return self.request(RequestType.PUT, path, data=data, json=json, headers=headers, completion=completion,
                            response_type=response_type)

    def patch(self,
              path: str,
              data: Any = None,
              json: Any = None,
              completion: Optional[EndpointCompletion] = None,
              response_type: Union[ResponseType, ResponseMaker] = ResponseType.JSON,
              headers: Optional[Mapping[str, str]] = None) -> 'Endpoint':
        return self.request(RequestType.PATCH, path, data=data, json=json, headers=headers, completion=completion,
                            response_type=response_type)

    def delete(self,
               path: str,
               params: Any = None,
               completion: Optional[EndpointCompletion] = None,
               response_type: Union[ResponseType, ResponseMaker] = ResponseType.OPTIONAL_JSON,
               headers: Optional[Mapping[str, str]] = None) -> 'Endpoint':
        return self.request(RequestType.DELETE, path, params=params, headers=headers, completion=completion,
                            response_type=response_type)

    def download(self,
                 path: str,
                 params: Any = None,
                 progress: Optional[EndpointProgress] = None,
                 completion: Optional[EndpointCompletion] = None,
                 headers: Optional[Mapping[str, str]] = None) -> 'Endpoint':
        """
        GET raw data, reporting progress on the delivery context as the body is received.
        """
        return self.request(RequestType.GET, path, params=params, headers=headers, completion=completion,
                            response_type=ResponseType.DATA, progress=progress)

    def request(self,
                request_type: RequestType,
                path: str,
                params: Any = None,
                data: Any = None,
                json: Any = None,
                headers: Optional[Mapping[str, str]] = None,
                completion: Optional[EndpointCompletion] = None,
                response_type: Union[ResponseType, ResponseMaker] = ResponseType.JSON,
                cached_only: bool = False,
                progress: Optional[EndpointProgress] = None) -> 'Endpoint':
        """
        Build a request from a path, resolved against the session's host, and dispatch it.
        """
        dispatch = self._reset(completion, response_type, progress)
        if self.session.is_offline:
            return self._fail(dispatch, Offline(), Task(None, None, Provenance.INVALID))
        try:
            request = self.session.build_request(request_type, path, params=params, data=data, json=json,
                                                 headers=headers, accept=accept_header(response_type))
        except BadURL as e:
            logger.debug('Could not build a request for {}: {}'.format(path, e))
            return self._fail(dispatch, e, Task(None, None, Provenance.INVALID))
        return self._resolve(dispatch, request, cached_only)

    def dispatch(self,
                 request: RequestDescriptor,
                 completion: Optional[EndpointCompletion] = None,
                 response_type: Union[ResponseType, ResponseMaker] = ResponseType.JSON,
                 cached_only: bool = False,
                 progress: Optional[EndpointProgress] = None) -> 'Endpoint':
        """
        Dispatch a fully built request.

        @param request
          The request to issue.
        @param completion
          Receives the `Result` on the session's delivery context. It is called exactly once, unless the
          unauthorized callback rejects the delivery.
        @param response_type
          How the response body is interpreted.
        @param cached_only
          Whether to answer from the cache only. Mocks are ignored.
        @param progress
          Receives download progress notifications.
        @return
          This endpoint.
        """
        dispatch = self._reset(completion, response_type, progress)
        if self.session.is_offline:
            return self._fail(dispatch, Offline(), Task(None, request, Provenance.INVALID))
        if not request.is_valid:
            return self._fail(dispatch, BadURL(request.url), Task(None, request, Provenance.INVALID))
        return self._resolve(dispatch, request, cached_only)

    def cancel(self) -> bool:
        with self.__lock:
            pending = self.__dispatch.pending
        if pending is None:
            return False
        return self.session.cancel(pending)

    def wait(self, timeout: Optional[float] = None) -> Optional[Result]:
        """
        Block until the current dispatch has been delivered.

        @return
          The delivered `Result`, or `None` if `timeout` elapsed first.
        @throws RuntimeError
          If called on the delivery context while the dispatch is still pending. Deliveries run
          one at a time, so such a dispatch could not be delivered before `wait` returned.
        """
        dispatch = self.__dispatch
        if self.session.in_delivery_context and not dispatch.done.is_set():
            raise RuntimeError('wait() cannot block on a pending dispatch from the delivery context')
        if not dispatch.done.wait(timeout):
            return None
        return dispatch.result

    # endregion

    # region Resolution

    def _reset(self,
               completion: Optional[EndpointCompletion],
               response_type: Union[ResponseType, ResponseMaker],
               progress: Optional[EndpointProgress]) -> _Dispatch:
        dispatch = _Dispatch(completion=completion, response_type=response_type, progress=progress)
        with self.__lock:
            previous = self.__dispatch
            self.__dispatch = dispatch
            stale = previous.pending
            previous.pending = None

        if stale is not None:
            logger.info('Resetting {}; cancelling task {}'.format(self, stale))
            self.session.cancel(stale)
            cancelled = Response(None, url=previous.request.url, provenance=previous.task.provenance)
            self._deliver(previous, Result(cancelled, Cancelled()))
        return dispatch

    def _resolve(self, dispatch: _Dispatch, request: RequestDescriptor, cached_only: bool) -> 'Endpoint':
        dispatch.request = request
        session = self.session
        logger.debug('Resolving {} {}'.format(request.method.value, request.url))

        if request.method in session.configuration.disabled_request_types:
            return self._fail(dispatch, RequestTypeDisabled(request.method), Task(None, request, Provenance.INVALID))

        if not cached_only and (self.__mock_body is not None or self.__mock_status is not None):
            return self._respond_with_mock(dispatch, request)

        if self.throttle is not None and session.throttler.throttled(request, self.throttle):
            return self._fail(dispatch, Throttled(), None)

        cache = session.cache
        if cache is not None and request.method.is_cachable and self.cache_use_policy is CacheUsePolicy.NORMAL:
            entry = cache.lookup(request)
            if entry is not None:
                dispatch.cached_timestamp = entry.timestamp
                usable = expiry.resolve(entry, cache.expiry_for(request))
                if usable is not None:
                    logger.debug('Answering {} from the cache'.format(request.url))
                    response = Response(usable.status, usable.body, url=request.url, provenance=Provenance.APP_CACHE)
                    dispatch.task = Task(None, request, Provenance.APP_CACHE)
                    self._deliver(dispatch, make_result(dispatch.response_type, response))
                    return self

        if cached_only:
            return self._fail(dispatch, CachedNotFound(), Task(None, request, Provenance.INVALID))

        session._launch(self, request, dispatch.progress)
        return self

    def _respond_with_mock(self, dispatch: _Dispatch, request: RequestDescriptor) -> 'Endpoint':
        headers = self.__mock_headers
        if headers is not None:
            for key in self.__mock_pagination_keys:
                value = headers.get(key)
                if value is not None and str(value).isdigit():
                    headers[key] = str(int(value) + 1)

        status = self.__mock_status if self.__mock_status is not None else 200
        body = self.__mock_body
        self.__mock_body = None
        self.__mock_status = None

        logger.debug('Answering {} with a mocked {} response'.format(request.url, status))
        response = Response(status, body, dict(headers or {}), request.url, Provenance.MOCK)
        error = None if classify(status) is StatusFamily.SUCCESSFUL else self._status_error(status)
        dispatch.task = Task(None, request, Provenance.MOCK)
        self._deliver(dispatch, make_result(dispatch.response_type, response, error))
        return self

    def _fail(self, dispatch: _Dispatch, error: EndpointError, task: Optional[Task]) -> 'Endpoint':
        logger.debug('Failing dispatch: {}'.format(error))
        dispatch.task = task
        url = dispatch.request.url if dispatch.request is not None else None
        response = Response(None, url=url, provenance=task.provenance if task is not None else None)
        self._deliver(dispatch, Result(response, error))
        return self

    def _status_error(self, status: int, reason: Optional[str] = None) -> HTTPStatusError:
        if status in self.session.configuration.unauthorized_status_codes:
            return Unauthorized(status, reason)
        return HTTPStatusError(status, reason)

    # endregion

    # region Completion

    def _started(self, task: Task) -> None:
        with self.__lock:
            self.__dispatch.task = task
            self.__dispatch.pending = task.identifier

    def _completed(self,
                   task_id: int,
                   response: Optional[TransportResponse],
                   error: Optional[EndpointError]) -> None:
        with self.__lock:
            dispatch = self.__dispatch
            if dispatch.pending != task_id:
                logger.debug('Ignoring the stale completion of task {}'.format(task_id))
                return
            dispatch.pending = None

        session = self.session
        request = dispatch.request
        status = response.status if response is not None else None
        family = classify(status, cancelled=isinstance(error, Cancelled))
        failure = error
        if failure is None:
            if response is None:
                failure = TransportError('No response was received')
            elif family is not StatusFamily.SUCCESSFUL:
                failure = self._status_error(status, response.reason)
        logger.debug('Task {} completed with {} ({})'.format(task_id, status, family.value))

        proceed = True
        if isinstance(failure, Unauthorized) and session.unauthorized_callback is not None:
            proceed = session.unauthorized_callback(self)

        cache = session.cache
        result = None
        if (failure is not None
                and family in _FALLBACK_FAMILIES
                and self.cache_use_policy is CacheUsePolicy.NORMAL
                and cache is not None
                and dispatch.cached_timestamp is not None):
            fallback = expiry.resolve(cache.lookup(request), cache.expiry_for(request), request_failed=True)
            if fallback is not None:
                logger.info('{} failed ({}); answering from the cache'.format(request.url, failure))
                cached = Response(fallback.status, fallback.body, url=request.url, provenance=Provenance.APP_CACHE)
                result = make_result(dispatch.response_type, cached)
        if result is None:
            delivered = Response(status,
                                 response.body if response is not None else None,
                                 dict(response.headers) if response is not None else {},
                                 response.url if response is not None else request.url,
                                 dispatch.task.provenance)
            result = make_result(dispatch.response_type, delivered, failure)

        if proceed or session.configuration.deliver_rejected_unauthorized:
            self._deliver(dispatch, result)
        else:
            logger.info('Delivery of {} rejected by the unauthorized callback'.format(request.url))
            dispatch.finish(result)

        if cache is None or family is StatusFamily.CANCELED:
            return
        if dispatch.cached_timestamp is not None and self.cache_use_policy is not CacheUsePolicy.IGNORE:
            if expiry.should_remove(dispatch.cached_timestamp, cache.expiry_for(request)):
                logger.debug('Removing the expired cache entry for {}'.format(request.url))
                cache.discard(request)
        if failure is None and request.method.is_cachable:
            cache.store(request, CachedResponse(status=status, body=response.body, timestamp=time.time()))

    def _deliver(self, dispatch: _Dispatch, result: Result) -> None:
        def run():
            try:
                if dispatch.completion is not None:
                    dispatch.completion(result)
            finally:
                dispatch.finish(result)

        self.session.deliver(run)

    # endregion
