from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
import logging
import threading
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Set, Union
from urllib.parse import urlsplit

import requests

from .cache import Cache
from .errors import BadURL
from .model import Provenance, RequestDescriptor, RequestType, Task
from .throttle import Throttler
from .transport import RequestsTransport, Transport, TransportResponse


logger = logging.getLogger(__name__)


class NetworkingMode(Enum):
    DEFAULT = 'default'
    SIMULATED_OFFLINE = 'simulated_offline'


@dataclass
class Configuration:
    """
    Everything a session needs to turn a path into a request, and the request policies it enforces.
    """

    host: Optional[str] = None
    """
    The host that relative paths are resolved against. Absolute URLs ignore it.
    """

    scheme: str = 'https'
    timeout: float = 60.0
    headers: Dict[str, str] = field(default_factory=dict)
    """
    Headers sent with every request.
    """

    authorization_header_key: str = 'Authorization'
    authorization_header_value: Optional[str] = None
    """
    Sent verbatim in `authorization_header_key`. Takes precedence over `authorization_bearer_token`.
    """

    authorization_bearer_token: Optional[str] = None
    disabled_request_types: Set[RequestType] = field(default_factory=set)
    unauthorized_status_codes: FrozenSet[int] = frozenset({401, 403})
    deliver_rejected_unauthorized: bool = True
    """
    Whether a result is still delivered when the session's unauthorized callback returns False.
    """


class Session:
    """
    Coordinates the endpoints issuing requests through one transport.

    A session owns its configuration, its cache store (if any), its throttle table and the delivery context: a
    single-worker executor on which every endpoint completion, progress notification and hook runs. It keeps track of
    the endpoints with a network task in flight and routes transport completions back to them.
    """

    def __init__(self,
                 configuration: Optional[Configuration] = None,
                 cache: Optional[Cache] = None,
                 transport: Optional[Transport] = None,
                 throttler: Optional[Throttler] = None,
                 delivery: Optional[Executor] = None) -> None:
        self.configuration = configuration if configuration is not None else Configuration()
        self.cache = cache
        self.transport = transport if transport is not None else RequestsTransport()
        self.throttler = throttler if throttler is not None else Throttler()
        self.networking_mode = NetworkingMode.DEFAULT

        self.unauthorized_callback: Optional[Callable[[Any], bool]] = None
        self.request_started: Optional[Callable[[Any], None]] = None
        self.request_completed: Optional[Callable[[Any, Optional[TransportResponse]], None]] = None
        self.orphaned_callback: Optional[Callable[[int], None]] = None

        self.__owns_delivery = delivery is None
        self.__delivery = delivery if delivery is not None else ThreadPoolExecutor(
            max_workers=1, thread_name_prefix='endpointer-delivery')
        self.__active: Dict[int, Any] = {}
        self.__lock = threading.RLock()
        self.__local = threading.local()

    def __enter__(self) -> 'Session':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # region Configuration

    @property
    def is_offline(self) -> bool:
        return self.networking_mode is NetworkingMode.SIMULATED_OFFLINE

    @property
    def writing_disabled(self) -> bool:
        return all(request_type in self.configuration.disabled_request_types
                   for request_type in RequestType if request_type.is_write)

    @writing_disabled.setter
    def writing_disabled(self, disabled: bool) -> None:
        writes = {request_type for request_type in RequestType if request_type.is_write}
        if disabled:
            self.configuration.disabled_request_types |= writes
        else:
            self.configuration.disabled_request_types -= writes

    def endpoint(self):
        from .endpoint import Endpoint
        return Endpoint(self)

    def compose_url(self, path: str) -> Optional[str]:
        """
        Resolve `path` against the configured scheme and host. Fully qualified URLs are returned as they are.
        """
        parts = urlsplit(path)
        if parts.scheme and parts.netloc:
            return path
        host = self.configuration.host
        if not host:
            return None
        return '{}://{}/{}'.format(self.configuration.scheme, host.strip('/'), path.lstrip('/'))

    def build_request(self,
                      request_type: RequestType,
                      path: str,
                      params: Any = None,
                      data: Any = None,
                      json: Any = None,
                      headers: Optional[Mapping[str, str]] = None,
                      accept: Optional[str] = None) -> RequestDescriptor:
        """
        Build the descriptor of a request, encoding its parameters and body.

        @throws BadURL
          If no URL can be composed from `path`.
        """
        url = self.compose_url(path)
        if url is None:
            raise BadURL(path)

        merged = {}
        if accept is not None:
            merged['Accept'] = accept
        configuration = self.configuration
        if configuration.authorization_header_value is not None:
            merged[configuration.authorization_header_key] = configuration.authorization_header_value
        elif configuration.authorization_bearer_token is not None:
            merged[configuration.authorization_header_key] = 'Bearer {}'.format(
                configuration.authorization_bearer_token)
        merged.update(configuration.headers)
        merged.update(headers or {})

        try:
            prepared = requests.Request(request_type.value, url, headers=merged,
                                        params=params, data=data, json=json).prepare()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise BadURL(url) from e

        body = prepared.body
        if isinstance(body, str):
            body = body.encode('utf-8')
        return RequestDescriptor(method=request_type,
                                 url=prepared.url,
                                 headers=dict(prepared.headers),
                                 body=body,
                                 timeout=configuration.timeout)

    # endregion

    # region Bookkeeping

    @property
    def in_flight(self) -> List[Any]:
        with self.__lock:
            return list(self.__active.values())

    @property
    def in_delivery_context(self) -> bool:
        """
        @return True when called from a callback running on the delivery context.
        """
        return getattr(self.__local, 'delivering', False)

    def deliver(self, callback: Callable, *args) -> None:
        """
        Run `callback(*args)` on the delivery context.
        """
        try:
            self.__delivery.submit(self._call, callback, args)
        except RuntimeError:
            logger.warning('The session is closed; dropping delivery of {}'.format(callback))

    def _call(self, callback: Callable, args) -> None:
        self.__local.delivering = True
        try:
            callback(*args)
        except Exception:
            logger.exception('Unhandled exception in callback {}'.format(callback))
        finally:
            self.__local.delivering = False

    def _launch(self, endpoint, request: RequestDescriptor, progress=None) -> Task:
        provenance = Provenance.SYSTEM_CACHE if self.transport.caches_responses else Provenance.NETWORK
        # Held while the task is registered so that its completion cannot be processed before.
        with self.__lock:
            if progress is None:
                task_id = self.transport.perform(request, self._task_completed)
            else:
                task_id = self.transport.stream(request, lambda *args: self.deliver(progress, *args),
                                                self._task_completed)
            task = Task(task_id, request, provenance)
            self.__active[task_id] = endpoint
            endpoint._started(task)
        logger.debug('Dispatched {} {} as task {}'.format(request.method.value, request.url, task_id))
        if self.request_started is not None:
            self.deliver(self.request_started, endpoint)
        return task

    def _task_completed(self,
                        task_id: int,
                        response: Optional[TransportResponse],
                        error) -> None:
        with self.__lock:
            endpoint = self.__active.pop(task_id, None)
        if endpoint is None:
            logger.warning('Orphaned completion for task {}'.format(task_id))
            if self.orphaned_callback is not None:
                self.deliver(self.orphaned_callback, task_id)
            return
        if self.request_completed is not None:
            self.deliver(self.request_completed, endpoint, response)
        self.deliver(endpoint._completed, task_id, response, error)

    def cancel(self, task: Union[Task, int]) -> bool:
        task_id = task.identifier if isinstance(task, Task) else task
        if task_id is None:
            return False
        return self.transport.cancel(task_id)

    def cancel_all_requests(self) -> None:
        self.transport.cancel_all()

    # endregion

    def remove_all_cached_responses(self) -> None:
        if self.cache is not None:
            self.cache.remove_all()

    def close(self) -> None:
        self.transport.close()
        if self.__owns_delivery:
            self.__delivery.shutdown(wait=True)
        if self.cache is not None:
            self.cache.close()
