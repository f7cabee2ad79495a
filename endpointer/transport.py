from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
import itertools
import logging
import threading
from typing import Callable, Dict, List, Mapping, Optional

import requests

from .errors import Cancelled, EndpointError, TransportError
from .model import RequestDescriptor


logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """
    What the transport received for a request, without any bells and whistles.
    """

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = field(default=b'', repr=False)
    url: Optional[str] = None
    reason: Optional[str] = None


TransportCompletion = Callable[[int, Optional[TransportResponse], Optional[EndpointError]], None]
"""
Called exactly once per task with the task identifier, the response (if any was received) and the failure (if any).
"""

TransportProgress = Callable[[int, int, Optional[int], Optional[float]], None]
"""
Called with the bytes received since the last call, the total received so far, the expected total (from
Content-Length, if known) and the completed percentage (if the expected total is known).
"""


class Transport(ABC):
    """
    Performs requests on behalf of a session. Completions may be invoked from any thread.
    """

    caches_responses = False
    """
    Whether the transport answers from its own cache, in which case network tasks have the system-cache provenance.
    """

    @abstractmethod
    def perform(self, request: RequestDescriptor, completion: TransportCompletion) -> int:
        """
        Start a request and return its task identifier.
        """

    @abstractmethod
    def stream(self, request: RequestDescriptor, progress: TransportProgress, completion: TransportCompletion) -> int:
        """
        Start a request whose body is read in chunks, reporting progress along the way. Returns the task identifier.
        """

    @abstractmethod
    def cancel(self, task_id: int) -> bool:
        """
        Cancel a task. Its completion receives `Cancelled`. Returns whether the task was in flight.
        """

    @abstractmethod
    def tasks(self) -> List[int]:
        """
        The identifiers of every task in flight.
        """

    def cancel_all(self) -> None:
        for task_id in self.tasks():
            self.cancel(task_id)

    def close(self) -> None:
        """
        Release any resources associated with the transport.
        """


@dataclass
class _InFlight:
    cancelled: threading.Event = field(default_factory=threading.Event)
    future: Optional[Future] = None
    completion: Optional[TransportCompletion] = None


class RequestsTransport(Transport):
    """
    A transport backed by a `requests.Session`, running each request on a worker thread.
    """

    def __init__(self,
                 session: Optional[requests.Session] = None,
                 max_workers: int = 8,
                 chunk_size: int = 64 * 1024) -> None:
        self.__session = session if session is not None else requests.Session()
        self.__executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='endpointer-transport')
        self.__chunk_size = chunk_size
        self.__ids = itertools.count(1)
        self.__tasks: Dict[int, _InFlight] = {}
        self.__lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        return self.__session

    def perform(self, request: RequestDescriptor, completion: TransportCompletion) -> int:
        return self._start(request, None, completion)

    def stream(self, request: RequestDescriptor, progress: TransportProgress, completion: TransportCompletion) -> int:
        return self._start(request, progress, completion)

    def _start(self,
               request: RequestDescriptor,
               progress: Optional[TransportProgress],
               completion: TransportCompletion) -> int:
        in_flight = _InFlight(completion=completion)
        with self.__lock:
            task_id = next(self.__ids)
            self.__tasks[task_id] = in_flight
            in_flight.future = self.__executor.submit(self._run, task_id, in_flight, request, progress)
        return task_id

    def cancel(self, task_id: int) -> bool:
        with self.__lock:
            in_flight = self.__tasks.get(task_id)
            if in_flight is None:
                return False
            in_flight.cancelled.set()
            # A task that never started will not report back on its own.
            never_started = in_flight.future is not None and in_flight.future.cancel()
            if never_started:
                del self.__tasks[task_id]
        logger.info('Cancelled task {}'.format(task_id))
        if never_started:
            in_flight.completion(task_id, None, Cancelled())
        return True

    def tasks(self) -> List[int]:
        with self.__lock:
            return list(self.__tasks)

    def close(self) -> None:
        self.cancel_all()
        self.__executor.shutdown(wait=True)
        self.__session.close()

    def _run(self,
             task_id: int,
             in_flight: _InFlight,
             request: RequestDescriptor,
             progress: Optional[TransportProgress]) -> None:
        response = None
        error = None
        try:
            if in_flight.cancelled.is_set():
                raise Cancelled()
            logger.debug('Sending {} {} (task {})'.format(request.method.value, request.url, task_id))
            requests_response = self.__session.request(request.method.value,
                                                       request.url,
                                                       headers=dict(request.headers),
                                                       data=request.body,
                                                       timeout=request.timeout,
                                                       stream=progress is not None)
            try:
                if progress is None:
                    body = requests_response.content
                else:
                    body = self._read(requests_response, in_flight, progress)
            finally:
                requests_response.close()

            if in_flight.cancelled.is_set():
                raise Cancelled()
            response = TransportResponse(status=requests_response.status_code,
                                         headers=dict(requests_response.headers),
                                         body=body,
                                         url=requests_response.url,
                                         reason=requests_response.reason)
        except Cancelled as e:
            error = e
        except requests.exceptions.Timeout as e:
            error = TransportError('The request timed out: {}'.format(e), timed_out=True)
        except requests.exceptions.RequestException as e:
            error = TransportError(str(e))
        except Exception as e:
            logger.exception('Unexpected failure while performing task {}'.format(task_id))
            error = TransportError('Unexpected failure: {}'.format(e))
        finally:
            with self.__lock:
                self.__tasks.pop(task_id, None)

        in_flight.completion(task_id, response, error)

    def _read(self, requests_response: requests.Response, in_flight: _InFlight, progress: TransportProgress) -> bytes:
        expected = requests_response.headers.get('Content-Length')
        expected = int(expected) if expected and expected.isdigit() else None
        received = bytearray()
        for chunk in requests_response.iter_content(chunk_size=self.__chunk_size):
            if in_flight.cancelled.is_set():
                raise Cancelled()
            received.extend(chunk)
            percent = len(received) / expected * 100 if expected else None
            progress(len(chunk), len(received), expected, percent)
        return bytes(received)
