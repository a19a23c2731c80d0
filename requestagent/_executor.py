'''
Performs a single request/response exchange for a `RequestAgent` and
classifies the result as a success, a redirect or a failure.
'''
import asyncio
import errno
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import IO, Any

import httpx

from requestagent._agent import RequestAgent, set_header
from requestagent._errors import (
    InvalidOptionsError,
    RequestConnectionError,
    TransportError,
)
from requestagent._response import (
    Classified,
    HTTPFailure,
    HTTPRedirect,
    HTTPResponse,
)


logger = logging.getLogger(__name__)


# HTTP methods that send a request body.
DATA_METHODS = frozenset({'PATCH', 'POST', 'PUT'})

SUCCESS_STATUSES = range(200, 300)
REDIRECT_STATUSES = range(301, 311)

STREAM_CHUNK_SIZE: int = 65_536

Body = (
    bytes
    | bytearray
    | memoryview
    | str
    | IO[bytes]
    | Iterable[bytes]
    | AsyncIterable[bytes]
)


def _to_bytes(chunk: Any) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode('utf-8')
    return bytes(chunk)


async def _iter_file(fileobj: IO[bytes], chunk_size: int) -> AsyncIterator[bytes]:
    while chunk := await asyncio.to_thread(fileobj.read, chunk_size):
        yield _to_bytes(chunk)


async def _iter_sync(iterable: Iterable[Any]) -> AsyncIterator[bytes]:
    for chunk in iterable:
        yield _to_bytes(chunk)


async def _iter_async(iterable: AsyncIterable[Any]) -> AsyncIterator[bytes]:
    async for chunk in iterable:
        yield _to_bytes(chunk)


def prepare_body(
    body: Body,
    headers: dict[str, str],
) -> bytes | AsyncIterator[bytes]:
    '''
    Turn the body into what httpx sends. Buffers get a `Content-Length`
    header, streams are forwarded chunk by chunk until exhausted.

    Parameters
    ----------
    body : Body
    headers : dict[str, str]
        The request headers, updated in place.

    Returns
    -------
    bytes | AsyncIterator[bytes]

    Raises
    ------
    InvalidOptionsError
        If the body is of a type that cannot be sent.
    '''
    if isinstance(body, (str, bytes, bytearray, memoryview)):
        data = _to_bytes(body)
        set_header(headers, 'Content-Length', str(len(data)))
        return data

    if hasattr(body, 'read'):
        return _iter_file(body, STREAM_CHUNK_SIZE)

    if isinstance(body, AsyncIterable):
        return _iter_async(body)

    if isinstance(body, Iterable):
        return _iter_sync(body)

    raise InvalidOptionsError(f'Unsupported body type: {type(body).__name__}')


def _is_refused(exc: BaseException) -> bool:
    current: BaseException | None = exc
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ConnectionRefusedError):
            return True
        if getattr(current, 'errno', None) == errno.ECONNREFUSED:
            return True
        current = current.__cause__ or current.__context__
    return False


def _transport_error(exc: httpx.HTTPError, agent: RequestAgent) -> TransportError:
    if isinstance(exc, httpx.ConnectError) and _is_refused(exc):
        return RequestConnectionError(
            'Error connecting to remote server',
            status_code=500,
            detail=f'Error connecting to {agent.params.hostname}',
            original=exc,
        )

    if isinstance(exc, httpx.TimeoutException):
        return TransportError(
            str(exc) or 'Request timed out',
            status_code=504,
            detail=f'Timed out talking to {agent.params.hostname}',
            original=exc,
        )

    if isinstance(exc, httpx.DecodingError):
        return TransportError(
            'Error decoding response body',
            detail=str(exc),
            original=exc,
        )

    return TransportError(
        str(exc) or type(exc).__name__,
        detail=f'Error talking to {agent.params.hostname}',
        original=exc,
    )


def classify(response: httpx.Response, body: bytes, url: str) -> Classified:
    '''
    Wrap the response parts in the variant matching its status code.
    '''
    status = response.status_code
    parts = dict(
        status_code=status,
        headers=response.headers,
        body=body,
        http_version=response.http_version,
        reason_phrase=response.reason_phrase,
        url=url,
    )

    if status in SUCCESS_STATUSES:
        return HTTPResponse(**parts)

    if status in REDIRECT_STATUSES:
        return HTTPRedirect(location=response.headers.get('location'), **parts)

    parts['reason_phrase'] = response.reason_phrase or 'Remote request error'
    return HTTPFailure(**parts)


def build_request(agent: RequestAgent, body: Body | None = None) -> httpx.Request:
    params = agent.params
    headers = dict(params.headers)

    content = None
    if body is not None and params.method in DATA_METHODS:
        content = prepare_body(body, headers)

    return httpx.Request(
        params.method,
        agent.url,
        headers=headers,
        content=content,
        extensions={'timeout': agent.timeout.as_dict()},
    )


async def execute(agent: RequestAgent, body: Body | None = None) -> Classified:
    '''
    Send one request with the agent's current parameters and read the
    whole (decoded) response body.

    Parameters
    ----------
    agent : RequestAgent
    body : Body | None, optional
        Only sent for PATCH, POST and PUT requests.

    Returns
    -------
    Classified
        `HTTPResponse`, `HTTPRedirect` or `HTTPFailure`.

    Raises
    ------
    RequestConnectionError
        If the remote refused the connection.
    TransportError
        For any other transport failure, timeouts included.
    '''
    params = agent.params
    request = build_request(agent, body)
    url = str(request.url)

    logger.debug(f'{params.method} {params.hostname}:{params.port}{params.path}')

    async with agent.transport() as transport:
        try:
            response = await transport.handle_async_request(request)
            try:
                chunks = [chunk async for chunk in response.aiter_bytes()]
            finally:
                await response.aclose()
        except httpx.HTTPError as exc:
            raise _transport_error(exc, agent) from exc

    logger.debug(f'{params.method} {url} -> {response.status_code}')
    return classify(response, b''.join(chunks), url)
