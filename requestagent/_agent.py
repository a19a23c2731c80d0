'''
The per-request connection state.

A `RequestAgent` holds everything needed to send a request to its current
target: the request parameters, the pool options and the pooled transport.
It is created once per call and updated in place while redirects are
followed, the pooled transport it references outlives it.
'''
import contextlib
import dataclasses as dc
import enum
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx

from requestagent._errors import InvalidOptionsError, UnsupportedProtocolError
from requestagent._pool import AgentPool, CAMaterial, PoolOptions, default_pool
from requestagent._urls import default_port, parse_url, request_target, resolve


logger = logging.getLogger(__name__)


DEFAULT_MAX_REDIRECTS: int = 5
MAXIMUM_REDIRECTS: int = 15


class TransportKind(enum.Enum):
    PLAIN = 'http'
    TLS = 'https'

    @classmethod
    def from_scheme(cls, scheme: str) -> 'TransportKind':
        if scheme == 'https':
            return cls.TLS
        if scheme == 'http':
            return cls.PLAIN
        raise UnsupportedProtocolError(f'Unsupported protocol: {scheme}')


def _default_headers() -> dict[str, str]:
    return {
        'Accept-Encoding': 'gzip, deflate, identity',
    }


def _base_timeouts() -> httpx.Timeout:
    return httpx.Timeout(
        connect=5.0,
        read=10.0,
        write=10.0,
        pool=5.0,
    )


def set_header(headers: dict[str, str], name: str, value: str) -> None:
    # header names are case-insensitive, the caller's spelling wins
    for existing in [key for key in headers if key.lower() == name.lower()]:
        del headers[existing]
    headers[name] = value


@dc.dataclass(slots=True)
class RequestParams:
    '''
    The parameters of the next request to send.
    '''
    hostname: str = ''
    port: int = 80
    path: str = '/'
    protocol: str = 'http'
    method: str = 'GET'
    headers: dict[str, str] = dc.field(default_factory=_default_headers)
    ca: CAMaterial | None = None


@dc.dataclass(slots=True)
class RequestAgent:
    '''
    The connection profile of one request chain.

    Attributes
    ----------
    - transport_kind: plain HTTP or TLS, follows the current target scheme.

    - params: the request parameters for the current target.

    - pool_options: the tuning options used to look up pooled transports.

    - pooled_handle: the shared transport, `None` when `new_agent` is set.

    - follow_redirects: if redirects are followed, by default True.

    - max_redirects: the maximum number of redirects to follow, by default
    5 and never more than 15.

    - new_agent: bypass the pool and use a private transport per exchange.

    - timeout: the httpx timeouts applied to every exchange.
    '''
    transport_kind: TransportKind = TransportKind.PLAIN
    params: RequestParams = dc.field(default_factory=RequestParams)
    pool_options: PoolOptions = dc.field(default_factory=PoolOptions)
    pooled_handle: httpx.AsyncBaseTransport | None = None
    follow_redirects: bool = True
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    new_agent: bool = False
    timeout: httpx.Timeout = dc.field(default_factory=_base_timeouts)
    pool: AgentPool = dc.field(default_factory=default_pool)

    @property
    def url(self) -> httpx.URL:
        return httpx.URL(
            scheme=self.params.protocol,
            host=self.params.hostname,
            port=self.params.port,
            raw_path=self.params.path.encode('ascii'),
        )

    def set_options(self, options: Mapping[str, Any]) -> None:
        self.new_agent = bool(options.get('newAgent'))

        if options.get('followRedirects') is not None:
            self.follow_redirects = bool(options['followRedirects'])

        if options.get('maxRedirects') is not None:
            try:
                max_redirects = int(options['maxRedirects'])
            except (TypeError, ValueError):
                logger.debug(f"Ignoring non numeric maxRedirects: {options['maxRedirects']!r}")
            else:
                self.max_redirects = max(0, min(max_redirects, MAXIMUM_REDIRECTS))

        timeout = options.get('timeout')
        if isinstance(timeout, httpx.Timeout):
            self.timeout = timeout
        elif timeout is not None:
            try:
                self.timeout = httpx.Timeout(float(timeout))
            except (TypeError, ValueError) as exc:
                raise InvalidOptionsError(f'Invalid value for timeout: {timeout!r}') from exc

    def set_params(self, url: httpx.URL, options: Mapping[str, Any]) -> None:
        self._retarget(url)

        if options.get('method'):
            self.params.method = str(options['method']).upper()

        headers = options.get('headers')
        if headers is not None:
            if not isinstance(headers, Mapping):
                raise InvalidOptionsError('headers option must be a mapping')
            for key, value in headers.items():
                set_header(self.params.headers, str(key), str(value))

        if options.get('ca'):
            self.params.ca = options['ca']

    def _retarget(self, url: httpx.URL) -> None:
        self.transport_kind = TransportKind.from_scheme(url.scheme)
        self.params.hostname = url.host
        self.params.port = url.port or default_port(url.scheme)
        self.params.path = request_target(url)
        self.params.protocol = url.scheme

    def resolve_handle(self) -> None:
        if self.new_agent:
            self.pooled_handle = None
            return

        self.pooled_handle = self.pool.get_or_create(
            self.pool_options,
            self.params.hostname,
            self.params.port,
            self.transport_kind.value,
            ca=self.params.ca,
        )

    def to_urls(
        self,
        old_url: str | httpx.URL,
        new_url: str | httpx.URL,
    ) -> tuple[httpx.URL, httpx.URL]:
        '''
        Parse the old URL and resolve the new one against it.

        Parameters
        ----------
        old_url : str | httpx.URL
        new_url : str | httpx.URL
            Absolute or relative to `old_url`.

        Returns
        -------
        tuple[httpx.URL, httpx.URL]
        '''
        return parse_url(old_url), resolve(old_url, new_url)

    def update(self, old_url: httpx.URL, new_url: httpx.URL) -> None:
        '''
        Point the agent at a new target. The pooled transport is only
        looked up again when the scheme or the host changed.

        Parameters
        ----------
        old_url : httpx.URL
        new_url : httpx.URL

        Raises
        ------
        UnsupportedProtocolError
            If the new target is not http or https.
        '''
        self._retarget(new_url)

        same_origin = (
            old_url.scheme == new_url.scheme and old_url.host == new_url.host
        )
        if not same_origin:
            logger.debug(f'Switching transport for {new_url.scheme}://{new_url.host}')
            self.resolve_handle()

    @contextlib.asynccontextmanager
    async def transport(self) -> AsyncIterator[httpx.AsyncBaseTransport]:
        '''
        The transport to use for one exchange: the pooled one, or a
        private one closed afterwards when the agent bypasses the pool.
        '''
        if self.pooled_handle is not None:
            yield self.pooled_handle
            return

        private = self.pool.create_private(
            self.pool_options,
            self.transport_kind.value,
            ca=self.params.ca,
        )
        async with private:
            yield private


def create_agent(
    uri: str,
    options: Mapping[str, Any] | None = None,
    *,
    pool: AgentPool | None = None,
) -> RequestAgent:
    '''
    Create the `RequestAgent` to connect to `uri`.

    Recognised options:

    - method: the HTTP method, by default GET
    - headers: extra request headers
    - ca: CA material to trust for TLS connections
    - keepAlive, keepAliveMsecs, maxSockets, maxFreeSockets,
      rejectUnauthorized, secureProtocol: pooled transport tuning
    - followRedirects: if redirects are followed
    - maxRedirects: the maximum number of redirects, at most 15
    - newAgent: bypass the pool
    - timeout: seconds, or an `httpx.Timeout`

    Parameters
    ----------
    uri : str
    options : Mapping[str, Any] | None, optional
    pool : AgentPool | None, optional
        The pool to take transports from, by default the process-wide one.

    Returns
    -------
    RequestAgent

    Raises
    ------
    InvalidOptionsError
        If `options` is not a mapping or holds invalid values.
    UnsupportedProtocolError
        If `uri` is not an http(s) URL.
    MalformedURLError
        If `uri` cannot be parsed.
    '''
    if options is None:
        options = {}

    if not isinstance(options, Mapping):
        raise InvalidOptionsError('options parameter must be a mapping')

    if not isinstance(uri, str) or not uri.lower().startswith(('http://', 'https://')):
        raise UnsupportedProtocolError('Unsupported protocol')

    agent = RequestAgent(
        pool_options=PoolOptions.from_options(options),
        pool=pool if pool is not None else default_pool(),
    )
    agent.set_options(options)
    agent.set_params(parse_url(uri), options)
    agent.resolve_handle()

    return agent
