import contextlib
import dataclasses as dc
import hashlib
import json
import logging
import socket
import ssl
import threading
import time
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any, Self

import httpx

from requestagent._errors import InvalidOptionsError


logger = logging.getLogger(__name__)


CAMaterial = str | bytes | list[str | bytes] | tuple[str | bytes, ...]

# node style protocol names, `None` lets the peers negotiate
SECURE_PROTOCOLS = MappingProxyType({
    'TLS_method': None,
    'TLS_client_method': None,
    'SSLv23_method': None,
    'SSLv23_client_method': None,
    'TLSv1_method': ssl.TLSVersion.TLSv1,
    'TLSv1_client_method': ssl.TLSVersion.TLSv1,
    'TLSv1_1_method': ssl.TLSVersion.TLSv1_1,
    'TLSv1_1_client_method': ssl.TLSVersion.TLSv1_1,
    'TLSv1_2_method': ssl.TLSVersion.TLSv1_2,
    'TLSv1_2_client_method': ssl.TLSVersion.TLSv1_2,
    'TLSv1_3_method': ssl.TLSVersion.TLSv1_3,
    'TLSv1_3_client_method': ssl.TLSVersion.TLSv1_3,
})

KEEPALIVE_EXPIRY: float = 15.0


def _as_bool(value: Any) -> bool:
    return bool(value)


def _as_int(value: Any) -> int:
    return int(value)


def _as_str(value: Any) -> str:
    return str(value)


@dc.dataclass(slots=True, frozen=True)
class PoolOptions:
    '''
    The tuning options of a pooled transport. Instances are immutable,
    a transport keeps the options it was created with for its whole life.
    '''
    keep_alive: bool = True
    keep_alive_msecs: int = 1000
    max_sockets: int = 2048
    max_free_sockets: int = 256
    reject_unauthorized: bool = True
    secure_protocol: str | None = None

    # option name -> (field name, cast)
    Recognised = MappingProxyType({
        'keepAlive': ('keep_alive', _as_bool),
        'keepAliveMsecs': ('keep_alive_msecs', _as_int),
        'maxSockets': ('max_sockets', _as_int),
        'maxFreeSockets': ('max_free_sockets', _as_int),
        'rejectUnauthorized': ('reject_unauthorized', _as_bool),
        'secureProtocol': ('secure_protocol', _as_str),
    })

    def __post_init__(self) -> None:
        if (
            self.secure_protocol is not None
            and self.secure_protocol not in SECURE_PROTOCOLS
        ):
            raise InvalidOptionsError(
                f'Unknown secureProtocol: {self.secure_protocol!r}'
            )

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> Self:
        '''
        Build the pool options from the request options, keeping the
        defaults for the keys that are not present.

        Parameters
        ----------
        options : Mapping[str, Any]

        Returns
        -------
        PoolOptions

        Raises
        ------
        InvalidOptionsError
            If a value cannot be cast to the type of its option.
        '''
        kwargs = {}
        for key, (field, cast) in cls.Recognised.items():
            if options.get(key) is None:
                continue
            try:
                kwargs[field] = cast(options[key])
            except (TypeError, ValueError) as exc:
                raise InvalidOptionsError(
                    f'Invalid value for {key}: {options[key]!r}'
                ) from exc
        return cls(**kwargs)

    def as_dict(self) -> dict[str, Any]:
        return dc.asdict(self)


def _ca_digest(ca: CAMaterial | None, hash_name: str) -> str | None:
    if ca is None:
        return None

    digest = hashlib.new(hash_name)
    items = ca if isinstance(ca, (list, tuple)) else [ca]
    for item in items:
        digest.update(item.encode('utf-8') if isinstance(item, str) else bytes(item))
        digest.update(b'\0')
    return digest.hexdigest()


def fingerprint(
    options: PoolOptions | Mapping[str, Any],
    host: str,
    port: int,
    scheme: str,
    *,
    ca: CAMaterial | None = None,
    hash_name: str = 'sha256',
) -> str:
    '''
    Compute the key of a pool entry.

    The key is a digest over a canonical (key sorted) document holding the
    scheme, host, port, pool options and CA material, so the order of the
    options never changes the result.

    Parameters
    ----------
    options : PoolOptions | Mapping[str, Any]
    host : str
    port : int
    scheme : str
    ca : CAMaterial | None, optional
        The CA material the transport verifies peers with, by default None
    hash_name : str, optional
        Any algorithm `hashlib.new` knows about, by default 'sha256'

    Returns
    -------
    str
        The hex digest.
    '''
    if isinstance(options, PoolOptions):
        options = options.as_dict()

    document = json.dumps(
        {
            'scheme': scheme.rstrip(':').lower(),
            'host': host.lower(),
            'port': int(port),
            'options': dict(options),
            'ca': _ca_digest(ca, hash_name),
        },
        sort_keys=True,
        separators=(',', ':'),
        default=str,
    )
    return hashlib.new(hash_name, document.encode('utf-8')).hexdigest()


def socket_options(options: PoolOptions) -> list[tuple]:
    '''
    cross platform socket options for the TCP connections of a transport,
    TCP keepalive probes are tuned from `keep_alive_msecs`

    Returns
    -------
    list[SockOpt]
    '''
    opts = []

    if hasattr(socket, 'TCP_NODELAY'):
        opts.append((socket.IPPROTO_TCP, socket.TCP_NODELAY, 1))

    if not options.keep_alive:
        return opts

    interval = max(1, options.keep_alive_msecs // 1000)

    if hasattr(socket, 'SO_KEEPALIVE'):
        opts.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

    if hasattr(socket, 'TCP_KEEPIDLE'):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, interval))

    if hasattr(socket, 'TCP_KEEPINTVL'):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, interval))

    return opts


TLS_1_3_CIPHERS = [
    'TLS_AES_128_GCM_SHA256',
    'TLS_AES_256_GCM_SHA384',
    'TLS_CHACHA20_POLY1305_SHA256',
]
TLS_1_2_CIPHERS = [
    'ECDHE-ECDSA-AES128-GCM-SHA256',
    'ECDHE-RSA-AES128-GCM-SHA256',
    'ECDHE-ECDSA-CHACHA20-POLY1305',
    'ECDHE-RSA-CHACHA20-POLY1305',
    'ECDHE-ECDSA-AES256-GCM-SHA384',
    'ECDHE-RSA-AES256-GCM-SHA384',
]


def _load_ca(ctx: ssl.SSLContext, ca: CAMaterial) -> None:
    items = ca if isinstance(ca, (list, tuple)) else [ca]
    for item in items:
        ctx.load_verify_locations(cadata=item)


def ssl_context(
    options: PoolOptions,
    ca: CAMaterial | None = None,
) -> ssl.SSLContext:
    '''
    creates the SSL context of a TLS transport from its pool options.

    - peer and hostname verification follow `reject_unauthorized`
    - caller CA material is trusted in addition to the system store
    - `secure_protocol` pins the TLS version, otherwise TLS 1.2+ with
      modern cipher suites
    - only http/1.1 is advertised with ALPN

    Returns
    -------
    ssl.SSLContext
    '''
    ctx = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)

    if ca is not None:
        _load_ca(ctx, ca)

    if options.reject_unauthorized:
        ctx.check_hostname = True
        ctx.verify_mode = ssl.CERT_REQUIRED
    else:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE

    with contextlib.suppress(NotImplementedError):
        ctx.set_alpn_protocols(['http/1.1'])

    ctx.options |= ssl.OP_NO_COMPRESSION

    pinned = SECURE_PROTOCOLS.get(options.secure_protocol or '')
    if pinned is not None:
        ctx.minimum_version = pinned
        ctx.maximum_version = pinned
        return ctx

    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.maximum_version = ssl.TLSVersion.MAXIMUM_SUPPORTED

    set_ciphersuites = getattr(ctx, 'set_ciphersuites', None)
    if callable(set_ciphersuites):
        # for tls 1.3
        with contextlib.suppress(ssl.SSLError):
            set_ciphersuites(':'.join(TLS_1_3_CIPHERS))

    # for tls 1.2
    ctx.set_ciphers(':'.join(TLS_1_2_CIPHERS))

    return ctx


def pool_limits(options: PoolOptions) -> httpx.Limits:
    return httpx.Limits(
        max_connections=options.max_sockets,
        max_keepalive_connections=(
            options.max_free_sockets if options.keep_alive else 0
        ),
        keepalive_expiry=KEEPALIVE_EXPIRY,
    )


class AgentTransport(httpx.AsyncBaseTransport):
    '''
    A pooled HTTP transport (an httpcore connection pool) tuned from a set
    of `PoolOptions`. This is the reusable handle the `AgentPool` shares
    between requests going to the same destination.
    '''
    def __init__(
        self,
        options: PoolOptions,
        scheme: str = 'http',
        ca: CAMaterial | None = None,
    ) -> None:
        self._options: PoolOptions = options
        self._scheme: str = scheme
        verify: ssl.SSLContext | bool = True
        if scheme.startswith('https'):
            verify = ssl_context(options, ca)

        self._inner: httpx.AsyncHTTPTransport = httpx.AsyncHTTPTransport(
            verify=verify,
            http1=True,
            http2=False,
            limits=pool_limits(options),
            trust_env=False,
            socket_options=socket_options(options),
            retries=0,
        )

    @property
    def options(self) -> PoolOptions:
        return self._options

    @property
    def scheme(self) -> str:
        return self._scheme

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._inner.handle_async_request(request)

    async def aclose(self) -> None:
        await self._inner.aclose()


TransportFactory = Callable[
    [PoolOptions, str, CAMaterial | None],
    httpx.AsyncBaseTransport,
]


@dc.dataclass(slots=True)
class PoolEntry:
    '''
    A pooled transport and when it was last handed out.
    '''
    handle: httpx.AsyncBaseTransport
    keep_alive: bool
    last_used: float = dc.field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_used = time.monotonic()


def _default_factory(
    options: PoolOptions,
    scheme: str,
    ca: CAMaterial | None,
) -> httpx.AsyncBaseTransport:
    return AgentTransport(options, scheme, ca)


class AgentPool:
    '''
    Caches one pooled transport per destination and tuning options.

    The lookup-or-create step is guarded by a lock so that concurrent
    callers for the same fingerprint always receive the same transport.
    Entries are never evicted, they live until `aclose` is called.
    '''
    __slots__ = (
        '_entries',
        '_lock',
        '_factory',
        '_hash_name',
    )

    def __init__(
        self,
        transport_factory: TransportFactory | None = None,
        *,
        hash_name: str = 'sha256',
    ) -> None:
        self._entries: dict[str, PoolEntry] = {}
        self._lock = threading.Lock()
        self._factory: TransportFactory = transport_factory or _default_factory
        self._hash_name: str = hash_name

    def fingerprint(
        self,
        options: PoolOptions,
        host: str,
        port: int,
        scheme: str,
        *,
        ca: CAMaterial | None = None,
    ) -> str:
        return fingerprint(
            options, host, port, scheme, ca=ca, hash_name=self._hash_name
        )

    def get_or_create(
        self,
        options: PoolOptions,
        host: str,
        port: int,
        scheme: str,
        *,
        ca: CAMaterial | None = None,
    ) -> httpx.AsyncBaseTransport:
        '''
        Return the pooled transport for the destination, creating it the
        first time the destination is seen.

        Parameters
        ----------
        options : PoolOptions
        host : str
        port : int
        scheme : str
        ca : CAMaterial | None, optional

        Returns
        -------
        httpx.AsyncBaseTransport
        '''
        key = self.fingerprint(options, host, port, scheme, ca=ca)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = PoolEntry(
                    handle=self._factory(options, scheme, ca),
                    keep_alive=options.keep_alive,
                )
                self._entries[key] = entry
                logger.debug(f'Created pooled transport for {scheme}://{host}:{port} ({key[:12]})')
            else:
                entry.touch()

        return entry.handle

    def create_private(
        self,
        options: PoolOptions,
        scheme: str,
        *,
        ca: CAMaterial | None = None,
    ) -> httpx.AsyncBaseTransport:
        '''
        Build a transport that is not shared nor stored in the pool,
        the caller owns it and is responsible for closing it.
        '''
        return self._factory(options, scheme, ca)

    def entry(self, key: str) -> PoolEntry | None:
        with self._lock:
            return self._entries.get(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def aclose(self) -> None:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()

        for entry in entries:
            await entry.handle.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()


_default_pool: AgentPool | None = None
_default_lock = threading.Lock()


def default_pool() -> AgentPool:
    '''
    The process-wide pool used when a request is not given one.
    '''
    global _default_pool
    with _default_lock:
        if _default_pool is None:
            _default_pool = AgentPool()
        return _default_pool


def set_default_pool(pool: AgentPool | None) -> None:
    '''
    Replace the process-wide pool, `None` makes the next request
    create a fresh one.
    '''
    global _default_pool
    with _default_lock:
        _default_pool = pool
