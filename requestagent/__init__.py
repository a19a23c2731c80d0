'''
**requestagent**
---------

An asyncio HTTP(S) request library built on httpx. Every request goes
through a `RequestAgent` that takes its transport from an `AgentPool`, so
connections to the same destination (scheme, host, port and tuning
options) are shared and kept alive between calls. GET requests follow
redirects, at most 5 by default and never more than 15.

    >>> response = await requestagent.get('https://example.com/')
    >>> response.status_code, response.text
'''
from requestagent._agent import (
    DEFAULT_MAX_REDIRECTS,
    MAXIMUM_REDIRECTS,
    RequestAgent,
    RequestParams,
    TransportKind,
    create_agent,
)
from requestagent._api import DELETE, GET, PATCH, POST, PUT, delete, get, patch, post, put
from requestagent._errors import (
    HTTPError,
    InvalidOptionsError,
    MalformedURLError,
    MissingLocationError,
    RemoteError,
    RequestConnectionError,
    RequestError,
    TooManyRedirectsError,
    TransportError,
    UnsupportedProtocolError,
)
from requestagent._executor import DATA_METHODS, REDIRECT_STATUSES, execute
from requestagent._pool import (
    AgentPool,
    AgentTransport,
    PoolEntry,
    PoolOptions,
    default_pool,
    fingerprint,
    set_default_pool,
)
from requestagent._queryfy import queryfy
from requestagent._redirects import follow_redirects
from requestagent._response import Classified, HTTPFailure, HTTPRedirect, HTTPResponse
from requestagent._urls import normalize_path, parse_url, resolve

__all__ = [
    'DEFAULT_MAX_REDIRECTS',
    'MAXIMUM_REDIRECTS',
    'RequestAgent',
    'RequestParams',
    'TransportKind',
    'create_agent',
    'GET',
    'POST',
    'PUT',
    'PATCH',
    'DELETE',
    'get',
    'post',
    'put',
    'patch',
    'delete',
    'HTTPError',
    'InvalidOptionsError',
    'MalformedURLError',
    'MissingLocationError',
    'RemoteError',
    'RequestConnectionError',
    'RequestError',
    'TooManyRedirectsError',
    'TransportError',
    'UnsupportedProtocolError',
    'DATA_METHODS',
    'REDIRECT_STATUSES',
    'execute',
    'AgentPool',
    'AgentTransport',
    'PoolEntry',
    'PoolOptions',
    'default_pool',
    'fingerprint',
    'set_default_pool',
    'queryfy',
    'follow_redirects',
    'Classified',
    'HTTPFailure',
    'HTTPRedirect',
    'HTTPResponse',
    'normalize_path',
    'parse_url',
    'resolve',
]
