from collections.abc import Mapping
from typing import Any

from requestagent._agent import create_agent
from requestagent._errors import InvalidOptionsError, RemoteError
from requestagent._executor import Body, execute
from requestagent._pool import AgentPool
from requestagent._redirects import follow_redirects
from requestagent._response import HTTPFailure, HTTPRedirect, HTTPResponse


Result = HTTPResponse | HTTPRedirect


def _with_method(options: Mapping[str, Any] | None, method: str) -> dict[str, Any]:
    if options is None:
        return {'method': method}

    if not isinstance(options, Mapping):
        raise InvalidOptionsError('options parameter must be a mapping')

    return {**options, 'method': method}


async def _single_exchange(
    method: str,
    url: str,
    body: Body | None,
    options: Mapping[str, Any] | None,
    pool: AgentPool | None,
) -> Result:
    agent = create_agent(url, _with_method(options, method), pool=pool)
    result = await execute(agent, body)
    if isinstance(result, HTTPFailure):
        raise RemoteError.from_failure(result)
    return result


async def get(
    url: str,
    options: Mapping[str, Any] | None = None,
    *,
    pool: AgentPool | None = None,
) -> Result:
    '''
    Perform a GET request, following redirects unless the
    `followRedirects` option is false.

    Parameters
    ----------
    url : str
    options : Mapping[str, Any] | None, optional
        See `create_agent` for the recognised options.
    pool : AgentPool | None, optional
        By default the process-wide pool.

    Returns
    -------
    HTTPResponse | HTTPRedirect
    '''
    agent = create_agent(url, _with_method(options, 'GET'), pool=pool)
    return await follow_redirects(agent, url)


async def post(
    url: str,
    data: Body | None = None,
    options: Mapping[str, Any] | None = None,
    *,
    pool: AgentPool | None = None,
) -> Result:
    '''
    Perform a POST request sending `data`, a buffer, string or stream.
    '''
    return await _single_exchange('POST', url, data, options, pool)


async def put(
    url: str,
    data: Body | None = None,
    options: Mapping[str, Any] | None = None,
    *,
    pool: AgentPool | None = None,
) -> Result:
    '''
    Perform a PUT request sending `data`, a buffer, string or stream.
    '''
    return await _single_exchange('PUT', url, data, options, pool)


async def patch(
    url: str,
    data: Body | None = None,
    options: Mapping[str, Any] | None = None,
    *,
    pool: AgentPool | None = None,
) -> Result:
    '''
    Perform a PATCH request sending `data`, a buffer, string or stream.
    '''
    return await _single_exchange('PATCH', url, data, options, pool)


async def delete(
    url: str,
    options: Mapping[str, Any] | None = None,
    *,
    pool: AgentPool | None = None,
) -> Result:
    return await _single_exchange('DELETE', url, None, options, pool)


GET = get
POST = post
PUT = put
PATCH = patch
DELETE = delete
