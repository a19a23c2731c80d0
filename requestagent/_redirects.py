import logging

import httpx

from requestagent._agent import RequestAgent
from requestagent._errors import (
    MissingLocationError,
    RemoteError,
    TooManyRedirectsError,
)
from requestagent._executor import execute
from requestagent._response import HTTPFailure, HTTPRedirect, HTTPResponse


logger = logging.getLogger(__name__)


async def follow_redirects(
    agent: RequestAgent,
    url: str | httpx.URL,
) -> HTTPResponse | HTTPRedirect:
    '''
    Request the agent's target and follow redirects until a final response.

    Each hop resolves the `Location` header against the current URL and
    updates the agent in place, at most `agent.max_redirects` hops are taken.
    When the agent does not follow redirects the first redirect response is
    returned as is.

    Parameters
    ----------
    agent : RequestAgent
    url : str | httpx.URL
        The URL the agent currently points to.

    Returns
    -------
    HTTPResponse | HTTPRedirect

    Raises
    ------
    RemoteError
        If the remote answers with an error status.
    TooManyRedirectsError
        If the chain is longer than `agent.max_redirects`.
    MissingLocationError
        If a redirect response has no `Location` header.
    '''
    current = str(url)
    hops = 0

    while True:
        result = await execute(agent)
        result.redirects = hops

        match result:
            case HTTPResponse():
                return result

            case HTTPFailure():
                raise RemoteError.from_failure(result)

            case HTTPRedirect() if not agent.follow_redirects:
                return result

            case HTTPRedirect() if hops >= agent.max_redirects:
                error = TooManyRedirectsError(
                    'Maximum number of redirects reached',
                    detail=f'{hops} redirects followed from {current}',
                )
                error.headers = result.headers
                error.location = result.location
                raise error

            case HTTPRedirect(location=location) if not (location or '').strip():
                error = MissingLocationError(
                    'Redirect response without a location header',
                    status_code=result.status_code,
                    detail=f'{result.status_code} from {current}',
                )
                error.headers = result.headers
                raise error

            case HTTPRedirect(location=location):
                old_url, new_url = agent.to_urls(current, location.strip())
                logger.debug(f'Following {result.status_code} redirect to {new_url}')
                agent.update(old_url, new_url)
                current = str(new_url)
                hops += 1
