import re

import httpx

from requestagent._errors import MalformedURLError


_SEPARATOR_RUN = re.compile(r'/{2,}')


def normalize_path(path: str) -> str:
    '''
    Collapse any run of two or more `/` into a single one.

    Parameters
    ----------
    path : str

    Returns
    -------
    str
    '''
    return _SEPARATOR_RUN.sub('/', path)


def default_port(scheme: str) -> int:
    return 443 if scheme.startswith('https') else 80


def parse_url(url: str | httpx.URL) -> httpx.URL:
    '''
    Parse an absolute URL, making sure it has a scheme and a host.

    Parameters
    ----------
    url : str | httpx.URL

    Returns
    -------
    httpx.URL

    Raises
    ------
    MalformedURLError
        If the URL cannot be parsed or is missing its scheme or host.
    '''
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise MalformedURLError(f'Malformed URL: {url!r}', detail=str(exc)) from exc

    if not parsed.scheme or not parsed.host:
        raise MalformedURLError(f'Malformed URL: {url!r}')

    return parsed


def resolve(base_url: str | httpx.URL, target: str | httpx.URL) -> httpx.URL:
    '''
    Resolve `target` against `base_url`. Absolute targets are taken as they
    are, relative ones inherit scheme, host and port from the base.

    Parameters
    ----------
    base_url : str | httpx.URL
    target : str | httpx.URL

    Returns
    -------
    httpx.URL

    Raises
    ------
    MalformedURLError
    '''
    base = parse_url(base_url)
    try:
        joined = base.join(target)
    except (httpx.InvalidURL, TypeError) as exc:
        raise MalformedURLError(
            f'Cannot resolve {target!r} against {str(base)!r}',
            detail=str(exc),
        ) from exc

    return parse_url(joined)


def request_target(url: httpx.URL) -> str:
    '''
    The normalized path of the URL followed by its query string.
    '''
    path = normalize_path(url.raw_path.split(b'?', 1)[0].decode('ascii') or '/')
    if url.query:
        return f"{path}?{url.query.decode('ascii')}"
    return path
