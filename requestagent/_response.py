'''
The response value types.

A request exchange ends in exactly one of three variants: `HTTPResponse`
for successes, `HTTPRedirect` for redirects and `HTTPFailure` for every
other status. Callers match on the variant rather than inspecting codes.
'''
from __future__ import annotations

import dataclasses as dc
import json
from typing import Any

import httpx


@dc.dataclass(slots=True)
class _ResponseData:
    status_code: int
    headers: httpx.Headers = dc.field(default_factory=httpx.Headers)
    body: bytes = b''
    http_version: str = 'HTTP/1.1'
    reason_phrase: str = ''
    url: str | None = None
    redirects: int = 0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def encoding(self) -> str:
        content_type = self.headers.get('content-type', '')
        for param in content_type.split(';')[1:]:
            key, _, value = param.strip().partition('=')
            if key.lower() == 'charset' and value:
                return value.strip('"\'')
        return 'utf-8'

    @property
    def text(self) -> str:
        try:
            return self.body.decode(self.encoding, errors='replace')
        except LookupError:
            return self.body.decode('utf-8', errors='replace')

    def json(self, **kwargs: Any) -> Any:
        return json.loads(self.body, **kwargs)


@dc.dataclass(slots=True)
class HTTPResponse(_ResponseData):
    '''
    A successful (2xx) response.
    '''


@dc.dataclass(slots=True)
class HTTPRedirect(_ResponseData):
    '''
    A redirect response, `location` is the raw `Location` header if any.
    '''
    location: str | None = None


@dc.dataclass(slots=True)
class HTTPFailure(_ResponseData):
    '''
    Any response that is neither a success nor a redirect.
    '''


Classified = HTTPResponse | HTTPRedirect | HTTPFailure
