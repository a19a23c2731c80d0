'''
The exception hierarchy raised by requestagent.

Every failure a request can run into is raised as a subclass of
`RequestError`, carrying a best-effort `status_code`, a human readable
`detail` and, for transport failures, the `original` exception.
'''
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from requestagent._response import HTTPFailure


class RequestError(Exception):
    '''
    Base class for all the errors raised by requestagent.

    Attributes
    ----------
    status_code : int
        Best-effort HTTP status code for the failure, 400 by default.
    detail : str | None
        Extra information about the failure.
    original : BaseException | None
        The underlying exception, when the failure came from the transport.
    '''
    default_status: int = 400

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: str | None = None,
        original: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message: str = message
        self.status_code: int = (
            self.default_status if status_code is None else status_code
        )
        self.detail: str | None = detail
        self.original: BaseException | None = original

        self.headers: httpx.Headers | None = None
        self.body: bytes | None = None
        self.http_version: str = 'HTTP/1.1'
        self.reason_phrase: str | None = None
        self.location: str | None = None

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}({self.message!r}, '
            f'status_code={self.status_code!r})'
        )


class HTTPError(RequestError):
    '''
    Parent of every error raised while building or performing a request.

    Parent: RequestError
    '''


class InvalidOptionsError(HTTPError, TypeError):
    '''
    Raised when the request options are not a mapping, or one of
    the recognised options has a value of the wrong type.

    Parent: HTTPError, TypeError
    '''


class UnsupportedProtocolError(HTTPError, ValueError):
    '''
    Raised when a URL uses a scheme other than http or https.

    Parent: HTTPError, ValueError
    '''


class MalformedURLError(HTTPError, ValueError):
    '''
    Raised when a URL cannot be parsed into scheme, host and path.

    Parent: HTTPError, ValueError
    '''


class TransportError(HTTPError):
    '''
    Raised when the transport fails during the exchange, including
    exchanges aborted because of a timeout.

    Parent: HTTPError
    '''
    default_status = 500


class RequestConnectionError(TransportError):
    '''
    Raised when the remote server refused the connection.

    Parent: TransportError
    '''


class MissingLocationError(HTTPError):
    '''
    Raised when a redirect response has no usable `Location` header.

    Parent: HTTPError
    '''
    default_status = 500


class TooManyRedirectsError(HTTPError):
    '''
    Raised when a redirect chain is longer than the allowed maximum.

    Parent: HTTPError
    '''
    default_status = 500


class RemoteError(HTTPError):
    '''
    Raised when the remote server answers with a status that is neither
    a success nor a redirect. The response parts are copied on the error.

    Parent: HTTPError
    '''

    @classmethod
    def from_failure(cls, failure: HTTPFailure) -> RemoteError:
        error = cls(
            failure.reason_phrase or 'Remote request error',
            status_code=failure.status_code,
            detail=failure.reason_phrase,
        )
        error.headers = failure.headers
        error.body = failure.body
        error.http_version = failure.http_version
        error.reason_phrase = failure.reason_phrase
        return error
