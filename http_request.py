from dataclasses import dataclass
from typing import Optional

from errors import UsageError

CRLF = '\r\n'
URL_SCHEME = 'http://'
DEFAULT_PATH = '/'
DEFAULT_USER_AGENT = 'curl/8.9.1'
DEFAULT_ACCEPT = '*/*'


@dataclass(frozen=True)
class Endpoint:
    host: str
    path: str
    port: int


@dataclass(frozen=True)
class RequestOptions:
    user_agent: Optional[str] = DEFAULT_USER_AGENT
    accept: Optional[str] = DEFAULT_ACCEPT


MINIMAL_REQUEST = RequestOptions(user_agent=None, accept=None)


def split_url(url: str) -> tuple[str, str]:
    """Split ``http://<host>[<path>]`` into host and path.

    The host runs up to the first ``/`` and may carry a ``:port`` suffix,
    which is passed through to the Host header untouched. The path is the
    remainder of the line and defaults to ``/``.
    """
    if not url or not url.startswith(URL_SCHEME):
        raise UsageError(message=f'url must start with {URL_SCHEME}')

    rest = url[len(URL_SCHEME):]
    line_end = rest.find('\n')
    if line_end >= 0:
        rest = rest[:line_end]

    slash_idx = rest.find('/')
    if slash_idx >= 0:
        host, path = rest[:slash_idx], rest[slash_idx:]
    else:
        host, path = rest, ''

    if not host:
        raise UsageError(message='url has no host')

    return host, path or DEFAULT_PATH


def parse_port(value: str) -> int:
    value = value.strip() if value else ''
    if not (value.isascii() and value.isdecimal()):
        raise UsageError(message=f'invalid proxy port {value!r}')
    port = int(value)
    if not 0 < port < 65536:
        raise UsageError(message=f'proxy port {port} out of range')
    return port


def parse_endpoint(url: str, port: str) -> Endpoint:
    host, path = split_url(url)
    return Endpoint(host=host, path=path, port=parse_port(port))


def build_request(endpoint: Endpoint, options: RequestOptions = RequestOptions()) -> bytes:
    headers = {
        'Host': endpoint.host,
        'Connection': 'close',
    }
    if options.user_agent:
        headers['User-Agent'] = options.user_agent
    if options.accept:
        headers['Accept'] = options.accept

    request_line = f'GET {endpoint.path} HTTP/1.1'
    headers_str = ''.join([f'{key}: {value}{CRLF}' for key, value in headers.items()])
    request = f'{request_line}{CRLF}{headers_str}{CRLF}'

    # argv bytes that were not UTF-8 come back out unchanged.
    return request.encode('utf-8', 'surrogateescape')
