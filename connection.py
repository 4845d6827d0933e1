import enum
import errno
import logging
import selectors
import socket
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Optional

from errors import (AddressError, CloseError, ConnectError, ReceiveError,
                    SendError, SetupError, ShutdownError)
from http_request import Endpoint

PROXY_HOST = '127.0.0.1'
RECV_BUFFER_LEN = 1500
POLL_INTERVAL = 0.1

logger = logging.getLogger(__name__)


class ConnectionState(enum.IntEnum):
    UNCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2
    SEND_HALF_CLOSED = 3
    FULLY_CLOSED = 4


class ReceiveMode(enum.Enum):
    IMMEDIATE = 'immediate'
    ACCUMULATING = 'accumulating'


def build_address(port: int, host: str = PROXY_HOST) -> tuple[str, int]:
    try:
        socket.inet_pton(socket.AF_INET, host)
    except OSError as err:
        raise AddressError(code=err.errno, message=f'bad proxy address {host!r}') from err
    return host, port


class Connection:
    """A single TCP stream to the proxy, walked forward through its states."""

    def __init__(self, sock: socket.socket):
        self.sock: Optional[socket.socket] = sock
        self.state = ConnectionState.UNCONNECTED

    @classmethod
    def create(cls) -> 'Connection':
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP)
        except OSError as err:
            raise SetupError.from_os_error(err) from err
        return cls(sock)

    def __enter__(self) -> 'Connection':
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            self.close()
        except CloseError as err:
            if exc is None:
                raise
            logger.error(err.describe())

    def _advance(self, state: ConnectionState):
        if state <= self.state:
            raise RuntimeError(f'cannot move connection from {self.state.name} to {state.name}')
        logger.debug(f'Connection {self.state.name} -> {state.name}')
        self.state = state

    def _require(self, *states: ConnectionState):
        if self.state not in states:
            expected = ', '.join(s.name for s in states)
            raise RuntimeError(f'connection is {self.state.name}, expected {expected}')

    def connect(self, address: tuple[str, int]):
        # Blocking on purpose; the socket only goes non-blocking once connected.
        self._require(ConnectionState.UNCONNECTED)
        self._advance(ConnectionState.CONNECTING)
        try:
            self.sock.connect(address)
        except OSError as err:
            raise ConnectError.from_os_error(err) from err
        self._advance(ConnectionState.CONNECTED)

    def set_non_blocking(self):
        self._require(ConnectionState.CONNECTED)
        try:
            self.sock.setblocking(False)
        except OSError as err:
            raise SetupError.from_os_error(err) from err

    def wait_writable(self, timeout: Optional[float] = None):
        with selectors.DefaultSelector() as sel:
            sel.register(self.sock, selectors.EVENT_WRITE)
            sel.select(timeout)

    def half_close_send(self):
        self._require(ConnectionState.CONNECTED)
        try:
            self.sock.shutdown(socket.SHUT_WR)
        except OSError as err:
            raise ShutdownError.from_os_error(err) from err
        self._advance(ConnectionState.SEND_HALF_CLOSED)

    def shutdown(self):
        self._require(ConnectionState.CONNECTED, ConnectionState.SEND_HALF_CLOSED)
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as err:
            # Both FINs already exchanged; nothing left to shut down.
            if err.errno == errno.ENOTCONN:
                logger.debug('Socket already disconnected at shutdown')
                return
            raise ShutdownError.from_os_error(err) from err

    def close(self):
        if self.state is ConnectionState.FULLY_CLOSED:
            return
        sock, self.sock = self.sock, None
        self._advance(ConnectionState.FULLY_CLOSED)
        try:
            sock.close()
        except OSError as err:
            raise CloseError.from_os_error(err) from err


def connect(endpoint: Endpoint, proxy_host: str = PROXY_HOST) -> Connection:
    """Open a blocking connection to the proxy on ``endpoint.port``.

    The URL host is never resolved; it only ends up in the Host header.
    On failure the socket is already released when the error propagates.
    """
    address = build_address(endpoint.port, proxy_host)
    conn = Connection.create()
    try:
        conn.connect(address)
    except ConnectError:
        try:
            conn.close()
        except CloseError as err:
            logger.error(err.describe())
        raise
    logger.debug(f'Connected to {address[0]}:{address[1]}')
    return conn


@dataclass
class SendCursor:
    data: memoryview
    offset: int = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def pending(self) -> memoryview:
        return self.data[self.offset:]

    def advance(self, count: int):
        if count < 0 or count > self.remaining:
            raise ValueError(f'cannot advance {count} bytes with {self.remaining} remaining')
        self.offset += count


@dataclass
class SendOutcome:
    bytes_sent: int = 0
    writes: list[int] = field(default_factory=list)
    retries: int = 0


def send(conn: Connection, data: bytes) -> SendOutcome:
    """Write all of ``data``, tolerating partial and would-block writes."""
    cursor = SendCursor(memoryview(data))
    outcome = SendOutcome()

    while cursor.remaining:
        try:
            sent = conn.sock.send(cursor.pending())
        except (BlockingIOError, InterruptedError):
            outcome.retries += 1
            logger.debug('Send would block, waiting for the socket to drain')
            conn.wait_writable()
            continue
        except OSError as err:
            raise SendError.from_os_error(err) from err

        if sent == 0:
            outcome.retries += 1
            continue

        cursor.advance(sent)
        outcome.writes.append(sent)
        outcome.bytes_sent += sent
        logger.debug(f'Sent {sent} bytes, {cursor.remaining} remaining')

    return outcome


class ReceiveBuffer:
    """Fixed-capacity buffer; the last slot stays free as in a C string."""

    def __init__(self, capacity: int = RECV_BUFFER_LEN):
        if capacity < 2:
            raise ValueError(f'receive buffer capacity must be at least 2, got {capacity}')
        self.capacity = capacity
        self.data = bytearray(capacity)
        self.fill = 0

    @property
    def usable(self) -> int:
        return self.capacity - 1

    def free_space(self) -> memoryview:
        return memoryview(self.data)[self.fill:self.usable]

    def commit(self, count: int):
        self.fill += count

    def is_full(self) -> bool:
        return self.fill >= self.usable

    def drain(self) -> bytes:
        chunk = bytes(self.data[:self.fill])
        self.fill = 0
        return chunk


def receive(conn: Connection,
            mode: ReceiveMode = ReceiveMode.IMMEDIATE,
            capacity: int = RECV_BUFFER_LEN,
            poll_interval: float = POLL_INTERVAL,
            sleep: Callable[[float], None] = time.sleep) -> Iterator[bytes]:
    """Yield response chunks until the peer closes its side.

    Only a zero-byte read ends the stream. In immediate mode every read is
    yielded as it arrives; in accumulating mode reads are gathered until the
    buffer is full. Whatever is still buffered is yielded once at the end.
    """
    conn._require(ConnectionState.CONNECTED, ConnectionState.SEND_HALF_CLOSED)
    buffer = ReceiveBuffer(capacity)

    while True:
        if poll_interval:
            sleep(poll_interval)

        try:
            with buffer.free_space() as view:
                received = conn.sock.recv_into(view)
        except (BlockingIOError, InterruptedError):
            logger.debug('No data yet')
            continue
        except OSError as err:
            if buffer.fill:
                yield buffer.drain()
            raise ReceiveError.from_os_error(err) from err

        if received == 0:
            logger.debug('Peer closed its side of the connection')
            break

        buffer.commit(received)
        logger.debug(f'Received {received} bytes')
        if mode is ReceiveMode.IMMEDIATE or buffer.is_full():
            yield buffer.drain()

    if buffer.fill:
        yield buffer.drain()
