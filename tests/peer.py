import selectors
import socket
import threading
import time
import logging
from typing import Optional

receive_default_size = 8000

logger = logging.getLogger(__name__)


class CannedPeer:
    """Stands in for the proxy: reads one request up to the client's
    half-close, answers with a fixed response, then closes.

    ``chunk_size`` and ``delay`` split the response across several sends so
    the client sees it arrive over multiple reads.
    """

    def __init__(self, response: bytes, chunk_size: Optional[int] = None, delay: float = 0.0):
        self.response = response
        self.chunk_size = chunk_size or len(response) or 1
        self.delay = delay
        self.request = b''
        self.done = threading.Event()

        self.sel = selectors.DefaultSelector()
        self.sock = socket.socket()
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(('127.0.0.1', 0))
        self.sock.listen(1)
        self.sock.setblocking(False)
        self.sel.register(self.sock, selectors.EVENT_READ, (self.accept, None))
        self.port = self.sock.getsockname()[1]

        self._stopping = False
        self._thread = threading.Thread(target=self.serve, daemon=True)

    def __enter__(self) -> 'CannedPeer':
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._stopping = True
        self._thread.join(timeout=5)
        for key in list(self.sel.get_map().values()):
            self.sel.unregister(key.fileobj)
            key.fileobj.close()
        self.sel.close()

    def serve(self):
        while not self._stopping and not self.done.is_set():
            events = self.sel.select(timeout=0.05)
            for key, mask in events:
                callback = key.data[0]
                args = key.data[1]
                callback(key.fileobj, mask, args)

    def accept(self, sock: socket.socket, mask, args):
        conn, addr = sock.accept()
        conn.setblocking(False)
        logger.debug(f'Peer accepted {addr}')
        self.sel.register(conn, selectors.EVENT_READ, (self.receive_client, None))

    def receive_client(self, conn: socket.socket, mask, args):
        data = conn.recv(receive_default_size)
        if data:
            self.request += data
            return

        # Client half-closed; the request is complete.
        self.sel.modify(conn, selectors.EVENT_WRITE,
                        (self.send_response, memoryview(self.response)))

    def send_response(self, conn: socket.socket, mask, pending: memoryview):
        if pending:
            sent = conn.send(pending[:self.chunk_size])
            pending = pending[sent:]
            if self.delay:
                time.sleep(self.delay)

        if pending:
            self.sel.modify(conn, selectors.EVENT_WRITE, (self.send_response, pending))
            return

        self.sel.unregister(conn)
        conn.close()
        self.done.set()


def refused_port() -> int:
    """A loopback port with nothing listening on it."""
    sock = socket.socket()
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
